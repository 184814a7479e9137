"""
Runtime value wrappers for the scadkit interpreter.

Every value produced while evaluating an expression is a Value: the raw
Python data plus a ValueType tag. Numbers are always floats; vectors hold
Values; ranges stay lazy until something needs their elements.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional

from ..ast import Parameter, Expression, Statement

# Largest range a program may build
MAX_RANGE_ELEMENTS = 2 ** 32 - 1


class ValueType(Enum):
    """Runtime value kinds."""
    NUMBER = "number"
    STRING = "string"
    BOOL = "bool"
    VECTOR = "vector"
    RANGE = "range"
    UNDEF = "undef"
    FUNCTION = "function"
    MODULE = "module"


@dataclass(frozen=True)
class Range:
    """
    A lazy, restartable arithmetic sequence [start : step : end].

    Empty when the step is zero or points away from the end.
    """
    start: float
    step: float
    end: float

    def count(self) -> float:
        """Number of elements as a float; inf when it cannot be counted."""
        if self.step == 0 or not math.isfinite(self.step):
            return 0.0
        span = self.end - self.start
        if span * self.step < 0:
            return 0.0
        # Tolerate accumulated error so [0:0.1:1] includes 1
        n = span / self.step + 1e-9
        if not math.isfinite(n):
            return math.inf
        return math.floor(n) + 1.0

    def __len__(self) -> int:
        n = self.count()
        if n > MAX_RANGE_ELEMENTS:
            raise OverflowError(f"range has too many elements ({n:g})")
        return int(n)

    def __iter__(self) -> Iterator[float]:
        for i in range(len(self)):
            yield self.start + i * self.step

    def __str__(self) -> str:
        return f"[{format_number(self.start)} : {format_number(self.step)} : {format_number(self.end)}]"


@dataclass(frozen=True, eq=False)
class FunctionClosure:
    """A user function together with the scope it was defined in."""
    name: str
    parameters: List[Parameter]
    body: Expression
    scope: Any  # Scope, shared with every other closure defined there


@dataclass(frozen=True, eq=False)
class ModuleClosure:
    """A user module together with the scope it was defined in."""
    name: str
    parameters: List[Parameter]
    body: List[Statement]
    scope: Any


@dataclass
class Value:
    """
    A runtime value with type information.

    The `data` field holds the Python object:
        NUMBER -> float, STRING -> str, BOOL -> bool, VECTOR -> List[Value],
        RANGE -> Range, UNDEF -> None, FUNCTION -> FunctionClosure,
        MODULE -> ModuleClosure
    """
    data: Any
    type: ValueType

    def __repr__(self) -> str:
        return f"Value({self.data!r}, {self.type.value})"

    def __str__(self) -> str:
        return format_value(self, quote_strings=False)

    def is_truthy(self) -> bool:
        """Check if this value is truthy in boolean context."""
        if self.type == ValueType.BOOL:
            return self.data
        if self.type == ValueType.NUMBER:
            return self.data != 0
        if self.type in (ValueType.STRING, ValueType.VECTOR):
            return len(self.data) > 0
        if self.type == ValueType.UNDEF:
            return False
        return True

    @property
    def is_undef(self) -> bool:
        return self.type == ValueType.UNDEF

    def elements(self) -> List["Value"]:
        """Elements of a vector or (materialized) range."""
        if self.type == ValueType.VECTOR:
            return self.data
        if self.type == ValueType.RANGE:
            return [number_val(x) for x in self.data]
        raise TypeError(f"{self.type.value} is not iterable")


UNDEF = Value(None, ValueType.UNDEF)
TRUE = Value(True, ValueType.BOOL)
FALSE = Value(False, ValueType.BOOL)


# Convenience constructors

def number_val(x: float) -> Value:
    """Create a number value."""
    return Value(float(x), ValueType.NUMBER)


def string_val(s: str) -> Value:
    """Create a string value."""
    return Value(str(s), ValueType.STRING)


def bool_val(b: bool) -> Value:
    """Create a boolean value."""
    return TRUE if b else FALSE


def vector_val(items: List[Value]) -> Value:
    """Create a vector value from a list of Values."""
    return Value(list(items), ValueType.VECTOR)


def range_val(start: float, step: float, end: float) -> Value:
    """Create a lazy range value."""
    return Value(Range(float(start), float(step), float(end)), ValueType.RANGE)


def function_val(closure: FunctionClosure) -> Value:
    return Value(closure, ValueType.FUNCTION)


def module_val(closure: ModuleClosure) -> Value:
    return Value(closure, ValueType.MODULE)


# Conversion to and from plain Python data

def from_python(obj: Any) -> Value:
    """Wrap plain Python data (numbers, strings, bools, None, sequences)."""
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return UNDEF
    if isinstance(obj, bool):
        return bool_val(obj)
    if isinstance(obj, (int, float)):
        return number_val(obj)
    if isinstance(obj, str):
        return string_val(obj)
    if isinstance(obj, Range):
        return Value(obj, ValueType.RANGE)
    if isinstance(obj, (list, tuple)):
        return vector_val([from_python(x) for x in obj])
    # numpy arrays and scalars
    if hasattr(obj, "tolist"):
        return from_python(obj.tolist())
    raise TypeError(f"cannot convert {type(obj).__name__} to a runtime value")


def to_python(value: Value) -> Any:
    """Unwrap a Value into plain Python data; ranges become lists."""
    if value.type == ValueType.VECTOR:
        return [to_python(v) for v in value.data]
    if value.type == ValueType.RANGE:
        return list(value.data)
    return value.data


def as_number(value: Value) -> Optional[float]:
    """The float held by a NUMBER value, or None."""
    if value.type == ValueType.NUMBER:
        return value.data
    return None


def as_vector(value: Value) -> Optional[List[float]]:
    """A list of floats if value is a vector of numbers, else None."""
    if value.type != ValueType.VECTOR:
        return None
    result = []
    for item in value.data:
        if item.type != ValueType.NUMBER:
            return None
        result.append(item.data)
    return result


def values_equal(a: Value, b: Value) -> bool:
    """Structural equality; values of different types are never equal."""
    if a.type != b.type:
        return False
    if a.type == ValueType.VECTOR:
        return len(a.data) == len(b.data) and all(
            values_equal(x, y) for x, y in zip(a.data, b.data))
    if a.type in (ValueType.FUNCTION, ValueType.MODULE):
        return a.data is b.data
    return a.data == b.data


# Formatting

def format_number(x: float) -> str:
    """Format a number the way echo() prints it: 3, 0.5, 1e+20."""
    if math.isnan(x):
        return "nan"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if x == int(x) and abs(x) < 1e15:
        return str(int(x))
    return f"{x:.6g}"


def format_value(value: Value, quote_strings: bool = True) -> str:
    """Render a value as text; strings nested in vectors are always quoted."""
    t = value.type
    if t == ValueType.NUMBER:
        return format_number(value.data)
    if t == ValueType.STRING:
        return f'"{value.data}"' if quote_strings else value.data
    if t == ValueType.BOOL:
        return "true" if value.data else "false"
    if t == ValueType.UNDEF:
        return "undef"
    if t == ValueType.VECTOR:
        return "[" + ", ".join(format_value(v, True) for v in value.data) + "]"
    if t == ValueType.RANGE:
        return str(value.data)
    if t == ValueType.FUNCTION:
        return f"function {value.data.name}"
    return f"module {value.data.name}"

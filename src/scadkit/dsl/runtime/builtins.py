"""
Built-in function registry for the scadkit interpreter.

Maps function names to Python implementations. Implementations take and
return Values; trigonometry works in degrees. Argument problems raise
ArgumentError, which the interpreter reports with the call's position.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import inspect
import math
import random

from .values import (
    Value, ValueType, UNDEF,
    number_val, bool_val, string_val, vector_val,
    as_number, as_vector, format_value, values_equal,
)


class ArgumentError(ValueError):
    """A built-in received an argument of the wrong type or value."""


@dataclass
class BuiltinFunction:
    """
    A built-in function with its implementation.

    `params` names the positional slots so callers may also pass them by
    name, e.g. rands(min_value=0, max_value=1, value_count=3).
    """
    name: str
    implementation: Callable[..., Value]
    params: List[str] = field(default_factory=list)
    doc: str = ""

    def bind(self, args: List[Value], named: Dict[str, Value]) -> List[Value]:
        """Merge named arguments into positional order.

        Raises TypeError on unknown names or a wrong argument count.
        """
        positional = list(args)
        for name, value in named.items():
            if name not in self.params:
                raise TypeError(f"{self.name}() got an unexpected argument '{name}'")
            index = self.params.index(name)
            if index < len(positional):
                raise TypeError(f"{self.name}() got multiple values for argument '{name}'")
            while len(positional) < index:
                positional.append(UNDEF)
            positional.append(value)
        inspect.signature(self.implementation).bind(*positional)
        return positional

    def __call__(self, *args: Value) -> Value:
        return self.implementation(*args)


def _num(value: Value, fname: str) -> float:
    n = as_number(value)
    if n is None:
        raise ArgumentError(f"{fname}() expects a number, got {value.type.value}")
    return n


def _whole(value: Value, fname: str) -> int:
    n = _num(value, fname)
    if not math.isfinite(n):
        raise ArgumentError(f"{fname}() expects a finite number, got {n}")
    return int(n)


def _vec(value: Value, fname: str) -> List[float]:
    v = as_vector(value)
    if v is None:
        raise ArgumentError(f"{fname}() expects a vector of numbers, got {value.type.value}")
    return v


def _given(value: Optional[Value]) -> bool:
    """True for an optional argument that was actually supplied."""
    return value is not None and not value.is_undef


def _domain(fn: Callable[[float], float], x: float) -> float:
    """Apply fn, mapping math domain errors to nan and overflow to inf."""
    try:
        return fn(x)
    except ValueError:
        return math.nan
    except OverflowError:
        return math.inf


class BuiltinRegistry:
    """
    Registry of all built-in functions.

    Functions are registered by name and can be looked up for execution.
    """

    def __init__(self):
        self._functions: Dict[str, BuiltinFunction] = {}
        self._register_all()

    def get_function(self, name: str) -> Optional[BuiltinFunction]:
        """Look up a function by name."""
        return self._functions.get(name)

    def register(self, func: BuiltinFunction) -> None:
        """Register a function."""
        self._functions[func.name] = func

    def names(self) -> List[str]:
        return sorted(self._functions)

    def _register_all(self) -> None:
        """Register all built-in functions."""
        self._register_math_functions()
        self._register_vector_functions()
        self._register_string_functions()
        self._register_type_functions()

    # --- Math Functions ---

    def _register_math_functions(self) -> None:
        """Register mathematical functions (angles in degrees)."""

        def _unary(name: str, fn: Callable[[float], float], doc: str) -> None:
            def impl(x: Value) -> Value:
                return number_val(_domain(fn, _num(x, name)))
            self.register(BuiltinFunction(name, impl, ["x"], doc))

        _unary("sin", lambda x: math.sin(math.radians(x)), "Sine of an angle in degrees")
        _unary("cos", lambda x: math.cos(math.radians(x)), "Cosine of an angle in degrees")
        _unary("tan", lambda x: math.tan(math.radians(x)), "Tangent of an angle in degrees")
        _unary("asin", lambda x: math.degrees(math.asin(x)), "Arc sine, in degrees")
        _unary("acos", lambda x: math.degrees(math.acos(x)), "Arc cosine, in degrees")
        _unary("atan", lambda x: math.degrees(math.atan(x)), "Arc tangent, in degrees")
        _unary("abs", abs, "Absolute value")
        _unary("ceil", lambda x: float(math.ceil(x)) if math.isfinite(x) else x, "Round up")
        _unary("floor", lambda x: float(math.floor(x)) if math.isfinite(x) else x, "Round down")
        _unary("sqrt", math.sqrt, "Square root")
        _unary("exp", math.exp, "e raised to x")
        _unary("ln", math.log, "Natural logarithm")

        def _sign(x: Value) -> Value:
            n = _num(x, "sign")
            return number_val((n > 0) - (n < 0))

        def _round(x: Value) -> Value:
            n = _num(x, "round")
            if not math.isfinite(n):
                return number_val(n)
            # half away from zero
            return number_val(math.floor(n + 0.5) if n >= 0 else -math.floor(-n + 0.5))

        def _atan2(y: Value, x: Value) -> Value:
            return number_val(math.degrees(math.atan2(_num(y, "atan2"), _num(x, "atan2"))))

        def _log(a: Value, b: Value = None) -> Value:
            if not _given(b):
                return number_val(_domain(math.log10, _num(a, "log")))
            base, x = _num(a, "log"), _num(b, "log")
            return number_val(_domain(lambda v: math.log(v) / math.log(base), x))

        def _pow(base: Value, exponent: Value) -> Value:
            b, e = _num(base, "pow"), _num(exponent, "pow")
            try:
                return number_val(math.pow(b, e))
            except ValueError:
                return number_val(math.nan)
            except OverflowError:
                return number_val(math.inf)

        def _extreme(name: str, pick: Callable) -> Callable[..., Value]:
            def impl(*args: Value) -> Value:
                if len(args) == 1 and args[0].type == ValueType.VECTOR:
                    numbers = _vec(args[0], name)
                else:
                    numbers = [_num(a, name) for a in args]
                if not numbers:
                    raise ArgumentError(f"{name}() needs at least one number")
                return number_val(pick(numbers))
            return impl

        self.register(BuiltinFunction("sign", _sign, ["x"], "-1, 0 or 1"))
        self.register(BuiltinFunction("round", _round, ["x"], "Round half away from zero"))
        self.register(BuiltinFunction("atan2", _atan2, ["y", "x"], "Two-argument arc tangent, in degrees"))
        self.register(BuiltinFunction("log", _log, ["a", "b"], "log(x) is base 10; log(b, x) is base b"))
        self.register(BuiltinFunction("pow", _pow, ["base", "exponent"], "base raised to exponent"))
        self.register(BuiltinFunction("min", _extreme("min", min), [], "Smallest of the arguments or of one vector"))
        self.register(BuiltinFunction("max", _extreme("max", max), [], "Largest of the arguments or of one vector"))

    # --- Vector Functions ---

    def _register_vector_functions(self) -> None:
        """Register vector and list functions."""

        def _norm(v: Value) -> Value:
            return number_val(math.sqrt(sum(x * x for x in _vec(v, "norm"))))

        def _cross(a: Value, b: Value) -> Value:
            u, w = _vec(a, "cross"), _vec(b, "cross")
            if len(u) == 2 and len(w) == 2:
                return number_val(u[0] * w[1] - u[1] * w[0])
            if len(u) != 3 or len(w) != 3:
                raise ArgumentError("cross() expects two 2D or two 3D vectors")
            return vector_val([
                number_val(u[1] * w[2] - u[2] * w[1]),
                number_val(u[2] * w[0] - u[0] * w[2]),
                number_val(u[0] * w[1] - u[1] * w[0]),
            ])

        def _len(v: Value) -> Value:
            if v.type in (ValueType.VECTOR, ValueType.STRING):
                return number_val(len(v.data))
            if v.type == ValueType.RANGE:
                return number_val(len(v.data))
            raise ArgumentError(f"len() expects a vector or string, got {v.type.value}")

        def _concat(*args: Value) -> Value:
            items: List[Value] = []
            for arg in args:
                if arg.type == ValueType.VECTOR:
                    items.extend(arg.data)
                else:
                    items.append(arg)
            return vector_val(items)

        def _lookup(key: Value, table: Value) -> Value:
            k = _num(key, "lookup")
            if table.type != ValueType.VECTOR or not table.data:
                raise ArgumentError("lookup() expects a non-empty table of [key, value] pairs")
            pairs = []
            for row in table.data:
                pair = as_vector(row)
                if pair is None or len(pair) < 2:
                    raise ArgumentError("lookup() table rows must be [key, value]")
                pairs.append((pair[0], pair[1]))
            pairs.sort(key=lambda p: p[0])
            if k <= pairs[0][0]:
                return number_val(pairs[0][1])
            if k >= pairs[-1][0]:
                return number_val(pairs[-1][1])
            for (k0, v0), (k1, v1) in zip(pairs, pairs[1:]):
                if k0 <= k <= k1:
                    if k1 == k0:
                        return number_val(v0)
                    return number_val(v0 + (v1 - v0) * (k - k0) / (k1 - k0))
            return number_val(pairs[-1][1])

        def _search(match: Value, within: Value, num_returns: Value = None,
                    index_col: Value = None) -> Value:
            limit = _whole(num_returns, "search") if _given(num_returns) else 1
            col = _whole(index_col, "search") if _given(index_col) else 0

            if within.type == ValueType.STRING:
                haystack = [string_val(ch) for ch in within.data]
            elif within.type == ValueType.VECTOR:
                haystack = within.data
            else:
                raise ArgumentError("search() looks in a string or vector")

            def key_of(item: Value) -> Value:
                if item.type == ValueType.VECTOR and within.type == ValueType.VECTOR:
                    return item.data[col] if col < len(item.data) else UNDEF
                return item

            def find(needle: Value) -> List[Value]:
                hits = [number_val(i) for i, item in enumerate(haystack)
                        if values_equal(key_of(item), needle)]
                return hits if limit == 0 else hits[:limit]

            if match.type == ValueType.NUMBER or (
                    match.type == ValueType.STRING and len(match.data) == 1):
                return vector_val(find(match))

            if match.type == ValueType.STRING:
                needles = [string_val(ch) for ch in match.data]
            elif match.type == ValueType.VECTOR:
                needles = match.data
            else:
                raise ArgumentError("search() match must be a number, string or vector")

            results = []
            for needle in needles:
                hits = find(needle)
                if limit == 1:
                    results.append(hits[0] if hits else vector_val([]))
                else:
                    results.append(vector_val(hits))
            return vector_val(results)

        def _rands(min_value: Value, max_value: Value, value_count: Value,
                   seed: Value = None) -> Value:
            lo, hi = _num(min_value, "rands"), _num(max_value, "rands")
            count = _whole(value_count, "rands")
            rng = random.Random(_num(seed, "rands") if _given(seed) else None)
            return vector_val([number_val(rng.uniform(lo, hi)) for _ in range(max(0, count))])

        self.register(BuiltinFunction("norm", _norm, ["v"], "Euclidean length"))
        self.register(BuiltinFunction("cross", _cross, ["a", "b"], "Cross product"))
        self.register(BuiltinFunction("len", _len, ["v"], "Number of elements or characters"))
        self.register(BuiltinFunction("concat", _concat, [], "Join vectors; other values become elements"))
        self.register(BuiltinFunction("lookup", _lookup, ["key", "table"], "Linear interpolation in a table"))
        self.register(BuiltinFunction(
            "search", _search, ["match", "string_or_vector", "num_returns_per_match", "index_col_num"],
            "Indices of matching elements"))
        self.register(BuiltinFunction(
            "rands", _rands, ["min_value", "max_value", "value_count", "seed_value"],
            "Vector of uniform random numbers"))

    # --- String Functions ---

    def _register_string_functions(self) -> None:
        """Register string conversion functions."""

        def _str(*args: Value) -> Value:
            return string_val("".join(format_value(a, quote_strings=False) for a in args))

        def _chr(*args: Value) -> Value:
            codes: List[float] = []
            for arg in args:
                if arg.type == ValueType.VECTOR:
                    codes.extend(_vec(arg, "chr"))
                else:
                    codes.append(_num(arg, "chr"))
            try:
                return string_val("".join(chr(int(c)) for c in codes))
            except (ValueError, OverflowError):
                raise ArgumentError("chr() code point out of range")

        def _ord(s: Value) -> Value:
            if s.type != ValueType.STRING or len(s.data) != 1:
                raise ArgumentError("ord() expects a single-character string")
            return number_val(ord(s.data))

        self.register(BuiltinFunction("str", _str, [], "Concatenate values as text"))
        self.register(BuiltinFunction("chr", _chr, [], "Characters from code points"))
        self.register(BuiltinFunction("ord", _ord, ["s"], "Code point of a character"))

    # --- Type Tests ---

    def _register_type_functions(self) -> None:
        """Register is_* type predicates."""

        def _is(name: str, test: Callable[[Value], bool]) -> None:
            def impl(x: Value) -> Value:
                return bool_val(test(x))
            self.register(BuiltinFunction(name, impl, ["x"]))

        _is("is_undef", lambda v: v.type == ValueType.UNDEF)
        _is("is_num", lambda v: v.type == ValueType.NUMBER and not math.isnan(v.data))
        _is("is_string", lambda v: v.type == ValueType.STRING)
        _is("is_bool", lambda v: v.type == ValueType.BOOL)
        _is("is_list", lambda v: v.type == ValueType.VECTOR)


# Global singleton registry
_registry: Optional[BuiltinRegistry] = None


def get_builtin_registry() -> BuiltinRegistry:
    """Get the global built-in function registry."""
    global _registry
    if _registry is None:
        _registry = BuiltinRegistry()
    return _registry


def call_builtin(name: str, args: List[Value], named: Optional[Dict[str, Value]] = None) -> Value:
    """
    Call a built-in function by name.

    Raises KeyError if the function is not found, TypeError on an arity
    mismatch and ArgumentError on bad argument values.
    """
    func = get_builtin_registry().get_function(name)
    if func is None:
        raise KeyError(name)
    return func(*func.bind(args, named or {}))

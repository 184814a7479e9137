"""
Tree-walking interpreter for the scadkit language.

Evaluates AST nodes to produce values and geometry. Statements return a
Geometry or None; sibling results are unioned implicitly except where an
explicit boolean takes each child statement as its own operand.
"""

import itertools
import logging
import math
import sys
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .values import (
    Value, ValueType, UNDEF,
    number_val, bool_val, string_val, vector_val, range_val,
    from_python, as_number, values_equal,
)
from .context import ChildrenFrame, EvaluationContext, create_context
from .builtins import ArgumentError, BuiltinFunction, get_builtin_registry
from .modules import ModuleCall, get_module_registry
from .values import MAX_RANGE_ELEMENTS, FunctionClosure, ModuleClosure

from ..ast import (
    Statement, Assignment, FunctionDef, ModuleDef, ModuleInvocation,
    IfStatement, ForStatement, LetStatement, Block, Binding, Parameter,
    Expression, Literal, Identifier, BinaryOp, UnaryOp, Ternary,
    VectorLiteral, RangeLiteral, IndexAccess, MemberAccess, FunctionCall,
    LetExpression, ListComprehension, ComprehensionClause,
)
from ..errors import (
    Diagnostic, ErrorSeverity, EvaluationError,
    error_runtime, error_undefined_variable, error_undefined_function,
    error_undefined_module, error_arity, error_call_depth, error_type_mismatch,
    error_invalid_range, error_children_index, error_kernel_operation,
    error_invalid_argument,
)
from ..tokens import NO_SPAN, SourceSpan, TokenType, is_special_name
from ...kernel import Geometry, KernelError, ensure_initialized

logger = logging.getLogger(__name__)


_OPERATOR_TEXT = {
    TokenType.PLUS: "+", TokenType.MINUS: "-", TokenType.STAR: "*",
    TokenType.SLASH: "/", TokenType.PERCENT: "%", TokenType.CARET: "^",
    TokenType.LT: "<", TokenType.LE: "<=", TokenType.GT: ">", TokenType.GE: ">=",
    TokenType.EQ: "==", TokenType.NE: "!=", TokenType.AND: "&&", TokenType.OR: "||",
    TokenType.BANG: "!",
}

_MEMBER_INDEX = {"x": 0, "y": 1, "z": 2}

# Python frames used by one level of user function or module call
_FRAMES_PER_CALL = 16

_BASE_RECURSION_LIMIT = sys.getrecursionlimit()
_recursion_lock = threading.Lock()


def _reserve_call_depth(max_call_depth: int) -> None:
    """Raise the interpreter recursion limit to fit `max_call_depth` user calls.

    The limit is process-wide and only ever grows, so concurrent runs on
    other threads never see it drop under them.
    """
    needed = _BASE_RECURSION_LIMIT + _FRAMES_PER_CALL * max_call_depth
    with _recursion_lock:
        if sys.getrecursionlimit() < needed:
            sys.setrecursionlimit(needed)


@dataclass
class EvaluationResult:
    """Result of evaluating a program."""
    geometry: Optional[Geometry]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    tagged: List[Geometry] = field(default_factory=list)
    echoes: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(d.severity == ErrorSeverity.ERROR for d in self.diagnostics)

    @property
    def errors(self) -> List[dict]:
        return [d.to_dict() for d in self.diagnostics if d.severity == ErrorSeverity.ERROR]


class Interpreter:
    """
    Tree-walking interpreter.

    Evaluates AST nodes by dispatching to type-specific methods. One
    interpreter owns one EvaluationContext and is used for one evaluation.
    """

    def __init__(self, context: Optional[EvaluationContext] = None, kernel=None):
        """
        Initialize the interpreter.

        Args:
            context: Evaluation context; a fresh one when omitted
            kernel: Geometry engine module; the initialized default when omitted
        """
        self.context = context if context is not None else create_context()
        self.kernel = kernel if kernel is not None else ensure_initialized()
        self.functions = get_builtin_registry()
        self.modules = get_module_registry()
        self.context.global_scope.variables.setdefault("PI", number_val(math.pi))

    def run(self, statements: List[Statement]) -> EvaluationResult:
        """Evaluate a whole program; any error means no geometry."""
        ctx = self.context
        geometry = None
        _reserve_call_depth(ctx.max_call_depth)
        try:
            operands = self.execute_statements(statements, report_progress=True)
            if ctx.root_results:
                operands = list(ctx.root_results)
            geometry = self._union(operands, NO_SPAN)
        except EvaluationError as e:
            ctx.add_error(e)
        except RecursionError:
            ctx.add_error(error_call_depth(ctx.max_call_depth, NO_SPAN))
        except (ValueError, ArithmeticError) as e:
            logger.debug("numeric failure during evaluation: %s", e)
            ctx.add_error(error_runtime(f"numeric error: {e}", NO_SPAN))

        if ctx.has_errors:
            geometry = None
        return EvaluationResult(
            geometry=geometry,
            diagnostics=list(ctx.diagnostics.diagnostics),
            tagged=list(ctx.tagged),
            echoes=list(ctx.echoes),
        )

    # =========================================================================
    # Statement Execution
    # =========================================================================

    def execute_statements(self, statements: List[Statement],
                           report_progress: bool = False) -> List[Geometry]:
        """
        Execute a statement list in the current scope.

        Function and module definitions are hoisted first; everything else
        runs in order. Returns one geometry per statement that produced one.
        A runtime error aborts only the statement it occurred in.
        """
        ctx = self.context
        self._hoist(statements)
        results = []
        total = len(statements)
        for i, stmt in enumerate(statements):
            if ctx.diagnostics.should_stop:
                break
            try:
                geometry = self.execute(stmt)
            except EvaluationError as e:
                ctx.add_error(e)
                continue
            finally:
                if report_progress and total:
                    ctx.report_progress((i + 1) / total, f"statement {i + 1} of {total}")
            if geometry is not None:
                results.append(geometry)
        return results

    def execute(self, stmt: Statement) -> Optional[Geometry]:
        """Execute one statement, applying its modifier sigil if any."""
        ctx = self.context
        modifier = getattr(stmt, "modifier", None)
        if modifier == "*":
            return None
        if modifier == "!":
            ctx.root_depth += 1
            try:
                geometry = self._execute_statement(stmt)
            finally:
                ctx.root_depth -= 1
            if geometry is not None:
                ctx.root_results.append(geometry)
            return geometry

        geometry = self._execute_statement(stmt)
        if modifier in ("#", "%") and geometry is not None:
            geometry.modifier = modifier
            ctx.tagged.append(geometry)
        return geometry

    def _execute_statement(self, stmt: Statement) -> Optional[Geometry]:
        if isinstance(stmt, ModuleInvocation):
            return self._execute_invocation(stmt)
        elif isinstance(stmt, Assignment):
            self._execute_assignment(stmt)
            return None
        elif isinstance(stmt, (FunctionDef, ModuleDef)):
            return None  # hoisted
        elif isinstance(stmt, IfStatement):
            return self._execute_if(stmt)
        elif isinstance(stmt, ForStatement):
            return self._execute_for(stmt)
        elif isinstance(stmt, LetStatement):
            return self._execute_let(stmt)
        elif isinstance(stmt, Block):
            return self._execute_block(stmt)
        else:
            raise error_runtime(f"unknown statement type: {type(stmt).__name__}", stmt.span)

    def _hoist(self, statements: List[Statement]) -> None:
        """Define every function and module of a statement list up front."""
        scope = self.context.current_scope
        for stmt in statements:
            if isinstance(stmt, FunctionDef):
                scope.define_function(FunctionClosure(stmt.name, stmt.parameters, stmt.body, scope))
            elif isinstance(stmt, ModuleDef):
                scope.define_module(ModuleClosure(stmt.name, stmt.parameters, stmt.body, scope))

    def _execute_assignment(self, stmt: Assignment) -> None:
        self.context.set_variable(stmt.name, self._evaluate(stmt.value))

    def _execute_if(self, stmt: IfStatement) -> Optional[Geometry]:
        if self._evaluate(stmt.condition).is_truthy():
            return self.execute(stmt.then_branch)
        if stmt.else_branch is not None:
            return self.execute(stmt.else_branch)
        return None

    def _execute_for(self, stmt: ForStatement) -> Optional[Geometry]:
        results: List[Geometry] = []
        self._for_each(stmt.bindings, 0, stmt.body, results)
        return self._union(results, stmt.span)

    def _for_each(self, bindings: List[Binding], index: int, body: Statement,
                  results: List[Geometry]) -> None:
        """Iterate binding `index`; later bindings nest inside earlier ones."""
        ctx = self.context
        binding = bindings[index]
        iterable = self._evaluate(binding.value)
        for item in self._iterate(iterable, binding.span):
            ctx.check_cancelled()
            if ctx.diagnostics.should_stop:
                return
            with ctx.new_scope("for"):
                ctx.set_variable(binding.name, item)
                if index + 1 < len(bindings):
                    self._for_each(bindings, index + 1, body, results)
                    continue
                try:
                    geometry = self.execute(body)
                except EvaluationError as e:
                    # Skip this iteration only
                    ctx.add_error(e)
                    continue
                if geometry is not None:
                    results.append(geometry)

    def _execute_let(self, stmt: LetStatement) -> Optional[Geometry]:
        with self.context.new_scope("let"):
            self._bind_sequentially(stmt.bindings)
            return self.execute(stmt.body)

    def _execute_block(self, block: Block) -> Optional[Geometry]:
        with self.context.new_scope("block"):
            return self._union(self.execute_statements(block.statements), block.span)

    # --- Module invocation ---

    def _execute_invocation(self, node: ModuleInvocation) -> Optional[Geometry]:
        ctx = self.context
        ctx.check_cancelled()

        closure = ctx.current_scope.get_module(node.name)
        if closure is not None:
            return self._call_user_module(closure, node)

        builtin = self.modules.get_module(node.name)
        if builtin is None:
            raise error_undefined_module(node.name, node.span)

        args, named = self._evaluate_arguments(node.arguments, node.named_arguments)
        call = ModuleCall(self, node, args, named)
        try:
            return builtin.implementation(call)
        except RecursionError:
            raise
        except (ArgumentError, ArithmeticError) as e:
            raise error_invalid_argument(node.name, str(e), node.span)
        except (KernelError, ValueError, RuntimeError, OSError) as e:
            logger.debug("kernel rejected %s: %s", node.name, e)
            raise error_kernel_operation(node.name, str(e), node.span)

    def _call_user_module(self, closure: ModuleClosure, node: ModuleInvocation) -> Optional[Geometry]:
        ctx = self.context
        args, named = self._evaluate_arguments(node.arguments, node.named_arguments)
        caller = ctx.current_scope
        try:
            with ctx.enter_call(node.span):
                with ctx.new_scope(f"module {closure.name}", parent=closure.scope,
                                   caller=caller) as scope:
                    scope.children = ChildrenFrame(node.children, caller)
                    scope.set("$children", number_val(len(node.children)))
                    self._bind_parameters(f"module '{closure.name}'", closure.parameters,
                                          args, named, node.span)
                    return self._union(self.execute_statements(closure.body), node.span)
        except RecursionError:
            raise error_call_depth(ctx.max_call_depth, node.span)

    def child_operands(self, node: ModuleInvocation,
                       overrides: Optional[Dict[str, Value]] = None) -> List[Geometry]:
        """Evaluate the children of a built-in invocation, one result per statement."""
        with self.context.new_scope(f"{node.name} children") as scope:
            if overrides:
                scope.overrides.update(overrides)
            return self.execute_statements(node.children)

    def invoke_children(self, call: ModuleCall) -> Optional[Geometry]:
        """
        children(), children(i), children([i, j]) or children([a:b]).

        Child statements run in the scope they were written in, with the
        current scope as their dynamic caller.
        """
        ctx = self.context
        frame = ctx.current_scope.children_frame()
        if frame is None:
            return None
        statements = frame.statements

        selector = call.arg("index", 0)
        if selector is not None:
            indices = self._child_indices(selector, call.span)
            for i in indices:
                if i < 0 or i >= len(statements):
                    raise error_children_index(i, len(statements), call.span)
            statements = [statements[i] for i in indices]

        # Selected statements run as a group so hoisting sees all of them
        with ctx.new_scope("children", parent=frame.scope, caller=ctx.current_scope):
            return self._union(self.execute_statements(statements), call.span)

    def _child_indices(self, selector: Value, span: SourceSpan) -> List[int]:
        if selector.type == ValueType.NUMBER:
            return [self._child_index(selector.data, span)]
        if selector.type in (ValueType.VECTOR, ValueType.RANGE):
            indices = []
            for item in selector.elements():
                n = as_number(item)
                if n is None:
                    raise error_invalid_argument("children", "indices must be numbers", span)
                indices.append(self._child_index(n, span))
            return indices
        raise error_invalid_argument(
            "children", f"index must be a number, vector or range, got {selector.type.value}", span)

    @staticmethod
    def _child_index(n: float, span: SourceSpan) -> int:
        if not math.isfinite(n):
            raise error_invalid_argument("children", f"index must be finite, got {n}", span)
        return int(n)

    def iterate_children(self, node: ModuleInvocation,
                         bindings: List[Tuple[str, Value]]) -> List[Geometry]:
        """Evaluate a node's children once per combination of bindings."""
        ctx = self.context
        names = [name for name, _ in bindings]
        sequences = [list(self._iterate(value, node.span)) for _, value in bindings]
        results = []
        for combo in itertools.product(*sequences):
            ctx.check_cancelled()
            with ctx.new_scope("intersection_for"):
                for name, value in zip(names, combo):
                    ctx.set_variable(name, value)
                geometry = self._union(self.execute_statements(node.children), node.span)
            if geometry is not None:
                results.append(geometry)
        return results

    def _union(self, geometries: List[Geometry], span: SourceSpan) -> Optional[Geometry]:
        """Implicit union; None when nothing was produced."""
        if not geometries:
            return None
        if len(geometries) == 1:
            return geometries[0]
        try:
            return self.kernel.union(geometries)
        except KernelError as e:
            raise error_kernel_operation("union", str(e), span)

    # =========================================================================
    # Calls and Parameter Binding
    # =========================================================================

    def _evaluate_arguments(self, arguments: List[Expression],
                            named_arguments: Dict[str, Expression]) -> Tuple[List[Value], Dict[str, Value]]:
        args = [self._evaluate(arg) for arg in arguments]
        named = {name: self._evaluate(expr) for name, expr in named_arguments.items()}
        return args, named

    def _bind_parameters(self, label: str, parameters: List[Parameter], args: List[Value],
                         named: Dict[str, Value], span: SourceSpan) -> None:
        """
        Bind call arguments into the current scope.

        Positional arguments fill parameters in order, named ones by name.
        $-named arguments that are not parameters become per-call overrides.
        Defaults are evaluated in the callee scope, after earlier parameters.
        """
        ctx = self.context
        scope = ctx.current_scope
        names = [p.name for p in parameters]

        if len(args) > len(parameters):
            raise error_arity(
                f"{label} takes {len(parameters)} argument(s) but {len(args)} were given", span)
        for name, value in named.items():
            if name in names:
                if names.index(name) < len(args):
                    raise error_arity(f"{label} got multiple values for argument '{name}'", span)
            elif is_special_name(name):
                scope.overrides[name] = value
            else:
                raise error_arity(f"{label} got an unexpected argument '{name}'", span)

        for i, param in enumerate(parameters):
            if i < len(args):
                value = args[i]
            elif param.name in named:
                value = named[param.name]
            elif param.default_value is not None:
                value = self._evaluate(param.default_value)
            else:
                raise error_arity(f"{label} is missing argument '{param.name}'", span)
            scope.set(param.name, value)

    def _call_user_function(self, closure: FunctionClosure, args: List[Value],
                            named: Dict[str, Value], span: SourceSpan) -> Value:
        ctx = self.context
        ctx.check_cancelled()
        caller = ctx.current_scope
        try:
            with ctx.enter_call(span):
                with ctx.new_scope(f"function {closure.name}", parent=closure.scope, caller=caller):
                    self._bind_parameters(f"function '{closure.name}'", closure.parameters,
                                          args, named, span)
                    return self._evaluate(closure.body)
        except RecursionError:
            raise error_call_depth(ctx.max_call_depth, span)

    def _call_builtin_function(self, func: BuiltinFunction, args: List[Value],
                               named: Dict[str, Value], span: SourceSpan) -> Value:
        try:
            bound = func.bind(args, named)
        except TypeError as e:
            raise error_arity(str(e), span)
        try:
            return func(*bound)
        except (ValueError, ArithmeticError) as e:
            raise error_invalid_argument(func.name, str(e), span)

    def _bind_sequentially(self, bindings: List[Binding]) -> None:
        """let-style bindings: each one sees the ones before it."""
        for binding in bindings:
            self.context.set_variable(binding.name, self._evaluate(binding.value))

    def _iterate(self, value: Value, span: SourceSpan) -> Iterator[Value]:
        """Iterate a for/comprehension source; ranges stay lazy."""
        if value.type == ValueType.RANGE:
            return (number_val(x) for x in value.data)
        if value.type == ValueType.VECTOR:
            return iter(value.data)
        if value.type == ValueType.STRING:
            return (string_val(ch) for ch in value.data)
        if value.type in (ValueType.NUMBER, ValueType.BOOL):
            return iter([value])
        raise error_type_mismatch("for", value.type.value, None, span)

    # =========================================================================
    # Expression Evaluation
    # =========================================================================

    def evaluate(self, expr: Expression) -> Value:
        """Evaluate an expression in the current scope."""
        return self._evaluate(expr)

    def _evaluate(self, expr: Expression) -> Value:
        """Evaluate an expression to produce a Value."""
        if isinstance(expr, Literal):
            return from_python(expr.value)
        elif isinstance(expr, Identifier):
            return self._eval_identifier(expr)
        elif isinstance(expr, BinaryOp):
            return self._eval_binary_op(expr)
        elif isinstance(expr, UnaryOp):
            return self._eval_unary_op(expr)
        elif isinstance(expr, Ternary):
            if self._evaluate(expr.condition).is_truthy():
                return self._evaluate(expr.true_branch)
            return self._evaluate(expr.false_branch)
        elif isinstance(expr, FunctionCall):
            return self._eval_function_call(expr)
        elif isinstance(expr, IndexAccess):
            return self._eval_index_access(expr)
        elif isinstance(expr, MemberAccess):
            return self._eval_member_access(expr)
        elif isinstance(expr, VectorLiteral):
            return vector_val([self._evaluate(e) for e in expr.elements])
        elif isinstance(expr, RangeLiteral):
            return self._eval_range(expr)
        elif isinstance(expr, LetExpression):
            with self.context.new_scope("let"):
                self._bind_sequentially(expr.bindings)
                return self._evaluate(expr.body)
        elif isinstance(expr, ListComprehension):
            return self._eval_list_comprehension(expr)
        else:
            raise error_runtime(f"unknown expression type: {type(expr).__name__}", expr.span)

    def _eval_identifier(self, ident: Identifier) -> Value:
        """Evaluate an identifier (variable lookup)."""
        value = self.context.get_variable(ident.name)
        if value is not None:
            return value
        if is_special_name(ident.name):
            self.context.add_warning(f"unknown special variable '{ident.name}'", ident.span)
            return UNDEF
        raise error_undefined_variable(ident.name, ident.span)

    def _eval_binary_op(self, op: BinaryOp) -> Value:
        """Evaluate a binary operation."""
        # Short-circuit for logical operators
        if op.operator == TokenType.AND:
            return bool_val(self._evaluate(op.left).is_truthy()
                            and self._evaluate(op.right).is_truthy())
        if op.operator == TokenType.OR:
            return bool_val(self._evaluate(op.left).is_truthy()
                            or self._evaluate(op.right).is_truthy())

        left = self._evaluate(op.left)
        right = self._evaluate(op.right)
        result = self._binary(op.operator, left, right)
        if result is None:
            raise error_type_mismatch(_OPERATOR_TEXT.get(op.operator, str(op.operator)),
                                      left.type.value, right.type.value, op.span)
        return result

    def _binary(self, operator: TokenType, left: Value, right: Value) -> Optional[Value]:
        """Apply a binary operator; None when the operand types do not support it."""
        if operator == TokenType.EQ:
            return bool_val(values_equal(left, right))
        if operator == TokenType.NE:
            return bool_val(not values_equal(left, right))

        lt, rt = left.type, right.type
        if operator in (TokenType.LT, TokenType.LE, TokenType.GT, TokenType.GE):
            if lt == rt and lt in (ValueType.NUMBER, ValueType.STRING, ValueType.BOOL):
                a, b = left.data, right.data
                if operator == TokenType.LT:
                    return bool_val(a < b)
                if operator == TokenType.LE:
                    return bool_val(a <= b)
                if operator == TokenType.GT:
                    return bool_val(a > b)
                return bool_val(a >= b)
            return None

        if lt == ValueType.NUMBER and rt == ValueType.NUMBER:
            return self._arithmetic(operator, left.data, right.data)

        if operator in (TokenType.PLUS, TokenType.MINUS):
            if lt == ValueType.VECTOR and rt == ValueType.VECTOR:
                items = []
                for a, b in zip(left.data, right.data):
                    r = self._binary(operator, a, b)
                    if r is None:
                        return None
                    items.append(r)
                return vector_val(items)
            return None

        if operator == TokenType.STAR:
            if lt == ValueType.NUMBER and rt == ValueType.VECTOR:
                return self._scale_vector(right, left, operator, scalar_first=True)
            if lt == ValueType.VECTOR and rt == ValueType.NUMBER:
                return self._scale_vector(left, right, operator)
            if lt == ValueType.VECTOR and rt == ValueType.VECTOR:
                return self._vector_product(left, right)
            return None

        if operator == TokenType.SLASH:
            if lt == ValueType.VECTOR and rt == ValueType.NUMBER:
                return self._scale_vector(left, right, operator)
            return None

        return None

    def _arithmetic(self, operator: TokenType, a: float, b: float) -> Optional[Value]:
        if operator == TokenType.PLUS:
            return number_val(a + b)
        if operator == TokenType.MINUS:
            return number_val(a - b)
        if operator == TokenType.STAR:
            return number_val(a * b)
        if operator == TokenType.SLASH:
            if b == 0:
                if a == 0 or math.isnan(a):
                    return number_val(math.nan)
                return number_val(math.copysign(math.inf, a) * math.copysign(1.0, b))
            return number_val(a / b)
        if operator == TokenType.PERCENT:
            if b == 0 or math.isinf(a):
                return number_val(math.nan)
            return number_val(math.fmod(a, b))
        if operator == TokenType.CARET:
            try:
                return number_val(math.pow(a, b))
            except ValueError:
                return number_val(math.nan)
            except OverflowError:
                return number_val(math.inf)
        return None

    def _scale_vector(self, vector: Value, scalar: Value, operator: TokenType,
                      scalar_first: bool = False) -> Optional[Value]:
        items = []
        for item in vector.data:
            r = self._binary(operator, scalar, item) if scalar_first else self._binary(operator, item, scalar)
            if r is None:
                return None
            items.append(r)
        return vector_val(items)

    def _vector_product(self, left: Value, right: Value) -> Optional[Value]:
        """Dot product, matrix-vector, vector-matrix or matrix-matrix product."""
        def is_matrix(v: Value) -> bool:
            return bool(v.data) and all(e.type == ValueType.VECTOR for e in v.data)

        def dot(a: List[Value], b: List[Value]) -> Optional[Value]:
            if len(a) != len(b):
                return None
            total = 0.0
            for x, y in zip(a, b):
                if x.type != ValueType.NUMBER or y.type != ValueType.NUMBER:
                    return None
                total += x.data * y.data
            return number_val(total)

        def column(m: Value, j: int) -> Optional[List[Value]]:
            col = []
            for row in m.data:
                if j >= len(row.data):
                    return None
                col.append(row.data[j])
            return col

        left_matrix, right_matrix = is_matrix(left), is_matrix(right)
        if not left_matrix and not right_matrix:
            return dot(left.data, right.data)
        if left_matrix and not right_matrix:
            rows = [dot(row.data, right.data) for row in left.data]
            return None if None in rows else vector_val(rows)
        width = len(right.data[0].data)
        columns = [column(right, j) for j in range(width)]
        if any(c is None for c in columns):
            return None
        if not left_matrix:
            items = [dot(left.data, c) for c in columns]
            return None if None in items else vector_val(items)
        product = []
        for row in left.data:
            items = [dot(row.data, c) for c in columns]
            if None in items:
                return None
            product.append(vector_val(items))
        return vector_val(product)

    def _eval_unary_op(self, op: UnaryOp) -> Value:
        """Evaluate a unary operation."""
        operand = self._evaluate(op.operand)
        if op.operator == TokenType.BANG:
            return bool_val(not operand.is_truthy())
        result = self._negate(operand) if op.operator == TokenType.MINUS else None
        if op.operator == TokenType.PLUS and operand.type in (ValueType.NUMBER, ValueType.VECTOR):
            result = operand
        if result is None:
            raise error_type_mismatch(_OPERATOR_TEXT.get(op.operator, "?"),
                                      operand.type.value, None, op.span)
        return result

    def _negate(self, value: Value) -> Optional[Value]:
        if value.type == ValueType.NUMBER:
            return number_val(-value.data)
        if value.type == ValueType.VECTOR:
            items = [self._negate(v) for v in value.data]
            return None if None in items else vector_val(items)
        return None

    def _eval_function_call(self, call: FunctionCall) -> Value:
        """Evaluate a function call: user functions shadow built-ins."""
        if not isinstance(call.callee, Identifier):
            raise error_runtime("only named functions can be called", call.span)
        name = call.callee.name
        args, named = self._evaluate_arguments(call.arguments, call.named_arguments)

        closure = self.context.current_scope.get_function(name)
        if closure is not None:
            return self._call_user_function(closure, args, named, call.span)

        builtin = self.functions.get_function(name)
        if builtin is None:
            raise error_undefined_function(name, call.span)
        return self._call_builtin_function(builtin, args, named, call.span)

    def _eval_index_access(self, access: IndexAccess) -> Value:
        target = self._evaluate(access.object)
        index = self._evaluate(access.index)
        if target.type == ValueType.UNDEF:
            return UNDEF
        if index.type != ValueType.NUMBER:
            raise error_type_mismatch("[]", target.type.value, index.type.value, access.span)
        return self._element_at(target, index.data, access.span)

    def _eval_member_access(self, access: MemberAccess) -> Value:
        target = self._evaluate(access.object)
        if access.member not in _MEMBER_INDEX:
            raise error_runtime(f"unknown member '.{access.member}'", access.span)
        if target.type == ValueType.UNDEF:
            return UNDEF
        return self._element_at(target, _MEMBER_INDEX[access.member], access.span)

    def _element_at(self, target: Value, index: float, span: SourceSpan) -> Value:
        """Element lookup; out-of-range indices give undef."""
        if math.isnan(index) or math.isinf(index):
            return UNDEF
        i = int(math.floor(index))
        if target.type == ValueType.VECTOR:
            return target.data[i] if 0 <= i < len(target.data) else UNDEF
        if target.type == ValueType.STRING:
            return string_val(target.data[i]) if 0 <= i < len(target.data) else UNDEF
        if target.type == ValueType.RANGE:
            r = target.data
            return number_val(r.start + i * r.step) if 0 <= i < len(r) else UNDEF
        raise error_type_mismatch("[]", target.type.value, None, span)

    def _eval_range(self, expr: RangeLiteral) -> Value:
        start = self._evaluate(expr.start)
        end = self._evaluate(expr.end)
        step = self._evaluate(expr.step) if expr.step is not None else number_val(1)
        for part, value in (("start", start), ("step", step), ("end", end)):
            if value.type != ValueType.NUMBER:
                raise error_invalid_range(f"range {part} must be a number, got {value.type.value}",
                                          expr.span)
            if math.isnan(value.data):
                raise error_invalid_range(f"range {part} is not a number", expr.span)
        if math.isinf(start.data) or math.isinf(end.data):
            raise error_invalid_range("range bounds must be finite", expr.span)
        value = range_val(start.data, step.data, end.data)
        if value.data.count() > MAX_RANGE_ELEMENTS:
            raise error_invalid_range(
                f"too many elements (more than {MAX_RANGE_ELEMENTS})", expr.span)
        return value

    def _eval_list_comprehension(self, comp: ListComprehension) -> Value:
        """Materialize a list comprehension; each clause opens a scope."""
        items: List[Value] = []
        self._comprehend(comp.clauses, 0, comp.element_expr, items)
        return vector_val(items)

    def _comprehend(self, clauses: List[ComprehensionClause], index: int,
                    element: Expression, items: List[Value]) -> None:
        ctx = self.context
        if index == len(clauses):
            items.append(self._evaluate(element))
            return
        clause = clauses[index]
        iterable = self._evaluate(clause.iterable)
        for item in self._iterate(iterable, clause.span):
            ctx.check_cancelled()
            with ctx.new_scope("comprehension"):
                ctx.set_variable(clause.variable, item)
                if all(self._evaluate(c).is_truthy() for c in clause.conditions):
                    self._comprehend(clauses, index + 1, element, items)


# =============================================================================
# Convenience Functions
# =============================================================================

def evaluate(statements: List[Statement], context: Optional[EvaluationContext] = None,
             kernel=None) -> EvaluationResult:
    """Evaluate parsed statements with a fresh (or given) context."""
    return Interpreter(context, kernel).run(statements)


def run_source(source: str, t: float = 0.0, filename: Optional[str] = None,
               max_call_depth: int = 100, max_errors: int = 20,
               context: Optional[EvaluationContext] = None, kernel=None) -> EvaluationResult:
    """
    Tokenize, parse and evaluate source text in one call.

    This is the simplest way to run a program:

        from scadkit.dsl.runtime import run_source

        result = run_source("difference() { cube(10, center=true); sphere(6); }")
        if result.success:
            mesh = kernel.to_mesh(result.geometry)
        else:
            for error in result.errors:
                print(error["message"])

    Syntax errors stop before evaluation; the result then carries only the
    parse diagnostics.
    """
    from ..lexer import tokenize
    from ..parser import parse

    tokens = tokenize(source, filename)
    parsed = parse(tokens, filename, source, max_errors=max_errors)
    if not parsed.success:
        return EvaluationResult(geometry=None, diagnostics=list(parsed.diagnostics))

    if context is None:
        context = create_context(source, t=t, max_call_depth=max_call_depth,
                                 max_errors=max_errors)
    result = evaluate(parsed.statements, context, kernel)
    # Parser warnings come first
    result.diagnostics = list(parsed.diagnostics) + result.diagnostics
    return result

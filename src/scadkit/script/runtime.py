"""
Runs scripting-language programs.

A script is Python code executed in a restricted namespace that holds
:class:`Shape`, the functional API, ``math`` and the animation value
``t``. Only ``scadkit`` and ``math`` may be imported. The script must
assign a Shape, or a list of Shapes, to ``result``::

    from scadkit.script import Shape

    body = Shape.cube([30, 20, 10], center=True)
    result = body.subtract(Shape.cylinder(h=12, r=4, center=True, fn=32))

The shapes are compiled to statements and evaluated by the same
interpreter as source text.
"""

import builtins
import logging
import math
import sys
from typing import Any, Dict, List, Optional

from . import functional
from .shape import Shape
from ..dsl.ast import Statement
from ..dsl.errors import (
    EvaluationError, JobError, ScriptProtocolError, error_runtime, error_script_protocol,
)
from ..dsl.runtime import CancellationToken, EvaluationResult, create_context, evaluate
from ..dsl.tokens import SourceLocation, SourceSpan

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "<script>"

ALLOWED_MODULES = ("math", "scadkit")

SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
    "int", "isinstance", "len", "list", "map", "max", "min", "pow", "range",
    "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
    "Exception", "ValueError", "TypeError", "IndexError", "KeyError", "ZeroDivisionError",
)


def _restricted_import(name, globals=None, locals=None, fromlist=(), level=0):
    root = name.split(".")[0]
    if level != 0 or root not in ALLOWED_MODULES:
        raise ImportError(f"module '{name}' is not allowed; only scadkit and math can be imported")
    return __import__(name, globals, locals, fromlist, level)


def _namespace(t: float) -> Dict[str, Any]:
    safe = {name: getattr(builtins, name) for name in SAFE_BUILTINS if hasattr(builtins, name)}
    safe["__import__"] = _restricted_import
    namespace: Dict[str, Any] = {
        "__builtins__": safe,
        "__name__": "__script__",
        "Shape": Shape,
        "math": math,
        "t": float(t),
    }
    for name in functional.__all__:
        namespace[name] = getattr(functional, name)
    return namespace


def _line_span(line: Optional[int], column: Optional[int] = None) -> SourceSpan:
    loc = SourceLocation(line or 0, column or 0, 0)
    return SourceSpan(loc, loc)


def _error_line(exc: BaseException) -> Optional[int]:
    """Innermost script line in the traceback."""
    line = None
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_code.co_filename == SCRIPT_FILENAME:
            line = tb.tb_lineno
        tb = tb.tb_next
    return line


def _cancel_tracer(token: CancellationToken):
    """A trace function that checks `token` on every script line."""

    def local(frame, event, arg):
        if event == "line":
            token.check()
        return local

    def trace(frame, event, arg):
        if frame.f_code.co_filename != SCRIPT_FILENAME:
            return None
        token.check()
        return local

    return trace


def _collect_result(value: Any) -> List[Statement]:
    if isinstance(value, Shape):
        return [value.node]
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, Shape) for v in value):
        return [v.node for v in value]
    raise error_script_protocol(
        f"'result' must be a Shape or a list of Shapes, got {type(value).__name__}")


def compile_script(code: str, t: float = 0.0,
                   cancel_token: Optional[CancellationToken] = None) -> List[Statement]:
    """
    Execute a script and return the statements its `result` describes.

    Raises EvaluationError for exceptions in the script, ScriptProtocolError
    when no usable `result` was assigned, and the token's JobError when the
    script is cancelled.
    """
    try:
        compiled = compile(code, SCRIPT_FILENAME, "exec")
    except SyntaxError as exc:
        raise error_runtime(f"syntax error in script: {exc.msg}",
                            _line_span(exc.lineno, exc.offset)) from exc

    namespace = _namespace(t)
    previous = sys.gettrace()
    if cancel_token is not None:
        sys.settrace(_cancel_tracer(cancel_token))
    try:
        exec(compiled, namespace)
    except (JobError, EvaluationError):
        raise
    except Exception as exc:
        line = _error_line(exc)
        logger.debug("script raised %s at line %s", type(exc).__name__, line)
        raise error_runtime(f"{type(exc).__name__}: {exc}", _line_span(line)) from exc
    finally:
        if cancel_token is not None:
            sys.settrace(previous)

    if "result" not in namespace:
        raise error_script_protocol("script must assign a Shape to 'result'")
    return _collect_result(namespace["result"])


def run_script(code: str, t: float = 0.0, max_call_depth: int = 100, max_errors: int = 20,
               cancel_token: Optional[CancellationToken] = None, kernel=None) -> EvaluationResult:
    """Compile a script and evaluate its result; script errors become diagnostics."""
    ctx = create_context(code, t=t, max_call_depth=max_call_depth, max_errors=max_errors,
                         cancel_token=cancel_token)
    try:
        statements = compile_script(code, t, cancel_token)
    except (EvaluationError, ScriptProtocolError) as e:
        ctx.add_error(e)
        return EvaluationResult(geometry=None, diagnostics=list(ctx.diagnostics.diagnostics))
    return evaluate(statements, ctx, kernel)

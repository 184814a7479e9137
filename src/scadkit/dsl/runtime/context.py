"""
Execution context for the scadkit interpreter.

Manages the scope chain (lexical for names, dynamic for $-variables),
tracks call depth and cancellation, and collects diagnostics, echo output
and modifier-tagged geometry.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from contextlib import contextmanager

from .values import Value, FunctionClosure, ModuleClosure, function_val, module_val, number_val
from ..ast import Statement
from ..errors import (
    Diagnostic, DiagnosticCollector, DslError, ErrorCategory, ErrorSeverity,
    JobError, error_call_depth,
)
from ..tokens import SourceSpan, is_special_name

logger = logging.getLogger(__name__)


# Built-in defaults for the reserved special variables
SPECIAL_DEFAULTS: Dict[str, float] = {
    "$fn": 0.0,
    "$fa": 12.0,
    "$fs": 2.0,
    "$t": 0.0,
}


@dataclass
class ChildrenFrame:
    """The child statements of a user-module invocation and where they were written."""
    statements: List[Statement]
    scope: "Scope"


@dataclass(eq=False)
class Scope:
    """
    A single scope containing bindings.

    Names resolve through `parent` (lexical). $-variables resolve through
    `caller` when set (dynamic), falling back to `parent` otherwise.
    """
    variables: Dict[str, Value] = field(default_factory=dict)
    functions: Dict[str, Value] = field(default_factory=dict)
    modules: Dict[str, Value] = field(default_factory=dict)
    specials: Dict[str, Value] = field(default_factory=dict)   # $x = ... in this scope
    overrides: Dict[str, Value] = field(default_factory=dict)  # m($x = ...) at the call
    parent: Optional["Scope"] = None
    caller: Optional["Scope"] = None
    children: Optional[ChildrenFrame] = None
    name: str = "anonymous"

    def get(self, name: str) -> Optional[Value]:
        """Resolve `name`, innermost scope first."""
        scope = self
        while scope is not None:
            if name in scope.variables:
                return scope.variables[name]
            scope = scope.parent
        return None

    def set(self, name: str, value: Value) -> None:
        """Bind `name` here; outer bindings are shadowed, not changed."""
        if is_special_name(name):
            self.specials[name] = value
        else:
            self.variables[name] = value

    def get_special(self, name: str) -> Optional[Value]:
        """Look up a $-variable along the dynamic chain."""
        scope = self
        while scope is not None:
            if name in scope.overrides:
                return scope.overrides[name]
            if name in scope.specials:
                return scope.specials[name]
            scope = scope.caller if scope.caller is not None else scope.parent
        return None

    def get_function(self, name: str) -> Optional[FunctionClosure]:
        scope = self
        while scope is not None:
            if name in scope.functions:
                return scope.functions[name].data
            scope = scope.parent
        return None

    def get_module(self, name: str) -> Optional[ModuleClosure]:
        scope = self
        while scope is not None:
            if name in scope.modules:
                return scope.modules[name].data
            scope = scope.parent
        return None

    def define_function(self, closure: FunctionClosure) -> None:
        self.functions[closure.name] = function_val(closure)

    def define_module(self, closure: ModuleClosure) -> None:
        self.modules[closure.name] = module_val(closure)

    def children_frame(self) -> Optional[ChildrenFrame]:
        """The children of the nearest enclosing user-module invocation."""
        scope = self
        while scope is not None:
            if scope.children is not None:
                return scope.children
            scope = scope.parent
        return None

    def contains(self, name: str) -> bool:
        """True when `name` resolves anywhere up the chain."""
        return self.get(name) is not None


class CancellationToken:
    """
    Cooperative cancellation flag shared between a job and its evaluation.

    The party that cancels supplies the JobError to raise, so a timeout and
    a user cancel surface as different error classes.
    """

    def __init__(self):
        self._event = threading.Event()
        self._error: Optional[JobError] = None
        self._lock = threading.Lock()

    def cancel(self, error: JobError) -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._error = error
            self._event.set()
            return True

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Optional[JobError]:
        return self._error

    def check(self) -> None:
        """Raise the cancellation error if cancellation was requested."""
        if self._event.is_set():
            raise self._error


@dataclass
class EvaluationContext:
    """
    The full execution context for one evaluation.

    Tracks:
    - Scope chain
    - Special-variable defaults ($t comes from the job)
    - Call depth and cancellation
    - Diagnostics, echo output, tagged and root geometry
    """
    global_scope: Scope = field(default_factory=lambda: Scope(name="global"))
    current_scope: Optional[Scope] = None

    special_defaults: Dict[str, float] = field(default_factory=lambda: dict(SPECIAL_DEFAULTS))
    max_call_depth: int = 100
    call_depth: int = 0
    cancel_token: Optional[CancellationToken] = None

    diagnostics: DiagnosticCollector = field(default_factory=DiagnosticCollector)
    source_lines: List[str] = field(default_factory=list)

    echoes: List[str] = field(default_factory=list)
    tagged: List[Any] = field(default_factory=list)        # Geometry with a '#' or '%' tag
    root_results: List[Any] = field(default_factory=list)  # Geometry under a '!' modifier
    root_depth: int = 0

    on_progress: Optional[Callable[[float, str], None]] = None

    def __post_init__(self):
        if self.current_scope is None:
            self.current_scope = self.global_scope

    # --- Name resolution ---

    def get_variable(self, name: str) -> Optional[Value]:
        """Look up a variable; $-names use the dynamic chain and defaults."""
        if is_special_name(name):
            return self.get_special(name)
        return self.current_scope.get(name)

    def get_special(self, name: str) -> Optional[Value]:
        value = self.current_scope.get_special(name)
        if value is not None:
            return value
        if name in self.special_defaults:
            return number_val(self.special_defaults[name])
        return None

    def set_variable(self, name: str, value: Value) -> None:
        """Define a variable in the current scope."""
        self.current_scope.set(name, value)

    @contextmanager
    def new_scope(self, name: str = "block", parent: Optional[Scope] = None,
                  caller: Optional[Scope] = None):
        """
        Enter a child scope for the duration of a `with` block.

        Usage:
            with ctx.new_scope("for-loop"):
                # bindings local to this scope
                ctx.set_variable("i", number_val(0))

        Pass `parent` for a scope whose lexical parent is not the current
        scope (closures, children()), and `caller` to link the dynamic chain.
        """
        old_scope = self.current_scope
        self.current_scope = Scope(parent=parent if parent is not None else old_scope,
                                   caller=caller, name=name)
        try:
            yield self.current_scope
        finally:
            self.current_scope = old_scope

    @contextmanager
    def enter_call(self, span: SourceSpan):
        """Track call depth around a user function or module call."""
        if self.call_depth >= self.max_call_depth:
            raise error_call_depth(self.max_call_depth, span)
        self.call_depth += 1
        try:
            yield
        finally:
            self.call_depth -= 1

    def check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.check()

    def report_progress(self, fraction: float, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(fraction, message)

    # --- Diagnostics ---

    def add_error(self, error: DslError) -> None:
        """Record an evaluation error, attaching the offending source line."""
        diag = error.diagnostic
        if diag.source_line is None and diag.has_location:
            diag.source_line = self._get_source_line(diag.span.start.line)
        logger.debug("evaluation error %s: %s", diag.code, diag.message)
        self.diagnostics.add(diag)

    def add_warning(self, message: str, span: SourceSpan) -> None:
        """Record a non-fatal runtime diagnostic."""
        self.diagnostics.add(Diagnostic(
            code="W400",
            message=message,
            severity=ErrorSeverity.WARNING,
            span=span,
            category=ErrorCategory.RUNTIME,
            source_line=self._get_source_line(span.start.line),
        ))

    def add_echo(self, message: str, span: SourceSpan) -> None:
        """Record echo() output."""
        self.echoes.append(message)
        logger.info("ECHO: %s", message)
        self.diagnostics.add(Diagnostic(
            code="I400",
            message=f"ECHO: {message}",
            severity=ErrorSeverity.INFO,
            span=span,
            category=ErrorCategory.RUNTIME,
        ))

    def _get_source_line(self, line_num: int) -> Optional[str]:
        """1-based source line for excerpts, or None."""
        if 1 <= line_num <= len(self.source_lines):
            return self.source_lines[line_num - 1]
        return None

    @property
    def has_errors(self) -> bool:
        """True once any error diagnostic has been recorded."""
        return self.diagnostics.has_errors


def create_context(
    source: str = "",
    t: float = 0.0,
    max_call_depth: int = 100,
    max_errors: int = 20,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[Callable[[float, str], None]] = None,
) -> EvaluationContext:
    """
    Create a fresh EvaluationContext for one evaluation.

    Args:
        source: The source code (for error messages)
        t: Animation parameter, becomes the $t default
        max_call_depth: Recursion limit for user functions and modules
        max_errors: Stop collecting after this many errors
        cancel_token: Checked between evaluation steps
        on_progress: Called with (fraction, message) while evaluating
    """
    defaults = dict(SPECIAL_DEFAULTS)
    defaults["$t"] = float(t)
    return EvaluationContext(
        special_defaults=defaults,
        max_call_depth=max_call_depth,
        cancel_token=cancel_token,
        diagnostics=DiagnosticCollector(max_errors=max_errors),
        source_lines=source.split('\n') if source else [],
        on_progress=on_progress,
    )

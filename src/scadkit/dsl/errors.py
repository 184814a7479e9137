"""
Exceptions and diagnostics for scadkit.

Error code ranges:
- E0xx: Lexer errors      (syntax)
- E1xx: Parser errors     (syntax)
- E4xx: Evaluation errors (runtime)
- E5xx: Job/kernel errors (system)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List
from .tokens import SourceSpan, NO_SPAN


class ErrorSeverity(Enum):
    """How serious a diagnostic is."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorCategory(Enum):
    """Where an error was detected."""
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    SYSTEM = "system"


@dataclass
class Diagnostic:
    """One reported problem, with where it happened and how bad it is."""
    code: str
    message: str
    severity: ErrorSeverity
    span: SourceSpan = NO_SPAN
    category: ErrorCategory = ErrorCategory.SYNTAX
    source_line: Optional[str] = None
    hints: List[str] = field(default_factory=list)

    @property
    def has_location(self) -> bool:
        return self.span.start.line > 0

    @property
    def line(self) -> Optional[int]:
        return self.span.start.line if self.has_location else None

    @property
    def column(self) -> Optional[int]:
        return self.span.start.column if self.has_location else None

    def _excerpt(self) -> List[str]:
        # source text with a caret run under the span
        start, end = self.span.start, self.span.end
        stop = end.column if end.line == start.line else len(self.source_line) + 1
        return [
            "  |",
            f"{start.line:>3} | {self.source_line}",
            "    | " + " " * (start.column - 1) + "^" * max(1, stop - start.column),
        ]

    def format(self, show_source: bool = True) -> str:
        """Render as `file:line:col: error[E101]: message`, plus excerpt and hints."""
        text = f"{self.severity.value}[{self.code}]: {self.message}"
        lines = [f"{self.span.start}: {text}" if self.has_location else text]
        if show_source and self.has_location and self.source_line is not None:
            lines.extend(self._excerpt())
        lines.extend(f"    = hint: {hint}" for hint in self.hints)
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Compact form used in evaluation responses."""
        out = {
            "message": self.message,
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
        }
        if self.has_location:
            out.update(line=self.span.start.line, column=self.span.start.column)
        return out


class DslError(Exception):
    """Base exception for scadkit errors."""

    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.message)

    @property
    def code(self) -> str:
        return self.diagnostic.code

    @property
    def category(self) -> ErrorCategory:
        return self.diagnostic.category

    def __str__(self) -> str:
        return self.diagnostic.format()


class LexerError(DslError):
    """Raised by the lexer (E0xx)."""
    pass


class ParserError(DslError):
    """Raised by the parser (E1xx)."""
    pass


class EvaluationError(DslError):
    """Error during evaluation (E4xx)."""
    pass


class JobError(DslError):
    """Error that aborts a whole job (E5xx)."""
    pass


class JobTimeoutError(JobError):
    """The job exceeded its time budget."""
    pass


class JobCancelledError(JobError):
    """The job was cancelled before it settled."""
    pass


class KernelInitError(JobError):
    """The geometry kernel could not be initialized."""
    pass


class WorkerCrashedError(JobError):
    """The off-thread execution context failed."""
    pass


class ScriptProtocolError(JobError):
    """A script did not produce a result the evaluator can consume."""
    pass


def _syntax(code: str, message: str, span: SourceSpan, source_line: str = None,
            hints: List[str] = None) -> Diagnostic:
    return Diagnostic(
        code=code,
        message=message,
        severity=ErrorSeverity.ERROR,
        span=span,
        category=ErrorCategory.SYNTAX,
        source_line=source_line,
        hints=hints or [],
    )


def _runtime(code: str, message: str, span: SourceSpan, hints: List[str] = None) -> EvaluationError:
    diag = Diagnostic(
        code=code,
        message=message,
        severity=ErrorSeverity.ERROR,
        span=span,
        category=ErrorCategory.RUNTIME,
        hints=hints or [],
    )
    return EvaluationError(diag)


def _system(error_class, code: str, message: str, hints: List[str] = None) -> JobError:
    diag = Diagnostic(
        code=code,
        message=message,
        severity=ErrorSeverity.ERROR,
        category=ErrorCategory.SYSTEM,
        hints=hints or [],
    )
    return error_class(diag)


# --- E0xx: lexing ---

def error_unexpected_character(char: str, span: SourceSpan, source_line: str = None) -> LexerError:
    """E001: a character that starts no token."""
    return LexerError(_syntax("E001", f"unexpected character '{char}'", span, source_line))


def error_unterminated_string(span: SourceSpan, source_line: str = None) -> LexerError:
    """E002: string runs into a newline or the end of input."""
    return LexerError(_syntax(
        "E002", "unterminated string literal", span, source_line,
        hints=["string literals must be closed with a matching '\"'"],
    ))


def error_unterminated_comment(span: SourceSpan, source_line: str = None) -> LexerError:
    """E004: block comment never closed."""
    return LexerError(_syntax(
        "E004", "unterminated multi-line comment (expected closing */)", span, source_line,
    ))


# --- E1xx: parsing ---

def error_unexpected_token(expected: str, found: str, span: SourceSpan,
                           source_line: str = None) -> ParserError:
    """E101: token does not fit the grammar here."""
    return ParserError(_syntax("E101", f"expected {expected}, found {found}", span, source_line))


def error_unexpected_eof(expected: str, span: SourceSpan) -> ParserError:
    """E102: input ended mid-construct."""
    return ParserError(_syntax("E102", f"unexpected end of file, expected {expected}", span))


def error_invalid_expression(span: SourceSpan, source_line: str = None) -> ParserError:
    """E103: no expression can start at this token."""
    return ParserError(_syntax("E103", "invalid expression", span, source_line))


def error_nesting_too_deep(span: SourceSpan) -> ParserError:
    """E104: Input nested deeper than the parser can follow."""
    return ParserError(_syntax("E104", "input is nested too deeply", span))


# --- Runtime error codes ---

def error_runtime(message: str, span: SourceSpan) -> EvaluationError:
    """E400: General runtime error."""
    return _runtime("E400", message, span)


def error_undefined_variable(name: str, span: SourceSpan) -> EvaluationError:
    """E401: Undefined variable."""
    return _runtime("E401", f"undefined variable '{name}'", span)


def error_undefined_function(name: str, span: SourceSpan) -> EvaluationError:
    """E402: Undefined function."""
    return _runtime("E402", f"undefined function '{name}'", span)


def error_undefined_module(name: str, span: SourceSpan) -> EvaluationError:
    """E403: Undefined module."""
    return _runtime("E403", f"undefined module '{name}'", span)


def error_arity(message: str, span: SourceSpan) -> EvaluationError:
    """E404: Wrong number or names of arguments."""
    return _runtime("E404", message, span)


def error_call_depth(limit: int, span: SourceSpan) -> EvaluationError:
    """E405: Recursion exceeded the call-depth limit."""
    return _runtime(
        "E405", f"maximum call depth of {limit} exceeded", span,
        hints=["check for recursion without a terminating condition"],
    )


def error_type_mismatch(operator: str, left: str, right: Optional[str], span: SourceSpan) -> EvaluationError:
    """E406: Operator applied to unsupported operand types."""
    if right is None:
        message = f"unsupported operand type for '{operator}': {left}"
    else:
        message = f"unsupported operand types for '{operator}': {left} and {right}"
    return _runtime("E406", message, span)


def error_invalid_range(message: str, span: SourceSpan) -> EvaluationError:
    """E407: Range with non-numeric bounds."""
    return _runtime("E407", f"invalid range: {message}", span)


def error_assertion_failed(message: str, span: SourceSpan) -> EvaluationError:
    """E408: assert() condition was false."""
    return _runtime("E408", f"assertion failed: {message}", span)


def error_empty_boolean(name: str, span: SourceSpan) -> EvaluationError:
    """E409: Explicit boolean operation without children."""
    return _runtime("E409", f"{name}() requires at least one child", span)


def error_children_index(index: int, count: int, span: SourceSpan) -> EvaluationError:
    """E410: children() index out of range."""
    return _runtime("E410", f"children() index {index} out of range (module has {count} children)", span)


def error_kernel_operation(name: str, detail: str, span: SourceSpan) -> EvaluationError:
    """E411: The geometry kernel rejected an operation."""
    return _runtime("E411", f"{name}() failed: {detail}", span)


def error_invalid_argument(name: str, detail: str, span: SourceSpan) -> EvaluationError:
    """E412: Argument has the wrong type or value."""
    return _runtime("E412", f"{name}(): {detail}", span)


# --- System error codes ---

def error_timeout(timeout_ms: int) -> JobTimeoutError:
    """E501: Job exceeded its timeout."""
    return _system(
        JobTimeoutError, "E501", f"evaluation timed out after {timeout_ms} ms",
        hints=["simplify the model or extend the timeout"],
    )


def error_cancelled(reason: str = "cancelled by user") -> JobCancelledError:
    """E502: Job was cancelled."""
    return _system(JobCancelledError, "E502", f"evaluation cancelled: {reason}")


def error_kernel_init(detail: str) -> KernelInitError:
    """E503: Kernel initialization failure."""
    return _system(KernelInitError, "E503", f"geometry kernel initialization failed: {detail}")


def error_worker_crashed(detail: str) -> WorkerCrashedError:
    """E504: Off-thread execution context failure."""
    return _system(WorkerCrashedError, "E504", f"worker failed: {detail}")


def error_script_protocol(detail: str) -> ScriptProtocolError:
    """E505: Script did not produce a usable result."""
    return _system(ScriptProtocolError, "E505", detail)


class DiagnosticCollector:
    """Accumulates diagnostics and counts the errors among them."""

    def __init__(self, max_errors: int = 20):
        self.diagnostics: List[Diagnostic] = []
        self.max_errors = max_errors
        self.error_count = 0

    def add(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        if diagnostic.severity is ErrorSeverity.ERROR:
            self.error_count += 1

    def add_error(self, error: DslError) -> None:
        self.add(error.diagnostic)

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    @property
    def should_stop(self) -> bool:
        """True once `max_errors` errors have been recorded."""
        return self.error_count >= self.max_errors

"""
scadkit language front end.

This package provides:
- Lexer: Tokenizes source text (never raises; errors become ERROR tokens)
- Parser: Builds the AST with error recovery
- Diagnostics: Error codes, formatting and collection

The evaluator lives in ``scadkit.dsl.runtime``.

Usage:
    from scadkit.dsl import parse_source

    result = parse_source('translate([0, 0, 5]) cube(10, center=true);')
    if not result.success:
        for error in result.errors:
            print(error["line"], error["message"])
"""

from typing import Optional

from .tokens import (
    Token,
    TokenType,
    SourceLocation,
    SourceSpan,
    KEYWORDS,
    SPECIAL_VARIABLES,
)

from .lexer import (
    Lexer,
    tokenize,
)

from .parser import (
    Parser,
    ParseResult,
    parse,
)

from .ast import (
    AstNode,
    AstVisitor,
    Expression,
    Statement,
    ModuleInvocation,
    dump_ast,
)

from .errors import (
    Diagnostic,
    DiagnosticCollector,
    DslError,
    ErrorCategory,
    ErrorSeverity,
)


def parse_source(source: str, filename: Optional[str] = None, max_errors: int = 20) -> ParseResult:
    """Tokenize and parse source text."""
    return parse(tokenize(source, filename), filename, source, max_errors=max_errors)


__all__ = [
    "Token", "TokenType", "SourceLocation", "SourceSpan", "KEYWORDS", "SPECIAL_VARIABLES",
    "Lexer", "tokenize",
    "Parser", "ParseResult", "parse", "parse_source",
    "AstNode", "AstVisitor", "Expression", "Statement", "ModuleInvocation", "dump_ast",
    "Diagnostic", "DiagnosticCollector", "DslError", "ErrorCategory", "ErrorSeverity",
]

"""
Token vocabulary of the scadkit declarative language.

Positions are 1-based line/column pairs plus a 0-based character offset.
Diagnostic codes are grouped by phase: E0xx lexing, E1xx parsing, E4xx
evaluation, E5xx jobs.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional


class TokenType(Enum):
    # literals
    NUMBER = auto()
    STRING = auto()
    TRUE = auto()
    FALSE = auto()
    UNDEF = auto()

    # names; IDENTIFIER includes user $-names, SPECIAL_VARIABLE is $fn $fa $fs $t
    IDENTIFIER = auto()
    SPECIAL_VARIABLE = auto()

    # keywords
    MODULE = auto()
    FUNCTION = auto()
    IF = auto()
    ELSE = auto()
    FOR = auto()
    LET = auto()

    # operators; STAR, PERCENT, BANG and HASH double as modifier sigils
    PLUS = auto()
    MINUS = auto()
    STAR = auto()
    SLASH = auto()
    PERCENT = auto()
    CARET = auto()
    LT = auto()
    GT = auto()
    LE = auto()
    GE = auto()
    EQ = auto()
    NE = auto()
    AND = auto()
    OR = auto()
    BANG = auto()
    QUESTION = auto()
    ASSIGN = auto()
    HASH = auto()

    # punctuation
    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    LBRACE = auto()
    RBRACE = auto()
    COLON = auto()
    SEMICOLON = auto()
    COMMA = auto()
    DOT = auto()

    # an ERROR token's value is the Diagnostic
    ERROR = auto()
    EOF = auto()


@dataclass(frozen=True)
class SourceLocation:
    line: int
    column: int
    offset: int
    filename: Optional[str] = None

    def __str__(self) -> str:
        where = f"{self.line}:{self.column}"
        return f"{self.filename}:{where}" if self.filename else where


@dataclass(frozen=True)
class SourceSpan:
    """Half-open range between two locations."""
    start: SourceLocation
    end: SourceLocation

    def __str__(self) -> str:
        return f"{self.start}-{self.end.line}:{self.end.column}"


# Span used for nodes built without source text (scripting front end, defaults)
NO_LOCATION = SourceLocation(0, 0, 0)
NO_SPAN = SourceSpan(NO_LOCATION, NO_LOCATION)


@dataclass(frozen=True)
class Token:
    """One lexeme with its decoded value and position."""
    type: TokenType
    value: Any              # float, str, bool, None or a Diagnostic
    lexeme: str             # exact source text
    span: SourceSpan

    @property
    def line(self) -> int:
        return self.span.start.line

    @property
    def column(self) -> int:
        return self.span.start.column

    def __str__(self) -> str:
        if self.type in (TokenType.NUMBER, TokenType.STRING,
                         TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE):
            return f"{self.type.name}({self.value!r})"
        return self.type.name


# Reserved words
KEYWORDS: dict[str, TokenType] = {
    "module": TokenType.MODULE,
    "function": TokenType.FUNCTION,
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "for": TokenType.FOR,
    "let": TokenType.LET,
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
    "undef": TokenType.UNDEF,
}


# The reserved rendering-quality and animation variables
SPECIAL_VARIABLES: frozenset[str] = frozenset({"$fn", "$fa", "$fs", "$t"})


# Prefix sigils that tag the following statement
MODIFIER_TOKENS: dict[TokenType, str] = {
    TokenType.BANG: "!",
    TokenType.HASH: "#",
    TokenType.PERCENT: "%",
    TokenType.STAR: "*",
}


def is_special_name(name: str) -> bool:
    """$-names are dynamically scoped."""
    return name.startswith("$")

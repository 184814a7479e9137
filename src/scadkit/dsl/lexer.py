"""
Lexer for the scadkit declarative language.

Turns source text into the flat token list the parser walks with
lookahead. Handles:
- `//` line comments and nestable `/* */` block comments
- double-quoted strings with \\n \\t \\r \\\\ \\" \\' \\xHH and \\uHHHH escapes
- numbers: `12`, `1.5`, `.5`, `1e-3` (always floats)
- keywords, identifiers and `$`-prefixed names
- operators, including the modifier sigils ! # % *

Tokenizing never raises. A lexical problem becomes an ERROR token whose
value is the Diagnostic, and scanning carries on after the bad text.
"""

from typing import Iterator, List, Optional

from .errors import (
    DiagnosticCollector,
    LexerError,
    error_unexpected_character,
    error_unterminated_comment,
    error_unterminated_string,
)
from .tokens import KEYWORDS, SPECIAL_VARIABLES, SourceLocation, SourceSpan, Token, TokenType

END = '\0'

ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', "'": "'"}

HEX_DIGITS = frozenset('0123456789abcdefABCDEF')

# Keyword literals carry their Python value
LITERAL_VALUES = {TokenType.TRUE: True, TokenType.FALSE: False, TokenType.UNDEF: None}

DOUBLE_OPERATORS = {
    '==': TokenType.EQ, '!=': TokenType.NE,
    '<=': TokenType.LE, '>=': TokenType.GE,
    '&&': TokenType.AND, '||': TokenType.OR,
}

SINGLE_OPERATORS = {
    '+': TokenType.PLUS, '-': TokenType.MINUS, '*': TokenType.STAR,
    '/': TokenType.SLASH, '%': TokenType.PERCENT, '^': TokenType.CARET,
    '<': TokenType.LT, '>': TokenType.GT, '!': TokenType.BANG,
    '=': TokenType.ASSIGN, '?': TokenType.QUESTION, '#': TokenType.HASH,
    '(': TokenType.LPAREN, ')': TokenType.RPAREN,
    '[': TokenType.LBRACKET, ']': TokenType.RBRACKET,
    '{': TokenType.LBRACE, '}': TokenType.RBRACE,
    ':': TokenType.COLON, ';': TokenType.SEMICOLON,
    ',': TokenType.COMMA, '.': TokenType.DOT,
}


def _starts_name(ch: str) -> bool:
    return ch.isalpha() or ch == '_'


class Lexer:
    """
    Scanner over one source string.

    Usage:
        lexer = Lexer(source_code)
        tokens = lexer.tokenize()
        if lexer.diagnostics.has_errors:
            ...
    """

    def __init__(self, source: str, filename: Optional[str] = None):
        self.source = source
        self.filename = filename
        self.pos = 0
        self.line = 1
        self.column = 1
        self._source_lines: Optional[List[str]] = None
        self.diagnostics = DiagnosticCollector(max_errors=10_000)

    # =========================================================================
    # Position helpers
    # =========================================================================

    def source_line(self, line_num: int) -> Optional[str]:
        """Text of a 1-based source line, for error excerpts."""
        if self._source_lines is None:
            self._source_lines = self.source.splitlines()
        if 0 < line_num <= len(self._source_lines):
            return self._source_lines[line_num - 1]
        return None

    def _here(self) -> SourceLocation:
        return SourceLocation(self.line, self.column, self.pos, self.filename)

    def _since(self, start: SourceLocation) -> SourceSpan:
        return SourceSpan(start, self._here())

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _look(self, ahead: int = 0) -> str:
        i = self.pos + ahead
        return self.source[i] if i < len(self.source) else END

    def _take(self) -> str:
        if self._at_end():
            return END
        ch = self.source[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line, self.column = self.line + 1, 1
        else:
            self.column += 1
        return ch

    def _take_digits(self) -> None:
        while self._look().isdigit():
            self._take()

    def _token(self, kind: TokenType, value, start: SourceLocation) -> Token:
        return Token(kind, value, self.source[start.offset:self.pos], self._since(start))

    # =========================================================================
    # Trivia
    # =========================================================================

    def _skip_block_comment(self) -> None:
        start = self._here()
        self._take()
        self._take()
        depth = 1
        while depth and not self._at_end():
            pair = self._look() + self._look(1)
            if pair in ('/*', '*/'):
                self._take()
                self._take()
                depth += 1 if pair == '/*' else -1
            else:
                self._take()
        if depth:
            raise error_unterminated_comment(self._since(start), self.source_line(start.line))

    def _skip_trivia(self) -> None:
        while not self._at_end():
            ch, nxt = self._look(), self._look(1)
            if ch.isspace():
                self._take()
            elif ch == '/' and nxt == '/':
                while not self._at_end() and self._look() != '\n':
                    self._take()
            elif ch == '/' and nxt == '*':
                self._skip_block_comment()
            else:
                return

    # =========================================================================
    # Literals and names
    # =========================================================================

    def _string(self) -> Token:
        start = self._here()
        self._take()
        text = []
        while self._look() != '"':
            if self._at_end() or self._look() == '\n':
                raise error_unterminated_string(self._since(start), self.source_line(start.line))
            ch = self._take()
            text.append(self._escape() if ch == '\\' else ch)
        self._take()
        return self._token(TokenType.STRING, ''.join(text), start)

    def _escape(self) -> str:
        """Decode the escape after a backslash; unknown ones stay verbatim."""
        ch = self._look()
        if ch in ESCAPES:
            self._take()
            return ESCAPES[ch]
        if ch in ('x', 'u'):
            width = 2 if ch == 'x' else 4
            digits = self.source[self.pos + 1:self.pos + 1 + width]
            if len(digits) == width and set(digits) <= HEX_DIGITS:
                for _ in range(width + 1):
                    self._take()
                return chr(int(digits, 16))
        if ch in ('\n', END):
            return '\\'
        return '\\' + self._take()

    def _number(self) -> Token:
        """Digits, optional fraction, optional exponent.

        An exponent is only taken when digits follow it, so `2e` is the
        number 2 and then the identifier `e`.
        """
        start = self._here()
        self._take_digits()
        if self._look() == '.' and self._look(1).isdigit():
            self._take()
            self._take_digits()
        if self._look() in ('e', 'E'):
            sign = 1 if self._look(1) in ('+', '-') else 0
            if self._look(1 + sign).isdigit():
                for _ in range(1 + sign):
                    self._take()
                self._take_digits()
        return self._token(TokenType.NUMBER, float(self.source[start.offset:self.pos]), start)

    def _name(self) -> Token:
        start = self._here()
        if self._look() == '$':
            self._take()
        while self._look().isalnum() or self._look() == '_':
            self._take()
        word = self.source[start.offset:self.pos]
        kind = KEYWORDS.get(word)
        if kind is not None:
            return self._token(kind, LITERAL_VALUES.get(kind, word), start)
        if word in SPECIAL_VARIABLES:
            return self._token(TokenType.SPECIAL_VARIABLE, word, start)
        return self._token(TokenType.IDENTIFIER, word, start)

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _scan(self) -> Token:
        self._skip_trivia()
        start = self._here()
        if self._at_end():
            return self._token(TokenType.EOF, None, start)

        ch, nxt = self._look(), self._look(1)
        if ch == '"':
            return self._string()
        if ch.isdigit() or (ch == '.' and nxt.isdigit()):
            return self._number()
        if _starts_name(ch) or (ch == '$' and _starts_name(nxt)):
            return self._name()

        if ch + nxt in DOUBLE_OPERATORS:
            self._take()
            self._take()
            return self._token(DOUBLE_OPERATORS[ch + nxt], ch + nxt, start)
        self._take()
        if ch in SINGLE_OPERATORS:
            return self._token(SINGLE_OPERATORS[ch], ch, start)
        raise error_unexpected_character(ch, self._since(start), self.source_line(start.line))

    def next_token(self) -> Token:
        """The next token; a lexical error comes back as an ERROR token."""
        start = self._here()
        try:
            return self._scan()
        except LexerError as e:
            self.diagnostics.add_error(e)
            return Token(TokenType.ERROR, e.diagnostic,
                         self.source[start.offset:self.pos], e.diagnostic.span)

    def tokenize(self) -> List[Token]:
        """Scan everything; the list always ends with one EOF token."""
        tokens = [self.next_token()]
        while tokens[-1].type != TokenType.EOF:
            tokens.append(self.next_token())
        return tokens

    def __iter__(self) -> Iterator[Token]:
        return iter(self.tokenize())


def tokenize(source: str, filename: Optional[str] = None) -> List[Token]:
    """
    Tokenize source text.

    Args:
        source: Program text
        filename: Used in diagnostics

    Returns:
        Tokens ending with EOF. Lexical errors appear as ERROR tokens;
        this function does not raise.
    """
    return Lexer(source, filename).tokenize()

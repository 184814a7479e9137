"""
Unit tests for the scadkit lexer.
"""

import pytest
from scadkit.dsl import tokenize, Lexer, TokenType


def types_of(source):
    return [t.type for t in tokenize(source)]


class TestLexerBasics:
    """Test basic lexer functionality."""

    def test_empty_source(self):
        """Empty source produces only EOF."""
        tokens = tokenize("")
        assert len(tokens) == 1
        assert tokens[0].type == TokenType.EOF

    def test_whitespace_and_comments_only(self):
        """Whitespace and comments produce no tokens."""
        tokens = tokenize("  \t\n// line comment\n/* block\ncomment */\n")
        assert [t.type for t in tokens] == [TokenType.EOF]

    def test_module_invocation(self):
        """A simple module invocation."""
        assert types_of("cube(10);") == [
            TokenType.IDENTIFIER,
            TokenType.LPAREN,
            TokenType.NUMBER,
            TokenType.RPAREN,
            TokenType.SEMICOLON,
            TokenType.EOF,
        ]

    def test_position_tracking(self):
        """Token positions are 1-based lines and columns."""
        tokens = tokenize("x = 5;\n  y = 10;")
        assert (tokens[0].line, tokens[0].column) == (1, 1)
        assert (tokens[2].line, tokens[2].column) == (1, 5)
        y = [t for t in tokens if t.value == "y"][0]
        assert (y.line, y.column) == (2, 3)

    def test_iteration(self):
        """Lexer instances are iterable."""
        lexer = Lexer("a;")
        assert [t.type for t in lexer] == [TokenType.IDENTIFIER, TokenType.SEMICOLON, TokenType.EOF]


class TestNumbers:
    """Test numeric literals."""

    @pytest.mark.parametrize("text,value", [
        ("42", 42.0),
        ("3.14", 3.14),
        (".5", 0.5),
        ("1e3", 1000.0),
        ("2.5E-2", 0.025),
        ("1e+2", 100.0),
    ])
    def test_number_values(self, text, value):
        """Numbers are always floats."""
        token = tokenize(text)[0]
        assert token.type == TokenType.NUMBER
        assert token.value == pytest.approx(value)
        assert token.lexeme == text

    def test_exponent_without_digits(self):
        """'2e' is the number 2 followed by the identifier e."""
        tokens = tokenize("2e")
        assert tokens[0].type == TokenType.NUMBER
        assert tokens[0].value == 2.0
        assert tokens[1].type == TokenType.IDENTIFIER
        assert tokens[1].value == "e"

    def test_trailing_dot_is_member_access(self):
        """'v.x' lexes as identifier, dot, identifier."""
        assert types_of("v.x")[:3] == [TokenType.IDENTIFIER, TokenType.DOT, TokenType.IDENTIFIER]


class TestStrings:
    """Test string literals and escapes."""

    def test_simple_string(self):
        """String value excludes the quotes."""
        token = tokenize('"hello"')[0]
        assert token.type == TokenType.STRING
        assert token.value == "hello"
        assert token.lexeme == '"hello"'

    def test_escapes(self):
        """Standard escapes are decoded."""
        token = tokenize(r'"a\nb\t\"q\"\\"')[0]
        assert token.value == 'a\nb\t"q"\\'

    def test_hex_and_unicode_escapes(self):
        r"""\x and \u escapes decode to characters."""
        token = tokenize(r'"\x41\u00e9"')[0]
        assert token.value == "Aé"

    def test_unknown_escape_kept(self):
        """Unknown escapes are kept verbatim."""
        token = tokenize(r'"\q"')[0]
        assert token.value == "\\q"

    def test_unterminated_string(self):
        """An unterminated string becomes an ERROR token and lexing continues."""
        tokens = tokenize('"open\nx = 1;')
        assert tokens[0].type == TokenType.ERROR
        assert tokens[0].value.code == "E002"
        assert TokenType.IDENTIFIER in [t.type for t in tokens]


class TestIdentifiersAndKeywords:
    """Test identifiers, keywords and $-variables."""

    def test_keywords(self):
        """Reserved words get their own token types."""
        assert types_of("module function if else for let")[:-1] == [
            TokenType.MODULE, TokenType.FUNCTION, TokenType.IF,
            TokenType.ELSE, TokenType.FOR, TokenType.LET,
        ]

    def test_literal_keywords(self):
        """true, false and undef carry their values."""
        tokens = tokenize("true false undef")
        assert [t.value for t in tokens[:3]] == [True, False, None]
        assert tokens[2].type == TokenType.UNDEF

    def test_special_variables(self):
        """The reserved $-variables are SPECIAL_VARIABLE tokens."""
        for name in ("$fn", "$fa", "$fs", "$t"):
            token = tokenize(name)[0]
            assert token.type == TokenType.SPECIAL_VARIABLE
            assert token.value == name

    def test_other_dollar_names_are_identifiers(self):
        """User $-names are plain identifiers."""
        token = tokenize("$wall")[0]
        assert token.type == TokenType.IDENTIFIER
        assert token.value == "$wall"

    def test_keyword_prefix_is_identifier(self):
        """'format' is an identifier, not 'for' + 'mat'."""
        tokens = tokenize("format")
        assert tokens[0].type == TokenType.IDENTIFIER
        assert tokens[0].value == "format"


class TestOperators:
    """Test operator tokens."""

    def test_two_character_operators(self):
        """Two-character operators are matched greedily."""
        assert types_of("== != <= >= && ||")[:-1] == [
            TokenType.EQ, TokenType.NE, TokenType.LE,
            TokenType.GE, TokenType.AND, TokenType.OR,
        ]

    def test_single_character_operators(self):
        """Single-character operators and delimiters."""
        assert types_of("+ - * / % ^ < > ! = ? : #")[:-1] == [
            TokenType.PLUS, TokenType.MINUS, TokenType.STAR, TokenType.SLASH,
            TokenType.PERCENT, TokenType.CARET, TokenType.LT, TokenType.GT,
            TokenType.BANG, TokenType.ASSIGN, TokenType.QUESTION, TokenType.COLON,
            TokenType.HASH,
        ]


class TestLexerErrors:
    """Test that lexical errors never raise."""

    def test_unexpected_character(self):
        """An unknown character becomes an ERROR token with E001."""
        tokens = tokenize("a @ b")
        assert [t.type for t in tokens] == [
            TokenType.IDENTIFIER, TokenType.ERROR, TokenType.IDENTIFIER, TokenType.EOF,
        ]
        diag = tokens[1].value
        assert diag.code == "E001"
        assert diag.line == 1
        assert diag.column == 3

    def test_unterminated_comment(self):
        """An unterminated block comment is reported as E004."""
        tokens = tokenize("x /* never closed")
        errors = [t for t in tokens if t.type == TokenType.ERROR]
        assert len(errors) == 1
        assert errors[0].value.code == "E004"
        assert tokens[-1].type == TokenType.EOF

    def test_nested_block_comments(self):
        """Block comments nest."""
        assert types_of("/* a /* b */ c */ x") == [TokenType.IDENTIFIER, TokenType.EOF]

    def test_lexer_collects_diagnostics(self):
        """The Lexer keeps every error it saw."""
        lexer = Lexer("@ ` x")
        lexer.tokenize()
        assert lexer.diagnostics.error_count == 2

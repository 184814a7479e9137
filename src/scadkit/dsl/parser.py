"""
Recursive descent parser for the scadkit declarative language.

Converts a token stream into a list of top-level statements plus the
diagnostics recorded on the way. A syntax error aborts only the statement
it occurs in: the parser records it, resynchronizes at the next ';' (or at
a '}' closing a block) and carries on.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from .tokens import Token, TokenType, SourceSpan, NO_SPAN, MODIFIER_TOKENS
from .ast import (
    # Expressions
    Expression, Literal, Identifier, BinaryOp, UnaryOp, Ternary,
    VectorLiteral, RangeLiteral, IndexAccess, MemberAccess, FunctionCall,
    Binding, LetExpression, ListComprehension, ComprehensionClause,
    # Statements
    Statement, Parameter, Assignment, FunctionDef, ModuleDef, ModuleInvocation,
    IfStatement, ForStatement, LetStatement, Block,
)
from .errors import (
    ParserError,
    Diagnostic,
    DiagnosticCollector,
    ErrorSeverity,
    error_unexpected_token,
    error_unexpected_eof,
    error_invalid_expression,
    error_nesting_too_deep,
)


@dataclass
class ParseResult:
    """Top-level statements plus every diagnostic recorded while parsing."""
    statements: List[Statement]
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ast(self) -> List[Statement]:
        return self.statements

    @property
    def errors(self) -> List[dict]:
        """Errors as {message, line, column, code, category} dicts."""
        return [d.to_dict() for d in self.diagnostics if d.severity == ErrorSeverity.ERROR]

    @property
    def success(self) -> bool:
        return not any(d.severity == ErrorSeverity.ERROR for d in self.diagnostics)


class Parser:
    """
    Recursive descent parser for the declarative language.

    Usage:
        parser = Parser(tokens)
        result = parser.parse_program()

    Expressions use precedence climbing, loosest first:
        Lowest:  ?:
                 ||
                 &&
                 == !=
                 < > <= >=
                 + -
                 * / %
                 unary (! - +)
        Highest: ^ (power, right-associative, binds tighter than unary)
                 postfix: [i]  .x  f(...)
    """

    # Binary operator binding strength
    PRECEDENCE = {
        TokenType.OR: 1,
        TokenType.AND: 2,
        TokenType.EQ: 3,
        TokenType.NE: 3,
        TokenType.LT: 4,
        TokenType.GT: 4,
        TokenType.LE: 4,
        TokenType.GE: 4,
        TokenType.PLUS: 5,
        TokenType.MINUS: 5,
        TokenType.STAR: 6,
        TokenType.SLASH: 6,
        TokenType.PERCENT: 6,
    }

    # Right-associative operators (handled outside the climbing loop)
    RIGHT_ASSOCIATIVE = {TokenType.CARET}

    UNARY_OPERATORS = (TokenType.BANG, TokenType.MINUS, TokenType.PLUS)

    def __init__(self, tokens: List[Token], filename: Optional[str] = None,
                 source: Optional[str] = None, max_errors: int = 20):
        self.filename = filename
        self.source = source  # Original source code for error display
        self._lines = source.splitlines() if source is not None else None
        self.pos = 0
        self.diagnostics = DiagnosticCollector(max_errors=max_errors)

        # Lexical errors arrive as ERROR tokens; record them and drop them
        # from the stream so the grammar never sees them.
        self.tokens: List[Token] = []
        for token in tokens:
            if token.type == TokenType.ERROR:
                self.diagnostics.add(token.value)
            else:
                self.tokens.append(token)
        if not self.tokens or self.tokens[-1].type != TokenType.EOF:
            end = self.tokens[-1].span.end if self.tokens else NO_SPAN.end
            self.tokens.append(Token(TokenType.EOF, None, "", SourceSpan(end, end)))

    # =========================================================================
    # Cursor
    # =========================================================================

    def _peek(self, offset: int = 0) -> Token:
        i = self.pos + offset
        return self.tokens[i] if i < len(self.tokens) else self.tokens[-1]

    def _tok(self) -> Token:
        return self._peek()

    def _done(self) -> bool:
        return self._tok().type == TokenType.EOF

    def _at(self, token_type: TokenType) -> bool:
        return self._tok().type == token_type

    def _at_any(self, *token_types: TokenType) -> bool:
        return self._tok().type in token_types

    def _advance(self) -> Token:
        """Step past the current token and return it; EOF is never passed."""
        token = self._tok()
        if token.type != TokenType.EOF:
            self.pos += 1
        return token

    def _expect(self, token_type: TokenType, expected: str) -> Token:
        """The current token if it has `token_type`; otherwise a syntax error."""
        if not self._at(token_type):
            self._fail(expected)
        return self._advance()

    def _match(self, *token_types: TokenType) -> Optional[Token]:
        return self._advance() if self._at_any(*token_types) else None

    def _source_line(self, token: Token) -> Optional[str]:
        if self._lines is None:
            return None
        line = token.span.start.line
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None

    def _fail(self, expected: str) -> None:
        token = self._tok()
        if token.type == TokenType.EOF:
            raise error_unexpected_eof(expected, token.span)
        raise error_unexpected_token(expected, f"'{token.lexeme}'", token.span,
                                     self._source_line(token))

    def _span_from(self, start: Token) -> SourceSpan:
        """Span from `start` through the last consumed token."""
        prev_pos = max(0, self.pos - 1)
        end_token = self.tokens[prev_pos]
        return SourceSpan(start.span.start, end_token.span.end)

    # =========================================================================
    # Error Recovery
    # =========================================================================

    def _record(self, error: ParserError) -> None:
        if not self.diagnostics.should_stop:
            self.diagnostics.add_error(error)

    def _synchronize(self) -> None:
        """Skip tokens until a likely statement boundary.

        Stops after a ';' at the current nesting level, after a '}' that
        closes a block opened while skipping, or before a '}' that closes
        the enclosing block.
        """
        depth = 0
        while not self._done():
            token = self._tok()
            if token.type == TokenType.SEMICOLON and depth == 0:
                self._advance()
                return
            if token.type == TokenType.LBRACE:
                depth += 1
            elif token.type == TokenType.RBRACE:
                if depth == 0:
                    return
                depth -= 1
                if depth == 0:
                    self._advance()
                    return
            self._advance()

    def _parse_statement_recovering(self) -> Optional[Statement]:
        """Parse one statement; on error record it and resynchronize."""
        start_pos = self.pos
        try:
            return self._parse_statement()
        except ParserError as e:
            self._record(e)
        except RecursionError:
            self._record(error_nesting_too_deep(self._tok().span))
        self._synchronize()
        if self.pos == start_pos and not self._done() and not self._at(TokenType.RBRACE):
            self._advance()
        return None

    # =========================================================================
    # Expressions
    # =========================================================================

    def _parse_expression(self) -> Expression:
        """Parse an expression (ternary has the lowest precedence)."""
        return self._parse_ternary_expr()

    def _parse_ternary_expr(self) -> Expression:
        """Parse condition ? a : b (right-associative)."""
        condition = self._parse_binary_expr(1)

        if not self._match(TokenType.QUESTION):
            return condition

        true_branch = self._parse_expression()
        self._expect(TokenType.COLON, "':'")
        false_branch = self._parse_expression()

        return Ternary(
            span=SourceSpan(condition.span.start, false_branch.span.end),
            condition=condition,
            true_branch=true_branch,
            false_branch=false_branch
        )

    def _parse_binary_expr(self, min_precedence: int) -> Expression:
        """Left-associative operators at or above `min_precedence`."""
        left = self._parse_unary_expr()

        while True:
            op_token = self._tok()
            precedence = self.PRECEDENCE.get(op_token.type)

            if precedence is None or precedence < min_precedence:
                break

            self._advance()
            right = self._parse_binary_expr(precedence + 1)

            left = BinaryOp(
                span=SourceSpan(left.span.start, right.span.end),
                left=left,
                operator=op_token.type,
                right=right
            )

        return left

    def _parse_unary_expr(self) -> Expression:
        """Parse unary expressions (!, -, +)."""
        if self._at_any(*self.UNARY_OPERATORS):
            op = self._advance()
            operand = self._parse_unary_expr()
            return UnaryOp(
                span=SourceSpan(op.span.start, operand.span.end),
                operator=op.type,
                operand=operand
            )

        return self._parse_power_expr()

    def _parse_power_expr(self) -> Expression:
        """Parse base ^ exponent; the exponent may itself be unary."""
        base = self._parse_postfix_expr()
        if self._at(TokenType.CARET):
            op = self._advance()
            exponent = self._parse_unary_expr()
            return BinaryOp(
                span=SourceSpan(base.span.start, exponent.span.end),
                left=base,
                operator=op.type,
                right=exponent
            )
        return base

    def _parse_postfix_expr(self) -> Expression:
        """Calls, `.member` and `[index]` chained onto a primary."""
        expr = self._parse_primary_expr()

        while True:
            if self._at(TokenType.LPAREN):
                args, named_args = self._parse_arguments()
                expr = FunctionCall(
                    span=SourceSpan(expr.span.start, self.tokens[self.pos - 1].span.end),
                    callee=expr,
                    arguments=args,
                    named_arguments=named_args
                )
            elif self._at(TokenType.DOT):
                self._advance()  # consume '.'
                member = self._expect(TokenType.IDENTIFIER, "member name").value
                expr = MemberAccess(
                    span=SourceSpan(expr.span.start, self.tokens[self.pos - 1].span.end),
                    object=expr,
                    member=member
                )
            elif self._at(TokenType.LBRACKET):
                self._advance()  # consume '['
                index = self._parse_expression()
                self._expect(TokenType.RBRACKET, "']'")
                expr = IndexAccess(
                    span=SourceSpan(expr.span.start, self.tokens[self.pos - 1].span.end),
                    object=expr,
                    index=index
                )
            else:
                break

        return expr

    def _parse_arguments(self) -> tuple[List[Expression], dict[str, Expression]]:
        """Arguments up to the closing paren, as (positional, named)."""
        self._expect(TokenType.LPAREN, "'('")

        args = []
        named_args = {}

        if not self._at(TokenType.RPAREN):
            self._parse_argument(args, named_args)

            while self._match(TokenType.COMMA):
                if self._at(TokenType.RPAREN):
                    break  # Allow trailing comma
                self._parse_argument(args, named_args)

        self._expect(TokenType.RPAREN, "')'")
        return args, named_args

    def _parse_argument(self, args: List[Expression],
                        named_args: dict[str, Expression]) -> None:
        """One `expr` or `name = expr` argument."""
        if (self._at_any(TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE) and
                self._peek(1).type == TokenType.ASSIGN):
            name = self._advance().value
            self._advance()  # consume '='
            named_args[name] = self._parse_expression()
        else:
            args.append(self._parse_expression())

    def _parse_primary_expr(self) -> Expression:
        """Literals, names, parentheses, vectors, ranges and comprehensions."""
        token = self._tok()

        if token.type in (TokenType.NUMBER, TokenType.STRING,
                          TokenType.TRUE, TokenType.FALSE, TokenType.UNDEF):
            self._advance()
            return Literal(span=token.span, value=token.value)

        if token.type in (TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE):
            self._advance()
            return Identifier(span=token.span, name=token.value)

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._expect(TokenType.RPAREN, "')'")
            return expr

        if token.type == TokenType.LBRACKET:
            return self._parse_vector_or_range()

        if token.type == TokenType.LET:
            return self._parse_let_expr()

        if token.type == TokenType.EOF:
            raise error_unexpected_eof("expression", token.span)
        raise error_invalid_expression(token.span, self._source_line(token))

    def _parse_vector_or_range(self) -> Expression:
        """Parse [..]: vector literal, range literal or list comprehension.

        Disambiguation happens after the first element: a ':' makes it a
        range, anything else a vector.
        """
        start = self._expect(TokenType.LBRACKET, "'['")

        if self._match(TokenType.RBRACKET):
            return VectorLiteral(span=self._span_from(start), elements=[])

        if self._at(TokenType.FOR):
            return self._parse_list_comprehension(start)

        first = self._parse_expression()

        if self._match(TokenType.COLON):
            second = self._parse_expression()
            if self._match(TokenType.COLON):
                third = self._parse_expression()
                self._expect(TokenType.RBRACKET, "']'")
                return RangeLiteral(span=self._span_from(start),
                                    start=first, end=third, step=second)
            self._expect(TokenType.RBRACKET, "']'")
            return RangeLiteral(span=self._span_from(start), start=first, end=second)

        elements = [first]
        while self._match(TokenType.COMMA):
            if self._at(TokenType.RBRACKET):
                break  # Allow trailing comma
            elements.append(self._parse_expression())

        self._expect(TokenType.RBRACKET, "']' or ','")
        return VectorLiteral(span=self._span_from(start), elements=elements)

    def _parse_list_comprehension(self, start: Token) -> ListComprehension:
        """Parse [for (...) [if (...)] ... element]."""
        clauses: List[ComprehensionClause] = []

        while self._at(TokenType.FOR):
            for_token = self._advance()
            for binding in self._parse_bindings():
                clauses.append(ComprehensionClause(
                    span=self._span_from(for_token),
                    variable=binding.name,
                    iterable=binding.value
                ))
            while self._match(TokenType.IF):
                self._expect(TokenType.LPAREN, "'('")
                clauses[-1].conditions.append(self._parse_expression())
                self._expect(TokenType.RPAREN, "')'")

        element = self._parse_expression()
        self._expect(TokenType.RBRACKET, "']'")
        return ListComprehension(span=self._span_from(start), element_expr=element, clauses=clauses)

    def _parse_let_expr(self) -> LetExpression:
        """Parse let (a = 1, ...) expression."""
        start = self._expect(TokenType.LET, "'let'")
        bindings = self._parse_bindings()
        body = self._parse_expression()
        return LetExpression(span=self._span_from(start), bindings=bindings, body=body)

    def _parse_bindings(self) -> List[Binding]:
        """Parse (name = expr, ...)."""
        self._expect(TokenType.LPAREN, "'('")
        bindings = []
        while not self._at(TokenType.RPAREN):
            name_token = self._tok()
            if not self._at_any(TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE):
                self._fail("variable name")
            self._advance()
            self._expect(TokenType.ASSIGN, "'='")
            value = self._parse_expression()
            bindings.append(Binding(span=self._span_from(name_token),
                                    name=name_token.value, value=value))
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RPAREN, "')'")
        return bindings

    # =========================================================================
    # Statements
    # =========================================================================

    def _parse_statement(self) -> Optional[Statement]:
        """Parse a statement, including any leading modifier sigils.

        Returns None for the empty statement ';'.
        """
        modifier = None
        modifier_token = None
        while self._tok().type in MODIFIER_TOKENS:
            modifier_token = self._advance()
            modifier = MODIFIER_TOKENS[modifier_token.type]  # nearest sigil wins

        token = self._tok()

        if token.type == TokenType.SEMICOLON:
            self._advance()
            if modifier is not None:
                return Block(span=self._span_from(modifier_token), statements=[], modifier=modifier)
            return None

        if token.type == TokenType.LBRACE:
            stmt = self._parse_brace_block()
        elif token.type == TokenType.MODULE:
            stmt = self._parse_module_def()
        elif token.type == TokenType.FUNCTION:
            stmt = self._parse_function_def()
        elif token.type == TokenType.IF:
            stmt = self._parse_if_statement()
        elif token.type == TokenType.FOR:
            stmt = self._parse_for_statement()
        elif token.type == TokenType.LET:
            stmt = self._parse_let_statement()
        elif (token.type in (TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE)
              and self._peek(1).type == TokenType.ASSIGN):
            stmt = self._parse_assignment()
        elif token.type == TokenType.IDENTIFIER and self._peek(1).type == TokenType.LPAREN:
            stmt = self._parse_module_invocation()
        else:
            self._fail("statement")

        if modifier is not None:
            if hasattr(stmt, "modifier"):
                stmt.modifier = modifier
            else:
                self.diagnostics.add(Diagnostic(
                    code="W101",
                    message=f"modifier '{modifier}' has no effect on {stmt.__class__.__name__}",
                    severity=ErrorSeverity.WARNING,
                    span=modifier_token.span,
                ))
        return stmt

    def _parse_body(self) -> Statement:
        """Parse a statement used as the body of if/for/let/module."""
        stmt = self._parse_statement()
        if stmt is None:
            return Block(span=self.tokens[self.pos - 1].span, statements=[])
        return stmt

    def _parse_brace_block(self) -> Block:
        """Parse { statements }."""
        start = self._expect(TokenType.LBRACE, "'{'")
        statements = []
        while not self._at(TokenType.RBRACE) and not self._done():
            stmt = self._parse_statement_recovering()
            if stmt is not None:
                statements.append(stmt)
        self._expect(TokenType.RBRACE, "'}'")
        return Block(span=self._span_from(start), statements=statements)

    def _parse_assignment(self) -> Assignment:
        """Parse name = expr;"""
        name_token = self._advance()
        self._expect(TokenType.ASSIGN, "'='")
        value = self._parse_expression()
        self._expect(TokenType.SEMICOLON, "';'")
        return Assignment(span=self._span_from(name_token), name=name_token.value, value=value)

    def _parse_parameters(self) -> List[Parameter]:
        """Parse (a, b = 2, ...) for function and module definitions."""
        self._expect(TokenType.LPAREN, "'('")
        params = []
        while not self._at(TokenType.RPAREN):
            name_token = self._tok()
            if not self._at_any(TokenType.IDENTIFIER, TokenType.SPECIAL_VARIABLE):
                self._fail("parameter name")
            self._advance()
            default = None
            if self._match(TokenType.ASSIGN):
                default = self._parse_expression()
            params.append(Parameter(span=self._span_from(name_token),
                                    name=name_token.value, default_value=default))
            if not self._match(TokenType.COMMA):
                break
        self._expect(TokenType.RPAREN, "')'")
        return params

    def _parse_function_def(self) -> FunctionDef:
        """Parse function name(params) = expr;"""
        start = self._expect(TokenType.FUNCTION, "'function'")
        name = self._expect(TokenType.IDENTIFIER, "function name").value
        params = self._parse_parameters()
        self._expect(TokenType.ASSIGN, "'='")
        body = self._parse_expression()
        self._expect(TokenType.SEMICOLON, "';'")
        return FunctionDef(span=self._span_from(start), name=name, parameters=params, body=body)

    def _parse_module_def(self) -> ModuleDef:
        """Parse module name(params) statement"""
        start = self._expect(TokenType.MODULE, "'module'")
        name = self._expect(TokenType.IDENTIFIER, "module name").value
        params = self._parse_parameters()
        if self._at(TokenType.LBRACE):
            body = self._parse_brace_block().statements
        else:
            stmt = self._parse_statement()
            body = [stmt] if stmt is not None else []
        return ModuleDef(span=self._span_from(start), name=name, parameters=params, body=body)

    def _parse_module_invocation(self) -> ModuleInvocation:
        """Parse name(args) followed by ';', a block, or one child statement."""
        name_token = self._expect(TokenType.IDENTIFIER, "module name")
        args, named_args = self._parse_arguments()

        if self._match(TokenType.SEMICOLON):
            children = []
        elif self._at(TokenType.LBRACE):
            children = self._parse_brace_block().statements
        else:
            child = self._parse_statement()
            children = [child] if child is not None else []

        return ModuleInvocation(
            span=self._span_from(name_token),
            name=name_token.value,
            arguments=args,
            named_arguments=named_args,
            children=children
        )

    def _parse_if_statement(self) -> IfStatement:
        """Parse if (cond) stmt [else stmt]"""
        start = self._expect(TokenType.IF, "'if'")
        self._expect(TokenType.LPAREN, "'('")
        condition = self._parse_expression()
        self._expect(TokenType.RPAREN, "')'")
        then_branch = self._parse_body()
        else_branch = None
        if self._match(TokenType.ELSE):
            else_branch = self._parse_body()
        return IfStatement(span=self._span_from(start), condition=condition,
                           then_branch=then_branch, else_branch=else_branch)

    def _parse_for_statement(self) -> ForStatement:
        """Parse for (v = iterable[, w = iterable2]) stmt"""
        start = self._expect(TokenType.FOR, "'for'")
        bindings = self._parse_bindings()
        if not bindings:
            self._fail("loop variable")
        body = self._parse_body()
        return ForStatement(span=self._span_from(start), bindings=bindings, body=body)

    def _parse_let_statement(self) -> LetStatement:
        """Parse let (bindings) stmt"""
        start = self._expect(TokenType.LET, "'let'")
        bindings = self._parse_bindings()
        body = self._parse_body()
        return LetStatement(span=self._span_from(start), bindings=bindings, body=body)

    def parse_program(self) -> ParseResult:
        """Parse a complete program."""
        statements: List[Statement] = []

        while not self._done():
            if self.diagnostics.should_stop:
                break
            if self._at(TokenType.RBRACE):
                token = self._advance()
                self._record(error_unexpected_token(
                    "statement", "'}'", token.span, self._source_line(token)))
                continue
            stmt = self._parse_statement_recovering()
            if stmt is not None:
                statements.append(stmt)

        return ParseResult(statements=statements, diagnostics=list(self.diagnostics.diagnostics))


def parse(tokens: List[Token], filename: Optional[str] = None,
          source: Optional[str] = None, max_errors: int = 20) -> ParseResult:
    """
    Convenience function to parse tokens into a program.

    Args:
        tokens: List of tokens from the lexer (ERROR tokens allowed)
        filename: Optional filename for error messages
        source: Optional original source code for error display
        max_errors: Stop after this many errors

    Returns:
        ParseResult with statements and diagnostics; never raises for
        syntax errors.
    """
    parser = Parser(tokens, filename, source, max_errors)
    return parser.parse_program()

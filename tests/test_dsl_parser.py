"""
Unit tests for the scadkit parser.
"""

import pytest
from scadkit.dsl import parse_source, dump_ast, TokenType
from scadkit.dsl.ast import (
    Assignment, BinaryOp, Block, ForStatement, FunctionCall, FunctionDef, Identifier,
    IfStatement, IndexAccess, LetExpression, ListComprehension, Literal, MemberAccess,
    ModuleDef, ModuleInvocation, RangeLiteral, Ternary, UnaryOp, VectorLiteral,
)


def parse_ok(source):
    result = parse_source(source)
    assert result.success, result.errors
    return result.statements


def parse_expr(text):
    """Parse `x = <text>;` and return the expression."""
    stmt = parse_ok(f"x = {text};")[0]
    assert isinstance(stmt, Assignment)
    return stmt.value


# --- Statement Tests ---

class TestStatements:
    """Test statement parsing."""

    def test_single_invocation(self):
        """cube(10); is one invocation with one positional argument."""
        statements = parse_ok("cube(10);")
        assert len(statements) == 1
        node = statements[0]
        assert isinstance(node, ModuleInvocation)
        assert node.name == "cube"
        assert len(node.arguments) == 1
        assert isinstance(node.arguments[0], Literal)
        assert node.arguments[0].value == 10
        assert node.named_arguments == {}
        assert node.children == []

    def test_named_arguments(self):
        """Named and $-named arguments are kept apart from positional ones."""
        node = parse_ok("sphere(r=5, $fn=32);")[0]
        assert node.arguments == []
        assert set(node.named_arguments) == {"r", "$fn"}

    def test_single_child(self):
        """A statement directly after an invocation is its only child."""
        node = parse_ok("translate([1, 0, 0]) sphere(2);")[0]
        assert node.name == "translate"
        assert len(node.children) == 1
        assert node.children[0].name == "sphere"

    def test_block_children(self):
        """Braced children are one statement each."""
        node = parse_ok("difference() { cube(10); sphere(6); }")[0]
        assert [c.name for c in node.children] == ["cube", "sphere"]

    def test_empty_children_block(self):
        """union() { } parses fine."""
        node = parse_ok("union() { }")[0]
        assert node.children == []

    def test_assignment(self):
        """Plain and special variable assignment."""
        statements = parse_ok("size = 10; $fn = 24;")
        assert [s.name for s in statements] == ["size", "$fn"]

    def test_function_definition(self):
        """function f(a, b=2) = a + b;"""
        node = parse_ok("function f(a, b = 2) = a + b;")[0]
        assert isinstance(node, FunctionDef)
        assert [p.name for p in node.parameters] == ["a", "b"]
        assert node.parameters[0].default_value is None
        assert node.parameters[1].default_value.value == 2
        assert isinstance(node.body, BinaryOp)

    def test_module_definition(self):
        """module m(size) { cube(size); }"""
        node = parse_ok("module m(size = 1) { cube(size); children(); }")[0]
        assert isinstance(node, ModuleDef)
        assert node.name == "m"
        assert len(node.body) == 2

    def test_module_definition_single_statement(self):
        """A module body may be a single statement."""
        node = parse_ok("module m() cube(1);")[0]
        assert len(node.body) == 1

    def test_if_else(self):
        """if / else with blocks and single statements."""
        node = parse_ok("if (a > 1) cube(1); else { sphere(1); }")[0]
        assert isinstance(node, IfStatement)
        assert isinstance(node.then_branch, ModuleInvocation)
        assert isinstance(node.else_branch, Block)

    def test_for_with_several_bindings(self):
        """for with two loop variables."""
        node = parse_ok("for (i = [0:2], j = [1, 2]) cube(i + j);")[0]
        assert isinstance(node, ForStatement)
        assert [b.name for b in node.bindings] == ["i", "j"]
        assert isinstance(node.bindings[0].value, RangeLiteral)
        assert isinstance(node.bindings[1].value, VectorLiteral)

    def test_empty_statements_skipped(self):
        """Stray semicolons produce nothing."""
        assert len(parse_ok(";;cube(1);;")) == 1


class TestModifiers:
    """Test modifier sigils."""

    @pytest.mark.parametrize("sigil", ["!", "#", "%", "*"])
    def test_modifier_on_invocation(self, sigil):
        """Each sigil is recorded on the invocation."""
        node = parse_ok(f"{sigil}cube(1);")[0]
        assert node.modifier == sigil

    def test_modifier_on_block_and_for(self):
        """Modifiers apply to blocks and loops too."""
        statements = parse_ok("%{ cube(1); } #for (i = [0:1]) cube(i);")
        assert statements[0].modifier == "%"
        assert statements[1].modifier == "#"

    def test_modifier_on_child(self):
        """A modifier can tag a child statement."""
        node = parse_ok("difference() { cube(10); #sphere(6); }")[0]
        assert node.children[0].modifier is None
        assert node.children[1].modifier == "#"

    def test_modifier_on_assignment_warns(self):
        """A modifier on an assignment is a warning, not an error."""
        result = parse_source("#x = 1;")
        assert result.success
        assert [d.code for d in result.diagnostics] == ["W101"]


# --- Expression Tests ---

class TestExpressions:
    """Test expression parsing and precedence."""

    def test_literals(self):
        """Numbers, strings, booleans and undef."""
        assert parse_expr("1.5").value == 1.5
        assert parse_expr('"s"').value == "s"
        assert parse_expr("true").value is True
        assert parse_expr("undef").value is None

    def test_multiplication_binds_tighter(self):
        """1 + 2 * 3 parses as 1 + (2 * 3)."""
        expr = parse_expr("1 + 2 * 3")
        assert expr.operator == TokenType.PLUS
        assert expr.right.operator == TokenType.STAR

    def test_left_associative(self):
        """10 - 4 - 3 parses as (10 - 4) - 3."""
        expr = parse_expr("10 - 4 - 3")
        assert isinstance(expr.left, BinaryOp)
        assert expr.right.value == 3

    def test_power_right_associative(self):
        """2 ^ 3 ^ 2 parses as 2 ^ (3 ^ 2)."""
        expr = parse_expr("2 ^ 3 ^ 2")
        assert expr.operator == TokenType.CARET
        assert isinstance(expr.right, BinaryOp)
        assert expr.left.value == 2

    def test_power_binds_tighter_than_unary(self):
        """-2 ^ 2 parses as -(2 ^ 2)."""
        expr = parse_expr("-2 ^ 2")
        assert isinstance(expr, UnaryOp)
        assert expr.operand.operator == TokenType.CARET

    def test_logical_precedence(self):
        """a || b && c parses as a || (b && c)."""
        expr = parse_expr("a || b && c")
        assert expr.operator == TokenType.OR
        assert expr.right.operator == TokenType.AND

    def test_comparison_below_arithmetic(self):
        """a + 1 < b * 2 compares two sums."""
        expr = parse_expr("a + 1 < b * 2")
        assert expr.operator == TokenType.LT

    def test_ternary(self):
        """Ternaries nest to the right."""
        expr = parse_expr("a ? 1 : b ? 2 : 3")
        assert isinstance(expr, Ternary)
        assert isinstance(expr.false_branch, Ternary)

    def test_vector_and_trailing_comma(self):
        """Vector literals allow a trailing comma."""
        expr = parse_expr("[1, 2, 3,]")
        assert isinstance(expr, VectorLiteral)
        assert len(expr.elements) == 3

    def test_ranges(self):
        """[start:end] and [start:step:end]."""
        two = parse_expr("[0:5]")
        three = parse_expr("[0:2:10]")
        assert isinstance(two, RangeLiteral) and two.step is None
        assert three.start.value == 0
        assert three.step.value == 2
        assert three.end.value == 10

    def test_postfix_chain(self):
        """f(1)[0].x parses as member of index of call."""
        expr = parse_expr("f(1)[0].x")
        assert isinstance(expr, MemberAccess)
        assert expr.member == "x"
        assert isinstance(expr.object, IndexAccess)
        assert isinstance(expr.object.object, FunctionCall)
        assert isinstance(expr.object.object.callee, Identifier)

    def test_let_expression(self):
        """let (a = 1, b = a) a + b"""
        expr = parse_expr("let (a = 1, b = a) a + b")
        assert isinstance(expr, LetExpression)
        assert [b.name for b in expr.bindings] == ["a", "b"]

    def test_list_comprehension(self):
        """[for (i = [0:3]) if (i % 2 == 0) i * 2]"""
        expr = parse_expr("[for (i = [0:3]) if (i % 2 == 0) i * 2]")
        assert isinstance(expr, ListComprehension)
        assert len(expr.clauses) == 1
        assert expr.clauses[0].variable == "i"
        assert len(expr.clauses[0].conditions) == 1

    def test_nested_comprehension_clauses(self):
        """Two bindings in one for become two clauses."""
        expr = parse_expr("[for (i = [0:1], j = [0:1]) [i, j]]")
        assert [c.variable for c in expr.clauses] == ["i", "j"]


# --- Error Recovery Tests ---

class TestErrorRecovery:
    """Test that the parser reports errors and keeps going."""

    def test_error_does_not_raise(self):
        """Malformed input yields diagnostics, not an exception."""
        result = parse_source("cube(10")
        assert not result.success
        assert result.errors[0]["code"] in ("E101", "E102")

    def test_recovers_at_semicolon(self):
        """The statement after a broken one is still parsed."""
        result = parse_source("cube(; sphere(2);")
        assert not result.success
        assert len(result.errors) == 1
        assert [s.name for s in result.statements] == ["sphere"]

    def test_several_errors_collected(self):
        """Independent errors are all reported."""
        result = parse_source("a = ;\nb = ;\nc = 1;")
        assert len(result.errors) == 2
        assert [e["line"] for e in result.errors] == [1, 2]
        assert [s.name for s in result.statements] == ["c"]

    def test_recovers_inside_block(self):
        """An error inside a block does not lose the rest of the block."""
        result = parse_source("union() { cube(; sphere(1); }\ncylinder(h=1, r=1);")
        assert len(result.errors) == 1
        names = [s.name for s in result.statements]
        assert names == ["union", "cylinder"]
        assert [c.name for c in result.statements[0].children] == ["sphere"]

    def test_stray_closing_brace(self):
        """An unmatched '}' is reported and skipped."""
        result = parse_source("} cube(1);")
        assert len(result.errors) == 1
        assert len(result.statements) == 1

    def test_error_location(self):
        """Errors carry line and column."""
        result = parse_source("x = 1;\ny = 2 +;")
        error = result.errors[0]
        assert error["line"] == 2
        assert error["column"] == 8

    def test_lexer_errors_reported(self):
        """ERROR tokens from the lexer show up as diagnostics."""
        result = parse_source("cube(1); @ sphere(1);")
        assert [e["code"] for e in result.errors] == ["E001"]
        assert len(result.statements) == 2

    def test_max_errors(self):
        """Parsing stops after max_errors errors."""
        source = "a = ;" * 10
        result = parse_source(source, max_errors=3)
        assert len(result.errors) == 3

    def test_deep_nesting_is_an_error(self):
        """Absurd nesting is reported rather than crashing."""
        result = parse_source("x = " + "(" * 5000 + "1" + ")" * 5000 + ";")
        assert not result.success


class TestDump:
    """Test the debug dump."""

    def test_dump_mentions_nodes(self):
        """dump_ast renders node class names."""
        text = dump_ast(parse_ok("translate([1, 0, 0]) cube(1);"))
        assert "ModuleInvocation" in text

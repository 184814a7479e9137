"""
Abstract Syntax Tree (AST) node definitions for the scadkit declarative language.

The AST is produced by the parser and by the scripting front end; both are
executed by the same interpreter.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Any
from abc import ABC
from .tokens import SourceSpan, TokenType


# =============================================================================
# Base Classes
# =============================================================================

@dataclass
class AstNode(ABC):
    """Common root of every syntax tree node."""
    span: SourceSpan

    def accept(self, visitor: "AstVisitor") -> Any:
        """Dispatch to `visitor.visit_<ClassName>`."""
        method_name = f"visit_{self.__class__.__name__}"
        method = getattr(visitor, method_name, visitor.generic_visit)
        return method(self)


class AstVisitor(ABC):
    """Walks a tree by calling `visit_<ClassName>` methods."""

    def generic_visit(self, node: AstNode) -> Any:
        """Fallback for node types with no visit method."""
        raise NotImplementedError(f"No visitor for {node.__class__.__name__}")


# =============================================================================
# Expression Nodes
# =============================================================================

@dataclass
class Expression(AstNode):
    """Anything that produces a value."""
    pass


@dataclass
class Literal(Expression):
    """A literal value: number (float), string, bool, or undef (None)."""
    value: Any


@dataclass
class Identifier(Expression):
    """A variable reference. $-prefixed names are dynamically scoped."""
    name: str


@dataclass
class BinaryOp(Expression):
    """A binary operation (e.g., a + b, x && y)."""
    left: Expression
    operator: TokenType
    right: Expression


@dataclass
class UnaryOp(Expression):
    """A unary operation (e.g., !x, -n)."""
    operator: TokenType
    operand: Expression


@dataclass
class Ternary(Expression):
    """A conditional expression: condition ? true_branch : false_branch."""
    condition: Expression
    true_branch: Expression
    false_branch: Expression


@dataclass
class VectorLiteral(Expression):
    """A vector literal (e.g., [1, 2, 3])."""
    elements: List[Expression]


@dataclass
class RangeLiteral(Expression):
    """A range: [start:end] or [start:step:end]."""
    start: Expression
    end: Expression
    step: Optional[Expression] = None


@dataclass
class IndexAccess(Expression):
    """Index access (e.g., v[0])."""
    object: Expression
    index: Expression


@dataclass
class MemberAccess(Expression):
    """Swizzle access on vectors: v.x, v.y, v.z."""
    object: Expression
    member: str


@dataclass
class FunctionCall(Expression):
    """A function call (e.g., max(1, 2), f(x=3))."""
    callee: Expression
    arguments: List[Expression]
    named_arguments: dict[str, Expression] = field(default_factory=dict)


@dataclass
class Binding(AstNode):
    """A name = value pair as used by let() and for()."""
    name: str
    value: Expression


@dataclass
class LetExpression(Expression):
    """let (a = 1, b = a + 1) body"""
    bindings: List[Binding]
    body: Expression


@dataclass
class ComprehensionClause(AstNode):
    """`for (variable = iterable) if (c1) if (c2) ...` inside `[...]`.

    Every condition must hold for an element to be kept.
    """
    variable: str
    iterable: Expression
    conditions: List[Expression] = field(default_factory=list)


@dataclass
class ListComprehension(Expression):
    """`[for (...) element]` with any number of chained clauses.

        [for (i = [0:3]) i * 2]
        [for (i = [0:3]) if (i % 2 == 0) i]
        [for (i = [0:2], j = [0:2]) [i, j]]

    The clauses are evaluated left-to-right as nested loops, each in a
    fresh binding scope.
    """
    element_expr: Expression
    clauses: List[ComprehensionClause] = field(default_factory=list)


# =============================================================================
# Statement Nodes
# =============================================================================

@dataclass
class Statement(AstNode):
    """Anything that produces geometry or binds names."""
    pass


@dataclass
class Parameter(AstNode):
    """A function or module parameter with optional default."""
    name: str
    default_value: Optional[Expression] = None


@dataclass
class Assignment(Statement):
    """name = value; (also $fn = value;)"""
    name: str
    value: Expression


@dataclass
class FunctionDef(Statement):
    """function name(params) = expr;

    The body is always a single expression.
    """
    name: str
    parameters: List[Parameter]
    body: Expression


@dataclass
class ModuleDef(Statement):
    """module name(params) { statements }"""
    name: str
    parameters: List[Parameter]
    body: List[Statement]


@dataclass
class ModuleInvocation(Statement):
    """A module call with optional children and modifier sigil.

        cube(10);
        translate([1, 0, 0]) sphere(2);
        #difference() { cube(10); sphere(6); }
    """
    name: str
    arguments: List[Expression]
    named_arguments: dict[str, Expression] = field(default_factory=dict)
    children: List[Statement] = field(default_factory=list)
    modifier: Optional[str] = None  # one of '!', '#', '%', '*'


@dataclass
class IfStatement(Statement):
    """if (condition) then_branch [else else_branch]"""
    condition: Expression
    then_branch: Statement
    else_branch: Optional[Statement] = None
    modifier: Optional[str] = None


@dataclass
class ForStatement(Statement):
    """for (a = iterable[, b = iterable2]) body

    Several bindings iterate as nested loops, outermost first.
    """
    bindings: List[Binding]
    body: Statement
    modifier: Optional[str] = None


@dataclass
class LetStatement(Statement):
    """let (bindings) body"""
    bindings: List[Binding]
    body: Statement
    modifier: Optional[str] = None


@dataclass
class Block(Statement):
    """A brace-delimited block; its results are implicitly unioned."""
    statements: List[Statement] = field(default_factory=list)
    modifier: Optional[str] = None


# =============================================================================
# Visitor Helpers
# =============================================================================

class DumpVisitor(AstVisitor):
    """Debug visitor that renders the AST structure as indented text."""

    def __init__(self, indent: int = 0):
        self.indent = indent
        self.lines: List[str] = []

    def _emit(self, text: str) -> None:
        self.lines.append("  " * self.indent + text)

    def _child(self, node: AstNode) -> None:
        sub = DumpVisitor(self.indent + 2)
        sub.generic_visit(node)
        self.lines.extend(sub.lines)

    def generic_visit(self, node: AstNode) -> None:
        self._emit(f"{node.__class__.__name__}")
        for name, value in node.__dict__.items():
            if name == "span" or value is None:
                continue
            if isinstance(value, AstNode):
                self._emit(f"  {name}:")
                self._child(value)
            elif isinstance(value, list):
                if not value:
                    continue
                self._emit(f"  {name}: [")
                for item in value:
                    if isinstance(item, AstNode):
                        self._child(item)
                    else:
                        self._emit(f"    {item!r}")
                self._emit("  ]")
            elif isinstance(value, dict):
                if not value:
                    continue
                self._emit(f"  {name}: {{")
                for key, item in value.items():
                    self._emit(f"    {key}=")
                    self._child(item)
                self._emit("  }")
            elif isinstance(value, TokenType):
                self._emit(f"  {name}: {value.name}")
            else:
                self._emit(f"  {name}: {value!r}")


def dump_ast(nodes: List[AstNode]) -> str:
    """Render a list of AST nodes for debugging."""
    lines = []
    for node in nodes:
        visitor = DumpVisitor()
        visitor.generic_visit(node)
        lines.extend(visitor.lines)
    return "\n".join(lines)

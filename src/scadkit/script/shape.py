"""
Chainable shape builder.

A :class:`Shape` wraps one AST statement. Every method returns a new
Shape whose node wraps the old one, so building a model is just building
the same ``ModuleInvocation`` tree the parser would produce for the
equivalent source text::

    part = (Shape.cube(20, center=True)
            .subtract(Shape.sphere(12, fn=48))
            .translate([0, 0, 10]))

Evaluation goes through the regular interpreter, so special variables,
implicit union and error reporting behave exactly as in source text.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from ..dsl.ast import Expression, Literal, ModuleInvocation, Statement, VectorLiteral
from ..dsl.errors import EvaluationError
from ..dsl.tokens import NO_SPAN
from ..kernel import Geometry, MeshData, ensure_initialized

Number = Union[int, float]

# Keyword shorthands for the special variables
SPECIAL_OPTIONS = {"fn": "$fn", "fa": "$fa", "fs": "$fs"}


def to_expression(value: Any) -> Expression:
    """Convert plain Python data into a literal expression."""
    if isinstance(value, Expression):
        return value
    if value is None or isinstance(value, (bool, str)):
        return Literal(NO_SPAN, value)
    if isinstance(value, (int, float)):
        return Literal(NO_SPAN, float(value))
    if hasattr(value, "tolist"):
        return to_expression(value.tolist())
    if isinstance(value, (list, tuple)):
        return VectorLiteral(NO_SPAN, [to_expression(v) for v in value])
    raise TypeError(f"cannot use {type(value).__name__} as a shape argument")


def _named(options: Dict[str, Any]) -> Dict[str, Expression]:
    """Named arguments; fn/fa/fs become $fn/$fa/$fs and None is dropped."""
    named = {}
    for key, value in options.items():
        if value is None:
            continue
        named[SPECIAL_OPTIONS.get(key, key)] = to_expression(value)
    return named


def invocation(name: str, args: Sequence[Any] = (), children: Sequence["Shape"] = (),
               **options) -> ModuleInvocation:
    """Build a ModuleInvocation node from Python arguments and child shapes."""
    return ModuleInvocation(
        NO_SPAN,
        name,
        [to_expression(a) for a in args],
        _named(options),
        [child.node for child in children],
    )


def _shapes(items: Sequence[Any]) -> List["Shape"]:
    shapes = []
    for item in items:
        if isinstance(item, (list, tuple)):
            shapes.extend(_shapes(item))
        elif isinstance(item, Shape):
            shapes.append(item)
        else:
            raise TypeError(f"expected a Shape, got {type(item).__name__}")
    return shapes


@dataclass(frozen=True)
class Shape:
    """An immutable handle on a shape description."""

    node: Statement

    # =========================================================================
    # Primitives
    # =========================================================================

    @classmethod
    def cube(cls, size: Union[Number, Sequence[Number]] = 1, center: bool = False) -> "Shape":
        return cls(invocation("cube", [size], center=center))

    @classmethod
    def sphere(cls, r: Number = 1, **options) -> "Shape":
        return cls(invocation("sphere", [r], **options))

    @classmethod
    def cylinder(cls, h: Number = 1, r: Number = 1, r2: Optional[Number] = None,
                 center: bool = False, **options) -> "Shape":
        """A cylinder; pass r2 for a truncated cone."""
        return cls(invocation("cylinder", [], h=h, r1=r, r2=r if r2 is None else r2,
                              center=center, **options))

    @classmethod
    def cone(cls, h: Number = 1, r: Number = 1, center: bool = False, **options) -> "Shape":
        return cls(invocation("cone", [], h=h, r=r, center=center, **options))

    @classmethod
    def polyhedron(cls, points: Sequence[Sequence[Number]],
                   faces: Sequence[Sequence[int]]) -> "Shape":
        return cls(invocation("polyhedron", [], points=points, faces=faces))

    @classmethod
    def circle(cls, r: Number = 1, **options) -> "Shape":
        return cls(invocation("circle", [r], **options))

    @classmethod
    def square(cls, size: Union[Number, Sequence[Number]] = 1, center: bool = False) -> "Shape":
        return cls(invocation("square", [size], center=center))

    @classmethod
    def polygon(cls, points: Sequence[Sequence[Number]],
                paths: Optional[Sequence[Sequence[int]]] = None) -> "Shape":
        return cls(invocation("polygon", [], points=points, paths=paths))

    @classmethod
    def surface(cls, file: Optional[str] = None, data: Optional[Sequence[Sequence[Number]]] = None,
                center: bool = False, invert: bool = False) -> "Shape":
        """A heightfield from a data file or an explicit grid."""
        return cls(invocation("surface", [], file=file, data=data, center=center, invert=invert))

    @classmethod
    def text(cls, t: str, size: Number = 10, font: Optional[str] = None,
             halign: str = "left", valign: str = "baseline", spacing: Number = 1,
             **options) -> "Shape":
        return cls(invocation("text", [t], size=size, font=font, halign=halign,
                              valign=valign, spacing=spacing, **options))

    # =========================================================================
    # Transforms
    # =========================================================================

    def translate(self, v: Sequence[Number]) -> "Shape":
        return Shape(invocation("translate", [v], [self]))

    def rotate(self, a: Union[Number, Sequence[Number]], v: Optional[Sequence[Number]] = None) -> "Shape":
        """Euler angles in degrees, or `a` degrees about axis `v`."""
        return Shape(invocation("rotate", [a], [self], v=v))

    def scale(self, v: Union[Number, Sequence[Number]]) -> "Shape":
        return Shape(invocation("scale", [v], [self]))

    def mirror(self, v: Sequence[Number]) -> "Shape":
        return Shape(invocation("mirror", [v], [self]))

    def multmatrix(self, m: Sequence[Sequence[Number]]) -> "Shape":
        return Shape(invocation("multmatrix", [m], [self]))

    def color(self, c: Union[str, Sequence[Number]], alpha: Optional[Number] = None) -> "Shape":
        return Shape(invocation("color", [c], [self], alpha=alpha))

    def resize(self, newsize: Sequence[Number], auto: Union[bool, Sequence[bool]] = False) -> "Shape":
        return Shape(invocation("resize", [newsize], [self], auto=auto))

    def offset(self, r: Optional[Number] = None, delta: Optional[Number] = None,
               chamfer: bool = False, **options) -> "Shape":
        return Shape(invocation("offset", [], [self], r=r, delta=delta, chamfer=chamfer, **options))

    def projection(self, cut: bool = False) -> "Shape":
        return Shape(invocation("projection", [], [self], cut=cut))

    # =========================================================================
    # Booleans
    # =========================================================================

    def union(self, *others: "Shape") -> "Shape":
        return Shape(invocation("union", [], [self] + _shapes(others)))

    def subtract(self, *others: "Shape") -> "Shape":
        return Shape(invocation("difference", [], [self] + _shapes(others)))

    difference = subtract

    def intersect(self, *others: "Shape") -> "Shape":
        return Shape(invocation("intersection", [], [self] + _shapes(others)))

    intersection = intersect

    def hull(self, *others: "Shape") -> "Shape":
        return Shape(invocation("hull", [], [self] + _shapes(others)))

    def minkowski(self, *others: "Shape") -> "Shape":
        return Shape(invocation("minkowski", [], [self] + _shapes(others)))

    # =========================================================================
    # Extrusions
    # =========================================================================

    def linear_extrude(self, height: Number, center: bool = False, twist: Number = 0,
                       slices: Optional[int] = None, scale: Union[Number, Sequence[Number]] = 1,
                       **options) -> "Shape":
        return Shape(invocation("linear_extrude", [], [self], height=height, center=center,
                                twist=twist, slices=slices, scale=scale, **options))

    def rotate_extrude(self, angle: Number = 360, **options) -> "Shape":
        return Shape(invocation("rotate_extrude", [], [self], angle=angle, **options))

    # =========================================================================
    # Modifiers
    # =========================================================================

    def _tagged(self, sigil: str) -> "Shape":
        return Shape(ModuleInvocation(NO_SPAN, "group", [], {}, [self.node], modifier=sigil))

    def debug(self) -> "Shape":
        """Highlight in the viewer (the # modifier)."""
        return self._tagged("#")

    def background(self) -> "Shape":
        """Show as a ghost in the viewer (the % modifier)."""
        return self._tagged("%")

    # =========================================================================
    # Queries
    # =========================================================================

    def evaluate(self, t: float = 0.0, max_call_depth: int = 100):
        """Run the interpreter on this shape; returns an EvaluationResult."""
        from ..dsl.runtime import create_context, evaluate
        ctx = create_context(t=t, max_call_depth=max_call_depth)
        return evaluate([self.node], ctx, ensure_initialized())

    def get_geometry(self, t: float = 0.0) -> Optional[Geometry]:
        """The evaluated geometry; raises EvaluationError on the first error."""
        result = self.evaluate(t)
        if not result.success:
            first = next(d for d in result.diagnostics if d.severity.name == "ERROR")
            raise EvaluationError(first)
        return result.geometry

    def to_mesh(self, t: float = 0.0) -> Optional[MeshData]:
        geometry = self.get_geometry(t)
        if geometry is None:
            return None
        return ensure_initialized().to_mesh(geometry)

    def get_bounds(self, t: float = 0.0):
        """((min_x, min_y, min_z), (max_x, max_y, max_z))."""
        geometry = self.get_geometry(t)
        if geometry is None:
            return (0.0, 0.0, 0.0), (0.0, 0.0, 0.0)
        return ensure_initialized().bounds(geometry)

    def get_volume(self, t: float = 0.0) -> float:
        geometry = self.get_geometry(t)
        if geometry is None or geometry.dimension != 3:
            return 0.0
        return float(geometry.handle.volume())

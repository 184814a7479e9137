"""
Free-function form of the shape builder.

Operands are explicit, so a model reads inside out the way the
declarative language does::

    difference(cube(20, center=True), sphere(12, fn=48))

Every function returns a :class:`~scadkit.script.shape.Shape`.
"""

from typing import Optional, Sequence, Union

from .shape import Number, Shape, _shapes

Vector = Sequence[Number]


# --- Primitives ---

def cube(size: Union[Number, Vector] = 1, center: bool = False) -> Shape:
    return Shape.cube(size, center)


def sphere(r: Number = 1, **options) -> Shape:
    return Shape.sphere(r, **options)


def cylinder(h: Number = 1, r: Number = 1, r2: Optional[Number] = None,
             center: bool = False, **options) -> Shape:
    return Shape.cylinder(h, r, r2, center, **options)


def cone(h: Number = 1, r: Number = 1, center: bool = False, **options) -> Shape:
    return Shape.cone(h, r, center, **options)


def polyhedron(points: Sequence[Vector], faces: Sequence[Sequence[int]]) -> Shape:
    return Shape.polyhedron(points, faces)


def circle(r: Number = 1, **options) -> Shape:
    return Shape.circle(r, **options)


def square(size: Union[Number, Vector] = 1, center: bool = False) -> Shape:
    return Shape.square(size, center)


def polygon(points: Sequence[Vector], paths: Optional[Sequence[Sequence[int]]] = None) -> Shape:
    return Shape.polygon(points, paths)


def surface(file: Optional[str] = None, data: Optional[Sequence[Vector]] = None,
            center: bool = False, invert: bool = False) -> Shape:
    return Shape.surface(file, data, center, invert)


def text(t: str, size: Number = 10, font: Optional[str] = None, halign: str = "left",
         valign: str = "baseline", spacing: Number = 1, **options) -> Shape:
    return Shape.text(t, size, font, halign, valign, spacing, **options)


# --- Transforms ---

def translate(offset: Vector, shape: Shape) -> Shape:
    return shape.translate(offset)


def rotate(angles: Union[Number, Vector], shape: Shape, axis: Optional[Vector] = None) -> Shape:
    return shape.rotate(angles, axis)


def scale(factors: Union[Number, Vector], shape: Shape) -> Shape:
    return shape.scale(factors)


def mirror(normal: Vector, shape: Shape) -> Shape:
    return shape.mirror(normal)


def multmatrix(matrix: Sequence[Vector], shape: Shape) -> Shape:
    return shape.multmatrix(matrix)


def color(c: Union[str, Vector], shape: Shape, alpha: Optional[Number] = None) -> Shape:
    return shape.color(c, alpha)


def resize(newsize: Vector, shape: Shape, auto: Union[bool, Sequence[bool]] = False) -> Shape:
    return shape.resize(newsize, auto)


# --- Booleans ---

def _first_and_rest(name: str, shapes):
    items = _shapes(shapes)
    if not items:
        raise TypeError(f"{name}() needs at least one shape")
    return items[0], items[1:]


def union(*shapes: Shape) -> Shape:
    first, rest = _first_and_rest("union", shapes)
    return first.union(*rest)


def difference(base: Shape, *shapes: Shape) -> Shape:
    return base.subtract(*_shapes(shapes))


def intersection(*shapes: Shape) -> Shape:
    first, rest = _first_and_rest("intersection", shapes)
    return first.intersect(*rest)


def hull(*shapes: Shape) -> Shape:
    first, rest = _first_and_rest("hull", shapes)
    return first.hull(*rest)


def minkowski(a: Shape, b: Shape) -> Shape:
    return a.minkowski(b)


# --- Extrusions and 2D operations ---

def linear_extrude(shape: Shape, height: Number, center: bool = False, twist: Number = 0,
                   slices: Optional[int] = None, scale: Union[Number, Vector] = 1,
                   **options) -> Shape:
    return shape.linear_extrude(height, center=center, twist=twist, slices=slices,
                                scale=scale, **options)


def rotate_extrude(shape: Shape, angle: Number = 360, **options) -> Shape:
    return shape.rotate_extrude(angle, **options)


def offset(shape: Shape, r: Optional[Number] = None, delta: Optional[Number] = None,
           chamfer: bool = False, **options) -> Shape:
    return shape.offset(r, delta, chamfer, **options)


def projection(shape: Shape, cut: bool = False) -> Shape:
    return shape.projection(cut)


__all__ = [
    "cube", "sphere", "cylinder", "cone", "polyhedron", "circle", "square", "polygon", "surface",
    "text",
    "translate", "rotate", "scale", "mirror", "multmatrix", "color", "resize",
    "union", "difference", "intersection", "hull", "minkowski",
    "linear_extrude", "rotate_extrude", "offset", "projection",
]

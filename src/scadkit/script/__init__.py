"""
scadkit scripting front end.

Two equivalent ways to describe a model in Python:

- ``Shape``: an immutable, chainable builder
  (``Shape.cube(10).translate([0, 0, 5])``)
- free functions with explicit operands
  (``translate([0, 0, 5], cube(10))``)

Both compile to the same AST the parser produces and are evaluated by
the same interpreter.
"""

from .shape import Shape, invocation, to_expression
from .functional import (
    cube, sphere, cylinder, cone, polyhedron, circle, square, polygon, surface, text,
    translate, rotate, scale, mirror, multmatrix, color, resize,
    union, difference, intersection, hull, minkowski,
    linear_extrude, rotate_extrude, offset, projection,
)
from .runtime import compile_script, run_script

__all__ = [
    "Shape", "invocation", "to_expression", "compile_script", "run_script",
    "cube", "sphere", "cylinder", "cone", "polyhedron", "circle", "square", "polygon", "surface",
    "text",
    "translate", "rotate", "scale", "mirror", "multmatrix", "color", "resize",
    "union", "difference", "intersection", "hull", "minkowski",
    "linear_extrude", "rotate_extrude", "offset", "projection",
]

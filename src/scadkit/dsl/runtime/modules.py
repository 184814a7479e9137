"""
Built-in module registry for the scadkit interpreter.

A built-in module receives a ModuleCall: its evaluated arguments, the
invocation node and a way back into the interpreter for its children.
Implementations resolve arguments to plain numbers and vectors and hand
them to the geometry kernel, returning a Geometry or None.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from .builtins import ArgumentError
from .values import Value, ValueType, as_number, as_vector, format_value
from ..ast import ModuleInvocation
from ..errors import error_assertion_failed, error_empty_boolean
from ...kernel import Geometry

if TYPE_CHECKING:
    from .interpreter import Interpreter

logger = logging.getLogger(__name__)


# OpenSCAD's GRID_FINE: radii below this get the minimum fragment count
GRID_FINE = 0.00000095367431640625


def get_fragments_from_r(r: float, fn: float, fs: float, fa: float) -> int:
    """Number of segments for a circle of radius r under $fn/$fs/$fa."""
    if r < GRID_FINE:
        return 3
    if not math.isfinite(fn):
        raise ArgumentError(f"$fn must be finite, got {fn}")
    if fn > 0.0:
        return int(max(fn, 3))
    return int(math.ceil(max(min(360.0 / fa, r * 2 * math.pi / fs), 5)))


# Named colors accepted by color("name"); CSS/SVG values
COLOR_NAMES: Dict[str, str] = {
    "black": "#000000", "white": "#ffffff", "gray": "#808080", "grey": "#808080",
    "silver": "#c0c0c0", "red": "#ff0000", "maroon": "#800000", "orange": "#ffa500",
    "gold": "#ffd700", "yellow": "#ffff00", "olive": "#808000", "lime": "#00ff00",
    "green": "#008000", "teal": "#008080", "cyan": "#00ffff", "aqua": "#00ffff",
    "blue": "#0000ff", "navy": "#000080", "purple": "#800080", "magenta": "#ff00ff",
    "fuchsia": "#ff00ff", "pink": "#ffc0cb", "brown": "#a52a2a", "tan": "#d2b48c",
    "beige": "#f5f5dc", "coral": "#ff7f50", "salmon": "#fa8072", "violet": "#ee82ee",
    "indigo": "#4b0082", "khaki": "#f0e68c", "steelblue": "#4682b4",
    "skyblue": "#87ceeb", "lightgray": "#d3d3d3", "lightgrey": "#d3d3d3",
    "darkgray": "#a9a9a9", "darkgrey": "#a9a9a9", "lightblue": "#add8e6",
    "lightgreen": "#90ee90", "darkgreen": "#006400", "darkred": "#8b0000",
    "darkblue": "#00008b", "transparent": "#00000000",
}


def parse_color(spec: str) -> tuple:
    """'red', '#f00', '#ff0000' or '#ff000080' to an RGBA tuple in 0..1."""
    text = COLOR_NAMES.get(spec.strip().lower(), spec.strip())
    if not text.startswith("#"):
        raise ArgumentError(f"unknown color '{spec}'")
    digits = text[1:]
    if len(digits) in (3, 4):
        digits = "".join(ch * 2 for ch in digits)
    if len(digits) not in (6, 8):
        raise ArgumentError(f"malformed color '{spec}'")
    try:
        channels = [int(digits[i:i + 2], 16) / 255.0 for i in range(0, len(digits), 2)]
    except ValueError:
        raise ArgumentError(f"malformed color '{spec}'")
    if len(channels) == 3:
        channels.append(1.0)
    return tuple(channels)


class ModuleCall:
    """
    One invocation of a built-in module.

    Positional and named arguments are already evaluated. Arguments are
    looked up by name first, then by position.
    """

    def __init__(self, interpreter: "Interpreter", node: ModuleInvocation,
                 args: List[Value], named: Dict[str, Value]):
        self.interpreter = interpreter
        self.node = node
        self.args = args
        self.named = named

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def span(self):
        return self.node.span

    @property
    def kernel(self):
        return self.interpreter.kernel

    # --- Argument access ---

    def arg(self, names, position: Optional[int] = None) -> Optional[Value]:
        """The argument bound to one of `names`, else to `position`; None if absent."""
        if isinstance(names, str):
            names = (names,)
        for name in names:
            value = self.named.get(name)
            if value is not None and not value.is_undef:
                return value
        if position is not None and position < len(self.args):
            value = self.args[position]
            if not value.is_undef:
                return value
        return None

    def number(self, names, position: Optional[int] = None,
               default: Optional[float] = None) -> Optional[float]:
        value = self.arg(names, position)
        if value is None:
            return default
        n = as_number(value)
        if n is None:
            raise ArgumentError(f"{self._label(names)} must be a number, got {value.type.value}")
        return n

    def vector(self, names, position: Optional[int] = None,
               default: Optional[Sequence[float]] = None) -> Optional[List[float]]:
        value = self.arg(names, position)
        if value is None:
            return None if default is None else list(default)
        v = as_vector(value)
        if v is None:
            raise ArgumentError(f"{self._label(names)} must be a vector of numbers")
        return v

    def number_or_vector(self, names, position: Optional[int] = None,
                         default=None, size: int = 3) -> Optional[List[float]]:
        """A vector argument; a bare number is repeated `size` times."""
        value = self.arg(names, position)
        if value is None:
            if default is None:
                return None
            return [float(default)] * size if isinstance(default, (int, float)) else list(default)
        n = as_number(value)
        if n is not None:
            return [n] * size
        return self.vector(names, position)

    def string(self, names, position: Optional[int] = None,
               default: Optional[str] = None) -> Optional[str]:
        value = self.arg(names, position)
        if value is None:
            return default
        if value.type != ValueType.STRING:
            raise ArgumentError(f"{self._label(names)} must be a string, got {value.type.value}")
        return value.data

    def flag(self, names, position: Optional[int] = None, default: bool = False) -> bool:
        value = self.arg(names, position)
        if value is None:
            return default
        return value.is_truthy()

    def matrix(self, names, position: Optional[int] = None) -> Optional[List[List[float]]]:
        value = self.arg(names, position)
        if value is None:
            return None
        if value.type != ValueType.VECTOR:
            raise ArgumentError(f"{self._label(names)} must be a list of vectors")
        rows = []
        for row in value.data:
            v = as_vector(row)
            if v is None:
                raise ArgumentError(f"{self._label(names)} must be a list of vectors")
            rows.append(v)
        return rows

    def index_lists(self, names, position: Optional[int] = None) -> Optional[List[List[int]]]:
        rows = self.matrix(names, position)
        if rows is None:
            return None
        for row in rows:
            if not all(math.isfinite(i) for i in row):
                raise ArgumentError(f"{self._label(names)} must hold finite indices")
        return [[int(i) for i in row] for row in rows]

    def special(self, name: str) -> float:
        """A $-variable: per-call override first, then the evaluation context."""
        value = self.named.get(name)
        if value is None:
            value = self.interpreter.context.get_special(name)
        n = as_number(value) if value is not None else None
        if n is None:
            raise ArgumentError(f"{name} must be a number")
        return n

    def fragments(self, r: float) -> int:
        return get_fragments_from_r(r, self.special("$fn"), self.special("$fs"), self.special("$fa"))

    @staticmethod
    def _label(names) -> str:
        return names if isinstance(names, str) else names[0]

    # --- Children ---

    def children(self) -> List[Geometry]:
        """One geometry per child statement that produced one."""
        return self.interpreter.child_operands(self.node, self.special_overrides())

    def children_union(self) -> Optional[Geometry]:
        operands = self.children()
        if not operands:
            return None
        if len(operands) == 1:
            return operands[0]
        return self.kernel.union(operands)

    def special_overrides(self) -> Dict[str, Value]:
        return {k: v for k, v in self.named.items() if k.startswith("$")}


@dataclass
class BuiltinModule:
    """A built-in module and its implementation."""
    name: str
    implementation: Callable[[ModuleCall], Optional[Geometry]]
    doc: str = ""


class ModuleRegistry:
    """
    Registry of all built-in modules.

    Lookup by name; user-defined modules shadow these.
    """

    def __init__(self):
        self._modules: Dict[str, BuiltinModule] = {}
        self._register_all()

    def get_module(self, name: str) -> Optional[BuiltinModule]:
        return self._modules.get(name)

    def register(self, module: BuiltinModule) -> None:
        self._modules[module.name] = module

    def names(self) -> List[str]:
        return sorted(self._modules)

    def _register_all(self) -> None:
        self._register_primitives()
        self._register_transforms()
        self._register_booleans()
        self._register_extrusions()
        self._register_control()

    # =========================================================================
    # Primitives
    # =========================================================================

    def _register_primitives(self) -> None:
        """Register 3D and 2D primitive shapes."""

        def _radius(call: ModuleCall, r_names, d_names, position, default):
            r = call.number(r_names, position)
            if r is not None:
                return r
            d = call.number(d_names)
            if d is not None:
                return d / 2.0
            return default

        def cube(call: ModuleCall) -> Geometry:
            size = call.number_or_vector("size", 0, default=1.0)
            return call.kernel.cube(size, call.flag("center", 1))

        def sphere(call: ModuleCall) -> Geometry:
            r = _radius(call, "r", "d", 0, 1.0)
            return call.kernel.sphere(r, call.fragments(r))

        def cylinder(call: ModuleCall) -> Geometry:
            h = call.number(("h", "height"), 0, 1.0)
            r = _radius(call, ("r", "radius"), "d", None, None)
            r1 = _radius(call, "r1", "d1", 1, r if r is not None else 1.0)
            r2 = _radius(call, "r2", "d2", 2, r if r is not None else r1)
            center = call.flag("center", 3)
            return call.kernel.cylinder(h, r1, r2, call.fragments(max(r1, r2)), center)

        def cone(call: ModuleCall) -> Geometry:
            h = call.number(("h", "height"), 0, 1.0)
            r = _radius(call, ("r", "radius", "r1"), "d", 1, 1.0)
            r2 = _radius(call, "r2", "d2", None, 0.0)
            return call.kernel.cylinder(h, r, r2, call.fragments(max(r, r2)), call.flag("center", 2))

        def polyhedron(call: ModuleCall) -> Geometry:
            points = call.matrix("points", 0)
            faces = call.index_lists(("faces", "triangles"), 1)
            if points is None or faces is None:
                raise ArgumentError("polyhedron needs points and faces")
            return call.kernel.polyhedron(points, faces)

        def surface(call: ModuleCall) -> Geometry:
            data = call.matrix("data")
            if data is None:
                source = call.arg("file", 0)
                if source is None or source.type != ValueType.STRING:
                    raise ArgumentError("surface needs a file name or a data grid")
                data = call.kernel.read_heightmap(source.data)
                logger.debug("surface: read %d rows from %s", len(data), source.data)
            return call.kernel.surface(data, call.flag("center", 1), call.flag("invert", 2))

        def circle(call: ModuleCall) -> Geometry:
            r = _radius(call, "r", "d", 0, 1.0)
            return call.kernel.circle(r, call.fragments(r))

        def square(call: ModuleCall) -> Geometry:
            size = call.number_or_vector("size", 0, default=1.0, size=2)
            return call.kernel.square(size, call.flag("center", 1))

        def polygon(call: ModuleCall) -> Geometry:
            points = call.matrix("points", 0)
            if points is None:
                raise ArgumentError("polygon needs points")
            return call.kernel.polygon(points, call.index_lists("paths", 1))

        def text(call: ModuleCall) -> Geometry:
            value = call.arg(("text", "t"), 0)
            if value is None:
                return call.kernel.empty(2)
            string = format_value(value, quote_strings=False)
            size = call.number("size", 1, 10.0)
            return call.kernel.text(
                string, size, font=call.string("font", 2),
                halign=call.string("halign", 3, "left"),
                valign=call.string("valign", 4, "baseline"),
                spacing=call.number("spacing", 5, 1.0),
                segments=max(1, call.fragments(size / 2.0) // 4))

        for name, impl in [("cube", cube), ("sphere", sphere), ("cylinder", cylinder),
                           ("cone", cone), ("polyhedron", polyhedron), ("surface", surface),
                           ("circle", circle), ("square", square), ("polygon", polygon),
                           ("text", text)]:
            self.register(BuiltinModule(name, impl))

    # =========================================================================
    # Transforms
    # =========================================================================

    def _register_transforms(self) -> None:
        """Register transforms; each applies to the union of its children."""

        def _transform(apply: Callable[[ModuleCall, Geometry], Geometry]):
            def impl(call: ModuleCall) -> Optional[Geometry]:
                child = call.children_union()
                if child is None:
                    return None
                return apply(call, child)
            return impl

        def translate(call, g):
            return call.kernel.translate(g, call.vector("v", 0, (0, 0, 0)), in_place=True)

        def rotate(call, g):
            a = call.arg("a", 0)
            axis = call.vector("v", 1)
            if a is None:
                return g
            angle = as_number(a)
            if angle is not None:
                if axis is not None:
                    return call.kernel.rotate_axis(g, angle, axis, in_place=True)
                return call.kernel.rotate(g, (0.0, 0.0, angle), in_place=True)
            angles = as_vector(a)
            if angles is None:
                raise ArgumentError("rotate a must be a number or a vector")
            return call.kernel.rotate(g, angles, in_place=True)

        def scale(call, g):
            return call.kernel.scale(g, call.number_or_vector("v", 0, default=1.0), in_place=True)

        def mirror(call, g):
            return call.kernel.mirror(g, call.vector("v", 0, (1, 0, 0)), in_place=True)

        def multmatrix(call, g):
            m = call.matrix("m", 0)
            if m is None:
                return g
            return call.kernel.multmatrix(g, m, in_place=True)

        def color(call, g):
            c = call.arg(("c", "color"), 0)
            alpha = call.number("alpha", 1)
            if c is None:
                return g
            if c.type == ValueType.STRING:
                rgba = list(parse_color(c.data))
            else:
                v = as_vector(c)
                if v is None or len(v) not in (3, 4):
                    raise ArgumentError("color must be a name or an [r, g, b(, a)] vector")
                rgba = list(v) + ([1.0] if len(v) == 3 else [])
            if alpha is not None:
                rgba[3] = alpha
            return call.kernel.color(g, tuple(rgba), in_place=True)

        def resize(call, g):
            newsize = call.number_or_vector("newsize", 0, default=0.0)
            auto = call.arg("auto", 1)
            if auto is None:
                autos = [False, False, False]
            elif auto.type == ValueType.VECTOR:
                autos = [v.is_truthy() for v in auto.data]
            else:
                autos = [auto.is_truthy()] * 3
            return call.kernel.resize(g, newsize, autos, in_place=True)

        def offset(call, g):
            r = call.number("r", 0)
            delta = call.number("delta")
            segments = call.fragments(abs(r)) if r is not None else 0
            return call.kernel.offset(g, r=r, delta=delta, chamfer=call.flag("chamfer"),
                                      segments=segments)

        def projection(call, g):
            return call.kernel.projection(g, cut=call.flag("cut", 0))

        for name, apply in [("translate", translate), ("rotate", rotate), ("scale", scale),
                            ("mirror", mirror), ("multmatrix", multmatrix), ("color", color),
                            ("resize", resize), ("offset", offset), ("projection", projection)]:
            self.register(BuiltinModule(name, _transform(apply)))

    # =========================================================================
    # Booleans
    # =========================================================================

    def _register_booleans(self) -> None:
        """Register CSG operators; each child statement is one operand."""

        def _boolean(operation: str):
            def impl(call: ModuleCall) -> Optional[Geometry]:
                if not call.node.children:
                    raise error_empty_boolean(call.name, call.span)
                operands = call.children()
                if not operands:
                    return None
                if len(operands) == 1:
                    return operands[0]
                return getattr(call.kernel, operation)(operands)
            return impl

        for name in ("union", "difference", "intersection", "hull", "minkowski"):
            self.register(BuiltinModule(name, _boolean(name)))

    # =========================================================================
    # Extrusions
    # =========================================================================

    def _register_extrusions(self) -> None:
        """Register linear and rotational extrusion of 2D children."""

        def _extent(call: ModuleCall, g: Geometry) -> float:
            lo, hi = call.kernel.bounds(g)
            return max(abs(lo[0]), abs(hi[0]), abs(lo[1]), abs(hi[1]))

        def linear_extrude(call: ModuleCall) -> Optional[Geometry]:
            child = call.children_union()
            if child is None:
                return None
            height = call.number(("height", "h"), 0, 100.0)
            twist = call.number("twist", default=0.0)
            top = call.number_or_vector("scale", default=1.0, size=2)
            slices = call.number("slices")
            if slices is None:
                if twist:
                    fragments = call.fragments(_extent(call, child))
                    slices = max(1, int(math.ceil(fragments * abs(twist) / 360.0)))
                else:
                    slices = 1
            return call.kernel.linear_extrude(child, height, twist=twist, scale_top=top,
                                              slices=int(slices), center=call.flag("center", 1))

        def rotate_extrude(call: ModuleCall) -> Optional[Geometry]:
            child = call.children_union()
            if child is None:
                return None
            angle = call.number("angle", 0, 360.0)
            return call.kernel.rotate_extrude(child, angle, call.fragments(_extent(call, child)))

        self.register(BuiltinModule("linear_extrude", linear_extrude))
        self.register(BuiltinModule("rotate_extrude", rotate_extrude))

    # =========================================================================
    # Control
    # =========================================================================

    def _register_control(self) -> None:
        """Register echo, assert, children and the grouping modules."""

        def group(call: ModuleCall) -> Optional[Geometry]:
            return call.children_union()

        def children(call: ModuleCall) -> Optional[Geometry]:
            return call.interpreter.invoke_children(call)

        def echo(call: ModuleCall) -> Optional[Geometry]:
            parts = [format_value(v) for v in call.args]
            parts += [f"{k} = {format_value(v)}" for k, v in call.named.items()]
            call.interpreter.context.add_echo(", ".join(parts), call.span)
            return call.children_union()

        def assert_(call: ModuleCall) -> Optional[Geometry]:
            condition = call.arg("condition", 0)
            if condition is None or not condition.is_truthy():
                message = call.arg("message", 1)
                text = "condition is false"
                if message is not None:
                    text = format_value(message, quote_strings=False)
                raise error_assertion_failed(text, call.span)
            return call.children_union()

        def intersection_for(call: ModuleCall) -> Optional[Geometry]:
            if call.args:
                raise ArgumentError("intersection_for takes name = iterable bindings")
            results = call.interpreter.iterate_children(call.node, list(call.named.items()))
            if not results:
                return None
            if len(results) == 1:
                return results[0]
            return call.kernel.intersection(results)

        self.register(BuiltinModule("group", group))
        self.register(BuiltinModule("render", group))
        self.register(BuiltinModule("children", children))
        self.register(BuiltinModule("echo", echo))
        self.register(BuiltinModule("assert", assert_))
        self.register(BuiltinModule("intersection_for", intersection_for))


_registry: Optional[ModuleRegistry] = None


def get_module_registry() -> ModuleRegistry:
    """Get the global built-in module registry."""
    global _registry
    if _registry is None:
        _registry = ModuleRegistry()
    return _registry

"""manifold3d-backed geometry kernel.

Every function takes resolved Python numbers and sequences plus
already-built :class:`Geometry` operands and returns a new Geometry. 3-D
shapes are ``manifold3d.Manifold`` objects, 2-D shapes are
``manifold3d.CrossSection`` objects; mixing the two in one boolean is an
error.

Transforms accept ``in_place=True`` to rebind the handle on the operand
instead of allocating a new Geometry.

Minkowski sums are computed as the convex hull of pairwise vertex sums,
which is exact when both operands are convex.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
from manifold3d import CrossSection, FillRule, JoinType, Manifold, Mesh, OpType

from .geometry import Color, Geometry, MeshData, build_mesh_data
from .text import text_contours
from .triangulate import triangulate_contours

logger = logging.getLogger(__name__)

ENGINE_NAME = "manifold"


class KernelError(RuntimeError):
    """The kernel rejected an operation or its inputs."""


_initialized = False


def initialize() -> None:
    """Run a self-test; raises KernelError if the kernel is unusable."""
    global _initialized
    probe = Manifold.cube((1.0, 1.0, 1.0))
    if probe.is_empty() or abs(probe.volume() - 1.0) > 1e-6:
        raise KernelError("manifold3d self-test produced an invalid unit cube")
    _initialized = True
    logger.debug("manifold3d kernel initialized")


def is_initialized() -> bool:
    return _initialized


def empty(dimension: int = 3) -> Geometry:
    """An empty shape of the given dimension."""
    return Geometry(Manifold() if dimension == 3 else CrossSection(), dimension)


def _solid(handle: Manifold) -> Geometry:
    return Geometry(handle, 3)


def _planar(handle: CrossSection) -> Geometry:
    return Geometry(handle, 2)


def _vec(values: Sequence[float], n: int, fill: float = 0.0) -> tuple:
    padded = list(values)[:n]
    padded += [fill] * (n - len(padded))
    return tuple(float(x) for x in padded)


def _rebind(geometry: Geometry, handle, in_place: bool) -> Geometry:
    if in_place:
        geometry.handle = handle
        return geometry
    return geometry.with_handle(handle)


# =============================================================================
# Primitives
# =============================================================================

def cube(size: Sequence[float], center: bool = False) -> Geometry:
    x, y, z = _vec(size, 3)
    if x <= 0 or y <= 0 or z <= 0:
        return empty(3)
    return _solid(Manifold.cube((x, y, z), center))


def sphere(radius: float, segments: int) -> Geometry:
    if radius <= 0:
        return empty(3)
    return _solid(Manifold.sphere(float(radius), int(segments)))


def cylinder(height: float, r1: float, r2: float, segments: int,
             center: bool = False) -> Geometry:
    """A cylinder or cone (r2 == 0) along +Z."""
    if height <= 0 or (r1 <= 0 and r2 <= 0) or r1 < 0 or r2 < 0:
        return empty(3)
    return _solid(Manifold.cylinder(float(height), float(r1), float(r2),
                                    int(segments), center))


def polyhedron(points: Sequence[Sequence[float]],
               faces: Sequence[Sequence[int]]) -> Geometry:
    """A closed solid from points and faces.

    Faces list point indices clockwise when seen from outside; polygons
    with more than three points are fan-triangulated.
    """
    verts = np.asarray([_vec(p, 3) for p in points], dtype=np.float32)
    tris = []
    for face in faces:
        if len(face) < 3:
            raise KernelError("polyhedron faces need at least 3 points")
        for idx in face:
            if idx < 0 or idx >= len(verts):
                raise KernelError(f"polyhedron face index {idx} out of range")
        for i in range(1, len(face) - 1):
            # reversed winding: clockwise in, counter-clockwise out
            tris.append((face[0], face[i + 1], face[i]))
    if not tris:
        return empty(3)
    mesh = Mesh(vert_properties=verts, tri_verts=np.asarray(tris, dtype=np.uint32))
    handle = Manifold(mesh)
    status = handle.status()
    if status.name != "NoError":
        raise KernelError(f"polyhedron is not a closed manifold ({status.name})")
    return _solid(handle)


def circle(radius: float, segments: int) -> Geometry:
    if radius <= 0:
        return empty(2)
    return _planar(CrossSection.circle(float(radius), int(segments)))


def square(size: Sequence[float], center: bool = False) -> Geometry:
    x, y = _vec(size, 2)
    if x <= 0 or y <= 0:
        return empty(2)
    return _planar(CrossSection.square((x, y), center))


def polygon(points: Sequence[Sequence[float]],
            paths: Optional[Sequence[Sequence[int]]] = None) -> Geometry:
    """A 2-D region; overlapping paths combine with the even-odd rule."""
    pts = [_vec(p, 2) for p in points]
    if paths is None:
        contours = [pts]
    else:
        contours = []
        for path in paths:
            for idx in path:
                if idx < 0 or idx >= len(pts):
                    raise KernelError(f"polygon path index {idx} out of range")
            contours.append([pts[i] for i in path])
    contours = [np.asarray(c, dtype=np.float64) for c in contours if len(c) >= 3]
    if not contours:
        return empty(2)
    return _planar(CrossSection(contours, FillRule.EvenOdd))


def read_heightmap(path: str) -> List[List[float]]:
    """Read a whitespace- or comma-separated grid of heights.

    Lines starting with '#' are comments.
    """
    rows = []
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        rows.append([float(x) for x in line.replace(",", " ").split()])
    return rows


def surface(heights: Sequence[Sequence[float]], center: bool = False,
            invert: bool = False) -> Geometry:
    """A closed heightfield: row r, column c sits at (c, r, height).

    The base is one unit below the lowest sample.
    """
    grid = np.asarray(heights, dtype=np.float64)
    if grid.ndim != 2 or grid.shape[0] < 2 or grid.shape[1] < 2:
        raise KernelError("surface data must be a grid of at least 2x2 samples")
    if invert:
        grid = -grid
    rows, cols = grid.shape
    base = float(grid.min()) - 1.0

    ys, xs = np.mgrid[0:rows, 0:cols]
    top = np.column_stack([xs.ravel(), ys.ravel(), grid.ravel()])
    bottom = np.column_stack([xs.ravel(), ys.ravel(), np.full(rows * cols, base)])
    verts = np.vstack([top, bottom])
    n = rows * cols

    def t(r, c):
        return r * cols + c

    tris = []
    for r in range(rows - 1):
        for c in range(cols - 1):
            a, b, cc, d = t(r, c), t(r, c + 1), t(r + 1, c + 1), t(r + 1, c)
            tris += [(a, b, cc), (a, cc, d)]
            tris += [(a + n, cc + n, b + n), (a + n, d + n, cc + n)]

    # Boundary loop, counter-clockwise seen from above
    loop = [t(0, c) for c in range(cols - 1)]
    loop += [t(r, cols - 1) for r in range(rows - 1)]
    loop += [t(rows - 1, c) for c in range(cols - 1, 0, -1)]
    loop += [t(r, 0) for r in range(rows - 1, 0, -1)]
    for i, p in enumerate(loop):
        q = loop[(i + 1) % len(loop)]
        tris += [(p, p + n, q + n), (p, q + n, q)]

    mesh = Mesh(vert_properties=verts.astype(np.float32),
                tri_verts=np.asarray(tris, dtype=np.uint32))
    handle = Manifold(mesh)
    if center:
        handle = handle.translate((-(cols - 1) / 2.0, -(rows - 1) / 2.0, 0.0))
    return _solid(handle)


def text(string: str, size: float = 10.0, font: Optional[str] = None,
         halign: str = "left", valign: str = "baseline", spacing: float = 1.0,
         segments: int = 4) -> Geometry:
    """`string` as a 2-D region; `segments` straight runs per curved outline piece."""
    if size <= 0 or not string:
        return empty(2)
    try:
        contours, winding = text_contours(string, float(size), font, halign, valign,
                                          float(spacing), max(1, int(segments)))
    except ValueError as e:
        raise KernelError(str(e)) from e
    if not contours:
        return empty(2)
    rule = FillRule.NonZero if winding else FillRule.Positive
    return _planar(CrossSection(contours, rule))


# =============================================================================
# Transforms
# =============================================================================

def translate(geometry: Geometry, offset: Sequence[float], in_place: bool = False) -> Geometry:
    if geometry.dimension == 2:
        return _rebind(geometry, geometry.handle.translate(_vec(offset, 2)), in_place)
    return _rebind(geometry, geometry.handle.translate(_vec(offset, 3)), in_place)


def rotate(geometry: Geometry, angles: Sequence[float], in_place: bool = False) -> Geometry:
    """Rotate by Euler angles in degrees: about X, then Y, then Z."""
    x, y, z = _vec(angles, 3)
    if geometry.dimension == 2:
        return _rebind(geometry, geometry.handle.rotate(z), in_place)
    return _rebind(geometry, geometry.handle.rotate((x, y, z)), in_place)


def rotation_matrix(angle: float, axis: Sequence[float]) -> np.ndarray:
    """3x3 rotation of `angle` degrees about `axis` (Rodrigues)."""
    ax = np.asarray(_vec(axis, 3), dtype=np.float64)
    norm = np.linalg.norm(ax)
    if norm == 0:
        return np.eye(3)
    kx, ky, kz = ax / norm
    theta = math.radians(angle)
    c, s = math.cos(theta), math.sin(theta)
    v = 1.0 - c
    return np.array([
        [kx * kx * v + c, kx * ky * v - kz * s, kx * kz * v + ky * s],
        [ky * kx * v + kz * s, ky * ky * v + c, ky * kz * v - kx * s],
        [kz * kx * v - ky * s, kz * ky * v + kx * s, kz * kz * v + c],
    ])


def rotate_axis(geometry: Geometry, angle: float, axis: Sequence[float],
                in_place: bool = False) -> Geometry:
    """Rotate `angle` degrees about an arbitrary axis through the origin."""
    if geometry.dimension == 2:
        z = _vec(axis, 3)[2]
        return _rebind(geometry, geometry.handle.rotate(angle if z >= 0 else -angle), in_place)
    m = np.zeros((3, 4))
    m[:, :3] = rotation_matrix(angle, axis)
    return _rebind(geometry, geometry.handle.transform(m), in_place)


def scale(geometry: Geometry, factors: Sequence[float], in_place: bool = False) -> Geometry:
    if geometry.dimension == 2:
        return _rebind(geometry, geometry.handle.scale(_vec(factors, 2, 1.0)), in_place)
    return _rebind(geometry, geometry.handle.scale(_vec(factors, 3, 1.0)), in_place)


def mirror(geometry: Geometry, normal: Sequence[float], in_place: bool = False) -> Geometry:
    """Reflect across the plane through the origin with the given normal."""
    n = _vec(normal, 3)
    if not any(n):
        return geometry if in_place else geometry.with_handle(geometry.handle)
    if geometry.dimension == 2:
        if not any(n[:2]):
            return geometry if in_place else geometry.with_handle(geometry.handle)
        return _rebind(geometry, geometry.handle.mirror(n[:2]), in_place)
    return _rebind(geometry, geometry.handle.mirror(n), in_place)


def multmatrix(geometry: Geometry, matrix: Sequence[Sequence[float]],
               in_place: bool = False) -> Geometry:
    """Apply a 4x4 (or 3x4) affine matrix; the last row is ignored."""
    rows = [_vec(row, 4) for row in matrix]
    if len(rows) < 3:
        raise KernelError("multmatrix needs a 3x4 or 4x4 matrix")
    m = np.asarray(rows[:3], dtype=np.float64)
    if geometry.dimension == 2:
        m2 = np.array([[m[0, 0], m[0, 1], m[0, 3]],
                       [m[1, 0], m[1, 1], m[1, 3]]])
        return _rebind(geometry, geometry.handle.transform(m2), in_place)
    return _rebind(geometry, geometry.handle.transform(m), in_place)


def bounds(geometry: Geometry) -> tuple:
    """((min_x, min_y, min_z), (max_x, max_y, max_z)); zeros if empty."""
    if geometry.is_empty:
        return (0.0, 0.0, 0.0), (0.0, 0.0, 0.0)
    if geometry.dimension == 2:
        pts = np.concatenate([np.asarray(p) for p in geometry.handle.to_polygons()])
        lo, hi = pts.min(axis=0), pts.max(axis=0)
        return (float(lo[0]), float(lo[1]), 0.0), (float(hi[0]), float(hi[1]), 0.0)
    box = geometry.handle.bounding_box()
    return tuple(float(x) for x in box[:3]), tuple(float(x) for x in box[3:])


def resize(geometry: Geometry, newsize: Sequence[float],
           auto: Sequence[bool] = (False, False, False), in_place: bool = False) -> Geometry:
    """Scale so the bounding box matches `newsize`.

    Zero entries keep their extent, or, where `auto` is set, scale by the
    largest factor among the specified axes.
    """
    n = geometry.dimension
    target = _vec(newsize, n)
    autos = list(auto)[:n] + [False] * (n - len(auto))
    lo, hi = bounds(geometry)
    extent = [hi[i] - lo[i] for i in range(n)]

    factors = []
    for i in range(n):
        if target[i] > 0:
            if extent[i] <= 0:
                raise KernelError("cannot resize a shape with zero extent")
            factors.append(target[i] / extent[i])
        else:
            factors.append(None)
    specified = [f for f in factors if f is not None]
    auto_factor = max(specified) if specified else 1.0
    final = [f if f is not None else (auto_factor if autos[i] else 1.0)
             for i, f in enumerate(factors)]
    return scale(geometry, final, in_place=in_place)


def color(geometry: Geometry, rgba: Color, in_place: bool = False) -> Geometry:
    if in_place:
        geometry.color = rgba
        return geometry
    result = geometry.with_handle(geometry.handle)
    result.color = rgba
    return result


# =============================================================================
# Booleans
# =============================================================================

def _operands(geometries: Sequence[Geometry], operation: str) -> tuple:
    if not geometries:
        raise KernelError(f"{operation} needs at least one operand")
    dims = {g.dimension for g in geometries}
    if len(dims) > 1:
        raise KernelError(f"{operation} cannot mix 2D and 3D geometry")
    dim = dims.pop()
    return dim, [g.handle for g in geometries]


def _batch(geometries: Sequence[Geometry], op: OpType, operation: str) -> Geometry:
    dim, handles = _operands(geometries, operation)
    if len(handles) == 1:
        handle = handles[0]
    elif dim == 3:
        handle = Manifold.batch_boolean(handles, op)
    else:
        handle = CrossSection.batch_boolean(handles, op)
    # result keeps the first operand's color
    return Geometry(handle, dim, color=geometries[0].color)


def union(geometries: Sequence[Geometry]) -> Geometry:
    return _batch(geometries, OpType.Add, "union")


def difference(geometries: Sequence[Geometry]) -> Geometry:
    """The first operand minus all others."""
    return _batch(geometries, OpType.Subtract, "difference")


def intersection(geometries: Sequence[Geometry]) -> Geometry:
    return _batch(geometries, OpType.Intersect, "intersection")


def hull(geometries: Sequence[Geometry]) -> Geometry:
    dim, handles = _operands(geometries, "hull")
    if dim == 3:
        handle = Manifold.batch_hull(handles)
    else:
        handle = CrossSection.batch_hull(handles)
    return Geometry(handle, dim, color=geometries[0].color)


def _vertices(geometry: Geometry) -> np.ndarray:
    if geometry.dimension == 2:
        polys = geometry.handle.to_polygons()
        if not polys:
            return np.zeros((0, 2))
        return np.concatenate([np.asarray(p, dtype=np.float64) for p in polys])
    return np.asarray(geometry.handle.to_mesh().vert_properties, dtype=np.float64)[:, :3]


def minkowski(geometries: Sequence[Geometry]) -> Geometry:
    dim, _ = _operands(geometries, "minkowski")
    points = _vertices(geometries[0])
    for other in geometries[1:]:
        extra = _vertices(other)
        if len(points) == 0 or len(extra) == 0:
            return Geometry(empty(dim).handle, dim, color=geometries[0].color)
        points = (points[:, None, :] + extra[None, :, :]).reshape(-1, dim)
    if dim == 3:
        handle = Manifold.hull_points(points)
    else:
        handle = CrossSection.hull_points(points)
    return Geometry(handle, dim, color=geometries[0].color)


# =============================================================================
# Extrusions and 2-D operations
# =============================================================================

def _require_2d(geometry: Geometry, operation: str) -> None:
    if geometry.dimension != 2:
        raise KernelError(f"{operation} needs 2D children")


def _require_3d(geometry: Geometry, operation: str) -> None:
    if geometry.dimension != 3:
        raise KernelError(f"{operation} needs 3D children")


def linear_extrude(geometry: Geometry, height: float, twist: float = 0.0,
                   scale_top: Sequence[float] = (1.0, 1.0), slices: int = 1,
                   center: bool = False) -> Geometry:
    _require_2d(geometry, "linear_extrude")
    if height <= 0:
        return Geometry(Manifold(), 3, color=geometry.color)
    handle = geometry.handle.extrude(float(height), max(0, int(slices) - 1),
                                     float(twist), _vec(scale_top, 2, 1.0))
    if center:
        handle = handle.translate((0.0, 0.0, -height / 2.0))
    return Geometry(handle, 3, color=geometry.color)


def rotate_extrude(geometry: Geometry, angle: float = 360.0, segments: int = 0) -> Geometry:
    _require_2d(geometry, "rotate_extrude")
    angle = max(-360.0, min(360.0, float(angle)))
    if angle == 0:
        return Geometry(Manifold(), 3, color=geometry.color)
    result = geometry.handle.revolve(int(segments), abs(angle))
    if angle < 0:
        # sweep clockwise instead of counter-clockwise
        result = result.mirror((0.0, 1.0, 0.0))
    return Geometry(result, 3, color=geometry.color)


def offset(geometry: Geometry, r: Optional[float] = None, delta: Optional[float] = None,
           chamfer: bool = False, segments: int = 0) -> Geometry:
    """Grow (or shrink) a 2-D shape: rounded by `r`, or sharp/chamfered by `delta`."""
    _require_2d(geometry, "offset")
    if r is not None:
        handle = geometry.handle.offset(float(r), JoinType.Round, 2.0, int(segments))
    else:
        join = JoinType.Square if chamfer else JoinType.Miter
        handle = geometry.handle.offset(float(delta or 0.0), join, 2.0, int(segments))
    return geometry.with_handle(handle)


def projection(geometry: Geometry, cut: bool = False) -> Geometry:
    """Flatten onto XY: the full shadow, or the slice at z=0 when `cut`."""
    _require_3d(geometry, "projection")
    handle = geometry.handle.slice(0.0) if cut else geometry.handle.project()
    return geometry.with_handle(handle, dimension=2)


# =============================================================================
# Mesh extraction
# =============================================================================

def to_mesh(geometry: Geometry) -> MeshData:
    """Extract triangle buffers; 2-D shapes are triangulated at z=0."""
    if geometry.dimension == 2:
        verts2d, indices = triangulate_contours(
            [np.asarray(p) for p in geometry.handle.to_polygons()])
        verts = np.column_stack([verts2d, np.zeros(len(verts2d))]) if len(verts2d) else np.zeros((0, 3))
        return build_mesh_data(verts, indices.reshape(-1, 3), 0.0, 2,
                               geometry.modifier, geometry.color)

    mesh = geometry.handle.to_mesh()
    verts = np.asarray(mesh.vert_properties, dtype=np.float64)
    verts = verts[:, :3] if verts.size else np.zeros((0, 3))
    faces = np.asarray(mesh.tri_verts, dtype=np.int64)
    return build_mesh_data(verts, faces, geometry.handle.volume(), 3,
                           geometry.modifier, geometry.color)

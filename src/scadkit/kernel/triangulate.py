"""Triangulation of 2-D regions for mesh output.

Ear clipping is done by ``mapbox-earcut``. Cross sections come back from
the kernel as a flat list of contours, so :func:`triangulate_contours`
first sorts them into outer loops (counter-clockwise) and holes
(clockwise), then triangulates each outer loop together with the holes
it contains.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import mapbox_earcut as _earcut

EPSILON = 1e-9


def _empty() -> Tuple[np.ndarray, np.ndarray]:
    return np.zeros((0, 2)), np.zeros(0, dtype=np.uint32)


def _loop(points: Sequence[Sequence[float]], ccw: bool) -> np.ndarray:
    """Clean a closed loop: drop repeated points and orient it."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(pts) == 0:
        return pts
    step = np.abs(np.diff(pts, axis=0)).max(axis=1) if len(pts) > 1 else np.zeros(0)
    pts = pts[np.concatenate([[True], step > EPSILON])]
    if len(pts) > 1 and np.abs(pts[0] - pts[-1]).max() <= EPSILON:
        pts = pts[:-1]
    if len(pts) >= 3 and (signed_area(pts) > 0) != ccw:
        pts = pts[::-1]
    return pts


def signed_area(loop) -> float:
    """Shoelace area; positive for counter-clockwise loops."""
    pts = np.asarray(loop, dtype=np.float64)
    x, y = pts[:, 0], pts[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def contains(loop: np.ndarray, point) -> bool:
    """Even-odd test of `point` against a closed loop."""
    x, y = float(point[0]), float(point[1])
    x0, y0 = loop[:, 0], loop[:, 1]
    x1, y1 = np.roll(x0, -1), np.roll(y0, -1)
    straddles = (y0 > y) != (y1 > y)
    with np.errstate(divide="ignore", invalid="ignore"):
        crossing = x0 + (y - y0) * (x1 - x0) / (y1 - y0)
    return bool(np.count_nonzero(straddles & (x < crossing)) % 2)


def triangulate_polygon(outer: Sequence[Sequence[float]],
                        holes: Optional[Iterable[Sequence[Sequence[float]]]] = None
                        ) -> Tuple[np.ndarray, np.ndarray]:
    """Triangulate ``outer`` minus ``holes``.

    Returns an ``(N, 2)`` vertex array and a flat index array holding
    three entries per counter-clockwise triangle. Loops with fewer than
    three distinct points are skipped.
    """
    rings = [_loop(outer, ccw=True)]
    if len(rings[0]) < 3:
        return _empty()
    rings.extend(r for r in (_loop(h, ccw=False) for h in holes or ()) if len(r) >= 3)

    vertices = np.concatenate(rings)
    ends = np.cumsum([len(r) for r in rings]).astype(np.uint32)
    indices = _earcut.triangulate_float64(vertices, ends)
    return vertices, np.asarray(indices, dtype=np.uint32)


def triangulate_contours(contours: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """Triangulate a set of non-overlapping contours.

    Each hole goes to the smallest outer loop that contains it.
    """
    outers: List[Tuple[float, np.ndarray]] = []
    holes: List[np.ndarray] = []
    for contour in contours:
        loop = np.asarray(contour, dtype=np.float64).reshape(-1, 2)
        if len(loop) < 3:
            continue
        area = signed_area(loop)
        if area > EPSILON:
            outers.append((area, loop))
        elif area < -EPSILON:
            holes.append(loop)
    outers.sort(key=lambda item: item[0])

    owned: List[list] = [[] for _ in outers]
    for hole in holes:
        owner = next((i for i, (_, loop) in enumerate(outers) if contains(loop, hole[0])), None)
        if owner is not None:
            owned[owner].append(hole)

    vertex_parts, index_parts = [], []
    base = 0
    for (_, loop), inner in zip(outers, owned):
        vertices, indices = triangulate_polygon(loop, inner)
        if len(indices):
            vertex_parts.append(vertices)
            index_parts.append(indices + base)
            base += len(vertices)
    if not vertex_parts:
        return _empty()
    return np.concatenate(vertex_parts), np.concatenate(index_parts).astype(np.uint32)

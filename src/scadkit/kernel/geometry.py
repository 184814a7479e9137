"""Geometry handles and extracted mesh buffers.

A :class:`Geometry` wraps whatever object the active kernel uses for a
solid (3-D) or a cross section (2-D), plus the presentation tags the
evaluator attaches: the modifier sigil and an RGBA color. Kernel
operations never look at the tags; they only carry them along.

:class:`MeshData` is the renderer-facing result: flat numpy buffers plus
bounds and stats, serializable with :meth:`MeshData.to_dict`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

import numpy as np
import trimesh

Color = Tuple[float, float, float, float]


@dataclass
class Geometry:
    """A kernel-owned shape plus its dimension and presentation tags."""

    handle: Any
    dimension: int = 3
    modifier: Optional[str] = None
    color: Optional[Color] = None

    def with_handle(self, handle: Any, dimension: Optional[int] = None) -> "Geometry":
        """Return a new Geometry sharing this one's tags."""
        return replace(self, handle=handle,
                       dimension=self.dimension if dimension is None else dimension)

    @property
    def is_empty(self) -> bool:
        return self.handle.is_empty()

    def __repr__(self) -> str:
        tags = []
        if self.modifier:
            tags.append(f"modifier={self.modifier!r}")
        if self.color:
            tags.append(f"color={self.color!r}")
        extra = (", " + ", ".join(tags)) if tags else ""
        return f"Geometry({self.dimension}D{extra})"


@dataclass
class MeshData:
    """Triangle buffers extracted from a Geometry."""

    vertices: np.ndarray        # (N, 3) float32
    indices: np.ndarray         # (3 * faces,) uint32, counter-clockwise
    normals: np.ndarray         # (N, 3) float32, per vertex
    bounds_min: Tuple[float, float, float]
    bounds_max: Tuple[float, float, float]
    volume: float = 0.0
    dimension: int = 3
    modifier: Optional[str] = None
    color: Optional[Color] = None

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def face_count(self) -> int:
        return int(self.indices.shape[0] // 3)

    @property
    def is_empty(self) -> bool:
        return self.face_count == 0

    def to_dict(self) -> dict:
        """JSON-serializable form."""
        return {
            "vertices": self.vertices.reshape(-1).tolist(),
            "indices": self.indices.tolist(),
            "normals": self.normals.reshape(-1).tolist(),
            "bounds": {
                "min": list(self.bounds_min),
                "max": list(self.bounds_max),
            },
            "stats": {
                "vertexCount": self.vertex_count,
                "faceCount": self.face_count,
                "volume": self.volume,
            },
            "modifier": self.modifier,
            "color": list(self.color) if self.color is not None else None,
        }


def build_mesh_data(vertices: np.ndarray, faces: np.ndarray, volume: float = 0.0,
                    dimension: int = 3, modifier: Optional[str] = None,
                    color: Optional[Color] = None) -> MeshData:
    """Assemble MeshData from raw vertex and (M, 3) face arrays.

    Normals are per-vertex, averaged from adjacent faces by trimesh. Bounds
    of an empty mesh are all zero.
    """
    vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)

    if len(faces) == 0 or len(vertices) == 0:
        return MeshData(
            vertices=np.zeros((0, 3), dtype=np.float32),
            indices=np.zeros(0, dtype=np.uint32),
            normals=np.zeros((0, 3), dtype=np.float32),
            bounds_min=(0.0, 0.0, 0.0),
            bounds_max=(0.0, 0.0, 0.0),
            volume=0.0,
            dimension=dimension,
            modifier=modifier,
            color=color,
        )

    mesh = trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    normals = np.asarray(mesh.vertex_normals, dtype=np.float32)

    lo = vertices.min(axis=0)
    hi = vertices.max(axis=0)
    return MeshData(
        vertices=vertices.astype(np.float32),
        indices=faces.reshape(-1).astype(np.uint32),
        normals=normals,
        bounds_min=tuple(float(x) for x in lo),
        bounds_max=tuple(float(x) for x in hi),
        volume=float(volume),
        dimension=dimension,
        modifier=modifier,
        color=color,
    )

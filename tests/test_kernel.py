"""
Tests for the geometry kernel: primitives, booleans, transforms,
extrusions, mesh extraction and triangulation.
"""

import math
import threading

import numpy as np
import pytest

from scadkit.dsl.errors import KernelInitError
import scadkit.kernel as kernel_registry
from scadkit.kernel import KernelError, MeshData, ensure_initialized, get_engine
from scadkit.kernel import manifold_engine
from scadkit.kernel.text import flatten_contour, resolve_font
from scadkit.kernel.triangulate import triangulate_contours, triangulate_polygon


@pytest.fixture(scope="module")
def k():
    return ensure_initialized("manifold")


def vol(k, g):
    return k.to_mesh(g).volume


def area2d(vertices, indices):
    """Total area of a flat triangle list."""
    total = 0.0
    for a, b, c in np.asarray(indices).reshape(-1, 3):
        (x0, y0), (x1, y1), (x2, y2) = vertices[a][:2], vertices[b][:2], vertices[c][:2]
        total += ((x1 - x0) * (y2 - y0) - (x2 - x0) * (y1 - y0)) / 2.0
    return total


# --- Initialization ---

class TestInitialization:
    """Test kernel registry and initialization."""

    def test_initialize_once(self):
        """Repeated initialization returns the same engine."""
        assert ensure_initialized() is ensure_initialized("manifold")
        assert get_engine("manifold").is_initialized()

    def test_unknown_kernel(self):
        """An unknown kernel name is an initialization error."""
        with pytest.raises(KernelInitError) as info:
            ensure_initialized("no-such-kernel")
        assert info.value.code == "E503"

    def test_concurrent_first_use_initializes_once(self, monkeypatch):
        """Threads racing on first use trigger a single initialize()."""
        calls = []
        monkeypatch.setattr(kernel_registry, "_initialized_engines", set())
        monkeypatch.setattr(manifold_engine, "initialize", lambda: calls.append(1))
        barrier = threading.Barrier(8)
        engines = []

        def first_use():
            barrier.wait()
            engines.append(ensure_initialized("manifold"))

        threads = [threading.Thread(target=first_use) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        assert len(calls) == 1
        assert len(engines) == 8
        assert all(e is manifold_engine for e in engines)


# --- Primitives ---

class TestPrimitives:
    """Test primitive construction."""

    def test_cube(self, k):
        assert vol(k, k.cube((1, 2, 3))) == pytest.approx(6)

    def test_centered_cube(self, k):
        lo, hi = k.bounds(k.cube((2, 2, 2), center=True))
        assert lo == pytest.approx((-1, -1, -1))
        assert hi == pytest.approx((1, 1, 1))

    def test_degenerate_sizes_are_empty(self, k):
        """Zero or negative sizes give empty geometry, not errors."""
        assert k.cube((0, 1, 1)).is_empty
        assert k.sphere(0, 16).is_empty
        assert k.circle(-1, 16).is_empty

    def test_sphere_segments(self, k):
        """More segments give more vertices."""
        coarse = k.to_mesh(k.sphere(1, 8)).vertex_count
        fine = k.to_mesh(k.sphere(1, 32)).vertex_count
        assert fine > coarse

    def test_cone(self, k):
        g = k.cylinder(3, 1, 0, 128)
        assert vol(k, g) == pytest.approx(math.pi, rel=0.01)

    def test_polyhedron_bad_index(self, k):
        with pytest.raises(KernelError):
            k.polyhedron([[0, 0, 0], [1, 0, 0], [0, 1, 0]], [[0, 1, 5]])

    def test_open_polyhedron_rejected(self, k):
        """A polyhedron that is not closed is refused."""
        with pytest.raises(KernelError):
            k.polyhedron([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], [[0, 1, 2]])

    def test_polygon_with_hole(self, k):
        """Nested paths make a hole."""
        points = [[0, 0], [4, 0], [4, 4], [0, 4], [1, 1], [3, 1], [3, 3], [1, 3]]
        g = k.polygon(points, [[0, 1, 2, 3], [4, 5, 6, 7]])
        mesh = k.to_mesh(g)
        assert mesh.dimension == 2
        assert abs(area2d(mesh.vertices, mesh.indices)) == pytest.approx(12)

    def test_surface(self, k):
        """A flat 2x2 heightmap is a unit cube above its base."""
        g = k.surface([[0, 0], [0, 0]])
        assert vol(k, g) == pytest.approx(1)

    def test_read_heightmap(self, k, tmp_path):
        path = tmp_path / "heights.dat"
        path.write_text("# heights\n1 2 3\n4,5,6\n")
        assert k.read_heightmap(str(path)) == [[1, 2, 3], [4, 5, 6]]


# --- Booleans ---

class TestBooleans:
    """Test boolean operations."""

    def test_union_overlap(self, k):
        a = k.cube((2, 2, 2))
        b = k.translate(k.cube((2, 2, 2)), (1, 0, 0))
        assert vol(k, k.union([a, b])) == pytest.approx(12)

    def test_difference_first_minus_rest(self, k):
        a = k.cube((3, 1, 1))
        b = k.cube((1, 1, 1))
        c = k.translate(k.cube((1, 1, 1)), (2, 0, 0))
        assert vol(k, k.difference([a, b, c])) == pytest.approx(1)

    def test_difference_of_equal_shapes(self, k):
        a = k.cube((10, 10, 10))
        assert vol(k, k.difference([a, k.cube((10, 10, 10))])) == pytest.approx(0, abs=1e-6)

    def test_intersection(self, k):
        a = k.cube((2, 2, 2))
        b = k.translate(k.cube((2, 2, 2)), (1, 1, 1))
        assert vol(k, k.intersection([a, b])) == pytest.approx(1)

    def test_hull(self, k):
        a = k.cube((1, 1, 1))
        b = k.translate(k.cube((1, 1, 1)), (2, 0, 0))
        assert vol(k, k.hull([a, b])) == pytest.approx(3)

    def test_minkowski_of_boxes(self, k):
        assert vol(k, k.minkowski([k.cube((2, 2, 2)), k.cube((1, 1, 1))])) == pytest.approx(27)

    def test_mixed_dimensions_rejected(self, k):
        with pytest.raises(KernelError):
            k.union([k.cube((1, 1, 1)), k.square((1, 1))])

    def test_union_2d(self, k):
        a = k.square((2, 2))
        b = k.translate(k.square((2, 2)), (1, 0))
        mesh = k.to_mesh(k.union([a, b]))
        assert abs(area2d(mesh.vertices, mesh.indices)) == pytest.approx(6)

    def test_result_keeps_first_color(self, k):
        red = k.color(k.cube((1, 1, 1)), (1, 0, 0, 1))
        plain = k.cube((2, 2, 2))
        assert k.union([red, plain]).color == (1, 0, 0, 1)


# --- Transforms ---

class TestTransforms:
    """Test affine transforms and tags."""

    def test_translate_copy_and_in_place(self, k):
        g = k.cube((1, 1, 1))
        moved = k.translate(g, (5, 0, 0))
        assert moved is not g
        assert k.bounds(g)[0][0] == pytest.approx(0)
        same = k.translate(g, (5, 0, 0), in_place=True)
        assert same is g
        assert k.bounds(g)[0][0] == pytest.approx(5)

    def test_rotate_euler(self, k):
        g = k.rotate(k.cube((3, 1, 1)), (0, 0, 90))
        lo, hi = k.bounds(g)
        assert hi[0] - lo[0] == pytest.approx(1)
        assert hi[1] - lo[1] == pytest.approx(3)

    def test_rotate_axis(self, k):
        g = k.rotate_axis(k.cube((3, 1, 1)), 90, (0, 1, 0))
        lo, hi = k.bounds(g)
        assert hi[2] - lo[2] == pytest.approx(3)

    def test_rotation_matrix_orthonormal(self, k):
        m = k.rotation_matrix(37, (1, 2, 3))
        assert np.allclose(m @ m.T, np.eye(3))
        assert k.rotation_matrix(10, (0, 0, 0)) == pytest.approx(np.eye(3))

    def test_scale_and_mirror(self, k):
        g = k.mirror(k.scale(k.cube((1, 1, 1)), (2, 1, 1)), (1, 0, 0))
        lo, hi = k.bounds(g)
        assert lo[0] == pytest.approx(-2)
        assert hi[0] == pytest.approx(0)

    def test_multmatrix_translation(self, k):
        m = [[1, 0, 0, 4], [0, 1, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]
        lo, _ = k.bounds(k.multmatrix(k.cube((1, 1, 1)), m))
        assert lo[0] == pytest.approx(4)

    def test_resize(self, k):
        g = k.resize(k.cube((2, 2, 2)), (4, 0, 0))
        lo, hi = k.bounds(g)
        assert hi[0] - lo[0] == pytest.approx(4)
        assert hi[1] - lo[1] == pytest.approx(2)

    def test_resize_auto_uses_largest_factor(self, k):
        g = k.resize(k.cube((2, 2, 2)), (4, 3, 0), auto=(False, False, True))
        lo, hi = k.bounds(g)
        assert hi[2] - lo[2] == pytest.approx(4)

    def test_tags_survive_transforms(self, k):
        g = k.color(k.cube((1, 1, 1)), (0, 1, 0, 0.5))
        g.modifier = "#"
        moved = k.rotate(g, (10, 20, 30))
        assert moved.color == (0, 1, 0, 0.5)
        assert moved.modifier == "#"


# --- Extrusions ---

class TestExtrusions:
    """Test 2D to 3D operations."""

    def test_linear_extrude(self, k):
        g = k.linear_extrude(k.square((2, 2)), 3)
        assert g.dimension == 3
        assert vol(k, g) == pytest.approx(12)

    def test_linear_extrude_centered(self, k):
        lo, hi = k.bounds(k.linear_extrude(k.square((1, 1)), 4, center=True))
        assert lo[2] == pytest.approx(-2)
        assert hi[2] == pytest.approx(2)

    def test_linear_extrude_scaled_top(self, k):
        """Scaling the top to zero makes a pyramid."""
        g = k.linear_extrude(k.square((2, 2), center=True), 3, scale_top=(0, 0))
        assert vol(k, g) == pytest.approx(4)

    def test_rotate_extrude(self, k):
        ring = k.translate(k.square((1, 1)), (2, 0))
        g = k.rotate_extrude(ring, 360, 128)
        expected = math.pi * (3 ** 2 - 2 ** 2)
        assert vol(k, g) == pytest.approx(expected, rel=0.01)

    def test_rotate_extrude_partial(self, k):
        ring = k.translate(k.square((1, 1)), (2, 0))
        full = vol(k, k.rotate_extrude(ring, 360, 128))
        half = vol(k, k.rotate_extrude(ring, 180, 64))
        assert half == pytest.approx(full / 2, rel=0.01)

    def test_extrude_requires_2d(self, k):
        with pytest.raises(KernelError):
            k.linear_extrude(k.cube((1, 1, 1)), 1)

    def test_offset(self, k):
        grown = k.offset(k.square((2, 2)), delta=1)
        mesh = k.to_mesh(grown)
        assert abs(area2d(mesh.vertices, mesh.indices)) == pytest.approx(16)

    def test_projection(self, k):
        flat = k.projection(k.cube((2, 3, 4)))
        assert flat.dimension == 2
        lo, hi = k.bounds(flat)
        assert (hi[0] - lo[0], hi[1] - lo[1]) == pytest.approx((2, 3))


# --- Text ---

class TestText:
    """Test text() layout and glyph outlines."""

    def text_area(self, k, g):
        mesh = k.to_mesh(g)
        return abs(area2d(mesh.vertices, mesh.indices))

    def test_block_glyph(self, k):
        """A block H is 17 cells of 0.8 x size / 5 by size / 7."""
        h = k.text("H", 7, font="block")
        assert h.dimension == 2
        lo, hi = k.bounds(h)
        assert (lo[0], lo[1]) == pytest.approx((0, 0))
        assert (hi[0], hi[1]) == pytest.approx((5.6, 7))
        assert self.text_area(k, h) == pytest.approx(17 * 1.12)

    def test_lower_case_prints_as_upper(self, k):
        lower = self.text_area(k, k.text("abc", 7, font="block"))
        assert lower == pytest.approx(self.text_area(k, k.text("ABC", 7, font="block")))

    def test_unknown_character_draws_a_box(self, k):
        assert self.text_area(k, k.text("~", 7, font="block")) == pytest.approx(20 * 1.12)

    def test_alignment(self, k):
        centered = k.text("HH", 7, font="block", halign="center", valign="center")
        lo, hi = k.bounds(centered)
        assert lo[0] == pytest.approx(-hi[0])
        assert lo[1] == pytest.approx(-hi[1])
        _, hi = k.bounds(k.text("HH", 7, font="block", halign="right", valign="top"))
        assert (hi[0], hi[1]) == pytest.approx((0, 0))

    def test_bad_alignment(self, k):
        with pytest.raises(KernelError):
            k.text("H", 5, font="block", halign="middle")

    def test_empty_text(self, k):
        assert k.text("", 5).is_empty
        assert k.text("H", 0, font="block").is_empty

    def test_font_cap_height(self, k):
        """With a real font, a capital H stands `size` tall on the baseline."""
        if resolve_font(None) is None:
            pytest.skip("no font files installed")
        lo, hi = k.bounds(k.text("H", 10))
        assert lo[1] == pytest.approx(0, abs=1e-6)
        assert hi[1] == pytest.approx(10)
        ring = k.text("O", 10)
        lo, hi = k.bounds(ring)
        # a filled ellipse would cover about 0.78 of its box
        assert 0 < self.text_area(k, ring) < 0.6 * (hi[0] - lo[0]) * (hi[1] - lo[1])

    def test_flatten_quadratic(self):
        points = np.array([(0, 0), (1, 1), (2, 0)], dtype=float)
        loop = flatten_contour(points, [1, 0, 1], steps=2)
        assert loop.tolist() == [[0, 0], [1, 0.5], [2, 0]]

    def test_flatten_implied_on_point(self):
        """Two conic controls in a row meet at their midpoint."""
        points = np.array([(0, 0), (0, 2), (2, 2), (2, 0)], dtype=float)
        loop = flatten_contour(points, [1, 0, 0, 1], steps=1)
        assert loop.tolist() == [[0, 0], [1, 2], [2, 0]]


# --- Mesh extraction ---

class TestMeshData:
    """Test mesh extraction."""

    def test_cube_mesh(self, k):
        mesh = k.to_mesh(k.cube((1, 1, 1)))
        assert isinstance(mesh, MeshData)
        assert mesh.face_count == 12
        assert mesh.vertices.shape[1] == 3
        assert mesh.normals.shape == mesh.vertices.shape
        assert mesh.indices.dtype == np.uint32

    def test_empty_mesh(self, k):
        mesh = k.to_mesh(k.cube((0, 0, 0)))
        assert mesh.is_empty
        assert mesh.bounds_min == (0.0, 0.0, 0.0)

    def test_to_dict(self, k):
        data = k.to_mesh(k.color(k.cube((1, 1, 1)), (1, 0, 0, 1))).to_dict()
        assert set(data) >= {"vertices", "indices", "normals", "bounds", "stats"}
        assert data["stats"]["faceCount"] == 12
        assert data["stats"]["volume"] == pytest.approx(1)
        assert data["color"] == [1, 0, 0, 1]
        assert len(data["vertices"]) == 3 * data["stats"]["vertexCount"]


# --- Triangulation ---

class TestTriangulation:
    """Test 2D triangulation."""

    def test_square(self):
        verts, idx = triangulate_polygon([(0, 0), (1, 0), (1, 1), (0, 1)])
        assert len(idx) == 6
        assert area2d(verts, idx) == pytest.approx(1)

    def test_clockwise_input_is_reoriented(self):
        """Triangles come out counter-clockwise whatever the input order."""
        verts, idx = triangulate_polygon([(0, 1), (1, 1), (1, 0), (0, 0)])
        assert area2d(verts, idx) == pytest.approx(1)

    def test_hole(self):
        outer = [(0, 0), (4, 0), (4, 4), (0, 4)]
        hole = [(1, 1), (3, 1), (3, 3), (1, 3)]
        verts, idx = triangulate_polygon(outer, [hole])
        assert area2d(verts, idx) == pytest.approx(12)

    def test_degenerate(self):
        verts, idx = triangulate_polygon([(0, 0), (1, 0), (0, 0)])
        assert len(idx) == 0

    def test_contours_assign_holes(self):
        """Clockwise contours become holes of the outer loop around them."""
        contours = [
            np.array([(0, 0), (4, 0), (4, 4), (0, 4)], dtype=float),
            np.array([(1, 1), (1, 3), (3, 3), (3, 1)], dtype=float),
            np.array([(10, 0), (11, 0), (11, 1), (10, 1)], dtype=float),
        ]
        verts, idx = triangulate_contours(contours)
        assert area2d(verts, idx) == pytest.approx(13)

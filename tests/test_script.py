"""
Tests for the Python scripting front end: the Shape builder, the
free-function API and script execution.
"""

import pytest

from scadkit.dsl.ast import Identifier, ModuleInvocation
from scadkit.dsl.tokens import NO_SPAN
from scadkit.dsl.errors import EvaluationError, JobCancelledError, ScriptProtocolError, error_cancelled
from scadkit.dsl.runtime import CancellationToken, run_source
from scadkit.kernel import ensure_initialized
from scadkit.script import Shape, compile_script, run_script
from scadkit.script import functional as f


@pytest.fixture(scope="module")
def kernel():
    return ensure_initialized()


def text_mesh(kernel, source):
    result = run_source(source)
    assert result.success, result.errors
    return kernel.to_mesh(result.geometry)


# --- Builder Tests ---

class TestShapeBuilder:
    """Test the chainable builder."""

    def test_builds_invocations(self):
        """Each call wraps the previous node as its only child."""
        shape = Shape.cube(10).translate([1, 2, 3])
        node = shape.node
        assert isinstance(node, ModuleInvocation)
        assert node.name == "translate"
        assert node.children[0].name == "cube"

    def test_shapes_are_immutable(self):
        """Transforming a shape leaves the original untouched."""
        base = Shape.cube(1)
        moved = base.translate([5, 0, 0])
        assert base.node.name == "cube"
        assert moved is not base
        assert base.get_bounds()[0][0] == pytest.approx(0)
        assert moved.get_bounds()[0][0] == pytest.approx(5)

    def test_special_shorthands(self):
        """fn/fa/fs keywords become $fn/$fa/$fs arguments."""
        node = Shape.sphere(2, fn=24).node
        assert set(node.named_arguments) == {"$fn"}

    def test_matches_text_front_end(self, kernel):
        """Builder and source text give identical meshes."""
        built = Shape.cube(10, center=True).subtract(Shape.sphere(6, fn=32)).to_mesh()
        text = text_mesh(kernel, "difference() { cube(10, center=true); sphere(6, $fn=32); }")
        assert built.vertex_count == text.vertex_count
        assert built.face_count == text.face_count
        assert built.volume == pytest.approx(text.volume)

    def test_volume_and_bounds(self):
        shape = Shape.cube([1, 2, 3]).scale(2)
        assert shape.get_volume() == pytest.approx(48)
        lo, hi = shape.get_bounds()
        assert hi == pytest.approx((2, 4, 6))

    def test_booleans_take_several_shapes(self):
        shape = Shape.cube(3).subtract(Shape.cube(1), Shape.cube(1).translate([2, 2, 2]))
        assert shape.get_volume() == pytest.approx(25)

    def test_extrusion(self):
        assert Shape.square(2).linear_extrude(5).get_volume() == pytest.approx(20)

    def test_two_dimensional_volume_is_zero(self):
        assert Shape.circle(3).get_volume() == 0.0

    def test_color_and_debug(self):
        result = Shape.cube(1).color("blue").debug().evaluate()
        assert result.success
        assert result.geometry.color == pytest.approx((0.0, 0.0, 1.0, 1.0))
        assert len(result.tagged) == 1

    def test_animation_parameter(self):
        """t is passed through as $t."""
        shape = Shape.cube(1).translate([Identifier(NO_SPAN, "$t"), 0, 0])
        assert shape.get_bounds(t=0.5)[0][0] == pytest.approx(0.5)
        assert shape.get_bounds()[0][0] == pytest.approx(0)

    def test_errors_raise(self):
        """get_geometry raises the first evaluation error."""
        with pytest.raises(EvaluationError) as info:
            Shape.polygon([[0, 0], [1, 0]], paths=[[0, 1, 7]]).get_geometry()
        assert info.value.code == "E411"

    def test_unsupported_argument_type(self):
        with pytest.raises(TypeError):
            Shape.cube(object())

    def test_text(self, kernel):
        label = Shape.text("V1", 7, font="block").linear_extrude(1)
        assert f.text("V1", 7, font="block").linear_extrude(1).node == label.node
        assert label.get_volume() == pytest.approx(text_mesh(
            kernel, 'linear_extrude(1) text("V1", 7, font="block");').volume)


class TestFunctionalApi:
    """Test the free-function form."""

    def test_matches_builder(self, kernel):
        builder = Shape.cube(10, center=True).subtract(Shape.sphere(6, fn=32))
        functional = f.difference(f.cube(10, center=True), f.sphere(6, fn=32))
        assert builder.node == functional.node

    def test_matches_text(self, kernel):
        shape = f.translate([0, 0, 5], f.union(f.cube(2), f.cylinder(h=4, r=1, fn=16)))
        text = text_mesh(kernel, "translate([0, 0, 5]) union() { cube(2); "
                                 "cylinder(h=4, r1=1, r2=1, center=false, $fn=16); }")
        mesh = shape.to_mesh()
        assert mesh.vertex_count == text.vertex_count
        assert mesh.bounds_min == pytest.approx(text.bounds_min)

    def test_empty_union_rejected(self):
        with pytest.raises(TypeError):
            f.union()

    def test_hull_and_minkowski(self):
        assert f.hull(f.cube(1), f.translate([2, 0, 0], f.cube(1))).get_volume() == pytest.approx(3)
        assert f.minkowski(f.cube(2), f.cube(1)).get_volume() == pytest.approx(27)

    def test_nested_shape_lists(self):
        """Lists of shapes are flattened."""
        shape = f.union([f.cube(1), [f.translate([2, 0, 0], f.cube(1))]])
        assert shape.get_volume() == pytest.approx(2)


# --- Script Tests ---

class TestScripts:
    """Test executing script source."""

    def test_result_shape(self):
        result = run_script("result = Shape.cube(2).translate([1, 0, 0])")
        assert result.success
        assert result.geometry is not None

    def test_result_list_is_unioned(self, kernel):
        code = "result = [cube(1), translate([2, 0, 0], cube(1))]"
        result = run_script(code)
        assert kernel.to_mesh(result.geometry).volume == pytest.approx(2)

    def test_python_control_flow(self, kernel):
        code = """
parts = []
for i in range(3):
    parts.append(Shape.cube(1).translate([i * 2, 0, 0]))
result = union(*parts)
"""
        result = run_script(code)
        assert kernel.to_mesh(result.geometry).volume == pytest.approx(3)

    def test_t_is_available(self, kernel):
        result = run_script("result = Shape.cube(1 + t)", t=1.0)
        assert kernel.to_mesh(result.geometry).volume == pytest.approx(8)

    def test_allowed_imports(self):
        code = "import math\nfrom scadkit.script import cube\nresult = cube(math.sqrt(4))"
        assert run_script(code).success

    def test_forbidden_import(self):
        result = run_script("import os\nresult = Shape.cube(1)")
        assert not result.success
        error = result.errors[0]
        assert error["code"] == "E400"
        assert "ImportError" in error["message"]
        assert error["line"] == 1

    def test_missing_result(self):
        """A script that never assigns result is a protocol error."""
        result = run_script("x = Shape.cube(1)")
        assert [e["code"] for e in result.errors] == ["E505"]

    def test_wrong_result_type(self):
        result = run_script("result = 42")
        assert [e["code"] for e in result.errors] == ["E505"]

    def test_syntax_error_line(self):
        result = run_script("x = 1\nresult = (\n")
        error = result.errors[0]
        assert error["code"] == "E400"
        assert error["line"] >= 2

    def test_exception_line(self):
        result = run_script("a = 1\nb = 2\nraise ValueError('bad size')\n")
        error = result.errors[0]
        assert error["line"] == 3
        assert "bad size" in error["message"]

    def test_evaluation_errors_reported(self):
        """Errors from the evaluator surface like text-source errors."""
        code = "from scadkit.script import invocation\nresult = Shape(invocation('nosuch'))"
        result = run_script(code)
        assert [e["code"] for e in result.errors] == ["E403"]

    def test_compile_script_raises(self):
        with pytest.raises(ScriptProtocolError):
            compile_script("pass")
        with pytest.raises(EvaluationError):
            compile_script("1 / 0")

    def test_cancelled_script_stops(self):
        """A cancelled token interrupts even a script that never yields."""
        token = CancellationToken()
        token.cancel(error_cancelled())
        with pytest.raises(JobCancelledError):
            compile_script("while True:\n    pass\n", cancel_token=token)

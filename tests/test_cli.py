"""
Tests for the command-line interface.
"""

import json

import pytest

from scadkit.dsl.__main__ import main


@pytest.fixture
def source_file(tmp_path):
    def write(text, name="model.scad"):
        path = tmp_path / name
        path.write_text(text)
        return str(path)
    return write


class TestTokens:
    def test_prints_tokens(self, source_file, capsys):
        assert main(["tokens", source_file("cube(1);")]) == 0
        out = capsys.readouterr().out
        assert "1:1\tIDENTIFIER\tcube" in out
        assert "EOF" in out

    def test_lexer_error(self, source_file, capsys):
        assert main(["tokens", source_file("a @ b")]) == 1
        assert "ERROR" in capsys.readouterr().out


class TestCheck:
    """Test the check command."""

    def test_ok(self, source_file, capsys):
        assert main(["check", source_file("cube(1); sphere(2);")]) == 0
        out = capsys.readouterr().out
        assert "OK: model.scad - 2 statement(s), no errors" in out

    def test_errors(self, source_file, capsys):
        assert main(["check", source_file("a = ;\nb = ;")]) == 1
        assert "Parsing failed with 2 error(s):" in capsys.readouterr().out

    def test_ast(self, source_file, capsys):
        assert main(["check", "--ast", source_file("cube(1);")]) == 0
        assert "ModuleInvocation" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["check", str(tmp_path / "absent.scad")]) == 1
        assert "File not found" in capsys.readouterr().err


class TestRun:
    """Test the run command."""

    def test_mesh_summary(self, source_file, capsys):
        assert main(["run", "--no-worker", source_file("cube(2);")]) == 0
        out = capsys.readouterr().out
        assert "8 vertices, 12 faces, volume 8.000" in out

    def test_echo_and_no_geometry(self, source_file, capsys):
        assert main(["run", "--no-worker", source_file("echo(1 + 1);")]) == 0
        out = capsys.readouterr().out
        assert "ECHO: 2" in out
        assert "no geometry" in out

    def test_evaluation_errors(self, source_file, capsys):
        assert main(["run", "--no-worker", source_file("cube(1);\nnosuch();")]) == 1
        out = capsys.readouterr().out
        assert "line 2: E403" in out

    def test_json(self, source_file, capsys):
        assert main(["run", "--no-worker", "--json", source_file("cube(1);")]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert data["geometry"]["stats"]["faceCount"] == 12
        assert data["errors"] == []

    def test_script(self, source_file, capsys):
        path = source_file("result = Shape.cube(2)", name="model.py")
        assert main(["run", "--no-worker", "--lang", "script", path]) == 0
        assert "volume 8.000" in capsys.readouterr().out

    def test_animation_parameter(self, source_file, capsys):
        path = source_file("echo($t);")
        assert main(["run", "--no-worker", "--t", "0.25", path]) == 0
        assert "ECHO: 0.25" in capsys.readouterr().out

    def test_worker_thread(self, source_file, capsys):
        assert main(["run", source_file("cube(1);")]) == 0
        assert "12 faces" in capsys.readouterr().out

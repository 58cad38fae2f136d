"""Tests for the brickflow CLI."""

import json

import pytest
from click.testing import CliRunner

from brickflow.cli import main

GREETING = """
apiVersion: v3
pipeline:
  - id: "@brickflow/identity"
    outputKey: person
    config:
      name: !var "@input.name"
  - id: "@brickflow/identity"
    config:
      greeting: !mustache "Hello {{ @person.name }}"
"""

FAILING = """
- id: "@brickflow/error"
  config:
    message: Nope
"""

UNKNOWN_BRICK = """
- id: "@acme/missing"
"""


@pytest.fixture()
def runner() -> CliRunner:
    # Wide terminal so rich tables don't wrap cell contents
    return CliRunner(env={"COLUMNS": "200"})


def _write(tmp_path, content: str, name: str = "pipeline.yaml") -> str:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestRun:
    def test_prints_result(self, runner, tmp_path) -> None:
        path = _write(tmp_path, GREETING)
        result = runner.invoke(main, ["run", path, "--input", json.dumps({"name": "World"})])
        assert result.exit_code == 0, result.output
        assert "Pipeline completed" in result.output
        assert "Hello World" in result.output

    def test_trace_table(self, runner, tmp_path) -> None:
        path = _write(tmp_path, GREETING)
        result = runner.invoke(main, ["run", path, "--trace", "--input", '{"name": "Ada"}'])
        assert result.exit_code == 0, result.output
        assert "Trace" in result.output
        assert "@brickflow/identity" in result.output

    def test_failure_exits_nonzero(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["run", _write(tmp_path, FAILING)])
        assert result.exit_code == 1
        assert "Pipeline failed" in result.output
        assert "Nope" in result.output

    def test_invalid_input_json(self, runner, tmp_path) -> None:
        path = _write(tmp_path, GREETING)
        result = runner.invoke(main, ["run", path, "--input", "[1, 2]"])
        assert result.exit_code == 2
        assert "expected a JSON object" in result.output

    def test_unparseable_file(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["run", _write(tmp_path, "- [unclosed")])
        assert result.exit_code == 1
        assert "Failed to parse pipeline" in result.output


class TestValidate:
    def test_valid(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["validate", _write(tmp_path, GREETING)])
        assert result.exit_code == 0
        assert "Pipeline is valid" in result.output

    def test_unknown_brick(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["validate", _write(tmp_path, UNKNOWN_BRICK)])
        assert result.exit_code == 1
        assert "brick_known" in result.output

    def test_strict_fails_on_warnings(self, runner, tmp_path) -> None:
        path = _write(tmp_path, '- id: "@brickflow/identity"\n  outputKey: input\n')
        assert runner.invoke(main, ["validate", path]).exit_code == 0
        strict = runner.invoke(main, ["validate", path, "--strict"])
        assert strict.exit_code == 1
        assert "output_key_shadowing" in strict.output


class TestBricks:
    def test_lists_bricks(self, runner) -> None:
        result = runner.invoke(main, ["bricks"])
        assert result.exit_code == 0
        assert "@brickflow/for-each" in result.output
        assert "@brickflow/cache" in result.output

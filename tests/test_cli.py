# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for the span-mirror command line.
"""

import json

import pytest
from click.testing import CliRunner

from span_mirror.cli import main

SPANS = [
    {"type": "block", "value": {"type": "heading", "parents": [], "attrs": {"level": 1}, "isEmbed": False}},
    {"type": "text", "value": "Title"},
    {"type": "block", "value": {"type": "paragraph", "parents": [], "attrs": {}, "isEmbed": False}},
    {"type": "text", "value": "bold", "marks": {"strong": True}},
]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def spans_file(tmp_path):
    path = tmp_path / "spans.json"
    path.write_text(json.dumps(SPANS))
    return str(path)


class TestCommands:
    """Each command on a small document"""

    def test_render(self, runner):
        result = runner.invoke(main, ["render", "-"], input=json.dumps(SPANS))
        assert result.exit_code == 0
        tree = json.loads(result.output)
        assert tree["type"] == "doc"
        assert [child["type"] for child in tree["content"]] == ["heading", "paragraph"]

    def test_roundtrip(self, runner, spans_file):
        result = runner.invoke(main, ["roundtrip", spans_file])
        assert result.exit_code == 0
        assert "Round trip OK" in result.output

    def test_roundtrip_mismatch(self, runner):
        data = [{"type": "text", "value": "a"}, {"type": "text", "value": "b"}]
        result = runner.invoke(main, ["roundtrip", "-"], input=json.dumps(data))
        assert result.exit_code == 1
        assert "Round trip mismatch" in result.output

    def test_index_table(self, runner, spans_file):
        result = runner.invoke(main, ["index-table", spans_file])
        assert result.exit_code == 0
        assert result.output.splitlines()[0].split() == ["linear", "tree", "event"]
        assert "openTag heading (explicit)" in result.output

    def test_snapshot_and_inspect(self, runner, spans_file, tmp_path):
        output = str(tmp_path / "doc.loro")
        result = runner.invoke(main, ["snapshot", spans_file, output])
        assert result.exit_code == 0
        assert f"Wrote {output}" in result.output

        result = runner.invoke(main, ["inspect", output])
        assert result.exit_code == 0
        inspected = json.loads(result.output)
        assert isinstance(inspected["heads"], str) and inspected["heads"]
        assert inspected["texts"] == [{"path": ["text"], "spans": SPANS}]

    def test_invalid_json(self, runner):
        result = runner.invoke(main, ["render", "-"], input="{not json")
        assert result.exit_code == 1
        assert "Invalid JSON input" in result.output

    def test_not_a_list(self, runner):
        result = runner.invoke(main, ["render", "-"], input=json.dumps({"type": "text"}))
        assert result.exit_code == 1
        assert "Expected a JSON list of spans" in result.output

    def test_inspect_invalid_snapshot(self, runner, tmp_path):
        path = tmp_path / "empty.loro"
        path.write_bytes(b"")
        result = runner.invoke(main, ["inspect", str(path)])
        assert result.exit_code == 1
        assert "Empty snapshot" in result.output


class TestLogLevel:
    """The --log-level option"""

    def test_level_is_case_insensitive(self, runner, spans_file):
        result = runner.invoke(main, ["--log-level", "debug", "roundtrip", spans_file])
        assert result.exit_code == 0

    def test_unknown_level_is_a_usage_error(self, runner, spans_file):
        result = runner.invoke(main, ["--log-level", "LOUD", "roundtrip", spans_file])
        assert result.exit_code == 2
        assert "Invalid value for '--log-level'" in result.output

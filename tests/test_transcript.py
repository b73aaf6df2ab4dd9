"""Tests for rewind.transcript module (shared helpers and the store contract)."""

import json
from pathlib import Path

import pytest

from rewind.backends import BACKENDS, ClaudeTranscriptStore
from rewind.errors import IOFailure, PromptNotFound
from rewind.transcript import (
    MAX_LINE_LENGTH,
    PromptRecord,
    extract_text_content,
    iter_json_lines,
    open_transcript,
    read_lines,
    write_lines,
)


class TestPromptRecord:
    """Tests for PromptRecord dataclass."""

    def test_is_frozen(self):
        """PromptRecord should be immutable."""
        record = PromptRecord(index=0, text="hi", source="cli", timestamp="", line_number=0)
        with pytest.raises(Exception):
            record.index = 1

    def test_to_dict(self):
        """to_dict uses lineNumber for the host-facing shape."""
        record = PromptRecord(
            index=2, text="fix", source="project", timestamp="2026-01-01T00:00:00Z", line_number=7
        )
        assert record.to_dict() == {
            "index": 2,
            "text": "fix",
            "source": "project",
            "timestamp": "2026-01-01T00:00:00Z",
            "lineNumber": 7,
        }


class TestExtractTextContent:
    """Tests for extract_text_content()."""

    def test_string_content(self):
        assert extract_text_content("hello") == ("hello", False)

    def test_text_blocks_concatenated(self):
        """Text blocks are joined in order without separators."""
        content = [
            {"type": "text", "text": "Fix "},
            {"type": "image", "source": {}},
            {"type": "text", "text": "the bug"},
        ]
        assert extract_text_content(content) == ("Fix the bug", False)

    def test_tool_result_detected(self):
        content = [{"type": "tool_result", "tool_use_id": "t1", "content": "output"}]
        assert extract_text_content(content) == ("", True)

    def test_unknown_shape(self):
        assert extract_text_content(None) == ("", False)
        assert extract_text_content({"text": "x"}) == ("", False)


class TestReadWriteLines:
    """Tests for read_lines(), iter_json_lines() and write_lines()."""

    def test_read_lines_keeps_terminators(self, tmp_path: Path):
        """Each line keeps its own terminator; no trailing empty line."""
        path = tmp_path / "t.jsonl"
        path.write_bytes(b'{"a": 1}\r\n{"b": 2}\n')
        assert read_lines(path) == ['{"a": 1}\r\n', '{"b": 2}\n']

    def test_read_lines_unterminated_last_line(self, tmp_path: Path):
        path = tmp_path / "t.jsonl"
        path.write_bytes(b'{"a": 1}\n{"b": 2}')
        assert read_lines(path) == ['{"a": 1}\n', '{"b": 2}']

    def test_read_lines_keeps_unicode_separators(self, tmp_path: Path):
        """U+2028 inside a JSON string does not split the line."""
        path = tmp_path / "t.jsonl"
        path.write_text('{"text": "a\u2028b"}\n{"x": 1}\n', encoding="utf-8")
        lines = read_lines(path)
        assert len(lines) == 2
        assert json.loads(lines[0])["text"] == "a\u2028b"

    def test_read_lines_missing_file(self, tmp_path: Path):
        with pytest.raises(IOFailure):
            read_lines(tmp_path / "missing.jsonl")

    def test_iter_json_lines_skips_bad_lines(self):
        """Blank, partial and non-object lines are skipped; numbering is preserved."""
        lines = ['{"a": 1}\n', "\n", '{"partial": \n', "[1, 2]\n", '{"b": 2}\r\n']
        assert list(iter_json_lines(lines)) == [(0, {"a": 1}), (4, {"b": 2})]

    def test_iter_json_lines_skips_oversized(self):
        """Lines beyond the size limit are skipped."""
        huge = '{"x": "' + "a" * MAX_LINE_LENGTH + '"}'
        assert list(iter_json_lines([huge, '{"ok": 1}'])) == [(1, {"ok": 1})]

    def test_write_lines_keeps_mode(self, tmp_path: Path):
        """Rewriting keeps the original file permissions."""
        path = tmp_path / "t.jsonl"
        path.write_text("old\n")
        path.chmod(0o644)

        write_lines(path, ["a\n", "b\n"])

        assert path.read_text() == "a\nb\n"
        assert path.stat().st_mode & 0o777 == 0o644

    def test_write_lines_empty(self, tmp_path: Path):
        path = tmp_path / "t.jsonl"
        write_lines(path, [])
        assert path.read_text() == ""

    def test_write_lines_keeps_crlf(self, tmp_path: Path):
        """A prefix of read_lines() is written back byte for byte."""
        path = tmp_path / "t.jsonl"
        path.write_bytes(b'{"a": 1}\r\n{"b": 2}\r\n{"c": 3}\r\n')

        write_lines(path, read_lines(path)[:2])

        assert path.read_bytes() == b'{"a": 1}\r\n{"b": 2}\r\n'

    def test_write_lines_terminates_last_line(self, tmp_path: Path):
        path = tmp_path / "t.jsonl"
        write_lines(path, ["a\n", "b"])
        assert path.read_text() == "a\nb\n"


class TestOpenTranscript:
    """Tests for the open_transcript() factory and shared store behavior."""

    def test_known_backends(self, config, project):
        """Every registered backend can be opened."""
        for name, store_cls in BACKENDS.items():
            store = open_transcript(name, "sess-1", project, config)
            assert isinstance(store, store_cls)
            assert store.backend == name

    def test_unknown_backend(self, config, project):
        with pytest.raises(ValueError, match="Unknown backend"):
            open_transcript("vim", "sess-1", project, config)

    def test_ledger_dir_override(self, config, project, tmp_path):
        """ledger_dir places every backend's ledger under <dir>/<backend>/."""
        config.ledger_dir = tmp_path / "ledgers"
        store = open_transcript("codex", "sess-1", project, config)
        assert store.ledger_path() == tmp_path / "ledgers" / "codex" / "sess-1.json"

    def test_missing_transcript(self, config, project):
        """A missing transcript has no prompts and cannot be truncated."""
        store = ClaudeTranscriptStore("nope", project, config)
        assert store.extract_prompts() == []
        assert store.prompt_count() == 0
        with pytest.raises(PromptNotFound):
            store.truncate_to_before(0)

    def test_negative_index(self, config, project):
        store = ClaudeTranscriptStore("nope", project, config)
        with pytest.raises(PromptNotFound):
            store.get_prompt(-1)

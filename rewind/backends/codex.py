"""Codex transcript adapter.

Codex writes one JSONL file per session somewhere under
``<codex_dir>/sessions/`` (dated subdirectories). The file is identified by
its first record::

    {"type": "session_meta", "payload": {"id": "<session id>", ...}}

User turns are ``response_item`` events with ``payload.role == "user"``.
Codex also injects environment context and AGENTS.md instructions as user
items; those are not prompts.

Codex does not mark workbench-dispatched turns, so every prompt is tagged
``cli`` here and a ledger entry is what promotes it to ``project``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from rewind.errors import PromptNotFound
from rewind.transcript import (
    SOURCE_CLI,
    PromptRecord,
    TranscriptStore,
    iter_json_lines,
    read_lines,
    write_lines,
)

logger = logging.getLogger(__name__)

INJECTED_MARKERS = ("<environment_context>", "# AGENTS.md instructions")


def extract_user_text(record: dict[str, Any]) -> str | None:
    """Return the prompt text of a user ``response_item``, or None."""
    if record.get("type") != "response_item":
        return None

    payload = record.get("payload")
    if not isinstance(payload, dict) or payload.get("role") != "user":
        return None

    content = payload.get("content")
    if not isinstance(content, list):
        return None

    for item in content:
        if not isinstance(item, dict) or item.get("type") != "input_text":
            continue
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            continue
        if any(marker in text for marker in INJECTED_MARKERS):
            continue
        return text

    return None


def find_session_file(sessions_dir: Path, session_id: str) -> Path | None:
    """Locate the JSONL file whose session_meta record names ``session_id``."""
    if not sessions_dir.is_dir():
        return None

    for candidate in sorted(sessions_dir.rglob("*.jsonl")):
        try:
            with open(candidate, encoding="utf-8") as f:
                first_line = f.readline()
            meta = json.loads(first_line)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            continue

        if not isinstance(meta, dict) or meta.get("type") != "session_meta":
            continue
        payload = meta.get("payload")
        if isinstance(payload, dict) and payload.get("id") == session_id:
            logger.debug(f"Found Codex session file: {candidate}")
            return candidate

    logger.debug(f"Codex session file not found for: {session_id}")
    return None


class CodexTranscriptStore(TranscriptStore):
    """JSONL transcripts written by the Codex CLI."""

    backend = "codex"
    tags_source = False

    def sessions_dir(self) -> Path:
        return Path(self.config.codex_dir) / "sessions"

    def transcript_path(self) -> Path | None:
        return find_session_file(self.sessions_dir(), self.session_id)

    def default_ledger_path(self) -> Path:
        return Path(self.config.codex_dir) / "git-records" / f"{self.session_id}.json"

    def extract_prompts(self) -> list[PromptRecord]:
        path = self.transcript_path()
        if path is None:
            return []
        return self._prompts_from_lines(read_lines(path))

    def _prompts_from_lines(self, lines: list[str]) -> list[PromptRecord]:
        prompts: list[PromptRecord] = []
        for line_number, record in iter_json_lines(lines):
            text = extract_user_text(record)
            if text is None:
                continue
            timestamp = record.get("timestamp")
            prompts.append(
                PromptRecord(
                    index=len(prompts),
                    text=text,
                    source=SOURCE_CLI,
                    timestamp=timestamp if isinstance(timestamp, str) else "",
                    line_number=line_number,
                )
            )
        return prompts

    def _truncate_at(self, path: Path, prompt: PromptRecord) -> None:
        lines = read_lines(path)
        current = self._prompts_from_lines(lines)
        if prompt.index >= len(current):
            raise PromptNotFound(prompt.index, len(current))
        cut = current[prompt.index].line_number

        write_lines(path, lines[:cut])
        logger.info(
            f"Truncated Codex session: kept {cut} lines, deleted {len(lines) - cut} lines"
        )

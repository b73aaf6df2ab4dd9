"""Claude Code transcript adapter.

Transcript: ``<claude_dir>/projects/<encoded project>/<session>.jsonl``.
Each line is a record such as::

    {"type": "queue-operation", "operation": "dequeue", ...}
    {"type": "user", "isSidechain": false, "message": {"role": "user", "content": ...},
     "timestamp": "2026-01-15T10:00:00Z"}

Only human-authored user turns are checkpoint-addressable. The format
interleaves tool machinery with them, so user records are excluded when they:
- belong to a sidechain (``isSidechain``) or a sub-agent (parent task marker)
- carry only tool_result blocks and no text
- have no non-blank text
- are the automatic warm-up turn
- are skill or slash-command dispatch turns

A turn preceded by a ``dequeue`` queue-operation was sent through the
workbench (source ``project``); anything else was typed into the CLI
directly (source ``cli``).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from rewind.config import encode_project_path
from rewind.errors import PromptNotFound
from rewind.transcript import (
    SOURCE_CLI,
    SOURCE_PROJECT,
    PromptRecord,
    TranscriptStore,
    extract_text_content,
    iter_json_lines,
    read_lines,
    write_lines,
)

logger = logging.getLogger(__name__)

WARMUP_MARKER = "Warmup"
SKILL_MARKERS = ("<command-name>", "Launching skill:", "skill is running")
PARENT_TASK_KEYS = ("parent_tool_use_id", "parentTaskId")


def _is_dequeue(record: dict[str, Any]) -> bool:
    return record.get("type") == "queue-operation" and record.get("operation") == "dequeue"


def _has_text(content: Any) -> bool:
    """A plain string counts when non-blank; any text block counts, even empty."""
    if isinstance(content, str):
        return bool(content.strip())
    if not isinstance(content, list):
        return False
    return any(
        isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
        for block in content
    )


def classify_user_turn(record: dict[str, Any]) -> str | None:
    """Return the prompt text of a qualifying user turn, or None if excluded."""
    if record.get("type") != "user":
        return None

    if record.get("isSidechain") is True:
        return None

    if any(record.get(key) is not None for key in PARENT_TASK_KEYS):
        return None

    message = record.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    text, has_tool_result = extract_text_content(content)

    if not _has_text(content):
        if has_tool_result:
            logger.debug("Skipping tool-result-only user record")
        return None

    if WARMUP_MARKER in text:
        return None

    if any(marker in text for marker in SKILL_MARKERS):
        return None

    return text


class ClaudeTranscriptStore(TranscriptStore):
    """JSONL transcripts written by Claude Code."""

    backend = "claude"
    tags_source = True

    def project_dir(self) -> Path:
        return Path(self.config.claude_dir) / "projects" / encode_project_path(self.project_path)

    def transcript_path(self) -> Path | None:
        path = self.project_dir() / f"{self.session_id}.jsonl"
        return path if path.exists() else None

    def default_ledger_path(self) -> Path:
        return self.project_dir() / "sessions" / f"{self.session_id}.git-records.json"

    def extract_prompts(self) -> list[PromptRecord]:
        path = self.transcript_path()
        if path is None:
            return []
        return self._prompts_from_lines(read_lines(path))

    def _prompts_from_lines(self, lines: list[str]) -> list[PromptRecord]:
        prompts: list[PromptRecord] = []
        pending_dequeue = False

        for line_number, record in iter_json_lines(lines):
            if _is_dequeue(record):
                pending_dequeue = True
                continue

            text = classify_user_turn(record)
            if text is None:
                continue

            timestamp = record.get("timestamp")
            prompts.append(
                PromptRecord(
                    index=len(prompts),
                    text=text,
                    source=SOURCE_PROJECT if pending_dequeue else SOURCE_CLI,
                    timestamp=timestamp if isinstance(timestamp, str) else "",
                    line_number=line_number,
                )
            )
            pending_dequeue = False

        return prompts

    def _truncate_at(self, path: Path, prompt: PromptRecord) -> None:
        lines = read_lines(path)
        # Re-derive the cut from the same read so line numbers cannot drift
        current = self._prompts_from_lines(lines)
        if prompt.index >= len(current):
            raise PromptNotFound(prompt.index, len(current))
        cut = current[prompt.index].line_number

        write_lines(path, lines[:cut])
        logger.info(
            f"Truncated main session: kept {cut} lines, deleted {len(lines) - cut} lines"
        )

        if prompt.index == 0:
            self._remove_agent_files()
        else:
            logger.debug(
                f"Keeping agent files for prompt #{prompt.index} (created once at session start)"
            )

    def _remove_agent_files(self) -> int:
        """Delete this session's ``agent-*.jsonl`` files.

        They are written once while the session initializes, so they only go
        away when the whole conversation is rewound.
        """
        removed = 0
        for agent_file in sorted(self.project_dir().glob("agent-*.jsonl")):
            if not self._agent_file_belongs_to_session(agent_file):
                logger.debug(f"Skipping agent file for another session: {agent_file.name}")
                continue
            try:
                agent_file.unlink()
                removed += 1
                logger.info(f"Removed agent file: {agent_file.name}")
            except OSError as e:
                logger.warning(f"Failed to remove agent file {agent_file.name}: {e}")
        return removed

    def _agent_file_belongs_to_session(self, agent_file: Path) -> bool:
        try:
            with open(agent_file, encoding="utf-8") as f:
                first_line = f.readline()
            data = json.loads(first_line)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            return False
        return isinstance(data, dict) and data.get("sessionId") == self.session_id

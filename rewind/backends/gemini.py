"""Gemini transcript adapter.

Gemini CLI keeps each session as one JSON document in
``<gemini_dir>/tmp/<sha256(project path)>/chats/session-<date>-<id8>.json``
where ``id8`` is the first 8 characters of the session id::

    {"sessionId": "...", "messages": [
        {"type": "user", "content": "fix the tests", "timestamp": "..."},
        {"type": "gemini", "content": "..."}
    ]}

Messages use ``type`` rather than ``role`` and ``content`` is a plain string.
All Gemini prompts reach the CLI through the workbench, so they are tagged
``project``. ``line_number`` holds the message offset in ``messages``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from rewind.atomic import atomic_write_json, file_mode
from rewind.config import hash_project_path
from rewind.errors import IOFailure, PromptNotFound
from rewind.transcript import SOURCE_PROJECT, PromptRecord, TranscriptStore

logger = logging.getLogger(__name__)

SESSION_PREFIX_LENGTH = 8


def find_session_file(chats_dir: Path, session_id: str) -> Path | None:
    """Find the chat file for ``session_id``.

    Filenames only carry the id prefix, so candidates are confirmed by the
    ``sessionId`` field inside the file.
    """
    if not chats_dir.is_dir():
        return None

    prefix = session_id[:SESSION_PREFIX_LENGTH]
    for candidate in sorted(chats_dir.iterdir()):
        if not candidate.is_file() or prefix not in candidate.name:
            continue
        try:
            with open(candidate, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            continue
        if isinstance(data, dict) and data.get("sessionId") == session_id:
            return candidate

    logger.debug(f"Gemini session file not found for: {session_id} (prefix {prefix})")
    return None


def _user_text(message: Any) -> str | None:
    if not isinstance(message, dict) or message.get("type") != "user":
        return None
    content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        return None
    return content


class GeminiTranscriptStore(TranscriptStore):
    """Structured JSON chat files written by Gemini CLI."""

    backend = "gemini"
    tags_source = True

    def chats_dir(self) -> Path:
        return (
            Path(self.config.gemini_dir)
            / "tmp"
            / hash_project_path(self.project_path)
            / "chats"
        )

    def transcript_path(self) -> Path | None:
        return find_session_file(self.chats_dir(), self.session_id)

    def default_ledger_path(self) -> Path:
        return Path(self.config.gemini_dir) / "git-records" / f"{self.session_id}.json"

    def _load(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IOFailure(
                f"Failed to read Gemini session {path}: {e}",
                context={"path": str(path)},
            ) from e

        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            raise IOFailure(
                f"No messages array found in Gemini session {path}",
                context={"path": str(path)},
            )
        return data

    def extract_prompts(self) -> list[PromptRecord]:
        path = self.transcript_path()
        if path is None:
            return []
        return self._prompts_from_messages(self._load(path)["messages"])

    def _prompts_from_messages(self, messages: list[Any]) -> list[PromptRecord]:
        prompts: list[PromptRecord] = []
        for offset, message in enumerate(messages):
            text = _user_text(message)
            if text is None:
                continue
            timestamp = message.get("timestamp")
            prompts.append(
                PromptRecord(
                    index=len(prompts),
                    text=text,
                    source=SOURCE_PROJECT,
                    timestamp=timestamp if isinstance(timestamp, str) else "",
                    line_number=offset,
                )
            )
        return prompts

    def _truncate_at(self, path: Path, prompt: PromptRecord) -> None:
        data = self._load(path)
        messages = data["messages"]
        current = self._prompts_from_messages(messages)
        if prompt.index >= len(current):
            raise PromptNotFound(prompt.index, len(current))
        cut = current[prompt.index].line_number

        data["messages"] = messages[:cut]
        result = atomic_write_json(path, data, mode=file_mode(path))
        if result.is_err():
            raise result.unwrap_err()

        logger.info(
            f"Truncated Gemini session: kept {cut} messages, removed {len(messages) - cut}"
        )

"""Transcript store contract for Rewind.

Every conversation backend keeps its own on-disk transcript. A
``TranscriptStore`` adapter hides the format and offers two operations:

- ``extract_prompts()`` re-scans the transcript and returns the
  user-authored prompts, indexed 0..n-1 in transcript order
- ``truncate_to_before(index)`` rewrites the transcript so it ends strictly
  before prompt ``index``

Architecture:
- PromptRecord is one checkpoint-addressable user turn
- The prompt index is the only join key between transcript and ledger.
  Content hashes are never used: the same text re-encoded or escaped
  differently would hash differently.
- Prompt lists are never cached; every call reads the file again

Security:
- JSON parsing uses safe json.loads (no code execution)
- Line length limits prevent memory exhaustion
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterator

from rewind.atomic import atomic_write_text, file_mode
from rewind.errors import IOFailure, PromptNotFound

if TYPE_CHECKING:
    from rewind.config import RewindConfig

logger = logging.getLogger(__name__)

# Maximum line length to prevent memory exhaustion
MAX_LINE_LENGTH = 10_000_000  # 10MB

SOURCE_PROJECT = "project"
SOURCE_CLI = "cli"


@dataclass(frozen=True)
class PromptRecord:
    """A user-authored turn extracted from a transcript."""

    index: int
    text: str
    source: str  # "project" | "cli"
    timestamp: str
    line_number: int  # JSONL line, or message offset for JSON documents

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "text": self.text,
            "source": self.source,
            "timestamp": self.timestamp,
            "lineNumber": self.line_number,
        }


def extract_text_content(content: Any) -> tuple[str, bool]:
    """Extract text from a message content field.

    Content can be a plain string or a list of content blocks. Text blocks
    are concatenated in order.

    Returns:
        (text, has_tool_result) where has_tool_result reports a tool_result block
    """
    if isinstance(content, str):
        return content, False

    if not isinstance(content, list):
        return "", False

    texts = []
    has_tool_result = False
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                texts.append(text)
        elif block_type == "tool_result":
            has_tool_result = True

    return "".join(texts), has_tool_result


def read_lines(path: Path) -> list[str]:
    """Read a JSONL file as a list of lines, each with its own terminator.

    A rewrite of a prefix of these lines reproduces the original bytes,
    so CRLF transcripts stay CRLF.

    Raises:
        IOFailure: file exists but cannot be read
    """
    try:
        with open(path, encoding="utf-8", newline="") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise IOFailure(
            f"Failed to read transcript {path}: {e}",
            context={"path": str(path)},
        ) from e

    # Split on "\n" only: str.splitlines() also breaks on U+2028 and friends,
    # which may appear unescaped inside a JSON string
    lines = [line + "\n" for line in content.split("\n")]
    last = lines.pop()
    if last != "\n":
        # Final line without a terminator
        lines.append(last[:-1])
    return lines


def iter_json_lines(lines: list[str]) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield ``(line_number, record)`` for every parseable JSON object line."""
    for line_number, line in enumerate(lines):
        if len(line) > MAX_LINE_LENGTH:
            logger.warning(f"Skipping oversized line {line_number}: {len(line)} bytes")
            continue
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            # Partial line from an interrupted write
            continue
        if isinstance(data, dict):
            yield line_number, data


def write_lines(path: Path, lines: list[str]) -> None:
    """Atomically replace a JSONL file with ``lines``, keeping its permissions.

    Lines keep whatever terminator they carry. A final line without one is
    terminated with ``\\n`` so later appends start on a fresh line.
    """
    content = "".join(lines)
    if content and not content.endswith("\n"):
        content += "\n"
    result = atomic_write_text(path, content, mode=file_mode(path))
    if result.is_err():
        raise result.unwrap_err()


class TranscriptStore(ABC):
    """Adapter over one backend's transcript for one session."""

    #: Backend name, also used for ledger placement
    backend: str = ""

    #: Whether the format marks workbench-dispatched turns itself. When False,
    #: a ledger entry is what identifies a prompt as project-sourced.
    tags_source: bool = True

    def __init__(self, session_id: str, project_path: str | Path, config: RewindConfig):
        self.session_id = session_id
        self.project_path = Path(project_path)
        self.config = config

    @abstractmethod
    def transcript_path(self) -> Path | None:
        """Location of the transcript file, or None when it cannot be found."""

    @abstractmethod
    def default_ledger_path(self) -> Path:
        """Where this backend keeps the session's checkpoint ledger."""

    @abstractmethod
    def extract_prompts(self) -> list[PromptRecord]:
        """Return the session's user prompts in transcript order."""

    @abstractmethod
    def _truncate_at(self, path: Path, prompt: PromptRecord) -> None:
        """Rewrite the transcript at ``path`` to end before ``prompt``."""

    def ledger_path(self) -> Path:
        """Ledger location, honouring the configured override directory."""
        if self.config.ledger_dir is not None:
            return Path(self.config.ledger_dir) / self.backend / f"{self.session_id}.json"
        return self.default_ledger_path()

    def prompt_count(self) -> int:
        return len(self.extract_prompts())

    def get_prompt(self, index: int) -> PromptRecord:
        """Return prompt ``index``.

        Raises:
            PromptNotFound: index is out of range
        """
        prompts = self.extract_prompts()
        if index < 0 or index >= len(prompts):
            raise PromptNotFound(index, len(prompts))
        return prompts[index]

    def truncate_to_before(self, index: int) -> None:
        """Rewrite the transcript to end strictly before prompt ``index``.

        Raises:
            PromptNotFound: index is out of range; the transcript is untouched
        """
        prompt = self.get_prompt(index)
        path = self.transcript_path()
        if path is None:
            raise PromptNotFound(index, 0)

        self._truncate_at(path, prompt)
        logger.info(
            f"Truncated {self.backend} transcript {self.session_id} before prompt #{index}"
        )


StoreFactory = Callable[[str, "str | Path", "RewindConfig"], TranscriptStore]


def open_transcript(
    backend: str,
    session_id: str,
    project_path: str | Path,
    config: RewindConfig,
) -> TranscriptStore:
    """Create the transcript adapter for ``backend``.

    Raises:
        ValueError: unknown backend name
    """
    from rewind.backends import BACKENDS

    store_cls = BACKENDS.get(backend)
    if store_cls is None:
        known = ", ".join(sorted(BACKENDS))
        raise ValueError(f"Unknown backend '{backend}' (expected one of: {known})")
    return store_cls(session_id, project_path, config)

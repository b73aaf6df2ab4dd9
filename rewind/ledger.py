"""Checkpoint ledger for Rewind.

One JSON file per session maps prompt index -> git commits::

    {
      "sessionId": "...",
      "projectPath": "/path/to/project",
      "records": {
        "0": {"commitBefore": "abc...", "commitAfter": "def...", "timestamp": "..."}
      }
    }

The prompt index is the only key. Older ledgers keyed entries by a content
hash of the prompt text; those entries cannot be joined to a transcript and
are dropped when the file is loaded.

Every mutation is written through immediately with ``atomic_write_json``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rewind.atomic import atomic_write_json
from rewind.errors import IOFailure, RecordNotFound

logger = logging.getLogger(__name__)

# Placeholder some hosts write when no commit could be captured
NO_COMMIT = "NONE"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class GitRecord:
    """Commits bracketing one prompt."""

    commit_before: str
    commit_after: str | None = None
    timestamp: str = ""

    @property
    def has_valid_commit(self) -> bool:
        return bool(self.commit_before) and self.commit_before != NO_COMMIT

    @property
    def changed_code(self) -> bool:
        """True when the turn produced a commit of its own."""
        return bool(self.commit_after) and self.commit_after != self.commit_before

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"commitBefore": self.commit_before}
        if self.commit_after is not None:
            data["commitAfter"] = self.commit_after
        data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GitRecord":
        commit_after = data.get("commitAfter")
        return cls(
            commit_before=str(data.get("commitBefore") or ""),
            commit_after=str(commit_after) if commit_after else None,
            timestamp=str(data.get("timestamp") or ""),
        )


def _parse_index(key: Any) -> int | None:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key >= 0 else None
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def _parse_records(raw: Any, path: Path) -> dict[int, GitRecord]:
    """Normalize any known ledger shape into ``{index: GitRecord}``."""
    records: dict[int, GitRecord] = {}
    discarded = 0

    if isinstance(raw, list):
        # Legacy list shape: [{"promptIndex": n, "commitBefore": ...}, ...]
        items = [
            (item.get("promptIndex"), item) for item in raw if isinstance(item, dict)
        ]
    elif isinstance(raw, dict):
        items = list(raw.items())
    else:
        raise IOFailure(
            f"Malformed ledger {path}: records must be an object",
            context={"path": str(path)},
        )

    for key, value in items:
        index = _parse_index(key)
        if index is None or not isinstance(value, dict):
            discarded += 1
            continue
        records[index] = GitRecord.from_dict(value)

    if discarded:
        logger.warning(
            f"Discarded {discarded} ledger entries without a prompt index in {path}"
        )
    return records


class CheckpointLedger:
    """Persisted prompt index -> GitRecord mapping for one session."""

    def __init__(self, path: Path, session_id: str, project_path: str | Path):
        self.path = Path(path)
        self.session_id = session_id
        self.project_path = str(project_path)
        self._records: dict[int, GitRecord] = {}
        self.load()

    # =========================================================================
    # Persistence
    # =========================================================================

    def load(self) -> None:
        """(Re)read the ledger file. A missing file is an empty ledger.

        Raises:
            IOFailure: the file exists but is not a readable ledger
        """
        if not self.path.exists():
            self._records = {}
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IOFailure(
                f"Failed to read ledger {self.path}: {e}",
                context={"path": str(self.path)},
            ) from e

        if isinstance(data, dict) and "records" in data:
            raw = data["records"]
        elif isinstance(data, dict):
            # Bare {"<index>": {...}} mapping from older hosts
            raw = data
        else:
            raise IOFailure(
                f"Malformed ledger {self.path}: expected a JSON object",
                context={"path": str(self.path)},
            )

        self._records = _parse_records(raw, self.path)
        logger.debug(f"Loaded {len(self._records)} ledger entries from {self.path}")

    def save(self) -> None:
        data = {
            "sessionId": self.session_id,
            "projectPath": self.project_path,
            "records": {
                str(index): self._records[index].to_dict() for index in sorted(self._records)
            },
        }
        result = atomic_write_json(self.path, data)
        if result.is_err():
            raise result.unwrap_err()

    # =========================================================================
    # Mutations
    # =========================================================================

    def record_before(self, index: int, commit: str) -> GitRecord:
        """Create (or overwrite) the entry for ``index``."""
        record = GitRecord(commit_before=commit, commit_after=None, timestamp=_now_iso())
        if index in self._records:
            logger.debug(f"Overwriting ledger entry for prompt #{index}")
        self._records[index] = record
        self.save()
        return record

    def record_after(self, index: int, commit: str) -> GitRecord:
        """Set ``commit_after`` on an existing entry.

        Raises:
            RecordNotFound: no entry was recorded for ``index``
        """
        existing = self._records.get(index)
        if existing is None:
            raise RecordNotFound(index)

        record = GitRecord(
            commit_before=existing.commit_before,
            commit_after=commit,
            timestamp=existing.timestamp,
        )
        self._records[index] = record
        self.save()
        return record

    def truncate_from(self, index: int) -> int:
        """Remove every entry with key >= ``index``.

        Returns:
            Number of entries removed
        """
        doomed = [i for i in self._records if i >= index]
        if not doomed:
            return 0
        for i in doomed:
            del self._records[i]
        self.save()
        logger.debug(f"Removed {len(doomed)} ledger entries from prompt #{index}")
        return len(doomed)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, index: int) -> GitRecord | None:
        return self._records.get(index)

    def entries_from(self, index: int) -> dict[int, GitRecord]:
        return {i: r for i, r in self._records.items() if i >= index}

    def indices(self) -> list[int]:
        return sorted(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, index: object) -> bool:
        return index in self._records

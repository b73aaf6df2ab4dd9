"""Rewind engine: record checkpoints and revert to them.

Write path (called by the host around every dispatched prompt):
    record_prompt_sent     -> commit before the turn, ledger entry created
    mark_prompt_completed  -> auto-commit the turn's changes, ledger entry closed

Read path:
    get_prompt_list / get_unified_prompt_list / check_rewind_capabilities

Revert path:
    revert_to_prompt(index, mode) with mode one of
    - conversation_only: transcript truncated before the prompt, ledger trimmed
    - code_only: every recorded turn from the prompt onwards is reverted with
      new commits, newest first; any failure resets to the original HEAD
    - both: code_only, then conversation_only

Operations on one session are serialized with a per-session lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rewind.capabilities import (
    RewindCapabilities,
    RewindMode,
    evaluate_capabilities,
)
from rewind.config import RewindConfig
from rewind.errors import (
    ConfigDisabled,
    NoAssociatedCheckpoint,
    RevertConflict,
    RewindError,
)
from rewind.git import GitAdapter, short_sha
from rewind.ledger import CheckpointLedger, GitRecord
from rewind.transcript import (
    SOURCE_PROJECT,
    PromptRecord,
    StoreFactory,
    TranscriptStore,
    open_transcript,
)

logger = logging.getLogger(__name__)

AUTO_COMMIT_MESSAGE = "[rewind] After prompt #{index}"
REVERT_COMMIT_MESSAGE = "[rewind] Revert code changes of prompt #{index}"
STASH_LABEL = "[rewind] Auto-stash before code revert to prompt #{index}"


@dataclass(frozen=True)
class TrackedPrompt:
    """A transcript prompt joined with its checkpoint, if any."""

    prompt: PromptRecord
    record: GitRecord | None

    @property
    def index(self) -> int:
        return self.prompt.index

    @property
    def source(self) -> str:
        return self.prompt.source

    def to_dict(self) -> dict[str, Any]:
        data = self.prompt.to_dict()
        data["gitRecord"] = self.record.to_dict() if self.record else None
        return data


class RewindEngine:
    """Checkpoint and rewind operations for one conversation backend."""

    def __init__(
        self,
        config: RewindConfig,
        git: GitAdapter | None = None,
        backend: str = "claude",
        store_factory: StoreFactory | None = None,
    ):
        self.config = config
        self.git = git if git is not None else GitAdapter(timeout=config.git_timeout)
        self.backend = backend
        self._store_factory = store_factory
        self._locks: dict[tuple[str, str], threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # =========================================================================
    # Session plumbing
    # =========================================================================

    def _session_lock(self, session_id: str) -> threading.RLock:
        key = (self.backend, session_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def open_store(self, session_id: str, project_path: str | Path) -> TranscriptStore:
        if self._store_factory is not None:
            return self._store_factory(session_id, project_path, self.config)
        return open_transcript(self.backend, session_id, project_path, self.config)

    def open_ledger(self, store: TranscriptStore) -> CheckpointLedger:
        return CheckpointLedger(store.ledger_path(), store.session_id, store.project_path)

    # =========================================================================
    # Write path
    # =========================================================================

    def record_prompt_sent(
        self,
        session_id: str,
        project_path: str | Path,
        prompt_text: str,
    ) -> int:
        """Capture the commit a prompt starts from.

        Must be called before the prompt is dispatched, so the new prompt's
        index equals the number of prompts already in the transcript.

        Returns:
            The index assigned to the prompt
        """
        path = Path(project_path)
        with self._session_lock(session_id):
            store = self.open_store(session_id, path)
            ledger = self.open_ledger(store)

            if self.config.disable_rewind_git_operations:
                logger.info("Git operations disabled, skipping checkpoint")
                return len(ledger)

            self.git.ensure_repository(path)
            commit_before = self.git.current_commit(path)
            index = store.prompt_count()

            ledger.record_before(index, commit_before)
            logger.info(
                f"Recorded prompt #{index} for session {session_id} at {short_sha(commit_before)} "
                f"({len(prompt_text)} chars)"
            )
            return index

    def mark_prompt_completed(
        self,
        session_id: str,
        project_path: str | Path,
        index: int,
    ) -> None:
        """Auto-commit the turn's changes and close its ledger entry.

        Raises:
            RecordNotFound: ``record_prompt_sent`` was never called for ``index``
        """
        path = Path(project_path)
        with self._session_lock(session_id):
            if self.config.disable_rewind_git_operations:
                logger.info("Git operations disabled, skipping completion")
                return

            store = self.open_store(session_id, path)
            ledger = self.open_ledger(store)

            message = AUTO_COMMIT_MESSAGE.format(index=index)
            try:
                if self.git.commit_all_changes(path, message):
                    logger.info(f"Auto-committed changes after prompt #{index}")
                else:
                    logger.debug(f"No changes to commit after prompt #{index}")
            except RewindError as e:
                logger.warning(f"Auto-commit after prompt #{index} failed: {e}")

            commit_after = self.git.current_commit(path)
            ledger.record_after(index, commit_after)
            logger.info(f"Marked prompt #{index} completed at {short_sha(commit_after)}")

    # =========================================================================
    # Read path
    # =========================================================================

    def get_prompt_list(self, session_id: str, project_path: str | Path) -> list[PromptRecord]:
        return self.open_store(session_id, project_path).extract_prompts()

    def get_unified_prompt_list(
        self,
        session_id: str,
        project_path: str | Path,
    ) -> list[TrackedPrompt]:
        """Prompts joined with their ledger entries by index.

        For formats that do not mark workbench-dispatched turns, a ledger
        entry promotes the prompt's source to ``project``.
        """
        store = self.open_store(session_id, project_path)
        ledger = self.open_ledger(store)

        tracked = []
        for prompt in store.extract_prompts():
            record = ledger.get(prompt.index)
            if record is not None and not store.tags_source and prompt.source != SOURCE_PROJECT:
                prompt = PromptRecord(
                    index=prompt.index,
                    text=prompt.text,
                    source=SOURCE_PROJECT,
                    timestamp=prompt.timestamp,
                    line_number=prompt.line_number,
                )
            tracked.append(TrackedPrompt(prompt=prompt, record=record))
        return tracked

    def check_rewind_capabilities(
        self,
        session_id: str,
        project_path: str | Path,
        index: int,
    ) -> RewindCapabilities:
        store = self.open_store(session_id, project_path)
        ledger = self.open_ledger(store)
        return evaluate_capabilities(store, ledger, self.config, index)

    # =========================================================================
    # Revert path
    # =========================================================================

    def revert_to_prompt(
        self,
        session_id: str,
        project_path: str | Path,
        index: int,
        mode: RewindMode | str,
    ) -> str:
        """Rewind the session to the state before prompt ``index``.

        Returns:
            The text of the prompt, so the host can offer it for re-editing

        Raises:
            PromptNotFound: ``index`` is not a prompt in the transcript
            ConfigDisabled: code revert requested with git disabled
            NoAssociatedCheckpoint: code revert requested without a usable entry
            RevertConflict: a revert failed; the repository was reset to its
                original HEAD and the transcript was not touched
            IOFailure: the transcript could not be rewritten; in ``both``
                mode the code revert is undone first
        """
        mode = RewindMode(mode)
        path = Path(project_path)

        with self._session_lock(session_id):
            store = self.open_store(session_id, path)
            ledger = self.open_ledger(store)
            prompt = store.get_prompt(index)

            logger.info(f"Reverting session {session_id} to prompt #{index} ({mode.value})")

            original_head = None
            if mode.touches_code:
                self._check_code_preconditions(ledger, index)
                original_head = self._revert_code(ledger, path, index)

            if mode.touches_conversation:
                try:
                    self._revert_conversation(store, ledger, index)
                except RewindError as e:
                    if original_head is not None:
                        self._rollback(path, original_head, index, str(e))
                    raise

            logger.info(f"Reverted session {session_id} to prompt #{index} ({mode.value})")
            return prompt.text

    def _check_code_preconditions(self, ledger: CheckpointLedger, index: int) -> None:
        if self.config.disable_rewind_git_operations:
            raise ConfigDisabled()

        record = ledger.get(index)
        if record is None:
            raise NoAssociatedCheckpoint(index)
        if not record.has_valid_commit:
            raise NoAssociatedCheckpoint(index, reason="checkpoint has no valid commit")

    def _revert_conversation(
        self,
        store: TranscriptStore,
        ledger: CheckpointLedger,
        index: int,
    ) -> None:
        store.truncate_to_before(index)
        removed = ledger.truncate_from(index)
        logger.info(f"Truncated conversation before prompt #{index} ({removed} checkpoints dropped)")

    def _revert_code(self, ledger: CheckpointLedger, path: Path, index: int) -> str:
        """Revert every recorded turn from ``index`` onwards, newest first.

        Either all ranges are reverted or HEAD is reset to where it started.

        Returns:
            The HEAD commit before any range was reverted
        """
        self.git.stash_save(path, STASH_LABEL.format(index=index))

        original_head = self.git.current_commit(path)
        logger.info(f"Original HEAD {short_sha(original_head)} (rollback target)")

        entries = sorted(ledger.entries_from(index).items(), reverse=True)
        logger.info(f"Found {len(entries)} checkpoints to revert from prompt #{index}")

        total_reverted = 0
        for idx, record in entries:
            if not record.changed_code:
                logger.debug(f"Skipping prompt #{idx}: no code changes")
                continue

            logger.info(
                f"Reverting prompt #{idx}: "
                f"{short_sha(record.commit_before)}..{short_sha(record.commit_after)}"
            )
            try:
                result = self.git.revert_range(
                    path,
                    record.commit_before,
                    record.commit_after,
                    REVERT_COMMIT_MESSAGE.format(index=idx),
                )
            except RewindError as e:
                self._rollback(path, original_head, idx, str(e))
                raise RevertConflict(
                    f"Revert of prompt #{idx} failed, repository restored: {e}",
                    context={"index": idx, "original_head": original_head},
                ) from e

            if not result.success:
                self._rollback(path, original_head, idx, result.message)
                raise RevertConflict(
                    f"Revert of prompt #{idx} failed, repository restored: {result.message}",
                    context={"index": idx, "original_head": original_head},
                )

            total_reverted += result.commits_reverted

        logger.info(
            f"Reverted code to before prompt #{index} "
            f"({total_reverted} commits from {len(entries)} checkpoints)"
        )
        return original_head

    def _rollback(self, path: Path, original_head: str, idx: int, reason: str) -> None:
        logger.warning(
            f"Revert of prompt #{idx} failed ({reason}), rolling back to {short_sha(original_head)}"
        )
        self.git.reset_hard(path, original_head)

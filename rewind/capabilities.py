"""Which rewind modes a prompt supports.

Conversation rewind is always possible for an existing prompt. Code rewind
needs git enabled and a ledger entry with a usable ``commit_before``.
Anything short of that is reported as a warning, not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from rewind.transcript import SOURCE_PROJECT

if TYPE_CHECKING:
    from rewind.config import RewindConfig
    from rewind.ledger import CheckpointLedger
    from rewind.transcript import TranscriptStore

WARNING_GIT_DISABLED = "git operations are disabled"
WARNING_NO_CHECKPOINT = "no associated checkpoint (likely cli-sourced)"
WARNING_INVALID_COMMIT = (
    "checkpoint has no commit to return to (the repository had no commits "
    "when the prompt was sent)"
)


class RewindMode(str, Enum):
    CONVERSATION_ONLY = "conversation_only"
    CODE_ONLY = "code_only"
    BOTH = "both"

    @property
    def touches_code(self) -> bool:
        return self is not RewindMode.CONVERSATION_ONLY

    @property
    def touches_conversation(self) -> bool:
        return self is not RewindMode.CODE_ONLY


@dataclass(frozen=True)
class RewindCapabilities:
    conversation: bool
    code: bool
    both: bool
    warning: str | None
    source: str

    def allows(self, mode: RewindMode) -> bool:
        if mode is RewindMode.CODE_ONLY:
            return self.code
        if mode is RewindMode.BOTH:
            return self.both
        return self.conversation

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation": self.conversation,
            "code": self.code,
            "both": self.both,
            "warning": self.warning,
            "source": self.source,
        }


def _conversation_only(warning: str, source: str) -> RewindCapabilities:
    return RewindCapabilities(
        conversation=True, code=False, both=False, warning=warning, source=source
    )


def evaluate_capabilities(
    store: TranscriptStore,
    ledger: CheckpointLedger,
    config: RewindConfig,
    index: int,
) -> RewindCapabilities:
    """Decide which rewind modes are available for prompt ``index``.

    Raises:
        PromptNotFound: ``index`` is not a prompt in the transcript
    """
    prompt = store.get_prompt(index)
    record = ledger.get(index)

    source = prompt.source
    if not store.tags_source and record is not None:
        source = SOURCE_PROJECT

    if config.disable_rewind_git_operations:
        return _conversation_only(WARNING_GIT_DISABLED, source)

    if record is None:
        return _conversation_only(WARNING_NO_CHECKPOINT, source)

    if not record.has_valid_commit:
        return _conversation_only(WARNING_INVALID_COMMIT, source)

    return RewindCapabilities(
        conversation=True, code=True, both=True, warning=None, source=source
    )

"""Error types for Rewind.

Two styles are used, matching where they are consumed:

- ``Result`` (``Ok``/``Err``) for low-level helpers that should never raise,
  such as atomic file writes.
- ``RewindError`` subclasses for engine operations. Recoverable conditions
  (no checkpoint, git disabled) are reported as capability warnings instead;
  everything raised here aborts the current operation.

Every error carries a stable ``code`` so the CLI and MCP server can render
it without string matching.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


class RewindError(Exception):
    """Base error with a machine-readable code and structured context."""

    code = "REWIND_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}


class PromptNotFound(RewindError):
    """Prompt index is out of range for the transcript."""

    code = "PROMPT_NOT_FOUND"

    def __init__(self, index: int, available: int):
        if available == 0:
            message = f"Prompt #{index} not found (no user prompts in session)"
        else:
            message = f"Prompt #{index} not found (only {available} prompts in session)"
        super().__init__(message, context={"index": index, "available": available})
        self.index = index
        self.available = available


class RecordNotFound(RewindError):
    """Ledger has no entry for an index that must have been recorded."""

    code = "RECORD_NOT_FOUND"

    def __init__(self, index: int):
        super().__init__(
            f"No checkpoint recorded for prompt #{index}",
            context={"index": index},
        )
        self.index = index


class RepositoryUnavailable(RewindError):
    """git is missing, timed out, or the repository cannot be used."""

    code = "REPOSITORY_UNAVAILABLE"


class NoAssociatedCheckpoint(RewindError):
    """Code-level revert requested for a prompt without a usable checkpoint."""

    code = "NO_ASSOCIATED_CHECKPOINT"

    def __init__(self, index: int, reason: str = "no associated checkpoint"):
        super().__init__(
            f"Cannot revert code for prompt #{index}: {reason}",
            context={"index": index},
        )
        self.index = index


class RevertConflict(RewindError):
    """A commit range could not be reverted; the repository was rolled back."""

    code = "REVERT_CONFLICT"


class ConfigDisabled(RewindError):
    """git side effects are disabled in configuration."""

    code = "CONFIG_DISABLED"

    def __init__(self, message: str = "git operations are disabled in configuration"):
        super().__init__(message)


class IOFailure(RewindError):
    """Ledger or transcript could not be read or written."""

    code = "IO_FAILURE"


# =============================================================================
# Result type
# =============================================================================


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self):
        raise ValueError("Called unwrap_err() on an Ok result")


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed result."""

    error: E

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self):
        if isinstance(self.error, BaseException):
            raise self.error
        raise ValueError(f"Called unwrap() on an Err result: {self.error}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T], Err[E]]


def ok(value: T) -> Ok[T]:
    return Ok(value)


def err(error: E) -> Err[E]:
    return Err(error)


def format_error(error: BaseException | RewindError) -> str:
    """Render an error for terminal output."""
    if isinstance(error, RewindError):
        return f"[{error.code}] {error.message}"
    return str(error)

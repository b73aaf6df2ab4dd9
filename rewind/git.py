"""Git integration for Rewind.

Thin synchronous wrapper around the git CLI. Used for:
- Capturing the commit before a prompt is dispatched
- Auto-committing whatever the assistant changed once its turn ends
- Reverting per-prompt commit ranges and rolling back on failure

Query helpers (``is_git_repo``, ``is_dirty``...) degrade to None/False on
failure like any status probe. Mutating helpers raise
``RepositoryUnavailable`` when git itself cannot run, and report expected
failures (revert conflicts) through their return value.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from rewind.errors import RepositoryUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Identity used only when the repository has none configured
FALLBACK_USER_NAME = "Rewind"
FALLBACK_USER_EMAIL = "rewind@localhost"


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class RevertResult:
    """Outcome of reverting a commit range."""

    success: bool
    commits_reverted: int
    message: str

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "commits_reverted": self.commits_reverted,
            "message": self.message,
        }


# =============================================================================
# Git CLI Helpers
# =============================================================================


def _exec_git(
    args: list[str],
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> subprocess.CompletedProcess:
    """Run a git command and return the completed process.

    Raises:
        RepositoryUnavailable: git is not installed, timed out, or cwd is unusable
    """
    try:
        # Security: shell=False (default), args are internal constants or commit ids
        return subprocess.run(
            ["git", *args],  # noqa: S603, S607
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
        )
    except FileNotFoundError as e:
        raise RepositoryUnavailable(
            "git executable not found",
            context={"args": args, "error": str(e)},
        ) from e
    except subprocess.TimeoutExpired as e:
        raise RepositoryUnavailable(
            f"git {args[0]} timed out after {timeout}s",
            context={"args": args},
        ) from e
    except OSError as e:
        raise RepositoryUnavailable(
            f"git {args[0]} failed: {e}",
            context={"args": args, "cwd": str(cwd)},
        ) from e


def _run_git(
    args: list[str],
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> str | None:
    """Run a git command and return stdout, or None on failure."""
    try:
        result = _exec_git(args, cwd=cwd, timeout=timeout)
    except RepositoryUnavailable as e:
        logger.debug(f"Git command failed: {e}")
        return None
    if result.returncode == 0:
        return result.stdout.strip()
    return None


def _check_git(
    args: list[str],
    cwd: Path | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> str:
    """Run a git command that must succeed and return its stdout."""
    result = _exec_git(args, cwd=cwd, timeout=timeout)
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise RepositoryUnavailable(
            f"git {' '.join(args[:2])} failed: {detail}",
            context={"args": args, "cwd": str(cwd), "returncode": result.returncode},
        )
    return result.stdout.strip()


def _identity_args(path: Path, timeout: int = DEFAULT_TIMEOUT) -> list[str]:
    """``-c`` overrides for committing in repos without a configured identity."""
    args: list[str] = []
    if not _run_git(["config", "user.name"], cwd=path, timeout=timeout):
        args += ["-c", f"user.name={FALLBACK_USER_NAME}"]
    if not _run_git(["config", "user.email"], cwd=path, timeout=timeout):
        args += ["-c", f"user.email={FALLBACK_USER_EMAIL}"]
    return args


def is_git_repo(path: Path | None = None) -> bool:
    """Check if path is inside a git repository."""
    return _run_git(["rev-parse", "--git-dir"], cwd=path) is not None


def has_commits(path: Path | None = None) -> bool:
    """Check if the repository has a HEAD commit."""
    return _run_git(["rev-parse", "--verify", "--quiet", "HEAD"], cwd=path) is not None


def is_dirty(path: Path | None = None) -> bool:
    """Check if working tree has uncommitted changes (untracked files included)."""
    status = _run_git(["status", "--porcelain"], cwd=path)
    return bool(status)


def short_sha(commit: str) -> str:
    """First 8 characters of a commit id, for log lines."""
    return commit[:8]


# =============================================================================
# Rewind Operations
# =============================================================================


def ensure_git_repo(path: Path, timeout: int = DEFAULT_TIMEOUT) -> bool:
    """Make sure ``path`` is a git repository with at least one commit.

    Initializes the repository and records an initial commit of the current
    tree when needed, so every prompt has a commit to return to.

    Returns:
        True if the repository had to be initialized or given a first commit
    """
    path = Path(path)
    if not path.is_dir():
        raise RepositoryUnavailable(
            f"Project path is not a directory: {path}",
            context={"path": str(path)},
        )

    created = False
    if not is_git_repo(path):
        _check_git(["init"], cwd=path, timeout=timeout)
        logger.info(f"Initialized git repository at {path}")
        created = True

    if not has_commits(path):
        _check_git(["add", "-A"], cwd=path, timeout=timeout)
        _check_git(
            [*_identity_args(path, timeout), "commit", "--allow-empty", "--no-verify",
             "-m", "Initial commit"],
            cwd=path,
            timeout=timeout,
        )
        logger.info(f"Created initial commit in {path}")
        created = True

    return created


def get_current_commit(path: Path, timeout: int = DEFAULT_TIMEOUT) -> str:
    """Get the full SHA of HEAD.

    Raises:
        RepositoryUnavailable: not a repository or no commits yet
    """
    return _check_git(["rev-parse", "HEAD"], cwd=path, timeout=timeout)


def commit_all_changes(path: Path, message: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
    """Stage and commit every working-tree change.

    Returns:
        True if a commit was created, False if there was nothing to commit
    """
    _check_git(["add", "-A"], cwd=path, timeout=timeout)

    status = _check_git(["status", "--porcelain"], cwd=path, timeout=timeout)
    if not status:
        logger.debug("Working tree clean, no commit needed")
        return False

    _check_git(
        [*_identity_args(path, timeout), "commit", "--no-verify", "-m", message],
        cwd=path,
        timeout=timeout,
    )
    logger.debug(f"Created commit: {message}")
    return True


def stash_save(path: Path, label: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
    """Stash uncommitted changes, untracked files included.

    Returns:
        True if something was stashed, False if the tree was already clean
    """
    if not is_dirty(path):
        return False

    _check_git(
        [*_identity_args(path, timeout), "stash", "push", "--include-untracked", "-m", label],
        cwd=path,
        timeout=timeout,
    )
    logger.info(f"Stashed uncommitted changes: {label}")
    return True


def revert_range(
    path: Path,
    commit_from: str,
    commit_to: str,
    message: str,
    timeout: int = DEFAULT_TIMEOUT,
) -> RevertResult:
    """Revert every commit in ``commit_from..commit_to`` as a single new commit.

    Commits are reverted newest first. On conflict the in-progress revert is
    aborted and the tree is left at its previous HEAD.
    """
    commit_range = f"{commit_from}..{commit_to}"

    count_output = _run_git(["rev-list", "--count", commit_range], cwd=path, timeout=timeout)
    if count_output is None:
        return RevertResult(
            success=False,
            commits_reverted=0,
            message=f"Invalid commit range {short_sha(commit_from)}..{short_sha(commit_to)}",
        )

    count = int(count_output)
    if count == 0:
        return RevertResult(success=True, commits_reverted=0, message="Nothing to revert")

    result = _exec_git(["revert", "--no-commit", commit_range], cwd=path, timeout=timeout)
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        if _run_git(["revert", "--abort"], cwd=path, timeout=timeout) is None:
            _run_git(["reset", "--merge"], cwd=path, timeout=timeout)
        logger.warning(f"Revert of {commit_range} failed: {detail}")
        return RevertResult(success=False, commits_reverted=0, message=detail or "Revert failed")

    commit = _exec_git(
        [*_identity_args(path, timeout), "commit", "--allow-empty", "--no-verify", "-m", message],
        cwd=path,
        timeout=timeout,
    )
    if commit.returncode != 0:
        detail = (commit.stderr or commit.stdout).strip()
        return RevertResult(success=False, commits_reverted=0, message=detail or "Commit failed")

    return RevertResult(
        success=True,
        commits_reverted=count,
        message=f"Reverted {count} commit(s) in {short_sha(commit_from)}..{short_sha(commit_to)}",
    )


def reset_hard(path: Path, commit: str, timeout: int = DEFAULT_TIMEOUT) -> None:
    """Reset HEAD, index and working tree to ``commit``."""
    _check_git(["reset", "--hard", commit], cwd=path, timeout=timeout)
    logger.info(f"Reset {path} to {short_sha(commit)}")


class GitAdapter:
    """Version-control adapter handed to the engine.

    Binds the configured timeout; tests substitute their own implementation.
    """

    def __init__(self, timeout: int = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def ensure_repository(self, path: Path) -> bool:
        return ensure_git_repo(path, timeout=self.timeout)

    def current_commit(self, path: Path) -> str:
        return get_current_commit(path, timeout=self.timeout)

    def commit_all_changes(self, path: Path, message: str) -> bool:
        return commit_all_changes(path, message, timeout=self.timeout)

    def stash_save(self, path: Path, label: str) -> bool:
        return stash_save(path, label, timeout=self.timeout)

    def revert_range(self, path: Path, commit_from: str, commit_to: str, message: str) -> RevertResult:
        return revert_range(path, commit_from, commit_to, message, timeout=self.timeout)

    def reset_hard(self, path: Path, commit: str) -> None:
        reset_hard(path, commit, timeout=self.timeout)

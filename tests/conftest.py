"""Shared fixtures for Rewind tests."""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from rewind.config import RewindConfig, encode_project_path, hash_project_path


def _git(path: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=path,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def init_git_repo(path: Path) -> bool:
    """Initialize a git repo with one commit at the given path."""
    if shutil.which("git") is None:
        return False
    try:
        _git(path, "init")
        _git(path, "config", "user.email", "test@test.com")
        _git(path, "config", "user.name", "Test User")
        _git(path, "config", "commit.gpgsign", "false")
        (path / "README.md").write_text("Test repo\n")
        _git(path, "add", ".")
        _git(path, "commit", "-m", "Initial commit")
        return True
    except (subprocess.CalledProcessError, OSError):
        return False


def head(path: Path) -> str:
    return _git(path, "rev-parse", "HEAD")


def git_log_subjects(path: Path) -> list[str]:
    return _git(path, "log", "--format=%s").splitlines()


@pytest.fixture
def config(tmp_path: Path) -> RewindConfig:
    """Config whose backend directories all live under tmp_path."""
    return RewindConfig(
        claude_dir=tmp_path / ".claude",
        codex_dir=tmp_path / ".codex",
        gemini_dir=tmp_path / ".gemini",
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def git_project(project: Path) -> Path:
    """Project directory that is a git repo with one commit."""
    if not init_git_repo(project):
        pytest.skip("Git not available")
    return project


# =============================================================================
# Transcript builders
# =============================================================================


def claude_user(text, **extra) -> dict:
    record = {
        "type": "user",
        "isSidechain": False,
        "message": {"role": "user", "content": text},
        "timestamp": "2026-01-15T10:00:00Z",
    }
    record.update(extra)
    return record


def claude_assistant(text: str = "ok") -> dict:
    return {
        "type": "assistant",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def claude_dequeue() -> dict:
    return {"type": "queue-operation", "operation": "dequeue"}


def claude_transcript_path(config: RewindConfig, project_path: Path, session_id: str) -> Path:
    return config.claude_dir / "projects" / encode_project_path(project_path) / f"{session_id}.jsonl"


def write_jsonl(path: Path, records: list) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return path


def write_claude_transcript(
    config: RewindConfig, project_path: Path, session_id: str, records: list
) -> Path:
    return write_jsonl(claude_transcript_path(config, project_path, session_id), records)


def append_claude_turn(
    config: RewindConfig, project_path: Path, session_id: str, text: str
) -> None:
    """Append a workbench-dispatched turn (dequeue, user, assistant)."""
    path = claude_transcript_path(config, project_path, session_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        for record in (claude_dequeue(), claude_user(text), claude_assistant()):
            f.write(json.dumps(record) + "\n")


def codex_meta(session_id: str) -> dict:
    return {"type": "session_meta", "payload": {"id": session_id, "cwd": "/tmp"}}


def codex_user(text: str) -> dict:
    return {
        "type": "response_item",
        "timestamp": "2026-01-15T10:00:00Z",
        "payload": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def codex_assistant(text: str = "ok") -> dict:
    return {
        "type": "response_item",
        "payload": {
            "type": "message",
            "role": "assistant",
            "content": [{"type": "output_text", "text": text}],
        },
    }


def gemini_chats_dir(config: RewindConfig, project_path: Path) -> Path:
    return config.gemini_dir / "tmp" / hash_project_path(project_path) / "chats"


def write_gemini_session(
    config: RewindConfig, project_path: Path, session_id: str, messages: list
) -> Path:
    chats = gemini_chats_dir(config, project_path)
    chats.mkdir(parents=True, exist_ok=True)
    path = chats / f"session-2026-01-15T10-00-{session_id[:8]}.json"
    path.write_text(
        json.dumps({"sessionId": session_id, "projectHash": "x", "messages": messages}),
        encoding="utf-8",
    )
    return path

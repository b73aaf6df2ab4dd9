"""Tests for the rewind CLI."""

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from conftest import (
    claude_dequeue,
    claude_transcript_path,
    claude_user,
    write_claude_transcript,
)
from rewind.cli import main
from rewind.config import DISABLE_GIT_ENV
from rewind.ledger import CheckpointLedger
from rewind.backends import ClaudeTranscriptStore

SESSION = "cli-session"


@pytest.fixture
def config_file(config, tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv(DISABLE_GIT_ENV, raising=False)
    path = tmp_path / "rewind.yaml"
    config.save(path)
    return path


@pytest.fixture
def invoke(config_file):
    runner = CliRunner()

    def _invoke(*args, input=None):
        return runner.invoke(main, ["--config", str(config_file), *args], input=input)

    return _invoke


@pytest.fixture
def transcript(config, project) -> Path:
    return write_claude_transcript(
        config,
        project,
        SESSION,
        [claude_dequeue(), claude_user("first task"), claude_user("second task")],
    )


class TestPromptsCommand:
    """Tests for `rewind prompts`."""

    def test_table(self, invoke, project, transcript):
        result = invoke("prompts", SESSION, "--project", str(project))

        assert result.exit_code == 0
        assert "first task" in result.output
        assert "second task" in result.output
        assert "project" in result.output

    def test_json(self, invoke, project, transcript):
        result = invoke("prompts", SESSION, "-p", str(project), "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [p["index"] for p in data] == [0, 1]
        assert data[0]["source"] == "project"
        assert data[1]["gitRecord"] is None

    def test_empty_session(self, invoke, project):
        result = invoke("prompts", "missing", "-p", str(project))
        assert result.exit_code == 0
        assert "No prompts found" in result.output


class TestCheckCommand:
    """Tests for `rewind check`."""

    def test_untracked_prompt(self, invoke, project, transcript):
        result = invoke("check", SESSION, "1", "-p", str(project), "--json")

        assert result.exit_code == 0
        caps = json.loads(result.stdout)
        assert caps["conversation"] is True
        assert caps["code"] is False
        assert "no associated checkpoint" in caps["warning"]

    def test_tracked_prompt(self, invoke, config, project, transcript):
        store = ClaudeTranscriptStore(SESSION, project.resolve(), config)
        CheckpointLedger(store.ledger_path(), SESSION, project).record_before(0, "d" * 40)

        result = invoke("check", SESSION, "0", "-p", str(project))

        assert result.exit_code == 0
        assert "code_only" in result.output
        assert "no associated checkpoint" not in result.output

    def test_missing_prompt(self, invoke, project, transcript):
        result = invoke("check", SESSION, "9", "-p", str(project))

        assert result.exit_code == 1
        assert "[PROMPT_NOT_FOUND]" in result.output


class TestRevertCommand:
    """Tests for `rewind revert`."""

    def test_conversation_only(self, invoke, config, project, transcript):
        result = invoke(
            "revert", SESSION, "1", "-p", str(project), "--mode", "conversation_only", "--yes"
        )

        assert result.exit_code == 0
        assert "second task" in result.output
        store = ClaudeTranscriptStore(SESSION, project.resolve(), config)
        assert [p.text for p in store.extract_prompts()] == ["first task"]

    def test_confirmation_declined(self, invoke, config, project, transcript):
        before = transcript.read_bytes()

        result = invoke(
            "revert", SESSION, "0", "-p", str(project), "-m", "conversation_only", input="n\n"
        )

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert transcript.read_bytes() == before

    def test_code_without_checkpoint(self, invoke, project, transcript):
        result = invoke("revert", SESSION, "0", "-p", str(project), "-m", "code_only", "-y")

        assert result.exit_code == 1
        assert "[NO_ASSOCIATED_CHECKPOINT]" in result.output

    def test_invalid_mode(self, invoke, project, transcript):
        result = invoke("revert", SESSION, "0", "-p", str(project), "-m", "everything", "-y")
        assert result.exit_code == 2


class TestRecordAndComplete:
    """Tests for `rewind record` and `rewind complete`."""

    def test_record_and_complete(self, invoke, config, git_project):
        result = invoke("record", SESSION, "add a feature", "-p", str(git_project))
        assert result.exit_code == 0
        assert result.stdout.strip() == "0"

        (git_project / "feature.py").write_text("def feature(): ...\n")
        result = invoke("complete", SESSION, "0", "-p", str(git_project))
        assert result.exit_code == 0

        store = ClaudeTranscriptStore(SESSION, git_project.resolve(), config)
        record = CheckpointLedger(store.ledger_path(), SESSION, git_project).get(0)
        assert record.changed_code

    def test_record_reads_stdin(self, invoke, git_project):
        result = invoke("record", SESSION, "-p", str(git_project), input="prompt from stdin\n")
        assert result.exit_code == 0
        assert result.stdout.strip() == "0"

    def test_complete_without_record(self, invoke, git_project):
        result = invoke("complete", SESSION, "4", "-p", str(git_project))
        assert result.exit_code == 1
        assert "[RECORD_NOT_FOUND]" in result.output


class TestConfigCommands:
    """Tests for `rewind config`."""

    def test_show(self, invoke, config_file):
        result = invoke("config", "show")
        assert result.exit_code == 0
        assert "git_timeout" in result.output
        assert "disable_rewind_git_operations" in result.output

    def test_set(self, invoke, config_file):
        result = invoke("config", "set", "git-timeout", "90")

        assert result.exit_code == 0
        assert yaml.safe_load(config_file.read_text())["git_timeout"] == 90

    def test_set_flag(self, invoke, config_file):
        result = invoke("config", "set", "disable_rewind_git_operations", "true")

        assert result.exit_code == 0
        assert yaml.safe_load(config_file.read_text())["disable_rewind_git_operations"] is True

    def test_set_does_not_persist_env_override(self, invoke, config_file, monkeypatch):
        """An environment override in effect while setting another key is not saved."""
        monkeypatch.setenv(DISABLE_GIT_ENV, "1")

        result = invoke("config", "set", "git_timeout", "60")

        assert result.exit_code == 0
        saved = yaml.safe_load(config_file.read_text())
        assert saved["git_timeout"] == 60
        assert "disable_rewind_git_operations" not in saved

    def test_set_does_not_persist_workbench_flag(self, invoke, config, config_file):
        """The workbench execution config stays the source of its own flag."""
        config.claude_dir.mkdir(parents=True, exist_ok=True)
        (config.claude_dir / "execution_config.json").write_text(
            json.dumps({"disable_rewind_git_operations": True})
        )

        result = invoke("config", "set", "git_timeout", "60")

        assert result.exit_code == 0
        assert "disable_rewind_git_operations" not in yaml.safe_load(config_file.read_text())

    def test_set_keeps_explicit_default(self, invoke, config_file):
        """A value the file sets explicitly survives even when it is the default."""
        data = yaml.safe_load(config_file.read_text())
        data["disable_rewind_git_operations"] = False
        config_file.write_text(yaml.safe_dump(data))

        result = invoke("config", "set", "git_timeout", "60")

        assert result.exit_code == 0
        assert yaml.safe_load(config_file.read_text())["disable_rewind_git_operations"] is False

    def test_set_invalid_integer(self, invoke):
        result = invoke("config", "set", "git_timeout", "soon")
        assert result.exit_code == 1
        assert "Invalid integer" in result.output

    def test_set_unknown_key(self, invoke):
        result = invoke("config", "set", "colour", "blue")
        assert result.exit_code == 1
        assert "Unknown config key" in result.output


class TestMainGroup:
    """Tests for group-level options."""

    def test_unknown_backend(self, invoke):
        result = invoke("--backend", "vim", "prompts", SESSION)
        assert result.exit_code == 2

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0

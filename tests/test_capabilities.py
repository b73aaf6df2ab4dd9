"""Tests for rewind.capabilities module."""

import pytest

from conftest import claude_dequeue, claude_user, codex_meta, codex_user, write_claude_transcript, write_jsonl
from rewind.backends import ClaudeTranscriptStore, CodexTranscriptStore
from rewind.capabilities import (
    WARNING_GIT_DISABLED,
    WARNING_NO_CHECKPOINT,
    RewindCapabilities,
    RewindMode,
    evaluate_capabilities,
)
from rewind.errors import PromptNotFound
from rewind.ledger import CheckpointLedger

SESSION = "cap-session"
SHA = "c" * 40


@pytest.fixture
def store(config, project):
    write_claude_transcript(
        config,
        project,
        SESSION,
        [claude_dequeue(), claude_user("one"), claude_user("two")],
    )
    return ClaudeTranscriptStore(SESSION, project, config)


@pytest.fixture
def ledger(store):
    return CheckpointLedger(store.ledger_path(), SESSION, store.project_path)


class TestRewindMode:
    """Tests for RewindMode."""

    def test_values(self):
        assert RewindMode("conversation_only") is RewindMode.CONVERSATION_ONLY
        assert RewindMode("code_only") is RewindMode.CODE_ONLY
        assert RewindMode("both") is RewindMode.BOTH

    def test_invalid(self):
        with pytest.raises(ValueError):
            RewindMode("everything")

    def test_scope(self):
        assert not RewindMode.CONVERSATION_ONLY.touches_code
        assert not RewindMode.CODE_ONLY.touches_conversation
        assert RewindMode.BOTH.touches_code and RewindMode.BOTH.touches_conversation


class TestEvaluateCapabilities:
    """Tests for evaluate_capabilities()."""

    def test_prompt_must_exist(self, store, ledger, config):
        with pytest.raises(PromptNotFound):
            evaluate_capabilities(store, ledger, config, 2)

    def test_valid_checkpoint(self, store, ledger, config):
        """A valid entry allows every mode."""
        ledger.record_before(0, SHA)

        caps = evaluate_capabilities(store, ledger, config, 0)

        assert caps == RewindCapabilities(
            conversation=True, code=True, both=True, warning=None, source="project"
        )

    def test_no_checkpoint(self, store, ledger, config):
        """A prompt without an entry can only rewind the conversation."""
        caps = evaluate_capabilities(store, ledger, config, 1)

        assert caps.conversation is True
        assert caps.code is False and caps.both is False
        assert caps.warning == WARNING_NO_CHECKPOINT
        assert caps.source == "cli"

    def test_git_disabled_overrides_ledger(self, store, ledger, config):
        """Disabled git wins over a valid entry."""
        ledger.record_before(0, SHA)
        config.disable_rewind_git_operations = True

        caps = evaluate_capabilities(store, ledger, config, 0)

        assert caps.code is False and caps.both is False
        assert caps.warning == WARNING_GIT_DISABLED

    @pytest.mark.parametrize("commit", ["", "NONE"])
    def test_invalid_commit(self, store, ledger, config, commit):
        """An entry without a usable commit explains why code is unavailable."""
        ledger.record_before(0, commit)

        caps = evaluate_capabilities(store, ledger, config, 0)

        assert caps.conversation is True
        assert caps.code is False
        assert caps.warning
        assert caps.warning not in (WARNING_NO_CHECKPOINT, WARNING_GIT_DISABLED)

    def test_source_from_ledger_for_untagged_formats(self, config, project):
        """Codex prompts with a ledger entry are reported as project-sourced."""
        write_jsonl(
            config.codex_dir / "sessions" / "r.jsonl",
            [codex_meta(SESSION), codex_user("one"), codex_user("two")],
        )
        store = CodexTranscriptStore(SESSION, project, config)
        ledger = CheckpointLedger(store.ledger_path(), SESSION, project)
        ledger.record_before(0, SHA)

        assert evaluate_capabilities(store, ledger, config, 0).source == "project"
        assert evaluate_capabilities(store, ledger, config, 1).source == "cli"

    def test_to_dict(self):
        caps = RewindCapabilities(True, False, False, "w", "cli")
        assert caps.to_dict() == {
            "conversation": True,
            "code": False,
            "both": False,
            "warning": "w",
            "source": "cli",
        }

    def test_allows(self):
        caps = RewindCapabilities(True, False, False, "w", "cli")
        assert caps.allows(RewindMode.CONVERSATION_ONLY)
        assert not caps.allows(RewindMode.CODE_ONLY)
        assert not caps.allows(RewindMode.BOTH)

"""Transcript adapters, one per conversation backend."""

from rewind.backends.claude import ClaudeTranscriptStore
from rewind.backends.codex import CodexTranscriptStore
from rewind.backends.gemini import GeminiTranscriptStore
from rewind.transcript import TranscriptStore

BACKENDS: dict[str, type[TranscriptStore]] = {
    ClaudeTranscriptStore.backend: ClaudeTranscriptStore,
    CodexTranscriptStore.backend: CodexTranscriptStore,
    GeminiTranscriptStore.backend: GeminiTranscriptStore,
}

__all__ = [
    "BACKENDS",
    "ClaudeTranscriptStore",
    "CodexTranscriptStore",
    "GeminiTranscriptStore",
]

"""Rewind: prompt-level checkpoints and rewind for AI coding sessions."""

__version__ = "0.1.0"

from rewind.capabilities import RewindCapabilities, RewindMode
from rewind.config import RewindConfig
from rewind.engine import RewindEngine, TrackedPrompt
from rewind.ledger import CheckpointLedger, GitRecord
from rewind.transcript import PromptRecord, TranscriptStore, open_transcript

__all__ = [
    "__version__",
    "CheckpointLedger",
    "GitRecord",
    "PromptRecord",
    "RewindCapabilities",
    "RewindConfig",
    "RewindEngine",
    "RewindMode",
    "TrackedPrompt",
    "TranscriptStore",
    "open_transcript",
]

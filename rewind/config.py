"""Configuration management for Rewind.

Storage Structure
-----------------
~/.rewind/
└── config.yaml               # Rewind settings (only non-default values)

~/.claude/execution_config.json   # Workbench execution settings; only the
                                  # ``disable_rewind_git_operations`` flag is read

Configuration is loaded once at startup into a ``RewindConfig`` value and
passed to the engine explicitly. Nothing in the package reads configuration
from process-wide state after that.

Precedence (highest first):
1. ``REWIND_DISABLE_GIT`` environment variable (git flag only)
2. ``~/.rewind/config.yaml``
3. ``~/.claude/execution_config.json`` (git flag only)
4. Built-in defaults
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable

import yaml

logger = logging.getLogger(__name__)

# Standard paths
REWIND_DIR = Path.home() / ".rewind"
CONFIG_PATH = REWIND_DIR / "config.yaml"
EXECUTION_CONFIG_NAME = "execution_config.json"

DISABLE_GIT_ENV = "REWIND_DISABLE_GIT"

_PATH_FIELDS = ("claude_dir", "codex_dir", "gemini_dir", "ledger_dir")
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class RewindConfig:
    """Rewind settings."""

    # Turns off every git side effect; rewind degrades to conversation-only
    disable_rewind_git_operations: bool = False

    # Seconds before a single git invocation is abandoned
    git_timeout: int = 30

    # Backend data directories
    claude_dir: Path = field(default_factory=lambda: Path.home() / ".claude")
    codex_dir: Path = field(default_factory=lambda: Path.home() / ".codex")
    gemini_dir: Path = field(default_factory=lambda: Path.home() / ".gemini")

    # Overrides the per-backend ledger locations when set
    ledger_dir: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> "RewindConfig":
        """Load configuration from file and environment."""
        config_path = path or CONFIG_PATH
        data = read_config_file(config_path)

        config = cls._from_dict(data)

        if "disable_rewind_git_operations" not in data:
            execution_flag = _read_execution_config_flag(config.claude_dir)
            if execution_flag is not None:
                config.disable_rewind_git_operations = execution_flag

        if (env_value := os.environ.get(DISABLE_GIT_ENV)) is not None:
            config.disable_rewind_git_operations = env_value.strip().lower() in _TRUTHY

        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "RewindConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key not in valid_fields:
                logger.debug(f"Ignoring unknown config key: {key}")
                continue
            if key in _PATH_FIELDS and value is not None:
                value = Path(value).expanduser()
            values[key] = value
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a YAML-safe dictionary."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data

    def save(self, path: Path | None = None, keep: Iterable[str] = ()) -> Path:
        """Save non-default values to the config file.

        Args:
            path: Config file (default ~/.rewind/config.yaml)
            keep: Keys written even when they hold the default value

        Returns:
            Path to saved config file
        """
        from rewind.atomic import atomic_write_yaml

        config_path = path or CONFIG_PATH
        defaults = RewindConfig().to_dict()
        keep = set(keep)
        data = {
            k: v for k, v in self.to_dict().items() if k in keep or defaults.get(k) != v
        }

        result = atomic_write_yaml(config_path, data, mode=0o600)
        if result.is_err():
            raise result.unwrap_err()
        return config_path


def read_config_file(config_path: Path) -> dict[str, Any]:
    """Return the raw mapping stored in a config file, or {} if absent."""
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring malformed config file: {config_path}")
        return {}
    return data


def _read_execution_config_flag(claude_dir: Path) -> bool | None:
    """Read ``disable_rewind_git_operations`` from the workbench execution config."""
    execution_path = claude_dir / EXECUTION_CONFIG_NAME
    if not execution_path.exists():
        return None

    try:
        with open(execution_path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to read execution config {execution_path}: {e}")
        return None

    if not isinstance(data, dict):
        return None
    value = data.get("disable_rewind_git_operations")
    return bool(value) if value is not None else None


def encode_project_path(project_path: str | Path) -> str:
    """Encode a project path the way Claude Code names its project directories."""
    return str(project_path).replace("\\", "-").replace("/", "-").replace(":", "")


def hash_project_path(project_path: str | Path) -> str:
    """SHA-256 of a project path, used by Gemini for its per-project directory."""
    return hashlib.sha256(str(project_path).encode("utf-8")).hexdigest()

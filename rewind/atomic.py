"""Atomic file write utilities for Rewind.

Ledger files, truncated transcripts and the config file are all replaced
with the temp file + rename pattern, which is atomic on POSIX systems. A
crash mid-write leaves either the old file or the new one, never a torn one.

All functions return Result types for explicit error handling.

Security:
- Files are created with 0o600 permissions by default
- Parent directories are created with 0o700 permissions
- Temp files are cleaned up on failure
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from rewind.errors import Err, IOFailure, Ok, Result

logger = logging.getLogger(__name__)


def atomic_write_text(
    path: Path,
    content: str,
    mode: int = 0o600,
) -> Result[Path, IOFailure]:
    """Atomically write text content to a file.

    Uses temp file + rename pattern for crash safety.
    Creates parent directories if they don't exist.

    Args:
        path: Target file path
        content: Text content to write
        mode: File permissions (default 0o600 - owner read/write only)

    Returns:
        Ok(path) on success, Err(IOFailure) on failure
    """
    path = Path(path)
    temp_path: str | None = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        # Temp file must live in the same directory for rename to be atomic
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.stem}_",
            suffix=f"{path.suffix}.tmp",
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            os.chmod(temp_path, mode)
            os.replace(temp_path, path)

            logger.debug(f"Atomic write complete: {path}")
            return Ok(path)

        except Exception:
            _cleanup_temp(temp_path)
            raise

    except PermissionError as e:
        logger.error(f"Permission denied writing {path}: {e}")
        return Err(
            IOFailure(
                f"Permission denied writing to {path}",
                code="ATOMIC_PERMISSION_DENIED",
                context={"path": str(path)},
            )
        )

    except OSError as e:
        logger.error(f"OS error writing {path}: {e}")
        return Err(
            IOFailure(
                f"Failed to write {path}: {e}",
                code="ATOMIC_WRITE_FAILED",
                context={"path": str(path), "error": str(e)},
            )
        )


def atomic_write_json(
    path: Path,
    data: Any,
    mode: int = 0o600,
    indent: int | None = 2,
    ensure_ascii: bool = False,
) -> Result[Path, IOFailure]:
    """Atomically write JSON data to a file.

    Args:
        path: Target file path
        data: Data to serialize as JSON
        mode: File permissions (default 0o600)
        indent: JSON indentation (default 2, None for compact)
        ensure_ascii: Escape non-ASCII characters (default False)

    Returns:
        Ok(path) on success, Err(IOFailure) on failure
    """
    try:
        content = json.dumps(data, indent=indent, ensure_ascii=ensure_ascii)
    except (TypeError, ValueError) as e:
        logger.error(f"JSON serialization failed: {e}")
        return Err(
            IOFailure(
                f"Failed to serialize data to JSON: {e}",
                code="JSON_SERIALIZATION_FAILED",
                context={"error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def atomic_write_yaml(
    path: Path,
    data: Any,
    mode: int = 0o600,
) -> Result[Path, IOFailure]:
    """Atomically write YAML data to a file using yaml.safe_dump."""
    try:
        content = yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    except yaml.YAMLError as e:
        logger.error(f"YAML serialization failed: {e}")
        return Err(
            IOFailure(
                f"Failed to serialize data to YAML: {e}",
                code="YAML_SERIALIZATION_FAILED",
                context={"error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def file_mode(path: Path, default: int = 0o600) -> int:
    """Permission bits of an existing file, so rewrites keep them."""
    try:
        return Path(path).stat().st_mode & 0o777
    except OSError:
        return default


def _cleanup_temp(temp_path: str | None) -> None:
    """Clean up temporary file, ignoring errors."""
    if temp_path is None:
        return

    try:
        os.unlink(temp_path)
        logger.debug(f"Cleaned up temp file: {temp_path}")
    except OSError:
        # Temp file may already be gone
        pass

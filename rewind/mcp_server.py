"""Rewind MCP Server.

Exposes the rewind engine as MCP tools so a workbench or agent host can
record checkpoints around each prompt and rewind a session.

Every tool runs the blocking engine call in a worker thread. The call is
shielded from cancellation: once a revert starts it runs to completion even
if the client gives up waiting, so git and the transcript are never left
half-rewound.

Usage:
    python -m rewind.mcp_server

Or via MCP config:
    {
        "mcpServers": {
            "rewind": {
                "command": "python",
                "args": ["-m", "rewind.mcp_server"]
            }
        }
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, TypeVar

from mcp.server.fastmcp import FastMCP

from rewind.backends import BACKENDS
from rewind.capabilities import RewindMode
from rewind.config import RewindConfig
from rewind.engine import RewindEngine
from rewind.errors import RewindError, format_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

mcp = FastMCP("rewind")

_CONFIG: RewindConfig | None = None
_ENGINES: dict[str, RewindEngine] = {}


def get_engine(backend: str) -> RewindEngine:
    """Engine for ``backend``, created on first use and reused so sessions share locks."""
    global _CONFIG

    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}' (expected one of: {', '.join(sorted(BACKENDS))})")

    engine = _ENGINES.get(backend)
    if engine is None:
        if _CONFIG is None:
            _CONFIG = RewindConfig.load()
        engine = RewindEngine(_CONFIG, backend=backend)
        _ENGINES[backend] = engine
    return engine


def reset_engines(config: RewindConfig | None = None) -> None:
    """Drop cached engines, optionally installing a new configuration."""
    global _CONFIG
    _CONFIG = config
    _ENGINES.clear()


async def _run(func: Callable[..., T], *args: Any) -> T:
    return await asyncio.shield(asyncio.to_thread(func, *args))


# =============================================================================
# Write path
# =============================================================================


@mcp.tool()
async def rewind_record_prompt(
    session_id: str,
    project_path: str,
    prompt_text: str,
    backend: str = "claude",
) -> str:
    """Record a checkpoint before a prompt is sent.

    Call this immediately before dispatching the prompt to the assistant.

    Args:
        session_id: Conversation session id
        project_path: Project directory the session works in
        prompt_text: The prompt about to be sent
        backend: claude, codex or gemini

    Returns:
        The index assigned to the prompt
    """
    try:
        engine = get_engine(backend)
        index = await _run(engine.record_prompt_sent, session_id, project_path, prompt_text)
    except (RewindError, ValueError) as e:
        return f"Error: {format_error(e)}"
    return f"✓ Recorded prompt #{index}"


@mcp.tool()
async def rewind_mark_completed(
    session_id: str,
    project_path: str,
    index: int,
    backend: str = "claude",
) -> str:
    """Commit the changes made while answering prompt ``index``.

    Args:
        session_id: Conversation session id
        project_path: Project directory the session works in
        index: Index returned by rewind_record_prompt
        backend: claude, codex or gemini
    """
    try:
        engine = get_engine(backend)
        await _run(engine.mark_prompt_completed, session_id, project_path, index)
    except (RewindError, ValueError) as e:
        return f"Error: {format_error(e)}"
    return f"✓ Prompt #{index} completed"


# =============================================================================
# Read path
# =============================================================================


@mcp.tool()
async def rewind_check(
    session_id: str,
    project_path: str,
    index: int,
    backend: str = "claude",
) -> str:
    """Report which rewind modes are available for prompt ``index``.

    Returns:
        JSON object with conversation, code, both, warning and source
    """
    try:
        engine = get_engine(backend)
        caps = await _run(engine.check_rewind_capabilities, session_id, project_path, index)
    except (RewindError, ValueError) as e:
        return f"Error: {format_error(e)}"
    return json.dumps(caps.to_dict())


@mcp.tool()
async def rewind_list_prompts(
    session_id: str,
    project_path: str,
    backend: str = "claude",
) -> str:
    """List the user prompts of a session with their checkpoints.

    Returns:
        JSON array of prompts (index, text, source, timestamp, gitRecord)
    """
    try:
        engine = get_engine(backend)
        tracked = await _run(engine.get_unified_prompt_list, session_id, project_path)
    except (RewindError, ValueError) as e:
        return f"Error: {format_error(e)}"
    return json.dumps([t.to_dict() for t in tracked], ensure_ascii=False)


# =============================================================================
# Revert path
# =============================================================================


@mcp.tool()
async def rewind_revert(
    session_id: str,
    project_path: str,
    index: int,
    mode: str = RewindMode.BOTH.value,
    backend: str = "claude",
) -> str:
    """Rewind a session to the state before prompt ``index``.

    Args:
        session_id: Conversation session id
        project_path: Project directory the session works in
        index: Prompt to rewind to (it and everything after it is undone)
        mode: conversation_only, code_only or both
        backend: claude, codex or gemini

    Returns:
        The reverted prompt's text, so it can be edited and resent
    """
    try:
        rewind_mode = RewindMode(mode)
    except ValueError:
        valid = ", ".join(m.value for m in RewindMode)
        return f"Error: invalid mode '{mode}' (expected one of: {valid})"

    try:
        engine = get_engine(backend)
        text = await _run(engine.revert_to_prompt, session_id, project_path, index, rewind_mode)
    except (RewindError, ValueError) as e:
        return f"Error: {format_error(e)}"

    logger.info(f"Reverted session {session_id} to prompt #{index} via MCP")
    return f"✓ Rewound to before prompt #{index} ({rewind_mode.value})\n\n{text}"


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the Rewind MCP server."""
    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    mcp.run()


if __name__ == "__main__":
    main()

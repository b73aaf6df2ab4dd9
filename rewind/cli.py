"""Rewind CLI - prompt checkpoints and rewind for AI coding sessions."""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from rewind import __version__
from rewind.backends import BACKENDS
from rewind.capabilities import RewindMode
from rewind.config import CONFIG_PATH, RewindConfig, read_config_file
from rewind.engine import RewindEngine
from rewind.errors import RewindError, format_error

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _engine(ctx: click.Context) -> RewindEngine:
    obj = ctx.obj
    return RewindEngine(obj["config"], backend=obj["backend"])


def _fail(error: Exception) -> None:
    console.print(f"[red]{format_error(error)}[/red]")
    sys.exit(1)


project_option = click.option(
    "--project",
    "-p",
    "project_path",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project directory the session works in",
)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--backend",
    "-b",
    type=click.Choice(sorted(BACKENDS)),
    default="claude",
    show_default=True,
    help="Conversation backend that owns the transcript",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default ~/.rewind/config.yaml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx, backend, config_path, verbose):
    """Rewind: prompt-level checkpoints for AI coding sessions."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend
    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = RewindConfig.load(config_path)


@main.command()
@click.argument("session")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def prompts(ctx, session, project_path, as_json):
    """List the prompts of a session and their checkpoints."""
    try:
        tracked = _engine(ctx).get_unified_prompt_list(session, project_path.resolve())
    except RewindError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps([t.to_dict() for t in tracked], indent=2, ensure_ascii=False))
        return

    if not tracked:
        console.print(f"[yellow]No prompts found for session '{session}'[/yellow]")
        return

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("SOURCE")
    table.add_column("CHECKPOINT")
    table.add_column("TIME")
    table.add_column("PROMPT")

    for item in tracked:
        record = item.record
        if record is None:
            checkpoint = "-"
        elif record.changed_code:
            checkpoint = f"{record.commit_before[:8]}..{record.commit_after[:8]}"
        else:
            checkpoint = record.commit_before[:8]

        ts = item.prompt.timestamp[:16].replace("T", " ") or "-"
        text = " ".join(item.prompt.text.split())
        text = text[:60] + "..." if len(text) > 60 else text

        table.add_row(str(item.index), item.source, checkpoint, ts, text)

    console.print(table)


@main.command()
@click.argument("session")
@click.argument("index", type=int)
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def check(ctx, session, index, project_path, as_json):
    """Show which rewind modes prompt INDEX supports."""
    try:
        caps = _engine(ctx).check_rewind_capabilities(session, project_path.resolve(), index)
    except RewindError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(caps.to_dict(), indent=2))
        return

    def mark(available: bool) -> str:
        return "[green]✓[/green]" if available else "[red]✗[/red]"

    console.print(f"[bold]Prompt #{index}[/bold] [dim]({caps.source})[/dim]")
    console.print(f"  {mark(caps.conversation)} {RewindMode.CONVERSATION_ONLY.value}")
    console.print(f"  {mark(caps.code)} {RewindMode.CODE_ONLY.value}")
    console.print(f"  {mark(caps.both)} {RewindMode.BOTH.value}")
    if caps.warning:
        console.print(f"[yellow]{caps.warning}[/yellow]")


@main.command()
@click.argument("session")
@click.argument("index", type=int)
@project_option
@click.option(
    "--mode",
    "-m",
    type=click.Choice([m.value for m in RewindMode]),
    default=RewindMode.BOTH.value,
    show_default=True,
    help="What to rewind",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def revert(ctx, session, index, project_path, mode, yes):
    """Rewind a session to the state before prompt INDEX."""
    if not yes:
        if not click.confirm(f"Rewind session '{session}' to before prompt #{index} ({mode})?"):
            console.print("Cancelled.")
            return

    try:
        text = _engine(ctx).revert_to_prompt(session, project_path.resolve(), index, mode)
    except RewindError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Rewound to before prompt #{index} ({mode})")
    console.print()
    console.print("[dim]Prompt text:[/dim]")
    console.print(text, markup=False, highlight=False)


@main.command()
@click.argument("session")
@click.argument("text", required=False)
@project_option
@click.pass_context
def record(ctx, session, text, project_path):
    """Record a checkpoint before sending a prompt.

    TEXT is read from stdin when omitted. Prints the prompt index.
    """
    if text is None:
        text = click.get_text_stream("stdin").read()

    try:
        index = _engine(ctx).record_prompt_sent(session, project_path.resolve(), text)
    except RewindError as e:
        _fail(e)

    click.echo(index)


@main.command()
@click.argument("session")
@click.argument("index", type=int)
@project_option
@click.pass_context
def complete(ctx, session, index, project_path):
    """Commit the changes of prompt INDEX and close its checkpoint."""
    try:
        _engine(ctx).mark_prompt_completed(session, project_path.resolve(), index)
    except RewindError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Prompt #{index} completed")


@main.group("config")
def config_group():
    """Manage configuration (~/.rewind/config.yaml)."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx):
    """Show the effective configuration."""
    cfg = ctx.obj["config"]
    defaults = RewindConfig().to_dict()
    path = ctx.obj["config_path"] or CONFIG_PATH

    console.print(f"[bold]Configuration[/bold] [dim]({path})[/dim]")
    console.print()
    for key, value in cfg.to_dict().items():
        if value != defaults.get(key):
            console.print(f"  {key}: [cyan]{value}[/cyan] [dim](default: {defaults.get(key)})[/dim]")
        else:
            console.print(f"  {key}: {value}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx, key: str, value: str):
    """Set a configuration value.

    Examples:
        rewind config set disable_rewind_git_operations true
        rewind config set git_timeout 60
        rewind config set ledger_dir ~/.rewind/ledgers
    """
    key = key.replace("-", "_")
    config_path = ctx.obj["config_path"] or CONFIG_PATH
    # Start from the file alone so environment overrides are not persisted
    file_data = read_config_file(config_path)
    data = RewindConfig._from_dict(file_data).to_dict()

    if key not in data:
        console.print(f"[red]Unknown config key: {key}[/red]")
        console.print(f"[dim]Keys: {', '.join(data)}[/dim]")
        sys.exit(1)

    if key == "disable_rewind_git_operations":
        typed_value = value.strip().lower() in {"1", "true", "yes", "on"}
    elif key == "git_timeout":
        try:
            typed_value = int(value)
        except ValueError:
            console.print(f"[red]Invalid integer value: {value}[/red]")
            sys.exit(1)
    elif key == "ledger_dir" and value.strip().lower() in {"", "none"}:
        typed_value = None
    else:
        typed_value = value

    data[key] = typed_value
    cfg = RewindConfig._from_dict(data)
    try:
        saved = cfg.save(config_path, keep=[*file_data, key])
    except RewindError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Set {key} = {typed_value} ({saved})")


if __name__ == "__main__":
    main()

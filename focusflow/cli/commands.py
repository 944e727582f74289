"""CLI commands for focusflow."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from focusflow import __version__
from focusflow.agent.breakdown import breakdown_task, describe_task
from focusflow.agent.email import draft_email
from focusflow.agent.turn_handler import TurnState
from focusflow.config.loader import load_config
from focusflow.config.schema import Config
from focusflow.errors import MessageNotFound
from focusflow.logging import setup_logging
from focusflow.models import USER, OwnerProfile, Task
from focusflow.runtime import Runtime
from focusflow.session import naming

app = typer.Typer(
    name="focusflow",
    help="focusflow - task assistant with memory across every conversation",
    no_args_is_help=True,
)

console = Console()

T = TypeVar("T")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"focusflow v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(None, "--version", callback=version_callback, is_eager=True),
) -> None:
    """focusflow - task assistant with memory across every conversation."""
    ctx.obj = {"config_path": config, "verbose": verbose}


# ============================================================================
# Helpers
# ============================================================================


def _config(ctx: typer.Context) -> Config:
    opts = ctx.obj or {}
    cfg = load_config(opts.get("config_path"))
    level = "DEBUG" if opts.get("verbose") else cfg.logging.level
    setup_logging(json_output=cfg.logging.json_output, level=level)
    return cfg


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/red]")
        raise typer.Exit(1)


def _load_profile(cfg: Config) -> OwnerProfile:
    path = cfg.workspace_path / "profile.json"
    data = _read_json(path)
    if not isinstance(data, dict) or not data.get("id"):
        console.print(f"[red]No owner profile found at {path}[/red]")
        raise typer.Exit(1)
    return OwnerProfile.from_dict(data)


def _load_tasks(cfg: Config) -> list[Task]:
    data = _read_json(cfg.workspace_path / "tasks.json")
    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list):
        return []
    return [Task.from_dict(item) for item in data if isinstance(item, dict) and "id" in item]


def _find_task(tasks: list[Task], task_id: str | None) -> Task | None:
    if task_id is None:
        return None
    for task in tasks:
        if task.id == task_id:
            return task
    console.print(f"[red]Unknown task: {task_id}[/red]")
    raise typer.Exit(1)


def _run(cfg: Config, work: Callable[[Runtime], Awaitable[T]]) -> T:
    async def _main() -> T:
        async with Runtime(cfg) as rt:
            if rt.store.degraded:
                console.print("[yellow]Thread storage is unavailable; this session will not be saved.[/yellow]")
            return await work(rt)

    return asyncio.run(_main())


# ============================================================================
# Conversation
# ============================================================================


@app.command()
def chat(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Message to send"),
    task_id: str | None = typer.Option(None, "--task", "-t", help="Talk about this task instead of the coach"),
) -> None:
    """Send one message to the coach or to a task conversation."""
    cfg = _config(ctx)
    profile = _load_profile(cfg)
    tasks = _load_tasks(cfg)
    task = _find_task(tasks, task_id)

    result = _run(cfg, lambda rt: rt.turns.send_message(profile, message, task=task, tasks=tasks))

    if result.state is TurnState.IDLE:
        console.print("[dim]Nothing to send.[/dim]")
        return
    title = naming.label_for(result.thread_id or "")
    style = "cyan" if result.state is TurnState.DELIVERED else "yellow"
    console.print(Panel(result.reply.content if result.reply else "", title=title, border_style=style))


@app.command()
def prompt(
    ctx: typer.Context,
    task_id: str | None = typer.Option(None, "--task", "-t", help="Show the prompt for this task"),
) -> None:
    """Show the system prompt the next turn would use."""
    cfg = _config(ctx)
    profile = _load_profile(cfg)
    tasks = _load_tasks(cfg)
    task = _find_task(tasks, task_id)

    async def _compose(rt: Runtime) -> str:
        conversations = await rt.aggregator.aggregate_all(profile.id)
        return rt.composer.compose(profile, conversations, task=task, tasks=tasks)

    console.print(_run(cfg, _compose), markup=False, highlight=False)


# ============================================================================
# Threads and memories
# ============================================================================


@app.command()
def threads(ctx: typer.Context) -> None:
    """List the owner's conversation threads."""
    cfg = _config(ctx)
    profile = _load_profile(cfg)

    async def _collect(rt: Runtime) -> list[tuple[str, str, int, str]]:
        rows = []
        for summary in await rt.store.list_threads(profile.id):
            messages = await rt.store.read_all(summary.id)
            rows.append((summary.id, summary.purpose_label, len(messages), rt.composer.summarize_thread(messages)))
        return rows

    rows = _run(cfg, _collect)
    if not rows:
        console.print("No conversations yet.")
        return

    table = Table(title="Threads")
    table.add_column("Thread", style="cyan")
    table.add_column("Label")
    table.add_column("Messages", justify="right")
    table.add_column("Summary", style="dim")
    for thread_id, label, count, summary in rows:
        table.add_row(thread_id, label, str(count), summary)
    console.print(table)


@app.command()
def history(
    ctx: typer.Context,
    thread_id: str = typer.Argument(..., help="Thread id, e.g. user_42_coach"),
    limit: int = typer.Option(20, "--limit", "-n", help="Show at most this many recent messages"),
) -> None:
    """Show the messages of one thread with their ids."""
    cfg = _config(ctx)
    messages = _run(cfg, lambda rt: rt.store.read_all(thread_id))
    if not messages:
        console.print("No messages in this thread.")
        return

    for m in messages[-limit:] if limit > 0 else messages:
        who = "[bold green]You[/bold green]" if m.sender == USER else "[bold cyan]Assistant[/bold cyan]"
        edited = " [dim](edited)[/dim]" if m.edited_at else ""
        console.print(f"{who} [dim]{m.timestamp:%Y-%m-%d %H:%M} {m.id}[/dim]{edited}")
        console.print(m.content, markup=False, highlight=False)


@app.command()
def edit(
    ctx: typer.Context,
    thread_id: str = typer.Argument(..., help="Thread id"),
    message_id: str = typer.Argument(..., help="Message id (see `history`)"),
    content: str = typer.Argument(..., help="Replacement text"),
) -> None:
    """Replace the text of a stored message."""
    cfg = _config(ctx)
    if not content.strip():
        console.print("[red]Replacement text must not be empty.[/red]")
        raise typer.Exit(1)
    try:
        _run(cfg, lambda rt: rt.store.update(thread_id, message_id, content))
    except MessageNotFound:
        console.print("[red]Could not find that memory.[/red]")
        raise typer.Exit(1)
    console.print("[green]✓[/green] Memory updated")


@app.command()
def forget(
    ctx: typer.Context,
    thread_id: str = typer.Argument(..., help="Thread id"),
    message_id: str = typer.Argument(..., help="Message id (see `history`)"),
) -> None:
    """Delete one stored message."""
    cfg = _config(ctx)
    _run(cfg, lambda rt: rt.store.delete(thread_id, message_id))
    console.print("[green]✓[/green] Memory removed")


@app.command()
def clear(
    ctx: typer.Context,
    thread_id: str = typer.Argument(..., help="Thread id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Remove every message from a thread."""
    if not yes:
        typer.confirm(f"Clear all messages in {thread_id}?", abort=True)
    cfg = _config(ctx)
    _run(cfg, lambda rt: rt.store.clear(thread_id))
    console.print(f"[green]✓[/green] Cleared {naming.label_for(thread_id)}")


# ============================================================================
# Email
# ============================================================================


@app.command()
def email(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task the email is about"),
    to: str = typer.Option(..., "--to", help="Recipients"),
    context: str | None = typer.Option(None, "--context", help="Extra context for the draft"),
) -> None:
    """Draft an email about a task in the owner's voice."""
    cfg = _config(ctx)
    profile = _load_profile(cfg)
    task = _find_task(_load_tasks(cfg), task_id)

    try:
        draft = _run(cfg, lambda rt: draft_email(rt.model, profile, task, to, context))
    except Exception as e:
        console.print(f"[red]Error generating email draft: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Subject:[/bold] {draft.subject}")
    console.print(f"[bold]To:[/bold] {to}\n")
    console.print(draft.body, markup=False, highlight=False)


# ============================================================================
# Breakdown
# ============================================================================


@app.command()
def breakdown(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task to break down"),
) -> None:
    """Break a task into a few small steps, the first one easy to start."""
    cfg = _config(ctx)
    profile = _load_profile(cfg)
    task = _find_task(_load_tasks(cfg), task_id)

    try:
        steps = _run(cfg, lambda rt: breakdown_task(rt.model, profile, describe_task(task)))
    except Exception as e:
        console.print(f"[red]Error generating task breakdown: {e}[/red]")
        raise typer.Exit(1)

    if not steps:
        console.print("[yellow]The model did not suggest any steps.[/yellow]")
        return
    console.print(f"[bold]{task.title}[/bold]")
    for i, step in enumerate(steps, start=1):
        console.print(f"  {i}. {step}", markup=False, highlight=False)


if __name__ == "__main__":
    app()

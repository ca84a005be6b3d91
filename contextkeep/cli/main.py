import asyncio
import logging
import os
from datetime import datetime

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from contextkeep.core.task import TaskHistory
from contextkeep.memory.journal import read_journal
from contextkeep.types.types import ApiMessage

console = Console()


def _parse_ts(value: str) -> int | float:
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            raise click.BadParameter(f"{value!r} is not a timestamp") from None


def _preview(content, width: int = 60) -> str:
    text = content if isinstance(content, str) else str(content)
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 1] + "…"


def _flags(message: ApiMessage) -> str:
    flags = []
    if message.is_summary:
        flags.append(f"[green]summary {message.condense_id}[/green]")
    if message.is_truncation_marker:
        flags.append(f"[yellow]marker {message.truncation_id}[/yellow]")
    if message.condense_parent:
        flags.append(f"[dim]condensed by {message.condense_parent}[/dim]")
    if message.truncation_parent:
        flags.append(f"[dim]truncated by {message.truncation_parent}[/dim]")
    return "\n".join(flags)


def _load_history(task_dir: str) -> TaskHistory:
    history = TaskHistory(os.path.basename(os.path.normpath(task_dir)), task_dir=task_dir)
    asyncio.run(history.load())
    return history


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Inspect and recover condensed conversation history."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("task_dir", type=click.Path(exists=True, file_okay=False))
def journal(task_dir: str) -> None:
    """List the condense journal of a task."""
    condense_journal = asyncio.run(read_journal(task_dir))
    if condense_journal is None or not condense_journal.entries:
        console.print("[yellow]No condense journal entries.[/yellow]")
        return

    table = Table(title=f"Condense journal (v{condense_journal.version})")
    table.add_column("#", justify="right")
    table.add_column("Created")
    table.add_column("Type")
    table.add_column("Removed", justify="right")
    table.add_column("Removed ts")
    table.add_column("Summary ts")
    for i, entry in enumerate(condense_journal.entries):
        removed_ts = [m.ts for m in entry.removed]
        span = f"{removed_ts[0]} .. {removed_ts[-1]}" if removed_ts else "-"
        table.add_row(
            str(i),
            datetime.fromtimestamp(entry.created_at / 1000).isoformat(timespec="seconds"),
            entry.type,
            str(len(entry.removed)),
            span,
            str(entry.boundary.summary_ts),
        )
    console.print(table)


@main.command()
@click.argument("task_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--effective", is_flag=True, help="Show only what would be sent to the model")
def history(task_dir: str, effective: bool) -> None:
    """Show the stored message log of a task."""
    task_history = _load_history(task_dir)
    messages = task_history.effective_messages() if effective else task_history.messages
    if not messages:
        console.print("[yellow]No messages.[/yellow]")
        return

    table = Table(title="Effective history" if effective else "Stored history")
    table.add_column("ts", justify="right")
    table.add_column("Role")
    table.add_column("Content")
    table.add_column("Markers")
    for message in messages:
        table.add_row(
            str(message.ts), message.role, escape(_preview(message.content)), _flags(message)
        )
    console.print(table)


@main.command()
@click.argument("task_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("ts")
def restore(task_dir: str, ts: str) -> None:
    """Restore a condensed message from the journal into the stored log."""
    target_ts = _parse_ts(ts)
    task_history = _load_history(task_dir)
    before = len(task_history.messages)
    if not asyncio.run(task_history.restore(target_ts)):
        console.print(f"[red]Nothing to restore for ts={ts}.[/red]")
        raise SystemExit(1)
    console.print(
        f"[green]Restored {len(task_history.messages) - before} messages for ts={ts}.[/green]"
    )


@main.command()
@click.argument("task_dir", type=click.Path(exists=True, file_okay=False))
@click.argument("ts")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def rewind(task_dir: str, ts: str, yes: bool) -> None:
    """Drop every message at or after TS."""
    target_ts = _parse_ts(ts)
    task_history = _load_history(task_dir)
    doomed = sum(1 for m in task_history.messages if m.ts is not None and m.ts >= target_ts)
    if not yes:
        click.confirm(f"Drop {doomed} messages at or after ts={ts}?", abort=True)

    kept = asyncio.run(task_history.rewind_to(target_ts))
    console.print(
        Panel(
            f"[bold green]Rewound to ts={ts}[/bold green]\n\n"
            f"  {len(kept)} messages kept, "
            f"{len(task_history.effective_messages())} visible",
            border_style="green",
        )
    )


if __name__ == "__main__":
    main()

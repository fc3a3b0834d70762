"""
Rich console utilities for dual-mode CLI output.

Human mode (--format text) prints Rich tables, panels and spinners. Agent
mode (--format json) buffers everything into one JSON object written to
stdout by flush_json(). Quiet mode prints bare tab-separated values.

Examples:
    >>> from ai_visibility.utils.console import output_mode, spinner, success
    >>> output_mode.format = "text"
    >>> with spinner("Draining queue..."):
    ...     summary = asyncio.run(pool.run(drain=True))
    >>> success("Queue drained")
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: Suppress non-essential output
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add a key to the JSON object flushed at the end of the command."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """Write the buffered JSON to stdout (agent mode only) and clear it."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()

    def reset(self) -> None:
        """Back to human mode with an empty buffer (used between CLI invocations)."""
        self.format = "text"
        self.quiet = False
        self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()
console_err = Console(stderr=True)


@contextmanager
def spinner(message: str):
    """Show a spinner in human mode; silent otherwise."""
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """Informational line, human mode only."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   AI Visibility Jobs v{version:<16}║
║   Brand presence in AI answer engines ║
╚{"═" * 39}╝[/bold cyan]
"""
    console.print(banner)


def print_counts_table(title: str, counts: dict[str, int]) -> None:
    """
    Print a two-column name/count table.

    Agent mode stores the mapping under a snake_case version of the title.
    Quiet mode prints "name<TAB>count" lines.
    """
    if output_mode.is_agent():
        output_mode.add_json(title.lower().replace(" ", "_"), counts)
        return

    if output_mode.quiet:
        for name, count in counts.items():
            print(f"{name}\t{count}")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Count", justify="right", style="magenta")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


def print_pool_summary(summary: dict[str, int]) -> None:
    """
    Print the worker pool run summary.

    Expected keys: processed, succeeded, duplicates, expanded, requeued, dead.
    Agent mode flushes the buffered JSON.
    """
    if output_mode.is_agent():
        output_mode.add_json("summary", summary)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print("\t".join(str(summary.get(k, 0)) for k in ("processed", "succeeded", "dead")))
        return

    processed = summary.get("processed", 0)
    dead = summary.get("dead", 0)
    completed = summary.get("succeeded", 0) + summary.get("duplicates", 0)

    summary_text = "\n".join(
        f"[bold]{name.capitalize()}:[/bold] {value}" for name, value in summary.items()
    )

    if dead == 0:
        border_style = "green"
        title = "[bold green]✓ Queue Processed[/bold green]"
    elif completed > 0 or processed > dead:
        border_style = "yellow"
        title = "[bold yellow]⚠ Queue Processed with Failures[/bold yellow]"
    else:
        border_style = "red"
        title = "[bold red]✗ All Jobs Failed[/bold red]"

    console.print(Panel(summary_text, title=title, border_style=border_style, box=box.ROUNDED))


def print_mentions_table(mentions: list[dict]) -> None:
    """Mentions persisted for an answer (brand, rank, sentiment, confidence)."""
    if output_mode.is_agent():
        output_mode.add_json("mentions", mentions)
        return

    if output_mode.quiet:
        return

    table = Table(title="Mentions", box=box.ROUNDED)
    table.add_column("Brand", style="cyan")
    table.add_column("Position", justify="right")
    table.add_column("Rank", justify="center")
    table.add_column("Sentiment", justify="center")
    table.add_column("Confidence", justify="right", style="green")

    for mention in mentions:
        sentiment = mention.get("sentiment", "neutral")
        color = {"positive": "green", "negative": "red"}.get(sentiment, "yellow")
        rank = mention.get("list_rank")
        table.add_row(
            mention.get("brand", ""),
            str(mention.get("position", "")),
            str(rank) if rank is not None else "-",
            f"[{color}]{sentiment}[/{color}]",
            f"{mention.get('confidence', 0.0):.2f}",
        )

    console.print(table)

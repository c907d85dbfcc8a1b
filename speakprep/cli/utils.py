"""CLI utilities for SpeakPrep.

This module provides the Rich console, tables and the live level meter used
by the commands.
"""

import os
from contextlib import contextmanager
from typing import List, Sequence

from rich.console import Console, Group
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from speakprep.core.store import Question, UserRecording

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def format_time(seconds: int) -> str:
    """Format seconds as ``m:ss``."""
    minutes, remaining = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{remaining:02d}"


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by list_input_devices().

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def make_questions_table(questions: Sequence[Question]) -> Table:
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Part", justify="right")
    table.add_column("Category", style="dim")
    table.add_column("Question", max_width=70)
    table.add_column("Limit", justify="right", style="dim")

    for q in questions:
        table.add_row(
            str(q.serial_number),
            str(q.part),
            q.category,
            q.question,
            format_time(q.time_limit),
        )
    return table


def make_history_table(recordings: Sequence[UserRecording]) -> Table:
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("Recorded", style="cyan")
    table.add_column("Duration", justify="right")
    table.add_column("URL", overflow="fold")

    for rec in recordings:
        table.add_row(
            rec.created_at.strftime("%Y-%m-%d %H:%M"),
            format_time(rec.duration),
            rec.audio_url,
        )
    return table


def make_question_panel(question: Question, show_answer: bool = False) -> Panel:
    """Render a question, optionally with its sample answer and key vocabulary."""
    body = [Text(question.question, style="bold")]
    if show_answer:
        body.append(Text(""))
        body.append(Text(question.sample_answer, style="dim"))
        if question.key_vocabulary:
            body.append(Text(""))
            body.append(Text("Key vocabulary: " + ", ".join(question.key_vocabulary), style="info"))

    title = f"[bold]Question {question.serial_number}[/bold] · Part {question.part} · {question.category}"
    subtitle = f"[dim]Time limit {format_time(question.time_limit)}[/dim]"
    return Panel(Group(*body), title=title, subtitle=subtitle, border_style="cyan")


def make_level_progress() -> Progress:
    """Create a Rich Progress instance repurposed as a real-time level meter.

    Usage::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=100, clock="0:00 / 1:30")
            while recording:
                progress.update(task, completed=amplitude * 100, clock=...)
                time.sleep(0.1)

    Returns:
        Configured Rich Progress instance (0–100 % scale).
    """
    return Progress(
        TextColumn("🎙 Level"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="green",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.percentage:>3.0f}%[/bold]"),
        TextColumn("{task.fields[clock]}"),
        console=console,
        transient=False,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    # Save original stderr file descriptor
    original_stderr_fd = os.dup(2)
    null_fd = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(null_fd, 2)
        yield
    finally:
        # Restore original stderr
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)
        os.close(null_fd)


__all__ = [
    "console",
    "format_time",
    "suppress_stderr",
    "make_device_table",
    "make_history_table",
    "make_level_progress",
    "make_question_panel",
    "make_questions_table",
]

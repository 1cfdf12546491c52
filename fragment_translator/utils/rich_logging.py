"""Rich logging and console helpers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

if TYPE_CHECKING:
    from fragment_translator.core.translation_queue import QueueMetrics

# stdout carries translated text, so all console chatter goes to stderr.
_CONSOLE = Console(stderr=True)

# HTTP client loggers report every request at INFO, which drowns batch logs.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")


def get_console() -> Console:
    """Return the shared console instance for rich output."""
    return _CONSOLE


def configure_logging(level: int = logging.INFO) -> None:
    """Route logging through RichHandler on the shared console.

    Fragment text is logged verbatim, so markup is off to keep ``[1]``-style
    markers from being read as rich tags.
    """
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        handlers=[
            RichHandler(
                console=get_console(),
                rich_tracebacks=True,
                markup=False,
                show_path=False,
            )
        ],
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def format_run_summary(metrics: QueueMetrics, failures: int) -> Text:
    """Build the end-of-run summary from queue and dispatch counters."""
    dispatch = metrics.dispatch
    rows = [
        ("Fragments", metrics.enqueued),
        ("Cache hits", metrics.cache_hits),
        ("Skipped", metrics.skipped),
        ("Batches sent", dispatch.batches_sent),
        ("Batch retries", dispatch.batch_retries),
        ("Fallbacks", dispatch.fallbacks),
        ("Single calls", dispatch.single_calls),
        ("Count mismatches", dispatch.count_mismatches),
        ("Quality rejections", dispatch.quality_rejections),
    ]

    summary = Text()
    for label, value in rows:
        summary.append(f"{label:<20}", style="dim")
        summary.append(f"{value}\n", style="bold cyan")
    summary.append(f"{'Failures':<20}", style="dim")
    summary.append(str(failures), style="bold red" if failures else "bold green")
    return summary


def print_run_summary(metrics: QueueMetrics, failures: int) -> None:
    border = "red" if failures else "green"
    get_console().print(
        Panel(
            format_run_summary(metrics, failures),
            title="Translation summary",
            border_style=border,
            expand=False,
        )
    )

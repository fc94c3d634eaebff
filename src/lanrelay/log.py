from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

console = Console()

# Client libraries that log every frame or request at INFO/DEBUG.
NOISY_LOGGERS = ("websockets", "httpx", "httpcore")


def setup_logging(level: int | str = logging.INFO) -> None:
    """Route relay and client logs through rich.

    *level* accepts a name such as ``"debug"`` (as read from
    ``LANRELAY_LOG_LEVEL``) or a ``logging`` constant.
    """
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True, show_path=False)
        ],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def make_overall_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def make_file_progress() -> Progress:
    # Tasks count percent (total=100): encoding fills the first half and
    # the wait for the relay's ack is estimated, so there are no bytes to show.
    return Progress(
        SpinnerColumn(),
        TextColumn("{task.description}", style="dim"),
        BarColumn(bar_width=30, complete_style="cyan", finished_style="green"),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    )

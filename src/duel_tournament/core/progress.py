"""Progress display for simulated tournaments."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
)


class TournamentProgress:
    """Progress bar over the rounds of a tournament.

    When disabled, ``track`` hands out a callback that does nothing, so
    callers do not need to branch.
    """

    def __init__(self, console: Console | None = None, enabled: bool = True) -> None:
        """Initialize progress tracker.

        Args:
            console: Optional console instance. If None, creates a new one.
            enabled: Whether to render anything.
        """
        self.console = console or Console()
        self.enabled = enabled

    @contextmanager
    def track(self, total: int, description: str = "Running rounds") -> Iterator[Callable[[str], None]]:
        """Track progress over ``total`` steps.

        Yields:
            Callback advancing the bar by one step with a status label.
        """
        if not self.enabled:
            yield lambda _label: None
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
        ) as progress:
            task = progress.add_task(f"[green]{description}...", total=total)

            def advance(label: str) -> None:
                progress.update(task, advance=1, description=f"[green]{description}: {label}")

            yield advance

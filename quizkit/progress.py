"""
Progress reporting for long-running batches (statistics, bulk regrade).

NullProgress is always valid; RichProgress drives a rich progress bar for
the CLI.
"""
from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn


class ProgressReporter(Protocol):
    def start_progress(self, total: int, message: str = "") -> None: ...

    def advance(self, done: int, total: int, message: str = "") -> None: ...

    def end_progress(self) -> None: ...


class NullProgress:
    """Progress reporter that ignores everything."""

    def start_progress(self, total: int, message: str = "") -> None:
        pass

    def advance(self, done: int, total: int, message: str = "") -> None:
        pass

    def end_progress(self) -> None:
        pass


class RecordingProgress:
    """Keeps every update; handy for tests and for summarising a run."""

    def __init__(self) -> None:
        self.started: list[tuple[int, str]] = []
        self.updates: list[tuple[int, int, str]] = []
        self.ended = 0

    def start_progress(self, total: int, message: str = "") -> None:
        self.started.append((total, message))

    def advance(self, done: int, total: int, message: str = "") -> None:
        self.updates.append((done, total, message))

    def end_progress(self) -> None:
        self.ended += 1


class RichProgress:
    """Rich progress bar; one task per start/end pair."""

    def __init__(self, console: Console | None = None):
        self._progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self._task = None

    def start_progress(self, total: int, message: str = "") -> None:
        if self._task is None:
            self._progress.start()
        else:
            self._progress.remove_task(self._task)
        self._task = self._progress.add_task(message or "Working...", total=total)

    def advance(self, done: int, total: int, message: str = "") -> None:
        if self._task is None:
            self.start_progress(total, message)
        self._progress.update(self._task, completed=done, total=total, description=message or None)

    def end_progress(self) -> None:
        if self._task is not None:
            self._progress.stop()
            self._task = None

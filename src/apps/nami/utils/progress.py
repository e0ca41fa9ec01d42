"""Progress bars for long running log passes."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

__all__ = ["ProgressHandle", "progress_tracker"]


@dataclass
class ProgressHandle:
    """Report byte level progress of a log pass to a rich bar."""

    _progress: Progress
    _task_id: TaskID
    _console: Console
    _finished: bool = False
    _failed: bool = False

    def report(self, processed: int, total: int) -> None:
        """Callback form accepted by :func:`libraries.render_log.analyze_log`."""

        self._progress.update(self._task_id, completed=processed, total=total or None)

    def succeed(self, message: str) -> None:
        if not self._finished:
            task = self._progress.tasks[self._task_id]
            self._progress.update(
                self._task_id, completed=task.total if task.total else task.completed
            )
        self._finished = True
        self._console.print(f"[bold green]✔ {message}[/bold green]")

    def fail(self, message: str) -> None:
        self._failed = True
        self._console.print(f"[bold red]✖ {message}[/bold red]")


@contextmanager
def progress_tracker(
    title: str,
    *,
    total: int,
    task_description: str,
    console: Optional[Console] = None,
) -> Iterator[ProgressHandle]:
    """Yield a :class:`ProgressHandle` drawing to stderr unless told otherwise."""

    progress_console = console or Console(stderr=True)
    progress_console.rule(f"[bold cyan]{title}")

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(bar_width=None),
        TaskProgressColumn(),
        DownloadColumn(),
        TimeElapsedColumn(),
        console=progress_console,
        transient=False,
    ) as progress:
        task_id = progress.add_task(task_description, total=total)
        handle = ProgressHandle(progress, task_id, progress_console)
        try:
            yield handle
        except Exception:
            if not handle._failed:
                handle.fail(f"{title} failed.")
            raise
        finally:
            if not handle._finished and not handle._failed:
                handle.succeed(f"{title} completed.")
            progress.stop()

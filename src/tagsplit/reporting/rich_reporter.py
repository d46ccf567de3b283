from __future__ import annotations

import os
from typing import Any, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .base import Reporter, TaskStatus, TaskRecord, get_verbosity


def _transient_from_env() -> bool:
    return os.getenv("TAGSPLIT_PROGRESS_TRANSIENT", "0").lower() in (
        "1",
        "true",
        "yes",
    )


class RichReporter(Reporter):
    """Progress bars and rules on stderr via rich.

    Tasks without a known total render as a rule; tasks with one get a
    progress bar showing the item being processed. With
    ``TAGSPLIT_PROGRESS_TRANSIENT=1`` bars vanish and completion lines are
    printed once the last task ends.
    """

    supports_progress = True

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True, highlight=False, soft_wrap=False)
        self._transient = _transient_from_env()
        self.progress: Progress | None = None
        self._tasks: Dict[str, TaskRecord] = {}
        self._bars: Dict[str, TaskID] = {}
        self._deferred: List[str] = []

    def _ensure_progress(self) -> Progress:
        if self.progress is None:
            self.progress = Progress(
                SpinnerColumn(spinner_name="dots"),
                TextColumn("{task.fields[name]}", justify="left"),
                BarColumn(bar_width=None),
                TextColumn("{task.completed}/{task.total}"),
                TextColumn("[dim]{task.fields[item]}"),
                TimeElapsedColumn(),
                transient=self._transient,
                console=self.console,
                expand=True,
            )
            self.progress.start()
        return self.progress

    def _stop_progress(self) -> None:
        if self.progress is None:
            return
        try:
            self.progress.stop()
        finally:
            self.progress = None
            self._bars.clear()
            if self._deferred:
                self.console.print("\n".join(self._deferred))
                self._deferred.clear()

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, name, total, meta=meta)
        if total is None:
            self.console.rule(name)
            return
        progress = self._ensure_progress()
        self._bars[task_id] = progress.add_task("", total=total, name=name, item="")

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if rec is None:
            return
        rec.completed += step
        rec.meta.update(meta)
        bar = self._bars.get(task_id)
        if bar is not None and self.progress is not None:
            self.progress.update(
                bar, completed=rec.completed, item=meta.get("current_item", "")
            )

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:
        rec = self._tasks.pop(task_id, None)
        if rec is None:
            return
        rec.finish(status, final_meta)
        bar = self._bars.pop(task_id, None)
        if bar is not None and self.progress is not None:
            self.progress.update(bar, completed=rec.total, item="")
        line = escape(rec.completion_line())
        if self._transient and self.progress is not None:
            self._deferred.append(line)
        else:
            self.console.print(line)
        if not self._bars:
            self._stop_progress()

    def status(self, message: str, **fields: Any) -> None:
        self.console.print(f"[green]INFO[/]: {escape(message)}")

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() >= level:
            self.console.print(f"[cyan]VERB{level}[/]: {escape(message)}")

    def error(self, message: str, **fields: Any) -> None:
        self.console.print(f"[bold red]ERROR[/]: {escape(message)}")

    def warning(self, message: str, **fields: Any) -> None:
        self.console.print(f"[yellow]WARN[/]: {escape(message)}")

    def section(self, title: str) -> None:
        self.console.rule(title)

    def flush(self) -> None:
        self._stop_progress()

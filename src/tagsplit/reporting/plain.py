from __future__ import annotations

import sys
from typing import Any, Dict, TextIO
from .base import Reporter, TaskStatus, TaskRecord, get_verbosity


class PlainReporter(Reporter):
    """Deterministic line-oriented reporter with optional ANSI color."""

    supports_progress = False

    def __init__(self, stream: TextIO | None = None, use_color: bool | None = None):
        self.stream = stream or sys.stderr
        if use_color is None:
            use_color = getattr(self.stream, "isatty", lambda: False)()
        self.use_color = use_color
        self._tasks: Dict[str, TaskRecord] = {}

    def _line(self, label: str, color: str, message: str) -> None:
        if self.use_color:
            label = f"\x1b[{color}m{label}\x1b[0m"
        self.stream.write(f"{label}: {message}\n")

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, name, total, meta=meta)

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if rec is None:
            return
        rec.completed += step
        rec.meta.update(meta)
        if get_verbosity() < 1:
            return
        item = meta.get("current_item") or f"#{rec.completed}"
        total = rec.total if rec.total is not None else "?"
        self.stream.write(f"   · {rec.name}: {item} ({rec.completed}/{total})\n")

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
        self.stream.write(f" {rec.completion_line()}\n")

    def status(self, message: str, **fields: Any) -> None:
        self._line("INFO", "32", message)

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() >= level:
            self._line(f"VERB{level}", "36", message)

    def error(self, message: str, **fields: Any) -> None:
        self._line("ERROR", "31", message)

    def warning(self, message: str, **fields: Any) -> None:
        self._line("WARN", "33", message)

    def section(self, title: str) -> None:
        self.stream.write(f"\n[{title}]\n")

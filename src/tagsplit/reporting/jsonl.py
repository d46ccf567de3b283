from __future__ import annotations

import json
import sys
from typing import Any, Dict, TextIO
from .base import Reporter, TaskStatus, TaskRecord, get_verbosity

# "<Kind> summary: k=v k=v" status lines are also emitted as summary events.
_SUMMARY_TYPES = ("split", "merge", "plan", "inspect", "diff", "mutate", "store")


class JsonLinesReporter(Reporter):
    """Machine-readable JSON lines reporter."""

    supports_progress = False

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream or sys.stdout
        self._tasks: Dict[str, TaskRecord] = {}

    def _emit(self, event: str, **payload: Any) -> None:
        self.stream.write(json.dumps({"event": event, **payload}, sort_keys=True) + "\n")

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, name, total, meta=meta)
        self._emit("task_start", id=task_id, name=name, total=total, **meta)

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if rec is None:
            return
        rec.completed += step
        rec.meta.update(meta)
        self._emit("task_progress", id=task_id, completed=rec.completed, **meta)

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
        self._emit(
            "task_end",
            id=task_id,
            status=status.name.lower(),
            completed=rec.completed,
            total=rec.total,
            duration_seconds=rec.duration,
            **rec.meta,
        )

    def _maybe_summary(self, message: str, level: str, **fields: Any) -> None:
        head, sep, tail = message.partition(":")
        words = head.strip().lower().split()
        if not sep or len(words) != 2 or words[1] != "summary":
            return
        if words[0] not in _SUMMARY_TYPES:
            return
        pairs = dict(tok.split("=", 1) for tok in tail.split() if "=" in tok)
        self._emit(
            "summary",
            summary_type=words[0],
            level=level,
            raw=message,
            **pairs,
            **fields,
        )

    def status(self, message: str, **fields: Any) -> None:
        self._maybe_summary(message, "info", **fields)
        self._emit("status", message=message, level="info", **fields)

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() < level:
            return
        self._emit(
            "status", message=message, level=f"verbose{level}", vlevel=level, **fields
        )

    def error(self, message: str, **fields: Any) -> None:
        self._emit("status", message=message, level="error", **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit("status", message=message, level="warning", **fields)

    def section(self, title: str) -> None:
        self._emit("section", title=title)

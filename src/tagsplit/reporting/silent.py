"""Reporter behind ``--reporter silent``.

Split, merge and edit runs print nothing. Errors and warnings are still
counted so a caller can tell a quiet run from a clean one.
"""

from __future__ import annotations

from typing import Any

from .base import Reporter, TaskStatus


class SilentReporter(Reporter):
    def __init__(self) -> None:
        self.errors = 0
        self.warnings = 0

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        return None

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        return None

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:
        return None

    def status(self, message: str, **fields: Any) -> None:
        return None

    def error(self, message: str, **fields: Any) -> None:
        self.errors += 1

    def warning(self, message: str, **fields: Any) -> None:
        self.warnings += 1

    def section(self, title: str) -> None:
        return None

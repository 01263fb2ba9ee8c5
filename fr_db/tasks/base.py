from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generator


@dataclass
class TaskContext:
    """State shared by all tasks of one job run."""

    eligible_users: list[str]
    sync_mode: bool = False
    # Values tasks report back to whoever runs them (counts, flags).
    property_bag: dict[str, Any] = field(default_factory=dict)

    def is_running_in_sync_mode(self) -> bool:
        return self.sync_mode


class BackgroundTask:
    """Base class for cooperative maintenance tasks.

    Subclasses implement `execute(context)` as a generator. Each bare `yield`
    is a suspension point; the generator's return value tells the runner whether
    the job should continue with the next task.
    """

    def __init__(self) -> None:
        self.context: TaskContext | None = None
        self.logger = logging.getLogger(f"fr_db.tasks.{type(self).__name__}")

    def description(self) -> str:
        raise NotImplementedError

    def execute(self, context: TaskContext) -> Generator[None, None, bool]:
        raise NotImplementedError

    def set_context(self, context: TaskContext) -> None:
        self.context = context

    def log_debug(self, message: str, *args: Any) -> None:
        self.logger.debug(message, *args)

    def log_info(self, message: str, *args: Any) -> None:
        self.logger.info(message, *args)

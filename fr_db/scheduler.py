"""
Background job runner for fr_db maintenance tasks.

Drives task generators one after another on the calling thread and stops at
the first suspension point past the time budget.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .settings import Settings
from .tasks.base import BackgroundTask, TaskContext

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    completed_tasks: list[str] = field(default_factory=list)
    timed_out: bool = False
    property_bag: dict[str, Any] = field(default_factory=dict)


class BackgroundJob:
    def __init__(
        self,
        settings: Settings,
        tasks: Sequence[BackgroundTask],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.tasks = list(tasks)
        self.clock = clock

    def _over_budget(self, started: float, timeout: int) -> bool:
        return timeout > 0 and (self.clock() - started) >= timeout

    def run(self, context: TaskContext, *, timeout: int | None = None) -> JobResult:
        """Run every task in order until done or out of time.

        A task that runs out of time is closed at its current suspension point;
        whatever it persisted before that point stays.
        """

        budget = self.settings.FR_JOB_TIMEOUT_SEC if timeout is None else int(timeout)
        started = self.clock()
        result = JobResult(property_bag=context.property_bag)

        for task in self.tasks:
            name = type(task).__name__
            logger.info("Starting task %s: %s", name, task.description())
            gen = task.execute(context)
            try:
                while True:
                    next(gen)
                    if self._over_budget(started, budget):
                        logger.info("Time budget of %ds exhausted during %s, stopping", budget, name)
                        gen.close()
                        result.timed_out = True
                        return result
            except StopIteration as stop:
                keep_going = stop.value is not False
            except Exception:
                logger.exception("Task %s failed", name)
                raise

            result.completed_tasks.append(name)
            logger.info("Finished task %s", name)
            if not keep_going:
                logger.info("Task %s asked to stop the job", name)
                break

        return result

    def run_forever(
        self,
        context_factory: Callable[[], TaskContext],
        poll_interval: int | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        max_runs: int | None = None,
    ) -> int:
        """Run the job every `poll_interval` seconds on this thread.

        A failed run is logged and retried on the next tick; saved checkpoints
        make the retry pick up where the failure happened. Returns the number
        of runs made, which only happens when `max_runs` is set.
        """

        interval = self.settings.FR_WORKER_POLL_SEC if poll_interval is None else int(poll_interval)
        logger.info("Starting fr_db background worker (interval=%ds)...", interval)
        runs = 0
        while max_runs is None or runs < max_runs:
            try:
                self.run(context_factory())
            except Exception as e:
                logger.error("Worker run failed: %s", e)
            runs += 1
            if max_runs is not None and runs >= max_runs:
                break
            sleep(interval)
        return runs

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Task:
    name: str
    gen: Iterator[None]


class CooperativeScheduler:
    """
    Single-threaded driver for generator tasks.

    Each `step()` advances every task that was pending when the step began by
    one cycle. Tasks spawned during a step first run on the next step. A task
    that raises is logged and dropped; it never takes the scheduler down.
    """

    def __init__(self) -> None:
        self._tasks: List[_Task] = []
        self.cycle = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, gen: Iterator[None], name: Optional[str] = None) -> None:
        self._tasks.append(_Task(name=name or f"task-{self.cycle}-{len(self._tasks)}", gen=gen))

    def step(self) -> int:
        """Advance all current tasks once. Returns the number still pending."""
        self.cycle += 1
        current, self._tasks = self._tasks, []
        alive: List[_Task] = []
        for task in current:
            try:
                next(task.gen)
            except StopIteration:
                continue
            except Exception:
                logger.exception("Task %s failed", task.name)
                continue
            alive.append(task)
        # Keep tasks spawned while stepping, after the survivors.
        self._tasks = alive + self._tasks
        return len(self._tasks)

    def run_until_idle(self, max_steps: int = 1000) -> int:
        """Step until no tasks remain or `max_steps` is reached. Returns steps taken."""
        steps = 0
        while self._tasks and steps < max_steps:
            self.step()
            steps += 1
        return steps

"""Cooperative timed tasks driven by an injected clock.

A task body is a generator that yields the number of seconds it wants to
sleep. The host calls ``update()`` once per frame; every task whose wake time
has passed is resumed until it suspends again or returns. Cancelling a task
closes its generator at the suspension point, so the body never runs another
step after ``cancel()`` returns.

Example::

    def blink(state):
        state.on = True
        yield 0.2
        state.on = False

    scheduler.spawn(blink(state), name="blink")
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass, field

from .clock import Clock

logger = logging.getLogger(__name__)

TaskBody = Generator[float, None, None]


@dataclass(slots=True)
class ScheduledTask:
    name: str
    body: TaskBody
    wake_at_s: float
    done: bool = False
    cancelled: bool = False
    steps: int = field(default=0)

    @property
    def active(self) -> bool:
        return not (self.done or self.cancelled)


class CooperativeScheduler:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._tasks: list[ScheduledTask] = []
        self._executing: list[ScheduledTask] = []

    def spawn(self, body: TaskBody, *, name: str = "task") -> ScheduledTask:
        """Start ``body`` now and run it up to its first suspension."""

        now = self._clock.now()
        task = ScheduledTask(name=name, body=body, wake_at_s=now)
        self._tasks.append(task)
        self._step(task, now=now)
        return task

    def cancel(self, task: ScheduledTask | None) -> None:
        if task is None or not task.active:
            return
        task.cancelled = True
        if task in self._executing:
            # A generator cannot close itself; _step closes it once it yields.
            return
        task.body.close()
        self._prune()

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            self.cancel(task)
        self._tasks.clear()

    def active_tasks(self) -> list[ScheduledTask]:
        return [t for t in self._tasks if t.active]

    def update(self) -> None:
        now = self._clock.now()
        # Tasks spawned while resuming others wait for the next update().
        for task in list(self._tasks):
            while task.active and task.wake_at_s <= now:
                self._step(task, now=now)
        self._prune()

    def _step(self, task: ScheduledTask, *, now: float) -> None:
        self._executing.append(task)
        try:
            delay = next(task.body)
        except StopIteration:
            task.done = True
            return
        except Exception:
            logger.exception("scheduled task %r failed; dropping it", task.name)
            task.done = True
            return
        finally:
            self._executing.remove(task)
        if task.cancelled:
            task.body.close()
            return
        task.steps += 1
        # Accumulate from the previous wake time so periodic tasks do not drift.
        base = task.wake_at_s if task.steps > 1 else now
        task.wake_at_s = base + max(0.0, float(delay))

    def _prune(self) -> None:
        self._tasks = [t for t in self._tasks if t.active]

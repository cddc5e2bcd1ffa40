# prompt_collector/scheduler.py
"""
Minimal in-process scheduler.

Triggers map to task ids and task ids map to callables, so task bodies know
nothing about wall-clock timing and can be invoked directly with `run_task`.
Every task is called with the scheduler's stop event so long-running work
can bail out between steps when the process shuts down.
"""

import datetime
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from prompt_collector import monitoring

Task = Callable[[threading.Event], Any]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class CronTrigger:
    """Fires at hour:minute (UTC) every day, or only on `weekday` (Monday=0 .. Sunday=6)."""
    hour: int
    minute: int = 0
    weekday: Optional[int] = None

    def __post_init__(self):
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError(f"invalid time {self.hour}:{self.minute}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"invalid weekday {self.weekday}")

    def next_after(self, now: datetime.datetime) -> datetime.datetime:
        candidate = now.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += datetime.timedelta(days=1)
        if self.weekday is not None:
            candidate += datetime.timedelta(days=(self.weekday - candidate.weekday()) % 7)
        return candidate


class Scheduler:
    def __init__(self, clock: Callable[[], datetime.datetime] = _utcnow, max_sleep: float = 60.0):
        self._clock = clock
        self._max_sleep = max_sleep
        self._tasks: Dict[str, Task] = {}
        self._triggers: List[Tuple[CronTrigger, str]] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, task_id: str, fn: Task) -> None:
        self._tasks[task_id] = fn

    def add_trigger(self, trigger: CronTrigger, task_id: str) -> None:
        if task_id not in self._tasks:
            raise ValueError(f"unknown task {task_id!r}")
        self._triggers.append((trigger, task_id))

    @property
    def task_ids(self) -> List[str]:
        return list(self._tasks)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_task(self, task_id: str) -> Any:
        """Run a task now, in the caller's thread. Errors propagate."""
        if task_id not in self._tasks:
            raise ValueError(f"unknown task {task_id!r}")
        monitoring.logger.info("Running task", extra={"task": task_id})
        try:
            result = self._tasks[task_id](self._stop)
        except Exception:
            monitoring.inc_task_run(task_id, "error")
            raise
        monitoring.inc_task_run(task_id, "success")
        return result

    def next_runs(self, now: Optional[datetime.datetime] = None) -> List[Tuple[datetime.datetime, str]]:
        now = now or self._clock()
        return sorted((trig.next_after(now), task_id) for trig, task_id in self._triggers)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="prompt-collector-scheduler", daemon=True)
        self._thread.start()
        monitoring.logger.info("Scheduler started", extra={"triggers": len(self._triggers)})

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        monitoring.logger.info("Scheduler stopped")

    def _loop(self) -> None:
        now = self._clock()
        due = [trig.next_after(now) for trig, _ in self._triggers]
        while not self._stop.is_set():
            now = self._clock()
            for i, (trig, task_id) in enumerate(self._triggers):
                if due[i] > now or self._stop.is_set():
                    continue
                try:
                    self.run_task(task_id)
                except Exception:
                    monitoring.logger.exception("Scheduled task failed", extra={"task": task_id})
                due[i] = trig.next_after(self._clock())

            if not due:
                wait = self._max_sleep
            else:
                wait = (min(due) - self._clock()).total_seconds()
                wait = max(0.0, min(wait, self._max_sleep))
            self._stop.wait(wait)

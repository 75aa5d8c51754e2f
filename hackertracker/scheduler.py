"""
Independent periodic loops, one thread per job.

Each loop runs a tick, then waits its own interval before the next one, so
a slow or failing job only ever delays itself.
"""

import threading
from dataclasses import dataclass
from typing import List, Optional, Protocol

from .logger import get_logger
from .pipeline import TickResult

logger = get_logger()


class Job(Protocol):
    name: str

    def run_tick(self) -> TickResult: ...


@dataclass
class ScheduledJob:
    job: Job
    interval: float
    thread: Optional[threading.Thread] = None
    ticks: int = 0


class Scheduler:
    def __init__(self):
        self._jobs: List[ScheduledJob] = []
        self._stop = threading.Event()

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs)

    def add(self, job: Job, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if any(s.thread is not None for s in self._jobs):
            raise RuntimeError("Cannot add jobs after the scheduler started")
        self._jobs.append(ScheduledJob(job=job, interval=interval))

    def start(self) -> None:
        if not self._jobs:
            raise RuntimeError("No jobs scheduled")
        for scheduled in self._jobs:
            scheduled.thread = threading.Thread(
                target=self._loop,
                args=(scheduled,),
                name=f"poll-{scheduled.job.name}",
                daemon=True,
            )
            scheduled.thread.start()
            logger.info(f"{scheduled.job.name}: started poll loop", interval=scheduled.interval)

    def _loop(self, scheduled: ScheduledJob) -> None:
        job = scheduled.job
        while not self._stop.is_set():
            try:
                job.run_tick()
            except Exception as e:
                # Keep the loop alive; the next tick retries.
                logger.error(f"{job.name}: unexpected tick error", error_type=type(e).__name__, error=str(e))
            scheduled.ticks += 1
            if self._stop.wait(scheduled.interval):
                break

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        for scheduled in self._jobs:
            if scheduled.thread is not None:
                scheduled.thread.join(timeout)

    def run_forever(self) -> None:
        """Start every loop and block until stop() or Ctrl-C."""
        self.start()
        try:
            while not self._stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping poll loops")
            self.stop()
        self.join(timeout=5.0)

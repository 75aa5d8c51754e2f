"""
Tests for scheduler.py - independent periodic loops.
"""

import threading
import time

import pytest

from hackertracker.pipeline import TickResult
from hackertracker.scheduler import Scheduler


class CountingJob:
    def __init__(self, name, fail_with=None, block=None):
        self.name = name
        self.fail_with = fail_with
        self.block = block
        self.ticks = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def run_tick(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.ticks += 1
            if self.block is not None:
                self.block.wait(5)
            if self.fail_with is not None:
                raise self.fail_with
            return TickResult(resource=self.name, ok=True)
        finally:
            with self._lock:
                self.active -= 1


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestScheduler:
    """Test loop independence and lifecycle."""

    def test_runs_jobs_repeatedly(self):
        job = CountingJob("reputation")
        scheduler = Scheduler()
        scheduler.add(job, interval=0.01)

        scheduler.start()
        assert wait_for(lambda: job.ticks >= 3)
        scheduler.stop()
        scheduler.join(timeout=2)

        assert scheduler.stopped
        assert scheduler.jobs[0].ticks >= 3

    def test_blocked_job_does_not_delay_others(self):
        """A hung reputation tick must not stop reports ticks."""
        release = threading.Event()
        slow = CountingJob("reputation", block=release)
        fast = CountingJob("reports")
        scheduler = Scheduler()
        scheduler.add(slow, interval=0.01)
        scheduler.add(fast, interval=0.01)

        scheduler.start()
        try:
            assert wait_for(lambda: fast.ticks >= 5)
            assert slow.ticks == 1
        finally:
            release.set()
            scheduler.stop()
            scheduler.join(timeout=2)

    def test_ticks_of_one_job_never_overlap(self):
        job = CountingJob("reputation")
        scheduler = Scheduler()
        scheduler.add(job, interval=0.001)

        scheduler.start()
        assert wait_for(lambda: job.ticks >= 20)
        scheduler.stop()
        scheduler.join(timeout=2)

        assert job.max_active == 1

    def test_unexpected_exception_keeps_loop_alive(self):
        job = CountingJob("reports", fail_with=RuntimeError("boom"))
        scheduler = Scheduler()
        scheduler.add(job, interval=0.01)

        scheduler.start()
        assert wait_for(lambda: job.ticks >= 3)
        scheduler.stop()
        scheduler.join(timeout=2)

    def test_threads_named_after_jobs(self):
        scheduler = Scheduler()
        scheduler.add(CountingJob("reputation"), interval=10)
        scheduler.start()
        try:
            assert scheduler.jobs[0].thread.name == "poll-reputation"
        finally:
            scheduler.stop()
            scheduler.join(timeout=2)

    def test_rejects_bad_interval(self):
        with pytest.raises(ValueError):
            Scheduler().add(CountingJob("reputation"), interval=0)

    def test_start_without_jobs(self):
        with pytest.raises(RuntimeError):
            Scheduler().start()

    def test_cannot_add_after_start(self):
        scheduler = Scheduler()
        scheduler.add(CountingJob("reputation"), interval=10)
        scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.add(CountingJob("reports"), interval=10)
        finally:
            scheduler.stop()
            scheduler.join(timeout=2)

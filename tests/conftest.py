"""
Pytest configuration and shared fixtures.
"""

import itertools
from typing import List, Optional

import pytest

from hackertracker.broker import LocalBroker
from hackertracker.models import Participant, Report, UserThanks
from hackertracker.publisher import Publisher
from hackertracker.storage import SqlStore


def make_participant(
    user_id: str,
    reputation: int,
    rank: int = 1,
    team_handle: Optional[str] = "acme",
    user_name: Optional[str] = None,
) -> Participant:
    return Participant(
        reputation=reputation,
        rank=rank,
        user_name=user_name or f"hacker{user_id}",
        user_profile_image_url=f"https://profile-photos.example/{user_id}.png",
        user_id=user_id,
        team_handle=team_handle,
    )


def make_report(report_id: str, disclosed: bool = True, **overrides) -> Report:
    data = dict(
        id=report_id,
        title=f"XSS in widget {report_id}",
        url=f"https://hackerone.com/reports/{report_id}",
        user_name="alice",
        user_id="42",
        currency="USD",
        awarded_amount=500.0,
        summary="Stored XSS via the widget title.",
        severity="high",
        collaboration=False,
        disclosed=disclosed,
        team_handle="acme",
    )
    data.update(overrides)
    return Report(**data)


def make_thanks(
    user_id: str,
    invalid: int,
    resolved: int = 3,
    team_handle: Optional[str] = "acme",
    user_name: Optional[str] = None,
) -> UserThanks:
    return UserThanks(
        user_id=user_id,
        user_name=user_name or f"hacker{user_id}",
        resolved_report_count=resolved,
        invalid_report_count=invalid,
        total_report_count=resolved + invalid,
        reputation=resolved * 7,
        team_handle=team_handle,
    )


class FakeFetcher:
    """Returns queued snapshots (or raises queued exceptions) one tick at a time."""

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)
        self.calls: List[Optional[str]] = []

    def fetch_all(self, scope: Optional[str] = None):
        self.calls.append(scope)
        result = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(result, Exception):
            raise result
        return list(result)


class RecordingNotifier:
    def __init__(self, fail_with: Optional[Exception] = None):
        self.batches = []
        self.fail_with = fail_with

    def verify(self) -> None:
        pass

    def deliver(self, embeds) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.batches.append(list(embeds))


@pytest.fixture
def sql_store(tmp_path):
    """SQLite-backed store in a temporary directory."""
    store = SqlStore(tmp_path / "tracker.db")
    yield store
    store.close()


@pytest.fixture
def local_broker():
    broker = LocalBroker(poll_interval=0.05)
    yield broker
    broker.close()


@pytest.fixture
def clock():
    """Millisecond clock advancing by one second per call."""
    ticks = itertools.count(1_700_000_000_000, 1000)
    return lambda: next(ticks)


@pytest.fixture
def publisher(local_broker, sql_store, clock):
    ids = (f"item-{n}" for n in itertools.count(1))
    return Publisher(local_broker, sql_store, clock=clock, id_factory=lambda: next(ids))

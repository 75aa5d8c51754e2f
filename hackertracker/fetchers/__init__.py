"""Upstream fetchers: each returns the complete entity list for a tick."""

from .common import Page, paginate
from .hackerone import HackerOneClient, LeaderboardFetcher, ProgramsFetcher, ReportsFetcher, ThanksFetcher

__all__ = [
    "HackerOneClient",
    "LeaderboardFetcher",
    "Page",
    "ProgramsFetcher",
    "ReportsFetcher",
    "ThanksFetcher",
    "paginate",
]

"""Poll HackerOne leaderboards and disclosed reports, diff, and notify."""

__version__ = "0.3.0"

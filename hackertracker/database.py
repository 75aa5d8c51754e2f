"""
Database schema and connection management.

Uses SQLAlchemy (SQLite by default) for snapshots, run markers and the
replay backlog.
"""

from pathlib import Path
from typing import Union

from sqlalchemy import BigInteger, Column, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SnapshotMember(Base):
    """One serialized entity of the last observed snapshot."""

    __tablename__ = "snapshot_members"
    __table_args__ = (UniqueConstraint("snapshot_key", "payload", name="uq_snapshot_member"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    snapshot_key = Column(String, nullable=False, index=True)  # e.g. reputation_poll_last_data
    payload = Column(Text, nullable=False)


class RunMarker(Base):
    """Last successful run time per resource type."""

    __tablename__ = "run_markers"

    marker_key = Column(String, primary_key=True)  # e.g. reputation_poll_last_run_time
    last_run_ms = Column(BigInteger, nullable=False)


class BacklogEntry(Base):
    """A published queue item kept for replay, scored by creation time."""

    __tablename__ = "backlog_entries"
    __table_args__ = (UniqueConstraint("backlog_key", "payload", name="uq_backlog_member"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    backlog_key = Column(String, nullable=False, index=True)  # e.g. reputation_queue
    created_at = Column(BigInteger, nullable=False, index=True)  # milliseconds
    payload = Column(Text, nullable=False)


def database_url(target: Union[str, Path]) -> str:
    """Accept either a SQLAlchemy URL or a filesystem path to a SQLite file."""
    if isinstance(target, Path) or "://" not in str(target):
        return f"sqlite:///{target}"
    return str(target)


def create_db_engine(target: Union[str, Path], timeout: float = 15.0) -> Engine:
    """
    Create an engine, preparing the parent directory for SQLite files.

    Args:
        target: SQLAlchemy URL or path to SQLite database file
        timeout: Seconds SQLite waits on a locked database
    """
    url = database_url(target)
    connect_args = {}
    if url.startswith("sqlite"):
        # Poller threads share the engine's pool.
        connect_args = {"check_same_thread": False, "timeout": timeout}
        path = url.split(":///", 1)[-1]
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, connect_args=connect_args)


def init_database(target: Union[str, Path], timeout: float = 15.0) -> Engine:
    """
    Initialize database and create tables.

    Args:
        target: SQLAlchemy URL or path to SQLite database file

    Returns:
        The engine bound to the database
    """
    engine = create_db_engine(target, timeout=timeout)
    Base.metadata.create_all(engine)
    return engine

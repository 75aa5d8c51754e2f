"""
Snapshot, run-marker and backlog persistence.

A store holds three kinds of data, each addressed by a plain string key:

- sets of serialized entities (the last observed snapshot), fully replaced
  on every write;
- scalar run markers holding a millisecond timestamp;
- sorted backlogs of serialized queue items scored by creation time.

Values are opaque strings; (de)serialization belongs to the caller.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import BacklogEntry, RunMarker, SnapshotMember, init_database
from .errors import PersistenceError


def _unique(members: Iterable[str]) -> List[str]:
    """Deduplicate while preserving order."""
    return list(dict.fromkeys(members))


class SnapshotStore:
    """Interface shared by the SQL and Redis stores."""

    def load_members(self, key: str) -> List[str]:
        raise NotImplementedError

    def replace_members(self, key: str, members: Iterable[str]) -> None:
        raise NotImplementedError

    def get_marker(self, key: str) -> Optional[int]:
        raise NotImplementedError

    def set_marker(self, key: str, value_ms: int) -> None:
        raise NotImplementedError

    def append_backlog(self, key: str, member: str, score: int) -> None:
        raise NotImplementedError

    def read_backlog(self, key: str, limit: int) -> List[str]:
        """Return up to ``limit`` members, lowest score first."""
        raise NotImplementedError

    def remove_backlog(self, key: str, member: str) -> bool:
        raise NotImplementedError

    def clear_backlog(self, key: str) -> int:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SqlStore(SnapshotStore):
    """SQLAlchemy-backed store (SQLite file by default)."""

    def __init__(self, target: Union[str, Path], timeout: float = 15.0):
        try:
            self.engine = init_database(target, timeout=timeout)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not open database {target}: {e}") from e
        self._Session = sessionmaker(bind=self.engine)

    @contextmanager
    def _session(self, operation: str) -> Iterator:
        session = self._Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"{operation} failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_members(self, key: str) -> List[str]:
        with self._session("load snapshot") as session:
            rows = (
                session.query(SnapshotMember.payload)
                .filter_by(snapshot_key=key)
                .order_by(SnapshotMember.id)
                .all()
            )
            return [payload for (payload,) in rows]

    def replace_members(self, key: str, members: Iterable[str]) -> None:
        members = _unique(members)
        # Delete and insert commit together, so readers never see a partial snapshot.
        with self._session("replace snapshot") as session:
            session.query(SnapshotMember).filter_by(snapshot_key=key).delete()
            session.add_all(SnapshotMember(snapshot_key=key, payload=m) for m in members)

    def get_marker(self, key: str) -> Optional[int]:
        with self._session("read run marker") as session:
            marker = session.get(RunMarker, key)
            return None if marker is None else int(marker.last_run_ms)

    def set_marker(self, key: str, value_ms: int) -> None:
        with self._session("write run marker") as session:
            session.merge(RunMarker(marker_key=key, last_run_ms=int(value_ms)))

    def append_backlog(self, key: str, member: str, score: int) -> None:
        with self._session("append backlog") as session:
            existing = (
                session.query(BacklogEntry)
                .filter_by(backlog_key=key, payload=member)
                .one_or_none()
            )
            if existing is not None:
                existing.created_at = int(score)
            else:
                session.add(BacklogEntry(backlog_key=key, payload=member, created_at=int(score)))

    def read_backlog(self, key: str, limit: int) -> List[str]:
        with self._session("read backlog") as session:
            rows = (
                session.query(BacklogEntry.payload)
                .filter_by(backlog_key=key)
                .order_by(BacklogEntry.created_at, BacklogEntry.id)
                .limit(limit)
                .all()
            )
            return [payload for (payload,) in rows]

    def remove_backlog(self, key: str, member: str) -> bool:
        with self._session("remove backlog entry") as session:
            deleted = (
                session.query(BacklogEntry)
                .filter_by(backlog_key=key, payload=member)
                .delete()
            )
            return deleted > 0

    def clear_backlog(self, key: str) -> int:
        with self._session("clear backlog") as session:
            return session.query(BacklogEntry).filter_by(backlog_key=key).delete()

    def close(self) -> None:
        self.engine.dispose()


class RedisStore(SnapshotStore):
    """Redis-backed store: SET per snapshot, string per marker, ZSET per backlog."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[redis.Redis] = None,
    ):
        if client is None:
            if url is None:
                raise ValueError("RedisStore needs a url or a client")
            client = redis.Redis.from_url(
                url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )
        self.client = client

    @contextmanager
    def _call(self, operation: str) -> Iterator:
        try:
            yield
        except redis.RedisError as e:
            raise PersistenceError(f"{operation} failed: {e}") from e

    def load_members(self, key: str) -> List[str]:
        with self._call("load snapshot"):
            return [_text(m) for m in self.client.smembers(key)]

    def replace_members(self, key: str, members: Iterable[str]) -> None:
        members = _unique(members)
        with self._call("replace snapshot"):
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(key)
            if members:
                pipe.sadd(key, *members)
            pipe.execute()

    def get_marker(self, key: str) -> Optional[int]:
        with self._call("read run marker"):
            value = self.client.get(key)
        if value is None:
            return None
        try:
            return int(_text(value))
        except ValueError as e:
            raise PersistenceError(f"Run marker {key} is not an integer: {value!r}") from e

    def set_marker(self, key: str, value_ms: int) -> None:
        with self._call("write run marker"):
            self.client.set(key, int(value_ms))

    def append_backlog(self, key: str, member: str, score: int) -> None:
        with self._call("append backlog"):
            self.client.zadd(key, {member: int(score)})

    def read_backlog(self, key: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        with self._call("read backlog"):
            return [_text(m) for m in self.client.zrange(key, 0, limit - 1)]

    def remove_backlog(self, key: str, member: str) -> bool:
        with self._call("remove backlog entry"):
            return bool(self.client.zrem(key, member))

    def clear_backlog(self, key: str) -> int:
        with self._call("clear backlog"):
            pipe = self.client.pipeline(transaction=True)
            pipe.zcard(key)
            pipe.delete(key)
            count, _ = pipe.execute()
            return int(count)

    def close(self) -> None:
        self.client.close()


def _text(value: Union[str, bytes]) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value

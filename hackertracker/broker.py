"""
Pub/sub transport for queue items.

Publication is fire-and-forget: a message published while nobody listens is
lost from the live channel and only survives in the backlog.
"""

import queue
import threading
from typing import Dict, Iterator, List, Optional

import redis

from .errors import PublishError
from .logger import get_logger

logger = get_logger()

_CLOSED = object()


class Broker:
    """Interface shared by the Redis and in-process brokers."""

    def publish(self, channel: str, payload: str) -> int:
        """Publish ``payload`` and return the number of live receivers."""
        raise NotImplementedError

    def subscribe(self, channel: str) -> Iterator[str]:
        """Yield payloads published on ``channel`` until the broker closes."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class LocalBroker(Broker):
    """In-process broker: every subscriber gets its own queue."""

    def __init__(self, poll_interval: float = 0.5):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue]] = {}
        self._closed = threading.Event()
        self.poll_interval = poll_interval

    def publish(self, channel: str, payload: str) -> int:
        if self._closed.is_set():
            raise PublishError("Broker is closed")
        with self._lock:
            receivers = list(self._subscribers.get(channel, ()))
        for q in receivers:
            q.put(payload)
        return len(receivers)

    def subscribe(self, channel: str) -> Iterator[str]:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(channel, []).append(q)
        return self._listen(channel, q)

    def _listen(self, channel: str, q: queue.Queue) -> Iterator[str]:
        try:
            while True:
                try:
                    payload = q.get(timeout=self.poll_interval)
                except queue.Empty:
                    if self._closed.is_set():
                        return
                    continue
                if payload is _CLOSED:
                    return
                yield payload
        finally:
            with self._lock:
                receivers = self._subscribers.get(channel, [])
                if q in receivers:
                    receivers.remove(q)

    def close(self) -> None:
        self._closed.set()
        with self._lock:
            for receivers in self._subscribers.values():
                for q in receivers:
                    q.put(_CLOSED)


class RedisBroker(Broker):
    """Redis PUBLISH/SUBSCRIBE broker for multi-process deployments."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[redis.Redis] = None,
    ):
        if client is None:
            if url is None:
                raise ValueError("RedisBroker needs a url or a client")
            client = redis.Redis.from_url(
                url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )
        self.client = client
        self._closed = threading.Event()

    def publish(self, channel: str, payload: str) -> int:
        try:
            return int(self.client.publish(channel, payload))
        except redis.RedisError as e:
            raise PublishError(f"Publish on {channel} failed: {e}") from e

    def subscribe(self, channel: str) -> Iterator[str]:
        # Subscribe eagerly so messages published after this call are not missed.
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(channel)
        except redis.RedisError as e:
            pubsub.close()
            raise PublishError(f"Subscribe to {channel} failed: {e}") from e
        logger.debug("Subscribed to channel", channel=channel)
        return self._listen(pubsub)

    def _listen(self, pubsub) -> Iterator[str]:
        try:
            while not self._closed.is_set():
                try:
                    message = pubsub.get_message(timeout=1.0)
                except redis.RedisError as e:
                    if self._closed.is_set():
                        return
                    raise PublishError(f"Lost subscription: {e}") from e
                if message is None or message.get("type") != "message":
                    continue
                data = message["data"]
                yield data.decode("utf-8") if isinstance(data, bytes) else data
        finally:
            pubsub.close()

    def close(self) -> None:
        self._closed.set()
        self.client.close()

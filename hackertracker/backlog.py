"""
Startup replay of queue items published while no notifier was listening.
"""

from typing import Callable

from .logger import get_logger
from .models import QueueItem
from .resources import ResourceType
from .storage import SnapshotStore

logger = get_logger()

MAX_BACKLOG = 1000

Deliver = Callable[[QueueItem, bool], None]


class BacklogDrainer:
    """
    Replays the oldest backlog entries for one resource type, then clears it.

    The whole backlog is cleared after the bounded batch is delivered, so
    entries beyond ``limit`` are dropped. A crash before the clear replays
    the batch again on the next start (at-least-once).
    """

    def __init__(
        self,
        resource: ResourceType,
        store: SnapshotStore,
        deliver: Deliver,
        limit: int = MAX_BACKLOG,
    ):
        self.resource = resource
        self.store = store
        self.deliver = deliver
        self.limit = limit

    def drain(self) -> int:
        """Deliver backlog items oldest first and return how many were replayed.

        A decode or delivery failure propagates and leaves the backlog as is.
        """
        key = self.resource.backlog_key
        raw_items = self.store.read_backlog(key, self.limit)
        if not raw_items:
            logger.debug(f"{self.resource.name}: backlog empty")
            return 0

        logger.info(f"{self.resource.name}: consuming backlog with {len(raw_items)} items")
        items = sorted((QueueItem.from_json(raw) for raw in raw_items), key=lambda i: i.created_at)

        for item in items:
            self.deliver(item, True)

        cleared = self.store.clear_backlog(key)
        if cleared > len(items):
            logger.warning(
                f"{self.resource.name}: backlog held entries that were not replayed, dropped them",
                replayed=len(items),
                dropped=cleared - len(items),
            )
        return len(items)

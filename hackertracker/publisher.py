"""
Turn a non-empty batch of changes into a published, backlogged QueueItem.
"""

import time
import uuid
from typing import Callable, Optional, Sequence

from .broker import Broker
from .logger import get_logger
from .models import Change, QueueItem
from .resources import ResourceType
from .storage import SnapshotStore

logger = get_logger()


def now_ms() -> int:
    return int(time.time() * 1000)


def new_item_id() -> str:
    return uuid.uuid4().hex


class Publisher:
    """
    Publish change batches on the resource's channel and append them to its backlog.

    Both steps must succeed. A broker failure raises PublishError and a
    backlog failure raises PersistenceError; either way the caller must not
    advance its snapshot, so the next tick re-diffs and republishes.
    """

    def __init__(
        self,
        broker: Broker,
        store: SnapshotStore,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = new_item_id,
    ):
        self.broker = broker
        self.store = store
        self.clock = clock
        self.id_factory = id_factory

    def publish(
        self,
        resource: ResourceType,
        changes: Sequence[Change],
        include_scope: bool = False,
        scope: Optional[str] = None,
    ) -> QueueItem:
        if not changes:
            raise ValueError("Refusing to publish an empty change batch")

        item = QueueItem(
            id=self.id_factory(),
            resource=resource.name,
            changes=tuple(changes),
            created_at=self.clock(),
            include_scope=include_scope,
            scope=scope,
        )
        payload = item.to_json()

        receivers = self.broker.publish(resource.channel, payload)
        self.store.append_backlog(resource.backlog_key, payload, item.created_at)

        logger.info(
            f"{resource.name}: published queue item",
            id=item.id,
            changes=len(item.changes),
            receivers=receivers,
        )
        return item

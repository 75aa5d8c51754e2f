"""
Notifier side: replay the backlog, then deliver live queue items.
"""

import threading
from typing import Any, Dict, List, Protocol

from .backlog import MAX_BACKLOG, BacklogDrainer
from .broker import Broker
from .errors import MalformedQueueItemError, TrackerError
from .logger import get_logger
from .models import QueueItem
from .notifiers.render import render_item
from .resources import ResourceType
from .storage import SnapshotStore

logger = get_logger()


class Notifier(Protocol):
    def deliver(self, embeds: List[Dict[str, Any]]) -> None: ...


class DeliveryPath:
    """Renders a queue item's changes in presentation order and hands them to a notifier."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def __call__(self, item: QueueItem, replayed: bool = False) -> int:
        embeds = render_item(item, replayed=replayed)
        if embeds:
            self.notifier.deliver(embeds)
        logger.record_delivery()
        logger.debug(
            f"{item.resource}: delivered queue item",
            id=item.id,
            embeds=len(embeds),
            replayed=replayed,
        )
        return len(embeds)


class Subscriber:
    """
    Consumes one resource type's queue.

    The backlog is drained before the channel is subscribed; ``listening``
    is set once the subscription exists. Each live item's backlog copy is
    removed once it has been delivered.
    """

    def __init__(
        self,
        resource: ResourceType,
        broker: Broker,
        store: SnapshotStore,
        deliver: DeliveryPath,
        max_backlog: int = MAX_BACKLOG,
    ):
        self.resource = resource
        self.broker = broker
        self.store = store
        self.deliver = deliver
        self.max_backlog = max_backlog
        self.listening = threading.Event()

    def handle(self, payload: str) -> bool:
        """Deliver one live payload; returns False when it was unreadable."""
        try:
            item = QueueItem.from_json(payload)
        except MalformedQueueItemError as e:
            logger.error(f"{self.resource.name}: dropping unreadable queue item", error=str(e))
            return False

        self.deliver(item, False)
        self.store.remove_backlog(self.resource.backlog_key, payload)
        return True

    def drain(self) -> int:
        return BacklogDrainer(
            self.resource,
            self.store,
            self.deliver,
            limit=self.max_backlog,
        ).drain()

    def run(self) -> int:
        """Drain the backlog, then deliver live items until the broker closes.

        A failure handling one live item is logged and consumption goes on;
        its backlog copy stays and is replayed on the next start. Drain and
        broker failures propagate.

        Returns the number of live items delivered.
        """
        self.drain()

        messages = self.broker.subscribe(self.resource.channel)
        self.listening.set()
        logger.info(f"{self.resource.name}: listening for queue items", channel=self.resource.channel)
        delivered = 0
        for payload in messages:
            try:
                if self.handle(payload):
                    delivered += 1
            except TrackerError as e:
                logger.error(
                    f"{self.resource.name}: live item not handled",
                    error_type=type(e).__name__,
                    error=str(e),
                )
        return delivered

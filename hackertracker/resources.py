"""Monitored feeds and the store/broker keys each one owns."""

from dataclasses import dataclass
from typing import Dict, Type

from .models import Entity, Participant, Report, UserThanks

PROGRAMS_KEY = "programs"


@dataclass(frozen=True)
class ResourceType:
    name: str
    entity_cls: Type[Entity]
    # Publish one queue item per program instead of one per tick.
    group_by_scope: bool = False

    @property
    def channel(self) -> str:
        return f"{self.name}_poll_queue"

    @property
    def backlog_key(self) -> str:
        return f"{self.name}_queue"

    @property
    def snapshot_key(self) -> str:
        return f"{self.name}_poll_last_data"

    @property
    def marker_key(self) -> str:
        return f"{self.name}_poll_last_run_time"


REPUTATION = ResourceType(name="reputation", entity_cls=Participant)
REPORTS = ResourceType(name="reports", entity_cls=Report)
THANKS = ResourceType(name="thanks", entity_cls=UserThanks, group_by_scope=True)

RESOURCES: Dict[str, ResourceType] = {r.name: r for r in (REPUTATION, REPORTS, THANKS)}


def get_resource(name: str) -> ResourceType:
    try:
        return RESOURCES[name]
    except KeyError:
        raise ValueError(f"Unknown resource type {name!r}. Use one of: {', '.join(RESOURCES)}") from None

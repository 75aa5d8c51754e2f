"""
Entities, changes, and queue items.

An entity is one record of a monitored feed (a leaderboard participant, a
disclosed report, a per-program thanks entry). A change is a tagged variant:
Added, Removed, or Updated. On the wire a change keeps the historical
``[before, after]`` pair layout, with the entity type's sentinel standing in
for the missing side.
"""

import json
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from .errors import MalformedQueueItemError


class Entity:
    """Mixin shared by the entity dataclasses."""

    # Attributes whose difference makes an Updated change.
    TRACKED: ClassVar[Tuple[str, ...]] = ()

    @property
    def identity(self) -> Any:
        raise NotImplementedError

    @property
    def scope(self) -> Optional[str]:
        return getattr(self, "team_handle", None)

    def order_key(self) -> Any:
        """Sort key used when presenting a batch of changes."""
        return 0

    @classmethod
    def sentinel(cls) -> "Entity":
        raise NotImplementedError

    @property
    def is_sentinel(self) -> bool:
        return self == type(self).sentinel()

    def differs_from(self, other: "Entity") -> bool:
        """True when any tracked attribute differs."""
        return any(getattr(self, name) != getattr(other, name) for name in self.TRACKED)

    @classmethod
    def announces(cls, change: "Change") -> bool:
        """True when a change of this entity type is worth publishing."""
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        names = {f.name for f in fields(cls)}
        missing = [f.name for f in fields(cls) if f.name not in data and f.name != "team_handle"]
        if missing:
            raise ValueError(f"missing fields: {', '.join(missing)}")
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_json(cls, payload: str) -> "Entity":
        return cls.from_dict(json.loads(payload))


@dataclass(frozen=True)
class Participant(Entity):
    """A researcher on a program's reputation leaderboard."""

    reputation: int
    rank: int
    user_name: str
    user_profile_image_url: str
    user_id: str
    team_handle: Optional[str] = None

    TRACKED: ClassVar[Tuple[str, ...]] = ("reputation",)

    @property
    def identity(self) -> Tuple[str, Optional[str]]:
        return (self.user_id, self.team_handle)

    def order_key(self) -> Tuple[int, int]:
        # rank -1 means "outside the ranked top"; those go last
        return (1, 0) if self.rank < 0 else (0, self.rank)

    @classmethod
    def sentinel(cls) -> "Participant":
        return cls(
            reputation=-1,
            rank=-1,
            user_name="",
            user_profile_image_url="",
            user_id="",
            team_handle=None,
        )


@dataclass(frozen=True)
class Report(Entity):
    """A publicly disclosed report from the hacktivity feed."""

    id: str
    title: Optional[str]
    url: Optional[str]
    user_name: str
    user_id: str
    currency: str
    awarded_amount: float
    summary: Optional[str]
    severity: Optional[str]
    collaboration: bool
    disclosed: bool
    team_handle: Optional[str] = None

    TRACKED: ClassVar[Tuple[str, ...]] = ("disclosed",)

    @property
    def identity(self) -> str:
        return self.id

    @property
    def bounty_hidden(self) -> bool:
        return self.awarded_amount < 0

    @classmethod
    def sentinel(cls) -> "Report":
        return cls(
            id="",
            title=None,
            url=None,
            user_name="",
            user_id="",
            currency="",
            awarded_amount=-1.0,
            summary=None,
            severity=None,
            collaboration=False,
            disclosed=False,
            team_handle=None,
        )


@dataclass(frozen=True)
class UserThanks(Entity):
    """A researcher's report counts on one program, from their profile's thanks list."""

    user_id: str
    user_name: str
    resolved_report_count: int
    invalid_report_count: int
    total_report_count: int
    reputation: int
    team_handle: Optional[str] = None

    TRACKED: ClassVar[Tuple[str, ...]] = ("invalid_report_count",)

    @property
    def identity(self) -> Tuple[str, Optional[str]]:
        return (self.user_id, self.team_handle)

    def order_key(self) -> str:
        return self.user_name.lower()

    @classmethod
    def sentinel(cls) -> "UserThanks":
        return cls(
            user_id="",
            user_name="",
            resolved_report_count=0,
            invalid_report_count=0,
            total_report_count=0,
            reputation=0,
            team_handle=None,
        )

    @classmethod
    def announces(cls, change: "Change") -> bool:
        # Only reports newly closed as informative are news.
        return (
            isinstance(change, Updated)
            and change.after.invalid_report_count > change.before.invalid_report_count
        )


ENTITY_TYPES: Dict[str, Type[Entity]] = {
    "reputation": Participant,
    "reports": Report,
    "thanks": UserThanks,
}


@dataclass(frozen=True)
class Added:
    after: Entity
    kind: ClassVar[str] = "added"

    @property
    def before(self) -> Entity:
        return type(self.after).sentinel()


@dataclass(frozen=True)
class Removed:
    before: Entity
    kind: ClassVar[str] = "removed"

    @property
    def after(self) -> Entity:
        return type(self.before).sentinel()


@dataclass(frozen=True)
class Updated:
    before: Entity
    after: Entity
    kind: ClassVar[str] = "updated"


Change = Union[Added, Removed, Updated]


def encode_change(change: Change) -> List[Dict[str, Any]]:
    """Encode a change as the ``[before, after]`` wire pair."""
    return [change.before.to_dict(), change.after.to_dict()]


def decode_change(pair: Any, entity_cls: Type[Entity]) -> Change:
    """Decode a ``[before, after]`` wire pair back into a tagged change."""
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        raise ValueError("a change must be a [before, after] pair")
    before = entity_cls.from_dict(pair[0])
    after = entity_cls.from_dict(pair[1])
    if before.is_sentinel and after.is_sentinel:
        raise ValueError("a change cannot have both sides absent")
    if before.is_sentinel:
        return Added(after)
    if after.is_sentinel:
        return Removed(before)
    return Updated(before, after)


@dataclass(frozen=True)
class QueueItem:
    """One published batch of changes for a resource type."""

    id: str
    resource: str
    changes: Tuple[Change, ...]
    created_at: int  # milliseconds since the epoch
    include_scope: bool = False
    scope: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resource": self.resource,
            "changes": [encode_change(c) for c in self.changes],
            "created_at": self.created_at,
            "include_scope": self.include_scope,
            "scope": self.scope,
        }

    def to_json(self) -> str:
        # Deterministic so the backlog member can be matched byte for byte.
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "QueueItem":
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            data = json.loads(payload)
            resource = data["resource"]
            entity_cls = ENTITY_TYPES[resource]
            changes = tuple(decode_change(pair, entity_cls) for pair in data["changes"])
            return cls(
                id=str(data["id"]),
                resource=resource,
                changes=changes,
                created_at=int(data["created_at"]),
                include_scope=bool(data.get("include_scope", False)),
                scope=data.get("scope"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedQueueItemError(f"Invalid queue item payload: {e}") from e

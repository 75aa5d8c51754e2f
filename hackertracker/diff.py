"""Identity-keyed diff between two snapshots of the same resource type."""

from typing import Dict, Hashable, Iterable, List, Sequence

from .errors import DuplicateIdentityError
from .models import Added, Change, Entity, Removed, Updated


def index_by_identity(entities: Iterable[Entity]) -> Dict[Hashable, Entity]:
    """Map identity -> entity, failing fast on a repeated identity."""
    index: Dict[Hashable, Entity] = {}
    for entity in entities:
        key = entity.identity
        if key in index:
            raise DuplicateIdentityError(f"Identity {key!r} appears more than once in snapshot")
        index[key] = entity
    return index


def diff_snapshots(previous: Sequence[Entity], current: Sequence[Entity]) -> List[Change]:
    """
    Compare two snapshots and return the changes between them.

    Entities present only in ``current`` are Added, entities present only in
    ``previous`` are Removed, and entities present in both are Updated when
    at least one tracked attribute differs. Changes come out in ``current``
    order followed by removals in ``previous`` order; use sort_changes() for
    presentation order.

    Raises:
        DuplicateIdentityError: If either snapshot repeats an identity.
    """
    remaining = index_by_identity(previous)
    changes: List[Change] = []
    seen = set()

    for entity in current:
        key = entity.identity
        if key in seen:
            raise DuplicateIdentityError(f"Identity {key!r} appears more than once in snapshot")
        seen.add(key)

        old = remaining.pop(key, None)
        if old is None:
            changes.append(Added(entity))
        elif entity.differs_from(old):
            changes.append(Updated(old, entity))

    for old in remaining.values():
        changes.append(Removed(old))

    return changes


def change_subject(change: Change) -> Entity:
    """The side of a change that exists, preferring ``after``."""
    if isinstance(change, Removed):
        return change.before
    return change.after


def change_order_key(change: Change):
    return change_subject(change).order_key()


def sort_changes(changes: Iterable[Change]) -> List[Change]:
    """Stable presentation order for a batch of changes."""
    return sorted(changes, key=change_order_key)

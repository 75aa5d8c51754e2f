"""
One tick of a resource type's poll-diff-publish-persist pipeline.

Order within a tick: load previous snapshot, fetch, diff, publish, persist
snapshot, persist run time. Any failure ends the tick in ERROR without
touching the stored snapshot, and the next scheduled tick starts over.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from .diff import change_subject, diff_snapshots, index_by_identity
from .errors import EmptySnapshotGuard, MalformedSnapshotError, TrackerError
from .logger import get_logger
from .models import Change, Entity
from .publisher import Publisher, now_ms
from .resources import PROGRAMS_KEY, ResourceType
from .retry import is_transient_error
from .storage import SnapshotStore

logger = get_logger()


class TickState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PUBLISHING = "publishing"
    PERSISTING = "persisting"
    ERROR = "error"


class Fetcher(Protocol):
    def fetch_all(self, scope: Optional[str] = None) -> List: ...


@dataclass
class TickResult:
    resource: str
    ok: bool
    first_run: bool = False
    skipped: bool = False
    changes: int = 0
    item_ids: List[str] = field(default_factory=list)
    error: Optional[TrackerError] = None
    states: List[TickState] = field(default_factory=list)

    @property
    def item_id(self) -> Optional[str]:
        return self.item_ids[0] if self.item_ids else None


class Poller:
    """
    Runs ticks for a single resource type.

    Ticks never overlap: a call made while another tick of the same poller
    is running returns a skipped result immediately.
    """

    def __init__(
        self,
        resource: ResourceType,
        fetcher: Fetcher,
        store: SnapshotStore,
        publisher: Publisher,
        scope: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.resource = resource
        self.fetcher = fetcher
        self.store = store
        self.publisher = publisher
        self.scope = scope
        self.clock = clock
        self.state = TickState.IDLE
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.resource.name

    def load_previous(self) -> List[Entity]:
        """Decode the stored snapshot; any undecodable entry fails the tick."""
        entities = []
        for raw in self.store.load_members(self.resource.snapshot_key):
            try:
                entities.append(self.resource.entity_cls.from_json(raw))
            except (ValueError, TypeError) as e:
                raise MalformedSnapshotError(
                    f"{self.resource.snapshot_key} holds an unreadable entry: {e}"
                ) from e
        return entities

    def persist(self, entities: Sequence[Entity]) -> None:
        self.store.replace_members(self.resource.snapshot_key, [e.to_json() for e in entities])
        self.store.set_marker(self.resource.marker_key, self.clock())

    def _enter(self, result: TickResult, state: TickState) -> None:
        self.state = state
        result.states.append(state)

    def run_tick(self) -> TickResult:
        if not self._lock.acquire(blocking=False):
            logger.warning(f"{self.name}: previous tick still running, skipping")
            return TickResult(resource=self.name, ok=False, skipped=True)

        result = TickResult(resource=self.name, ok=False)
        logger.record_tick_attempt(self.name)
        try:
            self._run(result)
            result.ok = True
            logger.record_tick_success(self.name, result.changes)
        except TrackerError as e:
            self._enter(result, TickState.ERROR)
            result.error = e
            logger.record_tick_failure(self.name, type(e).__name__)
            log = logger.warning if is_transient_error(e) or isinstance(e, EmptySnapshotGuard) else logger.error
            log(f"{self.name}: tick failed", error_type=type(e).__name__, error=str(e))
        finally:
            self._enter(result, TickState.IDLE)
            self._lock.release()
        return result

    def _run(self, result: TickResult) -> None:
        logger.debug(f"{self.name}: running poll")
        last_run = self.store.get_marker(self.resource.marker_key)
        previous = self.load_previous()

        self._enter(result, TickState.FETCHING)
        current = self.fetcher.fetch_all(self.scope)
        index_by_identity(current)

        if last_run is None or not previous:
            # First run: remember what exists now, announce nothing.
            self._enter(result, TickState.PERSISTING)
            self.persist(current)
            result.first_run = True
            logger.info(f"{self.name}: first run, stored {len(current)} entries")
            return

        if not current:
            raise EmptySnapshotGuard(
                f"{self.name}: upstream returned nothing while {len(previous)} entries are stored"
            )

        self._enter(result, TickState.DIFFING)
        changes = [c for c in diff_snapshots(previous, current) if self.resource.entity_cls.announces(c)]
        logger.debug(f"{self.name}: poll event", changed=len(changes))

        if changes:
            self._enter(result, TickState.PUBLISHING)
            for scope, batch in self.batches(changes):
                item = self.publisher.publish(
                    self.resource,
                    batch,
                    include_scope=self.scope is None,
                    scope=scope,
                )
                result.item_ids.append(item.id)
            result.changes = len(changes)

        self._enter(result, TickState.PERSISTING)
        self.persist(current)
        logger.info(f"{self.name}: ran poll, {len(changes)} changes")

    def batches(self, changes: List[Change]) -> List[Tuple[Optional[str], List[Change]]]:
        """Split changes into queue items: one per tick, or one per program."""
        if not self.resource.group_by_scope:
            return [(self.scope, changes)]
        groups: Dict[Optional[str], List[Change]] = {}
        for change in changes:
            groups.setdefault(change_subject(change).scope, []).append(change)
        return sorted(groups.items(), key=lambda group: group[0] or "")


class ProgramsRefresh:
    """Keeps the directory of program handles used in all-programs mode."""

    name = "programs"

    def __init__(self, fetcher: Fetcher, store: SnapshotStore):
        self.fetcher = fetcher
        self.store = store
        self._lock = threading.Lock()

    def run_tick(self) -> TickResult:
        if not self._lock.acquire(blocking=False):
            return TickResult(resource=self.name, ok=False, skipped=True)

        result = TickResult(resource=self.name, ok=False)
        logger.record_tick_attempt(self.name)
        try:
            result.states.append(TickState.FETCHING)
            handles = self.fetcher.fetch_all()
            if not handles and self.store.load_members(PROGRAMS_KEY):
                raise EmptySnapshotGuard("programs: directory came back empty, keeping the stored one")
            result.states.append(TickState.PERSISTING)
            self.store.replace_members(PROGRAMS_KEY, handles)
            result.ok = True
            result.changes = len(handles)
            logger.record_tick_success(self.name)
            logger.info(f"programs: stored {len(handles)} programs")
        except TrackerError as e:
            result.states.append(TickState.ERROR)
            result.error = e
            logger.record_tick_failure(self.name, type(e).__name__)
            logger.error("programs: refresh failed", error_type=type(e).__name__, error=str(e))
        finally:
            result.states.append(TickState.IDLE)
            self._lock.release()
        return result

"""
Exception hierarchy for the poll-diff-publish pipeline.

Every error raised by a tick is a TrackerError so the scheduler can
report it against the resource type that failed without affecting others.
"""


class TrackerError(Exception):
    """Base class for pipeline failures local to one resource type."""
    pass


class FetchError(TrackerError):
    """Upstream unavailable, timed out, or returned an error payload."""
    pass


class EmptySnapshotGuard(FetchError):
    """Fetched snapshot is empty while the previous one was not."""
    pass


class PersistenceError(TrackerError):
    """A snapshot, marker, or backlog write (or read) failed."""
    pass


class PublishError(TrackerError):
    """Publishing on, or listening to, the broker failed."""
    pass


class MalformedSnapshotError(TrackerError):
    """A stored snapshot entry could not be deserialized."""
    pass


class MalformedQueueItemError(TrackerError):
    """A queue item payload (live or backlog) could not be deserialized."""
    pass


class DuplicateIdentityError(TrackerError):
    """The same identity appeared twice within one snapshot."""
    pass


class DeliveryError(TrackerError):
    """A notification could not be delivered downstream."""
    pass

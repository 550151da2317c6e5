"""Incremental merge of live change feeds into keyed snapshots.

``merge_changes`` returns the very same mapping object when a batch changes
nothing, so consumers can skip work with an identity check; ``FeedMerger``
exposes the same signal as an explicit boolean.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

from ..domain.entities import ReadyEntry, StatusEntry, TimeOverrideEntry
from ..utils import clean_str, to_datetime, to_millis

T = TypeVar("T")

Normalizer = Callable[[Mapping[str, Any]], T]
Comparer = Callable[[T | None, T], bool]


class ChangeType(StrEnum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    item_id: str
    change_type: ChangeType
    payload: Mapping[str, Any] = field(default_factory=dict)


def merge_changes(
    previous: Mapping[str, T],
    changes: Iterable[ChangeEvent],
    normalize: Normalizer[T],
    is_same: Comparer[T],
) -> Mapping[str, T]:
    """Apply an ordered change batch to a snapshot.

    ``previous`` is never mutated. A copy is made at the first effective change
    and every later event in the batch applies to that copy.
    """
    current: Mapping[str, T] = previous
    copied: dict[str, T] | None = None

    for change in changes:
        item_id = clean_str(change.item_id)
        if not item_id:
            continue

        if change.change_type == ChangeType.REMOVED:
            if item_id not in current:
                continue
            if copied is None:
                copied = dict(previous)
                current = copied
            del copied[item_id]
            continue

        entry = normalize(change.payload or {})
        if is_same(current.get(item_id), entry):
            continue
        if copied is None:
            copied = dict(previous)
            current = copied
        copied[item_id] = entry

    return current


class FeedMerger(Generic[T]):
    """Holds one feed's snapshot and reports whether a batch changed it."""

    def __init__(self, normalize: Normalizer[T], is_same: Comparer[T]):
        self.normalize = normalize
        self.is_same = is_same
        self._snapshot: Mapping[str, T] = {}

    @property
    def snapshot(self) -> Mapping[str, T]:
        return self._snapshot

    def apply(self, changes: Iterable[ChangeEvent]) -> bool:
        merged = merge_changes(self._snapshot, changes, self.normalize, self.is_same)
        if merged is self._snapshot:
            return False
        self._snapshot = merged
        return True

    def reset(self) -> None:
        self._snapshot = {}


def _same_timestamp(left: Any, right: Any) -> bool:
    return to_millis(left) == to_millis(right)


def normalize_status_entry(payload: Mapping[str, Any]) -> StatusEntry:
    return StatusEntry(
        done=payload.get("done") is True,
        updated_at=to_datetime(payload.get("updatedAt")),
        updated_by_name=clean_str(payload.get("updatedByName")),
        updated_by_email=clean_str(payload.get("updatedByEmail")),
    )


def is_same_status_entry(previous: StatusEntry | None, entry: StatusEntry) -> bool:
    if previous is None:
        return False
    return (
        previous.done == entry.done
        and previous.updated_by_name == entry.updated_by_name
        and previous.updated_by_email == entry.updated_by_email
        and _same_timestamp(previous.updated_at, entry.updated_at)
    )


def normalize_time_override_entry(payload: Mapping[str, Any]) -> TimeOverrideEntry:
    return TimeOverrideEntry(
        override_time=clean_str(payload.get("overrideTime")),
        original_time=clean_str(payload.get("originalTime")),
        updated_at=to_datetime(payload.get("updatedAt")),
        updated_by_name=clean_str(payload.get("updatedByName")),
        updated_by_email=clean_str(payload.get("updatedByEmail")),
    )


def is_same_time_override_entry(
    previous: TimeOverrideEntry | None, entry: TimeOverrideEntry
) -> bool:
    if previous is None:
        return False
    return (
        previous.override_time == entry.override_time
        and previous.original_time == entry.original_time
        and previous.updated_by_name == entry.updated_by_name
        and previous.updated_by_email == entry.updated_by_email
        and _same_timestamp(previous.updated_at, entry.updated_at)
    )


def normalize_ready_entry(payload: Mapping[str, Any]) -> ReadyEntry:
    return ReadyEntry(
        ready=payload.get("ready") is True,
        plate=clean_str(payload.get("plate")),
        updated_at=to_datetime(payload.get("updatedAt")),
        updated_by_name=clean_str(payload.get("updatedByName")),
        updated_by_email=clean_str(payload.get("updatedByEmail")),
    )


def is_same_ready_entry(previous: ReadyEntry | None, entry: ReadyEntry) -> bool:
    if previous is None:
        return False
    return (
        previous.ready == entry.ready
        and previous.plate == entry.plate
        and previous.updated_by_name == entry.updated_by_name
        and previous.updated_by_email == entry.updated_by_email
        and _same_timestamp(previous.updated_at, entry.updated_at)
    )


def status_merger() -> FeedMerger[StatusEntry]:
    return FeedMerger(normalize_status_entry, is_same_status_entry)


def time_override_merger() -> FeedMerger[TimeOverrideEntry]:
    return FeedMerger(normalize_time_override_entry, is_same_time_override_entry)


def ready_merger() -> FeedMerger[ReadyEntry]:
    return FeedMerger(normalize_ready_entry, is_same_ready_entry)


def diff_snapshots(
    previous: Mapping[str, Mapping[str, Any]],
    current: Mapping[str, Mapping[str, Any]],
) -> list[ChangeEvent]:
    """Turn two successive query results into an ordered change batch.

    Additions and modifications come in the order of ``current``, removals
    last.
    """
    changes: list[ChangeEvent] = []
    for item_id, payload in current.items():
        if item_id not in previous:
            changes.append(ChangeEvent(item_id, ChangeType.ADDED, payload))
        elif previous[item_id] != payload:
            changes.append(ChangeEvent(item_id, ChangeType.MODIFIED, payload))
    for item_id in previous:
        if item_id not in current:
            changes.append(ChangeEvent(item_id, ChangeType.REMOVED))
    return changes

"""In-memory heartbeat store: last-seen timestamps and counters per unit.

Every mutation happens under the unit's own lock and replaces the stored record
with an updated copy, so readers always get a consistent snapshot without
taking any lock held by a writer of another unit.
"""

import logging
from datetime import datetime
from typing import Any

from src.watchdog.locks import KeyedLocks
from src.watchdog.models import HeartbeatRecord

logger = logging.getLogger(__name__)


def elapsed_since_anchor(record: HeartbeatRecord, now: datetime) -> int | None:
    """Milliseconds of silence for ``record`` as of ``now``.

    The anchor is the last heartbeat, or ``started_at`` when no heartbeat was
    ever recorded. A later ``started_at`` (fresh attempt) or ``grace_until``
    (deadline extension, retry delay) moves the anchor forward. Returns None
    when there is nothing to measure from.
    """
    anchors = [t for t in (record.last_heartbeat_at, record.started_at, record.grace_until) if t is not None]
    if not anchors:
        return None
    elapsed = (now - max(anchors)).total_seconds() * 1000
    return max(0, int(elapsed))


class HeartbeatStore:
    """Owns HeartbeatRecords keyed by unit id."""

    def __init__(self) -> None:
        self._records: dict[str, HeartbeatRecord] = {}
        self._locks = KeyedLocks()

    def get_or_create(self, unit_id: str, started_at: datetime | None = None) -> HeartbeatRecord:
        """Return the unit's record, creating it when the unit begins execution."""
        with self._locks.hold(unit_id):
            record = self._records.get(unit_id)
            if record is None:
                record = HeartbeatRecord(unit_id=unit_id, started_at=started_at)
                self._records[unit_id] = record
                logger.debug("Created heartbeat record for unit '%s'", unit_id)
            return record

    def get(self, unit_id: str) -> HeartbeatRecord | None:
        return self._records.get(unit_id)

    def record_heartbeat(self, unit_id: str, now: datetime) -> HeartbeatRecord:
        """Set ``last_heartbeat_at = now`` and reset ``missed_count``."""
        with self._locks.hold(unit_id):
            current = self._records.get(unit_id) or HeartbeatRecord(unit_id=unit_id, started_at=now)
            record = current.model_copy(update={"last_heartbeat_at": now, "missed_count": 0})
            self._records[unit_id] = record
            return record

    def time_since_heartbeat(self, unit_id: str, now: datetime) -> int | None:
        """Elapsed milliseconds since the last sign of life, or None if unknown."""
        record = self._records.get(unit_id)
        if record is None:
            return None
        return elapsed_since_anchor(record, now)

    def update(self, unit_id: str, **changes: Any) -> HeartbeatRecord:
        """Apply field changes to an existing record atomically.

        Raises:
            KeyError: If the unit has no record.
        """
        with self._locks.hold(unit_id):
            current = self._records[unit_id]
            record = current.model_copy(update=changes)
            self._records[unit_id] = record
            return record

    def evict(self, unit_id: str) -> bool:
        """Drop the unit's record. Returns True if a record existed."""
        with self._locks.hold(unit_id):
            removed = self._records.pop(unit_id, None) is not None
        return removed

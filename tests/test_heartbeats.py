"""Unit tests for the heartbeat store and elapsed-silence anchor."""

from datetime import UTC, datetime, timedelta

import pytest

from src.watchdog.heartbeats import HeartbeatStore, elapsed_since_anchor
from src.watchdog.models import HeartbeatRecord

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


class TestElapsedSinceAnchor:
    def test_no_anchor_returns_none(self) -> None:
        assert elapsed_since_anchor(HeartbeatRecord(unit_id="u1"), T0) is None

    def test_falls_back_to_started_at(self) -> None:
        record = HeartbeatRecord(unit_id="u1", started_at=T0)
        assert elapsed_since_anchor(record, _at(90_000)) == 90_000

    def test_uses_last_heartbeat(self) -> None:
        record = HeartbeatRecord(unit_id="u1", started_at=T0, last_heartbeat_at=_at(60_000))
        assert elapsed_since_anchor(record, _at(100_000)) == 40_000

    def test_grace_until_moves_anchor_forward(self) -> None:
        record = HeartbeatRecord(unit_id="u1", started_at=T0, grace_until=_at(300_000))
        assert elapsed_since_anchor(record, _at(360_000)) == 60_000

    def test_inside_grace_window_is_zero(self) -> None:
        record = HeartbeatRecord(unit_id="u1", started_at=T0, grace_until=_at(300_000))
        assert elapsed_since_anchor(record, _at(10_000)) == 0


class TestHeartbeatStore:
    def test_get_or_create_is_idempotent(self) -> None:
        store = HeartbeatStore()
        first = store.get_or_create("u1", started_at=T0)
        second = store.get_or_create("u1", started_at=_at(5_000))
        assert first is second
        assert second.started_at == T0

    def test_record_heartbeat_resets_missed_count(self) -> None:
        store = HeartbeatStore()
        store.get_or_create("u1", started_at=T0)
        store.update("u1", missed_count=4)

        record = store.record_heartbeat("u1", _at(1_000))

        assert record.last_heartbeat_at == _at(1_000)
        assert record.missed_count == 0

    def test_record_heartbeat_creates_missing_record(self) -> None:
        store = HeartbeatStore()
        record = store.record_heartbeat("u9", T0)
        assert record.unit_id == "u9"
        assert store.get("u9") is not None

    def test_time_since_heartbeat(self) -> None:
        store = HeartbeatStore()
        store.record_heartbeat("u1", T0)
        assert store.time_since_heartbeat("u1", _at(42_000)) == 42_000
        assert store.time_since_heartbeat("missing", T0) is None

    def test_update_replaces_record(self) -> None:
        store = HeartbeatStore()
        original = store.get_or_create("u1", started_at=T0)

        updated = store.update("u1", retry_count=2)

        assert updated.retry_count == 2
        assert original.retry_count == 0
        assert store.get("u1") == updated

    def test_update_missing_unit_raises(self) -> None:
        store = HeartbeatStore()
        with pytest.raises(KeyError):
            store.update("ghost", retry_count=1)

    def test_evict(self) -> None:
        store = HeartbeatStore()
        store.get_or_create("u1", started_at=T0)
        assert store.evict("u1") is True
        assert store.evict("u1") is False
        assert store.get("u1") is None
        assert store._locks._entries == {}

"""Tests for EventBus: WAL-backed change notification delivery."""

from __future__ import annotations

from pathlib import Path

import pluggy
import pytest
from sqlalchemy import select

from schemalink.infrastructure.database.engine import init_database
from schemalink.infrastructure.database.schema import event_wal
from schemalink.plugins.event_bus import ChangeEvent, EventBus
from schemalink.plugins.manager import PluginManager
from tests.conftest import RecordingPlugin

hookimpl = pluggy.HookimplMarker("schemalink")


class FailingPlugin:
    """Plugin that always raises on record_modified."""

    @hookimpl
    def record_modified(self, record_id: int) -> None:
        msg = "Plugin exploded!"
        raise RuntimeError(msg)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path: Path):
    """Initialized SQLite engine with event_wal table."""
    return init_database(tmp_path)


@pytest.fixture
def pm_with_recorder() -> tuple[PluginManager, RecordingPlugin]:
    pm = PluginManager()
    recorder = RecordingPlugin()
    pm.register_plugin(recorder, name="recorder")
    return pm, recorder


@pytest.fixture
def pm_with_failer() -> PluginManager:
    pm = PluginManager()
    pm.register_plugin(FailingPlugin(), name="failer")
    return pm


def _status(engine, event_id: int) -> str:
    with engine.connect() as conn:
        return conn.execute(select(event_wal.c.status).where(event_wal.c.id == event_id)).scalar_one()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestEventBusWAL:
    def test_dispatch_writes_wal_row(self, engine, pm_with_recorder) -> None:
        pm, recorder = pm_with_recorder
        bus = EventBus(engine, pm, sync=True)

        event_id = bus.dispatch("record_modified", {"record_id": 7}, actor="alice")

        with engine.connect() as conn:
            row = conn.execute(select(event_wal).where(event_wal.c.id == event_id)).one()
        assert row.hook_name == "record_modified"
        assert row.status == "completed"
        assert row.actor == "alice"
        assert recorder.calls == [("record_modified", {"record_id": 7})]

    def test_unknown_hook_completes(self, engine) -> None:
        bus = EventBus(engine, PluginManager(), sync=True)
        event_id = bus.dispatch("no_such_hook", {})
        assert _status(engine, event_id) == "completed"

    def test_async_dispatch_completes_after_shutdown(self, engine, pm_with_recorder) -> None:
        pm, recorder = pm_with_recorder
        bus = EventBus(engine, pm, sync=False, max_workers=1)

        event_id = bus.dispatch(
            "record_link_status_changed", {"record_ids": [1, 2], "remote_datatype_id": 3}
        )
        bus.shutdown()

        assert _status(engine, event_id) == "completed"
        assert recorder.named("record_link_status_changed") == [
            {"record_ids": [1, 2], "remote_datatype_id": 3}
        ]

    def test_finished_batches_are_not_retained(self, engine, pm_with_recorder) -> None:
        pm, recorder = pm_with_recorder
        bus = EventBus(engine, pm, sync=False, max_workers=1)

        for record_id in range(5):
            bus.dispatch("record_modified", {"record_id": record_id})
            for future in list(bus._in_flight):
                future.result(timeout=5)

        assert len(bus._in_flight) == 1
        bus.shutdown()
        assert [c["record_id"] for c in recorder.named("record_modified")] == [0, 1, 2, 3, 4]


class TestEventBusPublish:
    def test_batch_delivered_in_order(self, engine, pm_with_recorder) -> None:
        pm, recorder = pm_with_recorder
        bus = EventBus(engine, pm, sync=False, max_workers=2)
        batch = [
            ChangeEvent("record_modified", {"record_id": 3}),
            ChangeEvent("record_modified", {"record_id": 1}),
            ChangeEvent("record_link_status_changed", {"record_ids": [1, 3], "remote_datatype_id": 2}),
        ]

        ids = bus.publish(batch, actor="bob")
        bus.shutdown()

        assert ids == sorted(ids)
        assert [name for name, _ in recorder.calls] == [e.hook_name for e in batch]
        assert [kwargs for _, kwargs in recorder.calls] == [e.payload for e in batch]
        with engine.connect() as conn:
            rows = conn.execute(select(event_wal).where(event_wal.c.id.in_(ids))).fetchall()
        assert {r.actor for r in rows} == {"bob"}
        assert {r.status for r in rows} == {"completed"}
        assert len({r.created for r in rows}) == 1

    def test_empty_batch_writes_nothing(self, engine) -> None:
        bus = EventBus(engine, PluginManager(), sync=True)
        assert bus.publish([]) == []
        with engine.connect() as conn:
            assert conn.execute(select(event_wal)).fetchall() == []

    def test_failure_does_not_stop_batch(self, engine, pm_with_failer) -> None:
        recorder = RecordingPlugin()
        pm_with_failer.register_plugin(recorder, name="recorder")
        bus = EventBus(engine, pm_with_failer, sync=True)

        first, second = bus.publish(
            [
                ChangeEvent("record_modified", {"record_id": 1}),
                ChangeEvent("datatype_modified", {"datatype_id": 4, "clear_record_cache": True}),
            ]
        )

        assert _status(engine, first) == "failed"
        assert _status(engine, second) == "completed"
        assert recorder.named("datatype_modified") == [{"datatype_id": 4, "clear_record_cache": True}]


class TestEventBusFailures:
    def test_failure_is_recorded_not_raised(self, engine, pm_with_failer) -> None:
        bus = EventBus(engine, pm_with_failer, sync=True, max_retries=3)

        event_id = bus.dispatch("record_modified", {"record_id": 1})

        with engine.connect() as conn:
            row = conn.execute(select(event_wal).where(event_wal.c.id == event_id)).one()
        assert row.status == "failed"
        assert row.retries == 1
        assert "exploded" in row.error

    def test_dead_letter_after_max_retries(self, engine, pm_with_failer) -> None:
        bus = EventBus(engine, pm_with_failer, sync=True, max_retries=2)
        event_id = bus.dispatch("record_modified", {"record_id": 1})

        results = bus.drain()

        assert results == [{"id": event_id, "hook_name": "record_modified", "status": "dead_letter"}]
        assert bus.drain() == []

    def test_drain_retries_after_fix(self, engine, pm_with_failer) -> None:
        bus = EventBus(engine, pm_with_failer, sync=True, max_retries=5)
        event_id = bus.dispatch("record_modified", {"record_id": 1})
        for plugin in pm_with_failer.get_plugins():
            pm_with_failer.unregister(plugin)

        results = bus.drain()

        assert results[0]["status"] == "completed"
        assert _status(engine, event_id) == "completed"

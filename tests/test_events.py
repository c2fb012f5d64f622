"""Event model and in-process notifier."""

import json
import logging
from datetime import datetime, timezone

import pytest

from src.domain.entities import StatusChangeRecord
from src.domain.enums import EntityType
from src.domain.events import EventNotifier, StatusChangeEvent


def _event(**overrides) -> StatusChangeEvent:
    fields = dict(
        record_id=1,
        entity_type=EntityType.TRIP,
        entity_id=3,
        previous_status="draft",
        new_status="dispatched",
        timestamp=datetime(2026, 3, 2, 9, 0, 0, 123000, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return StatusChangeEvent(**fields)


class TestStatusChangeEvent:
    def test_from_record(self):
        created = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
        record = StatusChangeRecord(
            id=9,
            entity_type=EntityType.DRIVER,
            entity_id=4,
            previous_status="off-duty",
            new_status="on-duty",
            created_at=created,
            reason="Shift start",
        )

        event = StatusChangeEvent.from_record(record)

        assert event.record_id == 9
        assert event.entity_type is EntityType.DRIVER
        assert event.timestamp == created
        assert event.reason == "Shift start"

    def test_naive_timestamp_becomes_utc(self):
        event = _event(timestamp=datetime(2026, 3, 2, 9, 0))
        assert event.timestamp.tzinfo == timezone.utc

    def test_json_keeps_milliseconds(self):
        payload = json.loads(_event().model_dump_json())

        assert payload["entity_type"] == "trip"
        assert payload["new_status"] == "dispatched"
        assert payload["timestamp"].startswith("2026-03-02T09:00:00.123")

    def test_frozen(self):
        event = _event()
        with pytest.raises(Exception):
            event.new_status = "completed"


class TestEventNotifier:
    @pytest.mark.asyncio
    async def test_sync_and_async_listeners(self):
        notifier = EventNotifier()
        seen = []

        async def async_listener(event):
            seen.append(("async", event.entity_id))

        notifier.subscribe(lambda event: seen.append(("sync", event.entity_id)))
        notifier.subscribe(async_listener)

        await notifier.publish(_event())

        assert seen == [("sync", 3), ("async", 3)]

    @pytest.mark.asyncio
    async def test_unsubscribe_handle(self):
        notifier = EventNotifier()
        seen = []
        unsubscribe = notifier.subscribe(seen.append)

        unsubscribe()
        unsubscribe()  # second call is a no-op
        await notifier.publish(_event())

        assert seen == []
        assert notifier.listener_count == 0

    @pytest.mark.asyncio
    async def test_failing_listener_is_logged_and_skipped(self, caplog):
        notifier = EventNotifier()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        notifier.subscribe(broken)
        notifier.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="src.domain.events"):
            await notifier.publish(_event())

        assert len(seen) == 1
        assert "listener" in caplog.text
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_listener_may_unsubscribe_during_publish(self):
        notifier = EventNotifier()
        seen = []

        def once(event):
            seen.append(event.record_id)
            notifier.unsubscribe(once)

        notifier.subscribe(once)
        await notifier.publish(_event(record_id=1))
        await notifier.publish(_event(record_id=2))

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_engine_unsubscribe(self, engine):
        seen = []
        engine.subscribe(seen.append)
        engine.unsubscribe(seen.append)

        await engine.transition_driver(1, "off-duty")

        assert seen == []

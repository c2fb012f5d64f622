"""
Status change events and the in-process notifier.

The engine owns one ``EventNotifier``; other subsystems register
listeners on that instance.  A failing listener never aborts the
transition that triggered it: its exception is logged and swallowed.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .entities import StatusChangeRecord
from .enums import EntityType

logger = logging.getLogger(__name__)


class StatusChangeEvent(BaseModel):
    """Published once per recorded status change."""

    model_config = ConfigDict(frozen=True)

    record_id: int
    entity_type: EntityType
    entity_id: int
    previous_status: Optional[str] = None
    new_status: str
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_record(cls, record: StatusChangeRecord) -> "StatusChangeEvent":
        return cls(
            record_id=record.id,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            previous_status=record.previous_status,
            new_status=record.new_status,
            reason=record.reason,
            timestamp=record.created_at,
        )


Listener = Callable[[StatusChangeEvent], Union[None, Awaitable[Any]]]


class EventNotifier:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass  # already removed

    async def publish(self, event: StatusChangeEvent) -> None:
        # Snapshot so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Status change listener %r failed for %s %s",
                    listener,
                    event.entity_type.value,
                    event.entity_id,
                )

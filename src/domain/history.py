"""
Status history queries.

Read-side helpers over the ``HistoryLog``: paginated audit trails, recent
changes, per-status duration statistics and the retention purge.  The
duration of a status is the time until the entity's next recorded change;
the newest status of a range has no duration yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from src.config import settings

from .entities import StatusChangeRecord
from .enums import EntityType
from .errors import HistoryQueryError, NotFound
from .ports import EntityStore, HistoryLog

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


@dataclass
class StatusBreakdown:
    count: int = 0
    total_duration_seconds: float = 0.0


@dataclass
class StatusChangeStats:
    total_changes: int
    unique_statuses: list[str]
    status_breakdown: dict[str, StatusBreakdown] = field(default_factory=dict)
    average_duration_minutes: dict[str, float] = field(default_factory=dict)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


def _validate_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and start > end:
        raise HistoryQueryError("start date must be before end date")


def _validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise HistoryQueryError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise HistoryQueryError("offset must be non-negative")


def _durations(records: list[StatusChangeRecord]) -> list[tuple[str, float]]:
    """(status, seconds held) for each record that has a successor."""
    ordered = sorted(records, key=lambda r: (r.created_at, r.id))
    return [
        (cur.new_status, (nxt.created_at - cur.created_at).total_seconds())
        for cur, nxt in zip(ordered, ordered[1:])
    ]


class StatusHistoryService:
    def __init__(
        self,
        store: EntityStore,
        history: HistoryLog,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.history = history
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_status_history(
        self,
        entity_type: EntityType,
        entity_id: int,
        limit: int = 100,
        offset: int = 0,
    ) -> list[StatusChangeRecord]:
        entity_type = EntityType(entity_type)
        _validate_page(limit, offset)
        if await self.store.get(entity_type, entity_id) is None:
            raise NotFound(entity_type, entity_id)
        return await self.history.entity_history(entity_type, entity_id, limit, offset)

    async def get_current_status(
        self, entity_type: EntityType, entity_id: int
    ) -> Optional[str]:
        entity = await self.store.get(EntityType(entity_type), entity_id)
        return entity.status.value if entity else None

    async def get_recent_status_changes(
        self, entity_type: EntityType, minutes: int = 60, limit: int = 100
    ) -> list[StatusChangeRecord]:
        _validate_page(limit, 0)
        since = self._clock() - timedelta(minutes=minutes)
        return await self.history.recent(EntityType(entity_type), since, limit)

    async def get_status_change_count(
        self,
        entity_type: EntityType,
        entity_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        _validate_range(start, end)
        return await self.history.count(EntityType(entity_type), entity_id, start, end)

    async def get_average_status_duration(
        self,
        entity_type: EntityType,
        entity_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> float:
        """Mean minutes between consecutive changes; 0 with fewer than two."""
        _validate_range(start, end)
        records = await self.history.query(EntityType(entity_type), entity_id, start, end)
        durations = _durations(records)
        if not durations:
            return 0.0
        return round(sum(d for _, d in durations) / len(durations) / 60, 2)

    async def get_status_change_stats(
        self,
        entity_type: EntityType,
        entity_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> StatusChangeStats:
        _validate_range(start, end)
        records = await self.history.query(EntityType(entity_type), entity_id, start, end)
        if not records:
            return StatusChangeStats(0, [], date_from=start, date_to=end)

        unique: list[str] = []
        for record in records:
            if record.new_status not in unique:
                unique.append(record.new_status)

        breakdown: dict[str, StatusBreakdown] = {}
        for status, seconds in _durations(records):
            entry = breakdown.setdefault(status, StatusBreakdown())
            entry.count += 1
            entry.total_duration_seconds += seconds

        averages = {
            status: round(entry.total_duration_seconds / entry.count / 60, 2)
            for status, entry in breakdown.items()
        }
        return StatusChangeStats(
            total_changes=len(records),
            unique_statuses=unique,
            status_breakdown=breakdown,
            average_duration_minutes=averages,
            date_from=start,
            date_to=end,
        )

    async def purge_old_history(self, days_old: Optional[int] = None) -> int:
        days = settings.history_retention_days if days_old is None else days_old
        if days < 0:
            raise HistoryQueryError("days_old must be non-negative")
        cutoff = self._clock() - timedelta(days=days)
        deleted = await self.history.purge_before(cutoff)
        logger.info("Purged %d status history records older than %s", deleted, cutoff)
        return deleted

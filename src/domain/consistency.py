"""
Consistency checker / corrector.

An entity is consistent when its live status equals the ``new_status`` of
its newest history record.  An entity with no history yet is consistent.
``correct`` treats history as the source of truth and forces the live
status back to it; it is a repair tool and runs no transition validation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .enums import STATUS_TYPES, EntityType
from .errors import NotFound, StatusEngineError
from .locking import EntityRef, LockManager
from .ports import EntityStore, HistoryLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsistencyReport:
    entity_type: EntityType
    entity_id: int
    is_consistent: bool
    expected_status: Optional[str]
    actual_status: str

    @property
    def needs_correction(self) -> bool:
        return not self.is_consistent


@dataclass(frozen=True)
class CorrectionReport:
    entity_type: EntityType
    entity_id: int
    corrected: bool
    previous_status: Optional[str] = None
    corrected_status: Optional[str] = None
    message: str = ""


class ConsistencyChecker:
    def __init__(self, store: EntityStore, history: HistoryLog, locks: LockManager):
        self.store = store
        self.history = history
        self.locks = locks

    async def check(self, entity_type: EntityType, entity_id: int) -> ConsistencyReport:
        entity_type = EntityType(entity_type)
        entity = await self.store.get(entity_type, entity_id)
        if entity is None:
            raise NotFound(entity_type, entity_id)

        actual = entity.status.value
        latest = await self.history.latest(entity_type, entity_id)
        if latest is None:
            return ConsistencyReport(entity_type, entity_id, True, None, actual)
        return ConsistencyReport(
            entity_type,
            entity_id,
            latest.new_status == actual,
            latest.new_status,
            actual,
        )

    async def correct(
        self, entity_type: EntityType, entity_id: int
    ) -> CorrectionReport:
        entity_type = EntityType(entity_type)
        async with self.locks.hold(EntityRef(entity_type, entity_id)):
            report = await self.check(entity_type, entity_id)
            if report.is_consistent:
                return CorrectionReport(
                    entity_type, entity_id, False,
                    message="Status is already consistent",
                )

            try:
                target = STATUS_TYPES[entity_type](report.expected_status)
            except ValueError:
                raise StatusEngineError(
                    f"History for {entity_type.value} {entity_id} holds unknown "
                    f"status {report.expected_status!r}"
                ) from None

            await self.store.update_status(entity_type, entity_id, target)
            logger.warning(
                "Corrected %s %s status drift: %s -> %s",
                entity_type.value, entity_id, report.actual_status, target.value,
            )
            return CorrectionReport(
                entity_type,
                entity_id,
                True,
                previous_status=report.actual_status,
                corrected_status=target.value,
                message="Status synced to latest history record",
            )

"""
Background Consistency Reconciler
=================================

Runs every ``RECONCILE_INTERVAL_SECONDS`` (default 300 s).

A crash between "mutate entity" and "append history" leaves an entity
whose live status disagrees with its newest history record.  Each cycle
sweeps every vehicle, driver and trip, runs the consistency check, and,
when ``RECONCILE_AUTO_CORRECT`` is enabled, forces drifted entities back
to their recorded status.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple processes.
* Corrections go through the engine, so they take the per-entity lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.config import settings
from src.domain.engine import StatusEngine
from src.domain.enums import EntityType
from src.domain.errors import NotFound, StatusEngineError
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_reconcile_loop(engine: StatusEngine) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(engine))
    logger.info(
        "Reconciler started (interval=%ds, auto_correct=%s)",
        settings.reconcile_interval_seconds,
        settings.reconcile_auto_correct,
    )


async def stop_reconcile_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Reconciler stopped")


async def wait_reconcile_loop() -> None:
    if _task:
        await _task


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(engine: StatusEngine) -> None:
    """Periodic loop: run a reconcile cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconcile_cycle(engine)
        except Exception:
            logger.exception("Unhandled error in reconcile cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconcile_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def sweep(engine: StatusEngine, auto_correct: bool) -> int:
    """Check every entity once.  Returns the number found drifted."""
    drifted = 0
    for entity_type in EntityType:
        for entity_id in await engine.store.list_ids(entity_type):
            try:
                report = await engine.check(entity_type, entity_id)
            except NotFound:
                continue  # removed since listing
            if report.is_consistent:
                continue

            drifted += 1
            logger.warning(
                "%s %s drifted: live=%s history=%s",
                entity_type.value, entity_id,
                report.actual_status, report.expected_status,
            )
            if not auto_correct:
                continue
            try:
                await engine.correct(entity_type, entity_id)
            except StatusEngineError:
                logger.exception(
                    "Could not correct %s %s", entity_type.value, entity_id
                )
    return drifted


async def run_reconcile_cycle(
    engine: StatusEngine, auto_correct: Optional[bool] = None
) -> int:
    """Execute one reconcile cycle.  Returns the number of drifted entities."""
    if auto_correct is None:
        auto_correct = settings.reconcile_auto_correct

    redis = await get_redis()
    lock = DistributedLock(redis, "consistency_reconciler", ttl_seconds=120)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    drifted = 0
    try:
        drifted = await sweep(engine, auto_correct)
        if drifted:
            logger.info("Reconcile cycle: %d entities drifted", drifted)
    except Exception:
        logger.exception("Error in reconcile cycle")
    finally:
        await lock.release()

    return drifted

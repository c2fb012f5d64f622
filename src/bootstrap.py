"""Wire the status engine to the configured adapters."""

from __future__ import annotations

from dataclasses import dataclass

from src.config import settings
from src.domain.engine import StatusEngine
from src.domain.history import StatusHistoryService
from src.domain.locking import LocalLockManager, LockManager
from src.infrastructure.database import get_session_factory
from src.infrastructure.locks import RedisLockManager
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import SqlEntityStore, SqlHistoryLog


@dataclass
class Services:
    engine: StatusEngine
    history: StatusHistoryService
    store: SqlEntityStore


async def build_lock_manager() -> LockManager:
    if settings.lock_backend == "redis":
        return RedisLockManager(await get_redis())
    if settings.lock_backend != "local":
        raise ValueError(f"Unknown lock backend: {settings.lock_backend!r}")
    return LocalLockManager()


async def build_services() -> Services:
    session_factory = get_session_factory()
    store = SqlEntityStore(session_factory)
    history_log = SqlHistoryLog(session_factory)
    engine = StatusEngine(store, history_log, locks=await build_lock_manager())
    return Services(
        engine=engine,
        history=StatusHistoryService(store, history_log),
        store=store,
    )

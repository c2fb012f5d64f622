"""
Per-entity ownership.

Steps validate -> mutate -> append are not atomic against the stores, so
operations touching the same entity must not interleave.  ``hold`` takes
ownership of every given entity, always in the global order
trip < vehicle < driver (then id), so two compound operations that
contend for the same vehicle or driver cannot deadlock.
"""

from __future__ import annotations

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, NamedTuple

from .enums import LOCK_ORDER, EntityType


class EntityRef(NamedTuple):
    entity_type: EntityType
    entity_id: int

    @property
    def key(self) -> str:
        return f"{self.entity_type.value}:{self.entity_id}"


def lock_order(refs) -> list[EntityRef]:
    unique = {EntityRef(EntityType(t), i) for t, i in refs}
    return sorted(unique, key=lambda r: (LOCK_ORDER[r.entity_type], r.entity_id))


class LockManager(ABC):
    @abstractmethod
    def lock_for(self, ref: EntityRef):
        """Return an async context manager owning *ref* while entered."""

    @asynccontextmanager
    async def hold(self, *refs: EntityRef) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for ref in lock_order(refs):
                await stack.enter_async_context(self.lock_for(ref))
            yield


class LocalLockManager(LockManager):
    """
    ``asyncio.Lock`` per entity; serialises within one event loop only.

    Locks are weakly held: once no task holds or awaits an entity's lock
    it is dropped, so the table only tracks entities currently in use.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[EntityRef, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, ref: EntityRef) -> asyncio.Lock:
        lock = self._locks.get(ref)
        if lock is None:
            lock = self._locks[ref] = asyncio.Lock()
        return lock

"""
Read-through TTL cache for slot lookups and effective roles.

Two maps share one clock:

- ``(user_id, org_id) -> slot | None`` (``None`` caches "not a member")
- ``(org_id, slot) -> EffectiveRole``

Invalidation is logical: affected entries get an expiry in the past and are
dropped physically only by ``prune()``, which runs when the cache outgrows
``max_entries`` and some entry can actually have expired. Every invalidation
also bumps a generation counter, so a load that was in flight when it
happened is returned to its caller but never stored. The TTL only bounds
staleness between explicit invalidations; writers must call ``invalidate`` after committing.
"""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Generic, Hashable, Optional, TypeVar

import structlog

from slotguard.core.metrics import MetricsCollector
from slotguard.schemas.roles import EffectiveRole

log = structlog.get_logger()

T = TypeVar("T")

Clock = Callable[[], float]


class _Entry:
    __slots__ = ("value", "expires")

    def __init__(self, value: Any, expires: float):
        self.value = value
        self.expires = expires


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


class _TTLMap(Generic[T]):
    def __init__(self, org_of: Callable[[Any], uuid.UUID]):
        self._entries: dict[Hashable, _Entry] = {}
        self._org_of = org_of

    def lookup(self, key: Hashable, now: float) -> T | Any:
        entry = self._entries.get(key)
        if entry is None or entry.expires <= now:
            return MISSING
        return entry.value

    def store(self, key: Hashable, value: T, expires: float) -> None:
        self._entries[key] = _Entry(value, expires)

    def expire(self, org_id: Optional[uuid.UUID], now: float) -> int:
        past = now - 1
        count = 0
        for key, entry in self._entries.items():
            if org_id is None or self._org_of(key) == org_id:
                if entry.expires > past:
                    entry.expires = past
                    count += 1
        return count

    def prune(self, now: float) -> tuple[int, float]:
        """Drop expired entries; return the count and the earliest surviving expiry."""
        stale = []
        earliest = math.inf
        for key, entry in self._entries.items():
            if entry.expires <= now:
                stale.append(key)
            elif entry.expires < earliest:
                earliest = entry.expires
        for key in stale:
            del self._entries[key]
        return len(stale), earliest

    def __len__(self) -> int:
        return len(self._entries)


class ResolutionCache:
    """Process-wide cache; construct once and pass it to the engine."""

    def __init__(
        self,
        ttl_seconds: float = 10.0,
        *,
        clock: Clock = time.monotonic,
        max_entries: int = 10_000,
        metrics: MetricsCollector | None = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._metrics = metrics or MetricsCollector()
        self._slots: _TTLMap[Optional[int]] = _TTLMap(org_of=lambda key: key[1])
        self._roles: _TTLMap[EffectiveRole] = _TTLMap(org_of=lambda key: key[0])
        self._generation = 0
        self._org_generations: dict[uuid.UUID, int] = {}
        # Nothing can be pruned before this instant.
        self._next_expiry = math.inf

    # --- Read-through ---

    async def get_user_slot(
        self,
        user_id: uuid.UUID,
        org_id: uuid.UUID,
        load: Callable[[], Awaitable[Optional[int]]],
    ) -> Optional[int]:
        return await self._read_through(
            self._slots, (user_id, org_id), org_id, load, kind="slot"
        )

    async def get_effective_role(
        self,
        org_id: uuid.UUID,
        slot: int,
        load: Callable[[], Awaitable[EffectiveRole]],
    ) -> EffectiveRole:
        return await self._read_through(self._roles, (org_id, slot), org_id, load, kind="role")

    async def _read_through(self, table: _TTLMap, key, org_id: uuid.UUID, load, *, kind: str):
        value = table.lookup(key, self._clock())
        if value is not MISSING:
            self._metrics.inc("cache_hits_total", kind=kind)
            return value
        self._metrics.inc("cache_misses_total", kind=kind)
        generation = self._generation_of(org_id)
        value = await load()
        if self._generation_of(org_id) != generation:
            self._metrics.inc("cache_stale_loads_total", kind=kind)
            log.debug("access.cache_load_discarded", org_id=str(org_id), kind=kind)
            return value
        # Expiry is taken after the load so a slow store read still gets a full TTL.
        expires = self._clock() + self.ttl_seconds
        table.store(key, value, expires)
        self._next_expiry = min(self._next_expiry, expires)
        if len(self) > self.max_entries and self._clock() >= self._next_expiry:
            self.prune()
        return value

    def _generation_of(self, org_id: uuid.UUID) -> tuple[int, int]:
        return self._generation, self._org_generations.get(org_id, 0)

    # --- Invalidation ---

    def invalidate(self, org_id: Optional[uuid.UUID] = None) -> int:
        """Expire every entry scoped to *org_id*, or everything when omitted."""
        now = self._clock()
        if org_id is None:
            self._generation += 1
        else:
            self._org_generations[org_id] = self._org_generations.get(org_id, 0) + 1
        count = self._slots.expire(org_id, now) + self._roles.expire(org_id, now)
        if count:
            self._next_expiry = min(self._next_expiry, now)
        self._metrics.inc("cache_invalidations_total", scope="org" if org_id else "all")
        log.debug(
            "access.cache_invalidated",
            org_id=str(org_id) if org_id else None,
            entries=count,
        )
        return count

    def prune(self) -> int:
        """Physically drop expired entries."""
        now = self._clock()
        slots_removed, slots_next = self._slots.prune(now)
        roles_removed, roles_next = self._roles.prune(now)
        self._next_expiry = min(slots_next, roles_next)
        return slots_removed + roles_removed

    def __len__(self) -> int:
        return len(self._slots) + len(self._roles)

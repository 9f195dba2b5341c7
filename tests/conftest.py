"""
Shared fixtures: a throwaway SQLite database per test, the engine stack
wired the way the app factory wires it, and a controllable clock.
"""

from __future__ import annotations

import uuid

import pytest

from slotguard.access.cache import ResolutionCache
from slotguard.access.engine import AccessEngine
from slotguard.access.store import AccessStore, TemplateRecord
from slotguard.core.database import create_engine, init_db
from slotguard.core.metrics import MetricsCollector

MANAGER, PRODUCER, HOST, VIEWER = 2, 3, 4, 5

# Slot 7 deliberately has no template row.
TEMPLATES = [
    TemplateRecord(1, "Administrator", frozenset()),
    TemplateRecord(
        MANAGER,
        "Manager",
        frozenset({"settings:manage", "roles:manage", "booking:view", "booking:create"}),
    ),
    TemplateRecord(PRODUCER, "Producer", frozenset({"booking:view", "booking:create", "participant:view"})),
    TemplateRecord(
        HOST,
        "Host",
        frozenset({"booking:view", "directory:listed_internal", "booking:inviteable"}),
    ),
    TemplateRecord(VIEWER, "Viewer", frozenset({"booking:view"})),
    TemplateRecord(6, "Role 6", frozenset()),
    TemplateRecord(8, "Role 8", frozenset({"notes:read"})),
    TemplateRecord(9, "Role 9", frozenset()),
    TemplateRecord(10, "Role 10", frozenset()),
]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'slotguard.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def store(db_engine, metrics):
    store = AccessStore(db_engine, timeout=5.0, metrics=metrics)
    await store.replace_templates(TEMPLATES)
    return store


@pytest.fixture
def cache(clock, metrics):
    return ResolutionCache(10.0, clock=clock, metrics=metrics)


@pytest.fixture
def access(store, cache, metrics):
    return AccessEngine(store, cache, metrics=metrics)


@pytest.fixture
async def org_id(access):
    """An org with slots 2-5 active and nothing else configured."""
    org = uuid.uuid4()
    for slot in (MANAGER, PRODUCER, HOST, VIEWER):
        await access.upsert_org_role(org, slot, {"is_active": True})
    return org


@pytest.fixture
def add_member(store):
    """Create a membership in a given slot and return the new user id."""

    async def add(org_id: uuid.UUID, slot: int) -> uuid.UUID:
        user_id = uuid.uuid4()
        await store.add_membership(user_id, org_id, slot)
        return user_id

    return add

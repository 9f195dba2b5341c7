"""
Persistence for templates, org roles and memberships.

Every public coroutine is bounded by the store timeout; timeouts and
connectivity failures surface as ``Unavailable`` so that an outage is never
mistaken for a denial. Missing rows are not errors: callers get ``None``.
"""

from __future__ import annotations

import asyncio
import functools
import uuid
import weakref
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import NamedTuple, Optional

import structlog
from sqlalchemy import delete, func, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import select

from slotguard.core.errors import Unavailable
from slotguard.core.metrics import MetricsCollector
from slotguard.models.membership import Membership
from slotguard.models.org_role import OrgRole, OrgRolePermission
from slotguard.models.role_template import RoleTemplate, RoleTemplatePermission

from .catalog import default_label

log = structlog.get_logger()

_OUTAGES = (asyncio.TimeoutError, OperationalError, InterfaceError, PoolTimeoutError)


class OrgRoleRecord(NamedTuple):
    slot: int
    label: str
    is_active: bool
    overrides: list[tuple[str, bool]]


class TemplateRecord(NamedTuple):
    slot: int
    label: str
    permissions: frozenset[str]


class MemberRecord(NamedTuple):
    user_id: uuid.UUID
    slot: int
    assigned_at: datetime


def bounded(operation: str):
    """Run the wrapped store coroutine under the store timeout."""

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, *args, **kwargs):
            try:
                return await asyncio.wait_for(fn(self, *args, **kwargs), timeout=self._timeout)
            except _OUTAGES as exc:
                self._metrics.inc("store_unavailable_total", operation=operation)
                log.warning("store.unavailable", operation=operation, error=repr(exc))
                raise Unavailable(f"Store unavailable during {operation}", operation=operation) from exc

        return wrapper

    return decorator


async def _load_overrides(session: AsyncSession, org_role_id: uuid.UUID) -> list[tuple[str, bool]]:
    result = await session.execute(
        select(OrgRolePermission.permission_key, OrgRolePermission.allowed)
        .where(OrgRolePermission.org_role_id == org_role_id)
        .order_by(OrgRolePermission.permission_key)
    )
    return [(key, allowed) for key, allowed in result.all()]


class MembershipTransaction:
    """Membership reads and writes inside one serialized per-org transaction."""

    def __init__(
        self,
        session: AsyncSession,
        org_id: uuid.UUID,
        timeout: float,
        metrics: MetricsCollector,
    ):
        self._session = session
        self._timeout = timeout
        self._metrics = metrics
        self.org_id = org_id

    @bounded("membership.get_slot")
    async def get_slot(self, user_id: uuid.UUID) -> Optional[int]:
        result = await self._session.execute(
            select(Membership.slot).where(
                Membership.user_id == user_id, Membership.org_id == self.org_id
            )
        )
        return result.scalar_one_or_none()

    @bounded("membership.roster")
    async def roster(self) -> list[tuple[uuid.UUID, int]]:
        """Every (user_id, slot) in the org."""
        result = await self._session.execute(
            select(Membership.user_id, Membership.slot).where(Membership.org_id == self.org_id)
        )
        return [(user_id, slot) for user_id, slot in result.all()]

    @bounded("membership.set_slot")
    async def set_slot(self, user_id: uuid.UUID, slot: int) -> None:
        result = await self._session.execute(
            select(Membership).where(
                Membership.user_id == user_id, Membership.org_id == self.org_id
            )
        )
        membership = result.scalar_one()
        membership.slot = slot
        membership.assigned_at = datetime.now(timezone.utc)
        self._session.add(membership)
        await self._session.flush()

    @bounded("membership.delete")
    async def delete(self, user_id: uuid.UUID) -> None:
        await self._session.execute(
            delete(Membership).where(
                Membership.user_id == user_id, Membership.org_id == self.org_id
            )
        )
        await self._session.flush()


class AccessStore:
    """SQLModel-backed store for the access engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        timeout: float = 2.0,
        metrics: MetricsCollector | None = None,
    ):
        self._engine = engine
        self._timeout = timeout
        self._metrics = metrics or MetricsCollector()
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._org_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    # --- Templates ---

    @bounded("template.get")
    async def get_template(self, slot: int) -> Optional[TemplateRecord]:
        async with self._session_factory() as session:
            template = await session.get(RoleTemplate, slot)
            if template is None:
                return None
            result = await session.execute(
                select(RoleTemplatePermission.permission_key).where(
                    RoleTemplatePermission.slot == slot
                )
            )
            return TemplateRecord(slot, template.default_label, frozenset(result.scalars().all()))

    @bounded("template.list")
    async def list_templates(self) -> dict[int, TemplateRecord]:
        async with self._session_factory() as session:
            templates = (await session.execute(select(RoleTemplate))).scalars().all()
            rows = (
                await session.execute(
                    select(RoleTemplatePermission.slot, RoleTemplatePermission.permission_key)
                )
            ).all()
        keys: dict[int, set[str]] = {}
        for slot, key in rows:
            keys.setdefault(slot, set()).add(key)
        return {
            t.slot: TemplateRecord(t.slot, t.default_label, frozenset(keys.get(t.slot, ())))
            for t in templates
        }

    @bounded("template.replace")
    async def replace_templates(self, templates: Iterable[TemplateRecord]) -> int:
        """Replace the whole template table (seeding). Returns the row count."""
        count = 0
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(RoleTemplatePermission))
                await session.execute(delete(RoleTemplate))
                await session.flush()
                for record in templates:
                    session.add(RoleTemplate(slot=record.slot, default_label=record.label))
                    await session.flush()
                    for key in sorted(record.permissions):
                        session.add(RoleTemplatePermission(slot=record.slot, permission_key=key))
                    count += 1
        log.info("store.templates_replaced", count=count)
        return count

    # --- Org roles ---

    @bounded("org_role.get")
    async def get_org_role(self, org_id: uuid.UUID, slot: int) -> Optional[OrgRoleRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrgRole).where(OrgRole.org_id == org_id, OrgRole.slot == slot)
            )
            role = result.scalar_one_or_none()
            if role is None:
                return None
            overrides = await _load_overrides(session, role.id)
            return OrgRoleRecord(role.slot, role.label, role.is_active, overrides)

    @bounded("org_role.list")
    async def list_org_roles(self, org_id: uuid.UUID) -> dict[int, OrgRoleRecord]:
        async with self._session_factory() as session:
            roles = (
                await session.execute(
                    select(OrgRole).where(OrgRole.org_id == org_id).order_by(OrgRole.slot)
                )
            ).scalars().all()
            records = {}
            for role in roles:
                overrides = await _load_overrides(session, role.id)
                records[role.slot] = OrgRoleRecord(role.slot, role.label, role.is_active, overrides)
            return records

    @bounded("org_role.upsert")
    async def upsert_org_role(
        self,
        org_id: uuid.UUID,
        slot: int,
        *,
        label: Optional[str] = None,
        is_active: Optional[bool] = None,
        overrides: Optional[list[tuple[str, bool]]] = None,
    ) -> None:
        """Create or update one slot's role. ``overrides`` replaces the stored set.

        Overrides must already be de-duplicated and restricted to the catalog.
        """
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(OrgRole).where(OrgRole.org_id == org_id, OrgRole.slot == slot)
                )
                role = result.scalar_one_or_none()
                if role is None:
                    role = OrgRole(
                        org_id=org_id,
                        slot=slot,
                        label=label if label is not None else default_label(slot),
                        is_active=is_active if is_active is not None else False,
                    )
                else:
                    if label is not None:
                        role.label = label
                    if is_active is not None:
                        role.is_active = is_active
                    role.updated_at = datetime.now(timezone.utc)
                session.add(role)
                await session.flush()

                if overrides is not None:
                    await session.execute(
                        delete(OrgRolePermission).where(OrgRolePermission.org_role_id == role.id)
                    )
                    for key, allowed in overrides:
                        session.add(
                            OrgRolePermission(org_role_id=role.id, permission_key=key, allowed=allowed)
                        )
                    await session.flush()

    # --- Memberships ---

    @bounded("membership.get_slot")
    async def get_membership_slot(self, user_id: uuid.UUID, org_id: uuid.UUID) -> Optional[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Membership.slot).where(
                    Membership.user_id == user_id, Membership.org_id == org_id
                )
            )
            return result.scalar_one_or_none()

    @bounded("membership.add")
    async def add_membership(self, user_id: uuid.UUID, org_id: uuid.UUID, slot: int) -> None:
        """Create a membership (invite acceptance / provisioning path)."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(Membership(user_id=user_id, org_id=org_id, slot=slot))

    @bounded("membership.list")
    async def list_members(
        self,
        org_id: uuid.UUID,
        *,
        slot: Optional[int] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[int, list[MemberRecord]]:
        """One page of the org roster ordered by user id, plus the filtered total."""
        conditions = [Membership.org_id == org_id]
        if slot is not None:
            conditions.append(Membership.slot == slot)
        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(Membership).where(*conditions))
            ).scalar_one()
            rows = (
                await session.execute(
                    select(Membership.user_id, Membership.slot, Membership.assigned_at)
                    .where(*conditions)
                    .order_by(Membership.user_id)
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
            ).all()
        return total, [MemberRecord(*row) for row in rows]

    @asynccontextmanager
    async def transaction(self, org_id: uuid.UUID) -> AsyncIterator[MembershipTransaction]:
        """Serialize membership mutations of one org.

        Holds an in-process lock for the org and, on PostgreSQL, a
        transaction-scoped advisory lock so that separate workers serialize
        too. Commits on normal exit, rolls back on any exception.
        """
        lock = self._org_locks.get(org_id)
        if lock is None:
            lock = self._org_locks[org_id] = asyncio.Lock()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            self._metrics.inc("store_unavailable_total", operation="org_lock")
            log.warning("store.unavailable", operation="org_lock", org_id=str(org_id))
            raise Unavailable("Timed out waiting for organization lock", operation="org_lock") from exc
        try:
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        if self.dialect == "postgresql":
                            await asyncio.wait_for(
                                session.execute(
                                    text("SELECT pg_advisory_xact_lock(hashtext(:org_id))"),
                                    {"org_id": str(org_id)},
                                ),
                                timeout=self._timeout,
                            )
                        yield MembershipTransaction(session, org_id, self._timeout, self._metrics)
                except _OUTAGES as exc:
                    self._metrics.inc("store_unavailable_total", operation="org_transaction")
                    log.warning("store.unavailable", operation="org_transaction", error=repr(exc))
                    raise Unavailable(
                        "Store unavailable during membership transaction",
                        operation="org_transaction",
                    ) from exc
        finally:
            lock.release()

    # --- Organization lifecycle ---

    @bounded("org.purge")
    async def purge_organization(self, org_id: uuid.UUID) -> int:
        """Hard-delete every role and membership of an org. Returns rows removed."""
        async with self._session_factory() as session:
            async with session.begin():
                role_ids = select(OrgRole.id).where(OrgRole.org_id == org_id)
                overrides = await session.execute(
                    delete(OrgRolePermission).where(OrgRolePermission.org_role_id.in_(role_ids))
                )
                roles = await session.execute(delete(OrgRole).where(OrgRole.org_id == org_id))
                members = await session.execute(delete(Membership).where(Membership.org_id == org_id))
        return overrides.rowcount + roles.rowcount + members.rowcount

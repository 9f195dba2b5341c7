"""
Access engine facade.

Wires the store, resolver, cache, notifier and guard together and exposes
the operations route handlers call. Build one per process (see
``slotguard.main``) and share it.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import pydantic
import redis.exceptions
import structlog

from slotguard.core.errors import Forbidden, InvalidKey, ValidationError
from slotguard.core.metrics import MetricsCollector
from slotguard.schemas.memberships import MemberListItem, MemberListResponse, MembershipView
from slotguard.schemas.roles import (
    EffectiveRole,
    OrgRoleUpdate,
    OverrideEntry,
    RoleInfo,
    SlotConfig,
)

from .cache import ResolutionCache
from .catalog import (
    ADMIN_SLOT,
    ALL_SLOTS,
    Permission,
    is_known,
    known_permissions,
    parse_permission,
    validate_slot,
)
from .guard import MembershipGuard
from .merge import dedupe_overrides
from .notifier import NullNotifier
from .resolver import RoleResolver
from .store import AccessStore

log = structlog.get_logger()

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_PAGE = 10_000


class AccessEngine:
    def __init__(
        self,
        store: AccessStore,
        cache: ResolutionCache,
        *,
        notifier: Any = None,
        metrics: MetricsCollector | None = None,
        strict_permission_keys: bool = False,
    ):
        self.store = store
        self.cache = cache
        self.notifier = notifier or NullNotifier()
        self.metrics = metrics or MetricsCollector()
        self.strict_permission_keys = strict_permission_keys
        self.resolver = RoleResolver(store)
        self.guard = MembershipGuard(self)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_user_slot(self, user_id: uuid.UUID, org_id: uuid.UUID) -> Optional[int]:
        return await self.cache.get_user_slot(
            user_id, org_id, lambda: self.store.get_membership_slot(user_id, org_id)
        )

    async def get_effective_role(self, org_id: uuid.UUID, slot: int) -> EffectiveRole:
        slot = validate_slot(slot)
        return await self.cache.get_effective_role(
            org_id, slot, lambda: self.resolver.resolve(org_id, slot)
        )

    async def has_permission(
        self, user_id: uuid.UUID, org_id: uuid.UUID, key: str | Permission
    ) -> bool:
        """Whether the user's current role in the org grants *key*.

        Unknown keys fail closed (logged, ``False``) unless strict mode is on,
        in which case ``InvalidKey`` is raised. Store outages raise
        ``Unavailable``; they are never reported as a denial.
        """
        try:
            permission = parse_permission(key)
        except InvalidKey:
            self.metrics.inc("unknown_permission_keys_total")
            log.warning("access.unknown_permission_key", key=str(key), org_id=str(org_id))
            if self.strict_permission_keys:
                raise
            return False

        slot = await self.get_user_slot(user_id, org_id)
        if slot is None:
            allowed = False
        else:
            role = await self.get_effective_role(org_id, slot)
            allowed = role.is_active and permission in role.permissions
        if not allowed:
            self.metrics.inc("permission_denied_total")
        return allowed

    async def require_permission(
        self, user_id: uuid.UUID, org_id: uuid.UUID, key: str | Permission
    ) -> None:
        if not await self.has_permission(user_id, org_id, key):
            name = key.value if isinstance(key, Permission) else key
            raise Forbidden(f"Missing permission {name}", key=name)

    async def is_bookable_talent(self, user_id: uuid.UUID, org_id: uuid.UUID) -> bool:
        """Listed in the internal directory and inviteable to bookings."""
        slot = await self.get_user_slot(user_id, org_id)
        if slot is None:
            return False
        role = await self.get_effective_role(org_id, slot)
        return role.is_active and {
            Permission.DIRECTORY_LISTED_INTERNAL,
            Permission.BOOKING_INVITEABLE,
        } <= role.permissions

    async def get_user_role_info(self, user_id: uuid.UUID, org_id: uuid.UUID) -> RoleInfo:
        slot = await self.get_user_slot(user_id, org_id)
        if slot is None:
            return RoleInfo()
        role = await self.get_effective_role(org_id, slot)
        return RoleInfo(slot=slot, label=role.label, is_active=role.is_active)

    async def list_active_roles(self, org_id: uuid.UUID) -> list[EffectiveRole]:
        """Active slots of the org in slot order; slot 1 is always present."""
        configured = await self.store.list_org_roles(org_id)
        active = {ADMIN_SLOT} | {slot for slot, role in configured.items() if role.is_active}
        return [await self.get_effective_role(org_id, slot) for slot in sorted(active)]

    async def describe_org_roles(self, org_id: uuid.UUID) -> list[SlotConfig]:
        """Template, overrides and effective keys for every slot."""
        templates = await self.store.list_templates()
        configured = await self.store.list_org_roles(org_id)
        slots = []
        for slot in ALL_SLOTS:
            role = await self.get_effective_role(org_id, slot)
            template = templates.get(slot)
            template_keys = known_permissions(template.permissions) if template else frozenset()
            record = configured.get(slot)
            slots.append(
                SlotConfig(
                    slot=slot,
                    label=role.label,
                    is_active=role.is_active,
                    template=sorted(p.value for p in template_keys),
                    overrides=[
                        OverrideEntry(key=key, allowed=allowed)
                        for key, allowed in (record.overrides if record else [])
                    ],
                    effective=sorted(p.value for p in role.permissions),
                )
            )
        return slots

    async def list_members(
        self,
        org_id: uuid.UUID,
        *,
        slot: Optional[int] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> MemberListResponse:
        """One page of the roster with each member's role label and active flag.

        ``page`` and ``page_size`` are clamped into range rather than rejected.
        """
        if slot is not None:
            slot = validate_slot(slot)
        page = max(1, min(MAX_PAGE, page))
        page_size = max(1, min(MAX_PAGE_SIZE, page_size))
        total, records = await self.store.list_members(
            org_id, slot=slot, page=page, page_size=page_size
        )
        roles = {
            member_slot: await self.get_effective_role(org_id, member_slot)
            for member_slot in sorted({record.slot for record in records})
        }
        items = [
            MemberListItem(
                user_id=record.user_id,
                slot=record.slot,
                label=roles[record.slot].label,
                is_active=roles[record.slot].is_active,
                assigned_at=record.assigned_at,
            )
            for record in records
        ]
        return MemberListResponse(items=items, page=page, page_size=page_size, total=total)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_org_role(
        self,
        org_id: uuid.UUID,
        slot: int,
        update: OrgRoleUpdate | dict[str, Any],
    ) -> EffectiveRole:
        """Create or update one slot's label, active flag and/or overrides."""
        slot = validate_slot(slot)
        if not isinstance(update, OrgRoleUpdate):
            try:
                update = OrgRoleUpdate.model_validate(update)
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"Invalid role update for slot {slot}", errors=exc.errors()
                ) from exc

        overrides = None
        if update.overrides is not None:
            overrides = self._clean_overrides(org_id, slot, update.overrides)

        is_active = update.is_active
        if slot == ADMIN_SLOT:
            if is_active is False:
                raise ValidationError("Role 1 cannot be deactivated")
            if overrides:
                raise ValidationError("Role 1 permissions cannot be overridden")
            is_active = True

        await self.store.upsert_org_role(
            org_id,
            slot,
            label=update.label,
            is_active=is_active,
            overrides=overrides,
        )
        await self.invalidate(org_id)
        log.info(
            "access.org_role_upserted",
            org_id=str(org_id),
            slot=slot,
            label=update.label,
            is_active=is_active,
            overrides=len(overrides) if overrides is not None else None,
        )
        return await self.get_effective_role(org_id, slot)

    def _clean_overrides(
        self, org_id: uuid.UUID, slot: int, entries: list[OverrideEntry]
    ) -> list[tuple[str, bool]]:
        cleaned = []
        for entry in entries:
            if not is_known(entry.key):
                log.warning(
                    "access.override_dropped", org_id=str(org_id), slot=slot, key=entry.key
                )
                continue
            cleaned.append((entry.key, entry.allowed))
        return dedupe_overrides(cleaned)

    async def change_slot(
        self,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        new_slot: int,
        *,
        confirm: bool = False,
    ) -> MembershipView:
        return await self.guard.change_slot(
            actor_id, target_user_id, org_id, new_slot, confirm=confirm
        )

    async def remove_membership(
        self,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        *,
        confirm: bool = False,
    ) -> None:
        await self.guard.remove_membership(actor_id, target_user_id, org_id, confirm=confirm)

    async def purge_organization(self, org_id: uuid.UUID) -> int:
        """Drop all access state of a deleted organization."""
        removed = await self.store.purge_organization(org_id)
        await self.invalidate(org_id)
        log.info("access.organization_purged", org_id=str(org_id), rows=removed)
        return removed

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def invalidate(self, org_id: Optional[uuid.UUID] = None) -> None:
        """Expire cached state locally, then tell the other processes."""
        self.cache.invalidate(org_id)
        try:
            await self.notifier.publish(org_id)
        except redis.exceptions.RedisError as exc:
            # Other workers fall back to TTL expiry.
            self.metrics.inc("invalidation_broadcast_failures_total")
            log.warning(
                "access.invalidation_broadcast_failed",
                org_id=str(org_id) if org_id else None,
                error=repr(exc),
            )

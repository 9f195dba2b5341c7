"""
Membership Mutation Guard.

The only place that decides whether a slot change or a removal may be
committed. Checks run in a fixed order inside a per-organization
transaction; the first failing check raises and nothing is written.

    1. new slot in range                       InvalidSlot
    2. actor holds settings:manage             Forbidden
    3. target is a member                      MembershipNotFound
    4. only slot 1 may touch a slot-1 member   Forbidden
    5. only slot 1 may grant slot 1            Forbidden
    6. destination role is active              RoleInactive
    7. self-demotion needs confirm=True        ConfirmationRequired
    8. never leave zero managers               LastManager

Managers are counted per person; each distinct slot in the roster is
resolved once.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from slotguard.core.errors import (
    ConfirmationRequired,
    Forbidden,
    GuardError,
    LastManager,
    MembershipNotFound,
    RoleInactive,
)
from slotguard.schemas.memberships import MembershipView
from slotguard.schemas.roles import EffectiveRole

from .catalog import ADMIN_SLOT, MANAGER_PERMISSION, validate_slot

if TYPE_CHECKING:
    from .engine import AccessEngine

log = structlog.get_logger()


class MutationKind(str, Enum):
    CHANGE_SLOT = "change_slot"
    REMOVE = "remove"


class MembershipGuard:
    def __init__(self, engine: AccessEngine):
        self._engine = engine

    async def change_slot(
        self,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        new_slot: int,
        *,
        confirm: bool = False,
    ) -> MembershipView:
        destination = await self._apply(
            MutationKind.CHANGE_SLOT, actor_id, target_user_id, org_id, new_slot, confirm
        )
        return MembershipView(
            user_id=target_user_id,
            org_id=org_id,
            slot=destination.slot,
            label=destination.label,
            is_active=destination.is_active,
        )

    async def remove_membership(
        self,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        *,
        confirm: bool = False,
    ) -> None:
        await self._apply(MutationKind.REMOVE, actor_id, target_user_id, org_id, None, confirm)

    async def _apply(
        self,
        kind: MutationKind,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        new_slot: Optional[int],
        confirm: bool,
    ) -> EffectiveRole:
        """Check and commit one mutation.

        Returns the destination role of a slot change, or the role a removed
        member held.
        """
        if kind is MutationKind.CHANGE_SLOT:
            new_slot = validate_slot(new_slot)

        try:
            async with self._engine.store.transaction(org_id) as tx:
                role = await self._check(
                    kind, tx, actor_id, target_user_id, org_id, new_slot, confirm
                )
                if kind is MutationKind.CHANGE_SLOT:
                    await tx.set_slot(target_user_id, new_slot)
                else:
                    await tx.delete(target_user_id)
        except GuardError as exc:
            self._engine.metrics.inc("guard_rejections_total", code=exc.code)
            log.info(
                "guard.rejected",
                operation=kind.value,
                code=exc.code,
                reason=exc.message,
                org_id=str(org_id),
                actor_id=str(actor_id),
                target_user_id=str(target_user_id),
            )
            raise

        await self._engine.invalidate(org_id)
        self._engine.metrics.inc("guard_commits_total", operation=kind.value)
        log.info(
            "guard.committed",
            operation=kind.value,
            org_id=str(org_id),
            actor_id=str(actor_id),
            target_user_id=str(target_user_id),
            new_slot=new_slot,
            role=role.label,
        )
        return role

    async def _check(
        self,
        kind: MutationKind,
        tx,
        actor_id: uuid.UUID,
        target_user_id: uuid.UUID,
        org_id: uuid.UUID,
        new_slot: Optional[int],
        confirm: bool,
    ) -> EffectiveRole:
        engine = self._engine

        actor_slot = await tx.get_slot(actor_id)
        if actor_slot is None or not (
            await engine.get_effective_role(org_id, actor_slot)
        ).has(MANAGER_PERMISSION):
            raise Forbidden("Managing members requires settings:manage")

        target_slot = await tx.get_slot(target_user_id)
        if target_slot is None:
            raise MembershipNotFound("Membership not found")

        actor_is_admin = actor_slot == ADMIN_SLOT
        if target_slot == ADMIN_SLOT and not actor_is_admin:
            raise Forbidden("Only an administrator can change or remove a Role 1 member")

        destination: Optional[EffectiveRole] = None
        if kind is MutationKind.CHANGE_SLOT:
            if new_slot == ADMIN_SLOT and not actor_is_admin:
                raise Forbidden("Only an administrator can assign Role 1")
            destination = await engine.get_effective_role(org_id, new_slot)
            if not destination.is_active:
                raise RoleInactive("Destination role is inactive")

        roster = await tx.roster()
        roles = {
            slot: await engine.get_effective_role(org_id, slot)
            for slot in sorted({slot for _, slot in roster})
        }
        is_manager_now = roles[target_slot].has(MANAGER_PERMISSION)
        is_manager_after = destination is not None and destination.has(MANAGER_PERMISSION)

        if is_manager_now and not is_manager_after:
            if actor_id == target_user_id and not confirm:
                raise ConfirmationRequired(
                    "Giving up your own settings:manage requires confirm=true"
                )
            managers = sum(1 for _, slot in roster if roles[slot].has(MANAGER_PERMISSION))
            if managers <= 1:
                raise LastManager("Cannot leave the organization without a member holding settings:manage")

        if destination is None:
            return roles[target_slot]
        return destination

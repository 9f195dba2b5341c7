"""Effective role resolution: template ⊕ org overrides, gated by the active flag."""

from __future__ import annotations

import asyncio
import uuid

import structlog

from slotguard.schemas.roles import EffectiveRole

from .catalog import ADMIN_SLOT, FULL_CATALOG, default_label, validate_slot
from .merge import merge_permissions
from .store import AccessStore

log = structlog.get_logger()


class RoleResolver:
    """Computes ``EffectiveRole`` values straight from the store (uncached)."""

    def __init__(self, store: AccessStore):
        self._store = store

    async def resolve(self, org_id: uuid.UUID, slot: int) -> EffectiveRole:
        slot = validate_slot(slot)

        if slot == ADMIN_SLOT:
            # The administrator slot is not configurable beyond its label.
            org_role = await self._store.get_org_role(org_id, slot)
            return EffectiveRole(
                slot=slot,
                label=org_role.label if org_role else default_label(slot),
                is_active=True,
                permissions=FULL_CATALOG,
            )

        template, org_role = await asyncio.gather(
            self._store.get_template(slot),
            self._store.get_org_role(org_id, slot),
        )
        if template is None:
            log.debug("access.template_missing", slot=slot)
        if org_role is None:
            return EffectiveRole(slot=slot, label=default_label(slot), is_active=False)
        if not org_role.is_active:
            return EffectiveRole(slot=slot, label=org_role.label, is_active=False)

        permissions = merge_permissions(
            template.permissions if template else (),
            org_role.overrides,
        )
        return EffectiveRole(
            slot=slot,
            label=org_role.label,
            is_active=True,
            permissions=permissions,
        )

"""
Role configuration API endpoints.

GET    /api/v1/orgs/{orgId}/roles          Template, overrides and effective keys per slot
PATCH  /api/v1/orgs/{orgId}/roles          Update labels, active flags and overrides
GET    /api/v1/orgs/{orgId}/roles/active   Active roles (for slot pickers)
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends

from slotguard.access.catalog import Permission, validate_slot
from slotguard.access.engine import AccessEngine
from slotguard.core.auth import Caller, get_engine, require_member, require_permission
from slotguard.schemas.roles import (
    RoleConfigResponse,
    RoleListResponse,
    RolesPatchRequest,
)

log = structlog.get_logger()

router = APIRouter()


@router.get("", response_model=RoleConfigResponse, tags=["Roles"])
async def get_role_config(
    orgId: uuid.UUID,
    caller: Caller = Depends(require_permission(Permission.ROLES_MANAGE)),
    engine: AccessEngine = Depends(get_engine),
):
    """Full role configuration of the org (requires roles:manage)."""
    slots = await engine.describe_org_roles(orgId)
    return RoleConfigResponse(org_id=str(orgId), slots=slots)


@router.patch("", response_model=RoleConfigResponse, tags=["Roles"])
async def update_roles(
    orgId: uuid.UUID,
    body: RolesPatchRequest,
    caller: Caller = Depends(require_permission(Permission.ROLES_MANAGE)),
    engine: AccessEngine = Depends(get_engine),
):
    """Apply per-slot updates. All slot numbers are checked before anything is written."""
    for slot in body.updates:
        validate_slot(slot)
    for slot, update in sorted(body.updates.items()):
        await engine.upsert_org_role(orgId, slot, update)
    log.info(
        "roles.updated",
        org_id=str(orgId),
        actor_id=str(caller.user_id),
        slots=sorted(body.updates),
    )
    slots = await engine.describe_org_roles(orgId)
    return RoleConfigResponse(org_id=str(orgId), slots=slots)


@router.get("/active", response_model=RoleListResponse, tags=["Roles"])
async def list_active_roles(
    orgId: uuid.UUID,
    caller: Caller = Depends(require_member),
    engine: AccessEngine = Depends(get_engine),
):
    """Active roles of the org in slot order."""
    return RoleListResponse(data=await engine.list_active_roles(orgId))

"""
Caller access API endpoints.

GET    /api/v1/orgs/{orgId}/me                  The caller's role in the org
GET    /api/v1/orgs/{orgId}/permissions/{key}   Does the caller hold a permission?
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from slotguard.access.engine import AccessEngine
from slotguard.core.auth import Caller, get_caller, get_engine
from slotguard.schemas.memberships import CallerAccessResponse, PermissionCheckResponse

router = APIRouter()


@router.get("/me", response_model=CallerAccessResponse, tags=["Access"])
async def get_my_access(
    caller: Caller = Depends(get_caller),
    engine: AccessEngine = Depends(get_engine),
):
    """Slot, label and effective permissions of the caller. Non-members get nulls."""
    info = await engine.get_user_role_info(caller.user_id, caller.org_id)
    response = CallerAccessResponse(user_id=caller.user_id, org_id=caller.org_id)
    if info.slot is None:
        return response

    role = await engine.get_effective_role(caller.org_id, info.slot)
    response.slot = info.slot
    response.label = info.label
    response.is_active = info.is_active
    response.bookable_talent = await engine.is_bookable_talent(caller.user_id, caller.org_id)
    response.permissions = sorted(p.value for p in role.permissions)
    return response


@router.get("/permissions/{key}", response_model=PermissionCheckResponse, tags=["Access"])
async def check_permission(
    key: str,
    caller: Caller = Depends(get_caller),
    engine: AccessEngine = Depends(get_engine),
):
    allowed = await engine.has_permission(caller.user_id, caller.org_id, key)
    return PermissionCheckResponse(key=key, allowed=allowed)

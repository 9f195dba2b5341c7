"""
Membership API endpoints.

GET    /api/v1/orgs/{orgId}/members            Roster with role labels (paged)
PATCH  /api/v1/orgs/{orgId}/members/{userId}   Move a member to another slot
DELETE /api/v1/orgs/{orgId}/members/{userId}   Remove a member
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from slotguard.access.catalog import Permission
from slotguard.access.engine import DEFAULT_PAGE_SIZE, AccessEngine
from slotguard.core.auth import Caller, get_caller, get_engine, require_permission
from slotguard.schemas.memberships import (
    MemberListResponse,
    MembershipView,
    SlotChangeRequest,
)

router = APIRouter()


@router.get("", response_model=MemberListResponse, tags=["Members"])
async def list_members(
    orgId: uuid.UUID,
    slot: Optional[int] = None,
    page: int = 1,
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
    caller: Caller = Depends(require_permission(Permission.SETTINGS_MANAGE)),
    engine: AccessEngine = Depends(get_engine),
):
    """List members with their slot, role label and active flag (requires settings:manage)."""
    return await engine.list_members(orgId, slot=slot, page=page, page_size=page_size)


@router.patch("/{userId}", response_model=MembershipView, tags=["Members"])
async def change_member_slot(
    orgId: uuid.UUID,
    userId: uuid.UUID,
    body: SlotChangeRequest,
    caller: Caller = Depends(get_caller),
    engine: AccessEngine = Depends(get_engine),
):
    """Change a member's slot. Send ``confirm: true`` to give up your own settings access."""
    return await engine.change_slot(
        caller.user_id, userId, orgId, body.slot, confirm=body.confirm
    )


@router.delete("/{userId}", status_code=204, tags=["Members"])
async def remove_member(
    orgId: uuid.UUID,
    userId: uuid.UUID,
    confirm: bool = False,
    caller: Caller = Depends(get_caller),
    engine: AccessEngine = Depends(get_engine),
):
    """Remove a member from the org."""
    await engine.remove_membership(caller.user_id, userId, orgId, confirm=confirm)
    return Response(status_code=204)

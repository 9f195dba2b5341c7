"""Membership mutation schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SlotChangeRequest(BaseModel):
    """Move a member to another slot."""
    slot: int
    confirm: bool = False


class MembershipView(BaseModel):
    """A membership together with the display state of its role."""
    user_id: uuid.UUID
    org_id: uuid.UUID
    slot: int
    label: str
    is_active: bool


class CallerAccessResponse(BaseModel):
    """What the calling user is in an org."""
    user_id: uuid.UUID
    org_id: uuid.UUID
    slot: Optional[int] = None
    label: Optional[str] = None
    is_active: bool = False
    bookable_talent: bool = False
    permissions: list[str] = []


class PermissionCheckResponse(BaseModel):
    key: str
    allowed: bool


class MemberListItem(BaseModel):
    """One row of the org roster."""
    user_id: uuid.UUID
    slot: int
    label: str
    is_active: bool
    assigned_at: datetime


class MemberListResponse(BaseModel):
    items: list[MemberListItem]
    page: int
    page_size: int
    total: int

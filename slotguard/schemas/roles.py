"""Role-related schemas: effective roles, role configuration writes and views."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from slotguard.access.catalog import Permission, parse_permission


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

class EffectiveRole(BaseModel):
    """Merged, active-gated permissions of one (organization, slot) pair."""

    model_config = ConfigDict(frozen=True)

    slot: int
    label: str
    is_active: bool
    permissions: frozenset[Permission] = frozenset()

    def has(self, key: str | Permission) -> bool:
        return parse_permission(key) in self.permissions

    @field_serializer("permissions")
    def _sorted_keys(self, permissions: frozenset[Permission]) -> list[str]:
        return sorted(p.value for p in permissions)


class RoleInfo(BaseModel):
    """A user's role display in an org; all fields null for non-members."""

    slot: Optional[int] = None
    label: Optional[str] = None
    is_active: bool = False


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class OverrideEntry(BaseModel):
    key: str = Field(min_length=1, max_length=120)
    allowed: bool


class OrgRoleUpdate(BaseModel):
    """Partial update of one slot's configuration. ``None`` leaves a field as is."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    label: Optional[str] = Field(default=None, min_length=1, max_length=80)
    is_active: Optional[bool] = None
    # Replaces the stored overrides wholesale when given
    overrides: Optional[list[OverrideEntry]] = None


class RolesPatchRequest(BaseModel):
    """Body of PATCH /roles: updates keyed by slot number."""

    updates: dict[int, OrgRoleUpdate] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

class SlotConfig(BaseModel):
    """Everything the role-management screen shows for one slot."""

    slot: int
    label: str
    is_active: bool
    template: list[str]
    overrides: list[OverrideEntry]
    effective: list[str]


class RoleListResponse(BaseModel):
    data: list[EffectiveRole]


class RoleConfigResponse(BaseModel):
    org_id: str
    permission_keys: list[str] = Field(default_factory=lambda: [p.value for p in Permission])
    slots: list[SlotConfig]

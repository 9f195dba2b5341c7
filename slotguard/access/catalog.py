"""
Permission catalog and slot numbering.

The catalog is closed: every key the engine stores or grants must be a
member of ``Permission``. Anything else is rejected at construction time
(``parse_permission``) or dropped (``known_permissions``).
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from slotguard.core.errors import InvalidKey, InvalidSlot

MIN_SLOT = 1
MAX_SLOT = 10
ADMIN_SLOT = 1
ALL_SLOTS: tuple[int, ...] = tuple(range(MIN_SLOT, MAX_SLOT + 1))


class Permission(str, Enum):
    # Bookings & participants
    BOOKING_VIEW = "booking:view"
    BOOKING_CREATE = "booking:create"
    BOOKING_UPDATE = "booking:update"
    BOOKING_DELETE = "booking:delete"

    PARTICIPANT_VIEW = "participant:view"
    PARTICIPANT_ADD = "participant:add"
    PARTICIPANT_INVITE = "participant:invite"
    PARTICIPANT_REMOVE = "participant:remove"

    # Directory / bookable talent
    DIRECTORY_LISTED_INTERNAL = "directory:listed_internal"
    BOOKING_INVITEABLE = "booking:inviteable"

    # Notes
    NOTES_READ = "notes:read"
    NOTES_WRITE = "notes:write"

    # Admin & settings
    ROLES_MANAGE = "roles:manage"
    SETTINGS_MANAGE = "settings:manage"
    STAFF_CREATE = "staff:create"
    STAFF_DELETE = "staff:delete"
    BILLING_MANAGE = "billing:manage"

    # Lists
    FAVORITES_MANAGE = "favorites:manage"


PERMISSION_KEYS: frozenset[str] = frozenset(p.value for p in Permission)
FULL_CATALOG: frozenset[Permission] = frozenset(Permission)

# Holding this permission makes a member a "manager" for the last-manager guard.
MANAGER_PERMISSION = Permission.SETTINGS_MANAGE


def parse_permission(key: str | Permission) -> Permission:
    """Return the catalog entry for *key*, raising ``InvalidKey`` otherwise."""
    if isinstance(key, Permission):
        return key
    try:
        return Permission(key)
    except ValueError:
        raise InvalidKey(f"Unknown permission key: {key!r}", key=key) from None


def is_known(key: str) -> bool:
    return key in PERMISSION_KEYS


def known_permissions(keys: Iterable[str]) -> frozenset[Permission]:
    """Keep only catalog keys; unknown ones are dropped, never granted."""
    return frozenset(Permission(k) for k in keys if k in PERMISSION_KEYS)


def is_valid_slot(slot: object) -> bool:
    # bool is an int subclass; True must not pass as slot 1
    return isinstance(slot, int) and not isinstance(slot, bool) and MIN_SLOT <= slot <= MAX_SLOT


def validate_slot(slot: object) -> int:
    if not is_valid_slot(slot):
        raise InvalidSlot(
            f"slot must be an integer between {MIN_SLOT} and {MAX_SLOT}", slot=slot
        )
    return slot  # type: ignore[return-value]


def default_label(slot: int) -> str:
    return f"Role {slot}"

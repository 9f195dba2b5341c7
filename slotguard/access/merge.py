"""
Deny-aware permission merge.

Pure functions, no I/O:

    effective = (template ∪ allowed) \\ denied

restricted to the catalog, where an override for a key always beats the
template and the last override for a key beats earlier ones.
"""

from __future__ import annotations

from collections.abc import Iterable

from .catalog import PERMISSION_KEYS, Permission

Override = tuple[str, bool]


def _key(key: str | Permission) -> str:
    return key.value if isinstance(key, Permission) else key


def dedupe_overrides(overrides: Iterable[Override]) -> list[Override]:
    """Collapse overrides to one per key; the last occurrence wins.

    Keys keep the position of their first occurrence so the result is
    stable for the write path.
    """
    latest: dict[str, bool] = {}
    for key, allowed in overrides:
        latest[key] = bool(allowed)
    return list(latest.items())


def merge_permissions(
    template: Iterable[str],
    overrides: Iterable[Override],
) -> frozenset[Permission]:
    """Apply *overrides* on top of *template* and return the effective set."""
    effective = {_key(k) for k in template} & PERMISSION_KEYS
    for key, allowed in dedupe_overrides((_key(k), a) for k, a in overrides):
        if key not in PERMISSION_KEYS:
            continue
        if allowed:
            effective.add(key)
        else:
            effective.discard(key)
    return frozenset(Permission(k) for k in effective)

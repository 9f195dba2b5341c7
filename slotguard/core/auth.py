"""
Caller identity and authorization dependencies.

Authentication happens upstream: the gateway in front of this service
verifies the session and forwards the user id in the ``X-User-Id`` header.
Everything below only decides what that user may do in the org named by the
``orgId`` path parameter.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from slotguard.access.catalog import Permission
from slotguard.access.engine import AccessEngine
from slotguard.core.errors import Forbidden


class Caller:
    """The authenticated user, scoped to one organization."""

    def __init__(self, user_id: uuid.UUID, org_id: uuid.UUID, slot: Optional[int] = None):
        self.user_id = user_id
        self.org_id = org_id
        self.slot = slot


def get_engine(request: Request) -> AccessEngine:
    return request.app.state.engine


async def get_caller(
    orgId: uuid.UUID,
    x_user_id: Optional[str] = Header(None),
) -> Caller:
    """Identity dependency. Rejects requests the gateway did not stamp."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        user_id = uuid.UUID(x_user_id.strip())
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return Caller(user_id=user_id, org_id=orgId)


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------

async def require_member(
    caller: Caller = Depends(get_caller),
    engine: AccessEngine = Depends(get_engine),
) -> Caller:
    """Any member of the org, whatever their slot."""
    caller.slot = await engine.get_user_slot(caller.user_id, caller.org_id)
    if caller.slot is None:
        raise Forbidden("Not a member of this organization")
    return caller


def require_permission(key: Permission):
    """Dependency factory: the caller must hold *key* in the org."""

    async def dependency(
        caller: Caller = Depends(get_caller),
        engine: AccessEngine = Depends(get_engine),
    ) -> Caller:
        await engine.require_permission(caller.user_id, caller.org_id, key)
        return caller

    return dependency

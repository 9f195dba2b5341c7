"""
API v1 Router

All endpoints are org-scoped and prefixed with /orgs/{orgId}.
"""

from fastapi import APIRouter

from . import access, members, roles

router = APIRouter()

router.include_router(roles.router, prefix="/orgs/{orgId}/roles", tags=["Roles"])
router.include_router(members.router, prefix="/orgs/{orgId}/members", tags=["Members"])
router.include_router(access.router, prefix="/orgs/{orgId}", tags=["Access"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "endpoints": [
            "/orgs/{orgId}/roles",
            "/orgs/{orgId}/roles/active",
            "/orgs/{orgId}/members",
            "/orgs/{orgId}/members/{userId}",
            "/orgs/{orgId}/me",
            "/orgs/{orgId}/permissions/{key}",
        ],
    }

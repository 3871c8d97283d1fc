# backend/storedesk/api/deps/tenant.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import Unauthenticated
from storedesk.core.roles import MembershipRole
from storedesk.core.security import bearer_scheme
from storedesk.core.tenant_rbac import ensure_role
from storedesk.db.session import get_db
from storedesk.models.membership import Membership
from storedesk.services.sessions import verify_session

ALLOWED_TENANT_ROLES = {r.value for r in MembershipRole}


async def get_current_membership(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Membership:
    """
    Resolve the bearer token to the caller's membership.
    The organization scope of every handler comes from here, never from the request body.
    """
    if creds is None or not creds.credentials:
        raise Unauthenticated("No token, authorization denied", kind="MISSING_TOKEN")
    return await verify_session(db, creds.credentials)


def require_tenant_roles(*allowed_roles: str):
    """
    Enforce membership.role is in allowed_roles (owner/manager/customer).
    """
    allowed = {r.strip().lower() for r in allowed_roles}
    unknown = allowed - ALLOWED_TENANT_ROLES
    if unknown:
        raise ValueError(
            f"Unknown tenant role(s): {sorted(unknown)}. Allowed: {sorted(ALLOWED_TENANT_ROLES)}"
        )

    async def _checker(
        membership: Membership = Depends(get_current_membership),
    ) -> Membership:
        ensure_role(membership.role, allowed)
        return membership

    return _checker

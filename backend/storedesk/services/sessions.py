# storedesk/services/sessions.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import Forbidden, Unauthenticated
from storedesk.core.roles import MembershipStatus
from storedesk.core.security import create_session_token, decode_session_token
from storedesk.crud import membership as membership_crud
from storedesk.models.membership import Membership

log = structlog.get_logger()


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime


def issue_session(membership: Membership) -> IssuedSession:
    """Sign a session bound to one membership (subject, organization, role)."""
    if membership.status is not MembershipStatus.ACTIVE:
        raise Forbidden("Only active memberships can sign in", kind="MEMBERSHIP_NOT_ACTIVE")
    if not (membership.external_id or "").strip():
        raise Forbidden("Membership has no external identity", kind="MISSING_EXTERNAL_ID")

    token, expires_at = create_session_token(
        external_id=membership.external_id,
        email=membership.email,
        role=membership.role.value,
        organization_id=membership.organization_id,
    )
    return IssuedSession(token=token, expires_at=expires_at)


async def verify_session(db: AsyncSession, token: str) -> Membership:
    """
    Resolve a bearer token to the Membership it was issued for.

    Role and organization always come from the row, not from the token.
    Status is not re-checked here; a deactivated member keeps working until
    the token expires. Removed members fail because their row is gone.
    """
    claims = decode_session_token(token)

    try:
        if claims.organization_id:
            membership = await membership_crud.find_by_external_id_org(db, claims.sub, claims.organization_id)
        else:
            matches = await membership_crud.find_by_external_id(db, claims.sub)
            membership = matches[0] if matches else None

        if membership is None:
            # Diagnostics only; an email match never authenticates
            by_email = []
            if claims.email:
                by_email = await membership_crud.find_all_by_email(db, claims.email)
            log.warning(
                "session.subject_mismatch",
                sub=claims.sub,
                organization_id=claims.organization_id,
                email_matches=[m.external_id for m in by_email],
            )
    except SQLAlchemyError:
        log.exception("session.lookup_failed", sub=claims.sub)
        raise Unauthenticated("Authentication failed", kind="AUTH_LOOKUP_FAILED")

    if membership is None:
        raise Unauthenticated("User not found for this session", kind="USER_NOT_FOUND")
    return membership

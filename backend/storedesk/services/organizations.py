# storedesk/services/organizations.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.config import settings
from storedesk.core.errors import ConflictError, NotFound, ValidationError
from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.core.security import generate_organization_id
from storedesk.crud import membership as membership_crud
from storedesk.crud import organization as organization_crud
from storedesk.models.membership import Membership
from storedesk.models.organization import Organization
from storedesk.services.identity import seed_placeholder_members
from storedesk.services.sessions import IssuedSession, issue_session

log = structlog.get_logger()


@dataclass(frozen=True)
class CreatedOrganization:
    organization: Organization
    membership: Membership
    session: IssuedSession


async def create_organization(
    db: AsyncSession,
    name: str,
    acting: Membership,
    organization_id: Optional[str] = None,
) -> CreatedOrganization:
    """New store owned by the caller, under the caller's own identity."""
    clean_name = " ".join((name or "").split())
    if not clean_name:
        raise ValidationError("Organization name is required", kind="MISSING_NAME")

    org_id = (organization_id or "").strip() or generate_organization_id()
    if await organization_crud.get_organization(db, org_id) is not None:
        raise ConflictError("Organization already exists", kind="ORGANIZATION_EXISTS")

    org, _ = await organization_crud.upsert_organization(db, org_id, clean_name)
    if settings.SEED_PLACEHOLDER_MEMBERS:
        await seed_placeholder_members(db, org)

    owner = Membership(
        external_id=acting.external_id,
        email=acting.email,
        organization_id=org.id,
        role=MembershipRole.OWNER,
        status=MembershipStatus.ACTIVE,
        first_name=acting.first_name,
        last_name=acting.last_name,
        last_login=datetime.now(timezone.utc),
    )
    await membership_crud.insert(db, owner)

    log.info("organization.created", organization_id=org.id, name=org.name, owner_membership_id=str(owner.id))
    return CreatedOrganization(organization=org, membership=owner, session=issue_session(owner))


async def get_current_organization(db: AsyncSession, membership: Membership) -> Organization:
    org = await organization_crud.get_organization(db, membership.organization_id)
    if org is None:
        raise NotFound("Organization not found", kind="ORGANIZATION_NOT_FOUND")
    return org

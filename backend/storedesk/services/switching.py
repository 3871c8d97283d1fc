# storedesk/services/switching.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import NotAMember, NotFound
from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.crud import membership as membership_crud
from storedesk.crud import organization as organization_crud
from storedesk.models.membership import Membership
from storedesk.models.organization import Organization
from storedesk.services.sessions import IssuedSession, issue_session

log = structlog.get_logger()


@dataclass(frozen=True)
class OrganizationChoice:
    organization_id: str
    name: str
    role: MembershipRole
    status: MembershipStatus
    is_current: bool


@dataclass(frozen=True)
class SwitchResult:
    membership: Membership
    organization: Organization
    session: IssuedSession


async def list_my_organizations(db: AsyncSession, current: Membership) -> list[OrganizationChoice]:
    """Every organization the caller's email belongs to; current first, then by name."""
    memberships = await membership_crud.find_all_by_email(db, current.email)
    orgs = await organization_crud.list_organizations(db, [m.organization_id for m in memberships])

    choices = []
    for m in memberships:
        org = orgs.get(m.organization_id)
        choices.append(
            OrganizationChoice(
                organization_id=m.organization_id,
                name=org.name if org else m.organization_id,
                role=m.role,
                status=m.status,
                is_current=m.organization_id == current.organization_id,
            )
        )
    choices.sort(key=lambda c: (not c.is_current, c.name.lower(), c.organization_id))
    return choices


async def switch_organization(db: AsyncSession, current: Membership, organization_id: Optional[str]) -> SwitchResult:
    target_id = (organization_id or "").strip()
    if not target_id:
        raise NotFound("Organization not found", kind="ORGANIZATION_NOT_FOUND")

    org = await organization_crud.get_organization(db, target_id)
    if org is None:
        raise NotFound("Organization not found", kind="ORGANIZATION_NOT_FOUND")

    membership = await membership_crud.find_by_external_id_org(db, current.external_id, org.id)
    if membership is None or membership.status is not MembershipStatus.ACTIVE:
        by_email = await membership_crud.find_by_email_org(
            db, current.email, org.id, status=MembershipStatus.ACTIVE
        )
        if by_email is not None:
            if by_email.external_id != current.external_id:
                log.info(
                    "switch.relinked",
                    membership_id=str(by_email.id),
                    organization_id=org.id,
                    previous_external_id=by_email.external_id,
                )
                by_email.external_id = current.external_id
            membership = by_email
        else:
            membership = None

    if membership is None:
        log.warning("switch.denied", organization_id=org.id, membership_id=str(current.id))
        raise NotAMember("You do not have access to this organization")

    membership.last_login = datetime.now(timezone.utc)
    await membership_crud.save(db, membership)

    session = issue_session(membership)
    log.info(
        "switch.completed",
        from_organization_id=current.organization_id,
        to_organization_id=org.id,
        membership_id=str(membership.id),
    )
    return SwitchResult(membership=membership, organization=org, session=session)

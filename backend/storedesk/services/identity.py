# storedesk/services/identity.py
"""
Identity reconciler.

Maps one verified external login (email + provider subject id + organization)
onto exactly one Membership row for that organization. Lookup order:

  1. (externalId, org)        returning user
  2. pending (email, org)     invitation redeemed, real id adopted
  3. any (email, org)         relink, newest external id wins
  4. nothing                  new membership

Inactive rows found in 1 or 3 are reactivated. Local placeholder ids
(pending-, team-) are refused as login subjects.

The attempt runs in the caller's transaction. A concurrent identical login
shows up as DuplicateMembership on write; the transaction is rolled back and
the whole lookup is replayed once. The session must carry no other pending
work when this is called.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.config import settings
from storedesk.core.errors import ConflictError, ValidationError
from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.core.security import (
    PLACEHOLDER_ID_PREFIX,
    generate_placeholder_external_id,
    is_placeholder_external_id,
)
from storedesk.crud import membership as membership_crud
from storedesk.crud import organization as organization_crud
from storedesk.models.membership import Membership
from storedesk.models.organization import Organization

log = structlog.get_logger()

MAX_ATTEMPTS = 2

# Scaffolding rows shown in an empty team page; inactive and never counted
PLACEHOLDER_SEED = (
    ("manager", MembershipRole.MANAGER, "Sample", "Manager"),
    ("customer", MembershipRole.CUSTOMER, "Sample", "Customer"),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExternalIdentity:
    external_id: str
    email: str
    organization_id: str
    organization_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def normalize_identity(identity: ExternalIdentity) -> ExternalIdentity:
    external_id = (identity.external_id or "").strip()
    email = Membership.normalize_email(identity.email)
    organization_id = (identity.organization_id or "").strip()

    if not external_id:
        raise ValidationError("externalId is required", kind="MISSING_EXTERNAL_ID")
    if is_placeholder_external_id(external_id):
        raise ValidationError("externalId is reserved for local placeholders", kind="INVALID_EXTERNAL_ID")
    if not organization_id:
        raise ValidationError("organizationId is required", kind="MISSING_ORGANIZATION")
    if not Membership.is_valid_email(email):
        raise ValidationError("Invalid email format", kind="INVALID_EMAIL")

    return ExternalIdentity(
        external_id=external_id,
        email=email,
        organization_id=organization_id,
        organization_name=identity.organization_name,
        first_name=Membership.normalize_name(identity.first_name),
        last_name=Membership.normalize_name(identity.last_name),
    )


def _refresh_profile(membership: Membership, identity: ExternalIdentity) -> None:
    if identity.first_name:
        membership.first_name = identity.first_name
    if identity.last_name:
        membership.last_name = identity.last_name
    membership.last_login = _utcnow()


def _reactivate(membership: Membership) -> bool:
    if membership.status is not MembershipStatus.INACTIVE:
        return False
    membership.status = MembershipStatus.ACTIVE
    return True


async def seed_placeholder_members(db: AsyncSession, organization: Organization) -> list[Membership]:
    seeded = []
    for slug, role, first_name, last_name in PLACEHOLDER_SEED:
        m = Membership(
            external_id=generate_placeholder_external_id(PLACEHOLDER_ID_PREFIX),
            email=f"{slug}@{organization.id}.placeholder.invalid",
            organization_id=organization.id,
            role=role,
            status=MembershipStatus.INACTIVE,
            is_placeholder=True,
            first_name=first_name,
            last_name=last_name,
        )
        seeded.append(await membership_crud.insert(db, m))
    log.info("organization.placeholders_seeded", organization_id=organization.id, count=len(seeded))
    return seeded


async def _reconcile_once(db: AsyncSession, identity: ExternalIdentity) -> Membership:
    org, created = await organization_crud.upsert_organization(
        db, identity.organization_id, identity.organization_name
    )
    if created:
        log.info("organization.created", organization_id=org.id, name=org.name)
        if settings.SEED_PLACEHOLDER_MEMBERS:
            await seed_placeholder_members(db, org)

    # 1) returning user
    membership = await membership_crud.find_by_external_id_org(db, identity.external_id, org.id)
    if membership is not None:
        reactivated = _reactivate(membership)
        _refresh_profile(membership, identity)
        await membership_crud.save(db, membership)
        log.info(
            "identity.returning",
            membership_id=str(membership.id),
            organization_id=org.id,
            reactivated=reactivated,
        )
        return membership

    # 2) pending invitation for this email
    membership = await membership_crud.find_by_email_org(
        db, identity.email, org.id, status=MembershipStatus.PENDING
    )
    if membership is not None:
        membership.external_id = identity.external_id
        membership.status = MembershipStatus.ACTIVE
        _refresh_profile(membership, identity)
        await membership_crud.save(db, membership)
        log.info(
            "identity.invitation_redeemed",
            membership_id=str(membership.id),
            organization_id=org.id,
            role=membership.role.value,
        )
        return membership

    # 3) same person, new subject id
    membership = await membership_crud.find_by_email_org(db, identity.email, org.id)
    if membership is not None:
        reactivated = _reactivate(membership)
        previous = membership.external_id
        membership.external_id = identity.external_id
        _refresh_profile(membership, identity)
        await membership_crud.save(db, membership)
        log.info(
            "identity.relinked",
            membership_id=str(membership.id),
            organization_id=org.id,
            previous_external_id=previous,
            was_local_placeholder=is_placeholder_external_id(previous),
            reactivated=reactivated,
        )
        return membership

    # 4) brand new member; a store with no owner gets one
    role = MembershipRole.CUSTOMER
    if not await membership_crud.has_owner(db, org.id):
        role = MembershipRole.OWNER

    membership = Membership(
        external_id=identity.external_id,
        email=identity.email,
        organization_id=org.id,
        role=role,
        status=MembershipStatus.ACTIVE,
        first_name=identity.first_name,
        last_name=identity.last_name,
        last_login=_utcnow(),
    )
    await membership_crud.insert(db, membership)
    log.info("identity.created", membership_id=str(membership.id), organization_id=org.id, role=role.value)
    return membership


async def reconcile_login(db: AsyncSession, identity: ExternalIdentity) -> Membership:
    """Resolve a verified login to its Membership. The caller commits."""
    identity = normalize_identity(identity)

    attempt = 1
    while True:
        try:
            return await _reconcile_once(db, identity)
        except ConflictError as exc:
            await db.rollback()
            log.warning(
                "identity.write_conflict",
                attempt=attempt,
                organization_id=identity.organization_id,
                error=exc.kind,
            )
            if attempt >= MAX_ATTEMPTS:
                raise ConflictError(
                    "Could not resolve membership after a concurrent update; please retry",
                    kind="RECONCILE_CONFLICT",
                ) from exc
            attempt += 1

# storedesk/crud/membership.py
"""
Membership store.

Every write goes through insert()/save() so that a storage-level unique
violation on (email, organization_id) or (external_id, organization_id)
surfaces as DuplicateMembership. After that error the session transaction
is unusable and must be rolled back by the caller.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import DuplicateMembership
from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.models.membership import Membership


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return "unique" in text or "duplicate" in text


async def _flush_or_duplicate(db: AsyncSession, membership: Membership) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        if not _is_unique_violation(exc):
            raise
        raise DuplicateMembership(
            "A membership with this email or external id already exists in the organization",
            extra={"organization_id": membership.organization_id},
        ) from exc


# ---------------------------------------------------------
# Reads
# ---------------------------------------------------------
async def find_by_id(db: AsyncSession, membership_id: uuid.UUID) -> Optional[Membership]:
    return await db.get(Membership, membership_id)


async def find_in_org(
    db: AsyncSession,
    membership_id: uuid.UUID,
    organization_id: str,
) -> Optional[Membership]:
    stmt = select(Membership).where(
        Membership.id == membership_id,
        Membership.organization_id == organization_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_by_external_id_org(
    db: AsyncSession,
    external_id: str,
    organization_id: str,
) -> Optional[Membership]:
    stmt = select(Membership).where(
        Membership.external_id == external_id,
        Membership.organization_id == organization_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_by_email_org(
    db: AsyncSession,
    email: str,
    organization_id: str,
    *,
    status: Optional[MembershipStatus] = None,
) -> Optional[Membership]:
    stmt = select(Membership).where(
        Membership.email == Membership.normalize_email(email),
        Membership.organization_id == organization_id,
    )
    if status is not None:
        stmt = stmt.where(Membership.status == status)
    return (await db.execute(stmt)).scalar_one_or_none()


async def find_by_external_id(db: AsyncSession, external_id: str) -> list[Membership]:
    """All memberships carrying this subject id, most recent login first."""
    stmt = (
        select(Membership)
        .where(Membership.external_id == external_id)
        .order_by(Membership.last_login.desc().nulls_last(), Membership.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def find_all_by_email(db: AsyncSession, email: str) -> list[Membership]:
    stmt = (
        select(Membership)
        .where(Membership.email == Membership.normalize_email(email))
        .where(Membership.is_placeholder.is_(False))
        .order_by(Membership.created_at.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_by_organization(
    db: AsyncSession,
    organization_id: str,
    *,
    include_placeholders: bool = False,
) -> list[Membership]:
    stmt = select(Membership).where(Membership.organization_id == organization_id)
    if not include_placeholders:
        stmt = stmt.where(Membership.is_placeholder.is_(False))
    stmt = stmt.order_by(Membership.created_at.asc())
    return list((await db.execute(stmt)).scalars().all())


async def count_active_owners(db: AsyncSession, organization_id: str, *, lock: bool = False) -> int:
    """
    Active, real owners of an organization.
    lock=True takes row locks on the owners (Postgres) so two concurrent
    demotions cannot both see "another owner exists".
    """
    if lock:
        stmt = (
            select(Membership.id)
            .where(Membership.organization_id == organization_id)
            .where(Membership.role == MembershipRole.OWNER)
            .where(Membership.status == MembershipStatus.ACTIVE)
            .where(Membership.is_placeholder.is_(False))
            .with_for_update()
        )
        return len((await db.execute(stmt)).scalars().all())

    stmt = (
        select(func.count(Membership.id))
        .where(Membership.organization_id == organization_id)
        .where(Membership.role == MembershipRole.OWNER)
        .where(Membership.status == MembershipStatus.ACTIVE)
        .where(Membership.is_placeholder.is_(False))
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def has_owner(db: AsyncSession, organization_id: str) -> bool:
    return await count_active_owners(db, organization_id) > 0


# ---------------------------------------------------------
# Writes
# ---------------------------------------------------------
async def insert(db: AsyncSession, membership: Membership) -> Membership:
    db.add(membership)
    await _flush_or_duplicate(db, membership)
    return membership


async def save(db: AsyncSession, membership: Membership) -> Membership:
    db.add(membership)
    await _flush_or_duplicate(db, membership)
    return membership


async def upsert_by_email_org(
    db: AsyncSession,
    email: str,
    organization_id: str,
    **fields: Any,
) -> tuple[Membership, bool]:
    """Update the row keyed by (email, organization) or insert it. Returns (membership, created)."""
    existing = await find_by_email_org(db, email, organization_id)
    if existing is not None:
        for key, value in fields.items():
            setattr(existing, key, value)
        return await save(db, existing), False

    membership = Membership(email=email, organization_id=organization_id, **fields)
    return await insert(db, membership), True


async def upsert_by_external_id_org(
    db: AsyncSession,
    external_id: str,
    organization_id: str,
    **fields: Any,
) -> tuple[Membership, bool]:
    """Update the row keyed by (external_id, organization) or insert it. Returns (membership, created)."""
    existing = await find_by_external_id_org(db, external_id, organization_id)
    if existing is not None:
        for key, value in fields.items():
            setattr(existing, key, value)
        return await save(db, existing), False

    membership = Membership(external_id=external_id, organization_id=organization_id, **fields)
    return await insert(db, membership), True


async def delete_by_id(db: AsyncSession, membership_id: uuid.UUID) -> bool:
    res = await db.execute(delete(Membership).where(Membership.id == membership_id))
    return (res.rowcount or 0) > 0


async def delete_pending_by_email_org(db: AsyncSession, email: str, organization_id: str) -> int:
    res = await db.execute(
        delete(Membership)
        .where(Membership.email == Membership.normalize_email(email))
        .where(Membership.organization_id == organization_id)
        .where(Membership.status == MembershipStatus.PENDING)
    )
    return int(res.rowcount or 0)

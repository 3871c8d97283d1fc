# storedesk/crud/organization.py
from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import ConflictError
from storedesk.models.organization import Organization

DEFAULT_ORGANIZATION_NAME = "Unnamed Organization"


async def get_organization(db: AsyncSession, organization_id: str) -> Optional[Organization]:
    return await db.get(Organization, organization_id)


async def list_organizations(db: AsyncSession, organization_ids: Iterable[str]) -> dict[str, Organization]:
    ids = list(dict.fromkeys(organization_ids))
    if not ids:
        return {}
    res = await db.execute(select(Organization).where(Organization.id.in_(ids)))
    return {org.id: org for org in res.scalars().all()}


async def upsert_organization(
    db: AsyncSession,
    organization_id: str,
    name: Optional[str] = None,
) -> tuple[Organization, bool]:
    """
    Idempotent create keyed on organization_id.
    Returns (organization, created). An existing row only gets its name refreshed.
    """
    clean_name = (name or "").strip() or None

    org = await db.get(Organization, organization_id)
    if org is not None:
        if clean_name and org.name != clean_name:
            org.name = clean_name
            await db.flush()
        return org, False

    org = Organization(id=organization_id, name=clean_name or DEFAULT_ORGANIZATION_NAME)
    db.add(org)
    try:
        await db.flush()
    except IntegrityError as exc:
        # Someone else created it between our read and write
        raise ConflictError("Organization was created concurrently", kind="ORGANIZATION_RACE") from exc
    return org, True

# backend/storedesk/api/v1/organizations.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.api.deps.tenant import get_current_membership
from storedesk.db.session import get_db
from storedesk.models.membership import Membership
from storedesk.schemas.auth import SwitchOut
from storedesk.schemas.organization import OrganizationCreate, OrganizationOut
from storedesk.schemas.team import MemberOut
from storedesk.services import organizations as organization_service

router = APIRouter(prefix="/organizations", tags=["organizations"])


@router.post("", response_model=SwitchOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(get_current_membership),
):
    """
    Create a new store. The caller becomes its owner and gets a session scoped to it.
    """
    created = await organization_service.create_organization(
        db, payload.name, membership, organization_id=payload.organization_id
    )
    await db.commit()
    return SwitchOut(
        token=created.session.token,
        expires_at=created.session.expires_at,
        user=MemberOut.model_validate(created.membership),
        organization=OrganizationOut.model_validate(created.organization),
    )


@router.get("/current", response_model=OrganizationOut)
async def current_organization(
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(get_current_membership),
):
    org = await organization_service.get_current_organization(db, membership)
    return OrganizationOut.model_validate(org)

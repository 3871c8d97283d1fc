# backend/storedesk/api/v1/auth.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.api.deps.tenant import get_current_membership, require_tenant_roles
from storedesk.db.session import get_db
from storedesk.models.membership import Membership
from storedesk.schemas.auth import MeOut, RegisterRequest, SessionOut, SwitchOut
from storedesk.schemas.organization import (
    MyOrganizationsOut,
    OrganizationChoiceOut,
    OrganizationOut,
    SwitchOrganizationRequest,
)
from storedesk.schemas.team import (
    InvitationOut,
    InviteAccept,
    InviteCreate,
    InviteCreatedOut,
    InvitePreviewOut,
    MemberOut,
    RoleUpdate,
    StatusUpdate,
    TeamListOut,
    TeamMemberCreate,
)
from storedesk.services import lifecycle, switching
from storedesk.services.identity import ExternalIdentity, reconcile_login
from storedesk.services.notifications import InvitationSender, get_invitation_sender
from storedesk.services.sessions import IssuedSession, issue_session

router = APIRouter(prefix="/auth", tags=["auth"])

TEAM_MANAGERS = ("owner", "manager")


def _session_out(session: IssuedSession, membership: Membership) -> SessionOut:
    return SessionOut(
        token=session.token,
        expires_at=session.expires_at,
        user=MemberOut.model_validate(membership),
    )


# =========================================================
# LOGIN RECONCILIATION + SESSION
# =========================================================
@router.post("/register", response_model=SessionOut)
async def register(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Called by the SPA right after the provider login.
    Finds or creates the membership for (identity, organization) and signs a session.
    """
    membership = await reconcile_login(
        db,
        ExternalIdentity(
            external_id=payload.external_id,
            email=payload.email,
            organization_id=payload.organization_id,
            organization_name=payload.organization_name,
            first_name=payload.first_name,
            last_name=payload.last_name,
        ),
    )
    session = issue_session(membership)
    await db.commit()
    return _session_out(session, membership)


@router.get("/me", response_model=MeOut)
async def me(membership: Membership = Depends(get_current_membership)):
    return MeOut(user=MemberOut.model_validate(membership))


# =========================================================
# ORGANIZATION SWITCH
# =========================================================
@router.get("/organizations", response_model=MyOrganizationsOut)
async def my_organizations(
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(get_current_membership),
):
    choices = await switching.list_my_organizations(db, membership)
    return MyOrganizationsOut(
        organizations=[OrganizationChoiceOut.model_validate(c) for c in choices],
        current_organization_id=membership.organization_id,
    )


@router.post("/switch-organization", response_model=SwitchOut)
async def switch_organization(
    payload: SwitchOrganizationRequest,
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(get_current_membership),
):
    result = await switching.switch_organization(db, membership, payload.organization_id)
    await db.commit()
    return SwitchOut(
        token=result.session.token,
        expires_at=result.session.expires_at,
        user=MemberOut.model_validate(result.membership),
        organization=OrganizationOut.model_validate(result.organization),
    )


# =========================================================
# TEAM (org-scoped by the caller's session)
# =========================================================
@router.get("/team", response_model=TeamListOut)
async def list_team(
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(get_current_membership),
):
    members = await lifecycle.list_team(db, membership.organization_id)
    return TeamListOut(
        organization_id=membership.organization_id,
        members=[MemberOut.model_validate(m) for m in members],
    )


@router.post("/team", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
async def create_team_member(
    payload: TeamMemberCreate,
    db: AsyncSession = Depends(get_db),
    acting: Membership = Depends(require_tenant_roles(*TEAM_MANAGERS)),
):
    member = await lifecycle.create_team_member(
        db,
        str(payload.email),
        payload.role,
        acting,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    await db.commit()
    return MemberOut.model_validate(member)


@router.patch("/team/{membership_id}/role", response_model=MemberOut)
async def update_team_role(
    membership_id: uuid.UUID,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    acting: Membership = Depends(require_tenant_roles(*TEAM_MANAGERS)),
):
    member = await lifecycle.change_role(db, membership_id, payload.role, acting)
    await db.commit()
    return MemberOut.model_validate(member)


@router.patch("/team/{membership_id}/status", response_model=MemberOut)
async def update_team_status(
    membership_id: uuid.UUID,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    acting: Membership = Depends(require_tenant_roles(*TEAM_MANAGERS)),
):
    member = await lifecycle.change_status(db, membership_id, payload.status, acting)
    await db.commit()
    return MemberOut.model_validate(member)


@router.delete("/team/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_team_member(
    membership_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    acting: Membership = Depends(require_tenant_roles(*TEAM_MANAGERS)),
):
    await lifecycle.remove(db, membership_id, acting)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =========================================================
# INVITATIONS
# =========================================================
@router.post("/invite", response_model=InviteCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    payload: InviteCreate,
    db: AsyncSession = Depends(get_db),
    acting: Membership = Depends(require_tenant_roles(*TEAM_MANAGERS)),
    sender: InvitationSender = Depends(get_invitation_sender),
):
    issued = await lifecycle.invite(db, str(payload.email), payload.role, acting, sender=sender)
    await db.commit()
    m = issued.membership
    return InviteCreatedOut(
        invitation=InvitationOut(
            id=m.id,
            email=m.email,
            role=m.role,
            status=m.status,
            organization_id=m.organization_id,
            expires_at=issued.expires_at,
        ),
        invite_link=issued.invite_link,
    )


@router.get("/invite/verify", response_model=InvitePreviewOut)
async def verify_invitation(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """Public: the join page shows who invited whom before login."""
    preview = await lifecycle.verify_invitation(db, token)
    return InvitePreviewOut.model_validate(preview)


@router.post("/invite/accept", response_model=SessionOut)
async def accept_invitation(
    payload: InviteAccept,
    db: AsyncSession = Depends(get_db),
    caller: Membership = Depends(get_current_membership),
):
    membership = await lifecycle.accept_invitation(
        db,
        payload.token,
        ExternalIdentity(
            external_id=caller.external_id,
            email=caller.email,
            organization_id=caller.organization_id,
            first_name=caller.first_name,
            last_name=caller.last_name,
        ),
    )
    session = issue_session(membership)
    await db.commit()
    return _session_out(session, membership)

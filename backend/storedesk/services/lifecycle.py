# storedesk/services/lifecycle.py
"""
Membership lifecycle: invitations, direct adds, role/status changes, removal.

    pending --accept/login--> active <--status--> inactive
    any --remove--> (deleted)

Every operation acts on behalf of an acting membership and only ever touches
rows in the acting membership's organization.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storedesk.core.errors import (
    ConflictError,
    Forbidden,
    LastOwnerViolation,
    NotFound,
    ValidationError,
)
from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.core.security import (
    TEAM_ID_PREFIX,
    create_invitation_token,
    decode_invitation_token,
    generate_placeholder_external_id,
)
from storedesk.core.tenant_rbac import (
    RoleLike,
    can_assign_role,
    can_manage_members,
    can_modify_member,
    parse_role,
)
from storedesk.crud import membership as membership_crud
from storedesk.crud import organization as organization_crud
from storedesk.models.membership import Membership
from storedesk.services.identity import ExternalIdentity, normalize_identity
from storedesk.services.notifications import (
    InvitationMessage,
    InvitationSender,
    build_invite_link,
)

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedInvitation:
    membership: Membership
    token: str
    invite_link: str
    expires_at: datetime


@dataclass(frozen=True)
class OrganizationRef:
    id: str
    name: str


@dataclass(frozen=True)
class InvitationPreview:
    email: str
    role: MembershipRole
    organization: OrganizationRef
    expires_at: datetime


# ---------------------------------------------------------
# Guards
# ---------------------------------------------------------
def _require_manager(acting: Membership) -> None:
    if not can_manage_members(acting.role):
        raise Forbidden("Only owners and managers can manage team members", kind="INSUFFICIENT_ROLE")


def _require_can_assign(acting: Membership, role: MembershipRole) -> None:
    if not can_assign_role(acting.role, role):
        raise Forbidden("Only owners can assign the owner role", kind="OWNER_ROLE_RESTRICTED")


def _require_can_modify(acting: Membership, target: Membership) -> None:
    if not can_modify_member(acting.role, target.role):
        raise Forbidden("Managers cannot modify owners", kind="OWNER_PROTECTED")


def _validated_email(email: str) -> str:
    normalized = Membership.normalize_email(email)
    if not Membership.is_valid_email(normalized):
        raise ValidationError("Invalid email format", kind="INVALID_EMAIL")
    return normalized


def _parse_membership_id(value: Union[uuid.UUID, str]) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFound("Team member not found", kind="MEMBER_NOT_FOUND")


async def _load_target(db: AsyncSession, membership_id, acting: Membership) -> Membership:
    target = await membership_crud.find_in_org(db, _parse_membership_id(membership_id), acting.organization_id)
    if target is None or target.is_placeholder:
        raise NotFound("Team member not found", kind="MEMBER_NOT_FOUND")
    return target


async def _ensure_not_last_owner(db: AsyncSession, target: Membership, action: str) -> None:
    """Blocks an action that would take away the organization's last active owner."""
    if target.role is not MembershipRole.OWNER or target.status is not MembershipStatus.ACTIVE:
        return
    owners = await membership_crud.count_active_owners(db, target.organization_id, lock=True)
    if owners <= 1:
        log.warning(
            "membership.last_owner_blocked",
            membership_id=str(target.id),
            organization_id=target.organization_id,
            action=action,
        )
        raise LastOwnerViolation(f"Cannot {action} the last owner of the organization")


# ---------------------------------------------------------
# Invitations
# ---------------------------------------------------------
async def invite(
    db: AsyncSession,
    email: str,
    role: RoleLike,
    acting: Membership,
    *,
    sender: Optional[InvitationSender] = None,
) -> IssuedInvitation:
    _require_manager(acting)
    new_role = parse_role(role)
    _require_can_assign(acting, new_role)
    normalized = _validated_email(email)

    existing = await membership_crud.find_by_email_org(db, normalized, acting.organization_id)
    if existing is not None and existing.status is not MembershipStatus.PENDING:
        raise ConflictError("This email is already a member of the organization", kind="ALREADY_MEMBER")

    # Re-inviting replaces the outstanding invitation
    replaced = await membership_crud.delete_pending_by_email_org(db, normalized, acting.organization_id)
    membership = Membership(
        external_id=generate_placeholder_external_id(),
        email=normalized,
        organization_id=acting.organization_id,
        role=new_role,
        status=MembershipStatus.PENDING,
    )
    await membership_crud.insert(db, membership)

    token, expires_at = create_invitation_token(
        membership_id=str(membership.id),
        email=normalized,
        organization_id=acting.organization_id,
    )
    link = build_invite_link(token)

    log.info(
        "membership.invited",
        membership_id=str(membership.id),
        organization_id=acting.organization_id,
        role=new_role.value,
        invited_by=str(acting.id),
        replaced_pending=replaced,
    )

    if sender is not None:
        org = await organization_crud.get_organization(db, acting.organization_id)
        await sender.send_invitation(
            InvitationMessage(
                email=normalized,
                organization_id=acting.organization_id,
                organization_name=org.name if org else acting.organization_id,
                role=new_role.value,
                invite_link=link,
                expires_at=expires_at,
                invited_by=acting.display_name or acting.email,
            )
        )

    return IssuedInvitation(membership=membership, token=token, invite_link=link, expires_at=expires_at)


def _parse_invitation_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise NotFound("Invitation not found", kind="INVITATION_NOT_FOUND")


async def _load_pending_invitation(db: AsyncSession, token: str):
    claims = decode_invitation_token(token)
    membership = await membership_crud.find_in_org(
        db, _parse_invitation_id(claims.membership_id), claims.organization_id
    )
    return claims, membership


async def verify_invitation(db: AsyncSession, token: str) -> InvitationPreview:
    """Read-only preview for the join page."""
    claims, membership = await _load_pending_invitation(db, token)
    if membership is None or membership.status is not MembershipStatus.PENDING:
        raise NotFound("Invitation not found or already used", kind="INVITATION_NOT_FOUND")

    org = await organization_crud.get_organization(db, claims.organization_id)
    return InvitationPreview(
        email=membership.email,
        role=membership.role,
        organization=OrganizationRef(
            id=claims.organization_id,
            name=org.name if org else claims.organization_id,
        ),
        expires_at=claims.expires_at,
    )


async def accept_invitation(db: AsyncSession, token: str, identity: ExternalIdentity) -> Membership:
    """
    Redeem an invitation for an authenticated caller.
    The caller's email must be the invited one; their real subject id replaces
    the placeholder and the membership becomes active.
    """
    claims, membership = await _load_pending_invitation(db, token)
    caller = normalize_identity(
        ExternalIdentity(
            external_id=identity.external_id,
            email=identity.email,
            organization_id=claims.organization_id,
            first_name=identity.first_name,
            last_name=identity.last_name,
        )
    )

    if caller.email != Membership.normalize_email(claims.email):
        log.warning("invitation.email_mismatch", organization_id=claims.organization_id)
        raise Forbidden("This invitation was sent to a different email address", kind="INVITE_EMAIL_MISMATCH")

    if membership is None:
        raise NotFound("Invitation not found", kind="INVITATION_NOT_FOUND")
    if membership.status is not MembershipStatus.PENDING:
        raise ConflictError("Invitation has already been accepted", kind="INVITATION_ALREADY_ACCEPTED")

    # The caller may already hold this org under their real id (e.g. signed up meanwhile)
    clash = await membership_crud.find_by_external_id_org(db, caller.external_id, claims.organization_id)
    if clash is not None and clash.id != membership.id:
        raise ConflictError("You are already a member of this organization", kind="ALREADY_MEMBER")

    membership.external_id = caller.external_id
    membership.status = MembershipStatus.ACTIVE
    if caller.first_name:
        membership.first_name = caller.first_name
    if caller.last_name:
        membership.last_name = caller.last_name
    membership.last_login = _utcnow()
    await membership_crud.save(db, membership)

    log.info(
        "identity.invitation_redeemed",
        membership_id=str(membership.id),
        organization_id=membership.organization_id,
        role=membership.role.value,
    )
    return membership


# ---------------------------------------------------------
# Team management
# ---------------------------------------------------------
async def create_team_member(
    db: AsyncSession,
    email: str,
    role: RoleLike,
    acting: Membership,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Membership:
    """Direct add; the real subject id is adopted on the member's first login."""
    _require_manager(acting)
    new_role = parse_role(role)
    _require_can_assign(acting, new_role)
    normalized = _validated_email(email)

    if await membership_crud.find_by_email_org(db, normalized, acting.organization_id) is not None:
        raise ConflictError("This email is already a member of the organization", kind="ALREADY_MEMBER")

    membership = Membership(
        external_id=generate_placeholder_external_id(TEAM_ID_PREFIX),
        email=normalized,
        organization_id=acting.organization_id,
        role=new_role,
        status=MembershipStatus.ACTIVE,
        first_name=Membership.normalize_name(first_name),
        last_name=Membership.normalize_name(last_name),
    )
    await membership_crud.insert(db, membership)
    log.info(
        "membership.created",
        membership_id=str(membership.id),
        organization_id=acting.organization_id,
        role=new_role.value,
        created_by=str(acting.id),
    )
    return membership


async def list_team(db: AsyncSession, organization_id: str) -> list[Membership]:
    return await membership_crud.list_by_organization(db, organization_id)


async def change_role(db: AsyncSession, membership_id, new_role: RoleLike, acting: Membership) -> Membership:
    _require_manager(acting)
    role = parse_role(new_role)
    target = await _load_target(db, membership_id, acting)
    _require_can_modify(acting, target)
    _require_can_assign(acting, role)

    if target.role is role:
        return target
    if role is not MembershipRole.OWNER:
        await _ensure_not_last_owner(db, target, "demote")

    previous = target.role
    target.role = role
    await membership_crud.save(db, target)
    log.info(
        "membership.role_changed",
        membership_id=str(target.id),
        organization_id=target.organization_id,
        previous_role=previous.value,
        role=role.value,
        changed_by=str(acting.id),
    )
    return target


async def change_status(db: AsyncSession, membership_id, new_status, acting: Membership) -> Membership:
    _require_manager(acting)
    raw = new_status.value if isinstance(new_status, MembershipStatus) else str(new_status or "")
    try:
        status = MembershipStatus(raw.strip().lower())
    except ValueError:
        raise ValidationError("Status must be 'active' or 'inactive'", kind="INVALID_STATUS")
    if status is MembershipStatus.PENDING:
        raise ValidationError("Status must be 'active' or 'inactive'", kind="INVALID_STATUS")

    target = await _load_target(db, membership_id, acting)
    _require_can_modify(acting, target)

    if target.status is MembershipStatus.PENDING:
        raise ValidationError("Pending invitations cannot be activated or deactivated", kind="INVITATION_PENDING")
    if target.status is status:
        return target
    if status is MembershipStatus.INACTIVE:
        await _ensure_not_last_owner(db, target, "deactivate")
        if target.id == acting.id:
            raise Forbidden("You cannot deactivate yourself", kind="SELF_DEACTIVATION")

    target.status = status
    await membership_crud.save(db, target)
    log.info(
        "membership.status_changed",
        membership_id=str(target.id),
        organization_id=target.organization_id,
        status=status.value,
        changed_by=str(acting.id),
    )
    return target


async def remove(db: AsyncSession, membership_id, acting: Membership) -> None:
    _require_manager(acting)
    target = await _load_target(db, membership_id, acting)
    _require_can_modify(acting, target)
    await _ensure_not_last_owner(db, target, "remove")
    if target.id == acting.id:
        raise Forbidden("You cannot remove yourself", kind="SELF_REMOVAL")

    await membership_crud.delete_by_id(db, target.id)
    log.info(
        "membership.removed",
        membership_id=str(target.id),
        organization_id=target.organization_id,
        removed_by=str(acting.id),
    )

# backend/storedesk/core/tenant_rbac.py

from __future__ import annotations

from typing import Iterable, Union

from storedesk.core.errors import Forbidden, ValidationError
from storedesk.core.roles import MembershipRole, TEAM_MANAGER_ROLES

RoleLike = Union[MembershipRole, str]


def parse_role(value: RoleLike) -> MembershipRole:
    """
    Accepts an enum member or its string value ("owner", " Manager ").
    Unknown roles are a caller error.
    """
    if isinstance(value, MembershipRole):
        return value
    try:
        return MembershipRole((value or "").strip().lower())
    except ValueError:
        allowed = ", ".join(r.value for r in MembershipRole)
        raise ValidationError(f"Invalid role. Valid roles are: {allowed}", kind="INVALID_ROLE")


def ensure_role(role: RoleLike, allowed: Iterable[RoleLike]) -> MembershipRole:
    r = parse_role(role)
    allowed_set = {parse_role(a) for a in allowed}
    if r not in allowed_set:
        raise Forbidden(
            f"Insufficient role: {r.value}. Allowed: {', '.join(sorted(a.value for a in allowed_set))}",
            kind="INSUFFICIENT_ROLE",
        )
    return r


def can_manage_members(role: RoleLike) -> bool:
    return parse_role(role) in TEAM_MANAGER_ROLES


def can_assign_role(acting: RoleLike, target_role: RoleLike) -> bool:
    """Only owners may hand out the owner role."""
    if parse_role(target_role) is MembershipRole.OWNER:
        return parse_role(acting) is MembershipRole.OWNER
    return can_manage_members(acting)


def can_modify_member(acting: RoleLike, member_role: RoleLike) -> bool:
    """Managers cannot touch owners."""
    if not can_manage_members(acting):
        return False
    if parse_role(member_role) is MembershipRole.OWNER:
        return parse_role(acting) is MembershipRole.OWNER
    return True

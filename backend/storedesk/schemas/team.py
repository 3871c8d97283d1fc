# backend/storedesk/schemas/team.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator

from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.core.security import is_placeholder_external_id
from storedesk.schemas.common import CamelModel
from storedesk.schemas.organization import OrganizationOut


class MemberOut(CamelModel):
    id: uuid.UUID
    external_id: Optional[str] = None
    email: str
    organization_id: str
    role: MembershipRole
    status: MembershipStatus
    is_active: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    display_name: str = ""
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("external_id")
    @classmethod
    def _hide_placeholder_id(cls, v: Optional[str]) -> Optional[str]:
        # pending-/team- ids are local stand-ins, not login subjects
        return None if v is None or is_placeholder_external_id(v) else v


class TeamListOut(CamelModel):
    organization_id: str
    members: List[MemberOut]


class TeamMemberCreate(CamelModel):
    email: EmailStr
    role: str = Field(default=MembershipRole.CUSTOMER.value, max_length=20)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class RoleUpdate(CamelModel):
    role: str = Field(..., min_length=1, max_length=20)


class StatusUpdate(CamelModel):
    status: str = Field(..., min_length=1, max_length=20)


class InviteCreate(CamelModel):
    email: EmailStr
    role: str = Field(default=MembershipRole.CUSTOMER.value, max_length=20)


class InvitationOut(CamelModel):
    id: uuid.UUID
    email: str
    role: MembershipRole
    status: MembershipStatus
    organization_id: str
    expires_at: datetime


class InviteCreatedOut(CamelModel):
    invitation: InvitationOut
    invite_link: str


class InvitePreviewOut(CamelModel):
    email: str
    role: MembershipRole
    organization: OrganizationOut
    expires_at: datetime


class InviteAccept(CamelModel):
    token: str = Field(..., min_length=1)

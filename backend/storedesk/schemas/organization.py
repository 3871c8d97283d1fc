# backend/storedesk/schemas/organization.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from storedesk.core.roles import MembershipRole, MembershipStatus
from storedesk.schemas.common import CamelModel


class OrganizationOut(CamelModel):
    id: str
    name: str
    created_at: Optional[datetime] = None


class OrganizationChoiceOut(CamelModel):
    organization_id: str
    name: str
    role: MembershipRole
    status: MembershipStatus
    is_current: bool


class MyOrganizationsOut(CamelModel):
    organizations: List[OrganizationChoiceOut]
    current_organization_id: str


class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    organization_id: Optional[str] = Field(default=None, max_length=255)


class SwitchOrganizationRequest(CamelModel):
    organization_id: str = Field(..., min_length=1, max_length=255)

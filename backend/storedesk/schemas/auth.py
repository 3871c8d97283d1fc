# backend/storedesk/schemas/auth.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from storedesk.schemas.common import CamelModel
from storedesk.schemas.organization import OrganizationOut
from storedesk.schemas.team import MemberOut


class RegisterRequest(CamelModel):
    # Verified login result handed over by the SPA after the provider redirect.
    # Email format is checked by the reconciler so every caller gets the same error.
    external_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=1, max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    organization_id: str = Field(..., min_length=1, max_length=255)
    organization_name: Optional[str] = Field(default=None, max_length=200)


class SessionOut(CamelModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: MemberOut


class SwitchOut(SessionOut):
    organization: OrganizationOut


class MeOut(CamelModel):
    user: MemberOut

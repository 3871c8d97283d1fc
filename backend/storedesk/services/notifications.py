# storedesk/services/notifications.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol
from urllib.parse import quote

import structlog

from storedesk.core.config import settings

log = structlog.get_logger()


@dataclass(frozen=True)
class InvitationMessage:
    email: str
    organization_id: str
    organization_name: str
    role: str
    invite_link: str
    expires_at: datetime
    invited_by: Optional[str] = None


class InvitationSender(Protocol):
    async def send_invitation(self, message: InvitationMessage) -> None: ...


class LoggingInvitationSender:
    """Default sender: no outbound email, records that an invite went out."""

    async def send_invitation(self, message: InvitationMessage) -> None:
        log.info(
            "invitation.sent",
            email=message.email,
            organization_id=message.organization_id,
            role=message.role,
            invited_by=message.invited_by,
            expires_at=message.expires_at.isoformat(),
        )


def build_invite_link(token: str) -> str:
    base = settings.FRONTEND_URL.rstrip("/")
    return f"{base}/join?token={quote(token, safe='')}"


_default_sender = LoggingInvitationSender()


def get_invitation_sender() -> InvitationSender:
    """FastAPI dependency; override in tests or wire a real mailer."""
    return _default_sender

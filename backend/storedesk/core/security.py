# backend/storedesk/core/security.py
from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from storedesk.core.config import settings
from storedesk.core.errors import Unauthenticated

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_TYPE_SESSION = "session"
TOKEN_TYPE_INVITE = "invite"

PENDING_ID_PREFIX = "pending-"
TEAM_ID_PREFIX = "team-"
PLACEHOLDER_ID_PREFIX = "placeholder-"


@dataclass(frozen=True)
class SessionClaims:
    sub: str
    email: str
    role: str
    organization_id: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class InvitationClaims:
    membership_id: str
    email: str
    organization_id: str
    expires_at: datetime


def _normalize_token(token: str) -> str:
    """
    Make token decoding resilient to common Swagger / copy-paste issues:
    - Leading/trailing whitespace/newlines
    - Surrounding quotes
    - Accidentally including the 'Bearer ' prefix in the token field
    """
    if token is None:
        return ""

    t = token.strip()

    # remove surrounding quotes if present
    if (t.startswith('"') and t.endswith('"')) or (t.startswith("'") and t.endswith("'")):
        t = t[1:-1].strip()

    # remove accidental bearer prefix
    if t.lower().startswith("bearer "):
        t = t[7:].strip()

    return t


def _encode(claims: dict[str, Any], expires_delta: timedelta) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    expire_dt = now + expires_delta

    # Use numeric timestamps for maximum compatibility
    to_encode = dict(claims)
    to_encode["exp"] = int(expire_dt.timestamp())
    to_encode["iat"] = int(now.timestamp())

    token = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expire_dt


def _decode(token: str, expected_type: str) -> dict[str, Any]:
    token = _normalize_token(token)
    if not token:
        raise Unauthenticated("Invalid token", kind="INVALID_TOKEN")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        # Includes expired signature, bad format, bad signature, wrong algorithm, etc.
        raise Unauthenticated("Token is invalid or expired", kind="INVALID_TOKEN")

    if payload.get("typ") != expected_type:
        raise Unauthenticated("Invalid token", kind="INVALID_TOKEN")
    return payload


def _expires_at(payload: dict[str, Any]) -> datetime:
    return datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)


# ---------------------------------------------------------
# Session tokens
# ---------------------------------------------------------
def create_session_token(
    *,
    external_id: str,
    email: str,
    role: str,
    organization_id: str,
    expires_days: Optional[int] = None,
) -> tuple[str, datetime]:
    if not external_id:
        raise ValueError("external_id is required to sign a session")
    return _encode(
        {
            "sub": external_id,
            "email": email,
            "role": role,
            "organizationId": organization_id,
            "typ": TOKEN_TYPE_SESSION,
        },
        timedelta(days=expires_days or settings.SESSION_TOKEN_EXPIRE_DAYS),
    )


def decode_session_token(token: str) -> SessionClaims:
    payload = _decode(token, TOKEN_TYPE_SESSION)
    sub = payload.get("sub")
    if not sub:
        raise Unauthenticated("Invalid token", kind="INVALID_TOKEN")
    return SessionClaims(
        sub=str(sub),
        email=str(payload.get("email") or ""),
        role=str(payload.get("role") or ""),
        organization_id=payload.get("organizationId") or None,
        expires_at=_expires_at(payload),
    )


# ---------------------------------------------------------
# Invitation tokens
# ---------------------------------------------------------
def create_invitation_token(
    *,
    membership_id: str,
    email: str,
    organization_id: str,
    expires_days: Optional[int] = None,
) -> tuple[str, datetime]:
    return _encode(
        {
            "sub": membership_id,
            "email": email,
            "organizationId": organization_id,
            "typ": TOKEN_TYPE_INVITE,
        },
        timedelta(days=expires_days or settings.INVITE_TOKEN_EXPIRE_DAYS),
    )


def decode_invitation_token(token: str) -> InvitationClaims:
    payload = _decode(token, TOKEN_TYPE_INVITE)
    email = payload.get("email")
    org = payload.get("organizationId")
    if not email or not org:
        raise Unauthenticated("Invalid invitation token", kind="INVALID_TOKEN")
    return InvitationClaims(
        membership_id=str(payload["sub"]),
        email=str(email),
        organization_id=str(org),
        expires_at=_expires_at(payload),
    )


# ---------------------------------------------------------
# Local identifiers
# ---------------------------------------------------------
def _base36(n: int) -> str:
    chars = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = chars[r] + out
    return out or "0"


def generate_placeholder_external_id(prefix: str = PENDING_ID_PREFIX) -> str:
    """Never a real provider id; real ids are adopted on the next login."""
    return f"{prefix}{int(time.time() * 1000)}-{secrets.token_hex(6)}"


def is_placeholder_external_id(external_id: Optional[str]) -> bool:
    if not external_id:
        return True
    return external_id.startswith((PENDING_ID_PREFIX, TEAM_ID_PREFIX, PLACEHOLDER_ID_PREFIX))


def generate_organization_id() -> str:
    return f"org-{_base36(int(time.time() * 1000))}{secrets.token_hex(3)}"

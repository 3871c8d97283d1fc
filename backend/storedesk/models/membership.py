# backend/storedesk/models/membership.py

import re
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates
from sqlalchemy.sql import func

from storedesk.core.roles import MembershipRole, MembershipStatus, SystemTag
from storedesk.db.base import Base

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Membership(Base):
    """One row per person per organization."""

    __tablename__ = "memberships"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("email", "organization_id", name="uq_memberships_email_org"),
        UniqueConstraint("external_id", "organization_id", name="uq_memberships_external_id_org"),
        Index("ix_memberships_email", "email"),
        Index("ix_memberships_external_id", "external_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Provider subject id, or a local placeholder until the first real login
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)

    organization_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )

    role: Mapped[MembershipRole] = mapped_column(
        Enum(MembershipRole, name="membership_role", native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=MembershipRole.CUSTOMER,
    )
    status: Mapped[MembershipStatus] = mapped_column(
        Enum(MembershipStatus, name="membership_status", native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=MembershipStatus.ACTIVE,
    )

    # Legacy flag; mirrors status == active (see _sync_is_active)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    system_tag: Mapped[Optional[SystemTag]] = mapped_column(
        Enum(SystemTag, name="membership_system_tag", native_enum=False, values_callable=_enum_values, length=20),
        nullable=True,
    )

    # UI scaffolding rows seeded with a new store; never real users
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault("role", MembershipRole.CUSTOMER)
        kwargs.setdefault("status", MembershipStatus.ACTIVE)
        kwargs.setdefault("is_placeholder", False)
        kwargs.setdefault("system_tag", SystemTag.ADMIN if kwargs["is_placeholder"] else SystemTag.USER)
        super().__init__(**kwargs)

    @validates("status")
    def _sync_is_active(self, _key, value):
        value = MembershipStatus(value)
        self.is_active = value is MembershipStatus.ACTIVE
        return value

    @validates("system_tag")
    def _coerce_system_tag(self, _key, value):
        return None if value is None else SystemTag(value)

    @validates("role")
    def _coerce_role(self, _key, value):
        return MembershipRole(value)

    @validates("external_id")
    def _require_external_id(self, _key, value):
        v = (value or "").strip()
        if not v:
            raise ValueError("external_id is required and cannot be empty")
        return v

    @validates("email")
    def _normalize_email_field(self, _key, value):
        return self.normalize_email(value)

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)

    @staticmethod
    def normalize_email(value: Optional[str]) -> str:
        return (value or "").strip().lower()

    @staticmethod
    def is_valid_email(value: Optional[str]) -> bool:
        return bool(value) and bool(_EMAIL_RE.match(value))

    @staticmethod
    def normalize_name(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        v = " ".join(value.strip().split())
        return v or None

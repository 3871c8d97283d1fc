# storedesk/core/roles.py

import enum


class MembershipRole(str, enum.Enum):
    OWNER = "owner"        # store creator / ultimate authority
    MANAGER = "manager"    # runs the store, manages non-owner members
    CUSTOMER = "customer"  # default for self-service signups


class MembershipStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING = "pending"    # invited, not yet accepted
    INACTIVE = "inactive"  # hidden from the team, kept on file


class SystemTag(str, enum.Enum):
    # who created the row; bookkeeping only, never a tenant role
    USER = "user"    # a person: login, invitation or team add
    ADMIN = "admin"  # the system itself: seeded placeholders


TEAM_MANAGER_ROLES = frozenset({MembershipRole.OWNER, MembershipRole.MANAGER})

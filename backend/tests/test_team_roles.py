# tests/test_team_roles.py
from __future__ import annotations

import uuid

import pytest

from storedesk.core.errors import (
    ConflictError,
    Forbidden,
    LastOwnerViolation,
    NotFound,
    ValidationError,
)
from storedesk.core.roles import MembershipRole, MembershipStatus, SystemTag
from storedesk.core.tenant_rbac import can_assign_role, can_modify_member, ensure_role, parse_role
from storedesk.crud import membership as membership_crud
from storedesk.services import lifecycle
from storedesk.services.identity import ExternalIdentity, reconcile_login

from conftest import add_member, create_org


async def make_team(db):
    await create_org(db, "org-alpha", "Alpha")
    owner = await add_member(db, "org-alpha", "owner@example.com", role=MembershipRole.OWNER, external_id="kp_owner")
    manager = await add_member(db, "org-alpha", "mgr@example.com", role=MembershipRole.MANAGER, external_id="kp_mgr")
    customer = await add_member(db, "org-alpha", "cust@example.com", external_id="kp_cust")
    await db.commit()
    return owner, manager, customer


# ---------------------------------------------------------
# Pure rules
# ---------------------------------------------------------
def test_rule_helpers():
    assert can_assign_role("owner", "owner")
    assert not can_assign_role("manager", "owner")
    assert can_assign_role("manager", "customer")
    assert not can_assign_role("customer", "customer")

    assert can_modify_member("owner", "owner")
    assert not can_modify_member("manager", "owner")
    assert can_modify_member("manager", "manager")

    assert parse_role(" Manager ") is MembershipRole.MANAGER
    with pytest.raises(ValidationError):
        parse_role("root")
    with pytest.raises(Forbidden):
        ensure_role("customer", {"owner", "manager"})


# ---------------------------------------------------------
# Role changes
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_owner_promotes_and_demotes(db):
    owner, manager, customer = await make_team(db)

    m = await lifecycle.change_role(db, customer.id, "manager", owner)
    assert m.role is MembershipRole.MANAGER

    m = await lifecycle.change_role(db, manager.id, "owner", owner)
    assert m.role is MembershipRole.OWNER


@pytest.mark.asyncio
async def test_manager_cannot_touch_owners_or_grant_owner(db):
    owner, manager, customer = await make_team(db)

    with pytest.raises(Forbidden):
        await lifecycle.change_role(db, owner.id, "customer", manager)
    with pytest.raises(Forbidden):
        await lifecycle.change_role(db, customer.id, "owner", manager)

    m = await lifecycle.change_role(db, customer.id, "manager", manager)
    assert m.role is MembershipRole.MANAGER


@pytest.mark.asyncio
async def test_customer_cannot_manage_team(db):
    owner, manager, customer = await make_team(db)

    with pytest.raises(Forbidden):
        await lifecycle.change_role(db, manager.id, "customer", customer)
    with pytest.raises(Forbidden):
        await lifecycle.remove(db, manager.id, customer)


@pytest.mark.asyncio
async def test_last_owner_cannot_be_demoted(db):
    owner, _, _ = await make_team(db)
    owner_id = owner.id

    with pytest.raises(LastOwnerViolation):
        await lifecycle.change_role(db, owner_id, "manager", owner)

    # rollback expires loaded rows; only the captured id is read afterwards
    await db.rollback()
    refreshed = await membership_crud.find_by_id(db, owner_id)
    assert refreshed.role is MembershipRole.OWNER


@pytest.mark.asyncio
async def test_owner_can_step_down_when_another_owner_exists(db):
    owner, manager, _ = await make_team(db)
    await lifecycle.change_role(db, manager.id, "owner", owner)

    m = await lifecycle.change_role(db, owner.id, "manager", owner)
    assert m.role is MembershipRole.MANAGER
    assert await membership_crud.count_active_owners(db, "org-alpha") == 1


@pytest.mark.asyncio
async def test_targets_in_other_orgs_are_not_found(db):
    owner, _, _ = await make_team(db)
    await create_org(db, "org-beta", "Beta")
    stranger = await add_member(db, "org-beta", "stranger@example.com", external_id="kp_stranger")
    await db.commit()

    with pytest.raises(NotFound):
        await lifecycle.change_role(db, stranger.id, "manager", owner)
    with pytest.raises(NotFound):
        await lifecycle.remove(db, uuid.uuid4(), owner)


# ---------------------------------------------------------
# Status changes
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_deactivate_and_reactivate(db):
    owner, _, customer = await make_team(db)

    m = await lifecycle.change_status(db, customer.id, "inactive", owner)
    assert m.status is MembershipStatus.INACTIVE
    assert m.is_active is False

    m = await lifecycle.change_status(db, customer.id, "active", owner)
    assert m.status is MembershipStatus.ACTIVE


@pytest.mark.asyncio
async def test_status_rules(db):
    owner, manager, _ = await make_team(db)
    pending = await add_member(db, "org-alpha", "inv@example.com", status=MembershipStatus.PENDING, external_id="pending-1")
    await db.commit()

    with pytest.raises(ValidationError):
        await lifecycle.change_status(db, pending.id, "inactive", owner)
    with pytest.raises(ValidationError):
        await lifecycle.change_status(db, manager.id, "pending", owner)
    with pytest.raises(LastOwnerViolation):
        await lifecycle.change_status(db, owner.id, "inactive", owner)
    with pytest.raises(Forbidden) as exc:
        await lifecycle.change_status(db, manager.id, "inactive", manager)
    assert exc.value.kind == "SELF_DEACTIVATION"
    with pytest.raises(Forbidden):
        await lifecycle.change_status(db, owner.id, "inactive", manager)


@pytest.mark.asyncio
async def test_last_owner_cannot_be_deactivated(db):
    owner, manager, _ = await make_team(db)
    co_owner = await lifecycle.change_role(db, manager.id, "owner", owner)
    await db.commit()

    await lifecycle.change_status(db, co_owner.id, "inactive", owner)
    await db.commit()

    with pytest.raises(LastOwnerViolation):
        await lifecycle.change_status(db, owner.id, "inactive", co_owner)


# ---------------------------------------------------------
# Removal
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_remove_member(db):
    owner, _, customer = await make_team(db)

    await lifecycle.remove(db, customer.id, owner)
    await db.commit()

    assert await membership_crud.find_by_id(db, customer.id) is None


@pytest.mark.asyncio
async def test_cannot_remove_self(db):
    _, manager, _ = await make_team(db)

    with pytest.raises(Forbidden) as exc:
        await lifecycle.remove(db, manager.id, manager)
    assert exc.value.kind == "SELF_REMOVAL"


@pytest.mark.asyncio
async def test_sole_owner_cannot_remove_themselves(db):
    owner, _, _ = await make_team(db)

    with pytest.raises(LastOwnerViolation):
        await lifecycle.remove(db, owner.id, owner)


@pytest.mark.asyncio
async def test_last_owner_cannot_be_removed(db):
    owner, manager, _ = await make_team(db)
    co_owner = await lifecycle.change_role(db, manager.id, "owner", owner)
    await lifecycle.change_status(db, owner.id, "inactive", co_owner)
    await db.commit()

    # owner is inactive now; co_owner is the only active owner left
    with pytest.raises(LastOwnerViolation):
        await lifecycle.remove(db, co_owner.id, owner)


# ---------------------------------------------------------
# Direct adds
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_direct_add_is_active_and_relinked_on_login(db):
    owner, _, _ = await make_team(db)

    added = await lifecycle.create_team_member(db, "new@example.com", "manager", owner, first_name="New")
    await db.commit()
    added_id = added.id

    assert added.status is MembershipStatus.ACTIVE
    assert added.external_id.startswith("team-")
    assert added.system_tag is SystemTag.USER

    m = await reconcile_login(
        db,
        ExternalIdentity(external_id="kp_new", email="new@example.com", organization_id="org-alpha"),
    )
    await db.commit()

    assert m.id == added_id
    assert m.external_id == "kp_new"
    assert m.role is MembershipRole.MANAGER


@pytest.mark.asyncio
async def test_direct_add_existing_email_is_conflict(db):
    owner, _, _ = await make_team(db)

    with pytest.raises(ConflictError):
        await lifecycle.create_team_member(db, "CUST@example.com", "customer", owner)


@pytest.mark.asyncio
async def test_list_team_excludes_placeholders(db):
    owner, _, _ = await make_team(db)
    members = await lifecycle.list_team(db, "org-alpha")

    assert {m.email for m in members} == {"owner@example.com", "mgr@example.com", "cust@example.com"}


@pytest.mark.asyncio
async def test_invited_second_owner_can_demote_the_first(db):
    owner, _, _ = await make_team(db)

    issued = await lifecycle.invite(db, "second@example.com", "owner", owner)
    await db.commit()
    second = await reconcile_login(
        db,
        ExternalIdentity(external_id="kp_second", email="second@example.com", organization_id="org-alpha"),
    )
    await db.commit()
    assert second.id == issued.membership.id
    assert second.role is MembershipRole.OWNER

    demoted = await lifecycle.change_role(db, owner.id, "customer", second)
    await db.commit()

    assert demoted.role is MembershipRole.CUSTOMER
    assert await membership_crud.count_active_owners(db, "org-alpha") == 1

# tests/test_auth_api.py
from __future__ import annotations

import pytest

from storedesk.services.notifications import get_invitation_sender


API = "/api/v1"


async def register(client, external_id, email, org="org-alpha", org_name="Alpha Store", **extra):
    body = {
        "externalId": external_id,
        "email": email,
        "organizationId": org,
        "organizationName": org_name,
        **extra,
    }
    return await client.post(f"{API}/auth/register", json=body)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_health(client):
    res = await client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_register_and_me(client):
    res = await register(client, "kp_alice", "Alice@Example.com", firstName="Alice")
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["role"] == "owner"
    assert body["user"]["organizationId"] == "org-alpha"

    me = await client.get(f"{API}/auth/me", headers=bearer(body["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["id"] == body["user"]["id"]


@pytest.mark.asyncio
async def test_register_twice_is_idempotent(client):
    first = (await register(client, "kp_alice", "alice@example.com")).json()
    second = (await register(client, "kp_alice", "alice@example.com")).json()
    assert first["user"]["id"] == second["user"]["id"]


@pytest.mark.asyncio
async def test_register_validation_errors_are_400(client):
    res = await register(client, "kp_alice", "nope")
    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "INVALID_EMAIL"

    res = await client.post(f"{API}/auth/register", json={"email": "a@example.com"})
    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_register_with_placeholder_id_cannot_take_over_invitation(client):
    owner = (await register(client, "kp_owner", "owner@example.com")).json()
    headers = bearer(owner["token"])
    res = await client.post(f"{API}/auth/invite", json={"email": "bob@example.com"}, headers=headers)
    assert res.status_code == 201, res.text

    team = (await client.get(f"{API}/auth/team", headers=headers)).json()
    invited = next(m for m in team["members"] if m["email"] == "bob@example.com")
    assert invited["status"] == "pending"
    assert invited["externalId"] is None

    res = await register(client, "pending-1700000000000-abcdef", "mallory@example.com")
    assert res.status_code == 400
    assert res.json()["detail"]["error"] == "INVALID_EXTERNAL_ID"


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_401(client):
    res = await client.get(f"{API}/auth/me")
    assert res.status_code == 401
    assert res.json()["detail"]["error"] == "MISSING_TOKEN"

    res = await client.get(f"{API}/auth/me", headers=bearer("garbage"))
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_team_management_flow(client):
    owner = (await register(client, "kp_owner", "owner@example.com")).json()
    headers = bearer(owner["token"])

    res = await client.post(
        f"{API}/auth/team",
        json={"email": "mgr@example.com", "role": "manager", "firstName": "Meg"},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    member = res.json()
    assert member["externalId"] is None

    res = await client.patch(f"{API}/auth/team/{member['id']}/role", json={"role": "customer"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["role"] == "customer"

    res = await client.patch(f"{API}/auth/team/{member['id']}/status", json={"status": "inactive"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["isActive"] is False

    team = (await client.get(f"{API}/auth/team", headers=headers)).json()
    assert {m["email"] for m in team["members"]} == {"owner@example.com", "mgr@example.com"}
    assert {m["email"]: m["externalId"] for m in team["members"]} == {
        "owner@example.com": "kp_owner",
        "mgr@example.com": None,
    }

    res = await client.delete(f"{API}/auth/team/{member['id']}", headers=headers)
    assert res.status_code == 204

    res = await client.delete(f"{API}/auth/team/{owner['user']['id']}", headers=headers)
    assert res.status_code == 403
    assert res.json()["detail"]["error"] == "LAST_OWNER_VIOLATION"


@pytest.mark.asyncio
async def test_last_owner_demotion_is_403(client):
    owner = (await register(client, "kp_owner", "owner@example.com")).json()

    res = await client.patch(
        f"{API}/auth/team/{owner['user']['id']}/role",
        json={"role": "manager"},
        headers=bearer(owner["token"]),
    )
    assert res.status_code == 403
    assert res.json()["detail"]["error"] == "LAST_OWNER_VIOLATION"


@pytest.mark.asyncio
async def test_customers_cannot_manage_team(client):
    await register(client, "kp_owner", "owner@example.com")
    cust = (await register(client, "kp_cust", "cust@example.com")).json()
    assert cust["user"]["role"] == "customer"

    res = await client.post(
        f"{API}/auth/team",
        json={"email": "x@example.com", "role": "customer"},
        headers=bearer(cust["token"]),
    )
    assert res.status_code == 403
    assert res.json()["detail"]["error"] == "INSUFFICIENT_ROLE"


@pytest.mark.asyncio
async def test_invite_verify_accept_flow(client, app):
    sent = []

    class Sender:
        async def send_invitation(self, message):
            sent.append(message)

    app.dependency_overrides[get_invitation_sender] = lambda: Sender()

    owner = (await register(client, "kp_owner", "owner@example.com")).json()
    res = await client.post(
        f"{API}/auth/invite",
        json={"email": "bob@example.com", "role": "manager"},
        headers=bearer(owner["token"]),
    )
    assert res.status_code == 201, res.text
    link = res.json()["inviteLink"]
    token = link.split("token=", 1)[1]
    assert res.json()["invitation"]["status"] == "pending"
    assert len(sent) == 1

    preview = await client.get(f"{API}/auth/invite/verify", params={"token": token})
    assert preview.status_code == 200
    assert preview.json()["organization"]["id"] == "org-alpha"
    assert preview.json()["organization"]["name"] == "Alpha Store"
    assert preview.json()["role"] == "manager"

    # Bob already runs his own store and accepts from there
    bob = (await register(client, "kp_bob", "bob@example.com", org="org-bob", org_name="Bob's")).json()
    res = await client.post(f"{API}/auth/invite/accept", json={"token": token}, headers=bearer(bob["token"]))
    assert res.status_code == 200, res.text
    accepted = res.json()
    assert accepted["user"]["organizationId"] == "org-alpha"
    assert accepted["user"]["role"] == "manager"
    assert accepted["user"]["externalId"] == "kp_bob"

    res = await client.post(f"{API}/auth/invite/accept", json={"token": token}, headers=bearer(bob["token"]))
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_switch_organization_flow(client):
    alice_a = (await register(client, "kp_alice", "alice@example.com", org="org-alpha", org_name="Alpha")).json()
    await register(client, "kp_alice", "alice@example.com", org="org-beta", org_name="Beta")
    await register(client, "kp_carol", "carol@example.com", org="org-gamma", org_name="Gamma")

    headers = bearer(alice_a["token"])
    orgs = (await client.get(f"{API}/auth/organizations", headers=headers)).json()
    assert orgs["currentOrganizationId"] == "org-alpha"
    assert [o["organizationId"] for o in orgs["organizations"]] == ["org-alpha", "org-beta"]
    assert orgs["organizations"][0]["isCurrent"] is True

    res = await client.post(f"{API}/auth/switch-organization", json={"organizationId": "org-beta"}, headers=headers)
    assert res.status_code == 200, res.text
    switched = res.json()
    assert switched["organization"]["name"] == "Beta"
    assert switched["user"]["organizationId"] == "org-beta"

    me = (await client.get(f"{API}/auth/me", headers=bearer(switched["token"]))).json()
    assert me["user"]["organizationId"] == "org-beta"

    res = await client.post(f"{API}/auth/switch-organization", json={"organizationId": "org-gamma"}, headers=headers)
    assert res.status_code == 403
    assert res.json()["detail"]["error"] == "NOT_A_MEMBER"


@pytest.mark.asyncio
async def test_create_and_read_organization(client):
    alice = (await register(client, "kp_alice", "alice@example.com")).json()

    res = await client.post(f"{API}/organizations", json={"name": "Second Shop"}, headers=bearer(alice["token"]))
    assert res.status_code == 201, res.text
    created = res.json()
    assert created["user"]["role"] == "owner"

    current = await client.get(f"{API}/organizations/current", headers=bearer(created["token"]))
    assert current.status_code == 200
    assert current.json()["name"] == "Second Shop"

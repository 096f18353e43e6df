from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.database import get_async_session
from app.core.security import create_access_token
from app.main import app, init_services
from conftest import ALICE, NETWORK, OWNER, TOKEN, VAULT, FakeEventSource, deposited_log, tx_hash


def auth(address: str = OWNER) -> dict:
    return {"Authorization": f"Bearer {create_access_token(address)}"}


@pytest.fixture
def source():
    return FakeEventSource()


@pytest_asyncio.fixture
async def client(session_factory, vault_config, source):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    init_services(app, session_factory, vaults=[vault_config], source_factory=lambda vault: source)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def create_goal(client, target="1000", headers=None):
    response = await client.post(
        "/api/v1/goals",
        json={"title": "Laptop", "target_amount": target, "token_address": TOKEN, "token_symbol": "USDC"},
        headers=headers or auth(),
    )
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client):
    response = await client.get("/api/v1/goals")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_expired_token_is_rejected(client):
    token = create_access_token(OWNER, expires_delta=timedelta(seconds=-5))
    response = await client.get("/api/v1/goals", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired"


@pytest.mark.asyncio
async def test_token_query_parameter_is_accepted(client):
    response = await client.get("/api/v1/goals", params={"token": create_access_token(OWNER)})
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_create_goal_and_deposit(client):
    goal = await create_goal(client)
    assert goal["current_amount"] == "0"
    assert goal["user_id"] == OWNER

    response = await client.post(
        f"/api/v1/goals/{goal['id']}/deposit",
        json={"amount": "250", "transaction_hash": tx_hash(1), "vault_address": VAULT},
        headers=auth(),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["goal"]["current_amount"] == "250"
    assert body["goal"]["progress"] == 25.0
    assert body["transaction"]["status"] == "pending"
    assert body["transaction"]["type"] == "deposit"


@pytest.mark.asyncio
async def test_ledger_errors_keep_their_reason(client):
    goal = await create_goal(client)

    response = await client.post(
        f"/api/v1/goals/{goal['id']}/withdraw", json={"amount": "1"}, headers=auth()
    )

    assert response.status_code == 400
    assert response.json()["error"] == "insufficient_balance"


@pytest.mark.asyncio
async def test_other_wallets_goal_is_not_found(client):
    goal = await create_goal(client)

    response = await client.get(f"/api/v1/goals/{goal['id']}", headers=auth(ALICE))

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_invalid_amount_is_rejected(client):
    goal = await create_goal(client)

    response = await client.post(
        f"/api/v1/goals/{goal['id']}/deposit", json={"amount": "-5"}, headers=auth()
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_sync_confirms_pending_deposit(client, source):
    goal = await create_goal(client)
    deposit = await client.post(
        f"/api/v1/goals/{goal['id']}/deposit",
        json={"amount": "250", "transaction_hash": tx_hash(1), "vault_address": VAULT},
        headers=auth(),
    )
    transaction_id = deposit.json()["transaction"]["transaction_id"]
    source.add(deposited_log(4, 0, tx_hash(1), OWNER, deposit_id=9, amount=250))

    response = await client.post(f"/api/v1/vaults/{NETWORK}/{VAULT}/sync", headers=auth())

    assert response.status_code == 200
    assert response.json()["matched"] == 1
    assert response.json()["to_block"] == 4
    tx = await client.get(f"/api/v1/transactions/{transaction_id}", headers=auth())
    assert tx.json()["status"] == "confirmed"
    vaults = await client.get("/api/v1/vaults", headers=auth())
    assert vaults.json()[0]["last_block"] == 4


@pytest.mark.asyncio
async def test_late_chain_reference_matches_orphan(client, source):
    source.add(deposited_log(2, 0, tx_hash(3), OWNER, deposit_id=1, amount=40))
    await client.post(f"/api/v1/vaults/{NETWORK}/{VAULT}/sync", headers=auth())
    orphans = await client.get(
        f"/api/v1/vaults/{NETWORK}/{VAULT}/events", params={"status": "orphaned"}, headers=auth()
    )
    assert len(orphans.json()) == 1

    goal = await create_goal(client)
    deposit = await client.post(f"/api/v1/goals/{goal['id']}/deposit", json={"amount": "40"}, headers=auth())
    transaction_id = deposit.json()["transaction"]["transaction_id"]
    response = await client.post(
        f"/api/v1/transactions/{transaction_id}/chain-reference",
        json={"transaction_hash": tx_hash(3), "vault_address": VAULT},
        headers=auth(),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"


@pytest.mark.asyncio
async def test_unknown_vault_is_not_found(client):
    response = await client.post(f"/api/v1/vaults/othernet/{VAULT}/sync", headers=auth())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_goal_target(client):
    goal = await create_goal(client)

    response = await client.put(
        f"/api/v1/goals/{goal['id']}", json={"target_amount": "2000", "description": "M3"}, headers=auth()
    )

    assert response.status_code == 200
    assert response.json()["target_amount"] == "2000"
    assert response.json()["description"] == "M3"

    response = await client.put(f"/api/v1/goals/{goal['id']}", json={"target_amount": "0"}, headers=auth())
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_group_goal_update_and_filters(client):
    response = await client.post(
        "/api/v1/group-goals",
        json={"title": "Beach trip", "target_amount": "1000", "token_address": TOKEN,
              "token_symbol": "USDC", "visibility": "public"},
        headers=auth(),
    )
    assert response.status_code == 201
    group = response.json()
    await client.post(f"/api/v1/group-goals/{group['id']}/join", headers=auth(ALICE))

    response = await client.put(f"/api/v1/group-goals/{group['id']}", json={"title": "Lake"}, headers=auth(ALICE))
    assert response.status_code == 403
    assert response.json()["error"] == "membership_violation"

    response = await client.put(
        f"/api/v1/group-goals/{group['id']}", json={"title": "Lake trip"}, headers=auth()
    )
    assert response.status_code == 200
    assert response.json()["title"] == "Lake trip"

    owned = await client.get("/api/v1/group-goals", params={"owned": True}, headers=auth(ALICE))
    assert owned.json() == []
    found = await client.get("/api/v1/group-goals", params={"q": "lake"}, headers=auth(ALICE))
    assert [g["id"] for g in found.json()] == [group["id"]]

"""Integration tests for balance and ledger endpoints."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_balance_defaults_to_zero(async_client: AsyncClient, current_user) -> None:
    """Test that an owner without a balance row sees zero."""
    response = await async_client.get("/v1/balance")

    assert response.status_code == 200
    assert response.json() == {"owner_id": current_user["sub"], "balance_cents": 0, "unlimited_access": False}


@pytest.mark.asyncio
async def test_admin_topup(async_client: AsyncClient, current_user) -> None:
    """Test that an admin top-up is logged and visible in the balance."""
    current_user["role"] = "admin"
    owner = current_user["sub"]

    response = await async_client.post("/v1/balance/topups", json={"owner_id": owner, "amount_cents": 2500})

    assert response.status_code == 201
    assert response.json()["kind"] == "topup"
    assert response.json()["balance_applied_at"] is not None

    assert (await async_client.get("/v1/balance")).json()["balance_cents"] == 2500
    transactions = (await async_client.get("/v1/balance/transactions")).json()
    assert transactions["total"] == 1
    assert transactions["items"][0]["amount_cents"] == 2500


@pytest.mark.asyncio
async def test_negative_adjustment(async_client: AsyncClient, current_user) -> None:
    """Test that adjustments may debit the balance."""
    current_user["role"] = "admin"

    response = await async_client.post(
        "/v1/balance/topups",
        json={"owner_id": "user_2", "amount_cents": -300, "kind": "adjustment", "description": "chargeback"},
    )

    assert response.status_code == 201
    assert response.json()["amount_cents"] == -300
    assert response.json()["description"] == "chargeback"


@pytest.mark.asyncio
async def test_non_positive_topup_is_rejected(async_client: AsyncClient, current_user) -> None:
    """Test that a top-up must add funds."""
    current_user["role"] = "admin"

    response = await async_client.post("/v1/balance/topups", json={"owner_id": "user_2", "amount_cents": 0})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_topup_requires_admin(async_client: AsyncClient, current_user) -> None:
    """Test that regular users cannot credit balances."""
    response = await async_client.post(
        "/v1/balance/topups", json={"owner_id": current_user["sub"], "amount_cents": 2500}
    )

    assert response.status_code == 403

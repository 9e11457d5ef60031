import pytest
from httpx import ASGITransport, AsyncClient

from cashheros_api.models.user import UserRoleEnum

INTEGRATION_HEADERS = {"X-API-Key": "test-integration-key"}
ADMIN_KEY_HEADERS = {"X-API-Key": "test-admin-key"}


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _attribute(client: AsyncClient, user, store, gross: float, **extra) -> dict:
    response = await client.post(
        "/api/cashback/transactions",
        headers=INTEGRATION_HEADERS,
        json={"userId": str(user.id), "storeId": str(store.id), "grossAmount": gross, **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_withdrawal_and_settlement_flow(app_with_db, make_user, make_store, auth_headers) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    store = await make_store(session_factory)
    user_headers = await auth_headers(app, session_factory, user)
    admin_headers = await auth_headers(app, session_factory, admin)

    async with _client(app) as client:
        earned = await _attribute(client, user, store, 600)
        await _attribute(client, user, store, 900)
        confirmed = await client.patch(
            f"/api/cashback/transactions/{earned['id']}/status",
            headers=admin_headers,
            json={"status": "confirmed", "note": "Store approved"},
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["history"][-1]["actor"] == f"admin:{admin.id}"

        before = (await client.get("/api/cashback", headers=user_headers)).json()["data"]["balances"]
        assert before == {"available": 30.0, "pending": 45.0, "totalEarned": 30.0, "totalRedeemed": 0.0}

        withdrawal = await client.post(
            "/api/cashback/withdraw",
            headers=user_headers,
            json={"method": "paypal", "destination": "user@example.com"},
        )
        assert withdrawal.status_code == 200
        payout = withdrawal.json()["data"]
        assert payout["amount"] == 30.0
        assert payout["status"] == "pending"

        frozen = (await client.get("/api/cashback", headers=user_headers)).json()["data"]["balances"]
        assert frozen["available"] == 0.0

        unauthenticated = await client.post(
            f"/api/cashback/withdrawals/{payout['id']}/settlement", json={"success": True}
        )
        settled = await client.post(
            f"/api/cashback/withdrawals/{payout['id']}/settlement",
            headers=INTEGRATION_HEADERS,
            json={"success": True, "paymentReference": "PP-123"},
        )
        replayed = await client.post(
            f"/api/cashback/withdrawals/{payout['id']}/settlement",
            headers=INTEGRATION_HEADERS,
            json={"success": True},
        )
        after = (await client.get("/api/cashback", headers=user_headers)).json()["data"]
        withdrawals = (await client.get("/api/cashback/withdrawals", headers=user_headers)).json()

    assert unauthenticated.status_code == 401
    assert settled.status_code == 200
    assert settled.json()["data"]["status"] == "paid"
    assert replayed.status_code == 400
    assert replayed.json()["error"] == "InvalidTransition"
    assert after["balances"] == {"available": 0.0, "pending": 45.0, "totalEarned": 30.0, "totalRedeemed": 30.0}
    assert {item["status"] for item in after["transactions"]} == {"paid", "pending"}
    assert [item["paymentReference"] for item in withdrawals["data"]] == ["PP-123"]


@pytest.mark.asyncio
async def test_withdrawal_without_enough_balance_is_refused(app_with_db, make_user, auth_headers) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    headers = await auth_headers(app, session_factory, user)

    async with _client(app) as client:
        response = await client.post(
            "/api/cashback/withdraw",
            headers=headers,
            json={"method": "bank_transfer", "destination": "DE89 3704 0044"},
        )
        bad_method = await client.post(
            "/api/cashback/withdraw",
            headers=headers,
            json={"method": "cheque", "destination": "somewhere"},
        )

    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientFunds"
    assert bad_method.status_code == 400
    assert bad_method.json()["field"] == "method"


@pytest.mark.asyncio
async def test_attribution_requires_integration_key_and_is_idempotent(app_with_db, make_user, make_store) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    store = await make_store(session_factory)
    body = {"userId": str(user.id), "storeId": str(store.id), "grossAmount": 24.69, "rate": 50, "orderReference": "A-1"}

    async with _client(app) as client:
        missing_key = await client.post("/api/cashback/transactions", json=body)
        wrong_key = await client.post("/api/cashback/transactions", headers=ADMIN_KEY_HEADERS, json=body)
        first = await _attribute(client, user, store, 24.69, rate=50, orderReference="A-1")
        replay = await _attribute(client, user, store, 24.69, rate=50, orderReference="A-1")
        negative = await client.post(
            "/api/cashback/transactions",
            headers=INTEGRATION_HEADERS,
            json={**body, "grossAmount": -5, "orderReference": "A-2"},
        )

    assert missing_key.status_code == 401
    assert wrong_key.status_code == 401
    assert first["cashbackAmount"] == 12.34
    assert first["status"] == "pending"
    assert first["history"][0]["toStatus"] == "pending"
    assert replay["id"] == first["id"]
    assert negative.status_code == 400
    assert negative.json()["field"] == "grossAmount"


@pytest.mark.asyncio
async def test_attribution_rejects_rates_finer_than_cents(app_with_db, make_user, make_store) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    store = await make_store(session_factory)
    body = {"userId": str(user.id), "storeId": str(store.id), "grossAmount": 100}

    async with _client(app) as client:
        fractional = await client.post(
            "/api/cashback/transactions",
            headers=INTEGRATION_HEADERS,
            json={**body, "rate": 3.335, "orderReference": "R-1"},
        )
        tiny = await client.post(
            "/api/cashback/transactions",
            headers=INTEGRATION_HEADERS,
            json={**body, "rate": 0.004, "orderReference": "R-2"},
        )
        accepted = await _attribute(client, user, store, 100, rate=3.35, orderReference="R-3")

    assert fractional.status_code == 400
    assert fractional.json()["field"] == "rate"
    assert tiny.status_code == 400
    assert tiny.json()["field"] == "rate"
    assert accepted["cashbackAmount"] == 3.35


@pytest.mark.asyncio
async def test_transaction_detail_is_private_to_owner_and_admins(
    app_with_db, make_user, make_store, auth_headers
) -> None:
    app, session_factory = app_with_db
    owner = await make_user(session_factory)
    stranger = await make_user(session_factory)
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    store = await make_store(session_factory)

    async with _client(app) as client:
        transaction = await _attribute(client, owner, store, 100)
        path = f"/api/cashback/transactions/{transaction['id']}"
        as_owner = await client.get(path, headers=await auth_headers(app, session_factory, owner))
        as_stranger = await client.get(path, headers=await auth_headers(app, session_factory, stranger))
        as_admin = await client.get(path, headers=await auth_headers(app, session_factory, admin))

    assert as_owner.status_code == 200
    assert as_stranger.status_code == 404
    assert as_admin.status_code == 200


@pytest.mark.asyncio
async def test_status_changes_are_admin_only_and_validated(app_with_db, make_user, make_store, auth_headers) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    store = await make_store(session_factory)
    user_headers = await auth_headers(app, session_factory, user)
    admin_headers = await auth_headers(app, session_factory, admin)

    async with _client(app) as client:
        transaction = await _attribute(client, user, store, 100)
        path = f"/api/cashback/transactions/{transaction['id']}/status"
        by_user = await client.patch(path, headers=user_headers, json={"status": "confirmed"})
        to_paid = await client.patch(path, headers=admin_headers, json={"status": "paid"})
        rejected = await client.patch(path, headers=admin_headers, json={"status": "rejected", "note": "Returned"})
        again = await client.patch(path, headers=admin_headers, json={"status": "confirmed"})
        listing = await client.get("/api/cashback/transactions", headers=user_headers, params={"status": "rejected"})

    assert by_user.status_code == 403
    assert to_paid.status_code == 400
    assert to_paid.json()["field"] == "status"
    assert rejected.json()["data"]["rejectionReason"] == "Returned"
    assert again.status_code == 400
    assert again.json()["error"] == "InvalidTransition"
    assert [item["id"] for item in listing.json()["data"]] == [transaction["id"]]


@pytest.mark.asyncio
async def test_recompute_reports_consistent_balances(app_with_db, make_user, make_store, auth_headers) -> None:
    app, session_factory = app_with_db
    user = await make_user(session_factory)
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    store = await make_store(session_factory)

    async with _client(app) as client:
        await _attribute(client, user, store, 100)
        response = await client.get(
            "/api/cashback/balance/recompute",
            headers=await auth_headers(app, session_factory, admin),
            params={"userId": str(user.id)},
        )
        forbidden = await client.get(
            "/api/cashback/balance/recompute",
            headers=await auth_headers(app, session_factory, user),
            params={"userId": str(user.id)},
        )

    data = response.json()["data"]
    assert data["consistent"] is True
    assert data["stored"]["pending"] == 5.0
    assert data["inFlight"] == 0.0
    assert forbidden.status_code == 403

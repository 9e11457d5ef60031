import pytest
from httpx import ASGITransport, AsyncClient

from cashheros_api.models.user import UserRoleEnum


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_admin_creates_and_updates_store(app_with_db, make_user, auth_headers) -> None:
    app, session_factory = app_with_db
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    headers = await auth_headers(app, session_factory, admin)

    async with _client(app) as client:
        created = await client.post(
            "/api/stores",
            headers=headers,
            json={
                "name": "Northwind Outfitters",
                "categories": ["Outdoor", "outdoor ", "Travel"],
                "cashbackPercentage": 6.5,
                "isFeatured": True,
            },
        )
        assert created.status_code == 201
        store = created.json()["data"]
        assert store["categories"] == ["outdoor", "travel"]
        assert store["cashbackPercentage"] == 6.5

        duplicate = await client.post("/api/stores", headers=headers, json={"name": "Northwind Outfitters"})
        out_of_range = await client.post(
            "/api/stores", headers=headers, json={"name": "Greedy Store", "cashbackPercentage": 101}
        )
        updated = await client.put(
            f"/api/stores/{store['id']}",
            headers=headers,
            json={"description": "Gear for every trail", "isFeatured": False},
        )
        null_name = await client.put(f"/api/stores/{store['id']}", headers=headers, json={"name": None})

    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "Conflict"
    assert out_of_range.status_code == 400
    assert out_of_range.json()["field"] == "cashbackPercentage"
    assert updated.json()["data"]["description"] == "Gear for every trail"
    assert updated.json()["data"]["isFeatured"] is False
    assert null_name.status_code == 400
    assert null_name.json()["field"] == "name"


@pytest.mark.asyncio
async def test_list_stores_filters_by_category_and_featured(app_with_db, make_store) -> None:
    app, session_factory = app_with_db
    await make_store(session_factory, "Alpha Electronics", categories=["electronics"], is_featured=True)
    await make_store(session_factory, "Beta Books", categories=["books"])
    await make_store(session_factory, "Gamma Gadgets", categories=["electronics", "toys"])

    async with _client(app) as client:
        electronics = await client.get("/api/stores", params={"category": "Electronics"})
        featured = await client.get("/api/stores", params={"featured": "true"})
        searched = await client.get("/api/stores", params={"search": "books"})

    assert [item["name"] for item in electronics.json()["data"]] == ["Alpha Electronics", "Gamma Gadgets"]
    assert [item["name"] for item in featured.json()["data"]] == ["Alpha Electronics"]
    assert [item["name"] for item in searched.json()["data"]] == ["Beta Books"]


@pytest.mark.asyncio
async def test_delete_store_deactivates_when_referenced(
    app_with_db, make_user, make_store, make_coupon, auth_headers
) -> None:
    app, session_factory = app_with_db
    admin = await make_user(session_factory, role=UserRoleEnum.ADMIN)
    headers = await auth_headers(app, session_factory, admin)
    referenced = await make_store(session_factory)
    await make_coupon(session_factory, referenced)
    unused = await make_store(session_factory)

    async with _client(app) as client:
        soft = await client.delete(f"/api/stores/{referenced.id}", headers=headers)
        hard = await client.delete(f"/api/stores/{unused.id}", headers=headers)
        still_there = await client.get(f"/api/stores/{referenced.id}")
        gone = await client.get(f"/api/stores/{unused.id}")

    assert soft.json()["data"]["outcome"] == "deactivated"
    assert hard.json()["data"]["outcome"] == "deleted"
    assert still_there.json()["data"]["isActive"] is False
    assert gone.status_code == 404

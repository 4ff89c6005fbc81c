import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from api import create_app
from api.deps import get_dispatcher
from core.config import get_settings
from core.db import get_session
from marketplace.models import ExecutorProfile


def _token(user_id, role="user", user_type="customer"):
    settings = get_settings()
    claims = {"sub": str(user_id), "role": role, "user_type": user_type}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def _auth(user_id, role="user", user_type="customer"):
    return {"Authorization": f"Bearer {_token(user_id, role, user_type)}"}


ADMIN = _auth(1, role="admin")
CUSTOMER = _auth(100)
EXECUTOR = _auth(200, user_type="executor")


@pytest.fixture
async def client(test_session, dispatcher):
    app = create_app()

    async def _get_test_session():
        yield test_session

    app.dependency_overrides[get_session] = _get_test_session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def category_id(client):
    response = await client.post(
        "/api/v1/categories",
        json={"name_ru": "Сантехника", "name_uz": "Santexnika", "color": "#1E90FF"},
        headers=ADMIN,
    )
    assert response.status_code == 201
    return response.json()["id"]


def _order_payload(category_id, **overrides):
    payload = {
        "category_id": category_id,
        "title": "Починить кран",
        "description": "Течёт кран на кухне",
        "price_type": "fixed",
        "budget_from": "200000",
        "budget_to": "400000",
        "address": "Ташкент, Чиланзар 5",
        "location_lat": 41.35,
        "location_lng": 69.25,
        "publish": True,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_requests_without_token_are_unauthorized(client):
    response = await client.post("/api/v1/orders", json={})
    assert response.status_code == 401

    response = await client.get("/api/v1/orders/mine", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_category_endpoints(client, category_id):
    response = await client.get(f"/api/v1/categories/{category_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["slug"] == "сантехника"
    assert body["color"] == "#1e90ff"

    child = await client.post(
        "/api/v1/categories",
        json={"name_ru": "Краны", "name_uz": "Kranlar", "parent_id": category_id},
        headers=ADMIN,
    )
    assert child.status_code == 201
    child_id = child.json()["id"]

    tree = (await client.get("/api/v1/categories", params={"locale": "uz"})).json()
    assert tree[0]["name"] == "Santexnika"
    assert tree[0]["children"][0]["id"] == child_id

    crumbs = (await client.get(f"/api/v1/categories/{child_id}/breadcrumbs")).json()
    assert [c["id"] for c in crumbs] == [category_id, child_id]

    response = await client.post(f"/api/v1/categories/{category_id}/move", json={"parent_id": child_id}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["code"] == "cyclic_dependency"

    response = await client.delete(f"/api/v1/categories/{category_id}", headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["code"] == "has_children"


@pytest.mark.asyncio
async def test_category_writes_need_staff_and_valid_input(client, category_id):
    response = await client.post("/api/v1/categories", json={"name_ru": "Уборка", "name_uz": "Tozalash"}, headers=CUSTOMER)
    assert response.status_code == 403
    assert response.json() == {
        "code": "forbidden",
        "detail": "Only staff can manage categories",
        "retryable": False,
    }

    response = await client.post(
        "/api/v1/categories",
        json={"name_ru": "Уборка", "name_uz": "Tozalash", "color": "red"},
        headers=ADMIN,
    )
    assert response.status_code == 422

    response = await client.get("/api/v1/categories/9999")
    assert response.status_code == 404
    assert response.json()["code"] == "category_not_found"


@pytest.mark.asyncio
async def test_order_and_application_flow(client, category_id, test_session):
    test_session.add(ExecutorProfile(user_id=200, location_lat=41.30, location_lng=69.24, work_radius_km=10))
    await test_session.commit()

    response = await client.post("/api/v1/orders", json=_order_payload(category_id), headers=CUSTOMER)
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "open"
    assert order["is_published"] is True

    feed = (await client.get("/api/v1/orders/feed", headers=EXECUTOR)).json()
    assert [o["id"] for o in feed] == [order["id"]]

    bid = {"message": "Сделаю сегодня", "proposed_price": "350000"}
    response = await client.post(f"/api/v1/orders/{order['id']}/applications", json=bid, headers=EXECUTOR)
    assert response.status_code == 201
    application = response.json()
    assert application["status"] == "pending"

    response = await client.post(f"/api/v1/orders/{order['id']}/applications", json=bid, headers=EXECUTOR)
    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_application"

    mine = (await client.get("/api/v1/orders/applications/mine", headers=EXECUTOR)).json()
    assert [a["id"] for a in mine] == [application["id"]]

    response = await client.post(
        f"/api/v1/orders/{order['id']}/applications/{application['id']}/accept", headers=CUSTOMER
    )
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"

    response = await client.post(f"/api/v1/orders/{order['id']}/done", headers=EXECUTOR)
    assert response.json()["status"] == "waiting_confirmation"

    response = await client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"rating": 5, "review": "Отлично"}, headers=CUSTOMER
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = await client.post(f"/api/v1/orders/{order['id']}/complete", json={"rating": 5}, headers=CUSTOMER)
    assert response.status_code == 409
    assert response.json()["code"] == "terminal_order"


@pytest.mark.asyncio
async def test_publish_incomplete_order_returns_missing_fields(client, category_id):
    response = await client.post(
        "/api/v1/orders", json=_order_payload(category_id, address=None, publish=False), headers=CUSTOMER
    )
    order_id = response.json()["id"]

    response = await client.post(f"/api/v1/orders/{order_id}/publish", headers=CUSTOMER)
    assert response.status_code == 400
    assert response.json()["code"] == "incomplete_order"
    assert "address" in response.json()["detail"]

    response = await client.patch(f"/api/v1/orders/{order_id}", json={"address": "Юнусабад 12"}, headers=CUSTOMER)
    assert response.status_code == 200

    response = await client.post(f"/api/v1/orders/{order_id}/publish", headers=CUSTOMER)
    assert response.status_code == 200
    assert response.json()["status"] == "open"


@pytest.mark.asyncio
async def test_unknown_order_and_views(client, category_id):
    response = await client.get("/api/v1/orders/9999")
    assert response.status_code == 404
    assert response.json()["code"] == "order_not_found"

    order_id = (await client.post("/api/v1/orders", json=_order_payload(category_id), headers=CUSTOMER)).json()["id"]
    response = await client.post(f"/api/v1/orders/{order_id}/views")
    assert response.status_code == 204
    assert (await client.get(f"/api/v1/orders/{order_id}")).json()["views_count"] == 1


@pytest.mark.asyncio
async def test_patch_cannot_clear_required_columns(client, category_id):
    order_id = (
        await client.post("/api/v1/orders", json=_order_payload(category_id, publish=False), headers=CUSTOMER)
    ).json()["id"]

    response = await client.patch(f"/api/v1/orders/{order_id}", json={"urgency": None}, headers=CUSTOMER)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    response = await client.patch(f"/api/v1/categories/{category_id}", json={"sort_order": None}, headers=ADMIN)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"

    response = await client.get(f"/api/v1/orders/{order_id}")
    assert response.json()["urgency"] == "medium"


@pytest.mark.asyncio
async def test_delete_category_in_use_is_a_conflict(client, category_id):
    await client.post("/api/v1/orders", json=_order_payload(category_id), headers=CUSTOMER)

    response = await client.delete(f"/api/v1/categories/{category_id}", headers=ADMIN)

    assert response.status_code == 409
    assert response.json()["code"] == "category_in_use"


@pytest.mark.asyncio
async def test_mark_viewed_requires_matching_order(client, category_id, test_session):
    test_session.add(ExecutorProfile(user_id=200, location_lat=41.30, location_lng=69.24, work_radius_km=10))
    await test_session.commit()
    first = (await client.post("/api/v1/orders", json=_order_payload(category_id), headers=CUSTOMER)).json()
    second = (await client.post("/api/v1/orders", json=_order_payload(category_id), headers=CUSTOMER)).json()
    application = (
        await client.post(f"/api/v1/orders/{first['id']}/applications", json={"message": "Сделаю"}, headers=EXECUTOR)
    ).json()

    response = await client.post(
        f"/api/v1/orders/{second['id']}/applications/{application['id']}/viewed", headers=CUSTOMER
    )
    assert response.status_code == 404
    assert response.json()["code"] == "application_not_found"

    response = await client.post(
        f"/api/v1/orders/{first['id']}/applications/{application['id']}/viewed", headers=CUSTOMER
    )
    assert response.status_code == 200
    assert response.json()["is_viewed"] is True


@pytest.mark.asyncio
async def test_search_endpoints(client, category_id, test_session):
    test_session.add(
        ExecutorProfile(user_id=200, location_lat=41.30, location_lng=69.24, work_radius_km=10, rating=4.8)
    )
    await test_session.commit()
    order = (
        await client.post("/api/v1/orders", json=_order_payload(category_id, urgency="urgent"), headers=CUSTOMER)
    ).json()
    await client.post("/api/v1/orders", json=_order_payload(category_id, publish=False), headers=CUSTOMER)

    response = await client.get("/api/v1/orders/search", params={"urgency": "urgent", "limit": 5})
    assert response.status_code == 200
    body = response.json()
    assert [o["id"] for o in body["items"]] == [order["id"]]
    assert body["total"] == 1
    assert body["total_pages"] == 1

    response = await client.get("/api/v1/orders/search", params={"customer_id": 100}, headers=CUSTOMER)
    assert response.json()["total"] == 2

    response = await client.get("/api/v1/orders/search", params={"lat": 41.35})
    assert response.status_code == 400

    response = await client.get(f"/api/v1/orders/{order['id']}/executors", headers=CUSTOMER)
    assert response.status_code == 200
    (executor,) = response.json()
    assert executor["user_id"] == 200
    assert executor["rating"] == 4.8
    assert executor["is_premium"] is False

    response = await client.get("/api/v1/executors", params={"lat": 41.30, "lng": 69.24, "radius": 5})
    assert response.status_code == 200
    assert [e["user_id"] for e in response.json()["items"]] == [200]

    response = await client.get("/api/v1/executors/nearby", params={"lat": 42.5, "lng": 71.0, "radius": 1})
    assert response.json() == []

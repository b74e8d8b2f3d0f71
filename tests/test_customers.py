from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from storeadmin import models
from storeadmin.services.customers import DEFAULT_CUSTOMER_SETTINGS, calculate_segment, refresh_segments

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
THRESHOLDS = DEFAULT_CUSTOMER_SETTINGS["segment_thresholds"]


async def create_customer(client: AsyncClient, **overrides) -> dict:
    payload = {"name": "Alex Rivera", "email": "alex@example.com", "phone": "555-0100"}
    payload.update(overrides)
    response = await client.post("/api/customers", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_customer_sends_welcome(client: AsyncClient, provider):
    customer = await create_customer(client)
    assert customer["id"] == "CUST-1001"
    assert customer["segment"] == "new"
    assert customer["preferences"] == {"email_opt_in": True, "sms_opt_in": False}
    assert provider.messages[0]["to"] == "alex@example.com"


@pytest.mark.asyncio
async def test_welcome_email_can_be_disabled(client: AsyncClient, provider):
    await client.put("/api/customers/settings", json={"send_welcome_email": False})
    await create_customer(client)
    assert provider.messages == []


@pytest.mark.asyncio
async def test_duplicate_email_rejected(client: AsyncClient):
    await create_customer(client)
    response = await client.post("/api/customers", json={"name": "Other", "email": "ALEX@example.com"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_cannot_take_another_customers_email(client: AsyncClient):
    alex = await create_customer(client)
    sam = await create_customer(client, name="Sam Park", email="sam@example.com")

    for email in ("alex@example.com", "ALEX@example.com"):
        response = await client.patch(f"/api/customers/{sam['id']}", json={"email": email})
        assert response.status_code == 400
    assert (await client.get(f"/api/customers/{sam['id']}")).json()["email"] == "sam@example.com"

    response = await client.patch(f"/api/customers/{alex['id']}", json={"email": "Alex@example.com"})
    assert response.status_code == 200
    assert response.json()["email"] == "Alex@example.com"

    response = await client.post("/api/customers", json={"name": "Gold", "email": "g@example.com", "segment": "gold"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_invalid_email_rejected(client: AsyncClient):
    response = await client.post("/api/customers", json={"name": "Nobody", "email": "not-an-email"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_and_delete_customer(client: AsyncClient):
    customer = await create_customer(client)
    response = await client.patch(
        f"/api/customers/{customer['id']}",
        json={"segment": "vip", "preferences": {"sms_opt_in": True}},
    )
    updated = response.json()
    assert updated["segment"] == "vip"
    assert updated["preferences"] == {"email_opt_in": True, "sms_opt_in": True}

    bad = await client.patch(f"/api/customers/{customer['id']}", json={"segment": "gold"})
    assert bad.status_code == 422

    assert (await client.delete(f"/api/customers/{customer['id']}")).status_code == 204
    assert (await client.get(f"/api/customers/{customer['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_search_and_segment_filters(client: AsyncClient):
    await create_customer(client)
    await create_customer(client, name="Morgan Lee", email="morgan@example.com", segment="vip")

    response = await client.get("/api/customers", params={"search": "morgan"})
    assert [c["name"] for c in response.json()] == ["Morgan Lee"]

    response = await client.get("/api/customers", params={"segment": "vip"})
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_statistics_and_breakdown(client: AsyncClient):
    await create_customer(client)
    await create_customer(client, name="Morgan Lee", email="morgan@example.com", segment="vip")

    stats = (await client.get("/api/customers/statistics")).json()
    assert stats["total_customers"] == 2
    assert stats["new_customers"] == 1
    assert stats["vip_customers"] == 1
    assert stats["retention_rate"] == 100.0

    breakdown = (await client.get("/api/customers/segments")).json()
    assert breakdown["vip"] == {"count": 1, "percentage": 50.0, "label": "VIP Customers"}

    ltv = (await client.get("/api/customers/lifetime-value")).json()
    assert set(ltv) == {"new", "returning", "vip", "at_risk", "inactive"}


@pytest.mark.asyncio
async def test_export_csv(client: AsyncClient):
    await create_customer(client, notes="Prefers email")
    response = await client.get("/api/customers/export")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("ID,Name,Email")
    assert "alex@example.com" in lines[1]
    assert "Prefers email" in lines[1]


@pytest.mark.asyncio
async def test_refresh_segments_moves_lapsed_customers(session):
    session.add(
        models.Customer(
            id="CUST-1",
            name="Lapsed",
            email="lapsed@example.com",
            segment="returning",
            preferences={},
            total_orders=2,
            total_spent=80.0,
            last_order_date=NOW - timedelta(days=100),
            order_ids=["ORD-1", "ORD-2"],
        )
    )
    await session.commit()

    assert await refresh_segments(session, now=NOW) == 1
    customer = await session.get(models.Customer, "CUST-1")
    assert customer.segment == "inactive"


@pytest.mark.parametrize(
    "customer, expected",
    [
        ({"total_orders": 0, "segment": "new"}, "new"),
        ({"total_orders": 1, "total_spent": 900.0, "last_order_date": NOW}, "new"),
        ({"total_orders": 3, "total_spent": 60.0, "last_order_date": NOW}, "vip"),
        ({"total_orders": 2, "total_spent": 500.0, "last_order_date": NOW}, "vip"),
        ({"total_orders": 2, "total_spent": 50.0, "last_order_date": NOW - timedelta(days=90)}, "inactive"),
        ({"total_orders": 2, "total_spent": 50.0, "last_order_date": NOW - timedelta(days=60)}, "at_risk"),
        ({"total_orders": 2, "total_spent": 50.0, "last_order_date": NOW - timedelta(days=59)}, "returning"),
    ],
)
def test_calculate_segment(customer, expected):
    assert calculate_segment(customer, THRESHOLDS, NOW) == expected

import pytest
from httpx import AsyncClient

from storeadmin.services.orders import calculate_totals

from .test_products import create_product


def order_payload(**overrides) -> dict:
    payload = {
        "customer": {"name": "Jane Doe", "email": "jane@example.com"},
        "items": [{"product_id": "ro001", "name": "Foam Roller", "price": 25.0, "quantity": 2}],
        "tax_amount": 0,
        "shipping_amount": 0,
        "shipping_address": {"street": "1 Main St", "city": "Austin", "state": "TX", "zip": "78701"},
        "payment_method": "card",
    }
    payload.update(overrides)
    return payload


async def create_order(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/orders", json=order_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_order_links_customer_and_updates_stock(client: AsyncClient, provider):
    await create_product(client)
    order = await create_order(client)

    assert order["id"] == "ORD-1001"
    assert order["order_number"] == 1001
    assert order["subtotal"] == 50.0
    assert order["total_amount"] == 50.0
    assert order["status"] == "pending"
    assert order["customer_id"] == "CUST-1001"
    assert order["history"][0]["action"] == "order_created"

    product = (await client.get("/api/products/ro001")).json()
    assert product["inventory"]["stock_quantity"] == 8

    customer = (await client.get("/api/customers/CUST-1001")).json()
    assert customer["total_orders"] == 1
    assert customer["order_ids"] == ["ORD-1001"]

    subjects = [message["subject"] for message in provider.messages]
    assert subjects == ["Welcome to Recovery Essentials!", "Order ORD-1001 received"]


@pytest.mark.asyncio
async def test_default_tax_rate_applies(client: AsyncClient):
    order = await create_order(
        client,
        items=[{"name": "Massage Gun", "price": 100.0, "quantity": 1}],
        tax_amount=None,
        shipping_amount=5.0,
    )
    assert order["tax_amount"] == pytest.approx(8.25)
    assert order["total_amount"] == pytest.approx(113.25)


@pytest.mark.asyncio
async def test_repeat_customer_is_matched_by_email(client: AsyncClient):
    await create_order(client)
    await create_order(client, customer={"name": "Jane Doe", "email": "JANE@example.com"})

    customers = (await client.get("/api/customers")).json()
    assert len(customers) == 1
    assert customers[0]["total_orders"] == 2
    assert customers[0]["total_spent"] == 100.0
    assert customers[0]["segment"] == "returning"


@pytest.mark.asyncio
async def test_order_requires_items(client: AsyncClient):
    response = await client.post("/api/orders", json=order_payload(items=[]))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_order_and_payment_statuses_are_rejected(client: AsyncClient):
    response = await client.post("/api/orders", json=order_payload(status="bogus"))
    assert response.status_code == 400
    response = await client.post("/api/orders", json=order_payload(payment_status="whatever"))
    assert response.status_code == 400
    assert (await client.get("/api/orders")).json() == []

    order = await create_order(client, payment_status="paid")
    assert order["payment_status"] == "paid"
    response = await client.patch(f"/api/orders/{order['id']}", json={"payment_status": "whatever"})
    assert response.status_code == 400
    assert (await client.get(f"/api/orders/{order['id']}")).json()["payment_status"] == "paid"

    response = await client.put("/api/orders/settings", json={"default_order_status": "bogus"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_status_change_records_history_and_notifies(client: AsyncClient, provider):
    order = await create_order(client)
    response = await client.patch(f"/api/orders/{order['id']}", json={"status": "shipped", "note": "UPS"})
    assert response.status_code == 200
    updated = response.json()
    assert updated["status"] == "shipped"
    assert updated["history"][-1]["previous_status"] == "pending"
    assert updated["history"][-1]["note"] == "UPS"
    assert provider.messages[-1]["subject"] == "Order ORD-1001 is now shipped"

    response = await client.patch(f"/api/orders/{order['id']}", json={"status": "lost"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_partial_then_full_refund(client: AsyncClient):
    order = await create_order(client)

    response = await client.post(f"/api/orders/{order['id']}/refunds", json={"amount": 20, "reason": "Damaged"})
    partial = response.json()
    assert partial["payment_status"] == "partially_refunded"
    assert partial["status"] == "pending"
    assert partial["refunds"][0]["id"].startswith("REF-")

    too_much = await client.post(f"/api/orders/{order['id']}/refunds", json={"amount": 40})
    assert too_much.status_code == 400

    response = await client.post(f"/api/orders/{order['id']}/refunds", json={"amount": 30})
    full = response.json()
    assert full["status"] == "refunded"
    assert full["payment_status"] == "refunded"
    assert full["refunded_amount"] == 50.0


@pytest.mark.asyncio
async def test_notes_and_filters(client: AsyncClient):
    order = await create_order(client)
    await create_order(client, customer={"email": "sam@example.com"}, items=[{"name": "Mat", "price": 300}])

    response = await client.post(f"/api/orders/{order['id']}/notes", json={"note": "Gift wrap", "is_private": True})
    assert response.json()["history"][-1]["note"] == "Gift wrap"

    response = await client.get("/api/orders", params={"min_amount": 100})
    assert [o["customer"]["email"] for o in response.json()] == ["sam@example.com"]

    response = await client.get("/api/orders", params={"status": "pending"})
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_invoice(client: AsyncClient):
    order = await create_order(client)
    invoice = (await client.get(f"/api/orders/{order['id']}/invoice")).json()
    assert invoice["invoice_number"] == "INV-1001"
    assert invoice["items"][0]["total"] == 50.0
    assert invoice["billing_address"]["city"] == "Austin"

    response = await client.get(f"/api/orders/{order['id']}/invoice.txt")
    assert response.status_code == 200
    assert "INVOICE INV-1001" in response.text
    assert "Austin" in response.text


@pytest.mark.asyncio
async def test_statistics_and_settings(client: AsyncClient):
    await create_order(client)
    stats = (await client.get("/api/orders/statistics", params={"period": "all"})).json()
    assert stats["total_orders"] == 1
    assert stats["total_revenue"] == 50.0
    assert stats["orders_by_status"]["pending"] == 1
    assert stats["top_products"][0]["quantity"] == 2

    assert (await client.get("/api/orders/statistics", params={"period": "decade"})).status_code == 400

    response = await client.put("/api/orders/settings", json={"tax_rate": 0.1})
    settings = response.json()
    assert settings["tax_rate"] == 0.1
    assert len(settings["shipping_options"]) == 3


@pytest.mark.asyncio
async def test_delete_order(client: AsyncClient):
    order = await create_order(client)
    assert (await client.delete(f"/api/orders/{order['id']}")).status_code == 204
    assert (await client.get(f"/api/orders/{order['id']}")).status_code == 404


def test_calculate_totals():
    lines, totals = calculate_totals(
        [{"name": "A", "price": 10, "quantity": 3}, {"name": "B", "price": 5.5}],
        tax_rate=0.1,
        shipping_amount=4.0,
        discount_amount=2.0,
    )
    assert [line["line_total"] for line in lines] == [30.0, 5.5]
    assert totals == {
        "subtotal": 35.5,
        "tax_amount": 3.55,
        "shipping_amount": 4.0,
        "discount_amount": 2.0,
        "total_amount": 41.05,
    }

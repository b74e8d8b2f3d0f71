import pytest
from httpx import AsyncClient

from storeadmin import models


def product_payload(**overrides) -> dict:
    payload = {
        "name": "Foam Roller",
        "category": "rollers",
        "description": "High density foam roller for deep tissue recovery",
        "price": 29.99,
        "rating": 4.7,
        "image_url": "https://example.com/roller.jpg",
        "affiliate_link": "https://www.amazon.com/dp/B000ROLLER",
        "features": ["High density foam", "18 inch length"],
        "tags": ["recovery"],
        "inventory": {"stock_quantity": 10, "low_stock_threshold": 3},
    }
    payload.update(overrides)
    return payload


async def create_product(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/api/products", json=product_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_product_generates_category_id(client: AsyncClient):
    first = await create_product(client)
    second = await create_product(client, name="Travel Roller")

    assert first["id"] == "ro001"
    assert second["id"] == "ro002"
    assert first["inventory"]["stock_quantity"] == 10
    assert first["inventory_status"] == "In Stock"


@pytest.mark.asyncio
async def test_create_product_requires_a_feature(client: AsyncClient):
    response = await client.post("/api/products", json=product_payload(features=["  "]))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_explicit_id_must_be_unique(client: AsyncClient):
    await create_product(client, id="custom1")
    response = await client.post("/api/products", json=product_payload(id="custom1"))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_products_filters(client: AsyncClient):
    await create_product(client)
    await create_product(client, name="Massage Gun", category="massage", tags=["percussion"])

    response = await client.get("/api/products", params={"search": "massage"})
    assert [p["name"] for p in response.json()] == ["Massage Gun"]

    response = await client.get("/api/products", params={"category": "rollers"})
    assert [p["name"] for p in response.json()] == ["Foam Roller"]

    response = await client.get("/api/products", params={"tag": "percussion"})
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_update_inventory_changes_status(client: AsyncClient):
    product = await create_product(client)
    response = await client.patch(
        f"/api/products/{product['id']}",
        json={"inventory": {"stock_quantity": 2, "low_stock_threshold": 3}},
    )
    assert response.status_code == 200
    assert response.json()["inventory_status"] == "Low Stock"

    stats = (await client.get("/api/products/stats")).json()
    assert stats == {"total_products": 1, "low_stock": 1, "out_of_stock": 0, "top_rated": 1}


@pytest.mark.asyncio
async def test_get_missing_product_returns_404(client: AsyncClient):
    assert (await client.get("/api/products/nope")).status_code == 404
    assert (await client.delete("/api/products/nope")).status_code == 404


@pytest.mark.asyncio
async def test_duplicate_product(client: AsyncClient):
    product = await create_product(client)
    response = await client.post(f"/api/products/{product['id']}/duplicate")
    assert response.status_code == 201
    copy = response.json()
    assert copy["id"] != product["id"]
    assert copy["name"] == "Foam Roller (Copy)"
    assert copy["features"] == product["features"]


@pytest.mark.asyncio
async def test_bulk_discount_and_tag(client: AsyncClient):
    product = await create_product(client)
    response = await client.post(
        "/api/products/bulk",
        json={"action": "discount", "product_ids": [product["id"]], "percent": 20},
    )
    assert response.json() == {"action": "discount", "affected": 1}

    updated = (await client.get(f"/api/products/{product['id']}")).json()
    assert updated["sale_price"] == pytest.approx(23.99)
    assert "sale" in updated["tags"]

    response = await client.post(
        "/api/products/bulk",
        json={"action": "discount", "product_ids": [product["id"]], "percent": 150},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_bulk_set_stock_and_delete(client: AsyncClient):
    first = await create_product(client)
    second = await create_product(client, name="Travel Roller")
    ids = [first["id"], second["id"]]

    response = await client.post("/api/products/bulk", json={"action": "set_stock", "product_ids": ids, "stock_quantity": 0})
    assert response.json()["affected"] == 2
    stats = (await client.get("/api/products/stats")).json()
    assert stats["out_of_stock"] == 2

    response = await client.post("/api/products/bulk", json={"action": "delete", "product_ids": ids})
    assert response.json()["affected"] == 2
    assert (await client.get("/api/products")).json() == []


@pytest.mark.asyncio
async def test_bulk_rejects_unknown_action(client: AsyncClient):
    response = await client.post("/api/products/bulk", json={"action": "explode", "product_ids": ["x"]})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_export_then_import_replaces_existing(client: AsyncClient):
    product = await create_product(client)
    exported = (await client.get("/api/products/export")).json()
    assert exported[0]["id"] == product["id"]

    exported[0]["name"] = "Foam Roller Pro"
    new_item = product_payload(name="Yoga Mat", category="mats")
    response = await client.post("/api/products/import", json=[exported[0], new_item])
    assert response.json() == {"created": 1, "replaced": 1}

    renamed = (await client.get(f"/api/products/{product['id']}")).json()
    assert renamed["name"] == "Foam Roller Pro"


@pytest.mark.asyncio
async def test_categories_and_tags(client: AsyncClient):
    response = await client.post("/api/categories", json={"name": "Massage Tools"})
    assert response.status_code == 201
    category = response.json()
    assert category["slug"] == "massage-tools"

    duplicate = await client.post("/api/categories", json={"name": "Massage Tools"})
    assert duplicate.status_code == 400

    await create_product(client, category="massage-tools")
    response = await client.delete(f"/api/categories/{category['id']}")
    assert response.status_code == 400

    tag = (await client.post("/api/tags", json={"name": "Best Seller"})).json()
    response = await client.patch(f"/api/tags/{tag['id']}", json={"slug": "Top Picks"})
    assert response.json()["slug"] == "top-picks"
    assert (await client.delete(f"/api/tags/{tag['id']}")).status_code == 204
    assert (await client.get("/api/tags")).json() == []


@pytest.mark.parametrize(
    "stock, manage_stock, expected",
    [(0, True, "Out of Stock"), (5, True, "Low Stock"), (6, True, "In Stock"), (0, False, "In Stock")],
)
def test_inventory_status_thresholds(stock, manage_stock, expected):
    product = models.Product(stock_quantity=stock, low_stock_threshold=5, manage_stock=manage_stock)
    assert product.inventory_status == expected

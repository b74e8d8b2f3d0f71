from datetime import timedelta

import pytest
from httpx import AsyncClient

from storeadmin import models
from storeadmin.services import affiliates as affiliates_service


async def create_link(client: AsyncClient, **overrides) -> dict:
    payload = {
        "name": "Roller on Amazon",
        "product_id": "ro001",
        "product_name": "Foam Roller",
        "url": "https://www.amazon.com/dp/B000ROLLER?tag=testtag-20",
        "commission": 4.5,
    }
    payload.update(overrides)
    response = await client.post("/api/affiliates", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_link_ids_are_sequential(client: AsyncClient):
    first = await create_link(client)
    second = await create_link(client, product_id="ma001")
    assert first["id"] == "afl001"
    assert second["id"] == "afl002"
    assert first["platform"] == "amazon"


@pytest.mark.asyncio
async def test_clicks_and_conversions(client: AsyncClient):
    link = await create_link(client)
    for _ in range(4):
        response = await client.post(f"/api/affiliates/{link['id']}/click", json={"user_id": "u1"})
        assert response.status_code == 200
    response = await client.post(f"/api/affiliates/{link['id']}/conversion")
    data = response.json()
    assert data["clicks"] == 4
    assert data["conversions"] == 1
    assert data["conversion_rate"] == 25.0

    report = (await client.get("/api/analytics/reports/affiliates", params={"period": "today"})).json()
    assert report["total_clicks"] == 4
    assert report["clicks_by_link"] == {link["id"]: 4}
    assert report["top_products"][0] == {"product_id": "ro001", "count": 4}


@pytest.mark.asyncio
async def test_click_without_body(client: AsyncClient):
    link = await create_link(client)
    response = await client.post(f"/api/affiliates/{link['id']}/click")
    assert response.status_code == 200
    assert response.json()["clicks"] == 1


@pytest.mark.asyncio
async def test_update_filter_and_delete(client: AsyncClient):
    link = await create_link(client)
    await create_link(client, product_id="ma001", platform="shareasale")

    response = await client.patch(f"/api/affiliates/{link['id']}", json={"commission": 6.0})
    assert response.json()["commission"] == 6.0

    response = await client.get("/api/affiliates", params={"platform": "shareasale"})
    assert [item["product_id"] for item in response.json()] == ["ma001"]

    assert (await client.delete(f"/api/affiliates/{link['id']}")).status_code == 204
    assert (await client.get(f"/api/affiliates/{link['id']}")).status_code == 404
    assert (await client.post(f"/api/affiliates/{link['id']}/click")).status_code == 404


@pytest.mark.asyncio
async def test_amazon_url(client: AsyncClient):
    response = await client.get("/api/affiliates/amazon-url", params={"asin": "B000ROLLER"})
    assert response.json() == {"url": "https://www.amazon.com/dp/B000ROLLER?tag=testtag-20"}

    response = await client.get("/api/affiliates/amazon-url")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_amazon_product_is_cached(client: AsyncClient):
    first = (await client.get("/api/affiliates/amazon/B000ROLLER")).json()
    second = (await client.get("/api/affiliates/amazon/B000ROLLER")).json()
    assert first["cached"] is False
    assert second["cached"] is True
    assert second["affiliate_url"].endswith("tag=testtag-20")


@pytest.mark.asyncio
async def test_stale_amazon_cache_is_refreshed(session, test_settings):
    await affiliates_service.fetch_amazon_product(session, test_settings, "B000STALE")
    cached = await session.get(models.AmazonProductCache, "B000STALE")
    cached.fetched_at = models.utcnow() - timedelta(hours=test_settings.amazon_cache_hours + 1)
    await session.commit()

    result = await affiliates_service.fetch_amazon_product(session, test_settings, "B000STALE")
    assert result["cached"] is False

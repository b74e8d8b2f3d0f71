import uuid

import pytest
from httpx import AsyncClient

from storeadmin.services.ab_testing import improvement, significance


async def create_test(client: AsyncClient, **overrides) -> dict:
    payload = {
        "name": "Subject line test",
        "test_type": "subject",
        "goal": "open_rate",
        "variants": [
            {"id": "a", "name": "Control", "subject": "Recovery tools on sale"},
            {"id": "b", "name": "Question", "subject": "Sore after your workout?"},
        ],
    }
    payload.update(overrides)
    response = await client.post("/api/ab-tests", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def record(client: AsyncClient, test_id: str, variant_id: str, **counts):
    return await client.post(f"/api/ab-tests/{test_id}/metrics", json={"variant_id": variant_id, **counts})


@pytest.mark.asyncio
async def test_create_fills_variant_defaults(client: AsyncClient):
    test = await create_test(client, variants=[{"subject": "One"}, {"subject": "Two"}])
    assert test["status"] == "draft"
    assert [v["name"] for v in test["variants"]] == ["Variant A", "Variant B"]
    assert all(v["id"].startswith("variant_") for v in test["variants"])
    assert test["variants"][0]["metrics"]["sent"] == 0


@pytest.mark.asyncio
async def test_create_validation(client: AsyncClient):
    response = await client.post("/api/ab-tests", json={"name": "Lonely", "variants": [{"subject": "Only"}]})
    assert response.status_code == 422

    response = await client.post(
        "/api/ab-tests", json={"name": "Odd", "goal": "revenue", "variants": [{"id": "a"}, {"id": "b"}]}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_full_lifecycle_picks_winner(client: AsyncClient):
    test = await create_test(client)
    test_id = test["id"]

    response = await record(client, test_id, "a", sent=10)
    assert response.status_code == 400

    response = await client.post(f"/api/ab-tests/{test_id}/start")
    assert response.json()["status"] == "running"
    assert response.json()["start_date"] is not None
    assert (await client.post(f"/api/ab-tests/{test_id}/start")).status_code == 400

    await record(client, test_id, "a", sent=100, opened=20, clicked=5)
    response = await record(client, test_id, "b", sent=100, opened=30, clicked=4)
    variant_b = response.json()["variants"][1]
    assert variant_b["metrics"]["open_rate"] == 30.0
    assert variant_b["metrics"]["click_rate"] == 4.0

    assert (await record(client, test_id, "zzz", sent=1)).status_code == 400

    response = await client.post(f"/api/ab-tests/{test_id}/stop")
    assert response.json()["status"] == "stopped"

    response = await client.post(f"/api/ab-tests/{test_id}/evaluate")
    result = response.json()
    assert result["status"] == "completed"
    assert result["winner"] == "b"
    assert result["winning_metric"] == "open_rate"
    assert result["improvement"] == 50.0
    assert 85.0 < result["confidence"] < 95.0

    response = await client.post(f"/api/ab-tests/{test_id}/apply-winner")
    assert response.status_code == 201
    campaign = response.json()
    assert campaign["name"] == "Subject line test - Winner (Question)"
    assert campaign["subject"] == "Sore after your workout?"
    assert campaign["status"] == "draft"

    stored = (await client.get(f"/api/ab-tests/{test_id}")).json()
    assert stored["final_campaign_id"] == campaign["id"]


@pytest.mark.asyncio
async def test_counts_cannot_exceed_sent(client: AsyncClient):
    test = await create_test(client)
    await client.post(f"/api/ab-tests/{test['id']}/start")

    response = await record(client, test["id"], "b", sent=10, opened=30)
    assert response.status_code == 400
    await record(client, test["id"], "b", sent=10, opened=4)
    assert (await record(client, test["id"], "b", clicked=11)).status_code == 400

    variant_b = (await client.get(f"/api/ab-tests/{test['id']}")).json()["variants"][1]
    assert variant_b["metrics"]["sent"] == 10
    assert variant_b["metrics"]["open_rate"] == 40.0

    response = await client.post(f"/api/ab-tests/{test['id']}/evaluate")
    assert response.status_code == 200
    assert response.json()["winner"] == "b"


@pytest.mark.asyncio
async def test_apply_winner_requires_completed_test(client: AsyncClient):
    test = await create_test(client)
    response = await client.post(f"/api/ab-tests/{test['id']}/apply-winner")
    assert response.status_code == 400
    assert (await client.post(f"/api/ab-tests/{test['id']}/evaluate")).status_code == 400


@pytest.mark.asyncio
async def test_list_filter_and_delete(client: AsyncClient):
    first = await create_test(client)
    await create_test(client, name="Content test", test_type="content")
    await client.post(f"/api/ab-tests/{first['id']}/start")

    response = await client.get("/api/ab-tests", params={"status": "running"})
    assert [t["id"] for t in response.json()] == [first["id"]]

    assert (await client.delete(f"/api/ab-tests/{first['id']}")).status_code == 204
    assert (await client.get(f"/api/ab-tests/{first['id']}")).status_code == 404
    assert (await client.post(f"/api/ab-tests/{uuid.uuid4()}/start")).status_code == 404


@pytest.mark.asyncio
async def test_ideas(client: AsyncClient):
    ideas = (await client.get("/api/ab-tests/ideas")).json()
    assert set(ideas) == {"subject_line_tests", "content_tests", "timing_tests"}
    assert ideas["content_tests"][0]["name"] == "CTA Button Text"


def test_significance():
    assert significance(0, 0, 0, 0) == 0.0
    assert significance(50, 100, 50, 100) == 0.0
    assert significance(0, 100, 0, 100) == 0.0
    assert significance(60, 100, 20, 100) > 99.0
    # z of about 1.64 sits at the one-sided 95% point, so two-sided confidence is about 90%
    assert significance(30, 100, 20, 100) == pytest.approx(89.5, abs=0.5)


@pytest.mark.parametrize(
    "winner, control, expected",
    [(30.0, 20.0, 50.0), (12.0, 0.0, 100.0), (0.0, 0.0, 0.0), (15.0, 20.0, -25.0)],
)
def test_improvement(winner, control, expected):
    assert improvement(winner, control) == expected

import pytest
from httpx import AsyncClient

from storeadmin.config import Settings
from storeadmin.tasks.scheduler import create_scheduler, describe_jobs, setup_jobs


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_jobs_empty_when_scheduler_disabled(client: AsyncClient):
    response = await client.get("/api/jobs")
    assert response.status_code == 200
    assert response.json() == {"jobs": []}


def test_setup_jobs_registers_background_jobs():
    scheduler = create_scheduler()
    setup_jobs(scheduler, Settings(scheduled_content_interval_seconds=30))

    jobs = {job["id"]: job for job in describe_jobs(scheduler)}
    assert set(jobs) == {
        "publish_scheduled_content",
        "refresh_customer_segments",
        "cleanup_analytics",
        "process_email_automations",
    }
    assert jobs["refresh_customer_segments"]["name"] == "Refresh Customer Segments"
    assert "interval" in jobs["publish_scheduled_content"]["trigger"]
    assert "cron" in jobs["cleanup_analytics"]["trigger"]
    assert "interval" in jobs["process_email_automations"]["trigger"]


def test_settings_builds_amazon_url():
    settings = Settings(amazon_associate_tag="shop-20", amazon_marketplace="www.amazon.co.uk")
    assert settings.build_amazon_url("B0001") == "https://www.amazon.co.uk/dp/B0001?tag=shop-20"
    assert settings.build_amazon_url("B0001", "other-21").endswith("tag=other-21")

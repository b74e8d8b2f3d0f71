import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from storeadmin.services.email_campaigns import send_campaign, send_due_campaigns
from storeadmin.services.email_providers import EmailProvider
from storeadmin.services.personalization import personalize

NOW = datetime(2025, 7, 4, 9, 0, tzinfo=timezone.utc)


async def seed_customers(client: AsyncClient) -> None:
    for payload in (
        {"name": "Alex Rivera", "email": "alex@example.com"},
        {"name": "Morgan Lee", "email": "morgan@example.com", "segment": "vip"},
        {"name": "Pat Quinn", "email": "pat@example.com", "preferences": {"email_opt_in": False}},
    ):
        response = await client.post("/api/customers", json=payload)
        assert response.status_code == 201, response.text


async def create_template(client: AsyncClient, **overrides) -> dict:
    payload = {
        "name": "VIP Offer",
        "category": "promotional",
        "subject": "Hi {{firstName}}, a gift for you",
        "body": "{{#if isVip}}Thanks for being a VIP. {{/if}}Enjoy 15% off.",
    }
    payload.update(overrides)
    response = await client.post("/api/email/templates", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def create_segment(client: AsyncClient, **overrides) -> dict:
    payload = {"name": "VIPs", "criteria": {"type": "segment", "value": "vip"}}
    payload.update(overrides)
    response = await client.post("/api/email/segments", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_template_crud(client: AsyncClient):
    template = await create_template(client)
    await create_template(client, name="Monthly", category="newsletter")
    assert template["usage_count"] == 0

    response = await client.get("/api/email/templates", params={"category": "newsletter"})
    assert [t["name"] for t in response.json()] == ["Monthly"]

    response = await client.patch(f"/api/email/templates/{template['id']}", json={"category": "coupon"})
    assert response.status_code == 400

    response = await client.post(
        "/api/email/templates", json={"name": "Bad", "category": "coupon", "subject": "Hello"}
    )
    assert response.status_code == 400

    assert (await client.delete(f"/api/email/templates/{template['id']}")).status_code == 204
    assert (await client.get(f"/api/email/templates/{template['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_segment_counts_skip_opted_out_customers(client: AsyncClient):
    await seed_customers(client)
    everyone = await create_segment(client, name="Everyone", criteria={"type": "all"})
    vips = await create_segment(client)
    assert everyone["count"] == 2
    assert vips["count"] == 1

    listed = {segment["name"]: segment["count"] for segment in (await client.get("/api/email/segments")).json()}
    assert listed == {"Everyone": 2, "VIPs": 1}

    response = await client.patch(
        f"/api/email/segments/{vips['id']}", json={"criteria": {"type": "segment", "value": "new"}}
    )
    assert response.json()["count"] == 1

    assert (await client.delete(f"/api/email/segments/{vips['id']}")).status_code == 204


@pytest.mark.asyncio
async def test_segment_criteria_validation(client: AsyncClient):
    response = await client.post("/api/email/segments", json={"name": "City", "criteria": {"type": "city"}})
    assert response.status_code == 422

    response = await client.post("/api/email/segments", json={"name": "Empty", "criteria": {"type": "segment"}})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_send_campaign_personalizes_each_message(client: AsyncClient, provider):
    await seed_customers(client)
    template = await create_template(client)
    segment = await create_segment(client)
    provider.messages.clear()

    response = await client.post(
        "/api/email/campaigns",
        json={"name": "Summer VIP", "template_id": template["id"], "segment_id": segment["id"]},
    )
    assert response.status_code == 201
    campaign = response.json()
    assert campaign["status"] == "draft"
    assert campaign["subject"] == template["subject"]

    response = await client.post(f"/api/email/campaigns/{campaign['id']}/send")
    sent = response.json()
    assert sent["status"] == "completed"
    assert sent["recipients"] == 1
    assert sent["stats"]["sent"] == 1
    assert provider.messages == [
        {
            "to": "morgan@example.com",
            "subject": "Hi Morgan, a gift for you",
            "body": "Thanks for being a VIP. Enjoy 15% off.",
        }
    ]

    template = (await client.get(f"/api/email/templates/{template['id']}")).json()
    assert template["usage_count"] == 1
    assert template["last_used"] is not None

    response = await client.post(f"/api/email/campaigns/{campaign['id']}/send")
    assert response.status_code == 400

    response = await client.patch(f"/api/email/campaigns/{campaign['id']}", json={"name": "Renamed"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_campaign_stats_and_dashboard(client: AsyncClient):
    await seed_customers(client)
    campaign = (
        await client.post("/api/email/campaigns", json={"name": "Newsletter", "subject": "News", "body": "Hi"})
    ).json()
    await client.post(f"/api/email/campaigns/{campaign['id']}/send")

    response = await client.post(f"/api/email/campaigns/{campaign['id']}/stats", json={"opened": 1, "clicked": 1})
    stats = response.json()["stats"]
    assert stats["opened"] == 1
    assert stats["open_rate"] == 50.0
    assert stats["click_rate"] == 50.0

    dashboard = (await client.get("/api/email/dashboard")).json()
    assert dashboard["total_campaigns"] == 1
    assert dashboard["emails_sent"] == 2
    assert dashboard["average_open_rate"] == 50.0
    assert dashboard["last_sent_at"] is not None


@pytest.mark.asyncio
async def test_campaign_validation(client: AsyncClient):
    response = await client.post("/api/email/campaigns", json={"name": "No subject"})
    assert response.status_code == 400

    response = await client.post("/api/email/campaigns", json={"name": "Odd", "subject": "Hi", "type": "drip"})
    assert response.status_code == 400

    response = await client.post(
        "/api/email/campaigns", json={"name": "Ghost", "template_id": str(uuid.uuid4())}
    )
    assert response.status_code == 400

    assert (await client.post(f"/api/email/campaigns/{uuid.uuid4()}/send")).status_code == 404


@pytest.mark.asyncio
async def test_duplicate_filter_and_delete(client: AsyncClient):
    campaign = (await client.post("/api/email/campaigns", json={"name": "Launch", "subject": "New!"})).json()
    response = await client.post(f"/api/email/campaigns/{campaign['id']}/duplicate")
    assert response.status_code == 201
    copy = response.json()
    assert copy["name"] == "Launch (Copy)"
    assert copy["status"] == "draft"

    response = await client.patch(f"/api/email/campaigns/{campaign['id']}", json={"status": "paused"})
    assert response.json()["status"] == "paused"
    response = await client.patch(f"/api/email/campaigns/{campaign['id']}", json={"status": "archived"})
    assert response.status_code == 400

    response = await client.get("/api/email/campaigns", params={"status": "draft"})
    assert [c["name"] for c in response.json()] == ["Launch (Copy)"]

    assert (await client.delete(f"/api/email/campaigns/{copy['id']}")).status_code == 204
    assert len((await client.get("/api/email/campaigns")).json()) == 1


@pytest.mark.asyncio
async def test_scheduled_campaigns_are_sent_when_due(client: AsyncClient, session, provider):
    await seed_customers(client)
    provider.messages.clear()
    send_at = datetime.now(timezone.utc) + timedelta(hours=1)
    response = await client.post(
        "/api/email/campaigns",
        json={"name": "Weekend Sale", "subject": "Sale for {{firstName}}", "scheduled_at": send_at.isoformat()},
    )
    campaign = response.json()
    assert campaign["status"] == "scheduled"

    assert await send_due_campaigns(session, provider) == 0
    assert await send_due_campaigns(session, provider, now=send_at + timedelta(minutes=1)) == 1
    assert sorted(message["subject"] for message in provider.messages) == ["Sale for Alex", "Sale for Morgan"]

    campaign = (await client.get(f"/api/email/campaigns/{campaign['id']}")).json()
    assert campaign["status"] == "completed"


@pytest.mark.asyncio
async def test_personalize_preview(client: AsyncClient):
    template = "Hi {{firstName}}{{#if isVip}}, our VIP{{/if}}! {{unknownTag}}"
    response = await client.post(
        "/api/email/personalize", json={"template": template, "customer": {"name": "Jamie Fox", "segment": "vip"}}
    )
    assert response.json() == {"rendered": "Hi Jamie, our VIP! {{unknownTag}}"}

    await seed_customers(client)
    response = await client.post("/api/email/personalize", json={"template": template, "customer_id": "CUST-1001"})
    assert response.json() == {"rendered": "Hi Alex! {{unknownTag}}"}

    response = await client.post("/api/email/personalize", json={"template": template, "customer_id": "CUST-9"})
    assert response.status_code == 404


def test_personalize_defaults_and_dates():
    rendered = personalize("Dear {{ firstName }}, {{fullName}} ({{segment}}) {{currentMonth}} {{currentYear}}", {}, NOW)
    assert rendered == "Dear there, Valued Customer (new) July 2025"

    customer = {"name": "Lee", "total_orders": 3, "last_order_date": datetime(2025, 6, 1, tzinfo=timezone.utc)}
    rendered = personalize(
        "{{#if hasOrdered}}Orders: {{totalOrders}}, last on {{lastOrderDate}}{{/if}}{{#if isNew}} welcome{{/if}}",
        customer,
        NOW,
    )
    assert rendered == "Orders: 3, last on June 01, 2025"
    assert personalize("", customer, NOW) == ""


def test_personalize_each_loops():
    customer = {
        "name": "Lee",
        "items": [{"name": "Foam Roller", "price": 25}, {"name": "Massage Ball"}],
        "order_ids": ["ORD-1001", "ORD-1002"],
    }
    rendered = personalize(
        "{{#each items}}- {{this.name}} {{this.price}}\n{{/each}}{{#each order_ids}}[{{this}}]{{/each}}",
        customer,
        NOW,
    )
    assert rendered == "- Foam Roller 25\n- Massage Ball \n[ORD-1001][ORD-1002]"
    assert personalize("{{#each wishlist}}{{this}}{{/each}}done", customer, NOW) == "done"


def test_personalize_else_and_unbalanced_markers():
    template = "{{#if isVip}}VIP{{else}}Regular{{/if}}"
    assert personalize(template, {"segment": "vip"}, NOW) == "VIP"
    assert personalize(template, {}, NOW) == "Regular"
    with pytest.raises(ValueError):
        personalize("{{#if isVip}}never closed", {}, NOW)


@pytest.mark.asyncio
async def test_broken_templates_are_rejected(client: AsyncClient):
    response = await client.post(
        "/api/email/campaigns", json={"name": "Broken", "subject": "Hi", "body": "{{#each items}}x"}
    )
    assert response.status_code == 400
    response = await client.post("/api/email/personalize", json={"template": "{{/if}}", "customer": {}})
    assert response.status_code == 400


class FlakyProvider(EmailProvider):
    name = "flaky"

    def __init__(self):
        super().__init__("shop@storeadmin.test")
        self.delivered = []

    async def send(self, to, subject, body):
        if to.startswith("alex"):
            raise ConnectionError("mailbox unavailable")
        self.delivered.append(to)
        return await super().send(to, subject, body)


@pytest.mark.asyncio
async def test_failed_recipient_does_not_block_the_rest(client: AsyncClient, session):
    await seed_customers(client)
    campaign = (await client.post("/api/email/campaigns", json={"name": "Flash", "subject": "Sale"})).json()

    flaky = FlakyProvider()
    sent = await send_campaign(session, uuid.UUID(campaign["id"]), flaky)
    assert sent.status == "completed"
    assert sent.recipients == 1
    assert sent.stats["failed"] == 1
    assert flaky.delivered == ["morgan@example.com"]

    with pytest.raises(ValueError):
        await send_campaign(session, uuid.UUID(campaign["id"]), flaky)

from datetime import timedelta

import pytest
from sqlalchemy import select

from storeadmin import models
from storeadmin.tasks import analytics_cleanup, customer_segments, email_automations, scheduled_content


@pytest.fixture
def task_sessions(monkeypatch, session_factory, test_settings):
    """Point the job modules at the in-memory database."""

    async def override_session():
        async with session_factory() as session:
            yield session

    for module in (analytics_cleanup, customer_segments, email_automations, scheduled_content):
        monkeypatch.setattr(module, "get_session", override_session)
    monkeypatch.setattr(analytics_cleanup, "get_settings", lambda: test_settings)
    monkeypatch.setattr(scheduled_content, "get_settings", lambda: test_settings)
    monkeypatch.setattr(email_automations, "get_settings", lambda: test_settings)
    return session_factory


@pytest.mark.asyncio
async def test_publish_due_content(task_sessions):
    past = models.utcnow() - timedelta(minutes=1)
    async with task_sessions() as session:
        post = models.BlogPost(title="Ice Baths", slug="ice-baths", content="", status="scheduled", tags=[], status_history=[])
        session.add(post)
        await session.flush()
        session.add(
            models.ScheduledContent(
                id=f"schedule_blog_post_{post.id}",
                content_type="blog_post",
                content_id=str(post.id),
                publish_date=past,
                status="scheduled",
                details={"title": "Ice Baths"},
            )
        )
        session.add(
            models.EmailCampaign(
                name="Due", subject="Hello", body="", type="regular", status="scheduled",
                scheduled_at=past, recipients=0, stats={},
            )
        )
        await session.commit()
        post_id = post.id

    await scheduled_content.publish_due_content()

    async with task_sessions() as session:
        post = await session.get(models.BlogPost, post_id)
        assert post.status == "published"
        campaign = (await session.execute(select(models.EmailCampaign))).scalar_one()
        assert campaign.status == "completed"


@pytest.mark.asyncio
async def test_cleanup_analytics(task_sessions):
    async with task_sessions() as session:
        session.add(
            models.AnalyticsEvent(kind="event", name="old", data={}, timestamp=models.utcnow() - timedelta(days=31))
        )
        await session.commit()

    await analytics_cleanup.cleanup_analytics()

    async with task_sessions() as session:
        remaining = (await session.execute(select(models.AnalyticsEvent))).scalars().all()
        assert remaining == []


@pytest.mark.asyncio
async def test_refresh_customer_segments(task_sessions):
    async with task_sessions() as session:
        session.add(
            models.Customer(
                id="CUST-1",
                name="Big Spender",
                email="big@example.com",
                segment="returning",
                preferences={},
                total_orders=2,
                total_spent=900.0,
                last_order_date=models.utcnow(),
                order_ids=["ORD-1", "ORD-2"],
            )
        )
        await session.commit()

    await customer_segments.refresh_customer_segments()

    async with task_sessions() as session:
        customer = await session.get(models.Customer, "CUST-1")
        assert customer.segment == "vip"


@pytest.mark.asyncio
async def test_process_email_automations(task_sessions):
    async with task_sessions() as session:
        session.add(
            models.Customer(
                id="CUST-1", name="Jamie Lee", email="jamie@example.com", segment="new",
                preferences={}, tags=[], order_ids=[],
            )
        )
        workflow = models.AutomationWorkflow(
            name="Welcome",
            trigger={"type": "event", "event": "customer_created", "delay_minutes": 0},
            steps=[{"id": "step_1", "name": "Hello", "type": "email", "delay_minutes": 0,
                    "subject": "Hi {{firstName}}", "body": "", "condition": None}],
            is_active=True,
            stats={"started": 1, "completed": 0, "conversions": 0},
        )
        session.add(workflow)
        await session.flush()
        run = models.AutomationRun(
            workflow_id=workflow.id, customer_id="CUST-1", status="active", current_step=0,
            step_results=[], trigger_data={}, next_step_at=models.utcnow() - timedelta(minutes=1),
        )
        session.add(run)
        await session.commit()
        run_id = run.id

    await email_automations.process_email_automations()

    async with task_sessions() as session:
        run = await session.get(models.AutomationRun, run_id)
        assert run.status == "completed"
        assert run.step_results[0]["status"] == "executed"
        campaign = (await session.execute(select(models.EmailCampaign))).scalar_one()
        assert campaign.name == "Welcome - Hello"
        assert campaign.subject == "Hi Jamie"

"""
Email automation: triggered drip sequences.

A workflow is a trigger plus an ordered list of steps. Every time the trigger
fires a run is started for one customer. A run walks the steps in order; each
step waits ``delay_minutes`` after the previous one was due, then its condition
is checked and the step is executed or skipped. :func:`process_automations`
advances every run that is due and is called from the scheduler.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import email_campaigns as campaigns_service
from storeadmin.services.email_providers import EmailProvider
from storeadmin.services.personalization import compile_template, personalize
from storeadmin.utils.dates import ensure_utc
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

TRIGGER_EVENTS = ("customer_created", "order_created", "cart_abandoned")
FREQUENCIES = ("daily", "weekly", "monthly")
STEP_TYPES = ("email", "tag", "webhook")
CONDITION_TYPES = ("opened_previous_email", "clicked_previous_email", "made_a_purchase", "customer_segment")

ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

AUTOMATION_PRESETS: dict[str, dict[str, Any]] = {
    "welcome_series": {
        "name": "Welcome Series",
        "description": "A series of welcome emails for new customers",
        "trigger": {"type": "event", "event": "customer_created", "delay_minutes": 0},
        "steps": [
            {"name": "Welcome Email", "type": "email", "delay_minutes": 0,
             "subject": "Welcome to Recovery Essentials!"},
            {"name": "Product Recommendations", "type": "email", "delay_minutes": 3 * 24 * 60,
             "subject": "Products We Think You'll Love",
             "condition": {"type": "opened_previous_email", "value": True}},
            {"name": "Special Offer", "type": "email", "delay_minutes": 7 * 24 * 60,
             "subject": "15% Off Your First Order!"},
        ],
    },
    "abandoned_cart": {
        "name": "Abandoned Cart Recovery",
        "description": "Follow-up emails for customers who left items in their cart",
        "trigger": {"type": "event", "event": "cart_abandoned", "delay_minutes": 60},
        "steps": [
            {"name": "Cart Reminder", "type": "email", "delay_minutes": 0,
             "subject": "You Left Something Behind!"},
            {"name": "Limited Time Offer", "type": "email", "delay_minutes": 24 * 60,
             "subject": "10% Off to Complete Your Purchase",
             "condition": {"type": "clicked_previous_email", "value": False}},
            {"name": "Final Reminder", "type": "email", "delay_minutes": 3 * 24 * 60,
             "subject": "Last Chance: Your Cart Will Expire Soon",
             "condition": {"type": "made_a_purchase", "value": False}},
        ],
    },
}


def empty_stats() -> dict[str, int]:
    return {"started": 0, "completed": 0, "conversions": 0}


def next_run_time(trigger: dict[str, Any], now: datetime) -> datetime:
    """Next firing of a schedule trigger strictly after ``now``.

    ``day_of_week`` counts from Monday (0); ``day_of_month`` is clamped to the
    length of the month.
    """
    now = ensure_utc(now)
    frequency = trigger.get("frequency", "daily")
    candidate = now.replace(hour=trigger.get("hour", 9), minute=trigger.get("minute", 0), second=0, microsecond=0)
    if frequency == "daily":
        if candidate <= now:
            candidate += timedelta(days=1)
    elif frequency == "weekly":
        candidate += timedelta(days=(trigger.get("day_of_week", 0) - now.weekday()) % 7)
        if candidate <= now:
            candidate += timedelta(days=7)
    elif frequency == "monthly":
        day = trigger.get("day_of_month", 1)
        candidate += relativedelta(day=day)
        if candidate <= now:
            candidate += relativedelta(months=1, day=day)
    else:
        raise ValueError(f"Unknown schedule frequency: {frequency}")
    return candidate


def _validate_trigger(trigger: dict[str, Any]) -> dict[str, Any]:
    kind = trigger.get("type")
    if kind == "event":
        if trigger.get("event") not in TRIGGER_EVENTS:
            raise ValueError(f"Unknown trigger event: {trigger.get('event')}")
        return {"type": "event", "event": trigger["event"], "delay_minutes": trigger.get("delay_minutes") or 0}
    if kind == "schedule":
        prepared = {
            "type": "schedule",
            "frequency": trigger.get("frequency") or "daily",
            "hour": 9 if trigger.get("hour") is None else trigger["hour"],
            "minute": trigger.get("minute") or 0,
            "day_of_week": trigger.get("day_of_week") or 0,
            "day_of_month": trigger.get("day_of_month") or 1,
        }
        if prepared["frequency"] not in FREQUENCIES:
            raise ValueError(f"Unknown schedule frequency: {prepared['frequency']}")
        return prepared
    raise ValueError(f"Unknown trigger type: {kind}")


def _prepare_steps(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    prepared = []
    for index, step in enumerate(steps, start=1):
        if step.get("type", "email") not in STEP_TYPES:
            raise ValueError(f"Unknown step type: {step.get('type')}")
        condition = step.get("condition")
        if condition and condition.get("type") not in CONDITION_TYPES:
            raise ValueError(f"Unknown step condition: {condition.get('type')}")
        if step.get("type", "email") == "email":
            if not step.get("template_id") and not step.get("subject"):
                raise ValueError(f"Email step {index} needs a template or a subject")
            compile_template(step.get("subject") or "")
            compile_template(step.get("body") or "")
        prepared.append(
            {
                "id": step.get("id") or f"step_{index}",
                "name": step.get("name") or f"Step {index}",
                "type": step.get("type", "email"),
                "delay_minutes": step.get("delay_minutes") or 0,
                "template_id": str(step["template_id"]) if step.get("template_id") else None,
                "subject": step.get("subject"),
                "body": step.get("body"),
                "tag": step.get("tag"),
                "webhook_url": step.get("webhook_url"),
                "condition": condition or None,
            }
        )
    return prepared


# Workflows

async def create_workflow(session: AsyncSession, data: dict[str, Any]) -> models.AutomationWorkflow:
    """New workflows start inactive."""
    now = models.utcnow()
    workflow = models.AutomationWorkflow(
        name=data["name"],
        description=data.get("description"),
        trigger=_validate_trigger(data.get("trigger") or {}),
        steps=_prepare_steps(data.get("steps") or []),
        segment_id=data.get("segment_id"),
        is_active=False,
        stats=empty_stats(),
        created_at=now,
        last_updated=now,
    )
    session.add(workflow)
    await session.commit()
    await session.refresh(workflow)
    log_with_context(
        logger, "info", "Automation created", workflow_id=str(workflow.id), trigger=workflow.trigger["type"]
    )
    return workflow


async def get_workflow(session: AsyncSession, workflow_id: uuid.UUID) -> Optional[models.AutomationWorkflow]:
    return await session.get(models.AutomationWorkflow, workflow_id)


async def list_workflows(session: AsyncSession, *, active: Optional[bool] = None) -> list[models.AutomationWorkflow]:
    stmt = select(models.AutomationWorkflow).order_by(models.AutomationWorkflow.created_at)
    if active is not None:
        stmt = stmt.where(models.AutomationWorkflow.is_active == active)
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_workflow(
    session: AsyncSession, workflow_id: uuid.UUID, data: dict[str, Any], *, now: Optional[datetime] = None
) -> Optional[models.AutomationWorkflow]:
    workflow = await get_workflow(session, workflow_id)
    if workflow is None:
        return None
    if data.get("name"):
        workflow.name = data["name"]
    if "description" in data:
        workflow.description = data["description"]
    if "segment_id" in data:
        workflow.segment_id = data["segment_id"]
    if data.get("trigger"):
        workflow.trigger = _validate_trigger(data["trigger"])
        if workflow.is_active:
            workflow.next_run_at = _first_run(workflow.trigger, now or models.utcnow())
    if data.get("steps") is not None:
        workflow.steps = _prepare_steps(data["steps"])
    workflow.last_updated = models.utcnow()
    await session.commit()
    await session.refresh(workflow)
    return workflow


async def delete_workflow(session: AsyncSession, workflow_id: uuid.UUID) -> bool:
    workflow = await get_workflow(session, workflow_id)
    if workflow is None:
        return False
    await session.execute(delete(models.AutomationRun).where(models.AutomationRun.workflow_id == workflow_id))
    await session.delete(workflow)
    await session.commit()
    return True


def _first_run(trigger: dict[str, Any], now: datetime) -> Optional[datetime]:
    return next_run_time(trigger, now) if trigger["type"] == "schedule" else None


async def activate_workflow(
    session: AsyncSession, workflow_id: uuid.UUID, *, now: Optional[datetime] = None
) -> Optional[models.AutomationWorkflow]:
    workflow = await get_workflow(session, workflow_id)
    if workflow is None:
        return None
    if not workflow.steps:
        raise ValueError("A workflow needs at least one step before it can be activated")
    workflow.is_active = True
    workflow.next_run_at = _first_run(workflow.trigger, now or models.utcnow())
    workflow.last_updated = models.utcnow()
    await session.commit()
    await session.refresh(workflow)
    return workflow


async def deactivate_workflow(session: AsyncSession, workflow_id: uuid.UUID) -> Optional[models.AutomationWorkflow]:
    """Stop the trigger and cancel every run still in progress."""
    workflow = await get_workflow(session, workflow_id)
    if workflow is None:
        return None
    workflow.is_active = False
    workflow.next_run_at = None
    workflow.last_updated = models.utcnow()
    result = await session.execute(
        select(models.AutomationRun).where(
            models.AutomationRun.workflow_id == workflow_id, models.AutomationRun.status == ACTIVE
        )
    )
    for run in result.scalars():
        run.status = CANCELLED
        run.next_step_at = None
    await session.commit()
    await session.refresh(workflow)
    return workflow


# Runs

async def start_run(
    session: AsyncSession,
    workflow: models.AutomationWorkflow,
    *,
    customer_id: Optional[str],
    trigger_data: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> models.AutomationRun:
    """Create a run; the first step is due after the trigger delay plus its own delay. Caller commits."""
    now = now or models.utcnow()
    delay = workflow.trigger.get("delay_minutes", 0) + workflow.steps[0]["delay_minutes"]
    run = models.AutomationRun(
        workflow_id=workflow.id,
        customer_id=customer_id,
        trigger_data=trigger_data or {},
        status=ACTIVE,
        current_step=0,
        step_results=[],
        next_step_at=now + timedelta(minutes=delay),
        started_at=now,
    )
    session.add(run)
    workflow.stats = {**empty_stats(), **workflow.stats, "started": workflow.stats.get("started", 0) + 1}
    return run


async def get_run(session: AsyncSession, run_id: uuid.UUID) -> Optional[models.AutomationRun]:
    return await session.get(models.AutomationRun, run_id)


async def list_runs(
    session: AsyncSession, workflow_id: uuid.UUID, *, status: Optional[str] = None
) -> list[models.AutomationRun]:
    stmt = (
        select(models.AutomationRun)
        .where(models.AutomationRun.workflow_id == workflow_id)
        .order_by(models.AutomationRun.started_at)
    )
    if status:
        stmt = stmt.where(models.AutomationRun.status == status)
    result = await session.execute(stmt)
    return list(result.scalars())


async def trigger_event(
    session: AsyncSession,
    event: str,
    *,
    customer_id: Optional[str],
    data: Optional[dict[str, Any]] = None,
    provider: Optional[EmailProvider] = None,
    now: Optional[datetime] = None,
) -> list[models.AutomationRun]:
    """Start a run in every active workflow listening for ``event``.

    With a provider, steps that are already due are executed straight away.
    """
    if event not in TRIGGER_EVENTS:
        raise ValueError(f"Unknown trigger event: {event}")
    now = now or models.utcnow()
    runs = []
    for workflow in await list_workflows(session, active=True):
        if workflow.trigger.get("type") != "event" or workflow.trigger.get("event") != event or not workflow.steps:
            continue
        runs.append(await start_run(session, workflow, customer_id=customer_id, trigger_data=data, now=now))
    await session.commit()
    if runs:
        log_with_context(logger, "info", "Automation event", trigger=event, customer_id=customer_id, runs=len(runs))
    if provider is not None:
        for run in runs:
            await advance_run(session, run, provider, now=now)
    return runs


async def record_engagement(
    session: AsyncSession, run_id: uuid.UUID, step_id: str, *, opened: bool = False, clicked: bool = False
) -> Optional[models.AutomationRun]:
    """Mark an email sent by a run as opened and/or clicked; a click implies an open."""
    run = await get_run(session, run_id)
    if run is None:
        return None
    if not any(result["step_id"] == step_id and result["status"] == "executed" for result in run.step_results):
        raise ValueError(f"Step {step_id} has not sent anything for this run")
    run.step_results = [
        {**result, "opened": result.get("opened") or opened or clicked, "clicked": result.get("clicked") or clicked}
        if result["step_id"] == step_id
        else result
        for result in run.step_results
    ]
    await session.commit()
    await session.refresh(run)
    return run


async def _condition_met(
    session: AsyncSession, condition: Optional[dict[str, Any]], run: models.AutomationRun
) -> bool:
    if not condition:
        return True
    kind, expected = condition.get("type"), condition.get("value")
    if kind in ("opened_previous_email", "clicked_previous_email"):
        if not run.step_results:
            return False
        flag = "opened" if kind == "opened_previous_email" else "clicked"
        return bool(run.step_results[-1].get(flag)) == bool(expected)
    customer = await session.get(models.Customer, run.customer_id) if run.customer_id else None
    if customer is None:
        return False
    if kind == "made_a_purchase":
        return (customer.total_orders > 0) == bool(expected)
    if kind == "customer_segment":
        return customer.segment == expected
    return True


async def _automation_campaign(
    session: AsyncSession, workflow: models.AutomationWorkflow, step: dict[str, Any], subject: str, now: datetime
) -> models.EmailCampaign:
    """One ``automated`` campaign per workflow step collects the sends of every run."""
    name = f"{workflow.name} - {step['name']}"
    result = await session.execute(
        select(models.EmailCampaign).where(
            models.EmailCampaign.type == "automated", models.EmailCampaign.name == name
        )
    )
    campaign = result.scalars().first()
    if campaign is None:
        campaign = models.EmailCampaign(
            name=name,
            subject=subject,
            body="",
            type="automated",
            status="active",
            recipients=0,
            stats=campaigns_service.empty_stats(),
        )
        session.add(campaign)
        await session.flush()
    campaign.recipients += 1
    campaign.sent_at = now
    campaign.stats = {**campaigns_service.empty_stats(), **campaign.stats, "sent": campaign.stats.get("sent", 0) + 1}
    return campaign


async def _send_email_step(
    session: AsyncSession,
    workflow: models.AutomationWorkflow,
    run: models.AutomationRun,
    step: dict[str, Any],
    provider: EmailProvider,
    now: datetime,
) -> dict[str, Any]:
    if not run.customer_id:
        return {"status": "error", "reason": "customer_id_missing"}
    customer = await session.get(models.Customer, run.customer_id)
    if customer is None:
        return {"status": "error", "reason": "customer_not_found"}
    if not (customer.preferences or {}).get("email_opt_in", True):
        return {"status": "skipped", "reason": "opted_out"}

    subject, body = step.get("subject"), step.get("body")
    if step.get("template_id"):
        template = await campaigns_service.get_template(session, uuid.UUID(step["template_id"]))
        if template is None:
            return {"status": "error", "reason": "template_not_found"}
        subject = subject or template.subject
        body = body or template.body
        template.usage_count += 1
        template.last_used = now

    fields = {key: value for key, value in vars(customer).items() if not key.startswith("_")}
    context = {**fields, **(run.trigger_data or {})}
    subject = personalize(subject or "", context, now)
    body = personalize(body or "", context, now)
    campaign = await _automation_campaign(session, workflow, step, subject, now)
    await provider.send(customer.email, subject, body)
    return {
        "status": "executed",
        "campaign_id": str(campaign.id),
        "tracking_id": f"{run.id}_{step['id']}",
        "opened": False,
        "clicked": False,
    }


async def _execute_step(
    session: AsyncSession,
    workflow: models.AutomationWorkflow,
    run: models.AutomationRun,
    step: dict[str, Any],
    provider: EmailProvider,
    now: datetime,
) -> dict[str, Any]:
    if not await _condition_met(session, step.get("condition"), run):
        return {"status": "skipped", "reason": "condition_not_met"}
    if step["type"] == "email":
        return await _send_email_step(session, workflow, run, step, provider, now)
    if step["type"] == "tag":
        customer = await session.get(models.Customer, run.customer_id) if run.customer_id else None
        if customer is None:
            return {"status": "error", "reason": "customer_not_found"}
        if step.get("tag") and step["tag"] not in customer.tags:
            customer.tags = [*customer.tags, step["tag"]]
        return {"status": "executed", "tag": step.get("tag")}
    # Webhooks are recorded only; no outbound request is made
    logger.info("Webhook step %s for run %s: %s", step["id"], run.id, step.get("webhook_url"))
    return {"status": "executed", "webhook_url": step.get("webhook_url")}


async def _complete_run(
    session: AsyncSession, workflow: models.AutomationWorkflow, run: models.AutomationRun, now: datetime
) -> None:
    run.status = COMPLETED
    run.completed_at = now
    run.next_step_at = None
    stats = {**empty_stats(), **workflow.stats}
    stats["completed"] += 1
    # Converted when the customer ordered after the run started
    customer = await session.get(models.Customer, run.customer_id) if run.customer_id else None
    if customer is not None and customer.last_order_date is not None:
        if ensure_utc(customer.last_order_date) >= ensure_utc(run.started_at):
            stats["conversions"] += 1
    workflow.stats = stats


async def advance_run(
    session: AsyncSession, run: models.AutomationRun, provider: EmailProvider, *, now: Optional[datetime] = None
) -> int:
    """Execute every step of ``run`` that is due. Returns the number of steps handled."""
    now = now or models.utcnow()
    workflow = await get_workflow(session, run.workflow_id)
    if workflow is None or not workflow.is_active:
        run.status = CANCELLED
        run.next_step_at = None
        await session.commit()
        return 0

    handled = 0
    while run.status == ACTIVE:
        if run.current_step >= len(workflow.steps):
            await _complete_run(session, workflow, run, now)
            break
        due = ensure_utc(run.next_step_at)
        if due > now:
            break
        step = workflow.steps[run.current_step]
        outcome = await _execute_step(session, workflow, run, step, provider, now)
        run.step_results = [*run.step_results, {"step_id": step["id"], **outcome, "timestamp": now.isoformat()}]
        run.current_step += 1
        if run.current_step < len(workflow.steps):
            run.next_step_at = due + timedelta(minutes=workflow.steps[run.current_step]["delay_minutes"])
        handled += 1
    await session.commit()
    await session.refresh(run)
    return handled


async def _start_scheduled_workflows(session: AsyncSession, now: datetime) -> int:
    result = await session.execute(
        select(models.AutomationWorkflow).where(
            models.AutomationWorkflow.is_active.is_(True),
            models.AutomationWorkflow.next_run_at <= now,
        )
    )
    started = 0
    for workflow in result.scalars().all():
        if workflow.trigger.get("type") != "schedule" or not workflow.steps:
            continue
        criteria: dict[str, Any] = {"type": "all"}
        if workflow.segment_id:
            segment = await campaigns_service.get_segment(session, workflow.segment_id)
            criteria = segment.criteria if segment is not None else criteria
        for customer in await campaigns_service.segment_members(session, criteria):
            await start_run(session, workflow, customer_id=customer.id, trigger_data={"type": "scheduled"}, now=now)
            started += 1
        workflow.next_run_at = next_run_time(workflow.trigger, now)
        await session.commit()
    return started


async def process_automations(
    session: AsyncSession, provider: EmailProvider, now: Optional[datetime] = None
) -> dict[str, int]:
    """Fire due schedule triggers, then advance every run with a due step."""
    now = now or models.utcnow()
    started = await _start_scheduled_workflows(session, now)
    result = await session.execute(
        select(models.AutomationRun.id).where(
            models.AutomationRun.status == ACTIVE,
            models.AutomationRun.next_step_at <= now,
        )
    )
    steps = 0
    for run_id in list(result.scalars()):
        try:
            run = await get_run(session, run_id)
            if run is not None:
                steps += await advance_run(session, run, provider, now=now)
        except Exception as e:
            logger.error(f"Error advancing automation run {run_id}: {e}")
            await session.rollback()
    return {"started": started, "steps": steps}

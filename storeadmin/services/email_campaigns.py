from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services.email_providers import EmailProvider
from storeadmin.services.personalization import compile_template, personalize
from storeadmin.utils.dates import ensure_utc
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

TEMPLATE_CATEGORIES = ("promotional", "newsletter", "transactional", "welcome", "abandoned-cart")
CAMPAIGN_STATUSES = ("draft", "scheduled", "active", "completed", "paused")
CAMPAIGN_TYPES = ("regular", "automated", "ab-test")


def empty_stats() -> dict[str, Any]:
    return {
        "sent": 0,
        "opened": 0,
        "clicked": 0,
        "bounced": 0,
        "unsubscribed": 0,
        "failed": 0,
        "open_rate": 0.0,
        "click_rate": 0.0,
    }


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


# Templates

async def create_template(session: AsyncSession, data: dict[str, Any]) -> models.EmailTemplate:
    if data.get("category") not in TEMPLATE_CATEGORIES:
        raise ValueError(f"Unknown template category: {data.get('category')}")
    compile_template(data["subject"])
    compile_template(data.get("body") or "")
    template = models.EmailTemplate(
        name=data["name"],
        category=data["category"],
        subject=data["subject"],
        body=data.get("body") or "",
        usage_count=0,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    return template


async def get_template(session: AsyncSession, template_id: uuid.UUID) -> Optional[models.EmailTemplate]:
    return await session.get(models.EmailTemplate, template_id)


async def list_templates(session: AsyncSession, *, category: Optional[str] = None) -> list[models.EmailTemplate]:
    stmt = select(models.EmailTemplate).order_by(models.EmailTemplate.created_at.desc())
    if category:
        stmt = stmt.where(models.EmailTemplate.category == category)
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_template(
    session: AsyncSession, template_id: uuid.UUID, data: dict[str, Any]
) -> Optional[models.EmailTemplate]:
    template = await get_template(session, template_id)
    if template is None:
        return None
    if data.get("category") and data["category"] not in TEMPLATE_CATEGORIES:
        raise ValueError(f"Unknown template category: {data['category']}")
    for field in ("name", "category", "subject", "body"):
        if data.get(field) is not None:
            setattr(template, field, data[field])
    await session.commit()
    await session.refresh(template)
    return template


async def delete_template(session: AsyncSession, template_id: uuid.UUID) -> bool:
    template = await get_template(session, template_id)
    if template is None:
        return False
    await session.delete(template)
    await session.commit()
    return True


# Segments

def _validate_criteria(criteria: dict[str, Any]) -> dict[str, Any]:
    kind = criteria.get("type")
    if kind == "all":
        return {"type": "all"}
    if kind == "segment" and criteria.get("value"):
        return {"type": "segment", "value": criteria["value"]}
    raise ValueError("Segment criteria must be {'type': 'all'} or {'type': 'segment', 'value': ...}")


async def segment_members(session: AsyncSession, criteria: dict[str, Any]) -> list[models.Customer]:
    stmt = select(models.Customer).order_by(models.Customer.date_created)
    if criteria.get("type") == "segment":
        stmt = stmt.where(models.Customer.segment == criteria["value"])
    result = await session.execute(stmt)
    return [c for c in result.scalars() if (c.preferences or {}).get("email_opt_in", True)]


async def create_segment(session: AsyncSession, data: dict[str, Any]) -> models.EmailSegment:
    segment = models.EmailSegment(
        name=data["name"],
        description=data.get("description"),
        criteria=_validate_criteria(data.get("criteria") or {"type": "all"}),
        updated_at=models.utcnow(),
    )
    session.add(segment)
    await session.commit()
    await session.refresh(segment)
    return segment


async def get_segment(session: AsyncSession, segment_id: uuid.UUID) -> Optional[models.EmailSegment]:
    return await session.get(models.EmailSegment, segment_id)


async def list_segments(session: AsyncSession) -> list[tuple[models.EmailSegment, int]]:
    """Segments paired with their live member counts."""
    result = await session.execute(select(models.EmailSegment).order_by(models.EmailSegment.name))
    segments = list(result.scalars())
    return [(segment, len(await segment_members(session, segment.criteria))) for segment in segments]


async def update_segment(
    session: AsyncSession, segment_id: uuid.UUID, data: dict[str, Any]
) -> Optional[models.EmailSegment]:
    segment = await get_segment(session, segment_id)
    if segment is None:
        return None
    if data.get("name"):
        segment.name = data["name"]
    if "description" in data:
        segment.description = data["description"]
    if data.get("criteria"):
        segment.criteria = _validate_criteria(data["criteria"])
    segment.updated_at = models.utcnow()
    await session.commit()
    await session.refresh(segment)
    return segment


async def delete_segment(session: AsyncSession, segment_id: uuid.UUID) -> bool:
    segment = await get_segment(session, segment_id)
    if segment is None:
        return False
    await session.delete(segment)
    await session.commit()
    return True


# Campaigns

async def create_campaign(session: AsyncSession, data: dict[str, Any]) -> models.EmailCampaign:
    campaign_type = data.get("type") or "regular"
    if campaign_type not in CAMPAIGN_TYPES:
        raise ValueError(f"Unknown campaign type: {campaign_type}")

    subject, body = data.get("subject"), data.get("body")
    if data.get("template_id"):
        template = await get_template(session, data["template_id"])
        if template is None:
            raise ValueError("Template not found")
        subject = subject or template.subject
        body = body or template.body
    if not subject:
        raise ValueError("Campaign subject is required")
    compile_template(subject)
    compile_template(body or "")

    scheduled_at = data.get("scheduled_at")
    campaign = models.EmailCampaign(
        name=data["name"],
        subject=subject,
        body=body or "",
        type=campaign_type,
        status=data.get("status") or ("scheduled" if scheduled_at else "draft"),
        template_id=data.get("template_id"),
        segment_id=data.get("segment_id"),
        scheduled_at=scheduled_at,
        recipients=0,
        stats=empty_stats(),
    )
    session.add(campaign)
    await session.commit()
    await session.refresh(campaign)
    log_with_context(logger, "info", "Campaign created", campaign_id=str(campaign.id), status=campaign.status)
    return campaign


async def get_campaign(session: AsyncSession, campaign_id: uuid.UUID) -> Optional[models.EmailCampaign]:
    return await session.get(models.EmailCampaign, campaign_id)


async def list_campaigns(
    session: AsyncSession, *, status: Optional[str] = None, campaign_type: Optional[str] = None
) -> list[models.EmailCampaign]:
    stmt = select(models.EmailCampaign).order_by(models.EmailCampaign.created_at.desc())
    if status:
        stmt = stmt.where(models.EmailCampaign.status == status)
    if campaign_type:
        stmt = stmt.where(models.EmailCampaign.type == campaign_type)
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_campaign(
    session: AsyncSession, campaign_id: uuid.UUID, data: dict[str, Any]
) -> Optional[models.EmailCampaign]:
    campaign = await get_campaign(session, campaign_id)
    if campaign is None:
        return None
    if campaign.status == "completed":
        raise ValueError("Completed campaigns cannot be edited")
    if data.get("status") and data["status"] not in CAMPAIGN_STATUSES:
        raise ValueError(f"Unknown campaign status: {data['status']}")
    for field in ("name", "subject", "body", "status", "segment_id", "scheduled_at"):
        if data.get(field) is not None:
            setattr(campaign, field, data[field])
    await session.commit()
    await session.refresh(campaign)
    return campaign


async def duplicate_campaign(session: AsyncSession, campaign_id: uuid.UUID) -> Optional[models.EmailCampaign]:
    original = await get_campaign(session, campaign_id)
    if original is None:
        return None
    return await create_campaign(
        session,
        {
            "name": f"{original.name} (Copy)",
            "subject": original.subject,
            "body": original.body,
            "type": original.type,
            "template_id": original.template_id,
            "segment_id": original.segment_id,
            "status": "draft",
        },
    )


async def delete_campaign(session: AsyncSession, campaign_id: uuid.UUID) -> bool:
    campaign = await get_campaign(session, campaign_id)
    if campaign is None:
        return False
    await session.delete(campaign)
    await session.commit()
    return True


async def _recipients_for(session: AsyncSession, campaign: models.EmailCampaign) -> list[models.Customer]:
    criteria: dict[str, Any] = {"type": "all"}
    if campaign.segment_id:
        segment = await get_segment(session, campaign.segment_id)
        if segment is None:
            raise ValueError("Campaign segment not found")
        criteria = segment.criteria
    return await segment_members(session, criteria)


async def send_campaign(
    session: AsyncSession,
    campaign_id: uuid.UUID,
    provider: EmailProvider,
    *,
    now: Optional[datetime] = None,
) -> Optional[models.EmailCampaign]:
    """Personalise the campaign for every recipient and hand each message to ``provider``."""
    campaign = await get_campaign(session, campaign_id)
    if campaign is None:
        return None
    if campaign.status == "completed":
        raise ValueError("Campaign has already been sent")

    now = now or models.utcnow()
    # A broken template fails the whole send before any message goes out
    compile_template(campaign.subject)
    compile_template(campaign.body)
    recipients = await _recipients_for(session, campaign)
    sent = failed = 0
    for customer in recipients:
        try:
            subject = personalize(campaign.subject, customer, now)
            body = personalize(campaign.body, customer, now)
            await provider.send(customer.email, subject, body)
            sent += 1
        except Exception as e:
            failed += 1
            logger.error(f"Error sending campaign {campaign.id} to {customer.email}: {e}")

    campaign.status = "completed"
    campaign.sent_at = now
    campaign.recipients = sent
    campaign.stats = {**empty_stats(), **(campaign.stats or {}), "sent": sent, "failed": failed}

    if campaign.template_id:
        template = await get_template(session, campaign.template_id)
        if template is not None:
            template.usage_count += 1
            template.last_used = now

    await session.commit()
    await session.refresh(campaign)
    log_with_context(
        logger,
        "info",
        "Campaign sent",
        campaign_id=str(campaign.id),
        recipients=sent,
        failed=failed,
        provider=provider.name,
    )
    return campaign


async def send_due_campaigns(session: AsyncSession, provider: EmailProvider, now: Optional[datetime] = None) -> int:
    now = now or models.utcnow()
    result = await session.execute(
        select(models.EmailCampaign.id).where(
            models.EmailCampaign.status == "scheduled",
            models.EmailCampaign.scheduled_at <= now,
        )
    )
    sent = 0
    for campaign_id in list(result.scalars()):
        try:
            await send_campaign(session, campaign_id, provider, now=now)
            sent += 1
        except Exception as e:
            logger.error(f"Error sending scheduled campaign {campaign_id}: {e}")
            await session.rollback()
    return sent


async def record_stats(
    session: AsyncSession, campaign_id: uuid.UUID, changes: dict[str, int]
) -> Optional[models.EmailCampaign]:
    """Add reported opens/clicks/bounces/unsubscribes and recompute rates."""
    campaign = await get_campaign(session, campaign_id)
    if campaign is None:
        return None
    stats = {**empty_stats(), **(campaign.stats or {})}
    for key in ("opened", "clicked", "bounced", "unsubscribed"):
        stats[key] += int(changes.get(key) or 0)
    base = campaign.recipients or stats["sent"]
    stats["open_rate"] = _rate(stats["opened"], base)
    stats["click_rate"] = _rate(stats["clicked"], base)
    campaign.stats = stats
    await session.commit()
    await session.refresh(campaign)
    return campaign


async def dashboard_stats(session: AsyncSession) -> dict[str, Any]:
    campaigns = await list_campaigns(session)
    completed = [c for c in campaigns if c.status == "completed"]
    open_rates = [c.stats.get("open_rate", 0.0) for c in completed]
    click_rates = [c.stats.get("click_rate", 0.0) for c in completed]
    return {
        "total_campaigns": len(campaigns),
        "active_campaigns": sum(1 for c in campaigns if c.status in ("active", "scheduled")),
        "emails_sent": sum(c.recipients for c in completed),
        "average_open_rate": round(sum(open_rates) / len(open_rates), 1) if open_rates else 0.0,
        "average_click_rate": round(sum(click_rates) / len(click_rates), 1) if click_rates else 0.0,
        "last_sent_at": max((ensure_utc(c.sent_at) for c in completed if c.sent_at), default=None),
    }

"""
Event tracking and reporting.

Page views, custom events, affiliate clicks, product interactions and admin activity
all land in one ``analytics_events`` table distinguished by ``kind``. Reports aggregate
in Python over the rows of a resolved date range.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import system
from storeadmin.utils.dates import days_in_range, ensure_utc, report_range

logger = logging.getLogger(__name__)

SETTINGS_KEY = "analytics_config"

PAGE_VIEW = "page_view"
EVENT = "event"
AFFILIATE_CLICK = "affiliate_click"
USER_ACTIVITY = "user_activity"
PRODUCT_EVENT = "product_event"

DEFAULT_ANALYTICS_CONFIG: dict[str, Any] = {
    "track_page_views": True,
    "track_events": True,
    "track_affiliate_clicks": True,
    "track_user_activity": True,
    "track_product_events": True,
}

TOGGLES = {
    PAGE_VIEW: "track_page_views",
    EVENT: "track_events",
    AFFILIATE_CLICK: "track_affiliate_clicks",
    USER_ACTIVITY: "track_user_activity",
    PRODUCT_EVENT: "track_product_events",
}


async def get_config(session: AsyncSession) -> dict[str, Any]:
    return await system.load_settings(session, SETTINGS_KEY, DEFAULT_ANALYTICS_CONFIG)


async def update_config(session: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
    return await system.save_settings(session, SETTINGS_KEY, DEFAULT_ANALYTICS_CONFIG, changes)


async def _record(
    session: AsyncSession, kind: str, name: str, *, commit: bool = True, **fields: Any
) -> Optional[models.AnalyticsEvent]:
    config = await get_config(session)
    if not config.get(TOGGLES[kind], True):
        logger.debug("Tracking disabled for %s", kind)
        return None
    fields.setdefault("timestamp", models.utcnow())
    event = models.AnalyticsEvent(kind=kind, name=name, **fields)
    session.add(event)
    if commit:
        await session.commit()
        await session.refresh(event)
    return event


async def track_page_view(
    session: AsyncSession, page: str, *, title: Optional[str] = None, referrer: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Optional[models.AnalyticsEvent]:
    return await _record(
        session, PAGE_VIEW, page, user_id=user_id, data={"title": title, "referrer": referrer}
    )


async def track_event(
    session: AsyncSession,
    name: str,
    *,
    category: str = "general",
    data: Optional[dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> Optional[models.AnalyticsEvent]:
    return await _record(session, EVENT, name, category=category, user_id=user_id, data=data or {})


async def track_affiliate_click(
    session: AsyncSession,
    *,
    link_id: str,
    product_id: str,
    product_name: Optional[str] = None,
    platform: Optional[str] = None,
    user_id: Optional[str] = None,
    commit: bool = True,
) -> Optional[models.AnalyticsEvent]:
    return await _record(
        session,
        AFFILIATE_CLICK,
        product_name or product_id,
        commit=commit,
        link_id=link_id,
        product_id=product_id,
        user_id=user_id,
        data={"platform": platform},
    )


async def track_user_activity(
    session: AsyncSession, user_id: str, action: str, *, details: Optional[dict[str, Any]] = None
) -> Optional[models.AnalyticsEvent]:
    return await _record(session, USER_ACTIVITY, action, user_id=user_id, data=details or {})


async def _events_between(
    session: AsyncSession, kind: str, start: datetime, end: datetime
) -> list[models.AnalyticsEvent]:
    result = await session.execute(
        select(models.AnalyticsEvent)
        .where(
            models.AnalyticsEvent.kind == kind,
            models.AnalyticsEvent.timestamp >= start,
            models.AnalyticsEvent.timestamp <= end,
        )
        .order_by(models.AnalyticsEvent.timestamp)
    )
    return list(result.scalars())


def _daily(events: list[models.AnalyticsEvent], start: datetime, end: datetime) -> dict[str, int]:
    daily = {day: 0 for day in days_in_range(start, end)}
    for event in events:
        day = ensure_utc(event.timestamp).date().isoformat()
        if day in daily:
            daily[day] += 1
    return daily


def _top(counts: Counter, limit: int = 10, key: str = "name") -> list[dict[str, Any]]:
    return [{key: name, "count": count} for name, count in counts.most_common(limit)]


async def page_view_report(
    session: AsyncSession,
    period: str = "last30days",
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    range_start, range_end = report_range(period, now or models.utcnow(), start, end)
    events = await _events_between(session, PAGE_VIEW, range_start, range_end)
    pages = Counter(event.name for event in events)
    return {
        "period": period,
        "start": range_start,
        "end": range_end,
        "total_views": len(events),
        "views_by_page": dict(pages),
        "daily_views": _daily(events, range_start, range_end),
        "top_pages": _top(pages, key="page"),
    }


async def affiliate_report(
    session: AsyncSession,
    period: str = "last30days",
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    range_start, range_end = report_range(period, now or models.utcnow(), start, end)
    events = await _events_between(session, AFFILIATE_CLICK, range_start, range_end)
    by_product = Counter(event.product_id for event in events if event.product_id)
    by_link = Counter(event.link_id for event in events if event.link_id)
    return {
        "period": period,
        "start": range_start,
        "end": range_end,
        "total_clicks": len(events),
        "clicks_by_product": dict(by_product),
        "clicks_by_link": dict(by_link),
        "daily_clicks": _daily(events, range_start, range_end),
        "top_products": _top(by_product, key="product_id"),
        "top_links": _top(by_link, key="link_id"),
    }


async def event_summary(session: AsyncSession, period: str = "last30days", *, now: Optional[datetime] = None):
    range_start, range_end = report_range(period, now or models.utcnow())
    events = await _events_between(session, EVENT, range_start, range_end)
    by_category: dict[str, Counter] = defaultdict(Counter)
    for event in events:
        by_category[event.category or "general"][event.name] += 1
    return {
        "total_events": len(events),
        "by_category": {category: dict(counts) for category, counts in by_category.items()},
    }


async def _count(session: AsyncSession, model: type, *conditions: Any) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar_one()


async def dashboard_summary(session: AsyncSession) -> dict[str, Any]:
    revenue = await session.execute(select(func.coalesce(func.sum(models.Order.total_amount), 0.0)))
    return {
        "total_products": await _count(session, models.Product),
        "total_orders": await _count(session, models.Order),
        "total_revenue": round(float(revenue.scalar_one()), 2),
        "total_customers": await _count(session, models.Customer),
        "open_tasks": await _count(session, models.WorkflowTask, models.WorkflowTask.status == "open"),
        "active_campaigns": await _count(
            session, models.EmailCampaign, models.EmailCampaign.status.in_(["active", "scheduled"])
        ),
    }


async def cleanup(session: AsyncSession, retention_days: int, now: Optional[datetime] = None) -> int:
    cutoff = (now or models.utcnow()) - timedelta(days=retention_days)
    result = await session.execute(
        delete(models.AnalyticsEvent).where(models.AnalyticsEvent.timestamp < cutoff)
    )
    await session.commit()
    removed = result.rowcount or 0
    logger.info("Removed %s analytics events older than %s days", removed, retention_days)
    return removed

"""
Product interaction tracking and the product performance report.

Interactions are stored as ``product_event`` rows in the analytics table, with the
interaction type as the event name.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import analytics as analytics_service
from storeadmin.utils.dates import ensure_utc, report_range

logger = logging.getLogger(__name__)

PRODUCT_VIEW = "product_view"
PRODUCT_CLICK = "product_click"
ADD_TO_CART = "add_to_cart"
PURCHASE = "purchase"
PRODUCT_REVIEW = "product_review"
PRODUCT_COMPARISON = "product_comparison"

EVENT_TYPES = (PRODUCT_VIEW, PRODUCT_CLICK, ADD_TO_CART, PURCHASE, PRODUCT_REVIEW, PRODUCT_COMPARISON)

COUNTERS = {
    PRODUCT_VIEW: "views",
    PRODUCT_CLICK: "clicks",
    ADD_TO_CART: "add_to_cart",
    PURCHASE: "purchases",
    PRODUCT_COMPARISON: "comparisons",
}


async def track_product_event(
    session: AsyncSession,
    product_id: str,
    event_type: str,
    *,
    quantity: int = 1,
    revenue: float = 0.0,
    rating: Optional[int] = None,
    compared_with: Optional[list[str]] = None,
    user_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
    commit: bool = True,
) -> Optional[models.AnalyticsEvent]:
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown product event: {event_type}")
    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    if revenue < 0:
        raise ValueError("Revenue cannot be negative")

    data: dict[str, Any] = dict(metadata or {})
    if event_type in (ADD_TO_CART, PURCHASE):
        data["quantity"] = quantity
    if event_type == PURCHASE:
        data["revenue"] = round(revenue, 2)
    if event_type == PRODUCT_REVIEW:
        if rating is None or not 1 <= rating <= 5:
            raise ValueError("Review rating must be between 1 and 5")
        data["rating"] = rating
    if event_type == PRODUCT_COMPARISON:
        if not compared_with:
            raise ValueError("A comparison needs at least one other product")
        data["compared_with"] = list(compared_with)

    fields: dict[str, Any] = {"product_id": product_id, "user_id": user_id, "category": "product", "data": data}
    if timestamp is not None:
        fields["timestamp"] = timestamp
    return await analytics_service._record(
        session, analytics_service.PRODUCT_EVENT, event_type, commit=commit, **fields
    )


async def track_order_purchases(session: AsyncSession, order: models.Order) -> int:
    """Record a purchase for every order line that names a catalog product. Caller commits."""
    tracked = 0
    for line in order.items or []:
        if not line.get("product_id"):
            continue
        quantity = int(line.get("quantity") or 1)
        await track_product_event(
            session,
            str(line["product_id"]),
            PURCHASE,
            quantity=quantity,
            revenue=float(line.get("price") or 0) * quantity,
            user_id=order.customer_id,
            metadata={"order_id": order.id},
            commit=False,
        )
        tracked += 1
    return tracked


async def _product_events(
    session: AsyncSession, end: datetime, product_id: Optional[str]
) -> list[models.AnalyticsEvent]:
    stmt = (
        select(models.AnalyticsEvent)
        .where(
            models.AnalyticsEvent.kind == analytics_service.PRODUCT_EVENT,
            models.AnalyticsEvent.timestamp <= end,
        )
        .order_by(models.AnalyticsEvent.timestamp)
    )
    if product_id:
        stmt = stmt.where(models.AnalyticsEvent.product_id == product_id)
    result = await session.execute(stmt)
    return list(result.scalars())


def _rate(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole and part else 0.0


def _empty_product() -> dict[str, Any]:
    return {
        "views": 0,
        "clicks": 0,
        "add_to_cart": 0,
        "purchases": 0,
        "units_sold": 0,
        "reviews": 0,
        "revenue": 0.0,
        "rating": 0.0,
        "comparisons": 0,
        "conversion_rate": 0.0,
    }


def _top(products: dict[str, dict[str, Any]], metric: str, limit: int = 10) -> list[dict[str, Any]]:
    ranked = [{"id": pid, "value": stats[metric]} for pid, stats in products.items() if stats[metric] > 0]
    return sorted(ranked, key=lambda item: item["value"], reverse=True)[:limit]


async def product_performance_report(
    session: AsyncSession,
    period: str = "last30days",
    *,
    product_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Per-product interaction counts, the view-to-purchase funnel and top-10 rankings.

    A product appears when it has any interaction inside the range. Its rating is the
    mean of the reviews inside the range, or of all its reviews when the range has none.
    """
    range_start, range_end = report_range(period, now or models.utcnow(), start, end)
    events = await _product_events(session, range_end, product_id)

    products: dict[str, dict[str, Any]] = defaultdict(_empty_product)
    all_ratings: dict[str, list[int]] = defaultdict(list)
    period_ratings: dict[str, list[int]] = defaultdict(list)
    for event in events:
        pid = event.product_id
        if not pid:
            continue
        in_range = ensure_utc(event.timestamp) >= range_start
        if event.name == PRODUCT_REVIEW:
            all_ratings[pid].append(event.data["rating"])
        if not in_range:
            continue
        stats = products[pid]
        if event.name in COUNTERS:
            stats[COUNTERS[event.name]] += 1
        if event.name == PURCHASE:
            stats["units_sold"] += event.data.get("quantity", 1)
            stats["revenue"] = round(stats["revenue"] + event.data.get("revenue", 0.0), 2)
        if event.name == PRODUCT_REVIEW:
            stats["reviews"] += 1
            period_ratings[pid].append(event.data["rating"])

    for pid, stats in products.items():
        ratings = period_ratings.get(pid) or all_ratings.get(pid)
        if ratings:
            stats["rating"] = round(sum(ratings) / len(ratings), 2)
        stats["conversion_rate"] = _rate(stats["purchases"], stats["views"])

    overall = {
        metric: sum(stats[metric] for stats in products.values())
        for metric in ("views", "clicks", "add_to_cart", "purchases", "units_sold", "reviews")
    }
    overall["revenue"] = round(sum(stats["revenue"] for stats in products.values()), 2)
    overall["conversion_rate"] = _rate(overall["purchases"], overall["views"])

    return {
        "period": period,
        "start": range_start,
        "end": range_end,
        "product_id": product_id,
        "overall": overall,
        "products": dict(products),
        "conversion_funnel": {
            "view_to_click": _rate(overall["clicks"], overall["views"]),
            "click_to_cart": _rate(overall["add_to_cart"], overall["clicks"]),
            "cart_to_purchase": _rate(overall["purchases"], overall["add_to_cart"]),
            "view_to_purchase": _rate(overall["purchases"], overall["views"]),
        },
        "top_products": {
            "by_views": _top(products, "views"),
            "by_clicks": _top(products, "clicks"),
            "by_purchases": _top(products, "purchases"),
            "by_revenue": _top(products, "revenue"),
            "by_rating": _top(products, "rating"),
        },
    }

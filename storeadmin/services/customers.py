from __future__ import annotations

import csv
import io
import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import email_automation, system
from storeadmin.services.email_providers import EmailProvider, send_notification
from storeadmin.utils.dates import ensure_utc, end_of_day, lookback_start, start_of_day
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

SETTINGS_KEY = "customer_settings"

SEGMENTS = ("new", "returning", "vip", "at_risk", "inactive")
SEGMENT_LABELS = {
    "new": "New Customers",
    "returning": "Returning Customers",
    "vip": "VIP Customers",
    "at_risk": "At-Risk Customers",
    "inactive": "Inactive Customers",
}

DEFAULT_CUSTOMER_SETTINGS: dict[str, Any] = {
    "auto_segmentation": True,
    "send_welcome_email": True,
    "segment_thresholds": {
        "vip_order_count": 3,
        "vip_total_spent": 500,
        "inactive_days": 90,
        "at_risk_days": 60,
    },
}

DEFAULT_PREFERENCES = {"email_opt_in": True, "sms_opt_in": False}

CSV_HEADERS = [
    "ID",
    "Name",
    "Email",
    "Phone",
    "Segment",
    "Date Created",
    "Last Order Date",
    "Total Orders",
    "Total Spent",
    "Notes",
]


def calculate_segment(
    customer: Mapping[str, Any] | models.Customer,
    thresholds: Mapping[str, Any],
    now: datetime,
) -> str:
    """Pick a segment from order count, spend and recency.

    Rules are checked in order: a single order is ``new``; enough orders or spend is
    ``vip``; otherwise the days since the last order decide between ``inactive``,
    ``at_risk`` and ``returning``. Customers without orders keep ``new``.
    """
    if isinstance(customer, Mapping):
        total_orders = customer.get("total_orders", 0)
        total_spent = customer.get("total_spent", 0.0)
        last_order = customer.get("last_order_date")
        current = customer.get("segment", "new")
    else:
        total_orders = customer.total_orders
        total_spent = customer.total_spent
        last_order = customer.last_order_date
        current = customer.segment

    if not total_orders:
        return current or "new"
    if total_orders == 1:
        return "new"
    if total_orders >= thresholds["vip_order_count"] or total_spent >= thresholds["vip_total_spent"]:
        return "vip"
    if last_order is not None:
        days_since = (ensure_utc(now) - ensure_utc(last_order)).days
        if days_since >= thresholds["inactive_days"]:
            return "inactive"
        if days_since >= thresholds["at_risk_days"]:
            return "at_risk"
    return "returning"


async def get_settings(session: AsyncSession) -> dict[str, Any]:
    return await system.load_settings(session, SETTINGS_KEY, DEFAULT_CUSTOMER_SETTINGS)


async def update_settings(session: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
    return await system.save_settings(session, SETTINGS_KEY, DEFAULT_CUSTOMER_SETTINGS, changes)


async def get_customer(session: AsyncSession, customer_id: str) -> Optional[models.Customer]:
    return await session.get(models.Customer, customer_id)


async def get_customer_by_email(session: AsyncSession, email: str) -> Optional[models.Customer]:
    result = await session.execute(
        select(models.Customer).where(func.lower(models.Customer.email) == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def create_customer(
    session: AsyncSession,
    data: dict[str, Any],
    *,
    provider: Optional[EmailProvider] = None,
) -> models.Customer:
    if not data.get("name") or not data.get("email"):
        raise ValueError("Customer name and email are required")
    if await get_customer_by_email(session, data["email"]) is not None:
        raise ValueError(f"Customer with email {data['email']} already exists")

    number = await system.next_value(session, "customer")
    now = models.utcnow()
    customer = models.Customer(
        id=f"CUST-{number}",
        name=data["name"],
        email=data["email"].strip(),
        phone=data.get("phone") or "",
        address=data.get("address"),
        segment=data.get("segment") or "new",
        preferences={**DEFAULT_PREFERENCES, **(data.get("preferences") or {})},
        notes=data.get("notes") or "",
        date_created=now,
        date_updated=now,
        last_order_date=data.get("last_order_date"),
        total_orders=data.get("total_orders", 0),
        total_spent=data.get("total_spent", 0.0),
        order_ids=list(data.get("order_ids") or []),
    )
    session.add(customer)
    await session.commit()
    await session.refresh(customer)
    log_with_context(logger, "info", "Customer created", customer_id=customer.id, segment=customer.segment)

    settings = await get_settings(session)
    if settings["send_welcome_email"]:
        await send_notification(provider, to=customer.email, kind="welcome", name=customer.name)

    await email_automation.trigger_event(session, "customer_created", customer_id=customer.id, provider=provider)
    return customer


async def update_customer(
    session: AsyncSession, customer_id: str, data: dict[str, Any]
) -> Optional[models.Customer]:
    customer = await get_customer(session, customer_id)
    if customer is None:
        return None
    if data.get("email"):
        existing = await get_customer_by_email(session, data["email"])
        if existing is not None and existing.id != customer.id:
            raise ValueError(f"Customer with email {data['email']} already exists")
        data = {**data, "email": data["email"].strip()}
    for field in ("name", "email", "phone", "address", "segment", "notes"):
        if field in data and data[field] is not None:
            setattr(customer, field, data[field])
    if data.get("preferences"):
        customer.preferences = {**(customer.preferences or {}), **data["preferences"]}
    customer.date_updated = models.utcnow()
    await session.commit()
    await session.refresh(customer)
    return customer


async def delete_customer(session: AsyncSession, customer_id: str) -> bool:
    customer = await get_customer(session, customer_id)
    if customer is None:
        return False
    await session.delete(customer)
    await session.commit()
    return True


async def list_customers(
    session: AsyncSession,
    *,
    segment: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> list[models.Customer]:
    stmt = select(models.Customer).order_by(models.Customer.date_created.desc())
    if segment:
        stmt = stmt.where(models.Customer.segment == segment)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(models.Customer.name).like(pattern),
                func.lower(models.Customer.email).like(pattern),
                func.lower(models.Customer.phone).like(pattern),
                func.lower(models.Customer.notes).like(pattern),
            )
        )
    if date_from:
        stmt = stmt.where(models.Customer.date_created >= start_of_day(ensure_utc(date_from)))
    if date_to:
        stmt = stmt.where(models.Customer.date_created <= end_of_day(ensure_utc(date_to)))
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_from_order(
    session: AsyncSession,
    order: models.Order,
    *,
    provider: Optional[EmailProvider] = None,
) -> models.Customer:
    """Create or update the customer behind an order. Matching is by email."""
    info = order.customer or {}
    email = info.get("email", "")
    customer = await get_customer_by_email(session, email)

    if customer is None:
        return await create_customer(
            session,
            {
                "name": info.get("name") or email,
                "email": email,
                "phone": info.get("phone"),
                "address": order.shipping_address,
                "last_order_date": order.date_created,
                "total_orders": 1,
                "total_spent": order.total_amount,
                "order_ids": [order.id],
            },
            provider=provider,
        )

    if order.id not in (customer.order_ids or []):
        customer.order_ids = [*(customer.order_ids or []), order.id]
        customer.total_orders += 1
        customer.total_spent = round(customer.total_spent + order.total_amount, 2)
    customer.last_order_date = order.date_created
    customer.date_updated = models.utcnow()

    settings = await get_settings(session)
    if settings["auto_segmentation"]:
        customer.segment = calculate_segment(customer, settings["segment_thresholds"], models.utcnow())
    await session.commit()
    await session.refresh(customer)
    return customer


async def refresh_segments(session: AsyncSession, now: Optional[datetime] = None) -> int:
    now = now or models.utcnow()
    settings = await get_settings(session)
    thresholds = settings["segment_thresholds"]
    changed = 0
    for customer in await list_customers(session):
        segment = calculate_segment(customer, thresholds, now)
        if segment != customer.segment:
            logger.debug("Customer %s moved %s -> %s", customer.id, customer.segment, segment)
            customer.segment = segment
            customer.date_updated = now
            changed += 1
    await session.commit()
    return changed


def _segment_counts(customers: list[models.Customer]) -> dict[str, int]:
    counts = {segment: 0 for segment in SEGMENTS}
    for customer in customers:
        counts[customer.segment] = counts.get(customer.segment, 0) + 1
    return counts


async def customer_statistics(
    session: AsyncSession, period: str = "all", now: Optional[datetime] = None
) -> dict[str, Any]:
    now = now or models.utcnow()
    customers = await list_customers(session)
    since = lookback_start(period, now)
    if since is not None:
        customers = [c for c in customers if ensure_utc(c.date_created) >= since]

    total = len(customers)
    counts = _segment_counts(customers)
    total_spent = sum(c.total_spent for c in customers)
    retention_base = total - counts["new"]
    retention = (counts["returning"] + counts["vip"]) / retention_base * 100 if retention_base > 0 else 0
    return {
        "total_customers": total,
        "new_customers": counts["new"],
        "returning_customers": counts["returning"],
        "vip_customers": counts["vip"],
        "at_risk_customers": counts["at_risk"],
        "inactive_customers": counts["inactive"],
        "active_customers": counts["new"] + counts["returning"] + counts["vip"],
        "average_lifetime_value": round(total_spent / total, 2) if total else 0,
        "retention_rate": round(retention, 1),
    }


async def segment_breakdown(session: AsyncSession) -> dict[str, dict[str, Any]]:
    customers = await list_customers(session)
    total = len(customers)
    counts = _segment_counts(customers)
    return {
        segment: {
            "count": count,
            "percentage": round(count / total * 100, 1) if total else 0,
            "label": SEGMENT_LABELS.get(segment, segment),
        }
        for segment, count in counts.items()
    }


async def lifetime_value_by_segment(session: AsyncSession) -> dict[str, float]:
    spend: dict[str, list[float]] = {segment: [] for segment in SEGMENTS}
    for customer in await list_customers(session):
        spend.setdefault(customer.segment, []).append(customer.total_spent)
    return {
        segment: round(sum(values) / len(values), 2) if values else 0
        for segment, values in spend.items()
    }


def _fmt_date(value: Optional[datetime]) -> str:
    return ensure_utc(value).date().isoformat() if value else ""


async def export_csv(session: AsyncSession) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for customer in await list_customers(session):
        writer.writerow(
            [
                customer.id,
                customer.name,
                customer.email,
                customer.phone,
                customer.segment,
                _fmt_date(customer.date_created),
                _fmt_date(customer.last_order_date),
                customer.total_orders,
                f"{customer.total_spent:.2f}",
                customer.notes,
            ]
        )
    return buffer.getvalue()

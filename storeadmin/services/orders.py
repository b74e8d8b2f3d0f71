from __future__ import annotations

import logging
import secrets
from collections import Counter
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import catalog as catalog_service
from storeadmin.services import customers as customers_service
from storeadmin.services import email_automation
from storeadmin.services import product_analytics
from storeadmin.services import system
from storeadmin.services.email_providers import EmailProvider, send_notification
from storeadmin.utils.dates import ensure_utc, end_of_day, lookback_start, start_of_day
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

SETTINGS_KEY = "order_settings"

ORDER_STATUSES = (
    "pending",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
    "on_hold",
    "backordered",
    "completed",
)
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded", "partially_refunded")

DEFAULT_ORDER_SETTINGS: dict[str, Any] = {
    "auto_update_inventory": True,
    "send_email_notifications": True,
    "default_order_status": "pending",
    "tax_rate": 0.0825,
    "shipping_options": [
        {"id": "standard", "name": "Standard Shipping", "price": 5.99},
        {"id": "express", "name": "Express Shipping", "price": 12.99},
        {"id": "overnight", "name": "Overnight Shipping", "price": 24.99},
    ],
}

UPDATABLE_FIELDS = (
    "payment_status",
    "shipping_address",
    "billing_address",
    "payment_method",
    "shipping_method",
    "notes",
)


def _history_entry(action: str, **details: Any) -> dict[str, Any]:
    return {"action": action, "timestamp": models.utcnow().isoformat(), **details}


def check_statuses(data: dict[str, Any]) -> None:
    for field, allowed in (
        ("status", ORDER_STATUSES),
        ("default_order_status", ORDER_STATUSES),
        ("payment_status", PAYMENT_STATUSES),
    ):
        if data.get(field) and data[field] not in allowed:
            raise ValueError(f"Unknown {field.replace('_', ' ')}: {data[field]}")


async def get_settings(session: AsyncSession) -> dict[str, Any]:
    return await system.load_settings(session, SETTINGS_KEY, DEFAULT_ORDER_SETTINGS)


async def update_settings(session: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
    check_statuses(changes)
    return await system.save_settings(session, SETTINGS_KEY, DEFAULT_ORDER_SETTINGS, changes)


def calculate_totals(
    items: list[dict[str, Any]],
    *,
    tax_rate: float,
    tax_amount: Optional[float] = None,
    shipping_amount: float = 0.0,
    discount_amount: float = 0.0,
) -> tuple[list[dict[str, Any]], dict[str, float]]:
    lines = []
    for item in items:
        quantity = item.get("quantity") or 1
        price = float(item["price"])
        lines.append({**item, "quantity": quantity, "price": price, "line_total": round(price * quantity, 2)})
    subtotal = round(sum(line["line_total"] for line in lines), 2)
    tax = round(subtotal * tax_rate, 2) if tax_amount is None else tax_amount
    total = round(subtotal + tax + shipping_amount - discount_amount, 2)
    return lines, {
        "subtotal": subtotal,
        "tax_amount": tax,
        "shipping_amount": shipping_amount,
        "discount_amount": discount_amount,
        "total_amount": total,
    }


async def get_order(session: AsyncSession, order_id: str) -> Optional[models.Order]:
    return await session.get(models.Order, order_id)


async def create_order(
    session: AsyncSession,
    data: dict[str, Any],
    *,
    provider: Optional[EmailProvider] = None,
) -> models.Order:
    customer_info = data.get("customer") or {}
    if not customer_info.get("email"):
        raise ValueError("Order requires a customer with an email address")
    if not data.get("items"):
        raise ValueError("Order requires at least one item")
    check_statuses(data)

    settings = await get_settings(session)
    lines, totals = calculate_totals(
        data["items"],
        tax_rate=settings["tax_rate"],
        tax_amount=data.get("tax_amount"),
        shipping_amount=data.get("shipping_amount") or 0.0,
        discount_amount=data.get("discount_amount") or 0.0,
    )

    number = await system.next_value(session, "order")
    now = models.utcnow()
    order = models.Order(
        id=f"ORD-{number}",
        order_number=number,
        customer=customer_info,
        items=lines,
        status=data.get("status") or settings["default_order_status"],
        payment_status=data.get("payment_status") or "pending",
        shipping_address=data.get("shipping_address"),
        billing_address=data.get("billing_address"),
        payment_method=data.get("payment_method"),
        shipping_method=data.get("shipping_method"),
        notes=data.get("notes") or "",
        refunded_amount=0.0,
        refunds=[],
        history=[_history_entry("order_created", status=data.get("status") or settings["default_order_status"])],
        date_created=now,
        date_updated=now,
        **totals,
    )
    session.add(order)

    if settings["auto_update_inventory"]:
        for line in lines:
            if line.get("product_id"):
                await catalog_service.decrement_stock(session, line["product_id"], line["quantity"])

    await session.commit()
    await session.refresh(order)
    log_with_context(
        logger, "info", "Order created", order_id=order.id, total=order.total_amount, items=len(lines)
    )

    customer = await customers_service.update_from_order(session, order, provider=provider)
    order.customer_id = customer.id
    await product_analytics.track_order_purchases(session, order)
    await session.commit()
    await session.refresh(order)

    if settings["send_email_notifications"]:
        await send_notification(provider, to=customer_info["email"], kind="new_order", order_id=order.id)

    await email_automation.trigger_event(
        session,
        "order_created",
        customer_id=customer.id,
        data={"order_id": order.id, "order_total": order.total_amount},
        provider=provider,
    )
    return order


async def update_order(
    session: AsyncSession,
    order_id: str,
    data: dict[str, Any],
    *,
    provider: Optional[EmailProvider] = None,
) -> Optional[models.Order]:
    order = await get_order(session, order_id)
    if order is None:
        return None
    check_statuses(data)

    for field in UPDATABLE_FIELDS:
        if field in data and data[field] is not None:
            setattr(order, field, data[field])

    new_status = data.get("status")
    status_changed = bool(new_status) and new_status != order.status
    if status_changed:
        previous = order.status
        order.status = new_status
        order.history = [
            *order.history,
            _history_entry(
                "status_changed", status=new_status, previous_status=previous, note=data.get("note") or ""
            ),
        ]
        log_with_context(logger, "info", "Order status changed", order_id=order.id, previous=previous, status=new_status)

    order.date_updated = models.utcnow()
    await session.commit()
    await session.refresh(order)

    if status_changed:
        settings = await get_settings(session)
        if settings["send_email_notifications"]:
            await send_notification(
                provider,
                to=order.customer.get("email"),
                kind="status_update",
                order_id=order.id,
                status=order.status,
            )
    return order


async def delete_order(session: AsyncSession, order_id: str) -> bool:
    order = await get_order(session, order_id)
    if order is None:
        return False
    await session.delete(order)
    await session.commit()
    return True


async def list_orders(
    session: AsyncSession,
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
) -> list[models.Order]:
    stmt = select(models.Order).order_by(models.Order.date_created.desc(), models.Order.order_number.desc())
    if status:
        stmt = stmt.where(models.Order.status == status)
    if payment_status:
        stmt = stmt.where(models.Order.payment_status == payment_status)
    if customer_id:
        stmt = stmt.where(models.Order.customer_id == customer_id)
    if date_from:
        stmt = stmt.where(models.Order.date_created >= start_of_day(ensure_utc(date_from)))
    if date_to:
        stmt = stmt.where(models.Order.date_created <= end_of_day(ensure_utc(date_to)))
    if min_amount is not None:
        stmt = stmt.where(models.Order.total_amount >= min_amount)
    if max_amount is not None:
        stmt = stmt.where(models.Order.total_amount <= max_amount)
    result = await session.execute(stmt)
    return list(result.scalars())


async def add_note(
    session: AsyncSession, order_id: str, note: str, *, is_private: bool = False
) -> Optional[models.Order]:
    order = await get_order(session, order_id)
    if order is None:
        return None
    order.history = [*order.history, _history_entry("note_added", note=note, is_private=is_private)]
    order.date_updated = models.utcnow()
    await session.commit()
    await session.refresh(order)
    return order


async def process_refund(
    session: AsyncSession,
    order_id: str,
    amount: float,
    *,
    reason: str = "",
    provider: Optional[EmailProvider] = None,
) -> Optional[models.Order]:
    order = await get_order(session, order_id)
    if order is None:
        return None

    remaining = round(order.total_amount - order.refunded_amount, 2)
    if amount <= 0 or amount > remaining:
        raise ValueError(f"Refund amount must be greater than 0 and at most {remaining:.2f}")

    full_refund = amount >= remaining
    refund = {
        "id": f"REF-{secrets.token_hex(4).upper()}",
        "amount": amount,
        "reason": reason,
        "date": models.utcnow().isoformat(),
        "type": "full" if full_refund else "partial",
    }
    order.refunds = [*order.refunds, refund]
    order.refunded_amount = round(order.refunded_amount + amount, 2)
    order.payment_status = "refunded" if full_refund else "partially_refunded"
    if full_refund:
        order.status = "refunded"
    order.history = [
        *order.history,
        _history_entry("refund_processed", amount=amount, reason=reason, refund_id=refund["id"]),
    ]
    order.date_updated = models.utcnow()
    await session.commit()
    await session.refresh(order)
    log_with_context(logger, "info", "Refund processed", order_id=order.id, amount=amount, full=full_refund)

    settings = await get_settings(session)
    if settings["send_email_notifications"]:
        await send_notification(
            provider, to=order.customer.get("email"), kind="refund_processed", order_id=order.id, amount=amount
        )
    return order


async def order_statistics(
    session: AsyncSession, period: str = "month", now: Optional[datetime] = None
) -> dict[str, Any]:
    now = now or models.utcnow()
    since = lookback_start(period, now)
    orders = await list_orders(session)
    if since is not None:
        orders = [order for order in orders if ensure_utc(order.date_created) >= since]

    revenue = round(sum(order.total_amount for order in orders), 2)
    by_status = Counter(order.status for order in orders)
    by_payment = Counter(order.payment_status for order in orders)

    quantities: Counter = Counter()
    names: dict[str, str] = {}
    for order in orders:
        for item in order.items:
            key = item.get("product_id") or item.get("name")
            quantities[key] += item.get("quantity", 1)
            names[key] = item.get("name") or key

    return {
        "period": period,
        "total_orders": len(orders),
        "total_revenue": revenue,
        "average_order_value": round(revenue / len(orders), 2) if orders else 0,
        "orders_by_status": {status: by_status.get(status, 0) for status in ORDER_STATUSES},
        "orders_by_payment_status": {status: by_payment.get(status, 0) for status in PAYMENT_STATUSES},
        "top_products": [
            {"product_id": key, "name": names[key], "quantity": quantity}
            for key, quantity in quantities.most_common(5)
        ],
    }


def build_invoice(order: models.Order) -> dict[str, Any]:
    created = ensure_utc(order.date_created)
    return {
        "invoice_number": f"INV-{order.order_number}",
        "order_id": order.id,
        "invoice_date": models.utcnow().date().isoformat(),
        "order_date": created.date().isoformat(),
        "customer": order.customer,
        "billing_address": order.billing_address or order.shipping_address,
        "shipping_address": order.shipping_address,
        "items": [
            {
                "name": item.get("name", item.get("product_id", "")),
                "quantity": item["quantity"],
                "price": item["price"],
                "total": item["line_total"],
            }
            for item in order.items
        ],
        "subtotal": order.subtotal,
        "tax": order.tax_amount,
        "shipping": order.shipping_amount,
        "discount": order.discount_amount,
        "total": order.total_amount,
        "refunded": order.refunded_amount,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
    }


def _format_address(address: Optional[dict[str, Any]]) -> list[str]:
    if not address:
        return ["-"]
    parts = [address.get(key) for key in ("street", "city", "state", "zip", "country")]
    return [", ".join(str(part) for part in parts if part)]


def render_invoice_text(invoice: dict[str, Any]) -> str:
    lines = [
        f"INVOICE {invoice['invoice_number']}",
        f"Order: {invoice['order_id']}",
        f"Invoice date: {invoice['invoice_date']}",
        f"Order date: {invoice['order_date']}",
        "",
        "Bill to:",
        f"  {invoice['customer'].get('name', '')} <{invoice['customer'].get('email', '')}>",
        *(f"  {line}" for line in _format_address(invoice["billing_address"])),
        "Ship to:",
        *(f"  {line}" for line in _format_address(invoice["shipping_address"])),
        "",
        f"{'Item':<40}{'Qty':>5}{'Price':>12}{'Total':>12}",
    ]
    for item in invoice["items"]:
        lines.append(f"{item['name'][:40]:<40}{item['quantity']:>5}{item['price']:>12.2f}{item['total']:>12.2f}")
    lines.extend(
        [
            "",
            f"{'Subtotal':<57}{invoice['subtotal']:>12.2f}",
            f"{'Tax':<57}{invoice['tax']:>12.2f}",
            f"{'Shipping':<57}{invoice['shipping']:>12.2f}",
            f"{'Discount':<57}{-invoice['discount']:>12.2f}",
            f"{'Total':<57}{invoice['total']:>12.2f}",
        ]
    )
    if invoice["refunded"]:
        lines.append(f"{'Refunded':<57}{-invoice['refunded']:>12.2f}")
    lines.append(f"Payment: {invoice['payment_method'] or '-'} ({invoice['payment_status']})")
    return "\n".join(lines)

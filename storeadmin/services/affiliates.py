from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.config import Settings
from storeadmin.services import analytics as analytics_service
from storeadmin.services import system
from storeadmin.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

PLATFORMS = ("amazon", "shareasale", "cj", "rakuten", "custom")
EDITABLE_FIELDS = ("name", "product_id", "product_name", "url", "platform", "commission", "tag")


async def create_link(session: AsyncSession, data: dict[str, Any]) -> models.AffiliateLink:
    number = await system.next_value(session, "affiliate_link", start=0)
    link = models.AffiliateLink(
        id=f"afl{number:03d}",
        clicks=0,
        conversions=0,
        **{field: data.get(field) for field in EDITABLE_FIELDS if data.get(field) is not None},
    )
    session.add(link)
    await session.commit()
    await session.refresh(link)
    logger.info("Created affiliate link %s for product %s", link.id, link.product_id)
    return link


async def get_link(session: AsyncSession, link_id: str) -> Optional[models.AffiliateLink]:
    return await session.get(models.AffiliateLink, link_id)


async def list_links(
    session: AsyncSession, *, product_id: Optional[str] = None, platform: Optional[str] = None
) -> list[models.AffiliateLink]:
    stmt = select(models.AffiliateLink).order_by(models.AffiliateLink.created_at.desc())
    if product_id:
        stmt = stmt.where(models.AffiliateLink.product_id == product_id)
    if platform:
        stmt = stmt.where(models.AffiliateLink.platform == platform)
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_link(
    session: AsyncSession, link_id: str, data: dict[str, Any]
) -> Optional[models.AffiliateLink]:
    link = await get_link(session, link_id)
    if link is None:
        return None
    for field in EDITABLE_FIELDS:
        if field in data and data[field] is not None:
            setattr(link, field, data[field])
    await session.commit()
    await session.refresh(link)
    return link


async def delete_link(session: AsyncSession, link_id: str) -> bool:
    link = await get_link(session, link_id)
    if link is None:
        return False
    await session.delete(link)
    await session.commit()
    return True


async def record_click(
    session: AsyncSession, link_id: str, *, user_id: Optional[str] = None
) -> Optional[models.AffiliateLink]:
    link = await get_link(session, link_id)
    if link is None:
        return None
    link.clicks += 1
    await analytics_service.track_affiliate_click(
        session,
        link_id=link.id,
        product_id=link.product_id,
        product_name=link.product_name,
        platform=link.platform,
        user_id=user_id,
        commit=False,
    )
    await session.commit()
    await session.refresh(link)
    return link


async def record_conversion(session: AsyncSession, link_id: str) -> Optional[models.AffiliateLink]:
    link = await get_link(session, link_id)
    if link is None:
        return None
    link.conversions += 1
    await session.commit()
    await session.refresh(link)
    logger.info("Conversion recorded for %s (%s total)", link.id, link.conversions)
    return link


def build_affiliate_url(settings: Settings, asin: str, tag: Optional[str] = None) -> str:
    if not asin:
        raise ValueError("ASIN is required")
    return settings.build_amazon_url(asin, tag)


def _simulated_product(settings: Settings, asin: str) -> dict[str, Any]:
    # Canned payload shaped like a Product Advertising API item lookup.
    return {
        "asin": asin,
        "title": f"Amazon Product {asin}",
        "description": "Product details are simulated until the Product Advertising API is connected.",
        "price": 29.99,
        "currency": "USD",
        "image_url": f"https://images-na.ssl-images-amazon.com/images/P/{asin}.01.L.jpg",
        "rating": 4.5,
        "review_count": 128,
        "availability": "In Stock",
        "affiliate_url": build_affiliate_url(settings, asin),
    }


async def fetch_amazon_product(session: AsyncSession, settings: Settings, asin: str) -> dict[str, Any]:
    """Look up an ASIN, serving from the cache while it is younger than ``amazon_cache_hours``."""
    asin = (asin or "").strip()
    if not asin:
        raise ValueError("ASIN is required")

    cached = await session.get(models.AmazonProductCache, asin)
    now = models.utcnow()
    if cached is not None and now - ensure_utc(cached.fetched_at) < timedelta(hours=settings.amazon_cache_hours):
        return {**cached.data, "cached": True}

    data = _simulated_product(settings, asin)
    if cached is None:
        session.add(models.AmazonProductCache(asin=asin, data=data, fetched_at=now))
    else:
        cached.data = data
        cached.fetched_at = now
    await session.commit()
    logger.info("Fetched Amazon product %s", asin)
    return {**data, "cached": False}

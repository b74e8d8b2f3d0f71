from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.config import Settings, get_settings
from storeadmin.db import get_session
from storeadmin.schemas import marketing as schemas
from storeadmin.services import analytics as analytics_service
from storeadmin.services import product_analytics

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _tracked(event: Any) -> dict[str, Any]:
    if event is None:
        return {"tracked": False, "event": None}
    return {"tracked": True, "event": schemas.AnalyticsEventResponse.model_validate(event)}


@router.post("/page-view", status_code=status.HTTP_201_CREATED)
async def track_page_view(
    payload: schemas.PageViewIn,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    event = await analytics_service.track_page_view(
        session, payload.page, title=payload.title, referrer=payload.referrer, user_id=payload.user_id
    )
    return _tracked(event)


@router.post("/event", status_code=status.HTTP_201_CREATED)
async def track_event(
    payload: schemas.EventIn,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    event = await analytics_service.track_event(
        session, payload.name, category=payload.category, data=payload.data, user_id=payload.user_id
    )
    return _tracked(event)


@router.post("/activity", status_code=status.HTTP_201_CREATED)
async def track_user_activity(
    payload: schemas.UserActivityIn,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    event = await analytics_service.track_user_activity(
        session, payload.user_id, payload.action, details=payload.details
    )
    return _tracked(event)


@router.get("/reports/page-views")
async def page_view_report(
    period: str = "last30days",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await analytics_service.page_view_report(session, period, start=start, end=end)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/reports/affiliates")
async def affiliate_report(
    period: str = "last30days",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await analytics_service.affiliate_report(session, period, start=start, end=end)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/events/summary")
async def event_summary(
    period: str = "last30days",
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await analytics_service.event_summary(session, period)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/dashboard")
async def dashboard(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await analytics_service.dashboard_summary(session)


@router.get("/config")
async def get_config(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await analytics_service.get_config(session)


@router.put("/config")
async def update_config(
    changes: dict[str, bool],
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    unknown = set(changes) - set(analytics_service.DEFAULT_ANALYTICS_CONFIG)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown analytics settings: {', '.join(sorted(unknown))}",
        )
    return await analytics_service.update_config(session, changes)


@router.post("/cleanup")
async def cleanup(
    retention_days: Optional[int] = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> dict[str, int]:
    days = retention_days if retention_days is not None else settings.analytics_retention_days
    if days < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="retention_days must be at least 1")
    return {"removed": await analytics_service.cleanup(session, days)}


@router.post("/products/{product_id}/events", status_code=status.HTTP_201_CREATED)
async def track_product_event(
    product_id: str,
    payload: schemas.ProductEventIn,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        event = await product_analytics.track_product_event(
            session,
            product_id,
            payload.event_type,
            quantity=payload.quantity,
            revenue=payload.revenue,
            rating=payload.rating,
            compared_with=payload.compared_with,
            user_id=payload.user_id,
            metadata=payload.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _tracked(event)


@router.get("/reports/products")
async def product_report(
    period: str = "last30days",
    product_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await product_analytics.product_performance_report(
            session, period, product_id=product_id, start=start, end=end
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.db import get_session
from storeadmin.schemas import sales as schemas
from storeadmin.services import orders as orders_service
from storeadmin.services.email_providers import EmailProvider, get_email_provider

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=schemas.OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: schemas.OrderCreate,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> schemas.OrderResponse:
    try:
        order = await orders_service.create_order(session, payload.model_dump(), provider=provider)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.OrderResponse.model_validate(order)


@router.get("", response_model=List[schemas.OrderResponse])
async def list_orders(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    payment_status: Optional[str] = None,
    customer_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.OrderResponse]:
    orders = await orders_service.list_orders(
        session,
        status=status_filter,
        payment_status=payment_status,
        customer_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
    )
    return [schemas.OrderResponse.model_validate(order) for order in orders]


@router.get("/statistics")
async def order_statistics(
    period: str = "month",
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await orders_service.order_statistics(session, period)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/settings")
async def get_order_settings(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await orders_service.get_settings(session)


@router.put("/settings")
async def update_order_settings(
    payload: schemas.OrderSettingsUpdate,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await orders_service.update_settings(session, payload.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{order_id}", response_model=schemas.OrderResponse)
async def get_order(
    order_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.OrderResponse:
    order = await orders_service.get_order(session, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return schemas.OrderResponse.model_validate(order)


@router.patch("/{order_id}", response_model=schemas.OrderResponse)
async def update_order(
    order_id: str,
    payload: schemas.OrderUpdate,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> schemas.OrderResponse:
    try:
        order = await orders_service.update_order(
            session, order_id, payload.model_dump(exclude_unset=True), provider=provider
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return schemas.OrderResponse.model_validate(order)


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_order(
    order_id: str,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await orders_service.delete_order(session, order_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{order_id}/notes", response_model=schemas.OrderResponse)
async def add_note(
    order_id: str,
    payload: schemas.OrderNote,
    session: AsyncSession = Depends(get_session),
) -> schemas.OrderResponse:
    order = await orders_service.add_note(session, order_id, payload.note, is_private=payload.is_private)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return schemas.OrderResponse.model_validate(order)


@router.post("/{order_id}/refunds", response_model=schemas.OrderResponse)
async def refund_order(
    order_id: str,
    payload: schemas.RefundRequest,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> schemas.OrderResponse:
    try:
        order = await orders_service.process_refund(
            session, order_id, payload.amount, reason=payload.reason, provider=provider
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return schemas.OrderResponse.model_validate(order)


@router.get("/{order_id}/invoice")
async def get_invoice(
    order_id: str,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    order = await orders_service.get_order(session, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return orders_service.build_invoice(order)


@router.get("/{order_id}/invoice.txt", response_class=PlainTextResponse)
async def get_invoice_text(
    order_id: str,
    session: AsyncSession = Depends(get_session),
) -> str:
    order = await orders_service.get_order(session, order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return orders_service.render_invoice_text(orders_service.build_invoice(order))

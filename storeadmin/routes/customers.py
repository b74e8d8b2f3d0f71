from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.db import get_session
from storeadmin.schemas import sales as schemas
from storeadmin.services import customers as customers_service
from storeadmin.services.email_providers import EmailProvider, get_email_provider

router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.post("", response_model=schemas.CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    payload: schemas.CustomerCreate,
    session: AsyncSession = Depends(get_session),
    provider: EmailProvider = Depends(get_email_provider),
) -> schemas.CustomerResponse:
    try:
        customer = await customers_service.create_customer(session, payload.model_dump(), provider=provider)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.CustomerResponse.model_validate(customer)


@router.get("", response_model=List[schemas.CustomerResponse])
async def list_customers(
    segment: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.CustomerResponse]:
    customers = await customers_service.list_customers(
        session, segment=segment, search=search, date_from=date_from, date_to=date_to
    )
    return [schemas.CustomerResponse.model_validate(customer) for customer in customers]


@router.get("/statistics")
async def customer_statistics(
    period: str = "all",
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    try:
        return await customers_service.customer_statistics(session, period)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/segments")
async def segment_breakdown(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await customers_service.segment_breakdown(session)


@router.get("/lifetime-value")
async def lifetime_value(session: AsyncSession = Depends(get_session)) -> dict[str, float]:
    return await customers_service.lifetime_value_by_segment(session)


@router.post("/segments/refresh")
async def refresh_segments(session: AsyncSession = Depends(get_session)) -> dict[str, int]:
    return {"changed": await customers_service.refresh_segments(session)}


@router.get("/export", response_class=PlainTextResponse)
async def export_customers(session: AsyncSession = Depends(get_session)) -> PlainTextResponse:
    return PlainTextResponse(
        await customers_service.export_csv(session),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="customers.csv"'},
    )


@router.get("/settings")
async def get_customer_settings(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await customers_service.get_settings(session)


@router.put("/settings")
async def update_customer_settings(
    payload: schemas.CustomerSettingsUpdate,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    return await customers_service.update_settings(session, payload.model_dump(exclude_none=True))


@router.get("/{customer_id}", response_model=schemas.CustomerResponse)
async def get_customer(
    customer_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.CustomerResponse:
    customer = await customers_service.get_customer(session, customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return schemas.CustomerResponse.model_validate(customer)


@router.patch("/{customer_id}", response_model=schemas.CustomerResponse)
async def update_customer(
    customer_id: str,
    payload: schemas.CustomerUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CustomerResponse:
    try:
        customer = await customers_service.update_customer(
            session, customer_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return schemas.CustomerResponse.model_validate(customer)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_customer(
    customer_id: str,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await customers_service.delete_customer(session, customer_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

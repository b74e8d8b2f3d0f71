from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.config import Settings, get_settings
from storeadmin.db import get_session
from storeadmin.schemas import marketing as schemas
from storeadmin.services import affiliates as affiliates_service

router = APIRouter(prefix="/api/affiliates", tags=["affiliates"])


@router.post("", response_model=schemas.AffiliateLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_link(
    payload: schemas.AffiliateLinkCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.AffiliateLinkResponse:
    link = await affiliates_service.create_link(session, payload.model_dump())
    return schemas.AffiliateLinkResponse.model_validate(link)


@router.get("", response_model=List[schemas.AffiliateLinkResponse])
async def list_links(
    product_id: Optional[str] = None,
    platform: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.AffiliateLinkResponse]:
    links = await affiliates_service.list_links(session, product_id=product_id, platform=platform)
    return [schemas.AffiliateLinkResponse.model_validate(link) for link in links]


@router.get("/amazon/{asin}")
async def amazon_product(
    asin: str,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    try:
        return await affiliates_service.fetch_amazon_product(session, settings, asin)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/amazon-url")
async def amazon_url(
    asin: str = "",
    tag: Optional[str] = None,
    settings: Settings = Depends(get_settings),
) -> dict[str, str]:
    try:
        return {"url": affiliates_service.build_affiliate_url(settings, asin, tag)}
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{link_id}", response_model=schemas.AffiliateLinkResponse)
async def get_link(
    link_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.AffiliateLinkResponse:
    link = await affiliates_service.get_link(session, link_id)
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate link not found")
    return schemas.AffiliateLinkResponse.model_validate(link)


@router.patch("/{link_id}", response_model=schemas.AffiliateLinkResponse)
async def update_link(
    link_id: str,
    payload: schemas.AffiliateLinkUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.AffiliateLinkResponse:
    link = await affiliates_service.update_link(session, link_id, payload.model_dump(exclude_unset=True))
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate link not found")
    return schemas.AffiliateLinkResponse.model_validate(link)


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: str,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await affiliates_service.delete_link(session, link_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate link not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{link_id}/click", response_model=schemas.AffiliateLinkResponse)
async def record_click(
    link_id: str,
    payload: Optional[schemas.ClickRequest] = None,
    session: AsyncSession = Depends(get_session),
) -> schemas.AffiliateLinkResponse:
    link = await affiliates_service.record_click(
        session, link_id, user_id=payload.user_id if payload else None
    )
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate link not found")
    return schemas.AffiliateLinkResponse.model_validate(link)


@router.post("/{link_id}/conversion", response_model=schemas.AffiliateLinkResponse)
async def record_conversion(
    link_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.AffiliateLinkResponse:
    link = await affiliates_service.record_conversion(session, link_id)
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Affiliate link not found")
    return schemas.AffiliateLinkResponse.model_validate(link)

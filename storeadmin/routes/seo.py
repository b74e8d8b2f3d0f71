from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.db import get_session
from storeadmin.schemas import marketing as schemas
from storeadmin.services import content as content_service
from storeadmin.services import seo as seo_service

router = APIRouter(prefix="/api/seo", tags=["seo"])


@router.post("/analyze", response_model=schemas.SeoAnalysis)
async def analyze(
    payload: schemas.SeoAnalyzeRequest,
    session: AsyncSession = Depends(get_session),
) -> schemas.SeoAnalysis:
    result = await seo_service.analyze_and_record(
        session,
        payload.model_dump(exclude={"focus_keyword", "content_id"}),
        payload.focus_keyword,
        content_id=payload.content_id,
    )
    return schemas.SeoAnalysis(**result)


@router.post("/posts/{post_id}", response_model=schemas.SeoAnalysis)
async def analyze_post(
    post_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.SeoAnalysis:
    post = await content_service.get_post(session, post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    result = await seo_service.analyze_and_record(
        session, content_service.snapshot(post), post.focus_keyword, content_id=str(post.id)
    )
    return schemas.SeoAnalysis(**result)


@router.get("/keywords")
async def keyword_performance(
    keyword: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    return await seo_service.keyword_performance(session, keyword)


@router.get("/recommendations")
async def site_recommendations(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await seo_service.site_recommendations(session)


@router.get("/config")
async def get_config(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await seo_service.get_config(session)


@router.put("/config")
async def update_config(
    changes: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    unknown = set(changes) - set(seo_service.DEFAULT_SEO_CONFIG)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown SEO config sections: {', '.join(sorted(unknown))}",
        )
    return await seo_service.update_config(session, changes)


@router.post("/slug", response_model=schemas.SlugResponse)
async def generate_slug(payload: schemas.SlugRequest) -> schemas.SlugResponse:
    return schemas.SlugResponse(slug=seo_service.generate_slug(payload.text))

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin.db import get_session
from storeadmin.schemas import marketing as schemas
from storeadmin.services import ab_testing as ab_service

router = APIRouter(prefix="/api/ab-tests", tags=["ab-tests"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="A/B test not found")


@router.post("", response_model=schemas.ABTestResponse, status_code=status.HTTP_201_CREATED)
async def create_test(
    payload: schemas.ABTestCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    try:
        test = await ab_service.create_test(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.ABTestResponse.model_validate(test)


@router.get("", response_model=List[schemas.ABTestResponse])
async def list_tests(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> List[schemas.ABTestResponse]:
    tests = await ab_service.list_tests(session, status=status_filter)
    return [schemas.ABTestResponse.model_validate(test) for test in tests]


@router.get("/ideas")
async def list_test_ideas() -> dict[str, Any]:
    return ab_service.suggest_test_ideas()


@router.get("/{test_id}", response_model=schemas.ABTestResponse)
async def get_test(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    test = await ab_service.get_test(session, test_id)
    if test is None:
        raise _not_found()
    return schemas.ABTestResponse.model_validate(test)


@router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_test(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await ab_service.delete_test(session, test_id):
        raise _not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{test_id}/start", response_model=schemas.ABTestResponse)
async def start_test(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    try:
        test = await ab_service.start_test(session, test_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if test is None:
        raise _not_found()
    return schemas.ABTestResponse.model_validate(test)


@router.post("/{test_id}/metrics", response_model=schemas.ABTestResponse)
async def record_metrics(
    test_id: UUID,
    payload: schemas.VariantMetrics,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    try:
        test = await ab_service.record_metrics(
            session, test_id, payload.variant_id, payload.model_dump(exclude={"variant_id"})
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if test is None:
        raise _not_found()
    return schemas.ABTestResponse.model_validate(test)


@router.post("/{test_id}/stop", response_model=schemas.ABTestResponse)
async def stop_test(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    try:
        test = await ab_service.stop_test(session, test_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if test is None:
        raise _not_found()
    return schemas.ABTestResponse.model_validate(test)


@router.post("/{test_id}/evaluate", response_model=schemas.ABTestResponse)
async def evaluate_test(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.ABTestResponse:
    try:
        test = await ab_service.evaluate_test(session, test_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if test is None:
        raise _not_found()
    return schemas.ABTestResponse.model_validate(test)


@router.post("/{test_id}/apply-winner", response_model=schemas.CampaignResponse, status_code=status.HTTP_201_CREATED)
async def apply_winner(
    test_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.CampaignResponse:
    try:
        campaign = await ab_service.apply_winner(session, test_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if campaign is None:
        raise _not_found()
    return schemas.CampaignResponse.model_validate(campaign)

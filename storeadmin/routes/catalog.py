from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.db import get_session
from storeadmin.schemas import catalog as schemas
from storeadmin.services import catalog as catalog_service

router = APIRouter(prefix="/api/products", tags=["products"])
taxonomy_router = APIRouter(prefix="/api", tags=["categories", "tags"])


def to_response(product: models.Product) -> schemas.ProductResponse:
    return schemas.ProductResponse.model_validate(product)


@router.post("", response_model=schemas.ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: schemas.ProductCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ProductResponse:
    if payload.id and await catalog_service.get_product(session, payload.id) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product id already exists")
    product = await catalog_service.create_product(session, payload.model_dump())
    return to_response(product)


@router.get("", response_model=List[schemas.ProductResponse])
async def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    tag: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.ProductResponse]:
    products = await catalog_service.list_products(session, search=search, category=category, tag=tag)
    return [to_response(product) for product in products]


@router.get("/stats", response_model=schemas.ProductStats)
async def product_stats(session: AsyncSession = Depends(get_session)) -> schemas.ProductStats:
    return schemas.ProductStats(**await catalog_service.product_stats(session))


@router.get("/export")
async def export_products(session: AsyncSession = Depends(get_session)) -> list[dict]:
    return await catalog_service.export_products(session)


@router.post("/import", response_model=schemas.ImportResult)
async def import_products(
    payload: List[schemas.ProductCreate],
    session: AsyncSession = Depends(get_session),
) -> schemas.ImportResult:
    result = await catalog_service.import_products(session, [item.model_dump() for item in payload])
    return schemas.ImportResult(**result)


@router.post("/bulk", response_model=schemas.BulkResult)
async def bulk_action(
    payload: schemas.BulkAction,
    session: AsyncSession = Depends(get_session),
) -> schemas.BulkResult:
    try:
        if payload.action == "delete":
            affected = await catalog_service.bulk_delete(session, payload.product_ids)
        elif payload.action == "set_stock":
            if payload.stock_quantity is None:
                raise ValueError("stock_quantity is required")
            affected = await catalog_service.bulk_set_stock(session, payload.product_ids, payload.stock_quantity)
        elif payload.action == "add_tag":
            if not payload.tag:
                raise ValueError("tag is required")
            affected = await catalog_service.bulk_add_tag(session, payload.product_ids, payload.tag)
        else:
            if payload.percent is None:
                raise ValueError("percent is required")
            affected = await catalog_service.bulk_apply_discount(session, payload.product_ids, payload.percent)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.BulkResult(action=payload.action, affected=affected)


@router.get("/{product_id}", response_model=schemas.ProductResponse)
async def get_product(
    product_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.ProductResponse:
    product = await catalog_service.get_product(session, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return to_response(product)


@router.patch("/{product_id}", response_model=schemas.ProductResponse)
async def update_product(
    product_id: str,
    payload: schemas.ProductUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ProductResponse:
    product = await catalog_service.update_product(session, product_id, payload.model_dump(exclude_unset=True))
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return to_response(product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: str,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await catalog_service.delete_product(session, product_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{product_id}/duplicate",
    response_model=schemas.ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_product(
    product_id: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.ProductResponse:
    product = await catalog_service.duplicate_product(session, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return to_response(product)


@taxonomy_router.get("/categories", response_model=List[schemas.TaxonomyResponse])
async def list_categories(session: AsyncSession = Depends(get_session)) -> List[schemas.TaxonomyResponse]:
    return [schemas.TaxonomyResponse.model_validate(c) for c in await catalog_service.list_categories(session)]


@taxonomy_router.post(
    "/categories", response_model=schemas.TaxonomyResponse, status_code=status.HTTP_201_CREATED
)
async def create_category(
    payload: schemas.TaxonomyCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaxonomyResponse:
    try:
        category = await catalog_service.create_category(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.TaxonomyResponse.model_validate(category)


@taxonomy_router.patch("/categories/{category_id}", response_model=schemas.TaxonomyResponse)
async def update_category(
    category_id: UUID,
    payload: schemas.TaxonomyUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaxonomyResponse:
    try:
        category = await catalog_service.update_category(
            session, category_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if category is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return schemas.TaxonomyResponse.model_validate(category)


@taxonomy_router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    try:
        deleted = await catalog_service.delete_category(session, category_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@taxonomy_router.get("/tags", response_model=List[schemas.TaxonomyResponse])
async def list_tags(session: AsyncSession = Depends(get_session)) -> List[schemas.TaxonomyResponse]:
    return [schemas.TaxonomyResponse.model_validate(t) for t in await catalog_service.list_tags(session)]


@taxonomy_router.post("/tags", response_model=schemas.TaxonomyResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    payload: schemas.TaxonomyCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaxonomyResponse:
    try:
        tag = await catalog_service.create_tag(session, payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.TaxonomyResponse.model_validate(tag)


@taxonomy_router.patch("/tags/{tag_id}", response_model=schemas.TaxonomyResponse)
async def update_tag(
    tag_id: UUID,
    payload: schemas.TaxonomyUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaxonomyResponse:
    try:
        tag = await catalog_service.update_tag(session, tag_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if tag is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return schemas.TaxonomyResponse.model_validate(tag)


@taxonomy_router.delete("/tags/{tag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tag(
    tag_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await catalog_service.delete_tag(session, tag_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tag not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InventoryIn(BaseModel):
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: int = Field(default=5, ge=0)
    manage_stock: bool = True


class InventoryOut(BaseModel):
    stock_quantity: int
    low_stock_threshold: int
    manage_stock: bool
    last_updated: datetime


class ProductSeo(BaseModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    focus_keyword: Optional[str] = None
    canonical: Optional[str] = None


class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=64)
    description: str
    price: float = Field(ge=0)
    sale_price: Optional[float] = Field(default=None, ge=0)
    rating: float = Field(default=0.0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)
    image_url: str
    additional_images: List[str] = Field(default_factory=list)
    affiliate_link: str
    sku: Optional[str] = None
    weight: float = 0.0
    dimensions: Optional[dict[str, Any]] = None
    features: List[str] = Field(min_length=1)
    specifications: dict[str, Any] = Field(default_factory=dict)
    variants: List[dict[str, Any]] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    seo: ProductSeo = Field(default_factory=ProductSeo)

    @field_validator("features")
    @classmethod
    def strip_empty_features(cls, value: List[str]) -> List[str]:
        features = [feature.strip() for feature in value if feature and feature.strip()]
        if not features:
            raise ValueError("at least one feature is required")
        return features


class ProductCreate(ProductBase):
    id: Optional[str] = Field(default=None, max_length=32)
    inventory: InventoryIn = Field(default_factory=InventoryIn)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    sale_price: Optional[float] = Field(default=None, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    review_count: Optional[int] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    additional_images: Optional[List[str]] = None
    affiliate_link: Optional[str] = None
    sku: Optional[str] = None
    weight: Optional[float] = None
    dimensions: Optional[dict[str, Any]] = None
    features: Optional[List[str]] = Field(default=None, min_length=1)
    specifications: Optional[dict[str, Any]] = None
    variants: Optional[List[dict[str, Any]]] = None
    tags: Optional[List[str]] = None
    seo: Optional[ProductSeo] = None
    inventory: Optional[InventoryIn] = None


class ProductResponse(ProductBase):
    id: str
    inventory: InventoryOut
    inventory_status: str
    date_added: datetime
    date_modified: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductStats(BaseModel):
    total_products: int
    low_stock: int
    out_of_stock: int
    top_rated: int


class BulkAction(BaseModel):
    action: str = Field(pattern="^(delete|set_stock|add_tag|discount)$")
    product_ids: List[str] = Field(min_length=1)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    tag: Optional[str] = None
    percent: Optional[float] = None


class BulkResult(BaseModel):
    action: str
    affected: int


class ImportResult(BaseModel):
    created: int
    replaced: int


class TaxonomyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    slug: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = None


class TaxonomyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    slug: Optional[str] = Field(default=None, max_length=128)
    description: Optional[str] = None


class TaxonomyResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    description: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

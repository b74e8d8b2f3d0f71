from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storeadmin.schemas.common import Address, Email


class OrderCustomer(BaseModel):
    name: Optional[str] = None
    email: Email
    phone: Optional[str] = None


class OrderItem(BaseModel):
    product_id: Optional[str] = None
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)


class OrderCreate(BaseModel):
    customer: OrderCustomer
    items: List[OrderItem] = Field(min_length=1)
    status: Optional[str] = None
    payment_status: Optional[str] = None
    tax_amount: Optional[float] = Field(default=None, ge=0)
    shipping_amount: float = Field(default=0.0, ge=0)
    discount_amount: float = Field(default=0.0, ge=0)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = None


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    note: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    notes: Optional[str] = None


class OrderNote(BaseModel):
    note: str = Field(min_length=1)
    is_private: bool = False


class RefundRequest(BaseModel):
    amount: float
    reason: str = ""


class OrderResponse(BaseModel):
    id: str
    order_number: int
    customer: dict[str, Any]
    customer_id: Optional[str]
    items: List[dict[str, Any]]
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    refunded_amount: float
    status: str
    payment_status: str
    shipping_address: Optional[dict[str, Any]]
    billing_address: Optional[dict[str, Any]]
    payment_method: Optional[str]
    shipping_method: Optional[str]
    notes: str
    history: List[dict[str, Any]]
    refunds: List[dict[str, Any]]
    date_created: datetime
    date_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderSettingsUpdate(BaseModel):
    auto_update_inventory: Optional[bool] = None
    send_email_notifications: Optional[bool] = None
    default_order_status: Optional[str] = None
    tax_rate: Optional[float] = Field(default=None, ge=0, lt=1)
    shipping_options: Optional[List[dict[str, Any]]] = None


CUSTOMER_SEGMENTS = ("new", "returning", "vip", "at_risk", "inactive")


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: Email
    phone: Optional[str] = None
    address: Optional[Address] = None
    segment: Optional[str] = None
    preferences: Optional[dict[str, bool]] = None
    notes: Optional[str] = None

    @field_validator("segment")
    @classmethod
    def check_segment(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in CUSTOMER_SEGMENTS:
            raise ValueError("unknown segment")
        return value


class CustomerUpdate(CustomerCreate):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[Email] = None


class CustomerResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    address: Optional[dict[str, Any]]
    segment: str
    preferences: dict[str, Any]
    notes: str
    date_created: datetime
    date_updated: datetime
    last_order_date: Optional[datetime]
    total_orders: int
    total_spent: float
    order_ids: List[str]
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SegmentThresholds(BaseModel):
    vip_order_count: Optional[int] = Field(default=None, ge=1)
    vip_total_spent: Optional[float] = Field(default=None, ge=0)
    inactive_days: Optional[int] = Field(default=None, ge=1)
    at_risk_days: Optional[int] = Field(default=None, ge=1)


class CustomerSettingsUpdate(BaseModel):
    auto_segmentation: Optional[bool] = None
    send_welcome_email: Optional[bool] = None
    segment_thresholds: Optional[SegmentThresholds] = None

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storeadmin.schemas.common import as_utc


# Affiliates

class AffiliateLinkCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    product_id: str = Field(min_length=1, max_length=32)
    product_name: Optional[str] = None
    url: str = Field(min_length=1)
    platform: str = "amazon"
    commission: float = Field(default=0.0, ge=0)
    tag: Optional[str] = None


class AffiliateLinkUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    url: Optional[str] = None
    platform: Optional[str] = None
    commission: Optional[float] = Field(default=None, ge=0)
    tag: Optional[str] = None


class AffiliateLinkResponse(BaseModel):
    id: str
    name: str
    product_id: str
    product_name: Optional[str]
    url: str
    platform: str
    commission: float
    tag: Optional[str]
    clicks: int
    conversions: int
    conversion_rate: float
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClickRequest(BaseModel):
    user_id: Optional[str] = None


# SEO

class SeoAnalyzeRequest(BaseModel):
    title: Optional[str] = None
    content: str = ""
    seo_description: Optional[str] = None
    slug: Optional[str] = None
    focus_keyword: Optional[str] = None
    content_id: Optional[str] = None


class SeoAnalysis(BaseModel):
    score: int
    issues: List[str]
    recommendations: List[str]
    keyword_analysis: dict[str, Any]
    content_analysis: dict[str, Any]
    meta_analysis: dict[str, Any]


class SlugRequest(BaseModel):
    text: str


class SlugResponse(BaseModel):
    slug: str


# Email

class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str
    subject: str = Field(min_length=1, max_length=255)
    body: str = ""


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = None
    subject: Optional[str] = Field(default=None, min_length=1, max_length=255)
    body: Optional[str] = None


class TemplateResponse(BaseModel):
    id: UUID
    name: str
    category: str
    subject: str
    body: str
    usage_count: int
    last_used: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SegmentCriteria(BaseModel):
    type: str = Field(pattern="^(all|segment)$")
    value: Optional[str] = None


class EmailSegmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    criteria: SegmentCriteria = Field(default_factory=lambda: SegmentCriteria(type="all"))


class EmailSegmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    criteria: Optional[SegmentCriteria] = None


class EmailSegmentResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    criteria: dict[str, Any]
    count: int
    updated_at: datetime


class CampaignCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=255)
    body: Optional[str] = None
    type: str = "regular"
    template_id: Optional[UUID] = None
    segment_id: Optional[UUID] = None
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class CampaignUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    subject: Optional[str] = Field(default=None, max_length=255)
    body: Optional[str] = None
    status: Optional[str] = None
    segment_id: Optional[UUID] = None
    scheduled_at: Optional[datetime] = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_scheduled_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class CampaignResponse(BaseModel):
    id: UUID
    name: str
    subject: str
    body: str
    status: str
    type: str
    template_id: Optional[UUID]
    segment_id: Optional[UUID]
    recipients: int
    scheduled_at: Optional[datetime]
    sent_at: Optional[datetime]
    stats: dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CampaignStatsUpdate(BaseModel):
    opened: int = Field(default=0, ge=0)
    clicked: int = Field(default=0, ge=0)
    bounced: int = Field(default=0, ge=0)
    unsubscribed: int = Field(default=0, ge=0)


class PersonalizeRequest(BaseModel):
    template: str
    customer_id: Optional[str] = None
    customer: Optional[dict[str, Any]] = None


# Email automation

class AutomationTrigger(BaseModel):
    type: str = "event"
    event: Optional[str] = None
    delay_minutes: int = Field(default=0, ge=0)
    frequency: Optional[str] = None
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    minute: Optional[int] = Field(default=None, ge=0, le=59)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)


class StepCondition(BaseModel):
    type: str
    value: Any = True


class AutomationStep(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    type: str = "email"
    delay_minutes: int = Field(default=0, ge=0)
    template_id: Optional[UUID] = None
    subject: Optional[str] = Field(default=None, max_length=255)
    body: Optional[str] = None
    tag: Optional[str] = None
    webhook_url: Optional[str] = None
    condition: Optional[StepCondition] = None


class AutomationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    trigger: AutomationTrigger
    steps: List[AutomationStep] = Field(default_factory=list)
    segment_id: Optional[UUID] = None


class AutomationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    trigger: Optional[AutomationTrigger] = None
    steps: Optional[List[AutomationStep]] = None
    segment_id: Optional[UUID] = None


class AutomationResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str]
    trigger: dict[str, Any]
    steps: List[dict[str, Any]]
    segment_id: Optional[UUID]
    is_active: bool
    next_run_at: Optional[datetime]
    stats: dict[str, Any]
    created_at: datetime
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class AutomationRunResponse(BaseModel):
    id: UUID
    workflow_id: UUID
    customer_id: Optional[str]
    trigger_data: dict[str, Any]
    status: str
    current_step: int
    step_results: List[dict[str, Any]]
    next_step_at: Optional[datetime]
    started_at: datetime
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class AutomationEventIn(BaseModel):
    event: str = Field(min_length=1)
    customer_id: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class EngagementIn(BaseModel):
    step_id: str = Field(min_length=1)
    opened: bool = False
    clicked: bool = False


# A/B testing

class VariantIn(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None


class ABTestCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    test_type: str = "subject"
    goal: str = "open_rate"
    segment_id: Optional[UUID] = None
    sample_size: int = Field(default=20, ge=1, le=100)
    variants: List[VariantIn] = Field(min_length=2)


class VariantMetrics(BaseModel):
    variant_id: str
    sent: int = Field(default=0, ge=0)
    opened: int = Field(default=0, ge=0)
    clicked: int = Field(default=0, ge=0)
    converted: int = Field(default=0, ge=0)


class ABTestResponse(BaseModel):
    id: UUID
    name: str
    status: str
    test_type: str
    goal: str
    segment_id: Optional[UUID]
    sample_size: int
    variants: List[dict[str, Any]]
    winner: Optional[str]
    winning_metric: Optional[str]
    improvement: Optional[float]
    confidence: Optional[float]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    final_campaign_id: Optional[UUID]
    created_at: datetime
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


# Analytics

class PageViewIn(BaseModel):
    page: str = Field(min_length=1)
    title: Optional[str] = None
    referrer: Optional[str] = None
    user_id: Optional[str] = None


class EventIn(BaseModel):
    name: str = Field(min_length=1)
    category: str = "general"
    data: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None


class UserActivityIn(BaseModel):
    user_id: str = Field(min_length=1)
    action: str = Field(min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)


class AnalyticsEventResponse(BaseModel):
    id: int
    kind: str
    name: str
    category: Optional[str]
    link_id: Optional[str]
    product_id: Optional[str]
    user_id: Optional[str]
    data: dict[str, Any]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductEventIn(BaseModel):
    event_type: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)
    revenue: float = Field(default=0.0, ge=0)
    rating: Optional[int] = None
    compared_with: List[str] = Field(default_factory=list)
    user_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

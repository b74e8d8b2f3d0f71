from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storeadmin.schemas.common import as_utc


class BlogPostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255)
    content: str = ""
    excerpt: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    featured_image: Optional[str] = None
    seo_description: Optional[str] = None
    focus_keyword: Optional[str] = None


class BlogPostUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255)
    content: Optional[str] = None
    excerpt: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    featured_image: Optional[str] = None
    seo_description: Optional[str] = None
    focus_keyword: Optional[str] = None
    user_id: str = "unknown"
    comment: str = ""


class BlogPostResponse(BaseModel):
    id: UUID
    title: str
    slug: str
    content: str
    excerpt: Optional[str]
    author: Optional[str]
    category: Optional[str]
    tags: List[str]
    featured_image: Optional[str]
    seo_description: Optional[str]
    focus_keyword: Optional[str]
    status: str
    status_history: List[dict[str, Any]]
    published_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StatusChange(BaseModel):
    status: str
    comments: str = ""
    user_id: str = "unknown"
    publish_date: Optional[datetime] = None

    @field_validator("publish_date")
    @classmethod
    def normalize_publish_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class RevisionResponse(BaseModel):
    id: UUID
    content_type: str
    content_id: str
    data: dict[str, Any]
    comment: str
    user_id: str
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    due_date: datetime
    task_type: str = "general"
    assigned_to: Optional[str] = None
    content_type: Optional[str] = None
    content_id: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: datetime) -> datetime:
        return as_utc(value)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    status: Optional[str] = None
    assigned_to: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class TaskResponse(BaseModel):
    id: UUID
    title: str
    description: str
    due_date: datetime
    status: str
    assigned_to: Optional[str]
    task_type: str
    content_type: Optional[str]
    content_id: Optional[str]
    created: datetime

    model_config = ConfigDict(from_attributes=True)


class ScheduledContentResponse(BaseModel):
    id: str
    content_type: str
    content_id: str
    publish_date: datetime
    status: str
    details: dict[str, Any]
    created: datetime

    model_config = ConfigDict(from_attributes=True)


class CalendarResponse(BaseModel):
    scheduled: List[ScheduledContentResponse]
    tasks: List[TaskResponse]


class WorkflowConfigUpdate(BaseModel):
    require_approval: Optional[bool] = None
    auto_publish_scheduled: Optional[bool] = None
    max_revision_count: Optional[int] = Field(default=None, ge=1)

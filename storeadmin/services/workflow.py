"""
Content workflow: status transitions, publishing schedule and editorial tasks.

Statuses move along a fixed transition table. Moving into ``review`` or
``revision`` opens a task, ``scheduled`` creates a schedule entry that
:func:`process_scheduled_content` publishes once it is due.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import content as content_service
from storeadmin.utils.dates import ensure_utc
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

DRAFT = "draft"
REVIEW = "review"
REVISION = "revision"
APPROVED = "approved"
PUBLISHED = "published"
SCHEDULED = "scheduled"
ARCHIVED = "archived"

WORKFLOW_STATUSES = (DRAFT, REVIEW, REVISION, APPROVED, PUBLISHED, SCHEDULED, ARCHIVED)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    DRAFT: {REVIEW, PUBLISHED, SCHEDULED, ARCHIVED},
    REVIEW: {APPROVED, REVISION, DRAFT, ARCHIVED},
    REVISION: {REVIEW, DRAFT, PUBLISHED, SCHEDULED, ARCHIVED},
    APPROVED: {PUBLISHED, SCHEDULED, REVISION, DRAFT, ARCHIVED},
    PUBLISHED: {DRAFT, REVISION, ARCHIVED},
    SCHEDULED: {PUBLISHED, APPROVED, DRAFT, ARCHIVED},
    ARCHIVED: {DRAFT},
}

# Only reachable from these statuses when approval is switched off.
APPROVAL_GATED_FROM = {DRAFT, REVISION}
APPROVAL_GATED_TO = {PUBLISHED, SCHEDULED}

TASK_DUE_DAYS = 3


def schedule_id(content_type: str, content_id: str) -> str:
    return f"schedule_{content_type}_{content_id}"


def check_transition(current: str, new_status: str, *, require_approval: bool) -> None:
    if new_status not in WORKFLOW_STATUSES:
        raise ValueError(f"Unknown workflow status: {new_status}")
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Cannot move content from {current} to {new_status}")
    if require_approval and current in APPROVAL_GATED_FROM and new_status in APPROVAL_GATED_TO:
        raise ValueError(f"Content must be approved before it is {new_status}")


# Tasks

async def create_task(
    session: AsyncSession,
    *,
    title: str,
    description: str = "",
    due_date: datetime,
    task_type: str = "general",
    assigned_to: Optional[str] = None,
    content_type: Optional[str] = None,
    content_id: Optional[str] = None,
    status: str = "open",
    commit: bool = True,
) -> models.WorkflowTask:
    task = models.WorkflowTask(
        title=title,
        description=description,
        due_date=due_date,
        task_type=task_type,
        assigned_to=assigned_to,
        content_type=content_type,
        content_id=content_id,
        status=status,
        created=models.utcnow(),
    )
    session.add(task)
    if commit:
        await session.commit()
        await session.refresh(task)
    return task


async def get_task(session: AsyncSession, task_id: uuid.UUID) -> Optional[models.WorkflowTask]:
    return await session.get(models.WorkflowTask, task_id)


async def update_task(
    session: AsyncSession, task_id: uuid.UUID, data: dict[str, Any]
) -> Optional[models.WorkflowTask]:
    task = await get_task(session, task_id)
    if task is None:
        return None
    if data.get("status") and data["status"] not in ("open", "completed"):
        raise ValueError(f"Unknown task status: {data['status']}")
    for field in ("title", "description", "due_date", "status", "assigned_to"):
        if data.get(field) is not None:
            setattr(task, field, data[field])
    await session.commit()
    await session.refresh(task)
    return task


async def delete_task(session: AsyncSession, task_id: uuid.UUID) -> bool:
    task = await get_task(session, task_id)
    if task is None:
        return False
    await session.delete(task)
    await session.commit()
    return True


async def list_tasks(
    session: AsyncSession,
    *,
    status: Optional[str] = "open",
    assigned_to: Optional[str] = None,
    content_id: Optional[str] = None,
) -> list[models.WorkflowTask]:
    stmt = select(models.WorkflowTask).order_by(models.WorkflowTask.due_date)
    if status:
        stmt = stmt.where(models.WorkflowTask.status == status)
    if assigned_to:
        stmt = stmt.where(models.WorkflowTask.assigned_to == assigned_to)
    if content_id:
        stmt = stmt.where(models.WorkflowTask.content_id == content_id)
    result = await session.execute(stmt)
    return list(result.scalars())


# Schedule

async def schedule_content(
    session: AsyncSession,
    content_type: str,
    content_id: str,
    publish_date: datetime,
    *,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> models.ScheduledContent:
    """Create (or move) the schedule entry for a piece of content. Caller commits."""
    publish_date = ensure_utc(publish_date)
    if publish_date <= (now or models.utcnow()):
        raise ValueError("Publish date must be in the future")

    details = details or {}
    entry_id = schedule_id(content_type, content_id)
    entry = await session.get(models.ScheduledContent, entry_id)
    if entry is None:
        entry = models.ScheduledContent(id=entry_id, content_type=content_type, content_id=content_id)
        session.add(entry)
    entry.publish_date = publish_date
    entry.status = SCHEDULED
    entry.details = details
    entry.created = models.utcnow()

    await _drop_publish_tasks(session, content_id)
    await create_task(
        session,
        title=f"Publish {content_type}",
        description=f'Scheduled publishing of {content_type} "{details.get("title") or content_id}"',
        due_date=publish_date,
        task_type="publish_scheduled",
        content_type=content_type,
        content_id=content_id,
        commit=False,
    )
    return entry


async def _drop_publish_tasks(session: AsyncSession, content_id: str) -> None:
    result = await session.execute(
        select(models.WorkflowTask).where(
            models.WorkflowTask.content_id == content_id,
            models.WorkflowTask.task_type == "publish_scheduled",
            models.WorkflowTask.status == "open",
        )
    )
    for task in result.scalars():
        await session.delete(task)


async def cancel_schedule(session: AsyncSession, content_type: str, content_id: str) -> bool:
    """Remove a schedule entry and its publish tasks. Caller commits."""
    entry = await session.get(models.ScheduledContent, schedule_id(content_type, content_id))
    await _drop_publish_tasks(session, content_id)
    if entry is None:
        return False
    await session.delete(entry)
    return True


async def list_scheduled(session: AsyncSession) -> list[models.ScheduledContent]:
    result = await session.execute(select(models.ScheduledContent).order_by(models.ScheduledContent.publish_date))
    return list(result.scalars())


# Status changes

async def change_status(
    session: AsyncSession,
    post_id: uuid.UUID,
    new_status: str,
    *,
    comments: str = "",
    user_id: str = "unknown",
    publish_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Optional[models.BlogPost]:
    post = await content_service.get_post(session, post_id)
    if post is None:
        return None

    now = now or models.utcnow()
    config = await content_service.get_workflow_config(session)
    previous = post.status
    check_transition(previous, new_status, require_approval=config["require_approval"])

    content_id = str(post.id)
    details = {"title": post.title}
    if new_status == SCHEDULED:
        if publish_date is None:
            raise ValueError("A publish date is required to schedule content")
        await schedule_content(session, "blog_post", content_id, publish_date, details=details, now=now)
    elif previous == SCHEDULED:
        await cancel_schedule(session, "blog_post", content_id)

    due = now + timedelta(days=TASK_DUE_DAYS)
    if new_status == REVIEW:
        await create_task(
            session,
            title="Review Content",
            description=f'Review blog_post "{post.title}"',
            due_date=due,
            task_type="review",
            content_type="blog_post",
            content_id=content_id,
            commit=False,
        )
    elif new_status == REVISION:
        await create_task(
            session,
            title="Make Revisions",
            description=f'Make revisions to blog_post "{post.title}"',
            due_date=due,
            task_type="revision",
            content_type="blog_post",
            content_id=content_id,
            commit=False,
        )

    if new_status == PUBLISHED:
        post.published_at = now
    post.status = new_status
    post.status_history = [
        *post.status_history,
        {
            "previous_status": previous,
            "new_status": new_status,
            "user_id": user_id,
            "comments": comments,
            "timestamp": now.isoformat(),
        },
    ]
    post.updated_at = now
    await session.commit()
    await session.refresh(post)
    log_with_context(
        logger, "info", "Workflow status changed", post_id=content_id, previous=previous, status=new_status
    )
    return post


async def process_scheduled_content(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """Publish every schedule entry that is due. Returns the number published."""
    now = now or models.utcnow()
    config = await content_service.get_workflow_config(session)
    if not config["auto_publish_scheduled"]:
        logger.debug("Auto-publishing is disabled")
        return 0

    result = await session.execute(
        select(models.ScheduledContent.id).where(models.ScheduledContent.publish_date <= now)
    )
    published = 0
    for entry_id in list(result.scalars()):
        try:
            entry = await session.get(models.ScheduledContent, entry_id)
            if entry is None:
                continue
            if entry.content_type == "blog_post":
                post = await content_service.get_post(session, uuid.UUID(entry.content_id))
                if post is None:
                    logger.warning("Dropping schedule entry %s for a missing post", entry_id)
                    await cancel_schedule(session, entry.content_type, entry.content_id)
                    await session.commit()
                    continue
                post.status = PUBLISHED
                post.published_at = now
                post.updated_at = now
                post.status_history = [
                    *post.status_history,
                    {
                        "previous_status": SCHEDULED,
                        "new_status": PUBLISHED,
                        "user_id": "system",
                        "comments": "Automatically published as scheduled",
                        "timestamp": now.isoformat(),
                    },
                ]
            await cancel_schedule(session, entry.content_type, entry.content_id)
            await create_task(
                session,
                title="Auto-Published Content",
                description=(
                    f'Content "{entry.details.get("title") or entry.content_id}" '
                    "was automatically published as scheduled"
                ),
                due_date=now,
                task_type="auto_published",
                content_type=entry.content_type,
                content_id=entry.content_id,
                status="completed",
                commit=False,
            )
            await session.commit()
            published += 1
            logger.info("Auto-published %s %s", entry.content_type, entry.content_id)
        except Exception as e:
            logger.error(f"Error publishing scheduled content {entry_id}: {e}")
            await session.rollback()
    return published


async def content_calendar(session: AsyncSession, start: datetime, end: datetime) -> dict[str, Any]:
    start, end = ensure_utc(start), ensure_utc(end)
    entries = await session.execute(
        select(models.ScheduledContent)
        .where(models.ScheduledContent.publish_date >= start, models.ScheduledContent.publish_date <= end)
        .order_by(models.ScheduledContent.publish_date)
    )
    tasks = await session.execute(
        select(models.WorkflowTask)
        .where(
            models.WorkflowTask.status == "open",
            models.WorkflowTask.due_date >= start,
            models.WorkflowTask.due_date <= end,
        )
        .order_by(models.WorkflowTask.due_date)
    )
    return {"scheduled": list(entries.scalars()), "tasks": list(tasks.scalars())}

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.db import get_session
from storeadmin.schemas import content as schemas
from storeadmin.services import content as content_service
from storeadmin.services import workflow as workflow_service

router = APIRouter(prefix="/api/posts", tags=["posts"])
workflow_router = APIRouter(prefix="/api/workflow", tags=["workflow"])


@router.post("", response_model=schemas.BlogPostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    payload: schemas.BlogPostCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.BlogPostResponse:
    post = await content_service.create_post(session, payload.model_dump())
    return schemas.BlogPostResponse.model_validate(post)


@router.get("", response_model=List[schemas.BlogPostResponse])
async def list_posts(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    search: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.BlogPostResponse]:
    posts = await content_service.list_posts(session, status=status_filter, category=category, search=search)
    return [schemas.BlogPostResponse.model_validate(post) for post in posts]


@router.get("/slug/{slug}", response_model=schemas.BlogPostResponse)
async def get_post_by_slug(
    slug: str,
    session: AsyncSession = Depends(get_session),
) -> schemas.BlogPostResponse:
    post = await content_service.get_post_by_slug(session, slug)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.BlogPostResponse.model_validate(post)


@router.get("/{post_id}", response_model=schemas.BlogPostResponse)
async def get_post(
    post_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> schemas.BlogPostResponse:
    post = await content_service.get_post(session, post_id)
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.BlogPostResponse.model_validate(post)


@router.patch("/{post_id}", response_model=schemas.BlogPostResponse)
async def update_post(
    post_id: UUID,
    payload: schemas.BlogPostUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.BlogPostResponse:
    data = payload.model_dump(exclude_unset=True, exclude={"user_id", "comment"})
    post = await content_service.update_post(
        session, post_id, data, user_id=payload.user_id, comment=payload.comment
    )
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.BlogPostResponse.model_validate(post)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await content_service.delete_post(session, post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{post_id}/status", response_model=schemas.BlogPostResponse)
async def change_status(
    post_id: UUID,
    payload: schemas.StatusChange,
    session: AsyncSession = Depends(get_session),
) -> schemas.BlogPostResponse:
    try:
        post = await workflow_service.change_status(
            session,
            post_id,
            payload.status,
            comments=payload.comments,
            user_id=payload.user_id,
            publish_date=payload.publish_date,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if post is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return schemas.BlogPostResponse.model_validate(post)


@router.get("/{post_id}/revisions", response_model=List[schemas.RevisionResponse])
async def list_revisions(
    post_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.RevisionResponse]:
    revisions = await content_service.list_revisions(session, "blog_post", str(post_id))
    return [schemas.RevisionResponse.model_validate(revision) for revision in revisions]


@workflow_router.post("/revisions/{revision_id}/restore")
async def restore_revision(
    revision_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    data = await content_service.restore_revision(session, revision_id)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Revision not found")
    return data


@workflow_router.get("/config")
async def get_workflow_config(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return await content_service.get_workflow_config(session)


@workflow_router.put("/config")
async def update_workflow_config(
    payload: schemas.WorkflowConfigUpdate,
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    return await content_service.update_workflow_config(session, payload.model_dump(exclude_none=True))


@workflow_router.get("/scheduled", response_model=List[schemas.ScheduledContentResponse])
async def list_scheduled(session: AsyncSession = Depends(get_session)) -> List[schemas.ScheduledContentResponse]:
    entries = await workflow_service.list_scheduled(session)
    return [schemas.ScheduledContentResponse.model_validate(entry) for entry in entries]


@workflow_router.post("/scheduled/process")
async def process_scheduled(session: AsyncSession = Depends(get_session)) -> dict[str, int]:
    return {"published": await workflow_service.process_scheduled_content(session)}


@workflow_router.get("/calendar", response_model=schemas.CalendarResponse)
async def content_calendar(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: AsyncSession = Depends(get_session),
) -> schemas.CalendarResponse:
    start = start or models.utcnow()
    end = end or start + timedelta(days=30)
    calendar = await workflow_service.content_calendar(session, start, end)
    return schemas.CalendarResponse(
        scheduled=[schemas.ScheduledContentResponse.model_validate(e) for e in calendar["scheduled"]],
        tasks=[schemas.TaskResponse.model_validate(t) for t in calendar["tasks"]],
    )


@workflow_router.post("/tasks", response_model=schemas.TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: schemas.TaskCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaskResponse:
    task = await workflow_service.create_task(session, **payload.model_dump())
    return schemas.TaskResponse.model_validate(task)


@workflow_router.get("/tasks", response_model=List[schemas.TaskResponse])
async def list_tasks(
    assigned_to: Optional[str] = None,
    content_id: Optional[str] = None,
    include_completed: bool = False,
    session: AsyncSession = Depends(get_session),
) -> List[schemas.TaskResponse]:
    tasks = await workflow_service.list_tasks(
        session,
        status=None if include_completed else "open",
        assigned_to=assigned_to,
        content_id=content_id,
    )
    return [schemas.TaskResponse.model_validate(task) for task in tasks]


@workflow_router.patch("/tasks/{task_id}", response_model=schemas.TaskResponse)
async def update_task(
    task_id: UUID,
    payload: schemas.TaskUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.TaskResponse:
    try:
        task = await workflow_service.update_task(session, task_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return schemas.TaskResponse.model_validate(task)


@workflow_router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await workflow_service.delete_task(session, task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)

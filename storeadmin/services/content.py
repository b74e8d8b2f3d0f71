from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import system
from storeadmin.services.seo import generate_slug

logger = logging.getLogger(__name__)

WORKFLOW_CONFIG_KEY = "workflow_config"

DEFAULT_WORKFLOW_CONFIG: dict[str, Any] = {
    "require_approval": True,
    "auto_publish_scheduled": True,
    "max_revision_count": 10,
}

CONTENT_TYPES = ("blog_post", "product", "page")
POST_FIELDS = (
    "title",
    "content",
    "excerpt",
    "author",
    "category",
    "tags",
    "featured_image",
    "seo_description",
    "focus_keyword",
)


async def get_workflow_config(session: AsyncSession) -> dict[str, Any]:
    return await system.load_settings(session, WORKFLOW_CONFIG_KEY, DEFAULT_WORKFLOW_CONFIG)


async def update_workflow_config(session: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
    return await system.save_settings(session, WORKFLOW_CONFIG_KEY, DEFAULT_WORKFLOW_CONFIG, changes)


async def _unique_slug(session: AsyncSession, base: str, exclude_id: Optional[uuid.UUID] = None) -> str:
    base = base or "post"
    slug, suffix = base, 2
    while True:
        stmt = select(models.BlogPost.id).where(models.BlogPost.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(models.BlogPost.id != exclude_id)
        if (await session.execute(stmt)).first() is None:
            return slug
        slug = f"{base}-{suffix}"
        suffix += 1


def snapshot(post: models.BlogPost) -> dict[str, Any]:
    data = {field: getattr(post, field) for field in POST_FIELDS}
    data["slug"] = post.slug
    return data


async def create_post(session: AsyncSession, data: dict[str, Any]) -> models.BlogPost:
    now = models.utcnow()
    slug = await _unique_slug(session, generate_slug(data.get("slug") or data["title"]))
    fields = {field: data[field] for field in POST_FIELDS if data.get(field) is not None}
    fields.setdefault("tags", [])
    post = models.BlogPost(
        slug=slug,
        status="draft",
        status_history=[],
        created_at=now,
        updated_at=now,
        **fields,
    )
    session.add(post)
    await session.commit()
    await session.refresh(post)
    logger.info("Created blog post %s (%s)", post.id, post.slug)
    return post


async def get_post(session: AsyncSession, post_id: uuid.UUID) -> Optional[models.BlogPost]:
    return await session.get(models.BlogPost, post_id)


async def get_post_by_slug(session: AsyncSession, slug: str) -> Optional[models.BlogPost]:
    result = await session.execute(select(models.BlogPost).where(models.BlogPost.slug == slug))
    return result.scalar_one_or_none()


async def list_posts(
    session: AsyncSession,
    *,
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> list[models.BlogPost]:
    stmt = select(models.BlogPost).order_by(models.BlogPost.created_at.desc())
    if status:
        stmt = stmt.where(models.BlogPost.status == status)
    if category:
        stmt = stmt.where(models.BlogPost.category == category)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(func.lower(models.BlogPost.title).like(pattern), func.lower(models.BlogPost.content).like(pattern))
        )
    result = await session.execute(stmt)
    return list(result.scalars())


async def update_post(
    session: AsyncSession,
    post_id: uuid.UUID,
    data: dict[str, Any],
    *,
    user_id: str = "unknown",
    comment: str = "",
) -> Optional[models.BlogPost]:
    """Apply edits, keeping the previous state as a revision."""
    post = await get_post(session, post_id)
    if post is None:
        return None
    await save_revision(session, "blog_post", str(post.id), snapshot(post), comment=comment, user_id=user_id)

    for field in POST_FIELDS:
        if field in data and data[field] is not None:
            setattr(post, field, data[field])
    if data.get("slug"):
        post.slug = await _unique_slug(session, generate_slug(data["slug"]), exclude_id=post.id)
    post.updated_at = models.utcnow()
    await session.commit()
    await session.refresh(post)
    return post


async def delete_post(session: AsyncSession, post_id: uuid.UUID) -> bool:
    """Delete a post with its revisions, schedule entry and open tasks."""
    from storeadmin.services import workflow

    post = await get_post(session, post_id)
    if post is None:
        return False
    await workflow.cancel_schedule(session, "blog_post", str(post_id))
    await session.execute(
        delete(models.WorkflowTask).where(
            models.WorkflowTask.content_id == str(post_id),
            models.WorkflowTask.status == "open",
        )
    )
    await session.delete(post)
    await session.execute(
        delete(models.ContentRevision).where(
            models.ContentRevision.content_type == "blog_post",
            models.ContentRevision.content_id == str(post_id),
        )
    )
    await session.commit()
    return True


async def save_revision(
    session: AsyncSession,
    content_type: str,
    content_id: str,
    data: dict[str, Any],
    *,
    comment: str = "",
    user_id: str = "unknown",
) -> models.ContentRevision:
    """Store a snapshot and trim history to ``max_revision_count`` entries."""
    revision = models.ContentRevision(
        content_type=content_type,
        content_id=content_id,
        data=data,
        comment=comment,
        user_id=user_id,
        timestamp=models.utcnow(),
    )
    session.add(revision)
    await session.flush()

    config = await get_workflow_config(session)
    revisions = await list_revisions(session, content_type, content_id)
    for stale in revisions[config["max_revision_count"]:]:
        await session.delete(stale)
    await session.commit()
    return revision


async def list_revisions(session: AsyncSession, content_type: str, content_id: str) -> list[models.ContentRevision]:
    result = await session.execute(
        select(models.ContentRevision)
        .where(
            models.ContentRevision.content_type == content_type,
            models.ContentRevision.content_id == content_id,
        )
        .order_by(models.ContentRevision.timestamp.desc())
    )
    return list(result.scalars())


async def restore_revision(session: AsyncSession, revision_id: uuid.UUID) -> Optional[dict[str, Any]]:
    """Return the stored snapshot, applying it to the blog post it came from."""
    revision = await session.get(models.ContentRevision, revision_id)
    if revision is None:
        return None
    if revision.content_type == "blog_post":
        post = await get_post(session, uuid.UUID(revision.content_id))
        if post is not None:
            for field in POST_FIELDS:
                if field in revision.data:
                    setattr(post, field, revision.data[field])
            post.updated_at = models.utcnow()
            await session.commit()
    logger.info("Restored revision %s of %s %s", revision.id, revision.content_type, revision.content_id)
    return dict(revision.data)

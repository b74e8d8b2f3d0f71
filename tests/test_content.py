import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from storeadmin import models
from storeadmin.services import workflow as workflow_service


async def create_post(client: AsyncClient, **overrides) -> dict:
    payload = {
        "title": "Foam Rolling Guide",
        "content": "<h1>Foam Rolling Guide</h1><p>Roll slowly over each muscle group.</p>",
        "author": "Sam",
        "category": "guides",
        "tags": ["recovery"],
        "focus_keyword": "foam rolling",
    }
    payload.update(overrides)
    response = await client.post("/api/posts", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def change_status(client: AsyncClient, post_id: str, new_status: str, **extra):
    return await client.post(f"/api/posts/{post_id}/status", json={"status": new_status, **extra})


@pytest.mark.asyncio
async def test_create_post_with_unique_slug(client: AsyncClient):
    first = await create_post(client)
    second = await create_post(client)
    assert first["status"] == "draft"
    assert first["slug"] == "foam-rolling-guide"
    assert second["slug"] == "foam-rolling-guide-2"

    response = await client.get("/api/posts/slug/foam-rolling-guide-2")
    assert response.json()["id"] == second["id"]


@pytest.mark.asyncio
async def test_create_post_with_only_a_title(client: AsyncClient):
    response = await client.post("/api/posts", json={"title": "Hello", "content": "x"})
    assert response.status_code == 201, response.text
    assert response.json()["tags"] == []
    assert response.json()["slug"] == "hello"


@pytest.mark.asyncio
async def test_list_posts_filters(client: AsyncClient):
    await create_post(client)
    await create_post(client, title="Massage Gun Review", category="reviews", content="Percussion therapy")

    response = await client.get("/api/posts", params={"category": "reviews"})
    assert [p["title"] for p in response.json()] == ["Massage Gun Review"]

    response = await client.get("/api/posts", params={"search": "percussion"})
    assert len(response.json()) == 1

    response = await client.get("/api/posts", params={"status": "published"})
    assert response.json() == []


@pytest.mark.asyncio
async def test_update_keeps_revision_and_restore(client: AsyncClient):
    post = await create_post(client)
    response = await client.patch(
        f"/api/posts/{post['id']}",
        json={"title": "Foam Rolling 101", "user_id": "editor", "comment": "New headline"},
    )
    assert response.json()["title"] == "Foam Rolling 101"

    revisions = (await client.get(f"/api/posts/{post['id']}/revisions")).json()
    assert len(revisions) == 1
    assert revisions[0]["data"]["title"] == "Foam Rolling Guide"
    assert revisions[0]["user_id"] == "editor"

    response = await client.post(f"/api/workflow/revisions/{revisions[0]['id']}/restore")
    assert response.json()["title"] == "Foam Rolling Guide"
    restored = (await client.get(f"/api/posts/{post['id']}")).json()
    assert restored["title"] == "Foam Rolling Guide"

    response = await client.post(f"/api/workflow/revisions/{uuid.uuid4()}/restore")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_revision_history_is_capped(client: AsyncClient):
    await client.put("/api/workflow/config", json={"max_revision_count": 2})
    post = await create_post(client)
    for n in range(4):
        await client.patch(f"/api/posts/{post['id']}", json={"excerpt": f"Excerpt {n}"})
    revisions = (await client.get(f"/api/posts/{post['id']}/revisions")).json()
    assert len(revisions) == 2


@pytest.mark.asyncio
async def test_publishing_requires_approval(client: AsyncClient):
    post = await create_post(client)
    response = await change_status(client, post["id"], "published")
    assert response.status_code == 400

    response = await change_status(client, post["id"], "review", user_id="writer")
    assert response.json()["status"] == "review"
    tasks = (await client.get("/api/workflow/tasks", params={"content_id": post["id"]})).json()
    assert [task["title"] for task in tasks] == ["Review Content"]

    await change_status(client, post["id"], "approved")
    response = await change_status(client, post["id"], "published")
    published = response.json()
    assert published["status"] == "published"
    assert published["published_at"] is not None
    assert [entry["new_status"] for entry in published["status_history"]] == ["review", "approved", "published"]


@pytest.mark.asyncio
async def test_direct_publish_when_approval_disabled(client: AsyncClient):
    config = (await client.put("/api/workflow/config", json={"require_approval": False})).json()
    assert config["require_approval"] is False
    assert config["max_revision_count"] == 10

    post = await create_post(client)
    response = await change_status(client, post["id"], "published")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_unknown_status_and_missing_post(client: AsyncClient):
    post = await create_post(client)
    assert (await change_status(client, post["id"], "deleted")).status_code == 400
    assert (await change_status(client, str(uuid.uuid4()), "review")).status_code == 404


@pytest.mark.asyncio
async def test_schedule_then_auto_publish(client: AsyncClient, session):
    post = await create_post(client)
    await change_status(client, post["id"], "review")
    await change_status(client, post["id"], "approved")

    response = await change_status(client, post["id"], "scheduled")
    assert response.status_code == 400

    publish_date = datetime.now(timezone.utc) + timedelta(days=2)
    response = await change_status(client, post["id"], "scheduled", publish_date=publish_date.isoformat())
    assert response.json()["status"] == "scheduled"

    scheduled = (await client.get("/api/workflow/scheduled")).json()
    assert scheduled[0]["id"] == f"schedule_blog_post_{post['id']}"
    assert scheduled[0]["details"] == {"title": "Foam Rolling Guide"}

    calendar = (await client.get("/api/workflow/calendar")).json()
    assert len(calendar["scheduled"]) == 1
    assert "Publish blog_post" in [task["title"] for task in calendar["tasks"]]

    # Nothing is due yet
    assert (await client.post("/api/workflow/scheduled/process")).json() == {"published": 0}

    published = await workflow_service.process_scheduled_content(session, now=publish_date + timedelta(minutes=5))
    assert published == 1

    post = (await client.get(f"/api/posts/{post['id']}")).json()
    assert post["status"] == "published"
    assert post["status_history"][-1]["user_id"] == "system"
    assert (await client.get("/api/workflow/scheduled")).json() == []

    tasks = (await client.get("/api/workflow/tasks", params={"include_completed": True})).json()
    titles = [task["title"] for task in tasks]
    assert "Auto-Published Content" in titles
    assert "Publish blog_post" not in titles


@pytest.mark.asyncio
async def test_unscheduling_drops_schedule(client: AsyncClient):
    await client.put("/api/workflow/config", json={"require_approval": False})
    post = await create_post(client)
    publish_date = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    await change_status(client, post["id"], "scheduled", publish_date=publish_date)

    response = await change_status(client, post["id"], "draft")
    assert response.json()["status"] == "draft"
    assert (await client.get("/api/workflow/scheduled")).json() == []


@pytest.mark.asyncio
async def test_task_crud(client: AsyncClient):
    due = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    response = await client.post(
        "/api/workflow/tasks", json={"title": "Write newsletter", "due_date": due, "assigned_to": "sam"}
    )
    assert response.status_code == 201
    task = response.json()
    assert task["status"] == "open"

    response = await client.patch(f"/api/workflow/tasks/{task['id']}", json={"status": "completed"})
    assert response.json()["status"] == "completed"
    assert (await client.get("/api/workflow/tasks")).json() == []

    response = await client.patch(f"/api/workflow/tasks/{task['id']}", json={"status": "blocked"})
    assert response.status_code == 400

    assert (await client.delete(f"/api/workflow/tasks/{task['id']}")).status_code == 204
    assert (await client.delete(f"/api/workflow/tasks/{task['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_delete_post(client: AsyncClient):
    post = await create_post(client)
    assert (await client.delete(f"/api/posts/{post['id']}")).status_code == 204
    assert (await client.get(f"/api/posts/{post['id']}")).status_code == 404


def test_check_transition():
    workflow_service.check_transition("review", "approved", require_approval=True)
    workflow_service.check_transition("draft", "published", require_approval=False)
    with pytest.raises(ValueError):
        workflow_service.check_transition("archived", "published", require_approval=False)
    with pytest.raises(ValueError):
        workflow_service.check_transition("revision", "scheduled", require_approval=True)


@pytest.mark.asyncio
async def test_delete_scheduled_post_clears_schedule_and_tasks(client: AsyncClient, session):
    post = await create_post(client)
    await change_status(client, post["id"], "review")
    await change_status(client, post["id"], "approved")
    publish_date = datetime.now(timezone.utc) + timedelta(days=1)
    await change_status(client, post["id"], "scheduled", publish_date=publish_date.isoformat())

    assert (await client.delete(f"/api/posts/{post['id']}")).status_code == 204
    assert (await client.get("/api/workflow/scheduled")).json() == []
    assert (await client.get("/api/workflow/tasks", params={"content_id": post["id"]})).json() == []

    published = await workflow_service.process_scheduled_content(session, now=publish_date + timedelta(minutes=5))
    assert published == 0
    tasks = (await client.get("/api/workflow/tasks", params={"include_completed": True})).json()
    assert "Auto-Published Content" not in [task["title"] for task in tasks]


@pytest.mark.asyncio
async def test_process_skips_entries_for_missing_posts(session):
    missing_id = str(uuid.uuid4())
    due = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.add(
        models.ScheduledContent(
            id=workflow_service.schedule_id("blog_post", missing_id),
            content_type="blog_post",
            content_id=missing_id,
            publish_date=due,
            status="scheduled",
            details={"title": "Gone"},
        )
    )
    await session.commit()

    assert await workflow_service.process_scheduled_content(session) == 0
    assert await workflow_service.list_scheduled(session) == []
    assert await workflow_service.list_tasks(session, status=None, content_id=missing_id) == []

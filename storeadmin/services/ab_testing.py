from __future__ import annotations

import logging
import math
import secrets
import uuid
from typing import Any, Optional

from scipy.stats import norm
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import email_campaigns as campaigns_service
from storeadmin.utils.logger import log_with_context

logger = logging.getLogger(__name__)

TEST_TYPES = ("subject", "content", "send_time")
GOALS = ("open_rate", "click_rate", "conversion_rate")

# goal -> the count that goal is a rate of
GOAL_COUNTS = {"open_rate": "opened", "click_rate": "clicked", "conversion_rate": "converted"}

TEST_IDEAS: dict[str, list[dict[str, Any]]] = {
    "subject_line_tests": [
        {
            "name": "Question Format",
            "description": "Test a question format against your original subject",
            "examples": [
                "Looking for faster recovery after workouts?",
                "Want to improve your recovery time?",
                "Need better results from your recovery routine?",
            ],
        },
        {
            "name": "Urgency Format",
            "description": "Test creating a sense of urgency",
            "examples": [
                "Last chance: Recovery essentials sale ends today",
                "24 hours only: Special recovery bundle",
                "Limited time offer on massage tools",
            ],
        },
        {
            "name": "Personalization",
            "description": "Test personalized subject lines",
            "examples": [
                "{{ firstName }}, here's your custom recovery plan",
                "Recovery products selected for {{ firstName }}",
                "Your personalized recovery recommendations",
            ],
        },
    ],
    "content_tests": [
        {
            "name": "CTA Button Text",
            "description": "Test different call-to-action button text",
            "examples": ["Shop Now", "Upgrade Your Recovery", "See Recovery Tools", "Get 20% Off Today"],
        },
        {
            "name": "Content Length",
            "description": "Test short vs. detailed content",
            "examples": [
                "Brief, concise content with direct messaging",
                "Detailed content with more product information and testimonials",
            ],
        },
        {
            "name": "Image Count",
            "description": "Test different numbers of images",
            "examples": ["Single hero image with minimal text", "Multiple product images with descriptions"],
        },
    ],
    "timing_tests": [
        {
            "name": "Send Time",
            "description": "Test different send times",
            "examples": ["Morning (9-11 AM)", "Afternoon (1-3 PM)", "Evening (6-8 PM)"],
        },
        {
            "name": "Day of Week",
            "description": "Test different days of the week",
            "examples": [
                "Tuesday (typically high engagement)",
                "Thursday (good for weekend promotions)",
                "Sunday (often lower competition)",
            ],
        },
    ],
}


def empty_metrics() -> dict[str, Any]:
    return {
        "sent": 0,
        "opened": 0,
        "clicked": 0,
        "converted": 0,
        "open_rate": 0.0,
        "click_rate": 0.0,
        "conversion_rate": 0.0,
    }


def _with_rates(metrics: dict[str, Any]) -> dict[str, Any]:
    sent = metrics["sent"]
    for goal, count in GOAL_COUNTS.items():
        metrics[goal] = round(metrics[count] / sent * 100, 2) if sent else 0.0
    return metrics


def significance(successes_a: int, total_a: int, successes_b: int, total_b: int) -> float:
    """Two-sided two-proportion z-test, returned as a confidence percentage (0-100)."""
    if total_a <= 0 or total_b <= 0:
        return 0.0
    p_a = successes_a / total_a
    p_b = successes_b / total_b
    pooled = (successes_a + successes_b) / (total_a + total_b)
    se = math.sqrt(pooled * (1 - pooled) * (1 / total_a + 1 / total_b))
    if se == 0:
        return 0.0
    z = abs(p_a - p_b) / se
    p_value = 2 * norm.sf(z)
    return round(float(1 - p_value) * 100, 1)


def improvement(winner_value: float, control_value: float) -> float:
    if control_value == 0:
        return 0.0 if winner_value == 0 else 100.0
    return round((winner_value - control_value) / control_value * 100, 1)


async def create_test(session: AsyncSession, data: dict[str, Any]) -> models.ABTest:
    variants = data.get("variants") or []
    if len(variants) < 2:
        raise ValueError("An A/B test needs at least two variants")
    if data.get("test_type", "subject") not in TEST_TYPES:
        raise ValueError(f"Unknown test type: {data.get('test_type')}")
    if data.get("goal", "open_rate") not in GOALS:
        raise ValueError(f"Unknown goal: {data.get('goal')}")

    prepared = [
        {
            "id": variant.get("id") or f"variant_{secrets.token_hex(4)}",
            "name": variant.get("name") or f"Variant {chr(ord('A') + index)}",
            "subject": variant.get("subject") or "",
            "content": variant.get("content") or "",
            "metrics": empty_metrics(),
        }
        for index, variant in enumerate(variants)
    ]
    test = models.ABTest(
        name=data["name"],
        status="draft",
        test_type=data.get("test_type", "subject"),
        goal=data.get("goal", "open_rate"),
        segment_id=data.get("segment_id"),
        sample_size=data.get("sample_size") or 20,
        variants=prepared,
    )
    session.add(test)
    await session.commit()
    await session.refresh(test)
    return test


async def get_test(session: AsyncSession, test_id: uuid.UUID) -> Optional[models.ABTest]:
    return await session.get(models.ABTest, test_id)


async def list_tests(session: AsyncSession, *, status: Optional[str] = None) -> list[models.ABTest]:
    stmt = select(models.ABTest).order_by(models.ABTest.created_at.desc())
    if status:
        stmt = stmt.where(models.ABTest.status == status)
    result = await session.execute(stmt)
    return list(result.scalars())


async def delete_test(session: AsyncSession, test_id: uuid.UUID) -> bool:
    test = await get_test(session, test_id)
    if test is None:
        return False
    await session.delete(test)
    await session.commit()
    return True


async def _transition(session: AsyncSession, test: models.ABTest) -> models.ABTest:
    test.last_updated = models.utcnow()
    await session.commit()
    await session.refresh(test)
    log_with_context(logger, "info", "A/B test updated", test_id=str(test.id), status=test.status)
    return test


async def start_test(session: AsyncSession, test_id: uuid.UUID) -> Optional[models.ABTest]:
    test = await get_test(session, test_id)
    if test is None:
        return None
    if test.status != "draft":
        raise ValueError("Only draft tests can be started")
    test.variants = [{**variant, "metrics": empty_metrics()} for variant in test.variants]
    test.status = "running"
    test.start_date = models.utcnow()
    return await _transition(session, test)


async def record_metrics(
    session: AsyncSession, test_id: uuid.UUID, variant_id: str, counts: dict[str, int]
) -> Optional[models.ABTest]:
    test = await get_test(session, test_id)
    if test is None:
        return None
    if test.status != "running":
        raise ValueError("Metrics can only be recorded for running tests")
    if not any(variant["id"] == variant_id for variant in test.variants):
        raise ValueError(f"Unknown variant: {variant_id}")

    updated = []
    for variant in test.variants:
        if variant["id"] == variant_id:
            metrics = {**empty_metrics(), **variant.get("metrics", {})}
            for key in ("sent", "opened", "clicked", "converted"):
                metrics[key] += int(counts.get(key) or 0)
            for key in GOAL_COUNTS.values():
                if metrics[key] > metrics["sent"]:
                    raise ValueError(f"Cannot record more {key} than sent for variant {variant_id}")
            variant = {**variant, "metrics": _with_rates(metrics)}
        updated.append(variant)
    test.variants = updated
    return await _transition(session, test)


async def stop_test(session: AsyncSession, test_id: uuid.UUID) -> Optional[models.ABTest]:
    test = await get_test(session, test_id)
    if test is None:
        return None
    if test.status != "running":
        raise ValueError("Only running tests can be stopped")
    test.status = "stopped"
    test.end_date = models.utcnow()
    return await _transition(session, test)


async def evaluate_test(session: AsyncSession, test_id: uuid.UUID) -> Optional[models.ABTest]:
    """Pick the best variant on the goal metric and compare it to the first (control) variant."""
    test = await get_test(session, test_id)
    if test is None:
        return None
    if test.status not in ("running", "stopped"):
        raise ValueError("Only running or stopped tests can be evaluated")

    goal = test.goal
    control = test.variants[0]
    winner = max(test.variants, key=lambda variant: variant["metrics"].get(goal, 0.0))
    count_key = GOAL_COUNTS[goal]

    test.winner = winner["id"]
    test.winning_metric = goal
    test.improvement = improvement(winner["metrics"][goal], control["metrics"][goal])
    test.confidence = significance(
        winner["metrics"][count_key],
        winner["metrics"]["sent"],
        control["metrics"][count_key],
        control["metrics"]["sent"],
    )
    test.status = "completed"
    test.end_date = test.end_date or models.utcnow()
    return await _transition(session, test)


async def apply_winner(session: AsyncSession, test_id: uuid.UUID) -> Optional[models.EmailCampaign]:
    test = await get_test(session, test_id)
    if test is None:
        return None
    if test.status != "completed" or not test.winner:
        raise ValueError("Test must be completed with a winner before it can be applied")

    winner = next(variant for variant in test.variants if variant["id"] == test.winner)
    campaign = await campaigns_service.create_campaign(
        session,
        {
            "name": f"{test.name} - Winner ({winner['name']})",
            "subject": winner["subject"] or winner["name"],
            "body": winner["content"],
            "type": "regular",
            "segment_id": test.segment_id,
            "status": "draft",
        },
    )
    test.final_campaign_id = campaign.id
    await _transition(session, test)
    return campaign


def suggest_test_ideas() -> dict[str, list[dict[str, Any]]]:
    return TEST_IDEAS

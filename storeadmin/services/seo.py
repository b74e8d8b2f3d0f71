from __future__ import annotations

import logging
import math
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services import system

logger = logging.getLogger(__name__)

SEO_CONFIG_KEY = "seo_config"

DEFAULT_SEO_CONFIG: dict[str, Any] = {
    "analysis": {
        "min_content_length": 300,
        "optimal_content_length": 1500,
        "keyword_density_min": 0.5,  # percent
        "keyword_density_max": 2.5,
        "max_meta_description_length": 160,
    },
    "on_page": {
        "check_headings": True,
        "check_images": True,
        "check_links": True,
        "check_readability": True,
    },
    "technical": {
        "generate_sitemap": True,
        "canonical_urls": True,
        "use_schema_markup": True,
    },
}

TECHNICAL_RECOMMENDATIONS = [
    "Ensure your site has a valid XML sitemap submitted to search engines",
    "Verify that all pages use HTTPS and have proper canonical URLs set",
    "Implement schema markup for rich snippets in search results",
    "Check for and fix any broken links on your site",
    "Optimize your site for mobile devices and page speed",
]

HEADING_RE = re.compile(r"<h[1-6][^>]*>(.*?)</h[1-6]>")
HEADING_LEVEL_RE = re.compile(r"<h([1-6])")
IMAGE_RE = re.compile(r"<img[^>]*>")


def generate_slug(text: str) -> str:
    """Generate an SEO friendly slug: ``"Foam & Rollers 101"`` -> ``"foam-and-rollers-101"``."""
    slug = str(text).lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = slug.replace("&", "-and-")
    slug = re.sub(r"[^\w\-]+", "", slug, flags=re.ASCII)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_for_issue_count(issue_count: int) -> int:
    if issue_count == 0:
        return 100
    if issue_count <= 2:
        return 85
    if issue_count <= 5:
        return 70
    if issue_count <= 8:
        return 50
    return 30


def analyze_content(
    content: Mapping[str, Any],
    focus_keyword: Optional[str],
    config: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Score a piece of content for on-page SEO.

    ``content`` carries ``title``, ``content`` (HTML or text), ``seo_description`` and
    ``slug``. Each detected problem is an issue; the score is picked from the issue
    count. Recommendations are hints that do not affect the score on their own.
    """
    body = content.get("content") or ""
    if not body:
        return {
            "score": 0,
            "issues": ["No content provided for analysis"],
            "recommendations": ["Add content to analyze for SEO"],
            "keyword_analysis": {},
            "content_analysis": {},
            "meta_analysis": {},
        }

    config = config or DEFAULT_SEO_CONFIG
    analysis = config["analysis"]
    on_page = config["on_page"]

    issues: list[str] = []
    recommendations: list[str] = []
    keyword_analysis: dict[str, Any] = {}
    meta_analysis: dict[str, Any] = {}

    content_length = len(body)
    min_length = analysis["min_content_length"]
    optimal_length = analysis["optimal_content_length"]
    if content_length < min_length:
        issues.append(
            f"Content is too short ({content_length} chars, minimum recommended is {min_length})"
        )
        recommendations.append(f"Expand your content to at least {min_length} characters for better SEO")
    elif content_length < optimal_length:
        recommendations.append(
            f"Consider expanding your content to {optimal_length} characters for optimal SEO"
        )

    if focus_keyword and focus_keyword.strip():
        keyword = focus_keyword.strip().lower()
        occurrences = len(re.findall(re.escape(keyword), body.lower()))
        density = occurrences / content_length * 100
        keyword_analysis = {
            "keyword": keyword,
            "occurrences": occurrences,
            "density": round(density, 2),
        }

        if density < analysis["keyword_density_min"]:
            issues.append(f"Keyword density is too low ({density:.2f}%)")
            recommendations.append(f"Increase the frequency of your focus keyword ({keyword}) in the content")
        elif density > analysis["keyword_density_max"]:
            issues.append(f"Keyword density is too high ({density:.2f}%)")
            recommendations.append(
                f'Reduce keyword stuffing for "{keyword}" to avoid search engine penalties'
            )

        title = content.get("title")
        if title and keyword not in title.lower():
            issues.append("Focus keyword is not present in the title")
            recommendations.append(f'Include your focus keyword "{keyword}" in the title')

        description = content.get("seo_description")
        if description and keyword not in description.lower():
            issues.append("Focus keyword is not present in the meta description")
            recommendations.append(f'Include your focus keyword "{keyword}" in the meta description')

        slug = content.get("slug")
        if slug and re.sub(r"\s+", "-", keyword) not in slug.lower():
            recommendations.append("Consider including your focus keyword in the URL slug")
    else:
        issues.append("No focus keyword provided")
        recommendations.append("Define a focus keyword to improve SEO analysis")

    description = content.get("seo_description")
    if description:
        description_length = len(description)
        max_description = analysis["max_meta_description_length"]
        meta_analysis["description_length"] = description_length
        if description_length > max_description:
            issues.append(
                f"Meta description is too long ({description_length} chars, "
                f"maximum recommended is {max_description})"
            )
            recommendations.append(
                f"Shorten your meta description to {max_description} characters "
                "to avoid truncation in search results"
            )
        elif description_length < 70:
            recommendations.append(
                "Consider making your meta description longer for better search result appearance"
            )
    else:
        issues.append("No meta description provided")
        recommendations.append("Add a meta description to improve click-through rates from search results")

    if on_page.get("check_headings", True) and "<h" in body:
        if "<h1" not in body:
            issues.append("No H1 heading found in content")
            recommendations.append("Add an H1 heading to your content for proper heading hierarchy")

        previous_level = 0
        skipped = False
        for match in HEADING_RE.finditer(body):
            level = int(HEADING_LEVEL_RE.match(match.group(0)).group(1))
            if previous_level > 0 and level > previous_level + 1:
                skipped = True
            previous_level = level
        if skipped:
            issues.append("Heading structure has skipped levels")
            recommendations.append("Ensure proper heading hierarchy (H1 → H2 → H3) without skipping levels")

    if on_page.get("check_images", True) and "<img" in body:
        missing_alt = sum(
            1 for img in IMAGE_RE.findall(body) if "alt=" not in img or 'alt=""' in img
        )
        if missing_alt > 0:
            issues.append(f"{missing_alt} images missing alt text")
            recommendations.append("Add descriptive alt text to all images for better accessibility and SEO")

    return {
        "score": score_for_issue_count(len(issues)),
        "issues": issues,
        "recommendations": recommendations,
        "keyword_analysis": keyword_analysis,
        "content_analysis": {"length": content_length},
        "meta_analysis": meta_analysis,
    }


async def get_config(session: AsyncSession) -> dict[str, Any]:
    return await system.load_settings(session, SEO_CONFIG_KEY, DEFAULT_SEO_CONFIG)


async def update_config(session: AsyncSession, changes: dict[str, Any]) -> dict[str, Any]:
    return await system.save_settings(session, SEO_CONFIG_KEY, DEFAULT_SEO_CONFIG, changes)


async def analyze_and_record(
    session: AsyncSession,
    content: Mapping[str, Any],
    focus_keyword: Optional[str],
    *,
    content_id: Optional[str] = None,
) -> dict[str, Any]:
    """Run :func:`analyze_content` and persist the page score and keyword usage."""
    config = await get_config(session)
    result = analyze_content(content, focus_keyword, config)
    if content_id:
        await record_score(session, content_id, result["score"], focus_keyword)
    return result


async def record_score(
    session: AsyncSession, content_id: str, score: int, focus_keyword: Optional[str]
) -> None:
    now = models.utcnow()
    page = await session.get(models.PageSeoScore, content_id)
    if page is None:
        page = models.PageSeoScore(content_id=content_id, score=score)
        session.add(page)
    page.score = score
    page.focus_keyword = focus_keyword
    page.last_analyzed = now

    if focus_keyword and focus_keyword.strip():
        keyword = focus_keyword.strip().lower()
        usage = await session.get(models.KeywordUsage, (keyword, content_id))
        if usage is None:
            usage = models.KeywordUsage(keyword=keyword, content_id=content_id, score=score, first_tracked=now)
            session.add(usage)
        usage.score = score
        usage.last_tracked = now

    await session.commit()
    logger.info("Recorded SEO score %s for %s", score, content_id)


async def _keyword_rows(session: AsyncSession) -> dict[str, list[models.KeywordUsage]]:
    result = await session.execute(select(models.KeywordUsage))
    grouped: dict[str, list[models.KeywordUsage]] = defaultdict(list)
    for row in result.scalars():
        grouped[row.keyword].append(row)
    return grouped


def _average_score(rows: list[models.KeywordUsage]) -> int:
    return _round_half_up(sum(r.score for r in rows) / len(rows))


async def keyword_performance(session: AsyncSession, keyword: Optional[str] = None) -> dict[str, Any]:
    grouped = await _keyword_rows(session)

    if keyword:
        clean = keyword.strip().lower()
        rows = grouped.get(clean)
        if not rows:
            return {"keyword": clean, "data": None, "performance": None}
        return {
            "keyword": clean,
            "data": {
                "used_in_content": [r.content_id for r in rows],
                "first_tracked": min(r.first_tracked for r in rows),
                "total_uses": len(rows),
            },
            "performance": {
                "average_score": _average_score(rows),
                "content_scores": {r.content_id: r.score for r in rows},
            },
        }

    top = sorted(
        (
            {"keyword": kw, "uses": len(rows), "score": _average_score(rows)}
            for kw, rows in grouped.items()
        ),
        key=lambda item: item["uses"],
        reverse=True,
    )
    last_updated: Optional[datetime] = max(
        (r.last_tracked for rows in grouped.values() for r in rows), default=None
    )
    return {"total_keywords": len(grouped), "top_keywords": top[:20], "last_updated": last_updated}


async def site_recommendations(session: AsyncSession) -> dict[str, Any]:
    result = await session.execute(select(models.PageSeoScore))
    pages = list(result.scalars())
    scores = [page.score for page in pages]
    average = _round_half_up(sum(scores) / len(scores)) if scores else 0

    general: list[str]
    if average < 50:
        general = [
            "Your site SEO needs significant improvement",
            "Focus on fixing critical issues first, particularly in top-traffic pages",
        ]
    elif average < 70:
        general = [
            "Your site SEO is average and could use improvement",
            "Address the most common issues across your pages to improve overall score",
        ]
    elif average < 90:
        general = [
            "Your site SEO is good but can still be improved",
            "Fine-tune your pages to reach excellent SEO status",
        ]
    else:
        general = [
            "Your site SEO is excellent",
            "Maintain your current practices and keep content updated",
        ]

    content_recs: list[str] = []
    low_pages = [page.content_id for page in pages if page.score < 60]
    if low_pages:
        content_recs.append(f"You have {len(low_pages)} pages with poor SEO scores that need attention")
        if len(low_pages) <= 3:
            content_recs.append(f"Focus on improving these pages: {', '.join(low_pages)}")

    keyword_recs: list[str] = []
    grouped = await _keyword_rows(session)
    poor_keywords = [kw for kw, rows in grouped.items() if _average_score(rows) < 60]
    if poor_keywords:
        keyword_recs.append(f"You have {len(poor_keywords)} keywords with poor optimization scores")
        if len(poor_keywords) <= 5:
            keyword_recs.append(f"Improve optimization for these keywords: {', '.join(poor_keywords)}")

    if any(len(rows) > 1 for rows in grouped.values()):
        keyword_recs.append("Potential keyword cannibalization detected on your site")
        keyword_recs.append("Consider focusing each primary keyword on a single dedicated page")

    return {
        "overall_score": average,
        "general_recommendations": general,
        "content_recommendations": content_recs,
        "keyword_recommendations": keyword_recs,
        "technical_recommendations": list(TECHNICAL_RECOMMENDATIONS),
    }

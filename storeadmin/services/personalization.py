"""
Email personalization.

Templates use handlebars-style markers (``{{firstName}}``, ``{{#if isVip}}...{{/if}}``,
``{{#each items}}...{{this.name}}...{{/each}}``). The block markers are rewritten
into jinja2 statements and the result is rendered in a sandbox, so stored
templates never get access to anything but the customer context.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Mapping, Optional

from jinja2 import Template, TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment
from jinja2.utils import missing

from storeadmin.utils.dates import ensure_utc

BLOCK_MARKERS = (
    (re.compile(r"\{\{#if\s+([A-Za-z_]\w*)\s*\}\}"), r"{% if \1 %}"),
    (re.compile(r"\{\{else\}\}"), "{% else %}"),
    (re.compile(r"\{\{/if\}\}"), "{% endif %}"),
    (re.compile(r"\{\{#each\s+([A-Za-z_]\w*)\s*\}\}"), r"{% for this in \1 %}"),
    (re.compile(r"\{\{/each\}\}"), "{% endfor %}"),
)


class KeepUnknownTags(Undefined):
    """Unknown tags are left in the output as written; missing item properties render empty."""

    __slots__ = ()

    def __str__(self) -> str:
        if self._undefined_obj is missing and self._undefined_name:
            return "{{%s}}" % self._undefined_name
        return ""


environment = SandboxedEnvironment(
    undefined=KeepUnknownTags,
    autoescape=False,
    keep_trailing_newline=True,
)


@lru_cache(maxsize=256)
def compile_template(source: str) -> Template:
    for pattern, replacement in BLOCK_MARKERS:
        source = pattern.sub(replacement, source)
    try:
        return environment.from_string(source)
    except TemplateSyntaxError as e:
        raise ValueError(f"Invalid template (line {e.lineno}): {e.message}") from e


def _fields(customer: Any) -> dict[str, Any]:
    if customer is None:
        return {}
    if isinstance(customer, Mapping):
        return dict(customer)
    return {key: value for key, value in vars(customer).items() if not key.startswith("_")}


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return ensure_utc(value).strftime("%B %d, %Y")
    return str(value) if value else ""


def build_context(customer: Any, now: datetime) -> dict[str, Any]:
    """Customer fields plus the named tags and flags, which win on a name clash."""
    fields = _fields(customer)
    name = fields.get("name") or ""
    segment = fields.get("segment")
    total_orders = fields.get("total_orders") or 0
    return {
        **fields,
        "firstName": name.split()[0] if name.strip() else "there",
        "fullName": name or "Valued Customer",
        "email": fields.get("email") or "",
        "currentDate": now.strftime("%B %d, %Y"),
        "currentMonth": now.strftime("%B"),
        "currentYear": str(now.year),
        "lastOrderDate": _format_date(fields.get("last_order_date")) or "N/A",
        "totalOrders": str(total_orders),
        "segment": segment or "new",
        "isVip": segment == "vip",
        "isNew": segment == "new",
        "isAtRisk": segment == "at_risk",
        "hasOrdered": total_orders > 0,
    }


def personalize(template: str, customer: Any, now: Optional[datetime] = None) -> str:
    """Render a campaign subject or body for one customer.

    ``{{#if}}`` tests the named flags (isVip, isNew, isAtRisk, hasOrdered) or any
    customer field for truthiness. ``{{#each}}`` walks a list field, exposing each
    element as ``this``. Raises ValueError when the markers do not balance.
    """
    if not template:
        return ""
    now = ensure_utc(now or datetime.now(timezone.utc))
    return compile_template(template).render(build_context(customer, now))

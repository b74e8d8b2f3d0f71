from __future__ import annotations

import copy
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models


async def next_value(session: AsyncSession, name: str, *, start: int = 1000) -> int:
    """Increment and return a named counter. The first value handed out is ``start + 1``."""
    result = await session.execute(select(models.Counter).where(models.Counter.name == name))
    counter = result.scalar_one_or_none()
    if counter is None:
        counter = models.Counter(name=name, value=start)
        session.add(counter)
    counter.value += 1
    await session.flush()
    return counter.value


def _merge(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


async def load_settings(session: AsyncSession, name: str, defaults: dict[str, Any]) -> dict[str, Any]:
    entry = await session.get(models.SettingsEntry, name)
    if entry is None:
        return copy.deepcopy(defaults)
    return _merge(defaults, entry.value)


async def save_settings(
    session: AsyncSession, name: str, defaults: dict[str, Any], changes: dict[str, Any]
) -> dict[str, Any]:
    """Merge ``changes`` into the stored settings and persist the result."""
    entry = await session.get(models.SettingsEntry, name)
    current = _merge(defaults, entry.value) if entry else copy.deepcopy(defaults)
    updated = _merge(current, changes)
    if entry is None:
        session.add(models.SettingsEntry(name=name, value=updated))
    else:
        entry.value = updated
        entry.updated_at = models.utcnow()
    await session.commit()
    return updated

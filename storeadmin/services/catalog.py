from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storeadmin import models
from storeadmin.services.seo import generate_slug

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    "name",
    "category",
    "description",
    "price",
    "sale_price",
    "rating",
    "review_count",
    "image_url",
    "additional_images",
    "affiliate_link",
    "sku",
    "weight",
    "dimensions",
    "features",
    "specifications",
    "variants",
    "tags",
    "seo",
)
INVENTORY_FIELDS = ("stock_quantity", "low_stock_threshold", "manage_stock")
TOP_RATED_THRESHOLD = 4.5


async def _generate_product_id(session: AsyncSession, category: str) -> str:
    prefix = (category or "pr")[:2].lower()
    result = await session.execute(
        select(func.count()).select_from(models.Product).where(models.Product.category == category)
    )
    sequence = result.scalar_one() + 1
    while True:
        candidate = f"{prefix}{sequence:03d}"
        if await session.get(models.Product, candidate) is None:
            return candidate
        sequence += 1


def _apply_fields(product: models.Product, data: dict[str, Any]) -> None:
    for field in PRODUCT_FIELDS:
        if field in data:
            setattr(product, field, data[field])
    inventory = data.get("inventory") or {}
    touched = False
    for field in INVENTORY_FIELDS:
        if field in inventory:
            setattr(product, field, inventory[field])
            touched = True
    if touched:
        product.inventory_updated_at = models.utcnow()


async def create_product(session: AsyncSession, data: dict[str, Any]) -> models.Product:
    product_id = data.get("id") or await _generate_product_id(session, data["category"])
    now = models.utcnow()
    product = models.Product(
        id=product_id,
        additional_images=[],
        features=[],
        specifications={},
        variants=[],
        tags=[],
        seo={},
        date_added=now,
        date_modified=now,
        inventory_updated_at=now,
    )
    _apply_fields(product, data)
    session.add(product)
    await session.commit()
    await session.refresh(product)
    logger.info("Created product %s (%s)", product.id, product.name)
    return product


async def get_product(session: AsyncSession, product_id: str) -> Optional[models.Product]:
    return await session.get(models.Product, product_id)


async def list_products(
    session: AsyncSession,
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    tag: Optional[str] = None,
) -> list[models.Product]:
    stmt = select(models.Product).order_by(models.Product.date_added.desc(), models.Product.id)
    if category:
        stmt = stmt.where(models.Product.category == category)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(models.Product.name).like(pattern),
                func.lower(models.Product.description).like(pattern),
                func.lower(func.coalesce(models.Product.sku, "")).like(pattern),
            )
        )
    result = await session.execute(stmt)
    products = list(result.scalars())
    if tag:
        products = [p for p in products if tag in (p.tags or [])]
    return products


async def update_product(
    session: AsyncSession, product_id: str, data: dict[str, Any]
) -> Optional[models.Product]:
    product = await get_product(session, product_id)
    if product is None:
        return None
    _apply_fields(product, data)
    product.date_modified = models.utcnow()
    await session.commit()
    await session.refresh(product)
    return product


async def delete_product(session: AsyncSession, product_id: str) -> bool:
    product = await get_product(session, product_id)
    if product is None:
        return False
    await session.delete(product)
    await session.commit()
    logger.info("Deleted product %s", product_id)
    return True


async def duplicate_product(session: AsyncSession, product_id: str) -> Optional[models.Product]:
    original = await get_product(session, product_id)
    if original is None:
        return None
    data = {field: getattr(original, field) for field in PRODUCT_FIELDS}
    data["name"] = f"{original.name} (Copy)"
    data["inventory"] = {field: getattr(original, field) for field in INVENTORY_FIELDS}
    return await create_product(session, data)


async def _products_by_ids(session: AsyncSession, product_ids: Iterable[str]) -> list[models.Product]:
    result = await session.execute(select(models.Product).where(models.Product.id.in_(list(product_ids))))
    return list(result.scalars())


async def bulk_delete(session: AsyncSession, product_ids: list[str]) -> int:
    result = await session.execute(delete(models.Product).where(models.Product.id.in_(product_ids)))
    await session.commit()
    return result.rowcount or 0


async def bulk_set_stock(session: AsyncSession, product_ids: list[str], quantity: int) -> int:
    products = await _products_by_ids(session, product_ids)
    now = models.utcnow()
    for product in products:
        product.stock_quantity = quantity
        product.inventory_updated_at = now
    await session.commit()
    return len(products)


def _with_tag(tags: Optional[list[str]], tag: str) -> list[str]:
    tags = list(tags or [])
    if tag not in tags:
        tags.append(tag)
    return tags


async def bulk_add_tag(session: AsyncSession, product_ids: list[str], tag: str) -> int:
    products = await _products_by_ids(session, product_ids)
    for product in products:
        product.tags = _with_tag(product.tags, tag)
        product.date_modified = models.utcnow()
    await session.commit()
    return len(products)


async def bulk_apply_discount(session: AsyncSession, product_ids: list[str], percent: float) -> int:
    if not 1 <= percent <= 99:
        raise ValueError("Discount percent must be between 1 and 99")
    products = await _products_by_ids(session, product_ids)
    for product in products:
        product.sale_price = round(product.price * (1 - percent / 100), 2)
        product.tags = _with_tag(product.tags, "sale")
        product.date_modified = models.utcnow()
    await session.commit()
    logger.info("Applied %s%% discount to %s products", percent, len(products))
    return len(products)


async def product_stats(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(select(models.Product))
    products = list(result.scalars())
    managed = [p for p in products if p.manage_stock]
    return {
        "total_products": len(products),
        "low_stock": sum(1 for p in managed if 0 < p.stock_quantity <= p.low_stock_threshold),
        "out_of_stock": sum(1 for p in managed if p.stock_quantity <= 0),
        "top_rated": sum(1 for p in products if p.rating >= TOP_RATED_THRESHOLD),
    }


def export_product(product: models.Product) -> dict[str, Any]:
    data = {field: getattr(product, field) for field in PRODUCT_FIELDS}
    data["id"] = product.id
    data["inventory"] = {field: getattr(product, field) for field in INVENTORY_FIELDS}
    data["date_added"] = product.date_added.isoformat()
    data["date_modified"] = product.date_modified.isoformat()
    return data


async def export_products(session: AsyncSession) -> list[dict[str, Any]]:
    return [export_product(product) for product in await list_products(session)]


async def import_products(session: AsyncSession, items: list[dict[str, Any]]) -> dict[str, int]:
    """Create products from exported records, replacing any with the same id."""
    created = replaced = 0
    for item in items:
        product_id = item.get("id")
        if product_id and await get_product(session, product_id) is not None:
            await update_product(session, product_id, item)
            replaced += 1
        else:
            await create_product(session, item)
            created += 1
    return {"created": created, "replaced": replaced}


# Categories and tags share the same shape.

async def _create_taxonomy(session: AsyncSession, model: type, data: dict[str, Any]):
    slug = generate_slug(data.get("slug") or data["name"])
    result = await session.execute(select(model).where(model.slug == slug))
    if result.scalar_one_or_none() is not None:
        raise ValueError(f"Slug already exists: {slug}")
    item = model(name=data["name"], slug=slug, description=data.get("description"))
    session.add(item)
    await session.commit()
    await session.refresh(item)
    return item


async def _update_taxonomy(session: AsyncSession, model: type, item_id, data: dict[str, Any]):
    item = await session.get(model, item_id)
    if item is None:
        return None
    if "name" in data and data["name"]:
        item.name = data["name"]
    if data.get("slug"):
        slug = generate_slug(data["slug"])
        result = await session.execute(select(model).where(model.slug == slug, model.id != item.id))
        if result.scalar_one_or_none() is not None:
            raise ValueError(f"Slug already exists: {slug}")
        item.slug = slug
    if "description" in data:
        item.description = data["description"]
    await session.commit()
    await session.refresh(item)
    return item


async def _list_taxonomy(session: AsyncSession, model: type) -> list:
    result = await session.execute(select(model).order_by(model.name))
    return list(result.scalars())


async def create_category(session: AsyncSession, data: dict[str, Any]) -> models.Category:
    return await _create_taxonomy(session, models.Category, data)


async def list_categories(session: AsyncSession) -> list[models.Category]:
    return await _list_taxonomy(session, models.Category)


async def update_category(session: AsyncSession, category_id, data: dict[str, Any]) -> Optional[models.Category]:
    return await _update_taxonomy(session, models.Category, category_id, data)


async def delete_category(session: AsyncSession, category_id) -> bool:
    category = await session.get(models.Category, category_id)
    if category is None:
        return False
    result = await session.execute(
        select(func.count())
        .select_from(models.Product)
        .where(models.Product.category.in_([category.slug, category.name]))
    )
    in_use = result.scalar_one()
    if in_use:
        raise ValueError(f"Category is used by {in_use} products")
    await session.delete(category)
    await session.commit()
    return True


async def create_tag(session: AsyncSession, data: dict[str, Any]) -> models.Tag:
    return await _create_taxonomy(session, models.Tag, data)


async def list_tags(session: AsyncSession) -> list[models.Tag]:
    return await _list_taxonomy(session, models.Tag)


async def update_tag(session: AsyncSession, tag_id, data: dict[str, Any]) -> Optional[models.Tag]:
    return await _update_taxonomy(session, models.Tag, tag_id, data)


async def delete_tag(session: AsyncSession, tag_id) -> bool:
    tag = await session.get(models.Tag, tag_id)
    if tag is None:
        return False
    await session.delete(tag)
    await session.commit()
    return True


async def decrement_stock(session: AsyncSession, product_id: str, quantity: int) -> Optional[models.Product]:
    """Reduce managed stock, floored at zero. Caller commits."""
    product = await get_product(session, product_id)
    if product is None or not product.manage_stock:
        return product
    product.stock_quantity = max(0, product.stock_quantity - quantity)
    product.inventory_updated_at = models.utcnow()
    if product.stock_quantity <= product.low_stock_threshold:
        logger.warning("Product %s stock is low (%s left)", product_id, product.stock_quantity)
    return product

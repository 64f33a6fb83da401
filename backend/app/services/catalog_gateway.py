"""Persistence gateway for catalog imports.

The import pipeline talks to storage only through ``CatalogGateway``. The
SQLAlchemy implementation wraps one ``AsyncSession``; the caller owns the
transaction and commits once at the end of a batch.
"""
import logging
import uuid
from collections.abc import Iterable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.catalog import Category, Product, ProductImage, ProductVariant

logger = logging.getLogger(__name__)


class CatalogGatewayError(Exception):
    """Raised when a catalog write cannot be applied."""


@dataclass(frozen=True)
class ExistingCategory:
    id: uuid.UUID
    name: str
    slug: str


# ─── Gateway contract ───

class CatalogGateway(Protocol):
    async def find_existing_by_slug_or_name(
        self, slugs: Sequence[str], names: Sequence[str]
    ) -> list[ExistingCategory]:
        """One lookup: categories whose slug is in ``slugs`` or name (case-insensitive) in ``names``."""

    async def max_category_sort_order(self) -> int: ...

    async def taken_category_slugs(self, bases: Iterable[str]) -> dict[str, uuid.UUID]:
        """Stored slugs equal to a base or of the form ``base-N``, mapped to their category id."""

    async def taken_product_slugs(self, bases: Iterable[str]) -> dict[str, uuid.UUID]: ...

    async def taken_product_skus(self, bases: Iterable[str]) -> dict[str, uuid.UUID]: ...

    async def taken_variant_skus(self, bases: Iterable[str]) -> dict[str, uuid.UUID]: ...

    async def create_category(self, values: dict[str, Any]) -> uuid.UUID: ...

    async def update_category(self, category_id: uuid.UUID, values: dict[str, Any]) -> None: ...

    async def delete_category_cascade(self, category_id: uuid.UUID) -> int:
        """Delete a category with its products, variants and images. Returns products deleted."""

    async def create_product(self, category_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID: ...

    async def create_variant(self, product_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID: ...

    async def create_image(self, product_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID: ...

    def savepoint(self) -> AbstractAsyncContextManager[None]: ...

    async def commit(self) -> None: ...

    async def export_categories(
        self, category_ids: Sequence[uuid.UUID], include_products: bool
    ) -> list[dict[str, Any]]: ...


# ─── SQLAlchemy implementation ───

def _base_filter(column, bases: Iterable[str]):
    bases = sorted(set(bases))
    return or_(column.in_(bases), *[column.like(f"{b}-%") for b in bases])


class SqlCatalogGateway:
    """CatalogGateway over an AsyncSession (PostgreSQL via asyncpg)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Reads ──

    async def find_existing_by_slug_or_name(
        self, slugs: Sequence[str], names: Sequence[str]
    ) -> list[ExistingCategory]:
        lowered = sorted({n.lower() for n in names})
        stmt = select(Category.id, Category.name, Category.slug).where(
            or_(Category.slug.in_(sorted(set(slugs))), func.lower(Category.name).in_(lowered))
        )
        rows = (await self.db.execute(stmt)).all()
        return [ExistingCategory(id=row.id, name=row.name, slug=row.slug) for row in rows]

    async def max_category_sort_order(self) -> int:
        result = await self.db.execute(select(func.max(Category.sort_order)))
        return result.scalar_one_or_none() or 0

    async def taken_category_slugs(self, bases: Iterable[str]) -> dict[str, uuid.UUID]:
        bases = list(bases)
        if not bases:
            return {}
        stmt = select(Category.slug, Category.id).where(_base_filter(Category.slug, bases))
        return {slug: cid for slug, cid in (await self.db.execute(stmt)).all()}

    async def taken_product_slugs(self, bases: Iterable[str]) -> dict[str, uuid.UUID]:
        bases = list(bases)
        if not bases:
            return {}
        stmt = select(Product.slug, Product.category_id).where(_base_filter(Product.slug, bases))
        return {slug: cid for slug, cid in (await self.db.execute(stmt)).all()}

    async def taken_product_skus(self, bases: Iterable[str]) -> dict[str, uuid.UUID]:
        bases = list(bases)
        if not bases:
            return {}
        stmt = select(Product.sku, Product.category_id).where(_base_filter(Product.sku, bases))
        return {sku: cid for sku, cid in (await self.db.execute(stmt)).all()}

    async def taken_variant_skus(self, bases: Iterable[str]) -> dict[str, uuid.UUID]:
        bases = list(bases)
        if not bases:
            return {}
        stmt = (
            select(ProductVariant.sku, Product.category_id)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(_base_filter(ProductVariant.sku, bases))
        )
        return {sku: cid for sku, cid in (await self.db.execute(stmt)).all()}

    # ── Writes ──

    async def create_category(self, values: dict[str, Any]) -> uuid.UUID:
        category = Category(**values)
        self.db.add(category)
        await self.db.flush()
        return category.id

    async def update_category(self, category_id: uuid.UUID, values: dict[str, Any]) -> None:
        result = await self.db.execute(
            update(Category).where(Category.id == category_id).values(**values)
        )
        if result.rowcount == 0:
            raise CatalogGatewayError(f"Category {category_id} no longer exists")

    async def delete_category_cascade(self, category_id: uuid.UUID) -> int:
        product_ids = select(Product.id).where(Product.category_id == category_id)
        await self.db.execute(delete(ProductImage).where(ProductImage.product_id.in_(product_ids)))
        await self.db.execute(delete(ProductVariant).where(ProductVariant.product_id.in_(product_ids)))
        products = await self.db.execute(delete(Product).where(Product.category_id == category_id))
        result = await self.db.execute(delete(Category).where(Category.id == category_id))
        if result.rowcount == 0:
            raise CatalogGatewayError(f"Category {category_id} no longer exists")
        logger.info("delete_category_cascade: %s (%d products)", category_id, products.rowcount)
        return products.rowcount

    async def create_product(self, category_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID:
        product = Product(**values, category_id=category_id)
        self.db.add(product)
        await self.db.flush()
        return product.id

    async def create_variant(self, product_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID:
        variant = ProductVariant(**values, product_id=product_id)
        self.db.add(variant)
        await self.db.flush()
        return variant.id

    async def create_image(self, product_id: uuid.UUID, values: dict[str, Any]) -> uuid.UUID:
        image = ProductImage(**values, product_id=product_id)
        self.db.add(image)
        await self.db.flush()
        return image.id

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        async with self.db.begin_nested():
            yield

    async def commit(self) -> None:
        await self.db.commit()

    # ── Export ──

    async def export_categories(
        self, category_ids: Sequence[uuid.UUID], include_products: bool
    ) -> list[dict[str, Any]]:
        stmt = (
            select(Category)
            .where(Category.id.in_(list(category_ids)), Category.is_active.is_(True))
            .order_by(Category.sort_order.asc(), Category.name.asc())
        )
        if include_products:
            stmt = stmt.options(
                selectinload(Category.products).selectinload(Product.variants),
                selectinload(Category.products).selectinload(Product.images),
            )
        categories = (await self.db.execute(stmt)).scalars().all()

        exported = []
        for category in categories:
            item = {
                "id": str(category.id),
                "name": category.name,
                "slug": category.slug,
                "description": category.description,
                "image": category.image,
                "isActive": category.is_active,
                "sortOrder": category.sort_order,
            }
            if include_products:
                item["products"] = [_export_product(p) for p in category.products if p.is_active]
            exported.append(item)
        return exported


def _money(value) -> float | None:
    return float(value) if value is not None else None


def _export_product(product: Product) -> dict[str, Any]:
    return {
        "name": product.name,
        "slug": product.slug,
        "sku": product.sku,
        "barcode": product.barcode,
        "description": product.description,
        "shortDescription": product.short_description,
        "price": _money(product.price),
        "comparePrice": _money(product.compare_price),
        "costPrice": _money(product.cost_price),
        "salePrice": _money(product.sale_price),
        "saleEndDate": product.sale_end_date.isoformat() if product.sale_end_date else None,
        "weight": product.weight,
        "dimensions": product.dimensions,
        "tags": list(product.tags or []),
        "metaTitle": product.meta_title,
        "metaDescription": product.meta_description,
        "isActive": product.is_active,
        "isFeatured": product.is_featured,
        "isOnSale": product.is_on_sale,
        "variants": [
            {
                "size": v.size,
                "color": v.color,
                "colorCode": v.color_code,
                "stock": v.stock,
                "sku": v.sku,
                "price": _money(v.price),
                "comparePrice": _money(v.compare_price),
                "isActive": v.is_active,
            }
            for v in product.variants
        ],
        "images": [
            {
                "url": i.url,
                "alt": i.alt,
                "color": i.color,
                "sortOrder": i.sort_order,
                "isPrimary": i.is_primary,
            }
            for i in product.images
        ],
    }

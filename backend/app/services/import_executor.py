"""Import executor — applies a prepared batch through the catalog gateway.

Records are processed one at a time in batch order. Failures are contained
at the smallest unit: a product (with its variants and images) rolls back
alone and is counted against its category; a category that cannot be
written is reported as ``error`` and the loop moves on.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from app.services.catalog_gateway import CatalogGateway
from app.services.derived_fields import PreparedCategory, PreparedProduct
from app.services.import_validation import parse_datetime, parse_money, validate_product

logger = logging.getLogger(__name__)

ACTIONS = ("created", "updated", "skipped", "replaced", "error", "unknown")


class ProductImportError(Exception):
    """A nested product could not be imported."""


# ─── Outcomes ───

@dataclass(frozen=True)
class ProductTally:
    imported: int = 0
    errors: int = 0


@dataclass(frozen=True)
class Created:
    category_id: uuid.UUID
    products: ProductTally


@dataclass(frozen=True)
class Updated:
    category_id: uuid.UUID
    products: ProductTally


@dataclass(frozen=True)
class Skipped:
    category_id: uuid.UUID  # the existing category
    products: ProductTally


@dataclass(frozen=True)
class Replaced:
    category_id: uuid.UUID
    replaced_id: uuid.UUID
    products: ProductTally


@dataclass(frozen=True)
class Failed:
    reason: str


Outcome = Created | Updated | Skipped | Replaced | Failed


@dataclass(frozen=True)
class ImportResult:
    """One line of the result report."""

    index: int
    action: str
    category_id: uuid.UUID | None
    message: str
    data: Any
    products_imported: int = 0
    products_errors: int = 0

    @property
    def success(self) -> bool:
        return self.action != "error"

    @classmethod
    def from_outcome(cls, index: int, data: Any, outcome: Outcome) -> "ImportResult":
        if isinstance(outcome, Failed):
            return cls(index=index, action="error", category_id=None, message=outcome.reason, data=data)

        if isinstance(outcome, Created):
            action, message = "created", "Category created successfully"
        elif isinstance(outcome, Updated):
            action, message = "updated", "Category updated successfully"
        elif isinstance(outcome, Skipped):
            action, message = "skipped", f"Category already exists (ID: {outcome.category_id}); kept as is"
        else:
            action, message = "replaced", f"Category replaced (previous ID: {outcome.replaced_id})"

        tally = outcome.products
        if tally.imported or tally.errors:
            message += f". {tally.imported} products imported, {tally.errors} failed"
        return cls(
            index=index,
            action=action,
            category_id=outcome.category_id,
            message=message,
            data=data,
            products_imported=tally.imported,
            products_errors=tally.errors,
        )


# ─── Column mapping ───

def _product_values(product: PreparedProduct) -> dict[str, Any]:
    raw = product.raw
    tags = list(dict.fromkeys(raw.get("tags") or []))
    return {
        "name": raw["name"].strip(),
        "slug": product.slug,
        "sku": product.sku,
        "barcode": raw.get("barcode"),
        "description": raw["description"],
        "short_description": raw.get("shortDescription"),
        "price": parse_money(raw["price"]),
        "compare_price": parse_money(raw.get("comparePrice")),
        "cost_price": parse_money(raw.get("costPrice")),
        "sale_price": parse_money(raw.get("salePrice")),
        "sale_end_date": parse_datetime(raw.get("saleEndDate")),
        "weight": float(raw["weight"]) if raw.get("weight") is not None else None,
        "dimensions": raw.get("dimensions"),
        "tags": tags,
        "meta_title": raw.get("metaTitle"),
        "meta_description": raw.get("metaDescription"),
        "is_active": raw.get("isActive") if raw.get("isActive") is not None else True,
        "is_featured": bool(raw.get("isFeatured")),
        "is_on_sale": bool(raw.get("isOnSale")),
    }


def _variant_values(variant: dict[str, Any]) -> dict[str, Any]:
    return {
        "sku": variant["sku"],
        "size": variant.get("size"),
        "color": variant.get("color"),
        "color_code": variant.get("colorCode"),
        "stock": int(variant.get("stock") or 0),
        "price": parse_money(variant.get("price")),
        "compare_price": parse_money(variant.get("comparePrice")),
        "is_active": variant.get("isActive") if variant.get("isActive") is not None else True,
    }


def _image_values(image: dict[str, Any]) -> dict[str, Any]:
    return {
        "url": image["url"].strip(),
        "alt": image.get("alt"),
        "color": image.get("color"),
        "sort_order": image["sortOrder"],
        "is_primary": bool(image.get("isPrimary")),
    }


# ─── Executor ───

class ImportExecutor:
    def __init__(self, gateway: CatalogGateway, import_products: bool = True):
        self.gateway = gateway
        self.import_products = import_products

    async def execute(self, prepared: list[PreparedCategory]) -> list[ImportResult]:
        """Apply every prepared record in order. Never raises for a single record."""
        results = []
        for item in prepared:
            outcome = await self._import_category(item)
            result = ImportResult.from_outcome(item.index, item.data, outcome)
            logger.info(
                "import #%d %r: %s (products %d ok / %d failed)",
                item.index, _label(item.data), result.action,
                result.products_imported, result.products_errors,
            )
            results.append(result)
        return results

    async def _import_category(self, item: PreparedCategory) -> Outcome:
        if item.action == "error":
            return Failed("; ".join(item.errors))

        try:
            async with self.gateway.savepoint():
                category_id = await self._write_category(item)
        except Exception as exc:
            logger.error("import #%d %r: category write failed: %s", item.index, _label(item.data), exc, exc_info=True)
            return Failed(f"Failed to {_verb(item.action)} category: {exc}")

        tally = ProductTally()
        if self.import_products and item.products:
            tally = await self._import_products(category_id, item.products)

        if item.action == "created":
            return Created(category_id=category_id, products=tally)
        if item.action == "updated":
            return Updated(category_id=category_id, products=tally)
        if item.action == "skipped":
            return Skipped(category_id=category_id, products=tally)
        return Replaced(category_id=category_id, replaced_id=item.existing.id, products=tally)

    async def _write_category(self, item: PreparedCategory) -> uuid.UUID:
        if item.action == "skipped":
            return item.existing.id
        if item.action == "updated":
            await self.gateway.update_category(item.existing.id, item.values)
            return item.existing.id
        if item.action == "replaced":
            deleted = await self.gateway.delete_category_cascade(item.existing.id)
            logger.info(
                "import #%d: deleted category %s with %d products before re-creating",
                item.index, item.existing.id, deleted,
            )
        return await self.gateway.create_category(item.values)

    async def _import_products(
        self, category_id: uuid.UUID, products: list[PreparedProduct]
    ) -> ProductTally:
        imported = errors = 0
        for product in products:
            try:
                product_id = await self._import_product(category_id, product)
            except Exception as exc:
                errors += 1
                logger.warning(
                    "product %d %r for category %s failed: %s",
                    product.position, _label(product.raw), category_id, exc,
                    exc_info=not isinstance(exc, ProductImportError),
                )
                continue
            imported += 1
            logger.debug("product %d imported as %s", product.position, product_id)
        return ProductTally(imported=imported, errors=errors)

    async def _import_product(self, category_id: uuid.UUID, product: PreparedProduct) -> uuid.UUID:
        """Write one product with its variants and images as a single unit."""
        problems = validate_product(product.raw)
        if problems:
            raise ProductImportError("; ".join(problems))
        if product.sku is None or product.slug is None:
            raise ProductImportError("SKU and slug were not assigned")

        # categoryId from the payload is ignored; products always belong to the imported category
        async with self.gateway.savepoint():
            product_id = await self.gateway.create_product(category_id, _product_values(product))
            for variant in product.variants:
                await self.gateway.create_variant(product_id, _variant_values(variant))
            for image in product.images:
                await self.gateway.create_image(product_id, _image_values(image))
        return product_id


def _label(data: Any) -> str | None:
    return data.get("name") if isinstance(data, dict) else None


def _verb(action: str) -> str:
    return {"created": "create", "updated": "update", "replaced": "replace"}.get(action, action)

"""Field validation for bulk category imports.

Pure with respect to storage: every check here looks only at the submitted
record and, for duplicate warnings, at the other records of the same batch.
Errors block a record from execution; warnings are informational.
"""
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from app.core.config import settings

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"[a-z0-9-]+")

CATEGORY_BOOL_FIELDS = ("isActive",)
PRODUCT_BOOL_FIELDS = ("isActive", "isFeatured", "isOnSale")
PRODUCT_MONEY_FIELDS = ("costPrice", "comparePrice", "salePrice")


# ─── Result type ───

@dataclass
class ValidationResult:
    index: int
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    data: Any = None  # normalized copy of the submitted record

    @property
    def valid(self) -> bool:
        return not self.errors


# ─── Batch context ───

@dataclass(frozen=True)
class BatchContext:
    """First position of every name and slug in the batch, for duplicate warnings."""

    first_name_index: dict[str, int]
    first_slug_index: dict[str, int]

    @classmethod
    def from_records(cls, records: list[Any]) -> "BatchContext":
        names: dict[str, int] = {}
        slugs: dict[str, int] = {}
        for idx, record in enumerate(records):
            if not isinstance(record, dict):
                continue
            name = record.get("name")
            if isinstance(name, str) and name.strip():
                names.setdefault(name.strip().lower(), idx)
            slug = record.get("slug")
            if isinstance(slug, str) and slug:
                slugs.setdefault(slug, idx)
        return cls(first_name_index=names, first_slug_index=slugs)


# ─── Helpers ───

def slugify(value: str) -> str:
    """Lowercase, map every run of non-alphanumerics to one hyphen, trim hyphens."""
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_value.lower()).strip("-")


def parse_money(value: Any) -> Decimal | None:
    """Numbers and numeric strings become Decimal; anything else is None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return amount if amount.is_finite() else None


def parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _check_string(
    record: dict, key: str, max_length: int | None, errors: list[str], label: str | None = None
) -> None:
    value = record.get(key)
    if value is None:
        return
    label = label or key
    if not isinstance(value, str):
        errors.append(f"{label} must be a string")
    elif max_length is not None and len(value) > max_length:
        errors.append(f"{label} must be {max_length} characters or less")


# ─── Product rules ───

def validate_product(product: Any) -> list[str]:
    """Product-level rules shared by the validator and the import executor."""
    if not isinstance(product, dict):
        return ["Product entry must be an object"]

    errors: list[str] = []

    name = product.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Product name is required and must be a non-empty string")
    description = product.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append("Product description is required and must be a non-empty string")

    if product.get("price") is None:
        errors.append("Product price is required")
    else:
        price = parse_money(product.get("price"))
        if price is None:
            errors.append("Product price must be a number")
        elif price < 0:
            errors.append("Product price must not be negative")

    for key in PRODUCT_MONEY_FIELDS:
        if product.get(key) is None:
            continue
        amount = parse_money(product[key])
        if amount is None or amount < 0:
            errors.append(f"{key} must be a non-negative number")

    weight = parse_money(product.get("weight"))
    if product.get("weight") is not None and (weight is None or weight < 0):
        errors.append("weight must be a non-negative number")

    for key in PRODUCT_BOOL_FIELDS:
        if key in product and product[key] is not None and not isinstance(product[key], bool):
            errors.append(f"{key} must be a boolean value")

    for key in ("sku", "barcode", "metaTitle", "metaDescription", "shortDescription"):
        _check_string(product, key, None, errors)

    tags = product.get("tags")
    if tags is not None and (
        not isinstance(tags, list) or not all(isinstance(t, str) for t in tags)
    ):
        errors.append("tags must be an array of strings")

    if product.get("saleEndDate") is not None and parse_datetime(product["saleEndDate"]) is None:
        errors.append("saleEndDate must be an ISO 8601 date")

    variants = product.get("variants")
    if variants is not None:
        if not isinstance(variants, list):
            errors.append("variants must be an array")
        else:
            for pos, variant in enumerate(variants, start=1):
                errors.extend(f"Variant {pos}: {msg}" for msg in _validate_variant(variant))

    images = product.get("images")
    if images is not None:
        if not isinstance(images, list):
            errors.append("images must be an array")
        else:
            for pos, image in enumerate(images, start=1):
                errors.extend(f"Image {pos}: {msg}" for msg in _validate_image(image))

    return errors


def _validate_variant(variant: Any) -> list[str]:
    if not isinstance(variant, dict):
        return ["entry must be an object"]
    errors: list[str] = []
    stock = variant.get("stock")
    if stock is not None and (not _is_int(stock) or stock < 0):
        errors.append("stock must be a non-negative integer")
    for key in ("size", "color", "colorCode", "sku"):
        _check_string(variant, key, None, errors)
    for key in ("price", "comparePrice"):
        if variant.get(key) is not None:
            amount = parse_money(variant[key])
            if amount is None or amount < 0:
                errors.append(f"{key} must be a non-negative number")
    if "isActive" in variant and variant["isActive"] is not None and not isinstance(variant["isActive"], bool):
        errors.append("isActive must be a boolean value")
    return errors


def _validate_image(image: Any) -> list[str]:
    if not isinstance(image, dict):
        return ["entry must be an object"]
    errors: list[str] = []
    url = image.get("url")
    if not isinstance(url, str) or not url.strip():
        errors.append("url is required")
    for key in ("alt", "color"):
        _check_string(image, key, None, errors)
    if image.get("sortOrder") is not None and not _is_int(image["sortOrder"]):
        errors.append("sortOrder must be an integer")
    if "isPrimary" in image and image["isPrimary"] is not None and not isinstance(image["isPrimary"], bool):
        errors.append("isPrimary must be a boolean value")
    return errors


# ─── Category rules ───

def validate_category(
    record: Any,
    index: int,
    context: BatchContext,
    check_products: bool = True,
) -> ValidationResult:
    """Validate one submitted category and return a normalized copy.

    Args:
        record: The raw JSON value at ``index`` of the batch.
        index: Position of the record in the batch.
        context: Name/slug positions of the whole batch.
        check_products: Also report violations of nested products. The
            execute path passes False because the import executor re-checks
            each product in isolation.
    """
    result = ValidationResult(index=index)
    if not isinstance(record, dict):
        result.errors.append("Category entry must be an object")
        result.data = record
        return result

    data = dict(record)
    result.data = data

    name = record.get("name")
    if not isinstance(name, str) or not name.strip():
        result.errors.append("Name is required and must be a non-empty string")
    else:
        data["name"] = name.strip()
        if len(data["name"]) > settings.CATEGORY_NAME_MAX_LENGTH:
            result.errors.append(
                f"Name must be {settings.CATEGORY_NAME_MAX_LENGTH} characters or less"
            )

    _validate_slug(record, data, result)

    description = record.get("description")
    if description is not None:
        if not isinstance(description, str):
            result.errors.append("Description must be a string")
        elif len(description) > settings.CATEGORY_DESCRIPTION_MAX_LENGTH:
            result.errors.append(
                f"Description must be {settings.CATEGORY_DESCRIPTION_MAX_LENGTH} characters or less"
            )

    image = record.get("image")
    if image is not None:
        if not isinstance(image, str):
            result.errors.append("Image URL must be a string")
        elif len(image) > settings.CATEGORY_IMAGE_MAX_LENGTH:
            result.errors.append(
                f"Image URL must be {settings.CATEGORY_IMAGE_MAX_LENGTH} characters or less"
            )
        elif image and not (image.startswith("http") or image.startswith("/")):
            result.errors.append("Image URL must be a valid HTTP URL or relative path")

    for key in CATEGORY_BOOL_FIELDS:
        if key in record and record[key] is not None and not isinstance(record[key], bool):
            result.errors.append(f"{key} must be a boolean value")

    sort_order = record.get("sortOrder")
    if sort_order is not None:
        if not _is_int(sort_order):
            result.errors.append("sortOrder must be an integer")
        elif not 0 <= sort_order <= settings.SORT_ORDER_MAX:
            result.errors.append(f"sortOrder must be between 0 and {settings.SORT_ORDER_MAX}")
        else:
            data["sortOrder"] = int(sort_order)

    products = record.get("products")
    if products is not None:
        if not isinstance(products, list):
            result.errors.append("products must be an array")
        elif check_products:
            for pos, product in enumerate(products, start=1):
                label = product.get("name") if isinstance(product, dict) else None
                prefix = f"Product {pos} ({label})" if isinstance(label, str) and label else f"Product {pos}"
                result.errors.extend(f"{prefix}: {msg}" for msg in validate_product(product))

    if isinstance(name, str) and name.strip():
        first = context.first_name_index.get(name.strip().lower())
        if first is not None and first < index:
            result.warnings.append("Duplicate name detected within import data")
    slug = record.get("slug")
    if isinstance(slug, str) and slug:
        first = context.first_slug_index.get(slug)
        if first is not None and first < index:
            result.warnings.append("Duplicate slug detected within import data")

    return result


def _validate_slug(record: dict, data: dict, result: ValidationResult) -> None:
    """Hard errors for type/length; malformed characters are corrected with a warning."""
    if "slug" not in record or record["slug"] is None:
        return
    slug = record["slug"]
    if not isinstance(slug, str):
        result.errors.append("Slug must be a string")
        return
    if len(slug) > settings.CATEGORY_SLUG_MAX_LENGTH:
        result.errors.append(f"Slug must be {settings.CATEGORY_SLUG_MAX_LENGTH} characters or less")
        return
    if SLUG_PATTERN.fullmatch(slug):
        return

    corrected = slugify(slug)
    if corrected:
        data["slug"] = corrected
        result.warnings.append(
            f'Slug "{slug}" contains characters other than lowercase letters, numbers and hyphens; '
            f'corrected to "{corrected}"'
        )
    else:
        data.pop("slug", None)
        result.warnings.append(f'Slug "{slug}" has no usable characters; it will be generated from the name')


def validate_categories(records: list[Any], check_products: bool = True) -> list[ValidationResult]:
    """Validate a whole batch in submission order."""
    context = BatchContext.from_records(records)
    results = [
        validate_category(record, idx, context, check_products=check_products)
        for idx, record in enumerate(records)
    ]
    invalid = sum(1 for r in results if not r.valid)
    logger.info("validate_categories: %d records, %d invalid", len(results), invalid)
    return results

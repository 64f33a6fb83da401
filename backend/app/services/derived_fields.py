"""Derived field generation: slugs, sort order and SKUs.

Runs after the conflict scan has cleared the batch and before any write.
Records are processed strictly in batch order because every assignment
depends on the ones before it: the sort-order counter only moves forward
and each slug/SKU must avoid everything claimed earlier in the batch as
well as what is already stored.

Storage state is loaded once (``load_derivation_state``) into an explicit
accumulator; ``assign_derived_fields`` is then a pure pass over the batch.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from app.core.config import settings
from app.services.catalog_gateway import CatalogGateway, ExistingCategory
from app.services.conflict_scan import Proceed
from app.services.import_validation import SLUG_PATTERN, ValidationResult, slugify, validate_product

logger = logging.getLogger(__name__)

PRODUCT_SLUG_MAX_LENGTH = 255
SKU_MAX_LENGTH = 100


# ─── Prepared records ───

@dataclass
class PreparedProduct:
    position: int  # 1-based position inside the category
    raw: Any
    sku: str | None = None
    slug: str | None = None
    variants: list[dict[str, Any]] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PreparedCategory:
    index: int
    data: Any  # normalized record, echoed back in the report
    action: str  # created | updated | skipped | replaced, or error when errors is non-empty
    errors: list[str] = field(default_factory=list)
    existing: ExistingCategory | None = None
    values: dict[str, Any] | None = None  # category columns to write; None when nothing is written
    products: list[PreparedProduct] = field(default_factory=list)


@dataclass
class DerivationOptions:
    generate_slugs: bool = True
    generate_sort_order: bool = True
    import_products: bool = True
    update_existing: bool = False


@dataclass
class DerivationState:
    """Accumulator threaded through one batch.

    Each map holds every value already taken, keyed to the id of the
    category that owns it (None for values claimed earlier in this batch).
    """

    last_sort_order: int = 0
    category_slugs: dict[str, uuid.UUID | None] = field(default_factory=dict)
    product_slugs: dict[str, uuid.UUID | None] = field(default_factory=dict)
    product_skus: dict[str, uuid.UUID | None] = field(default_factory=dict)
    variant_skus: dict[str, uuid.UUID | None] = field(default_factory=dict)


# ─── Base values ───

def _category_slug_base(data: dict) -> str:
    return slugify(data["name"])[: settings.CATEGORY_SLUG_MAX_LENGTH] or "category"


def _product_slug_base(raw: dict) -> str:
    slug = raw.get("slug")
    if isinstance(slug, str) and SLUG_PATTERN.fullmatch(slug):
        return slug[:PRODUCT_SLUG_MAX_LENGTH]
    return slugify(raw["name"])[:PRODUCT_SLUG_MAX_LENGTH] or "product"


def _product_sku_base(raw: dict) -> str:
    sku = raw.get("sku")
    if isinstance(sku, str) and sku.strip():
        return sku.strip()[:SKU_MAX_LENGTH]
    return slugify(raw["name"]).upper()[:SKU_MAX_LENGTH] or "PRODUCT"


def _variant_sku_base(variant: dict, product_sku: str, position: int) -> str:
    sku = variant.get("sku")
    if isinstance(sku, str) and sku.strip():
        return sku.strip()[:SKU_MAX_LENGTH]
    parts = [
        slugify(variant[key]).upper()
        for key in ("size", "color")
        if isinstance(variant.get(key), str) and slugify(variant[key])
    ]
    suffix = "-".join(parts) or f"V{position}"
    return f"{product_sku}-{suffix}"[:SKU_MAX_LENGTH]


def claim(
    base: str,
    taken: dict[str, uuid.UUID | None],
    released: set[str] | None = None,
    max_length: int | None = None,
) -> str:
    """Return ``base`` or the first free ``base-2``, ``base-3``, ... and mark it taken.

    Values in ``released`` belong to rows this record is about to delete or
    overwrite, so they count as free once.
    """
    released = released if released is not None else set()
    candidate = base[:max_length] if max_length else base
    counter = 1
    while candidate in taken and candidate not in released:
        counter += 1
        suffix = f"-{counter}"
        head = base[: max_length - len(suffix)] if max_length else base
        candidate = f"{head}{suffix}"
    released.discard(candidate)
    taken[candidate] = None
    return candidate


def _importable_products(data: dict) -> list[dict]:
    products = data.get("products") or []
    return [p for p in products if not validate_product(p)]


# ─── Storage snapshot ───

async def load_derivation_state(
    gateway: CatalogGateway,
    valid_records: list[ValidationResult],
    decision: Proceed,
    options: DerivationOptions,
) -> DerivationState:
    """Read everything the generator needs from storage, one query per namespace."""
    state = DerivationState()

    writing = [
        r for r in valid_records
        if decision.action_for(r.index, options.update_existing) != "skipped"
    ]

    if options.generate_sort_order and any(r.data.get("sortOrder") is None for r in writing):
        state.last_sort_order = await gateway.max_category_sort_order()

    slug_bases = {r.data["slug"] for r in writing if r.data.get("slug")}
    if options.generate_slugs:
        slug_bases |= {_category_slug_base(r.data) for r in writing if not r.data.get("slug")}
    if slug_bases:
        state.category_slugs.update(await gateway.taken_category_slugs(slug_bases))

    if options.import_products:
        products = [p for r in valid_records for p in _importable_products(r.data)]
        if products:
            sku_bases = {_product_sku_base(p) for p in products}
            variant_bases = sku_bases | {
                v["sku"].strip()
                for p in products
                for v in p.get("variants") or []
                if isinstance(v.get("sku"), str) and v["sku"].strip()
            }
            state.product_skus.update(await gateway.taken_product_skus(sku_bases))
            state.product_slugs.update(
                await gateway.taken_product_slugs({_product_slug_base(p) for p in products})
            )
            state.variant_skus.update(await gateway.taken_variant_skus(variant_bases))

    return state


# ─── Assignment ───

def _released(taken: dict[str, uuid.UUID | None], owner: ExistingCategory | None) -> set[str]:
    if owner is None:
        return set()
    return {value for value, cid in taken.items() if cid == owner.id}


def _image_order(pair: tuple[int, dict]) -> tuple[int, int]:
    """Explicit sortOrder first, submission position for the rest and for ties."""
    position, image = pair
    sort_order = image.get("sortOrder")
    return (int(sort_order) if sort_order is not None else position, position)


def _prepare_products(
    data: dict, state: DerivationState, replaced: ExistingCategory | None
) -> list[PreparedProduct]:
    released_skus = _released(state.product_skus, replaced)
    released_slugs = _released(state.product_slugs, replaced)
    released_variants = _released(state.variant_skus, replaced)

    prepared = []
    for position, raw in enumerate(data.get("products") or [], start=1):
        item = PreparedProduct(position=position, raw=raw)
        prepared.append(item)
        if validate_product(raw):
            continue  # the executor reports it

        item.sku = claim(_product_sku_base(raw), state.product_skus, released_skus, SKU_MAX_LENGTH)
        item.slug = claim(
            _product_slug_base(raw), state.product_slugs, released_slugs, PRODUCT_SLUG_MAX_LENGTH
        )
        for vpos, variant in enumerate(raw.get("variants") or [], start=1):
            sku = claim(
                _variant_sku_base(variant, item.sku, vpos),
                state.variant_skus,
                released_variants,
                SKU_MAX_LENGTH,
            )
            item.variants.append({**variant, "sku": sku})

        images = sorted(enumerate(raw.get("images") or []), key=_image_order)
        item.images = [{**image, "sortOrder": order} for order, (_, image) in enumerate(images)]
    return prepared


def assign_derived_fields(
    results: list[ValidationResult],
    decision: Proceed,
    state: DerivationState,
    options: DerivationOptions,
) -> list[PreparedCategory]:
    """Resolve every derived field for the batch, preserving batch order.

    Invalid records pass through as ``error`` entries so the executor can
    report them at their original position without touching storage.
    """
    prepared: list[PreparedCategory] = []
    provided_slugs: dict[str, int] = {}
    replaced_ids: set[uuid.UUID] = set()

    for result in results:
        if not result.valid:
            prepared.append(
                PreparedCategory(index=result.index, data=result.data, action="error", errors=list(result.errors))
            )
            continue

        data = result.data
        action = decision.action_for(result.index, options.update_existing)
        existing = decision.conflicts.get(result.index)
        if action == "replaced":
            if existing.id in replaced_ids:
                # an earlier record already replaces this category
                action, existing = "created", None
            else:
                replaced_ids.add(existing.id)
        item = PreparedCategory(index=result.index, data=data, action=action, existing=existing)
        prepared.append(item)

        slug = data.get("slug")
        if action != "skipped" and slug:
            first = provided_slugs.setdefault(slug, result.index)
            if first != result.index:
                item.errors.append(f'Slug "{slug}" is already used by category #{first + 1} in this batch')
            else:
                state.category_slugs[slug] = None
        if action != "skipped" and not slug and not options.generate_slugs:
            item.errors.append("Slug is required when generateSlugs is disabled")

    for item in prepared:
        if item.action == "error":
            continue
        if item.errors:
            item.action = "error"
            continue

        data = item.data
        if item.action != "skipped":
            slug = data.get("slug")
            if not slug:
                slug = claim(
                    _category_slug_base(data),
                    state.category_slugs,
                    _released(state.category_slugs, item.existing),
                    settings.CATEGORY_SLUG_MAX_LENGTH,
                )
            sort_order = data.get("sortOrder")
            if sort_order is None:
                if options.generate_sort_order:
                    state.last_sort_order += 1
                    sort_order = state.last_sort_order
                else:
                    sort_order = 0
            item.values = {
                "name": data["name"],
                "slug": slug,
                "description": data.get("description") or None,
                "image": data.get("image") or None,
                "is_active": data["isActive"] if data.get("isActive") is not None else True,
                "sort_order": sort_order,
            }

        if options.import_products:
            replaced = item.existing if item.action == "replaced" else None
            item.products = _prepare_products(data, state, replaced)

    logger.info(
        "assign_derived_fields: %d records prepared, last sort order %d",
        len(prepared), state.last_sort_order,
    )
    return prepared

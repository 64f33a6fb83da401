"""Shared fixtures: an in-memory catalog gateway and a disabled rate limiter."""
import copy
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable

import pytest

from app.core.limiter import limiter
from app.services.catalog_gateway import CatalogGatewayError, ExistingCategory

MUTATIONS = (
    "create_category", "update_category", "delete_category_cascade",
    "create_product", "create_variant", "create_image",
)


def _matches(value: str, bases: set[str]) -> bool:
    return value in bases or any(value.startswith(f"{b}-") for b in bases)


class InMemoryCatalogGateway:
    """CatalogGateway over plain dicts.

    Records every call in ``calls`` as ``(method, args)`` and enforces the same
    unique keys as the database (category slug, product sku/slug, variant sku).
    ``savepoint()`` snapshots the tables and restores them when the block raises.
    """

    def __init__(self):
        self.categories: dict[uuid.UUID, dict[str, Any]] = {}
        self.products: dict[uuid.UUID, dict[str, Any]] = {}
        self.variants: dict[uuid.UUID, dict[str, Any]] = {}
        self.images: dict[uuid.UUID, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.commits = 0
        self.fail_product: Callable[[dict], bool] | None = None
        self.fail_variant: Callable[[dict], bool] | None = None
        self.fail_category: Callable[[dict], bool] | None = None

    # ── Seeding (not recorded) ──

    def seed_category(self, name: str, slug: str, sort_order: int = 0, is_active: bool = True) -> uuid.UUID:
        cid = uuid.uuid4()
        self.categories[cid] = {
            "name": name, "slug": slug, "description": None, "image": None,
            "is_active": is_active, "sort_order": sort_order,
        }
        return cid

    def seed_product(self, category_id: uuid.UUID, name: str, sku: str, slug: str, variant_skus=()) -> uuid.UUID:
        pid = uuid.uuid4()
        self.products[pid] = {
            "category_id": category_id, "name": name, "sku": sku, "slug": slug,
            "description": name, "price": 1, "is_active": True,
        }
        for vsku in variant_skus:
            self.variants[uuid.uuid4()] = {"product_id": pid, "sku": vsku, "stock": 0}
        return pid

    # ── Inspection ──

    @property
    def mutations(self) -> list[str]:
        return [name for name, _ in self.calls if name in MUTATIONS]

    def products_in(self, category_id: uuid.UUID) -> list[dict[str, Any]]:
        return [p for p in self.products.values() if p["category_id"] == category_id]

    def category_by_slug(self, slug: str) -> tuple[uuid.UUID, dict[str, Any]] | None:
        for cid, category in self.categories.items():
            if category["slug"] == slug:
                return cid, category
        return None

    # ── Reads ──

    async def find_existing_by_slug_or_name(self, slugs, names):
        self.calls.append(("find_existing_by_slug_or_name", (list(slugs), list(names))))
        slugs = set(slugs)
        lowered = {n.lower() for n in names}
        return [
            ExistingCategory(id=cid, name=c["name"], slug=c["slug"])
            for cid, c in self.categories.items()
            if c["slug"] in slugs or c["name"].lower() in lowered
        ]

    async def max_category_sort_order(self) -> int:
        self.calls.append(("max_category_sort_order", ()))
        return max((c["sort_order"] for c in self.categories.values()), default=0)

    async def taken_category_slugs(self, bases):
        bases = set(bases)
        return {c["slug"]: cid for cid, c in self.categories.items() if _matches(c["slug"], bases)}

    async def taken_product_slugs(self, bases):
        bases = set(bases)
        return {p["slug"]: p["category_id"] for p in self.products.values() if _matches(p["slug"], bases)}

    async def taken_product_skus(self, bases):
        bases = set(bases)
        return {p["sku"]: p["category_id"] for p in self.products.values() if _matches(p["sku"], bases)}

    async def taken_variant_skus(self, bases):
        bases = set(bases)
        return {
            v["sku"]: self.products[v["product_id"]]["category_id"]
            for v in self.variants.values()
            if _matches(v["sku"], bases)
        }

    # ── Writes ──

    async def create_category(self, values):
        self.calls.append(("create_category", (values,)))
        if self.fail_category and self.fail_category(values):
            raise RuntimeError(f"storage refused category {values['name']!r}")
        if any(c["slug"] == values["slug"] for c in self.categories.values()):
            raise CatalogGatewayError(f"duplicate category slug {values['slug']!r}")
        cid = uuid.uuid4()
        self.categories[cid] = dict(values)
        return cid

    async def update_category(self, category_id, values):
        self.calls.append(("update_category", (category_id, values)))
        if category_id not in self.categories:
            raise CatalogGatewayError(f"Category {category_id} no longer exists")
        self.categories[category_id].update(values)

    async def delete_category_cascade(self, category_id):
        self.calls.append(("delete_category_cascade", (category_id,)))
        if category_id not in self.categories:
            raise CatalogGatewayError(f"Category {category_id} no longer exists")
        product_ids = {pid for pid, p in self.products.items() if p["category_id"] == category_id}
        self.images = {k: v for k, v in self.images.items() if v["product_id"] not in product_ids}
        self.variants = {k: v for k, v in self.variants.items() if v["product_id"] not in product_ids}
        for pid in product_ids:
            del self.products[pid]
        del self.categories[category_id]
        return len(product_ids)

    async def create_product(self, category_id, values):
        self.calls.append(("create_product", (category_id, values)))
        if self.fail_product and self.fail_product(values):
            raise RuntimeError(f"storage refused product {values['name']!r}")
        for p in self.products.values():
            if p["sku"] == values["sku"] or p["slug"] == values["slug"]:
                raise CatalogGatewayError(f"duplicate product key {values['sku']!r}/{values['slug']!r}")
        pid = uuid.uuid4()
        self.products[pid] = {**values, "category_id": category_id}
        return pid

    async def create_variant(self, product_id, values):
        self.calls.append(("create_variant", (product_id, values)))
        if self.fail_variant and self.fail_variant(values):
            raise RuntimeError(f"storage refused variant {values['sku']!r}")
        if any(v["sku"] == values["sku"] for v in self.variants.values()):
            raise CatalogGatewayError(f"duplicate variant sku {values['sku']!r}")
        vid = uuid.uuid4()
        self.variants[vid] = {**values, "product_id": product_id}
        return vid

    async def create_image(self, product_id, values):
        self.calls.append(("create_image", (product_id, values)))
        iid = uuid.uuid4()
        self.images[iid] = {**values, "product_id": product_id}
        return iid

    @asynccontextmanager
    async def savepoint(self):
        snapshot = copy.deepcopy((self.categories, self.products, self.variants, self.images))
        try:
            yield
        except Exception:
            self.categories, self.products, self.variants, self.images = snapshot
            raise

    async def commit(self):
        self.commits += 1

    async def export_categories(self, category_ids, include_products):
        exported = []
        for cid in category_ids:
            c = self.categories.get(cid)
            if c is None or not c["is_active"]:
                continue
            item = {
                "id": str(cid), "name": c["name"], "slug": c["slug"],
                "description": c["description"], "image": c["image"],
                "isActive": c["is_active"], "sortOrder": c["sort_order"],
            }
            if include_products:
                item["products"] = [
                    {"name": p["name"], "sku": p["sku"], "slug": p["slug"]}
                    for p in self.products_in(cid) if p.get("is_active", True)
                ]
            exported.append(item)
        return sorted(exported, key=lambda e: (e["sortOrder"], e["name"]))


@pytest.fixture
def gateway() -> InMemoryCatalogGateway:
    return InMemoryCatalogGateway()


@pytest.fixture(autouse=True)
def _no_rate_limit():
    limiter.enabled = False
    yield
    limiter.enabled = True

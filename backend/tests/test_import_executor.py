"""Tests for the import executor: per-record outcomes and nested isolation."""
import uuid

import pytest

from app.services.conflict_scan import ExistingPolicy, scan
from app.services.derived_fields import DerivationOptions, assign_derived_fields, load_derivation_state
from app.services.import_executor import (
    Created,
    Failed,
    ImportExecutor,
    ImportResult,
    ProductTally,
    Replaced,
    Skipped,
)
from app.services.import_validation import validate_categories


# ─── Helpers ──────────────────────────────────────────────────────────────────

async def _execute(gateway, records, policy=ExistingPolicy.skip, import_products=True, update_existing=False):
    opts = DerivationOptions(import_products=import_products, update_existing=update_existing)
    results = validate_categories(records, check_products=False)
    valid = [r for r in results if r.valid]
    decision = await scan(valid, policy, gateway)
    state = await load_derivation_state(gateway, valid, decision, opts)
    prepared = assign_derived_fields(results, decision, state, opts)
    return await ImportExecutor(gateway, import_products=import_products).execute(prepared)


def _product(name, **extra):
    return {"name": name, "description": f"{name} description", "price": 10, **extra}


# ─── Result mapping ───────────────────────────────────────────────────────────

def test_failed_outcome_maps_to_error_result():
    result = ImportResult.from_outcome(3, {"name": "x"}, Failed("boom"))
    assert result.action == "error"
    assert result.success is False
    assert result.category_id is None
    assert result.message == "boom"


def test_every_other_outcome_is_success():
    cid = uuid.uuid4()
    tally = ProductTally(imported=2, errors=1)
    created = ImportResult.from_outcome(0, {}, Created(category_id=cid, products=tally))
    skipped = ImportResult.from_outcome(0, {}, Skipped(category_id=cid, products=tally))
    replaced = ImportResult.from_outcome(0, {}, Replaced(category_id=cid, replaced_id=uuid.uuid4(), products=tally))

    assert [r.action for r in (created, skipped, replaced)] == ["created", "skipped", "replaced"]
    assert all(r.success for r in (created, skipped, replaced))
    assert created.products_imported == 2
    assert created.products_errors == 1
    assert "2 products imported, 1 failed" in created.message


# ─── Categories ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_created_category_is_persisted_with_derived_fields(gateway):
    results = await _execute(gateway, [{"name": "Electronics", "description": "Gadgets"}])

    assert results[0].action == "created"
    stored = gateway.categories[results[0].category_id]
    assert stored["slug"] == "electronics"
    assert stored["sort_order"] == 1
    assert stored["is_active"] is True
    assert stored["description"] == "Gadgets"


@pytest.mark.asyncio
async def test_results_preserve_batch_order_and_indexes(gateway):
    results = await _execute(gateway, [{"name": "A"}, {"slug": "no-name"}, {"name": "C"}])
    assert [r.index for r in results] == [0, 1, 2]
    assert [r.action for r in results] == ["created", "error", "created"]
    assert "Name is required" in results[1].message


@pytest.mark.asyncio
async def test_storage_failure_on_one_category_does_not_stop_the_batch(gateway):
    gateway.fail_category = lambda values: values["name"] == "B"
    results = await _execute(gateway, [{"name": "A"}, {"name": "B"}, {"name": "C"}])

    assert [r.action for r in results] == ["created", "error", "created"]
    assert results[1].message.startswith("Failed to create category")
    assert {c["name"] for c in gateway.categories.values()} == {"A", "C"}


@pytest.mark.asyncio
async def test_skipped_category_imports_products_into_existing(gateway):
    existing_id = gateway.seed_category("Electronics", "electronics")
    results = await _execute(
        gateway,
        [{"name": "Gadgets", "slug": "electronics", "products": [_product("Cable")]}],
    )

    assert results[0].action == "skipped"
    assert results[0].category_id == existing_id
    assert results[0].products_imported == 1
    assert gateway.mutations == ["create_product"]
    assert gateway.products_in(existing_id)[0]["name"] == "Cable"


@pytest.mark.asyncio
async def test_update_existing_updates_in_place(gateway):
    existing_id = gateway.seed_category("Books", "books", sort_order=3)
    results = await _execute(gateway, [{"name": "Books", "description": "Paper"}], update_existing=True)

    assert results[0].action == "updated"
    assert results[0].category_id == existing_id
    assert gateway.categories[existing_id]["description"] == "Paper"
    assert gateway.categories[existing_id]["slug"] == "books"
    assert "create_category" not in gateway.mutations


@pytest.mark.asyncio
async def test_replace_deletes_then_recreates_with_submitted_products(gateway):
    """The old category and its 2 products go; the new one holds only what was submitted."""
    old_id = gateway.seed_category("Shoes", "shoes")
    gateway.seed_product(old_id, "Sneaker", sku="SNEAKER", slug="sneaker", variant_skus=["SNEAKER-M"])
    gateway.seed_product(old_id, "Boot", sku="BOOT", slug="boot")

    results = await _execute(
        gateway,
        [{"name": "Shoes", "products": [_product("Sneaker", variants=[{"size": "M"}]), _product("Sandal"), _product("Loafer")]}],
        policy=ExistingPolicy.replace,
    )

    result = results[0]
    assert result.action == "replaced"
    assert result.category_id != old_id
    assert str(old_id) in result.message
    assert old_id not in gateway.categories
    assert gateway.mutations.index("delete_category_cascade") < gateway.mutations.index("create_category")
    assert len(gateway.products_in(result.category_id)) == 3
    assert len(gateway.products) == 3
    assert result.products_imported == 3
    assert gateway.categories[result.category_id]["slug"] == "shoes"
    assert {p["sku"] for p in gateway.products.values()} == {"SNEAKER", "SANDAL", "LOAFER"}


@pytest.mark.asyncio
async def test_second_record_matching_a_replaced_category_is_created_alongside(gateway):
    old_id = gateway.seed_category("Electronics", "electronics")

    results = await _execute(
        gateway,
        [{"name": "Electronics"}, {"name": "electronics"}],
        policy=ExistingPolicy.replace,
    )

    assert [r.action for r in results] == ["replaced", "created"]
    assert all(r.success for r in results)
    assert gateway.mutations.count("delete_category_cascade") == 1
    assert old_id not in gateway.categories
    assert gateway.categories[results[0].category_id]["slug"] == "electronics"
    assert gateway.categories[results[1].category_id]["slug"] == "electronics-2"


# ─── Nested products ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_invalid_nested_product_is_isolated(gateway):
    """3rd of 5 products fails: category still created, 4 imported, 1 error."""
    products = [_product(f"P{i}") for i in range(1, 6)]
    products[2] = {"name": "P3", "description": "no price"}
    results = await _execute(gateway, [{"name": "Misc", "products": products}])

    assert results[0].action == "created"
    assert results[0].success
    assert results[0].products_imported == 4
    assert results[0].products_errors == 1
    assert len(gateway.products_in(results[0].category_id)) == 4


@pytest.mark.asyncio
async def test_storage_failure_on_product_is_isolated(gateway):
    gateway.fail_product = lambda values: values["name"] == "P2"
    results = await _execute(gateway, [{"name": "Misc", "products": [_product("P1"), _product("P2"), _product("P3")]}])

    assert results[0].products_imported == 2
    assert results[0].products_errors == 1
    assert {p["name"] for p in gateway.products.values()} == {"P1", "P3"}


@pytest.mark.asyncio
async def test_product_with_failing_variant_is_rolled_back_whole(gateway):
    gateway.fail_variant = lambda values: values["sku"].endswith("-L")
    results = await _execute(gateway, [{
        "name": "Shirts",
        "products": [
            _product("Tee", variants=[{"size": "M"}, {"size": "L"}], images=[{"url": "/tee.jpg"}]),
            _product("Polo", variants=[{"size": "S"}]),
        ],
    }])

    assert results[0].products_imported == 1
    assert results[0].products_errors == 1
    assert [p["name"] for p in gateway.products.values()] == ["Polo"]
    assert [v["sku"] for v in gateway.variants.values()] == ["POLO-S"]
    assert gateway.images == {}


@pytest.mark.asyncio
async def test_payload_category_id_is_ignored(gateway):
    results = await _execute(gateway, [{"name": "Misc", "products": [_product("P1", categoryId="someone-else")]}])
    product = next(iter(gateway.products.values()))
    assert product["category_id"] == results[0].category_id


@pytest.mark.asyncio
async def test_product_fields_are_mapped_to_columns(gateway):
    await _execute(gateway, [{"name": "Misc", "products": [_product(
        "Lamp",
        costPrice="4.50",
        tags=["home", "home", "light"],
        isFeatured=True,
        saleEndDate="2026-12-31T00:00:00Z",
        variants=[{"color": "Warm White", "stock": 3, "price": 12}],
        images=[{"url": " /lamp.jpg ", "isPrimary": True}],
    )]}])

    product = next(iter(gateway.products.values()))
    assert product["sku"] == "LAMP"
    assert str(product["cost_price"]) == "4.50"
    assert product["tags"] == ["home", "light"]
    assert product["is_featured"] is True
    assert product["sale_end_date"].year == 2026
    variant = next(iter(gateway.variants.values()))
    assert variant["sku"] == "LAMP-WARM-WHITE"
    assert variant["stock"] == 3
    image = next(iter(gateway.images.values()))
    assert image["url"] == "/lamp.jpg"
    assert image["is_primary"] is True
    assert image["sort_order"] == 0


@pytest.mark.asyncio
async def test_products_ignored_when_import_disabled(gateway):
    results = await _execute(gateway, [{"name": "Misc", "products": [_product("P1")]}], import_products=False)
    assert results[0].action == "created"
    assert results[0].products_imported == 0
    assert gateway.products == {}

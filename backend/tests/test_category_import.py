"""End-to-end tests for the import pipeline against the in-memory gateway."""
from decimal import Decimal

import pytest

from app.services.category_import import (
    ABORT_CONFLICT,
    ABORT_VALIDATION,
    ImportOptions,
    run_import,
    run_validation,
)
from app.services.conflict_scan import ExistingPolicy


# ─── Options ──────────────────────────────────────────────────────────────────

def test_update_existing_requires_skip_policy():
    with pytest.raises(ValueError, match="updateExisting"):
        ImportOptions(existing_policy=ExistingPolicy.replace, update_existing=True)
    with pytest.raises(ValueError):
        ImportOptions(existing_policy=ExistingPolicy.error, update_existing=True)
    assert ImportOptions(existing_policy=ExistingPolicy.skip, update_existing=True).update_existing


# ─── Batches ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_single_new_category_with_defaults(gateway):
    """{name: Electronics} → created, slug electronics, sortOrder = max + 1."""
    gateway.seed_category("Books", "books", sort_order=4)

    report = await run_import([{"name": "Electronics"}], ImportOptions(), gateway)

    assert report.success
    assert report.summary.status == "completed"
    result = report.results[0]
    assert result.action == "created"
    stored = gateway.categories[result.category_id]
    assert stored["slug"] == "electronics"
    assert stored["sort_order"] == 5
    assert report.message.startswith("Import completed successfully")


@pytest.mark.asyncio
async def test_colliding_slug_under_error_policy_aborts(gateway):
    gateway.seed_category("Electronics", "electronics")

    report = await run_import(
        [{"name": "Consumer Electronics", "slug": "electronics"}], ImportOptions(), gateway
    )

    assert report.success is False
    assert report.aborted
    assert report.abort_kind == ABORT_CONFLICT
    assert report.summary.status == "aborted"
    assert report.results == []
    assert "electronics" in report.message
    assert len(report.abort_reasons) == 1


@pytest.mark.asyncio
async def test_abort_makes_zero_mutations(gateway):
    """One conflicting record among several stops the batch before any write."""
    gateway.seed_category("Toys", "toys")
    records = [
        {"name": "Games", "products": [{"name": "Chess", "description": "Board game", "price": 20}]},
        {"name": "toys"},
        {"name": "Puzzles"},
    ]

    report = await run_import(records, ImportOptions(existing_policy=ExistingPolicy.error), gateway)

    assert report.summary.status == "aborted"
    assert report.summary.total == 3
    assert report.summary.succeeded == 0
    assert gateway.mutations == []
    assert [name for name, _ in gateway.calls] == ["find_existing_by_slug_or_name"]
    assert len(gateway.categories) == 1


@pytest.mark.asyncio
async def test_skip_policy_imports_product_into_existing_category(gateway):
    existing_id = gateway.seed_category("Electronics", "electronics")

    report = await run_import(
        [{
            "name": "Electronics",
            "slug": "electronics",
            "products": [{"name": "Cable", "description": "USB-C", "price": 9.99}],
        }],
        ImportOptions(existing_policy=ExistingPolicy.skip, import_products=True),
        gateway,
    )

    result = report.results[0]
    assert result.action == "skipped"
    assert result.category_id == existing_id
    assert result.products_imported == 1
    assert report.summary.status == "completed"
    assert report.summary.counts["skipped"] == 1
    assert gateway.products_in(existing_id)[0]["price"] == Decimal("9.99")


@pytest.mark.asyncio
async def test_resubmission_continues_slug_numbering(gateway):
    first = await run_import(
        [{"name": "Home & Garden"}, {"name": "Home & Garden"}], ImportOptions(), gateway
    )
    assert [gateway.categories[r.category_id]["slug"] for r in first.results] == ["home-garden", "home-garden-2"]

    second = await run_import([{"name": "Home-Garden"}], ImportOptions(), gateway)
    assert gateway.categories[second.results[0].category_id]["slug"] == "home-garden-3"


# ─── requireAllValid ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_require_all_valid_stops_before_any_storage_access(gateway):
    report = await run_import(
        [{"name": "Toys"}, {"name": "Games", "isActive": "yes"}],
        ImportOptions(require_all_valid=True),
        gateway,
    )

    assert report.aborted
    assert report.abort_kind == ABORT_VALIDATION
    assert report.abort_reasons == ["#2: isActive must be a boolean value"]
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_invalid_records_do_not_block_the_rest(gateway):
    report = await run_import([{"name": "Toys"}, {"name": ""}], ImportOptions(), gateway)

    assert report.summary.status == "completed-with-errors"
    assert report.summary.counts["created"] == 1
    assert report.summary.counts["error"] == 1
    assert report.summary.succeeded == 1
    assert report.success
    assert "1 errors" in report.message


@pytest.mark.asyncio
async def test_all_records_failing_is_not_a_success(gateway):
    report = await run_import([{"name": ""}, "junk"], ImportOptions(), gateway)

    assert report.summary.status == "completed-with-errors"
    assert report.summary.succeeded == 0
    assert report.success is False
    assert report.message == "Import failed with 2 errors."


@pytest.mark.asyncio
async def test_empty_batch_completes(gateway):
    report = await run_import([], ImportOptions(), gateway)
    assert report.summary.status == "completed"
    assert report.summary.total == 0
    assert report.success
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_nested_product_errors_counted_in_summary(gateway):
    products = [
        {"name": "P1", "description": "d", "price": 1},
        {"name": "P2", "description": "d"},
        {"name": "P3", "description": "d", "price": 3},
    ]
    report = await run_import([{"name": "Misc", "products": products}], ImportOptions(), gateway)

    assert report.summary.status == "completed"
    assert report.summary.products_imported == 2
    assert report.summary.products_errors == 1
    assert "1 products failed" in report.message


@pytest.mark.asyncio
async def test_replace_policy_reports_replaced(gateway):
    old_id = gateway.seed_category("Shoes", "shoes")
    gateway.seed_product(old_id, "Boot", sku="BOOT", slug="boot")
    gateway.seed_product(old_id, "Clog", sku="CLOG", slug="clog")

    report = await run_import(
        [{"name": "Shoes", "products": [{"name": "Sandal", "description": "Summer", "price": 30}]}],
        ImportOptions(existing_policy=ExistingPolicy.replace),
        gateway,
    )

    assert report.summary.counts["replaced"] == 1
    assert len(gateway.products) == 1


# ─── Validate ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validation_warns_about_existing_categories(gateway):
    existing_id = gateway.seed_category("Toys", "toys")
    results = await run_validation([{"name": "TOYS"}, {"name": "Games", "slug": "toys"}], gateway)

    assert all(r.valid for r in results)
    assert f'Category with name "TOYS" already exists (ID: {existing_id})' in results[0].warnings
    assert f'Category with slug "toys" already exists (ID: {existing_id})' in results[1].warnings
    assert gateway.mutations == []


@pytest.mark.asyncio
async def test_validation_is_repeatable(gateway):
    gateway.seed_category("Toys", "toys")
    records = [{"name": "Toys", "products": [{"name": "Ball"}]}, {"name": "Kites", "slug": "Kites!"}]

    first = await run_validation(records, gateway)
    second = await run_validation(records, gateway)

    assert first == second
    assert not first[0].valid


@pytest.mark.asyncio
async def test_validation_without_gateway_is_pure():
    results = await run_validation([{"name": "Toys"}])
    assert results[0].valid
    assert results[0].warnings == []

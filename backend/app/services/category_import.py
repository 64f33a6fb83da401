"""Bulk category import pipeline.

    validate → [requireAllValid gate] → conflict scan → [abort under policy=error]
             → derive slugs/sort order/SKUs → execute in batch order → summarize

Nothing is written before the conflict scan has decided; an aborted batch
leaves storage untouched.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from app.services.catalog_gateway import CatalogGateway
from app.services.conflict_scan import Abort, ExistingPolicy, scan
from app.services.derived_fields import DerivationOptions, assign_derived_fields, load_derivation_state
from app.services.import_executor import ImportExecutor, ImportResult
from app.services.import_summary import (
    STATUS_ABORTED,
    STATUS_COMPLETED,
    BatchSummary,
    summarize,
)
from app.services.import_validation import ValidationResult, validate_categories

logger = logging.getLogger(__name__)

ABORT_CONFLICT = "conflict"
ABORT_VALIDATION = "validation"


@dataclass(frozen=True)
class ImportOptions:
    existing_policy: ExistingPolicy = ExistingPolicy.error
    update_existing: bool = False
    generate_slugs: bool = True
    generate_sort_order: bool = True
    import_products: bool = True
    require_all_valid: bool = False

    def __post_init__(self):
        if self.update_existing and self.existing_policy is not ExistingPolicy.skip:
            raise ValueError("updateExisting can only be combined with existingCategories='skip'")

    def derivation(self) -> DerivationOptions:
        return DerivationOptions(
            generate_slugs=self.generate_slugs,
            generate_sort_order=self.generate_sort_order,
            import_products=self.import_products,
            update_existing=self.update_existing,
        )


@dataclass(frozen=True)
class ImportReport:
    results: list[ImportResult]
    summary: BatchSummary
    message: str
    abort_kind: str | None = None
    abort_reasons: list[str] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.summary.status == STATUS_ABORTED

    @property
    def success(self) -> bool:
        if self.aborted:
            return False
        return self.summary.total == 0 or self.summary.succeeded > 0


# ─── Validate ───

async def annotate_existing(results: list[ValidationResult], gateway: CatalogGateway) -> None:
    """Add informational warnings for records that match stored categories. Read-only."""
    candidates = [r for r in results if isinstance(r.data, dict) and isinstance(r.data.get("name"), str)]
    if not candidates:
        return
    slugs = [r.data["slug"] for r in candidates if isinstance(r.data.get("slug"), str) and r.data["slug"]]
    names = [r.data["name"] for r in candidates if r.data["name"]]
    existing = await gateway.find_existing_by_slug_or_name(slugs, names)

    by_name = {}
    for e in existing:
        by_name.setdefault(e.name.lower(), e)
    by_slug = {e.slug: e for e in existing}

    for result in candidates:
        match = by_name.get(result.data["name"].lower())
        if match is not None:
            result.warnings.append(f'Category with name "{result.data["name"]}" already exists (ID: {match.id})')
        slug = result.data.get("slug")
        if isinstance(slug, str) and slug in by_slug:
            result.warnings.append(f'Category with slug "{slug}" already exists (ID: {by_slug[slug].id})')


async def run_validation(records: list[Any], gateway: CatalogGateway | None = None) -> list[ValidationResult]:
    results = validate_categories(records, check_products=True)
    if gateway is not None:
        await annotate_existing(results, gateway)
    return results


# ─── Execute ───

def _completion_message(summary: BatchSummary) -> str:
    c = summary.counts
    detail = (
        f"{c['created']} created, {c['updated']} updated, {c['skipped']} skipped, "
        f"{c['replaced']} replaced. {summary.products_imported} products imported"
    )
    if summary.products_errors:
        detail += f", {summary.products_errors} products failed"
    if summary.status == STATUS_COMPLETED:
        return f"Import completed successfully. {detail}."
    if summary.succeeded == 0:
        return f"Import failed with {c['error']} errors."
    return f"Import completed with {c['error']} errors. {detail}."


async def run_import(records: list[Any], options: ImportOptions, gateway: CatalogGateway) -> ImportReport:
    """Run the whole pipeline for one submitted batch."""
    logger.info(
        "run_import: %d categories, policy=%s, update_existing=%s, import_products=%s",
        len(records), options.existing_policy.value, options.update_existing, options.import_products,
    )

    validated = validate_categories(records, check_products=False)
    invalid = [r for r in validated if not r.valid]
    if invalid and options.require_all_valid:
        reasons = [f"#{r.index + 1}: {'; '.join(r.errors)}" for r in invalid]
        message = (
            f"Import stopped: {len(invalid)} of {len(records)} categories failed validation "
            f"({'; '.join(reasons)}). No changes were made."
        )
        logger.warning("run_import: aborted, %d invalid records", len(invalid))
        return ImportReport(
            results=[],
            summary=summarize([], aborted=True, total=len(records)),
            message=message,
            abort_kind=ABORT_VALIDATION,
            abort_reasons=reasons,
        )

    valid = [r for r in validated if r.valid]
    decision = await scan(valid, options.existing_policy, gateway)
    if isinstance(decision, Abort):
        return ImportReport(
            results=[],
            summary=summarize([], aborted=True, total=len(records)),
            message=decision.message,
            abort_kind=ABORT_CONFLICT,
            abort_reasons=decision.reasons,
        )

    derivation = options.derivation()
    state = await load_derivation_state(gateway, valid, decision, derivation)
    prepared = assign_derived_fields(validated, decision, state, derivation)

    executor = ImportExecutor(gateway, import_products=options.import_products)
    results = await executor.execute(prepared)

    summary = summarize(results)
    message = _completion_message(summary)
    logger.info("run_import: %s. %s", summary.status, message)
    return ImportReport(results=results, summary=summary, message=message)

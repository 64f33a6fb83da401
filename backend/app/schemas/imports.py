"""Pydantic schemas for the bulk category import endpoints.

Attributes are snake_case; the wire format is camelCase (``validationResults``,
``existingCategories``, ``productsImported``, ...). Category entries are taken
as raw JSON so the field validator can report per-record problems instead of
the whole request being rejected.
"""
import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from app.services.category_import import ImportOptions
from app.services.conflict_scan import ExistingPolicy


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Validate ───

class ValidateRequest(CamelModel):
    categories: list[Any]


class ValidationResultOut(CamelModel):
    index: int
    valid: bool
    errors: list[str]
    warnings: list[str]
    data: Any = None


class ValidateSummary(CamelModel):
    total: int
    valid: int
    invalid: int
    warnings: int


class ValidateResponse(CamelModel):
    validation_results: list[ValidationResultOut]
    summary: ValidateSummary


# ─── Execute ───

class ImportOptionsIn(CamelModel):
    skip_duplicates: bool = False
    update_existing: bool = False
    generate_slugs: bool = True
    generate_sort_order: bool = True
    import_products: bool = True
    existing_categories: Literal["error", "skip", "replace"] | None = None
    require_all_valid: bool = False

    @property
    def policy(self) -> ExistingPolicy:
        """Explicit policy wins; otherwise the legacy skipDuplicates flag picks skip or error."""
        if self.existing_categories is not None:
            return ExistingPolicy(self.existing_categories)
        return ExistingPolicy.skip if self.skip_duplicates else ExistingPolicy.error

    @model_validator(mode="after")
    def check_update_existing(self) -> "ImportOptionsIn":
        if self.update_existing and self.policy is not ExistingPolicy.skip:
            raise ValueError("updateExisting can only be combined with existingCategories='skip'")
        return self

    def to_options(self) -> ImportOptions:
        return ImportOptions(
            existing_policy=self.policy,
            update_existing=self.update_existing,
            generate_slugs=self.generate_slugs,
            generate_sort_order=self.generate_sort_order,
            import_products=self.import_products,
            require_all_valid=self.require_all_valid,
        )


class ExecuteRequest(CamelModel):
    categories: list[Any]
    options: ImportOptionsIn = ImportOptionsIn()


class ImportResultOut(CamelModel):
    index: int
    success: bool
    action: Literal["created", "updated", "skipped", "replaced", "error", "unknown"]
    id: uuid.UUID | None = None
    message: str
    data: Any = None
    products_imported: int = 0
    products_errors: int = 0


class BatchSummaryOut(CamelModel):
    status: Literal["completed", "completed-with-errors", "aborted"]
    total: int
    counts: dict[str, int]
    products_imported: int
    products_errors: int


class ExecuteResponse(CamelModel):
    success: bool
    results: list[ImportResultOut]
    summary: BatchSummaryOut
    message: str
    reasons: list[str] = []


# ─── Export ───

class ExportRequest(CamelModel):
    category_ids: list[uuid.UUID]
    include_products: bool = False


class ExportResponse(CamelModel):
    success: bool
    categories: list[dict[str, Any]]
    total_categories: int
    includes_products: bool

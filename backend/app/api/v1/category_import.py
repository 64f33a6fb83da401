"""Bulk category import endpoints: validate, execute, template and export."""
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_catalog_gateway, require_role
from app.core.limiter import limiter
from app.db.session import get_session
from app.models.user import IMPORT_ROLES
from app.schemas.imports import (
    BatchSummaryOut,
    ExecuteRequest,
    ExecuteResponse,
    ExportRequest,
    ExportResponse,
    ImportResultOut,
    ValidateRequest,
    ValidateResponse,
    ValidateSummary,
    ValidationResultOut,
)
from app.services import audit as audit_svc
from app.services.catalog_gateway import CatalogGateway
from app.services.category_import import ABORT_CONFLICT, ImportReport, run_import, run_validation
from app.services.import_summary import STATUS_COMPLETED
from app.services.import_template import FIELD_DOCS, IMPORT_TEMPLATE, TEMPLATE_FILENAME

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Helpers ───

def _check_batch_size(categories: list[Any]) -> None:
    if len(categories) > settings.IMPORT_MAX_CATEGORIES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=(
                f"A batch may contain at most {settings.IMPORT_MAX_CATEGORIES} categories "
                f"({len(categories)} submitted)."
            ),
        )


def _status_code(report: ImportReport) -> int:
    if report.aborted:
        if report.abort_kind == ABORT_CONFLICT:
            return status.HTTP_409_CONFLICT
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if report.summary.status == STATUS_COMPLETED:
        return status.HTTP_200_OK
    if report.summary.succeeded > 0:
        return status.HTTP_207_MULTI_STATUS
    return status.HTTP_400_BAD_REQUEST


def _execute_response(report: ImportReport) -> ExecuteResponse:
    summary = report.summary
    return ExecuteResponse(
        success=report.success,
        results=[
            ImportResultOut(
                index=r.index,
                success=r.success,
                action=r.action,
                id=r.category_id,
                message=r.message,
                data=r.data,
                products_imported=r.products_imported,
                products_errors=r.products_errors,
            )
            for r in report.results
        ],
        summary=BatchSummaryOut(
            status=summary.status,
            total=summary.total,
            counts=dict(summary.counts),
            products_imported=summary.products_imported,
            products_errors=summary.products_errors,
        ),
        message=report.message,
        reasons=report.abort_reasons,
    )


# ─── POST /import/validate ───

@router.post(
    "/import/validate",
    response_model=ValidateResponse,
    summary="Validate a category import batch without writing (ADMIN, CATALOG_MANAGER)",
)
@limiter.limit(settings.IMPORT_RATE_LIMIT)
async def validate_import(
    request: Request,
    body: ValidateRequest,
    gateway: Annotated[CatalogGateway, Depends(get_catalog_gateway)],
    current_user: Annotated[object, Depends(require_role(*IMPORT_ROLES))],
):
    _check_batch_size(body.categories)
    results = await run_validation(body.categories, gateway)

    valid = sum(1 for r in results if r.valid)
    return ValidateResponse(
        validation_results=[
            ValidationResultOut(index=r.index, valid=r.valid, errors=r.errors, warnings=r.warnings, data=r.data)
            for r in results
        ],
        summary=ValidateSummary(
            total=len(results),
            valid=valid,
            invalid=len(results) - valid,
            warnings=sum(len(r.warnings) for r in results),
        ),
    )


# ─── POST /import/execute ───

@router.post(
    "/import/execute",
    response_model=ExecuteResponse,
    summary="Import a batch of categories with nested products (ADMIN, CATALOG_MANAGER)",
    responses={
        207: {"model": ExecuteResponse, "description": "Some records failed"},
        400: {"model": ExecuteResponse, "description": "Every record failed"},
        409: {"model": ExecuteResponse, "description": "Stopped: categories already exist"},
        422: {"model": ExecuteResponse, "description": "Stopped: invalid records with requireAllValid"},
    },
)
@limiter.limit(settings.IMPORT_RATE_LIMIT)
async def execute_import(
    request: Request,
    response: Response,
    body: ExecuteRequest,
    db: Annotated[AsyncSession, Depends(get_session)],
    gateway: Annotated[CatalogGateway, Depends(get_catalog_gateway)],
    current_user: Annotated[object, Depends(require_role(*IMPORT_ROLES))],
):
    _check_batch_size(body.categories)
    report = await run_import(body.categories, body.options.to_options(), gateway)

    if not report.aborted:
        batch_summary = {
            "status": report.summary.status,
            "total": report.summary.total,
            "counts": report.summary.counts,
            "productsImported": report.summary.products_imported,
            "productsErrors": report.summary.products_errors,
            "categoryIds": [str(r.category_id) for r in report.results if r.category_id],
        }
        await audit_svc.log_async(
            db,
            action="category_import.executed",
            entity_type="category_import",
            actor_id=current_user.id,
            actor_email=current_user.email,
            after=batch_summary,
            notes=report.message,
        )
        await gateway.commit()

    response.status_code = _status_code(report)
    return _execute_response(report)


# ─── GET /import/template ───

@router.get(
    "/import/template",
    summary="Download a sample import file with field documentation (ADMIN, CATALOG_MANAGER)",
)
async def download_template(
    current_user: Annotated[object, Depends(require_role(*IMPORT_ROLES))],
):
    return JSONResponse(
        content={**IMPORT_TEMPLATE, "fieldDocs": FIELD_DOCS},
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


# ─── POST /export ───

@router.post(
    "/export",
    response_model=ExportResponse,
    summary="Export categories in the import format (ADMIN, CATALOG_MANAGER)",
)
async def export_categories(
    body: ExportRequest,
    gateway: Annotated[CatalogGateway, Depends(get_catalog_gateway)],
    current_user: Annotated[object, Depends(require_role(*IMPORT_ROLES))],
):
    if not body.category_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="categoryIds must contain at least one category id.",
        )
    categories = await gateway.export_categories(body.category_ids, body.include_products)
    logger.info("export_categories: %d requested, %d exported", len(body.category_ids), len(categories))
    return ExportResponse(
        success=True,
        categories=categories,
        total_categories=len(categories),
        includes_products=body.include_products,
    )

"""Fold per-record import results into a batch summary."""
from collections import Counter
from dataclasses import dataclass, field

from app.services.import_executor import ACTIONS, ImportResult

STATUS_COMPLETED = "completed"
STATUS_COMPLETED_WITH_ERRORS = "completed-with-errors"
STATUS_ABORTED = "aborted"


@dataclass(frozen=True)
class BatchSummary:
    status: str
    total: int = 0
    counts: dict[str, int] = field(default_factory=lambda: {a: 0 for a in ACTIONS})
    products_imported: int = 0
    products_errors: int = 0

    @property
    def succeeded(self) -> int:
        if self.status == STATUS_ABORTED:
            return 0
        return self.total - self.counts.get("error", 0)


def summarize(results: list[ImportResult], aborted: bool = False, total: int | None = None) -> BatchSummary:
    """Counts per action, product totals and the batch-level status.

    ``total`` is the submitted batch size; it differs from ``len(results)``
    only for aborted batches, which carry no results.
    """
    if aborted:
        return BatchSummary(status=STATUS_ABORTED, total=total if total is not None else 0)

    counter = Counter(r.action for r in results)
    counts = {action: counter.get(action, 0) for action in ACTIONS}
    status = STATUS_COMPLETED if all(r.success for r in results) else STATUS_COMPLETED_WITH_ERRORS
    return BatchSummary(
        status=status,
        total=len(results) if total is None else total,
        counts=counts,
        products_imported=sum(r.products_imported for r in results),
        products_errors=sum(r.products_errors for r in results),
    )

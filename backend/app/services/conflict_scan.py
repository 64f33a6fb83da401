"""Pre-flight conflict scan for category imports.

Runs once per batch, before any write. Under the ``error`` policy it is the
only place a batch can be stopped: once the scan returns ``Proceed`` the
executor always runs to completion.
"""
import enum
import logging
from dataclasses import dataclass, field

from app.services.catalog_gateway import CatalogGateway, ExistingCategory
from app.services.import_validation import ValidationResult

logger = logging.getLogger(__name__)


class ExistingPolicy(str, enum.Enum):
    error = "error"      # stop the whole batch if any category already exists
    skip = "skip"        # keep the stored category, still import nested products into it
    replace = "replace"  # delete the stored category and its products, then create fresh


@dataclass(frozen=True)
class Conflict:
    index: int
    name: str
    slug: str | None
    existing: ExistingCategory


@dataclass(frozen=True)
class Proceed:
    policy: ExistingPolicy
    conflicts: dict[int, ExistingCategory] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if self.conflicts and self.policy is ExistingPolicy.skip:
            return "partial"
        return "clear"

    def action_for(self, index: int, update_existing: bool = False) -> str:
        """Planned action for the record at ``index``; updateExisting only applies under skip."""
        if index not in self.conflicts:
            return "created"
        if self.policy is ExistingPolicy.replace:
            return "replaced"
        if update_existing and self.policy is ExistingPolicy.skip:
            return "updated"
        return "skipped"


@dataclass(frozen=True)
class Abort:
    conflicts: list[Conflict]

    @property
    def status(self) -> str:
        return "abort"

    @property
    def reasons(self) -> list[str]:
        return [
            f'#{c.index + 1} "{c.name}" matches existing category "{c.existing.name}" '
            f'(slug "{c.existing.slug}", ID: {c.existing.id})'
            for c in self.conflicts
        ]

    @property
    def message(self) -> str:
        noun = "category already exists" if len(self.conflicts) == 1 else "categories already exist"
        return (
            f"Import stopped: {len(self.conflicts)} {noun}: {'; '.join(self.reasons)}. "
            "No changes were made. Resubmit with existingCategories='skip' to keep the existing "
            "categories, or existingCategories='replace' to overwrite them."
        )


Decision = Proceed | Abort


def _match(record: dict, by_slug: dict[str, ExistingCategory], by_name: dict[str, ExistingCategory]):
    slug = record.get("slug")
    if slug and slug in by_slug:
        return by_slug[slug]
    return by_name.get(record["name"].lower())


async def scan(
    valid_records: list[ValidationResult],
    policy: ExistingPolicy,
    gateway: CatalogGateway,
) -> Decision:
    """Classify a validated batch against stored categories.

    A record conflicts when its supplied slug equals a stored slug, or its
    name equals a stored name ignoring case. Conflicts between records of
    the same batch are not conflicts; the validator reports them as warnings.
    """
    if not valid_records:
        return Proceed(policy=policy)

    slugs = [r.data["slug"] for r in valid_records if r.data.get("slug")]
    names = [r.data["name"] for r in valid_records]
    existing = await gateway.find_existing_by_slug_or_name(slugs, names)

    by_slug = {e.slug: e for e in existing}
    by_name: dict[str, ExistingCategory] = {}
    for e in existing:
        by_name.setdefault(e.name.lower(), e)

    conflicts: list[Conflict] = []
    for result in valid_records:
        match = _match(result.data, by_slug, by_name)
        if match is not None:
            conflicts.append(
                Conflict(
                    index=result.index,
                    name=result.data["name"],
                    slug=result.data.get("slug"),
                    existing=match,
                )
            )

    if conflicts and policy is ExistingPolicy.error:
        logger.warning(
            "scan: %d of %d categories already exist; aborting under policy=error",
            len(conflicts), len(valid_records),
        )
        return Abort(conflicts=conflicts)

    decision = Proceed(policy=policy, conflicts={c.index: c.existing for c in conflicts})
    logger.info(
        "scan: %d records, %d conflicts, policy=%s → %s",
        len(valid_records), len(conflicts), policy.value, decision.status,
    )
    return decision

"""Presentation summary of a stored canonicalization run."""

import logging
from collections.abc import Sequence

from pydantic import Field

from mythcanon.schemas.canonicalization import CanonicalizationRunRecord
from mythcanon.schemas.common import BaseSchema
from mythcanon.schemas.myth import CollaboratorCategory, PlotPoint
from mythcanon.services.canonicalization.utils import index_plot_points

logger = logging.getLogger(__name__)

MAX_SAMPLES = 3


class ContributorSlice(BaseSchema):
    """Share of one collaborator category within a canonical category."""

    id: str
    name: str
    share: float


class CanonicalCategorySummary(BaseSchema):
    """One canonical category as shown in a run overview."""

    id: str
    label: str
    size: int
    purity: float = 0.0
    entropy: float = 0.0
    contributors: list[ContributorSlice] = Field(default_factory=list)
    samples: list[str] = Field(default_factory=list)


class CanonicalizationRunSummary(BaseSchema):
    """Run-level metrics plus its categories, largest first."""

    id: str
    mode: str
    status: str
    coverage: float = 0.0
    agreement_gain: float | None = None
    average_purity: float = 0.0
    average_entropy: float = 0.0
    categories: list[CanonicalCategorySummary] = Field(default_factory=list)


def summarize_run(
    record: CanonicalizationRunRecord,
    plot_points: Sequence[PlotPoint],
    collaborator_categories: Sequence[CollaboratorCategory],
) -> CanonicalizationRunSummary | None:
    """Build the category overview for a run.

    Returns:
        The summary, or None for runs without assignments (failed runs)
    """
    if not record.assignments:
        return None

    lookup = index_plot_points(plot_points)
    category_names = {category.id: category.name for category in collaborator_categories}
    purity = record.metrics.purity_by_canonical if record.metrics else {}
    entropy = record.metrics.entropy_by_canonical if record.metrics else {}
    prevalence = {entry.canonical_id: entry.totals for entry in record.prevalence}

    members: dict[str, list[str]] = {}
    for assignment in record.assignments:
        members.setdefault(assignment.canonical_id, []).append(assignment.plot_point_id)

    categories = [
        CanonicalCategorySummary(
            id=canonical_id,
            label=record.category_labels.get(canonical_id, canonical_id),
            size=len(point_ids),
            purity=purity.get(canonical_id, 0.0),
            entropy=entropy.get(canonical_id, 0.0),
            contributors=build_contributors(prevalence.get(canonical_id, {}), category_names),
            samples=_samples(point_ids, lookup),
        )
        for canonical_id, point_ids in members.items()
    ]

    categories.sort(key=lambda category: -category.size)
    for index, category in enumerate(categories, start=1):
        if not record.category_labels.get(category.id):
            category.label = f"Category {index}"

    return CanonicalizationRunSummary(
        id=record.id,
        mode=record.mode.value,
        status=record.status.value,
        coverage=record.metrics.coverage if record.metrics else 0.0,
        agreement_gain=record.metrics.agreement_gain if record.metrics else None,
        average_purity=_average(purity.values()),
        average_entropy=_average(entropy.values()),
        categories=categories,
    )


def build_contributors(
    totals: dict[str, float],
    category_names: dict[str, str],
) -> list[ContributorSlice]:
    """Prevalence totals as shares, largest first."""
    total = sum(totals.values())
    if total == 0:
        return []
    slices = [
        ContributorSlice(
            id=category_id,
            name=category_names.get(category_id, f"Category {category_id}"),
            share=count / total,
        )
        for category_id, count in totals.items()
    ]
    slices.sort(key=lambda item: -item.share)
    return slices


def _samples(point_ids: list[str], lookup: dict[str, PlotPoint]) -> list[str]:
    texts = [lookup[point_id].text for point_id in point_ids if point_id in lookup]
    return [text for text in texts if text][:MAX_SAMPLES]


def _average(values) -> float:
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)

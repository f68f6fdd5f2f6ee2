"""Assignment and agreement matrix construction.

The assignment matrix is a dense plot-point x collaborator-category
incidence matrix; the agreement matrix is the plot-point x plot-point
similarity derived from it. Both are rebuilt from the input snapshot on
every call and never mutate the caller's plot points.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import numpy as np

from mythcanon.schemas.myth import (
    CollaboratorCategory,
    CollaboratorCategoryAssignment,
    PlotPoint,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class AssignmentMatrixOptions:
    """Options for building an assignment matrix.

    Attributes:
        categories: Explicit column order; derived from the tags when omitted
        collaborator_weights: Trust weight per collaborator email (default 1)
        normalize_within_plot_point: Scale each collaborator's tags on a point
            so they sum to 1
    """
    categories: Sequence[CollaboratorCategory] | None = None
    collaborator_weights: Mapping[str, float] | None = None
    normalize_within_plot_point: bool = False


@dataclass
class AgreementMatrixOptions:
    """Options for building an agreement matrix."""
    normalize: bool = False


@dataclass(frozen=True)
class AssignmentMatrixResult:
    """Plot-point x collaborator-category weights."""
    matrix: np.ndarray
    plot_point_ids: list[str] = field(default_factory=list)
    category_ids: list[str] = field(default_factory=list)

    @property
    def shape(self) -> tuple[int, int]:
        return (len(self.plot_point_ids), len(self.category_ids))


@dataclass(frozen=True)
class AgreementMatrixResult:
    """Symmetric plot-point x plot-point agreement weights."""
    matrix: np.ndarray
    plot_point_ids: list[str] = field(default_factory=list)


# =============================================================================
# Builders
# =============================================================================


def build_assignment_matrix(
    plot_points: Sequence[PlotPoint],
    options: AssignmentMatrixOptions | None = None,
) -> AssignmentMatrixResult:
    """Aggregate collaborator-category tag weights per plot point.

    Args:
        plot_points: Plot points in row order
        options: Column order, trust weights and per-point normalization

    Returns:
        AssignmentMatrixResult with one row per plot point
    """
    options = options or AssignmentMatrixOptions()
    plot_point_ids = [point.id for point in plot_points]

    if options.categories is not None:
        category_ids = [category.id for category in options.categories]
    else:
        category_ids = _dedupe_category_ids(plot_points)

    category_index = {category_id: idx for idx, category_id in enumerate(category_ids)}
    matrix = np.zeros((len(plot_point_ids), len(category_ids)), dtype=float)

    per_point_totals = (
        _per_point_collaborator_totals(plot_points)
        if options.normalize_within_plot_point
        else None
    )

    for row_idx, point in enumerate(plot_points):
        for tag in point.collaborator_categories:
            col_idx = category_index.get(tag.collaborator_category_id)
            if col_idx is None:
                continue
            matrix[row_idx, col_idx] += _assignment_weight(
                tag,
                plot_point_id=point.id,
                collaborator_weights=options.collaborator_weights,
                per_point_totals=per_point_totals,
            )

    logger.debug(
        f"Built {len(plot_point_ids)}x{len(category_ids)} assignment matrix "
        f"(normalized={options.normalize_within_plot_point})"
    )

    return AssignmentMatrixResult(
        matrix=matrix,
        plot_point_ids=plot_point_ids,
        category_ids=category_ids,
    )


def build_agreement_matrix(
    assignment: AssignmentMatrixResult,
    options: AgreementMatrixOptions | None = None,
) -> AgreementMatrixResult:
    """Compute pairwise shared category weight between plot points.

    With ``normalize`` the dot products are divided by the product of the
    row norms (cosine similarity); pairs involving an all-zero row score 0
    and the diagonal is exactly 1 for every non-zero row.
    """
    options = options or AgreementMatrixOptions()
    matrix = np.asarray(assignment.matrix, dtype=float)
    size = len(assignment.plot_point_ids)

    if size == 0:
        return AgreementMatrixResult(
            matrix=np.zeros((0, 0)),
            plot_point_ids=list(assignment.plot_point_ids),
        )

    agreement = matrix @ matrix.T

    if options.normalize:
        norms = np.linalg.norm(matrix, axis=1)
        denominator = np.outer(norms, norms)
        with np.errstate(divide="ignore", invalid="ignore"):
            agreement = np.where(denominator > 0, agreement / denominator, 0.0)
        nonzero = np.flatnonzero(norms > 0)
        agreement[nonzero, nonzero] = 1.0

    # Mirror the upper triangle so the result is exactly symmetric.
    agreement = np.triu(agreement) + np.triu(agreement, k=1).T

    return AgreementMatrixResult(
        matrix=agreement,
        plot_point_ids=list(assignment.plot_point_ids),
    )


# =============================================================================
# Helpers
# =============================================================================


def _dedupe_category_ids(plot_points: Sequence[PlotPoint]) -> list[str]:
    """Distinct category ids in first-seen order."""
    seen: dict[str, None] = {}
    for point in plot_points:
        for tag in point.collaborator_categories:
            seen.setdefault(tag.collaborator_category_id, None)
    return list(seen)


def _per_point_collaborator_totals(
    plot_points: Sequence[PlotPoint],
) -> dict[tuple[str, str], float]:
    totals: dict[tuple[str, str], float] = {}
    for point in plot_points:
        for tag in point.collaborator_categories:
            key = (point.id, tag.collaborator_email)
            totals[key] = totals.get(key, 0.0) + tag.effective_weight
    return totals


def _assignment_weight(
    tag: CollaboratorCategoryAssignment,
    plot_point_id: str,
    collaborator_weights: Mapping[str, float] | None,
    per_point_totals: dict[tuple[str, str], float] | None,
) -> float:
    base_weight = tag.effective_weight
    collaborator_weight = (collaborator_weights or {}).get(tag.collaborator_email, 1.0)

    if per_point_totals is None:
        return base_weight * collaborator_weight

    total = per_point_totals.get((plot_point_id, tag.collaborator_email), base_weight)
    if total == 0:
        return 0.0
    return (base_weight / total) * collaborator_weight

"""Metric Suite for canonical partitions.

Computes, for any plot point -> canonical id mapping:
- Coverage: fraction of plot points that received a canonical id
- Purity: dominant collaborator-category share per canonical cluster
- Entropy: normalized spread of collaborator categories per cluster
- Agreement gain: intra-cluster minus inter-cluster agreement weight
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from mythcanon.schemas.canonicalization import CanonicalAssignment, MetricSummary
from mythcanon.schemas.myth import PlotPoint
from mythcanon.services.canonicalization.base import CanonicalizationInput
from mythcanon.services.canonicalization.matrices import AgreementMatrixResult
from mythcanon.services.canonicalization.utils import (
    collaborator_key,
    index_plot_points,
    normalized_entropy,
)

logger = logging.getLogger(__name__)

ENTROPY_PRECISION = 4


@dataclass
class CategoryStats:
    """Plot point count and collaborator tag histogram of one cluster."""
    total: int = 0
    by_collaborator: dict[str, int] = field(default_factory=dict)


class MetricSuite:
    """Pure metric computations over an assignment and its input snapshot."""

    @classmethod
    def run(
        cls,
        assignments: Sequence[CanonicalAssignment],
        canonical_input: CanonicalizationInput,
    ) -> MetricSummary:
        """Compute the full metric summary.

        Agreement gain is only reported when the input carries an
        agreement matrix.
        """
        stats = cls.build_category_stats(assignments, canonical_input.plot_points)
        agreement_gain = (
            cls.compute_agreement_gain(assignments, canonical_input.agreement)
            if canonical_input.agreement is not None
            else None
        )
        return MetricSummary(
            coverage=cls.compute_coverage(assignments, len(canonical_input.plot_points)),
            purity_by_canonical=cls.compute_purity(stats),
            entropy_by_canonical=cls.compute_entropy(
                stats, len(canonical_input.collaborator_categories)
            ),
            agreement_gain=agreement_gain,
        )

    @staticmethod
    def build_category_stats(
        assignments: Sequence[CanonicalAssignment],
        plot_points: Sequence[PlotPoint],
    ) -> dict[str, CategoryStats]:
        lookup = index_plot_points(plot_points)
        stats: dict[str, CategoryStats] = {}

        for assignment in assignments:
            target = stats.setdefault(assignment.canonical_id, CategoryStats())
            target.total += 1
            point = lookup.get(assignment.plot_point_id)
            if point is None:
                continue
            for tag in point.collaborator_categories:
                key = collaborator_key(tag)
                target.by_collaborator[key] = target.by_collaborator.get(key, 0) + 1

        return stats

    @staticmethod
    def compute_purity(stats: dict[str, CategoryStats]) -> dict[str, float]:
        """Dominant collaborator-category count over cluster size."""
        purity: dict[str, float] = {}
        for canonical_id, data in stats.items():
            dominant = max(data.by_collaborator.values(), default=0)
            purity[canonical_id] = 0.0 if data.total == 0 else dominant / data.total
        return purity

    @staticmethod
    def compute_entropy(
        stats: dict[str, CategoryStats],
        collaborator_category_count: int,
    ) -> dict[str, float]:
        """Entropy normalized by log2 of the myth's collaborator category count."""
        return {
            canonical_id: round(
                normalized_entropy(data.by_collaborator.values(), collaborator_category_count),
                ENTROPY_PRECISION,
            )
            for canonical_id, data in stats.items()
        }

    @staticmethod
    def compute_coverage(
        assignments: Sequence[CanonicalAssignment],
        total_plot_points: int,
    ) -> float:
        if total_plot_points == 0:
            return 0.0
        unique_ids = {assignment.plot_point_id for assignment in assignments}
        return min(1.0, len(unique_ids) / total_plot_points)

    @staticmethod
    def compute_agreement_gain(
        assignments: Sequence[CanonicalAssignment],
        agreement: AgreementMatrixResult,
    ) -> float:
        """Sum of agreement over same-cluster pairs minus cross-cluster pairs.

        Pairs involving an unassigned plot point are ignored.
        """
        canonical_by_point = {a.plot_point_id: a.canonical_id for a in assignments}
        indices = [
            idx
            for idx, point_id in enumerate(agreement.plot_point_ids)
            if point_id in canonical_by_point
        ]
        if len(indices) < 2:
            return 0.0

        labels = np.array(
            [canonical_by_point[agreement.plot_point_ids[idx]] for idx in indices]
        )
        weights = np.asarray(agreement.matrix, dtype=float)[np.ix_(indices, indices)]
        same_cluster = labels[:, None] == labels[None, :]
        upper = np.triu(np.ones_like(weights, dtype=bool), k=1)

        intra = weights[upper & same_cluster].sum()
        inter = weights[upper & ~same_cluster].sum()
        return float(intra - inter)

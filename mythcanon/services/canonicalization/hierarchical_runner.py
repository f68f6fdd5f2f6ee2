"""Hierarchical Runner.

Bottom-up agglomeration starting from one singleton cluster per plot point.
Every step merges the single best pair over all cluster pairs, either by
highest average agreement or by lowest normalized entropy of the combined
collaborator-category distribution, until the stopping criterion holds.
High-entropy clusters can optionally be split once merging is done.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

import numpy as np

from mythcanon.schemas.canonicalization import (
    AlgorithmParams,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationResult,
    HierarchicalParams,
    ParameterDefinition,
    ParameterOption,
    StoppingCriterion,
)
from mythcanon.schemas.myth import PlotPoint
from mythcanon.services.canonicalization.base import CanonicalizationInput, parse_params
from mythcanon.services.canonicalization.errors import (
    InvalidParametersError,
    MissingMatrixError,
)
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixResult,
    build_agreement_matrix,
)
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.utils import build_prevalence, index_plot_points

logger = logging.getLogger(__name__)


@dataclass
class Cluster:
    """A cluster of plot points and its collaborator-category counts."""
    id: str
    plot_point_ids: list[str]
    counts: np.ndarray


@dataclass
class MergeCandidate:
    """Best pair found in one agglomeration step."""
    first: int
    second: int
    score: float


class HierarchicalRunner:
    """Agglomerative clustering with optional entropy-triggered auto-split."""

    mode = CanonicalizationMode.HIERARCHICAL
    params_model = HierarchicalParams
    parameter_definitions = [
        ParameterDefinition(
            key="target_canonical_count",
            label="Target categories",
            type="number",
            description="Upper bound on the cluster count; stops there without a criterion.",
        ),
        ParameterDefinition(
            key="stopping_criterion_type",
            label="Stopping criterion",
            type="select",
            description=(
                "Stop at a cluster count, once every cluster reaches a purity, "
                "or when successive merge scores stop changing."
            ),
            options=[
                ParameterOption(label="Cluster count", value="count"),
                ParameterOption(label="Purity", value="purity"),
                ParameterOption(label="Score delta", value="delta"),
            ],
        ),
        ParameterDefinition(
            key="stopping_criterion_value",
            label="Stopping threshold",
            type="number",
            description="Cluster count, minimum purity, or merge score delta.",
        ),
        ParameterDefinition(
            key="linkage_metric",
            label="Linkage",
            type="select",
            default_value="agreement",
            options=[
                ParameterOption(label="Average agreement", value="agreement"),
                ParameterOption(label="Combined entropy", value="entropy"),
            ],
        ),
        ParameterDefinition(
            key="auto_split_entropy_threshold",
            label="Auto-split entropy threshold",
            type="number",
            description="Split clusters whose entropy exceeds this after merging.",
        ),
        ParameterDefinition(
            key="max_steps",
            label="Max merge steps",
            type="number",
            default_value=200,
        ),
    ]

    async def run(
        self,
        canonical_input: CanonicalizationInput,
        params: Mapping[str, Any] | AlgorithmParams | None = None,
    ) -> CanonicalizationResult:
        if canonical_input.assignment is None:
            raise MissingMatrixError(
                self.mode.value,
                "assignment",
                "Hierarchical mode requires an assignment matrix.",
            )

        parsed = parse_params(self.params_model, params, self.mode)
        criterion = resolve_stopping_criterion(parsed)
        target = parsed.target_canonical_count

        agreement = canonical_input.agreement
        if agreement is None:
            agreement = build_agreement_matrix(canonical_input.assignment)
        state = AgglomerationState.seed(canonical_input, agreement)
        history: list[dict[str, Any]] = []
        previous_score = math.inf

        for step in range(parsed.max_steps):
            if state.should_stop(criterion, target):
                break
            merge = state.best_merge(parsed.linkage_metric)
            if merge is None:
                break

            merged_ids = state.merge(merge)
            history.append({"step": step + 1, "merged": merged_ids, "score": merge.score})

            if (
                criterion.type == "delta"
                and abs(previous_score - merge.score) <= criterion.value
                and (target is None or len(state.clusters) <= target)
            ):
                break
            previous_score = merge.score

        clusters = state.clusters
        if parsed.auto_split is not None:
            clusters = auto_split_high_entropy(
                clusters,
                state,
                parsed.auto_split.entropy_threshold,
                target,
            )

        assignments = [
            CanonicalAssignment(plot_point_id=point_id, canonical_id=cluster.id)
            for cluster in clusters
            for point_id in cluster.plot_point_ids
        ]

        logger.info(
            f"Hierarchical canonicalization for {canonical_input.myth_id}: "
            f"{len(clusters)} clusters after {len(history)} merges "
            f"({parsed.linkage_metric} linkage, {criterion.type} criterion)"
        )

        return CanonicalizationResult(
            assignments=assignments,
            prevalence=build_prevalence(assignments, canonical_input.plot_points),
            metrics=MetricSuite.run(
                assignments, replace(canonical_input, agreement=agreement)
            ),
            diagnostics={
                "history": history,
                "final_cluster_count": len(clusters),
                "linkage_metric": parsed.linkage_metric,
                "stopping_criterion": criterion.model_dump(),
            },
        )


def resolve_stopping_criterion(params: HierarchicalParams) -> StoppingCriterion:
    """Explicit criterion, else stop at the target count."""
    if params.stopping_criterion is not None:
        return params.stopping_criterion
    if params.target_canonical_count is not None:
        return StoppingCriterion(type="count", value=params.target_canonical_count)
    raise InvalidParametersError(
        CanonicalizationMode.HIERARCHICAL.value,
        "stopping_criterion or target_canonical_count is required",
    )


# =============================================================================
# Agglomeration State
# =============================================================================


class AgglomerationState:
    """Clusters plus the pairwise summed-agreement matrix between them.

    ``link_sums[a, b]`` holds the total agreement weight between members of
    clusters a and b, so average linkage is ``link_sums / (size_a * size_b)``
    without revisiting individual plot points.
    """

    def __init__(
        self,
        clusters: list[Cluster],
        link_sums: np.ndarray,
        universe_size: int,
        category_order: list[str],
        plot_points: dict[str, PlotPoint],
    ):
        self.clusters = clusters
        self.link_sums = link_sums
        self.universe_size = universe_size
        self.category_order = category_order
        self.plot_points = plot_points

    @classmethod
    def seed(
        cls,
        canonical_input: CanonicalizationInput,
        agreement: AgreementMatrixResult,
    ) -> "AgglomerationState":
        category_ids: dict[str, int] = {}
        for point in canonical_input.plot_points:
            for tag in point.collaborator_categories:
                category_ids.setdefault(tag.collaborator_category_id, len(category_ids))

        clusters: list[Cluster] = []
        for point in canonical_input.plot_points:
            counts = np.zeros(len(category_ids))
            for tag in point.collaborator_categories:
                counts[category_ids[tag.collaborator_category_id]] += 1
            clusters.append(
                Cluster(id=f"cluster-{point.id}", plot_point_ids=[point.id], counts=counts)
            )

        index = {point_id: idx for idx, point_id in enumerate(agreement.plot_point_ids)}
        rows = [index.get(point.id) for point in canonical_input.plot_points]
        weights = np.asarray(agreement.matrix, dtype=float)
        link_sums = np.zeros((len(clusters), len(clusters)))
        present = [i for i, row in enumerate(rows) if row is not None]
        if present:
            source = [rows[i] for i in present]
            link_sums[np.ix_(present, present)] = weights[np.ix_(source, source)]

        universe_size = len(canonical_input.collaborator_categories) or len(category_ids)
        return cls(
            clusters,
            link_sums,
            universe_size,
            category_order=list(category_ids),
            plot_points=index_plot_points(canonical_input.plot_points),
        )

    def should_stop(self, criterion: StoppingCriterion, target: int | None) -> bool:
        if target is not None and len(self.clusters) > target:
            return False
        if criterion.type == "count":
            return len(self.clusters) <= criterion.value
        if criterion.type == "purity":
            return all(cluster_purity(c.counts) >= criterion.value for c in self.clusters)
        return False

    def best_merge(self, linkage: str) -> MergeCandidate | None:
        size = len(self.clusters)
        if size < 2:
            return None

        upper = np.triu(np.ones((size, size), dtype=bool), k=1)
        if linkage == "entropy":
            scores = self._pairwise_entropy()
            masked = np.where(upper, scores, np.inf)
            flat_index = int(np.argmin(masked))
        else:
            sizes = np.array([len(c.plot_point_ids) for c in self.clusters], dtype=float)
            scores = self.link_sums / np.outer(sizes, sizes)
            masked = np.where(upper, scores, -np.inf)
            flat_index = int(np.argmax(masked))

        first, second = divmod(flat_index, size)
        return MergeCandidate(first=first, second=second, score=float(scores[first, second]))

    def merge(self, candidate: MergeCandidate) -> list[str]:
        """Replace the pair with their union, appended last."""
        a = self.clusters[candidate.first]
        b = self.clusters[candidate.second]
        combined = Cluster(
            id=f"{a.id}|{b.id}",
            plot_point_ids=a.plot_point_ids + b.plot_point_ids,
            counts=a.counts + b.counts,
        )

        keep = [i for i in range(len(self.clusters)) if i not in (candidate.first, candidate.second)]
        link_sums = np.zeros((len(keep) + 1, len(keep) + 1))
        link_sums[:-1, :-1] = self.link_sums[np.ix_(keep, keep)]
        column = self.link_sums[keep, candidate.first] + self.link_sums[keep, candidate.second]
        link_sums[:-1, -1] = column
        link_sums[-1, :-1] = column
        link_sums[-1, -1] = (
            self.link_sums[candidate.first, candidate.first]
            + self.link_sums[candidate.second, candidate.second]
            + 2 * self.link_sums[candidate.first, candidate.second]
        )

        self.clusters = [self.clusters[i] for i in keep] + [combined]
        self.link_sums = link_sums
        return [a.id, b.id]

    def counts_for(self, plot_point_ids: list[str]) -> np.ndarray:
        counts = np.zeros(len(self.category_order))
        position = {category_id: idx for idx, category_id in enumerate(self.category_order)}
        for point_id in plot_point_ids:
            point = self.plot_points.get(point_id)
            if point is None:
                continue
            for tag in point.collaborator_categories:
                counts[position[tag.collaborator_category_id]] += 1
        return counts

    def entropy(self, counts: np.ndarray) -> float:
        return float(normalized_entropy_rows(counts[None, :], self.universe_size)[0])

    def _pairwise_entropy(self) -> np.ndarray:
        counts = np.stack([c.counts for c in self.clusters])
        combined = counts[:, None, :] + counts[None, :, :]
        size = len(self.clusters)
        flat = combined.reshape(size * size, -1)
        return normalized_entropy_rows(flat, self.universe_size).reshape(size, size)


# =============================================================================
# Helpers
# =============================================================================


def normalized_entropy_rows(counts: np.ndarray, universe_size: int) -> np.ndarray:
    """Row-wise Shannon entropy scaled by log2(universe_size).

    Rows without any tags score 0. A universe of one category leaves the
    entropy unscaled.
    """
    totals = counts.sum(axis=-1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        probabilities = np.where(totals > 0, counts / totals, 0.0)
        terms = np.where(probabilities > 0, probabilities * np.log2(probabilities), 0.0)
    entropy = -terms.sum(axis=-1)
    normalizer = math.log2(universe_size) if universe_size > 1 else 1.0
    return entropy / normalizer


def cluster_purity(counts: np.ndarray) -> float:
    """Dominant category share; untagged clusters count as pure."""
    total = counts.sum()
    if total == 0:
        return 1.0
    return float(counts.max() / total)


def auto_split_high_entropy(
    clusters: list[Cluster],
    state: AgglomerationState,
    threshold: float,
    target: int | None,
) -> list[Cluster]:
    """Split clusters whose entropy exceeds the threshold into two.

    Members carrying the cluster's dominant collaborator category go to the
    first half; the others alternate by position. If the second half ends up
    empty, the first half is cut in two. Splitting stops once the target
    count would be exceeded.
    """
    projected = len(clusters)
    result: list[Cluster] = []

    for cluster in clusters:
        too_many = target is not None and projected + 1 > target
        if (
            too_many
            or len(cluster.plot_point_ids) <= 1
            or state.entropy(cluster.counts) <= threshold
        ):
            result.append(cluster)
            continue

        dominant = (
            state.category_order[int(np.argmax(cluster.counts))]
            if cluster.counts.any()
            else None
        )
        first: list[str] = []
        second: list[str] = []
        for idx, point_id in enumerate(cluster.plot_point_ids):
            point = state.plot_points.get(point_id)
            has_dominant = point is not None and any(
                tag.collaborator_category_id == dominant for tag in point.collaborator_categories
            )
            if has_dominant or idx % 2 == 0:
                first.append(point_id)
            else:
                second.append(point_id)

        if not second:
            midpoint = math.ceil(len(first) / 2)
            first, second = first[:midpoint], first[midpoint:]

        result.append(
            Cluster(id=f"{cluster.id}-splitA", plot_point_ids=first, counts=state.counts_for(first))
        )
        result.append(
            Cluster(id=f"{cluster.id}-splitB", plot_point_ids=second, counts=state.counts_for(second))
        )
        projected += 1

    return result

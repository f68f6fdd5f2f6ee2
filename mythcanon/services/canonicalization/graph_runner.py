"""Agreement Graph Runner.

Treats the agreement matrix as a weighted graph over plot points and finds
communities by synchronous label propagation, then nudges the community
count toward the requested target and dissolves undersized communities.
"""

import logging
import time
from collections.abc import Mapping
from typing import Any

import numpy as np

from mythcanon.schemas.canonicalization import (
    AgreementGraphParams,
    AlgorithmParams,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationResult,
    ParameterDefinition,
)
from mythcanon.services.canonicalization.base import CanonicalizationInput, parse_params
from mythcanon.services.canonicalization.errors import MissingMatrixError
from mythcanon.services.canonicalization.matrices import AgreementMatrixResult
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.utils import build_prevalence, group_by_label

logger = logging.getLogger(__name__)


class AgreementGraphRunner:
    """Label propagation over the plot-point agreement graph."""

    mode = CanonicalizationMode.GRAPH
    params_model = AgreementGraphParams
    parameter_definitions = [
        ParameterDefinition(
            key="target_canonical_count",
            label="Target categories",
            type="number",
            description="Merge or split communities until this many remain.",
        ),
        ParameterDefinition(
            key="min_cluster_size",
            label="Minimum cluster size",
            type="number",
            description="Communities smaller than this are dissolved into neighbors.",
            default_value=1,
        ),
        ParameterDefinition(
            key="max_iterations",
            label="Propagation passes",
            type="number",
            default_value=12,
        ),
    ]

    async def run(
        self,
        canonical_input: CanonicalizationInput,
        params: Mapping[str, Any] | AlgorithmParams | None = None,
    ) -> CanonicalizationResult:
        if canonical_input.agreement is None:
            raise MissingMatrixError(
                self.mode.value,
                "agreement",
                "Agreement graph mode requires an agreement matrix. "
                "Pass one via MatrixProvider.",
            )

        parsed = parse_params(self.params_model, params, self.mode)
        agreement = canonical_input.agreement

        labels, iterations = run_label_propagation(agreement, parsed.max_iterations)
        labels = enforce_target_count(labels, agreement, parsed.target_canonical_count)
        labels = enforce_min_cluster_size(labels, agreement, parsed.min_cluster_size)
        # Singletons created by the size pass must not push past the target.
        labels = enforce_target_count(
            labels, agreement, parsed.target_canonical_count, allow_split=False
        )

        assignments = [
            CanonicalAssignment(plot_point_id=point_id, canonical_id=label)
            for point_id, label in labels.items()
        ]
        community_count = len(set(labels.values()))

        logger.info(
            f"Graph canonicalization for {canonical_input.myth_id}: "
            f"{community_count} communities after {iterations} passes"
        )

        return CanonicalizationResult(
            assignments=assignments,
            prevalence=build_prevalence(assignments, canonical_input.plot_points),
            metrics=MetricSuite.run(assignments, canonical_input),
            diagnostics={
                "iterations": iterations,
                "community_count": community_count,
            },
        )


# =============================================================================
# Label Propagation
# =============================================================================


def run_label_propagation(
    agreement: AgreementMatrixResult,
    max_iterations: int,
) -> tuple[dict[str, str], int]:
    """Propagate labels until a pass changes nothing.

    Every plot point starts with its own id as label. Each pass visits the
    points in an order rotated by the pass number; a point adopts the label
    with the highest total positive edge weight among its neighbors, keeping
    its current label on ties.

    Returns:
        Tuple of (point id -> label, number of passes that changed labels)
    """
    ids = agreement.plot_point_ids
    matrix = np.asarray(agreement.matrix, dtype=float)
    labels = {point_id: point_id for point_id in ids}
    index = {point_id: idx for idx, point_id in enumerate(ids)}

    iterations = 0
    while iterations < max_iterations:
        changed = False
        for point_id in _rotate(ids, iterations):
            scores = _neighbor_label_scores(index[point_id], ids, matrix, labels)
            if not scores:
                continue
            best = _arg_max(scores, labels[point_id])
            if best is not None and best != labels[point_id]:
                labels[point_id] = best
                changed = True
        if not changed:
            break
        iterations += 1

    return labels, iterations


def enforce_target_count(
    labels: dict[str, str],
    agreement: AgreementMatrixResult,
    target_count: int | None,
    allow_split: bool = True,
) -> dict[str, str]:
    """Merge smallest communities / split largest ones toward the target."""
    if not target_count or target_count < 1:
        return labels

    labels = dict(labels)
    while len(group_by_label(labels)) > target_count:
        _merge_smallest(labels, agreement)

    if allow_split:
        while len(group_by_label(labels)) < target_count:
            if not _split_largest(labels):
                break

    return labels


def enforce_min_cluster_size(
    labels: dict[str, str],
    agreement: AgreementMatrixResult,
    min_cluster_size: int,
) -> dict[str, str]:
    """Dissolve communities below the minimum size.

    Members of an undersized community move to their strongest neighbor
    label. Communities that are still undersized afterwards are broken up
    into singletons.
    """
    if min_cluster_size <= 1:
        return labels

    updated = dict(labels)
    ids = agreement.plot_point_ids
    matrix = np.asarray(agreement.matrix, dtype=float)
    index = {point_id: idx for idx, point_id in enumerate(ids)}
    changed = False

    for members in list(group_by_label(updated).values()):
        if len(members) >= min_cluster_size:
            continue
        for point_id in members:
            if point_id not in index:
                continue
            scores = _neighbor_label_scores(index[point_id], ids, matrix, updated)
            replacement = _arg_max(scores, None)
            if replacement is not None:
                updated[point_id] = replacement
                changed = True

    if changed:
        for members in group_by_label(updated).values():
            if len(members) >= min_cluster_size:
                continue
            for point_id in members:
                updated[point_id] = point_id

    return updated


# =============================================================================
# Helpers
# =============================================================================


def _neighbor_label_scores(
    node_index: int,
    ids: list[str],
    matrix: np.ndarray,
    labels: Mapping[str, str],
) -> dict[str, float]:
    scores: dict[str, float] = {}
    for neighbor_index, weight in enumerate(matrix[node_index]):
        if neighbor_index == node_index or weight <= 0:
            continue
        label = labels.get(ids[neighbor_index])
        if label is None:
            continue
        scores[label] = scores.get(label, 0.0) + float(weight)
    return scores


def _arg_max(scores: Mapping[str, float], fallback: str | None) -> str | None:
    best_key = fallback
    best_score = scores.get(fallback, float("-inf")) if fallback is not None else float("-inf")
    for key, value in scores.items():
        if value > best_score:
            best_score = value
            best_key = key
    return best_key


def _merge_smallest(labels: dict[str, str], agreement: AgreementMatrixResult) -> None:
    groups = sorted(group_by_label(labels).items(), key=lambda item: len(item[1]))
    if len(groups) <= 1:
        return

    _, smallest_members = groups[0]
    best_label, best_weight = groups[1][0], float("-inf")
    for label, members in groups[1:]:
        weight = _average_inter_cluster_weight(smallest_members, members, agreement)
        if weight > best_weight:
            best_weight = weight
            best_label = label

    for point_id in smallest_members:
        labels[point_id] = best_label


def _split_largest(labels: dict[str, str]) -> bool:
    groups = sorted(group_by_label(labels).items(), key=lambda item: -len(item[1]))
    if not groups:
        return False
    label, members = groups[0]
    if len(members) <= 1:
        return False

    split_id = f"{label}-split-{int(time.time() * 1000)}"
    existing = set(labels.values())
    suffix = 1
    candidate = split_id
    while candidate in existing:
        candidate = f"{split_id}-{suffix}"
        suffix += 1

    half = -(-len(members) // 2)
    for point_id in members[half:]:
        labels[point_id] = candidate
    return True


def _average_inter_cluster_weight(
    group_a: list[str],
    group_b: list[str],
    agreement: AgreementMatrixResult,
) -> float:
    index = {point_id: idx for idx, point_id in enumerate(agreement.plot_point_ids)}
    rows = [index[point_id] for point_id in group_a if point_id in index]
    cols = [index[point_id] for point_id in group_b if point_id in index]
    if not rows or not cols:
        return 0.0
    return float(np.asarray(agreement.matrix, dtype=float)[np.ix_(rows, cols)].mean())


def _rotate(items: list[str], iteration: int) -> list[str]:
    if not items:
        return items
    start = iteration % len(items)
    return items[start:] + items[:start]

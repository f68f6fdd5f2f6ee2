"""Consensus Runner.

Seeds every plot point with its first collaborator category, forces the
partition to exactly the target number of canonical ids, then runs
coordinate descent on a weighted objective:

    split_penalty   * sum over collaborator categories of (1 - max share)
  + merge_penalty   * sum over canonical ids of normalized entropy
  + balance_penalty * sum over canonical ids of |size - ideal| / ideal

The split term punishes one collaborator's category being scattered across
canonical ids, the merge term punishes canonical ids that mix many
collaborator categories, and the balance term punishes uneven sizes.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from mythcanon.schemas.canonicalization import (
    AlgorithmParams,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationResult,
    ConsensusParams,
    ParameterDefinition,
)
from mythcanon.schemas.myth import PlotPoint
from mythcanon.services.canonicalization.base import CanonicalizationInput, parse_params
from mythcanon.services.canonicalization.errors import InvalidTargetCountError
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.utils import (
    build_prevalence,
    normalized_entropy,
)

logger = logging.getLogger(__name__)

DEFAULT_TARGET_COUNT = 3


@dataclass
class ConsensusWeights:
    """Objective weights and the target the objective is balanced against."""
    target_canonical_count: int
    split_penalty: float
    merge_penalty: float
    balance_penalty: float


class ConsensusRunner:
    """Local search that reconciles collaborator categories into K clusters."""

    mode = CanonicalizationMode.CONSENSUS
    params_model = ConsensusParams
    parameter_definitions = [
        ParameterDefinition(
            key="target_canonical_count",
            label="Target categories",
            type="number",
            description="Exact number of canonical categories to produce.",
            default_value=DEFAULT_TARGET_COUNT,
        ),
        ParameterDefinition(
            key="split_penalty",
            label="Split penalty",
            type="number",
            description="Cost of one collaborator's category spanning several clusters.",
            default_value=1.0,
        ),
        ParameterDefinition(
            key="merge_penalty",
            label="Merge penalty",
            type="number",
            description="Cost of a cluster mixing many collaborator categories.",
            default_value=1.0,
        ),
        ParameterDefinition(
            key="balance_penalty",
            label="Balance penalty",
            type="number",
            description="Cost of cluster sizes drifting from an even split.",
            default_value=0.5,
        ),
        ParameterDefinition(
            key="max_iterations",
            label="Max sweeps",
            type="number",
            default_value=25,
        ),
    ]

    async def run(
        self,
        canonical_input: CanonicalizationInput,
        params: Mapping[str, Any] | AlgorithmParams | None = None,
    ) -> CanonicalizationResult:
        parsed = parse_params(self.params_model, params, self.mode)
        target = (
            DEFAULT_TARGET_COUNT
            if parsed.target_canonical_count is None
            else parsed.target_canonical_count
        )
        if target < 1:
            raise InvalidTargetCountError(
                target,
                len(canonical_input.plot_points),
                "Consensus mode requires a target of at least 1 canonical category.",
            )

        weights = ConsensusWeights(
            target_canonical_count=target,
            split_penalty=parsed.split_penalty,
            merge_penalty=parsed.merge_penalty,
            balance_penalty=parsed.balance_penalty,
        )
        labels, objective, sweeps = consensus_search(
            canonical_input.plot_points, weights, parsed.max_iterations
        )

        assignments = [
            CanonicalAssignment(plot_point_id=point_id, canonical_id=canonical_id)
            for point_id, canonical_id in labels.items()
        ]
        canonical_count = len(set(labels.values()))

        logger.info(
            f"Consensus canonicalization for {canonical_input.myth_id}: "
            f"{canonical_count} categories, objective={objective:.4f}, sweeps={sweeps}"
        )

        return CanonicalizationResult(
            assignments=assignments,
            prevalence=build_prevalence(assignments, canonical_input.plot_points),
            metrics=MetricSuite.run(assignments, canonical_input),
            diagnostics={
                "final_objective": objective,
                "iterations": sweeps,
                "canonical_count": canonical_count,
            },
        )


# =============================================================================
# Search
# =============================================================================


def consensus_search(
    plot_points: Sequence[PlotPoint],
    weights: ConsensusWeights,
    max_iterations: int,
) -> tuple[dict[str, str], float, int]:
    """Coordinate descent over single-point reassignments.

    Returns:
        Tuple of (point id -> canonical id, final objective, sweeps run)
    """
    target = weights.target_canonical_count
    tags = {
        point.id: [tag.collaborator_category_id for tag in point.collaborator_categories]
        for point in plot_points
    }
    labels = enforce_target_count(initialize_labels(plot_points, target), target)
    objective = compute_objective(labels, tags, weights)

    sweeps = 0
    while sweeps < max_iterations:
        sweeps += 1
        changed = False

        for point in plot_points:
            current = labels[point.id]
            candidates = dict.fromkeys(tags[point.id])
            candidates.update(dict.fromkeys(labels.values()))

            best_label, best_objective = current, objective
            for candidate in candidates:
                if candidate == current:
                    continue
                trial = dict(labels)
                trial[point.id] = candidate
                trial_objective = compute_objective(trial, tags, weights)
                if trial_objective < best_objective:
                    best_label, best_objective = candidate, trial_objective

            if best_label != current:
                labels[point.id] = best_label
                objective = best_objective
                changed = True

        labels = enforce_target_count(labels, target)
        objective = compute_objective(labels, tags, weights)
        if not changed:
            break

    return labels, objective, sweeps


def initialize_labels(plot_points: Sequence[PlotPoint], target: int) -> dict[str, str]:
    """First collaborator category of each point, or a round-robin placeholder."""
    labels: dict[str, str] = {}
    for index, point in enumerate(plot_points):
        if point.collaborator_categories:
            labels[point.id] = point.collaborator_categories[0].collaborator_category_id
        else:
            labels[point.id] = f"initial-{index % target}"
    return labels


def enforce_target_count(labels: dict[str, str], target: int) -> dict[str, str]:
    """Merge, split and truncate until at most ``target`` canonical ids remain.

    Merging folds the smallest id into the next smallest; splitting moves
    about total/target points of the largest id to a new id. Any excess left
    after that is remapped round-robin into the ``target`` largest ids.
    """
    labels = dict(labels)
    total = len(labels)
    if total == 0 or target < 1:
        return labels
    ideal_size = max(1, total // target)

    counts = _counts(labels)
    while len(counts) > target:
        ordered = sorted(counts, key=counts.get)
        smallest, into = ordered[0], ordered[1]
        for point_id, label in labels.items():
            if label == smallest:
                labels[point_id] = into
        counts = _counts(labels)

    while len(counts) < target:
        largest = max(counts, key=counts.get)
        if counts[largest] <= 1:
            break
        new_id = _unique_id(f"{largest}-split-{len(counts)}", counts)
        to_move = min(ideal_size, counts[largest] - 1)
        moved = 0
        for point_id, label in labels.items():
            if label == largest and moved < to_move:
                labels[point_id] = new_id
                moved += 1
        counts = _counts(labels)

    ranked = sorted(counts, key=lambda label: -counts[label])
    if len(ranked) > target:
        keep = ranked[:target]
        keep_set = set(keep)
        idx = 0
        for point_id, label in labels.items():
            if label in keep_set:
                continue
            labels[point_id] = keep[idx % len(keep)]
            idx += 1

    return labels


def compute_objective(
    labels: Mapping[str, str],
    tags: Mapping[str, list[str]],
    weights: ConsensusWeights,
) -> float:
    """Weighted split + merge + balance cost of a labelling."""
    by_collaborator: dict[str, dict[str, int]] = {}
    by_canonical: dict[str, dict[str, int]] = {}
    sizes: dict[str, int] = {}

    for point_id, canonical_id in labels.items():
        sizes[canonical_id] = sizes.get(canonical_id, 0) + 1
        bucket = by_canonical.setdefault(canonical_id, {})
        for category_id in tags.get(point_id, []):
            spread = by_collaborator.setdefault(category_id, {})
            spread[canonical_id] = spread.get(canonical_id, 0) + 1
            bucket[category_id] = bucket.get(category_id, 0) + 1

    split_cost = sum(
        1 - max(spread.values()) / sum(spread.values())
        for spread in by_collaborator.values()
    )
    merge_cost = sum(
        normalized_entropy(bucket.values(), len(bucket)) for bucket in by_canonical.values()
    )

    target = weights.target_canonical_count
    ideal_size = len(labels) / target if target > 0 else len(labels)
    balance_cost = (
        sum(abs(size - ideal_size) for size in sizes.values()) / ideal_size
        if ideal_size > 0
        else 0.0
    )

    return (
        weights.split_penalty * split_cost
        + weights.merge_penalty * merge_cost
        + weights.balance_penalty * balance_cost
    )


def _counts(labels: Mapping[str, str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for label in labels.values():
        counts[label] = counts.get(label, 0) + 1
    return counts


def _unique_id(candidate: str, existing: Mapping[str, int]) -> str:
    suffix = 1
    unique = candidate
    while unique in existing:
        unique = f"{candidate}-{suffix}"
        suffix += 1
    return unique

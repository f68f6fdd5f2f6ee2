"""Automatic category count detection.

Builds an average-linkage merge cost curve over the normalized agreement
matrix, then picks K with the gap statistic (observed cost against
row-shuffled reference assignments) or, without references, the elbow of
the cost curve. Every failure mode degrades to a midpoint fallback.
"""

import logging
import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np

from mythcanon.core.config import settings
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixOptions,
    AssignmentMatrixResult,
    build_agreement_matrix,
)

logger = logging.getLogger(__name__)

# Keeps log() finite for zero costs
EPSILON = 1e-6

MIN_CANDIDATE_K = 2

AutoKReason = Literal["gap", "elbow", "fallback"]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class AutoKSeriesPoint:
    k: int
    cost: float
    similarity: float


@dataclass
class AutoKGapPoint:
    k: int
    gap: float
    threshold: float
    reference: float
    observed: float


@dataclass
class ElbowResult:
    suggested_k: int | None
    series: list[AutoKSeriesPoint] = field(default_factory=list)
    distance_scores: list[dict[str, float]] = field(default_factory=list)


@dataclass
class GapResult:
    suggested_k: int | None
    series: list[AutoKGapPoint] = field(default_factory=list)


@dataclass
class AutoKDiagnostics:
    """Selected K and the evidence behind it."""
    selected_k: int
    reason: AutoKReason
    candidate_range: dict[str, int]
    elbow: ElbowResult | None = None
    gap: GapResult | None = None

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for run diagnostics; absent analyses are omitted."""
        data: dict[str, Any] = {
            "selected_k": self.selected_k,
            "reason": self.reason,
            "candidate_range": dict(self.candidate_range),
        }
        if self.elbow is not None:
            data["elbow"] = {
                "suggested_k": self.elbow.suggested_k,
                "series": [vars(point) for point in self.elbow.series],
                "distance_scores": list(self.elbow.distance_scores),
            }
        if self.gap is not None:
            data["gap"] = {
                "suggested_k": self.gap.suggested_k,
                "series": [vars(point) for point in self.gap.series],
            }
        return data


# =============================================================================
# Detection
# =============================================================================


def auto_detect_category_count(
    assignment: AssignmentMatrixResult,
    min_k: int | None = None,
    max_k: int | None = None,
    reference_runs: int | None = None,
    rng: Callable[[], float] | None = None,
) -> AutoKDiagnostics:
    """Suggest a canonical category count for an assignment matrix.

    Args:
        assignment: Plot-point x collaborator-category matrix
        min_k: Smallest candidate (never below 2)
        max_k: Largest candidate before capping at point count - 1
        reference_runs: Shuffled reference runs for the gap statistic;
            0 disables the gap statistic
        rng: Uniform [0, 1) source used for shuffling

    Returns:
        AutoKDiagnostics; ``selected_k`` always lies in the candidate range
        unless the input is degenerate
    """
    point_count = len(assignment.plot_point_ids)
    min_candidate = max(MIN_CANDIDATE_K, min_k if min_k is not None else settings.auto_k_min_k)
    raw_max = max_k if max_k is not None else settings.auto_k_max_k
    max_candidate = min(raw_max, max(min_candidate, point_count - 1))
    fallback_k = fallback_target(point_count, min_candidate, raw_max)

    if point_count < 2 or max_candidate < min_candidate:
        logger.debug(f"Auto-K fallback for {point_count} plot points: k={fallback_k}")
        return AutoKDiagnostics(
            selected_k=fallback_k,
            reason="fallback",
            candidate_range={"min": min_candidate, "max": max(min_candidate, max_candidate)},
        )

    candidate_range = {"min": min_candidate, "max": max_candidate}
    normalized = build_agreement_matrix(assignment, AgreementMatrixOptions(normalize=True))
    costs = build_cost_series(np.asarray(normalized.matrix, dtype=float), min_candidate)

    series = [
        AutoKSeriesPoint(k=k, cost=costs[k], similarity=_clamp(1 - costs[k], 0.0, 1.0))
        for k in range(min_candidate, max_candidate + 1)
        if k in costs and not math.isnan(costs[k])
    ]
    if not series:
        return AutoKDiagnostics(
            selected_k=fallback_k, reason="fallback", candidate_range=candidate_range
        )

    elbow = detect_elbow(series)

    if reference_runs is None:
        reference_runs = settings.auto_k_reference_runs
    if reference_runs is None:
        reference_runs = default_reference_runs(point_count)
    references = build_reference_series(
        assignment, min_candidate, reference_runs, rng or random.random
    )
    gap = detect_gap(series, references) if references else None

    from_gap = gap.suggested_k if gap is not None else None
    from_elbow = elbow.suggested_k if elbow is not None else None
    if from_gap is not None:
        reason: AutoKReason = "gap"
    elif from_elbow is not None:
        reason = "elbow"
    else:
        reason = "fallback"

    selected = clamp_k(
        next(k for k in (from_gap, from_elbow, fallback_k) if k is not None),
        min_candidate,
        max_candidate,
    )

    logger.info(
        f"Auto-K selected k={selected} ({reason}) from candidates "
        f"{min_candidate}-{max_candidate} over {point_count} plot points"
    )

    return AutoKDiagnostics(
        selected_k=selected,
        reason=reason,
        candidate_range=candidate_range,
        elbow=(
            ElbowResult(
                suggested_k=elbow.suggested_k,
                series=series,
                distance_scores=elbow.distance_scores,
            )
            if elbow is not None
            else None
        ),
        gap=gap,
    )


def fallback_target(point_count: int, min_candidate: int, raw_max: int) -> int:
    """Midpoint of the candidate range, or 1 for fewer than two points."""
    if point_count <= 1:
        return 1
    upper = min(raw_max, max(min_candidate, point_count - 1))
    if upper < min_candidate:
        return min(point_count, raw_max)
    return clamp_k((min_candidate + upper) // 2, min_candidate, upper)


def clamp_k(value: int, minimum: int, maximum: int) -> int:
    if minimum > maximum:
        return minimum
    return min(maximum, max(minimum, value))


def default_reference_runs(point_count: int) -> int:
    if point_count > 200:
        return 2
    if point_count > 80:
        return 3
    return 4


# =============================================================================
# Cost Curve
# =============================================================================


def build_cost_series(similarity: np.ndarray, min_candidate: int) -> dict[int, float]:
    """Average-linkage agglomeration recording merge cost per cluster count.

    Starting from singletons, each step merges the pair with the highest
    average similarity; the cost recorded at the resulting count is
    ``1 - similarity`` with similarity clamped to [0, 1].
    """
    count = similarity.shape[0]
    link_sums = similarity.astype(float).copy()
    sizes = np.ones(count)
    costs: dict[int, float] = {}

    while count > min_candidate and count >= 2:
        averages = link_sums / np.outer(sizes, sizes)
        upper = np.triu(np.ones((count, count), dtype=bool), k=1)
        masked = np.where(upper, averages, -np.inf)
        first, second = divmod(int(np.argmax(masked)), count)
        best = float(masked[first, second])
        if not math.isfinite(best):
            break

        costs[count - 1] = 1 - _clamp(best, 0.0, 1.0)

        keep = [i for i in range(count) if i not in (first, second)]
        merged = np.zeros((count - 1, count - 1))
        merged[:-1, :-1] = link_sums[np.ix_(keep, keep)]
        column = link_sums[keep, first] + link_sums[keep, second]
        merged[:-1, -1] = column
        merged[-1, :-1] = column
        merged[-1, -1] = (
            link_sums[first, first] + link_sums[second, second] + 2 * link_sums[first, second]
        )
        link_sums = merged
        sizes = np.append(sizes[keep], sizes[first] + sizes[second])
        count -= 1

    return costs


def build_reference_series(
    assignment: AssignmentMatrixResult,
    min_candidate: int,
    runs: int,
    rng: Callable[[], float],
) -> list[dict[int, float]]:
    """Cost curves of ``runs`` assignments with every row shuffled."""
    references: list[dict[int, float]] = []
    for _ in range(runs):
        shuffled = AssignmentMatrixResult(
            matrix=np.array(
                [shuffle_row(list(row), rng) for row in np.asarray(assignment.matrix)],
                dtype=float,
            ).reshape(np.shape(assignment.matrix)),
            plot_point_ids=list(assignment.plot_point_ids),
            category_ids=list(assignment.category_ids),
        )
        agreement = build_agreement_matrix(shuffled, AgreementMatrixOptions(normalize=True))
        references.append(build_cost_series(np.asarray(agreement.matrix), min_candidate))
    return references


def shuffle_row(row: list[float], rng: Callable[[], float]) -> list[float]:
    """In-place Fisher-Yates shuffle driven by ``rng``."""
    for i in range(len(row) - 1, 0, -1):
        j = math.floor(rng() * (i + 1))
        row[i], row[j] = row[j], row[i]
    return row


# =============================================================================
# Selection
# =============================================================================


def detect_elbow(series: list[AutoKSeriesPoint]) -> ElbowResult | None:
    """Point farthest from the chord joining the first and last points."""
    if len(series) < 3:
        return None

    first, last = series[0], series[-1]
    denominator = math.hypot(last.k - first.k, last.cost - first.cost) or 1.0

    distances = [
        {
            "k": point.k,
            "distance": abs(
                (last.cost - first.cost) * point.k
                - (last.k - first.k) * point.cost
                + last.k * first.cost
                - last.cost * first.k
            )
            / denominator,
        }
        for point in series
    ]
    distances.sort(key=lambda item: -item["distance"])
    return ElbowResult(suggested_k=int(distances[0]["k"]), distance_scores=distances)


def detect_gap(
    series: list[AutoKSeriesPoint],
    references: list[dict[int, float]],
) -> GapResult | None:
    """Gap statistic over log costs.

    Picks the smallest k with gap(k) >= gap(k+1) - threshold(k+1), where the
    threshold is the reference standard deviation scaled by
    sqrt(1 + 1/runs); otherwise the k with the largest gap.
    """
    if not series or not references:
        return None

    gap_series: list[AutoKGapPoint] = []
    for point in series:
        observed = math.log(point.cost + EPSILON)
        values = np.array(
            [math.log(ref.get(point.k, point.cost) + EPSILON) for ref in references]
        )
        reference = float(values.mean())
        threshold = float(values.std()) * math.sqrt(1 + 1 / len(references))
        gap_series.append(
            AutoKGapPoint(
                k=point.k,
                gap=reference - observed,
                threshold=threshold,
                reference=reference,
                observed=observed,
            )
        )

    for current, following in zip(gap_series, gap_series[1:]):
        if current.gap >= following.gap - following.threshold:
            return GapResult(suggested_k=current.k, series=gap_series)

    best = max(gap_series, key=lambda item: item.gap)
    return GapResult(suggested_k=best.k, series=gap_series)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))

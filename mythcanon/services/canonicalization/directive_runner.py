"""Directive Search Runner.

Seeds K medoids by farthest-point selection in cosine space over the
assignment matrix rows, assigns every plot point to its closest medoid, then
hill-climbs by moving single plot points between clusters while the move
improves the chosen objective:

- purity: sum over clusters of the dominant collaborator-category count
- variance: sum over clusters of normalized contributor entropy times size
- consensus: sum over clusters of pairwise agreement between members
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from sklearn.metrics.pairwise import cosine_distances

from mythcanon.schemas.canonicalization import (
    AlgorithmParams,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationResult,
    DirectiveSearchParams,
    MetricSummary,
    OptimizationGoal,
    ParameterDefinition,
    ParameterOption,
)
from mythcanon.schemas.myth import PlotPoint
from mythcanon.services.canonicalization.base import CanonicalizationInput, parse_params
from mythcanon.services.canonicalization.errors import MissingMatrixError
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixResult,
    AssignmentMatrixResult,
)
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.utils import (
    build_prevalence,
    collaborator_key,
    normalized_entropy,
)

logger = logging.getLogger(__name__)

# Minimum objective improvement for a move to count
EPSILON = 1e-6

DEFAULT_TARGET_COUNT = 5
ENTROPY_PRECISION = 6


@dataclass
class DirectiveCluster:
    """One cluster: its medoid and members in insertion order."""
    id: str
    medoid: str
    members: list[str] = field(default_factory=list)


@dataclass
class ProposedMove:
    """Moving one plot point between two clusters and the objective change."""
    plot_point_id: str
    source_id: str
    target_id: str
    delta: float


class SearchSpace:
    """Precomputed distances, contributor histograms and agreement weights."""

    def __init__(
        self,
        assignment: AssignmentMatrixResult,
        plot_points: Sequence[PlotPoint],
        agreement: AgreementMatrixResult | None,
        goal: OptimizationGoal,
    ):
        self.plot_point_ids = list(assignment.plot_point_ids)
        self.index = {point_id: idx for idx, point_id in enumerate(self.plot_point_ids)}
        self.vectors = np.asarray(assignment.matrix, dtype=float)
        self.distances = pairwise_cosine_distances(self.vectors)

        self.histograms: dict[str, dict[str, int]] = {}
        universe: set[str] = set()
        for point in plot_points:
            histogram: dict[str, int] = {}
            for tag in point.collaborator_categories:
                key = collaborator_key(tag)
                histogram[key] = histogram.get(key, 0) + 1
                universe.add(key)
            self.histograms[point.id] = histogram
        self.universe_size = max(1, len(universe))

        self.agreement = (
            self._agreement_weights(agreement) if goal == "consensus" else None
        )

    def distance(self, point_a: str, point_b: str) -> float:
        if point_a not in self.index or point_b not in self.index:
            return 1.0
        return float(self.distances[self.index[point_a], self.index[point_b]])

    def norm(self, point_id: str) -> float:
        if point_id not in self.index:
            return 0.0
        return float(np.linalg.norm(self.vectors[self.index[point_id]]))

    def _agreement_weights(self, agreement: AgreementMatrixResult | None) -> np.ndarray:
        """Positive off-diagonal weights aligned to the assignment row order.

        Falls back to cosine similarity of the assignment rows when no
        agreement matrix is available.
        """
        size = len(self.plot_point_ids)
        if agreement is None:
            weights = 1.0 - self.distances
        else:
            weights = np.zeros((size, size))
            source = {point_id: idx for idx, point_id in enumerate(agreement.plot_point_ids)}
            rows = [source.get(point_id) for point_id in self.plot_point_ids]
            present = [i for i, row in enumerate(rows) if row is not None]
            if present:
                matrix = np.asarray(agreement.matrix, dtype=float)
                picked = [rows[i] for i in present]
                weights[np.ix_(present, present)] = matrix[np.ix_(picked, picked)]

        weights = np.where(weights > 0, weights, 0.0)
        np.fill_diagonal(weights, 0.0)
        return weights


class DirectiveSearchRunner:
    """Medoid seeding followed by greedy single-point moves."""

    mode = CanonicalizationMode.DIRECTIVE
    params_model = DirectiveSearchParams
    parameter_definitions = [
        ParameterDefinition(
            key="target_canonical_count",
            label="Target categories",
            type="number",
            description="Number of clusters; defaults to 5, capped at the plot point count.",
            default_value=DEFAULT_TARGET_COUNT,
        ),
        ParameterDefinition(
            key="min_cluster_size",
            label="Minimum cluster size",
            type="number",
            description="Moves never shrink a cluster below this size.",
            default_value=1,
        ),
        ParameterDefinition(
            key="max_iterations",
            label="Max moves",
            type="number",
            default_value=50,
        ),
        ParameterDefinition(
            key="optimization_goal",
            label="Optimization goal",
            type="select",
            default_value="purity",
            options=[
                ParameterOption(label="Purity", value="purity"),
                ParameterOption(label="Contributor variance", value="variance"),
                ParameterOption(label="Consensus", value="consensus"),
            ],
        ),
    ]

    async def run(
        self,
        canonical_input: CanonicalizationInput,
        params: Mapping[str, Any] | AlgorithmParams | None = None,
    ) -> CanonicalizationResult:
        assignment = canonical_input.assignment
        if assignment is None:
            raise MissingMatrixError(
                self.mode.value,
                "assignment",
                "Directive search mode requires an assignment matrix. "
                "Pass one via MatrixProvider.",
            )

        parsed = parse_params(self.params_model, params, self.mode)
        goal = parsed.optimization_goal
        plot_point_count = len(canonical_input.plot_points)

        if plot_point_count == 0:
            return CanonicalizationResult(
                metrics=MetricSummary(coverage=0.0),
                diagnostics={
                    "iterations": 0,
                    "objective": 0,
                    "goal": goal,
                    "target_canonical_count": 0,
                    "effective_min_cluster_size": 0,
                },
            )

        target = clamp_target_count(parsed.target_canonical_count, plot_point_count)
        min_size = effective_min_cluster_size(
            parsed.min_cluster_size, plot_point_count, target
        )

        space = SearchSpace(assignment, canonical_input.plot_points, canonical_input.agreement, goal)
        clusters, labels = initialize_clusters(space, target, min_size)
        score = sum(cluster_score(c.members, space, goal) for c in clusters.values())

        iterations = 0
        move_attempts = 0
        while iterations < parsed.max_iterations:
            move, evaluated = find_best_move(clusters, labels, space, goal, min_size)
            move_attempts += evaluated
            if move is None or move.delta <= EPSILON:
                break
            apply_move(clusters, labels, move, space)
            score += move.delta
            iterations += 1

        assignments = [
            CanonicalAssignment(plot_point_id=point_id, canonical_id=cluster_id)
            for point_id, cluster_id in labels.items()
        ]

        logger.info(
            f"Directive search for {canonical_input.myth_id}: goal={goal}, "
            f"k={target}, moves={iterations}, objective={score:.4f}"
        )

        return CanonicalizationResult(
            assignments=assignments,
            prevalence=build_prevalence(assignments, canonical_input.plot_points),
            metrics=MetricSuite.run(assignments, canonical_input),
            diagnostics={
                "iterations": iterations,
                "objective": round(score, 4),
                "goal": goal,
                "target_canonical_count": target,
                "effective_min_cluster_size": min_size,
                "move_attempts": move_attempts,
            },
        )


# =============================================================================
# Sizing
# =============================================================================


def clamp_target_count(requested: int | None, plot_point_count: int) -> int:
    if plot_point_count == 0:
        return 0
    if requested is not None and requested >= 1:
        return min(requested, plot_point_count)
    return min(DEFAULT_TARGET_COUNT, plot_point_count)


def effective_min_cluster_size(requested: int, plot_point_count: int, cluster_count: int) -> int:
    """Requested minimum, capped so every cluster can still reach it."""
    if cluster_count == 0:
        return 0
    feasible_max = max(1, plot_point_count // cluster_count)
    return min(max(1, int(requested)), feasible_max)


def pairwise_cosine_distances(vectors: np.ndarray) -> np.ndarray:
    """Cosine distances between rows; all-zero rows sit at distance 1."""
    size = vectors.shape[0]
    if size == 0:
        return np.zeros((0, 0))
    if vectors.shape[1] == 0:
        distances = np.ones((size, size))
        np.fill_diagonal(distances, 0.0)
        return distances
    return cosine_distances(vectors)


# =============================================================================
# Initialization
# =============================================================================


def select_initial_medoids(space: SearchSpace, cluster_count: int) -> list[str]:
    """Farthest-point medoid seeding over the sorted plot point ids.

    The first medoid is the point with the largest L2 norm; each further
    medoid maximizes its minimum cosine distance to those already chosen.
    """
    ordered = sorted(space.plot_point_ids)
    if not ordered:
        return []

    first, best_norm = ordered[0], float("-inf")
    for point_id in ordered:
        norm = space.norm(point_id)
        if norm > best_norm:
            first, best_norm = point_id, norm
    medoids = [first]

    while len(medoids) < min(cluster_count, len(ordered)):
        candidate, farthest = None, float("-inf")
        for point_id in ordered:
            if point_id in medoids:
                continue
            distance = min(space.distance(point_id, medoid) for medoid in medoids)
            if distance > farthest:
                candidate, farthest = point_id, distance
        if candidate is None:
            break
        medoids.append(candidate)

    for point_id in ordered:
        if len(medoids) >= cluster_count:
            break
        if point_id not in medoids:
            medoids.append(point_id)

    return medoids


def initialize_clusters(
    space: SearchSpace,
    cluster_count: int,
    min_cluster_size: int,
) -> tuple[dict[str, DirectiveCluster], dict[str, str]]:
    """Assign every point to its closest medoid and refill empty clusters."""
    clusters: dict[str, DirectiveCluster] = {}
    for idx, medoid in enumerate(select_initial_medoids(space, cluster_count)):
        cluster_id = f"directive-{idx + 1}"
        clusters[cluster_id] = DirectiveCluster(id=cluster_id, medoid=medoid)

    labels: dict[str, str] = {}
    for point_id in space.plot_point_ids:
        closest, best_distance = None, float("inf")
        for cluster in clusters.values():
            distance = space.distance(point_id, cluster.medoid)
            if distance < best_distance:
                closest, best_distance = cluster.id, distance
        if closest is None:
            continue
        clusters[closest].members.append(point_id)
        labels[point_id] = closest

    rebalance_empty_clusters(clusters, labels, space, min_cluster_size)
    return clusters, labels


def rebalance_empty_clusters(
    clusters: dict[str, DirectiveCluster],
    labels: dict[str, str],
    space: SearchSpace,
    min_cluster_size: int,
) -> None:
    """Give every empty cluster the farthest member of the largest cluster."""
    for cluster in [c for c in clusters.values() if not c.members]:
        donor = None
        for candidate in clusters.values():
            if len(candidate.members) <= min_cluster_size:
                continue
            if donor is None or len(candidate.members) > len(donor.members):
                donor = candidate
        if donor is None:
            continue

        moved = max(donor.members, key=lambda point_id: space.distance(point_id, donor.medoid))
        donor.members.remove(moved)
        cluster.members.append(moved)
        cluster.medoid = moved
        labels[moved] = cluster.id
        donor.medoid = find_medoid(donor, space)


def find_medoid(cluster: DirectiveCluster, space: SearchSpace) -> str:
    """Member with the smallest summed distance to the other members."""
    if not cluster.members:
        return cluster.medoid
    best, best_score = cluster.medoid, float("inf")
    for candidate in cluster.members:
        total = sum(
            space.distance(candidate, other) for other in cluster.members if other != candidate
        )
        if total < best_score:
            best, best_score = candidate, total
    return best


# =============================================================================
# Local Search
# =============================================================================


def find_best_move(
    clusters: dict[str, DirectiveCluster],
    labels: dict[str, str],
    space: SearchSpace,
    goal: OptimizationGoal,
    min_cluster_size: int,
) -> tuple[ProposedMove | None, int]:
    """Best single-point move and the number of candidate moves scored.

    Earlier moves win unless beaten by EPSILON.
    """
    scores = {cid: cluster_score(c.members, space, goal) for cid, c in clusters.items()}
    best: ProposedMove | None = None
    evaluated = 0

    for point_id, source_id in labels.items():
        source = clusters[source_id]
        if len(source.members) - 1 < min_cluster_size:
            continue
        source_after = [m for m in source.members if m != point_id]
        next_source = cluster_score(source_after, space, goal)

        for target in clusters.values():
            if target.id == source_id:
                continue
            next_target = cluster_score(target.members + [point_id], space, goal)
            evaluated += 1
            delta = next_source + next_target - (scores[source_id] + scores[target.id])
            if best is None or delta > best.delta + EPSILON:
                best = ProposedMove(
                    plot_point_id=point_id,
                    source_id=source_id,
                    target_id=target.id,
                    delta=delta,
                )

    return best, evaluated


def apply_move(
    clusters: dict[str, DirectiveCluster],
    labels: dict[str, str],
    move: ProposedMove,
    space: SearchSpace,
) -> None:
    source = clusters[move.source_id]
    target = clusters[move.target_id]
    source.members.remove(move.plot_point_id)
    target.members.append(move.plot_point_id)
    labels[move.plot_point_id] = move.target_id
    source.medoid = find_medoid(source, space)
    target.medoid = find_medoid(target, space)


def cluster_score(members: list[str], space: SearchSpace, goal: OptimizationGoal) -> float:
    if not members:
        return 0.0
    if goal == "purity":
        return purity_score(members, space)
    if goal == "variance":
        return variance_score(members, space)
    return consensus_score(members, space)


def purity_score(members: list[str], space: SearchSpace) -> float:
    histogram = _aggregate(members, space)
    return float(max(histogram.values(), default=0))


def variance_score(members: list[str], space: SearchSpace) -> float:
    histogram = _aggregate(members, space)
    if sum(histogram.values()) == 0:
        return 0.0
    entropy = round(
        normalized_entropy(histogram.values(), space.universe_size), ENTROPY_PRECISION
    )
    return entropy * len(members)


def consensus_score(members: list[str], space: SearchSpace) -> float:
    if len(members) <= 1 or space.agreement is None:
        return 0.0
    indices = [space.index[m] for m in members if m in space.index]
    block = space.agreement[np.ix_(indices, indices)]
    return float(np.triu(block, k=1).sum())


def _aggregate(members: list[str], space: SearchSpace) -> dict[str, int]:
    histogram: dict[str, int] = {}
    for point_id in members:
        for key, value in space.histograms.get(point_id, {}).items():
            histogram[key] = histogram.get(key, 0) + value
    return histogram

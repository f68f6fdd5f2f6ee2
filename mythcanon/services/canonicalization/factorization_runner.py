"""Factorization Runner.

Approximates the assignment matrix A (plot points x collaborator categories)
as W @ H with non-negative factors using multiplicative updates. Each column
of W is a latent canonical category; a plot point joins the factor with the
largest loading in its row.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from mythcanon.schemas.canonicalization import (
    AlgorithmParams,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationResult,
    FactorizationParams,
    ParameterDefinition,
)
from mythcanon.services.canonicalization.base import CanonicalizationInput, parse_params
from mythcanon.services.canonicalization.errors import MissingMatrixError
from mythcanon.services.canonicalization.matrices import AssignmentMatrixResult
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.utils import build_prevalence

logger = logging.getLogger(__name__)

# Added to every multiplicative-update denominator
EPSILON = 1e-9

MIN_DEFAULT_RANK = 2
MAX_DEFAULT_RANK = 5


@dataclass
class FactorizationOutcome:
    """Factors and convergence information of one NMF run."""
    W: np.ndarray
    H: np.ndarray
    iterations: int
    residual: float


class FactorizationRunner:
    """Multiplicative-update non-negative matrix factorization."""

    mode = CanonicalizationMode.FACTORIZATION
    params_model = FactorizationParams
    parameter_definitions = [
        ParameterDefinition(
            key="rank",
            label="Latent factors",
            type="number",
            description="Number of factors; defaults to the category count clamped to 2-5.",
        ),
        ParameterDefinition(
            key="max_iterations",
            label="Max iterations",
            type="number",
            default_value=200,
        ),
        ParameterDefinition(
            key="tolerance",
            label="Tolerance",
            type="number",
            description="Stop when the residual changes by at most this much.",
            default_value=1e-4,
        ),
        ParameterDefinition(
            key="l1_reg",
            label="L1 regularization",
            type="number",
            description="Sparsity pressure added to the update denominators.",
            default_value=0.0,
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
                "Factorization mode requires an assignment matrix.",
            )

        parsed = parse_params(self.params_model, params, self.mode)
        rank = parsed.rank or default_rank(len(assignment.category_ids))

        outcome = factorize(
            assignment,
            rank=rank,
            max_iterations=parsed.max_iterations,
            tolerance=parsed.tolerance,
            l1_reg=parsed.l1_reg,
        )
        assignments = assignments_from_factors(assignment.plot_point_ids, outcome.W)

        logger.info(
            f"Factorization for {canonical_input.myth_id}: rank={rank}, "
            f"iterations={outcome.iterations}, residual={outcome.residual:.4f}"
        )

        return CanonicalizationResult(
            assignments=assignments,
            prevalence=build_prevalence(assignments, canonical_input.plot_points),
            metrics=MetricSuite.run(assignments, canonical_input),
            diagnostics={
                "rank": rank,
                "iterations": outcome.iterations,
                "residual": outcome.residual,
            },
            artifacts={"W": outcome.W.tolist(), "H": outcome.H.tolist()},
        )


def default_rank(category_count: int) -> int:
    """Category count clamped to [2, 5]."""
    return max(MIN_DEFAULT_RANK, min(category_count, MAX_DEFAULT_RANK))


def factorize(
    assignment: AssignmentMatrixResult,
    rank: int,
    max_iterations: int = 200,
    tolerance: float = 1e-4,
    l1_reg: float = 0.0,
) -> FactorizationOutcome:
    """Run NMF with deterministic seeding.

    W[i, r] = (i + r + 1) / (rank + rows) and H[r, c] = (r + c + 1) /
    (rank + cols), so repeated runs on the same matrix are identical.
    Each iteration updates H, then W, and stops once the Frobenius residual
    changes by at most ``tolerance``.
    """
    rows, cols = len(assignment.plot_point_ids), len(assignment.category_ids)
    if rows == 0 or cols == 0:
        return FactorizationOutcome(
            W=np.zeros((rows, rank)),
            H=np.zeros((rank, cols)),
            iterations=0,
            residual=0.0,
        )

    A = np.asarray(assignment.matrix, dtype=float)
    W = (np.add.outer(np.arange(rows), np.arange(rank)) + 1) / (rank + rows)
    H = (np.add.outer(np.arange(rank), np.arange(cols)) + 1) / (rank + cols)

    previous_residual = float("inf")
    iterations = 0
    while iterations < max_iterations:
        iterations += 1
        H = H * (W.T @ A) / (W.T @ W @ H + l1_reg + EPSILON)
        W = W * (A @ H.T) / (W @ (H @ H.T) + l1_reg + EPSILON)

        residual = float(np.linalg.norm(A - W @ H))
        converged = abs(previous_residual - residual) <= tolerance
        previous_residual = residual
        if converged:
            break

    return FactorizationOutcome(W=W, H=H, iterations=iterations, residual=previous_residual)


def assignments_from_factors(
    plot_point_ids: list[str],
    W: np.ndarray,
) -> list[CanonicalAssignment]:
    """Assign each plot point to the factor with its largest loading."""
    assignments: list[CanonicalAssignment] = []
    for row_idx, point_id in enumerate(plot_point_ids):
        row = W[row_idx]
        best_idx = int(np.argmax(row)) if row.size else 0
        best_value = float(row[best_idx]) if row.size else 0.0
        assignments.append(
            CanonicalAssignment(
                plot_point_id=point_id,
                canonical_id=f"factor-{best_idx}",
                score=best_value,
            )
        )
    return assignments

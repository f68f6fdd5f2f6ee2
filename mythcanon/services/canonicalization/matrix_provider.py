"""Per-run matrix preparation."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from mythcanon.core.config import settings
from mythcanon.schemas.myth import PlotPoint
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixOptions,
    AgreementMatrixResult,
    AssignmentMatrixOptions,
    AssignmentMatrixResult,
    build_agreement_matrix,
    build_assignment_matrix,
)

logger = logging.getLogger(__name__)


@dataclass
class MatrixProviderOptions:
    """Matrix builder options applied on every prepare() call."""
    assignment: AssignmentMatrixOptions = field(
        default_factory=lambda: AssignmentMatrixOptions(
            normalize_within_plot_point=settings.normalize_within_plot_point
        )
    )
    agreement: AgreementMatrixOptions = field(
        default_factory=lambda: AgreementMatrixOptions(
            normalize=settings.normalize_agreement
        )
    )


@dataclass
class MatrixProviderResult:
    """Matrices for one run; agreement only when requested."""
    assignment: AssignmentMatrixResult
    agreement: AgreementMatrixResult | None = None


class MatrixProvider:
    """Builds assignment (and optionally agreement) matrices for a run.

    The assignment matrix is always rebuilt since it is cheap and
    deterministic. The O(n^2) agreement matrix is only built when a caller
    opts in.
    """

    def __init__(
        self,
        plot_points: Sequence[PlotPoint],
        options: MatrixProviderOptions | None = None,
    ):
        self.plot_points = tuple(plot_points)
        self.options = options or MatrixProviderOptions()

    def prepare(self, with_agreement: bool = False) -> MatrixProviderResult:
        """Build the matrices for the current plot point snapshot.

        Args:
            with_agreement: Also build the plot-point agreement matrix

        Returns:
            MatrixProviderResult
        """
        assignment = build_assignment_matrix(self.plot_points, self.options.assignment)
        agreement = (
            build_agreement_matrix(assignment, self.options.agreement)
            if with_agreement
            else None
        )
        logger.debug(
            f"Prepared matrices for {len(self.plot_points)} plot points "
            f"(agreement={'yes' if agreement is not None else 'no'})"
        )
        return MatrixProviderResult(assignment=assignment, agreement=agreement)

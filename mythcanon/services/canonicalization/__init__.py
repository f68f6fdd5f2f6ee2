"""Canonicalization services: matrices, clustering runners, auto-K and run orchestration.

Runners are imported from their own modules; this package re-exports the
entry points a caller needs to run and inspect canonicalizations.
"""

from mythcanon.services.canonicalization.auto_k import (
    AutoKDiagnostics,
    auto_detect_category_count,
)
from mythcanon.services.canonicalization.base import (
    CanonicalizationAlgorithm,
    CanonicalizationInput,
)
from mythcanon.services.canonicalization.enforcement import (
    EnforcementLevel,
    SharedParameter,
    get_parameter_enforcement,
)
from mythcanon.services.canonicalization.errors import (
    CanonicalizationError,
    InvalidParametersError,
    InvalidTargetCountError,
    MissingMatrixError,
    PreconditionError,
    UnknownModeError,
)
from mythcanon.services.canonicalization.history_store import (
    InMemoryRunHistoryStore,
    RunHistoryStore,
    get_run_history_store,
)
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixOptions,
    AgreementMatrixResult,
    AssignmentMatrixOptions,
    AssignmentMatrixResult,
    build_agreement_matrix,
    build_assignment_matrix,
)
from mythcanon.services.canonicalization.matrix_provider import (
    MatrixProvider,
    MatrixProviderOptions,
    MatrixProviderResult,
)
from mythcanon.services.canonicalization.metrics import MetricSuite
from mythcanon.services.canonicalization.orchestrator import (
    CanonicalizationOrchestrator,
    build_category_labels,
    default_algorithms,
    ensure_canonicalizable,
)
from mythcanon.services.canonicalization.run_summary import (
    CanonicalizationRunSummary,
    summarize_run,
)

__all__ = [
    # Matrices
    "AgreementMatrixOptions",
    "AgreementMatrixResult",
    "AssignmentMatrixOptions",
    "AssignmentMatrixResult",
    "MatrixProvider",
    "MatrixProviderOptions",
    "MatrixProviderResult",
    "build_agreement_matrix",
    "build_assignment_matrix",
    # Runners
    "CanonicalizationAlgorithm",
    "CanonicalizationInput",
    "default_algorithms",
    # Auto-K
    "AutoKDiagnostics",
    "auto_detect_category_count",
    # Metrics and summaries
    "CanonicalizationRunSummary",
    "MetricSuite",
    "summarize_run",
    # Orchestration
    "CanonicalizationOrchestrator",
    "InMemoryRunHistoryStore",
    "RunHistoryStore",
    "build_category_labels",
    "ensure_canonicalizable",
    "get_run_history_store",
    # Parameter rail
    "EnforcementLevel",
    "SharedParameter",
    "get_parameter_enforcement",
    # Errors
    "CanonicalizationError",
    "InvalidParametersError",
    "InvalidTargetCountError",
    "MissingMatrixError",
    "PreconditionError",
    "UnknownModeError",
]

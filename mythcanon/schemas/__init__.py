"""Pydantic schemas for canonicalization inputs and outputs."""

from mythcanon.schemas.canonicalization import (
    AgreementGraphParams,
    AlgorithmParams,
    AutoKOptions,
    AutoSplitOptions,
    CanonicalAssignment,
    CanonicalCategoryPrevalence,
    CanonicalizationMode,
    CanonicalizationResult,
    CanonicalizationRunConfig,
    CanonicalizationRunRecord,
    ConsensusParams,
    DirectiveSearchParams,
    FactorizationParams,
    HierarchicalParams,
    MetricSummary,
    ParameterDefinition,
    ParameterOption,
    RunStatus,
    StoppingCriterion,
)
from mythcanon.schemas.common import BaseSchema, FrozenSchema
from mythcanon.schemas.myth import (
    CollaboratorCategory,
    CollaboratorCategoryAssignment,
    PlotPoint,
)

__all__ = [
    # Common
    "BaseSchema",
    "FrozenSchema",
    # Myth
    "CollaboratorCategory",
    "CollaboratorCategoryAssignment",
    "PlotPoint",
    # Canonicalization
    "AgreementGraphParams",
    "AlgorithmParams",
    "AutoKOptions",
    "AutoSplitOptions",
    "CanonicalAssignment",
    "CanonicalCategoryPrevalence",
    "CanonicalizationMode",
    "CanonicalizationResult",
    "CanonicalizationRunConfig",
    "CanonicalizationRunRecord",
    "ConsensusParams",
    "DirectiveSearchParams",
    "FactorizationParams",
    "HierarchicalParams",
    "MetricSummary",
    "ParameterDefinition",
    "ParameterOption",
    "RunStatus",
    "StoppingCriterion",
]

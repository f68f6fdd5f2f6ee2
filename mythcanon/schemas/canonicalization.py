"""Canonicalization schemas: parameters, results and run records."""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mythcanon.core.config import get_settings
from mythcanon.schemas.common import BaseSchema


class CanonicalizationMode(str, Enum):
    """Clustering strategy used to reconcile collaborator categories."""
    GRAPH = "graph"
    FACTORIZATION = "factorization"
    CONSENSUS = "consensus"
    HIERARCHICAL = "hierarchical"
    DIRECTIVE = "directive"


class RunStatus(str, Enum):
    """Outcome of a canonicalization run."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


OptimizationGoal = Literal["purity", "variance", "consensus"]
LinkageMetric = Literal["agreement", "entropy"]


# =============================================================================
# Results
# =============================================================================


class CanonicalAssignment(BaseSchema):
    """Placement of one plot point into a canonical cluster."""

    plot_point_id: str
    canonical_id: str
    score: float | None = None


class CanonicalCategoryPrevalence(BaseSchema):
    """Collaborator-category tag counts inside one canonical cluster."""

    canonical_id: str
    totals: dict[str, float] = Field(default_factory=dict)


class MetricSummary(BaseSchema):
    """Quality metrics for a canonical partition."""

    coverage: float
    purity_by_canonical: dict[str, float] = Field(default_factory=dict)
    entropy_by_canonical: dict[str, float] = Field(default_factory=dict)
    agreement_gain: float | None = None


class CanonicalizationResult(BaseSchema):
    """Output of a single algorithm invocation."""

    assignments: list[CanonicalAssignment] = Field(default_factory=list)
    prevalence: list[CanonicalCategoryPrevalence] = Field(default_factory=list)
    metrics: MetricSummary | None = None
    diagnostics: dict[str, Any] = Field(default_factory=dict)
    artifacts: dict[str, Any] | None = None


class ParameterOption(BaseSchema):
    """Selectable value for a select-type parameter."""

    label: str
    value: str | int


class ParameterDefinition(BaseSchema):
    """Describes one tunable of an algorithm for a parameter rail."""

    key: str
    label: str
    type: Literal["number", "boolean", "select", "text"]
    description: str | None = None
    required: bool = False
    default_value: Any = None
    options: list[ParameterOption] | None = None


# =============================================================================
# Algorithm Parameters
# =============================================================================


class AlgorithmParams(BaseSchema):
    """Base for per-mode parameters; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    target_canonical_count: int | None = None


class AgreementGraphParams(AlgorithmParams):
    """Label propagation parameters."""

    min_cluster_size: int = Field(default=1, ge=1)
    max_iterations: int = Field(default=12, ge=0)


class FactorizationParams(AlgorithmParams):
    """Non-negative matrix factorization parameters."""

    rank: int | None = Field(default=None, ge=1)
    max_iterations: int = Field(default=200, ge=1)
    tolerance: float = Field(default=1e-4, ge=0)
    l1_reg: float = Field(default=0.0, ge=0)


class ConsensusParams(AlgorithmParams):
    """Consensus local-search parameters."""

    split_penalty: float = 1.0
    merge_penalty: float = 1.0
    balance_penalty: float = 0.5
    max_iterations: int = Field(default=25, ge=0)


class StoppingCriterion(BaseSchema):
    """When agglomeration stops."""

    type: Literal["count", "purity", "delta"]
    value: float


class AutoSplitOptions(BaseSchema):
    """Post-merge splitting of high-entropy clusters."""

    entropy_threshold: float


class HierarchicalParams(AlgorithmParams):
    """Agglomerative merge parameters.

    Besides the nested ``stopping_criterion`` and ``auto_split`` objects, the
    flat keys a parameter rail sends are accepted and folded into them.
    """

    RAIL_KEYS: ClassVar[dict[str, tuple[str, str]]] = {
        "stopping_criterion_type": ("stopping_criterion", "type"),
        "stopping_criterion_value": ("stopping_criterion", "value"),
        "auto_split_entropy_threshold": ("auto_split", "entropy_threshold"),
    }

    stopping_criterion: StoppingCriterion | None = None
    linkage_metric: LinkageMetric = "agreement"
    auto_split: AutoSplitOptions | None = None
    max_steps: int = Field(default=200, ge=0)

    @model_validator(mode="before")
    @classmethod
    def fold_rail_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        nested: dict[str, dict[str, Any]] = {}
        for key, (field_name, attribute) in cls.RAIL_KEYS.items():
            value = data.pop(key, data.pop(to_camel(key), None))
            if value is not None:
                nested.setdefault(field_name, {})[attribute] = value
        for field_name, values in nested.items():
            if data.get(field_name) is None and data.get(to_camel(field_name)) is None:
                data[field_name] = values
        return data


class DirectiveSearchParams(AlgorithmParams):
    """Medoid local-search parameters."""

    min_cluster_size: int = 1
    max_iterations: int = Field(default=50, ge=0)
    optimization_goal: OptimizationGoal = "purity"


# =============================================================================
# Runs
# =============================================================================


class AutoKOptions(BaseSchema):
    """Candidate range and reference runs for automatic K detection."""

    min_k: int | None = None
    max_k: int | None = None
    reference_runs: int | None = Field(default=None, ge=0)


class CanonicalizationRunConfig(BaseSchema):
    """Request to run one algorithm over a myth's plot points."""

    myth_id: str
    mode: CanonicalizationMode = Field(
        default_factory=lambda: CanonicalizationMode(get_settings().default_mode)
    )
    params: dict[str, Any] = Field(default_factory=dict)
    use_auto_k: bool = False
    auto_k: AutoKOptions | None = None
    metadata: dict[str, Any] | None = None


class CanonicalizationRunRecord(CanonicalizationResult):
    """A completed (or failed) run as stored in run history."""

    model_config = ConfigDict(frozen=True)

    id: str
    myth_id: str
    mode: CanonicalizationMode
    params: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    status: RunStatus = RunStatus.SUCCEEDED
    error_message: str | None = None
    category_labels: dict[str, str] = Field(default_factory=dict)

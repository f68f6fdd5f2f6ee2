"""How strictly each mode honors the shared parameter rail."""

from enum import Enum

from mythcanon.schemas.canonicalization import CanonicalizationMode


class EnforcementLevel(str, Enum):
    """Whether a mode guarantees, approximates or ignores a parameter."""
    STRICT = "strict"
    INFLUENCE = "influence"
    NA = "na"


class SharedParameter(str, Enum):
    """Parameters offered for every mode."""
    AUTO_DETECT = "auto_detect"
    TARGET_CANONICAL_COUNT = "target_canonical_count"
    OPTIMIZATION_GOAL = "optimization_goal"
    MIN_CLUSTER_SIZE = "min_cluster_size"


_STRICT = EnforcementLevel.STRICT
_INFLUENCE = EnforcementLevel.INFLUENCE
_NA = EnforcementLevel.NA

ENFORCEMENT_BY_MODE: dict[CanonicalizationMode, dict[SharedParameter, EnforcementLevel]] = {
    CanonicalizationMode.GRAPH: {
        SharedParameter.AUTO_DETECT: _INFLUENCE,
        SharedParameter.TARGET_CANONICAL_COUNT: _INFLUENCE,
        SharedParameter.OPTIMIZATION_GOAL: _NA,
        SharedParameter.MIN_CLUSTER_SIZE: _INFLUENCE,
    },
    CanonicalizationMode.FACTORIZATION: {
        SharedParameter.AUTO_DETECT: _NA,
        SharedParameter.TARGET_CANONICAL_COUNT: _NA,
        SharedParameter.OPTIMIZATION_GOAL: _NA,
        SharedParameter.MIN_CLUSTER_SIZE: _NA,
    },
    CanonicalizationMode.CONSENSUS: {
        SharedParameter.AUTO_DETECT: _STRICT,
        SharedParameter.TARGET_CANONICAL_COUNT: _STRICT,
        SharedParameter.OPTIMIZATION_GOAL: _NA,
        SharedParameter.MIN_CLUSTER_SIZE: _NA,
    },
    # The target is an upper bound here; the stopping criterion decides the rest.
    CanonicalizationMode.HIERARCHICAL: {
        SharedParameter.AUTO_DETECT: _INFLUENCE,
        SharedParameter.TARGET_CANONICAL_COUNT: _INFLUENCE,
        SharedParameter.OPTIMIZATION_GOAL: _NA,
        SharedParameter.MIN_CLUSTER_SIZE: _NA,
    },
    # The minimum size is capped at points // clusters.
    CanonicalizationMode.DIRECTIVE: {
        SharedParameter.AUTO_DETECT: _STRICT,
        SharedParameter.TARGET_CANONICAL_COUNT: _STRICT,
        SharedParameter.OPTIMIZATION_GOAL: _STRICT,
        SharedParameter.MIN_CLUSTER_SIZE: _INFLUENCE,
    },
}


def get_parameter_enforcement(
    mode: CanonicalizationMode | str,
) -> dict[SharedParameter, EnforcementLevel]:
    """Enforcement level of every shared parameter for a mode.

    Raises:
        ValueError: If ``mode`` is not a known mode
    """
    return dict(ENFORCEMENT_BY_MODE[CanonicalizationMode(mode)])

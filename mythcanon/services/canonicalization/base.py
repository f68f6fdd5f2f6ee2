"""Shared input type and algorithm interface for the clustering runners."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError

from mythcanon.schemas.canonicalization import (
    AlgorithmParams,
    CanonicalizationMode,
    CanonicalizationResult,
    ParameterDefinition,
)
from mythcanon.schemas.myth import CollaboratorCategory, PlotPoint
from mythcanon.services.canonicalization.errors import InvalidParametersError
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixResult,
    AssignmentMatrixResult,
)

ParamsT = TypeVar("ParamsT", bound=AlgorithmParams)


@dataclass(frozen=True)
class CanonicalizationInput:
    """Immutable snapshot handed to a runner.

    Attributes:
        myth_id: Owning myth (document) id
        plot_points: Plot points in matrix row order
        collaborator_categories: All collaborator categories of the myth
        assignment: Assignment matrix, if prepared
        agreement: Agreement matrix, if prepared
        metadata: Free-form caller metadata
    """
    myth_id: str
    plot_points: Sequence[PlotPoint]
    collaborator_categories: Sequence[CollaboratorCategory]
    assignment: AssignmentMatrixResult | None = None
    agreement: AgreementMatrixResult | None = None
    metadata: Mapping[str, Any] | None = None


class CanonicalizationAlgorithm(Protocol):
    """Capability every clustering runner implements."""

    mode: CanonicalizationMode
    params_model: type[AlgorithmParams]
    parameter_definitions: list[ParameterDefinition]

    async def run(
        self,
        canonical_input: CanonicalizationInput,
        params: Mapping[str, Any] | AlgorithmParams | None = None,
    ) -> CanonicalizationResult:
        ...


def parse_params(
    model: type[ParamsT],
    params: Mapping[str, Any] | AlgorithmParams | None,
    mode: CanonicalizationMode,
) -> ParamsT:
    """Validate a raw parameter mapping into a mode's parameter model.

    Raises:
        InvalidParametersError: If a known key has an invalid value
    """
    if isinstance(params, model):
        return params
    if isinstance(params, AlgorithmParams):
        params = params.model_dump(exclude_unset=True)
    try:
        return model.model_validate(dict(params or {}))
    except ValidationError as e:
        raise InvalidParametersError(mode.value, str(e)) from e

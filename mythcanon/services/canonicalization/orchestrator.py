"""Canonicalization Orchestrator - selects a runner, resolves auto-K and records runs."""

import logging
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import TypeAdapter, ValidationError

from mythcanon.schemas.canonicalization import (
    AutoKOptions,
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationRunConfig,
    CanonicalizationRunRecord,
    RunStatus,
)
from mythcanon.schemas.myth import CollaboratorCategory, PlotPoint
from mythcanon.services.canonicalization.auto_k import (
    AutoKDiagnostics,
    auto_detect_category_count,
)
from mythcanon.services.canonicalization.base import (
    CanonicalizationAlgorithm,
    CanonicalizationInput,
)
from mythcanon.services.canonicalization.consensus_runner import ConsensusRunner
from mythcanon.services.canonicalization.directive_runner import DirectiveSearchRunner
from mythcanon.services.canonicalization.errors import (
    InvalidParametersError,
    InvalidTargetCountError,
    PreconditionError,
    UnknownModeError,
)
from mythcanon.services.canonicalization.factorization_runner import FactorizationRunner
from mythcanon.services.canonicalization.graph_runner import AgreementGraphRunner
from mythcanon.services.canonicalization.hierarchical_runner import HierarchicalRunner
from mythcanon.services.canonicalization.history_store import (
    RunHistoryStore,
    get_run_history_store,
)
from mythcanon.services.canonicalization.matrices import AssignmentMatrixResult
from mythcanon.services.canonicalization.matrix_provider import MatrixProvider
from mythcanon.services.canonicalization.utils import group_by_label, index_plot_points

logger = logging.getLogger(__name__)

TARGET_KEY = "target_canonical_count"
TARGET_ALIAS = "targetCanonicalCount"
TARGET_ADAPTER = TypeAdapter(int | None)

AutoKResolver = Callable[[AssignmentMatrixResult, AutoKOptions | None], AutoKDiagnostics]


def default_algorithms() -> dict[CanonicalizationMode, CanonicalizationAlgorithm]:
    """One runner per mode."""
    return {
        CanonicalizationMode.GRAPH: AgreementGraphRunner(),
        CanonicalizationMode.FACTORIZATION: FactorizationRunner(),
        CanonicalizationMode.CONSENSUS: ConsensusRunner(),
        CanonicalizationMode.HIERARCHICAL: HierarchicalRunner(),
        CanonicalizationMode.DIRECTIVE: DirectiveSearchRunner(),
    }


def mode_requires_agreement(mode: CanonicalizationMode) -> bool:
    return mode in (CanonicalizationMode.GRAPH, CanonicalizationMode.HIERARCHICAL)


def resolve_auto_k(
    assignment: AssignmentMatrixResult,
    options: AutoKOptions | None,
) -> AutoKDiagnostics:
    """Default auto-K resolver backed by the gap/elbow detector."""
    options = options or AutoKOptions()
    return auto_detect_category_count(
        assignment,
        min_k=options.min_k,
        max_k=options.max_k,
        reference_runs=options.reference_runs,
    )


class CanonicalizationOrchestrator:
    """Runs one canonicalization mode over a myth snapshot and records the run.

    Plot points and collaborator categories are captured at construction;
    every run works on that snapshot.
    """

    def __init__(
        self,
        matrix_provider: MatrixProvider,
        plot_points: Sequence[PlotPoint],
        collaborator_categories: Sequence[CollaboratorCategory],
        algorithms: Mapping[CanonicalizationMode, CanonicalizationAlgorithm] | None = None,
        history_store: RunHistoryStore | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
        auto_k_resolver: AutoKResolver | None = None,
    ):
        self.matrix_provider = matrix_provider
        self.plot_points = tuple(plot_points)
        self.collaborator_categories = tuple(collaborator_categories)
        self.algorithms = dict(algorithms) if algorithms is not None else default_algorithms()
        self.history_store = history_store or get_run_history_store()
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.auto_k_resolver = auto_k_resolver or resolve_auto_k

    async def run(self, config: CanonicalizationRunConfig) -> CanonicalizationRunRecord:
        """Execute one run and persist its record.

        Args:
            config: Mode, raw parameters and auto-K options

        Returns:
            The persisted run record

        Raises:
            UnknownModeError: If no runner is registered for the mode
            InvalidTargetCountError: If the resolved target cannot be met
            CanonicalizationError: Anything the runner raises, unchanged
        """
        algorithm = self.algorithms.get(config.mode)
        if algorithm is None:
            raise UnknownModeError(config.mode.value)

        logger.info(
            f"Starting {config.mode.value} canonicalization for myth {config.myth_id} "
            f"({len(self.plot_points)} plot points, auto_k={config.use_auto_k})"
        )

        needs_agreement = mode_requires_agreement(config.mode) or config.use_auto_k
        matrices = self.matrix_provider.prepare(with_agreement=needs_agreement)

        params: dict[str, Any] = dict(config.params)
        auto_k: AutoKDiagnostics | None = None
        if config.use_auto_k:
            auto_k = self.auto_k_resolver(matrices.assignment, config.auto_k)
            params.pop(TARGET_ALIAS, None)
            params[TARGET_KEY] = auto_k.selected_k
            logger.info(
                f"Auto-K selected {auto_k.selected_k} categories ({auto_k.reason}) "
                f"for myth {config.myth_id}"
            )

        self._validate_target(params, config.mode)

        canonical_input = CanonicalizationInput(
            myth_id=config.myth_id,
            plot_points=self.plot_points,
            collaborator_categories=self.collaborator_categories,
            assignment=matrices.assignment,
            agreement=matrices.agreement,
            metadata=config.metadata,
        )
        result = await algorithm.run(canonical_input, params)

        diagnostics = dict(result.diagnostics)
        if auto_k is not None:
            diagnostics["auto_k"] = auto_k.to_dict()

        record = CanonicalizationRunRecord(
            id=self.id_factory(),
            myth_id=config.myth_id,
            mode=config.mode,
            params=params,
            timestamp=self.clock(),
            assignments=result.assignments,
            prevalence=result.prevalence,
            metrics=result.metrics,
            diagnostics=diagnostics,
            artifacts=result.artifacts,
            category_labels=build_category_labels(
                result.assignments, self.plot_points, self.collaborator_categories
            ),
        )
        await self.history_store.save(record)

        logger.info(
            f"Completed {config.mode.value} run {record.id} for myth {config.myth_id}: "
            f"{len(record.category_labels)} canonical categories"
        )
        return record

    async def record_failure(
        self,
        config: CanonicalizationRunConfig,
        error: BaseException | str,
    ) -> CanonicalizationRunRecord:
        """Persist a failed-run record for a run that raised."""
        message = str(error) or type(error).__name__
        record = CanonicalizationRunRecord(
            id=self.id_factory(),
            myth_id=config.myth_id,
            mode=config.mode,
            params=dict(config.params),
            timestamp=self.clock(),
            status=RunStatus.FAILED,
            error_message=message,
        )
        await self.history_store.save(record)
        logger.warning(
            f"Recorded failed {config.mode.value} run {record.id} for myth "
            f"{config.myth_id}: {message}"
        )
        return record

    async def list_runs(
        self,
        myth_id: str,
        limit: int | None = None,
    ) -> list[CanonicalizationRunRecord]:
        return await self.history_store.list(myth_id, limit)

    def _validate_target(self, params: dict[str, Any], mode: CanonicalizationMode) -> None:
        """Coerce the target the way the runners do, store it, and bound-check it."""
        if TARGET_KEY not in params and TARGET_ALIAS not in params:
            return
        raw = params.pop(TARGET_ALIAS, None)
        raw = params.pop(TARGET_KEY, raw)
        try:
            target = TARGET_ADAPTER.validate_python(raw)
        except ValidationError as e:
            error = InvalidParametersError(mode.value, f"target_canonical_count: {e}")
            logger.warning(f"Rejected canonicalization target {raw!r}: {error}")
            raise error from e
        if target is None:
            return
        params[TARGET_KEY] = target

        available = len(self.plot_points)
        if target < 1:
            message = "Target canonical count must be at least 1."
        elif available == 0 or target > available:
            message = None
        else:
            return

        error = InvalidTargetCountError(target, available, message)
        logger.warning(f"Rejected canonicalization target: {error}")
        raise error


# =============================================================================
# Boundary Helpers
# =============================================================================


def ensure_canonicalizable(plot_points: Sequence[PlotPoint]) -> None:
    """Check that a myth has anything to canonicalize.

    Raises:
        PreconditionError: If there are no plot points, or no plot point
            carries a collaborator category assignment
    """
    if not plot_points:
        raise PreconditionError("Add at least one plot point before canonicalizing.")
    if all(not point.collaborator_categories for point in plot_points):
        raise PreconditionError(
            "Add at least one collaborator category assignment before canonicalizing."
        )


def build_category_labels(
    assignments: Sequence[CanonicalAssignment],
    plot_points: Sequence[PlotPoint],
    collaborator_categories: Sequence[CollaboratorCategory],
) -> dict[str, str]:
    """Name each canonical id after its dominant collaborator category.

    Clusters without any tagged member are named ``Category <n>``, where n is
    the cluster's rank by size (largest first).
    """
    lookup = index_plot_points(plot_points)
    names = {category.id: category.name for category in collaborator_categories}
    groups = group_by_label({a.plot_point_id: a.canonical_id for a in assignments})
    ranked = sorted(groups.items(), key=lambda item: -len(item[1]))

    labels: dict[str, str] = {}
    for rank, (canonical_id, members) in enumerate(ranked, start=1):
        counts: dict[str, int] = {}
        fallback_names: dict[str, str] = {}
        for point_id in members:
            point = lookup.get(point_id)
            if point is None:
                continue
            for tag in point.collaborator_categories:
                category_id = tag.collaborator_category_id
                counts[category_id] = counts.get(category_id, 0) + 1
                if tag.category_name:
                    fallback_names.setdefault(category_id, tag.category_name)

        dominant = max(counts, key=counts.get) if counts else None
        name = None
        if dominant is not None:
            name = names.get(dominant) or fallback_names.get(dominant)
        labels[canonical_id] = name or f"Category {rank}"

    return labels

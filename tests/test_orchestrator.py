"""Tests for the canonicalization orchestrator."""

from datetime import datetime, timedelta, timezone

import pytest

from mythcanon.core.config import Settings
from mythcanon.schemas.canonicalization import (
    CanonicalAssignment,
    CanonicalizationMode,
    CanonicalizationRunConfig,
    RunStatus,
)
from mythcanon.services.canonicalization.auto_k import AutoKDiagnostics
from mythcanon.services.canonicalization.consensus_runner import ConsensusRunner
from mythcanon.services.canonicalization.errors import (
    InvalidParametersError,
    InvalidTargetCountError,
    PreconditionError,
    UnknownModeError,
)
from mythcanon.services.canonicalization.history_store import InMemoryRunHistoryStore
from mythcanon.services.canonicalization.matrix_provider import MatrixProvider
from mythcanon.services.canonicalization.orchestrator import (
    CanonicalizationOrchestrator,
    build_category_labels,
    default_algorithms,
    ensure_canonicalizable,
)

from conftest import make_point


class RecordingMatrixProvider(MatrixProvider):
    """MatrixProvider that remembers whether agreement was requested."""

    def __init__(self, plot_points):
        super().__init__(plot_points)
        self.calls: list[bool] = []

    def prepare(self, with_agreement: bool = False):
        self.calls.append(with_agreement)
        return super().prepare(with_agreement=with_agreement)


def stub_auto_k(selected_k: int):
    def resolver(assignment, options):
        return AutoKDiagnostics(
            selected_k=selected_k,
            reason="elbow",
            candidate_range={"min": 2, "max": selected_k},
        )

    return resolver


def ticking_clock(start: datetime | None = None):
    current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def tick() -> datetime:
        nonlocal current
        current = current + timedelta(minutes=1)
        return current

    return tick


@pytest.fixture
def history_store():
    return InMemoryRunHistoryStore()


@pytest.fixture
def orchestrator_factory(three_points, three_categories, history_store):
    def build(plot_points=None, **kwargs):
        points = three_points if plot_points is None else plot_points
        provider = RecordingMatrixProvider(points)
        kwargs.setdefault("history_store", history_store)
        kwargs.setdefault("clock", ticking_clock())
        return CanonicalizationOrchestrator(provider, points, three_categories, **kwargs)

    return build


class TestOrchestratorRun:
    """Successful runs through the orchestrator."""

    async def test_consensus_run_is_recorded(self, orchestrator_factory, history_store):
        orchestrator = orchestrator_factory(id_factory=lambda: "run-fixed")

        record = await orchestrator.run(
            CanonicalizationRunConfig(
                myth_id="myth",
                mode=CanonicalizationMode.CONSENSUS,
                params={"targetCanonicalCount": 2},
            )
        )

        assert record.id == "run-fixed"
        assert record.status == RunStatus.SUCCEEDED
        assert record.metrics.coverage == 1.0
        assert len({a.canonical_id for a in record.assignments}) == 2
        assert sorted(record.category_labels.values()) == ["Resolution", "Start"]
        assert orchestrator.matrix_provider.calls == [False]
        assert await history_store.list("myth") == [record]

    async def test_graph_mode_requests_agreement(self, orchestrator_factory):
        orchestrator = orchestrator_factory()

        await orchestrator.run(
            CanonicalizationRunConfig(
                myth_id="myth", mode="graph", params={"target_canonical_count": 2}
            )
        )

        assert orchestrator.matrix_provider.calls == [True]

    async def test_runs_listed_newest_first(self, orchestrator_factory):
        orchestrator = orchestrator_factory()
        config = CanonicalizationRunConfig(
            myth_id="myth", mode="consensus", params={"target_canonical_count": 2}
        )

        first = await orchestrator.run(config)
        second = await orchestrator.run(config)

        runs = await orchestrator.list_runs("myth")
        assert [run.id for run in runs] == [second.id, first.id]
        assert await orchestrator.list_runs("other-myth") == []

    async def test_auto_k_overrides_target(self, orchestrator_factory):
        orchestrator = orchestrator_factory(auto_k_resolver=stub_auto_k(2))

        record = await orchestrator.run(
            CanonicalizationRunConfig(
                myth_id="myth",
                mode="consensus",
                params={"targetCanonicalCount": 3},
                use_auto_k=True,
            )
        )

        assert record.params == {"target_canonical_count": 2}
        assert record.diagnostics["auto_k"]["selected_k"] == 2
        assert record.diagnostics["auto_k"]["reason"] == "elbow"
        assert orchestrator.matrix_provider.calls == [True]

    async def test_auto_k_with_real_detector(self, clustered_points, clustered_categories):
        orchestrator = CanonicalizationOrchestrator(
            MatrixProvider(clustered_points),
            clustered_points,
            clustered_categories,
            history_store=InMemoryRunHistoryStore(),
        )

        record = await orchestrator.run(
            CanonicalizationRunConfig(
                myth_id="myth",
                mode="consensus",
                use_auto_k=True,
                auto_k={"maxK": 5, "referenceRuns": 0},
            )
        )

        assert record.diagnostics["auto_k"]["selected_k"] == 3
        assert sorted(record.category_labels.values()) == ["Quest", "Resolution", "Twist"]


class TestOrchestratorErrors:
    """Rejected runs and failure records."""

    async def test_auto_k_target_above_point_count(self, orchestrator_factory, history_store):
        orchestrator = orchestrator_factory(auto_k_resolver=stub_auto_k(5))

        with pytest.raises(InvalidTargetCountError) as exc_info:
            await orchestrator.run(
                CanonicalizationRunConfig(myth_id="myth", mode="consensus", use_auto_k=True)
            )

        assert str(exc_info.value) == (
            "Cannot request 5 canonical categories with only 3 plot points available."
        )
        assert await history_store.list("myth") == []

    async def test_string_target_is_coerced_before_bounds_check(self, orchestrator_factory):
        with pytest.raises(InvalidTargetCountError) as exc_info:
            await orchestrator_factory().run(
                CanonicalizationRunConfig(
                    myth_id="myth", mode="consensus", params={"target_canonical_count": "10"}
                )
            )

        assert str(exc_info.value) == (
            "Cannot request 10 canonical categories with only 3 plot points available."
        )

    async def test_string_target_is_stored_as_int(self, orchestrator_factory):
        record = await orchestrator_factory().run(
            CanonicalizationRunConfig(
                myth_id="myth", mode="consensus", params={"targetCanonicalCount": "2"}
            )
        )

        assert record.params == {"target_canonical_count": 2}
        assert len({a.canonical_id for a in record.assignments}) == 2

    async def test_non_numeric_target(self, orchestrator_factory, history_store):
        with pytest.raises(InvalidParametersError, match="target_canonical_count"):
            await orchestrator_factory().run(
                CanonicalizationRunConfig(
                    myth_id="myth", mode="consensus", params={"target_canonical_count": "many"}
                )
            )

        assert await history_store.list("myth") == []

    async def test_target_below_one(self, orchestrator_factory):
        with pytest.raises(InvalidTargetCountError, match="at least 1"):
            await orchestrator_factory().run(
                CanonicalizationRunConfig(
                    myth_id="myth", mode="consensus", params={"target_canonical_count": 0}
                )
            )

    async def test_target_without_plot_points(self, orchestrator_factory):
        with pytest.raises(InvalidTargetCountError, match="only 0 plot points"):
            await orchestrator_factory(plot_points=[]).run(
                CanonicalizationRunConfig(
                    myth_id="myth", mode="graph", params={"target_canonical_count": 1}
                )
            )

    async def test_unknown_mode(self, orchestrator_factory):
        orchestrator = orchestrator_factory(
            algorithms={CanonicalizationMode.CONSENSUS: ConsensusRunner()}
        )

        with pytest.raises(UnknownModeError):
            await orchestrator.run(CanonicalizationRunConfig(myth_id="myth", mode="graph"))

    async def test_record_failure(self, orchestrator_factory, history_store):
        orchestrator = orchestrator_factory(id_factory=lambda: "run-failed")
        config = CanonicalizationRunConfig(
            myth_id="myth", mode="hierarchical", params={"max_steps": 3}
        )

        record = await orchestrator.record_failure(config, ValueError("boom"))

        assert record.id == "run-failed"
        assert record.status == RunStatus.FAILED
        assert record.error_message == "boom"
        assert record.assignments == []
        assert record.params == {"max_steps": 3}
        assert await history_store.list("myth") == [record]

    def test_mode_defaults_to_configured_mode(self, monkeypatch):
        assert CanonicalizationRunConfig(myth_id="myth").mode == CanonicalizationMode.GRAPH

        monkeypatch.setattr(
            "mythcanon.schemas.canonicalization.get_settings",
            lambda: Settings(_env_file=None, default_mode="directive"),
        )

        assert CanonicalizationRunConfig(myth_id="myth").mode == CanonicalizationMode.DIRECTIVE

    def test_default_algorithms_cover_every_mode(self):
        assert set(default_algorithms()) == set(CanonicalizationMode)


class TestBoundaryHelpers:
    """Preconditions and category labels."""

    def test_requires_plot_points(self):
        with pytest.raises(PreconditionError, match="at least one plot point"):
            ensure_canonicalizable([])

    def test_requires_a_tagged_plot_point(self):
        with pytest.raises(PreconditionError, match="collaborator category assignment"):
            ensure_canonicalizable([make_point("p1"), make_point("p2")])

    def test_accepts_partially_tagged_points(self, three_points):
        ensure_canonicalizable(three_points + [make_point("p4")])

    def test_labels_fall_back_to_rank(self, three_points, three_categories):
        untagged = make_point("p4")
        assignments = [
            CanonicalAssignment(plot_point_id="p1", canonical_id="c1"),
            CanonicalAssignment(plot_point_id="p2", canonical_id="c1"),
            CanonicalAssignment(plot_point_id="p4", canonical_id="c2"),
        ]

        labels = build_category_labels(
            assignments, three_points + [untagged], three_categories
        )

        assert labels == {"c1": "Start", "c2": "Category 2"}

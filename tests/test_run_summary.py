"""Tests for run summaries."""

from datetime import datetime, timezone

import pytest

from mythcanon.schemas.canonicalization import (
    CanonicalAssignment,
    CanonicalCategoryPrevalence,
    CanonicalizationRunRecord,
    MetricSummary,
    RunStatus,
)
from mythcanon.services.canonicalization.run_summary import (
    build_contributors,
    summarize_run,
)


def make_record(**overrides) -> CanonicalizationRunRecord:
    fields = dict(
        id="run-1",
        myth_id="myth",
        mode="consensus",
        timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
        assignments=[
            CanonicalAssignment(plot_point_id="p1", canonical_id="c1"),
            CanonicalAssignment(plot_point_id="p2", canonical_id="c1"),
            CanonicalAssignment(plot_point_id="p3", canonical_id="c2"),
        ],
        prevalence=[
            CanonicalCategoryPrevalence(canonical_id="c1", totals={"cat-a": 2, "cat-b": 1}),
            CanonicalCategoryPrevalence(canonical_id="c2", totals={"cat-c": 1}),
        ],
        metrics=MetricSummary(
            coverage=1.0,
            purity_by_canonical={"c1": 0.5, "c2": 1.0},
            entropy_by_canonical={"c1": 0.6, "c2": 0.0},
            agreement_gain=0.2,
        ),
        category_labels={"c1": "Start"},
    )
    fields.update(overrides)
    return CanonicalizationRunRecord(**fields)


class TestSummarizeRun:
    """Category overview of a stored run."""

    def test_categories_sorted_by_size(self, three_points, three_categories):
        summary = summarize_run(make_record(), three_points, three_categories)

        assert [category.id for category in summary.categories] == ["c1", "c2"]
        first, second = summary.categories
        assert first.label == "Start"
        assert first.size == 2
        assert first.purity == 0.5
        assert first.samples == ["The hero leaves home", "A rival appears"]
        assert second.label == "Category 2"
        assert second.samples == ["The hero returns"]

    def test_run_level_metrics(self, three_points, three_categories):
        summary = summarize_run(make_record(), three_points, three_categories)

        assert summary.mode == "consensus"
        assert summary.status == "succeeded"
        assert summary.coverage == 1.0
        assert summary.agreement_gain == 0.2
        assert summary.average_purity == pytest.approx(0.75)
        assert summary.average_entropy == pytest.approx(0.3)

    def test_contributor_shares(self, three_points, three_categories):
        summary = summarize_run(make_record(), three_points, three_categories)

        contributors = summary.categories[0].contributors
        assert [(c.id, c.name) for c in contributors] == [("cat-a", "Start"), ("cat-b", "Conflict")]
        assert contributors[0].share == pytest.approx(2 / 3)

    def test_failed_run_has_no_summary(self, three_points, three_categories):
        record = make_record(assignments=[], status=RunStatus.FAILED, error_message="boom")

        assert summarize_run(record, three_points, three_categories) is None

    def test_serializes_with_camel_case(self, three_points, three_categories):
        data = summarize_run(make_record(), three_points, three_categories).model_dump(
            by_alias=True
        )

        assert "averagePurity" in data
        assert "agreementGain" in data


class TestBuildContributors:
    def test_unknown_category_name(self):
        slices = build_contributors({"cat-z": 3}, {})

        assert slices[0].name == "Category cat-z"
        assert slices[0].share == 1.0

    def test_empty_totals(self):
        assert build_contributors({}, {"cat-a": "Alpha"}) == []

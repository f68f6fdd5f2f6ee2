"""Tests for the agreement graph runner."""

import numpy as np
import pytest

from mythcanon.services.canonicalization.base import CanonicalizationInput
from mythcanon.services.canonicalization.errors import (
    InvalidParametersError,
    MissingMatrixError,
)
from mythcanon.services.canonicalization.graph_runner import (
    AgreementGraphRunner,
    enforce_min_cluster_size,
    enforce_target_count,
    run_label_propagation,
)
from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixResult,
    build_agreement_matrix,
    build_assignment_matrix,
)


def build_input(plot_points, categories) -> CanonicalizationInput:
    assignment = build_assignment_matrix(plot_points)
    return CanonicalizationInput(
        myth_id="myth",
        plot_points=plot_points,
        collaborator_categories=categories,
        assignment=assignment,
        agreement=build_agreement_matrix(assignment),
    )


def lookup(result) -> dict[str, str]:
    return {a.plot_point_id: a.canonical_id for a in result.assignments}


class TestAgreementGraphRunner:
    """End-to-end runs of AgreementGraphRunner."""

    async def test_groups_points_that_share_categories(self, three_points, three_categories):
        result = await AgreementGraphRunner().run(
            build_input(three_points, three_categories), {"target_canonical_count": 2}
        )

        labels = lookup(result)
        assert labels["p1"] == labels["p2"]
        assert labels["p1"] != labels["p3"]
        assert result.metrics.coverage == 1.0
        assert result.diagnostics["community_count"] == 2
        assert result.diagnostics["iterations"] == 1

    async def test_target_merges_down(self, three_points, three_categories):
        result = await AgreementGraphRunner().run(
            build_input(three_points, three_categories), {"targetCanonicalCount": 1}
        )

        assert len(set(lookup(result).values())) == 1

    async def test_target_splits_up(self, three_points, three_categories):
        result = await AgreementGraphRunner().run(
            build_input(three_points, three_categories), {"target_canonical_count": 3}
        )

        assert len(set(lookup(result).values())) == 3

    async def test_requires_agreement_matrix(self, three_points, three_categories):
        canonical_input = CanonicalizationInput(
            myth_id="myth",
            plot_points=three_points,
            collaborator_categories=three_categories,
            assignment=build_assignment_matrix(three_points),
        )

        with pytest.raises(MissingMatrixError, match="agreement matrix"):
            await AgreementGraphRunner().run(canonical_input, {})

    async def test_invalid_parameters(self, three_points, three_categories):
        with pytest.raises(InvalidParametersError):
            await AgreementGraphRunner().run(
                build_input(three_points, three_categories), {"min_cluster_size": 0}
            )

    async def test_prevalence_matches_tags(self, three_points, three_categories):
        result = await AgreementGraphRunner().run(
            build_input(three_points, three_categories), {"target_canonical_count": 2}
        )

        totals = {entry.canonical_id: entry.totals for entry in result.prevalence}
        labels = lookup(result)
        assert totals[labels["p1"]] == {"cat-a": 2, "cat-b": 1}
        assert totals[labels["p3"]] == {"cat-c": 1}


class TestGraphHelpers:
    """Label propagation and count enforcement."""

    def test_propagation_finds_two_blocks(self):
        agreement = AgreementMatrixResult(
            matrix=np.array(
                [
                    [1.0, 1.0, 0.0, 0.0],
                    [1.0, 1.0, 0.0, 0.0],
                    [0.0, 0.0, 1.0, 1.0],
                    [0.0, 0.0, 1.0, 1.0],
                ]
            ),
            plot_point_ids=["a", "b", "c", "d"],
        )

        labels, iterations = run_label_propagation(agreement, max_iterations=10)

        assert labels["a"] == labels["b"]
        assert labels["c"] == labels["d"]
        assert labels["a"] != labels["c"]
        assert iterations <= 10

    def test_zero_iterations_keeps_singletons(self):
        agreement = AgreementMatrixResult(
            matrix=np.ones((2, 2)), plot_point_ids=["a", "b"]
        )

        labels, iterations = run_label_propagation(agreement, max_iterations=0)

        assert labels == {"a": "a", "b": "b"}
        assert iterations == 0

    def test_split_stops_at_singletons(self):
        agreement = AgreementMatrixResult(matrix=np.eye(2), plot_point_ids=["a", "b"])

        labels = enforce_target_count({"a": "a", "b": "b"}, agreement, 5)

        assert len(set(labels.values())) == 2

    def test_undersized_community_joins_strongest_neighbor(self):
        agreement = AgreementMatrixResult(
            matrix=np.array([[1.0, 0.9, 0.1], [0.9, 1.0, 0.0], [0.1, 0.0, 1.0]]),
            plot_point_ids=["a", "b", "c"],
        )

        labels = enforce_min_cluster_size({"a": "x", "b": "x", "c": "y"}, agreement, 2)

        assert labels == {"a": "x", "b": "x", "c": "x"}

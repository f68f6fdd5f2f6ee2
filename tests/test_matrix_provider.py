"""Tests for MatrixProvider."""

import numpy as np

from mythcanon.services.canonicalization.matrices import (
    AgreementMatrixOptions,
    AssignmentMatrixOptions,
)
from mythcanon.services.canonicalization.matrix_provider import (
    MatrixProvider,
    MatrixProviderOptions,
)


class TestMatrixProvider:
    """MatrixProvider builds fresh matrices per call."""

    def test_agreement_only_when_requested(self, three_points):
        provider = MatrixProvider(three_points)

        without = provider.prepare()
        with_agreement = provider.prepare(with_agreement=True)

        assert without.agreement is None
        assert with_agreement.agreement is not None
        assert with_agreement.agreement.plot_point_ids == ["p1", "p2", "p3"]

    def test_each_call_returns_fresh_arrays(self, three_points):
        provider = MatrixProvider(three_points)

        first = provider.prepare().assignment
        second = provider.prepare().assignment
        first.matrix[0, 0] = 99.0

        assert second.matrix[0, 0] == 1.0

    def test_options_are_applied(self, three_points):
        provider = MatrixProvider(
            three_points,
            MatrixProviderOptions(
                assignment=AssignmentMatrixOptions(collaborator_weights={"gamma@example.com": 3.0}),
                agreement=AgreementMatrixOptions(normalize=True),
            ),
        )

        result = provider.prepare(with_agreement=True)

        assert result.assignment.matrix[2, 2] == 3.0
        np.testing.assert_allclose(np.diag(result.agreement.matrix), [1.0, 1.0, 1.0])

    def test_snapshot_is_decoupled_from_caller_list(self, three_points):
        provider = MatrixProvider(three_points)
        three_points.pop()

        assert provider.prepare().assignment.plot_point_ids == ["p1", "p2", "p3"]

"""
Tests for the Kuhn-Munkres solver
"""

import threading
import time

import numpy as np
import pytest
from scipy.optimize import linear_sum_assignment

from planrev_core.assignment import maximize_assignment, run_bounded, solve_assignment, total_weight
from planrev_core.errors import ComputationTimeout


class TestSolveAssignment:
    """Tests for solve_assignment."""

    def test_unique_optimum_3x3(self):
        """Test a 3x3 matrix with a unique minimum is solved exactly."""
        cost = [[4, 1, 3],
                [2, 0, 5],
                [3, 2, 2]]
        assert solve_assignment(cost) == [(0, 1), (1, 0), (2, 2)]

    def test_unique_maximum_3x3(self):
        """Test maximization picks the unique best assignment."""
        weights = [[0.9, 0.8, 0.1],
                   [0.85, 0.2, 0.3],
                   [0.1, 0.7, 0.6]]
        pairs = maximize_assignment(weights)

        assert pairs == [(0, 1), (1, 0), (2, 2)]
        assert total_weight(weights, pairs) == pytest.approx(2.25)

    def test_rectangular(self):
        """Test more columns than rows and more rows than columns."""
        wide = [[5, 1, 9, 4]]
        tall = [[5], [1], [9]]
        assert solve_assignment(wide) == [(0, 1)]
        assert solve_assignment(tall) == [(1, 0)]

    def test_empty(self):
        """Test empty matrices."""
        assert solve_assignment(np.zeros((0, 3))) == []
        assert solve_assignment(np.zeros((2, 0))) == []

    def test_rejects_non_matrix(self):
        """Test a 1-D input is refused."""
        with pytest.raises(ValueError):
            solve_assignment([1, 2, 3])

    def test_large_integer_costs_are_exact(self):
        """Test integer costs beyond float precision keep their order."""
        big = 10 ** 20
        cost = [[big, big + 1],
                [big + 1, big + 3]]
        assert solve_assignment(cost) == [(0, 1), (1, 0)]

    @pytest.mark.parametrize("shape", [(1, 1), (4, 4), (5, 8), (9, 3), (12, 12)])
    def test_matches_scipy_optimum(self, shape):
        """Test the optimal total equals scipy's linear_sum_assignment."""
        rng = np.random.default_rng(sum(shape))
        for _ in range(5):
            cost = rng.integers(0, 50, size=shape)
            pairs = solve_assignment(cost)
            rows, cols = linear_sum_assignment(cost)

            assert len(pairs) == min(shape)
            assert len({r for r, _ in pairs}) == len(pairs)
            assert len({c for _, c in pairs}) == len(pairs)
            assert total_weight(cost, pairs) == cost[rows, cols].sum()

    def test_cancelled_before_start(self):
        """Test a pre-set cancel token aborts the solve."""
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ComputationTimeout):
            solve_assignment([[1, 2], [3, 4]], cancel=cancel)

    def test_deadline_passed(self):
        """Test an expired deadline aborts the solve."""
        with pytest.raises(ComputationTimeout):
            solve_assignment([[1, 2], [3, 4]], deadline=time.monotonic() - 1)


class TestRunBounded:
    """Tests for run_bounded."""

    def test_returns_result(self):
        """Test a fast computation returns normally."""
        assert run_bounded(lambda token: 42, timeout=5.0) == 42

    def test_unbounded(self):
        """Test no timeout runs inline."""
        assert run_bounded(lambda token: "done") == "done"

    def test_timeout_sets_cancel_token(self):
        """Test a slow computation raises ComputationTimeout and is told to stop."""
        seen = {}

        def slow(token):
            seen["stopped"] = token.wait(5.0)
            return "late"

        with pytest.raises(ComputationTimeout):
            run_bounded(slow, timeout=0.05)
        assert seen["stopped"] is True

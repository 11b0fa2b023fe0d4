"""Solution summaries and importance scores."""

import numpy as np
import pytest

from reserve_planner.evaluate import (
    eval_boundary_summary, eval_cost_summary, eval_feature_representation_summary,
    eval_n_summary, eval_target_coverage_summary,
)
from reserve_planner.exceptions import ProblemError, ValidationError
from reserve_planner.importance import rarity_weighted_richness, replacement_cost
from reserve_planner.models import BoundaryData, Solution
from reserve_planner.problem import Problem
from reserve_planner.solver import solve


def _solution(values):
    return Solution(values=np.asarray(values, dtype=float), objective=0.0, status="OPTIMAL", runtime=0.0)


class TestSummaries:

    def test_cost_and_n(self, problem):
        s = _solution([1, 1, 0, 0])

        assert eval_cost_summary(problem, s)["cost"].iloc[0] == 2.0
        assert eval_n_summary(problem, s)["n"].iloc[0] == 2.0

    def test_accepts_plain_vectors(self, problem):
        assert eval_cost_summary(problem, [0, 0, 1, 1])["cost"].iloc[0] == 7.0

    def test_wrong_length(self, problem):
        with pytest.raises(ValidationError):
            eval_cost_summary(problem, [1, 0])

    def test_feature_representation(self, problem):
        df = eval_feature_representation_summary(problem, _solution([1, 0, 1, 0]))

        assert df["feature"].tolist() == ["heath", "wetland"]
        np.testing.assert_allclose(df["total_amount"], [4.0, 4.0])
        np.testing.assert_allclose(df["absolute_held"], [2.0, 1.0])
        np.testing.assert_allclose(df["relative_held"], [0.5, 0.25])

    def test_target_coverage(self, problem):
        p = problem.add_relative_targets(0.5)
        df = eval_target_coverage_summary(p, _solution([1, 0, 1, 0]))

        assert df["met"].tolist() == [True, False]
        np.testing.assert_allclose(df["absolute_shortfall"], [0.0, 1.0])
        np.testing.assert_allclose(df["relative_shortfall"], [0.0, 0.5])

    def test_target_coverage_needs_targets(self, problem):
        with pytest.raises(ProblemError):
            eval_target_coverage_summary(problem, _solution([1, 0, 0, 0]))

    def test_boundary_summary(self, pu, features, rij):
        b = BoundaryData(i=[0, 1, 2], j=[1, 2, 3], length=[1, 1, 1], exposed=[3, 2, 2, 3])
        p = Problem(pu, features, rij, boundary=b)

        assert eval_boundary_summary(p, _solution([1, 1, 0, 0]), edge_factor=1.0)["boundary"].iloc[0] == 6.0

    def test_boundary_summary_uses_problem_edge_factor(self, pu, features, rij):
        b = BoundaryData(i=[0, 1, 2], j=[1, 2, 3], length=[1, 1, 1], exposed=[3, 2, 2, 3])
        x = _solution([1, 1, 0, 0])
        full = Problem(pu, features, rij).add_boundary_penalties(1.0, edge_factor=1.0, data=b)
        half = Problem(pu, features, rij).add_boundary_penalties(1.0, edge_factor=0.5, data=b)

        assert eval_boundary_summary(full, x)["boundary"].iloc[0] == pytest.approx(6.0)
        # exposed edges at half weight: (1.5 + 1) + (1 + 2) - 2
        assert eval_boundary_summary(half, x)["boundary"].iloc[0] == pytest.approx(3.5)


class TestImportance:

    def test_replacement_cost(self, problem):
        p = problem.add_min_set_objective().add_absolute_targets(1.0)
        s = solve(p)
        rc = replacement_cost(p, s)

        np.testing.assert_allclose(rc, [1.0, 1.0, 0.0, 0.0])

    def test_replacement_cost_solves_to_optimality(self, pu, features, rij):
        p = Problem(pu, features, rij).add_min_set_objective().add_absolute_targets(1.0)
        assert p.solver.gap == pytest.approx(0.1)

        rc = replacement_cost(p, solve(p))

        np.testing.assert_allclose(rc, [1.0, 1.0, 0.0, 0.0])
        assert p.solver.gap == pytest.approx(0.1)

    def test_replacement_cost_irreplaceable(self, problem):
        p = (problem.add_min_set_objective().add_absolute_targets(1.0)
             .add_locked_out_constraints([3, 4]))
        s = solve(p)
        rc = replacement_cost(p, s)

        assert np.isinf(rc[0]) and np.isinf(rc[1])

    def test_rarity_weighted_richness(self, problem):
        rwr = rarity_weighted_richness(problem, _solution([1, 0, 1, 0]))

        # unit 3 holds a quarter of each feature, unit 1 a quarter of one
        np.testing.assert_allclose(rwr, [0.5, 0.0, 1.0, 0.0])

"""Problem builder validation and compilation to a linear model."""

import numpy as np
import pandas as pd
import pytest

from reserve_planner.exceptions import ProblemError, ValidationError
from reserve_planner.models import BoundaryData, Features, PlanningUnits
from reserve_planner.problem import Problem


class TestProblemBuilder:
    """Chained calls return new problems and validate their arguments."""

    def test_chaining_leaves_original_untouched(self, problem):
        p2 = problem.add_min_set_objective().add_relative_targets(0.5)

        assert problem.objective is None
        assert problem.targets is None
        assert p2.objective.name == "min_set"
        np.testing.assert_allclose(p2.targets, [2.0, 2.0])

    def test_relative_targets_per_feature(self, problem):
        p = problem.add_relative_targets([0.25, 1.0])
        np.testing.assert_allclose(p.targets, [1.0, 4.0])

    def test_relative_targets_out_of_range(self, problem):
        with pytest.raises(ValidationError):
            problem.add_relative_targets(1.5)
        with pytest.raises(ValidationError):
            problem.add_relative_targets([0.1, 0.2, 0.3])

    def test_absolute_targets_must_be_non_negative(self, problem):
        with pytest.raises(ValidationError):
            problem.add_absolute_targets(-1)

    def test_manual_targets_by_name_and_id(self, problem):
        targets = pd.DataFrame({
            "feature": ["heath", 2],
            "type": ["relative", "absolute"],
            "target": [0.5, 3.0],
        })
        p = problem.add_manual_targets(targets)
        np.testing.assert_allclose(p.targets, [2.0, 3.0])

    def test_manual_targets_unknown_feature(self, problem):
        targets = pd.DataFrame({"feature": ["koala"], "type": ["absolute"], "target": [1.0]})
        with pytest.raises(ValidationError):
            problem.add_manual_targets(targets)

    def test_locked_constraints_by_ids_and_mask(self, problem):
        p = problem.add_locked_in_constraints([3]).add_locked_out_constraints(
            np.array([False, False, False, True]))

        assert p.locked_in.tolist() == [False, False, True, False]
        assert p.locked_out.tolist() == [False, False, False, True]

    def test_conflicting_locks(self, problem):
        p = problem.add_locked_in_constraints([1])
        with pytest.raises(ValidationError):
            p.add_locked_out_constraints([1])

    def test_unknown_planning_unit_id(self, problem):
        with pytest.raises(ValidationError):
            problem.add_locked_in_constraints([99])

    def test_budget_required(self, problem):
        with pytest.raises(ValidationError):
            problem.add_max_utility_objective(-5)

    def test_rij_shape_checked(self, pu, features):
        with pytest.raises(ValidationError):
            Problem(pu, features, np.ones((3, 2)))

    def test_boundary_penalty_without_boundary_data(self, problem):
        with pytest.raises(ProblemError):
            problem.add_boundary_penalties(1.0)

    def test_summary_mentions_components(self, problem):
        text = (problem.add_min_set_objective()
                .add_relative_targets(0.1)
                .add_locked_in_constraints([1])
                .summary())

        assert "minimum set objective" in text
        assert "relative targets" in text
        assert "locked in (1 units)" in text


class TestCompile:
    """Compiled linear models have the expected variables and rows."""

    def test_missing_objective(self, problem):
        with pytest.raises(ProblemError):
            problem.add_relative_targets(0.1).compile()

    def test_missing_targets(self, problem):
        with pytest.raises(ProblemError):
            problem.add_min_set_objective().compile()

    def test_min_set_model(self, problem):
        m = problem.add_min_set_objective().add_absolute_targets([1.0, 0.0]).compile()

        assert m.sense == "min"
        assert m.n_vars == 4
        assert m.n_rows == 1  # zero targets add no row
        np.testing.assert_allclose(m.obj, [1, 1, 3, 4])
        assert m.integer.all()

    def test_locks_set_bounds(self, problem):
        m = (problem.add_min_set_objective().add_relative_targets(0.1)
             .add_locked_in_constraints([2]).add_locked_out_constraints([4])
             .compile())

        assert m.lb.tolist() == [0, 1, 0, 0]
        assert m.ub.tolist() == [1, 1, 1, 0]

    def test_max_features_model(self, problem):
        m = problem.add_max_features_objective(2.0).add_absolute_targets(1.0).compile()

        assert m.sense == "max"
        assert m.n_vars == 4 + 2
        # two target rows and the budget row
        assert m.n_rows == 3
        assert m.row_ub[-1] == 2.0

    def test_boundary_penalty_columns(self, pu, features, rij):
        boundary = BoundaryData(i=[0, 1, 2], j=[1, 2, 3], length=[1, 1, 1], exposed=[3, 2, 2, 3])
        m = (Problem(pu, features, rij, boundary=boundary)
             .add_min_set_objective().add_absolute_targets(1.0)
             .add_boundary_penalties(2.0, edge_factor=1.0)
             .compile())

        assert m.n_vars == 4 + 3
        assert m.n_rows == 2 + 2 * 3
        # cost + penalty * total boundary (4 per unit)
        np.testing.assert_allclose(m.obj[:4], [9, 9, 11, 12])
        np.testing.assert_allclose(m.obj[4:], [-4, -4, -4])

    def test_proportion_decisions_are_continuous(self, problem):
        m = problem.add_min_set_objective().add_absolute_targets(1.0).add_proportion_decisions().compile()
        assert not m.integer.any()

    def test_semicontinuous_upper(self, problem):
        m = (problem.add_min_set_objective().add_absolute_targets(1.0)
             .add_semicontinuous_decisions(2.5).compile())
        assert m.ub.tolist() == [2.5] * 4


class TestModels:

    def test_planning_unit_validation(self):
        with pytest.raises(ValidationError):
            PlanningUnits(ids=[1, 1], cost=[1, 2], locked_in=None, locked_out=None)
        with pytest.raises(ValidationError):
            PlanningUnits(ids=[1, 2], cost=[1, -2], locked_in=None, locked_out=None)
        with pytest.raises(ValidationError):
            PlanningUnits(ids=[1], cost=[1], locked_in=[True], locked_out=[True])

    def test_feature_default_names(self):
        f = Features(ids=[3, 7])
        assert f.names == ["feature_3", "feature_7"]

    def test_boundary_perimeter(self):
        b = BoundaryData(i=[0, 1, 2], j=[1, 2, 3], length=[1, 1, 1], exposed=[3, 2, 2, 3])

        assert b.perimeter([1, 1, 0, 0]) == pytest.approx(6.0)
        assert b.perimeter([1, 0, 0, 1]) == pytest.approx(8.0)
        assert b.perimeter([1, 0, 0, 1], edge_factor=0.5) == pytest.approx(5.0)

"""Summaries of a prioritization: cost, size, feature representation, targets, boundary."""

from typing import Optional

import numpy as np
import pandas as pd

from reserve_planner.exceptions import ProblemError, ValidationError
from reserve_planner.models import Solution
from reserve_planner.problem import Problem


def _values(problem: Problem, solution) -> np.ndarray:
    values = solution.values if isinstance(solution, Solution) else solution
    values = np.asarray(values, dtype=np.float64)
    if values.shape != (problem.pu.n,):
        raise ValidationError(f"solution needs {problem.pu.n} values, got {values.size}.")
    if np.any(~np.isfinite(values)) or np.any(values < 0):
        raise ValidationError("solution values must be finite and non-negative.")
    return values


def eval_cost_summary(problem: Problem, solution) -> pd.DataFrame:
    x = _values(problem, solution)
    return pd.DataFrame({"summary": ["overall"], "cost": [float(problem.pu.cost @ x)]})


def eval_n_summary(problem: Problem, solution) -> pd.DataFrame:
    x = _values(problem, solution)
    return pd.DataFrame({"summary": ["overall"], "n": [float(x.sum())]})


def eval_feature_representation_summary(problem: Problem, solution) -> pd.DataFrame:
    x = _values(problem, solution)
    totals = problem.feature_totals
    held = x @ problem.rij
    with np.errstate(divide="ignore", invalid="ignore"):
        rel = np.where(totals > 0, held / totals, np.nan)
    return pd.DataFrame({
        "summary": "overall",
        "feature": problem.features.names,
        "total_amount": totals,
        "absolute_held": held,
        "relative_held": rel,
    })


def eval_target_coverage_summary(problem: Problem, solution) -> pd.DataFrame:
    if problem.targets is None:
        raise ProblemError("problem has no targets to evaluate.")
    x = _values(problem, solution)
    held = x @ problem.rij
    t = problem.targets
    short = np.clip(t - held, 0.0, None)
    with np.errstate(divide="ignore", invalid="ignore"):
        rel_short = np.where(t > 0, short / t, 0.0)
    return pd.DataFrame({
        "feature": problem.features.names,
        "target": t,
        "absolute_held": held,
        "met": held >= t - 1e-9 * np.maximum(1.0, t),
        "absolute_shortfall": short,
        "relative_shortfall": rel_short,
    })


def eval_boundary_summary(problem: Problem, solution, edge_factor: Optional[float] = None) -> pd.DataFrame:
    if problem.boundary is None:
        raise ProblemError("problem has no boundary data.")
    x = _values(problem, solution)
    ef = problem.edge_factor if edge_factor is None else edge_factor
    return pd.DataFrame({"summary": ["overall"], "boundary": [problem.boundary.perimeter(x, ef)]})

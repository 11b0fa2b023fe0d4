# solver.py
# ----------------
# Hands compiled problems to OR-Tools (SCIP by default) and turns the result
# back into Solution objects.
#
# Exposes:
#   - OrToolsSolver           (one solve of a LinearModel)
#   - solve(problem)          (Solution, or a list of them for a cuts portfolio)
#
# Dependencies: numpy, ortools

from __future__ import annotations
import time
from typing import List, Optional, Union
import numpy as np

from reserve_planner.exceptions import InfeasibleError, ProblemError, SolverError
from reserve_planner.log import get_logger
from reserve_planner.models import Solution
from reserve_planner.problem import LinearModel, Problem, SolverSettings

log = get_logger("solver")


# -----------------------------
# OR-Tools wrapper
# -----------------------------

class OrToolsSolver:
    """
    Solves a LinearModel through ortools.linear_solver.pywraplp.

    Parameters:
      settings: backend name, relative gap, time limit (seconds), threads,
                first_feasible (SCIP only: stop at the first solution), verbose
    """
    def __init__(self, settings: SolverSettings):
        self.settings = settings

    def _create(self):
        from ortools.linear_solver import pywraplp

        solver = pywraplp.Solver.CreateSolver(self.settings.backend)
        if solver is None:
            raise SolverError(f"OR-Tools backend '{self.settings.backend}' is not available.")
        if self.settings.verbose:
            solver.EnableOutput()
        if self.settings.time_limit is not None:
            solver.SetTimeLimit(int(self.settings.time_limit * 1000))
        if self.settings.threads > 1 and not solver.SetNumThreads(self.settings.threads):
            log.warning("threads_not_supported", backend=self.settings.backend)
        if self.settings.first_feasible:
            if self.settings.backend.upper() == "SCIP":
                solver.SetSolverSpecificParametersAsString("limits/solutions = 1\n")
            else:
                log.warning("first_feasible_not_supported", backend=self.settings.backend)
        return solver

    def solve(self, model: LinearModel) -> Solution:
        from ortools.linear_solver import pywraplp

        solver = self._create()
        inf = solver.infinity()

        def _bound(v):
            return inf if v == np.inf else (-inf if v == -np.inf else float(v))

        xs = []
        for k in range(model.n_vars):
            lo, hi = float(model.lb[k]), float(model.ub[k])
            if model.integer[k]:
                xs.append(solver.IntVar(lo, hi, model.names[k]))
            else:
                xs.append(solver.NumVar(lo, hi, model.names[k]))

        for (idx, coef), lo, hi in zip(model.rows, model.row_lb, model.row_ub):
            ct = solver.Constraint(_bound(lo), _bound(hi))
            for k, a in zip(idx, coef):
                ct.SetCoefficient(xs[int(k)], ct.GetCoefficient(xs[int(k)]) + float(a))

        objective = solver.Objective()
        for k in np.flatnonzero(model.obj):
            objective.SetCoefficient(xs[int(k)], float(model.obj[k]))
        if model.sense == "min":
            objective.SetMinimization()
        else:
            objective.SetMaximization()

        params = pywraplp.MPSolverParameters()
        params.SetDoubleParam(pywraplp.MPSolverParameters.RELATIVE_MIP_GAP, self.settings.gap)

        t0 = time.time()
        status = solver.Solve(params)
        runtime = time.time() - t0

        names = {
            pywraplp.Solver.OPTIMAL: "OPTIMAL",
            pywraplp.Solver.FEASIBLE: "FEASIBLE",
            pywraplp.Solver.INFEASIBLE: "INFEASIBLE",
            pywraplp.Solver.UNBOUNDED: "UNBOUNDED",
            pywraplp.Solver.ABNORMAL: "ABNORMAL",
            pywraplp.Solver.NOT_SOLVED: "NOT_SOLVED",
        }
        status_name = names.get(status, str(status))
        if status not in (pywraplp.Solver.OPTIMAL, pywraplp.Solver.FEASIBLE):
            raise InfeasibleError(f"solver returned no solution ({status_name}).", status=status_name,
                                  details={"backend": self.settings.backend, "runtime": runtime})

        values = np.array([xs[k].solution_value() for k in range(model.n_pu)], dtype=np.float64)
        if model.integer[:model.n_pu].all():
            values = np.round(values)
        values = np.clip(values, model.lb[:model.n_pu], model.ub[:model.n_pu])

        obj_value = float(objective.Value())
        gap = None
        if model.integer.any():
            bound = float(objective.BestBound())
            gap = abs(obj_value - bound) / max(abs(obj_value), 1e-10)
        if model.tie_break is not None:
            obj_value -= float(model.tie_break @ values)

        log.info("solved", backend=self.settings.backend, status=status_name,
                 objective=round(obj_value, 6), runtime=round(runtime, 3),
                 selected=int((values > 0.5).sum()))
        return Solution(values=values, objective=obj_value, status=status_name,
                        runtime=runtime, gap=gap, backend=self.settings.backend)


# -----------------------------
# Entry points
# -----------------------------

def solve(problem: Problem) -> Union[Solution, List[Solution]]:
    """Solve a problem; returns a list when a cuts portfolio is configured."""
    model = problem.compile()
    log.info("solve_start", n_pu=problem.pu.n, n_features=problem.features.n,
             objective=problem.objective.name, n_vars=model.n_vars, n_rows=model.n_rows)
    engine = OrToolsSolver(problem.solver)
    if problem.portfolio <= 1:
        return engine.solve(model)
    return cuts_portfolio(problem, model, engine)


def cuts_portfolio(problem: Problem, model: LinearModel,
                   engine: Optional[OrToolsSolver] = None) -> List[Solution]:
    """
    Generate up to problem.portfolio distinct solutions; after each one a cut
    excludes exactly that selection. Stops early once no further selection
    is feasible.
    """
    if problem.decisions.kind != "binary":
        raise ProblemError("cuts portfolios require binary decisions.")
    engine = engine or OrToolsSolver(problem.solver)
    n = model.n_pu

    solutions: List[Solution] = []
    for k in range(problem.portfolio):
        try:
            sol = engine.solve(model)
        except InfeasibleError:
            if not solutions:
                raise
            log.info("portfolio_exhausted", found=len(solutions), requested=problem.portfolio)
            break
        solutions.append(sol)
        sel = sol.selected
        coef = np.where(sel, 1.0, -1.0)
        model.add_row(np.arange(n), coef, hi=float(sel.sum()) - 1.0)
    return solutions

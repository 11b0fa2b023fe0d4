# region Imports
from dataclasses import replace
import numpy as np

from reserve_planner.exceptions import InfeasibleError, ProblemError
from reserve_planner.log import get_logger
from reserve_planner.models import Solution
from reserve_planner.solver import OrToolsSolver
# endregion

log = get_logger("importance")


# region Replacement Cost
def replacement_cost(problem, solution: Solution) -> np.ndarray:
    """
    For each selected planning unit: lock it out, re-solve, and report the
    change in objective (positive = worse). Infeasible without the unit -> inf.
    Unselected units score 0. All solves here run to optimality (gap 0).
    """
    if problem.decisions.kind != "binary":
        raise ProblemError("replacement cost needs binary decisions.")
    base = replace(problem, portfolio=1, solver=replace(problem.solver, gap=0.0))
    engine = OrToolsSolver(base.solver)
    sense = 1.0 if base.objective.sense == "min" else -1.0
    base_obj = engine.solve(base.compile()).objective

    scores = np.zeros(problem.pu.n)
    for i in np.flatnonzero(solution.selected):
        if base.locked_in is not None and base.locked_in[i]:
            scores[i] = np.inf
            continue
        mask = np.zeros(problem.pu.n, dtype=bool)
        mask[i] = True
        try:
            alt = engine.solve(base.add_locked_out_constraints(mask).compile()).objective
        except InfeasibleError:
            scores[i] = np.inf
            continue
        scores[i] = sense * (alt - base_obj)
    log.info("replacement_cost", evaluated=int(solution.selected.sum()),
             irreplaceable=int(np.isinf(scores).sum()))
    return scores
# endregion

# region Rarity Weighted Richness
def rarity_weighted_richness(problem, solution: Solution) -> np.ndarray:
    """Sum over features of each unit's share of the feature total, rescaled to max 1."""
    totals = problem.feature_totals
    share = np.divide(problem.rij, totals, out=np.zeros_like(problem.rij), where=totals > 0)
    rwr = share.sum(axis=1) * solution.selected
    top = rwr.max() if rwr.size else 0.0
    return rwr / top if top > 0 else rwr
# endregion

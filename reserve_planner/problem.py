"""
Conservation planning problems.

A Problem bundles planning units, features and the feature amounts held by
each planning unit (rij). It is built up by chaining calls, each returning a
new Problem:

    p = (Problem(pu, features, rij)
         .add_min_set_objective()
         .add_relative_targets(0.17)
         .add_locked_in_constraints(pu.locked_in)
         .add_boundary_penalties(0.01, edge_factor=0.5)
         .add_binary_decisions())

compile() turns it into a LinearModel that any MIP backend can consume.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from reserve_planner.config import (
    EDGE_FACTOR, SOLVER_BACKEND, SOLVER_GAP, SOLVER_THREADS,
)
from reserve_planner.exceptions import ProblemError, ValidationError
from reserve_planner.log import get_logger
from reserve_planner.models import BoundaryData, Features, PlanningUnits

log = get_logger("problem")

OBJECTIVES = {
    "min_set": ("min", True, False, "minimum set objective"),
    "max_features": ("max", True, True, "maximum feature representation objective"),
    "max_utility": ("max", False, True, "maximum utility objective"),
    "min_shortfall": ("min", True, True, "minimum shortfall objective"),
    "min_largest_shortfall": ("min", True, True, "minimum largest shortfall objective"),
}

# Cost tie-breaker weight for the maximisation objectives, relative to the
# smallest feature weight.
TIE_BREAK = 1e-4


@dataclass
class Objective:
    name: str
    budget: Optional[float] = None

    def __post_init__(self):
        if self.name not in OBJECTIVES:
            raise ValidationError(f"unknown objective '{self.name}'.")
        if OBJECTIVES[self.name][2]:
            if self.budget is None or not np.isfinite(self.budget) or self.budget < 0:
                raise ValidationError("budget must be a finite non-negative number.")

    @property
    def sense(self) -> str:
        return OBJECTIVES[self.name][0]

    @property
    def requires_targets(self) -> bool:
        return OBJECTIVES[self.name][1]

    @property
    def label(self) -> str:
        return OBJECTIVES[self.name][3]


@dataclass
class Decisions:
    kind: str = "binary"      # binary | proportion | semicontinuous
    upper: float = 1.0


@dataclass
class SolverSettings:
    backend: str = SOLVER_BACKEND
    gap: float = SOLVER_GAP
    time_limit: Optional[float] = None
    threads: int = SOLVER_THREADS
    first_feasible: bool = False
    verbose: bool = False


@dataclass
class LinearModel:
    """
    Columns 0..n_pu-1 are the planning unit decision variables; any further
    columns are auxiliary (feature flags, shortfalls, boundary pairs).
    Each row is (column indices, coefficients) bounded by row_lb <= a.x <= row_ub.
    """
    sense: str
    obj: np.ndarray
    lb: np.ndarray
    ub: np.ndarray
    integer: np.ndarray
    names: List[str]
    n_pu: int
    rows: List[Tuple[np.ndarray, np.ndarray]] = field(default_factory=list)
    row_lb: List[float] = field(default_factory=list)
    row_ub: List[float] = field(default_factory=list)
    tie_break: Optional[np.ndarray] = None   # cost tie-break part of obj[:n_pu]

    @property
    def n_vars(self) -> int:
        return int(self.obj.size)

    @property
    def n_rows(self) -> int:
        return len(self.rows)

    def add_row(self, idx, coef, lo: float = -np.inf, hi: float = np.inf) -> None:
        self.rows.append((np.asarray(idx, dtype=np.int64), np.asarray(coef, dtype=np.float64)))
        self.row_lb.append(float(lo))
        self.row_ub.append(float(hi))

    def evaluate(self, values) -> float:
        return float(np.asarray(values, dtype=np.float64) @ self.obj)


@dataclass
class Problem:
    pu: PlanningUnits
    features: Features
    rij: np.ndarray
    boundary: Optional[BoundaryData] = None
    objective: Optional[Objective] = None
    targets: Optional[np.ndarray] = None
    target_info: str = "none"
    weights: Optional[np.ndarray] = None
    locked_in: Optional[np.ndarray] = None
    locked_out: Optional[np.ndarray] = None
    penalty: float = 0.0
    edge_factor: float = EDGE_FACTOR
    decisions: Decisions = field(default_factory=Decisions)
    solver: SolverSettings = field(default_factory=SolverSettings)
    portfolio: int = 1

    def __post_init__(self):
        self.rij = np.asarray(self.rij, dtype=np.float64)
        if self.rij.shape != (self.pu.n, self.features.n):
            raise ValidationError(
                f"rij must have shape ({self.pu.n}, {self.features.n}), got {self.rij.shape}.")
        if not np.all(np.isfinite(self.rij)) or np.any(self.rij < 0):
            raise ValidationError("feature amounts must be finite and non-negative.")
        if self.boundary is not None and self.boundary.n != self.pu.n:
            raise ValidationError("boundary data does not match the number of planning units.")

    # region Helpers
    @property
    def feature_totals(self) -> np.ndarray:
        return self.rij.sum(axis=0)

    def feature_abundances(self) -> pd.DataFrame:
        return pd.DataFrame({
            "feature": self.features.names,
            "total_amount": self.feature_totals,
            "n_units": (self.rij > 0).sum(axis=0),
        })

    def _per_feature(self, value, name: str) -> np.ndarray:
        try:
            arr = np.asarray(value, dtype=np.float64)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be numeric.") from None
        if arr.ndim == 0:
            arr = np.full(self.features.n, float(arr))
        if arr.shape != (self.features.n,):
            raise ValidationError(f"{name} needs a single value or one value per feature.")
        if not np.all(np.isfinite(arr)):
            raise ValidationError(f"{name} must be finite.")
        return arr

    def _unit_mask(self, units) -> np.ndarray:
        arr = np.asarray(units)
        if arr.dtype == bool:
            if arr.shape != (self.pu.n,):
                raise ValidationError("lock masks must have one value per planning unit.")
            return arr.copy()
        mask = np.zeros(self.pu.n, dtype=bool)
        mask[self.pu.index_of(np.atleast_1d(arr))] = True
        return mask

    def _feature_index(self, key) -> int:
        if isinstance(key, str):
            if key in self.features.names:
                return self.features.names.index(key)
            raise ValidationError(f"unknown feature '{key}'.")
        hits = np.flatnonzero(self.features.ids == int(key))
        if hits.size == 0:
            raise ValidationError(f"unknown feature id {key}.")
        return int(hits[0])
    # endregion

    # region Objectives
    def add_min_set_objective(self) -> "Problem":
        return replace(self, objective=Objective("min_set"))

    def add_max_features_objective(self, budget: float) -> "Problem":
        return replace(self, objective=Objective("max_features", budget))

    def add_max_utility_objective(self, budget: float) -> "Problem":
        return replace(self, objective=Objective("max_utility", budget))

    def add_min_shortfall_objective(self, budget: float) -> "Problem":
        return replace(self, objective=Objective("min_shortfall", budget))

    def add_min_largest_shortfall_objective(self, budget: float) -> "Problem":
        return replace(self, objective=Objective("min_largest_shortfall", budget))
    # endregion

    # region Targets
    def add_relative_targets(self, value: Union[float, Sequence[float]]) -> "Problem":
        rel = self._per_feature(value, "relative targets")
        if np.any(rel < 0) or np.any(rel > 1):
            raise ValidationError("relative targets must lie between 0 and 1.")
        return replace(self, targets=rel * self.feature_totals,
                       target_info=f"relative targets [{rel.min():g}, {rel.max():g}]")

    def add_absolute_targets(self, value: Union[float, Sequence[float]]) -> "Problem":
        ab = self._per_feature(value, "absolute targets")
        if np.any(ab < 0):
            raise ValidationError("absolute targets must be non-negative.")
        return replace(self, targets=ab,
                       target_info=f"absolute targets [{ab.min():g}, {ab.max():g}]")

    def add_manual_targets(self, targets: pd.DataFrame) -> "Problem":
        """Columns: feature (name or id), type (relative|absolute), target. Unlisted features get 0."""
        missing = [c for c in ("feature", "type", "target") if c not in targets.columns]
        if missing:
            raise ValidationError(f"manual targets missing columns: {', '.join(missing)}")
        totals = self.feature_totals
        out = np.zeros(self.features.n)
        for row in targets.itertuples(index=False):
            j = self._feature_index(row.feature)
            t = float(row.target)
            if not np.isfinite(t) or t < 0:
                raise ValidationError(f"invalid target {row.target!r} for feature {row.feature!r}.")
            kind = str(row.type).lower()
            if kind == "relative":
                if t > 1:
                    raise ValidationError(f"relative target for {row.feature!r} exceeds 1.")
                out[j] = t * totals[j]
            elif kind == "absolute":
                out[j] = t
            else:
                raise ValidationError(f"unknown target type {row.type!r}.")
        return replace(self, targets=out, target_info=f"manual targets ({len(targets)} rows)")
    # endregion

    # region Constraints
    def add_locked_in_constraints(self, units) -> "Problem":
        mask = self._unit_mask(units)
        if self.locked_in is not None:
            mask |= self.locked_in
        self._check_locks(mask, self.locked_out)
        return replace(self, locked_in=mask)

    def add_locked_out_constraints(self, units) -> "Problem":
        mask = self._unit_mask(units)
        if self.locked_out is not None:
            mask |= self.locked_out
        self._check_locks(self.locked_in, mask)
        return replace(self, locked_out=mask)

    def _check_locks(self, lin, lout) -> None:
        if lin is None or lout is None:
            return
        both = lin & lout
        if both.any():
            raise ValidationError("planning units cannot be both locked in and locked out.",
                                  {"ids": self.pu.ids[both].tolist()})
    # endregion

    # region Penalties and Weights
    def add_boundary_penalties(self, penalty: float, edge_factor: float = EDGE_FACTOR,
                               data: Optional[BoundaryData] = None) -> "Problem":
        if not np.isfinite(penalty) or penalty < 0:
            raise ValidationError("penalty must be a finite non-negative number.")
        if not 0.0 <= edge_factor <= 1.0:
            raise ValidationError("edge_factor must lie between 0 and 1.")
        boundary = data if data is not None else self.boundary
        if boundary is None:
            boundary = self._derive_boundary()
        return replace(self, boundary=boundary, penalty=float(penalty), edge_factor=float(edge_factor))

    def _derive_boundary(self) -> BoundaryData:
        from reserve_planner.boundary import polygon_boundary, raster_boundary

        if self.pu.grid is not None:
            tf = self.pu.grid.transform
            size = abs(float(tf.a)) if tf is not None else 1.0
            return raster_boundary(self.pu.grid, cell_size=size)
        if self.pu.frame is not None:
            return polygon_boundary(self.pu.frame)
        raise ProblemError("boundary penalties need boundary data for these planning units.")

    def add_feature_weights(self, weights: Union[float, Sequence[float]]) -> "Problem":
        w = self._per_feature(weights, "feature weights")
        if np.any(w < 0):
            raise ValidationError("feature weights must be non-negative.")
        return replace(self, weights=w)
    # endregion

    # region Decisions, Solver, Portfolio
    def add_binary_decisions(self) -> "Problem":
        return replace(self, decisions=Decisions("binary", 1.0))

    def add_proportion_decisions(self) -> "Problem":
        return replace(self, decisions=Decisions("proportion", 1.0))

    def add_semicontinuous_decisions(self, upper: float) -> "Problem":
        if not np.isfinite(upper) or upper <= 0:
            raise ValidationError("upper must be a positive number.")
        return replace(self, decisions=Decisions("semicontinuous", float(upper)))

    def add_solver(self, backend: Optional[str] = None, gap: float = SOLVER_GAP,
                   time_limit: Optional[float] = None, threads: int = SOLVER_THREADS,
                   first_feasible: bool = False, verbose: bool = False) -> "Problem":
        if gap < 0:
            raise ValidationError("gap must be non-negative.")
        if time_limit is not None and time_limit <= 0:
            raise ValidationError("time_limit must be positive.")
        if threads < 1:
            raise ValidationError("threads must be at least 1.")
        return replace(self, solver=SolverSettings(
            backend=backend or SOLVER_BACKEND, gap=float(gap), time_limit=time_limit,
            threads=int(threads), first_feasible=bool(first_feasible), verbose=bool(verbose)))

    def add_cuts_portfolio(self, number: int) -> "Problem":
        if int(number) < 1:
            raise ValidationError("portfolio size must be at least 1.")
        return replace(self, portfolio=int(number))
    # endregion

    # region Compilation
    def compile(self) -> LinearModel:
        if self.objective is None:
            raise ProblemError("problem has no objective.")
        obj = self.objective
        if obj.requires_targets and self.targets is None:
            raise ProblemError(f"the {obj.label} requires targets.")

        n = self.pu.n
        cost = self.pu.cost
        weights = self.weights if self.weights is not None else np.ones(self.features.n)
        upper = self.decisions.upper

        lb = np.zeros(n)
        ub = np.full(n, upper)
        if self.locked_in is not None:
            lb[self.locked_in] = upper
        if self.locked_out is not None:
            ub[self.locked_out] = 0.0

        model = LinearModel(
            sense=obj.sense,
            obj=np.zeros(n),
            lb=lb,
            ub=ub,
            integer=np.full(n, self.decisions.kind == "binary"),
            names=[f"pu_{i}" for i in self.pu.ids],
            n_pu=n,
        )

        if self.targets is not None:
            over = self.targets > self.feature_totals + 1e-9
            if over.any():
                log.warning("targets_exceed_totals",
                            features=[self.features.names[j] for j in np.flatnonzero(over)])

        builder = getattr(self, f"_compile_{obj.name}")
        builder(model, cost, weights)

        if self.penalty > 0 and self.boundary is not None:
            self._compile_boundary(model)

        log.debug("model_compiled", objective=obj.name, n_vars=model.n_vars, n_rows=model.n_rows)
        return model

    def _target_rows(self, model: LinearModel, cols=None) -> None:
        for j in range(self.features.n):
            t = float(self.targets[j])
            if t <= 0:
                continue
            nz = np.flatnonzero(self.rij[:, j])
            if cols is None:
                model.add_row(nz, self.rij[nz, j], lo=t)
            else:
                model.add_row(np.append(nz, cols[j]), np.append(self.rij[nz, j], -t), lo=0.0)

    def _budget_row(self, model: LinearModel, cost) -> None:
        model.add_row(np.arange(self.pu.n), cost, hi=self.objective.budget)

    def _add_columns(self, model: LinearModel, obj, lb, ub, integer, prefix) -> np.ndarray:
        start = model.n_vars
        k = len(obj)
        model.obj = np.concatenate([model.obj, obj])
        model.lb = np.concatenate([model.lb, lb])
        model.ub = np.concatenate([model.ub, ub])
        model.integer = np.concatenate([model.integer, np.full(k, integer)])
        model.names.extend(f"{prefix}_{i}" for i in range(k))
        return np.arange(start, start + k)

    def _tie_break(self, cost, weights) -> np.ndarray:
        # ties broken toward cheaper selections
        scale = max(float(cost.sum()), 1e-12)
        wmin = weights[weights > 0].min() if np.any(weights > 0) else 1.0
        return -TIE_BREAK * wmin * cost / scale

    def _compile_min_set(self, model, cost, weights) -> None:
        model.obj[:self.pu.n] = cost
        self._target_rows(model)

    def _compile_max_features(self, model, cost, weights) -> None:
        F = self.features.n
        z = self._add_columns(model, weights, np.zeros(F), np.ones(F), True, "feature")
        model.tie_break = self._tie_break(cost, weights)
        model.obj[:self.pu.n] = model.tie_break
        # zero-target features are met by definition
        model.lb[z[self.targets <= 0]] = 1.0
        self._target_rows(model, cols=z)
        self._budget_row(model, cost)

    def _compile_max_utility(self, model, cost, weights) -> None:
        model.tie_break = self._tie_break(cost, weights)
        model.obj[:self.pu.n] = self.rij @ weights + model.tie_break
        self._budget_row(model, cost)

    def _shortfall_columns(self, model) -> Tuple[np.ndarray, np.ndarray]:
        active = np.flatnonzero(self.targets > 0)
        k = active.size
        s = self._add_columns(model, np.zeros(k), np.zeros(k), self.targets[active], False, "shortfall")
        for col, j in zip(s, active):
            nz = np.flatnonzero(self.rij[:, j])
            model.add_row(np.append(nz, col), np.append(self.rij[nz, j], 1.0), lo=float(self.targets[j]))
        return s, active

    def _compile_min_shortfall(self, model, cost, weights) -> None:
        s, active = self._shortfall_columns(model)
        model.obj[s] = weights[active] / self.targets[active]
        self._budget_row(model, cost)

    def _compile_min_largest_shortfall(self, model, cost, weights) -> None:
        s, active = self._shortfall_columns(model)
        m = self._add_columns(model, np.ones(1), np.zeros(1), np.ones(1), False, "largest_shortfall")
        for col, j in zip(s, active):
            model.add_row([m[0], col], [1.0, -1.0 / self.targets[j]], lo=0.0)
        self._budget_row(model, cost)

    def _compile_boundary(self, model: LinearModel) -> None:
        b = self.boundary
        sign = 1.0 if model.sense == "min" else -1.0
        model.obj[:self.pu.n] += sign * self.penalty * b.total(self.edge_factor)
        k = b.i.size
        upper = self.decisions.upper
        y = self._add_columns(model, -sign * 2.0 * self.penalty * b.length,
                              np.zeros(k), np.full(k, upper), False, "boundary")
        for col, i, j in zip(y, b.i, b.j):
            model.add_row([col, i], [1.0, -1.0], hi=0.0)
            model.add_row([col, j], [1.0, -1.0], hi=0.0)
    # endregion

    # region Reporting
    def summary(self) -> str:
        cost = self.pu.cost
        names = self.features.names
        shown = ", ".join(names[:4]) + (", ..." if len(names) > 4 else "")
        locks = []
        if self.locked_in is not None and self.locked_in.any():
            locks.append(f"locked in ({int(self.locked_in.sum())} units)")
        if self.locked_out is not None and self.locked_out.any():
            locks.append(f"locked out ({int(self.locked_out.sum())} units)")
        pen = (f"boundary penalty ({self.penalty:g}, edge factor {self.edge_factor:g})"
               if self.penalty > 0 else "none")
        s = self.solver
        lines = [
            "Conservation Problem",
            f"  planning units: {self.pu.n} (cost range: [{cost.min():g}, {cost.max():g}])",
            f"  features:       {self.features.n} ({shown})",
            f"  objective:      {self.objective.label if self.objective else 'none'}"
            + (f" (budget {self.objective.budget:g})" if self.objective and self.objective.budget is not None else ""),
            f"  targets:        {self.target_info}",
            f"  decisions:      {self.decisions.kind}",
            f"  constraints:    {', '.join(locks) if locks else 'none'}",
            f"  penalties:      {pen}",
            f"  portfolio:      {'cuts (%d solutions)' % self.portfolio if self.portfolio > 1 else 'default'}",
            f"  solver:         {s.backend} (gap {s.gap:g}, time limit {s.time_limit or 'none'}, threads {s.threads})",
        ]
        return "\n".join(lines)
    # endregion

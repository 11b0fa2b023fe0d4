# app.py - Flask API around the problem builder, solver and portfolio clustering
# deps: pip install flask numpy pandas pillow ortools scipy kmedoids

from __future__ import annotations
from typing import Any, Dict
import io
import numpy as np
import pandas as pd
from flask import Flask, request, jsonify, make_response
from PIL import Image

from reserve_planner.config import (
    API_HOST, API_PORT, EDGE_FACTOR, SOLVER_GAP, STATUS_LOCKED_IN, STATUS_LOCKED_OUT,
)
from reserve_planner.exceptions import InfeasibleError, ReservePlannerError, ValidationError
from reserve_planner.log import bind_run, clear_run, get_logger
from reserve_planner.models import Features, PlanningUnits
from reserve_planner.problem import Problem
from reserve_planner.boundary import boundary_from_table
from reserve_planner.marxan import rij_matrix
from reserve_planner.solver import solve
from reserve_planner.evaluate import (
    eval_cost_summary, eval_feature_representation_summary, eval_target_coverage_summary,
)
from reserve_planner.clustering import (
    hierarchical_clusters, jaccard_distance, kmedoid_clusters, selection_frequency,
)
from reserve_planner.datasets import simulate_landscape

app = Flask(__name__)
log = get_logger("api")

CLUSTER_METHODS = ("pam", "average", "complete", "single", "weighted")

# ======= CORS / run ids =======
@app.before_request
def _bind():
    bind_run()

@app.after_request
def _cors(resp):
    resp.headers["Access-Control-Allow-Origin"]  = "*"
    resp.headers["Access-Control-Allow-Headers"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    clear_run()
    return resp

@app.errorhandler(ReservePlannerError)
def _planner_error(e: ReservePlannerError):
    log.warning("request_failed", error=e.message)
    return jsonify({"error": e.message, "details": e.details}), 400

# ======= helpers =======
def _png(arr: np.ndarray):
    valid = arr[np.isfinite(arr)]
    lo, hi = (float(valid.min()), float(valid.max())) if valid.size else (0.0, 1.0)
    scaled = np.clip((arr - lo) / max(hi - lo, 1e-6), 0, 1)
    scaled = np.where(np.isfinite(scaled), scaled, 0.0)
    buf = io.BytesIO()
    Image.fromarray((scaled * 255).astype("uint8"), "L").save(buf, "PNG")
    buf.seek(0)
    resp = make_response(buf.read())
    resp.headers["Content-Type"] = "image/png"
    return resp

def _opt(data: Dict[str, Any], key: str, cast):
    v = data.get(key, None)
    if v in (None, "", "null"):
        return None
    try:
        return cast(v)
    except (TypeError, ValueError):
        _bad(f"'{key}' must be {cast.__name__}, got {v!r}")

def _body() -> Dict[str, Any]:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        _bad("body must be a JSON object")
    return data

def build_problem(data: Dict[str, Any]) -> Problem:
    """Problem from the JSON body of /problem/solve (Marxan-style records)."""
    try:
        pu_rows = pd.DataFrame(data.get("planning_units") or [])
        ft_rows = pd.DataFrame(data.get("features") or [])
        rij_rows = pd.DataFrame(data.get("rij") or [], columns=["pu", "species", "amount"])
    except (TypeError, ValueError):
        _bad("planning_units, features and rij must be lists of records")
    if pu_rows.empty or ft_rows.empty:
        _bad("planning_units and features are required")
    for col in ("id", "cost"):
        if col not in pu_rows.columns:
            _bad(f"planning_units need '{col}'")
    if "id" not in ft_rows.columns:
        _bad("features need 'id'")

    try:
        status = (pu_rows["status"].fillna(0).astype(int) if "status" in pu_rows.columns
                  else pd.Series(0, index=pu_rows.index))
        pu_ids = pu_rows["id"].to_numpy(dtype=np.int64)
        ft_ids = ft_rows["id"].to_numpy(dtype=np.int64)
        cost = pu_rows["cost"].to_numpy(dtype=float)
        rij_rows = rij_rows.astype({"pu": int, "species": int, "amount": float})
    except (TypeError, ValueError) as e:
        _bad(f"ids, costs, status and amounts must be numeric: {e}")
    pu = PlanningUnits(ids=pu_ids, cost=cost,
                       locked_in=(status == STATUS_LOCKED_IN).to_numpy(),
                       locked_out=(status == STATUS_LOCKED_OUT).to_numpy())
    names = ft_rows["name"].tolist() if "name" in ft_rows.columns else []
    features = Features(ids=ft_ids, names=names)

    boundary = None
    if data.get("boundary"):
        boundary = boundary_from_table(pd.DataFrame(data["boundary"]), pu.ids)
    p = Problem(pu, features, rij_matrix(pu, features, rij_rows), boundary=boundary)

    objective = (data.get("objective") or "min_set").lower()
    budget = _opt(data, "budget", float)
    if objective == "min_set":
        p = p.add_min_set_objective()
    elif budget is None:
        _bad(f"objective '{objective}' needs a budget")
    else:
        add = getattr(p, f"add_{objective}_objective", None)
        if add is None:
            _bad(f"unknown objective '{objective}'")
        p = add(budget)

    targets = data.get("targets") or {}
    if "relative" in targets:
        p = p.add_relative_targets(targets["relative"])
    elif "absolute" in targets:
        p = p.add_absolute_targets(targets["absolute"])
    if data.get("weights") is not None:
        p = p.add_feature_weights(data["weights"])

    if pu.locked_in.any():
        p = p.add_locked_in_constraints(pu.locked_in)
    if pu.locked_out.any():
        p = p.add_locked_out_constraints(pu.locked_out)

    penalty = _opt(data, "penalty", float) or 0.0
    if penalty > 0:
        ef = _opt(data, "edge_factor", float)
        p = p.add_boundary_penalties(penalty, edge_factor=EDGE_FACTOR if ef is None else ef)

    decisions = (data.get("decisions") or "binary").lower()
    if decisions == "proportion":
        p = p.add_proportion_decisions()
    elif decisions == "binary":
        p = p.add_binary_decisions()
    else:
        _bad(f"unknown decisions '{decisions}'")

    gap = _opt(data, "gap", float)
    p = p.add_solver(gap=SOLVER_GAP if gap is None else gap, time_limit=_opt(data, "time_limit", float))
    portfolio = _opt(data, "portfolio", int)
    if portfolio and portfolio > 1:
        p = p.add_cuts_portfolio(portfolio)
    return p

def _bad(msg: str):
    raise ValidationError(msg)

def _records(df: pd.DataFrame):
    return df.replace({np.nan: None}).to_dict(orient="records")

# ======= public endpoints =======
@app.route("/", methods=["GET"])
def root():
    return {"ok": True, "solve": "/problem/solve (POST JSON)",
            "cluster": "/portfolio/cluster (POST JSON)", "preview": "/simulate/part"}

@app.route("/simulate/part", methods=["GET"])
def simulate_part():
    try:
        H = int(request.args.get("height", "10"))
        W = int(request.args.get("width", "10"))
        seed = int(request.args.get("seed", "0"))
        layer = request.args.get("layer", "cost")
    except ValueError:
        return jsonify({"error": "height, width and seed must be integers"}), 400
    if not (2 <= H <= 512 and 2 <= W <= 512):
        return jsonify({"error": "height and width must lie between 2 and 512"}), 400

    land = simulate_landscape(H, W, seed=seed)
    if layer == "cost":
        arr = land.cost
    elif layer.startswith("feature:"):
        try:
            arr = land.features[int(layer.split(":", 1)[1])]
        except (ValueError, IndexError):
            return jsonify({"error": f"no such layer '{layer}'"}), 400
    else:
        return jsonify({"error": "layer must be 'cost' or 'feature:<k>'"}), 400
    return _png(arr)

@app.route("/problem/solve", methods=["POST"])
def problem_solve():
    """
    JSON body:
    {
      "planning_units": [{"id":1, "cost":10, "status":0}, ...],
      "features":       [{"id":1, "name":"koala"}, ...],
      "rij":            [{"pu":1, "species":1, "amount":2.5}, ...],
      "boundary":       [{"id1":1, "id2":2, "boundary":1.0}, ...],   // optional
      "objective": "min_set" | "max_features" | "max_utility" | "min_shortfall" | "min_largest_shortfall",
      "budget": null,
      "targets": {"relative": 0.17} | {"absolute": [..]},
      "weights": null,
      "penalty": 0, "edge_factor": 0.5,
      "decisions": "binary" | "proportion",
      "gap": 0.1, "time_limit": null, "portfolio": null
    }
    """
    data = _body()
    p = build_problem(data)
    log.info("solve_request", n_pu=p.pu.n, n_features=p.features.n, objective=p.objective.name)

    try:
        result = solve(p)
    except InfeasibleError as e:
        diag = {
            "status": e.status,
            "n_pu": p.pu.n,
            "locked_in": int(p.locked_in.sum()) if p.locked_in is not None else 0,
            "locked_out": int(p.locked_out.sum()) if p.locked_out is not None else 0,
            "targets_over_total": int(np.sum(p.targets > p.feature_totals)) if p.targets is not None else 0,
        }
        return jsonify({"error": "No solution. Relax targets or locked constraints.", "diag": diag}), 200

    sols = result if isinstance(result, list) else [result]
    out = []
    for s in sols:
        entry = {
            "status": s.status,
            "objective": s.objective,
            "runtime": s.runtime,
            "selected": [int(i) for i in p.pu.ids[s.selected]],
            "values": [float(v) for v in s.values],
            "cost": _records(eval_cost_summary(p, s))[0]["cost"],
            "representation": _records(eval_feature_representation_summary(p, s)),
        }
        if p.targets is not None:
            entry["targets"] = _records(eval_target_coverage_summary(p, s))
        out.append(entry)
    return jsonify({"solutions": out})

@app.route("/portfolio/cluster", methods=["POST"])
def portfolio_cluster():
    """
    JSON body: {"solutions": [[0,1,1,...], ...], "k": 2, "method": "pam" | "average" | "complete" | ...}
    """
    data = _body()
    try:
        matrix = np.asarray(data.get("solutions") or [], dtype=float)
    except (TypeError, ValueError):
        matrix = np.zeros(0)
    if matrix.ndim != 2 or matrix.shape[0] < 2:
        return jsonify({"error": "solutions must be a list of at least two equal-length selections"}), 400
    k = _opt(data, "k", int) or 2
    method = (data.get("method") or "pam").lower()
    if method not in CLUSTER_METHODS:
        return jsonify({"error": f"method must be one of {', '.join(CLUSTER_METHODS)}"}), 400

    D = jaccard_distance(matrix > 0.5)
    if method == "pam":
        cl = kmedoid_clusters(D, k)
    else:
        cl = hierarchical_clusters(D, k, method=method)
    return jsonify({
        "labels": cl.labels.tolist(),
        "medoids": cl.medoids.tolist(),
        "distance": D.round(6).tolist(),
        "frequency": selection_frequency(matrix > 0.5).tolist(),
    })


if __name__ == "__main__":
    app.run(host=API_HOST, port=API_PORT, threaded=True)

"""
Readers for Marxan flat files.

pu.dat (id, cost, status), spec.dat (id, name, prop | target, spf),
puvspr.dat (species, pu, amount), bound.dat (id1, id2, boundary) and the
input.dat parameter file. Tables may be comma, tab or whitespace delimited
and can be read from a local path or an http(s) URL.
"""

from __future__ import annotations

import io
import os
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import requests

from reserve_planner.config import HTTP_TIMEOUT, STATUS_LOCKED_IN, STATUS_LOCKED_OUT
from reserve_planner.exceptions import DataError
from reserve_planner.log import get_logger
from reserve_planner.models import Features, PlanningUnits

log = get_logger("marxan")

INPUT_FILE_KEYS = {
    "PUNAME": "pu.dat",
    "SPECNAME": "spec.dat",
    "PUVSPRNAME": "puvspr.dat",
    "BOUNDNAME": "bound.dat",
}


def _is_url(path: str) -> bool:
    return str(path).startswith(("http://", "https://"))


def _read_text(path: str, missing_ok: bool = False) -> Optional[str]:
    """File or URL contents; with missing_ok a missing file (or 404) gives None."""
    if _is_url(path):
        try:
            r = requests.get(path, timeout=HTTP_TIMEOUT)
            if missing_ok and r.status_code == 404:
                return None
            r.raise_for_status()
        except requests.RequestException as e:
            raise DataError(f"Could not fetch {path}: {e}") from e
        return r.text
    if missing_ok and not os.path.exists(path):
        return None
    try:
        with open(path, "r") as f:
            return f.read()
    except OSError as e:
        raise DataError(f"Could not read {path}: {e}") from e


def _join(base: str, name: str) -> str:
    if _is_url(base):
        return base.rstrip("/") + "/" + name
    return os.path.join(base, name)


def read_marxan_table(path: str, missing_ok: bool = False) -> Optional[pd.DataFrame]:
    """Read a delimited table with a header row; column names are lower-cased."""
    text = _read_text(path, missing_ok=missing_ok)
    if text is None:
        return None
    first = next((line for line in text.splitlines() if line.strip()), "")
    if "," in first:
        sep = ","
    elif "\t" in first:
        sep = "\t"
    else:
        sep = r"\s+"
    try:
        df = pd.read_csv(io.StringIO(text), sep=sep, engine="python")
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataError(f"Could not parse {path}: {e}") from e
    df.columns = [str(c).strip().lower() for c in df.columns]
    return df


def _require(df: pd.DataFrame, columns: Sequence[str], name: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DataError(f"{name} is missing required columns: {', '.join(missing)}",
                        {"columns": list(df.columns)})


def read_pu_dat(path: str) -> PlanningUnits:
    df = read_marxan_table(path)
    _require(df, ["id", "cost"], "pu.dat")
    status = df["status"].fillna(0).astype(int) if "status" in df.columns else pd.Series(0, index=df.index)
    return PlanningUnits(
        ids=df["id"].to_numpy(),
        cost=df["cost"].to_numpy(dtype=np.float64),
        locked_in=(status == STATUS_LOCKED_IN).to_numpy(),
        locked_out=(status == STATUS_LOCKED_OUT).to_numpy(),
    )


def read_spec_dat(path: str) -> pd.DataFrame:
    df = read_marxan_table(path)
    _require(df, ["id"], "spec.dat")
    if "prop" not in df.columns and "target" not in df.columns:
        raise DataError("spec.dat needs a 'prop' or 'target' column.")
    if "name" not in df.columns:
        df["name"] = [f"feature_{i}" for i in df["id"]]
    return df


def read_puvspr_dat(path: str) -> pd.DataFrame:
    df = read_marxan_table(path)
    _require(df, ["species", "pu", "amount"], "puvspr.dat")
    return df


def read_bound_dat(path: str, missing_ok: bool = False) -> Optional[pd.DataFrame]:
    df = read_marxan_table(path, missing_ok=missing_ok)
    if df is None:
        return None
    _require(df, ["id1", "id2", "boundary"], "bound.dat")
    return df


def read_input_dat(path: str) -> Dict[str, str]:
    """Parse `KEY value` lines; comments and blank lines are skipped."""
    params: Dict[str, str] = {}
    for line in _read_text(path).splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) == 2 and parts[0].isupper():
            params[parts[0]] = parts[1].strip()
    return params


def rij_matrix(pu: PlanningUnits, features: Features, puvspr: pd.DataFrame) -> np.ndarray:
    """Dense (n_pu, n_features) amounts from puvspr rows; duplicates are summed."""
    pu_pos = {int(v): i for i, v in enumerate(pu.ids)}
    ft_pos = {int(v): j for j, v in enumerate(features.ids)}

    bad_pu = sorted(set(int(v) for v in puvspr["pu"]) - set(pu_pos))
    bad_sp = sorted(set(int(v) for v in puvspr["species"]) - set(ft_pos))
    if bad_pu or bad_sp:
        raise DataError("puvspr.dat references unknown ids.",
                        {"pu": bad_pu[:20], "species": bad_sp[:20]})

    rij = np.zeros((pu.n, features.n), dtype=np.float64)
    rows = np.array([pu_pos[int(v)] for v in puvspr["pu"]], dtype=np.int64)
    cols = np.array([ft_pos[int(v)] for v in puvspr["species"]], dtype=np.int64)
    np.add.at(rij, (rows, cols), puvspr["amount"].to_numpy(dtype=np.float64))
    if np.any(rij < 0):
        raise DataError("puvspr.dat amounts must be non-negative.")
    return rij


def marxan_problem(path: str, blm: Optional[float] = None):
    """
    Build a min-set problem from a Marxan input.dat file or a directory
    holding pu.dat, spec.dat, puvspr.dat and (optionally) bound.dat.
    """
    from reserve_planner.boundary import boundary_from_table
    from reserve_planner.problem import Problem

    params: Dict[str, str] = {}
    if not _is_url(path) and os.path.isfile(path):
        params = read_input_dat(path)
        root = os.path.dirname(path)
        input_dir = _join(root, params.get("INPUTDIR", "input"))
    else:
        input_dir = path

    def locate(key):
        return _join(input_dir, params.get(key, INPUT_FILE_KEYS[key]))

    pu = read_pu_dat(locate("PUNAME"))
    spec = read_spec_dat(locate("SPECNAME"))
    puvspr = read_puvspr_dat(locate("PUVSPRNAME"))
    features = Features(ids=spec["id"].to_numpy(), names=spec["name"].tolist())
    rij = rij_matrix(pu, features, puvspr)

    bound = read_bound_dat(locate("BOUNDNAME"), missing_ok=True)
    boundary = boundary_from_table(bound, pu.ids) if bound is not None else None

    if blm is None:
        blm = float(params.get("BLM", 0.0))

    log.info("marxan_loaded", source=str(path), n_pu=pu.n, n_features=features.n,
             boundary=boundary is not None, blm=blm)

    p = Problem(pu, features, rij, boundary=boundary).add_min_set_objective()
    targets = pd.DataFrame({"feature": features.ids})
    if "prop" in spec.columns:
        targets["type"] = "relative"
        targets["target"] = spec["prop"].fillna(0).to_numpy(dtype=np.float64)
    else:
        targets["type"] = "absolute"
        targets["target"] = spec["target"].fillna(0).to_numpy(dtype=np.float64)
    p = p.add_manual_targets(targets)

    if pu.locked_in.any():
        p = p.add_locked_in_constraints(pu.locked_in)
    if pu.locked_out.any():
        p = p.add_locked_out_constraints(pu.locked_out)
    if blm > 0 and boundary is not None:
        p = p.add_boundary_penalties(blm, edge_factor=1.0)
    return p.add_binary_decisions()

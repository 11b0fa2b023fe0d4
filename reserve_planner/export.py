# region Imports
from __future__ import annotations
import json
from typing import Optional, Sequence
import numpy as np
import pandas as pd

from reserve_planner.exceptions import ValidationError
from reserve_planner.log import get_logger

log = get_logger("export")
# endregion


# region Tabular Export
def solution_frame(pu, solutions: Sequence) -> pd.DataFrame:
    """One row per planning unit: id, cost and a solution_<k> column per solution."""
    df = pd.DataFrame({"id": pu.ids, "cost": pu.cost})
    for k, sol in enumerate(solutions, start=1):
        df[f"solution_{k}"] = np.asarray(sol.values, dtype=np.float64)
    return df


def write_solution_csv(pu, solutions: Sequence, out_path: str = "solution.csv") -> str:
    solution_frame(pu, solutions).to_csv(out_path, index=False)
    log.info("wrote_csv", path=out_path, solutions=len(solutions))
    return out_path


def write_solution_json(pu, solution, out_path: str = "solution.json",
                        summaries: Optional[dict] = None) -> str:
    payload = {
        "status": solution.status,
        "objective": solution.objective,
        "runtime": solution.runtime,
        "selected": [int(i) for i in pu.ids[solution.selected]],
        "values": {str(int(i)): float(v) for i, v in zip(pu.ids, solution.values)},
    }
    if summaries:
        payload["summaries"] = {k: v.to_dict(orient="records") for k, v in summaries.items()}
    with open(out_path, "w") as f:
        json.dump(payload, f, indent=2, default=float)
    log.info("wrote_json", path=out_path, selected=len(payload["selected"]))
    return out_path
# endregion


# region Raster Export
def write_solution_geotiff(pu, solutions: Sequence, out_path: str = "solution.tif") -> str:
    """One band per solution on the planning unit grid; non-planning-unit cells are NaN."""
    from reserve_planner.datasets import write_geotiff

    if pu.grid is None:
        raise ValidationError("GeoTIFF export needs raster planning units.")
    stack = np.stack([pu.grid.to_raster(np.asarray(s.values, dtype=np.float64)) for s in solutions])
    write_geotiff(out_path, stack, pu.grid.transform, pu.grid.crs)
    log.info("wrote_geotiff", path=out_path, bands=stack.shape[0])
    return out_path
# endregion

# region Imports
from typing import Sequence
import numpy as np
import pandas as pd

from reserve_planner.exceptions import DataError
from reserve_planner.models import BoundaryData, RasterGrid
# endregion

# region Raster Boundary
def raster_boundary(grid: RasterGrid, cell_size: float = 1.0) -> BoundaryData:
    """
    Rook adjacency between planning unit cells. Each cell has 4 edges of
    length cell_size; edges not shared with another planning unit are exposed.
    """
    H, W = grid.shape
    pos = np.full(H * W, -1, dtype=np.int64)
    pos[grid.cells] = np.arange(grid.cells.size)
    pos = pos.reshape(H, W)

    pairs = []
    for a, b in ((pos[:, :-1], pos[:, 1:]), (pos[:-1, :], pos[1:, :])):
        both = (a >= 0) & (b >= 0)
        pairs.append(np.stack([a[both], b[both]], axis=1))
    pairs = np.concatenate(pairs, axis=0)
    pairs.sort(axis=1)

    n = grid.cells.size
    length = np.full(len(pairs), float(cell_size))
    shared = np.bincount(pairs[:, 0], minlength=n) + np.bincount(pairs[:, 1], minlength=n)
    exposed = (4 - shared) * float(cell_size)
    return BoundaryData(i=pairs[:, 0], j=pairs[:, 1], length=length, exposed=exposed)
# endregion

# region Polygon Boundary
def polygon_boundary(frame, tol: float = 1e-9) -> BoundaryData:
    """Shared edge lengths between touching polygons; exposed = perimeter - shared."""
    geoms = list(frame.geometry)
    n = len(geoms)
    sindex = frame.sindex

    ii, jj, ll = [], [], []
    for i, g in enumerate(geoms):
        for j in sindex.query(g, predicate="intersects"):
            j = int(j)
            if j <= i:
                continue
            shared = g.boundary.intersection(geoms[j].boundary).length
            if shared > tol:
                ii.append(i); jj.append(j); ll.append(shared)

    perimeter = np.array([g.length for g in geoms], dtype=np.float64)
    length = np.asarray(ll, dtype=np.float64)
    i_arr = np.asarray(ii, dtype=np.int64)
    j_arr = np.asarray(jj, dtype=np.int64)
    shared_tot = np.bincount(i_arr, weights=length, minlength=n) + np.bincount(j_arr, weights=length, minlength=n)
    exposed = np.clip(perimeter - shared_tot, 0.0, None)
    return BoundaryData(i=i_arr, j=j_arr, length=length, exposed=exposed)
# endregion

# region Tabular Boundary (bound.dat)
def boundary_from_table(df: pd.DataFrame, ids: Sequence[int]) -> BoundaryData:
    """Rows with id1 == id2 hold the exposed boundary of that unit."""
    lookup = {int(v): k for k, v in enumerate(ids)}
    n = len(lookup)
    id1 = df["id1"].astype(int).to_numpy()
    id2 = df["id2"].astype(int).to_numpy()
    unknown = sorted(set(id1.tolist() + id2.tolist()) - set(lookup))
    if unknown:
        raise DataError("boundary data references unknown planning unit ids.", {"ids": unknown[:20]})

    a = np.array([lookup[v] for v in id1], dtype=np.int64)
    b = np.array([lookup[v] for v in id2], dtype=np.int64)
    w = df["boundary"].to_numpy(dtype=np.float64)
    if np.any(w < 0):
        raise DataError("boundary lengths must be non-negative.")

    self_rows = a == b
    exposed = np.bincount(a[self_rows], weights=w[self_rows], minlength=n)

    lo = np.minimum(a[~self_rows], b[~self_rows])
    hi = np.maximum(a[~self_rows], b[~self_rows])
    key = lo * n + hi
    uniq, inv = np.unique(key, return_inverse=True)
    length = np.bincount(inv, weights=w[~self_rows], minlength=uniq.size)
    return BoundaryData(i=uniq // n, j=uniq % n, length=length, exposed=exposed)
# endregion

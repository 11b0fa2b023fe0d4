# region Imports
from typing import Optional, Tuple, Any
import numpy as np

from reserve_planner.exceptions import DataError, ValidationError
from reserve_planner.log import get_logger
from reserve_planner.models import PlanningUnits, RasterGrid

log = get_logger("zonal")
# endregion

# region Raster Readers
def read_raster_stack(path: str) -> Tuple[np.ndarray, Any, Any]:
    """Read every band of a raster as float64 (B,H,W); nodata becomes NaN."""
    import rasterio

    try:
        with rasterio.open(path) as ds:
            arr = ds.read().astype(np.float64)
            nodata = ds.nodata
            transform, crs = ds.transform, ds.crs
    except rasterio.errors.RasterioIOError as e:
        raise DataError(f"Could not read raster {path}: {e}") from e

    if nodata is not None and not np.isnan(nodata):
        arr[np.isclose(arr, nodata)] = np.nan
    log.debug("raster_read", path=str(path), bands=arr.shape[0], shape=arr.shape[1:])
    return arr, transform, crs


def read_raster(path: str) -> Tuple[np.ndarray, Any, Any]:
    arr, transform, crs = read_raster_stack(path)
    return arr[0], transform, crs
# endregion

# region Raster Planning Units
def raster_planning_units(
    cost: np.ndarray,
    transform=None,
    crs=None,
    locked_in: Optional[np.ndarray] = None,
    locked_out: Optional[np.ndarray] = None,
) -> PlanningUnits:
    """Every finite cell of the cost raster is a planning unit (ids 1..n, row-major)."""
    cost = np.asarray(cost, dtype=np.float64)
    if cost.ndim != 2:
        raise ValidationError(f"cost raster must be 2-D, got shape {cost.shape}.")

    cells = np.flatnonzero(np.isfinite(cost))
    if cells.size == 0:
        raise DataError("cost raster has no finite cells.")
    grid = RasterGrid(shape=cost.shape, transform=transform, crs=crs, cells=cells)

    def _cells(mask):
        if mask is None:
            return None
        mask = np.asarray(mask)
        if mask.shape != cost.shape:
            raise ValidationError("lock rasters must match the cost raster shape.")
        return np.nan_to_num(mask.astype(np.float64)).ravel()[cells] > 0

    return PlanningUnits(
        ids=np.arange(1, cells.size + 1),
        cost=cost.ravel()[cells],
        locked_in=_cells(locked_in),
        locked_out=_cells(locked_out),
        grid=grid,
    )


def raster_zonal_sums(grid: RasterGrid, feature_stack: np.ndarray) -> np.ndarray:
    """Amount of each band in each raster planning unit, shape (n_pu, F)."""
    stack = np.asarray(feature_stack, dtype=np.float64)
    if stack.ndim == 2:
        stack = stack[None]
    if stack.shape[1:] != tuple(grid.shape):
        raise DataError(
            f"feature raster shape {stack.shape[1:]} does not match planning unit grid {tuple(grid.shape)}.")
    flat = stack.reshape(stack.shape[0], -1)[:, grid.cells]
    return np.nan_to_num(flat, nan=0.0).T.copy()
# endregion

# region CRS
def _match_crs(frame, crs):
    if crs is None or getattr(frame, "crs", None) is None:
        return frame
    from pyproj import CRS

    target = CRS.from_user_input(crs)
    if CRS.from_user_input(frame.crs) == target:
        return frame
    log.info("reprojecting_polygons", src=str(frame.crs), dst=target.to_string())
    return frame.to_crs(target)
# endregion

# region Polygon Planning Units
def polygon_planning_units(
    frame,
    cost_column: str = "cost",
    id_column: Optional[str] = None,
    locked_in_column: Optional[str] = None,
    locked_out_column: Optional[str] = None,
) -> PlanningUnits:
    """GeoDataFrame with one row per planning unit."""
    if cost_column not in frame.columns:
        raise DataError(f"planning unit data has no '{cost_column}' column.")
    ids = frame[id_column].to_numpy() if id_column else np.arange(1, len(frame) + 1)

    def _col(name):
        if name is None:
            return None
        if name not in frame.columns:
            raise DataError(f"planning unit data has no '{name}' column.")
        return frame[name].fillna(False).astype(bool).to_numpy()

    return PlanningUnits(
        ids=ids,
        cost=frame[cost_column].to_numpy(dtype=np.float64),
        locked_in=_col(locked_in_column),
        locked_out=_col(locked_out_column),
        frame=frame.reset_index(drop=True),
    )


def polygon_zonal_sums(frame, feature_stack: np.ndarray, transform, crs=None) -> np.ndarray:
    """
    Sum each band of a feature stack inside each polygon, shape (n_pu, F).
    Polygons are burned onto the feature grid (cell centres); where polygons
    overlap the later row wins. When both the frame and the raster carry a
    CRS and they differ, the polygons are reprojected to the raster CRS first.
    """
    from rasterio.features import rasterize

    frame = _match_crs(frame, crs)

    stack = np.asarray(feature_stack, dtype=np.float64)
    if stack.ndim == 2:
        stack = stack[None]
    B, H, W = stack.shape
    n = len(frame)

    shapes = ((geom, k + 1) for k, geom in enumerate(frame.geometry) if geom is not None and not geom.is_empty)
    zones = rasterize(shapes, out_shape=(H, W), transform=transform, fill=0, dtype="int32")

    z = zones.ravel()
    inside = z > 0
    out = np.zeros((n, B), dtype=np.float64)
    vals = np.nan_to_num(stack.reshape(B, -1)[:, inside], nan=0.0)
    for b in range(B):
        out[:, b] = np.bincount(z[inside] - 1, weights=vals[b], minlength=n)

    empty = np.bincount(z[inside] - 1, minlength=n) == 0
    if empty.any():
        log.warning("polygons_without_cells", count=int(empty.sum()))
    return out
# endregion

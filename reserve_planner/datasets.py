# datasets.py
# ----------------
# Simulated sample data for trying out prioritizations without real inputs.
#
# Exposes:
#   - Landscape                 (data container)
#   - simulate_landscape(height=10, width=10, n_features=5, seed=0)
#   - write_geotiff(path, data, transform, crs)
#
# Dependencies: numpy, rasterio (for GeoTIFF output)

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional
import numpy as np

# RasterIO is imported lazily inside functions that need it.


@dataclass
class Landscape:
    """
    cost:       per-cell cost, NaN where the cell is not a planning unit, shape (H,W)
    features:   per-cell feature amounts, shape (F,H,W)
    locked_in:  boolean mask of cells that must be selected, shape (H,W)
    locked_out: boolean mask of cells that must not be selected, shape (H,W)
    """
    cost: np.ndarray
    features: np.ndarray
    locked_in: np.ndarray
    locked_out: np.ndarray
    transform: Any = None
    crs: Any = None


def simulate_landscape(
    height: int = 10,
    width: int = 10,
    n_features: int = 5,
    seed: int = 0,
    n_holes: int = 3,
    cell_size: float = 0.1,
) -> Landscape:
    """
    Generates a cost surface with gentle spatial autocorrelation and a stack
    of feature layers, each one a couple of gaussian hot spots. A few cells
    are left as NaN so the grid has non-planning-unit gaps, and a handful of
    cells are flagged as locked in / locked out.
    """
    from rasterio.transform import from_origin

    if height < 2 or width < 2:
        raise ValueError("landscape needs at least 2x2 cells.")
    if n_features < 1:
        raise ValueError("n_features must be positive.")

    rng = np.random.default_rng(seed)
    yy, xx = np.meshgrid(np.linspace(0, 2*np.pi, height), np.linspace(0, 2*np.pi, width), indexing='ij')

    cost = 200 + 60 * np.sin(0.7*xx + 0.4) * np.cos(0.5*yy - 0.2)
    cost = cost + rng.normal(0, 8.0, (height, width))
    cost = np.clip(cost, 1.0, None)

    # a few holes (water, existing reserves outside the study ...)
    flat = rng.choice(height * width, size=min(n_holes, height * width - 2), replace=False)
    cost.flat[flat] = np.nan

    rr, cc = np.ogrid[:height, :width]
    features = np.zeros((n_features, height, width), dtype=np.float64)
    for k in range(n_features):
        for _ in range(2):
            r0 = rng.uniform(0, height - 1)
            c0 = rng.uniform(0, width - 1)
            sd = rng.uniform(0.12, 0.3) * max(height, width)
            features[k] += np.exp(-((rr - r0)**2 + (cc - c0)**2) / (2 * sd**2))
    features[:, np.isnan(cost)] = np.nan
    features /= np.nanmax(features, axis=(1, 2), keepdims=True)

    valid = np.flatnonzero(np.isfinite(cost))
    picks = rng.choice(valid, size=min(4, valid.size), replace=False)
    locked_in = np.zeros((height, width), dtype=bool)
    locked_out = np.zeros((height, width), dtype=bool)
    locked_in.flat[picks[:2]] = True
    locked_out.flat[picks[2:]] = True

    return Landscape(
        cost=cost.astype(np.float64),
        features=features,
        locked_in=locked_in,
        locked_out=locked_out,
        transform=from_origin(0.0, height * cell_size, cell_size, cell_size),
        crs=None,
    )


def write_geotiff(path: str, data: np.ndarray, transform, crs: Optional[Any] = None) -> str:
    """Write a (H,W) array or (B,H,W) stack as float64 GeoTIFF with NaN nodata."""
    import rasterio

    arr = np.asarray(data, dtype=np.float64)
    if arr.ndim == 2:
        arr = arr[None, :, :]
    if arr.ndim != 3:
        raise ValueError(f"Expected 2-D or 3-D array, got shape {arr.shape}.")

    B, H, W = arr.shape
    with rasterio.open(
        path, "w", driver="GTiff", height=H, width=W, count=B,
        dtype="float64", crs=crs, transform=transform, nodata=np.nan,
    ) as ds:
        ds.write(arr)
    return path

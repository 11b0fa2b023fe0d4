# models.py
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from reserve_planner.config import SELECTED_TOL
from reserve_planner.exceptions import ValidationError


@dataclass
class RasterGrid:
    shape: Tuple[int, int]    # (H,W)
    transform: Any            # affine.Affine or None
    crs: Any                  # rasterio CRS or None
    cells: np.ndarray         # (n,) flat row-major index of each planning unit

    def to_raster(self, values, fill: float = np.nan) -> np.ndarray:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.cells.shape:
            raise ValidationError(
                f"Expected {self.cells.size} values, got {values.size}.")
        out = np.full(self.shape[0] * self.shape[1], fill, dtype=np.float64)
        out[self.cells] = values
        return out.reshape(self.shape)

    @property
    def mask(self) -> np.ndarray:
        m = np.zeros(self.shape[0] * self.shape[1], dtype=bool)
        m[self.cells] = True
        return m.reshape(self.shape)


@dataclass
class PlanningUnits:
    ids: np.ndarray           # (n,) int
    cost: np.ndarray          # (n,) float >= 0
    locked_in: np.ndarray     # (n,) bool
    locked_out: np.ndarray    # (n,) bool
    grid: Optional[RasterGrid] = None
    frame: Any = None         # GeoDataFrame for polygon planning units

    def __post_init__(self):
        self.ids = np.asarray(self.ids, dtype=np.int64)
        self.cost = np.asarray(self.cost, dtype=np.float64)
        n = self.ids.size
        self.locked_in = _as_mask(self.locked_in, n)
        self.locked_out = _as_mask(self.locked_out, n)

        if self.cost.shape != (n,):
            raise ValidationError("cost must have one value per planning unit.")
        if np.unique(self.ids).size != n:
            raise ValidationError("planning unit ids must be unique.")
        if not np.all(np.isfinite(self.cost)) or np.any(self.cost < 0):
            raise ValidationError("planning unit costs must be finite and non-negative.")
        both = self.locked_in & self.locked_out
        if both.any():
            raise ValidationError(
                "planning units cannot be both locked in and locked out.",
                {"ids": self.ids[both].tolist()})

    @property
    def n(self) -> int:
        return int(self.ids.size)

    def index_of(self, ids: Sequence[int]) -> np.ndarray:
        """Positions of the given planning unit ids."""
        lookup = {int(v): i for i, v in enumerate(self.ids)}
        missing = [int(v) for v in ids if int(v) not in lookup]
        if missing:
            raise ValidationError("unknown planning unit ids.", {"ids": missing[:20]})
        return np.array([lookup[int(v)] for v in ids], dtype=np.int64)


@dataclass
class Features:
    ids: np.ndarray
    names: list = field(default_factory=list)

    def __post_init__(self):
        self.ids = np.asarray(self.ids, dtype=np.int64)
        if np.unique(self.ids).size != self.ids.size:
            raise ValidationError("feature ids must be unique.")
        if not self.names:
            self.names = [f"feature_{i}" for i in self.ids]
        if len(self.names) != self.ids.size:
            raise ValidationError("need one name per feature.")
        self.names = [str(n) for n in self.names]

    @property
    def n(self) -> int:
        return int(self.ids.size)


@dataclass
class BoundaryData:
    """
    i, j:    planning unit positions of each shared edge, i < j
    length:  shared boundary length of each pair
    exposed: (n,) boundary of each unit not shared with another unit
    """
    i: np.ndarray
    j: np.ndarray
    length: np.ndarray
    exposed: np.ndarray

    def __post_init__(self):
        self.i = np.asarray(self.i, dtype=np.int64)
        self.j = np.asarray(self.j, dtype=np.int64)
        self.length = np.asarray(self.length, dtype=np.float64)
        self.exposed = np.asarray(self.exposed, dtype=np.float64)
        if not (self.i.shape == self.j.shape == self.length.shape):
            raise ValidationError("boundary pair arrays must have equal length.")
        if np.any(self.i >= self.j):
            raise ValidationError("boundary pairs must be stored with i < j.")

    @property
    def n(self) -> int:
        return int(self.exposed.size)

    def total(self, edge_factor: float = 1.0) -> np.ndarray:
        tot = edge_factor * self.exposed
        tot = tot + np.bincount(self.i, weights=self.length, minlength=self.n)
        tot = tot + np.bincount(self.j, weights=self.length, minlength=self.n)
        return tot

    def perimeter(self, values, edge_factor: float = 1.0) -> float:
        x = np.asarray(values, dtype=np.float64)
        shared = np.minimum(x[self.i], x[self.j])
        return float(x @ self.total(edge_factor) - 2.0 * (self.length @ shared))


@dataclass
class Solution:
    values: np.ndarray        # (n_pu,) decision values
    objective: float
    status: str
    runtime: float            # seconds
    gap: Optional[float] = None
    backend: str = ""

    @property
    def selected(self) -> np.ndarray:
        return np.asarray(self.values) > SELECTED_TOL

    @property
    def n_selected(self) -> int:
        return int(self.selected.sum())


def _as_mask(v, n: int) -> np.ndarray:
    if v is None:
        return np.zeros(n, dtype=bool)
    m = np.asarray(v, dtype=bool)
    if m.shape != (n,):
        raise ValidationError("lock masks must have one value per planning unit.")
    return m

"""Simulated landscapes, GeoTIFF IO and solution export."""

import json

import numpy as np
import pandas as pd
import pytest

from reserve_planner.datasets import simulate_landscape, write_geotiff
from reserve_planner.export import write_solution_csv, write_solution_geotiff, write_solution_json
from reserve_planner.exceptions import ValidationError
from reserve_planner.models import Solution
from reserve_planner.zonal import raster_planning_units, read_raster, read_raster_stack


class TestSimulateLandscape:

    def test_shapes_and_holes(self):
        land = simulate_landscape(8, 6, n_features=3, seed=4, n_holes=2)

        assert land.cost.shape == (8, 6)
        assert land.features.shape == (3, 8, 6)
        assert np.isnan(land.cost).sum() == 2
        assert np.all(np.isnan(land.features[:, np.isnan(land.cost)]))
        assert np.nanmax(land.features) == pytest.approx(1.0)
        assert np.nanmin(land.cost) >= 1.0

    def test_deterministic(self):
        a = simulate_landscape(seed=3)
        b = simulate_landscape(seed=3)

        np.testing.assert_array_equal(a.cost, b.cost)
        np.testing.assert_array_equal(a.locked_in, b.locked_in)

    def test_locks_are_disjoint_planning_units(self):
        land = simulate_landscape(seed=1)

        assert land.locked_in.sum() == 2
        assert land.locked_out.sum() == 2
        assert not (land.locked_in & land.locked_out).any()
        assert np.all(np.isfinite(land.cost[land.locked_in | land.locked_out]))

    def test_too_small(self):
        with pytest.raises(ValueError):
            simulate_landscape(1, 5)

    def test_geotiff_stack(self, tmp_path):
        land = simulate_landscape(5, 4, n_features=2)
        path = write_geotiff(str(tmp_path / "features.tif"), land.features, land.transform)
        stack, tf, _ = read_raster_stack(path)

        assert stack.shape == (2, 5, 4)
        np.testing.assert_allclose(stack, land.features, equal_nan=True)
        assert tf == land.transform


class TestExport:

    @pytest.fixture
    def raster_pu(self):
        land = simulate_landscape(4, 4, seed=2, n_holes=1)
        return raster_planning_units(land.cost, land.transform)

    def _solution(self, pu, every=2):
        values = np.zeros(pu.n)
        values[::every] = 1.0
        return Solution(values=values, objective=1.0, status="OPTIMAL", runtime=0.1)

    def test_csv(self, tmp_path, raster_pu):
        sols = [self._solution(raster_pu), self._solution(raster_pu, 3)]
        path = write_solution_csv(raster_pu, sols, str(tmp_path / "s.csv"))
        df = pd.read_csv(path)

        assert list(df.columns) == ["id", "cost", "solution_1", "solution_2"]
        assert len(df) == raster_pu.n

    def test_json(self, tmp_path, raster_pu):
        sol = self._solution(raster_pu)
        path = write_solution_json(raster_pu, sol, str(tmp_path / "s.json"))
        with open(path) as f:
            payload = json.load(f)

        assert payload["status"] == "OPTIMAL"
        assert payload["selected"] == raster_pu.ids[sol.selected].tolist()

    def test_geotiff(self, tmp_path, raster_pu):
        sol = self._solution(raster_pu)
        path = write_solution_geotiff(raster_pu, [sol], str(tmp_path / "s.tif"))
        arr, _, _ = read_raster(path)

        np.testing.assert_allclose(arr, raster_pu.grid.to_raster(sol.values), equal_nan=True)

    def test_geotiff_needs_grid(self, tmp_path, pu):
        sol = Solution(values=np.ones(pu.n), objective=0, status="OPTIMAL", runtime=0)
        with pytest.raises(ValidationError):
            write_solution_geotiff(pu, [sol], str(tmp_path / "s.tif"))

"""End-to-end runs of the command line workflow."""

import os

import numpy as np
import pandas as pd
from click.testing import CliRunner

from run_prioritization import cli


def test_simulate_with_portfolio(tmp_path):
    out = tmp_path / "run"
    result = CliRunner().invoke(cli, [
        "simulate", "--gap", "0", "--portfolio", "4", "--no-plots", "--out-dir", str(out),
    ])

    assert result.exit_code == 0, result.output
    assert "minimum set objective" in result.output
    assert "[portfolio] 4 solutions" in result.output
    for name in ("solutions.csv", "solution.json", "solutions.tif"):
        assert os.path.exists(out / name)

    df = pd.read_csv(out / "solutions.csv")
    assert [c for c in df.columns if c.startswith("solution_")] == [f"solution_{k}" for k in range(1, 5)]


def test_simulate_with_plots_and_penalty(tmp_path):
    out = tmp_path / "plots"
    result = CliRunner().invoke(cli, [
        "simulate", "--height", "6", "--width", "6", "--penalty", "5", "--gap", "0",
        "--importance", "--out-dir", str(out),
    ])

    assert result.exit_code == 0, result.output
    assert "[boundary]" in result.output
    assert os.path.exists(out / "solution.png")
    assert os.path.exists(out / "rwr.png")


def test_marxan_command(marxan_dir, tmp_path):
    out = tmp_path / "marxan"
    result = CliRunner().invoke(cli, [
        "marxan", str(marxan_dir / "input.dat"), "--gap", "0", "--no-plots", "--out-dir", str(out),
    ])

    assert result.exit_code == 0, result.output
    df = pd.read_csv(out / "solutions.csv")
    assert df.loc[df["solution_1"] > 0.5, "id"].tolist() == [1, 2]


def test_infeasible_is_reported(marxan_dir, tmp_path):
    spec = marxan_dir / "input" / "spec.dat"
    spec.write_text("id,name,target\n10,heath,100\n20,wetland,1\n")
    result = CliRunner().invoke(cli, [
        "marxan", str(marxan_dir / "input.dat"), "--no-plots", "--out-dir", str(tmp_path / "x"),
    ])

    assert result.exit_code != 0
    assert "no solution" in result.output


def test_raster_command(tmp_path):
    from reserve_planner.datasets import simulate_landscape, write_geotiff

    land = simulate_landscape(6, 5, n_features=2, seed=7)
    cost = write_geotiff(str(tmp_path / "cost.tif"), land.cost, land.transform)
    feats = write_geotiff(str(tmp_path / "features.tif"), land.features, land.transform)
    out = tmp_path / "raster"
    result = CliRunner().invoke(cli, [
        "raster", "--cost", cost, "--features", feats, "--target", "0.3", "--gap", "0",
        "--no-plots", "--out-dir", str(out),
    ])

    assert result.exit_code == 0, result.output
    df = pd.read_csv(out / "solutions.csv")
    assert len(df) == int(np.isfinite(land.cost).sum())

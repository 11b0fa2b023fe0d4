"""Shared fixtures: tiny problems with known optimal selections."""

import os

os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pandas as pd
import pytest

from reserve_planner.models import Features, PlanningUnits
from reserve_planner.problem import Problem


@pytest.fixture
def pu():
    # cheapest way to hold one unit of each feature is units 1 + 2 (cost 2)
    return PlanningUnits(
        ids=[1, 2, 3, 4],
        cost=[1.0, 1.0, 3.0, 4.0],
        locked_in=None,
        locked_out=None,
    )


@pytest.fixture
def features():
    return Features(ids=[1, 2], names=["heath", "wetland"])


@pytest.fixture
def rij():
    return np.array([
        [1.0, 0.0],
        [0.0, 1.0],
        [1.0, 1.0],
        [2.0, 2.0],
    ])


@pytest.fixture
def problem(pu, features, rij):
    return Problem(pu, features, rij).add_solver(gap=0.0)


@pytest.fixture
def marxan_dir(tmp_path):
    """Marxan project with input.dat pointing at an input/ folder."""
    inp = tmp_path / "input"
    inp.mkdir()
    pd.DataFrame({"id": [1, 2, 3, 4], "cost": [1.0, 1.0, 3.0, 4.0], "status": [0, 0, 0, 0]}) \
        .to_csv(inp / "pu.dat", index=False)
    pd.DataFrame({"id": [10, 20], "name": ["heath", "wetland"], "prop": [0.25, 0.25]}) \
        .to_csv(inp / "spec.dat", index=False)
    pd.DataFrame({
        "species": [10, 20, 10, 20, 10, 20],
        "pu":      [1, 2, 3, 3, 4, 4],
        "amount":  [1.0, 1.0, 1.0, 1.0, 2.0, 2.0],
    }).to_csv(inp / "puvspr.dat", sep="\t", index=False)
    pd.DataFrame({
        "id1": [1, 2, 3, 1, 4],
        "id2": [2, 3, 4, 1, 4],
        "boundary": [1.0, 1.0, 1.0, 3.0, 3.0],
    }).to_csv(inp / "bound.dat", index=False)
    (tmp_path / "input.dat").write_text(
        "# marxan parameters\n"
        "BLM 0\n"
        "INPUTDIR input\n"
        "PUNAME pu.dat\n"
        "SPECNAME spec.dat\n"
        "PUVSPRNAME puvspr.dat\n"
        "BOUNDNAME bound.dat\n"
    )
    return tmp_path

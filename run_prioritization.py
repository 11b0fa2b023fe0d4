# region Header
"""
run_prioritization.py - conservation prioritization workflow

load planning units + features -> build problem -> solve -> summarise
-> (portfolio -> Jaccard distances -> clusters) -> plots / exports

Requires:
  pip install -e .
"""
# endregion

# region Imports
import os
import click
import numpy as np

from reserve_planner.config import EDGE_FACTOR, SEED, SOLVER_GAP
from reserve_planner.exceptions import ReservePlannerError
from reserve_planner.log import bind_run, get_logger, setup_logging
from reserve_planner.models import Features
from reserve_planner.problem import Problem
from reserve_planner.datasets import simulate_landscape
from reserve_planner.zonal import (
    polygon_planning_units, polygon_zonal_sums, raster_planning_units,
    raster_zonal_sums, read_raster, read_raster_stack,
)
from reserve_planner.marxan import marxan_problem
from reserve_planner.solver import solve
from reserve_planner.evaluate import (
    eval_boundary_summary, eval_cost_summary, eval_feature_representation_summary,
    eval_n_summary, eval_target_coverage_summary,
)
from reserve_planner.importance import rarity_weighted_richness, replacement_cost
from reserve_planner.clustering import (
    choose_k, hierarchical_clusters, jaccard_distance, kmedoid_clusters,
    selection_frequency, solution_matrix,
)
from reserve_planner import viz
from reserve_planner.export import write_solution_csv, write_solution_geotiff, write_solution_json

log = get_logger("workflow")
# endregion


# region Workflow
def build_problem(pu, features, rij, *, target, penalty, edge_factor, gap, time_limit,
                  portfolio=1, proportion=False):
    p = (Problem(pu, features, rij)
         .add_min_set_objective()
         .add_relative_targets(target))
    if pu.locked_in.any():
        p = p.add_locked_in_constraints(pu.locked_in)
    if pu.locked_out.any():
        p = p.add_locked_out_constraints(pu.locked_out)
    if penalty > 0:
        p = p.add_boundary_penalties(penalty, edge_factor=edge_factor)
    p = p.add_proportion_decisions() if proportion else p.add_binary_decisions()
    p = p.add_solver(gap=gap, time_limit=time_limit)
    if portfolio > 1:
        p = p.add_cuts_portfolio(portfolio)
    return p


def run_workflow(problem, out_dir, *, k=None, plots=True, importance=False):
    """Solve, summarise and (for portfolios) cluster; writes everything under out_dir."""
    os.makedirs(out_dir, exist_ok=True)
    click.echo(problem.summary())

    result = solve(problem)
    solutions = result if isinstance(result, list) else [result]
    best = solutions[0]
    pu = problem.pu

    # region Summaries
    summaries = {
        "cost": eval_cost_summary(problem, best),
        "n": eval_n_summary(problem, best),
        "representation": eval_feature_representation_summary(problem, best),
        "targets": eval_target_coverage_summary(problem, best),
    }
    if problem.boundary is not None:
        summaries["boundary"] = eval_boundary_summary(problem, best, problem.edge_factor)
    for name, df in summaries.items():
        click.echo(f"\n[{name}]\n{df.to_string(index=False)}")
    # endregion

    write_solution_csv(pu, solutions, os.path.join(out_dir, "solutions.csv"))
    write_solution_json(pu, best, os.path.join(out_dir, "solution.json"), summaries)
    if pu.grid is not None:
        write_solution_geotiff(pu, solutions, os.path.join(out_dir, "solutions.tif"))

    # region Importance
    if importance:
        rwr = rarity_weighted_richness(problem, best)
        rc = replacement_cost(problem, best)
        log.info("importance", max_rwr=float(rwr.max()), irreplaceable=int(np.isinf(rc).sum()))
        if plots and pu.grid is not None:
            viz.plot_raster(pu.grid.to_raster(rwr), title="Rarity weighted richness", cmap="magma",
                            out_path=os.path.join(out_dir, "rwr.png"))
    # endregion

    if plots and (pu.grid is not None or pu.frame is not None):
        viz.plot_solution(pu, best, title="Best prioritization",
                          locked_in=problem.locked_in, locked_out=problem.locked_out,
                          out_path=os.path.join(out_dir, "solution.png"))

    # region Portfolio Clustering
    if len(solutions) >= 3:
        matrix = solution_matrix(solutions)
        D = jaccard_distance(matrix)
        k = k or choose_k(D, k_max=min(6, len(solutions) - 1), seed=SEED)
        pam = kmedoid_clusters(D, k, seed=SEED)
        tree = hierarchical_clusters(D, k, method="average")
        click.echo(f"\n[portfolio] {len(solutions)} solutions, k={k}")
        click.echo(f"  k-medoids sizes:    {pam.sizes().tolist()} medoids={(pam.medoids + 1).tolist()}")
        click.echo(f"  hierarchical sizes: {tree.sizes().tolist()}")
        if plots:
            viz.plot_dendrogram(tree.linkage, labels=[str(i + 1) for i in range(len(solutions))],
                                out_path=os.path.join(out_dir, "dendrogram.png"))
            if pu.grid is not None or pu.frame is not None:
                viz.plot_frequency(pu, selection_frequency(matrix),
                                   out_path=os.path.join(out_dir, "frequency.png"))
            if pu.grid is not None:
                viz.plot_solution_grid(pu, solutions, clusters=pam,
                                       out_path=os.path.join(out_dir, "portfolio.png"))
    # endregion
    return solutions
# endregion


# region CLI
def _common(f):
    options = [
        click.option("--target", default=0.17, show_default=True, help="Relative target for every feature"),
        click.option("--penalty", default=0.0, show_default=True, help="Boundary penalty (0 disables)"),
        click.option("--edge-factor", default=EDGE_FACTOR, show_default=True),
        click.option("--gap", default=SOLVER_GAP, show_default=True, help="Relative MIP gap"),
        click.option("--time-limit", default=None, type=float, help="Solver time limit (s)"),
        click.option("--portfolio", default=1, show_default=True, help="Number of solutions (cuts portfolio)"),
        click.option("--k", default=None, type=int, help="Number of solution groups (default: silhouette)"),
        click.option("--importance", is_flag=True, help="Compute replacement cost and rarity weighted richness"),
        click.option("--no-plots", is_flag=True),
        click.option("--out-dir", default="output", show_default=True),
    ]
    for opt in reversed(options):
        f = opt(f)
    return f


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="JSON log lines instead of console output")
def cli(debug, json_logs):
    """Conservation prioritization workflow."""
    setup_logging(debug=debug, rich_output=not json_logs)
    bind_run()


def _run(problem_fn, opts):
    try:
        problem = problem_fn()
        run_workflow(problem, opts["out_dir"], k=opts["k"], plots=not opts["no_plots"],
                     importance=opts["importance"])
    except ReservePlannerError as e:
        raise click.ClickException(e.message) from e


@cli.command()
@click.option("--height", default=10, show_default=True)
@click.option("--width", default=10, show_default=True)
@click.option("--features", "n_features", default=5, show_default=True)
@click.option("--seed", default=0, show_default=True)
@click.option("--proportion", is_flag=True, help="Proportion decisions instead of binary")
@_common
def simulate(height, width, n_features, seed, proportion, **opts):
    """Run the workflow on a simulated landscape."""
    def make():
        land = simulate_landscape(height, width, n_features, seed=seed)
        pu = raster_planning_units(land.cost, land.transform, land.crs,
                                   locked_in=land.locked_in, locked_out=land.locked_out)
        rij = raster_zonal_sums(pu.grid, land.features)
        features = Features(ids=np.arange(1, n_features + 1))
        return build_problem(pu, features, rij, target=opts["target"], penalty=opts["penalty"],
                             edge_factor=opts["edge_factor"], gap=opts["gap"],
                             time_limit=opts["time_limit"], portfolio=opts["portfolio"],
                             proportion=proportion)
    _run(make, opts)


@cli.command()
@click.argument("path")
@click.option("--blm", default=None, type=float, help="Override BLM from input.dat")
@click.option("--gap", default=SOLVER_GAP, show_default=True)
@click.option("--time-limit", default=None, type=float)
@click.option("--portfolio", default=1, show_default=True)
@click.option("--k", default=None, type=int)
@click.option("--importance", is_flag=True)
@click.option("--no-plots", is_flag=True)
@click.option("--out-dir", default="output", show_default=True)
def marxan(path, blm, gap, time_limit, portfolio, **opts):
    """Solve Marxan input files (input.dat or a directory of .dat files)."""
    def make():
        p = marxan_problem(path, blm=blm).add_solver(gap=gap, time_limit=time_limit)
        return p.add_cuts_portfolio(portfolio) if portfolio > 1 else p
    _run(make, opts)


@cli.command()
@click.option("--cost", "cost_path", required=True, help="Cost raster; NaN/nodata cells are not planning units")
@click.option("--features", "features_path", required=True, help="Multi-band feature raster on the same grid")
@click.option("--locked-in", "locked_in_path", default=None)
@click.option("--locked-out", "locked_out_path", default=None)
@_common
def raster(cost_path, features_path, locked_in_path, locked_out_path, **opts):
    """Raster planning units with raster features."""
    def make():
        cost, tf, crs = read_raster(cost_path)
        stack, _, _ = read_raster_stack(features_path)
        lin = read_raster(locked_in_path)[0] if locked_in_path else None
        lout = read_raster(locked_out_path)[0] if locked_out_path else None
        pu = raster_planning_units(cost, tf, crs, locked_in=lin, locked_out=lout)
        features = Features(ids=np.arange(1, stack.shape[0] + 1))
        return build_problem(pu, features, raster_zonal_sums(pu.grid, stack), target=opts["target"],
                             penalty=opts["penalty"], edge_factor=opts["edge_factor"], gap=opts["gap"],
                             time_limit=opts["time_limit"], portfolio=opts["portfolio"])
    _run(make, opts)


@cli.command()
@click.option("--pu", "pu_path", required=True, help="Polygon planning units (any format geopandas reads)")
@click.option("--cost-column", default="cost", show_default=True)
@click.option("--locked-in-column", default=None)
@click.option("--locked-out-column", default=None)
@click.option("--features", "features_path", required=True, help="Multi-band feature raster")
@_common
def polygons(pu_path, cost_column, locked_in_column, locked_out_column, features_path, **opts):
    """Polygon planning units with raster features (zonal sums)."""
    import geopandas as gpd

    def make():
        frame = gpd.read_file(pu_path)
        stack, tf, crs = read_raster_stack(features_path)
        pu = polygon_planning_units(frame, cost_column=cost_column,
                                    locked_in_column=locked_in_column,
                                    locked_out_column=locked_out_column)
        features = Features(ids=np.arange(1, stack.shape[0] + 1))
        return build_problem(pu, features, polygon_zonal_sums(pu.frame, stack, tf, crs), target=opts["target"],
                             penalty=opts["penalty"], edge_factor=opts["edge_factor"], gap=opts["gap"],
                             time_limit=opts["time_limit"], portfolio=opts["portfolio"])
    _run(make, opts)
# endregion

# region Main
if __name__ == "__main__":
    cli()
# endregion

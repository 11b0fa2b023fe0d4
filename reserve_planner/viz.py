# region Imports
from typing import Optional, Sequence
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.colors import ListedColormap
from matplotlib.patches import Patch
# endregion


# region Output
def _finish(fig, out_path: Optional[str]):
    plt.tight_layout()
    if out_path:
        fig.savefig(out_path, dpi=150)
        plt.close(fig)
        return out_path
    plt.show()
    return None
# endregion


# region Raster Maps
def plot_raster(array, title="", cmap="viridis", label="", extent=None, out_path=None):
    """Continuous raster (cost, feature amount, frequency) with a colour bar."""
    fig, ax = plt.subplots(figsize=(6, 6))
    img = ax.imshow(np.ma.masked_invalid(array), origin="upper", cmap=cmap, extent=extent)
    cbar = fig.colorbar(img, ax=ax, fraction=0.046, pad=0.04)
    if label:
        cbar.set_label(label)
    ax.set_title(title)
    ax.set_axis_off()
    return _finish(fig, out_path)


def plot_solution(pu, solution, title="Prioritization", locked_in=None, locked_out=None, out_path=None):
    """
    Map selected / not selected planning units. Raster planning units are drawn
    on their grid, polygon planning units through their GeoDataFrame.
    """
    selected = np.asarray(getattr(solution, "values", solution), dtype=np.float64)

    if pu.grid is None and pu.frame is not None:
        frame = pu.frame.copy()
        frame["solution"] = np.where(selected > 0.5, "selected", "not selected")
        fig, ax = plt.subplots(figsize=(7, 7))
        frame.plot(column="solution", ax=ax, categorical=True, legend=True,
                   cmap=ListedColormap(["#d9d9d9", "#1b7837"]), edgecolor="white", linewidth=0.2)
        ax.set_title(title)
        ax.set_axis_off()
        return _finish(fig, out_path)

    if pu.grid is None:
        raise ValueError("planning units have no grid or geometry to plot.")

    # 0 = not selected, 1 = selected, 2 = locked in, 3 = locked out
    cls = np.where(selected > 0.5, 1.0, 0.0)
    if locked_in is not None:
        cls[np.asarray(locked_in, dtype=bool)] = 2.0
    if locked_out is not None:
        cls[np.asarray(locked_out, dtype=bool)] = 3.0
    base = np.ma.masked_invalid(pu.grid.to_raster(cls))

    fig, ax = plt.subplots(figsize=(6, 6))
    cmap = ListedColormap(["#d9d9d9", "#1b7837", "#2166ac", "#b2182b"])
    ax.imshow(base, origin="upper", cmap=cmap, vmin=-0.5, vmax=3.5, interpolation="nearest")

    legend_elements = [
        Patch(facecolor="#d9d9d9", label="Not selected"),
        Patch(facecolor="#1b7837", label="Selected"),
    ]
    if locked_in is not None:
        legend_elements.append(Patch(facecolor="#2166ac", label="Locked in"))
    if locked_out is not None:
        legend_elements.append(Patch(facecolor="#b2182b", label="Locked out"))
    ax.legend(handles=legend_elements, loc="lower right", fontsize=8, framealpha=0.85)
    ax.set_title(title)
    ax.set_axis_off()
    return _finish(fig, out_path)


def plot_frequency(pu, frequency, title="Selection frequency", out_path=None):
    if pu.grid is not None:
        return plot_raster(pu.grid.to_raster(frequency), title=title, cmap="YlGn",
                           label="fraction of solutions", out_path=out_path)
    frame = pu.frame.copy()
    frame["frequency"] = np.asarray(frequency)
    fig, ax = plt.subplots(figsize=(7, 7))
    frame.plot(column="frequency", ax=ax, cmap="YlGn", legend=True, vmin=0, vmax=1)
    ax.set_title(title)
    ax.set_axis_off()
    return _finish(fig, out_path)
# endregion


# region Portfolio Plots
def plot_dendrogram(linkage_matrix, labels: Optional[Sequence[str]] = None,
                    title="Solution similarity (Jaccard)", out_path=None):
    from scipy.cluster.hierarchy import dendrogram

    fig, ax = plt.subplots(figsize=(8, 5))
    dendrogram(linkage_matrix, labels=labels, ax=ax, color_threshold=None)
    ax.set_ylabel("Jaccard distance")
    ax.set_title(title)
    return _finish(fig, out_path)


def plot_solution_grid(pu, solutions, clusters=None, ncols=4, out_path=None):
    """Small multiples of portfolio members, titled with their cluster."""
    if pu.grid is None:
        raise ValueError("small multiples need raster planning units.")
    n = len(solutions)
    ncols = max(1, min(ncols, n))
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(2.5 * ncols, 2.5 * nrows), squeeze=False)
    cmap = ListedColormap(["#d9d9d9", "#1b7837"])
    for k, ax in enumerate(axes.ravel()):
        ax.set_axis_off()
        if k >= n:
            continue
        arr = np.ma.masked_invalid(pu.grid.to_raster(solutions[k].selected.astype(float)))
        ax.imshow(arr, origin="upper", cmap=cmap, vmin=0, vmax=1, interpolation="nearest")
        title = f"#{k + 1}"
        if clusters is not None:
            title += f" (group {int(clusters.labels[k]) + 1}{', medoid' if k in clusters.medoids else ''})"
        ax.set_title(title, fontsize=8)
    return _finish(fig, out_path)
# endregion

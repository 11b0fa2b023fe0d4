"""
Grouping a portfolio of prioritizations.

Solutions are compared by Jaccard distance between their selections, then
grouped with hierarchical clustering (SciPy) or k-medoids (kmedoids, PAM).
The number of groups can be picked by silhouette width (scikit-learn).
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import pdist, squareform

from reserve_planner.exceptions import ValidationError
from reserve_planner.log import get_logger
from reserve_planner.models import Solution

log = get_logger("clustering")


@dataclass
class Clusters:
    labels: np.ndarray            # (n_solutions,) 0-based group of each solution
    medoids: np.ndarray           # index of the representative solution per group
    method: str
    linkage: Optional[np.ndarray] = None

    @property
    def k(self) -> int:
        return int(self.medoids.size)

    def sizes(self) -> np.ndarray:
        return np.bincount(self.labels, minlength=self.k)


def solution_matrix(solutions: Sequence[Solution]) -> np.ndarray:
    """Stack selections into an (n_solutions, n_pu) boolean matrix."""
    if not solutions:
        raise ValidationError("no solutions given.")
    return np.vstack([s.selected for s in solutions])


def jaccard_distance(matrix) -> np.ndarray:
    m = np.asarray(matrix, dtype=bool)
    if m.ndim != 2 or m.shape[0] < 2:
        raise ValidationError("need at least two solutions to compare.")
    return squareform(pdist(m, metric="jaccard"))


def selection_frequency(matrix) -> np.ndarray:
    return np.asarray(matrix, dtype=np.float64).mean(axis=0)


def _check_k(distance: np.ndarray, k: int) -> None:
    n = distance.shape[0]
    if distance.shape != (n, n):
        raise ValidationError("distance must be a square matrix.")
    if not 1 <= k <= n:
        raise ValidationError(f"k must lie between 1 and the number of solutions ({n}).")


def _medoids(distance: np.ndarray, labels: np.ndarray, k: int) -> np.ndarray:
    out = np.zeros(k, dtype=np.int64)
    for c in range(k):
        members = np.flatnonzero(labels == c)
        within = distance[np.ix_(members, members)].sum(axis=1)
        out[c] = members[np.argmin(within)]
    return out


def hierarchical_clusters(distance, k: int, method: str = "average") -> Clusters:
    D = np.asarray(distance, dtype=np.float64)
    _check_k(D, k)
    Z = linkage(squareform(D, checks=False), method=method)
    labels = fcluster(Z, t=k, criterion="maxclust") - 1
    # fcluster may return fewer groups than asked for when distances tie
    _, labels = np.unique(labels, return_inverse=True)
    k_found = int(labels.max()) + 1
    log.info("hierarchical_clusters", method=method, k=k_found)
    return Clusters(labels=labels, medoids=_medoids(D, labels, k_found), method=method, linkage=Z)


def kmedoid_clusters(distance, k: int, seed: int = 0) -> Clusters:
    import kmedoids

    D = np.asarray(distance, dtype=np.float64)
    _check_k(D, k)
    km = kmedoids.KMedoids(n_clusters=k, metric="precomputed", method="pam",
                           init="build", random_state=seed)
    km.fit(D)
    labels = np.asarray(km.labels_, dtype=np.int64)
    log.info("kmedoid_clusters", k=k, loss=float(km.inertia_))
    return Clusters(labels=labels, medoids=np.asarray(km.medoid_indices_, dtype=np.int64), method="pam")


def choose_k(distance, k_max: int = 6, method: str = "pam", seed: int = 0) -> int:
    """Number of groups (2..k_max) with the largest mean silhouette width."""
    from sklearn.metrics import silhouette_score

    D = np.asarray(distance, dtype=np.float64)
    n = D.shape[0]
    if n < 3:
        raise ValidationError("need at least three solutions to choose k.")
    best_k, best_s = 2, -np.inf
    for k in range(2, min(k_max, n - 1) + 1):
        cl = kmedoid_clusters(D, k, seed) if method == "pam" else hierarchical_clusters(D, k, method)
        if len(np.unique(cl.labels)) < 2:
            continue
        s = silhouette_score(D, cl.labels, metric="precomputed")
        log.debug("silhouette", k=k, score=round(float(s), 4))
        if s > best_s:
            best_k, best_s = k, s
    return best_k

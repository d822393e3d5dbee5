#!/usr/bin/env python3
"""
Hamerly-accelerated Lloyd iteration (k-means) over feature vectors.

Each sample keeps an upper bound on the distance to its own centroid and a
lower bound on the distance to the second-nearest one. While the upper bound
stays below max(half the gap to the nearest other centroid, lower bound) the
label cannot change and the exact distance check is skipped.
"""

from dataclasses import dataclass, field

import numpy as np

from feature_space import (
    accumulate_clusters,
    dedup_centroids,
    distance_sq,
    pairwise_distance_sq,
)
from xorshift import XorShift64


HAMERLY_EPSILON = 1.0e-4
RESEED_SEED_MIX = 0xA1D2_C3F4_55AA_1100
SCAN_CHUNK = 65_536  # rows per nearest-centroid scan, bounds the (n, k, 3) temporary


@dataclass
class ClusterResult:
    """Output of a clustering run."""
    centroids: np.ndarray  # (k, 4) feature vectors
    labels: np.ndarray  # (n,) centroid index per sample
    counts: np.ndarray  # (k,) members per centroid
    sse_per_cluster: np.ndarray  # (k,) sum of squared member distances
    iterations: int = 0
    converged: bool = False
    round_sizes: list = field(default_factory=list)  # centroids entering each adaptive round

    @classmethod
    def empty(cls) -> 'ClusterResult':
        return cls(
            centroids=np.zeros((0, 4)),
            labels=np.zeros(0, dtype=np.int64),
            counts=np.zeros(0, dtype=np.int64),
            sse_per_cluster=np.zeros(0),
        )

    @property
    def total_sse(self) -> float:
        return float(self.sse_per_cluster.sum())

    def __len__(self) -> int:
        return len(self.centroids)


# =============================================================================
# Nearest Centroid Scans
# =============================================================================

def nearest_centroid(samples: np.ndarray, centroids: np.ndarray,
                     color_space: str) -> tuple[np.ndarray, np.ndarray]:
    """Return (labels, squared distance to the nearest centroid) per sample."""
    n = len(samples)
    labels = np.zeros(n, dtype=np.int64)
    best = np.full(n, np.inf)

    for start in range(0, n, SCAN_CHUNK):
        stop = min(start + SCAN_CHUNK, n)
        d2 = pairwise_distance_sq(samples[start:stop], centroids, color_space)
        labels[start:stop] = d2.argmin(axis=1)
        best[start:stop] = d2[np.arange(stop - start), labels[start:stop]]

    return labels, best


def nearest_two_centroids(samples: np.ndarray, centroids: np.ndarray,
                          color_space: str) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (labels, nearest d², second-nearest d²). Second is inf when k == 1."""
    n = len(samples)
    labels = np.zeros(n, dtype=np.int64)
    best = np.full(n, np.inf)
    second = np.full(n, np.inf)

    for start in range(0, n, SCAN_CHUNK):
        stop = min(start + SCAN_CHUNK, n)
        d2 = pairwise_distance_sq(samples[start:stop], centroids, color_space)
        rows = np.arange(stop - start)
        chunk_labels = d2.argmin(axis=1)
        labels[start:stop] = chunk_labels
        best[start:stop] = d2[rows, chunk_labels]
        if d2.shape[1] > 1:
            d2[rows, chunk_labels] = np.inf
            second[start:stop] = d2.min(axis=1)

    return labels, best, second


def half_min_center_distances(centroids: np.ndarray, color_space: str) -> np.ndarray:
    """Half the distance from each centroid to its nearest other centroid."""
    k = len(centroids)
    if k == 0:
        return np.zeros(0)
    if k == 1:
        return np.array([np.inf])

    gaps = np.sqrt(pairwise_distance_sq(centroids, centroids, color_space))
    np.fill_diagonal(gaps, np.inf)
    return 0.5 * gaps.min(axis=1)


# =============================================================================
# Lloyd Iteration
# =============================================================================

def run_kmeans(samples: np.ndarray, initial_centroids, max_iterations: int,
               color_space: str, seed: int) -> ClusterResult:
    """
    Run Lloyd's algorithm from the given centroids with Hamerly pruning.

    Args:
        samples: Array of shape (n, 4) feature vectors
        initial_centroids: Array of shape (k, 4); duplicates are merged
        max_iterations: Iteration cap (at least one iteration always runs)
        color_space: Feature space of the samples
        seed: u32 seed for reseeding empty clusters

    Returns:
        ClusterResult with labels from a final exact assignment pass.
    """
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)
    initial_centroids = np.asarray(initial_centroids, dtype=np.float64).reshape(-1, 4)
    n = len(samples)
    if n == 0 or len(initial_centroids) == 0:
        return ClusterResult.empty()

    centroids = dedup_centroids(initial_centroids, color_space)
    k = len(centroids)
    rng = XorShift64(seed ^ RESEED_SEED_MIX)

    labels, best_d2, second_d2 = nearest_two_centroids(samples, centroids, color_space)
    upper = np.sqrt(best_d2)
    lower = np.sqrt(second_d2)

    iterations = 0
    converged = False
    for _ in range(max(max_iterations, 1)):
        iterations += 1
        separation = half_min_center_distances(centroids, color_space)
        changed = False

        bound = np.maximum(separation[labels], lower)
        stale = np.flatnonzero(upper > bound)
        if stale.size:
            upper[stale] = np.sqrt(distance_sq(samples[stale], centroids[labels[stale]], color_space))
            stale = stale[upper[stale] > bound[stale]]
        if stale.size:
            new_labels, new_best, new_second = nearest_two_centroids(
                samples[stale], centroids, color_space
            )
            changed = bool(np.any(new_labels != labels[stale]))
            labels[stale] = new_labels
            upper[stale] = np.sqrt(new_best)
            lower[stale] = np.sqrt(new_second)

        accums = accumulate_clusters(samples, labels, k, color_space)
        old_centroids = centroids.copy()
        for c, accum in enumerate(accums):
            if accum.count == 0:
                centroids[c] = samples[rng.gen_index(n)]
            else:
                centroids[c] = accum.mean(color_space)

        movements = np.sqrt(distance_sq(old_centroids, centroids, color_space))
        max_move = float(movements.max())

        upper += movements[labels]
        lower = np.maximum(lower - max_move, 0.0)

        if not changed and max_move <= HAMERLY_EPSILON:
            converged = True
            break

    # Reseeds can land on an existing centroid
    centroids = dedup_centroids(centroids, color_space)
    k = len(centroids)

    labels, final_d2 = nearest_centroid(samples, centroids, color_space)
    counts = np.bincount(labels, minlength=k)
    sse_per_cluster = np.bincount(labels, weights=final_d2, minlength=k)

    return ClusterResult(
        centroids=centroids,
        labels=labels,
        counts=counts,
        sse_per_cluster=sse_per_cluster,
        iterations=iterations,
        converged=converged,
    )


def assignment_sse(samples: np.ndarray, centroids: np.ndarray, labels: np.ndarray,
                   color_space: str) -> float:
    """Total SSE of an arbitrary labelling against the given centroids."""
    return float(distance_sq(samples, centroids[labels], color_space).sum())

#!/usr/bin/env python3
"""
Adaptive cluster-count selection: x-means (BIC) and g-means (normality test).

Both drivers grow k the same way: cluster, try to split every cluster in two
on a subsample, keep the splits that pass the acceptance test, repeat until a
round accepts nothing or the cluster ceiling is reached, then finish with one
full Lloyd pass.
"""

import math
from dataclasses import dataclass

import numpy as np
from scipy import stats

from feature_space import (
    clamp01,
    dedup_centroids,
    distance_sq,
    feature_delta,
    has_circular_hue,
    wrap01,
)
from init_centroids import build_initial_centroids
from lloyd import ClusterResult, run_kmeans
from xorshift import XorShift64, wrap_u32


SPLIT_DECISION_MAX_SAMPLES = 4096
SPLIT_MAX_ITERATIONS = 20
SPLIT_SAMPLE_SEED_MIX = 0xDD22_55AA_7711_CC33
BIC_DIMS = 3
BIC_MARGIN = 0.5
MIN_PROJECTIONS = 8


@dataclass(frozen=True)
class SplitSchedule:
    """Seed arithmetic and thresholds for one adaptive driver."""
    round_step: int
    cluster_stride: int
    min_members: int
    final_seed_offset: int  # no split accepted, or count stagnated
    ceiling_seed_offset: int  # cluster ceiling reached


XMEANS_SCHEDULE = SplitSchedule(
    round_step=17,
    cluster_stride=97,
    min_members=8,
    final_seed_offset=0xA55A_5AA5,
    ceiling_seed_offset=0x11CC_22DD,
)
GMEANS_SCHEDULE = SplitSchedule(
    round_step=31,
    cluster_stride=131,
    min_members=10,
    final_seed_offset=0x77DD_33BB,
    ceiling_seed_offset=0x5A5A_22EE,
)


# =============================================================================
# Split Mechanics
# =============================================================================

def build_cluster_indices(labels: np.ndarray, cluster_count: int) -> list[np.ndarray]:
    """Member indices per cluster, ascending within each cluster."""
    if cluster_count == 0:
        return []
    labels = np.asarray(labels)
    order = np.argsort(labels, kind='stable')
    counts = np.bincount(labels, minlength=cluster_count)[:cluster_count]
    return np.split(order[:counts.sum()], np.cumsum(counts)[:-1])


def sample_indices_for_split(indices: np.ndarray, limit: int, seed: int) -> np.ndarray:
    """Select `limit` indices uniformly without replacement, preserving order."""
    if len(indices) <= limit:
        return np.asarray(indices)

    rng = XorShift64(seed ^ SPLIT_SAMPLE_SEED_MIX)
    total = len(indices)
    # One draw per row; gen_index(remaining) is the draw mod remaining
    remaining = np.arange(total, 0, -1, dtype=np.uint64)
    draws = (rng.next_u64_array(total) % remaining).tolist()

    out = []
    need = limit
    for idx, draw in zip(indices, draws):
        if need == 0:
            break
        if draw < need:
            out.append(idx)
            need -= 1
    return np.array(out, dtype=np.int64)


def make_split_seeds(subset: np.ndarray, parent: np.ndarray,
                     color_space: str) -> tuple[np.ndarray, np.ndarray]:
    """
    Offset the parent along its axis of largest spread to get two child seeds.

    The offset is half the standard deviation on that axis, clamped to
    [0.01, 0.25]. A hue axis wraps, the others clamp to [0, 1].
    """
    n = max(len(subset), 1)
    d0 = feature_delta(subset[:, 0], parent[0], color_space)
    d1 = subset[:, 1] - parent[1]
    d2 = subset[:, 2] - parent[2]
    variances = np.array([
        np.sum(d0 * d0) / n,
        np.sum(d1 * d1) / n,
        np.sum(d2 * d2) / n,
    ])

    axis = int(np.argmax(variances))
    delta = float(np.clip(math.sqrt(variances[axis]) * 0.5, 0.01, 0.25))

    child_a = np.array(parent, dtype=np.float64)
    child_b = np.array(parent, dtype=np.float64)
    if axis == 0 and has_circular_hue(color_space):
        child_a[0] = wrap01(parent[0] - delta)
        child_b[0] = wrap01(parent[0] + delta)
    else:
        child_a[axis] = clamp01(parent[axis] - delta)
        child_b[axis] = clamp01(parent[axis] + delta)

    return child_a, child_b


def split_locally(samples: np.ndarray, indices: np.ndarray, parent: np.ndarray,
                  settings, seed: int) -> tuple[np.ndarray, ClusterResult]:
    """Run a capped two-centroid k-means on a subsample of one cluster."""
    sampled = sample_indices_for_split(indices, SPLIT_DECISION_MAX_SAMPLES, seed)
    subset = samples[sampled]
    seed_a, seed_b = make_split_seeds(subset, parent, settings.color_space)
    local = run_kmeans(
        subset,
        np.vstack([seed_a, seed_b]),
        min(settings.max_iterations, SPLIT_MAX_ITERATIONS),
        settings.color_space,
        seed,
    )
    return subset, local


# =============================================================================
# X-means (BIC)
# =============================================================================

def bic_score(sse: float, sample_count: int, cluster_count: int, dims: int) -> float:
    """Bayesian Information Criterion of a spherical Gaussian mixture fit."""
    if sample_count <= cluster_count or cluster_count == 0 or dims == 0:
        return -math.inf

    n = float(sample_count)
    variance = max(sse / (sample_count - cluster_count), 1.0e-12)
    params = cluster_count * (dims + 1)
    log_likelihood = -0.5 * n * dims * (math.log(2.0 * math.pi * variance) + 1.0)

    return log_likelihood - 0.5 * params * math.log(n)


def estimate_two_centroid_sse(members: np.ndarray, child_a: np.ndarray,
                              child_b: np.ndarray, color_space: str) -> float:
    """SSE when every member goes to the nearer of two children."""
    d_a = distance_sq(members, child_a, color_space)
    d_b = distance_sq(members, child_b, color_space)
    return float(np.minimum(d_a, d_b).sum())


def split_cluster_xmeans(samples: np.ndarray, indices: np.ndarray, parent: np.ndarray,
                         parent_sse: float, settings, seed: int):
    """Return the two child centroids if splitting improves BIC, else None."""
    _, local = split_locally(samples, indices, parent, settings, seed)
    if len(local.centroids) != 2 or np.any(local.counts == 0):
        return None

    n = len(indices)
    if n < 3:
        return None

    child_sse = estimate_two_centroid_sse(
        samples[indices], local.centroids[0], local.centroids[1], settings.color_space
    )
    bic_parent = bic_score(parent_sse, n, 1, BIC_DIMS)
    bic_children = bic_score(child_sse, n, 2, BIC_DIMS)

    if bic_children > bic_parent + BIC_MARGIN:
        return local.centroids[0], local.centroids[1]
    return None


# =============================================================================
# G-means (Jarque-Bera)
# =============================================================================

def build_split_projections(subset: np.ndarray, parent: np.ndarray, child_a: np.ndarray,
                            child_b: np.ndarray, color_space: str) -> np.ndarray:
    """Project members, relative to the parent, onto the child_a -> child_b axis."""
    axis = np.array([
        feature_delta(child_b[0], child_a[0], color_space),
        child_b[1] - child_a[1],
        child_b[2] - child_a[2],
    ])
    norm = math.sqrt(float(axis @ axis))
    if norm <= 1.0e-8:
        return np.zeros(0)

    offsets = np.column_stack([
        feature_delta(subset[:, 0], parent[0], color_space),
        subset[:, 1] - parent[1],
        subset[:, 2] - parent[2],
    ])
    return offsets @ (axis / norm)


def jarque_bera_p_value(values) -> float:
    """
    Approximate p-value of the Jarque-Bera normality test.

    JB = n/6 · (skew² + (kurtosis - 3)² / 4) is χ²-distributed with two
    degrees of freedom under normality, whose survival function is exp(-JB/2).
    Returns 1.0 (normal) for fewer than 8 values or a degenerate spread.
    """
    values = np.asarray(values, dtype=np.float64)
    if len(values) < MIN_PROJECTIONS:
        return 1.0
    if np.var(values) <= 1.0e-18:
        return 1.0

    jb = float(stats.jarque_bera(values).statistic)
    if not math.isfinite(jb):
        return 1.0
    return min(max(math.exp(-0.5 * max(jb, 0.0)), 0.0), 1.0)


def split_cluster_gmeans(samples: np.ndarray, indices: np.ndarray, parent: np.ndarray,
                         settings, seed: int):
    """Return the two child centroids if the cluster looks non-Gaussian, else None."""
    subset, local = split_locally(samples, indices, parent, settings, seed)
    if len(local.centroids) != 2 or np.any(local.counts < 2):
        return None

    projections = build_split_projections(
        subset, parent, local.centroids[0], local.centroids[1], settings.color_space
    )
    if len(projections) < MIN_PROJECTIONS:
        return None

    if jarque_bera_p_value(projections) < settings.gmeans_alpha:
        return local.centroids[0], local.centroids[1]
    return None


# =============================================================================
# Drivers
# =============================================================================

def _start_cluster_count(settings, sample_count: int, ceiling: int) -> int:
    if settings.init_method == 'selected':
        start_k = max(len(settings.selected_colors), 1)
    else:
        start_k = 1
    return max(min(start_k, ceiling, sample_count), 1)


def _run_adaptive(samples: np.ndarray, settings, try_split, schedule: SplitSchedule) -> ClusterResult:
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)
    n = len(samples)
    if n == 0:
        return ClusterResult.empty()

    color_space = settings.color_space
    seed = settings.seed
    ceiling = max(min(settings.auto_max_clusters, n), 1)

    centroids = build_initial_centroids(samples, settings, _start_cluster_count(settings, n, ceiling))
    if len(centroids) == 0:
        centroids = samples[:1].copy()

    round_offset = 0
    round_sizes = []
    while True:
        round_sizes.append(len(centroids))
        result = run_kmeans(
            samples, centroids, settings.max_iterations, color_space, wrap_u32(seed + round_offset)
        )
        round_offset = wrap_u32(round_offset + schedule.round_step)
        if len(result.centroids) == 0:
            return result

        clusters = build_cluster_indices(result.labels, len(result.centroids))
        next_centroids = []
        split_count = 0

        for cluster_idx, members in enumerate(clusters):
            parent = result.centroids[cluster_idx]
            # Every later cluster still needs a slot for its parent
            reserved = len(clusters) - cluster_idx - 1
            if (len(members) < schedule.min_members
                    or len(next_centroids) + 2 + reserved > ceiling):
                next_centroids.append(parent)
                continue

            split_seed = wrap_u32(seed + cluster_idx * schedule.cluster_stride + round_offset)
            children = try_split(members, parent, result.sse_per_cluster[cluster_idx], split_seed)
            if children is not None:
                next_centroids.extend(children)
                split_count += 1
            else:
                next_centroids.append(parent)

        if split_count == 0 or len(next_centroids) == len(centroids):
            final = run_kmeans(
                samples, result.centroids, settings.max_iterations, color_space,
                wrap_u32(seed + schedule.final_seed_offset),
            )
            break

        centroids = dedup_centroids(next_centroids, color_space)
        if len(centroids) >= ceiling:
            round_sizes.append(len(centroids))
            final = run_kmeans(
                samples, centroids, settings.max_iterations, color_space,
                wrap_u32(seed + schedule.ceiling_seed_offset),
            )
            break

    final.round_sizes = round_sizes
    return final


def run_xmeans(samples: np.ndarray, settings) -> ClusterResult:
    """X-means: grow k while splitting a cluster improves its BIC."""
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)

    def try_split(members, parent, parent_sse, split_seed):
        return split_cluster_xmeans(samples, members, parent, parent_sse, settings, split_seed)

    return _run_adaptive(samples, settings, try_split, XMEANS_SCHEDULE)


def run_gmeans(samples: np.ndarray, settings) -> ClusterResult:
    """G-means: grow k while a cluster's split projection fails a normality test."""
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)

    def try_split(members, parent, parent_sse, split_seed):
        return split_cluster_gmeans(samples, members, parent, settings, split_seed)

    return _run_adaptive(samples, settings, try_split, GMEANS_SCHEDULE)

#!/usr/bin/env python3
"""
Initial centroid selection.

Four strategies, each returning at most k centroids:
  random    - rejection-sampled rows
  area      - greedy streaming grouping, largest groups first
  selected  - user-chosen colors, in order
  kmeans||  - scalable k-means++ (oversampled D² rounds, weighted reduction)

build_initial_centroids() dispatches, tops up any shortfall with random rows,
truncates to k and merges duplicates.
"""

import math

import numpy as np

from feature_space import (
    ClusterAccumulator,
    dedup_centroids,
    distance_sq,
    encode_features,
)
from lloyd import nearest_centroid
from xorshift import XorShift64


MAX_CLUSTERS = 64
INIT_METHODS = ('random', 'area', 'selected', 'kmeans||')

RANDOM_SEED_MIX = 0x1234_ABCD_7890_EF01
TOPUP_SEED_MIX = 0x5511_CC88_2299_AA44
KMEANS_PARALLEL_SEED_MIX = 0xB7E1_5163_9A4F_2D11

AREA_MAX_SAMPLES = 50_000
KMEANS_PARALLEL_ROUNDS = 5
SAME_FEATURE_EPSILON = 1.0e-6


def check_init_method(init_method: str) -> str:
    if init_method not in INIT_METHODS:
        raise ValueError(f"Unknown init method: {init_method}")
    return init_method


def _as_centroids(rows) -> np.ndarray:
    return np.asarray(rows, dtype=np.float64).reshape(-1, 4)


# =============================================================================
# Random
# =============================================================================

def init_random(samples: np.ndarray, target_k: int, seed: int) -> np.ndarray:
    """Pick up to k distinct sample rows, giving up after 16·k draws."""
    n = len(samples)
    if n == 0 or target_k == 0:
        return _as_centroids([])

    rng = XorShift64(seed ^ RANDOM_SEED_MIX)
    chosen = []
    attempts = 0
    while len(chosen) < target_k and attempts < target_k * 16:
        sample = samples[rng.gen_index(n)]
        if not any(np.all(np.abs(c - sample) < SAME_FEATURE_EPSILON) for c in chosen):
            chosen.append(sample)
        attempts += 1

    if not chosen:
        chosen.append(samples[0])
    return _as_centroids(chosen)


# =============================================================================
# Area Similarity
# =============================================================================

def init_area_based(samples: np.ndarray, target_k: int, threshold: float,
                    color_space: str, seed: int) -> np.ndarray:
    """
    Group a strided subsample greedily and seed from the most populous groups.

    A sample joins its nearest group when within (threshold·√3)², otherwise it
    starts a new group. Group centers are running means.
    """
    n = len(samples)
    if n == 0 or target_k == 0:
        return _as_centroids([])

    step = max(n // AREA_MAX_SAMPLES, 1)
    threshold_sq = (max(threshold, 1.0e-4) * math.sqrt(3.0)) ** 2

    groups: list[ClusterAccumulator] = []
    centers = np.zeros((0, 4))
    for idx in range(0, n, step)[:AREA_MAX_SAMPLES]:
        sample = samples[idx]
        if groups:
            d2 = distance_sq(centers, sample, color_space)
            best = int(d2.argmin())
            if d2[best] <= threshold_sq:
                groups[best].accumulate(sample, color_space)
                centers[best] = groups[best].mean(color_space)
                continue

        group = ClusterAccumulator()
        group.accumulate(sample, color_space)
        groups.append(group)
        centers = np.vstack([centers, group.mean(color_space)])

    order = sorted(range(len(groups)), key=lambda g: groups[g].count, reverse=True)
    centroids = [centers[g] for g in order[:target_k]]

    if len(centroids) < target_k:
        centroids.extend(init_random(samples, target_k - len(centroids), seed))
    return _as_centroids(centroids)


# =============================================================================
# Selected Colors
# =============================================================================

def init_selected(samples: np.ndarray, selected_colors: list, target_k: int,
                  color_space: str, seed: int) -> np.ndarray:
    """Encode the user's colors (alpha 1) in order; pad with random rows."""
    centroids = []
    for rgb in selected_colors[:target_k]:
        feature = encode_features(rgb, color_space)
        centroids.append([feature[0], feature[1], feature[2], 1.0])

    if len(centroids) < target_k:
        centroids.extend(init_random(samples, target_k - len(centroids), seed))
    return _as_centroids(centroids)


# =============================================================================
# k-means||
# =============================================================================

def weighted_pick(weights: np.ndarray, rng: XorShift64):
    """Integer roulette over non-negative weights. None when all are zero."""
    total = int(weights.sum())
    if total == 0:
        return None

    r = rng.next_u64() % total
    for idx, w in enumerate(weights):
        w = int(w)
        if r < w:
            return idx
        r -= w
    return len(weights) - 1


def heaviest_unchosen(weights: np.ndarray, chosen_mask: np.ndarray):
    """Unchosen candidate with the largest weight, ties going to the last one."""
    remaining = np.flatnonzero(~chosen_mask)
    if remaining.size == 0:
        return None
    flipped = weights[remaining][::-1]
    return int(remaining[len(remaining) - 1 - int(np.argmax(flipped))])


def init_kmeans_parallel(samples: np.ndarray, target_k: int, color_space: str,
                         seed: int) -> np.ndarray:
    """
    Scalable k-means++ seeding.

    Oversample candidates over five D² inclusion rounds, weight each candidate
    by the size of its Voronoi cell over the full data, then reduce to k with
    weighted D² sampling.
    """
    n = len(samples)
    if n == 0 or target_k == 0:
        return _as_centroids([])
    if target_k == 1:
        return _as_centroids([samples[seed % n]])

    rng = XorShift64(seed ^ KMEANS_PARALLEL_SEED_MIX)
    candidates = _as_centroids([samples[rng.gen_index(n)]])
    oversampling = min(max(target_k * 2, 2), 64)
    nearest_d2 = distance_sq(samples, candidates[0], color_space)

    for _ in range(KMEANS_PARALLEL_ROUNDS):
        phi = max(float(nearest_d2.sum()), 1.0e-12)
        probabilities = np.minimum(oversampling * nearest_d2 / phi, 1.0)
        picked = np.flatnonzero(rng.next_f64_array(n) < probabilities)
        candidates = dedup_centroids(np.vstack([candidates, samples[picked]]), color_space)
        if len(candidates) > MAX_CLUSTERS * 8:
            break

        _, candidate_d2 = nearest_centroid(samples, candidates, color_space)
        nearest_d2 = np.minimum(nearest_d2, candidate_d2)

    candidates = dedup_centroids(candidates, color_space)
    if len(candidates) == 0:
        return init_random(samples, target_k, seed)
    if len(candidates) <= target_k:
        if len(candidates) < target_k:
            fallback = init_random(samples, target_k - len(candidates), seed)
            candidates = np.vstack([candidates, fallback])
        return dedup_centroids(candidates[:target_k], color_space)

    cell_labels, _ = nearest_centroid(samples, candidates, color_space)
    weights = np.bincount(cell_labels, minlength=len(candidates))

    first = weighted_pick(weights, rng)
    if first is None:
        first = 0
    chosen = [first]
    chosen_mask = np.zeros(len(candidates), dtype=bool)
    chosen_mask[first] = True
    to_chosen_d2 = distance_sq(candidates, candidates[first], color_space)

    while len(chosen) < target_k:
        eligible = ~chosen_mask & (weights > 0)
        scores = np.where(eligible, weights * to_chosen_d2, 0.0)
        score_sum = float(scores.sum())

        if score_sum <= 1.0e-20:
            next_idx = heaviest_unchosen(weights, chosen_mask)
            if next_idx is None:
                break
        else:
            threshold = rng.next_f64() * score_sum
            next_idx = first
            for idx in np.flatnonzero(eligible):
                threshold -= scores[idx]
                if threshold <= 0.0:
                    next_idx = int(idx)
                    break

        if chosen_mask[next_idx]:
            break
        chosen_mask[next_idx] = True
        chosen.append(next_idx)
        to_chosen_d2 = np.minimum(to_chosen_d2, distance_sq(candidates, candidates[next_idx], color_space))

    centroids = candidates[chosen]
    if len(centroids) < target_k:
        fallback = init_random(samples, target_k - len(centroids), seed)
        centroids = np.vstack([centroids, fallback])
    return dedup_centroids(centroids[:target_k], color_space)


# =============================================================================
# Dispatch
# =============================================================================

def build_initial_centroids(samples: np.ndarray, settings, target_k: int) -> np.ndarray:
    """
    Produce at most k distinct initial centroids for the configured strategy.

    Args:
        samples: Array of shape (n, 4) feature vectors
        settings: RenderSettings (init_method, seed, color_space, ...)
        target_k: Requested cluster count, clamped to n and MAX_CLUSTERS
    """
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)
    n = len(samples)
    if n == 0 or target_k == 0:
        return _as_centroids([])
    target_k = min(target_k, n, MAX_CLUSTERS)
    color_space = settings.color_space
    seed = settings.seed

    init_method = check_init_method(settings.init_method)
    if init_method == 'random':
        centroids = init_random(samples, target_k, seed)
    elif init_method == 'area':
        centroids = init_area_based(
            samples, target_k, settings.area_similarity_threshold, color_space, seed
        )
    elif init_method == 'selected':
        centroids = init_selected(samples, settings.selected_colors, target_k, color_space, seed)
    else:
        centroids = init_kmeans_parallel(samples, target_k, color_space, seed)

    if len(centroids) < target_k:
        rng = XorShift64(seed ^ TOPUP_SEED_MIX)
        extra = [samples[rng.gen_index(n)] for _ in range(target_k - len(centroids))]
        centroids = np.vstack([centroids, extra])

    return dedup_centroids(centroids[:target_k], color_space)

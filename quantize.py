#!/usr/bin/env python3
"""
Palette quantization entry points.

Turns an (n, 4) float RGBA pixel array into feature vectors, clusters them
with k-means, x-means or g-means, and maps every pixel to its cluster's
decoded color.
"""

import sys
import time
from dataclasses import dataclass, field, replace

import numpy as np

from adaptive import run_gmeans, run_xmeans
from feature_space import check_color_space, decode_features, encode_features, sanitize01
from init_centroids import MAX_CLUSTERS, build_initial_centroids, check_init_method
from lloyd import ClusterResult, run_kmeans
from xorshift import MASK_32


# =============================================================================
# Settings
# =============================================================================

CLUSTER_METHODS = ('kmeans', 'xmeans', 'gmeans')
MAX_SELECTED_COLORS = 8

DEFAULT_SELECTED_COLORS = [
    (1.0, 0.0, 0.0),
    (0.0, 1.0, 0.0),
    (0.0, 0.0, 1.0),
    (1.0, 1.0, 0.0),
]


@dataclass(frozen=True)
class RenderSettings:
    """Clustering configuration for one invocation."""
    method: str = 'xmeans'
    cluster_count: int = 8  # target k for plain k-means
    auto_max_clusters: int = 16  # ceiling for x-means / g-means
    max_iterations: int = 16
    seed: int = 0
    color_space: str = 'oklch'
    init_method: str = 'area'
    area_similarity_threshold: float = 0.04
    selected_colors: list = field(default_factory=lambda: list(DEFAULT_SELECTED_COLORS))
    gmeans_alpha: float = 0.05
    rgb_only: bool = True

    def __post_init__(self):
        if self.method not in CLUSTER_METHODS:
            raise ValueError(f"Unknown cluster method: {self.method}")
        check_color_space(self.color_space)
        check_init_method(self.init_method)
        for rgb in self.selected_colors:
            if len(rgb) < 3:
                raise ValueError(f"Selected color needs three components: {rgb}")

    def normalized(self, pixel_count: int) -> 'RenderSettings':
        """Clamp every field into its valid range for an image of pixel_count pixels."""
        pixel_cap = max(pixel_count, 1)
        selected = [
            tuple(float(c) for c in sanitize01(np.asarray(rgb, dtype=np.float64)[:3]))
            for rgb in self.selected_colors[:MAX_SELECTED_COLORS]
        ]
        return replace(
            self,
            cluster_count=min(max(self.cluster_count, 2), MAX_CLUSTERS, pixel_cap),
            auto_max_clusters=min(max(self.auto_max_clusters, 2), MAX_CLUSTERS, pixel_cap),
            max_iterations=max(self.max_iterations, 1),
            seed=max(int(self.seed), 0) & MASK_32,
            area_similarity_threshold=min(max(self.area_similarity_threshold, 1.0e-4), 1.0),
            selected_colors=selected,
            gmeans_alpha=min(max(self.gmeans_alpha, 1.0e-4), 0.5),
            rgb_only=self.rgb_only and self.color_space != 'alpha_only',
        )


def target_k_for_kmeans(settings: RenderSettings, pixel_count: int) -> int:
    return min(max(settings.cluster_count, 1), MAX_CLUSTERS, max(pixel_count, 1))


# =============================================================================
# Clustering
# =============================================================================

def run_cluster_method(samples: np.ndarray, settings: RenderSettings) -> ClusterResult:
    """Cluster feature vectors with the configured method."""
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)

    if settings.method == 'kmeans':
        target_k = target_k_for_kmeans(settings, len(samples))
        initial = build_initial_centroids(samples, settings, target_k)
        return run_kmeans(
            samples, initial, settings.max_iterations, settings.color_space, settings.seed
        )
    if settings.method == 'xmeans':
        return run_xmeans(samples, settings)
    return run_gmeans(samples, settings)


# =============================================================================
# Pixel Boundary
# =============================================================================

def encode_pixels(rgba: np.ndarray, color_space: str) -> np.ndarray:
    """
    Encode float RGBA pixels (0-1) into feature vectors.

    Args:
        rgba: Array of shape (n, 4); any other leading shape is flattened

    Returns:
        Array of shape (n, 4): three feature channels plus the pixel's alpha.
        In alpha_only mode the alpha matte itself is clustered: [alpha, 0, 0].
    """
    rgba = sanitize01(np.asarray(rgba, dtype=np.float64).reshape(-1, 4))
    if color_space == 'alpha_only':
        zeros = np.zeros(len(rgba))
        return np.column_stack([rgba[:, 3], zeros, zeros, rgba[:, 3]])
    features = encode_features(rgba[:, :3], color_space)
    return np.column_stack([features, rgba[:, 3]])


def compose_output(samples: np.ndarray, result: ClusterResult,
                   settings: RenderSettings) -> np.ndarray:
    """
    Replace every pixel with its centroid's color.

    Alpha is the pixel's own when rgb_only is set, otherwise the centroid's
    mean alpha.
    """
    samples = np.asarray(samples, dtype=np.float64).reshape(-1, 4)
    n = len(samples)
    if n == 0 or len(result.centroids) == 0 or len(result.labels) == 0:
        return np.zeros((n, 4))

    palette = decode_features(result.centroids[:, :3], settings.color_space)
    labels = np.minimum(result.labels, len(result.centroids) - 1)

    if settings.rgb_only:
        alpha = samples[:, 3]
    else:
        alpha = result.centroids[labels, 3]

    return sanitize01(np.column_stack([palette[labels], alpha]))


def palette_rgb(result: ClusterResult, color_space: str) -> np.ndarray:
    """Decoded sRGB (0-1) color per centroid."""
    if len(result.centroids) == 0:
        return np.zeros((0, 3))
    return decode_features(result.centroids[:, :3], color_space)


def quantize_pixels(rgba: np.ndarray, settings: RenderSettings,
                    verbose: bool = False) -> tuple[np.ndarray, ClusterResult]:
    """
    Run the full pipeline on float RGBA pixels.

    Returns:
        Tuple of (quantized RGBA array of shape (n, 4), cluster result)
    """
    rgba = np.asarray(rgba, dtype=np.float64).reshape(-1, 4)
    settings = settings.normalized(len(rgba))
    timings = {}

    start = time.perf_counter()
    samples = encode_pixels(rgba, settings.color_space)
    timings['encode'] = time.perf_counter() - start

    start = time.perf_counter()
    result = run_cluster_method(samples, settings)
    timings['cluster'] = time.perf_counter() - start

    start = time.perf_counter()
    output = compose_output(samples, result, settings)
    timings['compose'] = time.perf_counter() - start

    if verbose:
        total_ms = sum(timings.values()) * 1000
        summary = (
            f"[quantize] {len(rgba):,} px method={settings.method} "
            f"clusters={len(result.centroids)} iters={result.iterations} "
            f"converged={result.converged} total={total_ms:.3f}ms"
        )
        for stage, t in timings.items():
            summary += f" | {stage}={t * 1000:.3f}ms"
        print(summary, file=sys.stderr)

    return output, result

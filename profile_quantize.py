#!/usr/bin/env python3
"""Profile the palette clustering engine on synthetic color blobs."""

import argparse
import cProfile
import io
import pstats
import sys
import time

import numpy as np
from sklearn.cluster import KMeans
from sklearn.datasets import make_blobs

from feature_space import COLOR_SPACES
from init_centroids import INIT_METHODS
from quantize import (
    CLUSTER_METHODS,
    RenderSettings,
    compose_output,
    encode_pixels,
    palette_rgb,
    run_cluster_method,
)


def make_pixels(pixel_count: int, blobs: int, seed: int, spread: float = 0.04) -> np.ndarray:
    """Synthetic RGBA pixels drawn from `blobs` Gaussian color clusters."""
    rgb, _ = make_blobs(
        n_samples=pixel_count,
        n_features=3,
        centers=blobs,
        cluster_std=spread,
        center_box=(0.1, 0.9),
        random_state=seed,
    )
    rgb = np.clip(rgb, 0.0, 1.0)
    return np.column_stack([rgb, np.ones(pixel_count)])


def profile_method(rgba: np.ndarray, settings: RenderSettings, verbose: bool = True):
    """Time each stage of one clustering run."""
    settings = settings.normalized(len(rgba))

    if verbose:
        print(f"\n{'='*60}")
        print(f"Profiling: {settings.method} ({settings.color_space}, init={settings.init_method})")
        print(f"{'='*60}")

    timings = {}

    start = time.perf_counter()
    samples = encode_pixels(rgba, settings.color_space)
    timings['encode'] = time.perf_counter() - start

    start = time.perf_counter()
    result = run_cluster_method(samples, settings)
    timings['cluster'] = time.perf_counter() - start

    start = time.perf_counter()
    compose_output(samples, result, settings)
    timings['compose'] = time.perf_counter() - start

    total = sum(timings.values())
    timings['total'] = total

    if verbose:
        print(f"  Clusters: {len(result.centroids)}")
        print(f"  Final-pass iterations: {result.iterations} (converged={result.converged})")
        if result.round_sizes:
            print(f"  Adaptive rounds: {' -> '.join(str(k) for k in result.round_sizes)}")
        print(f"  SSE: {result.total_sse:.6f}")
        swatches = ' '.join(
            f"#{int(round(r * 255)):02x}{int(round(g * 255)):02x}{int(round(b * 255)):02x}"
            for r, g, b in palette_rgb(result, settings.color_space)
        )
        print(f"  Palette: {swatches}")

        print(f"\nStage timings:")
        for stage, t in timings.items():
            pct = (t / total * 100) if stage != 'total' else 100
            print(f"  {stage:20s}: {t:6.3f}s ({pct:5.1f}%)")

    return timings, samples, result


def compare_with_sklearn(samples: np.ndarray, cluster_count: int, seed: int) -> float:
    """Inertia of scikit-learn KMeans on the same feature channels (Euclidean)."""
    model = KMeans(n_clusters=cluster_count, n_init=1, random_state=seed)
    model.fit(samples[:, :3])
    return float(model.inertia_)


def detailed_profile(samples: np.ndarray, settings: RenderSettings):
    """Run detailed cProfile on the clustering stage."""

    print(f"\n{'='*60}")
    print(f"Detailed profile of run_cluster_method()")
    print(f"{'='*60}")

    profiler = cProfile.Profile()
    profiler.enable()
    result = run_cluster_method(samples, settings)
    profiler.disable()

    stream = io.StringIO()
    stats = pstats.Stats(profiler, stream=stream)
    stats.sort_stats('cumulative')
    stats.print_stats(30)  # Top 30 functions

    print(stream.getvalue())

    return result


def main():
    parser = argparse.ArgumentParser(
        description='Profile palette clustering on synthetic color blobs.'
    )
    parser.add_argument('--pixels', '-n', type=int, default=65_536, help='Number of pixels')
    parser.add_argument('--blobs', '-b', type=int, default=6, help='Number of color blobs')
    parser.add_argument(
        '--method', '-m',
        choices=CLUSTER_METHODS + ('all',),
        default='all',
        help='Clustering method to profile'
    )
    parser.add_argument('--clusters', '-k', type=int, default=8, help='Target k for k-means')
    parser.add_argument('--max-clusters', type=int, default=16, help='Ceiling for x-means/g-means')
    parser.add_argument('--color-space', choices=COLOR_SPACES, default='oklch')
    parser.add_argument('--init', choices=INIT_METHODS, default='area')
    parser.add_argument('--seed', type=int, default=0)
    parser.add_argument(
        '--compare',
        action='store_true',
        help='Also fit scikit-learn KMeans with the same k and report its inertia'
    )
    parser.add_argument(
        '--detailed',
        action='store_true',
        help='Print a cProfile breakdown of the clustering stage'
    )

    args = parser.parse_args()

    if args.pixels <= 0 or args.blobs <= 0:
        print("Error: --pixels and --blobs must be positive", file=sys.stderr)
        sys.exit(2)

    rgba = make_pixels(args.pixels, args.blobs, args.seed)
    print(f"Generated {len(rgba):,} pixels from {args.blobs} color blobs")

    methods = CLUSTER_METHODS if args.method == 'all' else (args.method,)
    all_timings = []
    for method in methods:
        settings = RenderSettings(
            method=method,
            cluster_count=args.clusters,
            auto_max_clusters=args.max_clusters,
            seed=args.seed,
            color_space=args.color_space,
            init_method=args.init,
        )
        timings, samples, result = profile_method(rgba, settings)
        all_timings.append((method, timings, len(result.centroids), result.total_sse))

        if args.compare and len(result.centroids) > 0:
            inertia = compare_with_sklearn(samples, len(result.centroids), args.seed)
            print(f"  scikit-learn KMeans inertia (k={len(result.centroids)}): {inertia:.6f}")

        if args.detailed:
            detailed_profile(samples, settings.normalized(len(rgba)))

    # Summary
    print(f"\n{'='*60}")
    print("SUMMARY")
    print(f"{'='*60}")
    print(f"{'Method':<12} {'Clusters':>8} {'SSE':>12} {'Total':>8}")
    print("-" * 60)
    for method, timings, clusters, sse in all_timings:
        print(f"{method:<12} {clusters:>8} {sse:>12.6f} {timings['total']:>7.3f}s")


if __name__ == "__main__":
    main()

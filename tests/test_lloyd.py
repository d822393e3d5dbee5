"""Tests for the Hamerly-accelerated Lloyd iteration."""

import numpy as np
import pytest

from feature_space import accumulate_clusters, pairwise_distance_sq
from init_centroids import build_initial_centroids
from lloyd import (
    ClusterResult,
    assignment_sse,
    half_min_center_distances,
    nearest_two_centroids,
    run_kmeans,
)
from quantize import RenderSettings, encode_pixels


def check_partition(result: ClusterResult, sample_count: int):
    k = len(result.centroids)
    assert np.all(result.labels < k)
    assert result.counts.sum() == sample_count
    np.testing.assert_array_equal(result.counts, np.bincount(result.labels, minlength=k))


def test_empty_inputs_give_empty_result():
    result = run_kmeans(np.zeros((0, 4)), np.array([[0.5, 0.5, 0.5, 1.0]]), 10, 'oklab', 0)
    assert len(result) == 0
    assert result.labels.shape == (0,)

    result = run_kmeans(np.full((5, 4), 0.5), np.zeros((0, 4)), 10, 'oklab', 0)
    assert len(result) == 0


@pytest.mark.parametrize('init_method', ['random', 'area', 'kmeans||'])
def test_identical_samples_collapse_to_one_cluster(init_method):
    samples = np.tile([0.3, 0.6, 0.2, 1.0], (100, 1))
    settings = RenderSettings(method='kmeans', init_method=init_method, color_space='oklab')
    initial = build_initial_centroids(samples, settings, 5)

    result = run_kmeans(samples, initial, 16, 'oklab', 0)

    assert len(result.centroids) == 1
    assert result.iterations == 1
    assert result.converged
    np.testing.assert_array_equal(result.counts, [100])


def test_coincident_initial_centroids_are_merged():
    samples = np.random.default_rng(3).uniform(size=(50, 4))
    initial = np.tile([0.5, 0.5, 0.5, 1.0], (4, 1))
    result = run_kmeans(samples, initial, 8, 'linear_rgb', 9)
    assert len(result.centroids) == 1
    check_partition(result, 50)


@pytest.mark.parametrize('space', ['linear_rgb', 'oklab', 'oklch', 'hsv', 'yiq', 'alpha_only'])
def test_labels_and_counts_form_a_partition(random_pixels, space):
    samples = encode_pixels(random_pixels, space)
    settings = RenderSettings(method='kmeans', init_method='kmeans||', color_space=space, seed=5)
    initial = build_initial_centroids(samples, settings, 6)

    result = run_kmeans(samples, initial, 20, space, 5)

    check_partition(result, len(samples))
    assert result.sse_per_cluster.shape == (len(result.centroids),)
    assert np.all(result.sse_per_cluster >= 0.0)


def test_centroids_are_unique(random_pixels):
    samples = encode_pixels(random_pixels, 'hsv')
    initial = samples[:12]
    result = run_kmeans(samples, initial, 30, 'hsv', 11)

    d2 = pairwise_distance_sq(result.centroids, result.centroids, 'hsv')
    np.fill_diagonal(d2, np.inf)
    assert np.all(d2 >= 1e-8)


def test_final_assignment_is_exact(noisy_blobs):
    initial = noisy_blobs[::97][:6]
    result = run_kmeans(noisy_blobs, initial, 3, 'linear_rgb', 0)

    d2 = pairwise_distance_sq(noisy_blobs, result.centroids, 'linear_rgb')
    np.testing.assert_array_equal(result.labels, d2.argmin(axis=1))

    # No other labelling does better against the same centroids
    k = len(result.centroids)
    shifted = (result.labels + 1) % k
    sse = assignment_sse(noisy_blobs, result.centroids, result.labels, 'linear_rgb')
    assert sse == pytest.approx(result.total_sse)
    assert sse <= assignment_sse(noisy_blobs, result.centroids, shifted, 'linear_rgb')


def test_converged_centroids_are_member_means(noisy_blobs):
    initial = noisy_blobs[::100]
    result = run_kmeans(noisy_blobs, initial, 100, 'linear_rgb', 0)
    assert result.converged

    accums = accumulate_clusters(noisy_blobs, result.labels, len(result.centroids), 'linear_rgb')
    means = np.array([acc.mean('linear_rgb') for acc in accums])
    np.testing.assert_allclose(means[:, :3], result.centroids[:, :3], atol=1e-3)


def test_recovers_separated_blobs(noisy_blobs):
    initial = noisy_blobs[::100]  # one seed per blob
    result = run_kmeans(noisy_blobs, initial, 50, 'linear_rgb', 0)
    assert len(result.centroids) == 6
    np.testing.assert_array_equal(np.sort(result.counts), [100] * 6)


def test_runs_are_deterministic(random_pixels):
    samples = encode_pixels(random_pixels, 'oklch')
    first = run_kmeans(samples, samples[:8], 16, 'oklch', 77)
    second = run_kmeans(samples, samples[:8], 16, 'oklch', 77)

    np.testing.assert_array_equal(first.centroids, second.centroids)
    np.testing.assert_array_equal(first.labels, second.labels)
    np.testing.assert_array_equal(first.sse_per_cluster, second.sse_per_cluster)


def test_single_centroid_takes_everything(random_pixels):
    samples = encode_pixels(random_pixels, 'oklab')
    result = run_kmeans(samples, samples[:1], 5, 'oklab', 0)

    assert np.all(result.labels == 0)
    np.testing.assert_allclose(result.centroids[0], samples.mean(axis=0), atol=1e-9)


def test_nearest_two_centroids():
    centroids = np.array([[0.0, 0.0, 0.0, 1.0], [0.5, 0.0, 0.0, 1.0], [1.0, 0.0, 0.0, 1.0]])
    samples = np.array([[0.1, 0.0, 0.0, 1.0], [0.9, 0.0, 0.0, 1.0]])
    labels, best, second = nearest_two_centroids(samples, centroids, 'linear_rgb')

    np.testing.assert_array_equal(labels, [0, 2])
    np.testing.assert_allclose(best, [0.01, 0.01])
    np.testing.assert_allclose(second, [0.16, 0.16])

    _, _, second = nearest_two_centroids(samples, centroids[:1], 'linear_rgb')
    assert np.all(np.isinf(second))


def test_half_min_center_distances():
    centroids = np.array([[0.0, 0.0, 0.0, 1.0], [0.0, 0.5, 0.0, 1.0], [0.0, 0.5, 0.9, 1.0]])
    np.testing.assert_allclose(
        half_min_center_distances(centroids, 'linear_rgb'), [0.25, 0.25, 0.45]
    )
    assert np.isinf(half_min_center_distances(centroids[:1], 'linear_rgb')[0])


def test_empty_cluster_is_reseeded():
    samples = np.vstack([
        np.tile([0.1, 0.1, 0.1, 1.0], (50, 1)),
        np.tile([0.9, 0.9, 0.9, 1.0], (50, 1)),
    ])
    # The third centroid is nearest to no sample
    initial = np.array([
        [0.1, 0.1, 0.1, 1.0],
        [0.9, 0.9, 0.9, 1.0],
        [0.0, 1.0, 0.0, 1.0],
    ])
    result = run_kmeans(samples, initial, 10, 'linear_rgb', 13)

    check_partition(result, len(samples))
    assert np.all(result.counts > 0)
    np.testing.assert_array_equal(np.sort(result.counts), [50, 50])

    d2 = pairwise_distance_sq(result.centroids, result.centroids, 'linear_rgb')
    np.fill_diagonal(d2, np.inf)
    assert np.all(d2 >= 1e-8)

    again = run_kmeans(samples, initial, 10, 'linear_rgb', 13)
    np.testing.assert_array_equal(result.centroids, again.centroids)
    np.testing.assert_array_equal(result.labels, again.labels)

"""Tests for feature encoding, distance and cluster accumulation."""

import numpy as np
import pytest

from feature_space import (
    ClusterAccumulator,
    accumulate_clusters,
    circular_delta,
    decode_features,
    dedup_centroids,
    distance_sq,
    encode_features,
    encode_pos,
    encode_signed,
    has_circular_hue,
    wrap01,
)


COLORS = np.array([
    (0.2, 0.6, 0.3),
    (0.1, 0.3, 0.8),
    (0.9, 0.7, 0.2),
    (0.5, 0.2, 0.7),
    (0.3, 0.8, 0.8),
    (0.6, 0.4, 0.3),
])


def test_circular_delta_wraps_around():
    assert abs(circular_delta(0.999, 0.001)) == pytest.approx(0.002)
    assert circular_delta(0.001, 0.999) == pytest.approx(0.002)
    assert circular_delta(0.7, 0.2) == pytest.approx(0.5)
    assert circular_delta(0.3, 0.1) == pytest.approx(0.2)


def test_only_oklch_and_hsv_have_circular_hue():
    assert has_circular_hue('oklch')
    assert has_circular_hue('hsv')
    for space in ('linear_rgb', 'oklab', 'yiq', 'alpha_only'):
        assert not has_circular_hue(space)


def test_distance_ignores_alpha():
    a = np.array([0.2, 0.3, 0.4, 0.0])
    b = np.array([0.2, 0.3, 0.4, 1.0])
    assert distance_sq(a, b, 'linear_rgb') == 0.0


def test_distance_wraps_hue_channel_only_for_hue_spaces():
    a = np.array([0.99, 0.5, 0.5, 1.0])
    b = np.array([0.01, 0.5, 0.5, 1.0])
    assert distance_sq(a, b, 'hsv') == pytest.approx(0.0004)
    assert distance_sq(a, b, 'oklab') == pytest.approx(0.98 ** 2)


@pytest.mark.parametrize('space', ['oklch', 'hsv', 'oklab', 'linear_rgb', 'yiq'])
def test_encode_decode_round_trip(space):
    features = encode_features(COLORS, space)
    assert features.shape == COLORS.shape
    assert np.all((features >= 0.0) & (features <= 1.0))
    np.testing.assert_allclose(decode_features(features, space), COLORS, atol=1e-3)


def test_single_triple_keeps_its_shape():
    feature = encode_features((0.2, 0.4, 0.6), 'oklab')
    assert feature.shape == (3,)
    assert decode_features(feature, 'oklab').shape == (3,)


def test_hue_channel_is_angle_in_turns():
    # Pure green sits a third of the way around the HSV wheel
    green = encode_features((0.0, 1.0, 0.0), 'hsv')
    np.testing.assert_allclose(green, [1.0 / 3.0, 1.0, 1.0], atol=1e-9)


def test_alpha_only_keeps_luminance():
    white = encode_features((1.0, 1.0, 1.0), 'alpha_only')
    np.testing.assert_allclose(white, [1.0, 0.0, 0.0], atol=1e-9)
    np.testing.assert_allclose(decode_features([0.5, 0.0, 0.0], 'alpha_only'), [0.5, 0.5, 0.5])


def test_non_finite_input_is_sanitized():
    features = encode_features(np.array([[np.nan, 0.5, np.inf]]), 'oklab')
    assert np.all(np.isfinite(features))
    rgb = decode_features(np.array([[np.nan, 0.5, 0.5]]), 'yiq')
    assert np.all(np.isfinite(rgb))


def test_unknown_space_raises():
    with pytest.raises(ValueError):
        encode_features((0.1, 0.2, 0.3), 'cmyk')


def test_channel_encoders():
    assert encode_signed(-0.5, 0.5) == pytest.approx(0.0)
    assert encode_signed(0.0, 0.5) == pytest.approx(0.5)
    assert encode_signed(2.0, 0.5) == pytest.approx(1.0)
    assert encode_pos(0.2, 0.4) == pytest.approx(0.5)
    assert wrap01(-0.25) == pytest.approx(0.75)
    assert wrap01(1.0) == 0.0


def test_circular_mean_straddles_zero():
    acc = ClusterAccumulator()
    acc.accumulate([0.95, 0.4, 0.6, 1.0], 'hsv')
    acc.accumulate([0.05, 0.6, 0.8, 0.5], 'hsv')
    mean = acc.mean('hsv')

    assert abs(circular_delta(mean[0], 0.0)) < 1e-9
    np.testing.assert_allclose(mean[1:], [0.5, 0.7, 0.75])


def test_linear_mean_and_empty_accumulator():
    acc = ClusterAccumulator()
    assert list(acc.mean('oklab')) == [0.0, 0.0, 0.0, 1.0]

    acc.accumulate([0.95, 0.4, 0.6, 1.0], 'oklab')
    acc.accumulate([0.05, 0.6, 0.8, 0.5], 'oklab')
    np.testing.assert_allclose(acc.mean('oklab'), [0.5, 0.5, 0.7, 0.75])


def test_accumulate_clusters_matches_streaming(random_pixels):
    labels = np.arange(len(random_pixels)) % 3
    batched = accumulate_clusters(random_pixels, labels, 4, 'oklch')

    for c in range(3):
        acc = ClusterAccumulator()
        for sample in random_pixels[labels == c]:
            acc.accumulate(sample, 'oklch')
        assert batched[c].count == acc.count
        np.testing.assert_allclose(batched[c].mean('oklch'), acc.mean('oklch'), atol=1e-9)

    assert batched[3].count == 0


def test_dedup_keeps_first_of_near_duplicates():
    centroids = np.array([
        [0.2, 0.2, 0.2, 1.0],
        [0.2, 0.2, 0.20001, 0.0],
        [0.8, 0.2, 0.2, 1.0],
    ])
    unique = dedup_centroids(centroids, 'linear_rgb')
    np.testing.assert_array_equal(unique, centroids[[0, 2]])

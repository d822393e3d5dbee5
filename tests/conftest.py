"""Shared fixtures for the clustering tests."""

import numpy as np
import pytest

from quantize import encode_pixels


GROUP_COLORS = [
    (0.9, 0.1, 0.1),
    (0.1, 0.8, 0.2),
    (0.2, 0.2, 0.9),
]

BLOB_CENTERS = [
    (0.2, 0.2, 0.2),
    (0.8, 0.2, 0.2),
    (0.2, 0.8, 0.2),
    (0.2, 0.2, 0.8),
    (0.8, 0.8, 0.2),
    (0.5, 0.5, 0.8),
]


def make_groups(colors, per_group: int, color_space: str = 'linear_rgb') -> np.ndarray:
    """Feature vectors for `per_group` identical pixels of each color."""
    rgba = np.array([[*rgb, 1.0] for rgb in colors for _ in range(per_group)])
    return encode_pixels(rgba, color_space)


@pytest.fixture
def three_groups() -> np.ndarray:
    """300 samples: three well-separated colors, 100 identical pixels each."""
    return make_groups(GROUP_COLORS, 100)


@pytest.fixture
def noisy_blobs() -> np.ndarray:
    """600 linear-RGB samples in six jittered blobs."""
    rng = np.random.default_rng(7)
    centers = np.array(BLOB_CENTERS)
    rgb = np.repeat(centers, 100, axis=0) + rng.normal(0.0, 0.02, size=(600, 3))
    rgba = np.column_stack([np.clip(rgb, 0.0, 1.0), np.ones(600)])
    return encode_pixels(rgba, 'linear_rgb')


@pytest.fixture
def random_pixels() -> np.ndarray:
    """400 uniformly random RGBA pixels with varying alpha."""
    rng = np.random.default_rng(1234)
    return rng.uniform(0.0, 1.0, size=(400, 4))

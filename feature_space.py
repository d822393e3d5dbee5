#!/usr/bin/env python3
"""
Feature space for palette clustering.

Encodes sRGB colors into bounded [0, 1] feature channels for a chosen color
space, measures distance between feature vectors (wrapping the hue channel
where the space has one), and accumulates per-cluster means.

A feature vector is (c0, c1, c2, alpha). Alpha is carried through means but
never contributes to distance.
"""

import math
from dataclasses import dataclass, field

import numpy as np


# =============================================================================
# Constants
# =============================================================================

COLOR_SPACES = ('linear_rgb', 'oklab', 'oklch', 'hsv', 'yiq', 'alpha_only')
CIRCULAR_HUE_SPACES = frozenset({'oklch', 'hsv'})

OKLAB_AB_MAX = 0.5
OKLCH_CHROMA_MAX = 0.4
YIQ_I_MAX = 0.5957
YIQ_Q_MAX = 0.5226

DEDUP_EPSILON = 1.0e-8
TAU = 2.0 * math.pi

# Rec.709 luminance weights on linear RGB
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722])

YIQ_FROM_RGB = np.array([
    [0.299, 0.587, 0.114],
    [0.595716, -0.274453, -0.321263],
    [0.211456, -0.522591, 0.311135],
])
RGB_FROM_YIQ = np.linalg.inv(YIQ_FROM_RGB)


def check_color_space(color_space: str) -> str:
    """Validate a color space name."""
    if color_space not in COLOR_SPACES:
        raise ValueError(f"Unknown color space: {color_space}")
    return color_space


def has_circular_hue(color_space: str) -> bool:
    """True when channel 0 of the space is a hue angle in turns."""
    return color_space in CIRCULAR_HUE_SPACES


# =============================================================================
# Channel Encoding
# =============================================================================

def clamp01(values):
    return np.clip(values, 0.0, 1.0)


def sanitize01(values) -> np.ndarray:
    """Replace NaN/inf with 0 and clamp to [0, 1]."""
    values = np.asarray(values, dtype=np.float64)
    return np.clip(np.where(np.isfinite(values), values, 0.0), 0.0, 1.0)


def wrap01(values):
    """Wrap values into [0, 1)."""
    wrapped = np.mod(values, 1.0)
    return np.where(wrapped >= 1.0, 0.0, wrapped)


def encode_signed(value, max_abs: float):
    if max_abs <= 0.0:
        return np.full_like(np.asarray(value, dtype=np.float64), 0.5)
    return clamp01((np.asarray(value) / max_abs + 1.0) * 0.5)


def decode_signed(channel, max_abs: float):
    if max_abs <= 0.0:
        return np.zeros_like(np.asarray(channel, dtype=np.float64))
    return (clamp01(channel) * 2.0 - 1.0) * max_abs


def encode_pos(value, max_value: float):
    if max_value <= 0.0:
        return np.zeros_like(np.asarray(value, dtype=np.float64))
    return clamp01(np.asarray(value) / max_value)


def decode_pos(channel, max_value: float):
    if max_value <= 0.0:
        return np.zeros_like(np.asarray(channel, dtype=np.float64))
    return clamp01(channel) * max_value


# =============================================================================
# Color Conversion
# =============================================================================

def srgb_to_linear(rgb: np.ndarray) -> np.ndarray:
    """Convert gamma-encoded sRGB (0-1) to linear RGB."""
    mask = rgb > 0.04045
    return np.where(mask, ((rgb + 0.055) / 1.055) ** 2.4, rgb / 12.92)


def linear_to_srgb(lin: np.ndarray) -> np.ndarray:
    """Convert linear RGB to gamma-encoded sRGB (0-1)."""
    mask = lin > 0.0031308
    return np.where(mask, 1.055 * np.power(np.clip(lin, 0, None), 1/2.4) - 0.055, 12.92 * lin)


def linear_to_oklab(lin: np.ndarray) -> np.ndarray:
    """Convert linear RGB rows to OKLab rows [L, a, b]."""
    r, g, b = lin[:, 0], lin[:, 1], lin[:, 2]

    l = 0.4122214708 * r + 0.5363325363 * g + 0.0514459929 * b
    m = 0.2119034982 * r + 0.6806995451 * g + 0.1073969566 * b
    s = 0.0883024619 * r + 0.2817188376 * g + 0.6299787005 * b

    l_, m_, s_ = np.cbrt(l), np.cbrt(m), np.cbrt(s)

    L = 0.2104542553 * l_ + 0.7936177850 * m_ - 0.0040720468 * s_
    a = 1.9779984951 * l_ - 2.4285922050 * m_ + 0.4505937099 * s_
    b_val = 0.0259040371 * l_ + 0.7827717662 * m_ - 0.8086757660 * s_

    return np.column_stack([L, a, b_val])


def oklab_to_linear(lab: np.ndarray) -> np.ndarray:
    """Convert OKLab rows [L, a, b] to linear RGB rows."""
    L, a, b = lab[:, 0], lab[:, 1], lab[:, 2]

    l_ = L + 0.3963377774 * a + 0.2158037573 * b
    m_ = L - 0.1055613458 * a - 0.0638541728 * b
    s_ = L - 0.0894841775 * a - 1.2914855480 * b

    l, m, s = l_ ** 3, m_ ** 3, s_ ** 3

    r = 4.0767416621 * l - 3.3077115913 * m + 0.2309699292 * s
    g = -1.2684380046 * l + 2.6097574011 * m - 0.3413193965 * s
    b_out = -0.0041960863 * l - 0.7034186147 * m + 1.7076147010 * s

    return np.column_stack([r, g, b_out])


def srgb_to_hsv(rgb: np.ndarray) -> np.ndarray:
    """Convert sRGB rows to HSV rows with hue in turns [0, 1)."""
    r, g, b = rgb[:, 0], rgb[:, 1], rgb[:, 2]
    v = rgb.max(axis=1)
    chroma = v - rgb.min(axis=1)
    safe_chroma = np.where(chroma > 0, chroma, 1.0)

    hue = np.where(
        v == r,
        np.mod((g - b) / safe_chroma, 6.0),
        np.where(v == g, (b - r) / safe_chroma + 2.0, (r - g) / safe_chroma + 4.0),
    )
    hue = np.where(chroma > 0, wrap01(hue / 6.0), 0.0)
    saturation = np.where(v > 0, chroma / np.where(v > 0, v, 1.0), 0.0)

    return np.column_stack([hue, saturation, v])


def hsv_to_srgb(hsv: np.ndarray) -> np.ndarray:
    """Convert HSV rows (hue in turns) to sRGB rows."""
    h, s, v = wrap01(hsv[:, 0]) * 6.0, hsv[:, 1], hsv[:, 2]
    sector = np.floor(h)
    f = h - sector
    sector = sector.astype(np.int64) % 6

    p = v * (1.0 - s)
    q = v * (1.0 - s * f)
    t = v * (1.0 - s * (1.0 - f))

    conditions = [sector == i for i in range(6)]
    r = np.select(conditions, [v, q, p, p, t, v])
    g = np.select(conditions, [t, v, v, q, p, p])
    b = np.select(conditions, [p, p, t, v, v, q])

    return np.column_stack([r, g, b])


# =============================================================================
# Feature Codec
# =============================================================================

def encode_features(rgb, color_space: str) -> np.ndarray:
    """
    Encode sRGB colors (0-1) into [0, 1] feature channels.

    Args:
        rgb: Array of shape (n, 3) or a single (3,) triple
        color_space: One of COLOR_SPACES

    Returns:
        Array of the same shape holding (c0, c1, c2) per color.
    """
    check_color_space(color_space)
    rgb = np.asarray(rgb, dtype=np.float64)
    single = rgb.ndim == 1
    srgb = sanitize01(rgb.reshape(-1, 3))
    lin = srgb_to_linear(srgb)

    if color_space == 'linear_rgb':
        features = clamp01(lin)
    elif color_space == 'oklab':
        lab = linear_to_oklab(lin)
        features = np.column_stack([
            encode_signed(lab[:, 1], OKLAB_AB_MAX),
            encode_signed(lab[:, 2], OKLAB_AB_MAX),
            clamp01(lab[:, 0]),
        ])
    elif color_space == 'oklch':
        lab = linear_to_oklab(lin)
        chroma = np.hypot(lab[:, 1], lab[:, 2])
        hue = wrap01(np.arctan2(lab[:, 2], lab[:, 1]) / TAU)
        features = np.column_stack([
            hue,
            encode_pos(chroma, OKLCH_CHROMA_MAX),
            clamp01(lab[:, 0]),
        ])
    elif color_space == 'hsv':
        hsv = srgb_to_hsv(srgb)
        features = np.column_stack([wrap01(hsv[:, 0]), clamp01(hsv[:, 1]), clamp01(hsv[:, 2])])
    elif color_space == 'yiq':
        yiq = srgb @ YIQ_FROM_RGB.T
        features = np.column_stack([
            encode_signed(yiq[:, 1], YIQ_I_MAX),
            encode_signed(yiq[:, 2], YIQ_Q_MAX),
            clamp01(yiq[:, 0]),
        ])
    else:  # alpha_only
        luma = clamp01(lin @ LUMA_WEIGHTS)
        features = np.column_stack([luma, np.zeros_like(luma), np.zeros_like(luma)])

    return features[0] if single else features


def decode_features(features, color_space: str) -> np.ndarray:
    """Decode feature channels back to sRGB (0-1). Inverse of encode_features."""
    check_color_space(color_space)
    features = np.asarray(features, dtype=np.float64)
    single = features.ndim == 1
    features = features.reshape(-1, features.shape[-1])[:, :3]

    if color_space == 'linear_rgb':
        srgb = linear_to_srgb(clamp01(features))
    elif color_space == 'oklab':
        lab = np.column_stack([
            clamp01(features[:, 2]),
            decode_signed(features[:, 0], OKLAB_AB_MAX),
            decode_signed(features[:, 1], OKLAB_AB_MAX),
        ])
        srgb = linear_to_srgb(oklab_to_linear(lab))
    elif color_space == 'oklch':
        chroma = decode_pos(features[:, 1], OKLCH_CHROMA_MAX)
        theta = wrap01(features[:, 0]) * TAU
        lab = np.column_stack([
            clamp01(features[:, 2]),
            chroma * np.cos(theta),
            chroma * np.sin(theta),
        ])
        srgb = linear_to_srgb(oklab_to_linear(lab))
    elif color_space == 'hsv':
        srgb = hsv_to_srgb(np.column_stack([
            wrap01(features[:, 0]), clamp01(features[:, 1]), clamp01(features[:, 2])
        ]))
    elif color_space == 'yiq':
        yiq = np.column_stack([
            clamp01(features[:, 2]),
            decode_signed(features[:, 0], YIQ_I_MAX),
            decode_signed(features[:, 1], YIQ_Q_MAX),
        ])
        srgb = yiq @ RGB_FROM_YIQ.T
    else:  # alpha_only
        v = clamp01(features[:, 0])
        srgb = np.column_stack([v, v, v])

    srgb = sanitize01(srgb)
    return srgb[0] if single else srgb


# =============================================================================
# Distance
# =============================================================================

def circular_delta(a, b):
    """Signed difference a - b on the unit circle, magnitude <= 0.5."""
    d = np.subtract(a, b, dtype=np.float64)
    d = np.where(d > 0.5, d - 1.0, d)
    d = np.where(d < -0.5, d + 1.0, d)
    if d.ndim == 0:
        return float(d)
    return d


def feature_delta(a, b, color_space: str):
    """Channel-0 difference, wrap-corrected for hue spaces."""
    if has_circular_hue(color_space):
        return circular_delta(a, b)
    return np.subtract(a, b, dtype=np.float64)


def distance_sq(a, b, color_space: str):
    """Squared distance over channels 0-2. Broadcasts over leading axes."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    d0 = feature_delta(a[..., 0], b[..., 0], color_space)
    d1 = a[..., 1] - b[..., 1]
    d2 = a[..., 2] - b[..., 2]
    return d0 * d0 + d1 * d1 + d2 * d2


def pairwise_distance_sq(samples: np.ndarray, centroids: np.ndarray, color_space: str) -> np.ndarray:
    """Squared distances of shape (n_samples, n_centroids)."""
    return distance_sq(samples[:, None, :], centroids[None, :, :], color_space)


def dedup_centroids(centroids, color_space: str) -> np.ndarray:
    """Drop centroids within sqrt(1e-8) of an earlier one, keeping order."""
    centroids = np.asarray(centroids, dtype=np.float64).reshape(-1, 4)
    unique = []
    for centroid in centroids:
        if unique and np.any(distance_sq(np.array(unique), centroid, color_space) < DEDUP_EPSILON):
            continue
        unique.append(centroid)
    return np.array(unique, dtype=np.float64).reshape(-1, 4)


# =============================================================================
# Cluster Accumulation
# =============================================================================

@dataclass
class ClusterAccumulator:
    """Running sums for one cluster, including the circular hue mean."""
    sums: np.ndarray = field(default_factory=lambda: np.zeros(4))  # c0, c1, c2, alpha
    hue_cos: float = 0.0
    hue_sin: float = 0.0
    count: int = 0

    def accumulate(self, sample, color_space: str) -> None:
        sample = np.asarray(sample, dtype=np.float64)
        self.sums = self.sums + sample[:4]
        if has_circular_hue(color_space):
            theta = float(wrap01(sample[0])) * TAU
            self.hue_cos += math.cos(theta)
            self.hue_sin += math.sin(theta)
        self.count += 1

    def mean(self, color_space: str) -> np.ndarray:
        if self.count == 0:
            return np.array([0.0, 0.0, 0.0, 1.0])

        means = self.sums / self.count
        if has_circular_hue(color_space):
            if abs(self.hue_cos) < 1.0e-8 and abs(self.hue_sin) < 1.0e-8:
                c0 = wrap01(means[0])
            else:
                c0 = wrap01(math.atan2(self.hue_sin, self.hue_cos) / TAU)
        else:
            c0 = means[0]

        return sanitize01([c0, means[1], means[2], means[3]])


def accumulate_clusters(samples: np.ndarray, labels: np.ndarray, k: int,
                        color_space: str) -> list[ClusterAccumulator]:
    """Build one accumulator per cluster in a single reduction over samples."""
    counts = np.bincount(labels, minlength=k)
    sums = np.column_stack([
        np.bincount(labels, weights=samples[:, ch], minlength=k) for ch in range(4)
    ])

    if has_circular_hue(color_space):
        theta = wrap01(samples[:, 0]) * TAU
        hue_cos = np.bincount(labels, weights=np.cos(theta), minlength=k)
        hue_sin = np.bincount(labels, weights=np.sin(theta), minlength=k)
    else:
        hue_cos = np.zeros(k)
        hue_sin = np.zeros(k)

    return [
        ClusterAccumulator(
            sums=sums[c],
            hue_cos=float(hue_cos[c]),
            hue_sin=float(hue_sin[c]),
            count=int(counts[c]),
        )
        for c in range(k)
    ]

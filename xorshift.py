"""
Deterministic xorshift64 generator used by every randomized step of the
clustering engine.

Each sub-computation (initialization, split trials, empty-cluster reseeds)
builds its own generator from the caller seed XOR a fixed constant, so the
same seed always reproduces the same palette.
"""

import numpy as np


MASK_64 = 0xFFFF_FFFF_FFFF_FFFF
MASK_32 = 0xFFFF_FFFF

ZERO_SEED_STATE = 0x9E37_79B9_7F4A_7C15
F64_SCALE = float(1 << 53)


def wrap_u32(value: int) -> int:
    """Wrap an integer into the unsigned 32-bit range."""
    return value & MASK_32


class XorShift64:
    """xorshift64 (13, 7, 17) generator."""

    def __init__(self, seed: int):
        seed &= MASK_64
        self.state = seed if seed != 0 else ZERO_SEED_STATE

    def next_u64(self) -> int:
        x = self.state
        x ^= (x << 13) & MASK_64
        x ^= x >> 7
        x ^= (x << 17) & MASK_64
        self.state = x
        return x

    def next_f64(self) -> float:
        """Uniform float in [0, 1) built from the top 53 bits."""
        return (self.next_u64() >> 11) / F64_SCALE

    def gen_index(self, upper: int) -> int:
        """Index in [0, upper); always 0 when upper <= 1."""
        if upper <= 1:
            return 0
        return self.next_u64() % upper

    def next_u64_array(self, count: int) -> np.ndarray:
        """The next `count` outputs of next_u64, as a uint64 array."""
        x = self.state
        out = []
        append = out.append
        for _ in range(count):
            x ^= (x << 13) & MASK_64
            x ^= x >> 7
            x ^= (x << 17) & MASK_64
            append(x)
        self.state = x
        return np.array(out, dtype=np.uint64)

    def next_f64_array(self, count: int) -> np.ndarray:
        """The next `count` outputs of next_f64, as a float64 array."""
        bits = self.next_u64_array(count) >> np.uint64(11)
        return bits.astype(np.float64) / F64_SCALE

"""Deterministic RNG with sub-seeding for reproducible, independent draws.

mulberry32 is reproduced bit for bit (32-bit unsigned arithmetic), so the same
seed yields the same respondent assignment on every platform.
"""
import math
from collections.abc import Callable, MutableSequence, Sequence
from typing import TypeVar

T = TypeVar("T")

MASK32 = 0xFFFFFFFF
DEFAULT_SEED = "seed"


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


def hash_string_to_int(text: str) -> int:
    """32-bit FNV-1a over UTF-16 code units."""
    h = 2166136261
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = _imul(h, 16777619)
    return h


def mulberry32(seed: int) -> Callable[[], float]:
    """Return a generator of floats in [0, 1) seeded with a 32-bit integer."""
    state = int(seed) & MASK32

    def rand() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & MASK32
        t = state
        r = _imul(t ^ (t >> 15), 1 | t)
        r ^= (r + _imul(r ^ (r >> 7), 61 | r)) & MASK32
        return ((r ^ (r >> 14)) & MASK32) / 4294967296

    return rand


def coerce_seed(seed) -> int:
    """Numbers truncate to uint32 (non-finite -> 0); anything else is hashed as text."""
    if isinstance(seed, bool):
        seed = int(seed)
    if isinstance(seed, (int, float)):
        if isinstance(seed, float) and not math.isfinite(seed):
            return 0
        return int(seed) & MASK32
    return hash_string_to_int(DEFAULT_SEED if seed is None else str(seed))


def shuffle_in_place(items: MutableSequence[T], rand: Callable[[], float]) -> MutableSequence[T]:
    for i in range(len(items) - 1, 0, -1):
        j = math.floor(rand() * (i + 1))
        items[i], items[j] = items[j], items[i]
    return items


class Rng:
    """Seeded stream with pick/shuffle helpers and labelled sub-streams."""

    def __init__(self, seed=None):
        self.base = coerce_seed(seed)
        self.rand = mulberry32(self.base)

    def __call__(self) -> float:
        return self.rand()

    def pick_one(self, items: Sequence[T]) -> T:
        return items[math.floor(self.rand() * len(items))]

    def shuffle(self, items: Sequence[T]) -> list[T]:
        """Fisher-Yates on a copy."""
        return shuffle_in_place(list(items), self.rand)

    def derive(self, label: str) -> "Rng":
        """Independent stream keyed by this stream's seed and a label."""
        return Rng(f"{self.base}:{label}")

"""Chord rasterization and the per-run chord pixel cache.

A chord's footprint is the integer midpoint line between its two rounded
peg positions: one pixel per step along the major axis, 8-connected, both
endpoints included. Footprints are flat indices (y * S + x) into the
working image so the sequencer can gather/scatter with plain numpy
indexing.

ChordCache keys footprints by the unordered peg pair, so (a, b) and (b, a)
are rasterized once and share one read-only array.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple, Union

import numpy as np

from .pegs import Peg

ChordKey = Tuple[int, int]
PointLike = Union[Peg, Tuple[float, float]]


def chord_key(a: int, b: int) -> ChordKey:
    """Canonical unordered key (min, max)."""
    return (a, b) if a <= b else (b, a)


def _to_pixel(p: PointLike) -> Tuple[int, int]:
    if isinstance(p, Peg):
        return p.pixel
    x, y = p
    return int(np.floor(x + 0.5)), int(np.floor(y + 0.5))


def rasterize_line(p0: PointLike, p1: PointLike, size: int) -> np.ndarray:
    """Pixels of the segment p0 → p1 as flat indices into an (size, size) grid.

    Integer midpoint stepping (Bresenham-equivalent): for step t along the
    major axis, the minor coordinate is round-half-up(t * d_minor / steps).
    Pixels outside the grid are dropped; order runs from p0 to p1.

    Returns
    -------
    np.ndarray
        Read-only int64 array of flat indices (single pixel if p0 == p1)
    """
    x0, y0 = _to_pixel(p0)
    x1, y1 = _to_pixel(p1)
    dx = x1 - x0
    dy = y1 - y0
    steps = max(abs(dx), abs(dy))

    if steps == 0:
        xs = np.array([x0], dtype=np.int64)
        ys = np.array([y0], dtype=np.int64)
    else:
        t = np.arange(steps + 1, dtype=np.int64)
        xs = x0 + np.floor_divide(2 * t * dx + steps, 2 * steps)
        ys = y0 + np.floor_divide(2 * t * dy + steps, 2 * steps)

    inside = (xs >= 0) & (xs < size) & (ys >= 0) & (ys < size)
    flat = (ys[inside] * size + xs[inside]).astype(np.int64)
    flat.setflags(write=False)
    return flat


class ChordCache:
    """Memoized chord footprints for one synthesis run.

    Each unordered peg pair is rasterized at most once; the footprint is
    ordered from the lower to the higher peg index.

    Attributes
    ----------
    rasterizations : int
        Number of footprints actually computed
    hits : int
        Number of lookups served from the cache
    """

    def __init__(self, pegs: Sequence[Peg], working_size: int):
        self._pegs = tuple(pegs)
        self._size = int(working_size)
        self._entries: Dict[ChordKey, np.ndarray] = {}
        self.rasterizations = 0
        self.hits = 0

    @property
    def peg_count(self) -> int:
        return len(self._pegs)

    @property
    def working_size(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        """Upper bound on entries: N * (N - 1) / 2."""
        n = len(self._pegs)
        return n * (n - 1) // 2

    def get(self, a: int, b: int) -> np.ndarray:
        """Footprint of the chord between pegs a and b.

        Raises
        ------
        IndexError
            Peg index out of range
        ValueError
            a == b (a chord needs two distinct pegs)
        """
        n = len(self._pegs)
        if not (0 <= a < n and 0 <= b < n):
            raise IndexError(f"Peg index out of range: ({a}, {b}) for {n} pegs")
        if a == b:
            raise ValueError(f"Chord endpoints must differ, got ({a}, {b})")

        key = chord_key(a, b)
        pixels = self._entries.get(key)
        if pixels is None:
            lo, hi = key
            pixels = rasterize_line(self._pegs[lo], self._pegs[hi], self._size)
            self._entries[key] = pixels
            self.rasterizations += 1
        else:
            self.hits += 1
        return pixels

    def clear(self) -> None:
        """Drop every entry and reset counters."""
        self._entries.clear()
        self.rasterizations = 0
        self.hits = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, pair: object) -> bool:
        if not isinstance(pair, tuple) or len(pair) != 2:
            return False
        return chord_key(*pair) in self._entries

    def __repr__(self) -> str:
        return (f"ChordCache(entries={len(self._entries)}/{self.capacity}, "
                f"rasterizations={self.rasterizations}, hits={self.hits})")

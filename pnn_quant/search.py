"""Mapping pixels to palette entries.

Two strategies share one interface:

- :class:`NearestColorSearch` - exact minimum squared ARGB distance.
- :class:`ClosestColorSearch` - keeps the two nearest entries by Manhattan
  distance and picks between them with a weighted coin flip, which breaks
  up contouring on large flat gradients.

All per-run state (result caches, random generator) lives in a
:class:`SearchContext` so concurrent runs never share anything.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from pnn_quant.color_utils import unpack_argb

# Palettes up to this size are scanned entry by entry with early exit;
# larger ones are searched with a vectorised distance row.
SCAN_LIMIT = 256

# Below this palette size the exact search is used even without transparency.
SMALL_PALETTE = 64

RAND_MAX = 32767
NO_SECOND = 0xFFFF


@dataclass
class SearchContext:
    """Scratch state owned by a single quantization run.

    Attributes:
        rng: Random source for the closest-colour coin flip.
        closest: pixel -> (first index, second index, first dist, second dist).
        nearest: pixel -> exact nearest index.
    """

    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    closest: dict[int, tuple[int, int, int, int]] = field(default_factory=dict)
    nearest: dict[int, int] = field(default_factory=dict)

    @classmethod
    def seeded(cls, seed: int | None) -> SearchContext:
        return cls(rng=np.random.default_rng(seed))

    def clear(self) -> None:
        self.closest.clear()
        self.nearest.clear()


class PaletteSearch(Protocol):
    def index(self, pixel: int) -> int: ...

    def index_many(self, pixels: np.ndarray) -> np.ndarray: ...


def _distance_chunks(
    palette: np.ndarray, pixels: np.ndarray, metric: str, budget: int = 1 << 22,
) -> Iterator[tuple[int, int, np.ndarray]]:
    """Yield ``(start, stop, dist)`` blocks of the pixel x palette distance matrix.

    Rows per block are chosen so a block's channel differences stay within
    *budget* elements.
    """
    p = palette.astype(np.int64)
    t = unpack_argb(pixels).astype(np.int64)
    chunk_size = max(1, budget // max(1, len(p) * 4))
    for i in range(0, len(t), chunk_size):
        j = min(i + chunk_size, len(t))
        diff = t[i:j, np.newaxis, :] - p[np.newaxis, :, :]
        if metric == "sqr":
            yield i, j, np.sum(diff * diff, axis=2)
        else:
            yield i, j, np.sum(np.abs(diff), axis=2)


def _last_argmin(dist: np.ndarray) -> np.ndarray:
    """Index of the last minimum along the final axis."""
    n = dist.shape[-1]
    return n - 1 - np.argmin(dist[..., ::-1], axis=-1)


class NearestColorSearch:
    """Exact nearest palette entry by squared A, R, G, B distance.

    Equal distances resolve to the later palette entry.
    """

    def __init__(self, palette: np.ndarray, ctx: SearchContext) -> None:
        self.palette = np.asarray(palette, dtype=np.uint8)
        self.ctx = ctx
        self._entries = [tuple(int(v) for v in c) for c in self.palette]

    def index(self, pixel: int) -> int:
        pixel = int(pixel)
        k = self.ctx.nearest.get(pixel)
        if k is None:
            if len(self._entries) <= SCAN_LIMIT:
                k = self._scan(pixel)
            else:
                k = int(self._search(np.array([pixel], dtype=np.uint32))[0])
            self.ctx.nearest[pixel] = k
        return k

    def _scan(self, pixel: int) -> int:
        a = (pixel >> 24) & 0xFF
        r = (pixel >> 16) & 0xFF
        g = (pixel >> 8) & 0xFF
        b = pixel & 0xFF

        k = 0
        mindist = float("inf")
        for i, (a2, r2, g2, b2) in enumerate(self._entries):
            curdist = (a2 - a) ** 2
            if curdist > mindist:
                continue
            curdist += (r2 - r) ** 2
            if curdist > mindist:
                continue
            curdist += (g2 - g) ** 2
            if curdist > mindist:
                continue
            curdist += (b2 - b) ** 2
            if curdist > mindist:
                continue
            mindist = curdist
            k = i
        return k

    def _search(self, uniq: np.ndarray) -> np.ndarray:
        result = np.empty(len(uniq), dtype=np.int64)
        for i, j, dist in _distance_chunks(self.palette, uniq, "sqr"):
            result[i:j] = _last_argmin(dist)
        return result

    def index_many(self, pixels: np.ndarray) -> np.ndarray:
        uniq, inverse = np.unique(np.asarray(pixels, dtype=np.uint32), return_inverse=True)
        result = self._search(uniq)
        self.ctx.nearest.update(zip(uniq.tolist(), result.tolist(), strict=True))
        return result[inverse.reshape(-1)]


class ClosestColorSearch:
    """Randomised choice between the two Manhattan-nearest palette entries.

    The first entry is taken with probability about ``d2 / (d1 + d2)``;
    exact matches and single-entry palettes always return the first.
    """

    def __init__(self, palette: np.ndarray, ctx: SearchContext) -> None:
        self.palette = np.asarray(palette, dtype=np.uint8)
        self.ctx = ctx

    def _two_nearest(self, uniq: np.ndarray) -> None:
        missing = np.array(
            [p for p in uniq.tolist() if p not in self.ctx.closest], dtype=np.uint32,
        )
        if len(missing) == 0:
            return

        for start, stop, dist in _distance_chunks(self.palette, missing, "abs"):
            # Stable order keeps the earliest entry first among equal distances
            order = np.argsort(dist, axis=1, kind="stable")
            rows = np.arange(len(dist))
            first = order[:, 0]
            d1 = dist[rows, first]
            if dist.shape[1] > 1:
                second = order[:, 1]
                d2 = dist[rows, second]
            else:
                second = np.zeros_like(first)
                d2 = np.full_like(d1, NO_SECOND)

            for p, i1, i2, e1, e2 in zip(
                missing[start:stop].tolist(),
                first.tolist(), second.tolist(), d1.tolist(), d2.tolist(),
                strict=True,
            ):
                if e2 == NO_SECOND:
                    e1 = 0
                self.ctx.closest[p] = (i1, i2, e1, e2)

    def index(self, pixel: int) -> int:
        pixel = int(pixel)
        if pixel not in self.ctx.closest:
            self._two_nearest(np.array([pixel], dtype=np.uint32))
        i1, i2, d1, d2 = self.ctx.closest[pixel]
        draw = int(self.ctx.rng.integers(0, RAND_MAX))
        if d1 == 0 or draw % (d1 + d2) <= d2:
            return i1
        return i2

    def index_many(self, pixels: np.ndarray) -> np.ndarray:
        flat = np.asarray(pixels, dtype=np.uint32).reshape(-1)
        uniq, inverse = np.unique(flat, return_inverse=True)
        self._two_nearest(uniq)

        table = np.array([self.ctx.closest[p] for p in uniq.tolist()], dtype=np.int64)
        table = table.reshape(-1, 4)[inverse.reshape(-1)]
        i1, i2, d1, d2 = table[:, 0], table[:, 1], table[:, 2], table[:, 3]

        draws = self.ctx.rng.integers(0, RAND_MAX, size=len(flat))
        total = np.maximum(d1 + d2, 1)
        take_first = (d1 == 0) | (draws % total <= d2)
        return np.where(take_first, i1, i2)


def select_search(
    palette: np.ndarray,
    ctx: SearchContext,
    has_transparent_pixel: bool,
    max_colors: int,
) -> PaletteSearch:
    """Exact search for transparent images and small palettes, closest otherwise."""
    if has_transparent_pixel or max_colors < SMALL_PALETTE:
        return NearestColorSearch(palette, ctx)
    return ClosestColorSearch(palette, ctx)

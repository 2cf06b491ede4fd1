"""Pairwise-nearest-neighbour (PNN) palette construction.

Bins from the histogram are chained in key order.  Each bin caches the
cheapest bin *after* it in the chain together with the merge cost

    ||mean_i - mean_j||^2 * cnt_i * cnt_j / (cnt_i + cnt_j)

and a min-heap over those cached costs drives the merging.  Heap entries
are never updated in place: a popped entry is checked against the merge
timestamps, recomputed and pushed back down when stale, and dropped when
its bin has been merged away.
"""

from __future__ import annotations

import heapq
import logging
import time
from collections.abc import Iterator

import numpy as np

from pnn_quant.histogram import Histogram, build_histogram

logger = logging.getLogger(__name__)

NO_NEIGHBOUR_COST = 1e100

# Bin states
ALIVE = 0
TOMBSTONED = 1


class BinGraph:
    """Alive bins as a doubly linked list plus a lazily validated cost heap.

    ``fw``/``bk`` link bins in ascending key order; the end of the chain is
    marked by ``fw == 0`` since bin 0 always survives.  ``tm`` is the merge
    step at which a bin's cached neighbour was computed and ``mtm`` the step
    at which the bin itself last changed.
    """

    def __init__(self, hist: Histogram) -> None:
        n = len(hist)
        self.ac = hist.ac.astype(np.float64)
        self.rc = hist.rc.astype(np.float64)
        self.gc = hist.gc.astype(np.float64)
        self.bc = hist.bc.astype(np.float64)
        self.cnt = hist.cnt.astype(np.int64)

        self.fw = np.zeros(n, dtype=np.int64)
        self.bk = np.zeros(n, dtype=np.int64)
        if n > 1:
            self.fw[:-1] = np.arange(1, n)
            self.bk[1:] = np.arange(0, n - 1)

        self.nn = np.zeros(n, dtype=np.int64)
        self.err = np.zeros(n, dtype=np.float64)
        self.tm = np.zeros(n, dtype=np.int64)
        self.mtm = np.zeros(n, dtype=np.int64)
        self.state = np.full(n, ALIVE, dtype=np.uint8)
        self._alive: np.ndarray | None = None  # sorted alive indices, reset on merge

        for i in range(n):
            self.find_nn(i)
        self.heap: list[tuple[float, int]] = list(zip(self.err.tolist(), range(n)))
        heapq.heapify(self.heap)

    def __len__(self) -> int:
        return int(np.count_nonzero(self.state == ALIVE))

    def _successors(self, idx: int) -> slice | np.ndarray:
        """Alive bins after *idx*, as a plain slice while none are tombstoned."""
        if self._alive is None:
            self._alive = np.flatnonzero(self.state == ALIVE)
        pos = int(np.searchsorted(self._alive, idx, side="right"))
        if len(self._alive) - pos == len(self.cnt) - idx - 1:
            return slice(idx + 1, None)
        return self._alive[pos:]

    def find_nn(self, idx: int) -> None:
        """Cache the cheapest alive partner following *idx* in the chain."""
        cand = self._successors(idx)
        n2 = self.cnt[cand].astype(np.float64)
        if len(n2) == 0:
            self.err[idx] = NO_NEIGHBOUR_COST
            self.nn[idx] = 0
            return

        nerr = (
            (self.ac[cand] - self.ac[idx]) ** 2
            + (self.rc[cand] - self.rc[idx]) ** 2
            + (self.gc[cand] - self.gc[idx]) ** 2
            + (self.bc[cand] - self.bc[idx]) ** 2
        )
        n1 = float(self.cnt[idx])
        nerr *= (n1 * n2) / (n1 + n2)

        best = int(np.argmin(nerr))  # first minimum: earliest partner wins ties
        self.err[idx] = nerr[best]
        self.nn[idx] = idx + 1 + best if isinstance(cand, slice) else cand[best]

    def pop_cheapest(self, step: int) -> int:
        """Return the bin whose cached merge is cheapest and still valid."""
        while True:
            _, b1 = self.heap[0]
            if self.state[b1] == TOMBSTONED:
                heapq.heappop(self.heap)
                continue

            nn = self.nn[b1]
            if (
                self.tm[b1] >= self.mtm[b1]
                and self.state[nn] == ALIVE
                and self.mtm[nn] <= self.tm[b1]
            ):
                return int(b1)

            # Stale cost: recompute and push the root back down
            self.find_nn(b1)
            self.tm[b1] = step
            heapq.heapreplace(self.heap, (self.err[b1], b1))

    def merge(self, tb: int, nb: int, step: int) -> None:
        """Fold bin *nb* into *tb* and unlink *nb* from the chain."""
        n1 = float(self.cnt[tb])
        n2 = float(self.cnt[nb])
        d = 1.0 / (n1 + n2)
        self.ac[tb] = d * (n1 * self.ac[tb] + n2 * self.ac[nb])
        self.rc[tb] = d * (n1 * self.rc[tb] + n2 * self.rc[nb])
        self.gc[tb] = d * (n1 * self.gc[tb] + n2 * self.gc[nb])
        self.bc[tb] = d * (n1 * self.bc[tb] + n2 * self.bc[nb])
        self.cnt[tb] += self.cnt[nb]
        self.mtm[tb] = step

        prev, nxt = self.bk[nb], self.fw[nb]
        self.fw[prev] = nxt
        if nxt != 0:
            self.bk[nxt] = prev
        self.state[nb] = TOMBSTONED
        self._alive = None
        self.err[nb] = NO_NEIGHBOUR_COST

    def walk(self) -> Iterator[int]:
        """Alive bins in chain order, starting at bin 0."""
        if len(self.cnt) == 0:
            return
        i = 0
        while True:
            yield i
            i = int(self.fw[i])
            if i == 0:
                break


def iter_merges(graph: BinGraph, max_colors: int) -> Iterator[tuple[int, int]]:
    """Merge the cheapest pair until *max_colors* bins remain.

    Yields ``(survivor, removed)`` after each merge.
    """
    extbins = len(graph) - max_colors
    for i in range(extbins):
        tb = graph.pop_cheapest(i)
        nb = int(graph.nn[tb])
        graph.merge(tb, nb, i + 1)
        yield tb, nb


def merge_bins(graph: BinGraph, max_colors: int) -> int:
    """Run the merge engine to completion; returns the number of merges."""
    merges = 0
    for _ in iter_merges(graph, max_colors):
        merges += 1
    return merges


def finalize_palette(
    graph: BinGraph,
    max_colors: int,
    transparent_color: tuple[int, int, int, int] | None = None,
) -> tuple[np.ndarray, int]:
    """Turn the surviving bins into an (max_colors, 4) uint8 A, R, G, B palette.

    Channel means are clamped to [0, 255] and rounded.  When a bin lands
    exactly on *transparent_color* it is swapped into slot 0.

    Returns:
        ``(palette, produced)`` where *produced* counts the filled entries;
        any remaining entries are zero.
    """
    palette = np.zeros((max_colors, 4), dtype=np.uint8)
    k = 0
    for i in graph.walk():
        if k >= max_colors:
            break
        color = [
            int(min(max(v, 0.0), 255.0) + 0.5)
            for v in (graph.ac[i], graph.rc[i], graph.gc[i], graph.bc[i])
        ]
        palette[k] = color
        if transparent_color is not None and tuple(color) == tuple(transparent_color):
            palette[[0, k]] = palette[[k, 0]]
        k += 1
    return palette, k


def pnn_quantize(
    pixels: np.ndarray,
    max_colors: int,
    has_semi_transparency: bool = False,
    transparent_color: tuple[int, int, int, int] | None = None,
    quan_sqrt: bool = True,
) -> tuple[np.ndarray, int]:
    """Build a palette of at most *max_colors* entries for *pixels*.

    Args:
        pixels: Flat uint32 ARGB buffer.
        max_colors: Palette length.
        has_semi_transparency: Key bins on alpha as well.
        transparent_color: Recorded transparent colour (A, R, G, B), if any.
        quan_sqrt: Square-root-compress bin populations before merging.

    Returns:
        ``(palette, produced)`` as returned by :func:`finalize_palette`.
    """
    t0 = time.perf_counter()
    hist = build_histogram(pixels, has_semi_transparency, quan_sqrt)
    graph = BinGraph(hist)
    logger.info(
        "Histogram ready: %d bins  (%.2f s)", len(hist), time.perf_counter() - t0,
    )

    t0 = time.perf_counter()
    merges = merge_bins(graph, max_colors)
    logger.info(
        "Merged %d bins down to %d  (%.2f s)",
        merges, len(graph), time.perf_counter() - t0,
    )
    return finalize_palette(graph, max_colors, transparent_color)

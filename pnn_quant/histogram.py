"""Histogram of pixels over the reduced colour space."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from pnn_quant.color_utils import argb_index, unpack_argb

logger = logging.getLogger(__name__)

NUM_KEYS = 65536


@dataclass
class Histogram:
    """Populated bins in ascending key order.

    Attributes:
        keys: (M,) bin keys.
        ac, rc, gc, bc: (M,) float64 per-channel means.
        cnt: (M,) int64 populations (square-rooted when built with quan_sqrt).
    """

    keys: np.ndarray
    ac: np.ndarray
    rc: np.ndarray
    gc: np.ndarray
    bc: np.ndarray
    cnt: np.ndarray

    def __len__(self) -> int:
        return len(self.keys)


def build_histogram(
    pixels: np.ndarray,
    has_semi_transparency: bool,
    quan_sqrt: bool = True,
) -> Histogram:
    """Accumulate channel sums per bin key and normalise them to means.

    Args:
        pixels: Flat uint32 ARGB buffer.
        has_semi_transparency: Selects the A4R4G4B4 keying instead of R5G6B5.
        quan_sqrt: Replace each count by ``floor(sqrt(count))`` so large flat
            regions do not dominate the merge costs.

    Returns:
        :class:`Histogram` with only the non-empty bins.
    """
    keys = argb_index(pixels, has_semi_transparency)
    channels = unpack_argb(pixels).astype(np.float64)

    counts = np.bincount(keys, minlength=NUM_KEYS)
    populated = np.flatnonzero(counts)
    cnt = counts[populated]

    means = [
        np.bincount(keys, weights=channels[:, ch], minlength=NUM_KEYS)[populated] / cnt
        for ch in range(4)
    ]
    if quan_sqrt:
        cnt = np.floor(np.sqrt(cnt)).astype(np.int64)

    logger.debug("Histogram: %d pixels in %d bins", len(keys), len(populated))
    return Histogram(
        keys=populated,
        ac=means[0],
        rc=means[1],
        gc=means[2],
        bc=means[3],
        cnt=cnt.astype(np.int64),
    )

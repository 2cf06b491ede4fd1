"""Serpentine error-diffusion dithering.

Rows are scanned alternately left-to-right and right-to-left.  Two row
buffers hold the accumulated error for the current and the next row, four
ints (R, G, B, A) per cell with one padding cell on either side.  The
residual ``e`` of each pixel, clamped to +-20, is spread as

    same row, next pixel:            7e
    next row, behind/below/ahead:    e, 5e, 3e

and scaled back down by 16 (semi-transparent images) or by 32/64/32 for
R/G/B on opaque images when read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

import numpy as np

from pnn_quant.search import PaletteSearch

logger = logging.getLogger(__name__)

DJ = 4
DITHER_MAX = 20


def _clamp_table() -> list[int]:
    """Lookup for ``channel + scaled error`` offset by 256, saturating to [0, 255]."""
    return [0] * 256 + list(range(256)) + [255] * 512


def _limit(v: int) -> int:
    if v < -DITHER_MAX:
        return -DITHER_MAX
    if v > DITHER_MAX:
        return DITHER_MAX
    return v


def dither_image(
    pixels: np.ndarray,
    palette: np.ndarray,
    search: PaletteSearch,
    width: int,
    height: int,
    has_semi_transparency: bool = False,
    encode: Callable[[tuple[int, int, int, int]], int] | None = None,
) -> np.ndarray:
    """Quantize *pixels* with error diffusion.

    Args:
        pixels:  Flat uint32 ARGB buffer, row-major.
        palette: (N, 4) uint8 A, R, G, B palette *search* was built for.
        search:  Strategy used to pick an entry for each adjusted pixel.
        width, height: Image dimensions.
        has_semi_transparency: Diffuse alpha too; otherwise alpha passes through.
        encode:  When given, each chosen palette colour is stored as
            ``encode((a, r, g, b))`` instead of its palette index.

    Returns:
        (width * height,) int64 palette indices or direct-colour codes.
    """
    t0 = time.perf_counter()
    src = np.asarray(pixels, dtype=np.uint32).reshape(-1).tolist()
    entries = [tuple(int(v) for v in c) for c in np.asarray(palette, dtype=np.uint8)]
    out = [0] * (width * height)

    clamp = _clamp_table()
    err_len = (width + 2) * DJ
    row0 = [0] * err_len
    row1 = [0] * err_len

    for y in range(height):
        xs = range(width) if y % 2 == 0 else range(width - 1, -1, -1)
        cursor0 = DJ
        cursor1 = width * DJ
        row1[cursor1] = row1[cursor1 + 1] = row1[cursor1 + 2] = row1[cursor1 + 3] = 0

        for x in xs:
            pixel_index = y * width + x
            p = src[pixel_index]
            a, r, g, b = (p >> 24) & 0xFF, (p >> 16) & 0xFF, (p >> 8) & 0xFF, p & 0xFF

            if has_semi_transparency:
                r_pix = clamp[((row0[cursor0] + 0x1008) >> 4) + r]
                g_pix = clamp[((row0[cursor0 + 1] + 0x1008) >> 4) + g]
                b_pix = clamp[((row0[cursor0 + 2] + 0x1008) >> 4) + b]
                a_pix = clamp[((row0[cursor0 + 3] + 0x1008) >> 4) + a]
            else:
                r_pix = clamp[((row0[cursor0] + 0x2010) >> 5) + r]
                g_pix = clamp[((row0[cursor0 + 1] + 0x4020) >> 6) + g]
                b_pix = clamp[((row0[cursor0 + 2] + 0x2010) >> 5) + b]
                a_pix = a

            k = search.index(a_pix << 24 | r_pix << 16 | g_pix << 8 | b_pix)
            c2 = entries[k]
            out[pixel_index] = encode(c2) if encode is not None else k

            residual = (
                _limit(r_pix - c2[1]),
                _limit(g_pix - c2[2]),
                _limit(b_pix - c2[3]),
                _limit(a_pix - c2[0]),
            )
            for ch, e in enumerate(residual):
                row1[cursor1 - DJ + ch] = e
                row1[cursor1 + DJ + ch] += 3 * e
                row1[cursor1 + ch] += 5 * e
                row0[cursor0 + DJ + ch] += 7 * e

            cursor0 += DJ
            cursor1 -= DJ

        row0, row1 = row1, row0

    logger.info(
        "Dithered %dx%d against %d colours  (%.2f s)",
        width, height, len(entries), time.perf_counter() - t0,
    )
    return np.array(out, dtype=np.int64)

"""Quantization run: palette construction, pixel mapping, transparency fix-up."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import numpy as np

from pnn_quant.color_utils import BLACK, CODE_FORMATS, TRANSPARENT, WHITE, direct_code_format
from pnn_quant.dithering import dither_image
from pnn_quant.pnn import pnn_quantize
from pnn_quant.search import NearestColorSearch, SearchContext, select_search

logger = logging.getLogger(__name__)

MAX_INDEXED_COLORS = 256
MAX_COLORS = 65536


@dataclass
class QuantizeResult:
    """Output of one quantization run.

    Attributes:
        palette:      (max_colors, 4) uint8 A, R, G, B.
        indices:      (width * height,) int64 palette indices, or packed
                      direct-colour codes when *code_format* is set.
        palette_size: Number of leading palette entries actually produced.
        code_format:  ``None`` for indices, else one of
                      ``"argb8888"``, ``"argb1555"``, ``"rgb565"``.
        dithered:     Whether error diffusion was applied.
    """

    palette: np.ndarray
    indices: np.ndarray
    palette_size: int
    code_format: str | None = None
    dithered: bool = False


def quantize_pixels(
    pixels: np.ndarray,
    width: int,
    height: int,
    max_colors: int = 256,
    dither: bool = True,
    has_semi_transparency: bool = False,
    transparent_index: int = -1,
    transparent_color: tuple[int, int, int, int] | None = None,
    quan_sqrt: bool = True,
    seed: int | None = None,
    ctx: SearchContext | None = None,
) -> QuantizeResult:
    """Reduce a flat ARGB buffer to at most *max_colors* colours.

    Args:
        pixels: Flat uint32 ARGB buffer, row-major, ``width * height`` long.
        width, height: Image dimensions.
        max_colors: Palette length (2 .. 65536).  Above 256 the output holds
            direct-colour codes and dithering is always applied.
        dither: Apply serpentine error diffusion.
        has_semi_transparency: Any alpha below 255; bins are then keyed on alpha too.
        transparent_index: Position of a fully transparent pixel, or -1.
        transparent_color: Its A, R, G, B colour.
        quan_sqrt: Square-root-compress histogram populations.
        seed: Seed for the closest-colour coin flip.
        ctx: Search context to use instead of a fresh one; it is cleared
            when the run ends.

    Returns:
        :class:`QuantizeResult`.
    """
    pixels = np.asarray(pixels, dtype=np.uint32).reshape(-1)
    if len(pixels) != width * height:
        msg = f"Pixel buffer holds {len(pixels)} values, expected {width}x{height}"
        raise ValueError(msg)
    if not 2 <= max_colors <= MAX_COLORS:
        msg = f"max_colors must be within 2..{MAX_COLORS}, got {max_colors}"
        raise ValueError(msg)

    has_transparent = transparent_index >= 0
    if has_transparent and transparent_color is None:
        p = int(pixels[transparent_index])
        transparent_color = ((p >> 24) & 0xFF, (p >> 16) & 0xFF, (p >> 8) & 0xFF, p & 0xFF)
    if max_colors > MAX_INDEXED_COLORS and not dither:
        logger.debug("Forcing dithering for a %d colour palette", max_colors)
        dither = True

    t0 = time.perf_counter()
    if max_colors > 2:
        palette, produced = pnn_quantize(
            pixels, max_colors, has_semi_transparency,
            transparent_color if has_transparent else None, quan_sqrt,
        )
    else:
        palette = np.array(
            [TRANSPARENT, BLACK] if has_transparent else [BLACK, WHITE],
            dtype=np.uint8,
        )
        produced = len(palette)
    logger.info("Palette ready: %d colours  (%.2f s)", produced, time.perf_counter() - t0)

    if ctx is None:
        ctx = SearchContext.seeded(seed)
    code_format = None
    try:
        if dither:
            encode = None
            if max_colors > MAX_INDEXED_COLORS:
                code_format = direct_code_format(has_semi_transparency, has_transparent)
                encode = CODE_FORMATS[code_format]
            indices = dither_image(
                pixels, palette, NearestColorSearch(palette, ctx),
                width, height, has_semi_transparency, encode,
            )
        else:
            t0 = time.perf_counter()
            search = select_search(palette, ctx, has_transparent, max_colors)
            indices = search.index_many(pixels)
            logger.info(
                "Mapped %d pixels with %s  (%.2f s)",
                len(pixels), type(search).__name__, time.perf_counter() - t0,
            )
        logger.debug(
            "Search cache: %d nearest, %d closest entries",
            len(ctx.nearest), len(ctx.closest),
        )
    finally:
        ctx.clear()

    if has_transparent and code_format is None:
        _fix_transparent_slot(palette, indices, transparent_index, transparent_color, max_colors)

    return QuantizeResult(
        palette=palette,
        indices=np.asarray(indices, dtype=np.int64),
        palette_size=produced,
        code_format=code_format,
        dithered=dither,
    )


def _fix_transparent_slot(
    palette: np.ndarray,
    indices: np.ndarray,
    transparent_index: int,
    transparent_color: tuple[int, int, int, int],
    max_colors: int,
) -> None:
    """Make the slot the transparent pixel maps to hold the transparent colour."""
    k = int(indices[transparent_index])
    if max_colors > 2:
        palette[k] = transparent_color
    elif tuple(int(v) for v in palette[k]) != tuple(transparent_color):
        palette[[0, 1]] = palette[[1, 0]]

"""
PNN Quant
=========

Reduce a full-colour image to a fixed palette of at most N colours
(2 .. 65536) using pairwise-nearest-neighbour bin merging.
Pixels are then mapped to the palette by one of:

- **Nearest** search (exact, deterministic)
- **Closest** search (randomised between the two best entries)
- **Error diffusion** (serpentine dithering on top of nearest search)
"""

__version__ = "1.0.0"

from pnn_quant.config import QuantizeConfig
from pnn_quant.histogram import Histogram, build_histogram
from pnn_quant.image_io import (
    PackedPixelBuffer,
    PixelSource,
    grab_pixels,
    quantize_image,
    quantize_to_buffer,
    to_image,
)
from pnn_quant.pnn import BinGraph, finalize_palette, merge_bins, pnn_quantize
from pnn_quant.quantizer import QuantizeResult, quantize_pixels
from pnn_quant.search import ClosestColorSearch, NearestColorSearch, SearchContext

__all__ = [
    "BinGraph",
    "ClosestColorSearch",
    "Histogram",
    "NearestColorSearch",
    "PackedPixelBuffer",
    "PixelSource",
    "QuantizeConfig",
    "QuantizeResult",
    "SearchContext",
    "build_histogram",
    "finalize_palette",
    "grab_pixels",
    "merge_bins",
    "pnn_quantize",
    "quantize_image",
    "quantize_pixels",
    "quantize_to_buffer",
    "to_image",
]

"""Centralised configuration via a frozen dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from pnn_quant.image_io import SUPPORTED_DEPTHS, is_valid_format
from pnn_quant.quantizer import MAX_COLORS


@dataclass(frozen=True)
class QuantizeConfig:
    """All tuneable parameters for a quantization run.

    Attributes:
        max_colors:      Palette size (2 .. 65536).  Above 256 the output is
                         direct colour and dithering is always on.
        dither:          Serpentine error-diffusion dithering.
        quan_sqrt:       Square-root-compress histogram counts before merging.
        seed:            Seed for the randomised closest-colour search
                         (None = non-deterministic).
        bits_per_pixel:  Destination depth: 1, 4, 8, 16 or 32.
        output_format:   Image format for saved files.
        save_comparison: Write an Original | Quantized | Palette grid.
        input_dir:       Folder to scan for source images.
        output_dir:      Folder for results.
    """

    # Palette
    max_colors: int = 256
    quan_sqrt: bool = True

    # Pixel mapping
    dither: bool = True
    seed: int | None = None

    # Output
    bits_per_pixel: int = 8
    output_format: str = "png"
    save_comparison: bool = False

    # Paths
    input_dir: Path = field(default_factory=lambda: Path("images"))
    output_dir: Path = field(default_factory=lambda: Path("output"))

    SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
        {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp", ".gif"}
    )

    def validate(self) -> None:
        if not 2 <= self.max_colors <= MAX_COLORS:
            msg = f"max_colors must be within 2..{MAX_COLORS}, got {self.max_colors}"
            raise ValueError(msg)
        if self.bits_per_pixel not in SUPPORTED_DEPTHS:
            msg = f"Unsupported bit depth {self.bits_per_pixel}. Available: {SUPPORTED_DEPTHS}"
            raise ValueError(msg)

    @property
    def fits_destination(self) -> bool:
        return is_valid_format(self.bits_per_pixel, self.max_colors)

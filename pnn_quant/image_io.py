"""Pixel extraction, packed destination buffers and image helpers."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from pnn_quant.color_utils import CODE_FORMATS, decode_codes, direct_code_format, rgba_to_argb
from pnn_quant.quantizer import MAX_INDEXED_COLORS, QuantizeResult, quantize_pixels

logger = logging.getLogger(__name__)

SUPPORTED_DEPTHS = (1, 4, 8, 16, 32)
_INDEXED_RAWMODES = {1: "P;1", 4: "P;4", 8: "P"}


# -- Source side -------------------------------------------------------


@dataclass
class PixelSource:
    """Flat ARGB pixels plus the transparency facts the quantizer needs."""

    pixels: np.ndarray
    width: int
    height: int
    has_semi_transparency: bool = False
    transparent_index: int = -1
    transparent_color: tuple[int, int, int, int] | None = None


def grab_pixels(image: Image.Image) -> PixelSource:
    """Read any Pillow image into a uint32 ARGB buffer.

    Palette transparency is resolved by the RGBA conversion.  Any alpha
    below 255 marks the image semi-transparent, so fully transparent
    pixels are binned apart from opaque ones of the same RGB.  The first
    fully transparent pixel in row-major order is recorded.
    """
    rgba = np.asarray(image.convert("RGBA"), dtype=np.uint8)
    h, w = rgba.shape[:2]
    pixels = rgba_to_argb(rgba)

    alpha = rgba[..., 3].reshape(-1)
    has_semi = bool(np.any(alpha < 255))
    transparent = np.flatnonzero(alpha == 0)

    source = PixelSource(pixels=pixels, width=w, height=h, has_semi_transparency=has_semi)
    if len(transparent):
        idx = int(transparent[0])
        r, g, b, a = (int(v) for v in rgba.reshape(-1, 4)[idx])
        source.transparent_index = idx
        source.transparent_color = (a, r, g, b)
    return source


# -- Destination side --------------------------------------------------


class PackedPixelBuffer:
    """Row-padded pixel storage at 1, 4, 8, 16 or 32 bits per pixel.

    Rows are aligned to 4 bytes.  Sub-byte depths put the leftmost pixel in
    the most significant bits; 16- and 32-bit values are little endian.
    """

    def __init__(self, width: int, height: int, bits_per_pixel: int) -> None:
        if bits_per_pixel not in SUPPORTED_DEPTHS:
            msg = f"Unsupported bit depth {bits_per_pixel}. Available: {SUPPORTED_DEPTHS}"
            raise ValueError(msg)
        self.width = width
        self.height = height
        self.bits_per_pixel = bits_per_pixel
        self.stride = (width * bits_per_pixel + 31) // 32 * 4
        self.data = bytearray(self.stride * height)

    @property
    def max_value(self) -> int:
        return (1 << self.bits_per_pixel) - 1

    def _offset(self, x: int, y: int) -> int:
        if not (0 <= x < self.width and 0 <= y < self.height):
            msg = f"Pixel ({x}, {y}) outside {self.width}x{self.height} buffer"
            raise IndexError(msg)
        return y * self.stride

    def get_pixel(self, x: int, y: int) -> int:
        row = self._offset(x, y)
        bpp = self.bits_per_pixel
        if bpp == 1:
            return (self.data[row + x // 8] >> (7 - (x & 7))) & 1
        if bpp == 4:
            byte = self.data[row + x // 2]
            return byte & 0x0F if x & 1 else byte >> 4
        size = bpp // 8
        start = row + x * size
        return int.from_bytes(self.data[start : start + size], "little")

    def set_pixel(self, x: int, y: int, value: int) -> None:
        row = self._offset(x, y)
        if not 0 <= value <= self.max_value:
            msg = f"Value {value} does not fit in {self.bits_per_pixel} bits"
            raise ValueError(msg)
        bpp = self.bits_per_pixel
        if bpp == 1:
            mask = 0x80 >> (x & 7)
            if value:
                self.data[row + x // 8] |= mask
            else:
                self.data[row + x // 8] &= ~mask & 0xFF
        elif bpp == 4:
            pos = row + x // 2
            if x & 1:
                self.data[pos] = (self.data[pos] & 0xF0) | value
            else:
                self.data[pos] = (self.data[pos] & 0x0F) | (value << 4)
        else:
            size = bpp // 8
            start = row + x * size
            self.data[start : start + size] = value.to_bytes(size, "little")

    def rows(self) -> np.ndarray:
        """(height, stride) uint8 view of the storage."""
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.stride)

    def fill(self, values: np.ndarray) -> None:
        """Write a row-major array of ``width * height`` pixel values."""
        v = np.asarray(values, dtype=np.int64).reshape(self.height, self.width)
        if v.size and (v.min() < 0 or v.max() > self.max_value):
            msg = f"Values do not fit in {self.bits_per_pixel} bits"
            raise ValueError(msg)

        bpp = self.bits_per_pixel
        if bpp == 1:
            packed = np.packbits(v.astype(np.uint8), axis=1, bitorder="big")
        elif bpp == 4:
            nib = v.astype(np.uint8)
            if self.width % 2:
                nib = np.pad(nib, ((0, 0), (0, 1)))
            packed = (nib[:, 0::2] << 4) | nib[:, 1::2]
        else:
            packed = v.astype(f"<u{bpp // 8}").view(np.uint8).reshape(self.height, -1)

        out = np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.stride).copy()
        out[:, : packed.shape[1]] = packed
        self.data[:] = out.tobytes()

    def values(self) -> np.ndarray:
        """Row-major (width * height,) int64 pixel values."""
        raw = self.rows()
        bpp = self.bits_per_pixel
        if bpp == 1:
            v = np.unpackbits(raw, axis=1, bitorder="big")[:, : self.width]
        elif bpp == 4:
            v = np.stack([raw >> 4, raw & 0x0F], axis=2).reshape(self.height, -1)[:, : self.width]
        else:
            size = bpp // 8
            v = raw[:, : self.width * size].copy().view(f"<u{size}")
        return v.astype(np.int64).reshape(-1)


def write_indexed(buffer: PackedPixelBuffer, indices: np.ndarray) -> PackedPixelBuffer:
    buffer.fill(indices)
    return buffer


def write_direct(buffer: PackedPixelBuffer, codes: np.ndarray) -> PackedPixelBuffer:
    if buffer.bits_per_pixel < 16:
        msg = "Direct colour codes need a 16 or 32 bit buffer"
        raise ValueError(msg)
    buffer.fill(codes)
    return buffer


def to_image(
    buffer: PackedPixelBuffer,
    palette: np.ndarray | None = None,
    code_format: str | None = None,
) -> Image.Image:
    """Turn a filled buffer into a Pillow image.

    Indexed depths become ``P`` images carrying *palette* (A, R, G, B rows);
    direct-colour buffers are decoded with *code_format*.
    """
    size = (buffer.width, buffer.height)
    if buffer.bits_per_pixel in _INDEXED_RAWMODES:
        img = Image.frombytes(
            "P", size, bytes(buffer.data), "raw",
            _INDEXED_RAWMODES[buffer.bits_per_pixel], buffer.stride, 1,
        )
        if palette is not None:
            pal = np.asarray(palette, dtype=np.uint8)[:MAX_INDEXED_COLORS]
            img.putpalette(pal[:, 1:].reshape(-1).tobytes(), "RGB")
            if np.any(pal[:, 0] < 255):
                img.info["transparency"] = pal[:, 0].tobytes()
        return img

    if code_format is None:
        code_format = "argb8888" if buffer.bits_per_pixel == 32 else "rgb565"
    argb = decode_codes(buffer.values(), code_format)
    rgba = argb[:, [1, 2, 3, 0]].reshape(buffer.height, buffer.width, 4)
    if code_format == "rgb565":
        return Image.fromarray(np.ascontiguousarray(rgba[..., :3]))
    return Image.fromarray(np.ascontiguousarray(rgba))


def is_valid_format(bits_per_pixel: int, max_colors: int) -> bool:
    return 2 ** bits_per_pixel >= max_colors


def quantize_to_buffer(
    image: Image.Image,
    max_colors: int = 256,
    dither: bool = True,
    bits_per_pixel: int = 8,
    quan_sqrt: bool = True,
    seed: int | None = None,
) -> tuple[PackedPixelBuffer, QuantizeResult | None]:
    """Quantize *image* into a packed destination buffer.

    When ``2 ** bits_per_pixel < max_colors`` nothing is quantized: the blank
    buffer is returned with ``None`` in place of the result.
    """
    if not is_valid_format(bits_per_pixel, max_colors):
        logger.warning(
            "%d colours do not fit in %d bits per pixel; leaving destination blank",
            max_colors, bits_per_pixel,
        )
        return PackedPixelBuffer(image.width, image.height, bits_per_pixel), None

    src = grab_pixels(image)
    result = quantize_pixels(
        src.pixels, src.width, src.height,
        max_colors=max_colors,
        dither=dither,
        has_semi_transparency=src.has_semi_transparency,
        transparent_index=src.transparent_index,
        transparent_color=src.transparent_color,
        quan_sqrt=quan_sqrt,
        seed=seed,
    )

    if result.code_format is not None:
        depth = 32 if result.code_format == "argb8888" else 16
        return write_direct(PackedPixelBuffer(src.width, src.height, depth), result.indices), result

    if bits_per_pixel >= 16:
        # Indexed result into a direct-colour destination: store the colours
        code_format = direct_code_format(
            src.has_semi_transparency or bits_per_pixel == 32, src.transparent_index >= 0,
        )
        encode = CODE_FORMATS[code_format]
        lut = np.array([encode(tuple(int(v) for v in c)) for c in result.palette], dtype=np.int64)
        result.code_format = code_format
        depth = 32 if code_format == "argb8888" else 16
        result.indices = lut[result.indices]
        return write_direct(PackedPixelBuffer(src.width, src.height, depth), result.indices), result

    return write_indexed(
        PackedPixelBuffer(src.width, src.height, bits_per_pixel), result.indices,
    ), result


def quantize_image(
    image: Image.Image,
    max_colors: int = 256,
    dither: bool = True,
    bits_per_pixel: int = 8,
    quan_sqrt: bool = True,
    seed: int | None = None,
) -> Image.Image:
    """Quantize a Pillow image and return the encoded destination image."""
    buffer, result = quantize_to_buffer(
        image, max_colors, dither, bits_per_pixel, quan_sqrt, seed,
    )
    if result is None:
        return to_image(buffer)
    return to_image(buffer, result.palette, result.code_format)


# -- Files and previews ------------------------------------------------


def load_image(path: str | Path) -> Image.Image:
    img = Image.open(path)
    img.load()
    return img


def palette_swatch(palette: np.ndarray, produced: int, cell: int = 16) -> Image.Image:
    """Grid of palette colours, 16 per row, checkerboard behind transparency."""
    pal = np.asarray(palette, dtype=np.uint8)[: max(produced, 1)]
    cols = min(16, len(pal))
    rows = math.ceil(len(pal) / cols)
    canvas = Image.new("RGBA", (cols * cell, rows * cell), (200, 200, 200, 255))
    draw = ImageDraw.Draw(canvas)
    for i, (a, r, g, b) in enumerate(pal.tolist()):
        x, y = (i % cols) * cell, (i // cols) * cell
        draw.rectangle([x, y, x + cell // 2 - 1, y + cell // 2 - 1], fill=(120, 120, 120, 255))
        draw.rectangle(
            [x + cell // 2, y + cell // 2, x + cell - 1, y + cell - 1], fill=(120, 120, 120, 255),
        )
        tile = Image.new("RGBA", (cell, cell), (r, g, b, a))
        canvas.alpha_composite(tile, (x, y))
    return canvas


def make_comparison_grid(
    original: Image.Image,
    quantized: Image.Image,
    palette: np.ndarray,
    produced: int,
    output_path: str | Path,
) -> None:
    """Create a 3-panel comparison: Original | Quantized | Palette."""
    panel_w, panel_h = original.size
    label_height = 36

    swatch = palette_swatch(palette, produced)
    scale = min(panel_w / swatch.width, panel_h / swatch.height)
    swatch = swatch.resize(
        (max(1, int(swatch.width * scale)), max(1, int(swatch.height * scale))),
        Image.NEAREST,
    )

    panels = [original.convert("RGBA"), quantized.convert("RGBA"), swatch]
    labels = ["Original", f"Quantized ({produced} colours)", "Palette"]

    gap = 8
    total_w = len(panels) * panel_w + (len(panels) - 1) * gap
    total_h = panel_h + label_height

    canvas = Image.new("RGBA", (total_w, total_h), (30, 30, 30, 255))
    draw = ImageDraw.Draw(canvas)

    try:
        font = ImageFont.truetype(
            "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 18,
        )
    except OSError:
        font = ImageFont.load_default()

    for i, (panel, label) in enumerate(zip(panels, labels, strict=False)):
        x = i * (panel_w + gap)
        canvas.alpha_composite(panel, (x, label_height))

        bbox = draw.textbbox((0, 0), label, font=font)
        text_w = bbox[2] - bbox[0]
        tx = x + (panel_w - text_w) // 2
        draw.text((tx, 6), label, fill=(220, 220, 220), font=font)

    canvas.convert("RGB").save(output_path)

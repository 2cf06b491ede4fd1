"""ARGB packing, colour-space bin keys and direct-colour codes."""

from __future__ import annotations

import numpy as np

TRANSPARENT = (0, 255, 255, 255)  # A, R, G, B
BLACK = (255, 0, 0, 0)
WHITE = (255, 255, 255, 255)


def pack_argb(channels: np.ndarray) -> np.ndarray:
    """Pack (N, 4) A, R, G, B values into a flat uint32 pixel buffer."""
    c = np.asarray(channels, dtype=np.uint32).reshape(-1, 4)
    return (c[:, 0] << 24) | (c[:, 1] << 16) | (c[:, 2] << 8) | c[:, 3]


def unpack_argb(pixels: np.ndarray) -> np.ndarray:
    """Split uint32 ARGB pixels into an (N, 4) uint8 array (A, R, G, B)."""
    p = np.asarray(pixels, dtype=np.uint32).reshape(-1)
    return np.stack(
        [(p >> 24) & 0xFF, (p >> 16) & 0xFF, (p >> 8) & 0xFF, p & 0xFF],
        axis=1,
    ).astype(np.uint8)


def rgba_to_argb(rgba: np.ndarray) -> np.ndarray:
    """(H, W, 4) or (N, 4) uint8 RGBA → flat uint32 ARGB."""
    c = np.asarray(rgba, dtype=np.uint8).reshape(-1, 4)
    return pack_argb(c[:, [3, 0, 1, 2]])


def argb_index(pixels: np.ndarray, has_semi_transparency: bool) -> np.ndarray:
    """Map pixels to their bin key in the reduced colour space.

    With semi-transparency every channel keeps its top 4 bits
    (A4 R4 G4 B4); otherwise alpha is dropped and the key is R5 G6 B5.
    Either way the key fits in ``[0, 65535]``.
    """
    c = unpack_argb(pixels).astype(np.int64)
    a, r, g, b = c[:, 0], c[:, 1], c[:, 2], c[:, 3]
    if has_semi_transparency:
        return (a & 0xF0) << 8 | (r & 0xF0) << 4 | (g & 0xF0) | (b >> 4)
    return (r & 0xF8) << 8 | (g & 0xFC) << 3 | (b >> 3)


# -- Direct-colour codes -----------------------------------------------


def encode_argb1555(argb: tuple[int, int, int, int]) -> int:
    a, r, g, b = argb
    return (a & 0x80) << 8 | (r & 0xF8) << 7 | (g & 0xF8) << 2 | (b >> 3)


def encode_rgb565(argb: tuple[int, int, int, int]) -> int:
    _, r, g, b = argb
    return (r & 0xF8) << 8 | (g & 0xFC) << 3 | (b >> 3)


def encode_argb8888(argb: tuple[int, int, int, int]) -> int:
    a, r, g, b = argb
    return a << 24 | r << 16 | g << 8 | b


CODE_FORMATS = {
    "argb8888": encode_argb8888,
    "argb1555": encode_argb1555,
    "rgb565": encode_rgb565,
}


def direct_code_format(has_semi_transparency: bool, has_transparent_pixel: bool) -> str:
    """Pick the packed direct-colour layout used for palettes over 256 entries."""
    if has_semi_transparency:
        return "argb8888"
    if has_transparent_pixel:
        return "argb1555"
    return "rgb565"


def decode_codes(codes: np.ndarray, code_format: str) -> np.ndarray:
    """Expand direct-colour codes back to (N, 4) uint8 A, R, G, B.

    5- and 6-bit fields are widened by bit replication.
    """
    c = np.asarray(codes, dtype=np.int64).reshape(-1)
    if code_format == "argb8888":
        return unpack_argb(c.astype(np.uint32))

    if code_format == "argb1555":
        a = np.where(c & 0x8000, 255, 0)
        r5, g5, b5 = (c >> 10) & 0x1F, (c >> 5) & 0x1F, c & 0x1F
        r, g, b = (r5 << 3) | (r5 >> 2), (g5 << 3) | (g5 >> 2), (b5 << 3) | (b5 >> 2)
    elif code_format == "rgb565":
        a = np.full_like(c, 255)
        r5, g6, b5 = (c >> 11) & 0x1F, (c >> 5) & 0x3F, c & 0x1F
        r, g, b = (r5 << 3) | (r5 >> 2), (g6 << 2) | (g6 >> 4), (b5 << 3) | (b5 >> 2)
    else:
        msg = f"Unknown direct colour format '{code_format}'. Available: {', '.join(CODE_FORMATS)}"
        raise ValueError(msg)
    return np.stack([a, r, g, b], axis=1).astype(np.uint8)

"""Tests for the pnn_quant package."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from pnn_quant.cli import app
from pnn_quant.color_utils import (
    BLACK,
    TRANSPARENT,
    WHITE,
    argb_index,
    decode_codes,
    encode_argb1555,
    encode_rgb565,
    pack_argb,
    unpack_argb,
)
from pnn_quant.config import QuantizeConfig
from pnn_quant.dithering import dither_image
from pnn_quant.histogram import build_histogram
from pnn_quant.image_io import (
    PackedPixelBuffer,
    grab_pixels,
    make_comparison_grid,
    quantize_image,
    quantize_to_buffer,
    to_image,
)
from pnn_quant.pnn import ALIVE, BinGraph, iter_merges, pnn_quantize
from pnn_quant.quantizer import quantize_pixels
from pnn_quant.search import (
    ClosestColorSearch,
    NearestColorSearch,
    SearchContext,
    select_search,
)

# -- Fixtures ----------------------------------------------------------

W, H = 12, 8  # non-square


def _argb(*colors: tuple[int, int, int, int]) -> np.ndarray:
    return pack_argb(np.array(colors, dtype=np.uint8))


class _RecordingSearch:
    """Exact search that remembers every pixel it was asked about."""

    def __init__(self, inner: NearestColorSearch) -> None:
        self.inner = inner
        self.seen: list[int] = []

    def index(self, pixel: int) -> int:
        self.seen.append(int(pixel))
        return self.inner.index(pixel)

    def index_many(self, pixels: np.ndarray) -> np.ndarray:
        return self.inner.index_many(pixels)


@pytest.fixture
def noisy_pixels() -> np.ndarray:
    """Opaque random image, row-major."""
    rng = np.random.default_rng(456)
    rgb = rng.integers(0, 256, size=(W * H, 3), dtype=np.uint8)
    alpha = np.full((W * H, 1), 255, dtype=np.uint8)
    return pack_argb(np.hstack([alpha, rgb]))


@pytest.fixture
def few_colors() -> list[tuple[int, int, int, int]]:
    return [
        (255, 0, 0, 0),
        (255, 255, 0, 0),
        (255, 0, 200, 0),
        (255, 0, 0, 240),
        (255, 250, 250, 250),
    ]


@pytest.fixture
def few_color_pixels(few_colors: list[tuple[int, int, int, int]]) -> np.ndarray:
    rng = np.random.default_rng(9)
    choice = rng.integers(0, len(few_colors), size=W * H)
    choice[: len(few_colors)] = np.arange(len(few_colors))
    return _argb(*few_colors)[choice]


@pytest.fixture
def tmp_image(tmp_path: Path) -> Path:
    """Write a small non-square test PNG to disk."""
    img = Image.fromarray(
        np.random.default_rng(1).integers(0, 256, (24, 32, 3), dtype=np.uint8),
    )
    p = tmp_path / "test.png"
    img.save(p)
    return p


# -- Config ------------------------------------------------------------

class TestConfig:
    def test_defaults(self) -> None:
        cfg = QuantizeConfig()
        assert cfg.max_colors == 256
        assert cfg.dither is True
        assert cfg.quan_sqrt is True

    def test_frozen(self) -> None:
        cfg = QuantizeConfig()
        with pytest.raises(AttributeError):
            cfg.max_colors = 16  # type: ignore[misc]

    def test_validate_rejects_bad_values(self) -> None:
        with pytest.raises(ValueError):
            QuantizeConfig(max_colors=1).validate()
        with pytest.raises(ValueError):
            QuantizeConfig(bits_per_pixel=12).validate()

    def test_fits_destination(self) -> None:
        assert QuantizeConfig(max_colors=16, bits_per_pixel=4).fits_destination
        assert not QuantizeConfig(max_colors=17, bits_per_pixel=4).fits_destination


# -- Colour utilities --------------------------------------------------

class TestColorUtils:
    def test_pack_unpack(self) -> None:
        packed = _argb((255, 1, 2, 3), (0, 250, 128, 7))
        assert packed.dtype == np.uint32
        assert int(packed[0]) == 0xFF010203
        np.testing.assert_array_equal(
            unpack_argb(packed), [[255, 1, 2, 3], [0, 250, 128, 7]],
        )

    def test_opaque_key_is_rgb565(self) -> None:
        keys = argb_index(_argb((255, 255, 255, 255), (255, 8, 4, 8), (0, 8, 4, 8)), False)
        assert keys.tolist() == [0xFFFF, 0x821, 0x821]

    def test_semi_transparent_key_uses_alpha(self) -> None:
        keys = argb_index(_argb((0x80, 0x10, 0x20, 0x30), (0xFF, 0xFF, 0xFF, 0xFF)), True)
        assert keys.tolist() == [0x8123, 0xFFFF]

    def test_keys_bounded(self, noisy_pixels: np.ndarray) -> None:
        for semi in (False, True):
            keys = argb_index(noisy_pixels, semi)
            assert keys.min() >= 0
            assert keys.max() <= 0xFFFF

    def test_direct_codes(self) -> None:
        assert encode_argb1555(WHITE) == 0xFFFF
        assert encode_argb1555((0, 255, 255, 255)) == 0x7FFF
        assert encode_rgb565(WHITE) == 0xFFFF
        assert encode_rgb565(BLACK) == 0

    def test_decode_codes(self) -> None:
        np.testing.assert_array_equal(
            decode_codes(np.array([0xFFFF, 0]), "rgb565"),
            [[255, 255, 255, 255], [255, 0, 0, 0]],
        )
        np.testing.assert_array_equal(
            decode_codes(np.array([0x7FFF]), "argb1555"), [[0, 255, 255, 255]],
        )
        with pytest.raises(ValueError):
            decode_codes(np.array([0]), "yuv")


# -- Histogram ---------------------------------------------------------

class TestHistogram:
    def test_means_and_counts(self) -> None:
        pixels = _argb((255, 8, 0, 0), (255, 9, 0, 0), (255, 200, 0, 0))
        hist = build_histogram(pixels, False, quan_sqrt=False)
        assert len(hist) == 2
        assert hist.cnt.tolist() == [2, 1]
        assert hist.rc.tolist() == [8.5, 200.0]
        assert hist.ac.tolist() == [255.0, 255.0]

    def test_keys_ascending(self, noisy_pixels: np.ndarray) -> None:
        hist = build_histogram(noisy_pixels, False)
        assert np.all(np.diff(hist.keys) > 0)

    def test_quan_sqrt(self) -> None:
        pixels = _argb(*([(255, 40, 40, 40)] * 10))
        assert build_histogram(pixels, False, quan_sqrt=True).cnt.tolist() == [3]
        assert build_histogram(pixels, False, quan_sqrt=False).cnt.tolist() == [10]

    def test_means_within_range(self, noisy_pixels: np.ndarray) -> None:
        hist = build_histogram(noisy_pixels, True)
        for ch in (hist.ac, hist.rc, hist.gc, hist.bc):
            assert ch.min() >= 0.0
            assert ch.max() <= 255.0


# -- Bin graph and merging ---------------------------------------------

class TestMerge:
    def test_chain_in_key_order(self, noisy_pixels: np.ndarray) -> None:
        graph = BinGraph(build_histogram(noisy_pixels, False))
        assert list(graph.walk()) == list(range(len(graph)))

    def test_population_conserved(self, noisy_pixels: np.ndarray) -> None:
        graph = BinGraph(build_histogram(noisy_pixels, False, quan_sqrt=False))
        total = len(noisy_pixels)
        for survivor, removed in iter_merges(graph, 8):
            assert graph.state[survivor] == ALIVE
            assert graph.state[removed] != ALIVE
            assert int(graph.cnt[graph.state == ALIVE].sum()) == total
        assert len(graph) == 8
        assert len(list(graph.walk())) == 8

    def test_chain_stays_ordered(self, noisy_pixels: np.ndarray) -> None:
        graph = BinGraph(build_histogram(noisy_pixels, False))
        for _ in iter_merges(graph, 5):
            pass
        walked = list(graph.walk())
        assert walked[0] == 0
        assert walked == sorted(walked)
        assert walked == np.flatnonzero(graph.state == ALIVE).tolist()

    def test_cached_neighbour_matches_full_scan(self, noisy_pixels: np.ndarray) -> None:
        graph = BinGraph(build_histogram(noisy_pixels, False))
        for _ in iter_merges(graph, 20):
            pass
        means = np.stack([graph.ac, graph.rc, graph.gc, graph.bc], axis=1)
        alive = np.flatnonzero(graph.state == ALIVE)
        for i in alive[:-1].tolist():
            graph.find_nn(i)
            after = alive[alive > i]
            n1, n2 = float(graph.cnt[i]), graph.cnt[after].astype(np.float64)
            cost = ((means[after] - means[i]) ** 2).sum(axis=1) * n1 * n2 / (n1 + n2)
            assert graph.nn[i] == after[np.argmin(cost)]
            assert graph.err[i] == pytest.approx(cost.min())

    def test_cheapest_pair_merged(self) -> None:
        pixels = _argb((255, 0, 0, 0), (255, 16, 16, 16), (255, 200, 200, 200))
        palette, produced = pnn_quantize(pixels, 2, quan_sqrt=False)
        assert produced == 2
        np.testing.assert_array_equal(palette, [[255, 8, 8, 8], [255, 200, 200, 200]])

    def test_merge_is_population_weighted(self) -> None:
        pixels = _argb(
            (255, 0, 0, 0), (255, 0, 0, 0), (255, 0, 0, 0),
            (255, 16, 16, 16),
            (255, 200, 200, 200),
        )
        palette, _ = pnn_quantize(pixels, 2, quan_sqrt=False)
        np.testing.assert_array_equal(palette[0], [255, 4, 4, 4])

    def test_unused_slots_are_zero(self) -> None:
        pixels = _argb((255, 10, 20, 30), (255, 90, 90, 90))
        palette, produced = pnn_quantize(pixels, 8)
        assert palette.shape == (8, 4)
        assert produced == 2
        assert not palette[2:].any()

    def test_transparent_colour_moves_to_front(self) -> None:
        tc = (0, 200, 100, 50)
        pixels = _argb((255, 0, 0, 0), tc)
        palette, _ = pnn_quantize(pixels, 4, transparent_color=tc)
        assert tuple(palette[0]) == tc


# -- Palette search ----------------------------------------------------

class TestSearch:
    palette = np.array([BLACK, WHITE], dtype=np.uint8)

    def test_nearest(self) -> None:
        search = NearestColorSearch(self.palette, SearchContext())
        assert search.index(0xFF0A0A0A) == 0
        assert search.index(0xFFC8C8C8) == 1

    def test_nearest_tie_takes_last(self) -> None:
        palette = np.array([BLACK, BLACK, WHITE], dtype=np.uint8)
        search = NearestColorSearch(palette, SearchContext())
        assert search.index(0xFF000000) == 1
        assert search.index_many(np.array([0xFF000000], dtype=np.uint32)).tolist() == [1]

    def test_scan_matches_vectorised(self, noisy_pixels: np.ndarray) -> None:
        rng = np.random.default_rng(3)
        palette = rng.integers(0, 256, size=(40, 4), dtype=np.uint8)
        search = NearestColorSearch(palette, SearchContext())
        bulk = search.index_many(noisy_pixels)
        fresh = NearestColorSearch(palette, SearchContext())
        assert [fresh.index(p) for p in noisy_pixels.tolist()] == bulk.tolist()

    def test_large_palette(self, noisy_pixels: np.ndarray) -> None:
        rng = np.random.default_rng(4)
        palette = rng.integers(0, 256, size=(300, 4), dtype=np.uint8)
        palette[17] = unpack_argb(noisy_pixels[:1])[0]
        search = NearestColorSearch(palette, SearchContext())
        assert search.index(int(noisy_pixels[0])) == 17

    def test_closest_exact_match_is_deterministic(self) -> None:
        search = ClosestColorSearch(self.palette, SearchContext())
        assert {search.index(0xFFFFFFFF) for _ in range(50)} == {1}

    def test_closest_single_entry(self) -> None:
        search = ClosestColorSearch(self.palette[:1], SearchContext())
        assert {search.index(0xFF808080) for _ in range(20)} == {0}

    def test_closest_picks_from_two_nearest(self, noisy_pixels: np.ndarray) -> None:
        palette = np.array([BLACK, WHITE, (255, 128, 128, 128)], dtype=np.uint8)
        search = ClosestColorSearch(palette, SearchContext.seeded(0))
        result = search.index_many(noisy_pixels)
        for pixel, k in zip(noisy_pixels.tolist(), result.tolist(), strict=True):
            i1, i2, _, _ = search.ctx.closest[pixel]
            assert k in (i1, i2)

    def test_closest_reproducible_with_seed(self, noisy_pixels: np.ndarray) -> None:
        palette = np.random.default_rng(5).integers(0, 256, size=(16, 4), dtype=np.uint8)
        a = ClosestColorSearch(palette, SearchContext.seeded(11)).index_many(noisy_pixels)
        b = ClosestColorSearch(palette, SearchContext.seeded(11)).index_many(noisy_pixels)
        np.testing.assert_array_equal(a, b)

    def test_select_search(self) -> None:
        ctx = SearchContext()
        palette = np.zeros((256, 4), dtype=np.uint8)
        assert isinstance(select_search(palette, ctx, True, 256), NearestColorSearch)
        assert isinstance(select_search(palette, ctx, False, 16), NearestColorSearch)
        assert isinstance(select_search(palette, ctx, False, 256), ClosestColorSearch)


# -- Dithering ---------------------------------------------------------

class TestDithering:
    palette = np.array([BLACK, WHITE], dtype=np.uint8)

    def test_palette_colour_passes_through(self) -> None:
        pixels = np.full(W * H, 0xFFFFFFFF, dtype=np.uint32)
        search = NearestColorSearch(self.palette, SearchContext())
        out = dither_image(pixels, self.palette, search, W, H)
        assert out.shape == (W * H,)
        assert set(out.tolist()) == {1}

    def test_error_spreads(self) -> None:
        # 126 grey is just closer to black; the carried error tips neighbours to white
        pixels = np.full(W * H, 0xFF7E7E7E, dtype=np.uint32)
        search = NearestColorSearch(self.palette, SearchContext())
        out = dither_image(pixels, self.palette, search, W, H)
        assert out[0] == 0
        assert out[1] == 1
        assert set(out.tolist()) == {0, 1}

    def test_carried_error_is_capped(self) -> None:
        # 128 grey rounds to white; the -127 residual is carried as -20
        pixels = np.full(2, 0xFF808080, dtype=np.uint32)
        search = _RecordingSearch(NearestColorSearch(self.palette, SearchContext()))
        out = dither_image(pixels, self.palette, search, 2, 1)
        assert out[0] == 1
        assert search.seen == [0xFF808080, 0xFF7C7E7C]

    def test_odd_rows_scan_right_to_left(self) -> None:
        colors = [(255, 40 * i, 0, 0) for i in range(6)]
        palette = np.array(colors, dtype=np.uint8)
        pixels = _argb(*colors)
        search = _RecordingSearch(NearestColorSearch(palette, SearchContext()))
        out = dither_image(pixels, palette, search, 3, 2)
        assert out.tolist() == [0, 1, 2, 3, 4, 5]
        assert search.seen == pixels[[0, 1, 2, 5, 4, 3]].tolist()

    def test_encoded_output(self) -> None:
        pixels = np.full(4, 0xFFFFFFFF, dtype=np.uint32)
        search = NearestColorSearch(self.palette, SearchContext())
        out = dither_image(pixels, self.palette, search, 2, 2, encode=encode_rgb565)
        assert out.tolist() == [0xFFFF] * 4

    def test_semi_transparent_alpha_diffused(self) -> None:
        palette = np.array([(0, 0, 0, 0), WHITE], dtype=np.uint8)
        pixels = np.full(W * H, 0x80FFFFFF, dtype=np.uint32)
        search = NearestColorSearch(palette, SearchContext())
        out = dither_image(pixels, palette, search, W, H, has_semi_transparency=True)
        assert set(out.tolist()) <= {0, 1}


# -- Orchestrator ------------------------------------------------------

class TestQuantize:
    def test_two_colours_black_white(self, noisy_pixels: np.ndarray) -> None:
        result = quantize_pixels(noisy_pixels, W, H, max_colors=2, dither=False)
        np.testing.assert_array_equal(result.palette, [BLACK, WHITE])

    def test_two_colours_with_transparency(self, noisy_pixels: np.ndarray) -> None:
        pixels = noisy_pixels.copy()
        pixels[5] = 0x00102030
        result = quantize_pixels(
            pixels, W, H, max_colors=2, dither=False, transparent_index=5,
        )
        assert {tuple(c) for c in result.palette.tolist()} == {TRANSPARENT, BLACK}

    @pytest.mark.parametrize("dither", [False, True])
    @pytest.mark.parametrize("max_colors", [2, 16, 64, 256])
    def test_indices_in_range(
        self, noisy_pixels: np.ndarray, max_colors: int, dither: bool,
    ) -> None:
        result = quantize_pixels(noisy_pixels, W, H, max_colors=max_colors, dither=dither, seed=1)
        assert result.indices.shape == (W * H,)
        assert result.indices.min() >= 0
        assert result.indices.max() < max_colors
        assert result.code_format is None

    def test_large_palette_gives_direct_codes(self, few_color_pixels: np.ndarray) -> None:
        result = quantize_pixels(few_color_pixels, W, H, max_colors=300, dither=False)
        assert result.dithered
        assert result.code_format == "rgb565"
        expected = [encode_rgb565(tuple(c)) for c in unpack_argb(few_color_pixels).tolist()]
        assert result.indices.tolist() == expected

    def test_large_palette_semi_transparent(self, few_color_pixels: np.ndarray) -> None:
        pixels = few_color_pixels.copy()
        pixels[0] = 0x80FF0000
        result = quantize_pixels(
            pixels, W, H, max_colors=1024, dither=True, has_semi_transparency=True,
        )
        assert result.code_format == "argb8888"
        assert result.indices.max() <= 0xFFFFFFFF

    def test_deterministic_exact_path(self, noisy_pixels: np.ndarray) -> None:
        a = quantize_pixels(noisy_pixels, W, H, max_colors=16, dither=False)
        b = quantize_pixels(noisy_pixels, W, H, max_colors=16, dither=False)
        np.testing.assert_array_equal(a.indices, b.indices)
        np.testing.assert_array_equal(a.palette, b.palette)

    def test_closest_path_seeded(self, noisy_pixels: np.ndarray) -> None:
        a = quantize_pixels(noisy_pixels, W, H, max_colors=64, dither=False, seed=7)
        b = quantize_pixels(noisy_pixels, W, H, max_colors=64, dither=False, seed=7)
        np.testing.assert_array_equal(a.indices, b.indices)

    def test_few_colours_reproduced(
        self,
        few_color_pixels: np.ndarray,
        few_colors: list[tuple[int, int, int, int]],
    ) -> None:
        result = quantize_pixels(few_color_pixels, W, H, max_colors=16, dither=False)
        assert result.palette_size == len(few_colors)
        produced = {tuple(c) for c in result.palette[: result.palette_size].tolist()}
        assert produced == set(few_colors)
        np.testing.assert_array_equal(
            pack_argb(result.palette[result.indices]), few_color_pixels,
        )

    def test_two_pixel_example(self) -> None:
        pixels = _argb((255, 10, 10, 10), (255, 250, 250, 250))
        result = quantize_pixels(pixels, 2, 1, max_colors=2, dither=False)
        assert result.indices.tolist() == [0, 1]

        result = quantize_pixels(pixels, 2, 1, max_colors=4, dither=False)
        assert result.indices.tolist() == [0, 1]
        np.testing.assert_array_equal(
            result.palette[:2], [[255, 10, 10, 10], [255, 250, 250, 250]],
        )

    @pytest.mark.parametrize("max_colors", [2, 8, 256])
    @pytest.mark.parametrize("dither", [False, True])
    def test_single_colour(self, max_colors: int, dither: bool) -> None:
        color = (255, 40, 80, 120)
        pixels = np.full(W * H, _argb(color)[0], dtype=np.uint32)
        result = quantize_pixels(pixels, W, H, max_colors=max_colors, dither=dither)
        assert len(set(result.indices.tolist())) == 1
        if max_colors > 2:
            assert tuple(result.palette[result.indices[0]]) == color

    def test_transparent_slot(self) -> None:
        tc = (0, 10, 20, 30)
        colors = [(255, 0, 255, 0)] * 8 + [(255, 255, 0, 0)] * 7 + [tc]
        pixels = _argb(*colors)
        result = quantize_pixels(
            pixels, 4, 4, max_colors=8, dither=False, transparent_index=15,
        )
        assert tuple(result.palette[0]) == tc
        assert tuple(result.palette[result.indices[15]]) == tc

    def test_semi_transparent_input(self, noisy_pixels: np.ndarray) -> None:
        pixels = (noisy_pixels & 0x00FFFFFF) | np.uint32(0x80000000)
        result = quantize_pixels(
            pixels, W, H, max_colors=16, dither=True, has_semi_transparency=True,
        )
        assert result.indices.max() < 16

    def test_context_cleared_after_run(self, noisy_pixels: np.ndarray) -> None:
        ctx = SearchContext.seeded(3)
        quantize_pixels(noisy_pixels, W, H, max_colors=64, dither=False, ctx=ctx)
        assert not ctx.closest
        assert not ctx.nearest

    def test_rejects_bad_input(self, noisy_pixels: np.ndarray) -> None:
        with pytest.raises(ValueError):
            quantize_pixels(noisy_pixels, W, H, max_colors=1)
        with pytest.raises(ValueError):
            quantize_pixels(noisy_pixels, W + 1, H)


# -- Image I/O ---------------------------------------------------------

class TestImageIO:
    def test_grab_opaque(self, tmp_image: Path) -> None:
        src = grab_pixels(Image.open(tmp_image))
        assert (src.width, src.height) == (32, 24)
        assert len(src.pixels) == 32 * 24
        assert not src.has_semi_transparency
        assert src.transparent_index == -1

    def test_grab_binary_transparency(self) -> None:
        arr = np.full((3, 4, 4), 255, dtype=np.uint8)
        arr[1, 2] = (9, 8, 7, 0)
        src = grab_pixels(Image.fromarray(arr))
        assert src.has_semi_transparency
        assert src.transparent_index == 1 * 4 + 2
        assert src.transparent_color == (0, 9, 8, 7)

    def test_grab_semi_transparency(self) -> None:
        arr = np.full((2, 2, 4), 255, dtype=np.uint8)
        arr[0, 0, 3] = 128
        assert grab_pixels(Image.fromarray(arr)).has_semi_transparency

    @pytest.mark.parametrize(
        ("bpp", "stride"), [(1, 4), (4, 8), (8, 12), (16, 20), (32, 40)],
    )
    def test_stride(self, bpp: int, stride: int) -> None:
        assert PackedPixelBuffer(10, 3, bpp).stride == stride

    def test_bit_layout(self) -> None:
        one = PackedPixelBuffer(10, 1, 1)
        one.set_pixel(0, 0, 1)
        one.set_pixel(9, 0, 1)
        assert one.data[0] == 0x80
        assert one.data[1] == 0x40
        one.set_pixel(0, 0, 0)
        assert one.data[0] == 0

        four = PackedPixelBuffer(3, 1, 4)
        four.set_pixel(0, 0, 0xA)
        four.set_pixel(1, 0, 0x5)
        assert four.data[0] == 0xA5

        sixteen = PackedPixelBuffer(2, 1, 16)
        sixteen.set_pixel(1, 0, 0x1234)
        assert bytes(sixteen.data[2:4]) == b"\x34\x12"

    @pytest.mark.parametrize("bpp", [1, 4, 8, 16, 32])
    def test_fill_matches_accessors(self, bpp: int) -> None:
        rng = np.random.default_rng(bpp)
        buf = PackedPixelBuffer(W + 1, H, bpp)
        values = rng.integers(0, 1 << min(bpp, 31), size=(W + 1) * H)
        buf.fill(values)
        np.testing.assert_array_equal(buf.values(), values)
        for x, y in [(0, 0), (W, H - 1), (3, 2)]:
            assert buf.get_pixel(x, y) == values[y * (W + 1) + x]

    def test_bounds_checked(self) -> None:
        buf = PackedPixelBuffer(4, 4, 4)
        with pytest.raises(IndexError):
            buf.get_pixel(4, 0)
        with pytest.raises(IndexError):
            buf.set_pixel(0, -1, 1)
        with pytest.raises(ValueError):
            buf.set_pixel(0, 0, 16)
        with pytest.raises(ValueError):
            PackedPixelBuffer(4, 4, 12)

    def test_to_image_indexed(self) -> None:
        buf = PackedPixelBuffer(5, 2, 4)
        values = np.arange(10) % 3
        buf.fill(values)
        palette = np.array([BLACK, WHITE, (255, 255, 0, 0)], dtype=np.uint8)
        img = to_image(buf, palette)
        assert img.mode == "P"
        assert img.size == (5, 2)
        assert list(img.getdata()) == values.tolist()
        assert img.convert("RGB").getpixel((2, 0)) == (255, 0, 0)

    def test_quantize_image_indexed(self, tmp_image: Path) -> None:
        img = quantize_image(Image.open(tmp_image), max_colors=16, bits_per_pixel=4, seed=0)
        assert img.mode == "P"
        assert img.size == (32, 24)
        assert max(img.getdata()) < 16

    def test_invalid_depth_leaves_blank(self, tmp_image: Path) -> None:
        buf, result = quantize_to_buffer(Image.open(tmp_image), max_colors=4, bits_per_pixel=1)
        assert result is None
        assert not any(buf.data)
        assert buf.width == 32

    def test_quantize_image_direct(self, tmp_image: Path) -> None:
        img = quantize_image(Image.open(tmp_image), max_colors=512, bits_per_pixel=16)
        assert img.mode == "RGB"
        assert img.size == (32, 24)

    def test_transparent_png_roundtrip(self, tmp_path: Path) -> None:
        arr = np.zeros((4, 4, 4), dtype=np.uint8)
        arr[..., 0] = 200
        arr[..., 3] = 255
        arr[0, 0] = (0, 0, 0, 0)
        img = quantize_image(Image.fromarray(arr), max_colors=4, dither=False)
        out = tmp_path / "t.png"
        img.save(out)
        back = Image.open(out).convert("RGBA")
        assert back.getpixel((0, 0))[3] == 0
        assert back.getpixel((1, 1)) == (200, 0, 0, 255)

    @pytest.mark.parametrize("dither", [False, True])
    def test_transparent_pixel_keeps_opaque_twin(self, dither: bool) -> None:
        # Opaque black shares its RGB with the fully transparent pixel
        arr = np.zeros((8, 8, 4), dtype=np.uint8)
        arr[..., 3] = 255
        arr[:, 4:, 0] = 200
        arr[0, 0] = (0, 0, 0, 0)
        src = grab_pixels(Image.fromarray(arr))
        assert src.has_semi_transparency

        back = quantize_image(Image.fromarray(arr), max_colors=4, dither=dither).convert("RGBA")
        assert back.getpixel((0, 0))[3] == 0
        for x in range(4):
            for y in range(8):
                if (x, y) != (0, 0):
                    assert back.getpixel((x, y)) == (0, 0, 0, 255)
        assert back.getpixel((6, 3)) == (200, 0, 0, 255)

    def test_comparison_grid(self, tmp_image: Path, tmp_path: Path) -> None:
        original = Image.open(tmp_image)
        buf, result = quantize_to_buffer(original, max_colors=8)
        assert result is not None
        quantized = to_image(buf, result.palette)
        out = tmp_path / "grid.png"
        make_comparison_grid(original, quantized, result.palette, result.palette_size, out)
        assert out.exists()
        assert Image.open(out).size == (3 * 32 + 2 * 8, 24 + 36)


# -- CLI ---------------------------------------------------------------

class TestCli:
    def test_single(self, tmp_image: Path, tmp_path: Path) -> None:
        out = tmp_path / "out" / "q.png"
        result = CliRunner().invoke(
            app, ["single", str(tmp_image), "--output", str(out), "--colors", "8", "--seed", "1"],
        )
        assert result.exit_code == 0, result.output
        assert out.exists()
        assert Image.open(out).mode == "P"

    def test_batch_empty_folder(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            app, ["batch", "--input", str(tmp_path / "in"), "--output", str(tmp_path / "out")],
        )
        assert result.exit_code == 0
        assert "No images found" in result.output

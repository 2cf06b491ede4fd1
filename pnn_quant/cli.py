"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
from pathlib import Path

import numpy as np
import typer
from PIL import Image
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from skimage.metrics import peak_signal_noise_ratio

from pnn_quant.config import QuantizeConfig
from pnn_quant.image_io import (
    load_image,
    make_comparison_grid,
    quantize_to_buffer,
    to_image,
)

app = typer.Typer(
    name="pnn-quant",
    help="Reduce images to a fixed palette with pairwise-nearest-neighbour quantization.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


def _collect_images(folder: Path, extensions: frozenset[str]) -> list[Path]:
    if not folder.exists():
        return []
    return sorted(
        f for f in folder.iterdir()
        if f.is_file() and f.suffix.lower() in extensions
    )


def _quality_metric(original: Image.Image, quantized: Image.Image) -> float:
    a = np.asarray(original.convert("RGBA"), dtype=np.uint8)
    b = np.asarray(quantized.convert("RGBA"), dtype=np.uint8)
    return float(peak_signal_noise_ratio(a, b, data_range=255))


def _run(cfg: QuantizeConfig, src_path: Path, out_path: Path) -> tuple[Image.Image, float]:
    """Quantize one file; returns the written image and its PSNR."""
    original = load_image(src_path)
    buffer, result = quantize_to_buffer(
        original,
        max_colors=cfg.max_colors,
        dither=cfg.dither,
        bits_per_pixel=cfg.bits_per_pixel,
        quan_sqrt=cfg.quan_sqrt,
        seed=cfg.seed,
    )
    if result is None:
        quantized = to_image(buffer)
    else:
        quantized = to_image(buffer, result.palette, result.code_format)
    quantized.save(out_path)

    if cfg.save_comparison and result is not None:
        comp_path = out_path.with_name(f"{src_path.stem}_comparison.{cfg.output_format}")
        make_comparison_grid(
            original, quantized, result.palette, result.palette_size, comp_path,
        )
    return quantized, _quality_metric(original, quantized)


# Defaults come from QuantizeConfig - single source of truth
_DEFAULTS = QuantizeConfig()


# -- batch command -----------------------------------------------------

@app.command()
def batch(
    input_dir: Path = typer.Option(
        _DEFAULTS.input_dir, "--input", "-i", help="Folder with source images",
    ),
    output_dir: Path = typer.Option(
        _DEFAULTS.output_dir, "--output", "-o", help="Results folder",
    ),
    max_colors: int = typer.Option(
        _DEFAULTS.max_colors, "--colors", "-c", help="Palette size (2..65536)",
    ),
    dither: bool = typer.Option(
        _DEFAULTS.dither, "--dither/--no-dither", help="Error-diffusion dithering",
    ),
    bits_per_pixel: int = typer.Option(
        _DEFAULTS.bits_per_pixel, "--bpp", "-b", help="Destination bits per pixel",
    ),
    seed: int | None = typer.Option(
        _DEFAULTS.seed, "--seed", "-s", help="Random seed (None = random)",
    ),
    quan_sqrt: bool = typer.Option(
        _DEFAULTS.quan_sqrt, "--quan-sqrt/--no-quan-sqrt",
        help="Square-root-compress histogram counts",
    ),
    comparison: bool = typer.Option(
        _DEFAULTS.save_comparison, "--comparison/--no-comparison",
        help="Save an Original | Quantized | Palette grid",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Quantize all images in INPUT_DIR and write results to OUTPUT_DIR."""
    _setup_logging(verbose)
    logger = logging.getLogger("pnn_quant")

    cfg = QuantizeConfig(
        max_colors=max_colors,
        dither=dither,
        quan_sqrt=quan_sqrt,
        seed=seed,
        bits_per_pixel=bits_per_pixel,
        save_comparison=comparison,
        input_dir=input_dir,
        output_dir=output_dir,
    )
    try:
        cfg.validate()
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    input_dir.mkdir(exist_ok=True)
    output_dir.mkdir(exist_ok=True)

    images = _collect_images(input_dir, cfg.SUPPORTED_EXTENSIONS)
    if not images:
        console.print(f"\n[yellow]No images found in {input_dir}/[/yellow]")
        console.print("Place .jpg / .png / ... files there and re-run.\n")
        raise typer.Exit(0)

    if not cfg.fits_destination:
        logger.warning(
            "%d colours exceed %d bits per pixel - outputs will be blank",
            cfg.max_colors, cfg.bits_per_pixel,
        )

    console.print(Panel.fit(
        f"[bold]PNN QUANTIZER[/bold]\n"
        f"Colours: {cfg.max_colors}  |  Depth: {cfg.bits_per_pixel} bpp\n"
        f"Dithering: {cfg.dither}  |  Images: {len(images)}",
        border_style="cyan",
    ))

    for idx, img_path in enumerate(images, 1):
        console.rule(f"[bold cyan][{idx}/{len(images)}] {img_path.name}[/bold cyan]")
        t_total = time.perf_counter()

        out_path = output_dir / f"{img_path.stem}_quantized.{cfg.output_format}"
        quantized, psnr = _run(cfg, img_path, out_path)
        elapsed = time.perf_counter() - t_total

        console.print(
            f"  [green]✓[/green] {out_path.name}  "
            f"[dim]{quantized.width}x{quantized.height}  psnr={psnr:.1f} dB"
            f"  time={elapsed:.1f}s[/dim]"
        )

    console.print(Panel.fit(
        f"[bold green]ALL DONE[/bold green] - results in [bold]{output_dir}/[/bold]",
        border_style="green",
    ))


# -- single-image command ----------------------------------------------

@app.command()
def single(
    source: Path = typer.Argument(..., help="Path to the source image"),
    output: Path = typer.Option(Path("output/quantized.png"), "--output", "-o"),
    max_colors: int = typer.Option(_DEFAULTS.max_colors, "--colors", "-c"),
    dither: bool = typer.Option(_DEFAULTS.dither, "--dither/--no-dither"),
    bits_per_pixel: int = typer.Option(_DEFAULTS.bits_per_pixel, "--bpp", "-b"),
    seed: int | None = typer.Option(_DEFAULTS.seed, "--seed", "-s"),
    quan_sqrt: bool = typer.Option(_DEFAULTS.quan_sqrt, "--quan-sqrt/--no-quan-sqrt"),
    comparison: bool = typer.Option(
        _DEFAULTS.save_comparison, "--comparison/--no-comparison",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Quantize a single image."""
    _setup_logging(verbose)

    cfg = QuantizeConfig(
        max_colors=max_colors,
        dither=dither,
        quan_sqrt=quan_sqrt,
        seed=seed,
        bits_per_pixel=bits_per_pixel,
        save_comparison=comparison,
        output_format=output.suffix.lstrip(".") or _DEFAULTS.output_format,
    )
    try:
        cfg.validate()
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    output.parent.mkdir(parents=True, exist_ok=True)
    quantized, psnr = _run(cfg, source, output)
    console.print(
        f"[green]✓[/green] Saved to {output}  "
        f"[dim]{quantized.width}x{quantized.height}  psnr={psnr:.1f} dB[/dim]"
    )


if __name__ == "__main__":
    app()

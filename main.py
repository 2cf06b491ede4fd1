#!/usr/bin/env python3
"""
main.py — Quick-start entry point.

Drop images into ``images/`` and run:

    python main.py batch

Or use the full CLI:

    python -m pnn_quant.cli batch --help
    python -m pnn_quant.cli single my_photo.png --colors 16
"""

from pnn_quant.cli import app

if __name__ == "__main__":
    app()

#!/usr/bin/env python3
"""
pinhole-calib: Camera Calibration Toolkit

Main entry point for running from a source checkout.

Usage:
    python main.py calibrate captures/*.png --cols 9 --rows 6 --square-mm 25
    python -m pinhole_calib --help
"""

import sys
from pathlib import Path

# Add src to path for development
src_path = Path(__file__).parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))


def main():
    """Main entry point."""
    from pinhole_calib.cli import main as run_cli

    sys.exit(run_cli())


if __name__ == "__main__":
    main()

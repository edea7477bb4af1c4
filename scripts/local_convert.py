"""
Quick local conversion helper: runs the WebP transcoder on local images and
writes the results to disk. This bypasses the API and storage upload layers.
"""

from __future__ import annotations

import argparse
from pathlib import Path

# Ensure project root is importable when running from scripts/
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from media_service.batch import collect_image_paths
from media_service.presets import PRESETS, resolve_profile
from media_service.transcoder import transcode_batch_to_disk


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert local images to WebP")
    parser.add_argument("--input", required=True, help="Path to an image or a directory of images")
    parser.add_argument("--output-dir", default=None, help="Directory for .webp files (default: beside input)")
    parser.add_argument("--type", default="general", choices=sorted(PRESETS), help="Image type preset")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    input_path = Path(args.input)
    if not input_path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")

    paths = collect_image_paths(input_path) if input_path.is_dir() else [input_path]
    outputs = transcode_batch_to_disk(paths, args.output_dir, resolve_profile(args.type))
    for source, output in zip(paths, outputs):
        print(f"{source} -> {output or 'FAILED'}")


if __name__ == "__main__":
    main()

"""
Command-line batch uploader: convert a file or every image in a directory to
WebP and upload it to the configured storage.

Exit status is 1 only when the input path is invalid or storage is not
configured; individual item failures are reported but still exit 0.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import config
from .batch import BatchResult, process_path
from .errors import ConfigurationError, InputPathError
from .pipeline import MediaPipeline
from .presets import FIT_MODES, PRESETS, MediaOverrides
from .storage import build_storage_sink
from .uploader import UploadOrchestrator

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert images to WebP and upload them")
    parser.add_argument("path", help="Path to an image file or a directory of images")
    parser.add_argument("--folder", default=None, help="Storage folder (default: <root>/<category folder>)")
    parser.add_argument(
        "--type",
        dest="category",
        default="general",
        choices=sorted(PRESETS),
        help="Image type preset",
    )
    parser.add_argument("--quality", type=int, default=None, help="WebP quality 0-100")
    parser.add_argument("--width", type=int, default=None, help="Resize width in pixels")
    parser.add_argument("--height", type=int, default=None, help="Resize height in pixels")
    parser.add_argument("--fit", default=None, choices=FIT_MODES, help="Resize fit mode")
    return parser.parse_args(argv)


def print_summary(result: BatchResult) -> None:
    print(f"Successful: {len(result.successes)}")
    print(f"Failed: {len(result.failures)}")
    print(f"Total: {result.total}")
    for item in result.successes:
        print(f"  + {item.path.name} -> {item.result.locator} ({item.result.byte_size / 1024:.2f}KB)")
    for item in result.failures:
        print(f"  - {item.path.name}: [{item.reason}] {item.message}")
    if result.successes:
        print(f"Total uploaded size: {result.total_output_bytes / 1024 / 1024:.2f}MB")


def main(argv: Optional[List[str]] = None, settings: Optional[config.Settings] = None) -> int:
    args = parse_args(argv)
    settings = settings or config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    try:
        sink = build_storage_sink(settings)
        pipeline = MediaPipeline(
            UploadOrchestrator.from_settings(sink, settings),
            root_folder=settings.storage_root_folder,
        )
        overrides = MediaOverrides(quality=args.quality, width=args.width, height=args.height, fit=args.fit)
        result = process_path(pipeline, args.path, args.category, overrides, args.folder)
    except (InputPathError, ConfigurationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print_summary(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())

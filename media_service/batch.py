"""
Sequential batch runner for files and directories.

Items are processed one at a time to bound memory and stay within the
storage account's rate limits. A failing item is recorded and the batch moves
on; only an invalid input path fails the whole call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import InputPathError, PipelineError
from .presets import MediaOverrides
from .pipeline import MediaPipeline, generate_public_id
from .transcoder import is_image_file
from .uploader import UploadResult

logger = logging.getLogger(__name__)


@dataclass
class BatchItemSuccess:
    path: Path
    result: UploadResult
    input_bytes: int


@dataclass
class BatchItemFailure:
    path: Path
    stage: str
    reason: str
    message: str


@dataclass
class BatchResult:
    successes: List[BatchItemSuccess] = field(default_factory=list)
    failures: List[BatchItemFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def total_input_bytes(self) -> int:
        return sum(item.input_bytes for item in self.successes)

    @property
    def total_output_bytes(self) -> int:
        return sum(item.result.byte_size for item in self.successes)


def collect_image_paths(directory: Union[str, Path]) -> List[Path]:
    """Image files directly inside `directory`, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        raise InputPathError(f"Directory not found: {directory}")
    return sorted(p for p in directory.iterdir() if p.is_file() and is_image_file(p))


def _process_item(
    pipeline: MediaPipeline,
    path: Path,
    category: str,
    overrides: Optional[MediaOverrides],
    folder: Optional[str],
) -> Union[BatchItemSuccess, BatchItemFailure]:
    if not is_image_file(path):
        return BatchItemFailure(path, "input", "InputError.NotAnImage", f"Not an image file: {path}")
    try:
        data = path.read_bytes()
    except OSError as exc:
        return BatchItemFailure(path, "input", "InputError.NotFound", f"Could not read {path}: {exc}")

    try:
        result = pipeline.process_image_bytes(
            data,
            category=category,
            overrides=overrides,
            folder=folder,
            public_id=generate_public_id(path.stem),
        )
    except PipelineError as exc:
        return BatchItemFailure(path, exc.stage, exc.reason, exc.message)
    return BatchItemSuccess(path=path, result=result, input_bytes=len(data))


def _log_summary(result: BatchResult) -> None:
    logger.info(
        "Batch summary: %d succeeded, %d failed, %d total",
        len(result.successes),
        len(result.failures),
        result.total,
    )
    for failure in result.failures:
        logger.warning("  - %s: [%s] %s", failure.path.name, failure.reason, failure.message)
    if result.successes:
        logger.info("Total uploaded size: %.2fMB", result.total_output_bytes / 1024 / 1024)


def process_batch(
    pipeline: MediaPipeline,
    paths: Iterable[Union[str, Path]],
    category: str = "general",
    overrides: Optional[MediaOverrides] = None,
    folder: Optional[str] = None,
) -> BatchResult:
    """
    Convert and upload `paths` one after another.

    A `ConfigurationError` from the storage layer is not an item failure and
    aborts the batch.
    """
    paths = [Path(p) for p in paths]
    logger.info("Starting batch upload of %d images", len(paths))

    result = BatchResult()
    for index, path in enumerate(paths, start=1):
        logger.info("[%d/%d] Processing %s", index, len(paths), path.name)
        outcome = _process_item(pipeline, path, category, overrides, folder)
        if isinstance(outcome, BatchItemSuccess):
            result.successes.append(outcome)
        else:
            logger.error("Failed to process %s: %s", path, outcome.message)
            result.failures.append(outcome)

    _log_summary(result)
    return result


def process_directory(
    pipeline: MediaPipeline,
    directory: Union[str, Path],
    category: str = "general",
    overrides: Optional[MediaOverrides] = None,
    folder: Optional[str] = None,
) -> BatchResult:
    paths = collect_image_paths(directory)
    logger.info("Found %d images in %s", len(paths), directory)
    if not paths:
        logger.warning("No images found in directory %s", directory)
        return BatchResult()
    return process_batch(pipeline, paths, category, overrides, folder)


def process_path(
    pipeline: MediaPipeline,
    path: Union[str, Path],
    category: str = "general",
    overrides: Optional[MediaOverrides] = None,
    folder: Optional[str] = None,
) -> BatchResult:
    """
    Dispatch on `path`: a directory is expanded, a file becomes a one-item batch.

    Raises:
        InputPathError: `path` is neither a file nor a directory.
    """
    path = Path(path)
    if path.is_dir():
        return process_directory(pipeline, path, category, overrides, folder)
    if path.is_file():
        return process_batch(pipeline, [path], category, overrides, folder)
    raise InputPathError(f"Invalid input path: {path}")

"""
High-level media pipeline.

`MediaPipeline.process_image_bytes` is the main entry point used by both the
HTTP API and the batch runner. It keeps orchestration simple:
bytes in -> preset -> WebP transcode -> upload -> `UploadResult` out.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Optional

from .errors import ConfigurationError, ConversionError, PipelineError, UploadError
from .presets import MediaOverrides, default_folder, normalize_category, resolve_profile
from .storage import UploadDestination
from .transcoder import transcode
from .uploader import UploadOrchestrator, UploadResult

logger = logging.getLogger(__name__)


def generate_public_id(prefix: str) -> str:
    """`<prefix>-<epoch ms>-<random>`; unique enough for concurrent uploads."""
    return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 999_999_999)}"


class MediaPipeline:
    def __init__(self, orchestrator: UploadOrchestrator, root_folder: str = "media") -> None:
        self.orchestrator = orchestrator
        self.root_folder = root_folder.strip("/")

    def folder_for(self, category: Optional[str]) -> str:
        sub = default_folder(category)
        return f"{self.root_folder}/{sub}" if self.root_folder else sub

    def process_image_bytes(
        self,
        image_bytes: bytes,
        category: Optional[str] = "general",
        overrides: Optional[MediaOverrides] = None,
        folder: Optional[str] = None,
        public_id: Optional[str] = None,
        overwrite: bool = False,
    ) -> UploadResult:
        """
        Full pipeline from raw bytes to a stored WebP object.

        Raises:
            PipelineError: tagged with the failing stage (profile, conversion, upload).
            ConfigurationError: storage is not configured; not wrapped.
        """
        category = normalize_category(category)
        try:
            profile = resolve_profile(category, overrides)
        except ValueError as exc:
            raise PipelineError("profile", "ProfileError.InvalidOverride", str(exc), exc) from exc

        try:
            transcoded = transcode(image_bytes, profile)
        except ConversionError as exc:
            logger.warning("Conversion failed for %s upload: %s", category, exc)
            raise PipelineError("conversion", exc.reason, str(exc), exc) from exc

        destination = UploadDestination(
            folder=folder or self.folder_for(category),
            public_id=public_id or generate_public_id(category),
            format=transcoded.format,
            overwrite=overwrite,
        )
        try:
            return self.orchestrator.upload(transcoded.data, destination)
        except ConfigurationError:
            raise
        except UploadError as exc:
            logger.error("Upload failed for %s: %s", destination.full_public_id, exc)
            raise PipelineError("upload", exc.reason, str(exc), exc) from exc

    def remove(self, storage_key: str) -> bool:
        return self.orchestrator.remove(storage_key)

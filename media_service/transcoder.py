"""
Image decoding, resizing and WebP encoding.

`transcode` is pure CPU work: bytes + profile in, WebP bytes out. It holds no
shared state so concurrent pipeline runs can call it freely.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from .errors import ConversionError, CorruptInputError, UnsupportedFormatError
from .presets import ConversionProfile, resolve_profile

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "webp"
# libwebp "method" 0-6; 6 is the slowest and smallest.
WEBP_METHOD = 6

SUPPORTED_SOURCE_FORMATS = {"JPEG", "MPO", "PNG", "GIF", "BMP", "TIFF", "WEBP", "ICO"}
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp", ".ico")


@dataclass
class MediaAsset:
    data: bytes
    source_format: str
    width: int
    height: int


@dataclass
class TranscodedImage:
    data: bytes
    width: int
    height: int
    source_format: str
    source_width: int
    source_height: int
    original_size: int
    format: str = OUTPUT_FORMAT

    @property
    def compression_ratio(self) -> float:
        """Fraction of bytes saved; growth is reported as 0."""
        if self.original_size <= 0:
            return 0.0
        return max(0.0, (self.original_size - len(self.data)) / self.original_size)


def is_image_file(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def decode_image(data: bytes) -> Tuple[Image.Image, MediaAsset]:
    """
    Decode raw bytes into a fully loaded Pillow image.

    Raises:
        UnsupportedFormatError: the data is not a recognised raster format.
        CorruptInputError: the header parsed but pixel data could not be read.
    """
    if not data:
        raise UnsupportedFormatError("Empty image data")
    try:
        image = Image.open(BytesIO(data))
    except UnidentifiedImageError as exc:
        raise UnsupportedFormatError("Could not identify image format") from exc
    except Exception as exc:  # noqa: BLE001
        raise CorruptInputError(f"Could not read image header: {exc}") from exc

    source_format = image.format or "UNKNOWN"
    if source_format not in SUPPORTED_SOURCE_FORMATS:
        raise UnsupportedFormatError(f"Unsupported image format: {source_format}")

    try:
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise CorruptInputError(f"Image data is corrupt: {exc}") from exc

    width, height = image.size
    return image, MediaAsset(data=data, source_format=source_format, width=width, height=height)


def _scale_factor(src_w: int, src_h: int, profile: ConversionProfile) -> float:
    target_w, target_h = profile.target_width, profile.target_height
    if target_w and target_h:
        scale_x, scale_y = target_w / src_w, target_h / src_h
        if profile.fit in ("inside", "contain"):
            return min(scale_x, scale_y)
        return max(scale_x, scale_y)
    if target_w:
        return target_w / src_w
    return target_h / src_h


def compute_resize_dims(src_w: int, src_h: int, profile: ConversionProfile) -> Tuple[int, int]:
    """Dimensions to resample to before any crop/pad. Never larger than the source."""
    if not profile.resizes:
        return src_w, src_h
    if profile.fit == "fill" and profile.target_width and profile.target_height:
        return min(profile.target_width, src_w), min(profile.target_height, src_h)
    scale = _scale_factor(src_w, src_h, profile)
    if scale >= 1:
        return src_w, src_h
    return max(1, round(src_w * scale)), max(1, round(src_h * scale))


def _fit_image(image: Image.Image, profile: ConversionProfile) -> Image.Image:
    src_w, src_h = image.size
    new_w, new_h = compute_resize_dims(src_w, src_h, profile)
    if (new_w, new_h) == (src_w, src_h):
        return image

    resized = image.resize((new_w, new_h), Image.LANCZOS)
    target_w, target_h = profile.target_width, profile.target_height
    if not (target_w and target_h):
        return resized

    if profile.fit == "cover":
        left = (new_w - target_w) // 2
        top = (new_h - target_h) // 2
        return resized.crop((left, top, left + target_w, top + target_h))
    if profile.fit == "contain":
        canvas = Image.new("RGBA", (target_w, target_h), (0, 0, 0, 0))
        canvas.paste(_to_webp_mode(resized), ((target_w - new_w) // 2, (target_h - new_h) // 2))
        return canvas
    return resized


def _to_webp_mode(image: Image.Image) -> Image.Image:
    """WebP only takes RGB/RGBA; keep alpha when the source has any."""
    if image.mode in ("RGB", "RGBA"):
        return image
    if "A" in image.mode or "transparency" in image.info:
        return image.convert("RGBA")
    return image.convert("RGB")


def transcode(data: bytes, profile: ConversionProfile) -> TranscodedImage:
    """
    Decode `data`, resize according to `profile` and encode as WebP.

    Raises:
        UnsupportedFormatError, CorruptInputError: on undecodable input.
        ConversionError: when the encoder rejects the image.
    """
    image, asset = decode_image(data)
    logger.info(
        "Converting %s image (%dx%d) to WebP q=%d lossless=%s",
        asset.source_format,
        asset.width,
        asset.height,
        profile.quality,
        profile.lossless,
    )

    output_image = _to_webp_mode(_fit_image(image, profile))
    buffer = BytesIO()
    try:
        output_image.save(
            buffer,
            format="WEBP",
            quality=profile.quality,
            lossless=profile.lossless,
            method=WEBP_METHOD,
        )
    except Exception as exc:  # noqa: BLE001
        raise ConversionError(f"WebP encoding failed: {exc}") from exc

    result = TranscodedImage(
        data=buffer.getvalue(),
        width=output_image.width,
        height=output_image.height,
        source_format=asset.source_format,
        source_width=asset.width,
        source_height=asset.height,
        original_size=len(data),
    )
    logger.info(
        "Conversion complete: %.2fKB -> %.2fKB (%.2f%% smaller), %dx%d",
        result.original_size / 1024,
        len(result.data) / 1024,
        result.compression_ratio * 100,
        result.width,
        result.height,
    )
    return result


def transcode_file(
    input_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    profile: Optional[ConversionProfile] = None,
) -> Path:
    """Convert a file on disk to WebP, writing `<stem>.webp` next to it by default."""
    input_path = Path(input_path)
    if output_path is None:
        output_path = input_path.with_suffix(".webp")
    output_path = Path(output_path)
    profile = profile or resolve_profile("general")

    result = transcode(input_path.read_bytes(), profile)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.data)
    logger.info("WebP image saved to %s", output_path)
    return output_path


def transcode_batch_to_disk(
    input_paths: Iterable[Union[str, Path]],
    output_dir: Optional[Union[str, Path]] = None,
    profile: Optional[ConversionProfile] = None,
) -> List[Optional[Path]]:
    """Convert several files; failed items yield ``None`` in the result list."""
    paths = [Path(p) for p in input_paths]
    logger.info("Converting %d images to WebP", len(paths))

    results: List[Optional[Path]] = []
    for path in paths:
        target = Path(output_dir) / f"{path.stem}.webp" if output_dir else None
        try:
            results.append(transcode_file(path, target, profile))
        except (ConversionError, OSError) as exc:
            logger.error("Failed to convert %s: %s", path, exc)
            results.append(None)

    converted = sum(1 for r in results if r is not None)
    logger.info("Batch conversion complete: %d/%d images converted", converted, len(paths))
    return results

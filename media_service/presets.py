"""
Conversion presets per media category.

Each category maps to a fixed `ConversionProfile`. Explicit per-request
overrides replace preset fields one by one; unknown categories fall back to
``general`` so resolution never fails on the category alone.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Optional

logger = logging.getLogger(__name__)

FIT_MODES = ("cover", "contain", "fill", "inside", "outside")
DEFAULT_CATEGORY = "general"


@dataclass(frozen=True)
class ConversionProfile:
    quality: int = 80
    target_width: Optional[int] = None
    target_height: Optional[int] = None
    fit: str = "inside"
    lossless: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.quality <= 100:
            raise ValueError(f"quality must be within 0-100, got {self.quality}")
        for name in ("target_width", "target_height"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value}")
        if self.fit not in FIT_MODES:
            raise ValueError(f"fit must be one of {'|'.join(FIT_MODES)}, got {self.fit!r}")

    @property
    def resizes(self) -> bool:
        return bool(self.target_width or self.target_height)


@dataclass(frozen=True)
class MediaOverrides:
    """Caller-supplied values that take precedence over the category preset."""

    quality: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fit: Optional[str] = None
    lossless: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(
            value is None for value in (self.quality, self.width, self.height, self.fit, self.lossless)
        )


PRESETS = {
    "avatar": ConversionProfile(quality=85, target_width=500, target_height=500, fit="cover"),
    "event": ConversionProfile(quality=80, target_width=1200, target_height=800, fit="inside"),
    # Screenshots keep more detail so amounts and references stay legible.
    "payment": ConversionProfile(quality=90, target_width=1000, target_height=1000, fit="inside"),
    # Lossless so QR edges stay pixel-exact for scanners.
    "qrcode": ConversionProfile(
        quality=95, target_width=800, target_height=800, fit="inside", lossless=True
    ),
    "general": ConversionProfile(quality=80, fit="inside"),
}

CATEGORY_FOLDERS = {
    "avatar": "avatars",
    "event": "events",
    "payment": "payments",
    "qrcode": "qrcodes",
    "general": "uploads",
}


def normalize_category(category: Optional[str]) -> str:
    key = (category or DEFAULT_CATEGORY).strip().lower()
    if key not in PRESETS:
        logger.debug("Unknown media category %r, using %s preset", category, DEFAULT_CATEGORY)
        return DEFAULT_CATEGORY
    return key


def resolve_profile(category: Optional[str], overrides: Optional[MediaOverrides] = None) -> ConversionProfile:
    """
    Return the profile for `category` with `overrides` applied field-by-field.

    Raises:
        ValueError: when an override produces an invalid profile.
    """
    profile = PRESETS[normalize_category(category)]
    if overrides is None or overrides.is_empty():
        return profile

    changes = {}
    if overrides.quality is not None:
        changes["quality"] = overrides.quality
    if overrides.width is not None:
        changes["target_width"] = overrides.width
    if overrides.height is not None:
        changes["target_height"] = overrides.height
    if overrides.fit is not None:
        changes["fit"] = overrides.fit
    if overrides.lossless is not None:
        changes["lossless"] = overrides.lossless
    return replace(profile, **changes)


def default_folder(category: Optional[str]) -> str:
    return CATEGORY_FOLDERS[normalize_category(category)]

"""Stage descriptors for the transformation pipeline.

A request is turned into a tuple of these descriptors, ordered by
``STAGE_ORDER``. Absent operation groups simply have no descriptor; the
encode stage is always present.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

DEFAULT_QUALITY = 80
DEFAULT_FIT = "cover"
DEFAULT_WATERMARK_POSITION = "southeast"
DEFAULT_WATERMARK_FONT_SIZE = 28
DEFAULT_WATERMARK_OPACITY = 35


@dataclass(frozen=True)
class CropStage:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class ResizeStage:
    width: int
    height: int
    fit: str = DEFAULT_FIT


@dataclass(frozen=True)
class RotateStage:
    degrees: int  # clockwise


@dataclass(frozen=True)
class FlipStage:
    """Vertical flip (top to bottom)."""


@dataclass(frozen=True)
class MirrorStage:
    """Horizontal mirror (left to right)."""


@dataclass(frozen=True)
class FilterStage:
    grayscale: bool = False
    sepia: bool = False


@dataclass(frozen=True)
class EncodeStage:
    format: str | None  # None: fall back to the resource's original format
    quality: int = DEFAULT_QUALITY


@dataclass(frozen=True)
class WatermarkStage:
    text: str
    position: str = DEFAULT_WATERMARK_POSITION
    font_size: int = DEFAULT_WATERMARK_FONT_SIZE
    opacity: int = DEFAULT_WATERMARK_OPACITY


Stage = Union[
    CropStage,
    ResizeStage,
    RotateStage,
    FlipStage,
    MirrorStage,
    FilterStage,
    EncodeStage,
    WatermarkStage,
]

STAGE_ORDER: tuple[type, ...] = (
    CropStage,
    ResizeStage,
    RotateStage,
    FlipStage,
    MirrorStage,
    FilterStage,
    EncodeStage,
    WatermarkStage,
)

"""Fixed-order image transformation pipeline.

Stages always run crop -> resize -> rotate -> flip -> mirror -> filters ->
encode -> watermark, whatever order the request listed them in. The
watermark is composited onto the *encoded* output and re-encoded, so the
overlay goes through the same codec as the rest of the image.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError, features

from pixelforge.domain.entities.formats import (
    PIL_FORMATS,
    ensure_output_format,
    format_to_mime,
    normalize_format,
)
from pixelforge.domain.entities.stages import (
    CropStage,
    EncodeStage,
    FilterStage,
    FlipStage,
    MirrorStage,
    ResizeStage,
    RotateStage,
    Stage,
    WatermarkStage,
)
from pixelforge.domain.errors import PipelineError, UnsupportedFormatError
from pixelforge.domain.services.processing_service import ProcessingService
from pixelforge.domain.services.spec_normalizer import build_stages
from pixelforge.domain.services.text_renderer import PillowTextRenderer, TextRenderer, TextStyle

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_FORMAT = "jpeg"
PNG_COMPRESSION_LEVEL = 9


def _transparent(mode: str) -> int | tuple[int, ...]:
    # background for padding and rotated corners: clear when there is alpha, black otherwise
    if mode == "RGBA":
        return (0, 0, 0, 0)
    if mode == "LA":
        return (0, 0)
    return 0


@dataclass(frozen=True)
class PipelineResult:
    data: bytes
    width: int
    height: int
    content_type: str
    format: str

    @property
    def size(self) -> int:
        return len(self.data)


class PipelineExecutor:
    def __init__(
        self,
        processing: ProcessingService | None = None,
        text_renderer: TextRenderer | None = None,
    ) -> None:
        self.processing = processing or ProcessingService()
        self.text_renderer = text_renderer or PillowTextRenderer()

    def execute(
        self,
        source: bytes,
        canonical: Mapping[str, Any],
        fallback_format: str | None = None,
    ) -> PipelineResult:
        """Run every stage described by ``canonical`` against ``source`` bytes."""
        return self.run_stages(source, build_stages(canonical), fallback_format)

    def run_stages(
        self,
        source: bytes,
        stages: Iterable[Stage],
        fallback_format: str | None = None,
    ) -> PipelineResult:
        img = self.decode(source)
        encoded: tuple[bytes, str, int] | None = None
        for stage in stages:
            if isinstance(stage, CropStage):
                img = self.crop(img, stage)
            elif isinstance(stage, ResizeStage):
                img = self.resize(img, stage)
            elif isinstance(stage, RotateStage):
                img = self.rotate(img, stage.degrees)
            elif isinstance(stage, FlipStage):
                img = ImageOps.flip(img)
            elif isinstance(stage, MirrorStage):
                img = ImageOps.mirror(img)
            elif isinstance(stage, FilterStage):
                img = self.apply_filters(img, stage)
            elif isinstance(stage, EncodeStage):
                fmt = self._target_format(stage.format, fallback_format)
                quality = min(max(stage.quality, 1), 100)
                encoded = (self.encode(img, fmt, quality), fmt, quality)
            elif isinstance(stage, WatermarkStage):
                if encoded is None:
                    raise PipelineError("watermark requires an encoded image")
                data, fmt, quality = encoded
                img = self.watermark(self.decode(data), stage)
                encoded = (self.encode(img, fmt, quality), fmt, quality)
            else:  # pragma: no cover - closed set
                raise PipelineError(f"unknown stage {type(stage).__name__}")
        if encoded is None:
            raise PipelineError("pipeline has no encode stage")
        data, fmt, _ = encoded
        return PipelineResult(
            data=data,
            width=img.width,
            height=img.height,
            content_type=format_to_mime(fmt),
            format=fmt,
        )

    @staticmethod
    def probe(data: bytes) -> tuple[str | None, int, int]:
        """Normalized format and dimensions of an encoded image, without decoding pixels."""
        try:
            with Image.open(BytesIO(data)) as img:
                return normalize_format(img.format), img.width, img.height
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise PipelineError(f"unsupported or corrupt source image: {exc}") from exc

    # --------- stages ---------

    @staticmethod
    def decode(data: bytes) -> Image.Image:
        try:
            img = Image.open(BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise PipelineError(f"unsupported or corrupt source image: {exc}") from exc
        if img.mode not in ("RGB", "RGBA", "L", "LA"):
            img = img.convert("RGBA" if "transparency" in img.info or "A" in img.mode else "RGB")
        return img

    @staticmethod
    def crop(img: Image.Image, stage: CropStage) -> Image.Image:
        if stage.x + stage.width > img.width or stage.y + stage.height > img.height:
            raise PipelineError("crop out of bounds")
        return img.crop((stage.x, stage.y, stage.x + stage.width, stage.y + stage.height))

    def resize(self, img: Image.Image, stage: ResizeStage) -> Image.Image:
        target = (stage.width, stage.height)
        if stage.fit == "cover":
            return ImageOps.fit(img, target, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
        if stage.fit == "contain":
            return ImageOps.pad(
                img,
                target,
                method=Image.Resampling.LANCZOS,
                color=_transparent(img.mode),
                centering=(0.5, 0.5),
            )
        try:
            size = self.processing.fit_dimensions(img.width, img.height, *target, stage.fit)
        except ValueError as exc:
            raise PipelineError(str(exc)) from exc
        return img.resize(size, Image.Resampling.LANCZOS)

    @staticmethod
    def rotate(img: Image.Image, degrees: int) -> Image.Image:
        angle = degrees % 360
        if angle == 0:
            return img
        # exact transposes for right angles; PIL rotates counter-clockwise
        right_angles = {
            90: Image.Transpose.ROTATE_270,
            180: Image.Transpose.ROTATE_180,
            270: Image.Transpose.ROTATE_90,
        }
        if angle in right_angles:
            return img.transpose(right_angles[angle])
        return img.rotate(
            -angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=_transparent(img.mode)
        )

    def apply_filters(self, img: Image.Image, stage: FilterStage) -> Image.Image:
        alpha = img.getchannel("A") if img.mode in ("RGBA", "LA") else None
        rgb = np.asarray(img.convert("RGB")).astype(np.float32) / 255.0
        if stage.grayscale:
            rgb = self.processing.grayscale(rgb)
        if stage.sepia:
            rgb = self.processing.sepia(rgb)
        out = Image.fromarray(np.rint(rgb * 255.0).astype(np.uint8))
        if stage.grayscale and not stage.sepia:
            out = out.convert("L")
        if alpha is not None:
            out = out.convert("LA" if out.mode == "L" else "RGBA")
            out.putalpha(alpha)
        return out

    def encode(self, img: Image.Image, fmt: str, quality: int) -> bytes:
        pil_format = PIL_FORMATS[fmt]
        if fmt == "avif" and not features.check("avif"):
            raise PipelineError("codec failure: avif encoder is not available")
        buf = BytesIO()
        try:
            if fmt == "jpeg":
                self._flatten(img).save(buf, format=pil_format, quality=quality, optimize=True)
            elif fmt == "png":
                img.save(buf, format=pil_format, compress_level=PNG_COMPRESSION_LEVEL)
            else:
                img.save(buf, format=pil_format, quality=quality)
        except (OSError, ValueError, KeyError) as exc:
            raise PipelineError(f"codec failure encoding {fmt}: {exc}") from exc
        return buf.getvalue()

    def watermark(self, img: Image.Image, stage: WatermarkStage) -> Image.Image:
        box_w, box_h, font_size = self.processing.watermark_box(
            stage.text, stage.font_size, img.width, img.height
        )
        overlay_png = self.text_renderer.render(
            stage.text, (box_w, box_h), TextStyle(font_size=font_size, opacity=stage.opacity)
        )
        overlay = Image.open(BytesIO(overlay_png)).convert("RGBA")
        offset = self.processing.gravity_offset(stage.position, overlay.size, img.size)
        had_alpha = img.mode in ("RGBA", "LA")
        base = img.convert("RGBA")
        base.alpha_composite(overlay, dest=offset)
        return base if had_alpha else base.convert("RGB")

    # --------- helpers ---------

    @staticmethod
    def _flatten(img: Image.Image) -> Image.Image:
        if img.mode in ("RGB", "L"):
            return img
        background = Image.new("RGB", img.size, (0, 0, 0))
        rgba = img.convert("RGBA")
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background

    @staticmethod
    def _target_format(requested: str | None, fallback: str | None) -> str:
        try:
            if requested:
                return ensure_output_format(requested)
            return normalize_format(fallback) or DEFAULT_FALLBACK_FORMAT
        except UnsupportedFormatError as exc:
            raise PipelineError(str(exc)) from exc

"""Validation, canonicalization and hashing of transformation requests.

The content hash is the cache key for stored variants, so two requests that
mean the same thing must hash the same: absent (``None``) fields are stripped
and keys are sorted at every nesting level before serialization.
"""
from __future__ import annotations

import hashlib
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pixelforge.domain.entities.formats import SUPPORTED_IMAGE_FORMATS
from pixelforge.domain.entities.stages import (
    DEFAULT_FIT,
    DEFAULT_QUALITY,
    DEFAULT_WATERMARK_FONT_SIZE,
    DEFAULT_WATERMARK_OPACITY,
    DEFAULT_WATERMARK_POSITION,
    STAGE_ORDER,
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
from pixelforge.domain.errors import InvalidSpecification

# 96 bits. Collisions only matter between variants of the same resource.
HASH_LENGTH = 24

FIT_MODES = ("cover", "contain", "fill", "inside", "outside")
WATERMARK_POSITIONS = (
    "northwest",
    "north",
    "northeast",
    "west",
    "center",
    "east",
    "southwest",
    "south",
    "southeast",
)


@dataclass(frozen=True)
class NormalizedSpec:
    canonical: dict[str, Any]
    hash: str
    stages: tuple[Stage, ...]

    def serialize(self) -> str:
        return canonical_json(self.canonical)


def strip_absent(value: Any) -> Any:
    """Drop ``None`` entries from mappings, recursively. List order is kept."""
    if isinstance(value, Mapping):
        return {str(k): strip_absent(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [strip_absent(item) for item in value]
    return value


def sort_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: sort_keys(value[k]) for k in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [sort_keys(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(
        sort_keys(strip_absent(value)),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def content_hash(value: Any) -> str:
    digest = hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()
    return digest[:HASH_LENGTH]


# --------- field validators ---------


def _as_int(value: Any) -> int | None:
    # JSON clients may send 90.0 for 90; fold it so both hash the same
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _int(path: str, value: Any, minimum: int | None = None, maximum: int | None = None) -> int:
    number = _as_int(value)
    if number is None:
        raise InvalidSpecification(path, "must be an integer")
    if minimum is not None and number < minimum:
        raise InvalidSpecification(path, f"must be >= {minimum}")
    if maximum is not None and number > maximum:
        raise InvalidSpecification(path, f"must be <= {maximum}")
    return number


def _bool(path: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidSpecification(path, "must be a boolean")
    return value


def _choice(path: str, value: Any, choices: tuple[str, ...]) -> str:
    if not isinstance(value, str) or value not in choices:
        raise InvalidSpecification(path, f"must be one of {', '.join(choices)}")
    return value


def _group(
    path: str,
    value: Any,
    required: tuple[str, ...],
    optional: tuple[str, ...] = (),
) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidSpecification(path, "must be an object")
    for key in value:
        if key not in required and key not in optional:
            raise InvalidSpecification(f"{path}.{key}", "is not a supported field")
    for key in required:
        if key not in value:
            raise InvalidSpecification(f"{path}.{key}", "is required")
    return dict(value)


def _validate_resize(value: Any) -> dict[str, Any]:
    group = _group("resize", value, ("width", "height"), ("fit",))
    out = {
        "width": _int("resize.width", group["width"], minimum=1),
        "height": _int("resize.height", group["height"], minimum=1),
    }
    if "fit" in group:
        out["fit"] = _choice("resize.fit", group["fit"], FIT_MODES)
    return out


def _validate_crop(value: Any) -> dict[str, Any]:
    group = _group("crop", value, ("width", "height", "x", "y"))
    return {
        "width": _int("crop.width", group["width"], minimum=1),
        "height": _int("crop.height", group["height"], minimum=1),
        "x": _int("crop.x", group["x"], minimum=0),
        "y": _int("crop.y", group["y"], minimum=0),
    }


def _validate_filters(value: Any) -> dict[str, Any]:
    group = _group("filters", value, (), ("grayscale", "sepia"))
    return {key: _bool(f"filters.{key}", flag) for key, flag in group.items()}


def _validate_compress(value: Any) -> dict[str, Any]:
    group = _group("compress", value, ("quality",))
    return {"quality": _int("compress.quality", group["quality"], minimum=1, maximum=100)}


def _validate_watermark(value: Any) -> dict[str, Any]:
    group = _group("watermark", value, ("text",), ("position", "fontSize", "opacity"))
    text = group["text"]
    if not isinstance(text, str) or not text:
        raise InvalidSpecification("watermark.text", "must be a non-empty string")
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidSpecification("watermark.text", "must be valid unicode text") from exc
    out: dict[str, Any] = {"text": text}
    if "position" in group:
        out["position"] = _choice("watermark.position", group["position"], WATERMARK_POSITIONS)
    if "fontSize" in group:
        out["fontSize"] = _int("watermark.fontSize", group["fontSize"], minimum=12, maximum=96)
    if "opacity" in group:
        out["opacity"] = _int("watermark.opacity", group["opacity"], minimum=10, maximum=100)
    return out


_VALIDATORS: dict[str, Callable[[Any], Any]] = {
    "resize": _validate_resize,
    "crop": _validate_crop,
    "rotate": lambda v: _int("rotate", v),
    "flip": lambda v: _bool("flip", v),
    "mirror": lambda v: _bool("mirror", v),
    "filters": _validate_filters,
    "compress": _validate_compress,
    "format": lambda v: _choice("format", v, SUPPORTED_IMAGE_FORMATS),
    "watermark": _validate_watermark,
}


def validate(raw: Any) -> dict[str, Any]:
    """Validate ``raw`` and return it with absent fields stripped and keys sorted."""
    if not isinstance(raw, Mapping):
        raise InvalidSpecification("transformations", "must be an object")
    present = strip_absent(raw)
    if not present:
        raise InvalidSpecification("transformations", "at least one transformation is required")
    validated: dict[str, Any] = {}
    for name, value in present.items():
        validator = _VALIDATORS.get(name)
        if validator is None:
            raise InvalidSpecification(name, "is not a supported transformation")
        validated[name] = validator(value)
    return sort_keys(validated)


def build_stages(canonical: Mapping[str, Any]) -> tuple[Stage, ...]:
    """Translate a validated spec into stage descriptors in pipeline order."""
    stages: list[Stage] = []
    if "crop" in canonical:
        c = canonical["crop"]
        stages.append(CropStage(x=c["x"], y=c["y"], width=c["width"], height=c["height"]))
    if "resize" in canonical:
        r = canonical["resize"]
        stages.append(ResizeStage(width=r["width"], height=r["height"], fit=r.get("fit", DEFAULT_FIT)))
    if "rotate" in canonical:
        stages.append(RotateStage(degrees=canonical["rotate"]))
    if canonical.get("flip"):
        stages.append(FlipStage())
    if canonical.get("mirror"):
        stages.append(MirrorStage())
    filters = canonical.get("filters") or {}
    if filters.get("grayscale") or filters.get("sepia"):
        stages.append(
            FilterStage(
                grayscale=bool(filters.get("grayscale")),
                sepia=bool(filters.get("sepia")),
            )
        )
    quality = canonical.get("compress", {}).get("quality", DEFAULT_QUALITY)
    stages.append(EncodeStage(format=canonical.get("format"), quality=quality))
    if "watermark" in canonical:
        w = canonical["watermark"]
        stages.append(
            WatermarkStage(
                text=w["text"],
                position=w.get("position", DEFAULT_WATERMARK_POSITION),
                font_size=w.get("fontSize", DEFAULT_WATERMARK_FONT_SIZE),
                opacity=w.get("opacity", DEFAULT_WATERMARK_OPACITY),
            )
        )
    stages.sort(key=lambda s: STAGE_ORDER.index(type(s)))
    return tuple(stages)


def normalize(raw: Any) -> NormalizedSpec:
    canonical = validate(raw)
    return NormalizedSpec(
        canonical=canonical,
        hash=content_hash(canonical),
        stages=build_stages(canonical),
    )

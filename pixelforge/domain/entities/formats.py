from __future__ import annotations

from pixelforge.domain.errors import UnsupportedFormatError

SUPPORTED_IMAGE_FORMATS: tuple[str, ...] = ("jpeg", "jpg", "png", "webp", "avif")

_MIME_BY_FORMAT = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
}

_FORMAT_BY_MIME = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
    "image/avif": "avif",
}

# Pillow plugin names for each normalized format
PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
}


def normalize_format(fmt: str | None) -> str | None:
    """Lower-case ``fmt`` and fold ``jpg`` into ``jpeg``; ``None`` when unsupported."""
    if not fmt:
        return None
    normalized = fmt.lower()
    if normalized in ("jpg", "jpeg", "mpo"):
        return "jpeg"
    return normalized if normalized in _MIME_BY_FORMAT else None


def ensure_output_format(fmt: str) -> str:
    normalized = normalize_format(fmt)
    if normalized is None:
        raise UnsupportedFormatError(f"Unsupported output format: {fmt}")
    return normalized


def format_to_mime(fmt: str) -> str:
    return _MIME_BY_FORMAT.get(normalize_format(fmt) or "", "application/octet-stream")


def mime_to_format(mime_type: str | None) -> str | None:
    if not mime_type:
        return None
    return _FORMAT_BY_MIME.get(mime_type.lower())


def format_from_filename(file_name: str | None) -> str | None:
    if not file_name or "." not in file_name:
        return None
    return normalize_format(file_name.rsplit(".", 1)[-1])


def storage_extension(fmt: str) -> str:
    return "jpeg" if fmt == "jpg" else fmt

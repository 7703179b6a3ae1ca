from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

FONT_CANDIDATES = ("DejaVuSans-Bold.ttf", "Arial Bold.ttf", "arialbd.ttf")


@dataclass(frozen=True)
class TextStyle:
    font_size: int
    opacity: int  # percent, 10..100
    fill: tuple[int, int, int] = (255, 255, 255)
    left: int = 8


class TextRenderer(Protocol):
    def render(self, text: str, box: tuple[int, int], style: TextStyle) -> bytes:
        """Return a PNG (RGBA) of exactly ``box`` size with ``text`` drawn on it."""
        ...


@lru_cache(maxsize=32)
def _load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for name in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    # bundled fallback, needs Pillow >= 10.1
    return ImageFont.load_default(size=size)


class PillowTextRenderer:
    """Rasterizes a single line of semi-transparent text with Pillow."""

    def render(self, text: str, box: tuple[int, int], style: TextStyle) -> bytes:
        width, height = box
        overlay = Image.new("RGBA", (max(1, width), max(1, height)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        alpha = int(round(255 * style.opacity / 100))
        baseline = max(style.font_size, 12)
        draw.text(
            (style.left, baseline),
            text,
            font=_load_font(style.font_size),
            fill=(*style.fill, alpha),
            anchor="ls",
        )
        buf = BytesIO()
        overlay.save(buf, format="PNG")
        return buf.getvalue()

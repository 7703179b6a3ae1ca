from __future__ import annotations

import math

import numpy as np

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)

SEPIA_SATURATION = 0.5
SEPIA_BRIGHTNESS = 1.05
SEPIA_TINT = (112, 66, 20)


class ProcessingService:
    """Pure NumPy colour math and geometry helpers for the pipeline.

    Colour inputs and outputs are float32 arrays normalized to [0, 1] with
    shape (H, W, 3). Alpha is handled by the caller and never passes through here.
    """

    # Luminosity: 0.299*R + 0.587*G + 0.114*B
    @staticmethod
    def luminance(matrix: np.ndarray) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if mat.ndim == 3 and mat.shape[2] >= 3:
            return np.dot(mat[..., :3], LUMA_WEIGHTS).astype(np.float32)
        return mat

    # Grayscale keeps three channels so later stages can tint it
    @staticmethod
    def grayscale(matrix: np.ndarray) -> np.ndarray:
        y = ProcessingService.luminance(matrix)
        return np.repeat(y[..., None], 3, axis=2).astype(np.float32)

    # Modulate: scale brightness, then pull each pixel toward its luma by `saturation`
    @staticmethod
    def modulate(matrix: np.ndarray, brightness: float = 1.0, saturation: float = 1.0) -> np.ndarray:
        mat = np.clip(matrix.astype(np.float32) * float(brightness), 0.0, 1.0)
        y = ProcessingService.luminance(mat)[..., None]
        out = y + (mat - y) * float(saturation)
        return np.clip(out, 0.0, 1.0).astype(np.float32)

    # Tint: replace chroma with the tint colour's chroma, keep per-pixel luma.
    # out = Y + (tint - Y_tint)
    @staticmethod
    def tint(matrix: np.ndarray, rgb: tuple[int, int, int]) -> np.ndarray:
        tint = np.array(rgb, dtype=np.float32) / 255.0
        tint_chroma = tint - float(np.dot(tint, LUMA_WEIGHTS))
        y = ProcessingService.luminance(matrix)[..., None]
        return np.clip(y + tint_chroma, 0.0, 1.0).astype(np.float32)

    @staticmethod
    def sepia(matrix: np.ndarray) -> np.ndarray:
        toned = ProcessingService.modulate(
            matrix, brightness=SEPIA_BRIGHTNESS, saturation=SEPIA_SATURATION
        )
        return ProcessingService.tint(toned, SEPIA_TINT)

    # --------- geometry ---------

    # Target size for a resize. cover/contain/fill always land on the exact box
    # (cover and contain crop or pad afterwards); inside/outside keep aspect.
    @staticmethod
    def fit_dimensions(
        src_w: int, src_h: int, target_w: int, target_h: int, fit: str
    ) -> tuple[int, int]:
        if fit == "fill":
            return target_w, target_h
        scale_x = target_w / src_w
        scale_y = target_h / src_h
        if fit in ("cover", "outside"):
            scale = max(scale_x, scale_y)
        elif fit in ("contain", "inside"):
            scale = min(scale_x, scale_y)
        else:
            raise ValueError(f"Unsupported fit mode: {fit}")
        w = max(1, int(round(src_w * scale)))
        h = max(1, int(round(src_h * scale)))
        # rounding must never leave a gap on the bounding side
        if fit in ("cover", "outside"):
            w, h = max(w, target_w), max(h, target_h)
        else:
            w, h = min(w, target_w), min(h, target_h)
        return w, h

    # Watermark box: font capped at 35% of the output height, width estimated
    # from character count, both bounded by the output image.
    @staticmethod
    def watermark_box(
        text: str, font_size: int, image_w: int, image_h: int
    ) -> tuple[int, int, int]:
        safe_w = max(1, image_w)
        safe_h = max(1, image_h)
        effective = min(font_size, max(8, int(math.floor(safe_h * 0.35))))
        estimated_w = max(1, int(math.ceil(len(text) * effective * 0.65)) + 20)
        box_w = min(estimated_w, safe_w)
        box_h = min(max(effective + 16, 24), safe_h)
        return box_w, box_h, effective

    # Top-left offset that anchors a box at a compass position inside the canvas
    @staticmethod
    def gravity_offset(
        position: str, box: tuple[int, int], canvas: tuple[int, int]
    ) -> tuple[int, int]:
        bw, bh = box
        cw, ch = canvas
        horizontal = {"west": 0, "center": (cw - bw) // 2, "east": cw - bw}
        vertical = {"north": 0, "center": (ch - bh) // 2, "south": ch - bh}
        if position == "center":
            return horizontal["center"], vertical["center"]
        v_key = next((v for v in ("north", "south") if position.startswith(v)), "center")
        h_key = next((h for h in ("west", "east") if position.endswith(h)), "center")
        return max(0, horizontal[h_key]), max(0, vertical[v_key])

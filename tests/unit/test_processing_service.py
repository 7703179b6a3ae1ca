import numpy as np
import pytest

from pixelforge.domain.services.processing_service import ProcessingService as PS


def test_luminance_weights():
    img = np.array([[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]], dtype=np.float32)
    y = PS.luminance(img)
    assert y.dtype == np.float32
    assert np.allclose(y[0], [0.299, 0.587, 0.114], atol=1e-6)


def test_grayscale_keeps_three_equal_channels():
    img = np.random.default_rng(0).random((4, 5, 3), dtype=np.float32)
    out = PS.grayscale(img)
    assert out.shape == img.shape
    assert np.allclose(out[..., 0], out[..., 1])
    assert np.allclose(out[..., 1], out[..., 2])


def test_modulate_clips_and_desaturates():
    img = np.array([[[0.9, 0.1, 0.1]]], dtype=np.float32)
    brighter = PS.modulate(img, brightness=2.0)
    assert brighter.max() <= 1.0
    flat = PS.modulate(img, saturation=0.0)
    assert np.allclose(flat[0, 0], flat[0, 0, 0])


def test_tint_preserves_luma_of_neutral_pixels():
    gray = np.full((2, 2, 3), 0.5, dtype=np.float32)
    out = PS.tint(gray, (112, 66, 20))
    assert np.allclose(PS.luminance(out), 0.5, atol=1e-3)
    assert out[0, 0, 0] > out[0, 0, 1] > out[0, 0, 2]


def test_sepia_stays_in_range():
    img = np.random.default_rng(1).random((3, 3, 3), dtype=np.float32)
    out = PS.sepia(img)
    assert out.min() >= 0.0 and out.max() <= 1.0


@pytest.mark.parametrize(
    "fit, expected",
    [
        ("fill", (300, 300)),
        ("inside", (300, 150)),
        ("contain", (300, 150)),
        ("outside", (600, 300)),
        ("cover", (600, 300)),
    ],
)
def test_fit_dimensions(fit, expected):
    assert PS.fit_dimensions(800, 400, 300, 300, fit) == expected


def test_fit_dimensions_unknown_mode():
    with pytest.raises(ValueError):
        PS.fit_dimensions(10, 10, 5, 5, "stretch")


def test_watermark_box_caps_font_by_height():
    box_w, box_h, font = PS.watermark_box("Hi", 28, 400, 40)
    assert font == 14  # floor(40 * 0.35)
    assert box_h == min(max(font + 16, 24), 40)
    assert box_w == 39  # ceil(2 * 14 * 0.65) + 20


def test_watermark_box_never_exceeds_image():
    box_w, box_h, font = PS.watermark_box("x" * 200, 96, 100, 10)
    assert font == 8
    assert box_w == 100
    assert box_h == 10


@pytest.mark.parametrize(
    "position, expected",
    [
        ("northwest", (0, 0)),
        ("north", (40, 0)),
        ("northeast", (80, 0)),
        ("west", (0, 40)),
        ("center", (40, 40)),
        ("east", (80, 40)),
        ("southwest", (0, 80)),
        ("south", (40, 80)),
        ("southeast", (80, 80)),
    ],
)
def test_gravity_offset(position, expected):
    assert PS.gravity_offset(position, (20, 20), (100, 100)) == expected

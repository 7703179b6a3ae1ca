import io

import numpy as np
import pytest
from PIL import Image

from pixelforge.domain.entities.stages import EncodeStage, RotateStage, WatermarkStage
from pixelforge.domain.errors import PipelineError
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.domain.services.spec_normalizer import normalize


@pytest.fixture()
def pipeline():
    return PipelineExecutor()


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_crop_then_cover_resize(pipeline, image_bytes):
    source = image_bytes(1000, 800)
    spec = normalize(
        {
            "crop": {"x": 100, "y": 100, "width": 500, "height": 400},
            "resize": {"width": 250, "height": 200, "fit": "cover"},
        }
    )
    result = pipeline.execute(source, spec.canonical, "png")
    assert (result.width, result.height) == (250, 200)
    assert _open(result.data).size == (250, 200)


def test_crop_out_of_bounds(pipeline, image_bytes):
    source = image_bytes(1000, 800)
    spec = normalize({"crop": {"x": 900, "y": 700, "width": 500, "height": 400}})
    with pytest.raises(PipelineError, match="out of bounds"):
        pipeline.execute(source, spec.canonical, "png")


@pytest.mark.parametrize(
    "fit, expected",
    [
        ("cover", (100, 100)),
        ("contain", (100, 100)),
        ("fill", (100, 100)),
        ("inside", (100, 50)),
        ("outside", (200, 100)),
    ],
)
def test_resize_fit_modes(pipeline, image_bytes, fit, expected):
    source = image_bytes(400, 200)
    spec = normalize({"resize": {"width": 100, "height": 100, "fit": fit}})
    result = pipeline.execute(source, spec.canonical, "png")
    assert (result.width, result.height) == expected


def test_rotate_right_angle_swaps_dimensions(pipeline, image_bytes):
    result = pipeline.execute(image_bytes(60, 30), normalize({"rotate": 90}).canonical, "png")
    assert (result.width, result.height) == (30, 60)


def test_rotate_is_clockwise(pipeline, image_bytes):
    # red marker in the top-left corner ends up top-right after 90 degrees clockwise
    img = Image.new("RGB", (4, 2), (0, 0, 0))
    img.putpixel((0, 0), (255, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    result = pipeline.run_stages(buf.getvalue(), (RotateStage(90), EncodeStage("png", 80)))
    out = _open(result.data).convert("RGB")
    assert out.size == (2, 4)
    assert out.getpixel((1, 0)) == (255, 0, 0)


def test_arbitrary_rotation_expands_canvas(pipeline, image_bytes):
    result = pipeline.execute(image_bytes(100, 100), normalize({"rotate": 45}).canonical, "png")
    assert result.width > 100 and result.height > 100


def test_flip_and_mirror(pipeline):
    img = Image.new("RGB", (2, 2), (0, 0, 0))
    img.putpixel((0, 0), (0, 255, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    flipped = _open(pipeline.execute(buf.getvalue(), {"flip": True}, "png").data).convert("RGB")
    mirrored = _open(pipeline.execute(buf.getvalue(), {"mirror": True}, "png").data).convert("RGB")
    assert flipped.getpixel((0, 1)) == (0, 255, 0)
    assert mirrored.getpixel((1, 0)) == (0, 255, 0)


def test_grayscale_output_is_neutral(pipeline, image_bytes):
    result = pipeline.execute(image_bytes(32, 32), {"filters": {"grayscale": True}}, "png")
    arr = np.asarray(_open(result.data).convert("RGB")).astype(int)
    assert np.abs(arr[..., 0] - arr[..., 1]).max() <= 1
    assert np.abs(arr[..., 1] - arr[..., 2]).max() <= 1


def test_sepia_is_warm(pipeline, image_bytes):
    source = image_bytes(16, 16, color=(128, 128, 128))
    result = pipeline.execute(source, {"filters": {"sepia": True}}, "png")
    r, g, b = _open(result.data).convert("RGB").getpixel((8, 8))
    assert r > g > b


@pytest.mark.parametrize(
    "fmt, content_type, pil_format",
    [("jpeg", "image/jpeg", "JPEG"), ("png", "image/png", "PNG"), ("webp", "image/webp", "WEBP")],
)
def test_output_format_and_content_type(pipeline, image_bytes, fmt, content_type, pil_format):
    result = pipeline.execute(image_bytes(20, 20), {"format": fmt}, "png")
    assert result.format == fmt
    assert result.content_type == content_type
    assert _open(result.data).format == pil_format


def test_format_falls_back_to_source_format(pipeline, image_bytes):
    result = pipeline.execute(image_bytes(20, 20, fmt="WEBP"), {"flip": True}, "webp")
    assert result.content_type == "image/webp"


def test_jpeg_drops_alpha(pipeline, image_bytes):
    source = image_bytes(20, 20, mode="RGBA", color=(255, 0, 0, 128))
    result = pipeline.execute(source, {"format": "jpeg"}, "png")
    assert _open(result.data).mode == "RGB"


def test_quality_changes_lossy_output(pipeline, image_bytes):
    source = image_bytes(200, 200)
    low = pipeline.execute(source, {"format": "jpeg", "compress": {"quality": 10}}, "png")
    high = pipeline.execute(source, {"format": "jpeg", "compress": {"quality": 95}}, "png")
    assert low.size < high.size


def test_same_input_same_bytes(pipeline, image_bytes):
    source = image_bytes(120, 90)
    canonical = normalize(
        {"resize": {"width": 60, "height": 60}, "filters": {"sepia": True}, "format": "png"}
    ).canonical
    assert pipeline.execute(source, canonical, "png").data == pipeline.execute(source, canonical, "png").data


def test_watermark_keeps_dimensions_and_changes_pixels(pipeline, image_bytes):
    source = image_bytes(200, 120, color=(0, 0, 0))
    plain = pipeline.execute(source, {"format": "png"}, "png")
    marked = pipeline.execute(
        source,
        {"format": "png", "watermark": {"text": "PixelForge", "opacity": 100}},
        "png",
    )
    assert (marked.width, marked.height) == (200, 120)
    assert marked.data != plain.data
    # default position is southeast: the top-left corner stays untouched
    assert _open(marked.data).convert("RGB").getpixel((0, 0)) == (0, 0, 0)


def test_watermark_on_tiny_image(pipeline, image_bytes):
    result = pipeline.execute(image_bytes(10, 10), {"watermark": {"text": "a long watermark"}}, "png")
    assert (result.width, result.height) == (10, 10)


def test_watermark_without_encode_is_rejected(pipeline, image_bytes):
    with pytest.raises(PipelineError):
        pipeline.run_stages(image_bytes(10, 10), (WatermarkStage("x", "center", 20, 50),))


def test_corrupt_source(pipeline):
    with pytest.raises(PipelineError):
        pipeline.execute(b"definitely not an image", {"flip": True}, "png")


def test_probe(pipeline, image_bytes):
    assert pipeline.probe(image_bytes(30, 20, fmt="JPEG")) == ("jpeg", 30, 20)
    with pytest.raises(PipelineError):
        pipeline.probe(b"nope")

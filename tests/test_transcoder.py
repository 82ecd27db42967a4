"""Tests for the Pillow transcoder."""

import io

import pytest
from PIL import Image

from errors import DecodeError, SettingsError, TranscodeError
from transcoder import (
    OUTPUT_FORMATS,
    PillowTranscoder,
    TranscodeResult,
    clamp_to_native,
    extension_for_mime,
    fit_within,
)
from conftest import make_image


def _decoded(result: TranscodeResult) -> Image.Image:
    return Image.open(io.BytesIO(result.data))


class TestClamp:
    def test_never_exceeds_native(self):
        assert clamp_to_native(99999, 99999, 640, 480) == (640, 480)

    def test_per_component(self):
        assert clamp_to_native(300, 900, 640, 480) == (300, 480)

    def test_at_least_one_pixel(self):
        assert clamp_to_native(0, 0, 640, 480) == (1, 1)

    def test_fit_within_keeps_aspect_ratio(self):
        assert fit_within(17000, 20, 16383) == (16383, 19)
        assert fit_within(100, 40000, 16383) == (41, 16383)
        assert fit_within(800, 600, 16383) == (800, 600)


class TestPillowTranscoder:
    def test_downscales_to_target(self):
        result = PillowTranscoder("webp").transcode(make_image(400, 300), 200, 150, 0.8)
        assert result.mime_type == "image/webp"
        assert result.extension == "webp"
        assert (result.width, result.height) == (200, 150)
        image = _decoded(result)
        assert image.format == "WEBP"
        assert image.size == (200, 150)

    def test_no_upscaling(self):
        result = PillowTranscoder("webp").transcode(make_image(120, 80), 99999, 99999, 0.8)
        assert _decoded(result).size == (120, 80)

    def test_box_is_clamped_per_component(self):
        result = PillowTranscoder("png").transcode(make_image(100, 100), 50, 400, 0.8)
        assert _decoded(result).size == (50, 100)

    def test_jpeg_flattens_alpha(self):
        source = make_image(64, 64, mode="RGBA")
        result = PillowTranscoder("jpeg").transcode(source, 64, 64, 0.7)
        image = _decoded(result)
        assert result.mime_type == "image/jpeg"
        assert result.extension == "jpeg"
        assert image.format == "JPEG"
        assert image.mode == "RGB"

    def test_webp_keeps_alpha(self):
        source = make_image(64, 64, mode="RGBA")
        image = _decoded(PillowTranscoder("webp").transcode(source, 32, 32, 0.8))
        assert image.mode == "RGBA"

    def test_palette_image(self):
        buffer = io.BytesIO()
        Image.new("P", (40, 40), 3).save(buffer, format="GIF")
        result = PillowTranscoder("webp").transcode(buffer.getvalue(), 20, 20, 0.8)
        assert _decoded(result).size == (20, 20)

    def test_lower_quality_is_smaller(self):
        source = make_image(200, 200)
        transcoder = PillowTranscoder("jpeg")
        low = transcoder.transcode(source, 200, 200, 0.2)
        high = transcoder.transcode(source, 200, 200, 0.95)
        assert len(low.data) < len(high.data)

    def test_webp_panorama_fits_encoder_limit(self):
        source = make_image(17000, 20, noisy=False)
        result = PillowTranscoder("webp").transcode(source, 99999, 99999, 0.8)
        assert (result.width, result.height) == (16383, 19)
        assert _decoded(result).size == (16383, 19)

    def test_png_panorama_keeps_native_width(self):
        source = make_image(17000, 4, noisy=False)
        result = PillowTranscoder("png").transcode(source, 99999, 99999, 0.8)
        assert _decoded(result).size == (17000, 4)

    def test_garbage_raises_decode_error(self):
        with pytest.raises(DecodeError) as excinfo:
            PillowTranscoder().transcode(b"not an image at all", 10, 10, 0.8)
        assert isinstance(excinfo.value, TranscodeError)

    def test_truncated_image_raises_decode_error(self):
        data = make_image(100, 100)
        with pytest.raises(DecodeError):
            PillowTranscoder().transcode(data[: len(data) // 2], 10, 10, 0.8)

    def test_unknown_format(self):
        with pytest.raises(SettingsError):
            PillowTranscoder("avif")


@pytest.mark.parametrize("name", list(OUTPUT_FORMATS))
def test_extension_for_each_output_format(name):
    _, mime_type, extension = OUTPUT_FORMATS[name]
    assert extension_for_mime(mime_type) == extension


def test_extension_for_other_mime():
    assert extension_for_mime("image/svg+xml") == "svg"

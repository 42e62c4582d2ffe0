"""
Tests for the local compression pipeline.

Sections:
  1. TestTargetSize        — bounded resolution arithmetic
  2. TestEncoderChoice     — output format selection
  3. TestCompressImage     — decode → resample → encode with real Pillow images
  4. TestCompressionErrors — DecodeFailure / ContextUnavailable / EncodeFailure
  5. TestCompressionResult — ratio and summary text
  6. TestConfigValidation  — CompressionConfig bounds
"""
from __future__ import annotations

import io
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from imagetools.codec import decode_data_uri
from imagetools.compressor import compress_image, encoder_for, run_compression, target_size
from imagetools.errors import ContextUnavailable, DecodeFailure, EncodeFailure, InvalidRequest
from imagetools.models import CompressionConfig, CompressionResult, ImageAsset


def _make_image(width: int, height: int, fmt: str = "JPEG", mode: str = "RGB") -> ImageAsset:
    color = (200, 40, 90, 255) if mode == "RGBA" else (200, 40, 90)
    img = Image.new(mode, (width, height), color=color)
    # Add some detail so the encoder has something to work with.
    for x in range(0, width, max(1, width // 16)):
        for y in range(height):
            img.putpixel((x, y), (10, 220, 30, 255) if mode == "RGBA" else (10, 220, 30))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return ImageAsset(data=buf.getvalue(), mime_type=Image.MIME[fmt])


def _decode_result(result: CompressionResult) -> Image.Image:
    mime, data = decode_data_uri(result.encoded)
    assert mime == result.mime_type
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


# ===========================================================================
# 1. Target size
# ===========================================================================

class TestTargetSize:
    def test_landscape_limited_by_width(self):
        assert target_size(4000, 3000, 1920) == (1920, 1440)

    def test_portrait_limited_by_height(self):
        assert target_size(3000, 4000, 1920) == (1440, 1920)

    def test_never_upscales(self):
        assert target_size(640, 480, 1920) == (640, 480)

    def test_exact_fit_is_unchanged(self):
        assert target_size(1920, 1080, 1920) == (1920, 1080)

    def test_rounds_half_up(self):
        # 3 * 0.5 = 1.5 -> 2
        assert target_size(4, 3, 2) == (2, 2)

    def test_extreme_aspect_keeps_one_pixel(self):
        assert target_size(10000, 1, 100) == (100, 1)


# ===========================================================================
# 2. Encoder choice
# ===========================================================================

class TestEncoderChoice:
    def test_jpeg(self):
        assert encoder_for("image/jpeg") == ("image/jpeg", "JPEG")

    def test_png(self):
        assert encoder_for("image/png") == ("image/png", "PNG")

    def test_webp(self):
        assert encoder_for("image/webp") == ("image/webp", "WEBP")

    def test_unsupported_falls_back_to_jpeg(self):
        assert encoder_for("image/gif") == ("image/jpeg", "JPEG")
        assert encoder_for("image/bmp") == ("image/jpeg", "JPEG")

    def test_case_insensitive(self):
        assert encoder_for("IMAGE/PNG") == ("image/png", "PNG")


# ===========================================================================
# 3. Compress image
# ===========================================================================

class TestCompressImage:
    def test_large_jpeg_is_bounded(self):
        asset = _make_image(2400, 1200)
        result = compress_image(asset, CompressionConfig(quality=0.7, max_edge=800))
        img = _decode_result(result)
        assert img.size == (800, 400)
        assert (result.width, result.height) == (800, 400)
        assert result.result_bytes > 0
        assert result.original_bytes == asset.size

    def test_limiting_axis_below_max_edge_on_other_axis(self):
        asset = _make_image(300, 900, fmt="PNG")
        result = compress_image(asset, CompressionConfig(max_edge=600))
        img = _decode_result(result)
        assert img.size == (200, 600)
        assert max(img.size) <= 600

    def test_no_upscale_at_full_quality(self):
        asset = _make_image(120, 80, fmt="PNG")
        result = compress_image(asset, CompressionConfig(quality=1.0, max_edge=4096))
        img = _decode_result(result)
        assert img.size == (120, 80)

    def test_keeps_source_format_when_encodable(self):
        asset = _make_image(64, 64, fmt="PNG")
        result = compress_image(asset, CompressionConfig())
        assert result.mime_type == "image/png"
        assert result.encoded.startswith("data:image/png;base64,")

    def test_unsupported_source_encodes_as_jpeg(self):
        asset = _make_image(64, 64, fmt="GIF")
        result = compress_image(asset, CompressionConfig())
        assert result.mime_type == "image/jpeg"
        assert _decode_result(result).format == "JPEG"

    def test_minimum_quality_still_decodable(self):
        asset = _make_image(200, 100)
        result = compress_image(asset, CompressionConfig(quality=0.01, max_edge=1920))
        img = _decode_result(result)
        assert img.size == (200, 100)
        assert result.result_bytes > 0

    def test_lower_quality_is_smaller(self):
        asset = _make_image(400, 300)
        high = compress_image(asset, CompressionConfig(quality=1.0))
        low = compress_image(asset, CompressionConfig(quality=0.1))
        assert low.result_bytes < high.result_bytes

    def test_png_transparency_survives(self):
        img = Image.new("RGBA", (32, 32), (0, 0, 0, 0))
        img.putpixel((31, 31), (255, 0, 0, 255))
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        result = compress_image(ImageAsset(buf.getvalue(), "image/png"), CompressionConfig())
        out = _decode_result(result).convert("RGBA")
        assert out.getpixel((0, 0))[3] == 0
        assert out.getpixel((31, 31)) == (255, 0, 0, 255)

    def test_missing_asset(self):
        with pytest.raises(InvalidRequest):
            compress_image(None, CompressionConfig())

    @pytest.mark.asyncio
    async def test_run_compression_is_awaitable(self):
        asset = _make_image(50, 50)
        result = await run_compression(asset, CompressionConfig(max_edge=25))
        assert (result.width, result.height) == (25, 25)


# ===========================================================================
# 4. Errors
# ===========================================================================

class TestCompressionErrors:
    def test_undecodable_bytes(self):
        with pytest.raises(DecodeFailure):
            compress_image(ImageAsset(b"definitely not an image", "image/png"), CompressionConfig())

    def test_truncated_image(self):
        asset = _make_image(200, 200, fmt="PNG")
        with pytest.raises(DecodeFailure):
            compress_image(ImageAsset(asset.data[:60], "image/png"), CompressionConfig())

    def test_buffer_allocation_failure(self):
        asset = _make_image(40, 40)
        with patch("imagetools.compressor.Image.new", side_effect=MemoryError("no room")):
            with pytest.raises(ContextUnavailable):
                compress_image(asset, CompressionConfig())

    def test_encoder_failure(self):
        asset = _make_image(40, 40, fmt="PNG")
        with patch.object(Image.Image, "save", side_effect=OSError("encoder broke")):
            with pytest.raises(EncodeFailure):
                compress_image(asset, CompressionConfig())

    def test_encoder_empty_output(self):
        asset = _make_image(40, 40, fmt="PNG")
        with patch.object(Image.Image, "save", return_value=None):
            with pytest.raises(EncodeFailure, match="no output"):
                compress_image(asset, CompressionConfig())


# ===========================================================================
# 5. Result arithmetic
# ===========================================================================

class TestCompressionResult:
    def _result(self, original: int, result: int) -> CompressionResult:
        return CompressionResult("data:image/jpeg;base64,", original, result, 1, 1, "image/jpeg")

    def test_ratio(self):
        assert self._result(1_000_000, 400_000).ratio == 60

    def test_ratio_half_rounds_up(self):
        assert self._result(1000, 995).ratio == 1

    def test_ratio_negative_when_larger(self):
        assert self._result(100, 150).ratio == -50

    def test_ratio_zero_original(self):
        assert self._result(0, 10).ratio == 0

    def test_summary(self):
        text = self._result(2 * 1024 * 1024, 1024 * 1024).summary(0.7)
        assert "Original size: 2.00MB" in text
        assert "Compressed size: 1.00MB" in text
        assert "Reduction: 50% | Quality: 70%" in text


# ===========================================================================
# 6. Config validation
# ===========================================================================

class TestConfigValidation:
    def test_defaults(self):
        cfg = CompressionConfig()
        assert cfg.quality == 0.7
        assert cfg.max_edge == 1920

    @pytest.mark.parametrize("quality", [0, -0.1, 1.01])
    def test_bad_quality(self, quality):
        with pytest.raises(InvalidRequest):
            CompressionConfig(quality=quality)

    @pytest.mark.parametrize("max_edge", [0, -5, 1.5])
    def test_bad_max_edge(self, max_edge):
        with pytest.raises(InvalidRequest):
            CompressionConfig(max_edge=max_edge)

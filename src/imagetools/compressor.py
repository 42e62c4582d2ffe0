"""Local image compression: decode, bound the resolution, re-encode.

The pipeline mirrors what a browser canvas does for the same job:

1. decode the source bytes and read the intrinsic ``width``/``height``;
2. ``scale = min(1, max_edge / width, max_edge / height)`` (never upscale);
3. draw the resampled pixels into a freshly cleared buffer;
4. encode with the source format when Pillow can write it, JPEG otherwise;
5. hand back a ``data:`` URI plus the byte counts of both blobs.

Every call re-decodes and re-encodes; nothing is cached between calls.
"""
from __future__ import annotations

import asyncio
import io
import logging

from PIL import Image, UnidentifiedImageError

from .codec import encode_data_uri
from .errors import ContextUnavailable, DecodeFailure, EncodeFailure, InvalidRequest
from .models import CompressionConfig, CompressionResult, ImageAsset, round_half_up

log = logging.getLogger("imagetools.compressor")

FALLBACK_MIME = "image/jpeg"

# MIME types Pillow can write, mapped to the format name passed to ``save``.
_ENCODERS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
}

_LOSSY_FORMATS = {"JPEG", "WEBP"}


def target_size(width: int, height: int, max_edge: int) -> tuple[int, int]:
    scale = min(1.0, max_edge / width, max_edge / height)
    if scale >= 1.0:
        return width, height
    return max(1, round_half_up(width * scale)), max(1, round_half_up(height * scale))


def encoder_for(mime_type: str) -> tuple[str, str]:
    """Return ``(output_mime, pillow_format)`` for a source MIME type."""
    fmt = _ENCODERS.get(mime_type.lower())
    if fmt is None:
        return FALLBACK_MIME, "JPEG"
    return ("image/jpeg" if fmt == "JPEG" else mime_type.lower()), fmt


def _decode(asset: ImageAsset) -> Image.Image:
    try:
        with Image.open(io.BytesIO(asset.data)) as src:
            src.load()
            return src.copy()
    except (UnidentifiedImageError, OSError, SyntaxError, EOFError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeFailure(f"Could not decode image: {exc}") from exc


def _render(img: Image.Image, size: tuple[int, int]) -> Image.Image:
    try:
        canvas = Image.new("RGBA", size, (0, 0, 0, 0))
    except (ValueError, MemoryError) as exc:
        raise ContextUnavailable(f"Could not allocate a {size[0]}x{size[1]} buffer: {exc}") from exc
    source = img.convert("RGBA")
    if source.size != size:
        source = source.resize(size, Image.LANCZOS)
    canvas.alpha_composite(source)
    return canvas


def _encode(canvas: Image.Image, fmt: str, quality: float) -> bytes:
    buf = io.BytesIO()
    try:
        if fmt == "JPEG":
            # JPEG has no alpha channel; transparent pixels become black.
            flat = Image.new("RGB", canvas.size, (0, 0, 0))
            flat.paste(canvas, mask=canvas.getchannel("A"))
            flat.save(buf, format=fmt, quality=max(1, round_half_up(quality * 100)))
        elif fmt in _LOSSY_FORMATS:
            canvas.save(buf, format=fmt, quality=max(1, round_half_up(quality * 100)))
        else:
            canvas.save(buf, format=fmt, optimize=True)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeFailure(f"Could not encode image as {fmt}: {exc}") from exc
    data = buf.getvalue()
    if not data:
        raise EncodeFailure(f"Encoding as {fmt} produced no output")
    return data


def compress_image(asset: ImageAsset | None, config: CompressionConfig) -> CompressionResult:
    if asset is None or not asset.data:
        raise InvalidRequest("Please choose an image")
    img = _decode(asset)
    width, height = img.size
    size = target_size(width, height, config.max_edge)
    log.debug("Resampling %dx%d -> %dx%d", width, height, size[0], size[1])

    canvas = _render(img, size)
    mime_type, fmt = encoder_for(asset.mime_type)
    data = _encode(canvas, fmt, config.quality)
    log.info("Compressed %d -> %d bytes (%s)", asset.size, len(data), mime_type)
    return CompressionResult(
        encoded=encode_data_uri(data, mime_type),
        original_bytes=asset.size,
        result_bytes=len(data),
        width=size[0],
        height=size[1],
        mime_type=mime_type,
    )


async def run_compression(asset: ImageAsset | None, config: CompressionConfig) -> CompressionResult:
    return await asyncio.to_thread(compress_image, asset, config)

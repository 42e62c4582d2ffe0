"""Base64 and ``data:`` URI helpers shared by the compressor and the payload builder."""
from __future__ import annotations

import base64
import binascii

from .errors import DecodeError

_PREFIX = "data:"
_MARKER = ";base64"


def b64encode(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise DecodeError(f"Malformed base64 payload: {exc}") from exc


def encode_data_uri(data: bytes, mime_type: str) -> str:
    return f"{_PREFIX}{mime_type};base64,{b64encode(data)}"


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a ``data:<mime>;base64,<payload>`` URI into ``(mime, bytes)``.

    Raises :class:`DecodeError` when the URI is not base64-encoded data.
    """
    if not uri.startswith(_PREFIX) or "," not in uri:
        raise DecodeError("Not a data URI")
    header, payload = uri[len(_PREFIX):].split(",", 1)
    if not header.endswith(_MARKER):
        raise DecodeError("Data URI is not base64-encoded")
    mime_type = header[: -len(_MARKER)]
    if not mime_type:
        raise DecodeError("Data URI has no MIME type")
    return mime_type, b64decode(payload)

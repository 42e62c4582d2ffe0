from __future__ import annotations

import io
import math
import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .codec import decode_data_uri, encode_data_uri
from .errors import InvalidRequest

DEFAULT_QUALITY = 0.7
DEFAULT_MAX_EDGE = 1920

_MB = 1024 * 1024


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ToolKind(str, Enum):
    COMPRESS = "compress"
    GENERATE = "generate"
    RECOGNIZE = "recognize"
    REMOVE_BACKGROUND = "remove-background"

    @property
    def label(self) -> str:
        return _TOOL_LABELS[self]

    @property
    def needs_image(self) -> bool:
        return self is not ToolKind.GENERATE


_TOOL_LABELS = {
    ToolKind.COMPRESS: "Compress",
    ToolKind.GENERATE: "AI Generate",
    ToolKind.RECOGNIZE: "Recognize",
    ToolKind.REMOVE_BACKGROUND: "Remove Background",
}


@dataclass(frozen=True, slots=True)
class ImageAsset:
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_uri(self) -> str:
        return encode_data_uri(self.data, self.mime_type)

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageAsset":
        mime_type, data = decode_data_uri(uri)
        return cls(data=data, mime_type=mime_type)

    @classmethod
    def from_path(cls, path: str | Path) -> "ImageAsset":
        """Read an image file, rejecting anything that is not ``image/*``."""
        file_path = Path(path).expanduser()
        if not file_path.is_file():
            raise InvalidRequest(f"Image not found: {file_path}")
        data = file_path.read_bytes()
        mime_type, _ = mimetypes.guess_type(file_path.name)
        if not mime_type:
            mime_type = _sniff_mime(data)
        if not mime_type or not mime_type.startswith("image/"):
            raise InvalidRequest(f"Not an image file: {file_path.name}")
        return cls(data=data, mime_type=mime_type)


def _sniff_mime(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError):
        return None


@dataclass(frozen=True, slots=True)
class CompressionConfig:
    quality: float = DEFAULT_QUALITY
    max_edge: int = DEFAULT_MAX_EDGE

    def __post_init__(self) -> None:
        if not isinstance(self.quality, (int, float)) or not 0.0 < float(self.quality) <= 1.0:
            raise InvalidRequest(f"Quality must be in (0, 1], got {self.quality!r}")
        if isinstance(self.max_edge, bool) or not isinstance(self.max_edge, int) or self.max_edge <= 0:
            raise InvalidRequest(f"Max edge must be a positive integer, got {self.max_edge!r}")


@dataclass(frozen=True, slots=True)
class CompressionResult:
    encoded: str
    original_bytes: int
    result_bytes: int
    width: int
    height: int
    mime_type: str

    @property
    def ratio(self) -> int:
        if self.original_bytes <= 0:
            return 0
        return round_half_up((1 - self.result_bytes / self.original_bytes) * 100)

    def summary(self, quality: float) -> str:
        return (
            "Compressed successfully!\n"
            f"Original size: {self.original_bytes / _MB:.2f}MB\n"
            f"Compressed size: {self.result_bytes / _MB:.2f}MB\n"
            f"Reduction: {self.ratio}% | Quality: {round_half_up(quality * 100)}%\n"
            f"Dimensions: {self.width}x{self.height} ({self.mime_type})"
        )


# Tool requests: one class per tool, dispatched with ``match`` + ``assert_never``.

@dataclass(frozen=True, slots=True)
class Compress:
    asset: ImageAsset | None
    config: CompressionConfig = CompressionConfig()

    kind = ToolKind.COMPRESS


@dataclass(frozen=True, slots=True)
class Generate:
    prompt: str

    kind = ToolKind.GENERATE


@dataclass(frozen=True, slots=True)
class Recognize:
    asset: ImageAsset | None

    kind = ToolKind.RECOGNIZE


@dataclass(frozen=True, slots=True)
class RemoveBackground:
    asset: ImageAsset | None

    kind = ToolKind.REMOVE_BACKGROUND


ToolRequest = Compress | Generate | Recognize | RemoveBackground


class LocatorKind(str, Enum):
    MARKDOWN_IMAGE_URL = "markdown_image_url"
    BARE_URL = "bare_url"
    DATA_URI = "data_uri"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class Locator:
    kind: LocatorKind
    value: str | None = None

    @classmethod
    def none(cls) -> "Locator":
        return cls(LocatorKind.NONE)

    @property
    def found(self) -> bool:
        return self.kind is not LocatorKind.NONE


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    text: str
    locator: Locator = Locator.none()
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

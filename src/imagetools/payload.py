"""Map a tool request onto an OpenAI-style chat-completions request body."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, assert_never

from .errors import InvalidRequest
from .models import Compress, Generate, ImageAsset, Recognize, RemoveBackground, ToolRequest

GENERATE_PREFIX = "Generate an image: "
RECOGNIZE_INSTRUCTION = "Analyze this image and return a detailed recognition result"
REMOVE_BACKGROUND_INSTRUCTION = (
    "Remove the background from this image and return only the "
    "background-free image as Base64 or an online link"
)

GENERATE_MAX_TOKENS = 1688
GENERATE_TEMPERATURE = 0.5
IMAGE_MAX_TOKENS = 800


@dataclass(frozen=True)
class ModelSet:
    generate: str = "deepseek-r1"
    recognize: str = "gpt-4o"
    remove_background: str = "gemini-2.5-flash-image"


DEFAULT_MODELS = ModelSet()


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def image_block(url: str) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": url}}


def _image_message(instruction: str, asset: ImageAsset | None) -> dict[str, Any]:
    if asset is None or not asset.data:
        raise InvalidRequest("Please choose an image")
    return {"role": "user", "content": [text_block(instruction), image_block(asset.to_data_uri())]}


def build_payload(request: ToolRequest, models: ModelSet = DEFAULT_MODELS) -> dict[str, Any]:
    match request:
        case Generate(prompt=prompt):
            if not prompt or not prompt.strip():
                raise InvalidRequest("Please describe the image to generate")
            return {
                "model": models.generate,
                "stream": True,
                "max_tokens": GENERATE_MAX_TOKENS,
                "temperature": GENERATE_TEMPERATURE,
                "messages": [{"role": "user", "content": text_block(f"{GENERATE_PREFIX}{prompt}")}],
            }
        case Recognize(asset=asset):
            return {
                "model": models.recognize,
                "stream": False,
                "max_tokens": IMAGE_MAX_TOKENS,
                "messages": [_image_message(RECOGNIZE_INSTRUCTION, asset)],
            }
        case RemoveBackground(asset=asset):
            return {
                "model": models.remove_background,
                "stream": False,
                "max_tokens": IMAGE_MAX_TOKENS,
                "messages": [_image_message(REMOVE_BACKGROUND_INSTRUCTION, asset)],
            }
        case Compress():
            raise InvalidRequest("Compression runs locally and has no remote payload")
        case _:
            assert_never(request)

"""Find an image locator in free-form model output.

Precedence is markdown image link, then bare URL, then embedded data URI.
A model that means to hand back an image usually wraps it in markdown, so
that form wins when several are present. The ordering is a design choice
and may be revised.
"""
from __future__ import annotations

import re

from .models import Locator, LocatorKind

MARKDOWN_IMAGE_RE = re.compile(r"!\[.*?\]\((https?://[^)]+)\)")
BARE_URL_RE = re.compile(r"https?://[^\s)]+")
DATA_URI_RE = re.compile(r"data:image/[^;]+;base64,[A-Za-z0-9+/=]+")


def extract_locator(text: str) -> Locator:
    if not text:
        return Locator.none()
    match = MARKDOWN_IMAGE_RE.search(text)
    if match:
        return Locator(LocatorKind.MARKDOWN_IMAGE_URL, match.group(1))
    match = BARE_URL_RE.search(text)
    if match:
        return Locator(LocatorKind.BARE_URL, match.group(0))
    match = DATA_URI_RE.search(text)
    if match:
        return Locator(LocatorKind.DATA_URI, match.group(0))
    return Locator.none()


def describe(locator: Locator, content: str) -> str:
    """Display text for a complete (non-streamed) reply."""
    if locator.kind is LocatorKind.DATA_URI:
        payload = (locator.value or "").split(",", 1)[-1]
        return f"Image data received ({len(payload)} bytes of base64)"
    if locator.found:
        return f"Image link: {locator.value}"
    return f"Result: {content}"

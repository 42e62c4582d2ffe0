from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import aclosing
from enum import Enum
from pathlib import Path
from typing import assert_never

from .client import ImageToolsClient, accumulate_text, message_content
from .codec import decode_data_uri
from .compressor import run_compression
from .errors import ImageToolsError, InvalidRequest, ToolBusyError, ToolCancelled
from .extractor import describe, extract_locator
from .models import (
    Compress,
    Generate,
    Locator,
    LocatorKind,
    Recognize,
    RemoveBackground,
    ToolOutcome,
    ToolRequest,
)
from .payload import DEFAULT_MODELS, ModelSet, build_payload

log = logging.getLogger("imagetools.pipeline")

ProgressCallback = Callable[[str], None]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunGuard:
    """Allows one pipeline at a time; re-entry raises instead of waiting."""

    def __init__(self) -> None:
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    async def __aenter__(self) -> "RunGuard":
        if self._state is RunState.RUNNING:
            raise ToolBusyError("Another tool is still running")
        self._state = RunState.RUNNING
        return self

    async def __aexit__(self, *exc_info: object) -> bool:
        self._state = RunState.IDLE
        return False


async def run_remote_tool(
    request: ToolRequest,
    client: ImageToolsClient,
    models: ModelSet = DEFAULT_MODELS,
    on_progress: ProgressCallback | None = None,
) -> tuple[str, Locator]:
    """Send *request* to the chat endpoint and return ``(display_text, locator)``.

    Validation happens in :func:`build_payload`, before any network activity.
    Streamed replies are shown verbatim; complete replies are summarised.
    """
    payload = build_payload(request, models)
    reply = await client.send(payload)
    if isinstance(reply, dict):
        content = message_content(reply)
        locator = extract_locator(content)
        return describe(locator, content), locator

    text = ""
    async with aclosing(reply):
        async for text in accumulate_text(reply):
            if on_progress is not None:
                on_progress(text)
    return text, extract_locator(text)


async def image_bytes(locator: Locator, client: ImageToolsClient) -> bytes:
    """Return the image a locator points at, downloading links with *client*."""
    match locator.kind:
        case LocatorKind.DATA_URI:
            _, data = decode_data_uri(locator.value or "")
            return data
        case LocatorKind.MARKDOWN_IMAGE_URL | LocatorKind.BARE_URL:
            return await client.fetch(locator.value or "")
        case _:
            raise InvalidRequest("The result contains no image")


async def save_image(locator: Locator, client: ImageToolsClient, path: Path) -> int:
    data = await image_bytes(locator, client)
    try:
        path.expanduser().write_bytes(data)
    except OSError as exc:
        raise InvalidRequest(f"Could not write {path}: {exc.strerror or exc}") from exc
    log.info("Saved %d bytes to %s", len(data), path)
    return len(data)


class ToolRunner:
    """Entry point for front ends: every failure comes back as a ToolOutcome."""

    def __init__(self, client: ImageToolsClient, models: ModelSet = DEFAULT_MODELS) -> None:
        self.client = client
        self.models = models
        self._guard = RunGuard()
        self._task: asyncio.Task[ToolOutcome] | None = None
        self._cancel_requested = False

    @property
    def state(self) -> RunState:
        return self._guard.state

    @property
    def busy(self) -> bool:
        return self._guard.state is RunState.RUNNING

    def cancel(self) -> bool:
        if self._task is None or self._task.done():
            return False
        self._cancel_requested = True
        self._task.cancel()
        return True

    async def run(self, request: ToolRequest, on_progress: ProgressCallback | None = None) -> ToolOutcome:
        try:
            async with self._guard:
                task = asyncio.create_task(self._execute(request, on_progress))
                self._task = task
                try:
                    return await task
                except asyncio.CancelledError:
                    current = asyncio.current_task()
                    if not self._cancel_requested or (current is not None and current.cancelling()):
                        raise
                    raise ToolCancelled("Cancelled") from None
                finally:
                    self._task = None
                    self._cancel_requested = False
        except ToolCancelled as exc:
            log.info("%s cancelled", request.kind.value)
            return ToolOutcome(text="Cancelled", error=exc)
        except ImageToolsError as exc:
            log.warning("%s failed: %s", request.kind.value, exc)
            return ToolOutcome(text=f"Failed: {exc}", error=exc)

    async def _execute(self, request: ToolRequest, on_progress: ProgressCallback | None) -> ToolOutcome:
        match request:
            case Compress(asset=asset, config=config):
                result = await run_compression(asset, config)
                return ToolOutcome(
                    text=result.summary(config.quality),
                    locator=Locator(LocatorKind.DATA_URI, result.encoded),
                )
            case Generate() | Recognize() | RemoveBackground():
                text, locator = await run_remote_tool(request, self.client, self.models, on_progress)
                return ToolOutcome(text=text, locator=locator)
            case _:
                assert_never(request)

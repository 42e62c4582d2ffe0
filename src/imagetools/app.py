from __future__ import annotations

import asyncio
from pathlib import Path

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.widgets import Button, Header, Input, Select, Static

from .client import ImageToolsClient
from .config import CONFIG_PATH, api_key, load_config, models_from_config
from .errors import ImageToolsError
from .models import (
    DEFAULT_MAX_EDGE,
    DEFAULT_QUALITY,
    Compress,
    CompressionConfig,
    Generate,
    ImageAsset,
    Locator,
    LocatorKind,
    Recognize,
    RemoveBackground,
    ToolKind,
    ToolOutcome,
    ToolRequest,
)
from .pipeline import ToolRunner, save_image

APP_CSS = """
Screen { background: #090b12; color: #d7e6ff; }
#form { height: auto; padding: 0 1; }
#form Input, #form Select { margin: 0 0 1 0; }
#settings { height: auto; }
#settings Input { width: 1fr; }
#actions { height: auto; }
#status { color: #64ffff; padding: 0 1; }
#locator { color: #b388ff; padding: 0 1; }
#result-pane { border: round #29f0ff; padding: 0 1; background: #0f1320; }
"""


class ImageToolsApp(App):
    CSS = APP_CSS
    BINDINGS = [
        Binding("ctrl+r", "run", "Run", priority=True),
        Binding("escape", "cancel", "Cancel", priority=True),
        Binding("ctrl+y", "copy_locator", "Copy image link", priority=True),
        Binding("ctrl+s", "save_image", "Save image", priority=True),
        Binding("ctrl+q", "quit", "Quit", priority=True),
    ]

    def __init__(self, config_path: Path = CONFIG_PATH) -> None:
        super().__init__()
        self.cfg = load_config(config_path)
        self.runner = ToolRunner(
            ImageToolsClient(self.cfg["endpoint"], api_key(), timeout=self.cfg["timeout"]),
            models_from_config(self.cfg),
        )
        self.tool = ToolKind.COMPRESS
        self.active_task: asyncio.Task[None] | None = None
        self.save_task: asyncio.Task[None] | None = None
        self.last_outcome: ToolOutcome | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical(id="form"):
            yield Select(
                [(kind.label, kind.value) for kind in ToolKind],
                value=self.tool.value,
                allow_blank=False,
                id="tool",
            )
            yield Input(placeholder="Describe the image (e.g. a cat on the grass)", id="prompt")
            yield Input(placeholder="Path to an image file", id="image-path")
            with Horizontal(id="settings"):
                yield Input(str(self.cfg["quality"]), placeholder="Quality (0-1]", id="quality")
                yield Input(str(self.cfg["max_edge"]), placeholder="Max edge (px)", id="max-edge")
            with Horizontal(id="actions"):
                yield Button("Run", id="run", variant="primary")
                yield Button("Cancel", id="cancel", disabled=True)
            yield Input(placeholder="Save the result image to (path), then Ctrl+S", id="save-path")
        yield Static("Ready.", id="status")
        yield Static("", id="locator", markup=False)
        with VerticalScroll(id="result-pane"):
            yield Static("", id="result", markup=False)

    def on_mount(self) -> None:
        self._show_fields()

    def on_select_changed(self, event: Select.Changed) -> None:
        if event.select.id != "tool" or event.value is Select.BLANK:
            return
        tool = ToolKind(event.value)
        if tool is not self.tool:
            self.select_tool(tool)

    def select_tool(self, tool: ToolKind) -> None:
        """Switch tools and reset every input to its initial value."""
        self.tool = tool
        self.query_one("#tool", Select).value = tool.value
        self.query_one("#prompt", Input).value = ""
        self.query_one("#image-path", Input).value = ""
        self.query_one("#quality", Input).value = str(DEFAULT_QUALITY)
        self.query_one("#max-edge", Input).value = str(DEFAULT_MAX_EDGE)
        self.query_one("#result", Static).update("")
        self.query_one("#locator", Static).update("")
        self.last_outcome = None
        self._show_fields()

    def _show_fields(self) -> None:
        self.query_one("#prompt", Input).display = not self.tool.needs_image
        self.query_one("#image-path", Input).display = self.tool.needs_image
        self.query_one("#settings", Horizontal).display = self.tool is ToolKind.COMPRESS

    def _set_busy(self, busy: bool) -> None:
        self.query_one("#run", Button).disabled = busy
        self.query_one("#cancel", Button).disabled = not busy
        self.query_one("#status", Static).update("Working..." if busy else "Ready.")

    def build_request(self) -> ToolRequest:
        if self.tool is ToolKind.GENERATE:
            return Generate(prompt=self.query_one("#prompt", Input).value)
        raw_path = self.query_one("#image-path", Input).value.strip()
        asset = ImageAsset.from_path(raw_path) if raw_path else None
        if self.tool is ToolKind.COMPRESS:
            try:
                quality = float(self.query_one("#quality", Input).value)
                max_edge = int(self.query_one("#max-edge", Input).value)
            except ValueError:
                quality, max_edge = -1.0, -1
            return Compress(asset=asset, config=CompressionConfig(quality=quality, max_edge=max_edge))
        if self.tool is ToolKind.RECOGNIZE:
            return Recognize(asset=asset)
        return RemoveBackground(asset=asset)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "run":
            await self.action_run()
        elif event.button.id == "cancel":
            await self.action_cancel()

    @property
    def busy(self) -> bool:
        pending = self.active_task is not None and not self.active_task.done()
        return pending or self.runner.busy

    async def action_run(self) -> None:
        if self.busy:
            self.notify("A tool is already running", severity="warning")
            return
        try:
            request = self.build_request()
        except ImageToolsError as exc:
            self.query_one("#result", Static).update(f"Failed: {exc}")
            return
        self._set_busy(True)
        self.active_task = asyncio.create_task(self.run_tool(request))

    async def run_tool(self, request: ToolRequest) -> None:
        result = self.query_one("#result", Static)
        result.update("")
        try:
            outcome = await self.runner.run(request, on_progress=result.update)
        finally:
            self._set_busy(False)
        self.show_outcome(outcome)

    def show_outcome(self, outcome: ToolOutcome) -> None:
        self.last_outcome = outcome
        self.query_one("#result", Static).update(outcome.text)
        locator = outcome.locator
        if locator.kind is LocatorKind.DATA_URI:
            line = f"Image: inline {(locator.value or '').split(';', 1)[0][5:]} data"
        elif locator.found:
            line = f"Image: {locator.value}"
        else:
            line = ""
        self.query_one("#locator", Static).update(line)

    async def action_cancel(self) -> None:
        if self.runner.cancel():
            self.notify("Cancelling")

    async def action_copy_locator(self) -> None:
        if self.last_outcome is None or not self.last_outcome.locator.found:
            self.notify("No image to copy", severity="warning")
            return
        self.copy_to_clipboard(self.last_outcome.locator.value or "")
        self.notify("Image link copied to clipboard")

    async def action_save_image(self) -> None:
        if self.last_outcome is None or not self.last_outcome.locator.found:
            self.notify("No image to save", severity="warning")
            return
        raw_path = self.query_one("#save-path", Input).value.strip()
        if not raw_path:
            self.notify("Enter a path to save the image to", severity="warning")
            return
        if self.save_task is not None and not self.save_task.done():
            self.notify("Already saving", severity="warning")
            return
        self.save_task = asyncio.create_task(self.save_result(self.last_outcome.locator, Path(raw_path)))

    async def save_result(self, locator: Locator, path: Path) -> None:
        status = self.query_one("#status", Static)
        try:
            size = await save_image(locator, self.runner.client, path)
        except ImageToolsError as exc:
            status.update(f"Could not save image: {exc}")
            return
        status.update(f"Saved {size} bytes to {path}")


def main(config_path: Path = CONFIG_PATH) -> None:
    ImageToolsApp(config_path).run()


if __name__ == "__main__":
    main()

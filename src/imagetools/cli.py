from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .app import main as app_main
from .client import ImageToolsClient
from .config import CONFIG_PATH, api_key, load_config, models_from_config
from .errors import ImageToolsError
from .models import (
    Compress,
    CompressionConfig,
    Generate,
    ImageAsset,
    LocatorKind,
    Recognize,
    RemoveBackground,
    ToolOutcome,
    ToolRequest,
)
from .pipeline import ToolRunner, save_image

log = logging.getLogger("imagetools.cli")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imagetools",
        description="Compress images locally, or generate, recognize and cut out images with a chat model.",
    )
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="Path to config.yml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    subparsers = parser.add_subparsers(dest="command")

    compress = subparsers.add_parser("compress", help="Shrink and re-encode an image locally")
    compress.add_argument("path", help="Image file to compress")
    compress.add_argument("--quality", type=float, default=None, help="Encoder quality in (0, 1] (default 0.7)")
    compress.add_argument("--max-edge", type=int, default=None, help="Longest allowed edge in pixels (default 1920)")
    compress.add_argument("--output", "-o", type=Path, help="Write the compressed image here")

    generate = subparsers.add_parser("generate", help="Generate an image from a text description")
    generate.add_argument("prompt", nargs="+", help="What to draw")
    generate.add_argument("--output", "-o", type=Path, help="Save the returned image here (link or inline data)")

    recognize = subparsers.add_parser("recognize", help="Describe the contents of an image")
    recognize.add_argument("path", help="Image file to analyze")

    remove_bg = subparsers.add_parser("remove-background", help="Cut the subject out of an image")
    remove_bg.add_argument("path", help="Image file to process")
    remove_bg.add_argument("--output", "-o", type=Path, help="Save the returned image here (link or inline data)")

    subparsers.add_parser("tui", help="Open the interactive terminal UI (default)")
    return parser


def build_request(args: argparse.Namespace, cfg: dict) -> ToolRequest:
    if args.command == "generate":
        return Generate(prompt=" ".join(args.prompt))
    asset = ImageAsset.from_path(args.path)
    if args.command == "compress":
        quality = cfg["quality"] if args.quality is None else args.quality
        max_edge = cfg["max_edge"] if args.max_edge is None else args.max_edge
        return Compress(asset=asset, config=CompressionConfig(quality=quality, max_edge=max_edge))
    if args.command == "recognize":
        return Recognize(asset=asset)
    return RemoveBackground(asset=asset)


async def write_output(outcome: ToolOutcome, path: Path, client: ImageToolsClient) -> bool:
    """Save the image *outcome* points at: inline data is decoded, links are downloaded."""
    try:
        size = await save_image(outcome.locator, client, path)
    except ImageToolsError as exc:
        print(f"Could not save image: {exc}", file=sys.stderr)
        return False
    print(f"Wrote {size} bytes to {path}")
    return True


async def run_command(args: argparse.Namespace, cfg: dict) -> int:
    try:
        request = build_request(args, cfg)
    except ImageToolsError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    client = ImageToolsClient(cfg["endpoint"], api_key(), timeout=cfg["timeout"])
    runner = ToolRunner(client, models_from_config(cfg))
    log.debug("Running %s", request.kind.value)
    shown = 0

    def _on_progress(text: str) -> None:
        nonlocal shown
        sys.stdout.write(text[shown:])
        sys.stdout.flush()
        shown = len(text)

    outcome = await runner.run(request, on_progress=_on_progress)
    if not outcome.ok:
        if shown:
            sys.stdout.write("\n")
        print(outcome.text, file=sys.stderr)
        return 1
    if shown:
        sys.stdout.write(outcome.text[shown:] + "\n")
    else:
        print(outcome.text)
    if outcome.locator.found and outcome.locator.kind is not LocatorKind.DATA_URI:
        print(f"Image: {outcome.locator.value}")
    output = getattr(args, "output", None)
    if output is not None and not await write_output(outcome, output, client):
        return 1
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if not args.command or args.command == "tui":
        app_main(args.config)
        return
    configure_logging(args.verbose)
    cfg = load_config(args.config)
    sys.exit(asyncio.run(run_command(args, cfg)))


if __name__ == "__main__":
    main()

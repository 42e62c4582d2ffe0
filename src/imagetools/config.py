from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_MAX_EDGE, DEFAULT_QUALITY
from .payload import DEFAULT_MODELS, ModelSet

# Default chat-completions endpoint – override via IMAGETOOLS_ENDPOINT or the config file.
_DEFAULT_ENDPOINT = os.environ.get("IMAGETOOLS_ENDPOINT", "http://localhost:1234/v1/chat/completions")

API_KEY_ENV = "IMAGETOOLS_API_KEY"

CONFIG_PATH = Path.home() / ".config" / "imagetools" / "config.yml"


@dataclass(frozen=True)
class AppConfig:
    endpoint: str = _DEFAULT_ENDPOINT
    generate_model: str = DEFAULT_MODELS.generate
    recognize_model: str = DEFAULT_MODELS.recognize
    remove_background_model: str = DEFAULT_MODELS.remove_background
    quality: float = DEFAULT_QUALITY
    max_edge: int = DEFAULT_MAX_EDGE
    timeout: float = 60.0
    config_version: int = 1


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = AppConfig().__dict__.copy()
    merged = {**defaults, **{k: v for k, v in cfg.items() if k in defaults}}
    for key in ("endpoint", "generate_model", "recognize_model", "remove_background_model"):
        if not isinstance(merged.get(key), str) or not merged[key].strip():
            merged[key] = defaults[key]
    raw_q = merged.get("quality")
    merged["quality"] = float(raw_q) if isinstance(raw_q, (int, float)) and 0.0 < float(raw_q) <= 1.0 else defaults["quality"]
    raw_me = merged.get("max_edge")
    merged["max_edge"] = int(raw_me) if isinstance(raw_me, (int, float)) and int(raw_me) > 0 else defaults["max_edge"]
    raw_to = merged.get("timeout")
    merged["timeout"] = float(raw_to) if isinstance(raw_to, (int, float)) and float(raw_to) > 0 else defaults["timeout"]
    merged["config_version"] = defaults["config_version"]
    return merged


def load_config(path: Path = CONFIG_PATH) -> dict[str, Any]:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        cfg = _validate({})
        save_config(cfg, path)
        return cfg

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = _validate(raw if isinstance(raw, dict) else {})
    if cfg != raw:
        save_config(cfg, path)
    return cfg


def save_config(cfg: dict[str, Any], path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    validated = _validate(cfg)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(yaml.safe_dump(validated, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def api_key() -> str:
    """The bearer token lives in the environment only; it is never written to disk."""
    return os.environ.get(API_KEY_ENV, "")


def models_from_config(cfg: dict[str, Any]) -> ModelSet:
    return ModelSet(
        generate=cfg["generate_model"],
        recognize=cfg["recognize_model"],
        remove_background=cfg["remove_background_model"],
    )

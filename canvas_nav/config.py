from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent

CONFIG_FILENAME = "canvas_nav.yml"

yaml = YAML(typ="safe")


@dataclass
class Settings:
    data_dir: Path
    ui_state_path: Path
    host: str = "127.0.0.1"
    port: int = 3001
    max_upload_mb: int = 50
    max_checkpoints: int = 0  # 0 keeps every checkpoint

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def _resolve(value: str | os.PathLike[str]) -> Path:
    p = Path(value)
    return p if p.is_absolute() else (PROJECT_ROOT / p)


def _config_path() -> Path:
    env = os.environ.get("CANVAS_NAV_CONFIG")
    if env:
        return _resolve(env)
    return PROJECT_ROOT / CONFIG_FILENAME


def _load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"{path.name} must contain a mapping at the top level.")
    return data


def _int_setting(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"`{name}` must be an integer, got {value!r}.") from None


def load_settings(path: Path | None = None) -> Settings:
    """Read settings from the YAML file, then apply environment overrides."""
    config = _load_config_file(path or _config_path())
    env = os.environ

    data_dir = _resolve(env.get("CANVAS_NAV_DATA_DIR") or config.get("data_dir") or "data")
    ui_state = env.get("CANVAS_NAV_UI_STATE") or config.get("ui_state_path")
    return Settings(
        data_dir=data_dir,
        ui_state_path=_resolve(ui_state) if ui_state else data_dir / "ui_state.json",
        host=str(env.get("CANVAS_NAV_HOST") or config.get("host") or "127.0.0.1"),
        port=_int_setting("port", env.get("CANVAS_NAV_PORT") or config.get("port") or 3001),
        max_upload_mb=_int_setting(
            "max_upload_mb", env.get("CANVAS_NAV_MAX_UPLOAD_MB") or config.get("max_upload_mb") or 50
        ),
        max_checkpoints=_int_setting(
            "max_checkpoints", env.get("CANVAS_NAV_MAX_CHECKPOINTS") or config.get("max_checkpoints") or 0
        ),
    )

"""Load and save ``config.json``."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from agent_session_manager.config.schema import Config
from agent_session_manager.errors import StorageError
from agent_session_manager.utils.helpers import get_config_root, write_json_atomic

CONFIG_FILENAME = "config.json"


def get_config_path() -> Path:
    """Return the path of ``config.json`` under the configuration root."""
    return get_config_root() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> Config:
    """Load configuration from disk; ``ASMGR_*`` variables fill unset sections.

    A missing file yields defaults.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        return Config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StorageError(f"cannot read {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StorageError(f"{config_path} must contain a JSON object")
    try:
        config = Config(**data)
    except ValidationError as exc:
        raise StorageError(f"invalid configuration in {config_path}: {exc}") from exc
    logger.debug(f"[config] loaded {config_path}")
    return config


def save_config(config: Config, path: Path | None = None) -> Path:
    """Persist configuration as indented JSON."""
    config_path = path or get_config_path()
    try:
        write_json_atomic(config_path, config.model_dump(mode="json"))
    except OSError as exc:
        raise StorageError(f"cannot write {config_path}: {exc}") from exc
    return config_path

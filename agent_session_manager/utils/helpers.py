"""Small filesystem, time and id helpers shared by the session core."""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any

CONFIG_DIR_ENV = "ASMGR_CONFIG_DIR"
_DEFAULT_CONFIG_ROOT = Path.home() / ".config" / "agent-session-manager"

_UNSAFE_ID_RE = re.compile(r"[^a-z0-9_-]+")

_clock_lock = threading.Lock()
_last_ns = 0


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_root() -> Path:
    """Return the configuration root (``~/.config/agent-session-manager``).

    ``ASMGR_CONFIG_DIR`` overrides the location.
    """
    override = os.getenv(CONFIG_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return _DEFAULT_CONFIG_ROOT


def now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def unique_ns() -> int:
    """Nanosecond timestamp that strictly increases within this process."""
    global _last_ns
    with _clock_lock:
        value = max(time.time_ns(), _last_ns + 1)
        _last_ns = value
        return value


def sanitize_name(name: str, sep: str = "_") -> str:
    """Lowercase ``name`` and fold anything outside ``[a-z0-9_-]`` into ``sep``."""
    cleaned = _UNSAFE_ID_RE.sub(sep, (name or "").strip().lower())
    return cleaned.strip(sep) or "session"


def generate_id(name: str, prefix: str = "", sep: str = "_") -> str:
    """Build an identifier from a sanitized name plus a unique time component."""
    head = f"{prefix}_" if prefix else ""
    return f"{head}{sanitize_name(name, sep)}_{unique_ns()}"


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON next to ``path`` in a temp file, then rename it into place."""
    ensure_dir(path.parent)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        f.write("\n")
        temp_path = Path(f.name)
    try:
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise

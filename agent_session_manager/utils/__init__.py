"""Utility functions for agent-session-manager."""

from agent_session_manager.utils.helpers import (
    ensure_dir,
    generate_id,
    get_config_root,
    now_iso,
    sanitize_name,
    write_json_atomic,
)

__all__ = [
    "ensure_dir",
    "generate_id",
    "get_config_root",
    "now_iso",
    "sanitize_name",
    "write_json_atomic",
]

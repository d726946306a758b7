"""Configuration module for agent-session-manager."""

from agent_session_manager.config.loader import get_config_path, load_config, save_config
from agent_session_manager.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]

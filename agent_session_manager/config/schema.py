"""Configuration schema for agent-session-manager."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from agent_session_manager.utils.helpers import get_config_root


class PathsConfig(BaseModel):
    """Where registries, locks and logs live."""

    config_dir: str = ""


class TmuxConfig(BaseModel):
    """Options applied to every managed tmux session."""

    session_prefix: str = "asm"
    history_limit: int = 50000
    detach_key: str = "C-q"
    capture_lines: int = 50
    startup_settle_s: float = 0.3


class TUIConfig(BaseModel):
    """Terminal UI configuration."""

    refresh_interval_s: float = 1.0
    preview_lines: int = 40
    default_agent: str = "claude"


class LogConfig(BaseModel):
    """Logging sink configuration."""

    level: str = "INFO"
    file: str = ""
    rotation: str = "5 MB"


class Config(BaseSettings):
    """Root configuration for agent-session-manager."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    tmux: TmuxConfig = Field(default_factory=TmuxConfig)
    tui: TUIConfig = Field(default_factory=TUIConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @property
    def config_root(self) -> Path:
        """Expanded configuration root."""
        if self.paths.config_dir:
            return Path(self.paths.config_dir).expanduser()
        return get_config_root()

    @property
    def log_path(self) -> Path:
        if self.log.file:
            return Path(self.log.file).expanduser()
        return self.config_root / "asmgr.log"

    model_config = ConfigDict(
        env_prefix="ASMGR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

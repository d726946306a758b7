"""One managed agent process hosted in a tmux session."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from agent_session_manager.errors import (
    AsmError,
    ExternalError,
    InvalidInputError,
    NotRunningError,
)
from agent_session_manager.providers.agent_registry import (
    AgentKind,
    base_command,
    build_command,
    get_agent_def,
    parse_agent_kind,
)
from agent_session_manager.providers.marker_parser import Activity, detect_activity
from agent_session_manager.providers.signal_filter import (
    STOPPED_PLACEHOLDER,
    UNKNOWN_PLACEHOLDER,
    filter_for,
    last_meaningful_line,
    trim_preview,
)
from agent_session_manager.session import diff as git_diff
from agent_session_manager.tmux.bridge import Multiplexer, SessionOptions, TmuxBridge
from agent_session_manager.utils.helpers import generate_id, now_iso

if TYPE_CHECKING:
    from agent_session_manager.config.schema import Config

PREVIEW_PLACEHOLDER = "(session not running)"
# Extra lines captured so trailing chrome can be trimmed without starving the preview
CHROME_MARGIN = 20
_PROMPT_ENTER_DELAY_S = 0.05

YOLO_STATUS_STYLE = "bg=colour208,fg=black"
DEFAULT_STATUS_STYLE = "bg=green,fg=black"


class InstanceStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"

    def __str__(self) -> str:
        return self.value


@dataclass
class InstanceRuntime:
    """Multiplexer plus the fixed session policy instances share."""

    mux: Multiplexer
    session_prefix: str = "asm"
    history_limit: int = 50000
    detach_key: str = "C-q"
    capture_lines: int = 50
    startup_settle_s: float = 0.3
    filters_root: Optional[Path] = None

    @classmethod
    def from_config(cls, config: "Config", mux: Multiplexer | None = None) -> "InstanceRuntime":
        return cls(
            mux=mux or TmuxBridge(config.tmux.session_prefix),
            session_prefix=config.tmux.session_prefix,
            history_limit=config.tmux.history_limit,
            detach_key=config.tmux.detach_key,
            capture_lines=config.tmux.capture_lines,
            startup_settle_s=config.tmux.startup_settle_s,
            filters_root=config.config_root,
        )


_default_runtime: InstanceRuntime | None = None
_default_runtime_lock = threading.Lock()


def default_runtime() -> InstanceRuntime:
    global _default_runtime
    with _default_runtime_lock:
        if _default_runtime is None:
            _default_runtime = InstanceRuntime(mux=TmuxBridge())
        return _default_runtime


def expand_path(raw: str) -> str:
    """Tilde-expand and absolutize a working directory."""
    return os.path.abspath(os.path.expanduser((raw or "").strip()))


class Instance(BaseModel):
    """A managed agent process plus the metadata persisted in the registry.

    Presentation fields (colors, group, notes) are carried but never
    interpreted here. Fields this version does not know are kept as extras so
    a registry written by a newer build survives a save.
    """

    id: str
    name: str
    path: str
    status: InstanceStatus = InstanceStatus.STOPPED
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    auto_yes: bool = False
    resume_session_id: Optional[str] = None
    color: Optional[str] = None
    bg_color: Optional[str] = None
    full_row_color: Optional[bool] = None
    group_id: Optional[str] = None
    agent: AgentKind = AgentKind.CLAUDE
    custom_command: Optional[str] = None
    notes: Optional[str] = None
    base_commit_sha: Optional[str] = None
    favorite: Optional[bool] = None

    model_config = ConfigDict(extra="allow")

    _runtime: InstanceRuntime | None = PrivateAttr(default=None)

    @field_validator("agent", mode="before")
    @classmethod
    def _parse_agent(cls, value: object) -> AgentKind:
        try:
            if value is not None and not isinstance(value, (str, AgentKind)):
                value = str(value)
            return parse_agent_kind(value)
        except InvalidInputError as exc:
            raise ValueError(str(exc)) from exc

    # ------------------------------------------------------------------ #
    # Construction                                                         #
    # ------------------------------------------------------------------ #

    @classmethod
    def create(
        cls,
        name: str,
        path: str,
        agent: str | AgentKind = AgentKind.CLAUDE,
        auto_yes: bool = False,
        custom_command: str = "",
        resume_session_id: str = "",
        runtime: InstanceRuntime | None = None,
    ) -> "Instance":
        """Validate inputs and build a stopped instance with a fresh id."""
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("name must not be empty")
        kind = parse_agent_kind(agent)
        if kind is AgentKind.CUSTOM and not (custom_command or "").strip():
            raise InvalidInputError("custom agent requires a non-empty command")
        abs_path = expand_path(path)
        if not (path or "").strip() or not os.path.isdir(abs_path):
            raise InvalidInputError(f"path does not exist: {abs_path}")

        now = now_iso()
        inst = cls(
            id=generate_id(name),
            name=name,
            path=abs_path,
            status=InstanceStatus.STOPPED,
            created_at=now,
            updated_at=now,
            auto_yes=auto_yes,
            agent=kind,
            custom_command=(custom_command or "").strip() or None,
            resume_session_id=(resume_session_id or "").strip() or None,
        )
        if runtime is not None:
            inst.bind(runtime)
        return inst

    def bind(self, runtime: InstanceRuntime) -> "Instance":
        self._runtime = runtime
        return self

    @property
    def runtime(self) -> InstanceRuntime:
        return self._runtime or default_runtime()

    @property
    def mux(self) -> Multiplexer:
        return self.runtime.mux

    @property
    def tmux_session_name(self) -> str:
        return f"{self.runtime.session_prefix}_{self.id}"

    def touch(self) -> None:
        self.updated_at = now_iso()

    # ------------------------------------------------------------------ #
    # Liveness                                                             #
    # ------------------------------------------------------------------ #

    def is_alive(self) -> bool:
        return self.mux.session_exists(self.tmux_session_name)

    def refresh_status(self) -> InstanceStatus:
        """Re-derive ``status`` from the multiplexer; errors count as stopped."""
        try:
            alive = self.is_alive()
        except AsmError as exc:
            logger.warning(f"[instance] status refresh failed for {self.name}: {exc}")
            alive = False
        self.status = InstanceStatus.RUNNING if alive else InstanceStatus.STOPPED
        return self.status

    def _require_alive(self) -> str:
        name = self.tmux_session_name
        if not self.mux.session_exists(name):
            self.status = InstanceStatus.STOPPED
            raise NotRunningError(f"session '{self.name}' is not running")
        return name

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def command_line(self, resume_token: str = "") -> str:
        return build_command(
            self.agent,
            auto_yes=self.auto_yes,
            resume_token=resume_token or self.resume_session_id or "",
            custom_command=self.custom_command or "",
        )

    def start(self, resume_token: str | None = None) -> None:
        """Spawn the agent in a detached session; no-op when already live."""
        rt = self.runtime
        session = self.tmux_session_name
        if self.refresh_status() is InstanceStatus.RUNNING:
            logger.debug(f"[instance] {self.name} already running in {session}")
            return

        if not os.path.isdir(self.path):
            raise InvalidInputError(f"path does not exist: {self.path}")

        token = (resume_token or "").strip()
        command = self.command_line(token)
        executable = base_command(self.agent, self.custom_command or "")
        if not rt.mux.command_exists(executable):
            raise InvalidInputError(f"command '{executable}' not found - is it installed?")

        rt.mux.create_detached(session, self.path, command)
        rt.mux.configure(
            session,
            SessionOptions(
                history_limit=rt.history_limit,
                detach_key=rt.detach_key,
                window_title=self.agent.value,
            ),
        )

        if rt.startup_settle_s > 0:
            time.sleep(rt.startup_settle_s)
        if not rt.mux.session_exists(session):
            self.status = InstanceStatus.STOPPED
            raise ExternalError("session exited immediately - check if login or API key is required")

        if token and get_agent_def(self.agent).supports_resume:
            self.resume_session_id = token
        self.status = InstanceStatus.RUNNING
        self.touch()
        self._record_base_commit()
        logger.info(f"[instance] started {self.name} ({self.agent.value}) as {session}: {command}")

    def stop(self) -> None:
        """Kill the session if it is live. Idempotent."""
        if self.refresh_status() is InstanceStatus.STOPPED:
            return
        self.mux.kill(self.tmux_session_name)
        self.status = InstanceStatus.STOPPED
        self.touch()
        logger.info(f"[instance] stopped {self.name}")

    def attach(self) -> int:
        """Blocks until the user detaches; the host must not draw meanwhile."""
        name = self._require_alive()
        return self.mux.attach(name)

    # ------------------------------------------------------------------ #
    # Input                                                                #
    # ------------------------------------------------------------------ #

    def send_keys(self, keys: str) -> None:
        self.mux.send_keys(self._require_alive(), keys)

    def send_text(self, text: str) -> None:
        """Send text literally, without key-name interpretation."""
        self.mux.send_text(self._require_alive(), text)

    def send_prompt(self, text: str) -> None:
        """Type ``text`` and submit it with Enter."""
        name = self._require_alive()
        self.mux.send_text(name, text)
        time.sleep(_PROMPT_ENTER_DELAY_S)
        self.mux.send_keys(name, "Enter")

    # ------------------------------------------------------------------ #
    # Capture                                                              #
    # ------------------------------------------------------------------ #

    def _status_tokens(self) -> list[str]:
        config = filter_for(self.agent, self.runtime.filters_root)
        return list(config.skip_contains) if config is not None else []

    def preview_lines(self, n: int) -> list[str]:
        """Last ``n`` lines of the pane with trailing chrome trimmed.

        Known limitation: any trailing line starting with ``╭`` or ``╰`` is
        treated as a box corner and dropped, even if it is real output.
        """
        if n <= 0:
            return []
        if not self.is_alive():
            return [PREVIEW_PLACEHOLDER]
        lines = self.mux.capture(self.tmux_session_name, n + CHROME_MARGIN, ansi=True)
        return trim_preview(lines, n, self._status_tokens())

    def capture_preview(self, n: int) -> str:
        return "\n".join(self.preview_lines(n))

    def get_last_line(self) -> str:
        """Most recent meaningful line for the list view (ANSI preserved)."""
        if not self.is_alive():
            return STOPPED_PLACEHOLDER
        try:
            lines = self.mux.capture(self.tmux_session_name, self.runtime.capture_lines, ansi=True)
        except AsmError as exc:
            logger.debug(f"[instance] last-line capture failed for {self.name}: {exc}")
            return UNKNOWN_PLACEHOLDER
        return last_meaningful_line(lines, filter_for(self.agent, self.runtime.filters_root))

    def detect_activity(self) -> Activity:
        """Advisory activity; never written back to the registry."""
        if not self.is_alive():
            return Activity.IDLE
        try:
            lines = self.mux.capture(self.tmux_session_name, self.runtime.capture_lines, ansi=False)
        except AsmError as exc:
            logger.debug(f"[instance] activity capture failed for {self.name}: {exc}")
            return Activity.IDLE
        return detect_activity(self.agent, lines)

    # ------------------------------------------------------------------ #
    # Window                                                               #
    # ------------------------------------------------------------------ #

    def resize(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0 or not self.is_alive():
            return
        self.mux.resize(self.tmux_session_name, width, height)

    def update_detach_binding(self, width: int, height: int) -> None:
        """Make the quick-detach key shrink the window back to preview size first."""
        if not self.is_alive():
            return
        self.mux.bind_detach(self.tmux_session_name, self.runtime.detach_key, width, height)

    def toggle_auto_yes(self) -> bool:
        """Flip auto-approve and restart the agent with the new flag.

        Returns the new ``auto_yes`` value. Agents that only support a
        keystroke get that keystroke instead and keep their stored flag.
        """
        agent_def = get_agent_def(self.agent)
        if agent_def.auto_yes_keys:
            self.send_keys(agent_def.auto_yes_keys)
            return self.auto_yes
        if not agent_def.supports_auto_yes:
            raise InvalidInputError(f"yolo mode not supported for {self.agent.value}")

        self.auto_yes = not self.auto_yes
        self.touch()
        if self.is_alive():
            session = self.tmux_session_name
            self.mux.set_style(session, YOLO_STATUS_STYLE if self.auto_yes else DEFAULT_STATUS_STYLE)
            self.mux.rename_window(session, f" ! {self.name}" if self.auto_yes else self.name)
            self.mux.respawn(session, self.path, self.command_line())
        logger.info(f"[instance] {self.name} auto_yes={self.auto_yes}")
        return self.auto_yes

    # ------------------------------------------------------------------ #
    # Git                                                                  #
    # ------------------------------------------------------------------ #

    def _record_base_commit(self) -> None:
        if self.base_commit_sha:
            return
        sha = git_diff.head_commit(self.path)
        if sha:
            self.base_commit_sha = sha

    def reset_base_commit(self) -> None:
        self.base_commit_sha = None
        self._record_base_commit()

    def session_diff(self) -> git_diff.DiffStats:
        """Changes since the commit recorded at first start."""
        if not self.base_commit_sha:
            return git_diff.DiffStats(error="no base commit (not a git repo or started before tracking)")
        return git_diff.diff_stats(self.path, self.base_commit_sha)

    def full_diff(self) -> git_diff.DiffStats:
        return git_diff.diff_stats(self.path)

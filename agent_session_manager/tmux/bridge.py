"""Thin mechanical wrapper over the tmux command line.

PUBLIC API:
  - run_tmux: Execute a tmux command and return (returncode, stdout, stderr)
  - Multiplexer: Protocol the session core programs against
  - TmuxBridge: tmux implementation of Multiplexer

All policy (options, key bindings, session naming) is decided by the caller;
the bridge only turns each operation into tmux invocations.
"""

from __future__ import annotations

import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from agent_session_manager.errors import AlreadyRunningError, ExternalError
from agent_session_manager.providers.ansi import remove_wide_char_padding

TMUX_BIN = "tmux"

# create_detached polls has-session this many times before giving up
_READY_POLLS = 20
_READY_POLL_INTERVAL_S = 0.05


def run_tmux(args: list[str]) -> tuple[int, str, str]:
    """Run tmux command, return (returncode, stdout, stderr)."""
    cmd = [TMUX_BIN] + args
    logger.debug(f"[tmux] {' '.join(args[:4])}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ExternalError(f"cannot run {TMUX_BIN}", cmd, str(exc)) from exc
    return result.returncode, result.stdout, result.stderr


def _check(args: list[str], message: str) -> str:
    code, stdout, stderr = run_tmux(args)
    if code != 0:
        raise ExternalError(message, [TMUX_BIN] + args, stderr)
    return stdout


@dataclass
class SessionOptions:
    """Fixed per-session tmux settings applied after creation."""

    history_limit: int = 50000
    detach_key: str = "C-q"
    window_title: str = ""
    yolo_key: str = "C-y"
    yolo_command: str = "asmgr yolo"


class Multiplexer(Protocol):
    """Minimal multiplexer contract used by instances."""

    def session_exists(self, name: str) -> bool:
        """True iff a session with exactly this name is live."""

    def create_detached(self, name: str, cwd: str, command: str) -> None:
        """Create a detached session running ``command`` in ``cwd``."""

    def configure(self, name: str, options: SessionOptions) -> None:
        """Apply session options and key bindings; individual failures are ignored."""

    def capture(self, name: str, last_n: int, ansi: bool = True) -> list[str]:
        """Return the last ``last_n`` lines of the active pane."""

    def send_keys(self, name: str, keys: str) -> None:
        """Inject keys (tmux key names are interpreted)."""

    def send_text(self, name: str, text: str) -> None:
        """Inject text literally."""

    def attach(self, name: str) -> int:
        """Hand the controlling terminal to the session until detach."""

    def kill(self, name: str) -> None:
        """Terminate the session if it exists."""

    def resize(self, name: str, width: int, height: int) -> None:
        """Resize the session window."""

    def respawn(self, name: str, cwd: str, command: str) -> None:
        """Restart the session's pane with a new command."""

    def bind_detach(self, name: str, key: str, width: int, height: int) -> None:
        """Bind ``key`` to resize-then-detach for managed sessions."""

    def set_style(self, name: str, style: str) -> None:
        """Set the session status-bar style."""

    def rename_window(self, name: str, title: str) -> None:
        """Rename the agent window."""

    def command_exists(self, command: str) -> bool:
        """True when ``command`` resolves on PATH."""


class TmuxBridge:
    """tmux-backed :class:`Multiplexer`."""

    def __init__(self, session_prefix: str = "asm") -> None:
        self.session_prefix = session_prefix

    # ------------------------------------------------------------------ #
    # Session lifecycle                                                    #
    # ------------------------------------------------------------------ #

    def session_exists(self, name: str) -> bool:
        code, _, _ = run_tmux(["has-session", "-t", f"={name}"])
        return code == 0

    def create_detached(self, name: str, cwd: str, command: str) -> None:
        if self.session_exists(name):
            raise AlreadyRunningError(f"tmux session {name} already exists")
        _check(
            ["new-session", "-d", "-s", name, "-c", cwd, command],
            f"failed to create tmux session {name}",
        )
        for _ in range(_READY_POLLS):
            if self.session_exists(name):
                break
            time.sleep(_READY_POLL_INTERVAL_S)
        logger.info(f"[tmux] created session {name} in {cwd}")

    def configure(self, name: str, options: SessionOptions) -> None:
        target = ["-t", name]
        steps: list[list[str]] = [
            ["set-option", *target, "history-limit", str(options.history_limit)],
            ["set-option", *target, "mouse", "on"],
            ["set-option", *target, "window-size", "latest"],
            ["set-option", *target, "aggressive-resize", "on"],
            ["set-option", *target, "-g", "xterm-keys", "on"],
            ["set-option", *target, "-ga", "terminal-overrides", ",xterm*:smcup@:rmcup@"],
            ["bind-key", "-T", "root", "S-PageUp", "copy-mode", "-eu"],
            ["bind-key", "-T", "copy-mode-vi", "S-PageUp", "send-keys", "-X", "page-up"],
            ["bind-key", "-T", "copy-mode-vi", "S-PageDown", "send-keys", "-X", "page-down"],
            ["bind-key", "-n", options.detach_key, "detach-client"],
        ]
        if options.yolo_key and options.yolo_command:
            steps.append([
                "bind-key", "-n", options.yolo_key, "run-shell",
                f"{options.yolo_command} \"$(tmux display-message -p '#{{session_name}}')\" 2>/dev/null",
            ])
        if options.window_title:
            steps.append(["rename-window", "-t", f"{name}:0", options.window_title])

        for args in steps:
            code, _, stderr = run_tmux(args)
            if code != 0:
                logger.warning(f"[tmux] option {' '.join(args[:4])} failed on {name}: {stderr.strip()}")

    def kill(self, name: str) -> None:
        if not self.session_exists(name):
            return
        code, _, stderr = run_tmux(["kill-session", "-t", f"={name}"])
        if code != 0 and self.session_exists(name):
            raise ExternalError(f"failed to kill tmux session {name}", ["kill-session", name], stderr)
        logger.info(f"[tmux] killed session {name}")

    def respawn(self, name: str, cwd: str, command: str) -> None:
        _check(
            ["respawn-pane", "-k", "-t", f"{name}:0", "-c", cwd, command],
            f"failed to respawn {name}",
        )

    # ------------------------------------------------------------------ #
    # I/O                                                                  #
    # ------------------------------------------------------------------ #

    def capture(self, name: str, last_n: int, ansi: bool = True) -> list[str]:
        args = ["capture-pane", "-t", name, "-p", "-J", "-S", f"-{max(0, last_n)}"]
        if ansi:
            args.insert(4, "-e")
        stdout = _check(args, f"failed to capture pane of {name}")
        text = remove_wide_char_padding(stdout).rstrip("\n")
        return text.split("\n") if text else []

    def send_keys(self, name: str, keys: str) -> None:
        _check(["send-keys", "-t", name, keys], f"failed to send keys to {name}")

    def send_text(self, name: str, text: str) -> None:
        _check(["send-keys", "-l", "-t", name, text], f"failed to send text to {name}")

    def attach(self, name: str) -> int:
        """Attach with the caller's stdin/stdout/stderr; blocks until detach."""
        cmd = [TMUX_BIN, "attach-session", "-t", name]
        logger.debug(f"[tmux] attach {name}")
        try:
            return subprocess.run(cmd).returncode
        except OSError as exc:
            raise ExternalError(f"cannot attach to {name}", cmd, str(exc)) from exc

    # ------------------------------------------------------------------ #
    # Window geometry                                                      #
    # ------------------------------------------------------------------ #

    def resize(self, name: str, width: int, height: int) -> None:
        _check(
            ["resize-window", "-t", name, "-x", str(width), "-y", str(height)],
            f"failed to resize {name}",
        )

    def bind_detach(self, name: str, key: str, width: int, height: int) -> None:
        script = (
            "SESSION=$(tmux display-message -p '#{session_name}'); "
            f"case \"$SESSION\" in {self.session_prefix}_*) "
            f"tmux resize-window -t {name} -x {width} -y {height};; esac; "
            "tmux detach-client"
        )
        code, _, stderr = run_tmux(["bind-key", "-n", key, "run-shell", script])
        if code != 0:
            logger.warning(f"[tmux] detach binding failed: {stderr.strip()}")

    def set_style(self, name: str, style: str) -> None:
        code, _, stderr = run_tmux(["set-option", "-t", name, "status-style", style])
        if code != 0:
            logger.warning(f"[tmux] status-style failed on {name}: {stderr.strip()}")

    def rename_window(self, name: str, title: str) -> None:
        run_tmux(["rename-window", "-t", f"{name}:0", title])

    @staticmethod
    def command_exists(command: str) -> bool:
        return shutil.which(command) is not None

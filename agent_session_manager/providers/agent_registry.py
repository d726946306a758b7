"""Registry of supported CLI agents and their command lines."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from enum import Enum

from agent_session_manager.errors import InvalidInputError


class AgentKind(str, Enum):
    """Closed set of agent CLIs the manager knows how to launch."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    AIDER = "aider"
    CODEX = "codex"
    AMAZONQ = "amazonq"
    OPENCODE = "opencode"
    CUSTOM = "custom"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AgentDef:
    """CLI agent metadata."""

    kind: AgentKind
    name: str
    command: str
    env_override: str
    auto_yes_flag: str = ""
    resume_flag: str = ""
    resume_is_subcommand: bool = False
    # Keystroke that flips auto-approve inside a running agent (no CLI flag)
    auto_yes_keys: str = ""

    @property
    def supports_auto_yes(self) -> bool:
        return bool(self.auto_yes_flag)

    @property
    def supports_resume(self) -> bool:
        return bool(self.resume_flag)

    def resolve_command(self) -> str:
        """Resolve command from env override or default command."""
        value = os.getenv(self.env_override, "").strip() if self.env_override else ""
        return value or self.command


AGENT_DEFS: dict[AgentKind, AgentDef] = {
    AgentKind.CLAUDE: AgentDef(
        kind=AgentKind.CLAUDE,
        name="Claude Code",
        command="claude",
        env_override="ASMGR_CLAUDE_CMD",
        auto_yes_flag="--dangerously-skip-permissions",
        resume_flag="--resume",
    ),
    AgentKind.GEMINI: AgentDef(
        kind=AgentKind.GEMINI,
        name="Gemini CLI",
        command="gemini",
        env_override="ASMGR_GEMINI_CMD",
        resume_flag="--resume",
        auto_yes_keys="C-y",
    ),
    AgentKind.AIDER: AgentDef(
        kind=AgentKind.AIDER,
        name="Aider",
        command="aider",
        env_override="ASMGR_AIDER_CMD",
        auto_yes_flag="--yes",
    ),
    AgentKind.CODEX: AgentDef(
        kind=AgentKind.CODEX,
        name="Codex CLI",
        command="codex",
        env_override="ASMGR_CODEX_CMD",
        auto_yes_flag="--full-auto",
        resume_flag="resume",
        resume_is_subcommand=True,
    ),
    AgentKind.AMAZONQ: AgentDef(
        kind=AgentKind.AMAZONQ,
        name="Amazon Q",
        command="q",
        env_override="ASMGR_AMAZONQ_CMD",
        auto_yes_flag="--trust-all-tools",
        resume_flag="chat --resume",
        resume_is_subcommand=True,
    ),
    AgentKind.OPENCODE: AgentDef(
        kind=AgentKind.OPENCODE,
        name="OpenCode",
        command="opencode",
        env_override="ASMGR_OPENCODE_CMD",
        resume_flag="--session",
    ),
    AgentKind.CUSTOM: AgentDef(
        kind=AgentKind.CUSTOM,
        name="Custom",
        command="",
        env_override="",
    ),
}


def parse_agent_kind(value: str | AgentKind | None) -> AgentKind:
    """Parse an agent tag; empty means Claude (older registries omit it)."""
    if isinstance(value, AgentKind):
        return value
    key = (value or "").strip().lower()
    if not key:
        return AgentKind.CLAUDE
    try:
        return AgentKind(key)
    except ValueError:
        choices = ", ".join(k.value for k in AgentKind)
        raise InvalidInputError(f"Unknown agent type '{value}'. Expected one of: {choices}") from None


def get_agent_def(agent: str | AgentKind | None) -> AgentDef:
    """Get an agent definition by key."""
    return AGENT_DEFS[parse_agent_kind(agent)]


def base_command(agent: str | AgentKind | None, custom_command: str = "") -> str:
    """Executable name that must be resolvable on ``PATH`` before spawning."""
    kind = parse_agent_kind(agent)
    if kind is AgentKind.CUSTOM:
        parts = shlex.split(custom_command or "")
        if not parts:
            raise InvalidInputError("custom agent requires a non-empty command")
        return parts[0]
    return shlex.split(AGENT_DEFS[kind].resolve_command())[0]


def build_command(
    agent: str | AgentKind | None,
    auto_yes: bool = False,
    resume_token: str = "",
    custom_command: str = "",
) -> str:
    """Build the shell command line tmux runs for an agent.

    Flag-style resume goes last (``claude --dangerously-skip-permissions
    --resume TOKEN``); subcommand-style resume goes first (``codex resume
    --full-auto TOKEN``).
    """
    kind = parse_agent_kind(agent)
    if kind is AgentKind.CUSTOM:
        command = (custom_command or "").strip()
        if not command:
            raise InvalidInputError("custom agent requires a non-empty command")
        return command

    agent_def = AGENT_DEFS[kind]
    token = (resume_token or "").strip()
    args: list[str] = []
    resuming = bool(token) and agent_def.supports_resume

    if resuming and agent_def.resume_is_subcommand:
        args.append(agent_def.resume_flag)
    if auto_yes and agent_def.supports_auto_yes:
        args.append(agent_def.auto_yes_flag)
    if resuming:
        if agent_def.resume_is_subcommand:
            args.append(shlex.quote(token))
        else:
            args.append(f"{agent_def.resume_flag} {shlex.quote(token)}")

    return " ".join([agent_def.resolve_command(), *args])

"""Filter agent TUI chrome out of captured pane output.

Chrome rules are table-driven: one :class:`FilterConfig` per agent, compiled
in below and overridable per agent from ``filters.json`` in the config root.

Agent-specific chrome handled by the defaults:
- Claude Code: ``? for shortcuts`` / ``Context left`` status bar, ╭ ╰ boxes, ``>`` prompt
- Gemini CLI: ``Type your message`` placeholder, boxed input, ``~/`` path bar
- Codex CLI: ``context left`` status, ``›`` / ``codex>`` prompt chrome
- OpenCode: ``┃``-prefixed content lines, model/cost status bar
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agent_session_manager.providers.agent_registry import AgentKind, parse_agent_kind
from agent_session_manager.providers.ansi import (
    clean_line,
    has_separator_run,
    is_box_corner,
    separator_count,
)
from agent_session_manager.utils.helpers import get_config_root, write_json_atomic

FILTERS_FILENAME = "filters.json"

STOPPED_PLACEHOLDER = "stopped"
UNKNOWN_PLACEHOLDER = "..."


class FilterConfig(BaseModel):
    """Skip/extract rules applied to one ANSI-stripped line."""

    skip_contains: list[str] = Field(default_factory=list)
    skip_prefixes: list[str] = Field(default_factory=list)
    skip_suffixes: list[str] = Field(default_factory=list)
    skip_exact: list[str] = Field(default_factory=list)
    min_separators: int = 0
    content_prefix: str = ""
    min_content_len: int = 0
    show_contains: list[str] = Field(default_factory=list)
    show_as: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


def default_filters() -> dict[str, FilterConfig]:
    """Compiled-in filter table, one entry per agent kind."""
    return {
        AgentKind.CLAUDE.value: FilterConfig(
            skip_contains=["? for", "Context left", "accept edits"],
            skip_prefixes=["╭", "╰"],
            skip_exact=[">"],
            min_separators=20,
        ),
        AgentKind.GEMINI.value: FilterConfig(
            skip_contains=["Type your message"],
            skip_prefixes=["╭", "╰", "│", ">", "~/"],
            min_separators=20,
        ),
        AgentKind.AIDER.value: FilterConfig(
            skip_prefixes=[">", "aider>"],
            min_separators=20,
        ),
        AgentKind.CODEX.value: FilterConfig(
            skip_contains=["context left", "? for"],
            skip_prefixes=[">", "codex>", "›", "╭", "╰", "│"],
            min_separators=20,
        ),
        AgentKind.AMAZONQ.value: FilterConfig(
            skip_contains=["Amazon Q"],
            skip_prefixes=[">"],
            min_separators=20,
        ),
        AgentKind.OPENCODE.value: FilterConfig(
            skip_contains=[
                "ctrl+?",
                "Context:",
                "press enter to send",
                "press esc",
                "No diagnostics",
                "GPT-4o",
                "Cost:",
            ],
            skip_prefixes=["└", "├", "│", "Glob:", "List:", "Task:"],
            skip_exact=[">", "›"],
            min_separators=15,
            content_prefix="┃",
            min_content_len=15,
            show_contains=["Generating"],
            show_as=["Generating..."],
        ),
        AgentKind.CUSTOM.value: FilterConfig(),
    }


# ------------------------------------------------------------------ #
# filters.json                                                         #
# ------------------------------------------------------------------ #

_cache_lock = threading.Lock()
_cache: dict[Path, dict[str, FilterConfig]] = {}


def get_filters_path(root: Path | None = None) -> Path:
    return (root or get_config_root()) / FILTERS_FILENAME


def load_filters(root: Path | None = None, *, reload: bool = False) -> dict[str, FilterConfig]:
    """Return the filter table, with ``filters.json`` entries replacing defaults.

    The result is cached per config root. A missing or malformed file falls
    back to the defaults.
    """
    path = get_filters_path(root)
    with _cache_lock:
        if not reload and path in _cache:
            return _cache[path]

        table = default_filters()
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(raw, dict):
                    raise ValueError("top-level value must be an object")
                for agent, entry in raw.items():
                    table[str(agent)] = FilterConfig.model_validate(entry or {})
                logger.debug(f"[filters] loaded overrides for {sorted(raw)} from {path}")
            except (OSError, ValueError, ValidationError) as exc:
                logger.warning(f"[filters] ignoring {path}: {exc}")
                table = default_filters()

        _cache[path] = table
        return table


def save_default_filters(root: Path | None = None) -> Path:
    """Write the compiled-in table to ``filters.json`` for hand editing."""
    path = get_filters_path(root)
    payload = {agent: cfg.model_dump() for agent, cfg in default_filters().items()}
    write_json_atomic(path, payload)
    with _cache_lock:
        _cache.pop(path, None)
    return path


def filter_for(agent: str | AgentKind | None, root: Path | None = None) -> FilterConfig | None:
    return load_filters(root).get(parse_agent_kind(agent).value)


# ------------------------------------------------------------------ #
# Line classification                                                  #
# ------------------------------------------------------------------ #


def apply_filter(config: FilterConfig | None, clean: str) -> tuple[bool, str]:
    """Apply one agent's rules to an ANSI-stripped, trimmed line.

    Returns ``(skip, content)``. ``content`` is non-empty only when the rules
    synthesize or extract display text for the line.
    """
    if config is None:
        return False, ""

    if config.min_separators > 0 and separator_count(clean) > config.min_separators:
        return True, ""
    if clean in config.skip_exact:
        return True, ""
    if any(clean.startswith(p) for p in config.skip_prefixes):
        return True, ""
    if any(clean.endswith(s) for s in config.skip_suffixes):
        return True, ""
    if any(c in clean for c in config.skip_contains):
        return True, ""

    for idx, token in enumerate(config.show_contains):
        if token in clean:
            if idx < len(config.show_as):
                return False, config.show_as[idx]
            return False, token

    if config.content_prefix and clean.startswith(config.content_prefix):
        extracted = clean[len(config.content_prefix):].strip()
        if len(extracted) >= config.min_content_len:
            return False, extracted
        return True, ""

    return False, ""


def is_preview_chrome(clean: str, status_tokens: list[str] | tuple[str, ...] = ()) -> bool:
    """Check whether a stripped tail line is chrome that preview trimming drops."""
    if not clean:
        return True
    if has_separator_run(clean):
        return True
    if is_box_corner(clean):
        return True
    if clean == ">":
        return True
    return any(token in clean for token in status_tokens)


def trim_preview(lines: list[str], n: int, status_tokens: list[str] | tuple[str, ...] = ()) -> list[str]:
    """Drop trailing chrome, then keep the last ``n`` lines (ANSI preserved)."""
    if n <= 0:
        return []
    end = len(lines)
    while end > 0 and is_preview_chrome(clean_line(lines[end - 1]), status_tokens):
        end -= 1
    return lines[max(0, end - n):end]


def last_meaningful_line(lines: list[str], config: FilterConfig | None) -> str:
    """Most recent non-chrome line, or the content the filter synthesized for it."""
    tokens = config.skip_contains if config is not None else ()
    for line in reversed(lines):
        clean = clean_line(line)
        if is_preview_chrome(clean, tokens):
            continue
        skip, content = apply_filter(config, clean)
        if skip:
            continue
        if content:
            return content
        return line
    return UNKNOWN_PLACEHOLDER

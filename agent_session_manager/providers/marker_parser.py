"""Snapshot-based activity inference for agent panes.

Instead of tracking a stream of output, each refresh takes a capture of the
pane and classifies it as idle, busy or waiting on the user. Waiting always
wins over busy: agents keep animating spinners while a permission dialog is
on screen.

Known limitation: ``esc to cancel`` also shows up during some long
non-interactive runs, which reads as waiting.
"""

from __future__ import annotations

from enum import Enum

from agent_session_manager.providers.agent_registry import AgentKind, parse_agent_kind
from agent_session_manager.providers.ansi import clean_line, is_separator


class Activity(Enum):
    """Advisory activity state of an agent pane (never persisted)."""

    IDLE = "idle"
    BUSY = "busy"
    WAITING = "waiting"


# Case-sensitive
BUSY_KEYWORDS: tuple[str, ...] = (
    "esc to interrupt",
    "tokens",
    "Generating",
)

# Matched against the lowercased line
WAITING_KEYWORDS: tuple[str, ...] = (
    "allow once",
    "allow always",
    "yes, allow",
    "no, and tell",
    "esc to cancel",
    "do you want to proceed",
    "waiting for user",
    "waiting for tool",
    "apply this change",
)

CLAUDE_WAITING_KEYWORDS: tuple[str, ...] = ("? for shortcuts",)

SPINNER_GLYPHS: tuple[str, ...] = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

SEPARATOR_THRESHOLD = 20
THINKING_LOOKBACK = 15
CLAUDE_FALLBACK_LINES = 10
GENERIC_TAIL_LINES = 15

_THINKING_SKIP_PREFIXES = ("╭", "╰", "└", "Tip:")


def _last_non_empty(cleaned: list[str], count: int) -> list[str]:
    result: list[str] = []
    for line in reversed(cleaned):
        if line:
            result.append(line)
            if len(result) >= count:
                break
    return result


def claude_candidate_lines(lines: list[str]) -> list[str]:
    """Select the lines of a Claude Code screen that carry activity signals.

    The prompt sits between the last two horizontal rules. When that input
    area holds only the prompt, the spinner and ``esc to interrupt`` hint live
    just above the top rule, so those lines are added after the input area.
    """
    cleaned = [clean_line(line) for line in lines]
    separators = [idx for idx, line in enumerate(cleaned) if is_separator(line, SEPARATOR_THRESHOLD)]

    if len(separators) >= 2:
        top, bottom = separators[-2], separators[-1]
        input_area = [line for line in cleaned[top + 1:bottom] if line]
        thinking_area: list[str] = []
        if len(input_area) <= 1:
            for idx in range(top - 1, max(-1, top - 1 - THINKING_LOOKBACK), -1):
                line = cleaned[idx]
                if not line or idx in separators or line.startswith(_THINKING_SKIP_PREFIXES):
                    continue
                thinking_area.append(line)
        return input_area + thinking_area

    if len(separators) == 1:
        return [line for line in cleaned[separators[0] + 1:] if line]

    return _last_non_empty(cleaned, CLAUDE_FALLBACK_LINES)


def generic_candidate_lines(lines: list[str]) -> list[str]:
    return _last_non_empty([clean_line(line) for line in lines], GENERIC_TAIL_LINES)


def classify(candidates: list[str], extra_waiting: tuple[str, ...] = ()) -> Activity:
    """Waiting keywords first, then busy keywords and spinners, else idle."""
    waiting = WAITING_KEYWORDS + extra_waiting
    for line in candidates:
        lowered = line.lower()
        if any(pattern in lowered for pattern in waiting):
            return Activity.WAITING

    for line in candidates:
        if any(pattern in line for pattern in BUSY_KEYWORDS):
            return Activity.BUSY
        if any(glyph in line for glyph in SPINNER_GLYPHS):
            return Activity.BUSY

    return Activity.IDLE


def detect_activity(agent: str | AgentKind | None, lines: list[str]) -> Activity:
    """Classify a capture. Pure: identical input yields identical output."""
    if parse_agent_kind(agent) is AgentKind.CLAUDE:
        return classify(claude_candidate_lines(lines), CLAUDE_WAITING_KEYWORDS)
    return classify(generic_candidate_lines(lines))

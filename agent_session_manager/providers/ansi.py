"""ANSI escape handling and chrome recognisers for captured pane text."""

from __future__ import annotations

import re

from rich.cells import get_character_cell_size

# ── Escape sequences ─────────────────────────────────────────────────────────

ANSI_FULL_RE = re.compile(
    r"\x1b\[[0-9;?]*[A-Za-z]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()][0-9A-Za-z]"
    r"|\x1bP[^\x1b]*\x1b\\"
)
# CSI sequences only; these are what tmux emits with ``capture-pane -e``
_CSI_RE = re.compile(r"\x1b\[[^A-Za-z]*[A-Za-z]?")
CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")

# ── Chrome ───────────────────────────────────────────────────────────────────

SEPARATOR_CHARS = "─━"
SEPARATOR_RUN_RE = re.compile(r"[─━]{20,}")
BOX_CORNERS = ("╭", "╰")


def strip_ansi(text: str) -> str:
    """Strip all ANSI escape sequences from text."""
    return ANSI_FULL_RE.sub("", text)


def strip_control(text: str) -> str:
    """Strip non-printable control characters (keep \\n, \\t, \\r)."""
    return CONTROL_CHAR_RE.sub("", text)


def clean_line(line: str) -> str:
    """ANSI-stripped, whitespace-trimmed form of a captured line."""
    return strip_control(strip_ansi(line)).strip()


def separator_count(clean: str) -> int:
    return sum(clean.count(ch) for ch in SEPARATOR_CHARS)


def is_separator(clean: str, threshold: int = 20) -> bool:
    """True when ``clean`` holds more than ``threshold`` horizontal-rule chars."""
    return separator_count(clean) > threshold


def has_separator_run(clean: str) -> bool:
    """True when ``clean`` contains 20 or more consecutive ``─``/``━``."""
    return bool(SEPARATOR_RUN_RE.search(clean))


def is_box_corner(clean: str) -> bool:
    return clean.startswith(BOX_CORNERS)


def remove_wide_char_padding(text: str) -> str:
    """Drop the space tmux ``-J`` inserts after each double-width character.

    Escape sequences are copied through untouched.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        if text[i] == "\x1b":
            m = _CSI_RE.match(text, i)
            if m:
                out.append(m.group(0))
                i = m.end()
                continue
        ch = text[i]
        out.append(ch)
        i += 1
        if i < n and text[i] == " " and get_character_cell_size(ch) == 2:
            i += 1
    return "".join(out)

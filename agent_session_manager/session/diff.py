"""Git diff statistics for an instance's working directory."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass

from loguru import logger


@dataclass
class DiffStats:
    """Added/removed line counts plus the raw diff text."""

    added: int = 0
    removed: int = 0
    content: str = ""
    error: str = ""

    @property
    def is_empty(self) -> bool:
        return self.added == 0 and self.removed == 0


def _git(path: str, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", "-C", path, *args],
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
    )


def is_git_repo(path: str) -> bool:
    try:
        return _git(path, "rev-parse", "--git-dir").returncode == 0
    except OSError:
        return False


def head_commit(path: str) -> str:
    """HEAD sha of ``path``, or an empty string outside a repository."""
    try:
        result = _git(path, "rev-parse", "HEAD")
    except OSError:
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""


def count_diff_lines(content: str) -> tuple[int, int]:
    added = removed = 0
    for line in content.splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def diff_stats(path: str, base_ref: str = "") -> DiffStats:
    """Diff the working tree against ``base_ref`` (or the index when empty).

    Untracked files are marked intent-to-add first so new files show up.
    """
    if not is_git_repo(path):
        return DiffStats(error="not a git repository")

    _git(path, "add", "-N", ".")
    args = ["--no-pager", "diff"]
    if base_ref:
        args.append(base_ref)
    result = _git(path, *args)
    if result.returncode != 0:
        logger.debug(f"[diff] git diff failed in {path}: {result.stderr.strip()}")
        return DiffStats(error=f"git diff failed: {result.stderr.strip()}")

    added, removed = count_diff_lines(result.stdout)
    return DiffStats(added=added, removed=removed, content=result.stdout)

"""Error kinds raised by the session core.

Every error surfaced to a host derives from :class:`AsmError` so the CLI and
the TUI can report failures with a single ``except`` clause.
"""

from __future__ import annotations


class AsmError(Exception):
    """Base class for agent-session-manager errors."""


class NotFoundError(AsmError):
    """Instance, project or group does not exist."""


class ConflictError(AsmError):
    """Name collision, or a resource already held by someone else."""


class AlreadyLockedError(ConflictError):
    """Project lock is held by another live process."""

    def __init__(self, holder_pid: int, path: str = "") -> None:
        self.holder_pid = holder_pid
        self.path = path
        super().__init__(f"project is already open in another process (pid {holder_pid})")


class InvalidInputError(AsmError):
    """Caller supplied a value the core cannot act on."""


class NotRunningError(AsmError):
    """Operation needs a live multiplexer session but none exists."""


class AlreadyRunningError(AsmError):
    """Session is already live."""


class ExternalError(AsmError):
    """A multiplexer or agent subprocess failed unexpectedly."""

    def __init__(self, message: str, argv: list[str] | None = None, stderr: str = "") -> None:
        self.argv = list(argv or [])
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"{message}{detail}")


class StorageError(AsmError):
    """Read, write or parse failure on a registry, project or lock file."""

"""Per-project single-instance PID lock.

The lock is a plain file holding the decimal PID of the owning process. A
crash leaves the file behind; the next ``acquire`` reclaims it once the
recorded process is gone.
"""

from __future__ import annotations

import os
from pathlib import Path
from types import TracebackType

from loguru import logger

from agent_session_manager.errors import AlreadyLockedError, StorageError
from agent_session_manager.utils.helpers import ensure_dir, get_config_root

DEFAULT_LOCK_NAME = "default.lock"
PROJECT_LOCK_NAME = "project.lock"


def lock_path(project_id: str = "", root: Path | None = None) -> Path:
    """``<root>/default.lock`` for the default project, else ``projects/<id>/project.lock``."""
    base = root or get_config_root()
    if not project_id:
        return base / DEFAULT_LOCK_NAME
    return base / "projects" / project_id / PROJECT_LOCK_NAME


def pid_alive(pid: int) -> bool:
    """Null-signal liveness probe."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError:
        return False
    return True


def read_holder(path: Path) -> int | None:
    """PID recorded in ``path``; None when absent, unreadable or not decimal."""
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(raw) if raw.isascii() and raw.isdigit() else None


def is_locked(project_id: str = "", root: Path | None = None) -> tuple[bool, int]:
    """Check for a live holder without acquiring. Returns ``(locked, pid)``."""
    pid = read_holder(lock_path(project_id, root))
    if pid is not None and pid_alive(pid):
        return True, pid
    return False, 0


class ProjectLock:
    """PID-file lock guarding one project against concurrent managers."""

    def __init__(self, project_id: str = "", root: Path | None = None) -> None:
        self.project_id = project_id
        self.path = lock_path(project_id, root)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Take the lock or raise :class:`AlreadyLockedError`."""
        me = os.getpid()
        holder = read_holder(self.path)
        if holder is not None and holder != me and pid_alive(holder):
            raise AlreadyLockedError(holder, str(self.path))

        try:
            ensure_dir(self.path.parent)
            if self.path.exists():
                logger.info(f"[lock] reclaiming stale lock {self.path} (pid {holder})")
                self.path.unlink(missing_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            # Lost a race with another manager starting at the same moment
            racer = read_holder(self.path) or 0
            raise AlreadyLockedError(racer, str(self.path)) from None
        except OSError as exc:
            raise StorageError(f"cannot create lock {self.path}: {exc}") from exc

        try:
            os.write(fd, str(me).encode("ascii"))
        except OSError as exc:
            raise StorageError(f"cannot write lock {self.path}: {exc}") from exc
        finally:
            os.close(fd)
        self._held = True
        logger.debug(f"[lock] acquired {self.path}")

    def release(self) -> None:
        """Remove the lock file if this object wrote it. Idempotent."""
        if not self._held:
            return
        self._held = False
        try:
            if read_holder(self.path) == os.getpid():
                self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning(f"[lock] could not remove {self.path}: {exc}")
        logger.debug(f"[lock] released {self.path}")

    def __enter__(self) -> "ProjectLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

"""Persistent project list (``projects.json``).

Each project owns an independent registry and lock under
``projects/{project_id}/``. The default project (empty id) is implicit and
never listed.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from agent_session_manager.errors import ConflictError, InvalidInputError, NotFoundError, StorageError
from agent_session_manager.session.models import Project, ProjectsFile, dump_model
from agent_session_manager.utils.helpers import generate_id, get_config_root, now_iso, write_json_atomic

PROJECTS_FILENAME = "projects.json"
_PROJECTS_DIR = "projects"


def generate_project_id(name: str) -> str:
    return generate_id((name or "").replace("_", "-"), prefix="proj", sep="-")


class ProjectStore:
    """Persistent store for projects."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root or get_config_root()

    @property
    def path(self) -> Path:
        return self._root / PROJECTS_FILENAME

    # ------------------------------------------------------------------ #
    # File I/O                                                             #
    # ------------------------------------------------------------------ #

    def load(self) -> ProjectsFile:
        if not self.path.exists():
            return ProjectsFile()
        try:
            return ProjectsFile.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"failed to read projects file: {exc}") from exc

    def save(self, data: ProjectsFile) -> None:
        try:
            write_json_atomic(self.path, dump_model(data))
        except OSError as exc:
            raise StorageError(f"failed to write projects file: {exc}") from exc

    # ------------------------------------------------------------------ #
    # CRUD                                                                 #
    # ------------------------------------------------------------------ #

    def list_projects(self) -> list[Project]:
        """Projects in creation order."""
        return self.load().projects

    def add_project(self, name: str, path: str = "") -> Project:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("project name must not be empty")
        data = self.load()
        if any(p.name == name for p in data.projects):
            raise ConflictError(f"project with name '{name}' already exists")
        project = Project(
            id=generate_project_id(name),
            name=name,
            path=path or None,
            created_at=now_iso(),
        )
        data.projects.append(project)
        self.save(data)
        (self._root / _PROJECTS_DIR / project.id).mkdir(parents=True, exist_ok=True)
        logger.info(f"[projects] created {name} ({project.id})")
        return project

    def get_project(self, project_id: str) -> Project:
        for project in self.load().projects:
            if project.id == project_id:
                return project
        raise NotFoundError(f"project not found: {project_id}")

    def find_project(self, key: str) -> Project:
        """Look up by id first, then by name."""
        projects = self.load().projects
        for project in projects:
            if project.id == key:
                return project
        for project in projects:
            if project.name == key:
                return project
        raise NotFoundError(f"project not found: {key}")

    def rename_project(self, project_id: str, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("project name must not be empty")
        data = self.load()
        target = next((p for p in data.projects if p.id == project_id), None)
        if target is None:
            raise NotFoundError(f"project not found: {project_id}")
        if any(p.name == name and p.id != project_id for p in data.projects):
            raise ConflictError(f"project with name '{name}' already exists")
        target.name = name
        self.save(data)

    def remove_project(self, project_id: str) -> None:
        """Forget a project and delete its directory (registry and lock)."""
        data = self.load()
        remaining = [p for p in data.projects if p.id != project_id]
        if len(remaining) == len(data.projects):
            raise NotFoundError(f"project not found: {project_id}")
        data.projects = remaining
        if data.last_project == project_id:
            data.last_project = None
        d = self._root / _PROJECTS_DIR / project_id
        if d.exists():
            shutil.rmtree(d, ignore_errors=True)
        self.save(data)
        logger.info(f"[projects] removed {project_id}")

    # ------------------------------------------------------------------ #
    # Last opened                                                          #
    # ------------------------------------------------------------------ #

    def last_project(self) -> str:
        return self.load().last_project or ""

    def set_last_project(self, project_id: str) -> None:
        data = self.load()
        data.last_project = project_id or None
        self.save(data)

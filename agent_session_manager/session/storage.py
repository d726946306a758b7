"""Per-project JSON registry of instances, groups and settings.

Directory layout::

    ~/.config/agent-session-manager/
        sessions.json              registry of the default project
        default.lock
        projects.json              see project_store
        projects/
            {project_id}/
                sessions.json
                project.lock

Every mutation is read-modify-write on the active project's file. Concurrent
writers are kept out by the project lock, not by locking the JSON file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from loguru import logger
from pydantic import ValidationError

from agent_session_manager.errors import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    StorageError,
)
from agent_session_manager.session.instance import Instance, InstanceRuntime
from agent_session_manager.session.models import Group, Registry, Settings, dump_model
from agent_session_manager.utils.helpers import ensure_dir, get_config_root, write_json_atomic

SESSIONS_FILENAME = "sessions.json"
PROJECTS_DIR = "projects"


class Storage:
    """Registry store bound to one active project at a time.

    The default project has the empty id and lives at the config root.
    """

    def __init__(self, root: Path | None = None, runtime: InstanceRuntime | None = None) -> None:
        self.root = root or get_config_root()
        self.runtime = runtime
        self._project_id = ""
        ensure_dir(self.root)

    # ------------------------------------------------------------------ #
    # Paths                                                                #
    # ------------------------------------------------------------------ #

    @property
    def active_project(self) -> str:
        return self._project_id

    def project_dir(self, project_id: str) -> Path:
        if not project_id:
            return self.root
        return self.root / PROJECTS_DIR / project_id

    def registry_path(self, project_id: str | None = None) -> Path:
        pid = self._project_id if project_id is None else project_id
        return self.project_dir(pid) / SESSIONS_FILENAME

    def set_active_project(self, project_id: str) -> None:
        """Point subsequent loads and saves at ``project_id``'s registry."""
        project_id = project_id or ""
        if project_id and ("/" in project_id or project_id in {".", ".."}):
            raise InvalidInputError(f"invalid project id: {project_id!r}")
        try:
            ensure_dir(self.project_dir(project_id))
        except OSError as exc:
            raise StorageError(f"cannot create project directory: {exc}") from exc
        self._project_id = project_id
        logger.debug(f"[storage] active project = {project_id or '(default)'}")

    # ------------------------------------------------------------------ #
    # Load / save                                                          #
    # ------------------------------------------------------------------ #

    def _read(self, project_id: str | None = None) -> Registry:
        path = self.registry_path(project_id)
        if not path.exists():
            registry = Registry()
        else:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                registry = Registry.model_validate(data)
            except (OSError, json.JSONDecodeError, ValidationError) as exc:
                raise StorageError(f"failed to read registry {path}: {exc}") from exc
        if self.runtime is not None:
            for inst in registry.instances:
                inst.bind(self.runtime)
        return registry

    def _write(self, registry: Registry, project_id: str | None = None) -> None:
        path = self.registry_path(project_id)
        try:
            write_json_atomic(path, dump_model(registry))
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"failed to write registry {path}: {exc}") from exc
        logger.debug(f"[storage] saved {len(registry.instances)} instance(s) to {path}")

    def load(self, project_id: str | None = None) -> Registry:
        """Read the registry and refresh each instance's status from tmux.

        Status refresh failures are logged and read as stopped. The file
        itself is not rewritten.
        """
        registry = self._read(project_id)
        for inst in registry.instances:
            inst.refresh_status()
        return registry

    def save(self, registry: Registry, project_id: str | None = None) -> None:
        """Write instances, groups and settings atomically, in the given order."""
        self._write(registry, project_id)

    def save_all(
        self,
        instances: list[Instance],
        groups: list[Group],
        settings: Settings,
        project_id: str | None = None,
    ) -> None:
        """Replace the three sections while carrying unknown top-level keys forward."""
        registry = self._read(project_id)
        registry.instances = list(instances)
        registry.groups = list(groups)
        registry.settings = settings
        self._write(registry, project_id)

    def save_settings(self, settings: Settings) -> None:
        registry = self._read()
        registry.settings = settings
        self._write(registry)

    # ------------------------------------------------------------------ #
    # Instances                                                            #
    # ------------------------------------------------------------------ #

    def list_instances(self) -> list[Instance]:
        return self.load().instances

    def get(self, instance_id: str) -> Instance:
        inst = self.load().find(instance_id)
        if inst is None:
            raise NotFoundError(f"instance not found: {instance_id}")
        return inst

    def get_by_name(self, name: str) -> Instance:
        inst = self.load().find_by_name(name)
        if inst is None:
            raise NotFoundError(f"instance not found: {name}")
        return inst

    def add(self, instance: Instance) -> None:
        registry = self._read()
        if registry.find_by_name(instance.name) is not None:
            raise ConflictError(f"instance with name '{instance.name}' already exists")
        if registry.find(instance.id) is not None:
            raise ConflictError(f"instance with id '{instance.id}' already exists")
        if self.runtime is not None:
            instance.bind(self.runtime)
        registry.instances.append(instance)
        self._write(registry)
        logger.info(f"[storage] added {instance.name} ({instance.agent.value}) at {instance.path}")

    def remove(self, instance_id: str) -> Instance:
        """Stop the instance's session and drop it from the registry."""
        registry = self._read()
        inst = registry.find(instance_id)
        if inst is None:
            raise NotFoundError(f"instance not found: {instance_id}")
        inst.stop()
        registry.instances = [i for i in registry.instances if i.id != instance_id]
        self._write(registry)
        logger.info(f"[storage] removed {inst.name}")
        return inst

    def update(self, instance: Instance) -> None:
        """Replace the stored instance with the same id."""
        registry = self._read()
        for idx, existing in enumerate(registry.instances):
            if existing.id == instance.id:
                clash = registry.find_by_name(instance.name)
                if clash is not None and clash.id != instance.id:
                    raise ConflictError(f"instance with name '{instance.name}' already exists")
                registry.instances[idx] = instance
                self._write(registry)
                return
        raise NotFoundError(f"instance not found: {instance.id}")

    def modify_instance(self, instance_id: str, action: Callable[[Instance], object]) -> Instance:
        """Apply ``action`` to the stored instance and save it.

        Works on a fresh read, so changes written by another command (such as
        the in-session auto-yes toggle) are not overwritten by a stale copy.
        Nothing is saved when ``action`` raises.
        """
        registry = self._read()
        inst = registry.find(instance_id)
        if inst is None:
            raise NotFoundError(f"instance not found: {instance_id}")
        action(inst)
        self._write(registry)
        return inst

    def rename(self, instance_id: str, new_name: str) -> Instance:
        new_name = (new_name or "").strip()
        if not new_name:
            raise InvalidInputError("name must not be empty")
        registry = self._read()
        inst = registry.find(instance_id)
        if inst is None:
            raise NotFoundError(f"instance not found: {instance_id}")
        clash = registry.find_by_name(new_name)
        if clash is not None and clash.id != instance_id:
            raise ConflictError(f"instance with name '{new_name}' already exists")
        inst.name = new_name
        inst.touch()
        self._write(registry)
        return inst

    def find_by_session_name(self, tmux_session: str, project_ids: list[str]) -> tuple[str, Instance] | None:
        """Search the default project, then ``project_ids``, for a tmux session.

        Switches the active project to wherever the match lives.
        """
        for pid in ["", *project_ids]:
            registry = self._read(pid)
            for inst in registry.instances:
                if inst.tmux_session_name == tmux_session:
                    self.set_active_project(pid)
                    return pid, inst
        return None

    # ------------------------------------------------------------------ #
    # Groups                                                               #
    # ------------------------------------------------------------------ #

    def groups(self) -> list[Group]:
        return self._read().groups

    def add_group(self, name: str) -> Group:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("group name must not be empty")
        registry = self._read()
        if any(g.name == name for g in registry.groups):
            raise ConflictError(f"group '{name}' already exists")
        group = Group(name=name)
        registry.groups.append(group)
        self._write(registry)
        return group

    def remove_group(self, group_id: str) -> None:
        """Delete a group; its members become ungrouped."""
        registry = self._read()
        if registry.find_group(group_id) is None:
            raise NotFoundError(f"group not found: {group_id}")
        registry.groups = [g for g in registry.groups if g.id != group_id]
        for inst in registry.instances:
            if inst.group_id == group_id:
                inst.group_id = None
        self._write(registry)

    def rename_group(self, group_id: str, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("group name must not be empty")
        registry = self._read()
        group = registry.find_group(group_id)
        if group is None:
            raise NotFoundError(f"group not found: {group_id}")
        if any(g.name == name and g.id != group_id for g in registry.groups):
            raise ConflictError(f"group '{name}' already exists")
        group.name = name
        self._write(registry)

    def toggle_group_collapsed(self, group_id: str) -> bool:
        registry = self._read()
        group = registry.find_group(group_id)
        if group is None:
            raise NotFoundError(f"group not found: {group_id}")
        group.collapsed = not group.collapsed
        self._write(registry)
        return group.collapsed

    def set_instance_group(self, instance_id: str, group_id: str | None) -> None:
        """Move an instance into ``group_id`` (None or empty ungroups it)."""
        registry = self._read()
        inst = registry.find(instance_id)
        if inst is None:
            raise NotFoundError(f"instance not found: {instance_id}")
        if group_id and registry.find_group(group_id) is None:
            raise NotFoundError(f"group not found: {group_id}")
        inst.group_id = group_id or None
        self._write(registry)

    # ------------------------------------------------------------------ #
    # Import                                                               #
    # ------------------------------------------------------------------ #

    def import_sessions(self, from_project: str, to_project: str) -> int:
        """Move every instance and group from one project into another.

        Groups merge by name: moved instances adopt the destination group's id.
        Moved instances whose name is taken get a numeric suffix. The source
        is emptied only after the destination has been written.
        """
        from_project = from_project or ""
        to_project = to_project or ""
        if from_project == to_project:
            raise InvalidInputError("source and destination project are the same")

        source = self._read(from_project)
        if not source.instances and not source.groups:
            return 0
        ensure_dir(self.project_dir(to_project))
        dest = self._read(to_project)

        group_map: dict[str, str] = {}
        for group in source.groups:
            existing = next((g for g in dest.groups if g.name == group.name), None)
            if existing is not None:
                group_map[group.id] = existing.id
                continue
            if dest.find_group(group.id) is not None:
                moved = group.model_copy(update={"id": Group(name=group.name).id})
                group_map[group.id] = moved.id
                dest.groups.append(moved)
            else:
                dest.groups.append(group)

        taken = {inst.name for inst in dest.instances}
        for inst in source.instances:
            if inst.group_id and inst.group_id in group_map:
                inst.group_id = group_map[inst.group_id]
            if inst.name in taken:
                base, n = inst.name, 2
                while f"{base}-{n}" in taken:
                    n += 1
                logger.warning(f"[storage] import renamed {base} to {base}-{n}")
                inst.name = f"{base}-{n}"
            taken.add(inst.name)
            dest.instances.append(inst)

        self._write(dest, to_project)
        moved_count = len(source.instances)

        source.instances = []
        source.groups = []
        source.settings = Settings()
        self._write(source, from_project)
        logger.info(
            f"[storage] imported {moved_count} instance(s) from "
            f"{from_project or '(default)'} to {to_project or '(default)'}"
        )
        return moved_count

    def session_count(self, project_id: str) -> int:
        try:
            return len(self._read(project_id).instances)
        except StorageError as exc:
            logger.warning(f"[storage] cannot count sessions of {project_id}: {exc}")
            return 0

"""Instances, registry, projects and the single-instance lock."""

from agent_session_manager.session.instance import Instance, InstanceRuntime, InstanceStatus
from agent_session_manager.session.lock import ProjectLock, is_locked
from agent_session_manager.session.models import Group, Project, Registry, Settings
from agent_session_manager.session.project_store import ProjectStore
from agent_session_manager.session.storage import Storage

__all__ = [
    "Group",
    "Instance",
    "InstanceRuntime",
    "InstanceStatus",
    "Project",
    "ProjectLock",
    "ProjectStore",
    "Registry",
    "Settings",
    "Storage",
    "is_locked",
]

"""Persisted documents: groups, settings, registry and project list."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_session_manager.session.instance import Instance
from agent_session_manager.utils.helpers import unique_ns


class Group(BaseModel):
    """Named bucket of instances in the list view."""

    id: str = Field(default_factory=lambda: f"grp_{unique_ns()}")
    name: str
    collapsed: bool = False
    color: Optional[str] = None
    bg_color: Optional[str] = None
    full_row_color: Optional[bool] = None

    model_config = ConfigDict(extra="allow")


class Settings(BaseModel):
    """UI settings; opaque to the core apart from round-tripping."""

    compact_list: Optional[bool] = None
    hide_status_lines: Optional[bool] = None
    split_view: Optional[bool] = None
    marked_session_id: Optional[str] = None
    cursor: Optional[int] = None
    split_focus: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class Registry(BaseModel):
    """One project's ``sessions.json``: ordered instances, ordered groups, settings."""

    instances: list[Instance] = Field(default_factory=list)
    groups: list[Group] = Field(default_factory=list)
    settings: Settings = Field(default_factory=Settings)

    model_config = ConfigDict(extra="allow")

    @field_validator("instances", "groups", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("settings", mode="before")
    @classmethod
    def _null_settings(cls, value: Any) -> Any:
        return {} if value is None else value

    def find(self, instance_id: str) -> Optional[Instance]:
        return next((inst for inst in self.instances if inst.id == instance_id), None)

    def find_by_name(self, name: str) -> Optional[Instance]:
        return next((inst for inst in self.instances if inst.name == name), None)

    def find_group(self, group_id: str) -> Optional[Group]:
        return next((grp for grp in self.groups if grp.id == group_id), None)


class Project(BaseModel):
    """Entry in ``projects.json``."""

    id: str
    name: str
    path: Optional[str] = None
    created_at: str = ""
    color: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ProjectsFile(BaseModel):
    projects: list[Project] = Field(default_factory=list)
    last_project: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("projects", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


def dump_model(model: BaseModel) -> dict[str, Any]:
    """JSON-ready dict that keeps unknown fields verbatim (nulls included).

    Declared fields holding None are omitted at every nesting level.
    """
    data = model.model_dump(mode="json")
    _drop_declared_nulls(model, data)
    return data


def _drop_declared_nulls(model: BaseModel, data: dict[str, Any]) -> None:
    for name in type(model).model_fields:
        value = getattr(model, name)
        if value is None:
            data.pop(name, None)
        elif isinstance(value, BaseModel):
            _drop_declared_nulls(value, data[name])
        elif isinstance(value, list):
            for item, item_data in zip(value, data.get(name) or []):
                if isinstance(item, BaseModel):
                    _drop_declared_nulls(item, item_data)

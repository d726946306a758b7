"""Agent definitions, chrome filters and activity inference."""

from agent_session_manager.providers.agent_registry import (
    AGENT_DEFS,
    AgentDef,
    AgentKind,
    build_command,
    get_agent_def,
    parse_agent_kind,
)
from agent_session_manager.providers.marker_parser import Activity, detect_activity
from agent_session_manager.providers.signal_filter import FilterConfig, load_filters

__all__ = [
    "AGENT_DEFS",
    "Activity",
    "AgentDef",
    "AgentKind",
    "FilterConfig",
    "build_command",
    "detect_activity",
    "get_agent_def",
    "load_filters",
    "parse_agent_kind",
]

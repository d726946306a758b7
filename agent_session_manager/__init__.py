"""agent-session-manager - tmux-hosted AI coding agent sessions."""

__version__ = "0.4.0"

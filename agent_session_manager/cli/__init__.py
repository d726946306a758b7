"""Command-line interface for agent-session-manager."""

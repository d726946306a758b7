"""Entry point for ``python -m agent_session_manager``."""

from agent_session_manager.cli.commands import app

if __name__ == "__main__":
    app()

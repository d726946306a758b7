"""Terminal multiplexer bridge."""

from agent_session_manager.tmux.bridge import Multiplexer, TmuxBridge, run_tmux

__all__ = ["Multiplexer", "TmuxBridge", "run_tmux"]

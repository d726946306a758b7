import os
import unittest
from unittest.mock import patch

from agent_session_manager.errors import InvalidInputError
from agent_session_manager.providers.agent_registry import (
    AgentKind,
    base_command,
    build_command,
    get_agent_def,
    parse_agent_kind,
)


class TestParseAgentKind(unittest.TestCase):
    def test_empty_means_claude(self) -> None:
        self.assertIs(parse_agent_kind(""), AgentKind.CLAUDE)
        self.assertIs(parse_agent_kind(None), AgentKind.CLAUDE)

    def test_case_insensitive(self) -> None:
        self.assertIs(parse_agent_kind(" Codex "), AgentKind.CODEX)

    def test_unknown_raises(self) -> None:
        with self.assertRaises(InvalidInputError):
            parse_agent_kind("cursor")


class TestBuildCommand(unittest.TestCase):
    def setUp(self) -> None:
        env = {k: v for k, v in os.environ.items() if not k.endswith("_CMD")}
        patcher = patch.dict(os.environ, env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_claude_plain(self) -> None:
        self.assertEqual(build_command("claude"), "claude")

    def test_claude_auto_yes(self) -> None:
        self.assertEqual(
            build_command(AgentKind.CLAUDE, auto_yes=True),
            "claude --dangerously-skip-permissions",
        )

    def test_flag_resume_goes_last(self) -> None:
        self.assertEqual(
            build_command("claude", auto_yes=True, resume_token="abc123"),
            "claude --dangerously-skip-permissions --resume abc123",
        )

    def test_subcommand_resume_goes_first(self) -> None:
        self.assertEqual(
            build_command("codex", auto_yes=True, resume_token="abc123"),
            "codex resume --full-auto abc123",
        )
        self.assertEqual(
            build_command("amazonq", resume_token="t1"),
            "q chat --resume t1",
        )

    def test_resume_token_is_quoted(self) -> None:
        self.assertEqual(
            build_command("claude", resume_token="a b"),
            "claude --resume 'a b'",
        )

    def test_unsupported_flags_are_dropped(self) -> None:
        self.assertEqual(build_command("gemini", auto_yes=True), "gemini")
        self.assertEqual(build_command("aider", auto_yes=True, resume_token="x"), "aider --yes")

    def test_custom_command_used_verbatim(self) -> None:
        self.assertEqual(
            build_command("custom", auto_yes=True, custom_command="  my-agent --fast  "),
            "my-agent --fast",
        )

    def test_custom_requires_command(self) -> None:
        with self.assertRaises(InvalidInputError):
            build_command("custom", custom_command="   ")

    def test_env_override(self) -> None:
        with patch.dict(os.environ, {"ASMGR_CLAUDE_CMD": "/opt/bin/claude"}):
            self.assertEqual(build_command("claude", auto_yes=True), "/opt/bin/claude --dangerously-skip-permissions")
            self.assertEqual(base_command("claude"), "/opt/bin/claude")


class TestAgentDefs(unittest.TestCase):
    def test_capabilities(self) -> None:
        self.assertTrue(get_agent_def("claude").supports_resume)
        self.assertFalse(get_agent_def("aider").supports_resume)
        self.assertFalse(get_agent_def("opencode").supports_auto_yes)
        self.assertEqual(get_agent_def("gemini").auto_yes_keys, "C-y")

    def test_base_command_of_custom(self) -> None:
        self.assertEqual(base_command("custom", "my-agent --fast"), "my-agent")
        with self.assertRaises(InvalidInputError):
            base_command("custom", "")


if __name__ == "__main__":
    unittest.main()

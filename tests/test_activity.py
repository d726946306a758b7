import unittest

from agent_session_manager.providers.marker_parser import (
    Activity,
    claude_candidate_lines,
    detect_activity,
    generic_candidate_lines,
)

RULE = "─" * 40


class TestClaudeActivity(unittest.TestCase):
    def test_waiting_dominates_without_separators(self) -> None:
        lines = ["│ Generating... ⠋", "│ Do you want to proceed?", "│ 1. Yes", "│ 2. No"]
        self.assertIs(detect_activity("claude", lines), Activity.WAITING)
        self.assertIs(detect_activity("aider", lines), Activity.WAITING)

    def test_spinner_alone_is_busy(self) -> None:
        lines = ["│ Generating... ⠋"]
        self.assertIs(detect_activity("claude", lines), Activity.BUSY)

    def test_waiting_dominates_busy_between_separators(self) -> None:
        lines = [
            "⠋ Thinking… (esc to interrupt)",
            RULE,
            "Do you want to proceed?",
            RULE,
        ]
        self.assertIs(detect_activity("claude", lines), Activity.WAITING)

    def test_spinner_above_prompt_is_busy(self) -> None:
        lines = [
            "● Reading files",
            "Tip: use /clear to reset context",
            "✻ Generating… (12s · 300 tokens · esc to interrupt)",
            "",
            RULE,
            "> ",
            RULE,
            "  ? for shortcuts",
        ]
        self.assertIs(detect_activity("claude", lines), Activity.BUSY)

    def test_quiet_prompt_is_idle(self) -> None:
        lines = [
            "● Done. The parser now handles empty input.",
            "",
            RULE,
            "> ",
            RULE,
            "  ? for shortcuts",
        ]
        self.assertIs(detect_activity("claude", lines), Activity.IDLE)

    def test_single_separator_uses_lines_below(self) -> None:
        lines = [
            "old output with tokens",
            RULE,
            "Bash command",
            " 1. Yes, allow once",
            " 2. No, and tell Claude what to do differently",
        ]
        self.assertEqual(claude_candidate_lines(lines)[0], "Bash command")
        self.assertIs(detect_activity("claude", lines), Activity.WAITING)

    def test_thinking_area_skips_boxes_and_tips(self) -> None:
        lines = [
            "╭──── welcome ────╮",
            "Tip: press tab",
            "⠙ Working",
            RULE,
            ">",
            RULE,
        ]
        self.assertEqual(claude_candidate_lines(lines), [">", "⠙ Working"])

    def test_input_area_with_text_skips_thinking_area(self) -> None:
        lines = ["⠙ Working", RULE, "> first line", "second line", RULE]
        self.assertEqual(claude_candidate_lines(lines), ["> first line", "second line"])
        self.assertIs(detect_activity("claude", lines), Activity.IDLE)

    def test_no_separator_falls_back_to_tail(self) -> None:
        lines = ["esc to interrupt"] + [f"line {i}" for i in range(10)]
        self.assertIs(detect_activity("claude", lines), Activity.IDLE)
        self.assertIs(detect_activity("claude", lines[-10:] + ["⠸"]), Activity.BUSY)

    def test_ansi_is_ignored(self) -> None:
        lines = ["\x1b[2m─" + "─" * 30 + "\x1b[0m", "\x1b[1mAllow once\x1b[0m"]
        self.assertIs(detect_activity("claude", lines), Activity.WAITING)

    def test_deterministic(self) -> None:
        lines = ["⠋ Thinking… (esc to interrupt)", RULE, "> ", RULE]
        results = {detect_activity("claude", list(lines)) for _ in range(5)}
        self.assertEqual(results, {Activity.BUSY})


class TestGenericActivity(unittest.TestCase):
    def test_busy_keyword(self) -> None:
        self.assertIs(detect_activity("aider", ["Applied edit", "Generating response..."]), Activity.BUSY)

    def test_waiting_keyword_case_insensitive(self) -> None:
        self.assertIs(detect_activity("codex", ["Apply this change? [y/N]"]), Activity.WAITING)

    def test_shortcuts_hint_is_not_waiting_for_other_agents(self) -> None:
        self.assertIs(detect_activity("gemini", ["? for shortcuts"]), Activity.IDLE)

    def test_only_recent_lines_count(self) -> None:
        lines = ["Generating"] + [f"out {i}" for i in range(15)]
        self.assertEqual(len(generic_candidate_lines(lines)), 15)
        self.assertIs(detect_activity("aider", lines), Activity.IDLE)

    def test_blank_lines_do_not_count(self) -> None:
        lines = ["Generating"] + [""] * 30 + [f"out {i}" for i in range(14)]
        self.assertIs(detect_activity("aider", lines), Activity.BUSY)


if __name__ == "__main__":
    unittest.main()

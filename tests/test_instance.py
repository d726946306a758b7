import os
import re
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from agent_session_manager.errors import ExternalError, InvalidInputError, NotRunningError
from agent_session_manager.providers.marker_parser import Activity
from agent_session_manager.session.instance import (
    DEFAULT_STATUS_STYLE,
    PREVIEW_PLACEHOLDER,
    YOLO_STATUS_STYLE,
    Instance,
    InstanceRuntime,
    InstanceStatus,
)
from agent_session_manager.tmux.bridge import SessionOptions
from tests.fakes import FakeMultiplexer

RULE = "─" * 40


class InstanceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.workdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.workdir, ignore_errors=True)
        self.filters_root = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.filters_root, ignore_errors=True)
        env = {k: v for k, v in os.environ.items() if not k.endswith("_CMD")}
        patcher = patch.dict(os.environ, env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.mux = FakeMultiplexer()
        self.runtime = InstanceRuntime(mux=self.mux, startup_settle_s=0, filters_root=self.filters_root)

    def make(self, name: str = "demo", agent: str = "claude", **kwargs) -> Instance:
        return Instance.create(name, self.workdir, agent=agent, runtime=self.runtime, **kwargs)


class TestCreate(InstanceTestCase):
    def test_fresh_instance_is_stopped(self) -> None:
        inst = self.make()
        self.assertIs(inst.status, InstanceStatus.STOPPED)
        self.assertTrue(inst.id.startswith("demo_"))
        self.assertEqual(inst.path, os.path.abspath(self.workdir))

    def test_ids_are_unique(self) -> None:
        self.assertNotEqual(self.make().id, self.make().id)

    def test_rejects_bad_input(self) -> None:
        with self.assertRaises(InvalidInputError):
            self.make(name="  ")
        with self.assertRaises(InvalidInputError):
            Instance.create("demo", os.path.join(self.workdir, "missing"), runtime=self.runtime)
        with self.assertRaises(InvalidInputError):
            self.make(agent="custom")
        with self.assertRaises(InvalidInputError):
            self.make(agent="nope")


class TestLifecycle(InstanceTestCase):
    def test_fresh_claude_start(self) -> None:
        inst = self.make(auto_yes=True)
        inst.start()

        self.assertRegex(inst.tmux_session_name, re.compile(r"^asm_demo_\d+$"))
        create = self.mux.calls[0]
        self.assertEqual(create, ("create", inst.tmux_session_name, inst.path, "claude --dangerously-skip-permissions"))
        self.assertIs(inst.status, InstanceStatus.RUNNING)
        self.assertTrue(self.mux.session_exists(inst.tmux_session_name))

        configure = next(c for c in self.mux.calls if c[0] == "configure")
        options = configure[2]
        self.assertIsInstance(options, SessionOptions)
        self.assertEqual(options.history_limit, 50000)
        self.assertEqual(options.detach_key, "C-q")
        self.assertEqual(options.window_title, "claude")

    def test_start_when_running_is_noop(self) -> None:
        inst = self.make()
        inst.start()
        inst.start()
        self.assertEqual(self.mux.call_names().count("create"), 1)

    def test_start_with_resume_token(self) -> None:
        inst = self.make()
        inst.start("abc123")
        self.assertEqual(self.mux.calls[0][3], "claude --resume abc123")
        self.assertEqual(inst.resume_session_id, "abc123")

    def test_resume_ignored_for_agent_without_resume(self) -> None:
        inst = self.make(agent="aider")
        inst.start("abc123")
        self.assertEqual(self.mux.calls[0][3], "aider")
        self.assertIsNone(inst.resume_session_id)

    def test_missing_command(self) -> None:
        self.mux.missing_commands.add("claude")
        inst = self.make()
        with self.assertRaises(InvalidInputError) as ctx:
            inst.start()
        self.assertIn("not found", str(ctx.exception))
        self.assertEqual(self.mux.calls, [])

    def test_path_removed_after_create(self) -> None:
        inst = self.make()
        shutil.rmtree(self.workdir)
        with self.assertRaises(InvalidInputError):
            inst.start()

    def test_session_dies_immediately(self) -> None:
        self.mux.die_on_start = True
        inst = self.make()
        with self.assertRaises(ExternalError) as ctx:
            inst.start()
        self.assertIn("exited immediately", str(ctx.exception))
        self.assertIs(inst.status, InstanceStatus.STOPPED)

    def test_stop_is_idempotent(self) -> None:
        inst = self.make()
        inst.start()
        inst.stop()
        inst.stop()
        self.assertIs(inst.status, InstanceStatus.STOPPED)
        self.assertEqual(self.mux.call_names().count("kill"), 1)

    def test_refresh_notices_external_exit(self) -> None:
        inst = self.make()
        inst.start()
        self.mux.sessions.clear()
        self.assertIs(inst.refresh_status(), InstanceStatus.STOPPED)

    def test_refresh_error_reads_as_stopped(self) -> None:
        inst = self.make()
        inst.start()
        self.mux.fail_exists = True
        self.assertIs(inst.refresh_status(), InstanceStatus.STOPPED)


class TestInput(InstanceTestCase):
    def test_send_requires_running_session(self) -> None:
        inst = self.make()
        with self.assertRaises(NotRunningError):
            inst.send_keys("Enter")
        with self.assertRaises(NotRunningError):
            inst.attach()

    def test_send_prompt_types_then_submits(self) -> None:
        inst = self.make()
        inst.start()
        with patch("agent_session_manager.session.instance.time.sleep"):
            inst.send_prompt("fix the tests")
        received = self.mux.sessions[inst.tmux_session_name]["input"]
        self.assertEqual(received, [("text", "fix the tests"), ("keys", "Enter")])

    def test_attach_returns_exit_code(self) -> None:
        inst = self.make()
        inst.start()
        self.assertEqual(inst.attach(), 0)
        self.assertIn(("attach", inst.tmux_session_name), self.mux.calls)


class TestCapture(InstanceTestCase):
    def test_preview_trims_trailing_chrome(self) -> None:
        inst = self.make()
        inst.start()
        self.mux.screens[inst.tmux_session_name] = ["hello world", "─" * 25, "> ", "", "? for shortcuts   Context left: 12%"]
        self.assertEqual(inst.preview_lines(5), ["hello world"])
        self.assertEqual(inst.capture_preview(5), "hello world")
        capture = next(c for c in self.mux.calls if c[0] == "capture")
        self.assertEqual(capture[2], 25)
        self.assertTrue(capture[3])

    def test_preview_never_exceeds_n(self) -> None:
        inst = self.make()
        inst.start()
        self.mux.screens[inst.tmux_session_name] = [f"line {i}" for i in range(100)]
        self.assertEqual(inst.preview_lines(3), ["line 97", "line 98", "line 99"])
        self.assertEqual(inst.preview_lines(0), [])

    def test_preview_placeholder_when_stopped(self) -> None:
        self.assertEqual(self.make().preview_lines(5), [PREVIEW_PLACEHOLDER])

    def test_last_line(self) -> None:
        inst = self.make()
        self.assertEqual(inst.get_last_line(), "stopped")
        inst.start()
        self.assertEqual(inst.get_last_line(), "...")
        self.mux.screens[inst.tmux_session_name] = ["● Added a test", RULE, "> ", RULE, "? for shortcuts"]
        self.assertEqual(inst.get_last_line(), "● Added a test")

    def test_activity_uses_plain_capture(self) -> None:
        inst = self.make()
        self.assertIs(inst.detect_activity(), Activity.IDLE)
        inst.start()
        self.mux.screens[inst.tmux_session_name] = ["⠋ Thinking… (esc to interrupt)", RULE, "Allow once?", RULE]
        self.assertIs(inst.detect_activity(), Activity.WAITING)
        capture = [c for c in self.mux.calls if c[0] == "capture"][-1]
        self.assertFalse(capture[3])


class TestWindow(InstanceTestCase):
    def test_resize_and_detach_binding(self) -> None:
        inst = self.make()
        inst.resize(80, 24)
        self.assertNotIn("resize", self.mux.call_names())
        inst.start()
        inst.resize(80, 24)
        inst.update_detach_binding(80, 24)
        self.assertIn(("resize", inst.tmux_session_name, 80, 24), self.mux.calls)
        self.assertIn(("bind_detach", inst.tmux_session_name, "C-q", 80, 24), self.mux.calls)

    def test_toggle_auto_yes_respawns_with_flag(self) -> None:
        inst = self.make()
        inst.start()
        self.assertTrue(inst.toggle_auto_yes())
        session = inst.tmux_session_name
        self.assertIn(("set_style", session, YOLO_STATUS_STYLE), self.mux.calls)
        self.assertIn(("rename_window", session, " ! demo"), self.mux.calls)
        self.assertEqual(self.mux.sessions[session]["command"], "claude --dangerously-skip-permissions")

        self.assertFalse(inst.toggle_auto_yes())
        self.assertIn(("set_style", session, DEFAULT_STATUS_STYLE), self.mux.calls)
        self.assertEqual(self.mux.sessions[session]["command"], "claude")

    def test_toggle_auto_yes_when_stopped_only_flips_flag(self) -> None:
        inst = self.make()
        self.assertTrue(inst.toggle_auto_yes())
        self.assertNotIn("respawn", self.mux.call_names())

    def test_toggle_auto_yes_keystroke_agent(self) -> None:
        inst = self.make(agent="gemini")
        inst.start()
        self.assertFalse(inst.toggle_auto_yes())
        self.assertEqual(self.mux.sessions[inst.tmux_session_name]["input"], [("keys", "C-y")])

    def test_toggle_auto_yes_unsupported(self) -> None:
        with self.assertRaises(InvalidInputError):
            self.make(agent="opencode").toggle_auto_yes()


class TestDiff(InstanceTestCase):
    def test_session_diff_without_base_commit(self) -> None:
        stats = self.make().session_diff()
        self.assertTrue(stats.error)
        self.assertTrue(stats.is_empty)


if __name__ == "__main__":
    unittest.main()

import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from agent_session_manager.config import Config, load_config, save_config
from agent_session_manager.errors import StorageError
from agent_session_manager.session.instance import InstanceRuntime
from agent_session_manager.utils.helpers import (
    generate_id,
    get_config_root,
    sanitize_name,
    write_json_atomic,
)
from tests.fakes import FakeMultiplexer


class TestConfig(unittest.TestCase):
    def setUp(self) -> None:
        self.root = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.root, ignore_errors=True)
        self.path = self.root / "config.json"

    def test_missing_file_gives_defaults(self) -> None:
        config = load_config(self.path)
        self.assertEqual(config.tmux.session_prefix, "asm")
        self.assertEqual(config.tmux.history_limit, 50000)
        self.assertEqual(config.tmux.detach_key, "C-q")
        self.assertEqual(config.tui.default_agent, "claude")

    def test_save_and_load(self) -> None:
        config = Config()
        config.tmux.capture_lines = 80
        config.tui.preview_lines = 12
        save_config(config, self.path)
        loaded = load_config(self.path)
        self.assertEqual(loaded.tmux.capture_lines, 80)
        self.assertEqual(loaded.tui.preview_lines, 12)

    def test_partial_file(self) -> None:
        self.path.write_text(json.dumps({"tmux": {"session_prefix": "work"}}), encoding="utf-8")
        config = load_config(self.path)
        self.assertEqual(config.tmux.session_prefix, "work")
        self.assertEqual(config.tmux.history_limit, 50000)

    def test_bad_file(self) -> None:
        self.path.write_text("[1, 2", encoding="utf-8")
        with self.assertRaises(StorageError):
            load_config(self.path)
        self.path.write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(StorageError):
            load_config(self.path)

    def test_env_override(self) -> None:
        with patch.dict(os.environ, {"ASMGR_TMUX__SESSION_PREFIX": "zz"}):
            self.assertEqual(Config().tmux.session_prefix, "zz")

    def test_config_root_and_runtime(self) -> None:
        config = Config()
        config.paths.config_dir = str(self.root)
        self.assertEqual(config.config_root, self.root)
        self.assertEqual(config.log_path, self.root / "asmgr.log")
        runtime = InstanceRuntime.from_config(config, FakeMultiplexer())
        self.assertEqual(runtime.filters_root, self.root)
        self.assertEqual(runtime.session_prefix, "asm")


class TestHelpers(unittest.TestCase):
    def test_config_root_env(self) -> None:
        with patch.dict(os.environ, {"ASMGR_CONFIG_DIR": "/tmp/asm-test"}):
            self.assertEqual(get_config_root(), Path("/tmp/asm-test"))

    def test_sanitize_name(self) -> None:
        self.assertEqual(sanitize_name("My Demo!"), "my_demo")
        self.assertEqual(sanitize_name("a.b c", sep="-"), "a-b-c")
        self.assertEqual(sanitize_name("***"), "session")

    def test_generate_id(self) -> None:
        first, second = generate_id("demo"), generate_id("demo")
        self.assertRegex(first, r"^demo_\d+$")
        self.assertNotEqual(first, second)
        self.assertTrue(generate_id("x", prefix="proj").startswith("proj_x_"))

    def test_write_json_atomic(self) -> None:
        root = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, root, ignore_errors=True)
        path = root / "nested" / "data.json"
        write_json_atomic(path, {"name": "démo"})
        text = path.read_text(encoding="utf-8")
        self.assertIn("démo", text)
        self.assertTrue(text.endswith("\n"))
        self.assertEqual(os.listdir(path.parent), ["data.json"])


if __name__ == "__main__":
    unittest.main()

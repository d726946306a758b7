import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path

from agent_session_manager.session.diff import count_diff_lines, diff_stats, head_commit, is_git_repo
from agent_session_manager.session.instance import Instance, InstanceRuntime
from tests.fakes import FakeMultiplexer

SAMPLE_DIFF = """diff --git a/app.py b/app.py
--- a/app.py
+++ b/app.py
@@ -1,2 +1,3 @@
-print("hi")
+print("hello")
+print("world")
 unchanged
"""


def _git(path: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-C", str(path), "-c", "user.name=test", "-c", "user.email=test@example.com", *args],
        check=True,
        capture_output=True,
    )


class TestCountDiffLines(unittest.TestCase):
    def test_headers_are_not_counted(self) -> None:
        self.assertEqual(count_diff_lines(SAMPLE_DIFF), (2, 1))
        self.assertEqual(count_diff_lines(""), (0, 0))


class TestNonRepository(unittest.TestCase):
    def setUp(self) -> None:
        self.path = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.path, ignore_errors=True)

    def test_plain_directory(self) -> None:
        self.assertEqual(head_commit(self.path), "")
        stats = diff_stats(self.path)
        self.assertEqual(stats.error, "not a git repository")
        self.assertTrue(stats.is_empty)


@unittest.skipUnless(shutil.which("git"), "git not installed")
class TestRepository(unittest.TestCase):
    def setUp(self) -> None:
        self.path = Path(tempfile.mkdtemp())
        self.addCleanup(shutil.rmtree, self.path, ignore_errors=True)
        _git(self.path, "init", "-q")
        (self.path / "app.py").write_text('print("hi")\n', encoding="utf-8")
        _git(self.path, "add", ".")
        _git(self.path, "commit", "-q", "-m", "init")

    def test_changes_since_start(self) -> None:
        self.assertTrue(is_git_repo(str(self.path)))
        inst = Instance.create("demo", str(self.path), runtime=InstanceRuntime(mux=FakeMultiplexer(), startup_settle_s=0))
        inst.start()
        self.assertEqual(inst.base_commit_sha, head_commit(str(self.path)))

        (self.path / "app.py").write_text('print("hello")\nprint("world")\n', encoding="utf-8")
        (self.path / "new.py").write_text("x = 1\n", encoding="utf-8")
        stats = inst.session_diff()
        self.assertEqual(stats.error, "")
        self.assertEqual((stats.added, stats.removed), (3, 1))
        self.assertIn("new.py", stats.content)

    def test_reset_base_commit(self) -> None:
        inst = Instance.create("demo", str(self.path), runtime=InstanceRuntime(mux=FakeMultiplexer(), startup_settle_s=0))
        self.assertIsNone(inst.base_commit_sha)
        inst.reset_base_commit()
        self.assertEqual(inst.base_commit_sha, head_commit(str(self.path)))
        self.assertTrue(inst.full_diff().is_empty)


if __name__ == "__main__":
    unittest.main()

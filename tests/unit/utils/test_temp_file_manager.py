"""
Unit tests for WorkspaceManager utility.

Tests cover:
- Workspace creation and release
- Context manager cleanup, including on exceptions
- Cleanup failures logged instead of raised
- cleanup_all functionality
- Storage writability check
"""
import unittest
import tempfile
import shutil
from pathlib import Path
from unittest.mock import patch

from jokereel.utils.temp_file_manager import WorkspaceManager, remove_path


class TestWorkspaceManager(unittest.TestCase):
    """Test cases for WorkspaceManager class."""

    def setUp(self):
        self.test_base_dir = Path(tempfile.mkdtemp(prefix="test_workspace_manager_"))
        self.manager = WorkspaceManager(prefix="test_", base_dir=self.test_base_dir)

    def tearDown(self):
        self.manager.cleanup_all()
        if self.test_base_dir.exists():
            shutil.rmtree(self.test_base_dir)

    def test_init_default_prefix(self):
        manager = WorkspaceManager()
        self.assertEqual(manager.prefix, "jokereel_")
        self.assertEqual(manager.base_dir, Path(tempfile.gettempdir()))

    def test_make_and_release(self):
        workspace = self.manager.make_workspace()

        self.assertTrue(workspace.is_dir())
        self.assertEqual(workspace.parent, self.test_base_dir)
        self.assertTrue(workspace.name.startswith("test_"))
        self.assertIn(workspace, self.manager.workspaces)

        (workspace / "background.bin").write_bytes(b"data")
        self.manager.release(workspace)

        self.assertFalse(workspace.exists())
        self.assertNotIn(workspace, self.manager.workspaces)

    def test_custom_prefix(self):
        workspace = self.manager.make_workspace(prefix="jokereel_transcode_")
        self.assertTrue(workspace.name.startswith("jokereel_transcode_"))

    def test_create_workspace_context(self):
        with self.manager.create_workspace() as workspace:
            self.assertTrue(workspace.exists())
            (workspace / "nested").mkdir()
            (workspace / "nested" / "frame.raw").write_bytes(b"\x00" * 16)

        self.assertFalse(workspace.exists())
        self.assertEqual(self.manager.workspaces, [])

    def test_create_workspace_cleanup_on_exception(self):
        workspace_ref = None
        with self.assertRaises(ValueError):
            with self.manager.create_workspace() as workspace:
                workspace_ref = workspace
                raise ValueError("Test exception")

        self.assertFalse(workspace_ref.exists())

    def test_release_failure_keeps_tracking(self):
        workspace = self.manager.make_workspace()

        with patch('jokereel.utils.temp_file_manager.shutil.rmtree', side_effect=OSError("busy")):
            # Does not raise
            self.manager.release(workspace)

        self.assertIn(workspace, self.manager.workspaces)

    def test_cleanup_all(self):
        workspaces = [self.manager.make_workspace() for _ in range(3)]

        self.manager.cleanup_all()

        for workspace in workspaces:
            self.assertFalse(workspace.exists())
        self.assertEqual(self.manager.workspaces, [])

    def test_is_writable(self):
        self.assertTrue(self.manager.is_writable())

    def test_missing_base_dir_is_writable_through_parent(self):
        missing = WorkspaceManager(base_dir=self.test_base_dir / "not" / "yet" / "created")
        self.assertTrue(missing.is_writable())

        workspace = missing.make_workspace()
        self.assertTrue(workspace.is_dir())
        missing.release(workspace)

    def test_base_dir_under_a_file_is_not_writable(self):
        blocker = self.test_base_dir / "plain-file"
        blocker.write_bytes(b"")
        self.assertFalse(WorkspaceManager(base_dir=blocker / "workspaces").is_writable())

    def test_read_only_parent_is_not_writable(self):
        missing = WorkspaceManager(base_dir=self.test_base_dir / "missing")
        with patch("jokereel.utils.temp_file_manager.os.access", return_value=False) as access:
            self.assertFalse(missing.is_writable())
        access.assert_called_once()
        self.assertEqual(access.call_args[0][0], self.test_base_dir)


class TestRemovePath(unittest.TestCase):
    """Test cases for remove_path helper."""

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp(prefix="test_remove_path_"))

    def tearDown(self):
        if self.test_dir.exists():
            shutil.rmtree(self.test_dir)

    def test_remove_file(self):
        target = self.test_dir / "output.mp4"
        target.write_bytes(b"mp4")

        self.assertTrue(remove_path(target))
        self.assertFalse(target.exists())

    def test_remove_missing_path(self):
        self.assertTrue(remove_path(self.test_dir / "never-created"))

    def test_unlink_failure(self):
        target = self.test_dir / "input.webm"
        target.write_bytes(b"webm")

        with patch.object(Path, 'unlink', side_effect=PermissionError("denied")):
            self.assertFalse(remove_path(target))

        self.assertTrue(target.exists())


if __name__ == '__main__':
    unittest.main()

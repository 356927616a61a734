"""
Per-job scratch storage.

Every composition job gets its own workspace directory holding the decoded
asset files and the recorder output. The directory is removed when the job
ends, whether it succeeded or failed.

Usage:
    from jokereel.utils.temp_file_manager import WorkspaceManager

    manager = WorkspaceManager()
    with manager.create_workspace() as workspace:
        (workspace / "background.bin").write_bytes(data)
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
import tempfile
import logging
import atexit
import os
import shutil

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> bool:
    """
    Delete a file or directory tree, logging instead of raising on failure.

    Returns:
        True if the path no longer exists
    """
    path = Path(path)
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
    except OSError as e:
        logger.warning(f"Failed to cleanup {path}: {e}")
        return False
    return True


class WorkspaceManager:
    """Creates and cleans up per-job scratch directories."""

    def __init__(self, prefix: str = "jokereel_", base_dir: Optional[Path] = None):
        """
        Args:
            prefix: Prefix for workspace directory names
            base_dir: Base directory for workspaces (default: system temp dir)
        """
        self.prefix = prefix
        self.base_dir = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
        self.workspaces: list[Path] = []

        atexit.register(self.cleanup_all)

    def is_writable(self) -> bool:
        """
        Whether new workspaces can be created under base_dir.

        base_dir is created on first use, so a missing directory counts as
        writable when its nearest existing ancestor is.
        """
        candidate = self.base_dir.absolute()
        while not candidate.exists():
            if candidate.parent == candidate:
                return False
            candidate = candidate.parent
        return candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK)

    def make_workspace(self, prefix: Optional[str] = None) -> Path:
        """Create a tracked workspace directory; caller removes it with release()."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=prefix or self.prefix, dir=str(self.base_dir)))
        self.workspaces.append(workspace)
        logger.debug(f"Created workspace: {workspace}")
        return workspace

    def release(self, workspace: Path) -> None:
        if remove_path(workspace) and workspace in self.workspaces:
            self.workspaces.remove(workspace)
            logger.debug(f"Cleaned up workspace: {workspace}")

    @contextmanager
    def create_workspace(self, prefix: Optional[str] = None) -> Generator[Path, None, None]:
        """
        Create a workspace directory with automatic cleanup.

        Yields:
            Path to the workspace directory
        """
        workspace = self.make_workspace(prefix)
        try:
            yield workspace
        finally:
            self.release(workspace)

    def cleanup_all(self) -> None:
        """Remove every workspace still tracked (called at interpreter exit)."""
        for workspace in self.workspaces[:]:
            self.release(workspace)

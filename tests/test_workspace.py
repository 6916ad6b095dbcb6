"""
Unit tests for detection/workspace.py
"""
import os
from unittest.mock import patch

import pytest

from detection.errors import WorkspaceError
from detection.workspace import WorkspaceManager


class TestOpenSession:
    """Tests for WorkspaceManager.open_session."""

    def test_creates_empty_root(self, tmp_path):
        """New session root exists and is empty."""
        manager = WorkspaceManager(tmp_path / "temp")
        session = manager.open_session()
        assert session.root_path.is_dir()
        assert list(session.root_path.iterdir()) == []
        assert session.root_path.parent == tmp_path / "temp"
        assert session.staged == {}

    def test_sessions_are_distinct(self, tmp_path):
        """Each session gets its own root."""
        manager = WorkspaceManager(tmp_path)
        first = manager.open_session()
        second = manager.open_session()
        assert first.session_id != second.session_id
        assert first.root_path != second.root_path

    def test_existing_root_is_fatal(self, tmp_path):
        """Colliding session root raises WorkspaceError."""
        manager = WorkspaceManager(tmp_path)
        (tmp_path / "fixed").mkdir()
        with patch("detection.workspace.uuid.uuid4") as mock_uuid:
            mock_uuid.return_value.hex = "fixed"
            with pytest.raises(WorkspaceError):
                manager.open_session()


class TestCloseSession:
    """Tests for WorkspaceManager.close_session."""

    def test_removes_nested_tree(self, tmp_path):
        """Nested files and folders are removed."""
        manager = WorkspaceManager(tmp_path)
        session = manager.open_session()
        nested = session.root_path / "clones" / "a" / "b"
        nested.mkdir(parents=True)
        (nested / "file.java").write_text("x")
        (session.root_path / "top.txt").write_text("y")

        assert manager.close_session(session) == 0
        assert not session.root_path.exists()

    def test_failures_are_logged_and_skipped(self, tmp_path, caplog):
        """Undeletable files are logged and the rest removed."""
        manager = WorkspaceManager(tmp_path)
        session = manager.open_session()
        (session.root_path / "a.txt").write_text("a")
        (session.root_path / "b.txt").write_text("b")

        real_unlink = os.unlink

        def flaky_unlink(path, *args, **kwargs):
            if str(path).endswith("a.txt"):
                raise PermissionError("locked")
            return real_unlink(path, *args, **kwargs)

        with patch("detection.workspace.os.unlink", side_effect=flaky_unlink):
            failures = manager.close_session(session)

        assert failures >= 1
        assert not (session.root_path / "b.txt").exists()
        assert "Could not delete temporary file" in caplog.text

    def test_missing_root_is_noop(self, tmp_path):
        """Closing a vanished root does nothing."""
        manager = WorkspaceManager(tmp_path)
        session = manager.open_session()
        session.root_path.rmdir()
        assert manager.close_session(session) == 0


class TestSessionContext:
    """Tests for the session() context manager."""

    def test_cleans_up_on_exception(self, tmp_path):
        """Root is removed when the body raises."""
        manager = WorkspaceManager(tmp_path)
        with pytest.raises(RuntimeError):
            with manager.session() as session:
                (session.root_path / "f.txt").write_text("x")
                root = session.root_path
                raise RuntimeError("boom")
        assert not root.exists()

    def test_cleans_up_on_success(self, tmp_path):
        """Root is removed after a normal exit."""
        manager = WorkspaceManager(tmp_path)
        with manager.session() as session:
            root = session.root_path
            assert root.exists()
        assert not root.exists()

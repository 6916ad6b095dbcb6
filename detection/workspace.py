"""
Per-request workspace lifecycle.

Each analysis request gets its own session root under the configured
temporary directory. The root is owned exclusively by that session and is
removed when the session closes, whether the analysis succeeded or not.
"""
import logging
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .errors import WorkspaceError

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One isolated analysis session."""
    session_id: str
    root_path: Path
    created_at: datetime
    staged: dict[int, Path] = field(default_factory=dict)  # submission_id -> staged dir

    @property
    def clones_dir(self) -> Path:
        return self.root_path / "clones"

    @property
    def corpus_dir(self) -> Path:
        return self.root_path / "corpus"

    @property
    def engine_dir(self) -> Path:
        return self.root_path / "engine"


class WorkspaceManager:
    """Allocates and tears down session roots under a temporary directory."""

    def __init__(self, temp_root: Path):
        """
        Args:
            temp_root: Parent directory for all session roots
        """
        self.temp_root = Path(temp_root)

    def open_session(self) -> Session:
        """
        Create a fresh, empty session root.

        Returns:
            New Session with a unique identifier

        Raises:
            WorkspaceError: If the generated root already exists or cannot be created
        """
        session_id = uuid.uuid4().hex
        root = self.temp_root / session_id
        try:
            self.temp_root.mkdir(parents=True, exist_ok=True)
            root.mkdir()
        except FileExistsError as e:
            raise WorkspaceError(f"Session root already exists: {root}") from e
        except OSError as e:
            raise WorkspaceError(f"Could not create session root {root}: {e}") from e

        logger.info(f"Created session directory: {root}")
        return Session(
            session_id=session_id,
            root_path=root,
            created_at=datetime.now(timezone.utc),
        )

    def close_session(self, session: Session) -> int:
        """
        Recursively delete the session root, files before directories.

        Individual deletion failures are logged and skipped.

        Returns:
            Number of entries that could not be deleted
        """
        root = session.root_path
        if not root.exists():
            return 0

        failures = 0
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            for name in filenames:
                path = os.path.join(dirpath, name)
                try:
                    os.unlink(path)
                except OSError as e:
                    failures += 1
                    logger.warning(f"Could not delete temporary file {path}: {e}")
            for name in dirnames:
                path = os.path.join(dirpath, name)
                try:
                    if os.path.islink(path):
                        os.unlink(path)
                    else:
                        os.rmdir(path)
                except OSError as e:
                    failures += 1
                    logger.warning(f"Could not delete temporary directory {path}: {e}")
        try:
            os.rmdir(root)
        except OSError as e:
            failures += 1
            logger.warning(f"Could not delete session root {root}: {e}")

        if failures:
            logger.warning(f"Session {session.session_id} cleanup left {failures} entr(ies) behind")
        else:
            logger.info(f"Cleaned up temporary directory: {root}")
        return failures

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Open a session and close it on every exit path."""
        session = self.open_session()
        try:
            yield session
        finally:
            self.close_session(session)

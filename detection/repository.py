"""
Repository staging: fetch each submission and prepare an engine-ready copy.

A submission is first fetched into ``<session>/clones/<name>`` (git clone or
archive download), then only files the engine understands are copied into
``<session>/corpus/<name>``. The corpus directory names encode the caller's
submission and team ids so that engine output can be mapped back.
"""
import logging
import os
import shutil
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import requests

from .archive import extract_archive, is_archive_name
from .errors import ExtractionSecurityError, StagingError
from .models import StagedDirectory, StageOutcome, Submission
from .workspace import Session

logger = logging.getLogger(__name__)

KNOWN_HOSTS = ("github.com/", "gitlab.com/", "bitbucket.org/")

# Build output, VCS metadata and IDE folders never reach the engine
EXCLUDED_DIRS = frozenset({
    ".git", ".svn", ".hg",
    "target", "build", "out", "bin",
    "node_modules", "__pycache__",
    ".idea", ".vscode", ".gradle",
})


def is_valid_repository_url(url: str | None) -> bool:
    """
    Check whether a repository URL may be fetched.

    Only https URLs are accepted, and only when they point at a known
    hosting provider, end in ``.git``, or name a supported archive.
    """
    if not url or not url.strip():
        return False
    url = url.strip()
    if not url.lower().startswith("https://"):
        return False
    rest = url[len("https://"):]
    if rest.lower().startswith(KNOWN_HOSTS):
        return True
    path = url.split("?", 1)[0].split("#", 1)[0]
    return path.endswith(".git") or is_archive_name(path)


class RepositoryFetcher:
    """Fetches a repository into a local directory."""

    def __init__(self, timeout: float = 120.0, session: requests.Session | None = None):
        """
        Args:
            timeout: Seconds allowed for one clone or download
            session: HTTP session used for archive downloads
        """
        self.timeout = timeout
        self.http = session or requests.Session()

    def clone(self, url: str, path: Path) -> bool:
        """
        Fetch url into path.

        Args:
            url: Repository or archive URL
            path: Target directory, must not exist yet

        Returns:
            True on success, False if the fetch failed
        """
        path = Path(path)
        if path.exists():
            logger.error(f"Refusing to clone into existing path: {path}")
            return False
        path.parent.mkdir(parents=True, exist_ok=True)

        if is_archive_name(url.split("?", 1)[0]):
            return self._download_archive(url, path)
        return self._git_clone(url, path)

    def _git_clone(self, url: str, path: Path) -> bool:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        cmd = ["git", "clone", "--depth", "1", "--quiet", url, str(path)]
        logger.info(f"Cloning {url} into {path}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Clone of {url} timed out after {self.timeout}s")
            return False
        except OSError as e:
            logger.error(f"Could not run git for {url}: {e}")
            return False

        if result.returncode != 0:
            logger.error(f"git clone failed for {url}: {result.stderr.strip()}")
            return False
        return True

    def _download_archive(self, url: str, path: Path) -> bool:
        logger.info(f"Downloading archive {url}")
        suffix = next(s for s in (".tar.gz", ".tgz", ".tar", ".zip") if url.split("?", 1)[0].lower().endswith(s))
        fd, tmp_name = tempfile.mkstemp(suffix=suffix, dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                with self.http.get(url, timeout=self.timeout, stream=True) as response:
                    if response.status_code != 200:
                        logger.error(f"Download of {url} failed with status {response.status_code}")
                        return False
                    for chunk in response.iter_content(chunk_size=65536):
                        f.write(chunk)
            # links inside a repository tarball are skipped, not followed
            extract_archive(Path(tmp_name), path, skip_links=True)
        except requests.RequestException as e:
            logger.error(f"Download of {url} failed: {e}")
            return False
        except (ExtractionSecurityError, ValueError, OSError) as e:
            logger.error(f"Could not unpack archive from {url}: {e}")
            return False
        finally:
            os.unlink(tmp_name)
        return True


def copy_filtered(source: Path, destination: Path, suffixes: list[str]) -> int:
    """
    Copy files with an accepted suffix, keeping the directory structure.

    Excluded directories are not descended into. The source is left intact.

    Returns:
        Number of files copied
    """
    suffixes = tuple(s.lower() for s in suffixes)
    destination.mkdir(parents=True, exist_ok=True)
    copied = 0
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        rel = Path(dirpath).relative_to(source)
        for name in sorted(filenames):
            if not name.lower().endswith(suffixes):
                continue
            src = Path(dirpath) / name
            if src.is_symlink():
                continue
            target = destination / rel / name
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target)
            copied += 1
    return copied


class RepositoryStager:
    """Turns submissions into staged, engine-ready directories."""

    def __init__(self, fetcher: RepositoryFetcher, suffixes: list[str], workers: int = 4):
        self.fetcher = fetcher
        self.suffixes = list(suffixes)
        self.workers = workers

    def stage(self, submission: Submission, session: Session) -> StageOutcome:
        """
        Fetch and filter one submission.

        Failures are reported in the outcome, never raised.
        """
        url = (submission.repository_url or "").strip()
        if not is_valid_repository_url(url):
            logger.warning(f"Invalid repository URL for submission {submission.submission_id}: {url!r}")
            return StageOutcome(submission, error=f"Invalid repository URL: {url}")

        name = submission.directory_name
        clone_path = session.clones_dir / name
        corpus_path = session.corpus_dir / name
        try:
            if not self.fetcher.clone(url, clone_path):
                raise StagingError(f"Failed to clone repository: {url}")
            file_count = copy_filtered(clone_path, corpus_path, self.suffixes)
        except StagingError as e:
            logger.error(f"Staging failed for submission {submission.submission_id}: {e}")
            return StageOutcome(submission, error=str(e))
        except OSError as e:
            logger.error(f"Could not copy sources for submission {submission.submission_id}: {e}")
            return StageOutcome(submission, error=f"Could not copy sources: {e}")

        staged = StagedDirectory(
            submission=submission,
            path=corpus_path,
            clone_path=clone_path,
            file_count=file_count,
        )
        if staged.flagged:
            logger.warning(
                f"Submission {submission.submission_id} has no files matching {self.suffixes}"
            )
        else:
            logger.info(f"Staged submission {submission.submission_id}: {file_count} file(s)")
        session.staged[submission.submission_id] = corpus_path
        return StageOutcome(submission, staged=staged)

    def stage_all(self, submissions: list[Submission], session: Session) -> list[StageOutcome]:
        """Stage submissions in parallel, returning outcomes in submission order."""
        if not submissions:
            return []
        workers = max(1, min(self.workers, len(submissions)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stage") as pool:
            return list(pool.map(lambda s: self.stage(s, session), submissions))

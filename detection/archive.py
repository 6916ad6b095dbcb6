"""
Archive reading and safe extraction.

Engine report bundles and downloaded repository archives are untrusted
input. Every entry is checked against the destination directory before
anything is written: an entry name with a parent-directory segment, or
one that resolves outside the destination, aborts the whole extraction.
"""
import logging
import os
import shutil
import tarfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Iterator

from .errors import ExtractionSecurityError

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".tar.gz", ".tgz", ".tar")


@dataclass
class ArchiveEntry:
    """A single archive member as seen by sequential iteration."""
    name: str
    is_dir: bool
    open: Callable[[], IO[bytes]]
    is_link: bool = False


def is_archive_name(name: str) -> bool:
    """True if the name ends with a supported archive suffix."""
    return name.lower().endswith(ARCHIVE_SUFFIXES)


@contextmanager
def open_archive(path: Path) -> Iterator[list[ArchiveEntry]]:
    """
    Open a zip or tar archive and list its entries in archive order.

    Entry streams are only readable while the context is open.

    Raises:
        ValueError: If the file is neither zip nor tar
    """
    path = Path(path)
    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path) as zf:
            yield [
                ArchiveEntry(
                    name=info.filename,
                    is_dir=info.is_dir(),
                    open=lambda info=info: zf.open(info),
                )
                for info in zf.infolist()
            ]
    elif tarfile.is_tarfile(path):
        with tarfile.open(path) as tf:
            yield [
                ArchiveEntry(
                    name=member.name,
                    is_dir=member.isdir(),
                    open=lambda member=member: tf.extractfile(member),
                    # links and device nodes are never extracted
                    is_link=not (member.isfile() or member.isdir()),
                )
                for member in tf.getmembers()
            ]
    else:
        raise ValueError(f"Unsupported archive format: {path}")


def iter_archive(path: Path) -> Iterator[tuple[str, bool, IO[bytes] | None]]:
    """
    Iterate over (name, is_dir, content stream) for every archive entry.

    The stream is None for directories and is closed once the caller
    advances to the next entry.
    """
    with open_archive(path) as entries:
        for entry in entries:
            if entry.is_dir or entry.is_link:
                yield entry.name, entry.is_dir, None
                continue
            stream = entry.open()
            try:
                yield entry.name, False, stream
            finally:
                if stream is not None:
                    stream.close()


def normalize_entry_name(name: str) -> str:
    """
    Normalize an archive entry name.

    Backslashes become forward slashes and leading separators are stripped.
    """
    normalized = name.replace("\\", "/")
    while normalized.startswith("/"):
        normalized = normalized[1:]
    return normalized


def safe_destination(destination: Path, name: str) -> Path | None:
    """
    Resolve an entry name under the destination directory.

    Args:
        destination: Canonical (resolved) destination directory
        name: Raw entry name from the archive

    Returns:
        Target path, or None for an entry that names the destination itself

    Raises:
        ExtractionSecurityError: On traversal segments or escaping paths
    """
    normalized = normalize_entry_name(name)
    if any(part == ".." for part in normalized.split("/")):
        raise ExtractionSecurityError(f"Unsafe entry name: {name}")

    parts = [p for p in normalized.split("/") if p and p != "."]
    if not parts:
        return None

    target = destination.joinpath(*parts).resolve()
    if os.path.commonpath([str(destination), str(target)]) != str(destination):
        raise ExtractionSecurityError(f"Entry escapes destination: {name}")
    return target


def extract_archive(archive: Path, destination: Path, skip_links: bool = False) -> int:
    """
    Unpack a zip or tar archive into destination.

    All entries are validated before the first write, so a rejected archive
    leaves nothing from any of its entries on disk. Directory entries are
    created; file entries overwrite existing files at the same path.

    Args:
        archive: Path to the archive
        destination: Directory to unpack into (created if missing)
        skip_links: Leave out link and device entries instead of rejecting the archive

    Returns:
        Number of files written

    Raises:
        ExtractionSecurityError: If any entry fails the containment check
    """
    archive = Path(archive)
    root = Path(destination).resolve()

    written = 0
    with open_archive(archive) as entries:
        planned = []
        for entry in entries:
            if entry.is_link and skip_links:
                logger.warning(f"Skipping link entry {entry.name} in {archive.name}")
                continue
            if entry.is_link:
                raise ExtractionSecurityError(f"Link entries are not allowed: {entry.name}")
            target = safe_destination(root, entry.name)
            if target is not None:
                planned.append((entry, target))

        root.mkdir(parents=True, exist_ok=True)
        for entry, target in planned:
            if entry.is_dir:
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with entry.open() as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
            written += 1

    logger.info(f"Extracted {written} file(s) from {archive.name} into {root}")
    return written

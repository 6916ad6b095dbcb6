"""
Pytest configuration and shared fixtures for testing.
"""
import io
import json
import os
import sys
import tarfile
import zipfile
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from detection.config import Settings
from detection.engine import EngineRun, SimilarityEngine, read_pairwise_results
from detection.models import Submission


@pytest.fixture
def settings(tmp_path):
    """Settings with every directory under tmp_path."""
    return Settings(
        temp_dir=tmp_path / "temp",
        reports_dir=tmp_path / "reports",
        comparisons_dir=tmp_path / "comparisons",
        staging_workers=2,
    )


def make_submission(sid, tid=None, url=None, team=None, members=None):
    return Submission(
        submission_id=sid,
        team_id=tid if tid is not None else sid + 100,
        team_name=team or f"Team {sid}",
        repository_url=url or f"https://github.com/org/repo-{sid}",
        member_names=members or [f"Student {sid}"],
    )


@pytest.fixture
def submissions():
    """Three submissions with valid GitHub URLs."""
    return [make_submission(1, 11), make_submission(2, 12), make_submission(3, 13)]


def comparison_entry(first, second, avg, matches=None, tokens=None):
    """One comparison document in the engine's JSON format."""
    entry = {
        "firstSubmissionId": first,
        "secondSubmissionId": second,
        "similarities": {"AVG": avg, "MAX": min(1.0, avg + 0.1), "MAXIMUM_LENGTH": 0.0, "LONGEST_MATCH": 0.0},
        "matches": matches or [],
    }
    if tokens is not None:
        entry["matchedTokenCount"] = tokens
    return entry


def match_entry(first_file, second_file, start1, end1, start2, end2, length=20):
    return {
        "firstFileName": first_file,
        "secondFileName": second_file,
        "startInFirst": {"line": start1, "column": 1},
        "endInFirst": {"line": end1, "column": 1},
        "startInSecond": {"line": start2, "column": 1},
        "endInSecond": {"line": end2, "column": 1},
        "lengthOfFirst": length,
        "lengthOfSecond": length,
    }


def write_zip(path: Path, entries: dict) -> Path:
    """Write a zip whose entries map names to str/bytes content (None for a directory)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in entries.items():
            if content is None:
                zf.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
            else:
                zf.writestr(name, content)
    return path


def write_tar(path: Path, entries: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tf:
        for name, content in entries.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


def report_bundle(path: Path, comparisons: list, extra: dict | None = None) -> Path:
    """Engine-style report zip with one JSON document per comparison."""
    entries = {"overview.json": json.dumps({"submissionIds": []})}
    for c in comparisons:
        entries[f"comparisons/{c['firstSubmissionId']}-{c['secondSubmissionId']}.json"] = json.dumps(c)
    entries.update(extra or {})
    return write_zip(path, entries)


class FakeFetcher:
    """Clone stand-in that writes a small Java tree, or fails for chosen URLs."""

    def __init__(self, failing=(), files=None):
        self.failing = set(failing)
        self.files = files or {
            "src/main/java/Main.java": "class Main {}",
            "README.md": "readme",
            "target/Main.class": "bytecode",
        }
        self.calls = []

    def clone(self, url, path):
        self.calls.append((url, Path(path)))
        if url in self.failing:
            return False
        for name, content in self.files.items():
            target = Path(path) / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return True


class FakeEngine(SimilarityEngine):
    """Engine stand-in that writes a report bundle from canned comparisons."""

    def __init__(self, comparisons=None, error=None, extra_entries=None):
        self.comparisons = comparisons or []
        self.error = error
        self.extra_entries = extra_entries
        self.corpus = None
        self.config = None

    def run(self, corpus, config, result_file):
        self.corpus = list(corpus)
        self.config = config
        if self.error is not None:
            raise self.error
        archive = report_bundle(Path(result_file), self.comparisons, self.extra_entries)
        return EngineRun(results=read_pairwise_results(archive, config.similarity_metric), report_archive=archive)


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()

"""
Similarity engine integration.

The default engine runs the JPlag command-line tool as a subprocess and reads
pairwise results back out of the report bundle it writes.
"""
import json
import logging
import math
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from .archive import iter_archive
from .config import Settings
from .errors import EngineError
from .models import LineRange, Match, PairwiseResult

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Options passed to the similarity engine for one run."""
    language: str = "java"
    file_suffixes: list[str] = field(default_factory=lambda: [".java"])
    min_token_match: int = 12
    similarity_threshold: float = 0.0      # 0 keeps everything
    max_comparisons: int | None = -1       # negative or None means unbounded
    similarity_metric: str = "AVG"

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            language=settings.language,
            file_suffixes=list(settings.file_suffixes),
            min_token_match=settings.min_token_match,
            similarity_threshold=settings.similarity_threshold,
            max_comparisons=settings.max_comparisons,
            similarity_metric=settings.similarity_metric,
        )

    @property
    def unbounded(self) -> bool:
        return self.max_comparisons is None or self.max_comparisons < 0


@dataclass
class EngineRun:
    """Pairwise results plus the report bundle they were read from."""
    results: list[PairwiseResult]
    report_archive: Path | None = None


class SimilarityEngine(ABC):
    """Interface for a pairwise source-code similarity engine."""

    @abstractmethod
    def run(self, corpus: list[Path], config: EngineConfig, result_file: Path) -> EngineRun:
        """
        Compare every pair of directories in corpus.

        Args:
            corpus: Root directories, one per submission
            config: Engine options
            result_file: Where the engine should write its report bundle

        Returns:
            EngineRun with results in engine order

        Raises:
            EngineError: On any engine failure
        """
        pass


class JPlagEngine(SimilarityEngine):
    """Runs the JPlag CLI and parses its report bundle."""

    def __init__(self, command: list[str] | None = None, timeout: float = 600.0):
        self.command = list(command or ["java", "-jar", "jplag.jar"])
        self.timeout = timeout

    def build_command(self, corpus: list[Path], config: EngineConfig, result_file: Path) -> list[str]:
        max_comparisons = -1 if config.unbounded else config.max_comparisons
        return [
            *self.command,
            "-l", config.language,
            "-p", ",".join(config.file_suffixes),
            "-t", str(config.min_token_match),
            "-m", str(config.similarity_threshold),
            "-n", str(max_comparisons),
            "-r", str(result_file),
            "--mode", "RUN",
            *(str(p) for p in corpus),
        ]

    def run(self, corpus: list[Path], config: EngineConfig, result_file: Path) -> EngineRun:
        result_file = Path(result_file)
        result_file.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(corpus, config, result_file)
        logger.info(f"Running similarity engine on {len(corpus)} submission(s)")
        logger.debug(f"Engine command: {' '.join(cmd)}")

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise EngineError(f"Engine timed out after {self.timeout}s") from e
        except OSError as e:
            raise EngineError(f"Could not start engine: {e}") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or proc.stdout or "").strip()
            raise EngineError(f"Engine exited with code {proc.returncode}: {stderr[-500:]}")

        # Some engine versions append .zip to the requested name
        archive = result_file
        if not archive.exists() and Path(f"{result_file}.zip").exists():
            archive = Path(f"{result_file}.zip")
        if not archive.exists():
            raise EngineError(f"Engine did not produce a report at {result_file}")

        results = read_pairwise_results(archive, config.similarity_metric)
        logger.info(f"Engine produced {len(results)} comparison(s)")
        return EngineRun(results=results, report_archive=archive)


def _line(value) -> int:
    if isinstance(value, dict):
        return int(value.get("line", 0))
    return int(value or 0)


def _parse_match(raw: dict) -> Match:
    return Match(
        first_file=str(raw.get("firstFileName") or ""),
        second_file=str(raw.get("secondFileName") or ""),
        first_range=LineRange(_line(raw.get("startInFirst")), _line(raw.get("endInFirst"))),
        second_range=LineRange(_line(raw.get("startInSecond")), _line(raw.get("endInSecond"))),
        token_count=int(raw.get("lengthOfFirst", raw.get("tokens", 0)) or 0),
    )


def parse_comparison(data: dict, metric: str = "AVG") -> PairwiseResult:
    """
    Build a PairwiseResult from one comparison document of the report bundle.

    Raises:
        EngineError: If required fields are missing or malformed
    """
    try:
        first = str(data["firstSubmissionId"])
        second = str(data["secondSubmissionId"])
        metrics = {k: float(v) for k, v in (data.get("similarities") or {}).items()}
        matches = tuple(_parse_match(m) for m in data.get("matches") or [])
        if metric not in metrics and "similarity" in data:
            metrics[metric] = float(data["similarity"])
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise EngineError(f"Malformed comparison entry: {e}") from e

    bad = [k for k, v in metrics.items() if not math.isfinite(v)]
    if bad:
        raise EngineError(
            f"Non-finite similarity for {first} vs {second}: {', '.join(bad)}"
        )

    tokens = data.get("matchedTokenCount")
    if tokens is None:
        tokens = sum(m.token_count for m in matches)

    return PairwiseResult(
        first_dir=first,
        second_dir=second,
        similarity_metrics=metrics,
        matched_token_count=int(tokens),
        matches=matches,
        primary_metric=metric,
    )


def read_pairwise_results(archive: Path, metric: str = "AVG") -> list[PairwiseResult]:
    """
    Read every comparison document from a report bundle, in archive order.

    Raises:
        EngineError: If the bundle cannot be read or a document is corrupt
    """
    results = []
    try:
        for name, is_dir, stream in iter_archive(archive):
            if is_dir or stream is None or not name.endswith(".json"):
                continue
            try:
                data = json.load(stream)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise EngineError(f"Corrupt result file {name}: {e}") from e
            if isinstance(data, dict) and "firstSubmissionId" in data:
                results.append(parse_comparison(data, metric))
    except (ValueError, OSError) as e:
        raise EngineError(f"Could not read engine report {archive}: {e}") from e
    return results

import logging
from dataclasses import dataclass
from pathlib import Path

from .engine import EngineConfig, SimilarityEngine
from .errors import EngineError
from .models import PairwiseResult, StagedDirectory

logger = logging.getLogger(__name__)

# Conventional source roots, only reported in the logs
SOURCE_ROOT_CANDIDATES = ("src/main/java", "src", "source", "java")


@dataclass
class AnalysisOutcome:
    results: list[PairwiseResult]
    report_archive: Path | None = None


def detect_source_root(path: Path) -> Path | None:
    """Return the first conventional source root found under path, if any."""
    for candidate in SOURCE_ROOT_CANDIDATES:
        root = path / candidate
        if root.is_dir():
            return root
    return None


def apply_result_policy(results: list[PairwiseResult], config: EngineConfig) -> list[PairwiseResult]:
    """
    Filter by the similarity floor, sort by descending similarity and cap.

    The sort is stable, so equally similar pairs keep engine order.
    """
    kept = [r for r in results if r.similarity >= config.similarity_threshold]
    kept.sort(key=lambda r: r.similarity, reverse=True)
    if not config.unbounded:
        kept = kept[:config.max_comparisons]
    return kept


class AnalysisAdapter:
    """Runs the similarity engine over staged directories and normalizes its output."""

    def __init__(self, engine: SimilarityEngine):
        self.engine = engine

    def analyze(
        self,
        staged_dirs: list[StagedDirectory],
        config: EngineConfig,
        report_archive: Path,
    ) -> AnalysisOutcome:
        """
        Compare all staged directories pairwise.

        Args:
            staged_dirs: Staged submissions, the engine sees exactly their roots
            config: Engine options
            report_archive: Path the engine writes its report bundle to

        Returns:
            AnalysisOutcome with filtered, sorted and capped results

        Raises:
            EngineError: If the engine fails in any way
        """
        if len(staged_dirs) < 2:
            raise EngineError("At least two staged directories are required")

        for staged in staged_dirs:
            root = detect_source_root(staged.path)
            if root is not None:
                logger.debug(f"{staged.name}: detected source root {root.relative_to(staged.path)}")
            else:
                logger.debug(f"{staged.name}: no conventional source root, using repository root")

        run = self.engine.run([s.path for s in staged_dirs], config, report_archive)
        if run is None or run.results is None:
            raise EngineError("Engine returned no result")

        results = apply_result_policy(run.results, config)
        logger.info(
            f"Analysis kept {len(results)} of {len(run.results)} comparison(s) "
            f"(threshold {config.similarity_threshold})"
        )
        return AnalysisOutcome(results=results, report_archive=run.report_archive)

"""
End-to-end detection pipeline.

validate -> open session -> stage -> analyze -> resolve identities ->
materialize reports -> summarize -> close session

Every failure is turned into a DetectionResponse with success=False; the
session workspace is removed on every path.
"""
import logging

from .analysis import AnalysisAdapter
from .config import Settings
from .engine import EngineConfig, JPlagEngine, SimilarityEngine
from .errors import DetectionError, InvalidRequestError
from .identity import IdentityResolver
from .models import (
    ComparisonResult,
    DetectionRequest,
    DetectionResponse,
    ResolvedPair,
    StagingFailure,
)
from .report import ReportMaterializer
from .repository import RepositoryFetcher, RepositoryStager
from .statistics import summarize
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)

REPORT_ARCHIVE_NAME = "report.zip"


def validate_request(request: DetectionRequest, max_submissions: int) -> None:
    """
    Check submission count and id uniqueness.

    Raises:
        InvalidRequestError: If the request cannot be analyzed
    """
    count = len(request.submissions)
    if count < 2:
        raise InvalidRequestError(
            f"At least 2 submissions are required for plagiarism detection (got {count})"
        )
    if count > max_submissions:
        raise InvalidRequestError(
            f"Too many submissions: {count} (maximum {max_submissions})"
        )
    seen = set()
    for submission in request.submissions:
        if submission.submission_id in seen:
            raise InvalidRequestError(f"Duplicate submission id: {submission.submission_id}")
        seen.add(submission.submission_id)


def _to_comparison(pair: ResolvedPair) -> ComparisonResult:
    return ComparisonResult(
        submission_id1=pair.first_id,
        submission_id2=pair.second_id,
        team_name1=pair.first.team_name if pair.first else "",
        team_name2=pair.second.team_name if pair.second else "",
        similarity=pair.result.similarity,
        matched_tokens=pair.result.matched_token_count,
        comparison_artifact_url=pair.artifact_url,
        identity_degraded=pair.degraded,
    )


class DetectionPipeline:
    """Runs one detection request through all stages."""

    def __init__(
        self,
        settings: Settings,
        workspace: WorkspaceManager,
        stager: RepositoryStager,
        adapter: AnalysisAdapter,
        materializer: ReportMaterializer,
    ):
        self.settings = settings
        self.workspace = workspace
        self.stager = stager
        self.adapter = adapter
        self.materializer = materializer

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        engine: SimilarityEngine | None = None,
        fetcher: RepositoryFetcher | None = None,
    ) -> "DetectionPipeline":
        """Wire the default collaborators from settings."""
        engine = engine or JPlagEngine(settings.engine_command, settings.engine_timeout)
        fetcher = fetcher or RepositoryFetcher(timeout=settings.clone_timeout)
        return cls(
            settings=settings,
            workspace=WorkspaceManager(settings.temp_dir),
            stager=RepositoryStager(fetcher, settings.file_suffixes, settings.staging_workers),
            adapter=AnalysisAdapter(engine),
            materializer=ReportMaterializer(
                settings.reports_dir,
                settings.comparisons_dir,
                settings.max_matches_per_document,
            ),
        )

    def _failure(self, request: DetectionRequest, message: str, **extra) -> DetectionResponse:
        logger.error(f"Detection failed for assignment {request.assignment_id}: {message}")
        return DetectionResponse(
            assignment_id=request.assignment_id,
            assignment_title=request.assignment_title,
            success=False,
            message=message,
            **extra,
        )

    def detect(self, request: DetectionRequest) -> DetectionResponse:
        """
        Analyze all submissions of a request for pairwise similarity.

        Never raises; failures are reported with success=False.
        """
        try:
            validate_request(request, self.settings.max_submissions)
        except InvalidRequestError as e:
            return self._failure(request, str(e))

        logger.info(
            f"Starting detection for assignment {request.assignment_id} "
            f"with {len(request.submissions)} submission(s)"
        )
        session_id = None
        staging_failures: list[StagingFailure] = []
        try:
            with self.workspace.session() as session:
                session_id = session.session_id
                outcomes = self.stager.stage_all(request.submissions, session)
                staging_failures = [
                    StagingFailure(
                        submission_id=o.submission.submission_id,
                        repository_url=o.submission.repository_url,
                        reason=o.error or "unknown error",
                    )
                    for o in outcomes if not o.ok
                ]
                staged = [o.staged for o in outcomes if o.ok]
                if len(staged) < 2:
                    return self._failure(
                        request,
                        f"Insufficient valid submissions: {len(staged)} of "
                        f"{len(request.submissions)} could be staged",
                        session_id=session_id,
                        staging_failures=staging_failures,
                    )

                config = EngineConfig.from_settings(self.settings)
                analysis = self.adapter.analyze(
                    staged, config, session.engine_dir / REPORT_ARCHIVE_NAME
                )
                pairs = IdentityResolver(request.submissions).resolve_pairs(analysis.results)
                report = self.materializer.materialize(
                    session_id, analysis.report_archive, pairs
                )

            comparisons = [_to_comparison(p) for p in pairs]
            statistics = summarize(comparisons, len(request.submissions))
            logger.info(
                f"Detection for assignment {request.assignment_id} finished: "
                f"{len(comparisons)} comparison(s), average similarity {statistics.average_similarity}"
            )
            return DetectionResponse(
                assignment_id=request.assignment_id,
                assignment_title=request.assignment_title,
                success=True,
                message=f"Plagiarism analysis completed: {len(comparisons)} comparison(s)",
                session_id=session_id,
                comparisons=comparisons,
                statistics=statistics,
                report_url=report.report_url,
                report_available=report.report_available,
                staging_failures=staging_failures,
            )
        except DetectionError as e:
            return self._failure(
                request, str(e), session_id=session_id, staging_failures=staging_failures
            )
        except Exception as e:
            logger.exception(f"Unexpected error during detection: {e}")
            return self._failure(
                request,
                f"Internal error during plagiarism detection: {e}",
                session_id=session_id,
                staging_failures=staging_failures,
            )

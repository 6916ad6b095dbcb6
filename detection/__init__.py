"""
Source-code similarity detection for team submissions.

This package contains the stages of a detection run:
- workspace: per-request session directories
- repository: URL validation, cloning and source filtering
- engine: similarity engine integration (JPlag CLI)
- analysis: result filtering, ordering and capping
- identity: mapping engine directory names back to submissions
- report: safe bundle extraction and comparison documents
- statistics: summary figures for a response
- pipeline: orchestrator tying the stages together
"""

from .config import (
    Settings,
    ConfigurationError,
    load_settings,
)

from .errors import (
    DetectionError,
    InvalidRequestError,
    WorkspaceError,
    StagingError,
    EngineError,
    ExtractionSecurityError,
)

from .models import (
    Submission,
    DetectionRequest,
    DetectionResponse,
    ComparisonResult,
    Statistics,
    StagingFailure,
    PairwiseResult,
    Match,
    LineRange,
    StagedDirectory,
)

from .archive import (
    extract_archive,
    iter_archive,
)

from .workspace import (
    Session,
    WorkspaceManager,
)

from .repository import (
    is_valid_repository_url,
    RepositoryFetcher,
    RepositoryStager,
)

from .engine import (
    EngineConfig,
    EngineRun,
    SimilarityEngine,
    JPlagEngine,
)

from .analysis import (
    AnalysisAdapter,
    AnalysisOutcome,
)

from .identity import (
    IdentityResolver,
    Resolution,
    ResolutionMethod,
)

from .report import (
    ReportMaterializer,
    ComparisonDocument,
    extract_bundle,
    render_comparison_document,
)

from .statistics import summarize

from .pipeline import (
    DetectionPipeline,
    validate_request,
)

__all__ = [
    # config
    "Settings",
    "ConfigurationError",
    "load_settings",
    # errors
    "DetectionError",
    "InvalidRequestError",
    "WorkspaceError",
    "StagingError",
    "EngineError",
    "ExtractionSecurityError",
    # models
    "Submission",
    "DetectionRequest",
    "DetectionResponse",
    "ComparisonResult",
    "Statistics",
    "StagingFailure",
    "PairwiseResult",
    "Match",
    "LineRange",
    "StagedDirectory",
    # archive
    "extract_archive",
    "iter_archive",
    # workspace
    "Session",
    "WorkspaceManager",
    # repository
    "is_valid_repository_url",
    "RepositoryFetcher",
    "RepositoryStager",
    # engine
    "EngineConfig",
    "EngineRun",
    "SimilarityEngine",
    "JPlagEngine",
    # analysis
    "AnalysisAdapter",
    "AnalysisOutcome",
    # identity
    "IdentityResolver",
    "Resolution",
    "ResolutionMethod",
    # report
    "ReportMaterializer",
    "ComparisonDocument",
    "extract_bundle",
    "render_comparison_document",
    # statistics
    "summarize",
    # pipeline
    "DetectionPipeline",
    "validate_request",
]

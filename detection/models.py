from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Wire models use camelCase on the wire and snake_case in code
class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# One team's repository, as supplied by the caller
class Submission(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    submission_id: int
    team_id: int
    team_name: str = Field(min_length=1)
    repository_url: str = Field(min_length=1)
    member_names: list[str] = Field(default_factory=list)

    @property
    def directory_name(self) -> str:
        """Deterministic staging directory name encoding this submission's identity."""
        return f"submission_{self.submission_id}_team_{self.team_id}"


class DetectionRequest(WireModel):
    assignment_id: int
    assignment_title: str = Field(min_length=1)
    submissions: list[Submission]


class ComparisonResult(WireModel):
    submission_id1: int
    submission_id2: int
    team_name1: str
    team_name2: str
    similarity: float                        # fractional, 0-1
    matched_tokens: int
    comparison_artifact_url: str | None = None
    status: str = "completed"
    identity_degraded: bool = False          # fallback identity resolution was used


class Statistics(WireModel):
    total_submissions: int = 0
    total_comparisons: int = 0
    average_similarity: float = 0.0
    max_similarity: float = 0.0
    min_similarity: float = 0.0


class StagingFailure(WireModel):
    submission_id: int
    repository_url: str
    reason: str


class DetectionResponse(WireModel):
    assignment_id: int | None = None
    assignment_title: str | None = None
    success: bool
    message: str
    session_id: str | None = None
    comparisons: list[ComparisonResult] = Field(default_factory=list)
    statistics: Statistics | None = None
    report_url: str | None = None
    report_available: bool = False
    staging_failures: list[StagingFailure] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine-side records (never leave the service)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineRange:
    """Inclusive line span inside one file."""
    start: int
    end: int

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class Match:
    """One matched fragment between two files."""
    first_file: str
    second_file: str
    first_range: LineRange
    second_range: LineRange
    token_count: int = 0


@dataclass(frozen=True)
class PairwiseResult:
    """Engine output for one unordered pair of staged directories."""
    first_dir: str
    second_dir: str
    similarity_metrics: dict[str, float]
    matched_token_count: int
    matches: tuple[Match, ...] = ()
    primary_metric: str = "AVG"

    @property
    def similarity(self) -> float:
        return float(self.similarity_metrics.get(self.primary_metric, 0.0))


@dataclass
class StagedDirectory:
    """A filtered local copy of one submission, ready for the engine."""
    submission: Submission
    path: Path                # filtered copy fed to the engine
    clone_path: Path          # raw clone kept for diagnostics until teardown
    file_count: int = 0

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def flagged(self) -> bool:
        """True when no engine-readable files survived filtering."""
        return self.file_count == 0


@dataclass
class StageOutcome:
    """Result of staging one submission: a directory or a failure reason."""
    submission: Submission
    staged: StagedDirectory | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.staged is not None


@dataclass
class ResolvedPair:
    """A pairwise result with both sides mapped back to caller identities."""
    result: PairwiseResult
    first_id: int
    second_id: int
    first: Submission | None = None
    second: Submission | None = None
    degraded: bool = False
    artifact_url: str | None = None

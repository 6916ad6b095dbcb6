"""
Map engine-reported directory names back to caller submissions.

Staged directories are named ``submission_<sid>_team_<tid>``, but engines
may report a sub-path (``submission_19_team_17/src``) or decorate the name.
Resolution tries exact and embedded matches first and falls back to looser
heuristics, which are flagged as degraded.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum

from .models import PairwiseResult, ResolvedPair, Submission

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"\d+")
_SEPARATOR = re.compile(r"[/\\]")


class ResolutionMethod(str, Enum):
    EXACT = "exact"
    PATTERN = "pattern"
    PATH_PREFIX = "path_prefix"
    NUMERIC = "numeric"


@dataclass(frozen=True)
class Resolution:
    submission_id: int
    submission: Submission | None
    method: ResolutionMethod

    @property
    def degraded(self) -> bool:
        return self.method in (ResolutionMethod.PATH_PREFIX, ResolutionMethod.NUMERIC)


class IdentityResolver:
    """Resolves directory names against the submissions of one request."""

    def __init__(self, submissions: list[Submission]):
        self.by_name = {s.directory_name: s for s in submissions}
        self.by_id = {s.submission_id: s for s in submissions}
        # Longest names first so a name never shadows a longer one containing it.
        # A trailing path separator is left to the path-prefix fallback.
        self._patterns = [
            (re.compile(rf"(?<![A-Za-z0-9]){re.escape(name)}(?![A-Za-z0-9/\\])"), sub)
            for name, sub in sorted(self.by_name.items(), key=lambda kv: len(kv[0]), reverse=True)
        ]

    def _match(self, name: str) -> tuple[Submission, bool] | None:
        sub = self.by_name.get(name)
        if sub is not None:
            return sub, True
        for pattern, sub in self._patterns:
            if pattern.search(name):
                return sub, False
        return None

    def resolve(self, directory_name: str) -> Resolution | None:
        """
        Resolve a reported directory name.

        Returns:
            Resolution, or None when nothing identifies a known submission
        """
        name = directory_name.strip()
        found = self._match(name)
        if found is not None:
            sub, exact = found
            method = ResolutionMethod.EXACT if exact else ResolutionMethod.PATTERN
            return Resolution(sub.submission_id, sub, method)

        head = _SEPARATOR.split(name, 1)[0]
        if head != name:
            found = self._match(head)
            if found is not None:
                sub = found[0]
                logger.warning(f"Resolved '{directory_name}' to submission {sub.submission_id} by path prefix")
                return Resolution(sub.submission_id, sub, ResolutionMethod.PATH_PREFIX)

        number = _NUMBER.search(name)
        if number is not None:
            sid = int(number.group())
            sub = self.by_id.get(sid)
            if sub is not None:
                logger.warning(f"Resolved '{directory_name}' to submission {sid} by numeric token")
                return Resolution(sid, sub, ResolutionMethod.NUMERIC)

        return None

    def resolve_pairs(self, results: list[PairwiseResult]) -> list[ResolvedPair]:
        """Resolve both sides of each result, dropping pairs with an unknown side."""
        pairs = []
        for result in results:
            first = self.resolve(result.first_dir)
            second = self.resolve(result.second_dir)
            if first is None or second is None:
                logger.warning(
                    f"Dropping comparison {result.first_dir} vs {result.second_dir}: "
                    f"could not resolve submission identity"
                )
                continue
            if first.submission_id == second.submission_id:
                logger.warning(
                    f"Dropping comparison {result.first_dir} vs {result.second_dir}: "
                    f"both sides resolved to submission {first.submission_id}"
                )
                continue
            pairs.append(ResolvedPair(
                result=result,
                first_id=first.submission_id,
                second_id=second.submission_id,
                first=first.submission,
                second=second.submission,
                degraded=first.degraded or second.degraded,
            ))
        return pairs

"""
End-to-end tests for detection/pipeline.py

The similarity engine and the clone step are replaced with in-process fakes;
everything else (workspace, filtering, identity, reports) runs for real.
"""
from dataclasses import replace
from unittest.mock import patch

import pytest

from conftest import FakeEngine, FakeFetcher, comparison_entry, make_submission, match_entry
from detection.errors import EngineError
from detection.models import DetectionRequest
from detection.pipeline import DetectionPipeline


def _request(submissions):
    return DetectionRequest(assignment_id=7, assignment_title="Lab 3", submissions=submissions)


def _pipeline(settings, engine, fetcher=None):
    return DetectionPipeline.from_settings(settings, engine=engine, fetcher=fetcher or FakeFetcher())


def _session_roots(settings):
    if not settings.temp_dir.exists():
        return []
    return list(settings.temp_dir.iterdir())


class TestDetect:
    """Tests for DetectionPipeline.detect."""

    def test_one_invalid_url_still_analyzes(self, settings):
        """Invalid URL is reported while the rest is analyzed."""
        subs = [make_submission(1, 11), make_submission(2, 12), make_submission(3, 13, url="not-a-url")]
        engine = FakeEngine([comparison_entry(
            "submission_1_team_11", "submission_2_team_12", 0.42,
            matches=[match_entry("Main.java", "Main.java", 1, 20, 1, 20, length=30)],
        )])

        response = _pipeline(settings, engine).detect(_request(subs))

        assert response.success
        assert response.assignment_id == 7
        assert len(response.comparisons) == 1
        comparison = response.comparisons[0]
        assert (comparison.submission_id1, comparison.submission_id2) == (1, 2)
        assert comparison.team_name1 == "Team 1"
        assert comparison.similarity == pytest.approx(0.42)
        assert comparison.matched_tokens == 30
        assert comparison.comparison_artifact_url == f"/reports/comparison/{response.session_id}/1-2.html"
        assert response.statistics.total_comparisons == 1
        assert response.statistics.average_similarity == pytest.approx(0.42)
        assert [f.submission_id for f in response.staging_failures] == [3]
        assert response.report_url == f"/reports/view/{response.session_id}"
        assert response.report_available
        assert len(engine.corpus) == 2
        assert _session_roots(settings) == []
        assert (settings.comparisons_dir / response.session_id / "1-2.html").exists()

    def test_nothing_above_floor(self, settings):
        """No result above the floor gives an empty success."""
        settings = replace(settings, similarity_threshold=0.10)
        engine = FakeEngine([comparison_entry("submission_1_team_11", "submission_2_team_12", 0.05)])

        response = _pipeline(settings, engine).detect(
            _request([make_submission(1, 11), make_submission(2, 12)])
        )

        assert response.success
        assert response.comparisons == []
        assert response.statistics.total_comparisons == 0
        assert response.statistics.average_similarity == 0.0
        assert response.statistics.max_similarity == 0.0
        assert response.statistics.min_similarity == 0.0
        assert engine.config.similarity_threshold == 0.10

    def test_fewer_than_two_submissions_has_no_side_effects(self, settings):
        """Single submission fails before any I/O."""
        fetcher = FakeFetcher()
        engine = FakeEngine()

        response = _pipeline(settings, engine, fetcher).detect(_request([make_submission(1)]))

        assert not response.success
        assert "At least 2 submissions" in response.message
        assert fetcher.calls == []
        assert engine.corpus is None
        assert not settings.temp_dir.exists()

    def test_duplicate_submission_ids(self, settings):
        """Duplicate ids are rejected."""
        response = _pipeline(settings, FakeEngine()).detect(
            _request([make_submission(1, 11), make_submission(1, 12)])
        )
        assert not response.success
        assert "Duplicate submission id" in response.message

    def test_too_many_submissions(self, settings):
        """Submission limit is enforced."""
        settings = replace(settings, max_submissions=2)
        response = _pipeline(settings, FakeEngine()).detect(
            _request([make_submission(i) for i in range(1, 4)])
        )
        assert not response.success
        assert "Too many submissions" in response.message

    def test_insufficient_valid_submissions(self, settings):
        """Fewer than two staged repositories fails the session."""
        subs = [make_submission(1), make_submission(2, url="ftp://nowhere")]
        engine = FakeEngine()

        response = _pipeline(settings, engine).detect(_request(subs))

        assert not response.success
        assert "Insufficient valid submissions" in response.message
        assert engine.corpus is None
        assert len(response.staging_failures) == 1
        assert _session_roots(settings) == []

    def test_engine_failure(self, settings):
        """Engine error becomes a failure response and cleans up."""
        engine = FakeEngine(error=EngineError("Engine exited with code 1: boom"))

        response = _pipeline(settings, engine).detect(
            _request([make_submission(1), make_submission(2)])
        )

        assert not response.success
        assert "boom" in response.message
        assert response.comparisons == []
        assert _session_roots(settings) == []

    def test_unexpected_error_is_contained(self, settings):
        """Unexpected exceptions become a failure response."""
        engine = FakeEngine(error=RuntimeError("disk on fire"))

        response = _pipeline(settings, engine).detect(
            _request([make_submission(1), make_submission(2)])
        )

        assert not response.success
        assert "disk on fire" in response.message
        assert _session_roots(settings) == []

    def test_rejected_report_bundle_keeps_comparisons(self, settings):
        """Unsafe bundle hides the report but keeps results."""
        engine = FakeEngine(
            [comparison_entry("submission_1_team_11", "submission_2_team_12", 0.7)],
            extra_entries={"../../../outside.txt": "x"},
        )

        response = _pipeline(settings, engine).detect(
            _request([make_submission(1, 11), make_submission(2, 12)])
        )

        assert response.success
        assert len(response.comparisons) == 1
        assert response.statistics.total_comparisons == 1
        assert response.report_url is None
        assert not response.report_available

    def test_results_sorted_and_degraded_flagged(self, settings):
        """Comparisons are sorted and degraded ones flagged."""
        subs = [make_submission(1, 11), make_submission(2, 12), make_submission(3, 13)]
        engine = FakeEngine([
            comparison_entry("submission_1_team_11", "submission_2_team_12", 0.3),
            comparison_entry("submission_1_team_11/src", "submission_3_team_13", 0.8),
            comparison_entry("submission_2_team_12", "submission_3_team_13", 0.3),
        ])

        response = _pipeline(settings, engine).detect(_request(subs))

        assert [c.similarity for c in response.comparisons] == pytest.approx([0.8, 0.3, 0.3])
        assert [(c.submission_id1, c.submission_id2) for c in response.comparisons] == [(1, 3), (1, 2), (2, 3)]
        assert [c.identity_degraded for c in response.comparisons] == [True, False, False]

    def test_unnamed_match_does_not_lose_other_pairs(self, settings):
        """Match without file names still yields every comparison and document."""
        subs = [make_submission(1, 11), make_submission(2, 12), make_submission(3, 13)]
        unnamed = match_entry("Main.java", "Main.java", 1, 10, 1, 10)
        unnamed["firstFileName"] = None
        engine = FakeEngine([
            comparison_entry("submission_1_team_11", "submission_2_team_12", 0.6, matches=[unnamed]),
            comparison_entry("submission_1_team_11", "submission_3_team_13", 0.4),
        ])

        response = _pipeline(settings, engine).detect(_request(subs))

        assert response.success
        assert len(response.comparisons) == 2
        assert all(c.comparison_artifact_url for c in response.comparisons)
        written = sorted(p.name for p in (settings.comparisons_dir / response.session_id).iterdir())
        assert written == ["1-2.html", "1-3.html"]

    def test_non_finite_similarity_fails_cleanly(self, settings):
        """Infinite similarity in the report becomes a failure response."""
        engine = FakeEngine([
            comparison_entry("submission_1_team_11", "submission_2_team_12", float("inf")),
        ])

        response = _pipeline(settings, engine).detect(
            _request([make_submission(1, 11), make_submission(2, 12)])
        )

        assert not response.success
        assert "Non-finite" in response.message
        assert response.comparisons == []
        assert _session_roots(settings) == []

    def test_summary_failure_is_contained(self, settings):
        """Errors while summarizing results still return a failure response."""
        engine = FakeEngine([comparison_entry("submission_1_team_11", "submission_2_team_12", 0.5)])

        with patch("detection.pipeline.summarize", side_effect=ArithmeticError("bad rounding")):
            response = _pipeline(settings, engine).detect(
                _request([make_submission(1, 11), make_submission(2, 12)])
            )

        assert not response.success
        assert "bad rounding" in response.message
        assert _session_roots(settings) == []

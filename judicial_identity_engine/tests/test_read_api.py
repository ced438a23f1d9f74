"""Tests for the read API module."""

import pytest

from judicial_identity_engine.src.config import EngineConfig
from judicial_identity_engine.src.ingestion import IngestionPipeline
from judicial_identity_engine.src.read_api import ReadAPI
from judicial_identity_engine.src.registry import Registry


@pytest.fixture
def pipeline():
    """Two judges: Jane with a publishable profile, John Lee retired and below minimum."""
    config = EngineConfig(min_cases=5, min_baseline_cases=3, bootstrap_iterations=50)
    pipeline = IngestionPipeline(Registry(config=config))
    pipeline.load_courts([{
        "court_id": "lasc", "name": "Los Angeles Superior Court",
        "jurisdiction_path": "CA/LosAngeles/Superior", "seats": 5,
    }])
    pipeline.load_judges([
        {"id": 101, "name": "Jane A. Smith"},
        {"id": 102, "name": "John Lee"},
    ])
    pipeline.apply_appointments([
        {"person": 101, "court": "lasc", "date_start": "2015-01-01"},
        {"person": 102, "court": "lasc", "date_start": "2016-01-01"},
        {"kind": "end", "person": 102, "court": "lasc", "end_date": "2021-12-31"},
    ])
    cases = [
        {"case_id": f"A{i}", "judge_name": "Jane Smith", "court_id": "lasc",
         "decided_on": f"2020-03-{i + 1:02d}", "outcome": "Judgment for Plaintiff"}
        for i in range(6)
    ] + [
        {"case_id": f"B{i}", "judge_name": "John Lee", "court_id": "lasc",
         "decided_on": f"2020-04-{i + 1:02d}", "outcome": "Judgment for Defendant"}
        for i in range(4)
    ] + [
        {"case_id": "X1", "judge_name": "Unknown Person", "court_id": "lasc",
         "decided_on": "2020-05-01"},
    ]
    pipeline.ingest_cases(cases, max_workers=2, show_progress=False)
    pipeline.analyze_all(show_progress=False)
    return pipeline


@pytest.fixture
def api(pipeline):
    return ReadAPI(pipeline.registry)


@pytest.fixture
def ids(pipeline):
    return {
        "jane": pipeline.registry.judge_by_external_id("101"),
        "lee": pipeline.registry.judge_by_external_id("102"),
    }


class TestRoster:
    """Test cases for the judge roster."""

    def test_roster(self, api, ids):
        roster = api.roster()

        assert list(roster.columns) == ReadAPI.ROSTER_COLUMNS
        assert list(roster["canonical_name"]) == ["Jane A. Smith", "John Lee"]
        jane = roster.iloc[0]
        assert jane["active_courts"] == "lasc"
        assert jane["cases"] == 6
        assert jane["latest_status"] == "pattern_detected"
        lee = roster.iloc[1]
        assert bool(lee["retired"]) is True
        assert lee["active_courts"] == ""
        assert lee["latest_status"] == "insufficient_data"

    def test_exclude_retired(self, api, ids):
        assert list(api.roster(include_retired=False)["judge_id"]) == [ids["jane"]]


class TestPositions:
    """Test cases for position history views."""

    def test_position_history(self, api, ids):
        history = api.position_history(ids["lee"])

        assert list(history.columns) == ReadAPI.POSITION_COLUMNS
        assert len(history) == 1
        row = history.iloc[0]
        assert row["court_name"] == "Los Angeles Superior Court"
        assert row["status"] == "ended"
        assert str(row["end_date"]) == "2021-12-31"
        assert not row["end_inferred"]

    def test_unknown_judge(self, api):
        with pytest.raises(KeyError):
            api.position_history("J999999")

    def test_events(self, api, ids):
        kinds = list(api.events(ids["jane"])["kind"])
        assert kinds[:2] == ["external_id", "created"]
        assert "appointed" in kinds
        assert "case_linked" in kinds


class TestProfiles:
    """Test cases for profile views."""

    def test_only_publishable_profiles(self, api, ids):
        published = api.published_profiles()

        assert list(published["judge_id"]) == [ids["jane"]]
        assert published.loc[0, "pattern_score"] == 100.0
        assert published.loc[0, "sample_size"] == 6

    def test_profile(self, api, ids):
        profile = api.profile(ids["jane"])
        assert profile["status"] == "pattern_detected"
        assert profile["outcome_counts"]["judgment_plaintiff"] == 6
        assert profile["baseline_size"] == 4
        assert api.profile(ids["lee"]) is None

    def test_history_kept_for_insufficient(self, api, ids):
        history = api.profile_history(ids["lee"])
        assert len(history) == 1
        assert history.loc[0, "status"] == "insufficient_data"
        assert history.loc[0, "sample_size"] == 4


class TestQueues:
    """Test cases for review and pending views."""

    def test_pending_cases(self, api):
        pending = api.pending_cases()
        assert list(pending["case_id"]) == ["X1"]
        assert pending.loc[0, "reason"] == "no_candidates"
        assert api.pending_cases("ambiguous").empty

    def test_review_queue(self, pipeline, api):
        assert api.review_queue().empty
        pipeline.registry.enqueue_review("ambiguous", case_id="X1", candidates=["J000001"])

        queue = api.review_queue()

        assert list(queue["kind"]) == ["ambiguous"]
        assert queue.loc[0, "candidates"] == ["J000001"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Tests for the registry module."""

from datetime import date

import pytest

from judicial_identity_engine.src.analysis import BiasOutcomeAnalyzer
from judicial_identity_engine.src.errors import ViolationKind
from judicial_identity_engine.src.models import (
    AppointmentRecord,
    CaseRecord,
    MatchResult,
    PendingCase,
    Violation,
)
from judicial_identity_engine.src.position_tracker import PositionHistoryTracker
from judicial_identity_engine.src.registry import Registry


@pytest.fixture
def registry():
    registry = Registry()
    registry.add_court("lasc", "Los Angeles Superior Court", "CA/LosAngeles/Superior", seats=2)
    registry.add_court("cal-sup", "Supreme Court of California", "CA/Supreme")
    return registry


class TestCourts:
    """Test cases for court registration."""

    def test_jurisdiction_nodes_registered(self, registry):
        assert registry.hierarchy.has_node("ca/los-angeles")
        assert registry.get_court("lasc").jurisdiction == "ca/los-angeles/superior"

    def test_level_from_name(self, registry):
        assert registry.get_court("cal-sup").level == "supreme"
        assert registry.get_court("lasc").level == "trial"
        assert Registry.classify_court_level("Court of Appeal, Second District") == "appellate"

    def test_seats_default_from_config(self, registry):
        assert registry.court_seats(registry.get_court("lasc")) == 2
        assert registry.court_seats(registry.get_court("cal-sup")) == registry.config.default_court_seats

    def test_unresolvable_jurisdiction(self, registry):
        with pytest.raises(ValueError):
            registry.add_court("x", "Nowhere Court", "  ")

    def test_courts_within(self, registry):
        assert {c.court_id for c in registry.courts_within("ca")} == {"lasc", "cal-sup"}
        assert [c.court_id for c in registry.courts_at("ca/supreme")] == ["cal-sup"]


class TestJudges:
    """Test cases for judge identities and indices."""

    def test_generated_ids_and_name_index(self, registry):
        first = registry.add_judge("Hon. Jane A. Smith")
        second = registry.add_judge("John Lee")

        assert first.judge_id == "J000001"
        assert second.judge_id == "J000002"
        assert registry.judges_by_name("jane smith") == {first.judge_id}
        assert registry.judges_by_name("jane a smith") == {first.judge_id}
        assert registry.judges_by_phonetic("S530-j") == {first.judge_id}

    def test_duplicate_judge_id(self, registry):
        registry.add_judge("Jane Smith", judge_id="J1")
        with pytest.raises(ValueError):
            registry.add_judge("John Lee", judge_id="J1")

    def test_external_id_rebinding(self, registry):
        first = registry.add_judge("Jane Smith", external_id="cl-1")
        second = registry.add_judge("Jane Smyth")

        registry.bind_external_id(second.judge_id, "cl-1")

        assert registry.judge_by_external_id("cl-1") == second.judge_id
        assert registry.get_judge(first.judge_id).external_id is None

    def test_name_variant(self, registry):
        judge = registry.add_judge("Jane Smith")
        assert registry.add_name_variant(judge.judge_id, "Jane Doe") == {"jane doe"}
        assert registry.add_name_variant(judge.judge_id, "Doe, Jane") == set()
        assert registry.events(judge.judge_id)[-1]["kind"] == "name_variant"

    def test_unknown_judge(self, registry):
        with pytest.raises(KeyError):
            registry.aggregate("J999999")
        with pytest.raises(KeyError):
            registry.add_name_variant("J999999", "Jane Doe")


class TestQueues:
    """Test cases for the review queue and pending cases."""

    def test_ambiguity_queued_once(self, registry):
        first = registry.enqueue_review("ambiguous", case_id="C1", candidates=["J2", "J1"])
        again = registry.enqueue_review("ambiguous", case_id="C1", candidates=["J1", "J2"])

        assert again is first
        assert first.candidates == ("J1", "J2")
        assert len(registry.review_items()) == 1

        assert registry.resolve_review_for_case("C1") == 1
        assert registry.review_items() == []
        assert len(registry.review_items(include_resolved=True)) == 1

    def test_violation_queued_once_per_case_and_kind(self, registry):
        overlap = Violation(ViolationKind.OVERLAP, "J000001", ("P1", "P2"), "overlaps P1")
        seats = Violation(ViolationKind.SEAT_CONFLICT, "J000001", ("P2",), "court is full")

        first = registry.enqueue_review("violation", "C1", "J000001", violation=overlap)
        again = registry.enqueue_review("violation", "C1", "J000001", violation=overlap)
        registry.enqueue_review("violation", "C1", "J000001", violation=seats)
        registry.enqueue_review("violation", "C2", "J000001", violation=overlap)

        assert again is first
        assert len(registry.review_items()) == 3

        registry.resolve_review_for_case("C1")
        reopened = registry.enqueue_review("violation", "C1", "J000001", violation=overlap)
        assert reopened is not first

    def test_detach_link_parks_case(self, registry):
        judge = registry.add_judge("Jane Smith")
        case = CaseRecord("C1", "Jane Smith", "CA/LosAngeles/Superior", date(2020, 1, 1), court_id="lasc")
        PositionHistoryTracker(registry).record_case(
            case, MatchResult(judge.judge_id, 1.0, "exact", "lasc")
        )

        registry.detach_link("C1", PendingCase(case, "position_closed", judge.judge_id))

        assert registry.get_link("C1") is None
        assert registry.links_for_judge(judge.judge_id) == []
        assert [p.case.case_id for p in registry.pending("position_closed")] == ["C1"]

    def test_link_clears_pending(self, registry):
        judge = registry.add_judge("Jane Smith")
        case = CaseRecord("C1", "Jane Smith", "CA/LosAngeles/Superior", date(2020, 1, 1), court_id="lasc")
        registry.add_pending(PendingCase(case, "position_closed", judge.judge_id))
        assert len(registry.pending("position_closed")) == 1
        assert registry.pending("unknown_court") == []

        PositionHistoryTracker(registry).record_case(
            case, MatchResult(judge.judge_id, 1.0, "exact", "lasc")
        )

        assert registry.pending() == []
        assert registry.get_link("C1").judge_id == judge.judge_id


class TestPersistence:
    """Test cases for parquet save/load."""

    @pytest.fixture
    def populated(self, registry):
        tracker = PositionHistoryTracker(registry)
        judge = registry.add_judge("Jane A. Smith", external_id="cl-1", birth_date=date(1960, 4, 2))
        other = registry.add_judge("John Lee")
        tracker.apply_appointment(
            AppointmentRecord(court_id="lasc", start_date=date(2015, 1, 1), judge_id=judge.judge_id)
        )
        for i, outcome in enumerate(["settled", "dismissed", "Judgment for Plaintiff"]):
            case = CaseRecord(
                f"C{i}", "Jane Smith", "CA/LosAngeles/Superior", date(2020, 1, 1 + i),
                outcome=outcome, case_type="contract", filed_on=date(2019, 6, 1),
            )
            tracker.record_case(case, MatchResult(judge.judge_id, 1.0, "exact", "lasc"))

        tracker.apply_appointment(
            AppointmentRecord(court_id="lasc", start_date=date(2016, 1, 1), end_date=date(2017, 1, 1),
                              judge_id=other.judge_id)
        )
        # overlaps the ended lasc position, so it is rejected into review
        tracker.apply_appointment(
            AppointmentRecord(court_id="cal-sup", start_date=date(2016, 6, 1), judge_id=other.judge_id)
        )
        registry.enqueue_review("ambiguous", case_id="C9", candidates=[judge.judge_id, other.judge_id])
        registry.add_pending(PendingCase(
            CaseRecord("C9", "J. Smith", "CA/LosAngeles/Superior", date(2021, 3, 1)), "ambiguous"
        ))
        BiasOutcomeAnalyzer(registry).analyze(judge.judge_id)
        return registry, judge, other

    def test_round_trip(self, populated, tmp_path):
        registry, judge, other = populated
        registry.save(str(tmp_path))

        loaded = Registry.load(str(tmp_path))

        restored = loaded.get_judge(judge.judge_id)
        assert restored.canonical_name == "Jane A. Smith"
        assert restored.name_variants == judge.name_variants
        assert restored.external_id == "cl-1"
        assert restored.birth_date == date(1960, 4, 2)
        assert loaded.judge_by_external_id("cl-1") == judge.judge_id
        assert loaded.judges_by_name("jane smith") == {judge.judge_id}

        for judge_id in (judge.judge_id, other.judge_id):
            assert loaded.positions(judge_id) == registry.positions(judge_id)
            assert loaded.generation(judge_id) == registry.generation(judge_id)
            assert len(loaded.events(judge_id)) == len(registry.events(judge_id))

        assert loaded.get_link("C1") == registry.get_link("C1")
        assert [p.reason for p in loaded.pending()] == ["ambiguous"]
        assert loaded.pending()[0].case.decided_on == date(2021, 3, 1)
        assert len(loaded.review_items()) == len(registry.review_items())

        profile = loaded.latest_profile(judge.judge_id)
        original = registry.latest_profile(judge.judge_id)
        assert profile.version == original.version
        assert profile.sample_size == 3
        assert profile.status == "insufficient_data"
        assert profile.outcome_counts == original.outcome_counts

    def test_sequences_continue_after_load(self, populated, tmp_path):
        registry, _, _ = populated
        registry.save(str(tmp_path))
        loaded = Registry.load(str(tmp_path))

        existing = {p.position_id for j in loaded.judge_ids() for p in loaded.positions(j)}
        assert loaded.new_position_id() not in existing
        assert loaded.add_judge("New Judge").judge_id not in {"J000001", "J000002"}

    def test_load_empty_directory(self, tmp_path):
        loaded = Registry.load(str(tmp_path))
        assert loaded.judges() == []
        assert loaded.courts() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

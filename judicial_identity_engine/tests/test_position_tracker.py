"""Tests for the position history tracker module."""

import threading
from datetime import date

import pytest

from judicial_identity_engine.src.errors import (
    PositionGraphError,
    UpstreamDataError,
    ViolationKind,
)
from judicial_identity_engine.src.models import (
    AppointmentRecord,
    CaseLink,
    CaseRecord,
    MatchResult,
    PendingCase,
    PositionStatus,
    Violation,
)
from judicial_identity_engine.src.position_tracker import PositionHistoryTracker
from judicial_identity_engine.src.registry import Registry


@pytest.fixture
def registry():
    registry = Registry()
    registry.add_court("lasc", "Los Angeles Superior Court", "CA/LosAngeles/Superior", seats=10)
    registry.add_court("ocsc", "Orange County Superior Court", "CA/Orange/Superior", seats=10)
    registry.add_court("smallc", "Los Angeles Small Claims", "CA/LosAngeles/SmallClaims")
    return registry


@pytest.fixture
def tracker(registry):
    return PositionHistoryTracker(registry)


@pytest.fixture
def judge(registry):
    return registry.add_judge("Jane Smith")


def record(tracker, judge_id, case_id, decided_on, court_id="lasc",
           jurisdiction="CA/LosAngeles/Superior"):
    case = CaseRecord(
        case_id=case_id,
        judge_name="Jane Smith",
        jurisdiction=jurisdiction,
        decided_on=decided_on,
        outcome="settled",
    )
    match = MatchResult(judge_id=judge_id, confidence=1.0, tier="exact", court_id=court_id)
    return tracker.record_case(case, match)


def appoint(tracker, judge_id, court_id, start, end=None, kind="appointment"):
    return tracker.apply_appointment(AppointmentRecord(
        court_id=court_id, start_date=start, end_date=end, judge_id=judge_id, kind=kind,
    ))


class TestCaseTransitions:
    """Test cases for case-driven position changes."""

    def test_first_case_creates_position(self, registry, tracker, judge):
        link = record(tracker, judge.judge_id, "C1", date(2020, 5, 1))

        assert isinstance(link, CaseLink)
        positions = registry.positions(judge.judge_id)
        assert len(positions) == 1
        assert positions[0].start_date == date(2020, 5, 1)
        assert positions[0].status == PositionStatus.ACTIVE
        assert positions[0].last_activity == date(2020, 5, 1)
        assert link.position_id == positions[0].position_id

    def test_record_case_is_idempotent(self, registry, tracker, judge):
        first = record(tracker, judge.judge_id, "C1", date(2020, 5, 1))
        generation = registry.generation(judge.judge_id)

        second = record(tracker, judge.judge_id, "C1", date(2020, 5, 1))

        assert second == first
        assert registry.generation(judge.judge_id) == generation
        assert len(registry.links_for_judge(judge.judge_id)) == 1

    def test_later_case_updates_last_activity(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2020, 5, 1))
        record(tracker, judge.judge_id, "C2", date(2021, 2, 1))

        positions = registry.positions(judge.judge_id)
        assert len(positions) == 1
        assert positions[0].last_activity == date(2021, 2, 1)

    def test_earlier_case_extends_start(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2020, 5, 1))
        record(tracker, judge.judge_id, "C2", date(2019, 6, 1))

        positions = registry.positions(judge.judge_id)
        assert len(positions) == 1
        assert positions[0].start_date == date(2019, 6, 1)
        assert positions[0].last_activity == date(2020, 5, 1)
        assert registry.events(judge.judge_id)[-1]["kind"] == "start_extended"

    def test_case_before_authoritative_start_is_deferred(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2020, 1, 1))

        result = record(tracker, judge.judge_id, "C1", date(1999, 6, 1))

        assert isinstance(result, PendingCase)
        assert result.reason == "before_start"
        assert result.judge_id == judge.judge_id
        position = registry.positions(judge.judge_id)[0]
        assert position.start_date == date(2020, 1, 1)
        assert position.source == "authoritative"
        assert registry.get_link("C1") is None

    def test_deferred_case_links_after_start_correction(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2020, 1, 1))
        record(tracker, judge.judge_id, "C1", date(1999, 6, 1))

        appoint(tracker, judge.judge_id, "lasc", date(1998, 9, 1))
        outcomes = tracker.retry_pending(judge.judge_id)

        assert isinstance(outcomes[0], CaseLink)
        assert registry.positions(judge.judge_id)[0].start_date == date(1998, 9, 1)
        assert registry.pending() == []

    def test_case_after_position_ended_is_deferred(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2015, 1, 1), date(2018, 12, 31))

        result = record(tracker, judge.judge_id, "C1", date(2020, 1, 1))

        assert isinstance(result, PendingCase)
        assert result.reason == "position_closed"
        assert [p.case.case_id for p in registry.pending("position_closed")] == ["C1"]
        assert len(registry.positions(judge.judge_id)) == 1

    def test_case_inside_ended_position_links_to_it(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2015, 1, 1), date(2018, 12, 31))
        link = record(tracker, judge.judge_id, "C1", date(2016, 1, 1))
        assert isinstance(link, CaseLink)
        assert registry.positions(judge.judge_id)[0].status == PositionStatus.ENDED

    def test_unknown_court_is_deferred(self, tracker, judge):
        result = record(tracker, judge.judge_id, "C1", date(2020, 1, 1), court_id=None)
        assert isinstance(result, PendingCase)
        assert result.reason == "unknown_court"

    def test_case_at_second_court_overlaps(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2020, 1, 1))

        result = record(
            tracker, judge.judge_id, "C2", date(2021, 1, 1),
            court_id="ocsc", jurisdiction="CA/Orange/Superior",
        )

        assert isinstance(result, Violation)
        assert result.kind == ViolationKind.OVERLAP
        assert len(registry.positions(judge.judge_id)) == 1
        assert registry.get_link("C2") is None
        assert registry.review_items()[0].kind == "violation"

    def test_rejected_case_rerun_keeps_one_review_item(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2015, 1, 1))

        for _ in range(3):
            result = record(
                tracker, judge.judge_id, "C2", date(2021, 1, 1),
                court_id="ocsc", jurisdiction="CA/Orange/Superior",
            )
            assert isinstance(result, Violation)
        tracker.retry_pending(judge.judge_id)

        items = registry.review_items()
        assert len(items) == 1
        assert items[0].case_id == "C2"
        parked = registry.pending("violation")
        assert [p.case.case_id for p in parked] == ["C2"]
        assert parked[0].case.court_id == "ocsc"
        assert parked[0].judge_id == judge.judge_id

    def test_multi_court_judge_holds_two_courts(self, registry, tracker):
        judge = registry.add_judge("Jane Smith", multi_court=True)
        record(tracker, judge.judge_id, "C1", date(2020, 1, 1))
        result = record(
            tracker, judge.judge_id, "C2", date(2021, 1, 1),
            court_id="ocsc", jurisdiction="CA/Orange/Superior",
        )
        assert isinstance(result, CaseLink)
        assert {p.court_id for p in registry.positions(judge.judge_id)} == {"lasc", "ocsc"}

    def test_court_outside_case_jurisdiction(self, registry, tracker, judge):
        result = record(
            tracker, judge.judge_id, "C1", date(2020, 1, 1), jurisdiction="CA/Orange/Superior"
        )
        assert isinstance(result, Violation)
        assert result.kind == ViolationKind.JURISDICTION
        assert registry.positions(judge.judge_id) == []

    def test_single_seat_court(self, registry, tracker, judge):
        other = registry.add_judge("John Lee")
        record(tracker, other.judge_id, "C1", date(2019, 1, 1), court_id="smallc",
               jurisdiction="CA/LosAngeles/SmallClaims")

        result = record(tracker, judge.judge_id, "C2", date(2020, 1, 1), court_id="smallc",
                        jurisdiction="CA/LosAngeles/SmallClaims")

        assert isinstance(result, Violation)
        assert result.kind == ViolationKind.SEAT_CONFLICT
        assert registry.positions(judge.judge_id) == []

    def test_corrupted_graph_raises(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2020, 1, 1))
        aggregate = registry.aggregate(judge.judge_id)
        aggregate.positions[0].end_date = date(2010, 1, 1)

        with pytest.raises(PositionGraphError):
            record(tracker, judge.judge_id, "C2", date(2021, 1, 1))
        assert registry.get_link("C2") is None


class TestAuthoritativeTransitions:
    """Test cases for appointment, end and transfer records."""

    def test_new_appointment_supersedes_other_court(self, registry, tracker, judge):
        """Position A ends 2022-12-31 when B starts 2023-01-01."""
        appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1))

        changed = appoint(tracker, judge.judge_id, "ocsc", date(2023, 1, 1))

        assert len(changed) == 2
        by_court = {p.court_id: p for p in registry.positions(judge.judge_id)}
        assert by_court["lasc"].end_date == date(2022, 12, 31)
        assert by_court["lasc"].status == PositionStatus.ENDED
        assert by_court["lasc"].end_inferred is False
        assert by_court["ocsc"].start_date == date(2023, 1, 1)
        assert by_court["ocsc"].is_active

    def test_supersession_releases_later_cases(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2015, 1, 1))
        kept = record(tracker, judge.judge_id, "C1", date(2020, 6, 1))
        record(tracker, judge.judge_id, "C2", date(2024, 3, 1))

        appoint(tracker, judge.judge_id, "ocsc", date(2023, 1, 1))

        by_court = {p.court_id: p for p in registry.positions(judge.judge_id)}
        assert by_court["lasc"].end_date == date(2022, 12, 31)
        assert registry.get_link("C1") == kept
        assert registry.get_link("C2") is None
        pending = registry.pending("position_closed")
        assert [p.case.case_id for p in pending] == ["C2"]
        assert pending[0].judge_id == judge.judge_id
        assert pending[0].case.court_id == "lasc"
        assert pending[0].case.decided_on == date(2024, 3, 1)

        # a retry still finds the lasc position closed
        outcome = tracker.retry_pending(judge.judge_id)[0]
        assert isinstance(outcome, PendingCase)
        assert outcome.reason == "position_closed"

    def test_end_record_releases_later_cases(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1))
        record(tracker, judge.judge_id, "C1", date(2022, 2, 1))

        appoint(tracker, judge.judge_id, "lasc", None, date(2021, 6, 30), kind="end")

        assert registry.links_for_judge(judge.judge_id) == []
        assert [p.case.case_id for p in registry.pending("position_closed")] == ["C1"]

    def test_repeated_appointment_is_noop(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1))
        generation = registry.generation(judge.judge_id)

        assert appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1)) == []
        assert appoint(tracker, judge.judge_id, "lasc", date(2019, 3, 1)) == []
        assert registry.generation(judge.judge_id) == generation

    def test_appointment_corrects_case_inferred_start(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2020, 5, 1))

        changed = appoint(tracker, judge.judge_id, "lasc", date(2017, 9, 1))

        assert len(changed) == 1
        position = registry.positions(judge.judge_id)[0]
        assert position.start_date == date(2017, 9, 1)
        assert position.source == "authoritative"

    def test_end_record(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1))

        changed = appoint(tracker, judge.judge_id, "lasc", None, date(2021, 6, 30), kind="end")

        assert changed[0].end_date == date(2021, 6, 30)
        assert changed[0].status == PositionStatus.ENDED
        assert registry.get_judge(judge.judge_id).retired is True
        assert appoint(tracker, judge.judge_id, "lasc", None, date(2021, 6, 30), kind="end") == []

    def test_end_without_open_position(self, tracker, judge):
        with pytest.raises(UpstreamDataError):
            appoint(tracker, judge.judge_id, "lasc", None, date(2021, 6, 30), kind="end")

    def test_end_before_start(self, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2018, 3, 1))
        with pytest.raises(UpstreamDataError):
            appoint(tracker, judge.judge_id, "lasc", None, date(2017, 1, 1), kind="end")

    def test_unknown_judge_or_court(self, tracker, judge):
        with pytest.raises(UpstreamDataError):
            appoint(tracker, "J999999", "lasc", date(2018, 3, 1))
        with pytest.raises(UpstreamDataError):
            appoint(tracker, judge.judge_id, "nowhere", date(2018, 3, 1))

    def test_appointment_by_external_id(self, registry, tracker):
        judge = registry.add_judge("Jane Smith", external_id="cl-1")
        changed = tracker.apply_appointment(
            AppointmentRecord(court_id="lasc", start_date=date(2018, 3, 1), external_judge_id="cl-1")
        )
        assert changed[0].judge_id == judge.judge_id

    def test_appointment_into_full_court_rejected(self, registry, tracker, judge):
        other = registry.add_judge("John Lee")
        appoint(tracker, other.judge_id, "smallc", date(2010, 1, 1))

        result = appoint(tracker, judge.judge_id, "smallc", date(2020, 1, 1))

        assert isinstance(result, Violation)
        assert result.kind == ViolationKind.SEAT_CONFLICT
        assert registry.positions(judge.judge_id) == []

    def test_reopening_after_end_keeps_history(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2010, 1, 1), date(2012, 12, 31))
        appoint(tracker, judge.judge_id, "lasc", date(2016, 1, 1))

        positions = registry.positions(judge.judge_id)
        assert [(p.start_date, p.end_date) for p in positions] == [
            (date(2010, 1, 1), date(2012, 12, 31)),
            (date(2016, 1, 1), None),
        ]


class TestRetirement:
    """Test cases for retirement inference and overrides."""

    def test_sweep_marks_inactive_position(self, registry, tracker, judge):
        appoint(tracker, judge.judge_id, "lasc", date(2015, 1, 1))
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))

        retired = tracker.sweep_retirements(as_of=date(2019, 1, 1))

        assert len(retired) == 1
        position = registry.positions(judge.judge_id)[0]
        assert position.status == PositionStatus.RETIRED_INFERRED
        assert position.end_date == date(2016, 3, 1)
        assert position.end_inferred is True
        stored = registry.get_judge(judge.judge_id)
        assert stored.retired is True
        assert stored.retirement_inferred_date == date(2016, 3, 1)

    def test_recent_activity_not_retired(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2018, 3, 1))
        assert tracker.sweep_retirements(as_of=date(2019, 1, 1)) == []
        assert registry.positions(judge.judge_id)[0].is_active

    def test_sweep_is_idempotent(self, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        assert len(tracker.sweep_retirements(as_of=date(2019, 1, 1))) == 1
        assert tracker.sweep_retirements(as_of=date(2019, 1, 1)) == []

    def test_later_position_blocks_retirement(self, registry, tracker):
        judge = registry.add_judge("Jane Smith", multi_court=True)
        appoint(tracker, judge.judge_id, "lasc", date(2012, 1, 1))
        appoint(tracker, judge.judge_id, "ocsc", date(2013, 1, 1))

        retired = tracker.sweep_retirements(as_of=date(2019, 1, 1))

        assert [p.court_id for p in retired] == ["ocsc"]

    def test_cancelled_sweep(self, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        cancel = threading.Event()
        cancel.set()
        assert tracker.sweep_retirements(as_of=date(2019, 1, 1), cancel_event=cancel) == []

    def test_authoritative_reopening_after_inferred_retirement(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        tracker.sweep_retirements(as_of=date(2019, 1, 1))
        before = registry.positions(judge.judge_id)[0]

        appoint(tracker, judge.judge_id, "lasc", date(2019, 6, 1))

        positions = registry.positions(judge.judge_id)
        assert len(positions) == 2
        assert positions[0] == before
        assert positions[1].is_active
        assert registry.get_judge(judge.judge_id).retired is False

    def test_case_does_not_reopen_inferred_retirement(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        tracker.sweep_retirements(as_of=date(2019, 1, 1))

        result = record(tracker, judge.judge_id, "C2", date(2019, 2, 1))

        assert isinstance(result, PendingCase)
        assert result.reason == "position_closed"
        assert len(tracker.retry_pending(judge.judge_id)) == 1

        appoint(tracker, judge.judge_id, "lasc", date(2019, 1, 15))
        outcomes = tracker.retry_pending(judge.judge_id)
        assert isinstance(outcomes[0], CaseLink)
        assert registry.pending() == []

    def test_override_clears_inferred_retirement(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        position = tracker.sweep_retirements(as_of=date(2019, 1, 1))[0]

        restored = tracker.apply_retirement_override(judge.judge_id, position.position_id, retired=False)

        assert restored.status == PositionStatus.ACTIVE
        assert restored.end_date is None
        assert registry.get_judge(judge.judge_id).retired is False

    def test_override_confirms_retirement(self, registry, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        position = tracker.sweep_retirements(as_of=date(2019, 1, 1))[0]

        confirmed = tracker.apply_retirement_override(
            judge.judge_id, position.position_id, retired=True, end_date=date(2016, 6, 30)
        )

        assert confirmed.status == PositionStatus.ENDED
        assert confirmed.end_date == date(2016, 6, 30)
        assert confirmed.end_inferred is False
        stored = registry.get_judge(judge.judge_id)
        assert stored.retired is True
        assert stored.retirement_inferred_date is None

    def test_override_errors(self, tracker, judge):
        record(tracker, judge.judge_id, "C1", date(2016, 3, 1))
        position_id = tracker.last_activity_index()[0][2]
        with pytest.raises(KeyError):
            tracker.apply_retirement_override(judge.judge_id, "P9999999", retired=False)
        with pytest.raises(ValueError):
            tracker.apply_retirement_override(judge.judge_id, position_id, retired=False)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

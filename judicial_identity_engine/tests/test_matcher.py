"""Tests for the judge-case matcher module."""

from datetime import date

import pytest

from judicial_identity_engine.src.matcher import (
    ExactTier,
    ExternalIdTier,
    FuzzyNameTier,
    JudgeCaseMatcher,
    JurisdictionRelaxedTier,
)
from judicial_identity_engine.src.models import (
    Ambiguous,
    AppointmentRecord,
    CaseRecord,
    MatchResult,
    NoMatch,
)
from judicial_identity_engine.src.position_tracker import PositionHistoryTracker
from judicial_identity_engine.src.registry import Registry


@pytest.fixture
def registry():
    """Registry with two Los Angeles courts and one Orange County court."""
    registry = Registry()
    registry.add_court("lasc", "Los Angeles Superior Court", "CA/LosAngeles/Superior", seats=3)
    registry.add_court("lamc", "Los Angeles Municipal Court", "CA/LosAngeles/Municipal")
    registry.add_court("ocsc", "Orange County Superior Court", "CA/Orange/Superior")
    return registry


@pytest.fixture
def tracker(registry):
    return PositionHistoryTracker(registry)


@pytest.fixture
def matcher(registry):
    return JudgeCaseMatcher(registry)


def appoint(tracker, judge_id, court_id, start=date(2015, 1, 1)):
    result = tracker.apply_appointment(
        AppointmentRecord(court_id=court_id, start_date=start, judge_id=judge_id)
    )
    assert isinstance(result, list)
    return result


def case(name, jurisdiction="CA/LosAngeles/Superior", case_id="C1", **kwargs):
    return CaseRecord(
        case_id=case_id,
        judge_name=name,
        jurisdiction=jurisdiction,
        decided_on=kwargs.pop("decided_on", date(2023, 3, 1)),
        **kwargs,
    )


class TestExactTier:
    """Test cases for exact matching."""

    def test_title_and_initial_variants_match_exactly(self, registry, tracker, matcher):
        """'Hon. Jane A. Smith' in CA/LosAngeles/Superior hits the exact tier."""
        judge = registry.add_judge("Jane A. Smith")
        appoint(tracker, judge.judge_id, "lasc")

        result = matcher.match(case("Hon. Jane A. Smith"))

        assert isinstance(result, MatchResult)
        assert result.judge_id == judge.judge_id
        assert result.tier == ExactTier.name
        assert result.confidence == 1.0
        assert result.court_id == "lasc"

    def test_explicit_court_id_wins(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith")
        appoint(tracker, judge.judge_id, "lasc")
        result = matcher.match(case("Jane Smith", court_id="lasc"))
        assert result.court_id == "lasc"


class TestAmbiguity:
    """Test cases for ambiguous names."""

    def test_two_same_name_judges_are_ambiguous(self, registry, tracker, matcher):
        first = registry.add_judge("John Lee")
        second = registry.add_judge("John Lee")
        appoint(tracker, first.judge_id, "lasc")
        appoint(tracker, second.judge_id, "lasc")
        before = [registry.positions(first.judge_id), registry.positions(second.judge_id)]

        result = matcher.match(case("John Lee"))

        assert isinstance(result, Ambiguous)
        assert set(result.candidates) == {first.judge_id, second.judge_id}
        assert result.tier == ExactTier.name
        after = [registry.positions(first.judge_id), registry.positions(second.judge_id)]
        assert before == after

    def test_external_id_settles_ambiguity(self, registry, tracker, matcher):
        first = registry.add_judge("John Lee", external_id="cl-1")
        second = registry.add_judge("John Lee")
        appoint(tracker, first.judge_id, "lasc")
        appoint(tracker, second.judge_id, "lasc")

        result = matcher.match(case("John Lee", external_judge_id="cl-1"))

        assert isinstance(result, MatchResult)
        assert result.judge_id == first.judge_id
        assert result.tier == ExternalIdTier.name
        assert result.confidence == 0.95


class TestFallbackOrder:
    """Test cases for the tier sequence."""

    def test_relaxed_tier_for_enclosing_jurisdiction(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith")
        appoint(tracker, judge.judge_id, "lasc")

        result = matcher.match(case("Jane Smith", jurisdiction="CA/LosAngeles"))

        assert result.tier == JurisdictionRelaxedTier.name
        assert result.confidence == 0.85

    def test_relaxed_tier_accepts_judge_without_positions(self, registry, matcher):
        judge = registry.add_judge("Jane Smith")
        result = matcher.match(case("Jane Smith"))
        assert result.judge_id == judge.judge_id
        assert result.tier == JurisdictionRelaxedTier.name

    def test_relaxed_tier_does_not_cross_counties(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith")
        appoint(tracker, judge.judge_id, "ocsc")
        result = matcher.match(case("Jane Smith"))
        assert isinstance(result, NoMatch)

    def test_fuzzy_tier_for_misspelling(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane A. Smith")
        appoint(tracker, judge.judge_id, "lasc")

        result = matcher.match(case("Jane Smyth"))

        assert result.judge_id == judge.judge_id
        assert result.tier == FuzzyNameTier.name
        assert result.confidence == pytest.approx(0.63)

    def test_fuzzy_tier_requires_active_position_here(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith")
        appoint(tracker, judge.judge_id, "ocsc")
        assert isinstance(matcher.match(case("Jane Smyth")), NoMatch)

    def test_fuzzy_tier_near_tie_is_ambiguous(self, registry, tracker, matcher):
        first = registry.add_judge("Jane Smith")
        second = registry.add_judge("Jane Smith")
        appoint(tracker, first.judge_id, "lasc")
        appoint(tracker, second.judge_id, "lasc")

        result = matcher.match(case("Jane Smyth"))

        assert isinstance(result, Ambiguous)
        assert result.tier == FuzzyNameTier.name

    def test_external_id_adds_name_variant(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith", external_id="cl-42")
        appoint(tracker, judge.judge_id, "lasc")

        result = matcher.match(case("Jane Doe-Smith", external_judge_id="cl-42"))

        assert result.judge_id == judge.judge_id
        assert result.tier == ExternalIdTier.name
        assert "jane doe-smith" in registry.get_judge(judge.judge_id).name_variants
        assert judge.judge_id in registry.judges_by_name("jane doe-smith")


class TestNoMatch:
    """Test cases for unmatched records."""

    def test_unknown_name(self, matcher):
        result = matcher.match(case("Nobody Known"))
        assert isinstance(result, NoMatch)
        assert result.reason == "no_candidates"

    def test_unparseable_name(self, matcher):
        result = matcher.match(case("Hon."))
        assert isinstance(result, NoMatch)
        assert result.reason == "unparseable_name"

    def test_allow_create(self, registry, matcher):
        result = matcher.match(case("  Hon. New   Judge ", external_judge_id="cl-9"), allow_create=True)

        assert isinstance(result, MatchResult)
        assert result.tier == JudgeCaseMatcher.CREATED_TIER
        assert result.confidence == 0.5
        judge = registry.get_judge(result.judge_id)
        assert judge.canonical_name == "Hon. New Judge"
        assert judge.external_id == "cl-9"
        assert "new judge" in judge.name_variants

    def test_unresolved_jurisdiction_uses_external_id_only(self, registry, tracker, matcher):
        judge = registry.add_judge("Jane Smith", external_id="cl-7")
        appoint(tracker, judge.judge_id, "lasc")
        assert isinstance(matcher.match(case("Jane Smith", jurisdiction="Mars")), NoMatch)
        result = matcher.match(case("Jane Smith", jurisdiction="Mars", external_judge_id="cl-7"))
        assert result.tier == ExternalIdTier.name


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

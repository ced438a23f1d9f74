"""
Judge-Case Matcher for the Judicial Identity Engine.

Resolves an incoming case to a judge through a fixed-order list of tiers,
strongest first:

    ExactTier               exact name key, exact jurisdiction node
    JurisdictionRelaxedTier exact name key, enclosing jurisdiction node
    FuzzyNameTier           phonetic blocking + rapidfuzz similarity
    ExternalIdTier          external identifier already bound to a judge

A later tier runs only when earlier tiers produced no candidate or several.
Uncertain input yields ``Ambiguous`` or ``NoMatch`` results, never
exceptions.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, List, Set, Tuple

from rapidfuzz import fuzz

from .confidence import ConfidenceScorer
from .jurisdiction import ROOT
from .models import (
    Ambiguous,
    CaseRecord,
    MatchOutcome,
    MatchResult,
    NoMatch,
    NormalizedIdentity,
)
from .normalizer import IdentityNormalizer
from .registry import Registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A judge proposed by a tier."""

    judge_id: str
    similarity: float = 100.0
    court_id: Optional[str] = None


@dataclass(frozen=True)
class TierResult:
    """Candidates of one tier; ``winner`` is set when the tier is decisive."""

    candidates: Tuple[Candidate, ...] = ()
    winner: Optional[Candidate] = None


class MatchTier:
    """Base class for one matching strategy."""

    name = "base"
    strength = 0.0
    # A unique answer from this tier settles an earlier ambiguity outright
    overrides_ambiguity = False

    def __init__(self, registry: Registry):
        self.registry = registry

    def resolve(self, case: CaseRecord, identity: NormalizedIdentity) -> TierResult:
        raise NotImplementedError

    def on_accept(self, case: CaseRecord, identity: NormalizedIdentity, judge_id: str) -> None:
        """Hook run when this tier's answer is accepted."""

    # Shared helpers

    def placed_courts(self, judge_id: str, day: date) -> List[str]:
        """Courts where the judge is active or held a position covering ``day``."""
        _, positions = self.registry.snapshot(judge_id)
        return [p.court_id for p in positions if p.is_active or p.covers(day)]

    def courts_matching(self, judge_id: str, day: date, scope: str, exact: bool) -> List[str]:
        courts = []
        for court_id in self.placed_courts(judge_id, day):
            court = self.registry.get_court(court_id)
            if court is None:
                continue
            if exact and court.jurisdiction == scope:
                courts.append(court_id)
            elif not exact and self.registry.hierarchy.is_within(court.jurisdiction, scope):
                courts.append(court_id)
        return courts

    @staticmethod
    def unique(candidates: List[Candidate]) -> TierResult:
        candidates = tuple(sorted(candidates, key=lambda c: c.judge_id))
        return TierResult(candidates, candidates[0] if len(candidates) == 1 else None)


class ExactTier(MatchTier):
    """Exact name key at a court of exactly the record's jurisdiction node."""

    name = "exact"
    strength = 1.0

    def resolve(self, case, identity):
        if not identity.name_key or not identity.jurisdiction_resolved:
            return TierResult()
        candidates = []
        for judge_id in self.registry.judges_by_name(identity.name_key):
            courts = self.courts_matching(
                judge_id, case.decided_on, identity.jurisdiction_key, exact=True
            )
            if courts:
                candidates.append(Candidate(judge_id, 100.0, _single(courts)))
        return self.unique(candidates)


class JurisdictionRelaxedTier(MatchTier):
    """
    Exact name key anywhere beneath the nearest enclosing jurisdiction node.

    Judges without any recorded position are accepted here too, since their
    jurisdiction is unknown rather than different.
    """

    name = "jurisdiction_relaxed"
    strength = 0.85

    def resolve(self, case, identity):
        if not identity.name_key or not identity.jurisdiction_resolved:
            return TierResult()
        scope = self.registry.hierarchy.parent(identity.jurisdiction_key)
        if scope is None or scope == ROOT:
            return TierResult()

        candidates = []
        for judge_id in self.registry.judges_by_name(identity.name_key):
            _, positions = self.registry.snapshot(judge_id)
            if not positions:
                candidates.append(Candidate(judge_id, 100.0, None))
                continue
            courts = self.courts_matching(judge_id, case.decided_on, scope, exact=False)
            if courts:
                candidates.append(Candidate(judge_id, 100.0, _single(courts)))
        return self.unique(candidates)


class FuzzyNameTier(MatchTier):
    """
    Phonetic-key blocking, then rapidfuzz ``token_sort_ratio`` over the
    judge's name variants. Only judges active at a court of the record's
    jurisdiction qualify; the best candidate must clear the minimum
    similarity and beat the runner-up by the ambiguity margin.
    """

    name = "fuzzy_name"
    strength = 0.7

    def __init__(self, registry: Registry, min_similarity: float = 85.0, margin: float = 5.0):
        super().__init__(registry)
        self.min_similarity = min_similarity
        self.margin = margin

    def resolve(self, case, identity):
        if not identity.phonetic_key or not identity.jurisdiction_resolved:
            return TierResult()

        courts_here = {
            c.court_id for c in self.registry.courts_within(identity.jurisdiction_key)
        }
        scored = []
        for judge_id in self.registry.judges_by_phonetic(identity.phonetic_key):
            _, positions = self.registry.snapshot(judge_id)
            active_here = [p.court_id for p in positions if p.is_active and p.court_id in courts_here]
            if not active_here:
                continue
            judge = self.registry.get_judge(judge_id)
            similarity = max(
                (fuzz.token_sort_ratio(identity.name_key, variant) for variant in judge.name_variants),
                default=0.0,
            )
            if similarity >= self.min_similarity:
                scored.append(Candidate(judge_id, float(similarity), _single(active_here)))

        if not scored:
            return TierResult()
        scored.sort(key=lambda c: (-c.similarity, c.judge_id))
        best = scored[0]
        contenders = tuple(c for c in scored if best.similarity - c.similarity < self.margin)
        if len(contenders) == 1:
            return TierResult(tuple(scored), best)
        return TierResult(contenders, None)


class ExternalIdTier(MatchTier):
    """
    An external identifier already bound to a judge is trusted outright,
    even over a different name (legal name changes). A new name is added to
    the judge's variants.
    """

    name = "external_id"
    strength = 0.95
    overrides_ambiguity = True

    def resolve(self, case, identity):
        judge_id = self.registry.judge_by_external_id(case.external_judge_id)
        if judge_id is None:
            return TierResult()
        court_id = None
        if identity.jurisdiction_resolved:
            court_id = _single(
                self.courts_matching(judge_id, case.decided_on, identity.jurisdiction_key, exact=False)
            )
        candidate = Candidate(judge_id, 100.0, court_id)
        return TierResult((candidate,), candidate)

    def on_accept(self, case, identity, judge_id):
        judge = self.registry.get_judge(judge_id)
        if identity.name_key and identity.name_key not in judge.name_variants:
            added = self.registry.add_name_variant(judge_id, case.judge_name)
            logger.info(
                "Added name variant(s) %s to %s via external id %s",
                sorted(added), judge_id, case.external_judge_id,
            )


class JudgeCaseMatcher:
    """
    Resolves case records to judges.

    Matching reads the registry only; the one write is creating a judge for
    an unmatched record when the caller passes ``allow_create=True``.
    """

    CREATED_TIER = "created"
    CREATED_STRENGTH = 0.5

    def __init__(
        self,
        registry: Registry,
        normalizer: Optional[IdentityNormalizer] = None,
        scorer: Optional[ConfidenceScorer] = None,
        tiers: Optional[List[MatchTier]] = None,
    ):
        """
        Initialize the matcher.

        Args:
            registry: Judge/court store to match against.
            normalizer: Identity normalizer (defaults to the registry's).
            scorer: Confidence scorer for match confidences.
            tiers: Tier list in evaluation order (defaults to the standard
                exact / relaxed / fuzzy / external-id sequence).
        """
        config = registry.config
        self.registry = registry
        self.normalizer = normalizer or registry.normalizer
        self.scorer = scorer or ConfidenceScorer.from_config(config)
        self.tiers = tiers if tiers is not None else [
            ExactTier(registry),
            JurisdictionRelaxedTier(registry),
            FuzzyNameTier(registry, config.fuzzy_min_similarity, config.ambiguity_margin),
            ExternalIdTier(registry),
        ]

    def match(self, case: CaseRecord, allow_create: bool = False) -> MatchOutcome:
        """
        Resolve a case to a judge.

        Args:
            case: The incoming case record.
            allow_create: Create a judge when nothing matches.

        Returns:
            MatchResult, Ambiguous or NoMatch.
        """
        identity = self.normalizer.normalize(case.judge_name, case.jurisdiction)
        outcome = self._run_tiers(case, identity)
        if outcome is not None:
            return outcome

        if not identity.name_key:
            return NoMatch(case.case_id, reason="unparseable_name")
        if not allow_create:
            return NoMatch(case.case_id)

        # Get-or-create: another worker may have created the judge since
        # the tiers ran, so they run again under the create lock.
        with self.registry.create_lock:
            outcome = self._run_tiers(case, identity)
            if outcome is not None:
                return outcome
            return self._create(case, identity)

    def _run_tiers(
        self, case: CaseRecord, identity: NormalizedIdentity
    ) -> Optional[MatchOutcome]:
        """MatchResult or Ambiguous from the tiers; None when no tier has a candidate."""
        ambiguous: Optional[Set[str]] = None
        ambiguous_tier = ""

        for tier in self.tiers:
            result = tier.resolve(case, identity)
            if not result.candidates:
                continue

            winner = result.winner
            if winner is not None:
                if ambiguous is None or tier.overrides_ambiguity or winner.judge_id in ambiguous:
                    tier.on_accept(case, identity, winner.judge_id)
                    return self._result(case, identity, tier, winner)
                logger.debug(
                    "%s: %s answer %s outside ambiguous set", case.case_id, tier.name, winner.judge_id
                )
                continue

            ids = {c.judge_id for c in result.candidates}
            if ambiguous is None:
                ambiguous, ambiguous_tier = ids, tier.name

        if ambiguous:
            logger.info("Ambiguous match for %s among %s", case.case_id, sorted(ambiguous))
            return Ambiguous(case.case_id, tuple(sorted(ambiguous)), ambiguous_tier)
        return None

    def _result(
        self, case: CaseRecord, identity: NormalizedIdentity, tier: MatchTier, winner: Candidate
    ) -> MatchResult:
        return MatchResult(
            judge_id=winner.judge_id,
            confidence=self.scorer.match_confidence(tier.strength, winner.similarity),
            tier=tier.name,
            court_id=self.resolve_court(case, identity, winner.court_id),
        )

    def resolve_court(
        self, case: CaseRecord, identity: NormalizedIdentity, candidate_court: Optional[str]
    ) -> Optional[str]:
        """Court of the record: explicit id, candidate's court, or the only court at the node."""
        if case.court_id and self.registry.get_court(case.court_id):
            return case.court_id
        if candidate_court:
            return candidate_court
        if identity.jurisdiction_resolved:
            courts = self.registry.courts_at(identity.jurisdiction_key)
            if len(courts) == 1:
                return courts[0].court_id
        return None

    def _create(self, case: CaseRecord, identity: NormalizedIdentity) -> MatchResult:
        """Create a judge for an unmatched record. Caller holds the create lock."""
        key = (identity.name_key, identity.jurisdiction_key)
        judge_id = self.registry.created_identities.get(key)
        if judge_id is None:
            judge = self.registry.add_judge(
                display_name(case.judge_name) or identity.name_key,
                external_id=case.external_judge_id,
            )
            judge_id = self.registry.created_identities[key] = judge.judge_id
            logger.info("Created judge %s for unmatched case %s", judge_id, case.case_id)
        return MatchResult(
            judge_id=judge_id,
            confidence=self.scorer.match_confidence(self.CREATED_STRENGTH),
            tier=self.CREATED_TIER,
            court_id=self.resolve_court(case, identity, None),
        )


def display_name(raw_name: str) -> str:
    """Raw name with surrounding whitespace collapsed."""
    return " ".join((raw_name or "").split())


def _single(court_ids: List[str]) -> Optional[str]:
    unique = sorted(set(court_ids))
    return unique[0] if len(unique) == 1 else None

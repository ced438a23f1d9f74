"""
Confidence Scorer for the Judicial Identity Engine.

Shared by the matcher (tier-based match confidence) and the analyzer
(sample-size gating). Pure functions of their inputs.
"""

import logging
import math
from datetime import date
from typing import Optional, Dict, List, Any

from .models import CaseRecord, CaseLink, ConfidenceAssessment, SampleFlag

logger = logging.getLogger(__name__)


class ConfidenceScorer:
    """
    Maps sample sizes onto insufficient / borderline / sufficient tiers.

    A sample below ``min_cases`` is insufficient regardless of anything else.
    Above it, the worst-case (p = 0.5) proportion half-width decides between
    borderline and sufficient.
    """

    # (minimum cases, reported percentage, label)
    PERCENTAGE_TIERS = [
        (1000, 93, "Very High Confidence"),
        (750, 85, "High Confidence"),
        (500, 75, "Moderate Confidence"),
    ]

    # Component weights of the data-quality composite
    QUALITY_WEIGHTS = {"temporal": 0.4, "diversity": 0.3, "freshness": 0.3}
    IDEAL_CASE_TYPES = 10

    def __init__(self, min_cases: int = 500, z: float = 1.96,
                 desired_half_width: float = 0.035):
        """
        Initialize the scorer.

        Args:
            min_cases: Business minimum sample size for publication.
            z: Normal quantile for the interval (1.96 = 95%).
            desired_half_width: Default maximum half-width for "sufficient".
        """
        if min_cases < 1:
            raise ValueError("min_cases must be positive")
        self.min_cases = min_cases
        self.z = z
        self.desired_half_width = desired_half_width

    @classmethod
    def from_config(cls, config) -> "ConfidenceScorer":
        return cls(
            min_cases=config.min_cases,
            z=config.z_value,
            desired_half_width=config.desired_half_width,
        )

    # ==================== Sample-size Gating ====================

    def half_width(self, sample_size: int) -> Optional[float]:
        """Worst-case proportion half-width ``z * sqrt(0.25 / n)``."""
        if sample_size <= 0:
            return None
        return self.z * math.sqrt(0.25 / sample_size)

    def score(
        self,
        sample_size: int,
        desired_half_width: Optional[float] = None,
        quality_score: Optional[float] = None,
    ) -> ConfidenceAssessment:
        """
        Classify a sample size.

        Args:
            sample_size: Number of resolved cases.
            desired_half_width: Interval half-width required for
                "sufficient"; defaults to the scorer's setting.
            quality_score: Optional 0-100 data-quality composite that nudges
                the reported percentage.

        Returns:
            ConfidenceAssessment. Insufficient samples carry no half-width.
        """
        desired = self.desired_half_width if desired_half_width is None else desired_half_width
        percentage, label = self._percentage(sample_size, quality_score)

        if sample_size < self.min_cases:
            return ConfidenceAssessment(
                tier=SampleFlag.INSUFFICIENT,
                sample_size=sample_size,
                half_width=None,
                percentage=percentage,
                label=label,
            )

        half_width = self.half_width(sample_size)
        tier = SampleFlag.SUFFICIENT if half_width <= desired else SampleFlag.BORDERLINE
        return ConfidenceAssessment(
            tier=tier,
            sample_size=sample_size,
            half_width=round(half_width, 6),
            percentage=percentage,
            label=label,
        )

    def _percentage(self, sample_size: int, quality_score: Optional[float]):
        """Reported confidence percentage and label for a sample size."""
        base, label = None, "Limited Confidence"
        for minimum, pct, tier_label in self.PERCENTAGE_TIERS:
            if sample_size >= minimum:
                base, label = float(pct), tier_label
                break
        if base is None:
            base = min(69.0, 40 + (max(sample_size, 0) / 500) * 29)

        if quality_score is not None:
            adjustment = (quality_score - 70) / 10
            base = max(60.0, min(95.0, base + adjustment))
        return int(round(base)), label

    # ==================== Match Confidence ====================

    @staticmethod
    def match_confidence(tier_strength: float, similarity: float = 100.0) -> float:
        """
        Confidence of a unique match.

        Args:
            tier_strength: Strength of the tier that produced the match (0-1).
            similarity: Name similarity on a 0-100 scale (100 for exact keys).

        Returns:
            Confidence in [0, 1], proportional to tier strength.
        """
        similarity = max(0.0, min(100.0, similarity))
        return round(max(0.0, min(1.0, tier_strength)) * similarity / 100.0, 4)

    # ==================== Data Quality ====================

    def assess_data_quality(
        self, cases: List[Any], as_of: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Score the recency, case-type diversity and freshness of a sample.

        Args:
            cases: CaseLink or CaseRecord objects.
            as_of: Reference date (defaults to today).

        Returns:
            Dictionary of component scores (0-100) and ``overall_quality_score``.
        """
        as_of = as_of or date.today()
        total = len(cases)

        recent = medium = older = 0
        case_types = set()
        for case in cases:
            day = self._case_date(case)
            if getattr(case, "case_type", None):
                case_types.add(case.case_type)
            if day is None:
                continue
            age_years = self._years_between(day, as_of)
            if age_years < 1:
                recent += 1
            elif age_years < 2:
                medium += 1
            elif age_years < 3:
                older += 1

        if total:
            temporal = (recent * 100 + medium * 70 + older * 40) / total
            freshness = (recent + medium) / total * 100
        else:
            temporal, freshness = 50.0, 0.0
        diversity = min(100.0, len(case_types) / self.IDEAL_CASE_TYPES * 100)

        overall = (
            temporal * self.QUALITY_WEIGHTS["temporal"]
            + diversity * self.QUALITY_WEIGHTS["diversity"]
            + freshness * self.QUALITY_WEIGHTS["freshness"]
        )
        return {
            "total_cases": total,
            "temporal_distribution_score": round(temporal),
            "category_diversity_score": round(diversity),
            "data_freshness_score": round(freshness),
            "overall_quality_score": round(overall),
        }

    @staticmethod
    def _case_date(case: Any) -> Optional[date]:
        if isinstance(case, CaseLink):
            return case.decided_on
        if isinstance(case, CaseRecord):
            return case.decided_on or case.filed_on
        return getattr(case, "decided_on", None)

    @staticmethod
    def _years_between(earlier: date, later: date) -> float:
        return (later - earlier).days / 365.25

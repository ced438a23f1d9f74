"""
Bias/Outcome Analysis Module for the Judicial Identity Engine.

Computes versioned outcome-pattern profiles for judges from their resolved
cases, compared against a jurisdiction baseline:

- Outcome, case-type and yearly aggregation
- Pattern score: bucket-weighted total-variation distance from the baseline
- Significance: per-category two-proportion z-tests, Bonferroni-adjusted
- Percentile bootstrap confidence interval around the pattern score

Profiles below the minimum sample size carry counts only; nothing is
extrapolated from an undersized sample.
"""

import logging
from collections import Counter
from typing import Optional, Dict, List, Any, Tuple

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from .confidence import ConfidenceScorer
from .config import EngineConfig
from .errors import StaleSnapshotError
from .models import AnalysisWindow, BiasProfile, CaseLink, SampleFlag
from .registry import Registry

logger = logging.getLogger(__name__)

OUTCOME_CATEGORIES = [
    "judgment_plaintiff",
    "judgment_defendant",
    "judgment",
    "dismissed_with_prejudice",
    "dismissed",
    "settled",
    "other",
]

# Ordered most specific first; a text matching several rules takes the first
OUTCOME_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("dismissed_with_prejudice", ("dismissed with prejudice", "dismissal with prejudice")),
    ("judgment_plaintiff", (
        "for plaintiff", "for the plaintiff", "in favor of plaintiff",
        "plaintiff prevailed", "for petitioner",
    )),
    ("judgment_defendant", (
        "for defendant", "for the defendant", "in favor of defendant",
        "defendant prevailed", "for respondent",
    )),
    ("settled", ("settled", "settlement", "compromise")),
    ("dismissed", ("dismiss",)),
    ("judgment", ("judgment", "granted", "verdict")),
]

UNSPECIFIED_CASE_TYPE = "unspecified"


def classify_outcome(outcome: Optional[str]) -> str:
    """
    Map free-text outcome onto an outcome category.

    Examples:
        >>> classify_outcome("Judgment for Plaintiff")
        'judgment_plaintiff'
        >>> classify_outcome("Dismissed with prejudice")
        'dismissed_with_prejudice'
    """
    if not isinstance(outcome, str) or not outcome.strip():
        return "other"
    text = " ".join(outcome.lower().replace("_", " ").split())
    for category, needles in OUTCOME_RULES:
        if any(needle in text for needle in needles):
            return category
    return "other"


class BiasOutcomeAnalyzer:
    """
    Produces confidence-gated BiasProfiles from consistent snapshots.

    Reads are optimistic: the judge's generation is recorded with the
    snapshot and checked again after computing. If it moved, the analysis is
    redone, up to ``max_snapshot_retries`` times.
    """

    def __init__(
        self,
        registry: Registry,
        config: Optional[EngineConfig] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        """
        Initialize the analyzer.

        Args:
            registry: Store holding judges, positions and case links.
            config: Engine configuration (defaults to the registry's).
            scorer: Confidence scorer used for sample-size gating.
        """
        self.registry = registry
        self.config = config or registry.config
        self.scorer = scorer or ConfidenceScorer.from_config(self.config)
        self.n_categories = len(OUTCOME_CATEGORIES)

    # ==================== Public API ====================

    def analyze(self, judge_id: str, window: Optional[AnalysisWindow] = None) -> BiasProfile:
        """
        Compute and store a new profile version for a judge.

        Args:
            judge_id: Judge to analyze.
            window: Date window (unbounded when omitted).

        Returns:
            The stored BiasProfile.

        Raises:
            StaleSnapshotError: If the judge's positions kept changing.
        """
        window = window or AnalysisWindow()
        attempts = self.config.max_snapshot_retries

        for attempt in range(1, attempts + 1):
            generation, positions, links = self.registry.case_snapshot(judge_id)
            position_ids = {p.position_id for p in positions}
            cases = [
                l for l in links
                if l.position_id in position_ids and window.contains(l.decided_on)
            ]

            profile = self._build_profile(judge_id, cases, window, generation)

            if self.registry.generation(judge_id) == generation:
                stored = self.registry.store_profile(profile)
                logger.info(
                    "Analyzed %s: %d cases, status %s (v%d)",
                    judge_id, stored.sample_size, stored.status, stored.version,
                )
                return stored
            logger.info(
                "Snapshot of %s changed during analysis (attempt %d/%d)",
                judge_id, attempt, attempts,
            )

        raise StaleSnapshotError(judge_id, attempts)

    def analyze_if_stale(
        self, judge_id: str, window: Optional[AnalysisWindow] = None
    ) -> BiasProfile:
        """Recompute only when the judge changed since the latest version."""
        window = window or AnalysisWindow()
        latest = self.registry.latest_profile(judge_id)
        if (
            latest is not None
            and latest.window == window
            and latest.generation == self.registry.generation(judge_id)
        ):
            return latest
        return self.analyze(judge_id, window)

    # ==================== Profile Construction ====================

    def _build_profile(
        self,
        judge_id: str,
        cases: List[CaseLink],
        window: AnalysisWindow,
        generation: int,
    ) -> BiasProfile:
        frame = self.cases_frame(cases)
        n = len(frame)

        outcome_counts = {c: 0 for c in OUTCOME_CATEGORIES}
        outcome_counts.update(frame["category"].value_counts().to_dict() if n else {})
        case_type_counts = frame["case_type"].value_counts().to_dict() if n else {}
        time_bucket_counts = (
            {int(k): int(v) for k, v in frame["year"].value_counts().sort_index().items()}
            if n else {}
        )

        quality = self.scorer.assess_data_quality(cases, as_of=window.end)
        assessment = self.scorer.score(n, quality_score=quality["overall_quality_score"])

        base = dict(
            judge_id=judge_id,
            version=0,
            window=window,
            sample_size=n,
            sample_flag=assessment.tier,
            outcome_counts={k: int(v) for k, v in outcome_counts.items()},
            case_type_counts={k: int(v) for k, v in case_type_counts.items()},
            time_bucket_counts=time_bucket_counts,
            confidence_percentage=assessment.percentage,
            generation=generation,
        )

        if assessment.tier == SampleFlag.INSUFFICIENT:
            return BiasProfile(**base)

        base["indicators"] = self.behavior_indicators(frame)

        baseline, scope = self.baseline_cases(judge_id, cases, window)
        if baseline is None:
            logger.info("No baseline with %d+ cases for %s", self.config.min_baseline_cases, judge_id)
            return BiasProfile(**base)

        baseline_frame = self.cases_frame(baseline)
        buckets = sorted(set(frame["case_type"]) | set(baseline_frame["case_type"]))
        judge_matrix = self._count_matrix(frame, buckets)
        baseline_matrix = self._count_matrix(baseline_frame, buckets)

        score = self.pattern_score(judge_matrix, baseline_matrix)
        interval = self.bootstrap_interval(frame, buckets, baseline_matrix)
        tests = self.category_tests(judge_matrix.sum(axis=0), baseline_matrix.sum(axis=0))
        p_value = min((t["adjusted_p_value"] for t in tests), default=1.0)

        return BiasProfile(
            **base,
            pattern_score=round(score, 2),
            confidence_interval=interval,
            p_value=p_value,
            significant=p_value < self.config.alpha,
            category_tests=tuple(tests),
            baseline_size=len(baseline_frame),
            baseline_scope=scope,
        )

    @staticmethod
    def cases_frame(cases: List[CaseLink]) -> pd.DataFrame:
        """Case links as a DataFrame with outcome category, case type and year."""
        columns = ["case_id", "court_id", "category", "case_type", "year", "duration_days"]
        if not cases:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(
            {
                "case_id": [c.case_id for c in cases],
                "court_id": [c.court_id for c in cases],
                "category": [classify_outcome(c.outcome) for c in cases],
                "case_type": [
                    (c.case_type or "").strip().lower() or UNSPECIFIED_CASE_TYPE for c in cases
                ],
                "year": [c.decided_on.year for c in cases],
                "duration_days": [
                    (c.decided_on - c.filed_on).days if c.filed_on else np.nan for c in cases
                ],
            }
        )
        df.loc[df["duration_days"] < 0, "duration_days"] = np.nan
        return df

    def _count_matrix(self, frame: pd.DataFrame, buckets: List[str]) -> np.ndarray:
        """Counts with one row per case-type bucket and one column per category."""
        table = pd.crosstab(frame["case_type"], frame["category"])
        table = table.reindex(index=buckets, columns=OUTCOME_CATEGORIES, fill_value=0)
        return table.to_numpy(dtype=float)

    # ==================== Baseline ====================

    def baseline_cases(
        self, judge_id: str, cases: List[CaseLink], window: AnalysisWindow
    ) -> Tuple[Optional[List[CaseLink]], Optional[str]]:
        """
        Other judges' cases under the judge's jurisdiction.

        Starts at the jurisdiction of the court where the judge decided the
        most cases and widens to enclosing nodes until the baseline reaches
        ``min_baseline_cases``.

        Returns:
            ``(baseline cases, scope)`` or ``(None, None)`` when even the
            widest scope is too small.
        """
        court_counts = Counter(c.court_id for c in cases)
        if not court_counts:
            return None, None
        home_court = self.registry.get_court(court_counts.most_common(1)[0][0])
        if home_court is None:
            return None, None

        hierarchy = self.registry.hierarchy
        others = [
            l for l in self.registry.all_links()
            if l.judge_id != judge_id and window.contains(l.decided_on)
        ]
        court_jurisdiction = {c.court_id: c.jurisdiction for c in self.registry.courts()}

        for scope in [home_court.jurisdiction] + hierarchy.ancestors(home_court.jurisdiction):
            baseline = [
                l for l in others
                if l.court_id in court_jurisdiction
                and hierarchy.is_within(court_jurisdiction[l.court_id], scope)
            ]
            if len(baseline) >= max(1, self.config.min_baseline_cases):
                return baseline, scope
        return None, None

    # ==================== Statistics ====================

    @staticmethod
    def pattern_score(judge_matrix: np.ndarray, baseline_matrix: np.ndarray) -> float:
        """
        Weighted total-variation distance between outcome distributions (0-100).

        Each case-type bucket contributes the distance between the judge's and
        the baseline's category distribution, weighted by the judge's case
        count in the bucket. Buckets empty on either side weigh zero; if no
        bucket is shared the pooled distributions are compared instead.
        """
        judge_totals = judge_matrix.sum(axis=1)
        baseline_totals = baseline_matrix.sum(axis=1)
        weights = np.where((judge_totals > 0) & (baseline_totals > 0), judge_totals, 0.0)

        if weights.sum() == 0:
            judge_matrix = judge_matrix.sum(axis=0, keepdims=True)
            baseline_matrix = baseline_matrix.sum(axis=0, keepdims=True)
            judge_totals = judge_matrix.sum(axis=1)
            baseline_totals = baseline_matrix.sum(axis=1)
            weights = np.where((judge_totals > 0) & (baseline_totals > 0), judge_totals, 0.0)
            if weights.sum() == 0:
                return 0.0

        with np.errstate(divide="ignore", invalid="ignore"):
            p = np.where(judge_totals[:, None] > 0, judge_matrix / judge_totals[:, None], 0.0)
            q = np.where(baseline_totals[:, None] > 0, baseline_matrix / baseline_totals[:, None], 0.0)
        distances = 0.5 * np.abs(p - q).sum(axis=1)
        return float(100.0 * (weights * distances).sum() / weights.sum())

    def bootstrap_interval(
        self, frame: pd.DataFrame, buckets: List[str], baseline_matrix: np.ndarray
    ) -> Tuple[float, float]:
        """Seeded percentile bootstrap over the judge's cases."""
        bucket_index = {b: i for i, b in enumerate(buckets)}
        category_index = {c: i for i, c in enumerate(OUTCOME_CATEGORIES)}
        codes = np.array([
            bucket_index[t] * self.n_categories + category_index[c]
            for t, c in zip(frame["case_type"], frame["category"])
        ])
        size = len(buckets) * self.n_categories

        rng = np.random.default_rng(self.config.bootstrap_seed)
        scores = np.empty(self.config.bootstrap_iterations)
        for i in range(self.config.bootstrap_iterations):
            sample = rng.choice(codes, size=len(codes), replace=True)
            counts = np.bincount(sample, minlength=size).reshape(len(buckets), self.n_categories)
            scores[i] = self.pattern_score(counts.astype(float), baseline_matrix)

        tail = self.config.alpha / 2 * 100
        low, high = np.percentile(scores, [tail, 100 - tail])
        return round(float(low), 2), round(float(high), 2)

    def category_tests(
        self, judge_counts: np.ndarray, baseline_counts: np.ndarray
    ) -> List[Dict[str, Any]]:
        """
        Two-proportion z-test per outcome category against the baseline.

        P-values are Bonferroni-adjusted over the categories observed on
        either side.
        """
        n1, n2 = judge_counts.sum(), baseline_counts.sum()
        if n1 == 0 or n2 == 0:
            return []

        observed = [
            i for i in range(self.n_categories) if judge_counts[i] + baseline_counts[i] > 0
        ]
        tests = []
        for i in observed:
            x1, x2 = judge_counts[i], baseline_counts[i]
            pooled = (x1 + x2) / (n1 + n2)
            se = np.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
            if se > 0:
                z = (x1 / n1 - x2 / n2) / se
                p_value = float(2 * scipy_stats.norm.sf(abs(z)))
            else:
                z, p_value = 0.0, 1.0
            tests.append(
                {
                    "category": OUTCOME_CATEGORIES[i],
                    "judge_rate": round(float(x1 / n1), 4),
                    "baseline_rate": round(float(x2 / n2), 4),
                    "z": round(float(z), 4),
                    "p_value": p_value,
                    "adjusted_p_value": min(1.0, p_value * len(observed)),
                }
            )
        return tests

    @staticmethod
    def behavior_indicators(frame: pd.DataFrame) -> Dict[str, Optional[float]]:
        """
        Descriptive indicators: settlement consistency across case types,
        speed, and settlement preference.
        """
        n = len(frame)
        if n == 0:
            return {}

        settled = frame["category"] == "settled"
        overall_settlement = float(settled.mean())
        per_type = settled.groupby(frame["case_type"]).mean()
        variance = float(((per_type - overall_settlement) ** 2).mean())

        consistency = 100 - variance * 100
        if variance == 0 and 0.0 < overall_settlement < 1.0:
            consistency = 99.9
        elif variance > 0 and consistency >= 100:
            consistency = 99.9
        consistency = max(0.0, min(100.0, consistency))

        durations = frame["duration_days"].dropna()
        if len(durations):
            average_duration = float(durations.mean())
            speed = max(0.0, min(100.0, 100 - max(1.0, average_duration) / 180 * 100))
        else:
            average_duration, speed = None, None

        return {
            "settlement_rate": round(overall_settlement, 4),
            "dismissal_rate": round(
                float(frame["category"].isin(["dismissed", "dismissed_with_prejudice"]).mean()), 4
            ),
            "consistency_score": round(consistency, 1),
            "settlement_preference": round((overall_settlement - 0.5) * 100, 1),
            "average_case_duration_days": round(average_duration, 1) if average_duration is not None else None,
            "speed_score": round(speed, 1) if speed is not None else None,
        }


def profiles_frame(profiles: List[BiasProfile]) -> pd.DataFrame:
    """Flatten profiles into one row each (counts and tests excluded)."""
    rows = []
    for p in profiles:
        low, high = p.confidence_interval or (None, None)
        rows.append(
            {
                "judge_id": p.judge_id,
                "version": p.version,
                "window": p.window.label,
                "sample_size": p.sample_size,
                "sample_flag": p.sample_flag.value,
                "status": p.status,
                "pattern_score": p.pattern_score,
                "ci_low": low,
                "ci_high": high,
                "p_value": p.p_value,
                "significant": p.significant,
                "baseline_size": p.baseline_size,
                "baseline_scope": p.baseline_scope,
                "confidence_percentage": p.confidence_percentage,
                "generation": p.generation,
                "computed_at": p.computed_at,
            }
        )
    columns = [
        "judge_id", "version", "window", "sample_size", "sample_flag", "status",
        "pattern_score", "ci_low", "ci_high", "p_value", "significant",
        "baseline_size", "baseline_scope", "confidence_percentage", "generation",
        "computed_at",
    ]
    return pd.DataFrame(rows, columns=columns)


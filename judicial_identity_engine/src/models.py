"""
Core records for the Judicial Identity Engine.

Judges, courts, positions and cases are plain dataclasses; derived results
(match outcomes, violations, bias profiles) are frozen so that a computed
value cannot be edited after the fact.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Tuple, Set, Union

from .errors import ViolationKind

UNRESOLVED = "unresolved"


class PositionStatus(str, Enum):
    """Lifecycle states of a Position."""

    ACTIVE = "active"
    ENDED = "ended"
    RETIRED_INFERRED = "retired_inferred"


class SampleFlag(str, Enum):
    """Sample-size gate for analytics."""

    INSUFFICIENT = "insufficient"
    BORDERLINE = "borderline"
    SUFFICIENT = "sufficient"


# ==================== Identity Records ====================


@dataclass
class Judge:
    """A stable judge identity."""

    judge_id: str
    canonical_name: str
    name_variants: Set[str] = field(default_factory=set)
    birth_date: Optional[date] = None
    appointment_date: Optional[date] = None
    external_id: Optional[str] = None
    retired: bool = False
    retirement_inferred_date: Optional[date] = None
    multi_court: bool = False


@dataclass
class Court:
    """A court and its place in the jurisdiction hierarchy."""

    court_id: str
    name: str
    jurisdiction: str
    level: str = "trial"
    seats: Optional[int] = None


@dataclass
class Position:
    """A judge's tenure at a court."""

    position_id: str
    judge_id: str
    court_id: str
    start_date: date
    end_date: Optional[date] = None
    status: PositionStatus = PositionStatus.ACTIVE
    end_inferred: bool = False
    source: str = "case"
    last_activity: Optional[date] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    @property
    def effective_end(self) -> date:
        """End of the interval; open intervals run to ``date.max``."""
        return self.end_date or date.max

    def covers(self, day: date) -> bool:
        """True if ``day`` falls inside this position's interval."""
        return self.start_date <= day <= self.effective_end

    def overlaps(self, other: "Position") -> bool:
        return (
            self.start_date <= other.effective_end
            and other.start_date <= self.effective_end
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class NormalizedIdentity:
    """Output of the identity normalizer for one raw record."""

    name_key: str
    phonetic_key: str
    jurisdiction_key: str
    first_name: str = ""
    last_name: str = ""

    @property
    def jurisdiction_resolved(self) -> bool:
        return self.jurisdiction_key != UNRESOLVED


# ==================== Inbound Records ====================


@dataclass
class CaseRecord:
    """A raw adjudicated matter from the external provider."""

    case_id: str
    judge_name: str
    jurisdiction: str
    decided_on: date
    outcome: str = ""
    case_type: str = ""
    court_id: Optional[str] = None
    external_judge_id: Optional[str] = None
    filed_on: Optional[date] = None


@dataclass
class AppointmentRecord:
    """
    An authoritative position record (appointment, end or transfer).

    Either ``judge_id`` or ``external_judge_id`` identifies the judge.
    """

    court_id: str
    start_date: Optional[date] = None
    judge_id: Optional[str] = None
    external_judge_id: Optional[str] = None
    judge_name: Optional[str] = None
    end_date: Optional[date] = None
    kind: str = "appointment"


# ==================== Match Results ====================


@dataclass(frozen=True)
class MatchResult:
    """A case resolved to exactly one judge."""

    judge_id: str
    confidence: float
    tier: str
    court_id: Optional[str] = None


@dataclass(frozen=True)
class Ambiguous:
    """Several comparable candidates; never auto-resolved."""

    case_id: str
    candidates: Tuple[str, ...]
    tier: str


@dataclass(frozen=True)
class NoMatch:
    """No plausible candidate judge."""

    case_id: str
    reason: str = "no_candidates"


MatchOutcome = Union[MatchResult, Ambiguous, NoMatch]


# ==================== Position Outcomes ====================


@dataclass(frozen=True)
class Violation:
    """A structured Assignment Validator rejection."""

    kind: ViolationKind
    judge_id: str
    position_ids: Tuple[str, ...]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "judge_id": self.judge_id,
            "position_ids": list(self.position_ids),
            "message": self.message,
        }


@dataclass(frozen=True)
class CaseLink:
    """A case resolved to a judge and one of the judge's positions."""

    case_id: str
    judge_id: str
    position_id: str
    court_id: str
    decided_on: date
    outcome: str = ""
    case_type: str = ""
    filed_on: Optional[date] = None


@dataclass(frozen=True)
class PendingCase:
    """A case deferred until more information arrives."""

    case: CaseRecord
    reason: str
    judge_id: Optional[str] = None


@dataclass
class ReviewItem:
    """An entry in the manual-review queue."""

    item_id: str
    kind: str  # "ambiguous" or "violation"
    case_id: Optional[str] = None
    judge_id: Optional[str] = None
    candidates: Tuple[str, ...] = ()
    violation: Optional[Violation] = None
    detail: str = ""
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "kind": self.kind,
            "case_id": self.case_id,
            "judge_id": self.judge_id,
            "candidates": list(self.candidates),
            "violation_kind": self.violation.kind.value if self.violation else None,
            "position_ids": list(self.violation.position_ids) if self.violation else [],
            "detail": self.detail,
            "created_at": self.created_at,
            "resolved": self.resolved,
        }


# ==================== Analytics ====================


@dataclass(frozen=True)
class AnalysisWindow:
    """Inclusive date window for analytics; open ends are unbounded."""

    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True

    @property
    def label(self) -> str:
        start = self.start.isoformat() if self.start else "begin"
        end = self.end.isoformat() if self.end else "present"
        return f"{start}..{end}"


@dataclass(frozen=True)
class ConfidenceAssessment:
    """Sample-size tier with optional interval half-width."""

    tier: SampleFlag
    sample_size: int
    half_width: Optional[float]
    percentage: int
    label: str


@dataclass(frozen=True)
class BiasProfile:
    """A versioned, confidence-gated outcome-pattern snapshot for one judge."""

    judge_id: str
    version: int
    window: AnalysisWindow
    sample_size: int
    sample_flag: SampleFlag
    outcome_counts: Dict[str, int]
    case_type_counts: Dict[str, int]
    time_bucket_counts: Dict[int, int]
    pattern_score: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None
    p_value: Optional[float] = None
    significant: bool = False
    category_tests: Tuple[Dict[str, Any], ...] = ()
    baseline_size: int = 0
    baseline_scope: Optional[str] = None
    confidence_percentage: int = 0
    generation: int = 0
    indicators: Dict[str, Any] = field(default_factory=dict)
    computed_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def is_publishable(self) -> bool:
        return self.sample_flag != SampleFlag.INSUFFICIENT

    @property
    def status(self) -> str:
        """
        Reader-facing state.

        ``insufficient_data`` means "no data yet"; ``no_pattern`` means the
        sample is large enough and nothing deviates significantly.
        """
        if self.sample_flag == SampleFlag.INSUFFICIENT:
            return "insufficient_data"
        if self.pattern_score is None:
            return "no_baseline"
        if self.significant:
            return "pattern_detected"
        return "no_pattern"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "judge_id": self.judge_id,
            "version": self.version,
            "window": self.window.label,
            "sample_size": self.sample_size,
            "sample_flag": self.sample_flag.value,
            "status": self.status,
            "outcome_counts": dict(self.outcome_counts),
            "case_type_counts": dict(self.case_type_counts),
            "time_bucket_counts": {str(k): v for k, v in self.time_bucket_counts.items()},
            "pattern_score": self.pattern_score,
            "confidence_interval": list(self.confidence_interval)
            if self.confidence_interval
            else None,
            "p_value": self.p_value,
            "significant": self.significant,
            "category_tests": [dict(t) for t in self.category_tests],
            "baseline_size": self.baseline_size,
            "baseline_scope": self.baseline_scope,
            "confidence_percentage": self.confidence_percentage,
            "generation": self.generation,
            "indicators": dict(self.indicators),
            "computed_at": self.computed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BiasProfile":
        """Rebuild a profile from ``to_dict`` output."""
        start, _, end = data.get("window", "begin..present").partition("..")
        window = AnalysisWindow(
            start=None if start == "begin" else date.fromisoformat(start),
            end=None if end == "present" else date.fromisoformat(end),
        )
        interval = data.get("confidence_interval")
        return cls(
            judge_id=data["judge_id"],
            version=int(data["version"]),
            window=window,
            sample_size=int(data["sample_size"]),
            sample_flag=SampleFlag(data["sample_flag"]),
            outcome_counts=dict(data.get("outcome_counts") or {}),
            case_type_counts=dict(data.get("case_type_counts") or {}),
            time_bucket_counts={
                int(k): v for k, v in (data.get("time_bucket_counts") or {}).items()
            },
            pattern_score=data.get("pattern_score"),
            confidence_interval=tuple(interval) if interval else None,
            p_value=data.get("p_value"),
            significant=bool(data.get("significant")),
            category_tests=tuple(data.get("category_tests") or ()),
            baseline_size=int(data.get("baseline_size") or 0),
            baseline_scope=data.get("baseline_scope"),
            confidence_percentage=int(data.get("confidence_percentage") or 0),
            generation=int(data.get("generation") or 0),
            indicators=dict(data.get("indicators") or {}),
            computed_at=data.get("computed_at", ""),
        )

"""
Registry for the Judicial Identity Engine.

In-memory store of judges, courts, positions, case links, the pending and
review queues, and versioned bias profiles.

Each judge's positions live in a ``JudgeAggregate`` that is loaded, changed
and committed as a unit under the judge's lock. Every committed change bumps
the aggregate's ``generation`` counter, which analyses use to detect
concurrent writes.
"""

import itertools
import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List, Any, Iterable, Set, Tuple

import pandas as pd

from .config import EngineConfig
from .errors import ViolationKind
from .jurisdiction import JurisdictionHierarchy
from .models import (
    BiasProfile,
    CaseLink,
    CaseRecord,
    Court,
    Judge,
    PendingCase,
    Position,
    PositionStatus,
    ReviewItem,
    UNRESOLVED,
    Violation,
)
from .normalizer import IdentityNormalizer

logger = logging.getLogger(__name__)


@dataclass
class JudgeAggregate:
    """All positions of one judge, committed as a single unit."""

    judge: Judge
    positions: List[Position] = field(default_factory=list)
    generation: int = 0
    events: List[Dict[str, Any]] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def active_positions(self) -> List[Position]:
        return [p for p in self.positions if p.is_active]

    def positions_at(self, court_id: str) -> List[Position]:
        return [p for p in self.positions if p.court_id == court_id]


class Registry:
    """
    Judge/court graph plus everything derived from it.

    Registry-wide indices are guarded by an internal lock; position changes
    go through ``commit_positions`` which the caller must invoke while
    holding the judge's aggregate lock.
    """

    # Court level classification by name keyword (first match wins)
    COURT_LEVELS = [
        ("supreme", "supreme"),
        ("appellate", "appellate"),
        ("appeal", "appellate"),
        ("circuit", "appellate"),
        ("superior", "trial"),
        ("district", "trial"),
        ("magistrate", "limited"),
        ("municipal", "limited"),
        ("justice", "limited"),
        ("small claims", "limited"),
    ]

    TABLES = ["judges", "courts", "positions", "case_links", "pending", "review", "profiles", "events"]

    def __init__(self, config: Optional[EngineConfig] = None,
                 hierarchy: Optional[JurisdictionHierarchy] = None):
        """
        Initialize an empty registry.

        Args:
            config: Engine configuration (defaults to ``EngineConfig()``).
            hierarchy: Jurisdiction tree; courts extend it as they register.
        """
        self.config = config or EngineConfig()
        self.hierarchy = hierarchy or JurisdictionHierarchy()
        self.normalizer = IdentityNormalizer(self.hierarchy)

        self._lock = threading.RLock()
        # serializes match-then-create for records that found no judge;
        # created_identities maps (name key, jurisdiction key) to the judge made
        self.create_lock = threading.Lock()
        self.created_identities: Dict[Tuple[str, str], str] = {}
        self._judges: Dict[str, JudgeAggregate] = {}
        self._courts: Dict[str, Court] = {}
        self._court_locks: Dict[str, threading.RLock] = {}
        self._name_index: Dict[str, Set[str]] = {}
        self._phonetic_index: Dict[str, Set[str]] = {}
        self._external_index: Dict[str, str] = {}
        self._links: Dict[str, CaseLink] = {}
        self._pending: Dict[str, PendingCase] = {}
        self._review: Dict[str, ReviewItem] = {}
        self._profiles: Dict[str, List[BiasProfile]] = {}

        self._judge_seq = itertools.count(1)
        self._position_seq = itertools.count(1)
        self._review_seq = itertools.count(1)

    # ==================== Courts ====================

    def add_court(
        self,
        court_id: str,
        name: str,
        jurisdiction: str,
        level: Optional[str] = None,
        seats: Optional[int] = None,
    ) -> Court:
        """
        Register a court and its jurisdiction path.

        Args:
            court_id: Stable court identifier.
            name: Display name.
            jurisdiction: Jurisdiction text, e.g. ``CA/LosAngeles/Superior``.
            level: supreme / appellate / trial / limited (derived from name
                when omitted).
            seats: Concurrently active judges allowed (config default if None).

        Returns:
            The registered Court.

        Raises:
            ValueError: If the jurisdiction text cannot be resolved.
        """
        key = self.normalizer.canonical_path(jurisdiction)
        if key is None or key == UNRESOLVED:
            raise ValueError(f"Court {court_id}: unresolvable jurisdiction {jurisdiction!r}")

        with self._lock:
            self.hierarchy.add_path(key)
            court = Court(
                court_id=court_id,
                name=name,
                jurisdiction=key,
                level=level or self.classify_court_level(name),
                seats=seats,
            )
            self._courts[court_id] = court
            self._court_locks.setdefault(court_id, threading.RLock())
        logger.debug("Registered court %s at %s", court_id, key)
        return court

    @classmethod
    def classify_court_level(cls, name: str) -> str:
        lowered = (name or "").lower()
        for keyword, level in cls.COURT_LEVELS:
            if keyword in lowered:
                return level
        return "trial"

    def get_court(self, court_id: Optional[str]) -> Optional[Court]:
        return self._courts.get(court_id) if court_id else None

    def courts(self) -> List[Court]:
        with self._lock:
            return list(self._courts.values())

    def court_lock(self, court_id: str) -> threading.RLock:
        with self._lock:
            return self._court_locks.setdefault(court_id, threading.RLock())

    def court_seats(self, court: Court) -> int:
        return court.seats if court.seats is not None else self.config.default_court_seats

    def courts_at(self, jurisdiction_key: str) -> List[Court]:
        """Courts whose jurisdiction is exactly ``jurisdiction_key``."""
        return [c for c in self.courts() if c.jurisdiction == jurisdiction_key]

    def courts_within(self, scope: str) -> List[Court]:
        """Courts at or beneath a jurisdiction node."""
        return [c for c in self.courts() if self.hierarchy.is_within(c.jurisdiction, scope)]

    # ==================== Judges ====================

    def add_judge(
        self,
        name: str,
        judge_id: Optional[str] = None,
        external_id: Optional[str] = None,
        birth_date: Optional[date] = None,
        appointment_date: Optional[date] = None,
        multi_court: bool = False,
    ) -> Judge:
        """
        Create a judge identity and index its name variants.

        Args:
            name: Canonical display name.
            judge_id: Explicit identifier (generated when omitted).
            external_id: External-source identifier to bind.
            birth_date: Optional birth date.
            appointment_date: Optional first appointment date.
            multi_court: Whitelist the judge for concurrent positions.

        Returns:
            The new Judge.
        """
        with self._lock:
            judge_id = judge_id or self._next_judge_id()
            if judge_id in self._judges:
                raise ValueError(f"Judge {judge_id} already exists")

            judge = Judge(
                judge_id=judge_id,
                canonical_name=name,
                birth_date=birth_date,
                appointment_date=appointment_date,
                multi_court=multi_court,
            )
            self._judges[judge_id] = JudgeAggregate(judge=judge)
            self._index_name(judge, name)
            if external_id:
                self.bind_external_id(judge_id, external_id)
            self._record_event(judge_id, "created", f"canonical name {name!r}")

        logger.info("Created judge %s (%s)", judge_id, name)
        return judge

    def _next_judge_id(self) -> str:
        while True:
            candidate = f"J{next(self._judge_seq):06d}"
            if candidate not in self._judges:
                return candidate

    def _index_name(self, judge: Judge, raw_name: str) -> Set[str]:
        variations = self.normalizer.name_variations(raw_name)
        identity = self.normalizer.normalize(raw_name, None)
        for key in variations:
            self._name_index.setdefault(key, set()).add(judge.judge_id)
        if identity.phonetic_key:
            self._phonetic_index.setdefault(identity.phonetic_key, set()).add(judge.judge_id)
        added = variations - judge.name_variants
        judge.name_variants |= variations
        return added

    def add_name_variant(self, judge_id: str, raw_name: str) -> Set[str]:
        """
        Index an additional name for a judge.

        Returns:
            Name keys that were not already known for the judge.
        """
        with self._lock:
            judge = self.get_judge(judge_id)
            if judge is None:
                raise KeyError(judge_id)
            added = self._index_name(judge, raw_name)
            if added:
                self._record_event(judge_id, "name_variant", ", ".join(sorted(added)))
        return added

    def bind_external_id(self, judge_id: str, external_id: str) -> None:
        """Bind (or re-bind) an external-source identifier to a judge."""
        with self._lock:
            judge = self.get_judge(judge_id)
            if judge is None:
                raise KeyError(judge_id)
            previous_owner = self._external_index.get(external_id)
            if previous_owner and previous_owner != judge_id:
                self._judges[previous_owner].judge.external_id = None
                logger.warning(
                    "External id %s moved from %s to %s", external_id, previous_owner, judge_id
                )
            if judge.external_id and judge.external_id != external_id:
                self._external_index.pop(judge.external_id, None)
            judge.external_id = external_id
            self._external_index[external_id] = judge_id
            self._record_event(judge_id, "external_id", external_id)

    def get_judge(self, judge_id: Optional[str]) -> Optional[Judge]:
        aggregate = self._judges.get(judge_id) if judge_id else None
        return aggregate.judge if aggregate else None

    def judges(self) -> List[Judge]:
        with self._lock:
            return [a.judge for a in self._judges.values()]

    def judge_ids(self) -> List[str]:
        with self._lock:
            return list(self._judges)

    def aggregate(self, judge_id: str) -> JudgeAggregate:
        aggregate = self._judges.get(judge_id)
        if aggregate is None:
            raise KeyError(f"Unknown judge {judge_id}")
        return aggregate

    def judges_by_name(self, name_key: str) -> Set[str]:
        with self._lock:
            return set(self._name_index.get(name_key, ()))

    def judges_by_phonetic(self, phonetic_key: str) -> Set[str]:
        with self._lock:
            return set(self._phonetic_index.get(phonetic_key, ()))

    def judge_by_external_id(self, external_id: Optional[str]) -> Optional[str]:
        if not external_id:
            return None
        with self._lock:
            return self._external_index.get(external_id)

    # ==================== Positions ====================

    def new_position_id(self) -> str:
        with self._lock:
            return f"P{next(self._position_seq):07d}"

    def positions(self, judge_id: str) -> List[Position]:
        """Copies of a judge's positions, oldest first."""
        aggregate = self.aggregate(judge_id)
        with aggregate.lock:
            return [replace(p) for p in sorted(aggregate.positions, key=lambda p: p.start_date)]

    def snapshot(self, judge_id: str):
        """Generation and position copies read together under the judge lock."""
        aggregate = self.aggregate(judge_id)
        with aggregate.lock:
            return aggregate.generation, [replace(p) for p in aggregate.positions]

    def case_snapshot(self, judge_id: str):
        """Generation, positions and case links of a judge read under its lock."""
        aggregate = self.aggregate(judge_id)
        with aggregate.lock:
            positions = [replace(p) for p in aggregate.positions]
            return aggregate.generation, positions, self.links_for_judge(judge_id)

    def generation(self, judge_id: str) -> int:
        return self.aggregate(judge_id).generation

    def active_positions_at_court(
        self, court_id: str, exclude_judge: Optional[str] = None
    ) -> List[Position]:
        """Active positions of other judges at a court."""
        result = []
        with self._lock:
            aggregates = list(self._judges.values())
        for aggregate in aggregates:
            if aggregate.judge.judge_id == exclude_judge:
                continue
            result.extend(
                replace(p) for p in aggregate.positions if p.court_id == court_id and p.is_active
            )
        return result

    def judges_active_at(self, court_ids: Iterable[str]) -> Set[str]:
        """Judges holding an active position at any of the given courts."""
        court_ids = set(court_ids)
        with self._lock:
            aggregates = list(self._judges.values())
        return {
            a.judge.judge_id
            for a in aggregates
            if any(p.is_active and p.court_id in court_ids for p in a.positions)
        }

    def commit_positions(
        self, judge_id: str, positions: List[Position], event: str, detail: str = ""
    ) -> int:
        """
        Replace a judge's position list and bump its generation.

        Must be called while holding the judge's aggregate lock.

        Returns:
            The new generation.
        """
        aggregate = self.aggregate(judge_id)
        with aggregate.lock:
            aggregate.positions = [replace(p) for p in positions]
            aggregate.generation += 1
            self._record_event(judge_id, event, detail)
            return aggregate.generation

    def events(self, judge_id: str) -> List[Dict[str, Any]]:
        aggregate = self.aggregate(judge_id)
        with aggregate.lock:
            return list(aggregate.events)

    def _record_event(self, judge_id: str, kind: str, detail: str = "") -> None:
        aggregate = self._judges.get(judge_id)
        if aggregate is None:
            return
        aggregate.events.append({
            "judge_id": judge_id,
            "at": datetime.now(timezone.utc).isoformat(),
            "kind": kind,
            "detail": detail,
        })

    # ==================== Cases ====================

    def add_link(self, link: CaseLink) -> None:
        with self._lock:
            self._links[link.case_id] = link
            self._pending.pop(link.case_id, None)

    def get_link(self, case_id: str) -> Optional[CaseLink]:
        with self._lock:
            return self._links.get(case_id)

    def links_for_judge(self, judge_id: str) -> List[CaseLink]:
        with self._lock:
            return [l for l in self._links.values() if l.judge_id == judge_id]

    def all_links(self) -> List[CaseLink]:
        with self._lock:
            return list(self._links.values())

    def detach_link(self, case_id: str, pending: PendingCase) -> None:
        """Replace a case link with a pending entry in one step."""
        with self._lock:
            self._links.pop(case_id, None)
            self._pending[case_id] = pending

    def add_pending(self, pending: PendingCase) -> None:
        with self._lock:
            self._pending[pending.case.case_id] = pending

    def pending(self, reason: Optional[str] = None) -> List[PendingCase]:
        with self._lock:
            items = list(self._pending.values())
        return [p for p in items if reason is None or p.reason == reason]

    def take_pending(self, case_id: str) -> Optional[PendingCase]:
        with self._lock:
            return self._pending.pop(case_id, None)

    # ==================== Review Queue ====================

    def enqueue_review(
        self,
        kind: str,
        case_id: Optional[str] = None,
        judge_id: Optional[str] = None,
        candidates: Iterable[str] = (),
        violation: Optional[Violation] = None,
        detail: str = "",
    ) -> ReviewItem:
        """Queue an ambiguity or validator rejection for manual review."""
        key = self._review_key(kind, case_id, judge_id, violation, detail)
        with self._lock:
            if key is not None:
                for item in self._review.values():
                    if not item.resolved and key == self._review_key(
                        item.kind, item.case_id, item.judge_id, item.violation, item.detail
                    ):
                        return item
            item = ReviewItem(
                item_id=f"R{next(self._review_seq):06d}",
                kind=kind,
                case_id=case_id,
                judge_id=judge_id,
                candidates=tuple(sorted(candidates)),
                violation=violation,
                detail=detail,
            )
            self._review[item.item_id] = item
        logger.info("Queued %s for review: %s", kind, detail or case_id)
        return item

    @staticmethod
    def _review_key(
        kind: str,
        case_id: Optional[str],
        judge_id: Optional[str],
        violation: Optional[Violation],
        detail: str,
    ) -> Optional[Tuple[Any, ...]]:
        """
        Identity of an open review item.

        One open ambiguity per case; one open rejection per case and
        violation kind (per judge, kind and message for records without a
        case). Other items are never merged.
        """
        if kind == "ambiguous" and case_id:
            return (kind, case_id)
        if kind == "violation" and violation is not None:
            return (kind, violation.kind.value, judge_id, case_id or detail)
        return None

    def review_items(self, include_resolved: bool = False) -> List[ReviewItem]:
        with self._lock:
            items = list(self._review.values())
        return [i for i in items if include_resolved or not i.resolved]

    def resolve_review_for_case(self, case_id: str) -> int:
        """Mark every open review item of a case resolved."""
        count = 0
        with self._lock:
            for item in self._review.values():
                if item.case_id == case_id and not item.resolved:
                    item.resolved = True
                    count += 1
        return count

    # ==================== Profiles ====================

    def store_profile(self, profile: BiasProfile) -> BiasProfile:
        """Append a profile as the judge's next version."""
        with self._lock:
            history = self._profiles.setdefault(profile.judge_id, [])
            stored = replace(profile, version=len(history) + 1)
            history.append(stored)
        return stored

    def latest_profile(self, judge_id: str) -> Optional[BiasProfile]:
        with self._lock:
            history = self._profiles.get(judge_id)
            return history[-1] if history else None

    def profile_history(self, judge_id: str) -> List[BiasProfile]:
        with self._lock:
            return list(self._profiles.get(judge_id, ()))

    def all_latest_profiles(self) -> List[BiasProfile]:
        with self._lock:
            return [h[-1] for h in self._profiles.values() if h]

    # ==================== Persistence ====================

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        """Every table of the registry as a DataFrame (dates as ISO strings)."""
        with self._lock:
            aggregates = list(self._judges.values())
            judges = [
                {
                    "judge_id": a.judge.judge_id,
                    "canonical_name": a.judge.canonical_name,
                    "name_variants": sorted(a.judge.name_variants),
                    "birth_date": _iso(a.judge.birth_date),
                    "appointment_date": _iso(a.judge.appointment_date),
                    "external_id": a.judge.external_id,
                    "retired": a.judge.retired,
                    "retirement_inferred_date": _iso(a.judge.retirement_inferred_date),
                    "multi_court": a.judge.multi_court,
                    "generation": a.generation,
                }
                for a in aggregates
            ]
            positions = [
                {**p.to_dict(), "start_date": _iso(p.start_date), "end_date": _iso(p.end_date),
                 "last_activity": _iso(p.last_activity)}
                for a in aggregates for p in a.positions
            ]
            courts = [vars(c).copy() for c in self._courts.values()]
            links = [
                {**vars(l), "decided_on": _iso(l.decided_on), "filed_on": _iso(l.filed_on)} for l in self._links.values()
            ]
            pending = [
                {**vars(p.case), "decided_on": _iso(p.case.decided_on),
                 "filed_on": _iso(p.case.filed_on), "reason": p.reason,
                 "pending_judge_id": p.judge_id}
                for p in self._pending.values()
            ]
            review = [
                {**i.to_dict(), "violation": json.dumps(i.violation.to_dict()) if i.violation else None}
                for i in self._review.values()
            ]
            profiles = [
                {"judge_id": p.judge_id, "version": p.version, "payload": json.dumps(p.to_dict())}
                for h in self._profiles.values() for p in h
            ]
            events = [e for a in aggregates for e in a.events]

        return {
            "judges": pd.DataFrame(judges),
            "courts": pd.DataFrame(courts),
            "positions": pd.DataFrame(positions),
            "case_links": pd.DataFrame(links),
            "pending": pd.DataFrame(pending),
            "review": pd.DataFrame(review),
            "profiles": pd.DataFrame(profiles),
            "events": pd.DataFrame(events),
        }

    def save(self, output_dir: str = "data/registry") -> None:
        """
        Save every registry table to parquet files.

        Args:
            output_dir: Directory to write output files.
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        for name, df in self.to_frames().items():
            if len(df) > 0:
                filepath = output_path / f"{name}.parquet"
                df.to_parquet(filepath, index=False)
                logger.info("Saved %s to %s", name, filepath)

    @classmethod
    def load(cls, registry_dir: str = "data/registry",
             config: Optional[EngineConfig] = None) -> "Registry":
        """
        Load a registry previously written by ``save``.

        Args:
            registry_dir: Directory containing the parquet tables.
            config: Engine configuration for the loaded registry.

        Returns:
            Registry with restored state.
        """
        path = Path(registry_dir)
        registry = cls(config=config)
        frames = {}
        for name in cls.TABLES:
            filepath = path / f"{name}.parquet"
            if filepath.exists():
                frames[name] = pd.read_parquet(filepath)
                logger.info("Loaded %s from %s", name, filepath)

        for row in _records(frames.get("courts")):
            registry.add_court(
                row["court_id"], row["name"], row["jurisdiction"],
                level=row.get("level"), seats=_int_or_none(row.get("seats")),
            )

        for row in _records(frames.get("judges")):
            judge = registry.add_judge(
                row["canonical_name"],
                judge_id=row["judge_id"],
                external_id=row.get("external_id") or None,
                birth_date=_date(row.get("birth_date")),
                appointment_date=_date(row.get("appointment_date")),
                multi_court=bool(row.get("multi_court")),
            )
            for variant in _list(row.get("name_variants")):
                registry._name_index.setdefault(variant, set()).add(judge.judge_id)
                judge.name_variants.add(variant)
            judge.retired = bool(row.get("retired"))
            judge.retirement_inferred_date = _date(row.get("retirement_inferred_date"))
            registry.aggregate(judge.judge_id).generation = int(row.get("generation") or 0)
            registry.aggregate(judge.judge_id).events.clear()

        max_position = 0
        for row in _records(frames.get("positions")):
            position = Position(
                position_id=row["position_id"],
                judge_id=row["judge_id"],
                court_id=row["court_id"],
                start_date=_date(row["start_date"]),
                end_date=_date(row.get("end_date")),
                status=PositionStatus(row["status"]),
                end_inferred=bool(row.get("end_inferred")),
                source=row.get("source") or "case",
                last_activity=_date(row.get("last_activity")),
            )
            registry.aggregate(position.judge_id).positions.append(position)
            if position.position_id[1:].isdigit():
                max_position = max(max_position, int(position.position_id[1:]))
        registry._position_seq = itertools.count(max_position + 1)

        for row in _records(frames.get("case_links")):
            registry._links[row["case_id"]] = CaseLink(
                case_id=row["case_id"],
                judge_id=row["judge_id"],
                position_id=row["position_id"],
                court_id=row["court_id"],
                decided_on=_date(row["decided_on"]),
                outcome=row.get("outcome") or "",
                case_type=row.get("case_type") or "",
                filed_on=_date(row.get("filed_on")),
            )

        for row in _records(frames.get("pending")):
            case = CaseRecord(
                case_id=row["case_id"],
                judge_name=row.get("judge_name") or "",
                jurisdiction=row.get("jurisdiction") or "",
                decided_on=_date(row["decided_on"]),
                outcome=row.get("outcome") or "",
                case_type=row.get("case_type") or "",
                court_id=row.get("court_id") or None,
                external_judge_id=row.get("external_judge_id") or None,
                filed_on=_date(row.get("filed_on")),
            )
            registry._pending[case.case_id] = PendingCase(
                case=case, reason=row["reason"], judge_id=row.get("pending_judge_id") or None
            )

        for row in _records(frames.get("review")):
            violation = None
            if row.get("violation"):
                data = json.loads(row["violation"])
                violation = Violation(
                    kind=ViolationKind(data["kind"]),
                    judge_id=data["judge_id"],
                    position_ids=tuple(data["position_ids"]),
                    message=data["message"],
                )
            item = ReviewItem(
                item_id=row["item_id"],
                kind=row["kind"],
                case_id=row.get("case_id") or None,
                judge_id=row.get("judge_id") or None,
                candidates=tuple(_list(row.get("candidates"))),
                violation=violation,
                detail=row.get("detail") or "",
                created_at=row.get("created_at") or "",
                resolved=bool(row.get("resolved")),
            )
            registry._review[item.item_id] = item
        registry._review_seq = itertools.count(len(registry._review) + 1)

        for row in sorted(_records(frames.get("profiles")), key=lambda r: (r["judge_id"], r["version"])):
            profile = BiasProfile.from_dict(json.loads(row["payload"]))
            registry._profiles.setdefault(profile.judge_id, []).append(profile)

        for row in _records(frames.get("events")):
            if row["judge_id"] in registry._judges:
                registry.aggregate(row["judge_id"]).events.append(dict(row))

        logger.info(
            "Loaded registry: %d judges, %d courts, %d case links",
            len(registry._judges), len(registry._courts), len(registry._links),
        )
        return registry


def _records(df: Optional[pd.DataFrame]) -> List[Dict[str, Any]]:
    if df is None or df.empty:
        return []
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict("records")


def _list(value: Any) -> List[Any]:
    return [] if value is None else list(value)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _int_or_none(value: Any) -> Optional[int]:
    return None if value is None else int(value)

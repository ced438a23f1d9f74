"""
Ingestion Pipeline for the Judicial Identity Engine.

Feeds raw records through preprocessing, matching and the position tracker,
and runs batch analyses. Records are processed by a thread pool; writes for
one judge serialize on that judge's lock inside the tracker, so workers only
contend when they touch the same judge.

Failure handling per record:
- ``UpstreamDataError``: logged, counted, skipped
- ``Ambiguous``: queued for review and parked until an admin resolves it
- ``NoMatch``: parked as pending
- ``PositionGraphError``: the judge is halted for the rest of the run
"""

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from typing import Optional, Dict, List, Any, Iterable, Union

from tqdm import tqdm

from .analysis import BiasOutcomeAnalyzer
from .config import EngineConfig
from .errors import PositionGraphError, StaleSnapshotError, UpstreamDataError
from .matcher import JudgeCaseMatcher
from .models import (
    AnalysisWindow,
    Ambiguous,
    BiasProfile,
    CaseLink,
    CaseRecord,
    MatchResult,
    NoMatch,
    PendingCase,
    Violation,
)
from .position_tracker import CaseOutcome, PositionHistoryTracker
from .preprocessing import RecordPreprocessor
from .registry import Registry

logger = logging.getLogger(__name__)

RawOrCase = Union[Dict[str, Any], CaseRecord]


class IngestionPipeline:
    """
    Orchestrates an ingestion run against one registry.

    Example:
        >>> pipeline = IngestionPipeline(registry)
        >>> pipeline.load_courts(raw["courts"])
        >>> pipeline.load_judges(raw["judges"])
        >>> pipeline.apply_appointments(raw["positions"])
        >>> summary = pipeline.ingest_cases(raw["cases"])
    """

    def __init__(
        self,
        registry: Registry,
        matcher: Optional[JudgeCaseMatcher] = None,
        tracker: Optional[PositionHistoryTracker] = None,
        analyzer: Optional[BiasOutcomeAnalyzer] = None,
        preprocessor: Optional[RecordPreprocessor] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.registry = registry
        self.config = config or registry.config
        self.matcher = matcher or JudgeCaseMatcher(registry)
        self.tracker = tracker or PositionHistoryTracker(registry, config=self.config)
        self.analyzer = analyzer or BiasOutcomeAnalyzer(registry, config=self.config)
        self.preprocessor = preprocessor or RecordPreprocessor(
            {c.court_id: c.jurisdiction for c in registry.courts()}
        )

        self._stats_lock = threading.Lock()
        self.stats: Counter = Counter()
        self.halted_judges: Dict[str, str] = {}

    # ==================== Reference Data ====================

    def load_courts(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Register courts from raw records.

        Returns:
            Number of courts registered.
        """
        count = 0
        for raw in records:
            try:
                fields = self.preprocessor.preprocess_court(raw)
                self.registry.add_court(**fields)
                count += 1
            except (UpstreamDataError, ValueError) as e:
                logger.warning("Skipping court record: %s", e)
                self._count("courts_rejected")
        logger.info("Registered %d courts", count)
        return count

    def load_judges(self, records: Iterable[Dict[str, Any]]) -> List[str]:
        """
        Register judges from raw person records.

        A record whose external id is already bound adds its name as a
        variant of that judge instead of creating a new one.

        Returns:
            Judge ids created or updated.
        """
        judge_ids = []
        for raw in records:
            try:
                fields = self.preprocessor.preprocess_judge(raw)
            except UpstreamDataError as e:
                logger.warning("Skipping judge record: %s", e)
                self._count("judges_rejected")
                continue

            existing = self.registry.judge_by_external_id(fields["external_id"])
            if existing:
                self.registry.add_name_variant(existing, fields["name"])
                judge_ids.append(existing)
                continue
            judge = self.registry.add_judge(**fields)
            judge_ids.append(judge.judge_id)
        logger.info("Loaded %d judges", len(judge_ids))
        return judge_ids

    def apply_appointments(self, records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        """
        Apply authoritative position records in start-date order.

        After each applied record the judge's pending cases are retried,
        since a new or reopened position may now cover them.

        Returns:
            Counts of applied, unchanged, rejected and skipped records.
        """
        parsed = []
        summary = Counter()
        for raw in records:
            try:
                parsed.append(self.preprocessor.preprocess_appointment(raw))
            except UpstreamDataError as e:
                logger.warning("Skipping position record: %s", e)
                summary["skipped"] += 1
        parsed.sort(key=lambda r: r.start_date or r.end_date or date.min)

        for record in parsed:
            try:
                result = self.tracker.apply_appointment(record)
            except UpstreamDataError as e:
                logger.warning("Skipping position record: %s", e)
                summary["skipped"] += 1
                continue
            except PositionGraphError as e:
                self._halt(e)
                summary["skipped"] += 1
                continue

            if isinstance(result, Violation):
                summary["rejected"] += 1
            elif result:
                summary["applied"] += 1
                self.tracker.retry_pending(result[0].judge_id)
            else:
                summary["unchanged"] += 1

        logger.info("Position records: %s", dict(summary))
        return dict(summary)

    # ==================== Cases ====================

    def process_case(self, record: RawOrCase, allow_create: bool = False) -> Optional[Any]:
        """
        Run one case through preprocessing, matching and linking.

        Args:
            record: Raw case dictionary or CaseRecord.
            allow_create: Create a judge when nothing matches.

        Returns:
            CaseLink, Violation, PendingCase or Ambiguous; None when the
            record was skipped.
        """
        try:
            case = record if isinstance(record, CaseRecord) else self.preprocessor.preprocess_case(record)
        except UpstreamDataError as e:
            logger.warning("Skipping malformed case: %s", e)
            self._count("malformed")
            return None

        existing = self.registry.get_link(case.case_id)
        if existing is not None:
            self._count("already_linked")
            return existing

        match = self.matcher.match(case, allow_create=allow_create)

        if isinstance(match, Ambiguous):
            self.registry.enqueue_review(
                "ambiguous",
                case_id=case.case_id,
                candidates=match.candidates,
                detail=f"{case.judge_name!r} matched {len(match.candidates)} judges ({match.tier})",
            )
            self.registry.add_pending(PendingCase(case=case, reason="ambiguous"))
            self._count("ambiguous")
            return match

        if isinstance(match, NoMatch):
            pending = PendingCase(case=case, reason=match.reason)
            self.registry.add_pending(pending)
            self._count("no_match")
            return pending

        return self._record(case, match)

    def _record(self, case: CaseRecord, match: MatchResult) -> Optional[CaseOutcome]:
        if match.judge_id in self.halted_judges:
            self._count("halted")
            return None
        try:
            outcome = self.tracker.record_case(case, match)
        except PositionGraphError as e:
            self._halt(e)
            self._count("halted")
            return None

        if isinstance(outcome, CaseLink):
            self._count("linked")
        elif isinstance(outcome, Violation):
            self._count("violations")
        else:
            self._count(f"pending_{outcome.reason}")
        return outcome

    def ingest_cases(
        self,
        records: Iterable[RawOrCase],
        allow_create: bool = False,
        cancel_event: Optional[threading.Event] = None,
        max_workers: Optional[int] = None,
        show_progress: bool = True,
    ) -> Dict[str, Any]:
        """
        Process case records concurrently.

        Args:
            records: Raw case dictionaries or CaseRecords.
            allow_create: Create judges for unmatched records.
            cancel_event: When set, records not yet started are skipped.
            max_workers: Worker threads (config default if None).
            show_progress: Show a tqdm progress bar.

        Returns:
            Run summary with per-outcome counts.
        """
        records = list(records)
        max_workers = max_workers or self.config.max_workers
        self.stats = Counter()

        def work(record):
            if cancel_event is not None and cancel_event.is_set():
                self._count("cancelled")
                return None
            return self.process_case(record, allow_create=allow_create)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(work, r) for r in records]
            for future in tqdm(
                as_completed(futures), total=len(futures), desc="Ingesting cases",
                disable=not show_progress,
            ):
                future.result()

        summary = self.summary(len(records))
        logger.info("Ingestion finished: %s", summary)
        return summary

    def resolve_ambiguous(self, case_id: str, judge_id: str) -> CaseOutcome:
        """
        Manually assign a parked ambiguous case to a judge.

        Args:
            case_id: Case waiting in the review queue.
            judge_id: Judge chosen by the reviewer.

        Returns:
            The tracker's outcome for the case.

        Raises:
            KeyError: If the case is not parked or the judge is unknown.
        """
        if self.registry.get_judge(judge_id) is None:
            raise KeyError(f"Unknown judge {judge_id}")
        pending = next(
            (p for p in self.registry.pending("ambiguous") if p.case.case_id == case_id), None
        )
        if pending is None:
            raise KeyError(f"No ambiguous case {case_id} awaiting review")

        case = pending.case
        identity = self.registry.normalizer.normalize(case.judge_name, case.jurisdiction)
        match = MatchResult(
            judge_id=judge_id,
            confidence=1.0,
            tier="manual",
            court_id=self.matcher.resolve_court(case, identity, None),
        )
        outcome = self.tracker.record_case(case, match)
        if isinstance(outcome, CaseLink):
            self.registry.resolve_review_for_case(case_id)
            if self.registry.add_name_variant(judge_id, case.judge_name):
                logger.info("Learned name %r for %s from review", case.judge_name, judge_id)
        logger.info("Resolved ambiguous case %s -> %s: %s", case_id, judge_id, type(outcome).__name__)
        return outcome

    # ==================== Analysis ====================

    def analyze_all(
        self,
        judge_ids: Optional[List[str]] = None,
        window: Optional[AnalysisWindow] = None,
        cancel_event: Optional[threading.Event] = None,
        only_stale: bool = True,
        max_workers: Optional[int] = None,
        show_progress: bool = True,
    ) -> List[BiasProfile]:
        """
        Compute profiles for many judges in parallel.

        Args:
            judge_ids: Judges to analyze (all when omitted).
            window: Analysis window.
            cancel_event: When set, judges not yet started are skipped.
            only_stale: Skip judges whose latest profile is current.
            max_workers: Worker threads (config default if None).
            show_progress: Show a tqdm progress bar.

        Returns:
            Profiles computed (or reused) in this batch.
        """
        judge_ids = judge_ids if judge_ids is not None else self.registry.judge_ids()
        judge_ids = [j for j in judge_ids if j not in self.halted_judges]
        analyze = self.analyzer.analyze_if_stale if only_stale else self.analyzer.analyze

        def work(judge_id):
            if cancel_event is not None and cancel_event.is_set():
                return None
            try:
                return analyze(judge_id, window)
            except StaleSnapshotError as e:
                logger.warning("%s", e)
                return None

        profiles = []
        with ThreadPoolExecutor(max_workers=max_workers or self.config.max_workers) as executor:
            futures = [executor.submit(work, j) for j in judge_ids]
            for future in tqdm(
                as_completed(futures), total=len(futures), desc="Analyzing judges",
                disable=not show_progress,
            ):
                profile = future.result()
                if profile is not None:
                    profiles.append(profile)

        logger.info("Analyzed %d of %d judges", len(profiles), len(judge_ids))
        return sorted(profiles, key=lambda p: p.judge_id)

    # ==================== Bookkeeping ====================

    def summary(self, total: Optional[int] = None) -> Dict[str, Any]:
        with self._stats_lock:
            counts = dict(self.stats)
        result: Dict[str, Any] = {"counts": counts, "halted_judges": dict(self.halted_judges)}
        if total is not None:
            result["total"] = total
        result["pending"] = len(self.registry.pending())
        result["open_reviews"] = len(self.registry.review_items())
        return result

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _halt(self, error: PositionGraphError) -> None:
        with self._stats_lock:
            self.halted_judges.setdefault(error.judge_id, str(error))
        logger.error("Halting judge %s: %s", error.judge_id, error)

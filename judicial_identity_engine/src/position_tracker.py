"""
Position History Tracker for the Judicial Identity Engine.

Maintains each judge's court assignments as a per-(judge, court) state
machine:

    no-position -> active -> ended
                      \\----> retired_inferred
    ended / retired_inferred -> active   (authoritative records only)

Every transition builds the judge's whole proposed position list, runs the
Assignment Validator against it, and commits it in one step under the
judge's lock. A rejected transition writes nothing; the violation is queued
for review instead.
"""

import logging
import threading
from dataclasses import replace
from datetime import date, timedelta
from typing import Optional, Dict, List, Tuple, Union

from .config import EngineConfig
from .errors import UpstreamDataError
from .models import (
    AppointmentRecord,
    CaseLink,
    CaseRecord,
    Court,
    MatchResult,
    PendingCase,
    Position,
    PositionStatus,
    Violation,
)
from .registry import Registry
from .validator import AssignmentValidator

logger = logging.getLogger(__name__)

CaseOutcome = Union[CaseLink, Violation, PendingCase]


class PositionHistoryTracker:
    """
    Applies case links, authoritative records and retirement inference to
    judges' position histories.
    """

    def __init__(
        self,
        registry: Registry,
        validator: Optional[AssignmentValidator] = None,
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the tracker.

        Args:
            registry: Store holding judges, courts and positions.
            validator: Assignment gate (built from the registry's hierarchy
                when omitted).
            config: Engine configuration (defaults to the registry's).
        """
        self.registry = registry
        self.validator = validator or AssignmentValidator(registry.hierarchy)
        self.config = config or registry.config

    # ==================== Case-driven Transitions ====================

    def record_case(self, case: CaseRecord, match: MatchResult) -> CaseOutcome:
        """
        Link a matched case to one of the judge's positions.

        Idempotent per ``case_id``: a case that is already linked returns its
        existing link and changes nothing.

        Args:
            case: The incoming case.
            match: Matcher result naming the judge (and usually the court).

        Returns:
            CaseLink on success, Violation if the implied position change is
            rejected, PendingCase if the case cannot be placed yet.
        """
        existing = self.registry.get_link(case.case_id)
        if existing is not None:
            return existing

        court = self.registry.get_court(match.court_id or case.court_id)
        if court is None:
            return self._defer(case, "unknown_court", match.judge_id)

        case_jurisdiction = (
            self.registry.normalizer.normalize_jurisdiction(case.jurisdiction)
            if case.jurisdiction else None
        )
        day = case.decided_on
        aggregate = self.registry.aggregate(match.judge_id)

        with aggregate.lock:
            existing = self.registry.get_link(case.case_id)
            if existing is not None:
                return existing

            self.validator.verify_integrity(match.judge_id, aggregate.positions)
            plan = [replace(p) for p in aggregate.positions]
            at_court = [p for p in plan if p.court_id == court.court_id]

            covering = sorted(
                (p for p in at_court if p.covers(day)), key=lambda p: not p.is_active
            )
            active = next((p for p in at_court if p.is_active), None)

            if covering:
                target = covering[0]
                target.last_activity = _later(target.last_activity, day)
                event = "case_linked"
            elif active is not None and active.start_date > day:
                if active.source != "case":
                    return self._defer(
                        replace(case, court_id=court.court_id), "before_start", match.judge_id
                    )
                target = active
                target.start_date = day
                target.last_activity = _later(target.last_activity, day)
                event = "start_extended"
            elif at_court:
                return self._defer(
                    replace(case, court_id=court.court_id), "position_closed", match.judge_id
                )
            else:
                target = Position(
                    position_id=self.registry.new_position_id(),
                    judge_id=match.judge_id,
                    court_id=court.court_id,
                    start_date=day,
                    status=PositionStatus.ACTIVE,
                    source="case",
                    last_activity=day,
                )
                plan.append(target)
                event = "position_created"

            with self.registry.court_lock(court.court_id):
                violations = self._validate(
                    target, plan, court, aggregate.judge.multi_court, case_jurisdiction
                )
                if violations:
                    return self._reject(violations[0], replace(case, court_id=court.court_id))

                link = CaseLink(
                    case_id=case.case_id,
                    judge_id=match.judge_id,
                    position_id=target.position_id,
                    court_id=court.court_id,
                    decided_on=day,
                    outcome=case.outcome,
                    case_type=case.case_type,
                    filed_on=case.filed_on,
                )
                if target.is_active:
                    self._clear_retirement(aggregate.judge)
                self.registry.commit_positions(
                    match.judge_id, plan, event, f"{case.case_id} -> {target.position_id}"
                )
                self.registry.add_link(link)

        logger.debug("Linked %s to %s (%s)", case.case_id, target.position_id, event)
        return link

    def retry_pending(self, judge_id: str) -> List[CaseOutcome]:
        """Re-run cases that were parked for a judge (e.g. after a reopening)."""
        results = []
        for pending in self.registry.pending():
            if pending.judge_id != judge_id:
                continue
            match = MatchResult(
                judge_id=judge_id, confidence=1.0, tier="pending", court_id=pending.case.court_id
            )
            outcome = self.record_case(pending.case, match)
            results.append(outcome)
        return results

    # ==================== Authoritative Transitions ====================

    def apply_appointment(self, record: AppointmentRecord) -> Union[List[Position], Violation]:
        """
        Apply an authoritative appointment, end or transfer record.

        Appointments open a position at the court. Any active position of the
        judge at a different court that started earlier is ended the day
        before (unless the judge is whitelisted multi-court). ``end`` and
        ``transfer`` records close the position at the court.

        Args:
            record: The authoritative record.

        Returns:
            Positions that changed (empty when the record was already
            applied), or the Violation that rejected it.

        Raises:
            UpstreamDataError: If the judge or court is unknown or the record
                is incomplete.
        """
        judge_id = record.judge_id or self.registry.judge_by_external_id(record.external_judge_id)
        if judge_id is None or self.registry.get_judge(judge_id) is None:
            raise UpstreamDataError(
                f"Unknown judge for {record.kind} record at {record.court_id}",
                record=vars(record),
            )
        court = self.registry.get_court(record.court_id)
        if court is None:
            raise UpstreamDataError(f"Unknown court {record.court_id}", record=vars(record))

        if record.kind == "appointment":
            return self._appoint(judge_id, court, record)
        if record.kind in ("end", "transfer"):
            return self._end(judge_id, court, record)
        raise UpstreamDataError(f"Unknown record kind {record.kind!r}", record=vars(record))

    def _appoint(
        self, judge_id: str, court: Court, record: AppointmentRecord
    ) -> Union[List[Position], Violation]:
        if record.start_date is None:
            raise UpstreamDataError("Appointment without start date", record=vars(record))
        if record.end_date and record.end_date < record.start_date:
            raise UpstreamDataError("Appointment ends before it starts", record=vars(record))

        aggregate = self.registry.aggregate(judge_id)
        multi_court = aggregate.judge.multi_court

        with aggregate.lock, self.registry.court_lock(court.court_id):
            self.validator.verify_integrity(judge_id, aggregate.positions)
            plan = [replace(p) for p in aggregate.positions]
            active = next(
                (p for p in plan if p.court_id == court.court_id and p.is_active), None
            )

            if active is not None and record.end_date is None:
                if active.start_date <= record.start_date:
                    return []
                active.start_date = record.start_date
                active.source = "authoritative"
                changed = [active]
                event = "start_corrected"
            else:
                position = Position(
                    position_id=self.registry.new_position_id(),
                    judge_id=judge_id,
                    court_id=court.court_id,
                    start_date=record.start_date,
                    end_date=record.end_date,
                    status=PositionStatus.ENDED if record.end_date else PositionStatus.ACTIVE,
                    source="authoritative",
                )
                if any(_same_interval(p, position) for p in plan):
                    return []
                plan.append(position)
                changed = [position]
                event = "appointed"

                if position.is_active and not multi_court:
                    changed.extend(self._supersede(plan, position))

            violations = []
            for target in changed:
                target_court = self.registry.get_court(target.court_id)
                violations = self._validate(target, plan, target_court, multi_court, None)
                if violations:
                    break
            if violations:
                return self._reject(violations[0], None)

            if any(p.is_active for p in changed):
                self._clear_retirement(aggregate.judge)
            self.registry.commit_positions(
                judge_id, plan, event,
                f"{court.court_id} from {record.start_date}"
                + (f" ({len(changed) - 1} superseded)" if len(changed) > 1 else ""),
            )
            self._release_uncovered_links(judge_id, plan)

        logger.info(
            "Applied appointment of %s at %s from %s", judge_id, court.court_id, record.start_date
        )
        return [replace(p) for p in changed]

    @staticmethod
    def _supersede(plan: List[Position], new: Position) -> List[Position]:
        """End active positions at other courts the day before ``new`` starts."""
        superseded = []
        for position in plan:
            if position is new or position.court_id == new.court_id or not position.is_active:
                continue
            if position.start_date < new.start_date:
                position.end_date = new.start_date - timedelta(days=1)
                position.status = PositionStatus.ENDED
                position.end_inferred = False
                superseded.append(position)
                logger.info(
                    "Superseded %s at %s on %s",
                    position.position_id, position.court_id, position.end_date,
                )
        return superseded

    def _end(
        self, judge_id: str, court: Court, record: AppointmentRecord
    ) -> Union[List[Position], Violation]:
        end_date = record.end_date or record.start_date
        if end_date is None:
            raise UpstreamDataError(f"{record.kind} record without a date", record=vars(record))

        aggregate = self.registry.aggregate(judge_id)
        with aggregate.lock:
            self.validator.verify_integrity(judge_id, aggregate.positions)
            plan = [replace(p) for p in aggregate.positions]
            at_court = sorted(
                (p for p in plan if p.court_id == court.court_id),
                key=lambda p: p.start_date,
            )
            target = next((p for p in at_court if p.is_active), None)
            if target is None:
                if any(p.end_date == end_date and not p.end_inferred for p in at_court):
                    return []
                target = next(
                    (p for p in reversed(at_court)
                     if p.status == PositionStatus.RETIRED_INFERRED), None
                )
            if target is None:
                raise UpstreamDataError(
                    f"No open position of {judge_id} at {court.court_id} to end",
                    record=vars(record),
                )
            if end_date < target.start_date:
                raise UpstreamDataError(
                    f"{record.kind} date {end_date} precedes start {target.start_date}",
                    record=vars(record),
                )

            target.end_date = end_date
            target.status = PositionStatus.ENDED
            target.end_inferred = False

            violations = self._validate(target, plan, court, aggregate.judge.multi_court, None)
            if violations:
                return self._reject(violations[0], None)

            self._update_retired_flag(aggregate.judge, plan)
            self.registry.commit_positions(
                judge_id, plan, record.kind, f"{target.position_id} ended {end_date}"
            )
            self._release_uncovered_links(judge_id, plan)

        logger.info("Ended %s at %s on %s (%s)", judge_id, court.court_id, end_date, record.kind)
        return [replace(target)]

    def apply_retirement_override(
        self,
        judge_id: str,
        position_id: str,
        retired: bool,
        end_date: Optional[date] = None,
    ) -> Union[Position, Violation]:
        """
        Authoritatively confirm or clear a retirement.

        Args:
            judge_id: Judge whose position is corrected.
            position_id: Position to correct.
            retired: True confirms the retirement (optionally with a corrected
                end date); False clears an inferred retirement and reactivates
                the position.
            end_date: Authoritative end date when confirming.

        Returns:
            The corrected Position, or the Violation that rejected it.
        """
        aggregate = self.registry.aggregate(judge_id)
        with aggregate.lock:
            self.validator.verify_integrity(judge_id, aggregate.positions)
            plan = [replace(p) for p in aggregate.positions]
            target = next((p for p in plan if p.position_id == position_id), None)
            if target is None:
                raise KeyError(f"{judge_id} has no position {position_id}")
            court = self.registry.get_court(target.court_id)

            with self.registry.court_lock(target.court_id):
                if retired:
                    target.end_date = end_date or target.end_date or target.last_activity or date.today()
                    target.status = PositionStatus.ENDED
                    target.end_inferred = False
                    detail = f"{position_id} retirement confirmed {target.end_date}"
                else:
                    if target.status != PositionStatus.RETIRED_INFERRED:
                        raise ValueError(f"{position_id} is not an inferred retirement")
                    target.end_date = None
                    target.status = PositionStatus.ACTIVE
                    target.end_inferred = False
                    detail = f"{position_id} inferred retirement cleared"

                violations = self._validate(target, plan, court, aggregate.judge.multi_court, None)
                if violations:
                    return self._reject(violations[0], None)

                if retired:
                    self._update_retired_flag(aggregate.judge, plan, inferred=False)
                else:
                    self._clear_retirement(aggregate.judge)
                self.registry.commit_positions(judge_id, plan, "retirement_override", detail)
                self._release_uncovered_links(judge_id, plan)

        logger.info("Retirement override for %s: %s", judge_id, detail)
        return replace(target)

    # ==================== Retirement Sweep ====================

    def last_activity_index(self) -> List[Tuple[date, str, str]]:
        """``(last_activity, judge_id, position_id)`` for every active position, oldest first."""
        index = []
        for judge_id in self.registry.judge_ids():
            _, positions = self.registry.snapshot(judge_id)
            for p in positions:
                if p.is_active:
                    index.append((p.last_activity or p.start_date, judge_id, p.position_id))
        return sorted(index)

    def sweep_retirements(
        self, as_of: Optional[date] = None, cancel_event: Optional[threading.Event] = None
    ) -> List[Position]:
        """
        Mark long-inactive positions as retired-inferred.

        A position is retired when it is active, its last activity is older
        than the inactivity horizon, and the judge has no later position.
        The inferred end date is the last activity.

        Args:
            as_of: Reference date (defaults to today).
            cancel_event: Stops the sweep between judges when set.

        Returns:
            Positions that were retired.
        """
        as_of = as_of or date.today()
        cutoff = as_of - timedelta(days=self.config.inactivity_horizon_days)

        stale: Dict[str, List[str]] = {}
        for last_activity, judge_id, position_id in self.last_activity_index():
            if last_activity >= cutoff:
                break
            stale.setdefault(judge_id, []).append(position_id)

        retired: List[Position] = []
        for judge_id, position_ids in stale.items():
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Retirement sweep cancelled after %d positions", len(retired))
                break
            retired.extend(self._retire(judge_id, position_ids, cutoff))

        logger.info("Retirement sweep as of %s: %d positions retired", as_of, len(retired))
        return retired

    def _retire(self, judge_id: str, position_ids: List[str], cutoff: date) -> List[Position]:
        aggregate = self.registry.aggregate(judge_id)
        with aggregate.lock:
            self.validator.verify_integrity(judge_id, aggregate.positions)
            plan = [replace(p) for p in aggregate.positions]
            changed = []
            for position in plan:
                if position.position_id not in position_ids or not position.is_active:
                    continue
                last_activity = position.last_activity or position.start_date
                # activity may have arrived since the index was read
                if last_activity >= cutoff:
                    continue
                if any(p.start_date > position.start_date for p in plan if p is not position):
                    continue
                position.status = PositionStatus.RETIRED_INFERRED
                position.end_date = max(last_activity, position.start_date)
                position.end_inferred = True
                changed.append(position)

            if not changed:
                return []
            self._update_retired_flag(aggregate.judge, plan, inferred=True)
            self.registry.commit_positions(
                judge_id, plan, "retired_inferred",
                ", ".join(f"{p.position_id} ended {p.end_date}" for p in changed),
            )
        return [replace(p) for p in changed]

    # ==================== Helpers ====================

    def _validate(
        self,
        target: Position,
        plan: List[Position],
        court: Court,
        multi_court: bool,
        case_jurisdiction: Optional[str],
    ) -> List[Violation]:
        return self.validator.validate(
            proposed=target,
            existing=plan,
            court=court,
            seats=self.registry.court_seats(court),
            other_active_at_court=self.registry.active_positions_at_court(
                court.court_id, exclude_judge=target.judge_id
            ),
            case_jurisdiction=case_jurisdiction,
            multi_court=multi_court,
        )

    def _reject(self, violation: Violation, case: Optional[CaseRecord]) -> Violation:
        self.registry.enqueue_review(
            "violation",
            case_id=case.case_id if case else None,
            judge_id=violation.judge_id,
            violation=violation,
            detail=violation.message,
        )
        if case is not None:
            # rejected cases stay retryable once the conflicting record is corrected
            self.registry.add_pending(
                PendingCase(case=case, reason="violation", judge_id=violation.judge_id)
            )
        return violation

    def _release_uncovered_links(self, judge_id: str, plan: List[Position]) -> List[PendingCase]:
        """
        Park linked cases whose position no longer covers their decision date.

        Runs after an authoritative record shortened a position. The released
        cases keep their court and drop their jurisdiction so a retry is only
        checked against the judge's corrected history.
        """
        by_id = {p.position_id: p for p in plan}
        judge = self.registry.get_judge(judge_id)
        released = []
        for link in self.registry.links_for_judge(judge_id):
            position = by_id.get(link.position_id)
            if position is not None and position.covers(link.decided_on):
                continue
            case = CaseRecord(
                case_id=link.case_id,
                judge_name=judge.canonical_name,
                jurisdiction="",
                decided_on=link.decided_on,
                outcome=link.outcome,
                case_type=link.case_type,
                court_id=link.court_id,
                filed_on=link.filed_on,
            )
            pending = PendingCase(case=case, reason="position_closed", judge_id=judge_id)
            self.registry.detach_link(link.case_id, pending)
            released.append(pending)
            logger.warning(
                "Unlinked %s from %s: %s no longer covers %s",
                link.case_id, judge_id, link.position_id, link.decided_on,
            )
        return released

    def _defer(self, case: CaseRecord, reason: str, judge_id: Optional[str]) -> PendingCase:
        pending = PendingCase(case=case, reason=reason, judge_id=judge_id)
        self.registry.add_pending(pending)
        logger.info("Deferred %s (%s)", case.case_id, reason)
        return pending

    @staticmethod
    def _clear_retirement(judge) -> None:
        judge.retired = False
        judge.retirement_inferred_date = None

    @staticmethod
    def _update_retired_flag(judge, plan: List[Position], inferred: bool = False) -> None:
        if any(p.is_active for p in plan):
            return
        judge.retired = True
        if inferred:
            ends = [p.end_date for p in plan if p.end_inferred and p.end_date]
            judge.retirement_inferred_date = max(ends) if ends else None
        else:
            judge.retirement_inferred_date = None


def _later(current: Optional[date], day: date) -> date:
    return day if current is None or day > current else current


def _same_interval(a: Position, b: Position) -> bool:
    return (
        a.court_id == b.court_id
        and a.start_date == b.start_date
        and a.end_date == b.end_date
    )

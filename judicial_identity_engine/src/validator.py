"""
Assignment Validator for the Judicial Identity Engine.

Pure gate run before any position change is committed. Checks, in order:

1. Seats: one active position per (judge, court) and no more active judges
   at a court than it has seats.
2. Jurisdiction containment: the court and the case's jurisdiction must lie
   on a single root-to-leaf branch of the hierarchy.
3. Temporal overlap: a judge's intervals must not overlap, except at
   different courts for whitelisted multi-court judges.

The first failing check decides the result.
"""

import logging
from collections import Counter
from typing import Optional, List, Sequence

from .errors import PositionGraphError, ViolationKind
from .jurisdiction import JurisdictionHierarchy
from .models import Court, Position, Violation, UNRESOLVED

logger = logging.getLogger(__name__)


class AssignmentValidator:
    """Validates proposed positions against a judge's consistent state."""

    def __init__(self, hierarchy: JurisdictionHierarchy):
        self.hierarchy = hierarchy

    def validate(
        self,
        proposed: Position,
        existing: Sequence[Position],
        court: Court,
        seats: int = 1,
        other_active_at_court: Sequence[Position] = (),
        case_jurisdiction: Optional[str] = None,
        multi_court: bool = False,
    ) -> List[Violation]:
        """
        Validate one proposed position.

        Args:
            proposed: The new or changed position.
            existing: The judge's other positions as they would stand after
                the change.
            court: Court of the proposed position.
            seats: Concurrently active judges allowed at the court.
            other_active_at_court: Active positions of other judges at the court.
            case_jurisdiction: Jurisdiction key of the triggering case, if any.
            multi_court: Whether the judge is whitelisted for multiple courts.

        Returns:
            Violations of the first failing check (empty if valid).
        """
        others = [p for p in existing if p.position_id != proposed.position_id]

        for check in (
            lambda: self._check_seats(proposed, others, court, seats, other_active_at_court),
            lambda: self._check_jurisdiction(proposed, court, case_jurisdiction),
            lambda: self._check_overlap(proposed, others, multi_court),
        ):
            violations = check()
            if violations:
                for violation in violations:
                    logger.info("Rejected %s: %s", proposed.position_id, violation.message)
                return violations
        return []

    # ==================== Checks ====================

    @staticmethod
    def _check_seats(
        proposed: Position,
        others: Sequence[Position],
        court: Court,
        seats: int,
        other_active_at_court: Sequence[Position],
    ) -> List[Violation]:
        if not proposed.is_active:
            return []

        duplicates = [p for p in others if p.court_id == proposed.court_id and p.is_active]
        if duplicates:
            return [Violation(
                kind=ViolationKind.SEAT_CONFLICT,
                judge_id=proposed.judge_id,
                position_ids=tuple([proposed.position_id] + [p.position_id for p in duplicates]),
                message=f"{proposed.judge_id} already holds an active position at {court.court_id}",
            )]

        occupants = [p for p in other_active_at_court if p.judge_id != proposed.judge_id]
        if len(occupants) + 1 > seats:
            return [Violation(
                kind=ViolationKind.SEAT_CONFLICT,
                judge_id=proposed.judge_id,
                position_ids=tuple([proposed.position_id] + [p.position_id for p in occupants]),
                message=(
                    f"{court.court_id} has {seats} seat(s) and {len(occupants)} active "
                    f"judge(s) already"
                ),
            )]
        return []

    def _check_jurisdiction(
        self, proposed: Position, court: Court, case_jurisdiction: Optional[str]
    ) -> List[Violation]:
        if case_jurisdiction is None:
            return []
        if case_jurisdiction != UNRESOLVED and self.hierarchy.same_branch(
            court.jurisdiction, case_jurisdiction
        ):
            return []
        return [Violation(
            kind=ViolationKind.JURISDICTION,
            judge_id=proposed.judge_id,
            position_ids=(proposed.position_id,),
            message=(
                f"Court {court.court_id} ({court.jurisdiction}) is not reachable from "
                f"case jurisdiction {case_jurisdiction}"
            ),
        )]

    @staticmethod
    def _check_overlap(
        proposed: Position, others: Sequence[Position], multi_court: bool
    ) -> List[Violation]:
        violations = []
        for other in others:
            if other.court_id != proposed.court_id and multi_court:
                continue
            if proposed.overlaps(other):
                violations.append(Violation(
                    kind=ViolationKind.OVERLAP,
                    judge_id=proposed.judge_id,
                    position_ids=(proposed.position_id, other.position_id),
                    message=(
                        f"{proposed.court_id} {proposed.start_date}..{proposed.end_date or 'open'} "
                        f"overlaps {other.court_id} {other.start_date}..{other.end_date or 'open'}"
                    ),
                ))
        return violations

    # ==================== Integrity ====================

    @staticmethod
    def verify_integrity(judge_id: str, positions: Sequence[Position]) -> None:
        """
        Check a stored position list for internal corruption.

        Raises:
            PositionGraphError: On duplicate ids, foreign positions, inverted
                intervals, open ended positions, or two active positions at
                one court.
        """
        ids = Counter(p.position_id for p in positions)
        duplicated = [pid for pid, n in ids.items() if n > 1]
        if duplicated:
            raise PositionGraphError(judge_id, f"duplicate position ids {duplicated}")

        active_courts = Counter(p.court_id for p in positions if p.is_active)
        for position in positions:
            if position.judge_id != judge_id:
                raise PositionGraphError(
                    judge_id, f"{position.position_id} belongs to {position.judge_id}"
                )
            if position.end_date and position.end_date < position.start_date:
                raise PositionGraphError(
                    judge_id, f"{position.position_id} ends before it starts"
                )
            if not position.is_active and position.end_date is None:
                raise PositionGraphError(
                    judge_id, f"{position.position_id} is closed without an end date"
                )
            if active_courts[position.court_id] > 1:
                raise PositionGraphError(
                    judge_id, f"several active positions at {position.court_id}"
                )

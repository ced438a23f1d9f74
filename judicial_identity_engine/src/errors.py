"""
Error taxonomy for the Judicial Identity Engine.

Uncertain input is not an error: ambiguous and unmatched records are
returned as result objects (see ``models``). Exceptions here cover malformed
upstream data and genuine internal defects.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ViolationKind(str, Enum):
    """Kinds of Assignment Validator rejections."""

    OVERLAP = "overlap"
    JURISDICTION = "jurisdiction"
    SEAT_CONFLICT = "seat_conflict"


class EngineError(Exception):
    """Base class for engine errors."""


class UpstreamDataError(EngineError):
    """A raw external record is malformed or missing required fields."""

    def __init__(self, message: str, record: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.record = record or {}


class PositionGraphError(EngineError):
    """
    The stored Position graph of a judge violates its own invariants.

    This is a defect, not an input problem. Processing of the affected judge
    must stop rather than write further state.
    """

    def __init__(self, judge_id: str, message: str):
        super().__init__(f"{judge_id}: {message}")
        self.judge_id = judge_id


class StaleSnapshotError(EngineError):
    """A judge's positions kept changing while an analysis was reading them."""

    def __init__(self, judge_id: str, attempts: int):
        super().__init__(
            f"Snapshot for {judge_id} changed during {attempts} consecutive reads"
        )
        self.judge_id = judge_id
        self.attempts = attempts

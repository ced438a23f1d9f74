"""
Read API for the Judicial Identity Engine.

Read-only views over the registry as pandas DataFrames. Profiles whose
sample is insufficient are never returned by ``published_profiles``; their
history stays available for audit through ``profile_history``.
"""

import logging
from typing import Optional

import pandas as pd

from .analysis import profiles_frame
from .registry import Registry

logger = logging.getLogger(__name__)


class ReadAPI:
    """Tabular read model consumed by reports, dashboards and services."""

    ROSTER_COLUMNS = [
        "judge_id", "canonical_name", "external_id", "retired",
        "retirement_inferred_date", "multi_court", "active_courts",
        "positions", "cases", "latest_status",
    ]
    POSITION_COLUMNS = [
        "position_id", "judge_id", "court_id", "court_name", "start_date",
        "end_date", "status", "end_inferred", "source", "last_activity",
    ]

    def __init__(self, registry: Registry):
        self.registry = registry

    def roster(self, include_retired: bool = True) -> pd.DataFrame:
        """
        One row per judge with current courts and case counts.

        Args:
            include_retired: Include judges flagged retired.

        Returns:
            DataFrame sorted by canonical name.
        """
        case_counts = pd.Series(
            [l.judge_id for l in self.registry.all_links()], dtype=object
        ).value_counts()

        rows = []
        for judge in self.registry.judges():
            if judge.retired and not include_retired:
                continue
            _, positions = self.registry.snapshot(judge.judge_id)
            latest = self.registry.latest_profile(judge.judge_id)
            rows.append(
                {
                    "judge_id": judge.judge_id,
                    "canonical_name": judge.canonical_name,
                    "external_id": judge.external_id,
                    "retired": judge.retired,
                    "retirement_inferred_date": judge.retirement_inferred_date,
                    "multi_court": judge.multi_court,
                    "active_courts": ", ".join(sorted(p.court_id for p in positions if p.is_active)),
                    "positions": len(positions),
                    "cases": int(case_counts.get(judge.judge_id, 0)),
                    "latest_status": latest.status if latest else None,
                }
            )
        df = pd.DataFrame(rows, columns=self.ROSTER_COLUMNS)
        return df.sort_values(["canonical_name", "judge_id"]).reset_index(drop=True)

    def position_history(self, judge_id: str) -> pd.DataFrame:
        """
        A judge's positions in start-date order.

        Raises:
            KeyError: If the judge is unknown.
        """
        if self.registry.get_judge(judge_id) is None:
            raise KeyError(f"Unknown judge {judge_id}")
        _, positions = self.registry.snapshot(judge_id)

        rows = []
        for p in positions:
            court = self.registry.get_court(p.court_id)
            rows.append({**p.to_dict(), "court_name": court.name if court else None})
        df = pd.DataFrame(rows, columns=self.POSITION_COLUMNS)
        return df.sort_values(["start_date", "position_id"]).reset_index(drop=True)

    def published_profiles(self) -> pd.DataFrame:
        """Latest profile version of every judge whose sample is publishable."""
        published = [p for p in self.registry.all_latest_profiles() if p.is_publishable]
        df = profiles_frame(published)
        return df.sort_values("judge_id").reset_index(drop=True)

    def profile(self, judge_id: str) -> Optional[dict]:
        """Latest publishable profile of a judge as a dictionary, else None."""
        latest = self.registry.latest_profile(judge_id)
        if latest is None or not latest.is_publishable:
            return None
        return latest.to_dict()

    def profile_history(self, judge_id: str) -> pd.DataFrame:
        """Every stored profile version of a judge, oldest first."""
        return profiles_frame(self.registry.profile_history(judge_id))

    def review_queue(self, include_resolved: bool = False) -> pd.DataFrame:
        """Open ambiguities and validator rejections, oldest first."""
        items = [i.to_dict() for i in self.registry.review_items(include_resolved)]
        columns = [
            "item_id", "kind", "case_id", "judge_id", "candidates", "violation_kind",
            "position_ids", "detail", "created_at", "resolved",
        ]
        return pd.DataFrame(items, columns=columns).sort_values("item_id").reset_index(drop=True)

    def pending_cases(self, reason: Optional[str] = None) -> pd.DataFrame:
        """Cases waiting for more information, optionally filtered by reason."""
        rows = [
            {
                "case_id": p.case.case_id,
                "judge_name": p.case.judge_name,
                "jurisdiction": p.case.jurisdiction,
                "court_id": p.case.court_id,
                "decided_on": p.case.decided_on,
                "reason": p.reason,
                "judge_id": p.judge_id,
            }
            for p in self.registry.pending(reason)
        ]
        columns = ["case_id", "judge_name", "jurisdiction", "court_id", "decided_on", "reason", "judge_id"]
        return pd.DataFrame(rows, columns=columns).sort_values("case_id").reset_index(drop=True)

    def events(self, judge_id: str) -> pd.DataFrame:
        """A judge's transition log."""
        return pd.DataFrame(self.registry.events(judge_id), columns=["judge_id", "at", "kind", "detail"])

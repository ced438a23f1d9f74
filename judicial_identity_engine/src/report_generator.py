"""
Report Generator Module for the Judicial Identity Engine.

Generates Markdown reports from the read model: the judge roster, per-judge
position and outcome-pattern profiles, the manual-review queue, and the
methodology document. Profiles with an insufficient sample are reported as
"insufficient data", never with scores.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List

import pandas as pd

from .config import EngineConfig
from .read_api import ReadAPI

logger = logging.getLogger(__name__)

DISCLAIMER = (
    "*Outcome patterns are statistical descriptions of resolved cases compared "
    "with a jurisdiction baseline. They do not constitute legal conclusions or "
    "accusations and should be verified against primary sources.*"
)


def _sanitize_for_filename(text: str) -> str:
    """
    Sanitize text for use in filenames to prevent path traversal.

    Args:
        text: Input text to sanitize.

    Returns:
        Sanitized text safe for use in filenames.
    """
    if not text:
        return "unknown"
    text = text.replace("/", "_").replace("\\", "_").replace("..", "_")
    text = re.sub(r"[^a-zA-Z0-9_-]", "_", text)
    text = text.lstrip(". ")
    text = re.sub(r"_+", "_", text)
    return text[:255] if text else "unknown"


def _fmt(value, spec: str = "", default: str = "n/a") -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    return format(value, spec)


class ReportGenerator:
    """
    Generates publication-ready Markdown reports.

    Report types:
    - Judge roster
    - Individual judge profile (positions + latest published profile)
    - Manual-review queue
    - Methodology documentation
    """

    def __init__(
        self,
        read_api: ReadAPI,
        output_dir: str = "output/reports",
        config: Optional[EngineConfig] = None,
    ):
        """
        Initialize the report generator.

        Args:
            read_api: Read model to report from.
            output_dir: Directory to write report files.
            config: Engine configuration (thresholds quoted in reports).
        """
        self.api = read_api
        self.config = config or read_api.registry.config
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _header(self, title: str) -> List[str]:
        return [
            f"# {title}",
            "",
            f"**Generated**: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}",
            "",
            "---",
            "",
        ]

    def _write(self, filename: str, lines: List[str]) -> str:
        report = "\n".join(lines)
        filepath = self.output_dir / filename
        with open(filepath, "w") as f:
            f.write(report)
        logger.info("Saved report to %s", filepath)
        return report

    # ==================== Roster ====================

    def generate_roster_report(self) -> str:
        """
        Generate the judge roster report.

        Returns:
            Markdown-formatted report string.
        """
        roster = self.api.roster()
        published = self.api.published_profiles()
        lines = self._header("Judge Roster")

        lines.extend([
            "## Overview",
            "",
            f"- **Judges**: {len(roster)}",
            f"- **Retired**: {int(roster['retired'].sum()) if len(roster) else 0}",
            f"- **Published Profiles**: {len(published)}",
            "",
        ])

        if len(published):
            status_counts = published["status"].value_counts()
            lines.append("| Profile Status | Count | Percentage |")
            lines.append("|----------------|-------|------------|")
            for status, count in status_counts.items():
                lines.append(f"| {status} | {count} | {count / len(published) * 100:.1f}% |")
            lines.append("")

        lines.extend([
            "## Judges",
            "",
            "| Judge | Name | Active Courts | Cases | Retired | Profile |",
            "|-------|------|---------------|-------|---------|---------|",
        ])
        for _, row in roster.iterrows():
            lines.append(
                f"| {row['judge_id']} | {row['canonical_name']} | {row['active_courts'] or '-'} | "
                f"{row['cases']} | {'Yes' if row['retired'] else 'No'} | "
                f"{row['latest_status'] or '-'} |"
            )
        lines.extend(["", "---", "", DISCLAIMER])

        return self._write("roster.md", lines)

    # ==================== Judge Profile ====================

    def generate_judge_report(self, judge_id: str) -> str:
        """
        Generate an individual judge profile report.

        Args:
            judge_id: Judge to report on.

        Returns:
            Markdown-formatted report string.
        """
        judge = self.api.registry.get_judge(judge_id)
        if judge is None:
            raise KeyError(f"Unknown judge {judge_id}")
        history = self.api.position_history(judge_id)
        profile = self.api.profile(judge_id)
        latest = self.api.registry.latest_profile(judge_id)

        lines = self._header(f"Judge Profile: {judge.canonical_name}")
        lines.extend([
            "## Basic Information",
            "",
            f"- **Judge ID**: {judge.judge_id}",
            f"- **External ID**: {judge.external_id or 'none'}",
            f"- **Known Names**: {', '.join(sorted(judge.name_variants)) or 'none'}",
            f"- **Retired**: {'Yes' if judge.retired else 'No'}",
        ])
        if judge.retirement_inferred_date:
            lines.append(f"- **Inferred Retirement**: {judge.retirement_inferred_date}")
        lines.append("")

        lines.extend([
            "## Position History",
            "",
            "| Court | Start | End | Status | Source |",
            "|-------|-------|-----|--------|--------|",
        ])
        for _, row in history.iterrows():
            end = row["end_date"] or "present"
            if row["end_inferred"]:
                end = f"{end} (inferred)"
            lines.append(
                f"| {row['court_name'] or row['court_id']} | {row['start_date']} | {end} | "
                f"{row['status']} | {row['source']} |"
            )
        lines.append("")

        lines.extend(["## Outcome Pattern", ""])
        if profile is None:
            sample = latest.sample_size if latest else 0
            lines.extend([
                f"Insufficient data: {sample} resolved cases, "
                f"{self.config.min_cases} required before a profile is published.",
                "",
            ])
        else:
            low, high = profile["confidence_interval"] or (None, None)
            lines.extend([
                f"- **Status**: {profile['status']}",
                f"- **Window**: {profile['window']}",
                f"- **Cases**: {profile['sample_size']} ({profile['sample_flag']})",
                f"- **Pattern Score**: {_fmt(profile['pattern_score'], '.1f')}",
                f"- **Confidence Interval**: {_fmt(low, '.1f')} to {_fmt(high, '.1f')}",
                f"- **Adjusted p-value**: {_fmt(profile['p_value'], '.4f')}",
                f"- **Baseline**: {profile['baseline_size']} cases in {profile['baseline_scope'] or 'n/a'}",
                f"- **Confidence**: {profile['confidence_percentage']}%",
                f"- **Version**: {profile['version']}",
                "",
                "| Outcome | Cases |",
                "|---------|-------|",
            ])
            for category, count in profile["outcome_counts"].items():
                lines.append(f"| {category} | {count} |")
            lines.append("")

            if profile["category_tests"]:
                lines.extend([
                    "### Category Tests",
                    "",
                    "| Outcome | Judge Rate | Baseline Rate | z | Adjusted p |",
                    "|---------|------------|---------------|---|------------|",
                ])
                for test in profile["category_tests"]:
                    lines.append(
                        f"| {test['category']} | {test['judge_rate']:.1%} | "
                        f"{test['baseline_rate']:.1%} | {test['z']:.2f} | "
                        f"{test['adjusted_p_value']:.4f} |"
                    )
                lines.append("")

            indicators = profile.get("indicators") or {}
            if indicators:
                lines.extend(["### Indicators", ""])
                for key, value in indicators.items():
                    lines.append(f"- **{key.replace('_', ' ').title()}**: {_fmt(value)}")
                lines.append("")

        lines.extend(["---", "", DISCLAIMER])
        return self._write(f"judge_{_sanitize_for_filename(judge_id)}.md", lines)

    def generate_batch_reports(self, judge_ids: Optional[List[str]] = None) -> List[str]:
        """
        Generate reports for many judges.

        Args:
            judge_ids: Judges to report on (all when omitted).

        Returns:
            List of generated report file paths.
        """
        judge_ids = judge_ids if judge_ids is not None else self.api.registry.judge_ids()
        filepaths = []
        for judge_id in judge_ids:
            self.generate_judge_report(judge_id)
            filepaths.append(str(self.output_dir / f"judge_{_sanitize_for_filename(judge_id)}.md"))
        logger.info("Generated %d judge reports", len(filepaths))
        return filepaths

    # ==================== Review Queue ====================

    def generate_review_report(self) -> str:
        """
        Generate the manual-review queue report.

        Returns:
            Markdown-formatted report string.
        """
        queue = self.api.review_queue()
        pending = self.api.pending_cases()
        lines = self._header("Manual Review Queue")

        lines.extend([
            f"- **Open Items**: {len(queue)}",
            f"- **Pending Cases**: {len(pending)}",
            "",
        ])
        if len(queue):
            lines.extend([
                "| Item | Kind | Case | Judge / Candidates | Detail |",
                "|------|------|------|--------------------|--------|",
            ])
            for _, row in queue.iterrows():
                who = row["judge_id"] or ", ".join(row["candidates"]) or "-"
                lines.append(
                    f"| {row['item_id']} | {row['violation_kind'] or row['kind']} | "
                    f"{row['case_id'] or '-'} | {who} | {row['detail']} |"
                )
            lines.append("")

        if len(pending):
            lines.extend(["## Pending Cases by Reason", ""])
            for reason, count in pending["reason"].value_counts().items():
                lines.append(f"- **{reason}**: {count}")
            lines.append("")

        return self._write("review_queue.md", lines)

    # ==================== Methodology ====================

    def generate_methodology_doc(self) -> str:
        """
        Generate methodology documentation with the active thresholds.

        Returns:
            Markdown methodology document.
        """
        c = self.config
        doc = f"""# Methodology: Judicial Identity Engine

## Identity Resolution

Judge names are normalized (titles, suffixes and middle initials removed,
"Last, First" reordered) and jurisdictions mapped onto a court hierarchy.
Cases are matched to judges through ordered tiers:

1. Exact name at a court of the case's jurisdiction
2. Exact name within the enclosing jurisdiction
3. Phonetic blocking with fuzzy similarity of at least {c.fuzzy_min_similarity:g},
   winning by {c.ambiguity_margin:g} points over the runner-up
4. External identifier already bound to a judge

Ambiguous matches are never resolved automatically; they wait in the review
queue for a human decision.

## Position History

Each judge's court assignments form a timeline that may not overlap (except
for judges explicitly marked as sitting on several courts) and may not
exceed a court's seat count. Authoritative appointments end an earlier
position at another court on the day before the new start. A position with
no activity for {c.inactivity_horizon_days} days is marked as an inferred
retirement, which only an authoritative record reverses.

## Outcome Patterns

- Outcomes are grouped into categories (judgment for plaintiff, judgment for
  defendant, dismissal with prejudice, settlement, dismissal, judgment, other).
- The **pattern score** (0-100) is the case-weighted total-variation distance
  between the judge's outcome distribution and the baseline of other judges'
  cases in the same jurisdiction, per case type.
- The baseline widens to enclosing jurisdictions until it holds at least
  {c.min_baseline_cases} cases.
- **Significance**: two-proportion z-test per outcome category,
  Bonferroni-adjusted, alpha {c.alpha:g}.
- **Confidence interval**: percentile bootstrap ({c.bootstrap_iterations} resamples).

## Sample-Size Gating

No profile is published below {c.min_cases} resolved cases. At or above that
size the profile is *sufficient* when the 95% interval half-width of an
outcome proportion is within {c.desired_half_width:.1%}, otherwise *borderline*.

## Limitations

1. Provider data is noisy; identity resolution can be wrong despite review
2. Outcome differences may reflect case mix not captured by case type
3. Retirement dates inferred from inactivity are approximate

## References

- CourtListener API Documentation: https://www.courtlistener.com/api/rest-info/
"""
        filepath = self.output_dir / "methodology.md"
        with open(filepath, "w") as f:
            f.write(doc)
        logger.info("Saved methodology documentation to %s", filepath)

        return doc

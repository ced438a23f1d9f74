"""
Visualization Module for the Judicial Identity Engine.

Static matplotlib/seaborn figures for position timelines and outcome-pattern
profiles. Only published (non-insufficient) profiles are plotted.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Any

import matplotlib.dates as mdates
import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .analysis import OUTCOME_CATEGORIES
from .read_api import ReadAPI

logger = logging.getLogger(__name__)


class JudicialVisualizer:
    """
    Creates visualizations for identity and outcome-pattern results.

    Supports:
    - Position timelines per judge
    - Outcome distribution vs. baseline
    - Pattern scores with confidence intervals
    - Sample-size distribution against the publication threshold
    """

    STATUS_COLORS = {
        "active": "#4CAF50",
        "ended": "#607D8B",
        "retired_inferred": "#FF9800",
    }

    SIGNIFICANCE_COLORS = {True: "#D32F2F", False: "#1976D2"}

    def __init__(self, figsize: Tuple[int, int] = (12, 8)):
        """
        Initialize the visualizer.

        Args:
            figsize: Default figure size for matplotlib plots.
        """
        self.figsize = figsize

    def _save(self, fig: plt.Figure, save_path: Optional[str]) -> None:
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches="tight")
            logger.info("Saved figure to %s", save_path)

    # ==================== Positions ====================

    def plot_position_timeline(
        self,
        history_df: pd.DataFrame,
        title: str = "Position History",
        as_of: Optional[date] = None,
        save_path: Optional[str] = None,
    ) -> plt.Figure:
        """
        Plot a judge's positions as horizontal bars, one row per court.

        Args:
            history_df: DataFrame from ``ReadAPI.position_history``.
            title: Plot title.
            as_of: End drawn for open positions (defaults to today).
            save_path: Optional path to save figure.

        Returns:
            Matplotlib figure.
        """
        as_of = as_of or date.today()
        fig, ax = plt.subplots(figsize=(self.figsize[0], max(2, 0.8 * history_df["court_id"].nunique() + 1.5)))

        courts = list(dict.fromkeys(history_df["court_id"]))
        for _, row in history_df.iterrows():
            start = mdates.date2num(row["start_date"])
            end = mdates.date2num(row["end_date"] or as_of)
            ax.barh(
                courts.index(row["court_id"]),
                max(end - start, 1),
                left=start,
                color=self.STATUS_COLORS.get(row["status"], "#9E9E9E"),
                hatch="//" if row["end_inferred"] else None,
                edgecolor="black",
                alpha=0.85,
            )

        ax.set_yticks(range(len(courts)))
        ax.set_yticklabels(courts)
        ax.xaxis_date()
        ax.set_xlabel("Date")
        ax.set_title(title)
        handles = [mpatches.Patch(color=c, label=s) for s, c in self.STATUS_COLORS.items()]
        ax.legend(handles=handles, loc="lower right")
        plt.tight_layout()

        self._save(fig, save_path)
        return fig

    # ==================== Profiles ====================

    def plot_outcome_distribution(
        self,
        profile: Dict[str, Any],
        title: Optional[str] = None,
        save_path: Optional[str] = None,
    ) -> plt.Figure:
        """
        Plot a judge's outcome shares next to the baseline rates.

        Args:
            profile: Published profile dictionary (``BiasProfile.to_dict``).
            title: Plot title.
            save_path: Optional path to save figure.

        Returns:
            Matplotlib figure.
        """
        counts = profile["outcome_counts"]
        total = sum(counts.values()) or 1
        baseline = {t["category"]: t["baseline_rate"] for t in profile.get("category_tests", [])}

        rows = []
        for category in OUTCOME_CATEGORIES:
            rows.append({"category": category, "source": "Judge", "share": counts.get(category, 0) / total})
            if baseline:
                rows.append({"category": category, "source": "Baseline", "share": baseline.get(category, 0.0)})
        df = pd.DataFrame(rows)

        fig, ax = plt.subplots(figsize=self.figsize)
        sns.barplot(data=df, x="category", y="share", hue="source", ax=ax, palette="Set2")
        ax.set_ylabel("Share of Cases")
        ax.set_xlabel("Outcome")
        ax.tick_params(axis="x", rotation=30)
        ax.set_title(title or f"Outcome Distribution: {profile['judge_id']}")
        plt.tight_layout()

        self._save(fig, save_path)
        return fig

    def plot_pattern_scores(
        self,
        published_df: pd.DataFrame,
        top_n: int = 20,
        title: str = "Outcome Pattern Scores",
        save_path: Optional[str] = None,
    ) -> plt.Figure:
        """
        Plot pattern scores with bootstrap intervals, highest first.

        Args:
            published_df: DataFrame from ``ReadAPI.published_profiles``.
            top_n: Number of judges to show.
            title: Plot title.
            save_path: Optional path to save figure.

        Returns:
            Matplotlib figure.
        """
        df = published_df.dropna(subset=["pattern_score"]).astype(
            {"pattern_score": float, "ci_low": float, "ci_high": float}
        )
        df = df.nlargest(top_n, "pattern_score")
        df = df.sort_values("pattern_score")

        fig, ax = plt.subplots(figsize=self.figsize)
        colors = [self.SIGNIFICANCE_COLORS[bool(s)] for s in df["significant"]]
        lower = (df["pattern_score"] - df["ci_low"]).clip(lower=0).fillna(0)
        upper = (df["ci_high"] - df["pattern_score"]).clip(lower=0).fillna(0)
        ax.barh(df["judge_id"], df["pattern_score"], color=colors, xerr=[lower, upper], capsize=3)
        ax.set_xlabel("Pattern Score (0-100)")
        ax.set_title(title)
        handles = [
            mpatches.Patch(color=self.SIGNIFICANCE_COLORS[True], label="Significant"),
            mpatches.Patch(color=self.SIGNIFICANCE_COLORS[False], label="Not significant"),
        ]
        ax.legend(handles=handles, loc="lower right")
        plt.tight_layout()

        self._save(fig, save_path)
        return fig

    def plot_sample_sizes(
        self,
        profiles_df: pd.DataFrame,
        min_cases: int = 500,
        title: str = "Resolved Cases per Judge",
        save_path: Optional[str] = None,
    ) -> plt.Figure:
        """Histogram of sample sizes with the publication threshold marked."""
        fig, ax = plt.subplots(figsize=self.figsize)
        sns.histplot(profiles_df["sample_size"], bins=20, ax=ax, color="#1976D2")
        ax.axvline(min_cases, color="#D32F2F", linestyle="--", label=f"Minimum ({min_cases})")
        ax.set_xlabel("Cases")
        ax.set_ylabel("Judges")
        ax.set_title(title)
        ax.legend()
        plt.tight_layout()

        self._save(fig, save_path)
        return fig

    # ==================== Dashboard ====================

    def create_dashboard(
        self,
        read_api: ReadAPI,
        output_dir: str = "output/figures",
        prefix: str = "",
        judge_ids: Optional[List[str]] = None,
    ) -> List[str]:
        """
        Create the standard set of figures.

        Args:
            read_api: Read model to plot from.
            output_dir: Directory to save figures.
            prefix: Filename prefix.
            judge_ids: Judges to draw timelines for (all when omitted).

        Returns:
            List of saved file paths.
        """
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        saved_files = []

        def keep(fig, path):
            saved_files.append(path)
            plt.close(fig)

        published = read_api.published_profiles()
        if published["pattern_score"].notna().any():
            path = f"{output_dir}/{prefix}pattern_scores.png"
            keep(self.plot_pattern_scores(published, save_path=path), path)

        latest = read_api.registry.all_latest_profiles()
        if latest:
            sizes = pd.DataFrame({"sample_size": [p.sample_size for p in latest]})
            path = f"{output_dir}/{prefix}sample_sizes.png"
            keep(self.plot_sample_sizes(
                sizes, min_cases=read_api.registry.config.min_cases, save_path=path
            ), path)

        judge_ids = judge_ids if judge_ids is not None else read_api.registry.judge_ids()
        for judge_id in judge_ids:
            history = read_api.position_history(judge_id)
            if len(history):
                path = f"{output_dir}/{prefix}timeline_{judge_id}.png"
                keep(self.plot_position_timeline(history, title=f"Positions: {judge_id}", save_path=path), path)
            profile = read_api.profile(judge_id)
            if profile is not None:
                path = f"{output_dir}/{prefix}outcomes_{judge_id}.png"
                keep(self.plot_outcome_distribution(profile, save_path=path), path)

        logger.info("Created %d visualizations in %s", len(saved_files), output_dir)
        return saved_files

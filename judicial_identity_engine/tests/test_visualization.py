"""Tests for the visualization module."""

from datetime import date
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from judicial_identity_engine.src.config import EngineConfig
from judicial_identity_engine.src.ingestion import IngestionPipeline
from judicial_identity_engine.src.read_api import ReadAPI
from judicial_identity_engine.src.registry import Registry
from judicial_identity_engine.src.visualization import JudicialVisualizer


@pytest.fixture
def read_api():
    config = EngineConfig(min_cases=5, min_baseline_cases=3, bootstrap_iterations=50)
    pipeline = IngestionPipeline(Registry(config=config))
    pipeline.load_courts([{
        "court_id": "lasc", "name": "Los Angeles Superior Court",
        "jurisdiction_path": "CA/LosAngeles/Superior", "seats": 5,
    }])
    pipeline.load_judges([
        {"id": 101, "name": "Jane A. Smith"},
        {"id": 102, "name": "John Lee"},
    ])
    pipeline.apply_appointments([
        {"person": 101, "court": "lasc", "date_start": "2015-01-01"},
        {"person": 102, "court": "lasc", "date_start": "2016-01-01"},
    ])
    cases = [
        {"case_id": f"A{i}", "judge_name": "Jane Smith", "court_id": "lasc",
         "decided_on": f"2020-03-{i + 1:02d}", "outcome": "Judgment for Plaintiff"}
        for i in range(6)
    ] + [
        {"case_id": f"B{i}", "judge_name": "John Lee", "court_id": "lasc",
         "decided_on": f"2020-04-{i + 1:02d}", "outcome": "Judgment for Defendant"}
        for i in range(4)
    ]
    pipeline.ingest_cases(cases, max_workers=2, show_progress=False)
    pipeline.analyze_all(show_progress=False)
    return ReadAPI(pipeline.registry)


@pytest.fixture
def visualizer():
    return JudicialVisualizer(figsize=(6, 4))


class TestPlots:
    """Test cases for individual plots."""

    def test_position_timeline(self, visualizer, tmp_path):
        history = pd.DataFrame([
            {"court_id": "lasc", "start_date": date(2015, 1, 1), "end_date": date(2018, 6, 30),
             "status": "ended", "end_inferred": False},
            {"court_id": "cal-app", "start_date": date(2018, 7, 1), "end_date": None,
             "status": "active", "end_inferred": False},
        ])
        path = tmp_path / "timeline.png"

        fig = visualizer.plot_position_timeline(history, as_of=date(2024, 1, 1), save_path=str(path))

        assert path.exists()
        assert [t.get_text() for t in fig.axes[0].get_yticklabels()] == ["lasc", "cal-app"]

    def test_sample_sizes(self, visualizer):
        fig = visualizer.plot_sample_sizes(pd.DataFrame({"sample_size": [10, 250, 600]}))
        assert fig.axes[0].get_xlabel() == "Cases"


class TestDashboard:
    """Test cases for the standard figure set."""

    def test_creates_figures(self, visualizer, read_api, tmp_path):
        saved = visualizer.create_dashboard(read_api, output_dir=str(tmp_path))
        jane = read_api.registry.judge_by_external_id("101")
        lee = read_api.registry.judge_by_external_id("102")

        names = sorted(Path(p).name for p in saved)

        assert names == sorted([
            "pattern_scores.png",
            "sample_sizes.png",
            f"timeline_{jane}.png",
            f"timeline_{lee}.png",
            f"outcomes_{jane}.png",
        ])
        assert all(Path(p).exists() for p in saved)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

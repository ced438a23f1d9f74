#!/usr/bin/env python3
"""
Judicial Identity Engine - Batch Runner

Collects or loads raw judge, position and case records, reconciles them
against the registry, infers retirements, computes outcome-pattern profiles
and writes reports.

Usage:
    python main.py --courts cacd casd --collect      # Collect from CourtListener
    python main.py --input data/raw/cases.json       # Ingest exported records
    python main.py --sweep --as-of 2024-06-30        # Retirement sweep only
    python main.py --analyze                         # Analyze only
    python main.py --report --visualize              # Reports and figures
    python main.py --resolve CASE123 J000042         # Resolve an ambiguous case
    python main.py --full --courts cacd              # Full pipeline
"""

import argparse
import logging
import os
import threading
from datetime import date
from pathlib import Path
from typing import Optional, Dict, List, Any

from judicial_identity_engine.src.config import EngineConfig
from judicial_identity_engine.src.data_acquisition import (
    CourtListenerClient,
    CourtListenerCollector,
    RawRecordLoader,
)
from judicial_identity_engine.src.ingestion import IngestionPipeline
from judicial_identity_engine.src.models import AnalysisWindow
from judicial_identity_engine.src.preprocessing import RecordPreprocessor
from judicial_identity_engine.src.read_api import ReadAPI
from judicial_identity_engine.src.registry import Registry
from judicial_identity_engine.src.report_generator import ReportGenerator
from judicial_identity_engine.src.visualization import JudicialVisualizer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def setup_directories(base: str = ".") -> dict:
    """Create the data and output directories."""
    dirs = {
        "data_raw": f"{base}/data/raw",
        "registry": f"{base}/data/registry",
        "output_reports": f"{base}/output/reports",
        "output_figures": f"{base}/output/figures",
    }
    for path in dirs.values():
        Path(path).mkdir(parents=True, exist_ok=True)
    return dirs


def load_registry(registry_dir: str, config: EngineConfig) -> Registry:
    """Load the saved registry, or start an empty one."""
    if Path(registry_dir).exists() and any(Path(registry_dir).glob("*.parquet")):
        logger.info("Loading registry from %s...", registry_dir)
        return Registry.load(registry_dir, config=config)
    logger.info("Starting with an empty registry")
    return Registry(config=config)


def collect_data(
    court_ids: List[str],
    config: EngineConfig,
    raw_dir: str,
    max_judges: Optional[int] = None,
    max_dockets: Optional[int] = None,
    date_filed_after: Optional[str] = None,
    courtlistener_token: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Collect raw records for a set of courts from CourtListener.

    Returns:
        Dictionary of raw records keyed by type.
    """
    logger.info("Collecting data for courts: %s", ", ".join(court_ids))
    client = CourtListenerClient.from_config(config, api_token=courtlistener_token, data_dir=raw_dir)
    data = CourtListenerCollector(client).collect_all(
        court_ids,
        max_judges=max_judges,
        max_dockets=max_dockets,
        date_filed_after=date_filed_after,
    )
    for name in ("courts", "judges", "positions", "cases"):
        client.save_raw(name, data[name])
    logger.info(
        "Collected: %d courts, %d judges, %d positions, %d cases",
        len(data["courts"]), len(data["judges"]), len(data["positions"]), len(data["cases"]),
    )
    return data


def load_input_files(paths: List[str]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Load exported record files and sort records by kind.

    Returns:
        Dictionary with ``courts``, ``judges``, ``positions`` and ``cases``.
    """
    grouped: Dict[str, List[Dict[str, Any]]] = {
        "courts": [], "judges": [], "positions": [], "cases": [],
    }
    for record in RawRecordLoader().load_many(paths):
        kind = RecordPreprocessor.record_kind(record)
        if kind == "unknown":
            logger.warning("Skipping record of unknown kind: %s", sorted(record)[:5])
            continue
        grouped.setdefault(f"{kind}s", []).append(record)
    return grouped


def ingest(
    pipeline: IngestionPipeline,
    raw_data: Dict[str, Any],
    allow_create: bool,
    cancel_event: threading.Event,
) -> Dict[str, Any]:
    """Feed raw records through the pipeline in dependency order."""
    pipeline.load_courts(raw_data.get("courts", []))
    pipeline.load_judges(raw_data.get("judges", []))
    pipeline.apply_appointments(raw_data.get("positions", []))
    summary = pipeline.ingest_cases(
        raw_data.get("cases", []), allow_create=allow_create, cancel_event=cancel_event
    )

    print(f"\n{'='*60}")
    print("INGESTION SUMMARY")
    print(f"{'='*60}")
    print(f"Cases Processed: {summary.get('total', 0)}")
    for key, count in sorted(summary["counts"].items()):
        print(f"  {key}: {count}")
    print(f"Pending Cases: {summary['pending']}")
    print(f"Open Review Items: {summary['open_reviews']}")
    if summary["halted_judges"]:
        print(f"Halted Judges: {', '.join(summary['halted_judges'])}")
    print(f"{'='*60}\n")
    return summary


def run_analysis(
    pipeline: IngestionPipeline,
    window: AnalysisWindow,
    cancel_event: threading.Event,
    force: bool = False,
) -> None:
    """Compute profiles for every judge and print a status breakdown."""
    logger.info("Running outcome-pattern analysis...")
    profiles = pipeline.analyze_all(window=window, cancel_event=cancel_event, only_stale=not force)

    statuses: Dict[str, int] = {}
    for profile in profiles:
        statuses[profile.status] = statuses.get(profile.status, 0) + 1
    print(f"\n{'='*60}")
    print("OUTCOME PATTERN ANALYSIS SUMMARY")
    print(f"{'='*60}")
    print(f"Judges Analyzed: {len(profiles)}")
    for status, count in sorted(statuses.items()):
        print(f"  {status}: {count}")
    print(f"{'='*60}\n")


def generate_reports(read_api: ReadAPI, output_dir: str) -> None:
    """Write roster, judge, review-queue and methodology reports."""
    logger.info("Generating reports...")
    report_gen = ReportGenerator(read_api, output_dir=output_dir)
    report_gen.generate_roster_report()
    report_gen.generate_batch_reports()
    report_gen.generate_review_report()
    report_gen.generate_methodology_doc()
    logger.info("Reports saved to %s/", output_dir)


def create_visualizations(read_api: ReadAPI, output_dir: str) -> None:
    """Create timelines and profile figures."""
    logger.info("Creating visualizations...")
    saved = JudicialVisualizer().create_dashboard(read_api, output_dir=output_dir)
    logger.info("Created %d visualizations in %s", len(saved), output_dir)


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Judicial Identity Engine - identity resolution, position history and outcome patterns"
    )
    parser.add_argument("--courts", nargs="*", default=[], help="CourtListener court ids to collect")
    parser.add_argument("--input", nargs="*", default=[], help="Exported record files (.json, .jsonl, .csv)")
    parser.add_argument("--collect", action="store_true", help="Collect data from CourtListener")
    parser.add_argument("--ingest", action="store_true", help="Ingest collected or input records")
    parser.add_argument("--sweep", action="store_true", help="Run the retirement sweep")
    parser.add_argument("--analyze", action="store_true", help="Compute outcome-pattern profiles")
    parser.add_argument("--report", action="store_true", help="Generate reports")
    parser.add_argument("--visualize", action="store_true", help="Create visualizations")
    parser.add_argument("--full", action="store_true", help="Run the full pipeline")
    parser.add_argument(
        "--resolve", nargs=2, metavar=("CASE_ID", "JUDGE_ID"),
        help="Assign an ambiguous case to a judge",
    )
    parser.add_argument("--allow-create", action="store_true", help="Create judges for unmatched cases")
    parser.add_argument("--force", action="store_true", help="Recompute profiles even if current")
    parser.add_argument("--as-of", type=str, default=None, help="Reference date for the sweep (YYYY-MM-DD)")
    parser.add_argument("--window-start", type=str, default=None, help="Analysis window start (YYYY-MM-DD)")
    parser.add_argument("--window-end", type=str, default=None, help="Analysis window end (YYYY-MM-DD)")
    parser.add_argument("--max-judges", type=int, default=None, help="Maximum judges to collect per court")
    parser.add_argument("--max-dockets", type=int, default=None, help="Maximum dockets to collect per court")
    parser.add_argument("--filed-after", type=str, default=None, help="Collect dockets filed after (YYYY-MM-DD)")
    parser.add_argument("--min-cases", type=int, default=None, help="Minimum cases before publishing")
    parser.add_argument("--horizon-days", type=int, default=None, help="Inactivity horizon for retirement")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads")
    parser.add_argument("--base-dir", type=str, default=".", help="Base directory for data and output")
    parser.add_argument(
        "--courtlistener-token",
        type=str,
        default=None,
        help="CourtListener API token (or set COURTLISTENER_API_TOKEN env var)",
    )
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    config = EngineConfig.from_env().with_overrides(
        min_cases=args.min_cases,
        inactivity_horizon_days=args.horizon_days,
        max_workers=args.workers,
    )
    cl_token = args.courtlistener_token or os.environ.get("COURTLISTENER_API_TOKEN")

    run_all = args.full or not any(
        [args.collect, args.ingest, args.sweep, args.analyze, args.report,
         args.visualize, args.resolve, args.input]
    )

    dirs = setup_directories(args.base_dir)
    registry = load_registry(dirs["registry"], config)
    pipeline = IngestionPipeline(registry, config=config)
    read_api = ReadAPI(registry)
    cancel_event = threading.Event()

    try:
        raw_data: Dict[str, Any] = {}
        if (args.collect or run_all) and args.courts:
            raw_data = collect_data(
                args.courts, config, dirs["data_raw"],
                max_judges=args.max_judges,
                max_dockets=args.max_dockets,
                date_filed_after=args.filed_after,
                courtlistener_token=cl_token,
            )
        if args.input:
            for key, records in load_input_files(args.input).items():
                raw_data.setdefault(key, []).extend(records)

        if raw_data and (args.ingest or args.input or run_all):
            ingest(pipeline, raw_data, args.allow_create, cancel_event)

        if args.resolve:
            case_id, judge_id = args.resolve
            outcome = pipeline.resolve_ambiguous(case_id, judge_id)
            print(f"{case_id} -> {judge_id}: {type(outcome).__name__}")

        if args.sweep or run_all:
            retired = pipeline.tracker.sweep_retirements(_parse_date(args.as_of), cancel_event)
            print(f"Retirement sweep: {len(retired)} positions marked retired_inferred")

        if args.analyze or run_all:
            window = AnalysisWindow(_parse_date(args.window_start), _parse_date(args.window_end))
            run_analysis(pipeline, window, cancel_event, force=args.force)
    except KeyboardInterrupt:
        cancel_event.set()
        logger.warning("Interrupted; saving registry state")
    finally:
        registry.save(dirs["registry"])

    if args.report or run_all:
        generate_reports(read_api, dirs["output_reports"])

    if args.visualize or run_all:
        create_visualizations(read_api, dirs["output_figures"])

    logger.info("Run complete!")


if __name__ == "__main__":
    main()

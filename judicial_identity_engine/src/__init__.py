"""
Judicial Identity Engine Package.

This package reconciles noisy judge and case records against a judge/court
graph, keeps a temporally consistent history of each judge's court
assignments, and computes confidence-gated outcome-pattern profiles.
"""

from .config import EngineConfig
from .errors import EngineError, PositionGraphError, StaleSnapshotError, UpstreamDataError
from .jurisdiction import JurisdictionHierarchy
from .normalizer import IdentityNormalizer
from .registry import Registry
from .matcher import JudgeCaseMatcher
from .validator import AssignmentValidator
from .position_tracker import PositionHistoryTracker
from .confidence import ConfidenceScorer
from .analysis import BiasOutcomeAnalyzer
from .data_acquisition import CourtListenerClient, CourtListenerCollector, RawRecordLoader
from .preprocessing import RecordPreprocessor
from .ingestion import IngestionPipeline
from .read_api import ReadAPI
from .report_generator import ReportGenerator
from .visualization import JudicialVisualizer

__version__ = "0.1.0"
__all__ = [
    "EngineConfig",
    "EngineError",
    "PositionGraphError",
    "StaleSnapshotError",
    "UpstreamDataError",
    "JurisdictionHierarchy",
    "IdentityNormalizer",
    "Registry",
    "JudgeCaseMatcher",
    "AssignmentValidator",
    "PositionHistoryTracker",
    "ConfidenceScorer",
    "BiasOutcomeAnalyzer",
    "CourtListenerClient",
    "CourtListenerCollector",
    "RawRecordLoader",
    "RecordPreprocessor",
    "IngestionPipeline",
    "ReadAPI",
    "ReportGenerator",
    "JudicialVisualizer",
]

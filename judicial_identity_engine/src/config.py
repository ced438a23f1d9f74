"""
Configuration for the Judicial Identity Engine.

Policy constants (sample-size minimum, retirement horizon, matching
thresholds) live here so that no component hard-codes them. Values can be
overridden from environment variables prefixed with ``JIE_`` or from the
command line.
"""

import logging
import os
from dataclasses import dataclass, fields, asdict
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Tunable policy values shared by the matcher, tracker and analyzer."""

    # Sample-size gating (business minimum for publishable analytics)
    min_cases: int = 500
    desired_half_width: float = 0.035
    z_value: float = 1.96

    # Retirement inference
    inactivity_horizon_days: int = 730

    # Matching
    fuzzy_min_similarity: float = 85.0
    ambiguity_margin: float = 5.0

    # Courts
    default_court_seats: int = 1

    # Significance testing
    alpha: float = 0.05
    bootstrap_iterations: int = 400
    bootstrap_seed: int = 20240101
    min_baseline_cases: int = 100

    # Concurrency
    max_snapshot_retries: int = 3
    max_workers: int = 4

    # External API
    api_max_retries: int = 4
    api_backoff_base: float = 1.0
    rate_limit_delay: float = 1.0

    ENV_PREFIX = "JIE_"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """
        Build a configuration from environment variables.

        ``JIE_MIN_CASES=750`` overrides ``min_cases`` and so on. Values that
        cannot be parsed are ignored with a warning.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            EngineConfig instance.
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(f"{cls.ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            try:
                overrides[f.name] = type(f.default)(raw)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid value for %s: %r", f.name, raw)

        return cls(**overrides)

    def with_overrides(self, **kwargs: Any) -> "EngineConfig":
        """Return a copy with the non-None keyword values replaced."""
        values = self.to_dict()
        values.update({k: v for k, v in kwargs.items() if v is not None})
        return EngineConfig(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

"""
Import Settings

Tolerances, limits and detection patterns for the statement import pipeline,
loaded from config/import_settings.yaml with environment overrides.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"

DEFAULT_CARD_MARKER_PATTERNS = [
    r"CB\s?\*\s?(\d{4})\s*$",
    r"CARD\s*(?:NO\.?|#)?\s*[X*]{2,}\s?(\d{4})\b",
]


@dataclass
class ImportSettings:
    """Explicit configuration constants for analyze/confirm."""

    # Days either side of the statement date a ledger row may sit and still match
    date_tolerance_days: int = 2
    # Normalized description similarity (0..1) required for an exact match
    exact_description_similarity: float = 1.0
    session_ttl_seconds: int = 1800
    max_file_bytes: int = 10 * 1024 * 1024
    max_rows: int = 10_000
    min_substring_pattern_length: int = 4
    card_marker_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_CARD_MARKER_PATTERNS)
    )

    @classmethod
    def load(cls, config_dir: Path | str | None = None) -> "ImportSettings":
        """Load settings from YAML, then apply environment overrides.

        Args:
            config_dir: Directory holding import_settings.yaml

        Returns:
            ImportSettings instance
        """
        config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_file = config_dir / "import_settings.yaml"

        data = {}
        if settings_file.exists():
            with open(settings_file) as f:
                data = yaml.safe_load(f) or {}
        else:
            logger.warning(f"Import settings file not found: {settings_file}, using defaults")

        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown import settings: {sorted(unknown)}")

        settings = cls(**{k: v for k, v in data.items() if k in known})

        settings.session_ttl_seconds = int(os.getenv(
            "IMPORT_SESSION_TTL_SECONDS", settings.session_ttl_seconds
        ))
        settings.date_tolerance_days = int(os.getenv(
            "IMPORT_DATE_TOLERANCE_DAYS", settings.date_tolerance_days
        ))
        settings.max_file_bytes = int(os.getenv(
            "IMPORT_MAX_FILE_BYTES", settings.max_file_bytes
        ))
        settings.max_rows = int(os.getenv("IMPORT_MAX_ROWS", settings.max_rows))

        return settings

"""
Configuration for the complycore engine and its stores.

Supports:
- Environment variable configuration
- YAML file configuration
- Runtime overrides via dictionaries
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class EngineConfig:
    """
    Configuration for evaluation and persistence.

    All fields default to the in-memory, serial setup:
    - max_workers: 1 (scans run on the calling thread)
    - *_path / policy_dir: None (in-memory stores)
    - log_level: WARNING
    """

    # Evaluation
    max_workers: int = 1

    # Stores (None selects the in-memory implementation)
    waiver_store_path: str | None = None
    report_store_path: str | None = None
    policy_dir: str | None = None

    # Waivers
    default_waiver_days: int = 90

    # Logging
    log_level: str = "WARNING"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

        if self.default_waiver_days < 1:
            raise ValueError(f"default_waiver_days must be >= 1, got {self.default_waiver_days}")

        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level}")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            COMPLYCORE_MAX_WORKERS: Thread pool size for bulk scans
            COMPLYCORE_WAIVER_STORE: Path to the JSON waiver file
            COMPLYCORE_REPORT_STORE: Path to the JSONL report history
            COMPLYCORE_POLICY_DIR: Directory of YAML policy documents
            COMPLYCORE_WAIVER_DAYS: Default waiver lifetime in days
            COMPLYCORE_LOG_LEVEL: Log level for the complycore loggers
        """
        return cls(
            max_workers=int(os.getenv("COMPLYCORE_MAX_WORKERS", "1")),
            waiver_store_path=os.getenv("COMPLYCORE_WAIVER_STORE") or None,
            report_store_path=os.getenv("COMPLYCORE_REPORT_STORE") or None,
            policy_dir=os.getenv("COMPLYCORE_POLICY_DIR") or None,
            default_waiver_days=int(os.getenv("COMPLYCORE_WAIVER_DAYS", "90")),
            log_level=os.getenv("COMPLYCORE_LOG_LEVEL", "WARNING"),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create configuration from dictionary (e.g., YAML)."""
        stores = data.get("stores", {})
        return cls(
            max_workers=data.get("max_workers", 1),
            waiver_store_path=stores.get("waivers"),
            report_store_path=stores.get("reports"),
            policy_dir=stores.get("policies"),
            default_waiver_days=data.get("default_waiver_days", 90),
            log_level=data.get("log_level", "WARNING"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> EngineConfig:
        """Load configuration from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config format in {path}")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary (same shape ``from_dict`` reads)."""
        return {
            "max_workers": self.max_workers,
            "stores": {
                "waivers": self.waiver_store_path,
                "reports": self.report_store_path,
                "policies": self.policy_dir,
            },
            "default_waiver_days": self.default_waiver_days,
            "log_level": self.log_level,
        }


def configure_logging(config: EngineConfig | None = None) -> logging.Logger:
    """Apply ``config.log_level`` to the ``complycore`` logger hierarchy.

    Adds a single stream handler the first time it is called; later calls
    only adjust the level.
    """
    config = config or EngineConfig()
    root = logging.getLogger("complycore")
    root.setLevel(config.log_level)
    if not any(getattr(h, "_complycore", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._complycore = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return root

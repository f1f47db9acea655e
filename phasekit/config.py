"""Engine configuration.

Thresholds and tables that shape phase transitions and module routing are
deployment configuration. They are read from ``<storage>/config.json`` when it
exists; any key left out keeps its default.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .documents import atomic_write_text
from .models import DEFAULT_PHASE_ORDER, PRIORITY_TIERS, is_document_id

logger = logging.getLogger("phasekit.config")

PROJECT_ROOT_ENV = "PHASEKIT_PROJECT_ROOT"
STORAGE_DIR_ENV = "PHASEKIT_STORAGE_DIR"
LOG_LEVEL_ENV = "PHASEKIT_LOG_LEVEL"
DEFAULT_STORAGE_DIR = ".phasekit"
CONFIG_FILENAME = "config.json"

DEFAULT_MODULE_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("database", "database"),
    ("schema", "database"),
    ("migration", "database"),
    ("api", "api"),
    ("endpoint", "api"),
    ("authentication", "auth"),
    ("login", "auth"),
    ("frontend", "frontend"),
    ("ui", "frontend"),
    ("deploy", "deployment"),
    ("pipeline", "deployment"),
)


@dataclass(slots=True)
class EngineConfig:
    """Tunable policy for one deployment."""

    phase_order: List[str] = field(default_factory=lambda: list(DEFAULT_PHASE_ORDER))
    high_priority_threshold: float = 0.9
    critical_tier: str = "critical"
    high_tier: str = "high"
    min_health_metrics: Dict[str, float] = field(default_factory=dict)
    module_keywords: List[Tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_MODULE_KEYWORDS))
    master_document_id: str = "master"
    io_retries: int = 3
    io_backoff_seconds: float = 0.05

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "phase_order": list(self.phase_order),
            "high_priority_threshold": self.high_priority_threshold,
            "critical_tier": self.critical_tier,
            "high_tier": self.high_tier,
            "min_health_metrics": dict(self.min_health_metrics),
            "module_keywords": [[keyword, module] for keyword, module in self.module_keywords],
            "master_document_id": self.master_document_id,
            "io_retries": self.io_retries,
            "io_backoff_seconds": self.io_backoff_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary representation, defaulting absent keys."""
        defaults = cls()
        keywords = data.get("module_keywords")
        return cls(
            phase_order=list(data.get("phase_order", defaults.phase_order)),
            high_priority_threshold=float(data.get("high_priority_threshold", defaults.high_priority_threshold)),
            critical_tier=data.get("critical_tier", defaults.critical_tier),
            high_tier=data.get("high_tier", defaults.high_tier),
            min_health_metrics={
                name: float(score) for name, score in data.get("min_health_metrics", {}).items()
            },
            module_keywords=(
                [(str(pair[0]), str(pair[1])) for pair in keywords]
                if keywords is not None
                else defaults.module_keywords
            ),
            master_document_id=data.get("master_document_id", defaults.master_document_id),
            io_retries=int(data.get("io_retries", defaults.io_retries)),
            io_backoff_seconds=float(data.get("io_backoff_seconds", defaults.io_backoff_seconds)),
        )

    def phase_index(self, phase: str) -> int:
        return self.phase_order.index(phase)

    def next_phase(self, phase: str) -> Optional[str]:
        """The phase after ``phase``, or None at the end of the order."""
        position = self.phase_index(phase)
        if position + 1 < len(self.phase_order):
            return self.phase_order[position + 1]
        return None

    def validate(self) -> List[str]:
        """Validate the configuration and return any issues."""
        issues = []

        if not self.phase_order:
            issues.append("At least one phase is required")
        if len(set(self.phase_order)) != len(self.phase_order):
            issues.append("Phase names must be unique")
        for phase in self.phase_order:
            if not is_document_id(phase):
                issues.append(f"Phase name must be a document id (letters, digits, . _ -), got: {phase!r}")
        if not 0.0 <= self.high_priority_threshold <= 1.0:
            issues.append(f"High priority threshold must be within [0, 1], got: {self.high_priority_threshold}")
        for tier in (self.critical_tier, self.high_tier):
            if tier not in PRIORITY_TIERS:
                issues.append(f"Unknown priority tier: {tier}")
        for name, floor in self.min_health_metrics.items():
            if not 0 <= floor <= 100:
                issues.append(f"Health floor for '{name}' must be within [0, 100], got: {floor}")
        for keyword, module in self.module_keywords:
            if not keyword.strip() or not module.strip():
                issues.append(f"Module keyword entries must be non-empty, got: ({keyword!r}, {module!r})")
            elif not is_document_id(module):
                issues.append(f"Module id must be a document id (letters, digits, . _ -), got: {module!r}")
        if not is_document_id(self.master_document_id):
            issues.append(f"Master document id must be a document id, got: {self.master_document_id!r}")
        if self.io_retries < 1:
            issues.append(f"I/O retries must be at least 1, got: {self.io_retries}")
        if self.io_backoff_seconds < 0:
            issues.append("I/O backoff must not be negative")

        return issues


def storage_dir_name() -> str:
    return os.getenv(STORAGE_DIR_ENV) or DEFAULT_STORAGE_DIR


def load_config(path: Path) -> EngineConfig:
    """Load configuration from ``path``; defaults when the file is absent."""
    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return EngineConfig()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        config = EngineConfig.from_dict(data)
    except (json.JSONDecodeError, TypeError, ValueError, IndexError, AttributeError) as e:
        raise ConfigurationError([f"{path}: {e}"]) from e

    issues = config.validate()
    if issues:
        raise ConfigurationError(issues)
    return config


def save_config(path: Path, config: EngineConfig) -> Path:
    issues = config.validate()
    if issues:
        raise ConfigurationError(issues)
    atomic_write_text(path, json.dumps(config.to_dict(), indent=2) + "\n")
    return path

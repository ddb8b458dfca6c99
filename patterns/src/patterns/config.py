"""
Detector configuration files and the pattern registry.

A configuration file is JSON of the form::

    {
      "from": "2025-01-01",
      "to": "2025-01-31",
      "configs": [
        {"windowSeconds": 60, "dropPercent": 2, "recordAfterSeconds": 600, "cooldownSeconds": 600}
      ]
    }

``from``/``to`` are optional defaults for the backtest date range.  Files
are validated up front; any problem raises :class:`ConfigurationError`
before the caller touches the network or the database.
"""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import DetectorConfig


class ConfigurationError(ValueError):
    """Invalid user-supplied configuration (file, pattern name, date range)."""


class ConfigFile(BaseModel):
    """Contents of a detector configuration file."""

    model_config = ConfigDict(populate_by_name=True)

    date_from: Optional[dt.date] = Field(None, alias="from")
    date_to: Optional[dt.date] = Field(None, alias="to")
    configs: List[DetectorConfig]

    @field_validator("configs")
    @classmethod
    def _not_empty(cls, value: List[DetectorConfig]) -> List[DetectorConfig]:
        if not value:
            raise ValueError("at least one detector config is required")
        return value


@dataclass(frozen=True)
class PatternDefinition:
    """A registered pattern and the config file used when none is given."""

    name: str
    default_config: Path

    def load_configs(self, path: Optional[Path] = None) -> ConfigFile:
        return load_config_file(path or self.default_config)


CONFIG_DIR = Path(__file__).resolve().parent / "configs"

PATTERNS: Dict[str, PatternDefinition] = {
    "rapid-drop": PatternDefinition("rapid-drop", CONFIG_DIR / "rapid-drop.json"),
}


def get_pattern(name: str) -> PatternDefinition:
    """Look up a registered pattern by name."""
    try:
        return PATTERNS[name]
    except KeyError:
        available = ", ".join(sorted(PATTERNS))
        raise ConfigurationError(f'Unknown pattern "{name}". Available: {available}') from None


def load_config_file(path: Path | str) -> ConfigFile:
    """Read and validate a configuration file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return ConfigFile.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"Malformed config file {path}: {exc}") from exc

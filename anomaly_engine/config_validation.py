"""
Configuration Validation Module
===============================
Schema validation for detection requests and engine settings.

Key Principle: Fail fast on bad configs. A typo in a sensitivity level
should raise an immediate, clear error - not silently run with defaults.

Settings files can be JSON or YAML; the format is chosen by file suffix.
"""

from typing import Dict, Any, Optional, Union
from pathlib import Path
import json

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InputError
from .models import Sensitivity


class DetectionConfig(BaseModel):
    """Per-request detector toggles. The data-gap detector always runs."""
    model_config = ConfigDict(extra='ignore')

    statistical_enabled: bool = Field(True, description="Run the z-score detector")
    digital_twin_enabled: bool = Field(True, description="Run the performance-gap detector")
    sensitivity: Sensitivity = Field(Sensitivity.MEDIUM, description="'low', 'medium' or 'high'")

    @field_validator('sensitivity', mode='before')
    @classmethod
    def normalize_sensitivity(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class EngineSettings(BaseModel):
    """Engine-wide settings."""
    model_config = ConfigDict(extra='forbid')

    database_path: str = Field("data/anomaly_engine.db", description="SQLite database file")
    expected_interval_minutes: float = Field(15.0, gt=0, description="Telemetry sampling interval")
    statistical_period_hours: float = Field(168.0, gt=0, description="Default z-score window")
    default_period_hours: float = Field(24.0, gt=0, description="Default window for other detectors")
    gap_threshold_percent: float = Field(10.0, ge=0, description="Digital-twin gap threshold")
    max_workers: int = Field(3, ge=1, le=16, description="Threads used to run detectors")
    log_level: str = Field("INFO", description="Logging level name")

    @field_validator('log_level')
    @classmethod
    def check_log_level(cls, v):
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {v}")
        return level


def get_default_settings() -> EngineSettings:
    """Single source of truth for default engine settings."""
    return EngineSettings()


def parse_detection_config(config: Optional[Union[Dict[str, Any], DetectionConfig]]) -> DetectionConfig:
    """
    Validate a caller-supplied detection config.

    None yields the defaults (statistical and digital twin enabled,
    medium sensitivity).

    Raises:
        InputError: If the config is not a mapping or fails validation
    """
    if config is None:
        return DetectionConfig()
    if isinstance(config, DetectionConfig):
        return config
    if not isinstance(config, dict):
        raise InputError(f"Detection config must be an object, got {type(config).__name__}")

    try:
        return DetectionConfig(**config)
    except ValidationError as e:
        raise InputError(f"Invalid detection config:\n{e}")


def load_settings(path: Union[str, Path]) -> EngineSettings:
    """
    Load and validate an engine settings file.

    Args:
        path: Path to a .json, .yaml or .yml file

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the file cannot be parsed or validated
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, 'r') as f:
        try:
            if path.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValueError(f"Invalid settings file {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")

    try:
        return EngineSettings(**data)
    except ValidationError as e:
        raise ValueError(f"Settings validation failed:\n{e}")

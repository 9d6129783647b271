"""
Anomaly Aggregator
==================
Runs the enabled detectors for one plant and window, merges their
candidates and upserts them.

A failing detector never aborts the run: its error is logged, it
contributes no candidates and is listed in DetectionResult.failed_detectors.
A failing store write fails the whole run.
"""

import logging
import math
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Callable, Union

from .anomaly_store import upsert_anomalies
from .config_validation import DetectionConfig, EngineSettings, get_default_settings, parse_detection_config
from .database import normalize_timestamp, utc_now
from .detectors import detect_statistical_anomalies, detect_digital_twin_anomalies, detect_data_gaps
from .errors import InputError, DetectorFailure, PersistenceFailure
from .models import Anomaly, DetectionResult
from .telemetry import TelemetryAccessor, SQLiteTelemetry

logger = logging.getLogger(__name__)

DETECTOR_ORDER = ('statistical', 'digital_twin', 'data_gap')


def validate_plant_id(plant_id: Any) -> str:
    if not isinstance(plant_id, str) or not plant_id.strip():
        raise InputError("plant_id is required")
    return plant_id.strip()


def validate_period_hours(period_hours: Any, now: Optional[datetime] = None) -> Optional[float]:
    """
    None means "use each detector's default window". Otherwise the value
    must be a finite positive number whose window start is a valid date.
    """
    if period_hours is None:
        return None
    if isinstance(period_hours, bool):
        raise InputError("period_hours must be a number")
    try:
        value = float(period_hours)
    except (TypeError, ValueError):
        raise InputError(f"period_hours must be a number, got {period_hours!r}")
    if not math.isfinite(value) or not value > 0:
        raise InputError(f"period_hours must be a finite positive number, got {period_hours!r}")
    if now is not None:
        try:
            normalize_timestamp(now - timedelta(hours=value))
        except (OverflowError, ValueError):
            raise InputError(f"period_hours={period_hours!r} reaches past the earliest supported date")
    return value


def build_detector_plan(
    telemetry: TelemetryAccessor,
    plant_id: str,
    config: DetectionConfig,
    settings: EngineSettings,
    period_hours: Optional[float],
    now: datetime,
) -> Dict[str, Callable[[], List[Anomaly]]]:
    """
    Map detector name -> zero-argument callable that fetches its telemetry
    slice and scans it. Disabled detectors are left out.
    """
    def window_start(default_hours: float) -> datetime:
        return now - timedelta(hours=period_hours or default_hours)

    plan: Dict[str, Callable[[], List[Anomaly]]] = {}

    if config.statistical_enabled:
        def run_statistical():
            readings = telemetry.get_readings(plant_id, window_start(settings.statistical_period_hours), now)
            return detect_statistical_anomalies(readings, plant_id, config.sensitivity)
        plan['statistical'] = run_statistical

    if config.digital_twin_enabled:
        def run_digital_twin():
            gaps = telemetry.get_performance_gaps(plant_id, window_start(settings.default_period_hours), now)
            return detect_digital_twin_anomalies(gaps, plant_id, settings.gap_threshold_percent)
        plan['digital_twin'] = run_digital_twin

    def run_data_gap():
        readings = telemetry.get_readings(plant_id, window_start(settings.default_period_hours), now)
        return detect_data_gaps(readings, plant_id, settings.expected_interval_minutes)
    plan['data_gap'] = run_data_gap

    return plan


def detect_anomalies(
    plant_id: str,
    period_hours: Optional[float] = None,
    config: Optional[Union[Dict[str, Any], DetectionConfig]] = None,
    settings: Optional[EngineSettings] = None,
    telemetry: Optional[TelemetryAccessor] = None,
    now: Optional[datetime] = None,
) -> DetectionResult:
    """
    Detect and persist anomalies for a plant.

    Args:
        plant_id: Plant to scan
        period_hours: Window length; when None each detector uses its
                      default (statistical 168 h, others 24 h)
        config: DetectionConfig or dict with statistical_enabled,
                digital_twin_enabled, sensitivity
        settings: Engine settings (defaults if None)
        telemetry: Telemetry source (SQLite telemetry on the engine database if None)
        now: End of the window (current UTC time if None)

    Returns:
        DetectionResult with every anomaly found in this run

    Raises:
        InputError: Invalid plant_id, period_hours or config
        PersistenceFailure: The anomalies could not be saved
    """
    plant_id = validate_plant_id(plant_id)
    now = now or utc_now()
    period_hours = validate_period_hours(period_hours, now)
    config = parse_detection_config(config)
    settings = settings or get_default_settings()
    if telemetry is None:
        try:
            telemetry = SQLiteTelemetry(settings.database_path)
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open telemetry database: {e}")

    plan = build_detector_plan(telemetry, plant_id, config, settings, period_hours, now)

    logger.info(
        f"Detecting anomalies for plant {plant_id}: detectors={list(plan)}, "
        f"period_hours={period_hours}, sensitivity={config.sensitivity.value}"
    )

    result = DetectionResult(plant_id=plant_id)
    outputs: Dict[str, List[Anomaly]] = {}

    with ThreadPoolExecutor(max_workers=min(settings.max_workers, len(plan))) as executor:
        futures = {name: executor.submit(func) for name, func in plan.items()}

        for name, future in futures.items():
            try:
                outputs[name] = future.result()
            except Exception as e:
                failure = DetectorFailure(name, str(e))
                logger.warning(failure.message, exc_info=True)
                result.failed_detectors[name] = str(e)
                outputs[name] = []

    candidates: List[Anomaly] = []
    for name in DETECTOR_ORDER:
        candidates.extend(outputs.get(name, []))

    result.anomalies = upsert_anomalies(settings.database_path, candidates)
    result.anomalies_persisted = len({a.key for a in result.anomalies})

    logger.info(
        f"Plant {plant_id}: {result.anomalies_detected} anomalies detected, "
        f"{result.anomalies_persisted} persisted, failed detectors: {list(result.failed_detectors) or 'none'}"
    )

    return result

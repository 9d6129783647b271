"""
Anomaly Detectors
=================
Three independent detectors over plant telemetry:
- Statistical: global z-score on power readings
- Digital twin: expected vs actual energy gaps above a percentage threshold
- Data gap: missing telemetry between consecutive readings

Each detector is a pure function of a DataFrame and returns a list of
unsaved Anomaly candidates.
"""

import numpy as np
import pandas as pd
from typing import List, Dict, Optional

from .database import TIMESTAMP_FORMAT, normalize_timestamp
from .models import Anomaly, AnomalyType, Severity, DetectedBy, Metric, Sensitivity

# z-score threshold per sensitivity level
SENSITIVITY_THRESHOLDS: Dict[Sensitivity, float] = {
    Sensitivity.HIGH: 2.5,
    Sensitivity.MEDIUM: 3.0,
    Sensitivity.LOW: 3.5,
}

DIGITAL_TWIN_CONFIDENCE = 0.85
GAP_THRESHOLD_PERCENT = 10.0
EXPECTED_INTERVAL_MINUTES = 15.0


# =============================================================================
# STATISTICAL (Z-SCORE) DETECTION
# =============================================================================

def z_score_severity(z: float) -> Severity:
    if z > 4:
        return Severity.CRITICAL
    if z > 3.5:
        return Severity.HIGH
    if z > 3:
        return Severity.MEDIUM
    return Severity.LOW


def detect_statistical_anomalies(
    readings: pd.DataFrame,
    plant_id: str,
    sensitivity: Sensitivity = Sensitivity.MEDIUM,
) -> List[Anomaly]:
    """
    Flag power readings far from the window mean.

    The baseline is the population mean and standard deviation of all
    non-zero power values in the window. Zero readings (night, curtailment)
    are neither part of the baseline nor flagged.

    Args:
        readings: DataFrame with 'timestamp' and 'power_w' columns
        plant_id: Plant the readings belong to
        sensitivity: Selects the z-score threshold

    Returns:
        Anomaly candidates with z > threshold
    """
    if readings is None or len(readings) == 0:
        return []

    power = readings['power_w'].to_numpy(dtype=float)
    timestamps = np.array(_timestamp_labels(readings['timestamp']), dtype=object)

    valid_mask = ~np.isnan(power) & (power != 0)
    valid_power = power[valid_mask]

    if len(valid_power) < 2:
        return []

    mean = float(np.mean(valid_power))
    std = float(np.std(valid_power))

    if std < 1e-12 or mean == 0:
        return []

    threshold = SENSITIVITY_THRESHOLDS[sensitivity]
    z_scores = np.abs(valid_power - mean) / std

    anomalies = []
    for ts, value, z in zip(timestamps[valid_mask], valid_power, z_scores):
        if not z > threshold:
            continue

        z = float(z)
        anomalies.append(Anomaly(
            plant_id=plant_id,
            timestamp=ts,
            anomaly_type=AnomalyType.GENERATION_DROP if value < mean else AnomalyType.UNEXPECTED_SPIKE,
            severity=z_score_severity(z),
            confidence=min(z / 5, 1.0),
            detected_by=DetectedBy.STATISTICAL,
            metric_affected=Metric.POWER,
            expected_value=mean,
            actual_value=float(value),
            deviation_percent=(value - mean) / mean * 100,
            metadata={'z_score': z, 'method': 'z_score', 'threshold': threshold},
        ))

    return anomalies


# =============================================================================
# DIGITAL TWIN GAP DETECTION
# =============================================================================

def gap_severity(gap_percent: float) -> Severity:
    magnitude = abs(gap_percent)
    if magnitude > 30:
        return Severity.CRITICAL
    if magnitude > 20:
        return Severity.HIGH
    if magnitude > 15:
        return Severity.MEDIUM
    return Severity.LOW


def detect_digital_twin_anomalies(
    gaps: pd.DataFrame,
    plant_id: str,
    threshold_percent: float = GAP_THRESHOLD_PERCENT,
) -> List[Anomaly]:
    """
    Flag expected-vs-actual energy gaps larger than threshold_percent.

    Args:
        gaps: DataFrame with 'timestamp', 'expected_kwh', 'actual_kwh',
              'gap_percent', 'gap_kwh' and optionally 'probable_causes'
        plant_id: Plant the gaps belong to
    """
    if gaps is None or len(gaps) == 0:
        return []

    anomalies = []
    for row in gaps.to_dict('records'):
        gap_percent = float(row['gap_percent'])
        if np.isnan(gap_percent) or not abs(gap_percent) > threshold_percent:
            continue

        anomalies.append(Anomaly(
            plant_id=plant_id,
            timestamp=normalize_timestamp(row['timestamp']),
            anomaly_type=AnomalyType.UNDERPERFORMANCE if gap_percent < 0 else AnomalyType.OVERPERFORMANCE,
            severity=gap_severity(gap_percent),
            confidence=DIGITAL_TWIN_CONFIDENCE,
            detected_by=DetectedBy.DIGITAL_TWIN,
            metric_affected=Metric.ENERGY,
            expected_value=_optional_float(row.get('expected_kwh')),
            actual_value=_optional_float(row.get('actual_kwh')),
            deviation_percent=gap_percent,
            metadata={
                'gap_kwh': _optional_float(row.get('gap_kwh')),
                'probable_causes': row.get('probable_causes') or [],
            },
        ))

    return anomalies


# =============================================================================
# DATA GAP DETECTION
# =============================================================================

def data_gap_severity(gap_minutes: float) -> Severity:
    if gap_minutes > 120:
        return Severity.HIGH
    if gap_minutes > 60:
        return Severity.MEDIUM
    return Severity.LOW


def detect_data_gaps(
    readings: pd.DataFrame,
    plant_id: str,
    expected_interval_minutes: float = EXPECTED_INTERVAL_MINUTES,
) -> List[Anomaly]:
    """
    Flag intervals between consecutive readings longer than twice the
    expected sampling interval.

    The anomaly is stamped with the timestamp of the reading that ends the gap.
    """
    if readings is None or len(readings) < 2:
        return []

    labels = _timestamp_labels(readings['timestamp'])
    times = pd.to_datetime(pd.Series(labels), format=TIMESTAMP_FORMAT, utc=True)
    gap_minutes = times.diff().dt.total_seconds().to_numpy() / 60.0

    anomalies = []
    for i in range(1, len(labels)):
        gap = float(gap_minutes[i])
        if not gap > expected_interval_minutes * 2:
            continue

        anomalies.append(Anomaly(
            plant_id=plant_id,
            timestamp=labels[i],
            anomaly_type=AnomalyType.DATA_GAP,
            severity=data_gap_severity(gap),
            confidence=1.0,
            detected_by=DetectedBy.STATISTICAL,
            metric_affected=Metric.AVAILABILITY,
            expected_value=expected_interval_minutes,
            actual_value=gap,
            deviation_percent=(gap - expected_interval_minutes) / expected_interval_minutes * 100,
            metadata={'gap_minutes': gap, 'previous_timestamp': labels[i - 1]},
        ))

    return anomalies


def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return None if np.isnan(value) else value


def _timestamp_labels(series: pd.Series) -> List[str]:
    return [normalize_timestamp(t) for t in series]

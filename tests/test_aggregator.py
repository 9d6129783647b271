"""
Aggregator Tests
================
Tests for detect_anomalies: detector toggles, partial failure,
idempotent persistence and windowing.

Run with: python -m pytest tests/test_aggregator.py -v
"""

import sys
import os
import tempfile
import shutil
from pathlib import Path
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from anomaly_engine.aggregator import detect_anomalies
from anomaly_engine.anomaly_store import count_anomalies, list_anomalies
from anomaly_engine.config_validation import EngineSettings, DetectionConfig
from anomaly_engine.errors import InputError, PersistenceFailure
from anomaly_engine.models import AnomalyType, Severity, Sensitivity
from anomaly_engine.telemetry import ingest_readings, ingest_performance_gaps

NOW = datetime(2026, 6, 2, 12, 0, tzinfo=timezone.utc)


def seed_plant(db_path, plant_id='plant-01', gap_after=None):
    """
    Seed 24 h of 15-minute readings ending at NOW: a steady 1000/1010 W
    baseline with one spike three hours ago, optionally a 45-minute hole,
    and one -25% performance gap.
    """
    readings = []
    for i in range(96):
        ts = NOW - timedelta(minutes=15 * (95 - i))
        power = 1000.0 if i % 2 == 0 else 1010.0
        readings.append({'timestamp': ts, 'power_w': power, 'energy_kwh': power / 4000})
    readings[84]['power_w'] = 2000.0

    if gap_after is not None:
        del readings[gap_after + 1:gap_after + 3]

    ingest_readings(db_path, plant_id, readings)
    ingest_performance_gaps(db_path, plant_id, [
        {'timestamp': NOW - timedelta(hours=2), 'expected_kwh': 100.0, 'actual_kwh': 75.0},
        {'timestamp': NOW - timedelta(hours=3), 'expected_kwh': 100.0, 'actual_kwh': 97.0},
    ])


class FailingGapsTelemetry:
    """Telemetry whose performance-gap query fails."""

    def __init__(self, readings):
        self.readings = readings

    def get_readings(self, plant_id, start, end=None):
        return self.readings

    def get_performance_gaps(self, plant_id, start, end=None):
        raise RuntimeError("performance_gaps table unavailable")


class TestDetectAnomalies:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp(prefix='anomaly_engine_agg_')
        self.db_path = os.path.join(self.temp_dir, 'engine.db')
        self.settings = EngineSettings(database_path=self.db_path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_all_detectors_contribute(self):
        seed_plant(self.db_path, gap_after=40)

        result = detect_anomalies('plant-01', period_hours=24, settings=self.settings, now=NOW)

        types = [a.anomaly_type for a in result.anomalies]
        assert types.count(AnomalyType.UNEXPECTED_SPIKE) == 1
        assert types.count(AnomalyType.UNDERPERFORMANCE) == 1
        assert types.count(AnomalyType.DATA_GAP) == 1
        assert result.anomalies_detected == 3
        assert result.anomalies_persisted == 3
        assert result.failed_detectors == {}
        assert all(a.id for a in result.anomalies)

        gap = next(a for a in result.anomalies if a.anomaly_type == AnomalyType.DATA_GAP)
        assert gap.actual_value == 45.0
        assert gap.severity == Severity.LOW

        print(f"[PASS] {result.anomalies_detected} anomalies from three detectors")

    def test_rerun_is_idempotent(self):
        seed_plant(self.db_path, gap_after=40)

        first = detect_anomalies('plant-01', period_hours=24, settings=self.settings, now=NOW)
        count_after_first = count_anomalies(self.db_path, 'plant-01')
        second = detect_anomalies('plant-01', period_hours=24, settings=self.settings, now=NOW)

        assert count_anomalies(self.db_path, 'plant-01') == count_after_first == 3
        assert second.anomalies_detected == first.anomalies_detected
        assert sorted(a.id for a in second.anomalies) == sorted(a.id for a in first.anomalies)

        print("[PASS] Repeat detection creates no duplicates")

    def test_detector_toggles(self):
        seed_plant(self.db_path)

        config = {'statistical_enabled': False, 'digital_twin_enabled': False, 'sensitivity': 'high'}
        result = detect_anomalies('plant-01', period_hours=24, config=config, settings=self.settings, now=NOW)

        assert result.anomalies == []
        assert count_anomalies(self.db_path) == 0

        config = DetectionConfig(statistical_enabled=True, digital_twin_enabled=False)
        result = detect_anomalies('plant-01', period_hours=24, config=config, settings=self.settings, now=NOW)
        assert [a.anomaly_type for a in result.anomalies] == [AnomalyType.UNEXPECTED_SPIKE]

        print("[PASS] Disabled detectors do not run")

    def test_sensitivity_changes_threshold(self):
        # 9 x 100 W and one 110 W reading: the outlier sits at exactly z = 3
        readings = []
        for i in range(10):
            readings.append({
                'timestamp': NOW - timedelta(minutes=15 * (9 - i)),
                'power_w': 110.0 if i == 9 else 100.0,
            })
        ingest_readings(self.db_path, 'plant-03', readings)

        medium = detect_anomalies('plant-03', period_hours=24, settings=self.settings, now=NOW,
                                  config={'sensitivity': Sensitivity.MEDIUM.value})
        assert medium.anomalies == []

        high = detect_anomalies('plant-03', period_hours=24, settings=self.settings, now=NOW,
                                config={'sensitivity': Sensitivity.HIGH.value})
        assert [a.anomaly_type for a in high.anomalies] == [AnomalyType.UNEXPECTED_SPIKE]
        assert high.anomalies[0].severity == Severity.LOW

        print("[PASS] Sensitivity selects the z-score threshold")

    def test_failed_detector_yields_partial_result(self):
        readings = pd.DataFrame({
            'timestamp': [NOW - timedelta(minutes=60), NOW],
            'power_w': [1000.0, 1000.0],
            'energy_kwh': [0.25, 0.25],
        })

        result = detect_anomalies(
            'plant-01', period_hours=24, settings=self.settings, now=NOW,
            telemetry=FailingGapsTelemetry(readings),
        )

        assert 'digital_twin' in result.failed_detectors
        assert 'unavailable' in result.failed_detectors['digital_twin']
        assert result.partial
        assert [a.anomaly_type for a in result.anomalies] == [AnomalyType.DATA_GAP]
        assert result.anomalies[0].severity == Severity.LOW
        assert count_anomalies(self.db_path) == 1

        print("[PASS] Failing detector does not abort the run")

    def test_zero_readings(self):
        result = detect_anomalies('empty-plant', period_hours=24, settings=self.settings, now=NOW)

        assert result.anomalies_detected == 0
        assert result.failed_detectors == {}

        print("[PASS] Plant without telemetry yields zero anomalies")

    def test_window_excludes_old_readings(self):
        seed_plant(self.db_path, gap_after=40)

        # Spike is 3 h old, gap hole ~13 h old, performance gap 2 h old
        result = detect_anomalies('plant-01', period_hours=1, settings=self.settings, now=NOW)

        assert result.anomalies == []

    def test_default_windows(self):
        seed_plant(self.db_path)
        old = [{'timestamp': NOW - timedelta(hours=100), 'power_w': 1005.0}]
        ingest_readings(self.db_path, 'plant-01', old)

        result = detect_anomalies('plant-01', settings=self.settings, now=NOW)

        # The 100 h old reading is outside the 24 h data-gap window
        assert AnomalyType.DATA_GAP not in [a.anomaly_type for a in result.anomalies]
        assert AnomalyType.UNEXPECTED_SPIKE in [a.anomaly_type for a in result.anomalies]

    def test_invalid_input_rejected(self):
        with pytest.raises(InputError):
            detect_anomalies('', settings=self.settings)
        with pytest.raises(InputError):
            detect_anomalies(None, settings=self.settings)
        with pytest.raises(InputError):
            detect_anomalies('plant-01', period_hours=-5, settings=self.settings)
        with pytest.raises(InputError):
            detect_anomalies('plant-01', config={'sensitivity': 'extreme'}, settings=self.settings)

        assert count_anomalies(self.db_path) == 0

        print("[PASS] Invalid input rejected before detection")

    def test_store_failure_fails_run(self):
        readings = pd.DataFrame({
            'timestamp': [NOW - timedelta(minutes=60), NOW],
            'power_w': [1000.0, 1000.0],
            'energy_kwh': [0.25, 0.25],
        })
        settings = EngineSettings(database_path=self.temp_dir)

        with pytest.raises(PersistenceFailure):
            detect_anomalies('plant-01', period_hours=24, settings=settings, now=NOW,
                             telemetry=FailingGapsTelemetry(readings))

        print("[PASS] Persistence failure surfaced to caller")

    def test_listing_after_detection(self):
        seed_plant(self.db_path, gap_after=40)
        detect_anomalies('plant-01', period_hours=24, settings=self.settings, now=NOW)

        listed = list_anomalies(self.db_path, plant_id='plant-01')
        assert len(listed) == 3

    def test_unbounded_period_rejected_before_detectors_run(self):
        calls = []

        class RecordingTelemetry:
            def get_readings(self, plant_id, start, end=None):
                calls.append('readings')
                return pd.DataFrame(columns=['timestamp', 'power_w', 'energy_kwh'])

            def get_performance_gaps(self, plant_id, start, end=None):
                calls.append('gaps')
                return pd.DataFrame()

        for period in (float('inf'), float('nan'), '1e400', 1e8):
            with pytest.raises(InputError):
                detect_anomalies('plant-01', period_hours=period, settings=self.settings, now=NOW,
                                 telemetry=RecordingTelemetry())

        assert calls == []
        assert not os.path.exists(self.db_path)

        print("[PASS] Non-finite and out-of-range windows rejected")

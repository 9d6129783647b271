"""
End-to-End Scenario Tests
=========================
Seeds synthetic plant telemetry, runs detection and root-cause analysis,
and checks the reports.

Run with: python -m pytest tests/test_sample_data.py -v
"""

import sys
import os
import tempfile
import shutil
from pathlib import Path
from datetime import datetime, timezone

import pytest

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from anomaly_engine import (
    EngineSettings,
    ingest_readings,
    ingest_performance_gaps,
    detect_anomalies,
    analyze_root_cause,
    list_anomalies,
    anomaly_stats,
    format_anomaly_table,
    format_rca_summary,
    AnomalyType,
    Severity,
    DetectedBy,
)
from anomaly_engine.reporting import TABLE_COLUMNS
from anomaly_engine.sample_data import SCENARIOS, generate_readings, generate_scenario

END = datetime(2026, 6, 2, 18, 0, tzinfo=timezone.utc)


class TestSampleGenerator:

    def test_readings_shape(self):
        readings = generate_readings(END, days=2)

        assert len(readings) == 192
        assert readings[-1]['timestamp'] == END
        assert all(r['power_w'] >= 0 for r in readings)
        night = [r for r in readings if r['timestamp'].hour < 6]
        assert all(r['power_w'] == 0.0 for r in night)

    def test_data_gap_scenario_removes_readings(self):
        readings = generate_readings(END, days=2, scenario='data_gap')
        assert len(readings) == 184

    def test_unknown_scenario(self):
        with pytest.raises(ValueError):
            generate_readings(END, scenario='meteor')

    def test_deterministic(self):
        assert generate_readings(END, seed=7) == generate_readings(END, seed=7)


class TestScenarios:
    """Detection over two days of synthetic telemetry per scenario."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp(prefix='anomaly_engine_e2e_')
        self.settings = EngineSettings(database_path=os.path.join(self.temp_dir, 'engine.db'))

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run(self, scenario):
        readings, gaps = generate_scenario(END, scenario=scenario, days=2)
        ingest_readings(self.settings.database_path, 'plant-01', readings)
        ingest_performance_gaps(self.settings.database_path, 'plant-01', gaps)
        return detect_anomalies('plant-01', period_hours=48, settings=self.settings, now=END)

    def test_nominal_is_quiet(self):
        result = self.run('nominal')

        assert result.anomalies == []
        assert result.failed_detectors == {}

        print("[PASS] Nominal plant has no anomalies")

    def test_spike(self):
        result = self.run('spike')

        spikes = [a for a in result.anomalies if a.anomaly_type == AnomalyType.UNEXPECTED_SPIKE]
        assert len(spikes) == 1
        assert spikes[0].severity == Severity.CRITICAL
        assert spikes[0].confidence == 1.0
        assert spikes[0].actual_value == pytest.approx(450000.0)

        outcome = analyze_root_cause(spikes[0].id, settings=self.settings)
        assert outcome.rca.probable_causes == []

        print(f"[PASS] Spike flagged at z={spikes[0].metadata['z_score']:.1f}")

    def test_data_gap(self):
        result = self.run('data_gap')

        assert [a.anomaly_type for a in result.anomalies] == [AnomalyType.DATA_GAP]
        gap = result.anomalies[0]
        assert gap.actual_value == 135.0
        assert gap.severity == Severity.HIGH

        outcome = analyze_root_cause(gap.id, settings=self.settings)
        summary = format_rca_summary(outcome.rca)

        assert 'Monitoring communication failure' in summary
        assert 'Dependency chain: modules -> strings -> inverter -> grid' in summary
        assert '[MEDIUM] Check connectivity and data logger' in summary

        print("[PASS] Two-hour outage flagged and analyzed")

    def test_underperformance(self):
        result = self.run('underperformance')

        assert result.anomalies
        assert all(a.detected_by == DetectedBy.DIGITAL_TWIN for a in result.anomalies)
        assert all(a.anomaly_type == AnomalyType.UNDERPERFORMANCE for a in result.anomalies)
        assert all(a.severity == Severity.HIGH for a in result.anomalies)
        assert all(a.deviation_percent == pytest.approx(-25.0) for a in result.anomalies)

        analyze_root_cause(result.anomalies[0].id, settings=self.settings)
        stats = anomaly_stats(list_anomalies(self.settings.database_path, plant_id='plant-01'))

        assert stats['total'] == len(result.anomalies)
        assert stats['high'] == len(result.anomalies)
        assert stats['critical'] == 0
        assert stats['analyzed'] == 1
        assert stats['by_detector'] == {'digital_twin': len(result.anomalies)}

        print(f"[PASS] {len(result.anomalies)} underperforming hours")

    def test_all_scenarios_listed(self):
        assert set(SCENARIOS) == {'nominal', 'generation_drop', 'spike', 'data_gap', 'underperformance'}


class TestReporting:

    def test_empty_table(self):
        table = format_anomaly_table([])

        assert list(table.columns) == TABLE_COLUMNS
        assert len(table) == 0

    def test_empty_stats(self):
        stats = anomaly_stats([])

        assert stats['total'] == 0
        assert stats['by_type'] == {}

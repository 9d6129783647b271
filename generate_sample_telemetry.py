"""
Sample Telemetry Seeder
=======================
Writes synthetic plant telemetry into the engine database and optionally
runs detection and root-cause analysis on it.

Usage:
    python generate_sample_telemetry.py

    # Seed a specific scenario for a plant
    python generate_sample_telemetry.py --scenario data_gap --plant-id plant-07

    # Seed, detect and analyze the most severe anomaly
    python generate_sample_telemetry.py --scenario generation_drop --detect
"""

import argparse
import sys

import pandas as pd

from anomaly_engine import (
    EngineSettings,
    ingest_readings,
    ingest_performance_gaps,
    detect_anomalies,
    analyze_root_cause,
    format_anomaly_table,
    format_rca_summary,
    configure_logging,
    Severity,
)
from anomaly_engine.database import utc_now
from anomaly_engine.sample_data import SCENARIOS, generate_scenario

SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


def main():
    parser = argparse.ArgumentParser(
        description='Seed synthetic solar telemetry for the anomaly engine',
    )
    parser.add_argument('--scenario', type=str, default='nominal', choices=list(SCENARIOS.keys()),
                        help='Telemetry scenario (default: nominal)')
    parser.add_argument('--plant-id', type=str, default='plant-01',
                        help='Plant identifier (default: plant-01)')
    parser.add_argument('--db', type=str, default='data/anomaly_engine.db',
                        help='Database path (default: data/anomaly_engine.db)')
    parser.add_argument('--days', type=int, default=2, help='Days of telemetry (default: 2)')
    parser.add_argument('--seed', type=int, default=42, help='Random seed (default: 42)')
    parser.add_argument('--detect', action='store_true', help='Run detection after seeding')
    args = parser.parse_args()

    configure_logging('INFO')
    settings = EngineSettings(database_path=args.db)

    end = utc_now().replace(second=0, microsecond=0)
    end = end.replace(minute=end.minute - end.minute % 15)
    readings, gaps = generate_scenario(end, scenario=args.scenario, days=args.days, seed=args.seed)

    n_readings = ingest_readings(args.db, args.plant_id, readings)
    n_gaps = ingest_performance_gaps(args.db, args.plant_id, gaps)
    print(f"Seeded {n_readings} readings and {n_gaps} performance gaps for {args.plant_id} "
          f"({args.scenario}) into {args.db}")

    if not args.detect:
        return 0

    result = detect_anomalies(args.plant_id, period_hours=args.days * 24, settings=settings, now=end)
    print()
    print(f"Anomalies detected: {result.anomalies_detected}")
    if result.failed_detectors:
        print(f"Failed detectors: {result.failed_detectors}")

    if not result.anomalies:
        return 0

    with pd.option_context('display.width', 160, 'display.max_columns', 20):
        print(format_anomaly_table(result.anomalies).to_string(index=False))

    worst = max(result.anomalies, key=lambda a: (SEVERITY_RANK[a.severity], a.confidence))
    outcome = analyze_root_cause(worst.id, settings=settings)
    print()
    print(format_rca_summary(outcome.rca))
    for warning in outcome.warnings:
        print(f"[WARN] {warning}")

    return 0


if __name__ == '__main__':
    sys.exit(main())

"""
Engine Database
===============
SQLite schema shared by the telemetry accessor and the anomaly store:
- readings / performance_gaps (telemetry, read-only for the engine)
- anomalies (unique on plant_id + timestamp + anomaly_type + metric_affected)
- root_cause_analysis (one row per anomaly)
- schema versioning
"""

import sqlite3
import os
from datetime import datetime, timezone
from typing import Any, Union

import pandas as pd

SCHEMA_VERSION = 1  # Increment when schema changes

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


# =============================================================================
# SCHEMA DEFINITIONS
# =============================================================================

SCHEMA_INFO_SCHEMA = """
    CREATE TABLE IF NOT EXISTS schema_info (
        schema_version INTEGER NOT NULL,
        created_date TEXT
    )
"""

READINGS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS readings (
        plant_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        power_w REAL,
        energy_kwh REAL,
        PRIMARY KEY (plant_id, timestamp)
    )
"""

PERFORMANCE_GAPS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS performance_gaps (
        plant_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        expected_kwh REAL,
        actual_kwh REAL,
        gap_percent REAL,
        gap_kwh REAL,
        probable_causes TEXT,
        PRIMARY KEY (plant_id, timestamp)
    )
"""

ANOMALIES_SCHEMA = """
    CREATE TABLE IF NOT EXISTS anomalies (
        id TEXT PRIMARY KEY,
        plant_id TEXT NOT NULL,
        timestamp TEXT NOT NULL,
        anomaly_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        confidence REAL,
        detected_by TEXT,
        metric_affected TEXT NOT NULL,

        -- Evidence
        expected_value REAL,
        actual_value REAL,
        deviation_percent REAL,
        metadata TEXT,

        -- Links and workflow
        root_cause_id TEXT,
        status TEXT DEFAULT 'active',
        created_at TEXT,
        updated_at TEXT
    )
"""

ANOMALIES_KEY_INDEX = """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_anomalies_key
    ON anomalies (plant_id, timestamp, anomaly_type, metric_affected)
"""

ROOT_CAUSE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS root_cause_analysis (
        id TEXT PRIMARY KEY,
        anomaly_id TEXT NOT NULL UNIQUE REFERENCES anomalies(id),
        plant_id TEXT NOT NULL,
        probable_causes TEXT,
        dependency_graph TEXT,
        recommended_actions TEXT,
        investigation_status TEXT DEFAULT 'pending',
        created_at TEXT
    )
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_timestamp(value: Union[str, datetime, pd.Timestamp, Any]) -> str:
    """
    Convert a timestamp to the canonical UTC string stored in the database.

    Naive values are taken as UTC. Canonical strings sort chronologically,
    so range queries can compare them directly.
    """
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize('UTC')
    else:
        ts = ts.tz_convert('UTC')
    return ts.strftime(TIMESTAMP_FORMAT)


def connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with foreign keys enforced and row access by name."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database(db_path: str) -> str:
    """
    Create the database file and all tables if they do not exist.

    Safe to call repeatedly.

    Returns:
        Path to the database
    """
    directory = os.path.dirname(db_path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)

    conn = connect(db_path)
    try:
        c = conn.cursor()
        c.execute(SCHEMA_INFO_SCHEMA)
        c.execute(READINGS_SCHEMA)
        c.execute(PERFORMANCE_GAPS_SCHEMA)
        c.execute(ANOMALIES_SCHEMA)
        c.execute(ANOMALIES_KEY_INDEX)
        c.execute(ROOT_CAUSE_SCHEMA)

        c.execute("SELECT COUNT(*) FROM schema_info")
        if c.fetchone()[0] == 0:
            c.execute(
                "INSERT INTO schema_info (schema_version, created_date) VALUES (?, ?)",
                (SCHEMA_VERSION, utc_now().isoformat()),
            )
        conn.commit()
    finally:
        conn.close()

    return db_path


def get_schema_version(db_path: str) -> int:
    """Get current schema version from database (0 if uninitialized)."""
    conn = connect(db_path)
    try:
        c = conn.cursor()
        c.execute("SELECT schema_version FROM schema_info LIMIT 1")
        result = c.fetchone()
        return result[0] if result else 0
    except sqlite3.OperationalError:
        return 0
    finally:
        conn.close()

"""
Telemetry Accessor
==================
Read-only range queries over plant telemetry:
- readings: (timestamp, power_w, energy_kwh)
- performance_gaps: digital-twin expected vs actual energy

The engine only reads. The ingest helpers exist for seeding and tests.
"""

import json
from datetime import datetime
from typing import Protocol, Iterable, Dict, Any, Optional, runtime_checkable

import pandas as pd

from .database import connect, init_database, normalize_timestamp

READING_COLUMNS = ['timestamp', 'power_w', 'energy_kwh']
GAP_COLUMNS = [
    'timestamp', 'expected_kwh', 'actual_kwh', 'gap_percent', 'gap_kwh', 'probable_causes',
]


@runtime_checkable
class TelemetryAccessor(Protocol):
    """Source of time-ordered plant telemetry."""

    def get_readings(self, plant_id: str, start: datetime, end: Optional[datetime] = None) -> pd.DataFrame:
        ...

    def get_performance_gaps(self, plant_id: str, start: datetime, end: Optional[datetime] = None) -> pd.DataFrame:
        ...


class SQLiteTelemetry:
    """
    Telemetry accessor backed by the engine database.

    Each query opens its own connection, so one instance can be shared by
    detectors running on different threads.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_database(db_path)

    def _query(self, sql: str, plant_id: str, start: datetime, end: Optional[datetime]) -> pd.DataFrame:
        params = [plant_id, normalize_timestamp(start)]
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(normalize_timestamp(end))
        sql += " ORDER BY timestamp ASC"

        conn = connect(self.db_path)
        conn.row_factory = None
        try:
            return pd.read_sql_query(sql, conn, params=params)
        finally:
            conn.close()

    def get_readings(self, plant_id: str, start: datetime, end: Optional[datetime] = None) -> pd.DataFrame:
        """Readings for a plant with start <= timestamp <= end, oldest first."""
        sql = (
            "SELECT timestamp, power_w, energy_kwh FROM readings "
            "WHERE plant_id = ? AND timestamp >= ?"
        )
        return self._query(sql, plant_id, start, end)

    def get_performance_gaps(self, plant_id: str, start: datetime, end: Optional[datetime] = None) -> pd.DataFrame:
        """Performance gaps for a plant in the window, oldest first."""
        sql = (
            "SELECT timestamp, expected_kwh, actual_kwh, gap_percent, gap_kwh, probable_causes "
            "FROM performance_gaps WHERE plant_id = ? AND timestamp >= ?"
        )
        df = self._query(sql, plant_id, start, end)
        df['probable_causes'] = [
            json.loads(v) if v else [] for v in df['probable_causes']
        ]
        return df


# =============================================================================
# INGEST HELPERS
# =============================================================================

def ingest_readings(db_path: str, plant_id: str, readings: Iterable[Dict[str, Any]]) -> int:
    """
    Insert or replace readings for a plant.

    Each reading needs 'timestamp' and 'power_w'; 'energy_kwh' defaults to 0.

    Returns:
        Number of readings written
    """
    rows = []
    for r in readings:
        power = float(r['power_w'])
        energy = float(r.get('energy_kwh', 0.0))
        if power < 0 or energy < 0:
            raise ValueError(f"Negative telemetry value at {r['timestamp']}")
        rows.append((plant_id, normalize_timestamp(r['timestamp']), power, energy))

    init_database(db_path)
    conn = connect(db_path)
    try:
        conn.executemany(
            "INSERT OR REPLACE INTO readings (plant_id, timestamp, power_w, energy_kwh) VALUES (?, ?, ?, ?)",
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    return len(rows)


def ingest_performance_gaps(db_path: str, plant_id: str, gaps: Iterable[Dict[str, Any]]) -> int:
    """
    Insert or replace digital-twin performance gaps for a plant.

    gap_percent and gap_kwh are derived from expected/actual when absent.

    Returns:
        Number of gap records written
    """
    rows = []
    for g in gaps:
        expected = float(g['expected_kwh'])
        actual = float(g['actual_kwh'])
        gap_percent = g.get('gap_percent')
        if gap_percent is None:
            gap_percent = (actual - expected) / expected * 100 if expected else 0.0
        gap_kwh = g.get('gap_kwh', actual - expected)
        rows.append((
            plant_id,
            normalize_timestamp(g['timestamp']),
            expected,
            actual,
            float(gap_percent),
            float(gap_kwh),
            json.dumps(g.get('probable_causes', [])),
        ))

    init_database(db_path)
    conn = connect(db_path)
    try:
        conn.executemany(
            """INSERT OR REPLACE INTO performance_gaps
               (plant_id, timestamp, expected_kwh, actual_kwh, gap_percent, gap_kwh, probable_causes)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    return len(rows)

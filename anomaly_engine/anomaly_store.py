"""
Anomaly Store
=============
Persistence for anomalies and root-cause analyses.

- Anomalies are upserted on (plant_id, timestamp, anomaly_type,
  metric_affected). A repeat detection replaces the detection fields and
  keeps id, status, created_at and root_cause_id.
- At most one root-cause analysis exists per anomaly.
- Lookups never create the database; a store that does not exist yet is
  empty.
"""

import json
import os
import sqlite3
import uuid
import logging
from contextlib import contextmanager
from typing import Dict, Any, Optional, List

from .database import connect, init_database, utc_now
from .errors import PersistenceFailure
from .models import (
    Anomaly,
    AnomalyType,
    Severity,
    DetectedBy,
    Metric,
    RootCauseAnalysis,
    ProbableCause,
    RecommendedAction,
)

logger = logging.getLogger(__name__)

UPSERT_ANOMALY_SQL = """
    INSERT INTO anomalies (
        id, plant_id, timestamp, anomaly_type, severity, confidence,
        detected_by, metric_affected, expected_value, actual_value,
        deviation_percent, metadata, status, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, ?)
    ON CONFLICT (plant_id, timestamp, anomaly_type, metric_affected) DO UPDATE SET
        severity = excluded.severity,
        confidence = excluded.confidence,
        detected_by = excluded.detected_by,
        expected_value = excluded.expected_value,
        actual_value = excluded.actual_value,
        deviation_percent = excluded.deviation_percent,
        metadata = excluded.metadata,
        updated_at = excluded.updated_at
"""


# =============================================================================
# ROW CONVERSION
# =============================================================================

def _row_to_anomaly(row: sqlite3.Row) -> Anomaly:
    return Anomaly(
        id=row['id'],
        plant_id=row['plant_id'],
        timestamp=row['timestamp'],
        anomaly_type=AnomalyType(row['anomaly_type']),
        severity=Severity(row['severity']),
        confidence=row['confidence'],
        detected_by=DetectedBy(row['detected_by']),
        metric_affected=Metric(row['metric_affected']),
        expected_value=row['expected_value'],
        actual_value=row['actual_value'],
        deviation_percent=row['deviation_percent'],
        metadata=json.loads(row['metadata']) if row['metadata'] else {},
        root_cause_id=row['root_cause_id'],
        status=row['status'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def _row_to_rca(row: sqlite3.Row) -> RootCauseAnalysis:
    causes = json.loads(row['probable_causes']) if row['probable_causes'] else []
    actions = json.loads(row['recommended_actions']) if row['recommended_actions'] else []
    return RootCauseAnalysis(
        id=row['id'],
        anomaly_id=row['anomaly_id'],
        plant_id=row['plant_id'],
        probable_causes=[ProbableCause(**c) for c in causes],
        dependency_graph=json.loads(row['dependency_graph']) if row['dependency_graph'] else {},
        recommended_actions=[
            RecommendedAction(**{**a, 'priority': Severity(a['priority'])}) for a in actions
        ],
        investigation_status=row['investigation_status'],
        created_at=row['created_at'],
    )


# =============================================================================
# ANOMALIES
# =============================================================================

@contextmanager
def _open_store(db_path: str):
    """Initialized connection to the store; open and query errors become PersistenceFailure."""
    try:
        init_database(db_path)
        conn = connect(db_path)
    except sqlite3.Error as e:
        raise PersistenceFailure(f"Cannot open anomaly store {db_path}: {e}")

    try:
        yield conn
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as e:
        raise PersistenceFailure(f"Anomaly store error: {e}")
    finally:
        conn.close()


def upsert_anomalies(db_path: str, anomalies: List[Anomaly]) -> List[Anomaly]:
    """
    Insert or update anomalies in a single transaction.

    Args:
        db_path: Path to the engine database
        anomalies: Candidates from the detectors

    Returns:
        The stored anomalies, in input order, with ids and timestamps filled in

    Raises:
        PersistenceFailure: If any write fails (nothing is committed)
    """
    if not anomalies:
        return []

    now = utc_now().isoformat()

    try:
        with _open_store(db_path) as conn:
            with conn:
                for a in anomalies:
                    conn.execute(UPSERT_ANOMALY_SQL, (
                        str(uuid.uuid4()),
                        a.plant_id,
                        a.timestamp,
                        a.anomaly_type.value,
                        a.severity.value,
                        a.confidence,
                        a.detected_by.value,
                        a.metric_affected.value,
                        a.expected_value,
                        a.actual_value,
                        a.deviation_percent,
                        json.dumps(a.metadata, default=str),
                        now,
                        now,
                    ))

                stored = []
                for a in anomalies:
                    row = conn.execute(
                        """SELECT * FROM anomalies WHERE plant_id = ? AND timestamp = ?
                           AND anomaly_type = ? AND metric_affected = ?""",
                        a.key,
                    ).fetchone()
                    stored.append(_row_to_anomaly(row))
    except sqlite3.IntegrityError as e:
        logger.error(f"Failed to upsert {len(anomalies)} anomalies: {e}", exc_info=True)
        raise PersistenceFailure(f"Failed to save anomalies: {e}")
    except PersistenceFailure as e:
        logger.error(f"Failed to upsert {len(anomalies)} anomalies: {e.message}", exc_info=True)
        raise

    return stored


def get_anomaly(db_path: str, anomaly_id: str) -> Optional[Anomaly]:
    """Fetch one anomaly by id, or None."""
    if not os.path.exists(db_path):
        return None
    with _open_store(db_path) as conn:
        row = conn.execute("SELECT * FROM anomalies WHERE id = ?", (anomaly_id,)).fetchone()
    return _row_to_anomaly(row) if row else None


def list_anomalies(
    db_path: str,
    plant_id: Optional[str] = None,
    limit: int = 100,
    severity: Optional[str] = None,
    anomaly_type: Optional[str] = None,
) -> List[Anomaly]:
    """
    List stored anomalies, newest first.

    Args:
        plant_id: Restrict to one plant
        limit: Maximum number of rows
        severity: Restrict to one severity level
        anomaly_type: Restrict to one anomaly type
    """
    sql = "SELECT * FROM anomalies WHERE 1 = 1"
    params: List[Any] = []
    if plant_id:
        sql += " AND plant_id = ?"
        params.append(plant_id)
    if severity:
        sql += " AND severity = ?"
        params.append(severity)
    if anomaly_type:
        sql += " AND anomaly_type = ?"
        params.append(anomaly_type)
    sql += " ORDER BY timestamp DESC LIMIT ?"
    params.append(int(limit))

    if not os.path.exists(db_path):
        return []
    with _open_store(db_path) as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_row_to_anomaly(r) for r in rows]


def count_anomalies(db_path: str, plant_id: Optional[str] = None) -> int:
    if not os.path.exists(db_path):
        return 0
    with _open_store(db_path) as conn:
        if plant_id:
            row = conn.execute("SELECT COUNT(*) FROM anomalies WHERE plant_id = ?", (plant_id,)).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM anomalies").fetchone()
    return row[0]


# =============================================================================
# ROOT-CAUSE ANALYSES
# =============================================================================

def insert_root_cause_analysis(db_path: str, rca: RootCauseAnalysis) -> RootCauseAnalysis:
    """
    Store a new analysis.

    Returns:
        The stored analysis with id and created_at set

    Raises:
        sqlite3.IntegrityError: If the anomaly already has an analysis
        PersistenceFailure: On any other write error
    """
    rca_id = str(uuid.uuid4())
    created_at = utc_now().isoformat()
    payload = rca.to_dict()

    with _open_store(db_path) as conn:
        with conn:
            conn.execute(
                """INSERT INTO root_cause_analysis (
                       id, anomaly_id, plant_id, probable_causes, dependency_graph,
                       recommended_actions, investigation_status, created_at
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rca_id,
                    rca.anomaly_id,
                    rca.plant_id,
                    json.dumps(payload['probable_causes']),
                    json.dumps(payload['dependency_graph']),
                    json.dumps(payload['recommended_actions']),
                    rca.investigation_status,
                    created_at,
                ),
            )

    rca.id = rca_id
    rca.created_at = created_at
    return rca


def get_root_cause_analysis(db_path: str, anomaly_id: str) -> Optional[RootCauseAnalysis]:
    """Fetch the analysis for an anomaly, or None."""
    if not os.path.exists(db_path):
        return None
    with _open_store(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM root_cause_analysis WHERE anomaly_id = ?", (anomaly_id,)
        ).fetchone()
    return _row_to_rca(row) if row else None


def set_root_cause_link(db_path: str, anomaly_id: str, rca_id: str) -> None:
    """Point an anomaly at its root-cause analysis."""
    try:
        with _open_store(db_path) as conn:
            with conn:
                cursor = conn.execute(
                    "UPDATE anomalies SET root_cause_id = ?, updated_at = ? WHERE id = ?",
                    (rca_id, utc_now().isoformat(), anomaly_id),
                )
                updated = cursor.rowcount
    except sqlite3.IntegrityError as e:
        raise PersistenceFailure(f"Failed to link root-cause analysis: {e}")

    if updated != 1:
        raise PersistenceFailure(f"Anomaly {anomaly_id} not updated")

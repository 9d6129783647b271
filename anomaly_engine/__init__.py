"""
Solar Plant Anomaly Engine - Core Module
========================================
Anomaly detection and root-cause analysis for solar plant telemetry.

Components:
- telemetry: Read-only range queries over readings and performance gaps
- detectors: Statistical (z-score), digital-twin gap and data-gap detectors
- aggregator: Runs detectors concurrently and upserts their anomalies
- anomaly_store: SQLite persistence for anomalies and analyses
- root_cause: Rule-based causes, dependency graph and recommended actions
- reporting: Statistics and display tables
- service: Action dispatch for request/response callers

Usage:
    from anomaly_engine import detect_anomalies, analyze_root_cause
    result = detect_anomalies('plant-01', period_hours=24)
    outcome = analyze_root_cause(result.anomalies[0].id)
"""

from .errors import (
    AnomalyEngineError,
    InputError,
    NotFound,
    DetectorFailure,
    PersistenceFailure,
)

from .models import (
    AnomalyType,
    Severity,
    DetectedBy,
    Metric,
    Sensitivity,
    AnomalyState,
    Anomaly,
    ProbableCause,
    RecommendedAction,
    RootCauseAnalysis,
    DetectionResult,
    AnalysisOutcome,
)

from .config_validation import (
    DetectionConfig,
    EngineSettings,
    get_default_settings,
    parse_detection_config,
    load_settings,
)

from .database import (
    init_database,
    normalize_timestamp,
    SCHEMA_VERSION,
)

from .telemetry import (
    TelemetryAccessor,
    SQLiteTelemetry,
    ingest_readings,
    ingest_performance_gaps,
)

from .detectors import (
    detect_statistical_anomalies,
    detect_digital_twin_anomalies,
    detect_data_gaps,
    SENSITIVITY_THRESHOLDS,
)

from .anomaly_store import (
    upsert_anomalies,
    get_anomaly,
    list_anomalies,
    count_anomalies,
    get_root_cause_analysis,
)

from .aggregator import detect_anomalies

from .root_cause import (
    analyze_root_cause,
    infer_root_cause,
    DEFAULT_DEPENDENCY_GRAPH,
    RULES,
)

from .reporting import (
    anomaly_stats,
    format_anomaly_table,
    format_rca_summary,
)

from .service import handle_request, configure_logging

__version__ = "1.0.0"

"""
Anomaly Engine Data Model
=========================
Enums and dataclasses shared by the detectors, the store and the
root-cause analyzer.
"""

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Any
from enum import Enum


class AnomalyType(Enum):
    """Types of anomalies that can be recorded."""
    GENERATION_DROP = "generation_drop"
    EFFICIENCY_DROP = "efficiency_drop"
    OFFLINE = "offline"
    UNDERPERFORMANCE = "underperformance"
    DATA_GAP = "data_gap"
    UNEXPECTED_SPIKE = "unexpected_spike"
    OVERPERFORMANCE = "overperformance"


class Severity(Enum):
    """Severity levels for anomalies and action priorities."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DetectedBy(Enum):
    """Detector that produced an anomaly."""
    STATISTICAL = "statistical"
    DIGITAL_TWIN = "digital_twin"


class Metric(Enum):
    """Telemetry metric an anomaly refers to."""
    POWER = "power"
    ENERGY = "energy"
    PR = "pr"
    AVAILABILITY = "availability"


class Sensitivity(Enum):
    """Statistical detector sensitivity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyState(Enum):
    """Lifecycle tracked by the engine."""
    DETECTED = "detected"
    ANALYZED = "analyzed"


@dataclass
class Anomaly:
    """
    A detected deviation of plant telemetry from expected behaviour.

    Identity is the key (plant_id, timestamp, anomaly_type, metric_affected);
    `id` is assigned by the store on first insert.
    """
    plant_id: str
    timestamp: str
    anomaly_type: AnomalyType
    severity: Severity
    confidence: float
    detected_by: DetectedBy
    metric_affected: Metric
    expected_value: Optional[float] = None
    actual_value: Optional[float] = None
    deviation_percent: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    root_cause_id: Optional[str] = None
    status: str = "active"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.plant_id, self.timestamp, self.anomaly_type.value, self.metric_affected.value)

    @property
    def state(self) -> AnomalyState:
        return AnomalyState.ANALYZED if self.root_cause_id else AnomalyState.DETECTED

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['anomaly_type'] = self.anomaly_type.value
        result['severity'] = self.severity.value
        result['detected_by'] = self.detected_by.value
        result['metric_affected'] = self.metric_affected.value
        return result


@dataclass
class ProbableCause:
    cause: str
    confidence: float
    evidence: str
    estimated_impact_kwh: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RecommendedAction:
    action: str
    priority: Severity
    estimated_time_hours: float
    estimated_cost_brl: float

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['priority'] = self.priority.value
        return result


@dataclass
class RootCauseAnalysis:
    """Ranked causes, subsystem graph and remediation for one anomaly."""
    anomaly_id: str
    plant_id: str
    probable_causes: List[ProbableCause] = field(default_factory=list)
    dependency_graph: Dict[str, Any] = field(default_factory=dict)
    recommended_actions: List[RecommendedAction] = field(default_factory=list)
    investigation_status: str = "pending"
    id: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'anomaly_id': self.anomaly_id,
            'plant_id': self.plant_id,
            'probable_causes': [c.to_dict() for c in self.probable_causes],
            'dependency_graph': self.dependency_graph,
            'recommended_actions': [a.to_dict() for a in self.recommended_actions],
            'investigation_status': self.investigation_status,
            'created_at': self.created_at,
        }


@dataclass
class DetectionResult:
    """Outcome of one aggregation run for a plant."""
    plant_id: str
    anomalies: List[Anomaly] = field(default_factory=list)
    anomalies_persisted: int = 0
    failed_detectors: Dict[str, str] = field(default_factory=dict)

    @property
    def anomalies_detected(self) -> int:
        return len(self.anomalies)

    @property
    def partial(self) -> bool:
        """True if at least one detector failed."""
        return bool(self.failed_detectors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plant_id': self.plant_id,
            'anomalies_detected': self.anomalies_detected,
            'anomalies_persisted': self.anomalies_persisted,
            'anomalies': [a.to_dict() for a in self.anomalies],
            'failed_detectors': dict(self.failed_detectors),
        }


@dataclass
class AnalysisOutcome:
    """Root-cause analysis plus any non-fatal problems hit while persisting it."""
    rca: RootCauseAnalysis
    created: bool = True
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rca': self.rca.to_dict(),
            'created': self.created,
            'warnings': list(self.warnings),
        }

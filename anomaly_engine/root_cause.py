"""
Root-Cause Analysis
===================
Rule-based inference from an anomaly to ranked probable causes,
a subsystem dependency graph and recommended actions.

Causes and actions are data: each anomaly type maps to a RuleSet of
templates. Cause impact is scaled from the anomaly's own evidence:
- DEVIATION: |expected - actual| times a factor
- EXPECTED: the expected value (lost production while offline)
- NONE: no energy impact (e.g. missing telemetry)
"""

import copy
import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List

from .anomaly_store import (
    get_anomaly,
    get_root_cause_analysis,
    insert_root_cause_analysis,
    set_root_cause_link,
)
from .config_validation import EngineSettings, get_default_settings
from .errors import InputError, NotFound, PersistenceFailure
from .models import (
    Anomaly,
    AnomalyType,
    Severity,
    ProbableCause,
    RecommendedAction,
    RootCauseAnalysis,
    AnalysisOutcome,
)

logger = logging.getLogger(__name__)


class ImpactBasis(Enum):
    DEVIATION = "deviation"
    EXPECTED = "expected"
    NONE = "none"


@dataclass(frozen=True)
class CauseTemplate:
    cause: str
    confidence: float
    evidence: str
    impact_basis: ImpactBasis = ImpactBasis.DEVIATION
    impact_factor: float = 1.0

    def estimate_impact(self, anomaly: Anomaly) -> float:
        if self.impact_basis == ImpactBasis.NONE:
            return 0.0
        if self.impact_basis == ImpactBasis.EXPECTED:
            return float(anomaly.expected_value or 0.0) * self.impact_factor
        expected = anomaly.expected_value or 0.0
        actual = anomaly.actual_value or 0.0
        return abs(expected - actual) * self.impact_factor


@dataclass(frozen=True)
class ActionTemplate:
    action: str
    priority: Severity
    estimated_time_hours: float
    estimated_cost_brl: float


@dataclass(frozen=True)
class RuleSet:
    causes: List[CauseTemplate] = field(default_factory=list)
    actions: List[ActionTemplate] = field(default_factory=list)


# =============================================================================
# RULE TABLE
# =============================================================================

RULES: Dict[AnomalyType, RuleSet] = {
    AnomalyType.GENERATION_DROP: RuleSet(
        causes=[
            CauseTemplate('Module soiling', 0.7,
                          'Gradual generation drop without weather events'),
            CauseTemplate('Abnormal shading', 0.5,
                          'Drop concentrated at specific times of day', impact_factor=0.6),
            CauseTemplate('Module degradation', 0.3,
                          'Persistent drop over time', impact_factor=0.4),
        ],
        actions=[
            ActionTemplate('Visual inspection of modules', Severity.HIGH, 2, 300),
            ActionTemplate('Module cleaning', Severity.MEDIUM, 4, 800),
        ],
    ),
    AnomalyType.UNDERPERFORMANCE: RuleSet(
        causes=[
            CauseTemplate('Inverter operating below capacity', 0.6,
                          'Consistent gap between expected and actual energy'),
            CauseTemplate('Disconnected or faulty string', 0.5,
                          'Abrupt generation drop', impact_factor=0.7),
        ],
        actions=[
            ActionTemplate('Check inverter status and alarms', Severity.CRITICAL, 1, 150),
            ActionTemplate('Test strings with multimeter and thermal camera', Severity.HIGH, 3, 500),
        ],
    ),
    AnomalyType.DATA_GAP: RuleSet(
        causes=[
            CauseTemplate('Monitoring communication failure', 0.8,
                          'No data received for the period', ImpactBasis.NONE),
        ],
        actions=[
            ActionTemplate('Check connectivity and data logger', Severity.MEDIUM, 1, 200),
        ],
    ),
    AnomalyType.OFFLINE: RuleSet(
        causes=[
            CauseTemplate('Breaker tripped or grid fault', 0.7,
                          'Zero generation during daylight hours', ImpactBasis.EXPECTED),
            CauseTemplate('Inverter protective shutdown', 0.6,
                          'System not responding', ImpactBasis.EXPECTED),
        ],
        actions=[
            ActionTemplate('Urgent check of electrical system and inverter', Severity.CRITICAL, 2, 400),
        ],
    ),
}

# Static plant topology. Real topology is per-plant; callers may pass their own.
DEFAULT_DEPENDENCY_GRAPH: Dict[str, Any] = {
    'nodes': [
        {'id': 'modules', 'type': 'component'},
        {'id': 'strings', 'type': 'component'},
        {'id': 'inverter', 'type': 'component'},
        {'id': 'grid', 'type': 'external'},
    ],
    'edges': [
        {'from': 'modules', 'to': 'strings'},
        {'from': 'strings', 'to': 'inverter'},
        {'from': 'inverter', 'to': 'grid'},
    ],
}


# =============================================================================
# INFERENCE
# =============================================================================

def infer_root_cause(
    anomaly: Anomaly,
    dependency_graph: Optional[Dict[str, Any]] = None,
) -> RootCauseAnalysis:
    """
    Build an (unsaved) analysis for an anomaly.

    Types without rules get empty cause and action lists.
    """
    rules = RULES.get(anomaly.anomaly_type, RuleSet())

    causes = [
        ProbableCause(
            cause=t.cause,
            confidence=t.confidence,
            evidence=t.evidence,
            estimated_impact_kwh=t.estimate_impact(anomaly),
        )
        for t in rules.causes
    ]
    causes.sort(key=lambda c: c.confidence, reverse=True)

    actions = [
        RecommendedAction(
            action=t.action,
            priority=t.priority,
            estimated_time_hours=t.estimated_time_hours,
            estimated_cost_brl=t.estimated_cost_brl,
        )
        for t in rules.actions
    ]

    return RootCauseAnalysis(
        anomaly_id=anomaly.id,
        plant_id=anomaly.plant_id,
        probable_causes=causes,
        dependency_graph=copy.deepcopy(dependency_graph or DEFAULT_DEPENDENCY_GRAPH),
        recommended_actions=actions,
    )


def analyze_root_cause(
    anomaly_id: str,
    settings: Optional[EngineSettings] = None,
    dependency_graph: Optional[Dict[str, Any]] = None,
) -> AnalysisOutcome:
    """
    Analyze a stored anomaly and link the analysis back to it.

    An anomaly has at most one analysis. If one exists already (including
    one created by a concurrent request) it is returned with created=False.
    A failed back-link leaves the analysis in place and is reported in
    AnalysisOutcome.warnings.

    Raises:
        InputError: anomaly_id missing
        NotFound: No anomaly with that id
        PersistenceFailure: The analysis could not be saved
    """
    if not isinstance(anomaly_id, str) or not anomaly_id.strip():
        raise InputError("anomaly_id is required")
    anomaly_id = anomaly_id.strip()

    settings = settings or get_default_settings()
    db_path = settings.database_path

    anomaly = get_anomaly(db_path, anomaly_id)
    if anomaly is None:
        raise NotFound(f"Anomaly not found: {anomaly_id}")

    existing = get_root_cause_analysis(db_path, anomaly_id)
    if existing is not None:
        outcome = AnalysisOutcome(rca=existing, created=False)
        if anomaly.root_cause_id != existing.id:
            _link(db_path, anomaly_id, existing.id, outcome)
        return outcome

    rca = infer_root_cause(anomaly, dependency_graph)

    try:
        rca = insert_root_cause_analysis(db_path, rca)
    except sqlite3.IntegrityError:
        existing = get_root_cause_analysis(db_path, anomaly_id)
        if existing is None:
            raise PersistenceFailure(f"Failed to save root-cause analysis for {anomaly_id}")
        message = f"Anomaly {anomaly_id} was analyzed concurrently; returning stored analysis"
        logger.warning(message)
        return AnalysisOutcome(rca=existing, created=False, warnings=[message])

    outcome = AnalysisOutcome(rca=rca, created=True)
    _link(db_path, anomaly_id, rca.id, outcome)

    logger.info(
        f"Root-cause analysis {rca.id} for anomaly {anomaly_id} "
        f"({anomaly.anomaly_type.value}): {len(rca.probable_causes)} causes, "
        f"{len(rca.recommended_actions)} actions"
    )
    return outcome


def _link(db_path: str, anomaly_id: str, rca_id: str, outcome: AnalysisOutcome) -> None:
    try:
        set_root_cause_link(db_path, anomaly_id, rca_id)
    except PersistenceFailure as e:
        message = f"Analysis {rca_id} saved but anomaly {anomaly_id} not linked: {e.message}"
        logger.warning(message)
        outcome.warnings.append(message)

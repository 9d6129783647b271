"""
Anomaly Reporting
=================
Summary statistics and display tables for stored anomalies and analyses.
"""

from collections import Counter
from typing import Dict, Any, List

import pandas as pd

from .models import Anomaly, AnomalyState, RootCauseAnalysis, Severity

TABLE_COLUMNS = [
    'Timestamp', 'Plant', 'Type', 'Severity', 'Confidence', 'Detector',
    'Metric', 'Expected', 'Actual', 'Deviation %', 'State',
]


def anomaly_stats(anomalies: List[Anomaly]) -> Dict[str, Any]:
    """
    Count anomalies by status, severity, type and detector.

    'critical' and 'high' only count anomalies whose workflow status is
    still active.
    """
    active = [a for a in anomalies if a.status == 'active']
    return {
        'total': len(anomalies),
        'active': len(active),
        'critical': sum(1 for a in active if a.severity == Severity.CRITICAL),
        'high': sum(1 for a in active if a.severity == Severity.HIGH),
        'analyzed': sum(1 for a in anomalies if a.state == AnomalyState.ANALYZED),
        'by_type': dict(Counter(a.anomaly_type.value for a in anomalies)),
        'by_detector': dict(Counter(a.detected_by.value for a in anomalies)),
        'by_severity': dict(Counter(a.severity.value for a in anomalies)),
    }


def format_anomaly_table(anomalies: List[Anomaly]) -> pd.DataFrame:
    """Convert anomalies to a DataFrame for display."""
    rows = []

    for a in anomalies:
        rows.append({
            'Timestamp': a.timestamp,
            'Plant': a.plant_id,
            'Type': a.anomaly_type.value,
            'Severity': a.severity.value,
            'Confidence': round(a.confidence, 2),
            'Detector': a.detected_by.value,
            'Metric': a.metric_affected.value,
            'Expected': a.expected_value,
            'Actual': a.actual_value,
            'Deviation %': round(a.deviation_percent, 1) if a.deviation_percent is not None else None,
            'State': a.state.value,
        })

    if not rows:
        return pd.DataFrame(columns=TABLE_COLUMNS)

    return pd.DataFrame(rows, columns=TABLE_COLUMNS)


def format_rca_summary(rca: RootCauseAnalysis) -> str:
    """Generate text summary of a root-cause analysis."""
    lines = [
        "=" * 60,
        "ROOT-CAUSE ANALYSIS",
        "=" * 60,
        f"Anomaly: {rca.anomaly_id}",
        f"Plant:   {rca.plant_id}",
        f"Status:  {rca.investigation_status}",
        "",
        "Probable causes:",
    ]

    if not rca.probable_causes:
        lines.append("  (none identified)")
    for i, cause in enumerate(rca.probable_causes, 1):
        lines.append(
            f"  {i}. {cause.cause} ({cause.confidence:.0%}) - "
            f"{cause.evidence}; impact {cause.estimated_impact_kwh:.1f} kWh"
        )

    lines.extend(["", "Recommended actions:"])
    if not rca.recommended_actions:
        lines.append("  (none)")
    for action in rca.recommended_actions:
        lines.append(
            f"  [{action.priority.value.upper()}] {action.action} - "
            f"{action.estimated_time_hours:g} h, R$ {action.estimated_cost_brl:,.2f}"
        )

    edges = rca.dependency_graph.get('edges', [])
    if edges:
        chain = " -> ".join([edges[0]['from']] + [e['to'] for e in edges])
        lines.extend(["", f"Dependency chain: {chain}"])

    return "\n".join(lines)

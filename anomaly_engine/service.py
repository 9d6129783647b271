"""
Request Handler
===============
Transport-neutral entry point: takes a decoded request payload, dispatches
on its 'action' and returns (status_code, response_body).

Actions:
- detect_anomalies: plant_id, period_hours?, config?
- analyze_root_cause: anomaly_id
- list_anomalies: plant_id?, limit?, severity?, anomaly_type?
- get_root_cause_analysis: anomaly_id
- anomaly_stats: plant_id?
"""

import logging
from typing import Dict, Any, Optional, Tuple, Callable

from .aggregator import detect_anomalies
from .anomaly_store import list_anomalies, get_root_cause_analysis
from .config_validation import EngineSettings, get_default_settings
from .errors import AnomalyEngineError, InputError, NotFound
from .models import AnomalyType, Severity
from .reporting import anomaly_stats
from .root_cause import analyze_root_cause

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

MAX_LIST_LIMIT = 1000


def configure_logging(level: str = "INFO") -> None:
    """Send engine logs to stderr at the given level."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _detect(payload: Dict[str, Any], settings: EngineSettings) -> Dict[str, Any]:
    result = detect_anomalies(
        payload.get('plant_id'),
        period_hours=payload.get('period_hours'),
        config=payload.get('config'),
        settings=settings,
    )
    return result.to_dict()


def _analyze(payload: Dict[str, Any], settings: EngineSettings) -> Dict[str, Any]:
    return analyze_root_cause(payload.get('anomaly_id'), settings=settings).to_dict()


def _optional_filter(payload: Dict[str, Any], key: str, allowed: Optional[set] = None) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InputError(f"{key} must be a string")
    if allowed is not None and value not in allowed:
        raise InputError(f"Invalid {key}: {value!r}")
    return value


def _list(payload: Dict[str, Any], settings: EngineSettings) -> Dict[str, Any]:
    limit = payload.get('limit', 100)
    if isinstance(limit, bool) or not isinstance(limit, (int, str)):
        raise InputError("limit must be an integer")
    try:
        limit = int(limit)
    except ValueError:
        raise InputError("limit must be an integer")
    if not 1 <= limit <= MAX_LIST_LIMIT:
        raise InputError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

    anomalies = list_anomalies(
        settings.database_path,
        plant_id=_optional_filter(payload, 'plant_id'),
        limit=limit,
        severity=_optional_filter(payload, 'severity', {s.value for s in Severity}),
        anomaly_type=_optional_filter(payload, 'anomaly_type', {t.value for t in AnomalyType}),
    )
    return {'anomalies': [a.to_dict() for a in anomalies]}


def _get_rca(payload: Dict[str, Any], settings: EngineSettings) -> Dict[str, Any]:
    anomaly_id = payload.get('anomaly_id')
    if not isinstance(anomaly_id, str) or not anomaly_id.strip():
        raise InputError("anomaly_id is required")
    rca = get_root_cause_analysis(settings.database_path, anomaly_id.strip())
    if rca is None:
        raise NotFound(f"No root-cause analysis for anomaly {anomaly_id}")
    return {'rca': rca.to_dict()}


def _stats(payload: Dict[str, Any], settings: EngineSettings) -> Dict[str, Any]:
    anomalies = list_anomalies(
        settings.database_path, plant_id=_optional_filter(payload, 'plant_id'), limit=MAX_LIST_LIMIT,
    )
    return {'stats': anomaly_stats(anomalies)}


ACTIONS: Dict[str, Callable[[Dict[str, Any], EngineSettings], Dict[str, Any]]] = {
    'detect_anomalies': _detect,
    'analyze_root_cause': _analyze,
    'list_anomalies': _list,
    'get_root_cause_analysis': _get_rca,
    'anomaly_stats': _stats,
}


def handle_request(
    payload: Any,
    settings: Optional[EngineSettings] = None,
) -> Tuple[int, Dict[str, Any]]:
    """
    Handle one request.

    Returns:
        Tuple of (HTTP-style status code, JSON-serializable body). Success
        bodies carry success=True; error bodies carry 'error' and 'error_type'.
    """
    settings = settings or get_default_settings()

    if not isinstance(payload, dict):
        return 400, InputError("Request body must be an object").to_dict()

    action = payload.get('action')
    handler = ACTIONS.get(action) if isinstance(action, str) else None
    if handler is None:
        return 400, InputError(f"Invalid action: {action!r}").to_dict()

    logger.info(f"Anomaly engine request: action={action}, plant_id={payload.get('plant_id')}")

    try:
        body = handler(payload, settings)
    except AnomalyEngineError as e:
        if e.status_code >= 500:
            logger.error(f"Error in {action}: {e.message}", exc_info=True)
        else:
            logger.info(f"Rejected {action}: {e.message}")
        return e.status_code, e.to_dict()
    except Exception as e:
        logger.error(f"Unexpected error in {action}: {e}", exc_info=True)
        return 500, {'error': str(e), 'error_type': type(e).__name__}

    return 200, {'success': True, **body}

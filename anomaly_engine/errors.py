"""
Engine Error Taxonomy
=====================
Exceptions raised by the anomaly engine.

- InputError: invalid plant id, anomaly id or detection config (rejected
  before any detector runs)
- NotFound: root-cause analysis requested for an unknown anomaly
- DetectorFailure: a single detector failed; recovered by the aggregator
- PersistenceFailure: a store write failed; fails the whole operation
"""

from typing import Dict, Any, Optional


class AnomalyEngineError(Exception):
    """Base class for all engine errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'error': self.message,
            'error_type': type(self).__name__,
        }
        if self.details:
            result['details'] = self.details
        return result


class InputError(AnomalyEngineError):
    """Missing or invalid request input."""
    status_code = 400


class NotFound(AnomalyEngineError):
    """Requested record does not exist."""
    status_code = 404


class DetectorFailure(AnomalyEngineError):
    """A detector raised while fetching or scanning telemetry."""

    def __init__(self, detector: str, message: str):
        super().__init__(f"Detector '{detector}' failed: {message}", {'detector': detector})
        self.detector = detector


class PersistenceFailure(AnomalyEngineError):
    """Writing to the anomaly store failed."""

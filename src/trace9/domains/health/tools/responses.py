"""JSON error payloads for MCP tools.

Tools report rejected requests as data rather than raising, so the client
always receives a parseable ``{"status": "error", ...}`` body.
"""

from __future__ import annotations

import json

from trace9.core.storage.repository import RepositoryError
from trace9.domains.health.domain_logic.interventions import (
    CheckInError,
    DuplicateHypothesisError,
    InterventionLockedError,
    InterventionNotFoundError,
    OverlappingInterventionError,
)
from trace9.domains.health.domain_logic.log_processor import TargetsNotFoundError
from trace9.domains.health.domain_logic.validation import ValidationError

# Most specific first: InterventionLockedError is an OverlappingInterventionError
_ERROR_KINDS: tuple[tuple[type[Exception], str], ...] = (
    (ValidationError, "validation_error"),
    (TargetsNotFoundError, "targets_not_found"),
    (DuplicateHypothesisError, "duplicate_hypothesis"),
    (InterventionLockedError, "intervention_locked"),
    (OverlappingInterventionError, "overlapping_intervention"),
    (InterventionNotFoundError, "not_found"),
    (CheckInError, "check_in_rejected"),
    (RepositoryError, "storage_error"),
)

HANDLED_ERRORS = tuple(cls for cls, _ in _ERROR_KINDS)


def error_kind(exc: Exception) -> str:
    for cls, kind in _ERROR_KINDS:
        if isinstance(exc, cls):
            return kind
    return "internal_error"


def error_response(exc: Exception) -> str:
    return json.dumps({"status": "error", "error": error_kind(exc), "message": str(exc)})

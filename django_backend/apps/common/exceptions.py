"""
Common exceptions for the case orchestration core.

Provides custom exception classes for consistent error handling. Engines
raise these internally; public entry points catch them and report the
failure in a structured result.
"""

from typing import Any, Dict, List, Optional


class CaseManagementException(Exception):
    """Base exception for the case management core."""

    default_message = "An error occurred in the case management system"
    default_code = "case_management_error"

    def __init__(
        self,
        message: str = None,
        code: str = None,
        details: Dict[str, Any] = None
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(CaseManagementException):
    """Raised when a request is malformed or misses required fields."""

    default_message = "Validation failed"
    default_code = "validation_error"

    def __init__(self, errors: Optional[List[str]] = None, message: str = None, **kwargs):
        self.errors = list(errors or [])
        if message is None and self.errors:
            message = f"{self.default_message}: {'; '.join(self.errors)}"
        details = kwargs.pop('details', None) or {}
        details.setdefault('errors', self.errors)
        super().__init__(message=message, details=details, **kwargs)


class TransitionNotAllowed(CaseManagementException):
    """Raised when no transition edge exists for the requested move."""

    default_message = "Transition not allowed"
    default_code = "transition_not_allowed"


class PermissionDenied(CaseManagementException):
    """Raised when the requester's role may not take an existing edge."""

    default_message = "Permission denied"
    default_code = "permission_denied"


class ScheduleConflict(CaseManagementException):
    """Raised when a schedule request collides with existing tasks."""

    default_message = "Schedule conflict detected"
    default_code = "schedule_conflict"

    def __init__(self, conflicts: Optional[list] = None, message: str = None, **kwargs):
        self.conflicts = list(conflicts or [])
        super().__init__(message=message, **kwargs)


class RuleExecutionError(CaseManagementException):
    """Raised when a business rule action fails."""

    default_message = "Rule action failed"
    default_code = "rule_execution_error"


class NoEscalationPath(RuleExecutionError):
    """Raised when a task cannot be escalated any further."""

    default_message = "No escalation path available"
    default_code = "no_escalation_path"


class NotFound(CaseManagementException):
    """Raised when a case, task, rule or template is missing."""

    default_message = "Resource not found"
    default_code = "not_found"


class ConcurrentModification(CaseManagementException):
    """Raised when a persisted aggregate changed under a pending write."""

    default_message = "Resource was modified concurrently"
    default_code = "concurrent_modification"


def to_error_dict(exc: CaseManagementException) -> Dict[str, Any]:
    """
    Render an exception in the shape host layers return to clients.

    Args:
        exc: The exception that was raised

    Returns:
        Dictionary with message, code and details
    """
    return {
        'message': exc.message,
        'code': exc.code,
        'details': exc.details,
    }

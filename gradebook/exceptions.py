"""
Error taxonomy for the grading engine.

Every error carries the HTTP status the API layer answers with, so routes
never have to translate them one by one.
"""

from typing import Dict, List, Optional


class GradingError(Exception):
    status_code = 400

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}

    def __str__(self):
        return self.message


class ValidationError(GradingError):
    """Incomplete or out-of-range grade data, missing reasons, illegal state moves."""
    status_code = 422


class PermissionDenied(GradingError):
    status_code = 403


class NotFoundError(GradingError):
    status_code = 404


class ConflictError(GradingError):
    status_code = 409

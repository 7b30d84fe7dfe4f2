"""
Marketplace Error Taxonomy

Every error raised to a caller carries a human message, a machine-readable
code and optional details. The HTTP layer maps each class to a status code.

- ValidationError: bad input, missing precondition, duplicate unique key
- AuthorizationError: the principal may not act on the resource
- NotFoundError: a referenced entity does not exist

Failures of follow-up writes (stats, insights, notifications, push) are
never raised; they are logged and counted where they happen.
"""

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for errors surfaced to API callers"""

    status_code = 400
    default_code = "MARKETPLACE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MarketplaceError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthorizationError(MarketplaceError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    default_code = "NOT_FOUND"

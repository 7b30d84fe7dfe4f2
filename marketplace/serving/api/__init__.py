"""
API Module
"""
from .auth import get_current_principal, require_roles
from .middleware import RequestLoggingMiddleware, RateLimitMiddleware, SecurityHeadersMiddleware

__all__ = [
    "get_current_principal",
    "require_roles",
    "RequestLoggingMiddleware",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
]

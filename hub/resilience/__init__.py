"""
Hub Resilience Module
=====================

Error taxonomy and error-handling helpers.
"""

from .error_handler import (
    BillingError,
    ExternalServiceError,
    GmailError,
    HubError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    require_user,
)

__all__ = [
    "HubError",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    "NotFoundError",
    "ExternalServiceError",
    "BillingError",
    "GmailError",
    "require_user",
]

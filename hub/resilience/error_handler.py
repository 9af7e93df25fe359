"""Error taxonomy for the hub layer.

The API maps each class to an HTTP status; see server.py.
"""


class HubError(Exception):
    """Base exception for the hub layer. The message is shown to the user as-is."""

    pass


class NotAuthenticatedError(HubError):
    """No signed-in user."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class NotFoundError(HubError):
    """Referenced record does not exist."""

    pass


class NotAuthorizedError(HubError):
    """Signed-in user does not own the record."""

    pass


class ExternalServiceError(HubError):
    """A third-party API call failed."""

    pass


class BillingError(ExternalServiceError):
    """Stripe or Polar checkout failure."""

    pass


class GmailError(ExternalServiceError):
    """Google OAuth or Gmail API failure."""

    pass


def require_user(user_id: str | None) -> str:
    """Return the user id or raise NotAuthenticatedError."""
    if not user_id:
        raise NotAuthenticatedError()
    return user_id

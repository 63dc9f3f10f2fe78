"""Error kinds surfaced to the dashboard.

Every error carries a message that can be shown to the user as-is. None of
them is fatal: the page reports the message and stays interactive.
"""


class DashboardError(Exception):
    """Base class; ``str(err)`` is the user-facing message."""


class ConfigurationError(DashboardError):
    """Backend endpoint or credentials are missing."""


class MetadataFetchError(DashboardError):
    """People or funds could not be read."""


class DataFetchError(DashboardError):
    """Current positions or transaction history could not be read."""


class WriteValidationError(DashboardError):
    """A draft was rejected before reaching the backend."""


class WriteRejectedError(DashboardError):
    """The backend refused an insert (permission, constraint, ...)."""


class SubscriptionError(DashboardError):
    """Realtime change notifications are unavailable; manual refresh still works."""


class AuthError(DashboardError):
    """Sign-in, code verification or sign-out failed."""

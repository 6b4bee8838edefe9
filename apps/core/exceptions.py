"""
Exception taxonomy for the authorization core.

Permission checks never raise (they fail closed and return False) and
verification operations return result objects. The exceptions below are
raised by setup, bootstrap, and administrative operations, where the
system cannot safely proceed.
"""


class AuthzCoreException(Exception):
    """Base exception for authorization-core errors."""

    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AuthzCoreException):
    """Raised for unknown role/permission names and malformed input."""
    status_code = 400


class AuthorizationError(AuthzCoreException):
    """Raised when the acting user may not delegate the target role."""
    status_code = 403


class AuthenticationError(AuthzCoreException):
    """Raised when a TOTP, backup, or one-time code does not match."""
    status_code = 401


class RateLimitError(AuthzCoreException):
    """Raised when verification attempts are exhausted."""
    status_code = 429


class ConfigurationError(AuthzCoreException):
    """
    Raised when the system is misconfigured.

    Examples: a malformed role catalog at boot, or a delivery provider
    that is not configured when a code must be sent.
    """
    status_code = 500


class StepUpRequiredError(AuthzCoreException):
    """Raised when an operation needs completed two-factor enrollment."""
    status_code = 403

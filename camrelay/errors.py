"""
Error taxonomy shared by the stores and the HTTP layer.

Stores raise these; ``camrelay.main`` renders each one as
``{"error": message}`` with the attached status code.
"""


class RelayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RelayError):
    """A required field is missing or malformed."""

    status_code = 400


class PayloadTooLarge(ValidationError):
    """The request body exceeds the configured ceiling."""

    status_code = 413


class NotFound(RelayError):
    """Unknown device id or frame."""

    status_code = 404


class InternalError(RelayError):
    """Storage failure or unexpected exception."""

    status_code = 500

"""
Domain exceptions for the RFQ backend.

Services raise these; the API layer maps them onto HTTP responses through a
single handler registered in app.main.
"""
from typing import Optional


class RFQError(Exception):
    """Base class for all RFQ domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(RFQError):
    """Requested RFQ, supplier or SQR does not exist."""

    status_code = 404


class InvalidStateError(RFQError):
    """Operation is not allowed in the entity's current state."""

    status_code = 400


class ValidationError(RFQError):
    """Caller supplied an invalid value (e.g. unknown supplier status)."""

    status_code = 400


class WorkbookFormatError(RFQError):
    """Uploaded bytes are not a readable workbook."""

    status_code = 400


class WorkbookAuthenticityError(RFQError):
    """
    Verification token in an uploaded workbook is missing or stale.

    Raised before any cell value is applied, so a rejected upload never
    changes stored data.
    """

    status_code = 400


class NotificationError(RFQError):
    """Mail transport failed to deliver a message."""

    status_code = 502

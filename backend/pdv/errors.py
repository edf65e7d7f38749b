# Overview: Error taxonomy shared by services and routes.

"""
Error taxonomy (authoritative)

- ValidationError: bad input, raised before any write.
- NotFoundError: a referenced product/customer/sale/creditor is absent.
- ConstraintError: the store rejected a write (integrity violation).
- TransientError: the store is unavailable or the row kept changing under us.

Routes translate these into JSON bodies using `status_code` and `to_dict()`.
"""


class PdvError(Exception):
    """Base class for domain errors."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PdvError):
    """400-level input problem."""
    status_code = 400


class NotFoundError(PdvError):
    """404-level missing reference."""
    status_code = 404


class ConstraintError(PdvError):
    """409-level write rejected by the store."""
    status_code = 409


class TransientError(PdvError):
    """503-level store unavailable; safe to retry."""
    status_code = 503

"""Closed error taxonomy shared by the store, the API routes and the gateway."""

from typing import Any, Dict


class RegattaError(Exception):
    """Base class; subclasses pin the HTTP status and stable error code."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.code.replace("_", " ")

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(RegattaError):
    status_code = 400
    code = "bad_request"


class NotFound(RegattaError):
    status_code = 404
    code = "not_found"


class StoreError(RegattaError):
    """Any failure of the underlying database driver.

    The driver's own text is logged where the failure happens and never
    travels in ``message``.
    """

    status_code = 500
    code = "store_error"


def envelope(code: str, message: str) -> Dict[str, Any]:
    return {"code": code, "message": message}

from __future__ import annotations

import traceback
from typing import Any, Dict, Optional

GENERIC_SERVER_ERROR = "Internal server error"


class ClickFitError(Exception):
    """Base class for failures that map onto a JSON error response."""

    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "message": self.message}
        if self.code:
            payload["code"] = self.code
        return payload


class BadRequest(ClickFitError):
    status_code = 400


class UploadRejected(BadRequest):
    """A file failed the upload policy or a transport limit."""


class InvalidFilename(BadRequest):
    """A client supplied name does not stay inside the storage root."""

    def __init__(self, message: str = "Invalid filename") -> None:
        super().__init__(message)


class NotFound(ClickFitError):
    status_code = 404


class Conflict(ClickFitError):
    status_code = 409


def unexpected_error_payload(exc: BaseException, *, debug: bool) -> Dict[str, Any]:
    """Shape an unhandled exception; details only leak in development."""
    if not debug:
        return {"success": False, "message": GENERIC_SERVER_ERROR}
    return {
        "success": False,
        "message": str(exc) or GENERIC_SERVER_ERROR,
        "stack": "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    }

"""
Domain error raised by services; rendered as {"error", "message"} by main.py.
"""
from typing import Any, Optional


class ServiceError(Exception):
    def __init__(
        self,
        status_code: int,
        error: str,
        message: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message or error)
        self.status_code = status_code
        self.error = error
        self.message = message or error
        self.extra = extra or {}
        self.headers = headers

    def to_dict(self) -> dict[str, Any]:
        body = {"error": self.error, "message": self.message}
        body.update(self.extra)
        return body


def validation_error(message: str, **extra: Any) -> ServiceError:
    return ServiceError(400, "Validation Error", message, extra or None)


def not_found(message: str, **extra: Any) -> ServiceError:
    return ServiceError(404, "Not Found", message, extra or None)

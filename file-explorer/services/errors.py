"""Error taxonomy shared by services and blueprints.

Services raise these; app.py renders every one as ``{"error": message}``
with the matching HTTP status.
"""

from __future__ import annotations

from typing import Any, Dict


class ApiError(Exception):
    status = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        payload.update(self.extra)
        return payload


class BadRequest(ApiError):
    status = 400


class Unauthorized(ApiError):
    status = 401


class Forbidden(ApiError):
    status = 403


class NotFound(ApiError):
    status = 404


class Conflict(ApiError):
    status = 409


class InternalError(ApiError):
    status = 500


class BadGateway(ApiError):
    status = 502

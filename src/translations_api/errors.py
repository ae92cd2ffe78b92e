"""
translations_api.errors — Typed API failures.

Every store outcome the resource handler cannot turn into a success is
raised as one of these; the Lambda entrypoint maps them to responses.
"""

from __future__ import annotations

from typing import Any

INTERNAL_ERROR_MESSAGE = "Internal server error"


class ApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, parameters: list[dict[str, Any]] | None = None) -> None:
        self.message = message
        self.parameters = parameters or []
        super().__init__(message)


class BadRequest(ApiError):
    status_code = 400
    code = "BAD_REQUEST"


class QueryError(BadRequest):
    """Malformed filter expression."""

    code = "QUERY_ERROR"


class PreconditionFailed(BadRequest):
    """Delete blocked because other records still reference the target."""

    code = "IN_USE"


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class UnprocessableEntity(ApiError):
    """Uniqueness or reference violation, with the offending field in parameters."""

    status_code = 422
    code = "UNPROCESSABLE_ENTITY"


class InternalError(ApiError):
    """Store or transport failure.

    detail holds the raw store message; message is what callers may see.
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(INTERNAL_ERROR_MESSAGE)


def validation_parameter(key: str, value: Any) -> dict[str, Any]:
    return {"key": key, "value": "" if value is None else str(value)}

"""Unified API response envelopes."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ErrorResponse(BaseModel):
    """Error body rendered by the exception handlers."""

    status: int
    message: str
    code: str


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope wrapping the endpoint payload in ``data``."""

    status: int = 200
    message: str = "Success"
    data: T | None = None


ERROR_RESPONSES: dict[int | str, dict] = {
    status: {"model": ErrorResponse} for status in (401, 403, 404, 422, 429)
}


def success_response(data: T, status: int = 200, message: str = "Success") -> dict:
    """Wrap ``data`` in the success envelope."""
    return {"status": status, "message": message, "data": data}

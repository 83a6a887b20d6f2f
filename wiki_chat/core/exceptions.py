"""Application exception classes and handlers."""

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


# --- Request identity (401) ---


class UnauthenticatedError(AppException):
    """No verified user identity on the request."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message=message, code="NOT_AUTHENTICATED", status_code=401)


# --- Validation (400) ---


class ValidationError(AppException):
    """Malformed input, such as a missing required field."""

    def __init__(self, message: str = "Invalid input") -> None:
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400)


# --- Forbidden (403) ---


class ForbiddenError(AppException):
    """The requester does not own the resource."""

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message=message, code="FORBIDDEN", status_code=403)


# --- Not Found (404) ---


class NotFoundError(AppException):
    """Requested resource does not exist."""

    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND") -> None:
        super().__init__(message=message, code=code, status_code=404)


class SessionNotFoundError(NotFoundError):
    """Chat session does not exist."""

    def __init__(self, session_id: str | None = None) -> None:
        message = "Chat session not found"
        if session_id:
            message = f"Chat session not found: {session_id}"
        super().__init__(message=message, code="SESSION_NOT_FOUND")


class MessageNotFoundError(NotFoundError):
    """Chat message does not exist."""

    def __init__(self, message_id: int | None = None) -> None:
        message = "Chat message not found"
        if message_id is not None:
            message = f"Chat message not found: {message_id}"
        super().__init__(message=message, code="MESSAGE_NOT_FOUND")


# --- Knowledge base (502) ---


class KnowledgeBaseError(AppException):
    """The wiki content service failed or returned an error."""

    def __init__(self, message: str = "Knowledge base request failed") -> None:
        super().__init__(message=message, code="KNOWLEDGE_BASE_ERROR", status_code=502)


# --- LLM provider ---


class LLMServiceError(AppException):
    """Base class for LLM provider failures.

    ``retryable`` is the backoff policy: whether another attempt of the same
    request may succeed. ``user_retryable`` tells the client whether resending
    the whole turn is worth it. ``message`` is always safe to show end users.
    """

    retryable: bool = False
    user_retryable: bool = True

    def __init__(self, message: str, code: str, status_code: int) -> None:
        super().__init__(message=message, code=code, status_code=status_code)


class AuthenticationError(LLMServiceError):
    """The provider rejected our credentials. Operator-facing."""

    user_retryable = False

    def __init__(self) -> None:
        super().__init__(
            message="Authentication failed. Please check your API key configuration.",
            code="LLM_AUTHENTICATION_FAILED",
            status_code=502,
        )


class RateLimitError(LLMServiceError):
    """The provider throttled the request."""

    retryable = True

    def __init__(self) -> None:
        super().__init__(
            message="The assistant is busy right now. Please try again shortly.",
            code="LLM_RATE_LIMITED",
            status_code=429,
        )


class ServiceUnavailableError(LLMServiceError):
    """The provider returned a server-side error."""

    retryable = True

    def __init__(self) -> None:
        super().__init__(
            message="The AI service is temporarily unavailable. Please try again later.",
            code="LLM_UNAVAILABLE",
            status_code=503,
        )


class LLMTimeoutError(LLMServiceError):
    """The provider did not answer in time."""

    retryable = True

    def __init__(self) -> None:
        super().__init__(
            message="Request timed out. Please try again.",
            code="LLM_TIMEOUT",
            status_code=504,
        )


class LLMConnectionError(LLMServiceError):
    """The connection to the provider failed or was reset."""

    retryable = True

    def __init__(self) -> None:
        super().__init__(
            message="Could not reach the AI service. Please try again.",
            code="LLM_CONNECTION_ERROR",
            status_code=503,
        )


class StreamInterruptedError(LLMServiceError):
    """The stream broke after output was already delivered."""

    def __init__(self) -> None:
        super().__init__(
            message="Connection interrupted while receiving response. Please try again.",
            code="LLM_STREAM_INTERRUPTED",
            status_code=502,
        )


class GenerationError(LLMServiceError):
    """Any other provider failure."""

    def __init__(self) -> None:
        super().__init__(
            message="Failed to generate response. Please try again.",
            code="LLM_GENERATION_FAILED",
            status_code=500,
        )


# --- Exception Handlers ---


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Central exception handler for AppException."""
    logger.warning(
        "Request failed",
        operation=f"{request.method} {request.url.path}",
        code=exc.code,
        status=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": exc.status_code,
            "message": exc.message,
            "code": exc.code,
        },
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request body validation failures in the common error shape."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = first.get("msg", "Invalid request")
    message = f"{field}: {detail}" if field else detail
    logger.info(
        "Request validation failed",
        operation=f"{request.method} {request.url.path}",
        code="VALIDATION_ERROR",
        status=422,
    )
    return JSONResponse(
        status_code=422,
        content={"status": 422, "message": message, "code": "VALIDATION_ERROR"},
    )

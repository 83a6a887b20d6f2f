"""ASGI middleware: access token verification and per-request log context."""

import uuid
from dataclasses import dataclass

import jwt
import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from wiki_chat.core.config import settings

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"

PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/",
        "/health",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/api/v1/chat/health",
    }
)
DOC_PREFIXES = ("/docs", "/redoc")


class TokenRejected(Exception):
    """An access token that must not be trusted."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class TokenIdentity:
    user_id: str
    email: str | None = None


def is_public_path(path: str) -> bool:
    normalized = path.rstrip("/") or "/"
    return normalized in PUBLIC_PATHS or path.startswith(DOC_PREFIXES)


def verify_access_token(token: str) -> TokenIdentity:
    """Decode a platform-issued access token into the caller's identity.

    Raises:
        TokenRejected: expired, malformed, wrongly signed, not an access
            token, or without a subject.
    """
    try:
        claims = jwt.decode(
            token,
            settings.auth.secret_key.get_secret_value(),
            algorithms=[settings.auth.algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenRejected("TOKEN_EXPIRED", "Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenRejected("INVALID_TOKEN", "Invalid token") from exc

    if claims.get("type", "access") != "access":
        raise TokenRejected("INVALID_TOKEN", "Invalid token type")
    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise TokenRejected("INVALID_TOKEN", "Invalid token")
    return TokenIdentity(user_id=subject, email=claims.get("email"))


class AuthMiddleware:
    """Pure ASGI middleware, so streamed responses pass through untouched.

    Every HTTP request gets a request id bound into the structlog context and
    echoed in ``X-Request-ID``. Non-public routes additionally need a bearer
    token; the verified subject lands in ``request.state.user_id``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        send = _with_request_id(send, request_id)

        if scope.get("method") == "OPTIONS" or is_public_path(scope["path"]):
            await self.app(scope, receive, send)
            return

        scheme, _, token = headers.get("authorization", "").partition(" ")
        try:
            if scheme != "Bearer" or not token.strip():
                raise TokenRejected("NOT_AUTHENTICATED", "Authorization header required")
            identity = verify_access_token(token.strip())
        except TokenRejected as exc:
            await self._reject(scope, receive, send, exc)
            return

        state = scope.setdefault("state", {})
        state["user_id"] = identity.user_id
        state["email"] = identity.email
        structlog.contextvars.bind_contextvars(user_id=identity.user_id)

        await self.app(scope, receive, send)

    @staticmethod
    async def _reject(
        scope: Scope, receive: Receive, send: Send, exc: TokenRejected
    ) -> None:
        logger.info(
            "Request rejected",
            operation=f"{scope.get('method')} {scope['path']}",
            code=exc.code,
            status=401,
        )
        response = JSONResponse(
            status_code=401,
            content={"status": 401, "message": exc.message, "code": exc.code},
        )
        await response(scope, receive, send)


def _with_request_id(send: Send, request_id: str) -> Send:
    async def send_with_header(message: Message) -> None:
        if message["type"] == "http.response.start":
            MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
        await send(message)

    return send_with_header

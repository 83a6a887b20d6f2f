"""Per-user request rate limiting."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def user_or_address_key(request: Request) -> str:
    """Limit by authenticated user id, falling back to the client address."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_address_key)

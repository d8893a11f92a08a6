"""Bearer-token security gate for the HTTP API."""

import hmac
import logging

from aiohttp import web

from src.config import settings

logger = logging.getLogger(__name__)

_OPEN_PATHS = frozenset({"/health"})


def is_authorized(request: web.Request) -> bool:
    """Check the request's ``Authorization: Bearer <token>`` header.

    Returns False for unknown tokens. With no tokens configured every
    request is rejected.
    """
    allowed = settings.get_api_tokens()
    if not allowed:
        logger.warning("API_TOKENS is empty; rejecting all API requests")
        return False

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    token = token.strip()
    return any(hmac.compare_digest(token, candidate) for candidate in allowed)


@web.middleware
async def auth_middleware(request: web.Request, handler) -> web.StreamResponse:  # noqa: ANN001
    """Reject unauthenticated requests before any handler runs."""
    if request.path in _OPEN_PATHS:
        return await handler(request)
    if not is_authorized(request):
        logger.warning("Unauthorized request: %s %s", request.method, request.path)
        return web.json_response({"error": "Unauthorized"}, status=401)
    return await handler(request)

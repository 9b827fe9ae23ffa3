"""Enforcement: deny blacklisted actors before any route handler runs."""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from botguard.config import UNKNOWN_USER_AGENT
from botguard.models import IdentityKey
from botguard.server.blacklist import BlacklistStore

logger = logging.getLogger("botguard.enforcement")

READ_METHODS = frozenset({"GET", "HEAD"})


def client_address(request: Request) -> Optional[str]:
    """Peer address, unwrapped from X-Forwarded-For and IPv4-mapped IPv6."""
    ip = request.headers.get("x-forwarded-for")
    if ip:
        ip = ip.split(",")[0].strip()
    if not ip:
        ip = request.client.host if request.client else None
    if ip and ip.startswith("::ffff:"):
        ip = ip[len("::ffff:"):]
    return ip


def client_identity(request: Request) -> IdentityKey:
    """The identity key used both for blacklist writes and for enforcement."""
    return IdentityKey(client_address(request) or "unknown", request.headers.get("user-agent") or UNKNOWN_USER_AGENT)


class BlacklistMiddleware(BaseHTTPMiddleware):
    """Short-circuits read requests from blacklisted identities with 403.

    State-changing requests pass through unchecked. The check never mutates
    the store.
    """

    def __init__(self, app, store: BlacklistStore):
        super().__init__(app)
        self.store = store

    async def dispatch(self, request: Request, call_next):
        if request.method not in READ_METHODS:
            return await call_next(request)

        identity = client_identity(request)
        if self.store.contains(identity.ip, identity.user_agent):
            logger.warning("[Bot Blocked] %s (%s) %s %s", identity.ip, identity.user_agent,
                           request.method, request.url.path)
            return JSONResponse(status_code=403, content={"error": "Access denied: bot detected"})

        return await call_next(request)

"""FastAPI application: telemetry ingestion, enforcement and blacklist administration."""

import json
import logging
import os
import secrets
import uuid
from typing import Any, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import AliasChoices, BaseModel, Field, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.sessions import SessionMiddleware

from botguard import __version__
from botguard.config import UNKNOWN_USER_AGENT, Settings
from botguard.logging_config import configure_logging, get_trace_logger
from botguard.models import extract_user_id, parse_events
from botguard.server.blacklist import BlacklistStore
from botguard.server.classifier import SuspicionClassifier, Verdict
from botguard.server.collaborators import (STATUS_BLOCKED, STATUS_OFFLINE, AccountStore, AdminNotifier,
                                           InMemoryAccountStore, LoggingNotifier)
from botguard.server.middleware import BlacklistMiddleware, client_identity

logger = logging.getLogger("botguard")


class AdminLoginRequest(BaseModel):
    token: str


class UserActionRequest(BaseModel):
    """Admin block/unblock request keyed by the external account identifier."""

    user_id: str = Field(..., validation_alias=AliasChoices("userId", "user_id"), min_length=1)

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


def mark_account_blocked(accounts: AccountStore, user_id: Optional[str], ip: str, trace_id: str) -> None:
    """Best-effort: flag the correlated account as blocked. Never raises."""
    tlog = get_trace_logger(trace_id)
    try:
        if user_id:
            if accounts.set_status(user_id, STATUS_BLOCKED):
                tlog.info("[Bot Detection] Marked user %s as blocked", user_id)
            else:
                tlog.info("[Bot Detection] No account %s to mark as blocked", user_id)
            return
        account = accounts.find_by_address(ip)
        if account is not None:
            accounts.set_status(account.user_id, STATUS_BLOCKED)
            tlog.info("[Bot Detection] Marked user %s as blocked by IP", account.user_id)
    except Exception:
        tlog.exception("Failed to update account status to blocked")


def notify_admins(notifier: AdminNotifier, event: str, data: dict, trace_id: str) -> None:
    """Best-effort push to connected admin observers. Never raises."""
    tlog = get_trace_logger(trace_id)
    try:
        notifier.notify(event, data)
    except Exception:
        tlog.warning("Failed to emit %s", event, exc_info=True)


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _tail(path: str, lines: int) -> list:
    # Efficiently read last lines
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        filesize = f.tell()
        blocksize = 1024
        data = bytearray()
        blocks = -1
        while len(data.splitlines()) <= lines and abs(blocks * blocksize) < filesize:
            f.seek(blocks * blocksize, os.SEEK_END)
            data[0:0] = f.read(blocksize)
            blocks -= 1
        if abs(blocks * blocksize) >= filesize:
            f.seek(0)
            data = bytearray(f.read())
    return data.decode("utf-8", errors="replace").splitlines()[-lines:]


def require_admin(request: Request) -> None:
    if not request.session.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BlacklistStore] = None,
    accounts: Optional[AccountStore] = None,
    notifier: Optional[AdminNotifier] = None,
    classifier: Optional[SuspicionClassifier] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_file, settings.log_level)
    logger.info("Starting bot guard service; blacklist at %s", settings.blacklist_path)

    store = store if store is not None else BlacklistStore(settings.blacklist_path)
    accounts = accounts if accounts is not None else InMemoryAccountStore()
    notifier = notifier if notifier is not None else LoggingNotifier()
    classifier = classifier or SuspicionClassifier()

    # Rate limiter setup
    limiter = Limiter(key_func=get_remote_address)
    app = FastAPI(title="Bot Guard API", version=__version__)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.state.settings = settings
    app.state.store = store
    app.state.accounts = accounts
    app.state.notifier = notifier
    app.state.classifier = classifier

    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
    # Added last so it runs first, ahead of sessions and routing
    app.add_middleware(BlacklistMiddleware, store=store)

    @app.post("/bot-events", status_code=status.HTTP_204_NO_CONTENT)
    async def ingest_bot_events(request: Request, background_tasks: BackgroundTasks):
        """Receive a telemetry batch. Always answers 204, whatever the verdict."""
        trace_id = uuid.uuid4().hex[:8]
        tlog = get_trace_logger(trace_id)
        identity = client_identity(request)

        body = _parse_body(await request.body())
        events = parse_events(body.get("events")) if isinstance(body, dict) else []
        tlog.debug("Batch from %s with %d events", identity.ip, len(events))

        try:
            verdict = classifier.classify(events)
        except Exception:
            tlog.exception("Classifier failed; treating batch as not suspicious")
            verdict = Verdict(suspicious=False)

        if verdict.suspicious:
            fingerprint = body.get("fingerprint")
            if not isinstance(fingerprint, str):
                fingerprint = None
            try:
                added = await run_in_threadpool(store.add, identity.ip, identity.user_agent,
                                                fingerprint=fingerprint,
                                                reason="detected:" + ",".join(verdict.matched))
            except Exception:
                tlog.exception("Error handling suspicious batch")
                added = False

            if added:
                user_id = extract_user_id(body)
                tlog.warning("[Bot Detection] Added to blacklist: %s (%s) rules=%s",
                             identity.ip, identity.user_agent, verdict.matched)
                background_tasks.add_task(mark_account_blocked, accounts, user_id, identity.ip, trace_id)
                background_tasks.add_task(notify_admins, notifier, "admin:blacklistAdded",
                                          {"ip": identity.ip, "status": STATUS_BLOCKED, "userId": user_id},
                                          trace_id)
            else:
                tlog.info("Suspicious batch from already blacklisted %s", identity.ip)

        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/admin/login")
    @limiter.limit("5/minute")
    async def admin_login(request: Request, login: AdminLoginRequest):
        if not settings.admin_token:
            logger.warning("Admin login attempted but ADMIN_TOKEN not set, denying")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access not configured")
        if not secrets.compare_digest(login.token, settings.admin_token):
            logger.warning("Unauthorized admin login attempt from %s", request.client.host if request.client else None)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
        request.session["is_admin"] = True
        logger.info("Admin session started")
        return {"success": True}

    @app.post("/admin/logout")
    async def admin_logout(request: Request):
        request.session.clear()
        return {"success": True}

    @app.get("/admin/blacklist", dependencies=[Depends(require_admin)])
    async def read_blacklist():
        entries = store.entries()
        return {"count": len(entries), "entries": [e.to_record() for e in entries]}

    # Handlers that rewrite the blacklist file are plain functions and run in the threadpool
    @app.delete("/admin/blacklist", dependencies=[Depends(require_admin)])
    def clear_blacklist():
        removed = store.clear()
        try:
            reset = accounts.reset_blocked(STATUS_OFFLINE)
            logger.info("Updated %d blocked users to %s", reset, STATUS_OFFLINE)
        except Exception:
            logger.exception("Error updating blocked users")
        logger.info("[Admin] Blacklist cleared")
        return {"message": "Blacklist cleared successfully", "removed": removed}

    @app.post("/admin/block", dependencies=[Depends(require_admin)])
    def block_user(action: UserActionRequest):
        try:
            account = accounts.get(action.user_id)
            if account is None or not account.ip:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User or IP not found")
            accounts.set_status(account.user_id, STATUS_BLOCKED)
            added = store.add(account.ip, account.user_agent or UNKNOWN_USER_AGENT, reason="admin")
        except HTTPException:
            raise
        except Exception:
            logger.exception("Failed to block user %s", action.user_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to block user")
        logger.info("User %s (%s) blocked", action.user_id, account.ip)
        return {"success": True, "added": added}

    @app.post("/admin/unblock", dependencies=[Depends(require_admin)])
    def unblock_user(action: UserActionRequest):
        try:
            account = accounts.get(action.user_id)
            if account is None or not account.ip:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User or IP not found")
            accounts.set_status(account.user_id, STATUS_OFFLINE)
            removed = store.remove(account.ip)
        except HTTPException:
            raise
        except Exception:
            logger.exception("Failed to unblock user %s", action.user_id)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to unblock user")
        logger.info("User %s (%s) unblocked", action.user_id, account.ip)
        return {"success": True, "removed": removed}

    @app.get("/admin/logs/recent", dependencies=[Depends(require_admin)])
    async def recent_logs(lines: int = 200):
        """Return the last N lines of the service log."""
        try:
            content = _tail(settings.log_file, max(1, lines))
        except FileNotFoundError:
            logger.warning("Log file not found when admin tried to fetch recent logs")
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Log file not found")
        except OSError as e:
            logger.exception("Error reading recent logs: %s", e)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error reading logs")
        logger.info("Admin fetched recent %d log lines", len(content))
        return {"lines": content}

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "blacklisted": len(store)}

    return app

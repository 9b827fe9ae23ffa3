"""Interfaces to the account store and the admin dashboard push channel.

Both are owned by the surrounding application; the in-memory versions here
are what the service runs with when nothing else is wired in.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger("botguard.collaborators")

STATUS_BLOCKED = "blocked"
STATUS_OFFLINE = "offline"


@dataclass
class Account:
    user_id: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    status: str = STATUS_OFFLINE


class AccountStore(Protocol):
    def get(self, user_id: str) -> Optional[Account]: ...

    def find_by_address(self, ip: str) -> Optional[Account]: ...

    def set_status(self, user_id: str, status: str) -> bool: ...

    def reset_blocked(self, to_status: str = STATUS_OFFLINE) -> int: ...


class AdminNotifier(Protocol):
    def notify(self, event: str, data: Dict[str, Any]) -> None: ...


class InMemoryAccountStore:
    def __init__(self):
        self._accounts: Dict[str, Account] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, ip: Optional[str] = None, user_agent: Optional[str] = None,
                 status: str = STATUS_OFFLINE) -> Account:
        account = Account(user_id=user_id, ip=ip, user_agent=user_agent, status=status)
        with self._lock:
            self._accounts[user_id] = account
        return account

    def get(self, user_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(user_id)

    def find_by_address(self, ip: str) -> Optional[Account]:
        with self._lock:
            for account in self._accounts.values():
                if account.ip == ip:
                    return account
        return None

    def set_status(self, user_id: str, status: str) -> bool:
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return False
            account.status = status
            return True

    def reset_blocked(self, to_status: str = STATUS_OFFLINE) -> int:
        changed = 0
        with self._lock:
            for account in self._accounts.values():
                if account.status == STATUS_BLOCKED:
                    account.status = to_status
                    changed += 1
        return changed


class LoggingNotifier:
    """Records admin notifications in the service log."""

    def notify(self, event: str, data: Dict[str, Any]) -> None:
        logger.info("Admin notification %s: %s", event, data)

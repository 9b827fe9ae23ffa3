"""Durable blacklist of identity keys.

The full set lives in memory for the lifetime of the process and is
rewritten to a JSON file after every mutation (write-through). One lock
serialises mutations and lookups, so a request never observes a half
applied change and two concurrent detections of the same actor produce a
single entry.
"""

import json
import logging
import os
import tempfile
import threading
from typing import List, Optional

from pydantic import ValidationError

from botguard.models import BlacklistEntry, IdentityKey

logger = logging.getLogger("botguard.blacklist")


class BlacklistStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()
        self._entries: List[BlacklistEntry] = []
        self.load()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    # --- persistence ---

    def load(self) -> None:
        """Read durable state; anything unusable resets it to an empty set."""
        with self._lock:
            self._entries = self._read()

    def _read(self) -> List[BlacklistEntry]:
        if not os.path.exists(self.path):
            logger.info("Blacklist file %s not found, initialising empty", self.path)
            self._write([])
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read().strip()
            if not content:
                self._write([])
                return []
            records = json.loads(content)
            if not isinstance(records, list):
                raise ValueError("blacklist file must hold a JSON array")
        except (OSError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error("Error reading blacklist file %s: %s; starting empty", self.path, e)
            self._write([])
            return []

        unique = []
        seen = set()
        skipped = 0
        for index, record in enumerate(records):
            try:
                entry = BlacklistEntry.model_validate(record)
            except ValidationError as e:
                logger.warning("Skipping invalid blacklist record #%d in %s: %s", index, self.path,
                               e.errors()[0]["msg"] if e.errors() else e)
                skipped += 1
                continue
            if entry.identity not in seen:
                seen.add(entry.identity)
                unique.append(entry)
        if skipped:
            self._write(unique)
        logger.info("Loaded %d blacklist entries from %s", len(unique), self.path)
        return unique

    def _write(self, entries: List[BlacklistEntry]) -> bool:
        """Replace the file atomically. A failure leaves memory authoritative."""
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".blacklist-", suffix=".json", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump([e.to_record() for e in entries], f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError:
            logger.exception("Error writing blacklist file %s", self.path)
            return False
        return True

    # --- operations ---

    def add(self, ip: str, user_agent: str, fingerprint: Optional[str] = None,
            reason: Optional[str] = None) -> bool:
        """Insert an entry unless the identity key is already present."""
        key = IdentityKey(ip, user_agent)
        with self._lock:
            if any(e.identity == key for e in self._entries):
                logger.debug("Already blacklisted: %s (%s)", ip, user_agent)
                return False
            entry = BlacklistEntry(ip=ip, user_agent=user_agent, fingerprint=fingerprint, reason=reason)
            self._entries.append(entry)
            self._write(self._entries)
        logger.info("[Blacklist] Added: %s (%s) reason=%s", ip, user_agent, reason)
        return True

    def remove(self, ip: str) -> bool:
        """Remove every entry for the address, whatever its user agent."""
        with self._lock:
            kept = [e for e in self._entries if e.ip != ip]
            removed = len(self._entries) - len(kept)
            self._entries = kept
            self._write(self._entries)
        logger.info("[Blacklist] Removed %d entries for %s", removed, ip)
        return removed > 0

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries = []
            self._write(self._entries)
        logger.info("[Blacklist] Cleared %d entries", count)
        return count

    def contains(self, ip: str, user_agent: str) -> bool:
        key = IdentityKey(ip, user_agent)
        with self._lock:
            return any(e.identity == key for e in self._entries)

    def entries(self) -> List[BlacklistEntry]:
        with self._lock:
            return list(self._entries)

"""Weak pseudo-identity derived from the runtime environment.

The fingerprint is a correlation key only. Collisions and spoofing are
acceptable; determinism across reloads in the same environment is not
negotiable.
"""

import logging
import os
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import requests

logger = logging.getLogger("botguard.fingerprint")

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def local_timezone_name() -> str:
    """Best guess at the IANA zone name (``Europe/Dublin``) of the host.

    Falls back to the abbreviation reported by the C library when no zone
    database path can be resolved.
    """
    tz = os.environ.get("TZ", "").lstrip(":")
    if tz and not os.path.isabs(tz):
        return tz
    try:
        with open("/etc/timezone", encoding="utf-8") as f:
            name = f.read().strip()
        if name:
            return name
    except OSError:
        pass
    target = os.path.realpath(tz if os.path.isabs(tz) else "/etc/localtime")
    if "zoneinfo/" in target:
        return target.split("zoneinfo/", 1)[1]
    return datetime.now().astimezone().tzname() or "unknown"


@dataclass(frozen=True)
class EnvironmentInfo:
    user_agent: str = "unknown"
    screen_resolution: str = "0x0"
    timezone: str = "unknown"
    plugin_count: int = 0
    hardware_concurrency: int = 0

    @classmethod
    def detect(cls) -> "EnvironmentInfo":
        """Describe the current process the way a browser would describe itself."""
        return cls(
            user_agent=requests.utils.default_user_agent(),
            screen_resolution="0x0",
            timezone=local_timezone_name(),
            plugin_count=0,
            hardware_concurrency=os.cpu_count() or 0,
        )

    def canonical(self) -> str:
        return "|".join([
            self.user_agent or "unknown",
            self.screen_resolution,
            self.timezone or "unknown",
            str(self.plugin_count),
            str(self.hardware_concurrency),
        ])


def fnv1a_32(data: bytes) -> int:
    h = FNV_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_fingerprint(env: Optional[EnvironmentInfo] = None) -> str:
    """Return ``fp_<base36 FNV-1a>`` for the environment. Never raises."""
    try:
        if env is None:
            env = EnvironmentInfo.detect()
        return f"fp_{to_base36(fnv1a_32(env.canonical().encode('utf-8')))}"
    except Exception:
        logger.debug("Fingerprint generation failed, using fallback", exc_info=True)
        return f"fp_unknown_{random.randint(0, 99999)}"

"""Runtime settings and detection constants."""

import os
import secrets
from dataclasses import dataclass, field
from typing import Optional

# --- Detection thresholds ---
# Classifier: mouse_summary above this linearity is treated as scripted movement
LINEARITY_SUSPICIOUS_THRESHOLD = 0.9

# Mouse linearity analyzer
MOUSE_SUMMARY_EVERY = 50        # emit a summary on every Nth sample
LINEARITY_WINDOW = 40           # max points used for the regression
LINEARITY_MIN_SAMPLES = 6
LINEARITY_MAX_RESIDUAL = 40.0   # mean residual (px) at which linearity reaches 0

# Scroll cadence analyzer
SCROLL_RING_SIZE = 200
SCROLL_RECENT_WINDOW = 8
SCROLL_FAST_DELTA_MS = 50
SCROLL_FAST_MIN_COUNT = 4

# Form timing analyzer
FAST_SUBMIT_MS = 700

# Risk score diagnostic
RISK_RECENT_SCROLL_WINDOW = 10

UNKNOWN_USER_AGENT = "unknown_ua"


@dataclass
class Settings:
    """Server settings, normally built from environment variables."""

    blacklist_path: str = os.path.join("data", "blacklist.json")
    session_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    admin_token: Optional[str] = None
    log_dir: str = "logs"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        # SECURITY: sessions are signed with SESSION_SECRET_KEY; a random key is used when unset
        # (generate with: python -c "import secrets; print(secrets.token_hex(32))")
        return cls(
            blacklist_path=os.environ.get("BOTGUARD_BLACKLIST_PATH", os.path.join("data", "blacklist.json")),
            session_secret=os.environ.get("SESSION_SECRET_KEY", secrets.token_hex(32)),
            admin_token=os.environ.get("ADMIN_TOKEN") or None,
            log_dir=os.environ.get("BOTGUARD_LOG_DIR", "logs"),
            log_level=os.environ.get("BOTGUARD_LOG_LEVEL", "INFO").upper(),
            host=os.environ.get("BOTGUARD_HOST", "0.0.0.0"),
            port=int(os.environ.get("BOTGUARD_PORT", "8000")),
        )

    @property
    def log_file(self) -> str:
        return os.path.join(self.log_dir, "botguard.log")

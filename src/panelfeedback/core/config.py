from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_PORT = 19876
SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60

@dataclass
class Settings:
    home_dir: str
    log_dir: str
    log_level: str
    host: str
    default_port: int
    poll_interval: float
    soft_timeout: float
    hard_timeout: float
    refusal_budget: int
    http_timeout: float
    retention_days: int
    debug_trace: bool

    @property
    def port_file(self) -> str:
        return os.path.join(self.home_dir, "port.json")

    @property
    def ledger_file(self) -> str:
        return os.path.join(self.home_dir, "pending-requests.json")

    @property
    def debug_log_file(self) -> str:
        return os.path.join(self.home_dir, "debug.log")

    @staticmethod
    def from_env() -> "Settings":
        default_home = str(Path(os.path.expanduser("~")) / ".panel-feedback")
        home_dir = os.getenv("PANEL_FEEDBACK_HOME") or default_home
        return Settings(
            home_dir=home_dir,
            log_dir=os.getenv("PANEL_FEEDBACK_LOG_DIR") or str(Path(home_dir) / "logs"),
            log_level=os.getenv("PANEL_FEEDBACK_LOG_LEVEL", "info"),
            host=os.getenv("PANEL_FEEDBACK_HOST", "127.0.0.1"),
            default_port=int(os.getenv("PANEL_FEEDBACK_DEFAULT_PORT", str(DEFAULT_PORT))),
            poll_interval=float(os.getenv("PANEL_FEEDBACK_POLL_INTERVAL", "0.5")),
            soft_timeout=float(os.getenv("PANEL_FEEDBACK_SOFT_TIMEOUT", "120")),
            hard_timeout=float(os.getenv("PANEL_FEEDBACK_HARD_TIMEOUT", str(SEVEN_DAYS_SECONDS))),
            refusal_budget=int(os.getenv("PANEL_FEEDBACK_REFUSAL_BUDGET", "10")),
            http_timeout=float(os.getenv("PANEL_FEEDBACK_HTTP_TIMEOUT", "5")),
            retention_days=int(os.getenv("PANEL_FEEDBACK_RETENTION_DAYS", "7")),
            debug_trace=os.getenv("PANEL_FEEDBACK_DEBUG", "true").lower() in {"1", "true", "yes"},
        )

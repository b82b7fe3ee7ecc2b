"""Centralized logging configuration for panelfeedback.

Both the Coordination Service and the stdio Transport Front call
``setup_logging`` once at startup. Console output always goes to
**stderr**: the Transport Front's stdout carries JSON-RPC frames and must
never receive log lines.

Log directory structure::

    ~/.panel-feedback/
    ├── port.json                 # Port registry (not a log)
    ├── pending-requests.json     # Pending-request ledger (not a log)
    ├── audit.jsonl               # Ledger lifecycle events
    ├── debug.log                 # RECV / SEND trace of the stdio front
    └── logs/
        ├── panelfeedback.log     # All Python logger output (rotating)
        └── rpc-calls.log         # Every JSON-RPC method handled (JSONL)
"""
from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import time
from typing import Any

# Dedicated logger for structured RPC call records
rpc_call_logger = logging.getLogger("panelfeedback._rpc_calls")


def setup_logging(log_dir: str, log_level: str = "info") -> None:
    """Configure the root logger with a stderr handler and a rotating file.

    Safe to call more than once; existing handlers are replaced.
    """
    os.makedirs(log_dir, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    fmt = logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(fmt)
    root.addHandler(stderr_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, "panelfeedback.log"),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    _setup_jsonl_logger(rpc_call_logger, os.path.join(log_dir, "rpc-calls.log"))

    logging.getLogger("panelfeedback").info(
        "Logging initialized: log_dir=%s, level=%s", log_dir, log_level
    )


def _setup_jsonl_logger(logger_instance: logging.Logger, path: str) -> None:
    """Configure a logger to write raw JSONL messages to a rotating file."""
    logger_instance.setLevel(logging.INFO)
    logger_instance.propagate = False
    logger_instance.handlers.clear()

    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger_instance.addHandler(handler)


def log_rpc_call(
    method: str,
    req_id: Any = None,
    tool_name: str | None = None,
    request_id: str | None = None,
    duration_ms: float | None = None,
    error: str | None = None,
) -> None:
    """Log one handled JSON-RPC call to the dedicated RPC calls log."""
    record: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "method": method,
    }
    if req_id is not None:
        record["id"] = req_id
    if tool_name:
        record["tool"] = tool_name
    if request_id:
        record["request_id"] = request_id
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 1)
    if error:
        record["error"] = error[:5000]
    try:
        rpc_call_logger.info(json.dumps(record, default=str))
    except Exception:  # noqa: BLE001
        pass


def append_to_file(path: str, line: str) -> None:
    """Append a timestamped line to a trace file, flushing immediately."""
    try:
        ts = time.strftime("%Y-%m-%dT%H:%M:%S")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"{ts} {line}\n")
            f.flush()
    except Exception:  # noqa: BLE001
        pass

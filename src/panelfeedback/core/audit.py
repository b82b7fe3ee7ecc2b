from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger("panelfeedback.audit")


def log_event(
    data_dir: str,
    event_type: str,
    payload: Dict[str, Any],
    request_id: Optional[str] = None,
) -> None:
    """Append one ledger lifecycle event to ``<data_dir>/audit.jsonl``."""
    record: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "type": event_type,
        "payload": payload,
    }
    if request_id:
        record["request_id"] = request_id
    try:
        os.makedirs(data_dir, exist_ok=True)
        with open(os.path.join(data_dir, "audit.jsonl"), "a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, default=str) + "\n")
    except OSError as exc:
        logger.warning("Failed to write audit event %s: %s", event_type, exc)

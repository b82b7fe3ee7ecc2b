from __future__ import annotations

import json
import logging
import os
from typing import Optional

logger = logging.getLogger("panelfeedback.registry")


class PortRegistry:
    """Single-record file advertising the Coordination Service's port.

    The record is overwritten on every bind and removed on clean shutdown.
    A missing or corrupt file means "not running" and is never an error.
    """

    def __init__(self, path: str, default_port: int) -> None:
        self.path = path
        self.default_port = default_port

    def write(self, port: int) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as handle:
                json.dump({"port": port}, handle, indent=2)
        except OSError as exc:
            logger.error("Failed to write port file %s: %s", self.path, exc)

    def delete(self) -> None:
        try:
            if os.path.exists(self.path):
                os.unlink(self.path)
        except OSError as exc:
            logger.error("Failed to delete port file %s: %s", self.path, exc)

    def read(self) -> Optional[int]:
        """Return the advertised port, or None when nothing usable is recorded."""
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError):
            return None
        port = data.get("port") if isinstance(data, dict) else None
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            return None
        return port

    def resolve_port(self) -> int:
        """Read the registry fresh, falling back to the default port."""
        port = self.read()
        return port if port is not None else self.default_port

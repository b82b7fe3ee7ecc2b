from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("panelfeedback.client")


class InvalidServiceReply(Exception):
    """The Coordination Service answered with something that is not a JSON object."""


@dataclass(frozen=True)
class ServiceReply:
    body: Dict[str, Any] = field(default_factory=dict)
    refused: bool = False


REFUSED = ServiceReply(refused=True)


class CoordinationClient:
    """HTTP client for one Coordination Service port.

    A refused connection is returned as :data:`REFUSED` instead of raised;
    the caller decides how many of those it tolerates. Any other transport
    failure propagates as ``httpx.HTTPError``.
    """

    def __init__(
        self,
        port: int,
        host: str = "127.0.0.1",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "CoordinationClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def submit(self, request_id: str, params: Dict[str, Any]) -> ServiceReply:
        return await self._post("/submit", {"requestId": request_id, "params": params})

    async def poll(self, request_id: str) -> ServiceReply:
        return await self._post("/poll", {"requestId": request_id})

    async def _post(self, path: str, payload: Dict[str, Any]) -> ServiceReply:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.ConnectError as exc:
            logger.debug("Connection to %s%s refused: %s", self.base_url, path, exc)
            return REFUSED
        try:
            body = response.json()
        except ValueError as exc:
            raise InvalidServiceReply(f"Invalid JSON response (HTTP {response.status_code})") from exc
        if not isinstance(body, dict):
            raise InvalidServiceReply(f"Unexpected response body: {body!r}")
        return ServiceReply(body=body)

"""MCP JSON-RPC handling for the stdio Transport Front.

Exposes a single tool, ``panel_feedback``, whose call is turned into a
submit + poll exchange with the Coordination Service.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from panelfeedback import __version__
from panelfeedback.core.config import Settings
from panelfeedback.core.errors import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    InvalidParams,
    InvalidRequest,
    PanelFeedbackError,
    TransportError,
)
from panelfeedback.core.logging_config import append_to_file, log_rpc_call
from panelfeedback.core.registry import PortRegistry
from panelfeedback.front.client import CoordinationClient
from panelfeedback.front.poller import RetryPolicy, poll_for_result

logger = logging.getLogger("panelfeedback.front")

PROTOCOL_VERSION = "2024-11-05"
TOOL_NAME = "panel_feedback"

PANEL_FEEDBACK_TOOL = {
    "name": TOOL_NAME,
    "description": (
        "Show a message in the IDE side panel and wait for the user's feedback. "
        "Supports predefined option buttons and image attachments."
    ),
    "inputSchema": {
        "type": "object",
        "properties": {
            "message": {
                "type": "string",
                "description": "Message to show to the user; Markdown is supported",
            },
            "predefined_options": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Predefined option buttons the user can pick from",
            },
        },
        "required": ["message"],
    },
}


class RpcMethod(str, Enum):
    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PING = "ping"


@dataclass(frozen=True)
class RpcRequest:
    method_name: str
    id: Any = None
    params: Dict[str, Any] = field(default_factory=dict)
    is_notification: bool = False

    @property
    def method(self) -> Optional[RpcMethod]:
        try:
            return RpcMethod(self.method_name)
        except ValueError:
            return None


def parse_request(line: str) -> RpcRequest:
    """Decode one stdin line into an :class:`RpcRequest`."""
    try:
        body = json.loads(line)
    except ValueError as exc:
        raise TransportError(str(exc)) from exc
    if not isinstance(body, dict):
        raise InvalidRequest("request must be a JSON object")
    method = body.get("method")
    if not isinstance(method, str):
        raise InvalidRequest("missing method")
    params = body.get("params")
    return RpcRequest(
        method_name=method,
        id=body.get("id"),
        params=params if isinstance(params, dict) else {},
        is_notification="id" not in body,
    )


def _result(req_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _error(req_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


Handler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class TransportFront:
    """Handles MCP requests; one instance serves the whole stdio session."""

    def __init__(
        self,
        settings: Settings,
        *,
        policy: Optional[RetryPolicy] = None,
        registry: Optional[PortRegistry] = None,
        client_factory: Optional[Callable[[int], CoordinationClient]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.policy = policy or RetryPolicy.from_settings(settings)
        self.registry = registry or PortRegistry(settings.port_file, settings.default_port)
        self.client_factory = client_factory or self._default_client
        self.clock = clock
        self.sleep = sleep
        self._handlers: Dict[RpcMethod, Handler] = {
            RpcMethod.INITIALIZE: self._handle_initialize,
            RpcMethod.INITIALIZED: self._handle_initialized,
            RpcMethod.TOOLS_LIST: self._handle_tools_list,
            RpcMethod.TOOLS_CALL: self._handle_tools_call,
            RpcMethod.PING: self._handle_ping,
        }
        missing = set(RpcMethod) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for {sorted(m.value for m in missing)}")

    def _default_client(self, port: int) -> CoordinationClient:
        return CoordinationClient(port, host=self.settings.host, timeout=self.settings.http_timeout)

    def _trace(self, line: str) -> None:
        if self.settings.debug_trace:
            append_to_file(self.settings.debug_log_file, line)

    async def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Process one stdin line; None means nothing is written back."""
        self._trace(f">>> RECV: {line.strip()[:100]}")
        try:
            request = parse_request(line)
        except TransportError as exc:
            logger.warning("Unparsable request line: %s", exc)
            label = "Invalid request" if isinstance(exc, InvalidRequest) else "Parse error"
            response: Optional[Dict[str, Any]] = _error(None, exc.code, f"{label}: {exc}")
        else:
            response = await self.handle(request)
        if response is not None:
            self._trace(f"<<< SEND: id={response.get('id')}")
        return response

    async def handle(self, request: RpcRequest) -> Optional[Dict[str, Any]]:
        method = request.method
        if method is None:
            if request.is_notification:
                return None
            return _error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method_name}")

        t0 = time.monotonic()
        error: Optional[str] = None
        try:
            result = await self._handlers[method](request.params)
            response = _result(request.id, result)
        except PanelFeedbackError as exc:
            error = str(exc)
            logger.info("%s failed: %s", request.method_name, error)
            response = _error(request.id, exc.code, error)
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or exc.__class__.__name__
            logger.exception("Unexpected failure handling %s", request.method_name)
            response = _error(request.id, INTERNAL_ERROR, error)

        log_rpc_call(
            method=request.method_name,
            req_id=request.id,
            tool_name=request.params.get("name") if method is RpcMethod.TOOLS_CALL else None,
            duration_ms=(time.monotonic() - t0) * 1000,
            error=error,
        )
        if method is RpcMethod.INITIALIZED or request.is_notification:
            return None
        return response

    # ── handlers ────────────────────────────────────────────

    async def _handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": "panel-feedback", "version": __version__},
            "capabilities": {"tools": {}},
        }

    async def _handle_initialized(self, params: Dict[str, Any]) -> None:
        return None

    async def _handle_ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _handle_tools_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": [PANEL_FEEDBACK_TOOL]}

    async def _handle_tools_call(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        if name != TOOL_NAME:
            raise InvalidParams(f"Unknown tool: {name}")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParams("arguments must be an object")

        request_id = str(uuid.uuid4())
        port = self.registry.resolve_port()
        logger.info("Tool call %s -> port %s", request_id, port)
        self._trace(f">>> Tool call: port={port}, requestId={request_id}")

        async with self.client_factory(port) as client:
            outcome = await poll_for_result(
                client,
                request_id,
                {"name": name, "arguments": arguments},
                self.policy,
                clock=self.clock,
                sleep=self.sleep,
            )
        return {"content": outcome.content}

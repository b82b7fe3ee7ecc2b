"""Error kinds shared by the Transport Front and the Coordination Service.

Every error carries the JSON-RPC ``code`` the Transport Front reports it
with. The soft timeout has no error kind: it is a normal result.
"""
from __future__ import annotations

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
INVALID_PARAMS = -32602
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000

# Poll replies for unknown ids carry this "kind" so the front can tell them apart
REQUEST_NOT_FOUND_KIND = "request_not_found"

SERVICE_UNAVAILABLE_MESSAGE = (
    "Panel Feedback is not running. Open the Panel Feedback view in your IDE first, "
    "then call the tool again."
)


class PanelFeedbackError(Exception):
    code = SERVER_ERROR


class TransportError(PanelFeedbackError):
    """A line on stdin could not be parsed as a JSON-RPC request."""

    code = PARSE_ERROR


class InvalidRequest(TransportError):
    """Well-formed JSON that is not a JSON-RPC request object."""

    code = INVALID_REQUEST


class ServiceUnavailable(PanelFeedbackError):
    """The Coordination Service refused connections beyond the retry budget."""

    def __init__(self, message: str = SERVICE_UNAVAILABLE_MESSAGE) -> None:
        super().__init__(message)


class RequestNotFound(PanelFeedbackError):
    """Poll on an id the ledger does not hold (unknown or already consumed)."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Request not found: {request_id}")
        self.request_id = request_id


class CollaboratorError(PanelFeedbackError):
    """The collaborator rejected the request; carries its message."""


class HardTimeout(PanelFeedbackError):
    def __init__(self, ceiling_seconds: float) -> None:
        days = ceiling_seconds / 86400
        super().__init__(f"Poll timeout after {days:g} days")
        self.ceiling_seconds = ceiling_seconds


class InvalidParams(PanelFeedbackError):
    code = INVALID_PARAMS


class SubmitRejected(PanelFeedbackError):
    """The Coordination Service refused to accept a submission."""

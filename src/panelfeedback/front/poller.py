"""Submit-then-poll loop with the two-tier timeout policy.

Time is read through an injectable ``clock`` and waited through an
injectable ``sleep`` so the whole policy can run against a fake clock.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from panelfeedback.core.config import SEVEN_DAYS_SECONDS, Settings
from panelfeedback.core.content import ensure_content, text_block
from panelfeedback.core.errors import (
    REQUEST_NOT_FOUND_KIND,
    CollaboratorError,
    HardTimeout,
    RequestNotFound,
    ServiceUnavailable,
    SubmitRejected,
)
from panelfeedback.front.client import CoordinationClient, InvalidServiceReply, ServiceReply

logger = logging.getLogger("panelfeedback.poller")


@dataclass(frozen=True)
class RetryPolicy:
    interval: float = 0.5
    soft_timeout: Optional[float] = 120.0
    hard_timeout: float = float(SEVEN_DAYS_SECONDS)
    refusal_budget: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            interval=settings.poll_interval,
            soft_timeout=settings.soft_timeout or None,
            hard_timeout=settings.hard_timeout,
            refusal_budget=settings.refusal_budget,
        )


@dataclass(frozen=True)
class PollOutcome:
    content: List[Dict[str, Any]]
    soft_timeout: bool = False


def soft_timeout_message(elapsed_seconds: float) -> str:
    minutes = round(elapsed_seconds / 60)
    return (
        f"⏳ Waited {minutes} minute(s); the user has not responded yet.\n\n"
        "To keep waiting for feedback, call the panel_feedback tool again.\n"
        "Or you can continue with the rest of the conversation."
    )


def _interpret_poll(request_id: str, body: Dict[str, Any]) -> Optional[PollOutcome]:
    status = body.get("status")
    if status == "completed":
        data = body.get("data") or {}
        return PollOutcome(content=ensure_content(data.get("content") if isinstance(data, dict) else None))
    if status == "error":
        if body.get("kind") == REQUEST_NOT_FOUND_KIND:
            raise RequestNotFound(request_id)
        raise CollaboratorError(body.get("error") or "Unknown error")
    if status != "pending":
        logger.warning("Unexpected poll reply for %s: %r", request_id, body)
    return None


async def poll_for_result(
    client: CoordinationClient,
    request_id: str,
    params: Dict[str, Any],
    policy: RetryPolicy,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollOutcome:
    """Submit *params* under *request_id* and wait for a terminal answer.

    Refused connections are retried silently, for the submit as well as
    for each poll, until more than ``refusal_budget`` happen in a row.
    Past ``soft_timeout`` an informative non-error outcome is returned and
    the request stays pending on the service.
    """
    start = clock()
    refusals = 0
    submitted = False

    while clock() - start < policy.hard_timeout:
        try:
            reply: ServiceReply
            if not submitted:
                reply = await client.submit(request_id, params)
                if not reply.refused:
                    if reply.body.get("status") != "accepted":
                        raise SubmitRejected(reply.body.get("error") or "Submission rejected")
                    submitted = True
                    logger.debug("Request %s accepted on port %s", request_id, client.port)
            else:
                reply = await client.poll(request_id)
                if not reply.refused:
                    outcome = _interpret_poll(request_id, reply.body)
                    if outcome is not None:
                        return outcome

            if reply.refused:
                refusals += 1
                if refusals > policy.refusal_budget:
                    raise ServiceUnavailable()
            else:
                refusals = 0
        except (httpx.HTTPError, InvalidServiceReply) as exc:
            logger.warning("Poll error for %s: %s", request_id, exc)

        elapsed = clock() - start
        if policy.soft_timeout and elapsed > policy.soft_timeout:
            logger.info("Soft timeout for %s after %.0fs; request stays pending", request_id, elapsed)
            return PollOutcome(content=[text_block(soft_timeout_message(elapsed))], soft_timeout=True)

        await sleep(policy.interval)

    raise HardTimeout(policy.hard_timeout)

from __future__ import annotations

import asyncio
import json
from typing import Iterable, List

import httpx
import pytest

from conftest import RecordingCollaborator

from panelfeedback.core.config import SEVEN_DAYS_SECONDS
from panelfeedback.core.errors import (
    CollaboratorError,
    HardTimeout,
    RequestNotFound,
    ServiceUnavailable,
    SubmitRejected,
)
from panelfeedback.core.ledger import PENDING, RequestLedger
from panelfeedback.front.client import CoordinationClient
from panelfeedback.front.poller import RetryPolicy, poll_for_result, soft_timeout_message
from panelfeedback.service.app import create_app

PARAMS = {"name": "panel_feedback", "arguments": {"message": "Pick one", "predefined_options": ["A", "B"]}}
ACCEPTED = {"status": "accepted", "requestId": "r1"}
PENDING_REPLY = {"status": "pending"}
DONE = {"status": "completed", "data": {"content": [{"type": "text", "text": "A"}]}}
REFUSE = object()


class ScriptedService:
    """Answers /submit and /poll from per-path scripts; the last entry repeats."""

    def __init__(self, submit: Iterable, poll: Iterable = ()) -> None:
        self.scripts = {"/submit": list(submit), "/poll": list(poll)}
        self.calls: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        script = self.scripts[path]
        step = script.pop(0) if len(script) > 1 else script[0]
        if step is REFUSE:
            raise httpx.ConnectError("Connection refused", request=request)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(request)
        if isinstance(step, httpx.Response):
            return step
        return httpx.Response(200, json=step)


def _run(service: ScriptedService, fake_clock, policy: RetryPolicy = RetryPolicy()):
    async def scenario():
        client = CoordinationClient(19876, transport=httpx.MockTransport(service))
        async with client:
            return await poll_for_result(
                client, "r1", PARAMS, policy, clock=fake_clock, sleep=fake_clock.sleep
            )

    return asyncio.run(scenario())


def test_completes_after_pending_replies(fake_clock) -> None:
    service = ScriptedService(submit=[ACCEPTED], poll=[PENDING_REPLY, PENDING_REPLY, DONE])
    outcome = _run(service, fake_clock)
    assert outcome.content == [{"type": "text", "text": "A"}]
    assert outcome.soft_timeout is False
    assert service.calls == ["/submit", "/poll", "/poll", "/poll"]
    assert fake_clock.sleeps == [0.5, 0.5, 0.5]


def test_submit_carries_request_id_and_params(fake_clock) -> None:
    seen = []

    def accept(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=ACCEPTED)

    _run(ScriptedService(submit=[accept], poll=[DONE]), fake_clock)
    assert seen == [{"requestId": "r1", "params": PARAMS}]


def test_soft_timeout_is_a_normal_result(fake_clock) -> None:
    service = ScriptedService(submit=[ACCEPTED], poll=[PENDING_REPLY])
    outcome = _run(service, fake_clock)
    assert outcome.soft_timeout is True
    assert fake_clock.now > 120
    assert len(outcome.content) == 1
    text = outcome.content[0]["text"]
    assert text.startswith("⏳ Waited 2 minute(s)")
    assert "call the panel_feedback tool again" in text


def test_soft_timeout_message_rounds_minutes() -> None:
    assert "Waited 3 minute(s)" in soft_timeout_message(170)


def test_soft_timeout_leaves_request_pending_on_service(settings, fake_clock) -> None:
    collab = RecordingCollaborator()
    app = create_app(settings, ledger=RequestLedger(), collaborator=collab)

    async def scenario():
        client = CoordinationClient(19876, transport=httpx.ASGITransport(app=app))
        async with client:
            outcome = await poll_for_result(
                client, "r1", PARAMS, RetryPolicy(), clock=fake_clock, sleep=fake_clock.sleep
            )
        coordinator = app.state.coordinator
        assert coordinator.ledger.get("r1").status == PENDING
        assert collab.calls == [("r1", "Pick one", ["A", "B"])]
        await coordinator.aclose()
        return outcome

    assert asyncio.run(scenario()).soft_timeout is True


def test_refusals_beyond_budget_raise(fake_clock) -> None:
    service = ScriptedService(submit=[REFUSE])
    with pytest.raises(ServiceUnavailable) as excinfo:
        _run(service, fake_clock)
    assert "Panel Feedback is not running" in str(excinfo.value)
    assert len(service.calls) == 11
    assert len(fake_clock.sleeps) == 10


def test_success_resets_refusal_counter(fake_clock) -> None:
    service = ScriptedService(
        submit=[REFUSE] * 10 + [ACCEPTED],
        poll=[REFUSE] * 10 + [PENDING_REPLY] + [REFUSE] * 10 + [DONE],
    )
    outcome = _run(service, fake_clock)
    assert outcome.content == [{"type": "text", "text": "A"}]


def test_submit_refusal_is_retried(fake_clock) -> None:
    service = ScriptedService(submit=[REFUSE, REFUSE, ACCEPTED], poll=[DONE])
    outcome = _run(service, fake_clock)
    assert outcome.content[0]["text"] == "A"
    assert service.calls == ["/submit", "/submit", "/submit", "/poll"]


def test_rejected_submission_raises(fake_clock) -> None:
    rejected = httpx.Response(400, json={"error": "requestId is required"})
    with pytest.raises(SubmitRejected, match="requestId is required"):
        _run(ScriptedService(submit=[rejected]), fake_clock)


def test_error_status_raises_collaborator_message(fake_clock) -> None:
    service = ScriptedService(submit=[ACCEPTED], poll=[{"status": "error", "error": "panel closed"}])
    with pytest.raises(CollaboratorError, match="panel closed"):
        _run(service, fake_clock)


def test_unknown_request_raises_not_found(fake_clock) -> None:
    service = ScriptedService(
        submit=[ACCEPTED],
        poll=[{"status": "error", "error": "Request not found", "kind": "request_not_found"}],
    )
    with pytest.raises(RequestNotFound, match="r1"):
        _run(service, fake_clock)


def test_hard_timeout_without_soft_timeout(fake_clock) -> None:
    service = ScriptedService(submit=[ACCEPTED], poll=[PENDING_REPLY])
    policy = RetryPolicy(soft_timeout=None, hard_timeout=30.0)
    with pytest.raises(HardTimeout) as excinfo:
        _run(service, fake_clock, policy)
    assert fake_clock.now >= 30.0
    assert str(excinfo.value).startswith("Poll timeout after")


def test_hard_timeout_message_in_days() -> None:
    assert str(HardTimeout(SEVEN_DAYS_SECONDS)) == "Poll timeout after 7 days"


def test_transport_noise_is_tolerated(fake_clock) -> None:
    service = ScriptedService(
        submit=[ACCEPTED],
        poll=[
            httpx.Response(502, text="<html>bad gateway</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
            httpx.ReadTimeout("timed out"),
            DONE,
        ],
    )
    outcome = _run(service, fake_clock)
    assert outcome.content == [{"type": "text", "text": "A"}]
    assert len(fake_clock.sleeps) == 4


def test_completed_without_content_yields_empty_text(fake_clock) -> None:
    service = ScriptedService(submit=[ACCEPTED], poll=[{"status": "completed", "data": {}}])
    assert _run(service, fake_clock).content == [{"type": "text", "text": ""}]


def test_policy_from_settings(settings) -> None:
    settings.soft_timeout = 0
    settings.poll_interval = 2.0
    policy = RetryPolicy.from_settings(settings)
    assert policy.soft_timeout is None
    assert policy.interval == 2.0
    assert policy.refusal_budget == 10


class LosesFirstSubmitReply(httpx.AsyncBaseTransport):
    """Delivers every request to the app but drops the reply to the first /submit."""

    def __init__(self, app) -> None:
        self.inner = httpx.ASGITransport(app=app)
        self.dropped = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self.inner.handle_async_request(request)
        if request.url.path == "/submit" and not self.dropped:
            self.dropped = True
            raise httpx.ReadTimeout("reply lost", request=request)
        return response


def test_resubmit_after_lost_reply_still_gets_answer(settings, fake_clock) -> None:
    collab = RecordingCollaborator()
    app = create_app(settings, ledger=RequestLedger(), collaborator=collab)
    transport = LosesFirstSubmitReply(app)

    async def answer_when_shown() -> None:
        while "r1" not in collab.futures:
            await asyncio.sleep(0)
        collab.futures["r1"].set_result("hello")

    async def scenario():
        answering = asyncio.create_task(answer_when_shown())
        client = CoordinationClient(19876, transport=transport)
        async with client:
            outcome = await poll_for_result(
                client, "r1", PARAMS, RetryPolicy(), clock=fake_clock, sleep=fake_clock.sleep
            )
        await answering
        return outcome

    outcome = asyncio.run(scenario())
    assert transport.dropped is True
    assert outcome.content == [{"type": "text", "text": "hello"}]
    assert len(collab.calls) == 1

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from panelfeedback.core.config import SEVEN_DAYS_SECONDS, Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        home_dir=str(tmp_path),
        log_dir=str(tmp_path / "logs"),
        log_level="info",
        host="127.0.0.1",
        default_port=19876,
        poll_interval=0.5,
        soft_timeout=120.0,
        hard_timeout=float(SEVEN_DAYS_SECONDS),
        refusal_budget=10,
        http_timeout=5.0,
        retention_days=7,
        debug_trace=False,
    )


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let service-side tasks run between polls
        await asyncio.sleep(0)


class RecordingCollaborator:
    """Collaborator whose answers are set by the test."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Optional[list[str]]]] = []
        self.futures: dict[str, asyncio.Future] = {}

    async def show_message(self, message: str, options: Optional[list[str]], request_id: str) -> Any:
        self.calls.append((request_id, message, options))
        future = asyncio.get_running_loop().create_future()
        self.futures[request_id] = future
        return await future


async def settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()

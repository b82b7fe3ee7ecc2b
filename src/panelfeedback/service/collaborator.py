"""Collaborators: the human-facing surface a pending request is shown on.

The Coordination Service only relies on the :class:`Collaborator`
protocol. :class:`PanelCollaborator` is the in-process implementation the
``serve`` command wires up; the panel UI drives it through the
``/panel/*`` HTTP routes.
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
import json
import logging
from typing import Any, Deque, Optional, Protocol, Union

from panelfeedback.core.errors import CollaboratorError

logger = logging.getLogger("panelfeedback.collaborator")

END_CONVERSATION_SENTINEL = "[END_CONVERSATION] The user ended this conversation. Do not call panel_feedback again."

Resolution = Union[str, dict]


class Collaborator(Protocol):
    async def show_message(
        self,
        message: str,
        options: Optional[list[str]],
        request_id: str,
    ) -> Resolution:
        """Display *message* and wait for the human's answer.

        Resolves to free text, or to ``{"text": ..., "images": [data URI, ...]}``.
        Raises to reject the request.
        """
        ...


@dataclass
class _Prompt:
    request_id: str
    message: str
    options: list[str]
    future: "asyncio.Future[Resolution]"


class PanelCollaborator:
    """Queue of prompts answered one at a time, oldest first.

    A second submission while one is on screen waits its turn instead of
    replacing the first.
    """

    def __init__(self) -> None:
        self._prompts: Deque[_Prompt] = deque()

    async def show_message(
        self,
        message: str,
        options: Optional[list[str]],
        request_id: str,
    ) -> Resolution:
        loop = asyncio.get_running_loop()
        prompt = _Prompt(
            request_id=request_id,
            message=message,
            options=list(options or []),
            future=loop.create_future(),
        )
        self._prompts.append(prompt)
        logger.info(
            "Showing request %s (%d queued): %s options=%s",
            request_id, len(self._prompts), message[:50], prompt.options,
        )
        try:
            return await prompt.future
        finally:
            if prompt in self._prompts:
                self._prompts.remove(prompt)

    def current(self) -> Optional[dict[str, Any]]:
        """The prompt on screen, or None when nobody is waiting."""
        prompt = self._head()
        if prompt is None:
            return None
        return {
            "requestId": prompt.request_id,
            "message": prompt.message,
            "options": prompt.options,
            "queued": len(self._prompts),
        }

    def submit(self, text: str, images: Optional[list[str]] = None) -> bool:
        if images:
            return self._resolve(json.dumps({"text": text, "images": images}))
        return self._resolve(text)

    def choose(self, option: str) -> bool:
        return self._resolve(option)

    def end_conversation(self) -> bool:
        return self._resolve(END_CONVERSATION_SENTINEL)

    def dismiss(self, reason: str) -> bool:
        prompt = self._pop()
        if prompt is None:
            return False
        prompt.future.set_exception(CollaboratorError(reason or "Dismissed by user"))
        return True

    def _resolve(self, value: Resolution) -> bool:
        prompt = self._pop()
        if prompt is None:
            return False
        prompt.future.set_result(value)
        return True

    def _head(self) -> Optional[_Prompt]:
        while self._prompts and self._prompts[0].future.done():
            self._prompts.popleft()
        return self._prompts[0] if self._prompts else None

    def _pop(self) -> Optional[_Prompt]:
        prompt = self._head()
        if prompt is not None:
            self._prompts.popleft()
        return prompt

    def __len__(self) -> int:
        return len(self._prompts)

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from panelfeedback.core.audit import log_event
from panelfeedback.core.content import normalize_resolution
from panelfeedback.core.errors import REQUEST_NOT_FOUND_KIND
from panelfeedback.core.ledger import (
    COMPLETED,
    ERROR,
    PENDING,
    LedgerTransitionError,
    PendingRequest,
    RequestLedger,
)
from panelfeedback.service.collaborator import Collaborator

logger = logging.getLogger("panelfeedback.coordinator")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Coordinator:
    """Owns the ledger and hands each request to the collaborator.

    Every method runs on the service's event loop. ``submit`` returns as
    soon as the entry is persisted; the wait for the human is a separate
    task per request, so other submits and polls interleave freely while
    it is outstanding. There is no service-side timeout.
    """

    def __init__(
        self,
        ledger: RequestLedger,
        collaborator: Collaborator,
        audit_dir: Optional[str] = None,
        retention: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.ledger = ledger
        self.collaborator = collaborator
        self.audit_dir = audit_dir
        self.retention = retention
        self.clock = clock
        self._inflight: Set["asyncio.Task[None]"] = set()

    def _audit(self, event_type: str, payload: Dict[str, Any], request_id: Optional[str] = None) -> None:
        if self.audit_dir:
            log_event(self.audit_dir, event_type, payload, request_id=request_id)

    # ── submit / poll ───────────────────────────────────────

    def submit(self, request_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not request_id:
            return {"error": "requestId is required"}
        if self.ledger.get(request_id) is not None:
            # A re-sent submit whose first reply was lost; already dispatched
            logger.info("Request %s already accepted; not dispatching again", request_id)
            return {"status": "accepted", "requestId": request_id}
        arguments = params.get("arguments") if isinstance(params, dict) else None
        request = PendingRequest(
            id=request_id,
            arguments=arguments if isinstance(arguments, dict) else {},
            created_at=self.clock(),
        )
        self.ledger.insert(request)
        logger.info("Accepted request %s: %s", request_id, request.message[:50])
        self._audit("request.submitted", {"message": request.message[:200]}, request_id=request_id)
        self.dispatch(request)
        return {"status": "accepted", "requestId": request_id}

    def poll(self, request_id: str) -> Dict[str, Any]:
        request = self.ledger.get(request_id)
        if request is None:
            return {"status": "error", "error": "Request not found", "kind": REQUEST_NOT_FOUND_KIND}
        if request.status == PENDING:
            return {"status": "pending"}

        # Terminal entries are handed out exactly once
        self.ledger.delete(request_id)
        self._audit("request.consumed", {"status": request.status}, request_id=request_id)
        if request.status == COMPLETED:
            return {"status": "completed", "data": {"content": request.result}}
        return {"status": "error", "error": request.error_message or "Unknown error"}

    # ── collaborator dispatch ───────────────────────────────

    def dispatch(self, request: PendingRequest) -> "asyncio.Task[None]":
        """Start waiting on the collaborator for *request*.

        The returned task is the suspension point: it finishes when the
        collaborator resolves or rejects.
        """
        task = asyncio.get_running_loop().create_task(
            self._wait_for_collaborator(request), name=f"dispatch-{request.id}"
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _wait_for_collaborator(self, request: PendingRequest) -> None:
        try:
            resolution = await self.collaborator.show_message(
                request.message,
                request.predefined_options,
                request.id,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            logger.warning("Collaborator rejected request %s: %s", request.id, message)
            try:
                failed = self.ledger.fail(request.id, message)
            except LedgerTransitionError as transition:
                logger.warning("Dropping late rejection for request %s: %s", request.id, transition)
                return
            if failed is not None:
                self._audit("request.failed", {"error": message[:500]}, request_id=request.id)
            return

        content = normalize_resolution(resolution)
        try:
            completed = self.ledger.complete(request.id, content)
        except LedgerTransitionError as exc:
            # The id was cleared and submitted again; that newer entry is already answered
            logger.warning("Dropping late answer for request %s: %s", request.id, exc)
            return
        if completed is None:
            logger.info("Request %s resolved after it left the ledger; dropping answer", request.id)
            return
        logger.info("Request %s completed with %d content block(s)", request.id, len(content))
        self._audit("request.completed", {"blocks": len(content)}, request_id=request.id)

    # ── lifecycle ───────────────────────────────────────────

    def restore(self) -> Tuple[List[str], List[str]]:
        """Reconcile the persisted ledger after a restart.

        Entries older than the retention horizon are dropped. Pending ones
        inside it are dispatched again exactly as if freshly submitted;
        terminal ones stay put for their first poll. Must be called from
        the running event loop. Returns ``(restored_ids, expired_ids)``.
        """
        now = self.clock()
        restored: List[str] = []
        expired: List[str] = []
        for request in self.ledger.list():
            if now - request.created_at >= self.retention:
                self.ledger.delete(request.id)
                expired.append(request.id)
                self._audit("request.expired", {"status": request.status}, request_id=request.id)
                continue
            if request.status == PENDING:
                self.dispatch(request)
                restored.append(request.id)
                self._audit("request.restored", {}, request_id=request.id)
        logger.info("Restored %d pending request(s), expired %d", len(restored), len(expired))
        return restored, expired

    def clear(self) -> int:
        """Drop every ledger entry. Waits already on screen keep running."""
        count = self.ledger.clear()
        logger.info("Cleared %d pending request(s)", count)
        self._audit("requests.cleared", {"count": count})
        return count

    def stats(self) -> Dict[str, int]:
        requests = self.ledger.list()
        return {
            "pending": len([r for r in requests if r.status == PENDING]),
            "completed": len([r for r in requests if r.status == COMPLETED]),
            "error": len([r for r in requests if r.status == ERROR]),
            "inflight": len(self._inflight),
        }

    async def aclose(self) -> None:
        """Stop waiting on the collaborator. Ledger entries stay pending for the next start."""
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

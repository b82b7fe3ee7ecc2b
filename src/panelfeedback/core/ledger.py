from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
import tempfile
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger("panelfeedback.ledger")

PENDING = "pending"
COMPLETED = "completed"
ERROR = "error"
TERMINAL_STATES = frozenset({COMPLETED, ERROR})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerTransitionError(ValueError):
    """Raised when a status change would move a request backwards."""


@dataclass
class PendingRequest:
    id: str
    arguments: Dict[str, Any]
    status: str = PENDING
    result: List[Dict[str, Any]] = field(default_factory=list)
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    @property
    def message(self) -> str:
        return str(self.arguments.get("message") or "")

    @property
    def predefined_options(self) -> Optional[List[str]]:
        options = self.arguments.get("predefined_options")
        if not isinstance(options, list):
            return None
        return [str(o) for o in options]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "arguments": self.arguments,
            "status": self.status,
            "result": self.result,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "PendingRequest":
        created_at = datetime.fromisoformat(item["created_at"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=item["id"],
            arguments=item.get("arguments") or {},
            status=item.get("status", PENDING),
            result=item.get("result") or [],
            error_message=item.get("error_message"),
            created_at=created_at,
        )


class RequestLedger:
    """Keyed store of pending requests, flushed to disk after every mutation.

    With ``store_path=None`` the ledger lives in memory only. All callers
    run on the Coordination Service's event loop, so no lock is taken.
    """

    def __init__(self, store_path: Optional[str] = None) -> None:
        self._requests: Dict[str, PendingRequest] = {}
        self._store_path = store_path
        if store_path:
            self._load()

    def _load(self) -> None:
        if not self._store_path or not os.path.exists(self._store_path):
            return
        try:
            with open(self._store_path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable ledger %s: %s", self._store_path, exc)
            return
        items = raw.get("requests") if isinstance(raw, dict) else None
        if not isinstance(items, list):
            logger.warning("Ignoring ledger %s: no request list in it", self._store_path)
            return
        for item in items:
            try:
                request = PendingRequest.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed ledger entry %r: %s", item, exc)
                continue
            self._requests[request.id] = request

    def _save(self) -> None:
        if not self._store_path:
            return
        payload = {"requests": [r.to_dict() for r in self._requests.values()]}
        dir_path = os.path.dirname(self._store_path) or "."
        try:
            os.makedirs(dir_path, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=os.path.basename(self._store_path) + ".", dir=dir_path)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2, ensure_ascii=False)
                os.replace(tmp, self._store_path)
            finally:
                if os.path.exists(tmp):
                    os.unlink(tmp)
        except OSError as exc:
            logger.error("Failed to persist ledger to %s: %s", self._store_path, exc)

    def insert(self, request: PendingRequest) -> PendingRequest:
        if request.id in self._requests:
            raise ValueError(f"duplicate request id: {request.id}")
        self._requests[request.id] = request
        self._save()
        return request

    def get(self, request_id: str) -> Optional[PendingRequest]:
        return self._requests.get(request_id)

    def complete(self, request_id: str, content: List[Dict[str, Any]]) -> Optional[PendingRequest]:
        request = self._transition(request_id, COMPLETED)
        if request is None:
            return None
        request.result = content
        self._save()
        return request

    def fail(self, request_id: str, error_message: str) -> Optional[PendingRequest]:
        request = self._transition(request_id, ERROR)
        if request is None:
            return None
        request.error_message = error_message
        self._save()
        return request

    def _transition(self, request_id: str, status: str) -> Optional[PendingRequest]:
        request = self._requests.get(request_id)
        if request is None:
            # Consumed or cleared while the collaborator was still waiting
            return None
        if request.is_terminal:
            raise LedgerTransitionError(
                f"request {request_id} is already {request.status}; cannot become {status}"
            )
        request.status = status
        return request

    def delete(self, request_id: str) -> bool:
        if self._requests.pop(request_id, None) is None:
            return False
        self._save()
        return True

    def clear(self) -> int:
        count = len(self._requests)
        self._requests.clear()
        self._save()
        return count

    def list(self) -> List[PendingRequest]:
        return list(self._requests.values())

    def __iter__(self) -> Iterator[PendingRequest]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._requests)

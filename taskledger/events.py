import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from pydantic import BaseModel

from .models import WithdrawalStatus

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    kind: str
    account_id: str
    occurred_at: datetime


class TaskCompleted(DomainEvent):
    kind: str = "TaskCompleted"
    claim_id: UUID
    task_id: UUID
    reward: int


class ReferralAwarded(DomainEvent):
    kind: str = "ReferralAwarded"
    referred_id: str
    bonus_id: UUID
    amount: int


class WithdrawalStateChanged(DomainEvent):
    kind: str = "WithdrawalStateChanged"
    request_id: UUID
    amount: int
    status: WithdrawalStatus
    reason: Optional[str] = None


EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """Synchronous fan-out to subscribers such as a notification dispatcher.

    Handlers are called after the state change has been stored. A failing
    handler is logged and never fails the operation that published.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, kind: str, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)

    def unsubscribe(self, kind: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event.kind, ())) + list(self._handlers.get("*", ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.kind)

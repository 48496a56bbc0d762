"""
Audit event emitter.

Order mutations are recorded as structured audit events in the append-only
``audit_events`` table. Services hold their events on the database session
with ``emit_after_commit``; the events are queued only once that session's
transaction commits and are dropped if it rolls back, so the audit trail
never describes changes that did not persist. A single background worker
drains the queue and writes each event in its own session, so a slow or
failing audit write never blocks or fails a request.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional, Union

from sqlalchemy.event import listens_for
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, get_request_id
from storefront.database.connection import get_session
from storefront.database.models import AuditEvent

logger = get_logger(__name__)

# session.info key holding events waiting for their transaction to commit
HELD_EVENTS_KEY = "storefront.audit.held_events"


class AuditEventType:
    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_BULK_STATUS_CHANGED = "order.bulk_status_changed"
    ORDER_AUTOMATED_UPDATE = "order.automated_update"
    PAYMENT_STATUS_CHANGED = "payment.status_changed"
    REFUND_REQUESTED = "refund.requested"
    REFUND_APPROVED = "refund.approved"
    REFUND_REJECTED = "refund.rejected"


@dataclass
class PendingAuditEvent:
    event_type: str
    order_id: Optional[uuid.UUID] = None
    actor_id: Optional[uuid.UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None

    def to_model(self) -> AuditEvent:
        return AuditEvent(
            event_type=self.event_type,
            order_id=self.order_id,
            actor_id=self.actor_id,
            payload=self.payload,
            request_id=self.request_id,
        )


@dataclass
class _HeldEvent:
    emitter: "AuditEventEmitter"
    event: PendingAuditEvent
    # Innermost savepoint open when the event was recorded
    savepoint: Optional[SessionTransaction]


class AuditEventEmitter:
    """
    Queue-backed audit trail writer.

    Example:
        >>> emitter = AuditEventEmitter(maxsize=1000)
        >>> await emitter.start()
        >>> emitter.emit_after_commit(AuditEventType.ORDER_CREATED, session=db, order_id=order.id)
        >>> await db.commit()  # event is queued here
        >>> await emitter.stop()
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[PendingAuditEvent] = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def emit_after_commit(
        self,
        event_type: str,
        *,
        session: Union[AsyncSession, Session],
        order_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        **payload: Any,
    ) -> None:
        """
        Hold an audit event on ``session`` until its transaction commits.

        An event recorded inside a savepoint is dropped if that savepoint
        rolls back. Everything still held when the outer transaction ends
        without committing is dropped.
        """
        sync_session = session.sync_session if isinstance(session, AsyncSession) else session
        sync_session.info.setdefault(HELD_EVENTS_KEY, []).append(
            _HeldEvent(
                emitter=self,
                event=_build_event(event_type, order_id, actor_id, payload),
                savepoint=sync_session.get_nested_transaction(),
            )
        )

    def enqueue(self, event: PendingAuditEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Audit queue full, event dropped",
                event_type=event.event_type,
                order_id=str(event.order_id) if event.order_id else None,
            )
            return False
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="audit-event-writer")
        logger.info("Audit event writer started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Flush queued events, then stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Audit queue not drained before shutdown", pending=self.pending)

        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Audit event writer stopped")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.write(event)
            finally:
                self._queue.task_done()

    async def write(self, event: PendingAuditEvent) -> None:
        """Persist one event; failures are logged and the event discarded."""
        try:
            async with get_session() as session:
                session.add(event.to_model())
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Failed to write audit event",
                event_type=event.event_type,
                order_id=str(event.order_id) if event.order_id else None,
                error=str(e),
                error_type=type(e).__name__,
            )


def _build_event(
    event_type: str,
    order_id: Optional[uuid.UUID],
    actor_id: Optional[uuid.UUID],
    payload: dict[str, Any],
) -> PendingAuditEvent:
    return PendingAuditEvent(
        event_type=event_type,
        order_id=order_id,
        actor_id=actor_id,
        payload=payload,
        request_id=get_request_id() or None,
    )


def _opened_within(savepoint: Optional[SessionTransaction], ended: SessionTransaction) -> bool:
    transaction = savepoint
    while transaction is not None:
        if transaction is ended:
            return True
        transaction = transaction.parent
    return False


@listens_for(Session, "after_commit")
def _release_held_events(session: Session) -> None:
    # Also fires when a savepoint is released; only the outer commit counts
    if session.in_nested_transaction():
        return
    for held in session.info.pop(HELD_EVENTS_KEY, []):
        held.emitter.enqueue(held.event)


@listens_for(Session, "after_soft_rollback")
def _drop_savepoint_events(session: Session, previous_transaction: SessionTransaction) -> None:
    held = session.info.get(HELD_EVENTS_KEY)
    if not held or not previous_transaction.nested:
        return
    kept = [h for h in held if not _opened_within(h.savepoint, previous_transaction)]
    if len(kept) != len(held):
        logger.debug("Audit events dropped with savepoint", dropped=len(held) - len(kept))
    session.info[HELD_EVENTS_KEY] = kept


@listens_for(Session, "after_transaction_end")
def _discard_uncommitted_events(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is not None:
        return
    discarded = session.info.pop(HELD_EVENTS_KEY, [])
    if discarded:
        logger.info(
            "Audit events discarded, transaction did not commit",
            event_types=[h.event.event_type for h in discarded],
        )


@lru_cache
def get_audit_emitter() -> AuditEventEmitter:
    """Process-wide audit emitter."""
    return AuditEventEmitter(maxsize=get_settings().audit_queue_size)

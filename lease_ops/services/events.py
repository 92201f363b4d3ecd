from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..config import SessionLocal, settings
from ..constants import (
    EVENT_CHARGE_RECONCILED,
    OUTBOX_STATUS_COMPLETED,
    OUTBOX_STATUS_FAILED,
    OUTBOX_STATUS_PENDING,
    OUTBOX_STATUS_PROCESSING,
)
from ..models.models import OutboxEvent, utcnow
from .audit import audit_log
from .store import LeaseStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[Session, Dict[str, Any]], None]


class EventEmitter:
    """Fire-and-forget writer for the integration outbox.

    Each event is appended from a worker thread in its own session. ``emit``
    waits at most ``timeout_seconds`` and never raises.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        *,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.timeout_seconds = settings.event_emit_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.max_retries = settings.outbox_max_retries if max_retries is None else max_retries
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="outbox-emit")

    def __enter__(self) -> "EventEmitter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _append(self, event_type: str, payload: Dict[str, Any]) -> int:
        with self.session_factory() as session:
            return LeaseStore(session).append_outbox_event(event_type, payload, self.max_retries)

    def emit(self, event_type: str, payload: Dict[str, Any]) -> Optional[int]:
        try:
            future = self._executor.submit(self._append, event_type, payload)
            event_id = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            logger.warning("Timed out after %ss emitting %s event.", self.timeout_seconds, event_type)
            return None
        except Exception:
            logger.warning("Failed to emit %s event.", event_type, exc_info=True)
            return None
        logger.debug("Emitted %s event #%s", event_type, event_id)
        return event_id


@dataclass
class OutboxRunSummary:
    processed: int
    failed: int
    total: int


def _record_reconciled_charge(session: Session, payload: Dict[str, Any]) -> None:
    audit_log(
        db_session=session,
        actor_user_id=None,
        action="events.charge_reconciled",
        target_entity_type="Reconciliation",
        target_entity_id=str(payload.get("reconciliationId")),
        after=payload,
    )


DEFAULT_HANDLERS: Dict[str, EventHandler] = {
    EVENT_CHARGE_RECONCILED: _record_reconciled_charge,
}


def retry_delay(retry_count: int) -> timedelta:
    """Exponential backoff: 2, 4, 8 ... minutes."""
    return timedelta(minutes=2 ** retry_count)


def process_outbox(
    session: Session,
    handlers: Optional[Mapping[str, EventHandler]] = None,
    *,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> OutboxRunSummary:
    registry = DEFAULT_HANDLERS if handlers is None else handlers
    run_at = now or utcnow()
    batch_size = limit or settings.outbox_batch_size

    events = (
        session.query(OutboxEvent)
        .filter(OutboxEvent.status == OUTBOX_STATUS_PENDING)
        .filter(OutboxEvent.scheduled_at <= run_at)
        .order_by(OutboxEvent.scheduled_at.asc(), OutboxEvent.id.asc())
        .limit(batch_size)
        .all()
    )
    if not events:
        return OutboxRunSummary(processed=0, failed=0, total=0)

    processed = 0
    failed = 0
    for event in events:
        event.status = OUTBOX_STATUS_PROCESSING
        event.processed_at = run_at
        session.commit()

        handler = registry.get(event.event_type)
        try:
            if handler is None:
                logger.debug("No handler registered for %s; marking event #%s completed.", event.event_type, event.id)
            else:
                handler(session, dict(event.payload or {}))
        except Exception as exc:
            session.rollback()
            failed += 1
            event.retry_count = (event.retry_count or 0) + 1
            event.error_message = str(exc) or exc.__class__.__name__
            if event.retry_count >= (event.max_retries or settings.outbox_max_retries):
                event.status = OUTBOX_STATUS_FAILED
                logger.error("Outbox event #%s (%s) failed permanently: %s", event.id, event.event_type, exc)
            else:
                event.status = OUTBOX_STATUS_PENDING
                event.scheduled_at = run_at + retry_delay(event.retry_count)
                logger.warning(
                    "Outbox event #%s (%s) failed, retry %s scheduled at %s",
                    event.id,
                    event.event_type,
                    event.retry_count,
                    event.scheduled_at,
                )
            session.commit()
            continue

        event.status = OUTBOX_STATUS_COMPLETED
        session.commit()
        processed += 1

    logger.info("Outbox run: processed=%s failed=%s total=%s", processed, failed, len(events))
    return OutboxRunSummary(processed=processed, failed=failed, total=len(events))

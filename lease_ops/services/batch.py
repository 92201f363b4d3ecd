from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..core.errors import LeaseOpsError, ValidationError
from ..models.models import User
from .audit import audit_log
from .authorization import ensure_admin, load_lease_for
from .events import EventEmitter
from .reconciliation import reconcile
from .records import ReconciliationRecord
from .store import LeaseStore

logger = logging.getLogger(__name__)

SCOPE_LEASE = "lease"
SCOPE_ALL = "all"
SCOPES = (SCOPE_LEASE, SCOPE_ALL)

MIN_YEAR = 1900
MAX_YEAR = 9999


@dataclass(frozen=True)
class BatchError:
    lease_id: int
    error: str
    detail: str


@dataclass
class BatchResult:
    scope: str
    year: int
    results: List[ReconciliationRecord] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)
    cancelled: bool = False


def _validate_request(scope: str, year: int, lease_id: Optional[int]) -> None:
    if scope not in SCOPES:
        raise ValidationError(f"Unknown reconciliation scope {scope!r}; expected one of {', '.join(SCOPES)}.")
    if not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise ValidationError(f"Invalid reconciliation year {year!r}.")
    if scope == SCOPE_LEASE and lease_id is None:
        raise ValidationError("lease_id is required when scope is 'lease'.")


def _capture(lease_id: int, exc: Exception) -> BatchError:
    if isinstance(exc, LeaseOpsError):
        logger.warning("Reconciliation failed for lease %s: %s", lease_id, exc.detail)
        return BatchError(lease_id=lease_id, error=exc.code, detail=exc.detail)
    logger.exception("Unexpected failure reconciling lease %s", lease_id)
    return BatchError(lease_id=lease_id, error="internal_error", detail=str(exc) or exc.__class__.__name__)


def _run_sequential(
    store: LeaseStore,
    lease_ids: List[int],
    year: int,
    result: BatchResult,
    emitter: Optional[EventEmitter],
    cancel_event: Optional[threading.Event],
) -> None:
    for lease_id in lease_ids:
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            break
        try:
            result.results.append(reconcile(store, lease_id, year, emitter=emitter))
        except Exception as exc:
            result.errors.append(_capture(lease_id, exc))


def _run_parallel(
    session_factory: sessionmaker,
    lease_ids: List[int],
    year: int,
    result: BatchResult,
    emitter: Optional[EventEmitter],
    cancel_event: Optional[threading.Event],
    max_workers: int,
) -> None:
    def _work(lease_id: int) -> Optional[ReconciliationRecord]:
        if cancel_event is not None and cancel_event.is_set():
            return None
        with session_factory() as session:
            return reconcile(LeaseStore(session), lease_id, year, emitter=emitter)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reconcile") as executor:
        futures = {executor.submit(_work, lease_id): lease_id for lease_id in lease_ids}
        for future in as_completed(futures):
            lease_id = futures[future]
            try:
                record = future.result()
            except Exception as exc:
                result.errors.append(_capture(lease_id, exc))
                continue
            if record is None:
                result.cancelled = True
                continue
            result.results.append(record)


def run_batch(
    store: LeaseStore,
    scope: str,
    year: int,
    *,
    user: Optional[User],
    lease_id: Optional[int] = None,
    emitter: Optional[EventEmitter] = None,
    session_factory: Optional[sessionmaker] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    authorize: bool = True,
) -> BatchResult:
    """Reconcile one lease or every active lease for ``year``.

    Request-level problems (unknown scope, missing lease id, missing rights)
    raise before any work starts. With scope ``all`` each lease failure is
    collected in ``errors`` and the run continues with the next lease.
    Scheduled jobs pass ``authorize=False`` to run without a caller identity.
    """
    _validate_request(scope, year, lease_id)
    result = BatchResult(scope=scope, year=year)

    if scope == SCOPE_LEASE:
        lease = load_lease_for(user, store, lease_id) if authorize else store.get_lease(lease_id)
        result.results.append(reconcile(store, lease.id, year, emitter=emitter))
        _audit_run(store, user, result, lease_id=lease.id)
        return result

    if authorize:
        ensure_admin(user, "Reconciling every active lease")
    lease_ids = store.list_active_lease_ids()
    workers = settings.reconciliation_max_workers if max_workers is None else max_workers
    logger.info("Starting reconciliation batch for %s over %d active leases (workers=%s)", year, len(lease_ids), workers)

    if session_factory is not None and workers > 1 and len(lease_ids) > 1:
        _run_parallel(session_factory, lease_ids, year, result, emitter, cancel_event, workers)
    else:
        _run_sequential(store, lease_ids, year, result, emitter, cancel_event)

    result.results.sort(key=lambda record: record.lease_id)
    result.errors.sort(key=lambda error: error.lease_id)
    logger.info(
        "Reconciliation batch for %s finished: %d succeeded, %d failed%s",
        year,
        len(result.results),
        len(result.errors),
        " (cancelled)" if result.cancelled else "",
    )
    _audit_run(store, user, result)
    return result


def _audit_run(store: LeaseStore, user: Optional[User], result: BatchResult, lease_id: Optional[int] = None) -> None:
    try:
        audit_log(
            db_session=store.session,
            actor_user_id=getattr(user, "id", None),
            action="reconciliation.batch.run",
            target_entity_type="Lease" if lease_id is not None else "Batch",
            target_entity_id=str(lease_id) if lease_id is not None else result.scope,
            after={
                "scope": result.scope,
                "year": result.year,
                "succeeded": len(result.results),
                "failed": [error.lease_id for error in result.errors],
                "cancelled": result.cancelled,
            },
        )
    except SQLAlchemyError:
        store.session.rollback()
        logger.warning("Could not record audit entry for reconciliation run %s/%s", result.scope, result.year, exc_info=True)

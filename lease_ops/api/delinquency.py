from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user, require_roles
from ..core.errors import NotFoundError
from ..models.models import User, utcnow
from ..schemas.schemas import (
    LateInvoiceRead,
    ReminderContentRead,
    ReminderDispatchRead,
    ReminderDispatchRequest,
    ReminderPreviewRead,
)
from ..services.authorization import visible_lease_ids
from ..services.delinquency import scan_late_invoices
from ..services.reminders import dispatch_reminders, render_reminder
from ..services.store import LeaseStore
from .dependencies import get_db, get_store

router = APIRouter()


@router.get("/late-invoices", response_model=List[LateInvoiceRead])
def list_late_invoices(
    now: Optional[datetime] = Query(default=None),
    store: LeaseStore = Depends(get_store),
    user: User = Depends(get_current_user),
) -> List[LateInvoiceRead]:
    late = scan_late_invoices(store, now or utcnow(), visible_lease_ids(user, store))
    return [LateInvoiceRead.model_validate(item) for item in late]


@router.get("/late-invoices/{invoice_id}/reminder", response_model=ReminderPreviewRead)
def preview_reminder(
    invoice_id: int,
    now: Optional[datetime] = Query(default=None),
    store: LeaseStore = Depends(get_store),
    user: User = Depends(get_current_user),
) -> ReminderPreviewRead:
    late = scan_late_invoices(store, now or utcnow(), visible_lease_ids(user, store))
    match = next((item for item in late if item.invoice_id == invoice_id), None)
    if match is None:
        raise NotFoundError(f"Invoice {invoice_id} is not currently late.")
    content = render_reminder(match.reminder_level, match)
    return ReminderPreviewRead(
        invoice=LateInvoiceRead.model_validate(match),
        reminder=ReminderContentRead.model_validate(content),
    )


@router.post("/reminders/dispatch", response_model=List[ReminderDispatchRead])
def dispatch_late_invoice_reminders(
    payload: ReminderDispatchRequest,
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles("ADMIN")),
) -> List[ReminderDispatchRead]:
    store = LeaseStore(db)
    late = scan_late_invoices(store, payload.now or utcnow())
    if payload.dry_run:
        return [
            ReminderDispatchRead(
                invoice_id=item.invoice_id,
                reminder_level=item.reminder_level,
                recipient_email=item.tenant_email,
                status="pending",
            )
            for item in late
        ]
    outcomes = dispatch_reminders(late, db_session=db, actor_user_id=actor.id)
    return [ReminderDispatchRead.model_validate(item) for item in outcomes]

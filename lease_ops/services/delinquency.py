from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..constants import (
    DELINQUENCY_THRESHOLD_DAYS,
    INVOICE_STATUS_PAID,
    LEASE_STATUS_ACTIVE,
    PRINCIPAL_TENANT_ROLE,
    REMINDER_SCHEDULE,
    UNKNOWN_PROPERTY_ADDRESS,
    UNKNOWN_TENANT_NAME,
)
from .records import InvoiceRecord, LateInvoice, LeaseRecord, SignerRecord
from .store import LeaseStore

Moment = Union[date, datetime]


def _as_date(value: Moment) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_late(due_date: Moment, now: Moment) -> int:
    """Whole days elapsed since the due date (negative before it)."""
    return (_as_date(now) - _as_date(due_date)).days


def classify(days: int) -> Optional[str]:
    """Reminder level for a number of days past due; ``None`` below the threshold.

    Recomputed from ``days`` alone on every run, never from past reminders.
    """
    level = None
    for threshold, candidate in REMINDER_SCHEDULE:
        if days >= threshold:
            level = candidate
    return level


def principal_signer(signers: Sequence[SignerRecord]) -> Optional[SignerRecord]:
    for signer in signers:
        if signer.role == PRINCIPAL_TENANT_ROLE:
            return signer
    return None


def detect_late_invoices(
    invoices: Iterable[InvoiceRecord],
    leases: Iterable[LeaseRecord],
    signers_by_lease: Mapping[int, Sequence[SignerRecord]],
    now: Moment,
) -> List[LateInvoice]:
    """Unpaid invoices at least five days overdue, most overdue first.

    Missing lease, property or signer context degrades to placeholder display
    values instead of failing. Inputs are not mutated.
    """
    leases_by_id: Dict[int, LeaseRecord] = {lease.id: lease for lease in leases}
    late: List[LateInvoice] = []

    for invoice in invoices:
        if invoice.status == INVOICE_STATUS_PAID:
            continue
        overdue = days_late(invoice.due_date, now)
        if overdue < DELINQUENCY_THRESHOLD_DAYS:
            continue
        level = classify(overdue)

        lease = leases_by_id.get(invoice.lease_id)
        signer = principal_signer(signers_by_lease.get(invoice.lease_id, ()))
        tenant_name = signer.display_name if signer else ""

        late.append(
            LateInvoice(
                invoice_id=invoice.id,
                lease_id=invoice.lease_id,
                amount=invoice.amount,
                due_date=_as_date(invoice.due_date),
                days_late=overdue,
                reminder_level=level,
                tenant_name=tenant_name or UNKNOWN_TENANT_NAME,
                tenant_email=signer.email if signer else None,
                property_address=(lease.property_address if lease else None) or UNKNOWN_PROPERTY_ADDRESS,
                lease_type=lease.lease_type if lease else None,
                period=invoice.period,
            )
        )

    late.sort(key=lambda item: item.days_late, reverse=True)
    return late


def scan_late_invoices(
    store: LeaseStore,
    now: Moment,
    lease_ids: Optional[Iterable[int]] = None,
) -> List[LateInvoice]:
    """Detect late invoices on active leases, optionally limited to ``lease_ids``."""
    scope = list(lease_ids) if lease_ids is not None else None
    invoices = store.list_unpaid_invoices(scope)
    involved = sorted({invoice.lease_id for invoice in invoices})
    leases = [lease for lease in store.list_leases(involved) if lease.status == LEASE_STATUS_ACTIVE]
    active_ids = {lease.id for lease in leases}
    invoices = [invoice for invoice in invoices if invoice.lease_id in active_ids]
    signers = store.signers_by_lease(involved)
    return detect_late_invoices(invoices, leases, signers, now)

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..constants import INVOICE_STATUS_PAID, LEASE_STATUS_ACTIVE, RECONCILIATION_STATUS_CALCULATED
from ..core.errors import NotFoundError, StorageError
from ..models.models import (
    Charge,
    Invoice,
    Lease,
    LeaseSigner,
    OutboxEvent,
    Property,
    Provision,
    Reconciliation,
    utcnow,
)
from .records import (
    ChargeRecord,
    InvoiceRecord,
    LeaseRecord,
    ProvisionRecord,
    ReconciliationRecord,
    SignerRecord,
    as_decimal,
)

logger = logging.getLogger(__name__)


def _lease_record(lease: Lease) -> LeaseRecord:
    prop = lease.property
    return LeaseRecord(
        id=lease.id,
        property_id=lease.property_id,
        lease_type=lease.lease_type,
        status=lease.status,
        property_address=prop.address if prop else None,
        owner_id=prop.owner_id if prop else None,
    )


def _reconciliation_record(row: Reconciliation) -> ReconciliationRecord:
    return ReconciliationRecord(
        id=row.id,
        lease_id=row.lease_id,
        year=row.year,
        period_start=row.period_start,
        period_end=row.period_end,
        total_charges=as_decimal(row.total_charges),
        total_provisions=as_decimal(row.total_provisions),
        delta=as_decimal(row.delta),
        status=row.status,
        calculated_at=row.calculated_at,
    )


class LeaseStore:
    """Read/upsert access to the relational store used by the financial core.

    Every SQLAlchemy failure is rolled back and re-raised as ``StorageError``.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Storage failure during %s: %s", operation, exc)
            raise StorageError(f"Storage failure during {operation}.") from exc

    # --- leases -----------------------------------------------------------

    def get_lease(self, lease_id: int) -> LeaseRecord:
        with self._guard("lease lookup"):
            lease = (
                self.session.query(Lease)
                .options(joinedload(Lease.property))
                .filter(Lease.id == lease_id)
                .first()
            )
        if lease is None:
            raise NotFoundError(f"Lease {lease_id} not found.", context={"lease_id": lease_id})
        return _lease_record(lease)

    def get_property_id(self, lease_id: int) -> int:
        lease = self.get_lease(lease_id)
        if lease.property_id is None:
            raise NotFoundError(f"Lease {lease_id} has no property.", context={"lease_id": lease_id})
        with self._guard("property lookup"):
            exists = self.session.query(Property.id).filter(Property.id == lease.property_id).first()
        if exists is None:
            raise NotFoundError(
                f"Property {lease.property_id} for lease {lease_id} not found.",
                context={"lease_id": lease_id, "property_id": lease.property_id},
            )
        return lease.property_id

    def list_active_lease_ids(self) -> List[int]:
        with self._guard("active lease scan"):
            rows = (
                self.session.query(Lease.id)
                .filter(Lease.status == LEASE_STATUS_ACTIVE)
                .order_by(Lease.id.asc())
                .all()
            )
        return [row.id for row in rows]

    def list_leases(self, lease_ids: Optional[Iterable[int]] = None) -> List[LeaseRecord]:
        with self._guard("lease listing"):
            query = self.session.query(Lease).options(joinedload(Lease.property))
            if lease_ids is not None:
                query = query.filter(Lease.id.in_(list(lease_ids)))
            leases = query.order_by(Lease.id.asc()).all()
        return [_lease_record(lease) for lease in leases]

    def list_lease_ids_for_owner(self, owner_id: int) -> List[int]:
        with self._guard("owner lease listing"):
            rows = (
                self.session.query(Lease.id)
                .join(Property, Property.id == Lease.property_id)
                .filter(Property.owner_id == owner_id)
                .order_by(Lease.id.asc())
                .all()
            )
        return [row.id for row in rows]

    def signers_by_lease(self, lease_ids: Optional[Iterable[int]] = None) -> Dict[int, List[SignerRecord]]:
        with self._guard("signer listing"):
            query = self.session.query(LeaseSigner).options(joinedload(LeaseSigner.profile))
            if lease_ids is not None:
                query = query.filter(LeaseSigner.lease_id.in_(list(lease_ids)))
            signers = query.order_by(LeaseSigner.id.asc()).all()
        grouped: Dict[int, List[SignerRecord]] = {}
        for signer in signers:
            profile = signer.profile
            grouped.setdefault(signer.lease_id, []).append(
                SignerRecord(
                    lease_id=signer.lease_id,
                    role=signer.role,
                    first_name=profile.first_name if profile else None,
                    last_name=profile.last_name if profile else None,
                    email=profile.email if profile else None,
                    phone=profile.phone if profile else None,
                )
            )
        return grouped

    # --- charges & provisions --------------------------------------------

    def list_charges(self, property_id: int) -> List[ChargeRecord]:
        with self._guard("charge listing"):
            charges = (
                self.session.query(Charge)
                .filter(Charge.property_id == property_id)
                .order_by(Charge.id.asc())
                .all()
            )
        return [
            ChargeRecord(
                id=charge.id,
                property_id=charge.property_id,
                amount=as_decimal(charge.amount),
                periodicity=charge.periodicity,
                is_rebillable=bool(charge.is_rebillable),
                label=charge.label,
            )
            for charge in charges
        ]

    def list_provisions(self, lease_id: int, start: date, end: date) -> List[ProvisionRecord]:
        with self._guard("provision listing"):
            provisions = (
                self.session.query(Provision)
                .filter(
                    Provision.lease_id == lease_id,
                    Provision.month >= start,
                    Provision.month <= end,
                )
                .order_by(Provision.month.asc(), Provision.id.asc())
                .all()
            )
        return [
            ProvisionRecord(id=row.id, lease_id=row.lease_id, month=row.month, amount=as_decimal(row.amount))
            for row in provisions
        ]

    # --- reconciliations -------------------------------------------------

    def get_reconciliation(self, lease_id: int, year: int) -> Optional[ReconciliationRecord]:
        with self._guard("reconciliation lookup"):
            row = (
                self.session.query(Reconciliation)
                .filter(Reconciliation.lease_id == lease_id, Reconciliation.year == year)
                .first()
            )
        return _reconciliation_record(row) if row else None

    def list_reconciliations(
        self,
        lease_ids: Optional[Iterable[int]] = None,
        year: Optional[int] = None,
    ) -> List[ReconciliationRecord]:
        with self._guard("reconciliation listing"):
            query = self.session.query(Reconciliation)
            if lease_ids is not None:
                query = query.filter(Reconciliation.lease_id.in_(list(lease_ids)))
            if year is not None:
                query = query.filter(Reconciliation.year == year)
            rows = query.order_by(Reconciliation.year.desc(), Reconciliation.lease_id.asc()).all()
        return [_reconciliation_record(row) for row in rows]

    def _apply_reconciliation(
        self,
        lease_id: int,
        year: int,
        fields: Dict[str, Any],
    ) -> Reconciliation:
        row = (
            self.session.query(Reconciliation)
            .filter(Reconciliation.lease_id == lease_id, Reconciliation.year == year)
            .first()
        )
        if row is None:
            row = Reconciliation(lease_id=lease_id, year=year)
        for key, value in fields.items():
            setattr(row, key, value)
        self.session.add(row)
        self.session.flush()
        return row

    def upsert_reconciliation(
        self,
        *,
        lease_id: int,
        year: int,
        period_start: date,
        period_end: date,
        total_charges: Decimal,
        total_provisions: Decimal,
        delta: Decimal,
        calculated_at: Optional[datetime] = None,
    ) -> ReconciliationRecord:
        fields = {
            "period_start": period_start,
            "period_end": period_end,
            "total_charges": total_charges,
            "total_provisions": total_provisions,
            "delta": delta,
            "status": RECONCILIATION_STATUS_CALCULATED,
            "calculated_at": calculated_at or utcnow(),
        }
        with self._guard("reconciliation upsert"):
            try:
                row = self._apply_reconciliation(lease_id, year, fields)
                self.session.commit()
            except IntegrityError:
                # A concurrent run inserted the same (lease, year) first; overwrite it.
                self.session.rollback()
                row = self._apply_reconciliation(lease_id, year, fields)
                self.session.commit()
            self.session.refresh(row)
        return _reconciliation_record(row)

    # --- invoices ----------------------------------------------------------

    def list_unpaid_invoices(self, lease_ids: Optional[Iterable[int]] = None) -> List[InvoiceRecord]:
        with self._guard("invoice listing"):
            query = self.session.query(Invoice).filter(Invoice.status != INVOICE_STATUS_PAID)
            if lease_ids is not None:
                query = query.filter(Invoice.lease_id.in_(list(lease_ids)))
            invoices = query.order_by(Invoice.due_date.asc(), Invoice.id.asc()).all()
        return [
            InvoiceRecord(
                id=invoice.id,
                lease_id=invoice.lease_id,
                amount=as_decimal(invoice.amount),
                due_date=invoice.due_date,
                status=invoice.status,
                period=invoice.period,
            )
            for invoice in invoices
        ]

    # --- outbox ------------------------------------------------------------

    def append_outbox_event(self, event_type: str, payload: Dict[str, Any], max_retries: int) -> int:
        with self._guard("outbox append"):
            event = OutboxEvent(
                event_type=event_type,
                payload=payload,
                status="pending",
                retry_count=0,
                max_retries=max_retries,
                scheduled_at=utcnow(),
            )
            self.session.add(event)
            self.session.commit()
            return event.id

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Tuple

from ..constants import EVENT_CHARGE_RECONCILED
from .events import EventEmitter
from .records import ChargeRecord, ProvisionRecord, ReconciliationRecord
from .store import LeaseStore
from .tariff import annual_rebillable_total

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ReconciliationTotals:
    total_charges: Decimal
    total_provisions: Decimal
    delta: Decimal


def reconciliation_window(year: int) -> Tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def compute_totals(
    charges: Iterable[ChargeRecord],
    provisions: Iterable[ProvisionRecord],
) -> ReconciliationTotals:
    """Annual re-billable charges against provisions collected.

    A positive delta means the tenant owes the difference; a negative one is a
    credit due to the tenant.
    """
    total_charges = annual_rebillable_total(charges)
    total_provisions = sum((provision.amount for provision in provisions), Decimal("0"))
    delta = total_charges - total_provisions
    return ReconciliationTotals(
        total_charges=total_charges.quantize(CENT, rounding=ROUND_HALF_UP),
        total_provisions=total_provisions.quantize(CENT, rounding=ROUND_HALF_UP),
        delta=delta.quantize(CENT, rounding=ROUND_HALF_UP),
    )


def reconcile(
    store: LeaseStore,
    lease_id: int,
    year: int,
    *,
    emitter: Optional[EventEmitter] = None,
    calculated_at: Optional[datetime] = None,
) -> ReconciliationRecord:
    """Recompute and upsert the (lease, year) reconciliation.

    Raises ``NotFoundError`` when the lease or its property is missing and
    ``StorageError`` when the store fails. The record is overwritten on re-runs.
    """
    property_id = store.get_property_id(lease_id)
    period_start, period_end = reconciliation_window(year)

    charges = store.list_charges(property_id)
    provisions = store.list_provisions(lease_id, period_start, period_end)
    totals = compute_totals(charges, provisions)

    record = store.upsert_reconciliation(
        lease_id=lease_id,
        year=year,
        period_start=period_start,
        period_end=period_end,
        total_charges=totals.total_charges,
        total_provisions=totals.total_provisions,
        delta=totals.delta,
        calculated_at=calculated_at,
    )
    logger.info(
        "Reconciled lease %s for %s: charges=%s provisions=%s delta=%s",
        lease_id,
        year,
        record.total_charges,
        record.total_provisions,
        record.delta,
    )

    if emitter is not None:
        try:
            emitter.emit(
                EVENT_CHARGE_RECONCILED,
                {
                    "reconciliationId": record.id,
                    "leaseId": record.lease_id,
                    "year": record.year,
                    "delta": str(record.delta),
                },
            )
        except Exception:
            logger.warning("Could not emit %s for lease %s.", EVENT_CHARGE_RECONCILED, lease_id, exc_info=True)
    return record

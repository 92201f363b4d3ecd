"""Typed records exchanged between the store and the financial computations.

The computations never see ORM rows; the store converts rows into these frozen
records so the pure functions stay independent of the session lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..core.errors import ValidationError


def as_decimal(value: Any) -> Decimal:
    """Parse a stored or user supplied amount; ``None`` counts as zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Unparseable amount {value!r}.") from exc


@dataclass(frozen=True)
class LeaseRecord:
    id: int
    property_id: Optional[int]
    lease_type: str
    status: str
    property_address: Optional[str] = None
    owner_id: Optional[int] = None


@dataclass(frozen=True)
class ChargeRecord:
    id: int
    property_id: int
    amount: Decimal
    periodicity: str
    is_rebillable: bool
    label: Optional[str] = None


@dataclass(frozen=True)
class ProvisionRecord:
    id: int
    lease_id: int
    month: date
    amount: Decimal


@dataclass(frozen=True)
class InvoiceRecord:
    id: int
    lease_id: int
    amount: Decimal
    due_date: date
    status: str
    period: Optional[str] = None


@dataclass(frozen=True)
class SignerRecord:
    lease_id: int
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def display_name(self) -> str:
        return " ".join(part.strip() for part in (self.first_name, self.last_name) if part and part.strip())


@dataclass(frozen=True)
class ReconciliationRecord:
    id: int
    lease_id: int
    year: int
    period_start: date
    period_end: date
    total_charges: Decimal
    total_provisions: Decimal
    delta: Decimal
    status: str
    calculated_at: Optional[datetime] = None


@dataclass(frozen=True)
class LateInvoice:
    invoice_id: int
    lease_id: int
    amount: Decimal
    due_date: date
    days_late: int
    reminder_level: str
    tenant_name: str
    tenant_email: Optional[str]
    property_address: str
    lease_type: Optional[str]
    period: Optional[str] = None

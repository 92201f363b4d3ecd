from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ReconciliationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class ReconciliationRunRequest(BaseModel):
    scope: Literal["lease", "all"]
    year: int = Field(ge=1900, le=9999)
    lease_id: Optional[int] = None

    @model_validator(mode="after")
    def _lease_scope_needs_lease(self) -> "ReconciliationRunRequest":
        if self.scope == "lease" and self.lease_id is None:
            raise ValueError("lease_id is required when scope is 'lease'")
        return self


class ReconciliationErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lease_id: int
    error: str
    detail: str


class ReconciliationRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scope: str
    year: int
    results: List[ReconciliationRead] = []
    errors: List[ReconciliationErrorRead] = []
    cancelled: bool = False


class LateInvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class ReminderContentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject: str
    body: str


class ReminderPreviewRead(BaseModel):
    invoice: LateInvoiceRead
    reminder: ReminderContentRead


class ReminderDispatchRequest(BaseModel):
    now: Optional[datetime] = None
    dry_run: bool = False


class ReminderDispatchRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_id: int
    reminder_level: str
    recipient_email: Optional[str]
    status: str
    error: Optional[str] = None


class OutboxRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processed: int
    failed: int
    total: int

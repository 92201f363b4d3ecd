from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable

from ..constants import PERIODICITY_MULTIPLIERS
from .records import ChargeRecord, as_decimal

logger = logging.getLogger(__name__)


def annualize(amount: Any, periodicity: str) -> Decimal:
    """Convert a periodic charge amount into its yearly figure.

    Unknown periodicities contribute nothing to the annual total.
    """
    multiplier = PERIODICITY_MULTIPLIERS.get((periodicity or "").strip().lower())
    if multiplier is None:
        logger.warning("Unknown charge periodicity %r; excluded from annual total.", periodicity)
        return Decimal("0")
    return as_decimal(amount) * multiplier


def annual_rebillable_total(charges: Iterable[ChargeRecord]) -> Decimal:
    total = Decimal("0")
    for charge in charges:
        if not charge.is_rebillable:
            continue
        total += annualize(charge.amount, charge.periodicity)
    return total

from decimal import Decimal

import pytest

from lease_ops.core.errors import ValidationError
from lease_ops.services.records import ChargeRecord
from lease_ops.services.tariff import annual_rebillable_total, annualize


def test_annualize_applies_periodicity_multiplier():
    assert annualize(Decimal("100"), "monthly") == Decimal("1200")
    assert annualize(Decimal("100"), "quarterly") == Decimal("400")
    assert annualize(Decimal("100"), "yearly") == Decimal("100")


def test_annualize_is_case_and_whitespace_insensitive():
    assert annualize(Decimal("50"), " Monthly ") == Decimal("600")
    assert annualize("25.50", "QUARTERLY") == Decimal("102.00")


def test_unknown_periodicity_contributes_zero(caplog):
    with caplog.at_level("WARNING"):
        assert annualize(Decimal("100"), "weekly") == Decimal("0")
        assert annualize(Decimal("100"), "") == Decimal("0")
    assert "weekly" in caplog.text


def test_annual_total_only_counts_rebillable_charges():
    charges = [
        ChargeRecord(id=1, property_id=1, amount=Decimal("50"), periodicity="monthly", is_rebillable=True),
        ChargeRecord(id=2, property_id=1, amount=Decimal("150"), periodicity="quarterly", is_rebillable=True),
        ChargeRecord(id=3, property_id=1, amount=Decimal("900"), periodicity="yearly", is_rebillable=False),
        ChargeRecord(id=4, property_id=1, amount=Decimal("10"), periodicity="daily", is_rebillable=True),
    ]

    assert annual_rebillable_total(charges) == Decimal("1200")


def test_annual_total_of_no_charges_is_zero():
    assert annual_rebillable_total([]) == Decimal("0")


def test_unparseable_amount_is_a_validation_error():
    with pytest.raises(ValidationError):
        annualize("abc", "monthly")

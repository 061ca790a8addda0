from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from parts.models import LedgerTransaction, PartsSettings
from parts.services import (
    FIFOCostService, LedgerService, InsufficientHistoryError, ValidationError,
)

pytestmark = pytest.mark.django_db


@pytest.fixture()
def two_lots(part, purchase):
    start = timezone.now() - timedelta(days=10)
    first = purchase("CAP-45", 5, "10.00", occurred_at=start)
    second = purchase("CAP-45", 5, "20.00", occurred_at=start + timedelta(days=1))
    return first, second


def test_walk_draws_oldest_lot_first(two_lots):
    first, second = two_lots

    allocation = FIFOCostService.allocate("CAP-45", 7)

    assert [(lot.transaction_id, lot.quantity, lot.unit_cost) for lot in allocation.lots] == [
        (first.id, 5, Decimal("10.0000")),
        (second.id, 2, Decimal("20.0000")),
    ]
    assert allocation.total_cost == Decimal("90.0000")
    assert allocation.weighted_unit_cost == Decimal("12.8571")
    assert not allocation.extrapolated


def test_prior_consumption_is_carried_across_lots(two_lots):
    LedgerService.append(part_code="CAP-45", quantity=-3, kind="Used")

    allocation = FIFOCostService.allocate("CAP-45", 4)

    assert allocation.already_consumed == 3
    assert [(lot.quantity, lot.unit_cost) for lot in allocation.lots] == [
        (2, Decimal("10.0000")),
        (2, Decimal("20.0000")),
    ]
    assert allocation.total_cost == Decimal("60.0000")
    assert allocation.weighted_unit_cost == Decimal("15.0000")


def test_consumption_larger_than_first_lot_spills_into_next(two_lots):
    LedgerService.append(part_code="CAP-45", quantity=-6, kind="Used")

    allocation = FIFOCostService.allocate("CAP-45", 2)

    assert [(lot.quantity, lot.unit_cost) for lot in allocation.lots] == [(2, Decimal("20.0000"))]
    assert allocation.total_cost == Decimal("40.0000")


def test_transfers_are_not_consumption(two_lots, make_location):
    shop = make_location(location_type="BUILDING")
    LedgerService.record_transfer(part_code="CAP-45", quantity=4, to_location_id=shop.id)

    allocation = FIFOCostService.allocate("CAP-45", 1)
    assert allocation.already_consumed == 0
    assert allocation.lots[0].unit_cost == Decimal("10.0000")


def test_reversed_consumption_is_not_counted(two_lots):
    used = LedgerService.append(part_code="CAP-45", quantity=-5, kind="Used")
    LedgerService.reverse(used.id)

    allocation = FIFOCostService.allocate("CAP-45", 1)
    assert allocation.already_consumed == 0
    assert allocation.weighted_unit_cost == Decimal("10.0000")


def test_allocation_is_read_only(two_lots):
    before = LedgerTransaction.objects.count()

    FIFOCostService.allocate("CAP-45", 3)
    FIFOCostService.preview("CAP-45", 3)

    assert LedgerTransaction.objects.count() == before


def test_shortfall_is_priced_at_last_lot_and_flagged(part, purchase):
    purchase("CAP-45", 5, "10.00")
    LedgerService.append(part_code="CAP-45", quantity=-3, kind="Used")

    allocation = FIFOCostService.allocate("CAP-45", 4)

    assert allocation.extrapolated
    assert allocation.extrapolated_quantity == 2
    assert allocation.lots[-1].extrapolated
    assert allocation.total_cost == Decimal("40.0000")


def test_shortfall_without_extrapolation_raises(part, purchase, settings_row):
    settings_row.allow_extrapolation = False
    settings_row.save()
    purchase("CAP-45", 5, "10.00")

    with pytest.raises(InsufficientHistoryError):
        FIFOCostService.allocate("CAP-45", 7)

    allocation = FIFOCostService.allocate("CAP-45", 5)
    assert allocation.total_cost == Decimal("50.0000")


def test_argument_overrides_extrapolation_setting(part, purchase):
    purchase("CAP-45", 1, "10.00")

    with pytest.raises(InsufficientHistoryError):
        FIFOCostService.allocate("CAP-45", 2, allow_extrapolation=False)


def test_no_purchase_history(part):
    with pytest.raises(InsufficientHistoryError) as exc:
        FIFOCostService.allocate("CAP-45", 1)
    assert exc.value.details["part"] == "CAP-45"


def test_fully_consumed_history(part, purchase):
    purchase("CAP-45", 5, "10.00")
    LedgerService.append(part_code="CAP-45", quantity=-5, kind="Used")

    with pytest.raises(InsufficientHistoryError):
        FIFOCostService.allocate("CAP-45", 1)


def test_quantity_must_be_positive(part, purchase):
    purchase("CAP-45", 5, "10.00")

    with pytest.raises(ValidationError):
        FIFOCostService.allocate("CAP-45", 0)


def test_preview_serializes_lots(two_lots):
    result = FIFOCostService.preview("CAP-45", 7)

    assert result["success"] is True
    assert result["allocation"]["total_cost"] == "90.0000"
    assert len(result["allocation"]["lots"]) == 2


def test_settings_default_allows_extrapolation(settings_row):
    assert PartsSettings.load().allow_extrapolation is True

"""Ledger append rules, immutability, reversals and transfers."""
from decimal import Decimal

import pytest

from parts.models import LedgerTransaction, Part
from parts.services import (
    LedgerService, ValidationError, BusinessRuleError, ConcurrencyConflictError, NotFoundError,
)

pytestmark = pytest.mark.django_db

Kind = LedgerTransaction.Kind


def test_purchase_updates_cached_projection(part, purchase):
    entry = purchase("CAP-45", 10, "25.00", order_ref="PO-1001", invoice_number="INV-77")

    assert entry.kind == Kind.PURCHASE
    assert entry.total_cost == Decimal("250.00")

    part.refresh_from_db()
    assert part.in_stock == 10
    assert part.avg_cost == Decimal("25.00")
    assert part.sell_price == Decimal("30.00")
    assert part.ledger_version == 1


def test_purchase_requires_unit_cost(part):
    with pytest.raises(ValidationError) as exc:
        LedgerService.append(part_code="CAP-45", quantity=5, kind="Purchase")
    assert exc.value.field == "unit_cost"
    assert LedgerTransaction.objects.count() == 0


def test_unknown_part_is_rejected(db):
    with pytest.raises(ValidationError) as exc:
        LedgerService.append(part_code="NOPE-1", quantity=1, kind="Adjustment")
    assert exc.value.field == "part_code"


@pytest.mark.parametrize("kind,quantity", [
    ("Purchase", -1),
    ("CustomerReturn", -2),
    ("Used", 1),
    ("ReturnToSupplier", 3),
    ("DamagedOrLost", 1),
])
def test_sign_contradicting_kind_is_rejected(part, kind, quantity):
    with pytest.raises(ValidationError):
        LedgerService.append(part_code="CAP-45", quantity=quantity, kind=kind, unit_cost="1.00")


def test_zero_and_fractional_quantities_are_rejected(part):
    with pytest.raises(ValidationError):
        LedgerService.append(part_code="CAP-45", quantity=0, kind="Adjustment")
    with pytest.raises(ValidationError):
        LedgerService.append(part_code="CAP-45", quantity="1.5", kind="Adjustment")


def test_unknown_kind_is_rejected(part):
    with pytest.raises(ValidationError) as exc:
        LedgerService.append(part_code="CAP-45", quantity=1, kind="Stolen")
    assert exc.value.field == "kind"


def test_kind_accepts_labels_and_values():
    assert LedgerService.normalize_kind("Damaged/Lost") == Kind.DAMAGED_OR_LOST
    assert LedgerService.normalize_kind("DamagedOrLost") == Kind.DAMAGED_OR_LOST
    assert LedgerService.normalize_kind("direct order") == Kind.DIRECT_ORDER
    assert LedgerService.normalize_kind("USED") == Kind.USED


def test_adjustment_and_direct_order_allow_either_sign(part, purchase):
    purchase("CAP-45", 5, "10.00")
    LedgerService.append(part_code="CAP-45", quantity=-2, kind="Adjustment")
    LedgerService.append(part_code="CAP-45", quantity=3, kind="Adjustment")
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="DirectOrder")

    part.refresh_from_db()
    assert part.in_stock == 5


def test_negative_stock_is_allowed(part, purchase):
    purchase("CAP-45", 1, "10.00")
    LedgerService.append(part_code="CAP-45", quantity=-3, kind="Used")

    part.refresh_from_db()
    assert part.in_stock == -2


def test_ledger_rows_cannot_be_edited_or_deleted(part, purchase):
    entry = purchase("CAP-45", 2, "10.00")

    entry.notes = "changed"
    with pytest.raises(BusinessRuleError):
        entry.save()
    with pytest.raises(BusinessRuleError):
        entry.delete()
    with pytest.raises(BusinessRuleError):
        LedgerTransaction.objects.filter(pk=entry.pk).update(quantity=20)
    with pytest.raises(BusinessRuleError):
        LedgerTransaction.objects.all().delete()

    assert LedgerTransaction.objects.get(pk=entry.pk).quantity == 2


def test_stale_expected_version_writes_nothing(part, purchase):
    purchase("CAP-45", 5, "10.00")

    with pytest.raises(ConcurrencyConflictError):
        LedgerService.append(part_code="CAP-45", quantity=-1, kind="Used", expected_version=0)

    part.refresh_from_db()
    assert part.in_stock == 5
    assert part.ledger_version == 1
    assert LedgerTransaction.objects.count() == 1


def test_back_dated_receipt_keeps_ledger_order(part, purchase):
    purchase("CAP-45", 1, "20.00")
    purchase("CAP-45", 1, "10.00", occurred_at="2024-01-01T08:00:00")

    entries = list(LedgerService.list_for_part("cap-45"))
    assert [e.unit_cost for e in entries] == [Decimal("10.0000"), Decimal("20.0000")]


def test_reverse_restores_stock_once(part, purchase):
    purchase("CAP-45", 5, "10.00")
    damaged = LedgerService.append(part_code="CAP-45", quantity=-2, kind="Damaged/Lost", notes="dropped")

    reversal = LedgerService.reverse(damaged.id, notes="found it", actor="dispatch")

    assert reversal.kind == Kind.ADJUSTMENT
    assert reversal.quantity == 2
    assert reversal.reverses_id == damaged.id
    assert f"#{damaged.id}" in reversal.notes
    part.refresh_from_db()
    assert part.in_stock == 5

    with pytest.raises(BusinessRuleError):
        LedgerService.reverse(damaged.id)
    with pytest.raises(BusinessRuleError):
        LedgerService.reverse(reversal.id)


def test_reversal_quantity_must_mirror_original(part, purchase):
    purchase("CAP-45", 5, "10.00")
    used = LedgerService.append(part_code="CAP-45", quantity=-2, kind="Used")

    with pytest.raises(ValidationError):
        LedgerService.append(part_code="CAP-45", quantity=1, kind="Adjustment", reverses_id=used.id)


def test_reverse_unknown_entry(db):
    with pytest.raises(NotFoundError):
        LedgerService.reverse(999)


def test_purchases_cannot_be_reversed(part, purchase):
    first = purchase("CAP-45", 5, "10.00")

    with pytest.raises(BusinessRuleError) as excinfo:
        LedgerService.reverse(first.id)

    assert excinfo.value.details["rule"] == "purchase_reversal"
    part.refresh_from_db()
    assert part.in_stock == 5
    assert LedgerTransaction.objects.filter(part=part).count() == 1


def test_non_purchase_entries_leave_average_cost(part, purchase, make_location):
    shop = make_location(location_type="BUILDING")
    purchase("CAP-45", 5, "10.00")
    purchase("CAP-45", 5, "20.00")
    part.refresh_from_db()
    assert part.avg_cost == Decimal("15.0000")

    LedgerService.append(part_code="CAP-45", quantity=-2, kind="Used", unit_cost="15.00")
    LedgerService.append(part_code="CAP-45", quantity=3, kind="Adjustment", unit_cost="99.00")
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="Return to Supplier", unit_cost="10.00")
    LedgerService.record_transfer(part_code="CAP-45", quantity=2, to_location_id=shop.id)

    part.refresh_from_db()
    assert part.in_stock == 10
    assert part.avg_cost == Decimal("15.0000")


def test_transfer_nets_to_zero_and_moves_home_location(make_part, purchase, make_location):
    truck = make_location(name="Truck 7")
    shop = make_location(location_type="BUILDING", name="Shop")
    make_part(storage_location_id=truck.id)
    purchase("CAP-45", 10, "25.00")

    legs = LedgerService.record_transfer(part_code="CAP-45", quantity=4, to_location_id=shop.id)

    assert [leg.quantity for leg in legs] == [-4, 4]
    assert all(leg.kind == Kind.TRANSFER for leg in legs)
    assert all(leg.from_location_id == truck.id and leg.to_location_id == shop.id for leg in legs)

    part = Part.objects.get(code="CAP-45")
    assert part.in_stock == 10
    assert part.storage_location_id == shop.id
    assert part.avg_cost == Decimal("25.00")


def test_transfer_to_same_location_is_rejected(make_part, make_location):
    truck = make_location()
    make_part(storage_location_id=truck.id)

    with pytest.raises(ValidationError):
        LedgerService.record_transfer(part_code="CAP-45", quantity=1, to_location_id=truck.id)


def test_transfer_legs_cannot_be_reversed(part, purchase, make_location):
    shop = make_location(location_type="BUILDING")
    purchase("CAP-45", 3, "5.00")
    legs = LedgerService.record_transfer(part_code="CAP-45", quantity=1, to_location_id=shop.id)

    with pytest.raises(BusinessRuleError):
        LedgerService.reverse(legs[0].id)


def test_history_is_newest_first_and_filterable(part, purchase):
    purchase("CAP-45", 3, "5.00")
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="Used")

    result = LedgerService.history("CAP-45")
    assert [t["kind"] for t in result["transactions"]] == ["USED", "PURCHASE"]

    used_only = LedgerService.history("CAP-45", kind="Used")
    assert used_only["pagination"]["total_items"] == 1


def test_list_consumption_skips_transfer_legs(part, purchase, make_location):
    shop = make_location(location_type="BUILDING")
    purchase("CAP-45", 5, "5.00")
    LedgerService.record_transfer(part_code="CAP-45", quantity=2, to_location_id=shop.id)
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="ReturnToSupplier")

    kinds = [e.kind for e in LedgerService.list_consumption("CAP-45")]
    assert kinds == [Kind.RETURN_TO_SUPPLIER]

from decimal import Decimal

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from parts.models import Part
from parts.services import (
    LedgerService, PartCatalogService, StockProjectionService, NotFoundError,
)
from parts.services.projection_service import fold, sell_price_for

pytestmark = pytest.mark.django_db


def test_projection_without_purchases_has_no_cost(part):
    projection = StockProjectionService.project("CAP-45")

    assert projection.stock == 0
    assert projection.avg_cost is None
    assert projection.sell_price is None


def test_weighted_average_over_purchases(part, purchase):
    purchase("CAP-45", 5, "10.00")
    purchase("CAP-45", 15, "30.00")
    LedgerService.append(part_code="CAP-45", quantity=-4, kind="Used")

    projection = StockProjectionService.project("cap-45")

    assert projection.stock == 16
    assert projection.avg_cost == Decimal("25.0000")
    assert projection.sell_price == Decimal("30.00")
    assert projection.times_used == 1


def test_fractional_cost_rounds_half_up(part, purchase):
    purchase("CAP-45", 5, "25.50")

    projection = StockProjectionService.project("CAP-45")
    assert projection.avg_cost == Decimal("25.5000")
    assert projection.sell_price == Decimal("30.60")


def test_sell_price_uses_part_markup(make_part, purchase):
    make_part(code="TXV-2T", description="Expansion valve 2 ton", markup_percent="50")
    purchase("TXV-2T", 2, "50.00")

    assert StockProjectionService.project("TXV-2T").sell_price == Decimal("75.00")


def test_markup_change_rederives_cached_sell_price(part, purchase):
    purchase("CAP-45", 4, "25.00")

    PartCatalogService.update("CAP-45", markup_percent="50")

    part.refresh_from_db()
    assert part.avg_cost == Decimal("25.00")
    assert part.sell_price == Decimal("37.50")


def test_sell_price_for_none_cost():
    assert sell_price_for(None, Decimal("20")) is None
    assert sell_price_for(Decimal("0.125"), Decimal("0")) == Decimal("0.13")


def test_fold_ignores_reversed_usage(part, purchase):
    purchase("CAP-45", 3, "10.00")
    used = LedgerService.append(part_code="CAP-45", quantity=-1, kind="Used")
    LedgerService.append(part_code="CAP-45", quantity=-1, kind="Used")
    LedgerService.reverse(used.id)

    projection = fold(LedgerService.list_for_part("CAP-45"), Decimal("20"))
    assert projection.stock == 2
    assert projection.times_used == 1


def test_project_unknown_part(db):
    with pytest.raises(NotFoundError):
        StockProjectionService.project("MISSING")


def test_rebuild_all_repairs_drifted_cache(part, purchase):
    purchase("CAP-45", 6, "12.00")
    Part.objects.filter(pk=part.pk).update(in_stock=99, avg_cost=None)

    drift = StockProjectionService.find_drift()
    assert [r.code for r in drift] == ["CAP-45"]
    assert "in_stock" in drift[0].fields

    result = StockProjectionService.rebuild_all()
    assert result["rebuilt"] == 1

    part.refresh_from_db()
    assert part.in_stock == 6
    assert part.avg_cost == Decimal("12.00")
    assert StockProjectionService.find_drift() == []


def test_rebuild_command_check_mode(part, purchase):
    purchase("CAP-45", 2, "12.00")
    Part.objects.filter(pk=part.pk).update(in_stock=0)

    with pytest.raises(CommandError):
        call_command("rebuild_part_caches", "--check")

    call_command("rebuild_part_caches")
    call_command("rebuild_part_caches", "--check")

    part.refresh_from_db()
    assert part.in_stock == 2

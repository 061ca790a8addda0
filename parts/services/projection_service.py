"""
Stock Projection Service - derive stock, average cost and sell price from the ledger
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Iterable, List, Optional

from django.db import transaction

from parts.models import Part, LedgerTransaction
from parts.services.base_service import (
    BaseService, success_response, NotFoundError, round_decimal, isoformat, money
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass
class StockProjection:
    stock: int
    avg_cost: Optional[Decimal]
    sell_price: Optional[Decimal]
    markup_percent: Decimal
    times_used: int = 0
    first_used_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stock": self.stock,
            "avg_cost": money(self.avg_cost),
            "sell_price": money(self.sell_price),
            "markup_percent": str(self.markup_percent),
            "times_used": self.times_used,
            "first_used_at": isoformat(self.first_used_at),
            "last_used_at": isoformat(self.last_used_at),
        }


@dataclass
class DriftReport:
    code: str
    cached: Dict[str, Any]
    ledger: Dict[str, Any]
    fields: List[str] = field(default_factory=list)


def sell_price_for(avg_cost: Optional[Decimal], markup_percent: Decimal) -> Optional[Decimal]:
    if avg_cost is None:
        return None
    return round_decimal(avg_cost * (1 + Decimal(markup_percent) / HUNDRED), 2)


def fold(entries: Iterable[LedgerTransaction], markup_percent: Decimal) -> StockProjection:
    """
    Replay ledger entries (oldest first) into a projection.

    Stock is the plain signed sum. Average cost covers every purchase lot
    that carries a unit cost; usage counters cover Used entries that have
    not been reversed.
    """
    entries = list(entries)
    reversed_ids = {e.reverses_id for e in entries if e.reverses_id}

    stock = 0
    cost_sum = Decimal("0")
    cost_qty = 0
    live_uses = []

    for entry in entries:
        stock += entry.quantity

        if entry.kind == LedgerTransaction.Kind.PURCHASE and entry.unit_cost is not None:
            qty = abs(entry.quantity)
            cost_sum += entry.unit_cost * qty
            cost_qty += qty

        if entry.kind == LedgerTransaction.Kind.USED and entry.id not in reversed_ids:
            live_uses.append(entry)

    avg_cost = round_decimal(cost_sum / cost_qty, 4) if cost_qty else None

    used_times = [e.occurred_at for e in live_uses]

    return StockProjection(
        stock=stock,
        avg_cost=avg_cost,
        sell_price=sell_price_for(avg_cost, markup_percent),
        markup_percent=Decimal(markup_percent),
        times_used=len(live_uses),
        first_used_at=min(used_times) if used_times else None,
        last_used_at=max(used_times) if used_times else None,
    )


class StockProjectionService(BaseService):
    model = Part

    @classmethod
    def _entries(cls, part: Part):
        return LedgerTransaction.objects.filter(part=part).order_by("occurred_at", "id")

    @classmethod
    def project_part(cls, part: Part) -> StockProjection:
        return fold(cls._entries(part), part.markup_percent)

    @classmethod
    def project(cls, part_code: str) -> StockProjection:
        part = Part.objects.filter(code=Part.normalize_code(part_code)).first()
        if not part:
            raise NotFoundError("Part", part_code)
        return cls.project_part(part)

    @classmethod
    def get(cls, part_code: str) -> Dict[str, Any]:
        projection = cls.project(part_code)
        return success_response({
            "code": Part.normalize_code(part_code),
            "projection": projection.to_dict(),
        })

    @classmethod
    def refresh(cls, part: Part) -> StockProjection:
        """Recompute the full fold and write it to the part's cache columns."""
        projection = cls.project_part(part)

        values = {
            "in_stock": projection.stock,
            "avg_cost": projection.avg_cost,
            "sell_price": projection.sell_price,
            "times_used": projection.times_used,
            "first_used_at": projection.first_used_at,
            "last_used_at": projection.last_used_at,
        }
        Part.objects.filter(pk=part.pk).update(**values)
        for name, value in values.items():
            setattr(part, name, value)

        return projection

    @classmethod
    def _cached(cls, part: Part) -> Dict[str, Any]:
        return {
            "in_stock": part.in_stock,
            "avg_cost": part.avg_cost,
            "sell_price": part.sell_price,
            "times_used": part.times_used,
        }

    @classmethod
    def find_drift(cls) -> List[DriftReport]:
        """Parts whose cached columns disagree with the ledger fold"""
        reports = []
        for part in Part.objects.order_by("code"):
            projection = cls.project_part(part)
            expected = {
                "in_stock": projection.stock,
                "avg_cost": projection.avg_cost,
                "sell_price": projection.sell_price,
                "times_used": projection.times_used,
            }
            cached = cls._cached(part)
            mismatched = [name for name in expected if cached[name] != expected[name]]
            if mismatched:
                reports.append(DriftReport(
                    code=part.code,
                    cached={k: str(v) if v is not None else None for k, v in cached.items()},
                    ledger={k: str(v) if v is not None else None for k, v in expected.items()},
                    fields=mismatched,
                ))
        return reports

    @classmethod
    def rebuild_all(cls) -> Dict[str, Any]:
        drift = cls.find_drift()
        rebuilt = 0

        for part in Part.objects.order_by("code"):
            with transaction.atomic():
                locked = Part.objects.select_for_update().get(pk=part.pk)
                cls.refresh(locked)
            rebuilt += 1

        for report in drift:
            logger.warning(f"Cache drift on {report.code}: {report.fields} cached={report.cached} ledger={report.ledger}")

        logger.info(f"Rebuilt caches for {rebuilt} parts ({len(drift)} drifted)")

        return success_response({
            "rebuilt": rebuilt,
            "drifted": [
                {"code": r.code, "fields": r.fields, "cached": r.cached, "ledger": r.ledger}
                for r in drift
            ],
        }, f"Rebuilt {rebuilt} part caches")

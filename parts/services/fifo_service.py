"""
FIFO Cost Service - price a consumption against the oldest purchase lots first
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional

from parts.models import Part, LedgerTransaction, PartsSettings
from parts.services.base_service import (
    BaseService, success_response, ValidationError, InsufficientHistoryError,
    to_int, round_decimal
)
from parts.services.catalog_service import PartCatalogService

logger = logging.getLogger(__name__)

Kind = LedgerTransaction.Kind


@dataclass
class FIFOLot:
    """Portion of one purchase lot drawn by an allocation"""
    transaction_id: int
    occurred_at: datetime
    quantity: int
    unit_cost: Decimal
    subtotal: Decimal
    extrapolated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "occurred_at": self.occurred_at.isoformat(),
            "quantity": self.quantity,
            "unit_cost": str(self.unit_cost),
            "subtotal": str(self.subtotal),
            "extrapolated": self.extrapolated,
        }


@dataclass
class FIFOAllocation:
    part_code: str
    requested_quantity: int
    total_cost: Decimal
    weighted_unit_cost: Decimal
    lots: List[FIFOLot] = field(default_factory=list)
    already_consumed: int = 0
    extrapolated: bool = False
    extrapolated_quantity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "part_code": self.part_code,
            "requested_quantity": self.requested_quantity,
            "total_cost": str(self.total_cost),
            "weighted_unit_cost": str(self.weighted_unit_cost),
            "already_consumed": self.already_consumed,
            "extrapolated": self.extrapolated,
            "extrapolated_quantity": self.extrapolated_quantity,
            "lots": [lot.to_dict() for lot in self.lots],
        }


class FIFOCostService(BaseService):
    model = LedgerTransaction

    @classmethod
    def _history(cls, part: Part):
        entries = list(
            LedgerTransaction.objects.filter(part=part).order_by("occurred_at", "id")
        )
        reversed_ids = {e.reverses_id for e in entries if e.reverses_id}

        lots = [
            e for e in entries
            if e.kind == Kind.PURCHASE
            and e.unit_cost is not None
            and e.quantity > 0
        ]

        # Reversed pairs cancel: neither the original nor its compensation counts
        consumed = sum(
            -e.quantity for e in entries
            if e.quantity < 0
            and e.kind != Kind.TRANSFER
            and not e.reverses_id
            and e.id not in reversed_ids
        )

        return lots, max(consumed, 0)

    @classmethod
    def allocate_part(cls, part: Part, requested_qty: int,
                      allow_extrapolation: Optional[bool] = None) -> FIFOAllocation:
        requested_qty = to_int(requested_qty, "quantity")
        if requested_qty <= 0:
            raise ValidationError("Quantity must be positive", "quantity")

        if allow_extrapolation is None:
            allow_extrapolation = PartsSettings.load().allow_extrapolation

        lots, consumed = cls._history(part)
        if not lots:
            raise InsufficientHistoryError(part.code, requested_qty)

        carried = consumed
        remaining = requested_qty
        drawn = []

        for lot in lots:
            available = lot.quantity
            if carried > 0:
                absorbed = min(available, carried)
                available -= absorbed
                carried -= absorbed

            if available <= 0 or remaining <= 0:
                continue

            take = min(available, remaining)
            drawn.append(FIFOLot(
                transaction_id=lot.id,
                occurred_at=lot.occurred_at,
                quantity=take,
                unit_cost=lot.unit_cost,
                subtotal=lot.unit_cost * take,
            ))
            remaining -= take

        extrapolated_qty = 0
        if remaining == requested_qty:
            # Every recorded lot is already consumed: no basis left to price against
            raise InsufficientHistoryError(
                part.code,
                requested_qty,
                f"all {sum(lot.quantity for lot in lots)} purchased units are already consumed",
            )
        if remaining > 0:
            if not allow_extrapolation:
                raise InsufficientHistoryError(
                    part.code,
                    requested_qty,
                    f"only {requested_qty - remaining} of {requested_qty} units are covered by purchase lots",
                )
            last = lots[-1]
            drawn.append(FIFOLot(
                transaction_id=last.id,
                occurred_at=last.occurred_at,
                quantity=remaining,
                unit_cost=last.unit_cost,
                subtotal=last.unit_cost * remaining,
                extrapolated=True,
            ))
            extrapolated_qty = remaining
            logger.warning(
                f"FIFO for {part.code}: {remaining} of {requested_qty} units priced at last lot "
                f"#{last.id} ({last.unit_cost}); purchase history exhausted"
            )

        total_cost = sum((lot.subtotal for lot in drawn), Decimal("0"))

        return FIFOAllocation(
            part_code=part.code,
            requested_quantity=requested_qty,
            total_cost=round_decimal(total_cost, 4),
            weighted_unit_cost=round_decimal(total_cost / requested_qty, 4),
            lots=drawn,
            already_consumed=consumed,
            extrapolated=extrapolated_qty > 0,
            extrapolated_quantity=extrapolated_qty,
        )

    @classmethod
    def allocate(cls, part_code: str, requested_qty: int,
                 allow_extrapolation: Optional[bool] = None) -> FIFOAllocation:
        """Read-only FIFO walk; writes nothing"""
        part = PartCatalogService.resolve(part_code)
        return cls.allocate_part(part, requested_qty, allow_extrapolation)

    @classmethod
    def preview(cls, part_code: str, quantity: int) -> Dict[str, Any]:
        allocation = cls.allocate(part_code, quantity)
        return success_response({"allocation": allocation.to_dict()})

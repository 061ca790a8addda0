"""
Ledger Service - append-only record of every physical movement of a part
"""
import logging
from datetime import timedelta
from typing import Dict, Any, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from jobs.models import Job
from parts.models import Part, LedgerTransaction
from parts.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, BusinessRuleError, ConcurrencyConflictError,
    to_decimal, to_int, to_datetime, money
)
from parts.services.catalog_service import PartCatalogService
from parts.services.location_service import StorageLocationService
from parts.services.projection_service import StockProjectionService

logger = logging.getLogger(__name__)

Kind = LedgerTransaction.Kind


def _kind_key(value: str) -> str:
    return "".join(ch for ch in str(value).lower() if ch.isalnum())


_KIND_ALIASES = {}
for _value, _label in Kind.choices:
    _KIND_ALIASES[_kind_key(_value)] = _value
    _KIND_ALIASES[_kind_key(_label)] = _value


class LedgerService(BaseService):
    model = LedgerTransaction

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, entry: LedgerTransaction) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "occurred_at": entry.occurred_at.isoformat(),
            "part_id": entry.part_id,
            "part_code": entry.part.code,
            "kind": entry.kind,
            "kind_display": entry.get_kind_display(),
            "quantity": entry.quantity,
            "unit_cost": money(entry.unit_cost),
            "total_cost": money(entry.total_cost),
            "job_id": entry.job_id,
            "order_ref": entry.order_ref,
            "invoice_number": entry.invoice_number,
            "source": entry.source,
            "from_location_id": entry.from_location_id,
            "to_location_id": entry.to_location_id,
            "reverses_id": entry.reverses_id,
            "notes": entry.notes,
            "actor": entry.actor,
            "created_at": entry.created_at.isoformat(),
        }

    @classmethod
    def normalize_kind(cls, kind: str) -> str:
        normalized = _KIND_ALIASES.get(_kind_key(kind or ""))
        if not normalized:
            raise ValidationError(
                f"Invalid transaction kind '{kind}'. Valid: {[c[0] for c in Kind.choices]}",
                "kind"
            )
        return normalized

    @classmethod
    def _validate_sign(cls, kind: str, quantity: int):
        if quantity == 0:
            raise ValidationError("Quantity must not be zero", "quantity")
        if kind in LedgerTransaction.POSITIVE_KINDS and quantity < 0:
            raise ValidationError(f"{Kind(kind).label} quantity must be positive", "quantity")
        if kind in LedgerTransaction.NEGATIVE_KINDS and quantity > 0:
            raise ValidationError(f"{Kind(kind).label} quantity must be negative", "quantity")

    # ==================== APPEND ====================

    @classmethod
    @transaction.atomic
    def append(cls,
               part_code: str,
               quantity: int,
               kind: str,
               unit_cost: Any = None,
               job_id: int = None,
               order_ref: str = "",
               invoice_number: str = "",
               source: str = "",
               from_location_id: int = None,
               to_location_id: int = None,
               notes: str = "",
               actor: str = "system",
               occurred_at: Any = None,
               reverses_id: int = None,
               expected_version: int = None) -> LedgerTransaction:
        """
        Append one entry and refresh the part's projection in the same unit.

        When ``expected_version`` is given the append only succeeds if the
        part's ledger has not moved since the caller read it.
        """
        try:
            part = PartCatalogService.lock(part_code)
        except NotFoundError:
            raise ValidationError(f"Unknown part: {part_code}", "part_code")

        kind = cls.normalize_kind(kind)
        quantity = to_int(quantity, "quantity")
        cls._validate_sign(kind, quantity)

        unit_cost = to_decimal(unit_cost, field="unit_cost")
        if unit_cost is not None and unit_cost < 0:
            raise ValidationError("Unit cost cannot be negative", "unit_cost")
        if kind == Kind.PURCHASE and unit_cost is None:
            raise ValidationError("Purchase entries require a unit cost", "unit_cost")

        if expected_version is not None and part.ledger_version != expected_version:
            raise ConcurrencyConflictError(part.code, expected_version, part.ledger_version)

        job = None
        if job_id:
            job = Job.objects.filter(id=job_id).first()
            if not job:
                raise NotFoundError("Job", job_id)

        reverses = None
        if reverses_id:
            reverses = cls._validate_reversal(part, reverses_id, quantity)

        from_location = StorageLocationService.resolve(from_location_id, "from_location_id")
        to_location = StorageLocationService.resolve(to_location_id, "to_location_id")

        bumped = Part.objects.filter(
            pk=part.pk, ledger_version=part.ledger_version
        ).update(ledger_version=F("ledger_version") + 1)
        if not bumped:
            raise ConcurrencyConflictError(part.code, part.ledger_version)
        part.ledger_version += 1

        entry = LedgerTransaction.objects.create(
            occurred_at=to_datetime(occurred_at) or timezone.now(),
            part=part,
            kind=kind,
            quantity=quantity,
            unit_cost=unit_cost,
            job=job,
            order_ref=order_ref or "",
            invoice_number=invoice_number or "",
            source=source or "",
            from_location=from_location,
            to_location=to_location,
            reverses=reverses,
            notes=notes or "",
            actor=actor or "system",
        )

        projection = StockProjectionService.refresh(part)

        logger.info(
            f"Ledger #{entry.id} {kind} {quantity:+d} {part.code}"
            f" @ {unit_cost if unit_cost is not None else '-'} by {entry.actor}"
            f" (stock {projection.stock}, version {part.ledger_version})"
        )

        return entry

    @classmethod
    def _validate_reversal(cls, part: Part, reverses_id: int, quantity: int) -> LedgerTransaction:
        original = LedgerTransaction.objects.filter(id=reverses_id).first()
        if not original:
            raise NotFoundError("Ledger transaction", reverses_id)
        if original.part_id != part.pk:
            raise ValidationError("A reversal must target an entry of the same part", "reverses_id")
        if original.reverses_id:
            raise BusinessRuleError("A compensating entry cannot itself be reversed", "reversal_of_reversal")
        if original.kind == Kind.TRANSFER:
            raise BusinessRuleError("Transfers are undone with a new transfer", "transfer_reversal")
        if original.kind == Kind.PURCHASE:
            raise BusinessRuleError(
                "Purchases are corrected with a Return to Supplier entry", "purchase_reversal"
            )
        if original.reversals.exists():
            raise BusinessRuleError(f"Ledger #{original.id} is already reversed", "already_reversed")
        if quantity != -original.quantity:
            raise ValidationError(
                f"A reversal of #{original.id} must have quantity {-original.quantity:+d}",
                "quantity"
            )
        return original

    @classmethod
    def record(cls, **kwargs) -> Dict[str, Any]:
        entry = cls.append(**kwargs)
        return success_response({
            "transaction": cls.serialize(entry),
            "part": PartCatalogService.serialize(entry.part),
        }, f"{entry.get_kind_display()} recorded for {entry.part.code}")

    @classmethod
    def receive_purchase(cls,
                         part_code: str,
                         quantity: int,
                         unit_cost: Any,
                         order_ref: str = "",
                         invoice_number: str = "",
                         source: str = "",
                         to_location_id: int = None,
                         occurred_at: Any = None,
                         notes: str = "",
                         actor: str = "system") -> LedgerTransaction:
        return cls.append(
            part_code=part_code,
            quantity=quantity,
            kind=Kind.PURCHASE,
            unit_cost=unit_cost,
            order_ref=order_ref,
            invoice_number=invoice_number,
            source=source,
            to_location_id=to_location_id,
            occurred_at=occurred_at,
            notes=notes,
            actor=actor,
        )

    @classmethod
    @transaction.atomic
    def reverse(cls, transaction_id: int, notes: str = "", actor: str = "system") -> LedgerTransaction:
        """Append the compensating entry for a single ledger row"""
        original = LedgerTransaction.objects.select_related("part").filter(id=transaction_id).first()
        if not original:
            raise NotFoundError("Ledger transaction", transaction_id)

        if hasattr(original, "job_part"):
            raise BusinessRuleError(
                f"Ledger #{original.id} belongs to a job allocation; remove the allocation instead",
                "allocation_owned"
            )

        note = f"Reversal of #{original.id}"
        if notes:
            note = f"{note}: {notes}"

        return cls.append(
            part_code=original.part.code,
            quantity=-original.quantity,
            kind=Kind.ADJUSTMENT,
            unit_cost=original.unit_cost,
            job_id=original.job_id,
            reverses_id=original.id,
            notes=note,
            actor=actor,
        )

    # ==================== TRANSFERS ====================

    @classmethod
    @transaction.atomic
    def record_transfer(cls,
                        part_code: str,
                        quantity: int,
                        to_location_id: int,
                        from_location_id: int = None,
                        notes: str = "",
                        actor: str = "system") -> List[LedgerTransaction]:
        """
        Move stock between storage locations: a -q / +q pair of Transfer
        entries (net zero) and the part's home location follows the stock.
        """
        part = PartCatalogService.lock(part_code)

        quantity = to_int(quantity, "quantity")
        if quantity <= 0:
            raise ValidationError("Transfer quantity must be positive", "quantity")

        to_location = StorageLocationService.resolve(to_location_id, "to_location_id")
        if not to_location:
            raise ValidationError("Destination location is required", "to_location_id")

        if from_location_id:
            from_location = StorageLocationService.resolve(from_location_id, "from_location_id")
        else:
            from_location = part.storage_location

        if from_location and from_location.pk == to_location.pk:
            raise ValidationError("Source and destination must differ", "to_location_id")

        from_label = from_location.code if from_location else "unassigned"
        note = notes or f"Transfer {from_label} -> {to_location.code}"

        legs = [
            cls.append(
                part_code=part.code,
                quantity=-quantity,
                kind=Kind.TRANSFER,
                from_location_id=from_location.pk if from_location else None,
                to_location_id=to_location.pk,
                notes=note,
                actor=actor,
            ),
            cls.append(
                part_code=part.code,
                quantity=quantity,
                kind=Kind.TRANSFER,
                from_location_id=from_location.pk if from_location else None,
                to_location_id=to_location.pk,
                notes=note,
                actor=actor,
            ),
        ]

        Part.objects.filter(pk=part.pk).update(storage_location=to_location, updated_at=timezone.now())

        logger.info(f"Transferred {quantity} x {part.code} from {from_label} to {to_location.code}")

        return legs

    @classmethod
    def transfer(cls, **kwargs) -> Dict[str, Any]:
        legs = cls.record_transfer(**kwargs)
        part = PartCatalogService.resolve(legs[0].part.code)
        return success_response({
            "transactions": [cls.serialize(t) for t in legs],
            "part": PartCatalogService.serialize(part),
        }, f"Transferred {legs[1].quantity} x {part.code}")

    # ==================== READS ====================

    @classmethod
    def list_for_part(cls, part_code: str, kind: str = None, ascending: bool = True):
        part = PartCatalogService.resolve(part_code)
        queryset = LedgerTransaction.objects.select_related("part").filter(part=part)
        if kind:
            queryset = queryset.filter(kind=cls.normalize_kind(kind))
        if ascending:
            return queryset.order_by("occurred_at", "id")
        return queryset.order_by("-occurred_at", "-id")

    @classmethod
    def list_consumption(cls, part_code: str):
        """Negative entries in ledger order, transfer legs excluded"""
        return cls.list_for_part(part_code).filter(quantity__lt=0).exclude(kind=Kind.TRANSFER)

    @classmethod
    def history(cls,
                part_code: str,
                days: Optional[int] = None,
                kind: str = None,
                page: int = 1,
                per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.list_for_part(part_code, kind=kind, ascending=False)

        if days:
            since = timezone.now() - timedelta(days=days)
            queryset = queryset.filter(occurred_at__gte=since)

        entries, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "code": Part.normalize_code(part_code),
            "transactions": [cls.serialize(t) for t in entries],
            "pagination": pagination,
            "kinds": [{"value": c[0], "label": c[1]} for c in Kind.choices],
        })

"""
Job Part Service - attach stocked or direct-ordered parts to jobs

Stock allocations consume inventory through exactly one Used ledger entry,
costed by the FIFO walk. Removing the allocation appends the compensating
entry; nothing in the ledger is ever edited.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, List

from django.db import OperationalError, transaction
from django.db.models import Sum

from jobs.models import Job
from parts.models import JobPart, LedgerTransaction, PartsSettings
from parts.services.base_service import (
    BaseService, success_response, ValidationError, NotFoundError,
    ConcurrencyConflictError, to_decimal, to_int, round_decimal
)
from parts.services.catalog_service import PartCatalogService
from parts.services.fifo_service import FIFOCostService
from parts.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def is_lock_error(error: OperationalError) -> bool:
    return "locked" in str(error).lower()


FINANCIAL_FIELDS = (
    "part", "part_code", "quantity", "unit_cost", "total_cost",
    "markup_percent", "sell_price", "source", "transaction", "job", "job_id",
)


class JobPartService(BaseService):
    model = JobPart

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, job_part: JobPart) -> Dict[str, Any]:
        return {
            "id": job_part.id,
            "job_id": job_part.job_id,
            "part_id": job_part.part_id,
            "part_code": job_part.part.code,
            "description": job_part.description,
            "quantity": job_part.quantity,
            "unit_cost": str(job_part.unit_cost),
            "total_cost": str(job_part.total_cost),
            "markup_percent": str(job_part.markup_percent),
            "sell_price": str(job_part.sell_price),
            "source": job_part.source,
            "source_display": job_part.get_source_display(),
            "transaction_id": job_part.transaction_id,
            "notes": job_part.notes,
            "created_by": job_part.created_by,
            "created_at": job_part.created_at.isoformat(),
        }

    @classmethod
    def serialize_totals(cls, job: Job) -> Dict[str, Any]:
        return {
            "id": job.id,
            "job_number": job.job_number,
            "parts_cost": str(job.parts_cost),
            "parts_total": str(job.parts_total),
        }

    # ==================== HELPERS ====================

    @classmethod
    def _get_job(cls, job_id: int) -> Job:
        job = Job.objects.filter(id=job_id).first()
        if not job:
            raise NotFoundError("Job", job_id)
        return job

    @classmethod
    def _quantity(cls, quantity: Any) -> int:
        quantity = to_int(quantity, "quantity")
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", "quantity")
        return quantity

    @classmethod
    def _markup(cls, markup_percent: Any, default: Decimal) -> Decimal:
        if markup_percent is None or markup_percent == "":
            return default
        markup = to_decimal(markup_percent, field="markup_percent")
        if markup < 0:
            raise ValidationError("Markup cannot be negative", "markup_percent")
        return markup

    @classmethod
    def _sell_price(cls, total_cost: Decimal, markup: Decimal) -> Decimal:
        return round_decimal(total_cost * (1 + markup / HUNDRED), 2)

    @classmethod
    def recompute_job_totals(cls, job: Job) -> Job:
        """parts_cost / parts_total always re-summed from the job's allocations"""
        totals = JobPart.objects.filter(job=job).aggregate(
            cost=Sum("total_cost"),
            total=Sum("sell_price"),
        )
        job.parts_cost = totals["cost"] or Decimal("0")
        job.parts_total = totals["total"] or Decimal("0")
        Job.objects.filter(pk=job.pk).update(parts_cost=job.parts_cost, parts_total=job.parts_total)
        return job

    # ==================== ADD FROM STOCK ====================

    @classmethod
    def add_from_stock(cls,
                       job_id: int,
                       part_code: str,
                       quantity: int,
                       markup_percent: Any = None,
                       description: str = None,
                       notes: str = "",
                       actor: str = "system") -> Dict[str, Any]:
        retries = PartsSettings.load().max_conflict_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                return cls._add_from_stock_once(
                    job_id, part_code, quantity, markup_percent, description, notes, actor
                )
            except OperationalError as e:
                if not is_lock_error(e):
                    raise
                conflict, cause = ConcurrencyConflictError(part_code, None), e
            except ConcurrencyConflictError as e:
                conflict, cause = e, None

            if attempt > retries:
                logger.error(f"Giving up on {part_code} for job {job_id} after {attempt} attempts: {conflict}")
                raise conflict from cause
            logger.warning(f"Conflict on {part_code} for job {job_id} (attempt {attempt}), retrying")

    @classmethod
    @transaction.atomic
    def _add_from_stock_once(cls, job_id, part_code, quantity, markup_percent,
                             description, notes, actor) -> Dict[str, Any]:
        job = cls._get_job(job_id)
        quantity = cls._quantity(quantity)

        part = PartCatalogService.lock(part_code)
        if not part.is_active:
            raise ValidationError(f"Part {part.code} is archived", "part_code")

        markup = cls._markup(markup_percent, part.markup_percent)
        version = part.ledger_version

        allocation = FIFOCostService.allocate_part(part, quantity)

        entry = LedgerService.append(
            part_code=part.code,
            quantity=-quantity,
            kind=LedgerTransaction.Kind.USED,
            unit_cost=allocation.weighted_unit_cost,
            job_id=job.id,
            notes=notes or f"Used on job {job.job_number}",
            actor=actor,
            expected_version=version,
        )

        job_part = JobPart.objects.create(
            job=job,
            part=part,
            description=description if description is not None else part.description,
            quantity=quantity,
            unit_cost=allocation.weighted_unit_cost,
            total_cost=allocation.total_cost,
            markup_percent=markup,
            sell_price=cls._sell_price(allocation.weighted_unit_cost * quantity, markup),
            source=JobPart.Source.STOCK,
            transaction=entry,
            notes=notes or "",
            created_by=actor or "system",
        )

        cls.recompute_job_totals(job)

        logger.info(
            f"Job {job.job_number}: {quantity} x {part.code} from stock at {allocation.weighted_unit_cost}"
            f" (cost {job_part.total_cost}, sell {job_part.sell_price}"
            f"{', extrapolated' if allocation.extrapolated else ''})"
        )

        return success_response({
            "job_part": cls.serialize(job_part),
            "allocation": allocation.to_dict(),
            "job": cls.serialize_totals(job),
            "in_stock": entry.part.in_stock,
        }, f"{quantity} x {part.code} added to job {job.job_number}")

    # ==================== DIRECT ORDER ====================

    @classmethod
    @transaction.atomic
    def add_direct_order(cls,
                         job_id: int,
                         part_code: str,
                         quantity: int,
                         unit_cost: Any,
                         markup_percent: Any = None,
                         description: str = None,
                         notes: str = "",
                         actor: str = "system") -> Dict[str, Any]:
        job = cls._get_job(job_id)
        quantity = cls._quantity(quantity)
        part = PartCatalogService.resolve(part_code)

        unit_cost = to_decimal(unit_cost, field="unit_cost")
        if unit_cost is None:
            raise ValidationError("Direct orders require a unit cost", "unit_cost")
        if unit_cost < 0:
            raise ValidationError("Unit cost cannot be negative", "unit_cost")

        markup = cls._markup(markup_percent, part.markup_percent)
        total_cost = round_decimal(unit_cost * quantity, 4)

        job_part = JobPart.objects.create(
            job=job,
            part=part,
            description=description if description is not None else part.description,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=total_cost,
            markup_percent=markup,
            sell_price=cls._sell_price(total_cost, markup),
            source=JobPart.Source.DIRECT_ORDER,
            notes=notes or "",
            created_by=actor or "system",
        )

        cls.recompute_job_totals(job)

        logger.info(f"Job {job.job_number}: {quantity} x {part.code} direct order at {unit_cost}")

        return success_response({
            "job_part": cls.serialize(job_part),
            "job": cls.serialize_totals(job),
        }, f"{quantity} x {part.code} ordered for job {job.job_number}")

    # ==================== REMOVE / UPDATE ====================

    @classmethod
    @transaction.atomic
    def remove(cls, allocation_id: int, actor: str = "system") -> Dict[str, Any]:
        job_part = JobPart.objects.select_for_update().select_related("job", "part").filter(
            id=allocation_id
        ).first()
        if not job_part:
            raise NotFoundError("Job part", allocation_id)

        job = job_part.job
        part_code = job_part.part.code
        reversal = None

        if job_part.source == JobPart.Source.STOCK:
            reversal = LedgerService.append(
                part_code=part_code,
                quantity=job_part.quantity,
                kind=LedgerTransaction.Kind.ADJUSTMENT,
                unit_cost=job_part.unit_cost,
                job_id=job.id,
                reverses_id=job_part.transaction_id,
                notes=f"Removed from job {job.job_number}: reversal of #{job_part.transaction_id}",
                actor=actor,
            )

        job_part.delete()
        cls.recompute_job_totals(job)

        logger.info(
            f"Job {job.job_number}: removed {job_part.quantity} x {part_code}"
            f"{f' (reversal #{reversal.id})' if reversal else ''}"
        )

        return success_response({
            "removed_id": allocation_id,
            "reversal_transaction_id": reversal.id if reversal else None,
            "job": cls.serialize_totals(job),
        }, f"{part_code} removed from job {job.job_number}")

    @classmethod
    @transaction.atomic
    def update(cls, allocation_id: int, /, **kwargs) -> Dict[str, Any]:
        job_part = cls.get_by_id(allocation_id)
        if not job_part:
            raise NotFoundError("Job part", allocation_id)

        if "allocation_id" in kwargs and str(kwargs["allocation_id"]) != str(job_part.id):
            raise ValidationError("Allocation id cannot be changed", "allocation_id")

        blocked = [name for name in kwargs if name in FINANCIAL_FIELDS]
        if blocked:
            raise ValidationError(
                f"Financial fields cannot be edited; remove and re-add the part instead: {blocked}",
                blocked[0]
            )

        update_fields = ["updated_at"]
        for field in ["description", "notes"]:
            if field in kwargs:
                setattr(job_part, field, kwargs[field] or "")
                update_fields.append(field)

        job_part.save(update_fields=update_fields)

        return success_response({"job_part": cls.serialize(job_part)}, "Job part updated")

    # ==================== READS ====================

    @classmethod
    def list_for_job(cls, job_id: int) -> Dict[str, Any]:
        job = cls._get_job(job_id)
        job_parts = JobPart.objects.filter(job=job).select_related("part")

        return success_response({
            "job": cls.serialize_totals(job),
            "parts": [cls.serialize(jp) for jp in job_parts],
            "count": job_parts.count(),
        })

    @classmethod
    def verify_integrity(cls, job_id: int = None) -> Dict[str, Any]:
        """
        Every stock allocation must point at one live Used entry of the same
        part and quantity; direct orders point at none; no live Used entry
        for a job may be left without its allocation.
        """
        issues: List[Dict[str, Any]] = []

        job_parts = JobPart.objects.select_related("transaction", "part")
        used = LedgerTransaction.objects.filter(kind=LedgerTransaction.Kind.USED, job__isnull=False)
        if job_id:
            job_parts = job_parts.filter(job_id=job_id)
            used = used.filter(job_id=job_id)

        for jp in job_parts:
            entry = jp.transaction
            if jp.source == JobPart.Source.DIRECT_ORDER:
                if entry is not None:
                    issues.append({"job_part": jp.id, "issue": "direct order has a ledger entry"})
                continue
            if entry is None:
                issues.append({"job_part": jp.id, "issue": "stock allocation without ledger entry"})
            elif entry.kind != LedgerTransaction.Kind.USED:
                issues.append({"job_part": jp.id, "issue": f"ledger entry #{entry.id} is {entry.kind}"})
            elif entry.part_id != jp.part_id or entry.quantity != -jp.quantity:
                issues.append({"job_part": jp.id, "issue": f"ledger entry #{entry.id} does not match"})
            elif entry.reversals.exists():
                issues.append({"job_part": jp.id, "issue": f"ledger entry #{entry.id} is reversed"})

        for entry in used.filter(job_part__isnull=True, reversals__isnull=True):
            issues.append({"transaction": entry.id, "issue": "Used entry without allocation"})

        for issue in issues:
            logger.error(f"Allocation integrity: {issue}")

        return success_response({
            "ok": not issues,
            "issues": issues,
        }, "Allocations consistent" if not issues else f"{len(issues)} allocation issues")

"""
Part Catalog Service - catalog entries, lookups and reorder thresholds
"""
import logging
from typing import Dict, Any
from django.db import IntegrityError, transaction
from django.db.models import Q, F

from parts.models import Part, PartsSettings, JobPart
from parts.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, ReferentialIntegrityError,
    to_decimal, to_int, isoformat, money
)
from parts.services.location_service import StorageLocationService
from parts.services.projection_service import StockProjectionService

logger = logging.getLogger(__name__)


class PartCatalogService(BaseService):
    model = Part

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, part: Part) -> Dict[str, Any]:
        return {
            "id": part.id,
            "code": part.code,
            "description": part.description,
            "category": part.category,
            "brand": part.brand,
            "markup_percent": str(part.markup_percent),

            "in_stock": part.in_stock,
            "avg_cost": money(part.avg_cost),
            "sell_price": money(part.sell_price),

            "min_stock": part.min_stock,
            "min_stock_override": part.min_stock_override,
            "min_stock_override_reason": part.min_stock_override_reason,
            "effective_min_stock": part.effective_min_stock,
            "auto_replenish": part.auto_replenish,

            "storage_location_id": part.storage_location_id,
            "storage_location_code": part.storage_location.code if part.storage_location_id else None,
            "location_notes": part.location_notes,

            "times_used": part.times_used,
            "first_used_at": isoformat(part.first_used_at),
            "last_used_at": isoformat(part.last_used_at),
            "stocking_score": money(part.stocking_score),

            "ledger_version": part.ledger_version,
            "is_active": part.is_active,
            "created_at": part.created_at.isoformat(),
        }

    # ==================== LOOKUPS ====================

    @classmethod
    def resolve(cls, code: str, active_only: bool = False) -> Part:
        normalized = Part.normalize_code(code)
        part = cls.model.objects.select_related("storage_location").filter(code=normalized).first()
        if not part:
            raise NotFoundError("Part", normalized or code)
        if active_only and not part.is_active:
            raise ValidationError(f"Part {part.code} is archived", "part_code")
        return part

    @classmethod
    def lock(cls, code: str) -> Part:
        """Row-lock the part for the rest of the enclosing atomic block"""
        normalized = Part.normalize_code(code)
        part = cls.model.objects.select_for_update().filter(code=normalized).first()
        if not part:
            raise NotFoundError("Part", normalized or code)
        return part

    @classmethod
    def get(cls, code: str) -> Dict[str, Any]:
        return success_response({"part": cls.serialize(cls.resolve(code))})

    @classmethod
    def list(cls,
             search: str = None,
             category: str = None,
             include_inactive: bool = False,
             storage_location_id: int = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.select_related("storage_location")

        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(cls._search_filter(search))

        if category:
            queryset = queryset.filter(category__iexact=category)

        if storage_location_id:
            queryset = queryset.filter(storage_location_id=storage_location_id)

        parts, pagination = paginate_queryset(queryset.order_by("code"), page, per_page)

        return success_response({
            "parts": [cls.serialize(p) for p in parts],
            "pagination": pagination,
        })

    @classmethod
    def _search_filter(cls, query: str) -> Q:
        query = query.strip()
        return Q(code__icontains=query) | Q(description__icontains=query) | Q(brand__icontains=query)

    @classmethod
    def search(cls, query: str, limit: int = 50) -> Dict[str, Any]:
        query = (query or "").strip()
        if not query:
            return success_response({"parts": [], "count": 0})

        parts = cls.model.objects.select_related("storage_location").filter(
            cls._search_filter(query), is_active=True
        ).order_by("code")[:limit]

        results = [cls.serialize(p) for p in parts]
        return success_response({"parts": results, "count": len(results)})

    @classmethod
    def low_stock(cls) -> Dict[str, Any]:
        """Active parts whose cached stock is below the override, or the computed minimum"""
        queryset = cls.model.objects.select_related("storage_location").filter(is_active=True).filter(
            Q(min_stock_override__isnull=False, in_stock__lt=F("min_stock_override"))
            | Q(min_stock_override__isnull=True, in_stock__lt=F("min_stock"))
        ).order_by("code")

        parts = []
        for part in queryset:
            data = cls.serialize(part)
            data["shortfall"] = part.effective_min_stock - part.in_stock
            parts.append(data)

        return success_response({"parts": parts, "count": len(parts)})

    # ==================== CREATE / UPDATE ====================

    @classmethod
    @transaction.atomic
    def create(cls,
               code: str,
               description: str,
               category: str = "",
               brand: str = "",
               markup_percent: Any = None,
               auto_replenish: bool = False,
               min_stock: int = 0,
               storage_location_id: int = None,
               location_notes: str = "") -> Dict[str, Any]:
        normalized = Part.normalize_code(code)
        if not normalized:
            raise ValidationError("Part code is required", "code")

        description = (description or "").strip()
        if not description:
            raise ValidationError("Description is required", "description")

        if cls.model.objects.filter(code=normalized).exists():
            raise ValidationError(f"Part code '{normalized}' already exists", "code")

        if markup_percent is None:
            markup = PartsSettings.load().default_markup_percent
        else:
            markup = cls._validate_markup(markup_percent)

        min_stock = to_int(min_stock or 0, "min_stock")
        if min_stock < 0:
            raise ValidationError("Minimum stock cannot be negative", "min_stock")

        location = StorageLocationService.resolve(storage_location_id, "storage_location_id")

        try:
            with transaction.atomic():
                part = cls.model.objects.create(
                    code=normalized,
                    description=description,
                    category=(category or "").strip(),
                    brand=(brand or "").strip(),
                    markup_percent=markup,
                    auto_replenish=bool(auto_replenish),
                    min_stock=min_stock,
                    storage_location=location,
                    location_notes=location_notes or "",
                )
        except IntegrityError:
            # Lost a race with a concurrent create of the same code
            raise ValidationError(f"Part code '{normalized}' already exists", "code")

        logger.info(f"Part {part.code} created (markup {part.markup_percent}%)")

        return success_response({
            "id": part.id,
            "code": part.code,
            "part": cls.serialize(part)
        }, f"Part '{part.code}' created")

    @classmethod
    def _validate_markup(cls, value: Any) -> Any:
        markup = to_decimal(value, field="markup_percent")
        if markup is None or markup < 0:
            raise ValidationError("Markup cannot be negative", "markup_percent")
        return markup

    @classmethod
    @transaction.atomic
    def update(cls, code: str, /, **kwargs) -> Dict[str, Any]:
        part = cls.lock(code)

        if "code" in kwargs and Part.normalize_code(kwargs["code"]) != part.code:
            raise ValidationError("Part code cannot be changed", "code")

        update_fields = ["updated_at"]

        for field in ["description", "category", "brand", "location_notes"]:
            if field in kwargs:
                setattr(part, field, (kwargs[field] or "").strip())
                update_fields.append(field)

        if not part.description:
            raise ValidationError("Description is required", "description")

        if "auto_replenish" in kwargs:
            part.auto_replenish = bool(kwargs["auto_replenish"])
            update_fields.append("auto_replenish")

        if "storage_location_id" in kwargs:
            part.storage_location = StorageLocationService.resolve(
                kwargs["storage_location_id"], "storage_location_id"
            )
            update_fields.append("storage_location")

        markup_changed = False
        if "markup_percent" in kwargs:
            markup = cls._validate_markup(kwargs["markup_percent"])
            markup_changed = markup != part.markup_percent
            part.markup_percent = markup
            update_fields.append("markup_percent")

        part.save(update_fields=update_fields)

        if markup_changed:
            StockProjectionService.refresh(part)
            logger.info(f"Part {part.code} markup changed to {part.markup_percent}%, sell price re-derived")

        return success_response({"part": cls.serialize(part)}, "Part updated")

    # ==================== MIN STOCK OVERRIDE ====================

    @classmethod
    @transaction.atomic
    def set_min_stock_override(cls, code: str, value: Any, reason: str) -> Dict[str, Any]:
        part = cls.lock(code)

        value = to_int(value, "min_stock_override")
        if value < 0:
            raise ValidationError("Minimum stock cannot be negative", "min_stock_override")

        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required when overriding minimum stock", "reason")

        part.min_stock_override = value
        part.min_stock_override_reason = reason
        part.save(update_fields=["min_stock_override", "min_stock_override_reason", "updated_at"])

        logger.info(f"Min stock override for {part.code} set to {value}: {reason}")

        return success_response({"part": cls.serialize(part)}, "Minimum stock override set")

    @classmethod
    @transaction.atomic
    def clear_min_stock_override(cls, code: str) -> Dict[str, Any]:
        part = cls.lock(code)
        part.min_stock_override = None
        part.min_stock_override_reason = ""
        part.save(update_fields=["min_stock_override", "min_stock_override_reason", "updated_at"])

        return success_response({"part": cls.serialize(part)}, "Minimum stock override cleared")

    # ==================== ARCHIVE / DELETE ====================

    @classmethod
    @transaction.atomic
    def archive(cls, code: str) -> Dict[str, Any]:
        part = cls.lock(code)
        part.is_active = False
        part.save(update_fields=["is_active", "updated_at"])

        logger.info(f"Part {part.code} archived")

        return success_response({"part": cls.serialize(part)}, f"Part '{part.code}' archived")

    @classmethod
    @transaction.atomic
    def restore(cls, code: str) -> Dict[str, Any]:
        part = cls.lock(code)
        part.is_active = True
        part.save(update_fields=["is_active", "updated_at"])

        return success_response({"part": cls.serialize(part)}, f"Part '{part.code}' restored")

    @classmethod
    @transaction.atomic
    def delete(cls, code: str) -> Dict[str, Any]:
        part = cls.lock(code)

        transaction_count = part.transactions.count()
        allocation_count = JobPart.objects.filter(part=part).count()
        if transaction_count or allocation_count:
            raise ReferentialIntegrityError(
                f"Part {part.code} has history and cannot be deleted; archive it instead",
                {
                    "part": part.code,
                    "transactions": transaction_count,
                    "job_parts": allocation_count,
                }
            )

        part.delete()
        logger.info(f"Part {part.code} deleted")

        return success_response({"code": part.code}, f"Part '{part.code}' deleted")

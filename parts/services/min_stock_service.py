"""
Min Stock Service - recommended minimum stock from recent usage and lead time
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import Dict, Any, Optional

from django.utils import timezone

from jobs.models import Job
from parts.models import Part, LedgerTransaction, PartsSettings
from parts.services.base_service import (
    BaseService, success_response, ValidationError, to_int, to_datetime, round_decimal
)
from parts.services.catalog_service import PartCatalogService

logger = logging.getLogger(__name__)

CALLBACK_JOB_THRESHOLD = 2
CALLBACK_MULTIPLIER = Decimal("1.5")
DEFAULT_MULTIPLIER = Decimal("1.2")


class Confidence:
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    APPLICABLE = (HIGH, MEDIUM)


@dataclass
class MinStockRecommendation:
    part_code: str
    value: int
    confidence: str
    reasoning: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "part_code": self.part_code,
            "value": self.value,
            "confidence": self.confidence,
            "reasoning": dict(self.reasoning),
        }


def confidence_for(data_points: int, settings: PartsSettings) -> str:
    if data_points > settings.confidence_high_threshold:
        return Confidence.HIGH
    if data_points > settings.confidence_medium_threshold:
        return Confidence.MEDIUM
    return Confidence.LOW


class MinStockService(BaseService):
    model = Part

    @classmethod
    def recommend_part(cls, part: Part, lead_time_days: Any = None,
                       as_of: Optional[datetime] = None) -> MinStockRecommendation:
        settings = PartsSettings.load()
        as_of = as_of or timezone.now()

        if lead_time_days in (None, ""):
            lead_time = settings.default_lead_time_days
        else:
            lead_time = to_int(lead_time_days, "lead_time_days")
            if lead_time < 0:
                raise ValidationError("Lead time cannot be negative", "lead_time_days")

        window_days = max(settings.usage_window_days, 1)
        since = as_of - timedelta(days=window_days)

        uses = list(
            LedgerTransaction.objects.filter(
                part=part,
                kind=LedgerTransaction.Kind.USED,
                occurred_at__gt=since,
                occurred_at__lte=as_of,
                reversals__isnull=True,
            ).values_list("job_id", flat=True)
        )
        data_points = len(uses)

        job_ids = {job_id for job_id in uses if job_id}
        callback_jobs = Job.objects.filter(id__in=job_ids, is_callback=True).count() if job_ids else 0
        multiplier = CALLBACK_MULTIPLIER if callback_jobs > CALLBACK_JOB_THRESHOLD else DEFAULT_MULTIPLIER

        per_day = Decimal(data_points) / Decimal(window_days)
        cover_days = lead_time + settings.order_cycle_days
        expected = per_day * cover_days * multiplier
        value = max(int(expected.to_integral_value(rounding=ROUND_CEILING)), 1)

        return MinStockRecommendation(
            part_code=part.code,
            value=value,
            confidence=confidence_for(data_points, settings),
            reasoning={
                "usage_rate": str(round_decimal(per_day * 30, 2)),
                "usage_rate_unit": "uses per month",
                "lead_time_days": lead_time,
                "order_cycle_days": settings.order_cycle_days,
                "window_days": window_days,
                "callback_jobs": callback_jobs,
                "safety_multiplier": str(multiplier),
                "data_points": data_points,
            },
        )

    @classmethod
    def recommend(cls, part_code: str, lead_time_days: Any = None,
                  as_of: Any = None) -> MinStockRecommendation:
        part = PartCatalogService.resolve(part_code)
        return cls.recommend_part(part, lead_time_days, to_datetime(as_of, "as_of"))

    @classmethod
    def get(cls, part_code: str, lead_time_days: Any = None, as_of: Any = None) -> Dict[str, Any]:
        part = PartCatalogService.resolve(part_code)
        recommendation = cls.recommend_part(part, lead_time_days, to_datetime(as_of, "as_of"))

        return success_response({
            "recommendation": recommendation.to_dict(),
            "current": {
                "min_stock": part.min_stock,
                "min_stock_override": part.min_stock_override,
                "min_stock_override_reason": part.min_stock_override_reason,
                "effective_min_stock": part.effective_min_stock,
                "in_stock": part.in_stock,
            },
        })

    @classmethod
    def apply_recommendations(cls, as_of: Any = None) -> Dict[str, Any]:
        """
        Write the recommended min_stock onto auto-replenish parts.
        Parts with a manual override are left alone, as are Low confidence results.
        """
        as_of = to_datetime(as_of, "as_of") or timezone.now()
        updated, skipped_low, unchanged = [], [], 0

        parts = Part.objects.filter(
            is_active=True, auto_replenish=True, min_stock_override__isnull=True
        ).order_by("code")

        for part in parts:
            recommendation = cls.recommend_part(part, as_of=as_of)

            if recommendation.confidence not in Confidence.APPLICABLE:
                skipped_low.append(part.code)
                continue

            if recommendation.value == part.min_stock:
                unchanged += 1
                continue

            Part.objects.filter(pk=part.pk).update(min_stock=recommendation.value, updated_at=timezone.now())
            updated.append({
                "code": part.code,
                "old": part.min_stock,
                "new": recommendation.value,
                "confidence": recommendation.confidence,
            })
            logger.info(
                f"Min stock for {part.code}: {part.min_stock} -> {recommendation.value}"
                f" ({recommendation.confidence})"
            )

        return success_response({
            "updated": updated,
            "unchanged": unchanged,
            "skipped_low_confidence": skipped_low,
            "as_of": as_of.isoformat(),
        }, f"Updated minimum stock for {len(updated)} parts")

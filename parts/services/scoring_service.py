"""
Stocking Score Service - 0-10 priority for keeping a part on the truck

Four independent factors:
    frequency   0-4   uses per month since first use
    recency     0-2   halves every 30 days since last use
    fcc_impact  0-3   share of jobs stocked with the part closed on the first visit
    cost        0-1   cheap parts are easier to justify carrying
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional

from django.utils import timezone

from jobs.models import Job
from parts.models import JobPart, Part, LedgerTransaction
from parts.services.base_service import BaseService, success_response, to_datetime
from parts.services.catalog_service import PartCatalogService
from parts.services.projection_service import fold

logger = logging.getLogger(__name__)

RECENCY_HALF_LIFE_DAYS = 30
CHEAP_PART_THRESHOLD = Decimal("50")

RECOMMENDATIONS = (
    (9, "Critical - Stock immediately"),
    (7, "High value - Stock soon"),
    (5, "Moderate - Consider stocking"),
    (3, "Low priority - Order as needed"),
)
DEFAULT_RECOMMENDATION = "Rarely used - Don't stock"


@dataclass
class StockingScore:
    part_code: str
    value: float
    recommendation: str
    breakdown: Dict[str, float] = field(default_factory=dict)
    as_of: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "part_code": self.part_code,
            "value": self.value,
            "recommendation": self.recommendation,
            "breakdown": dict(self.breakdown),
            "as_of": self.as_of.isoformat() if self.as_of else None,
        }


def _days_between(earlier: datetime, later: datetime) -> float:
    return max((later - earlier).total_seconds() / 86400, 0.0)


def frequency_score(times_used: int, first_used_at: Optional[datetime], as_of: datetime) -> float:
    if not times_used or first_used_at is None:
        return 0.0
    age_days = max(_days_between(first_used_at, as_of), 1.0)
    uses_per_month = times_used / age_days * 30
    if uses_per_month >= 4:
        return 4.0
    if uses_per_month >= 2:
        return 3.0
    if uses_per_month >= 1:
        return 2.0
    if uses_per_month >= 0.5:
        return 1.0
    return 0.0


def recency_score(last_used_at: Optional[datetime], as_of: datetime) -> float:
    if last_used_at is None:
        return 0.0
    return 2.0 * 0.5 ** (_days_between(last_used_at, as_of) / RECENCY_HALF_LIFE_DAYS)


def fcc_score(job_ids: List[int]) -> float:
    if not job_ids:
        return 0.0
    complete = Job.objects.filter(id__in=job_ids, first_call_complete=True).count()
    return 3.0 * complete / len(job_ids)


def cost_score(avg_cost: Optional[Decimal]) -> float:
    if avg_cost is None:
        return 0.0
    return 1.0 if avg_cost < CHEAP_PART_THRESHOLD else 0.5


def recommendation_for(value: float) -> str:
    for threshold, label in RECOMMENDATIONS:
        if value >= threshold:
            return label
    return DEFAULT_RECOMMENDATION


class StockingScoreService(BaseService):
    model = Part

    @classmethod
    def score_part(cls, part: Part, as_of: datetime = None) -> StockingScore:
        as_of = as_of or timezone.now()

        entries = list(LedgerTransaction.objects.filter(
            part=part, occurred_at__lte=as_of
        ).order_by("occurred_at", "id"))
        projection = fold(entries, part.markup_percent)

        job_ids = sorted(set(JobPart.objects.filter(
            part=part,
            source=JobPart.Source.STOCK,
            transaction__occurred_at__lte=as_of,
        ).values_list("job_id", flat=True)))

        breakdown = {
            "frequency": round(frequency_score(projection.times_used, projection.first_used_at, as_of), 2),
            "recency": round(recency_score(projection.last_used_at, as_of), 2),
            "fcc_impact": round(fcc_score(job_ids), 2),
            "cost": round(cost_score(projection.avg_cost), 2),
        }
        value = round(min(max(sum(breakdown.values()), 0.0), 10.0), 2)

        return StockingScore(
            part_code=part.code,
            value=value,
            recommendation=recommendation_for(value),
            breakdown=breakdown,
            as_of=as_of,
        )

    @classmethod
    def score(cls, part_code: str, as_of: Any = None) -> StockingScore:
        part = PartCatalogService.resolve(part_code)
        return cls.score_part(part, to_datetime(as_of, "as_of"))

    @classmethod
    def get(cls, part_code: str, as_of: Any = None) -> Dict[str, Any]:
        return success_response({"score": cls.score(part_code, as_of).to_dict()})

    @classmethod
    def refresh_all(cls, as_of: Any = None) -> Dict[str, Any]:
        """Store the current score on every active part"""
        as_of = to_datetime(as_of, "as_of") or timezone.now()
        distribution: Dict[str, int] = {}
        updated = 0

        for part in Part.objects.filter(is_active=True).order_by("code"):
            result = cls.score_part(part, as_of)
            Part.objects.filter(pk=part.pk).update(stocking_score=Decimal(str(result.value)))
            distribution[result.recommendation] = distribution.get(result.recommendation, 0) + 1
            updated += 1

        logger.info(f"Stocking scores refreshed for {updated} parts as of {as_of.isoformat()}")

        return success_response({
            "updated": updated,
            "as_of": as_of.isoformat(),
            "distribution": distribution,
        }, f"Updated stocking scores for {updated} parts")

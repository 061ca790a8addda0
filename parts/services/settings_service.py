from typing import Dict, Any
from django.db import transaction

from parts.models import PartsSettings
from parts.services.base_service import (
    BaseService, success_response, ValidationError, to_decimal, to_int
)


class PartsSettingsService(BaseService):
    model = PartsSettings

    INTEGER_FIELDS = (
        "default_lead_time_days",
        "order_cycle_days",
        "usage_window_days",
        "confidence_medium_threshold",
        "confidence_high_threshold",
        "max_conflict_retries",
    )

    @classmethod
    def load(cls) -> PartsSettings:
        return PartsSettings.load()

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        settings = cls.load()

        return {
            "default_markup_percent": str(settings.default_markup_percent),
            "default_lead_time_days": settings.default_lead_time_days,
            "order_cycle_days": settings.order_cycle_days,
            "usage_window_days": settings.usage_window_days,
            "confidence_medium_threshold": settings.confidence_medium_threshold,
            "confidence_high_threshold": settings.confidence_high_threshold,
            "allow_extrapolation": settings.allow_extrapolation,
            "max_conflict_retries": settings.max_conflict_retries,
        }

    @classmethod
    @transaction.atomic
    def update(cls, **kwargs) -> Dict[str, Any]:
        settings = cls.load()
        update_fields = ["updated_at"]

        if "default_markup_percent" in kwargs:
            markup = to_decimal(kwargs["default_markup_percent"], field="default_markup_percent")
            if markup is None or markup < 0:
                raise ValidationError("Markup cannot be negative", "default_markup_percent")
            settings.default_markup_percent = markup
            update_fields.append("default_markup_percent")

        for field in cls.INTEGER_FIELDS:
            if field in kwargs:
                value = to_int(kwargs[field], field)
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative", field)
                setattr(settings, field, value)
                update_fields.append(field)

        if "usage_window_days" in kwargs and settings.usage_window_days == 0:
            raise ValidationError("Usage window must be at least one day", "usage_window_days")

        if settings.confidence_high_threshold < settings.confidence_medium_threshold:
            raise ValidationError(
                "High confidence threshold must not be below the medium threshold",
                "confidence_high_threshold"
            )

        if "allow_extrapolation" in kwargs:
            settings.allow_extrapolation = bool(kwargs["allow_extrapolation"])
            update_fields.append("allow_extrapolation")

        settings.save(update_fields=update_fields)

        return success_response(cls.get_all(), "Parts settings updated")

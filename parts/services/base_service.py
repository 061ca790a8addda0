from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime
from django.db.models import Model
from django.utils import timezone
from django.utils.dateparse import parse_datetime


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class BusinessRuleError(ServiceError):
    def __init__(self, message: str, rule: str = None):
        super().__init__(message, "BUSINESS_RULE_VIOLATION", {"rule": rule})


class InsufficientHistoryError(ServiceError):
    def __init__(self, part_code: str, requested: int = None, reason: str = "no purchase history"):
        details = {"part": part_code, "reason": reason}
        if requested is not None:
            details["requested"] = requested
        super().__init__(
            f"Cannot cost {part_code}: {reason}",
            "INSUFFICIENT_HISTORY",
            details
        )


class ConcurrencyConflictError(ServiceError):
    def __init__(self, part_code: str, expected_version: int, actual_version: int = None):
        super().__init__(
            f"Ledger for {part_code} changed concurrently (expected version {expected_version})"
            if expected_version is not None
            else f"Ledger for {part_code} is locked by a concurrent writer",
            "CONCURRENCY_CONFLICT",
            {
                "part": part_code,
                "expected_version": expected_version,
                "actual_version": actual_version,
            }
        )


class ReferentialIntegrityError(ServiceError):
    def __init__(self, message: str, references: Dict = None):
        super().__init__(message, "REFERENTIAL_INTEGRITY", references or {})


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


def to_decimal(value: Any, default: Decimal = None, field: str = None) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid decimal value: {value}", field)


def to_int(value: Any, field: str = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid integer value: {value}", field)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid integer value: {value}", field)
    if number != number.to_integral_value():
        raise ValidationError(f"Quantity must be a whole number: {value}", field)
    return int(number)


def round_decimal(value: Decimal, places: int = 4) -> Decimal:
    if value is None:
        return None
    quantize_str = "0." + "0" * places if places else "1"
    return value.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def to_datetime(value: Any, field: str = "occurred_at") -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = parse_datetime(str(value))
        if parsed is None:
            raise ValidationError(f"Invalid datetime: {value}", field)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def generate_code(prefix: str, model_class: Model, field: str = "code", width: int = 3) -> str:
    filter_kwargs = {f"{field}__startswith": f"{prefix}-"}
    last = model_class.objects.filter(**filter_kwargs).order_by(f"-{field}").first()

    seq = 1
    if last:
        tail = getattr(last, field).split("-")[-1]
        if tail.isdigit():
            seq = int(tail) + 1

    return f"{prefix}-{seq:0{width}d}"


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError):
            return None

    @classmethod
    def get_or_404(cls, id: int) -> Model:
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

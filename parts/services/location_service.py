from typing import Dict, Any
from django.db import transaction
from django.db.models import Q

from parts.models import StorageLocation, LedgerTransaction
from parts.services.base_service import (
    BaseService, success_response, ValidationError, NotFoundError,
    BusinessRuleError, generate_code
)


class StorageLocationService(BaseService):
    """Trucks, shop shelving and bins that hold stocked parts"""

    model = StorageLocation

    @classmethod
    def serialize(cls, location: StorageLocation, include_parts: bool = False) -> Dict[str, Any]:
        data = {
            "id": location.id,
            "code": location.code,
            "name": location.name,
            "location_type": location.location_type,
            "location_type_display": location.get_location_type_display(),
            "parent_id": location.parent_id,
            "description": location.description,
            "label_number": location.label_number,
            "is_active": location.is_active,
            "created_at": location.created_at.isoformat(),
        }

        if include_parts:
            data["parts"] = [
                {"id": p.id, "code": p.code, "description": p.description, "in_stock": p.in_stock}
                for p in location.parts.filter(is_active=True).order_by("code")
            ]

        return data

    @classmethod
    def list(cls, include_inactive: bool = False, location_type: str = None,
             search: str = None) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if not include_inactive:
            queryset = queryset.filter(is_active=True)

        if location_type:
            queryset = queryset.filter(location_type=location_type)

        if search:
            queryset = queryset.filter(
                Q(code__icontains=search) | Q(name__icontains=search) | Q(label_number__icontains=search)
            )

        locations = [cls.serialize(loc) for loc in queryset.order_by("code")]

        return success_response({
            "locations": locations,
            "count": len(locations),
            "types": [
                {"value": c[0], "label": c[1]}
                for c in StorageLocation.LocationType.choices
            ]
        })

    @classmethod
    def get(cls, location_id: int) -> Dict[str, Any]:
        location = cls.get_or_404(location_id)
        return success_response({"location": cls.serialize(location, include_parts=True)})

    @classmethod
    def resolve(cls, location_id: int, field: str = "location_id") -> StorageLocation:
        if location_id in (None, ""):
            return None
        location = cls.get_by_id(location_id)
        if not location:
            raise NotFoundError("Storage location", location_id)
        if not location.is_active:
            raise ValidationError(f"Storage location {location.code} is inactive", field)
        return location

    @classmethod
    @transaction.atomic
    def create(cls, name: str, location_type: str, parent_id: int = None,
               description: str = "", label_number: str = "") -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Location name is required", "name")

        valid_types = [c[0] for c in StorageLocation.LocationType.choices]
        if location_type not in valid_types:
            raise ValidationError(f"Invalid location type. Valid: {valid_types}", "location_type")

        parent = cls.resolve(parent_id, "parent_id") if parent_id else None

        location = cls.model.objects.create(
            code=generate_code("LOC", cls.model),
            name=name,
            location_type=location_type,
            parent=parent,
            description=description or "",
            label_number=label_number or "",
        )

        return success_response({
            "id": location.id,
            "location": cls.serialize(location)
        }, f"Location '{location.code}' created")

    @classmethod
    @transaction.atomic
    def update(cls, location_id: int, /, **kwargs) -> Dict[str, Any]:
        location = cls.get_or_404(location_id)

        if "location_id" in kwargs and str(kwargs["location_id"]) != str(location.id):
            raise ValidationError("Location id cannot be changed", "location_id")
        if "code" in kwargs and str(kwargs["code"]).strip().upper() != location.code:
            raise ValidationError("Location code cannot be changed", "code")

        update_fields = ["updated_at"]

        for field in ["name", "description", "label_number"]:
            if field in kwargs:
                setattr(location, field, kwargs[field] or "")
                update_fields.append(field)

        if "location_type" in kwargs:
            valid_types = [c[0] for c in StorageLocation.LocationType.choices]
            if kwargs["location_type"] not in valid_types:
                raise ValidationError(f"Invalid location type. Valid: {valid_types}", "location_type")
            location.location_type = kwargs["location_type"]
            update_fields.append("location_type")

        if not location.name.strip():
            raise ValidationError("Location name is required", "name")

        location.save(update_fields=update_fields)

        return success_response({"location": cls.serialize(location)}, "Location updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, location_id: int) -> Dict[str, Any]:
        location = cls.get_or_404(location_id)

        if location.parts.filter(is_active=True).exists():
            raise BusinessRuleError(
                f"Location {location.code} still holds active parts",
                "location_in_use"
            )

        location.is_active = False
        location.save(update_fields=["is_active", "updated_at"])

        return success_response({"location": cls.serialize(location)}, "Location deactivated")

    @classmethod
    def movements(cls, location_id: int, limit: int = 50) -> Dict[str, Any]:
        location = cls.get_or_404(location_id)
        entries = LedgerTransaction.objects.filter(
            Q(from_location=location) | Q(to_location=location)
        ).select_related("part").order_by("-occurred_at", "-id")[:limit]

        return success_response({
            "location": cls.serialize(location),
            "movements": [
                {
                    "id": t.id,
                    "part_code": t.part.code,
                    "kind": t.kind,
                    "quantity": t.quantity,
                    "occurred_at": t.occurred_at.isoformat(),
                }
                for t in entries
            ]
        })

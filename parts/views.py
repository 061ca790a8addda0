from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator
from rest_framework.decorators import api_view
from rest_framework.response import Response
import json

from parts.services import (
    ServiceError, ValidationError, NotFoundError, BusinessRuleError,
    InsufficientHistoryError, ConcurrencyConflictError, ReferentialIntegrityError,
    PartsSettingsService, StorageLocationService, PartCatalogService,
    StockProjectionService, LedgerService, FIFOCostService, JobPartService,
    StockingScoreService, MinStockService,
)


def error_response(message: str, code: str = "error", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message}}
    if details:
        data["error"]["details"] = details
    return JsonResponse(data, status=status)


def handle_service_error(e: ServiceError):
    if isinstance(e, ValidationError):
        return error_response(str(e), "validation_error", 400, {"field": e.field, **e.details})
    elif isinstance(e, NotFoundError):
        return error_response(str(e), "not_found", 404, e.details)
    elif isinstance(e, InsufficientHistoryError):
        return error_response(str(e), "insufficient_history", 400, e.details)
    elif isinstance(e, ConcurrencyConflictError):
        return error_response(str(e), "concurrency_conflict", 409, e.details)
    elif isinstance(e, ReferentialIntegrityError):
        return error_response(str(e), "referential_integrity", 409, e.details)
    elif isinstance(e, BusinessRuleError):
        return error_response(str(e), "business_rule", 400, e.details)
    return error_response(str(e), e.code.lower(), 400, e.details)


def require(data: dict, *keys):
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field: {missing[0]}", missing[0])
    return [data[k] for k in keys]


def query_int(request, name: str, default: int = None):
    value = request.GET.get(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", name)


def query_bool(request, name: str, default: bool = False) -> bool:
    value = request.GET.get(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


class BasePartsView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except ServiceError as e:
            return handle_service_error(e)

    def get_json_body(self, request):
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def get_actor(self, request, data: dict = None) -> str:
        if request.user.is_authenticated:
            return request.user.get_username()
        return (data or {}).get("actor") or "api"

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)


# ==================== SETTINGS ====================

class PartsSettingsView(BasePartsView):

    def get(self, request):
        return self.success(PartsSettingsService.get_all())

    def put(self, request):
        data = self.get_json_body(request)
        return self.success(PartsSettingsService.update(**data))


# ==================== CATALOG ====================

class PartListView(BasePartsView):

    def get(self, request):
        result = PartCatalogService.list(
            search=request.GET.get("search"),
            category=request.GET.get("category"),
            include_inactive=query_bool(request, "include_inactive"),
            storage_location_id=query_int(request, "storage_location_id"),
            page=query_int(request, "page", 1),
            per_page=query_int(request, "per_page", 50),
        )
        return self.success(result)

    def post(self, request):
        data = self.get_json_body(request)
        code, description = require(data, "code", "description")
        result = PartCatalogService.create(
            code=code,
            description=description,
            category=data.get("category", ""),
            brand=data.get("brand", ""),
            markup_percent=data.get("markup_percent"),
            auto_replenish=data.get("auto_replenish", False),
            min_stock=data.get("min_stock", 0),
            storage_location_id=data.get("storage_location_id"),
            location_notes=data.get("location_notes", ""),
        )
        return self.success(result, 201)


class PartSearchView(BasePartsView):

    def get(self, request):
        return self.success(PartCatalogService.search(
            request.GET.get("q", ""),
            limit=query_int(request, "limit", 50),
        ))


class LowStockView(BasePartsView):

    def get(self, request):
        return self.success(PartCatalogService.low_stock())


class PartDetailView(BasePartsView):

    def get(self, request, code):
        return self.success(PartCatalogService.get(code))

    def put(self, request, code):
        data = self.get_json_body(request)
        return self.success(PartCatalogService.update(code, **data))

    def delete(self, request, code):
        return self.success(PartCatalogService.delete(code))


class PartArchiveView(BasePartsView):

    def post(self, request, code):
        return self.success(PartCatalogService.archive(code))

    def delete(self, request, code):
        return self.success(PartCatalogService.restore(code))


class MinStockOverrideView(BasePartsView):

    def post(self, request, code):
        data = self.get_json_body(request)
        (value,) = require(data, "value")
        return self.success(PartCatalogService.set_min_stock_override(code, value, data.get("reason", "")))

    def delete(self, request, code):
        return self.success(PartCatalogService.clear_min_stock_override(code))


# ==================== PROJECTION / COSTING ====================

class ProjectionView(BasePartsView):

    def get(self, request, code):
        return self.success(StockProjectionService.get(code))


class PartTransactionsView(BasePartsView):

    def get(self, request, code):
        result = LedgerService.history(
            code,
            days=query_int(request, "days"),
            kind=request.GET.get("kind"),
            page=query_int(request, "page", 1),
            per_page=query_int(request, "per_page", 50),
        )
        return self.success(result)


class FifoPreviewView(BasePartsView):

    def get(self, request, code):
        quantity = query_int(request, "quantity")
        if quantity is None:
            raise ValidationError("quantity is required", "quantity")
        return self.success(FIFOCostService.preview(code, quantity))


# ==================== ADVISORY ====================

class StockingScoreView(BasePartsView):

    def get(self, request, code):
        return self.success(StockingScoreService.get(code, as_of=request.GET.get("as_of")))


class MinStockView(BasePartsView):

    def get(self, request, code):
        return self.success(MinStockService.get(
            code,
            lead_time_days=request.GET.get("lead_time_days"),
            as_of=request.GET.get("as_of"),
        ))


# ==================== LEDGER ====================

class TransactionCreateView(BasePartsView):

    def post(self, request):
        data = self.get_json_body(request)
        part_code, quantity, kind = require(data, "part_code", "quantity", "kind")
        result = LedgerService.record(
            part_code=part_code,
            quantity=quantity,
            kind=kind,
            unit_cost=data.get("unit_cost"),
            job_id=data.get("job_id"),
            order_ref=data.get("order_ref", ""),
            invoice_number=data.get("invoice_number", ""),
            source=data.get("source", ""),
            from_location_id=data.get("from_location_id"),
            to_location_id=data.get("to_location_id"),
            notes=data.get("notes", ""),
            actor=self.get_actor(request, data),
            occurred_at=data.get("occurred_at"),
            expected_version=data.get("expected_version"),
        )
        return self.success(result, 201)


class TransactionReverseView(BasePartsView):

    def post(self, request, transaction_id):
        data = self.get_json_body(request)
        entry = LedgerService.reverse(
            transaction_id,
            notes=data.get("notes", ""),
            actor=self.get_actor(request, data),
        )
        return self.success({
            "message": f"Ledger #{transaction_id} reversed",
            "transaction": LedgerService.serialize(entry),
        }, 201)


class TransferView(BasePartsView):

    def post(self, request):
        data = self.get_json_body(request)
        part_code, quantity, to_location_id = require(data, "part_code", "quantity", "to_location_id")
        result = LedgerService.transfer(
            part_code=part_code,
            quantity=quantity,
            to_location_id=to_location_id,
            from_location_id=data.get("from_location_id"),
            notes=data.get("notes", ""),
            actor=self.get_actor(request, data),
        )
        return self.success(result, 201)


# ==================== LOCATIONS ====================

class LocationListView(BasePartsView):

    def get(self, request):
        return self.success(StorageLocationService.list(
            include_inactive=query_bool(request, "include_inactive"),
            location_type=request.GET.get("type"),
            search=request.GET.get("search"),
        ))

    def post(self, request):
        data = self.get_json_body(request)
        name, location_type = require(data, "name", "location_type")
        result = StorageLocationService.create(
            name=name,
            location_type=location_type,
            parent_id=data.get("parent_id"),
            description=data.get("description", ""),
            label_number=data.get("label_number", ""),
        )
        return self.success(result, 201)


class LocationDetailView(BasePartsView):

    def get(self, request, location_id):
        return self.success(StorageLocationService.get(location_id))

    def put(self, request, location_id):
        data = self.get_json_body(request)
        return self.success(StorageLocationService.update(location_id, **data))

    def delete(self, request, location_id):
        return self.success(StorageLocationService.deactivate(location_id))


class LocationMovementsView(BasePartsView):

    def get(self, request, location_id):
        return self.success(StorageLocationService.movements(
            location_id, limit=query_int(request, "limit", 50)
        ))


# ==================== JOB PARTS ====================

class JobPartListView(BasePartsView):

    def get(self, request, job_id):
        return self.success(JobPartService.list_for_job(job_id))

    def post(self, request, job_id):
        data = self.get_json_body(request)
        part_code, quantity = require(data, "part_code", "quantity")
        source = (data.get("source") or "STOCK").upper().replace(" ", "_")
        actor = self.get_actor(request, data)

        if source == "STOCK":
            result = JobPartService.add_from_stock(
                job_id=job_id,
                part_code=part_code,
                quantity=quantity,
                markup_percent=data.get("markup_percent"),
                description=data.get("description"),
                notes=data.get("notes", ""),
                actor=actor,
            )
        elif source == "DIRECT_ORDER":
            result = JobPartService.add_direct_order(
                job_id=job_id,
                part_code=part_code,
                quantity=quantity,
                unit_cost=data.get("unit_cost"),
                markup_percent=data.get("markup_percent"),
                description=data.get("description"),
                notes=data.get("notes", ""),
                actor=actor,
            )
        else:
            raise ValidationError("source must be STOCK or DIRECT_ORDER", "source")

        return self.success(result, 201)


class JobPartDetailView(BasePartsView):

    def patch(self, request, allocation_id):
        data = self.get_json_body(request)
        return self.success(JobPartService.update(allocation_id, **data))

    def delete(self, request, allocation_id):
        return self.success(JobPartService.remove(allocation_id, actor=self.get_actor(request)))


class JobPartIntegrityView(BasePartsView):

    def get(self, request):
        return self.success(JobPartService.verify_integrity(job_id=query_int(request, "job_id")))


# ==================== MAINTENANCE ====================

@csrf_exempt
@api_view(["POST"])
def rebuild_caches(request):
    try:
        result = StockProjectionService.rebuild_all()
    except ServiceError as e:
        return handle_service_error(e)
    return Response(result)


@csrf_exempt
@api_view(["POST"])
def refresh_scores(request):
    try:
        result = StockingScoreService.refresh_all(as_of=request.data.get("as_of"))
    except ServiceError as e:
        return handle_service_error(e)
    return Response(result)


@csrf_exempt
@api_view(["POST"])
def apply_min_stock(request):
    try:
        result = MinStockService.apply_recommendations(as_of=request.data.get("as_of"))
    except ServiceError as e:
        return handle_service_error(e)
    return Response(result)

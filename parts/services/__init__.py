"""
Parts Services - ledger, costing and advisory logic for stocked parts

Usage:
    from parts.services import LedgerService, JobPartService

    # Receive stock
    LedgerService.receive_purchase(part_code="CAP-45", quantity=10, unit_cost="25.00")

    # Consume on a job (FIFO costed)
    JobPartService.add_from_stock(job_id=1, part_code="CAP-45", quantity=2)
"""

# Base utilities
from parts.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    BusinessRuleError,
    InsufficientHistoryError,
    ConcurrencyConflictError,
    ReferentialIntegrityError,
    success_response,
    paginate_queryset,
    to_decimal,
    to_int,
    round_decimal,
    BaseService,
)
# Settings
from .settings_service import PartsSettingsService

# Catalog
from .location_service import StorageLocationService
from .projection_service import StockProjectionService, StockProjection
from .catalog_service import PartCatalogService

# Ledger & costing
from .ledger_service import LedgerService
from .fifo_service import FIFOCostService, FIFOAllocation, FIFOLot

# Jobs
from .allocation_service import JobPartService

# Advisory
from .scoring_service import StockingScoreService, StockingScore
from .min_stock_service import MinStockService, MinStockRecommendation, Confidence


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleError",
    "InsufficientHistoryError",
    "ConcurrencyConflictError",
    "ReferentialIntegrityError",
    "success_response",
    "paginate_queryset",
    "to_decimal",
    "to_int",
    "round_decimal",
    "BaseService",

    # Settings
    "PartsSettingsService",

    # Catalog
    "StorageLocationService",
    "StockProjectionService",
    "StockProjection",
    "PartCatalogService",

    # Ledger & costing
    "LedgerService",
    "FIFOCostService",
    "FIFOAllocation",
    "FIFOLot",

    # Jobs
    "JobPartService",

    # Advisory
    "StockingScoreService",
    "StockingScore",
    "MinStockService",
    "MinStockRecommendation",
    "Confidence",
]

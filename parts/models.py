from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class StorageLocation(models.Model):
    class LocationType(models.TextChoices):
        VEHICLE = "VEHICLE", "Vehicle"
        BUILDING = "BUILDING", "Building"
        CONTAINER = "CONTAINER", "Container"

    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=100)
    location_type = models.CharField(max_length=20, choices=LocationType.choices)
    parent = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="children",
    )
    description = models.TextField(blank=True, default="")
    label_number = models.CharField(max_length=50, blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} {self.name} ({self.get_location_type_display()})"


class Part(models.Model):
    code = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=255)
    category = models.CharField(max_length=100, blank=True, default="")
    brand = models.CharField(max_length=100, blank=True, default="")

    markup_percent = models.DecimalField(max_digits=7, decimal_places=2, default=20)

    # Reorder thresholds
    min_stock = models.PositiveIntegerField(default=0)
    min_stock_override = models.PositiveIntegerField(null=True, blank=True)
    min_stock_override_reason = models.CharField(max_length=255, blank=True, default="")
    auto_replenish = models.BooleanField(default=False)

    storage_location = models.ForeignKey(
        StorageLocation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="parts",
    )
    location_notes = models.CharField(max_length=255, blank=True, default="")

    # Bumped by every ledger append; guards consumption against lost updates
    ledger_version = models.PositiveIntegerField(default=0)

    # Derived from the ledger by StockProjectionService.refresh only
    in_stock = models.IntegerField(default=0)
    avg_cost = models.DecimalField(max_digits=15, decimal_places=4, null=True, blank=True)
    sell_price = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    times_used = models.PositiveIntegerField(default=0)
    first_used_at = models.DateTimeField(null=True, blank=True)
    last_used_at = models.DateTimeField(null=True, blank=True)
    stocking_score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]

    def __str__(self):
        return f"{self.code} - {self.description}"

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()

    @property
    def effective_min_stock(self) -> int:
        if self.min_stock_override is not None:
            return self.min_stock_override
        return self.min_stock

    def save(self, *args, **kwargs):
        self.code = self.normalize_code(self.code)
        super().save(*args, **kwargs)


class LedgerTransactionQuerySet(models.QuerySet):
    """Bulk writes are refused: ledger rows are append-only."""

    def update(self, **kwargs):
        from parts.services.base_service import BusinessRuleError
        raise BusinessRuleError("Ledger entries cannot be updated", "ledger_immutable")

    def delete(self):
        from parts.services.base_service import BusinessRuleError
        raise BusinessRuleError("Ledger entries cannot be deleted", "ledger_immutable")


class LedgerTransaction(models.Model):
    class Kind(models.TextChoices):
        PURCHASE = "PURCHASE", "Purchase"
        USED = "USED", "Used"
        DIRECT_ORDER = "DIRECT_ORDER", "Direct Order"
        RETURN_TO_SUPPLIER = "RETURN_TO_SUPPLIER", "Return to Supplier"
        CUSTOMER_RETURN = "CUSTOMER_RETURN", "Customer Return"
        DAMAGED_OR_LOST = "DAMAGED_OR_LOST", "Damaged/Lost"
        TRANSFER = "TRANSFER", "Transfer"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"

    POSITIVE_KINDS = (Kind.PURCHASE, Kind.CUSTOMER_RETURN)
    NEGATIVE_KINDS = (Kind.USED, Kind.RETURN_TO_SUPPLIER, Kind.DAMAGED_OR_LOST)

    occurred_at = models.DateTimeField(default=timezone.now, db_index=True)
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="transactions")
    kind = models.CharField(max_length=30, choices=Kind.choices, db_index=True)
    quantity = models.IntegerField()
    unit_cost = models.DecimalField(max_digits=15, decimal_places=4, null=True, blank=True)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4, null=True, blank=True)

    job = models.ForeignKey(
        "jobs.Job",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="part_transactions",
    )
    order_ref = models.CharField(max_length=100, blank=True, default="")
    invoice_number = models.CharField(max_length=100, blank=True, default="")
    source = models.CharField(max_length=200, blank=True, default="")

    from_location = models.ForeignKey(
        StorageLocation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    to_location = models.ForeignKey(
        StorageLocation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )

    # Set on compensating entries only
    reverses = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reversals",
    )

    notes = models.TextField(blank=True, default="")
    actor = models.CharField(max_length=100, default="system")
    created_at = models.DateTimeField(auto_now_add=True)

    objects = LedgerTransactionQuerySet.as_manager()

    class Meta:
        ordering = ["occurred_at", "id"]
        indexes = [
            models.Index(fields=["part", "occurred_at"], name="ledger_part_occurred_idx"),
            models.Index(fields=["kind", "occurred_at"], name="ledger_kind_occurred_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=~Q(quantity=0), name="ledger_quantity_nonzero"),
            models.CheckConstraint(
                condition=~Q(kind="PURCHASE") | Q(unit_cost__isnull=False),
                name="ledger_purchase_has_cost",
            ),
            models.CheckConstraint(
                condition=Q(unit_cost__isnull=True) | Q(unit_cost__gte=0),
                name="ledger_unit_cost_non_negative",
            ),
        ]

    def __str__(self):
        return f"#{self.id} {self.get_kind_display()} {self.quantity:+d} {self.part_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            from parts.services.base_service import BusinessRuleError
            raise BusinessRuleError("Ledger entries are immutable", "ledger_immutable")
        if self.unit_cost is not None:
            self.total_cost = abs(self.quantity) * self.unit_cost
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        from parts.services.base_service import BusinessRuleError
        raise BusinessRuleError("Ledger entries cannot be deleted", "ledger_immutable")


class JobPart(models.Model):
    class Source(models.TextChoices):
        STOCK = "STOCK", "Stock"
        DIRECT_ORDER = "DIRECT_ORDER", "Direct Order"

    job = models.ForeignKey("jobs.Job", on_delete=models.CASCADE, related_name="parts")
    part = models.ForeignKey(Part, on_delete=models.PROTECT, related_name="job_parts")
    description = models.CharField(max_length=255, blank=True, default="")
    quantity = models.PositiveIntegerField()

    unit_cost = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=15, decimal_places=4)
    markup_percent = models.DecimalField(max_digits=7, decimal_places=2)
    sell_price = models.DecimalField(max_digits=15, decimal_places=2)

    source = models.CharField(max_length=20, choices=Source.choices, default=Source.STOCK)
    transaction = models.OneToOneField(
        LedgerTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="job_part",
    )

    notes = models.TextField(blank=True, default="")
    created_by = models.CharField(max_length=100, default="system")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="job_part_quantity_positive"),
            models.CheckConstraint(
                condition=(
                    Q(source="STOCK", transaction__isnull=False)
                    | Q(source="DIRECT_ORDER", transaction__isnull=True)
                ),
                name="job_part_source_matches_transaction",
            ),
        ]

    def __str__(self):
        return f"{self.job_id} / {self.part_id} x{self.quantity}"


class PartsSettings(models.Model):
    """
    Singleton settings table. Use PartsSettings.load() to get the instance.
    """

    default_markup_percent = models.DecimalField(max_digits=7, decimal_places=2, default=20)

    # Min-stock advisor
    default_lead_time_days = models.PositiveIntegerField(default=3)
    order_cycle_days = models.PositiveIntegerField(default=7)
    usage_window_days = models.PositiveIntegerField(default=90)
    confidence_medium_threshold = models.PositiveIntegerField(default=3)
    confidence_high_threshold = models.PositiveIntegerField(default=10)

    # FIFO allocator
    allow_extrapolation = models.BooleanField(default=True)
    max_conflict_retries = models.PositiveIntegerField(default=3)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "parts settings"
        verbose_name_plural = "parts settings"

    def save(self, *args, **kwargs):
        # Enforce singleton: always use pk=1
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        obj, _ = cls.objects.get_or_create(
            pk=1,
            defaults={
                "default_markup_percent": Decimal(str(getattr(settings, "PARTS_DEFAULT_MARKUP_PERCENT", 20))),
                "default_lead_time_days": int(getattr(settings, "PARTS_DEFAULT_LEAD_TIME_DAYS", 3)),
                "max_conflict_retries": int(getattr(settings, "PARTS_MAX_CONFLICT_RETRIES", 3)),
            },
        )
        return obj

    def __str__(self):
        return "Parts Settings"

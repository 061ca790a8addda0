from django.contrib import admin
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateFilter,
    RangeDateTimeFilter,
    RangeNumericFilter,
)

from .models import StorageLocation, Part, LedgerTransaction, JobPart, PartsSettings


class PartInline(TabularInline):
    model = Part
    extra = 0
    fields = ('code', 'description', 'in_stock', 'is_active')
    readonly_fields = ('code', 'description', 'in_stock', 'is_active')
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(StorageLocation)
class StorageLocationAdmin(ModelAdmin):
    list_display = ['id', 'code', 'name', 'type_badge', 'label_number', 'part_count', 'status_badge']
    list_filter = [
        'location_type',
        'is_active',
    ]
    search_fields = ['code', 'name', 'label_number', 'description']
    list_filter_submit = True
    readonly_fields = ['created_at', 'updated_at']
    inlines = [PartInline]

    @display(description=_("Type"), label=True)
    def type_badge(self, obj):
        colors = {
            'VEHICLE': 'info',
            'BUILDING': 'success',
            'CONTAINER': 'warning',
        }
        return colors.get(obj.location_type, 'info'), obj.get_location_type_display()

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'danger', _("Inactive")

    @display(description=_("Parts"))
    def part_count(self, obj):
        return obj.parts.filter(is_active=True).count()


@admin.register(Part)
class PartAdmin(ModelAdmin):
    list_display = ['id', 'code', 'description', 'category', 'stock_badge', 'avg_cost', 'sell_price',
                    'markup_percent', 'stocking_score', 'status_badge']
    list_filter = [
        'category',
        'auto_replenish',
        'is_active',
        ('in_stock', RangeNumericFilter),
        ('last_used_at', RangeDateTimeFilter),
    ]
    search_fields = ['code', 'description', 'brand']
    list_filter_submit = True
    list_fullwidth = True
    # Derived columns are written from the ledger only
    readonly_fields = [
        'in_stock', 'avg_cost', 'sell_price', 'times_used', 'first_used_at', 'last_used_at',
        'stocking_score', 'ledger_version', 'created_at', 'updated_at',
    ]

    fieldsets = (
        (_('Catalog'), {
            'fields': ('code', 'description', 'category', 'brand', 'markup_percent', 'is_active'),
            'classes': ['tab'],
        }),
        (_('Reorder'), {
            'fields': ('min_stock', 'min_stock_override', 'min_stock_override_reason', 'auto_replenish'),
            'classes': ['tab'],
        }),
        (_('Storage'), {
            'fields': ('storage_location', 'location_notes'),
            'classes': ['tab'],
        }),
        (_('Ledger Projection'), {
            'fields': ('in_stock', 'avg_cost', 'sell_price', 'times_used', 'first_used_at',
                       'last_used_at', 'stocking_score', 'ledger_version'),
            'classes': ['tab'],
            'description': _('Rebuilt from the transaction ledger on every append.'),
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        if obj:
            return ['code'] + self.readonly_fields
        return self.readonly_fields

    @display(description=_("In Stock"), label=True)
    def stock_badge(self, obj):
        if obj.in_stock < obj.effective_min_stock:
            return 'danger', obj.in_stock
        if obj.in_stock == 0:
            return 'warning', obj.in_stock
        return 'success', obj.in_stock

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'danger', _("Archived")


@admin.register(LedgerTransaction)
class LedgerTransactionAdmin(ModelAdmin):
    list_display = ['id', 'occurred_at', 'part_link', 'kind_badge', 'quantity', 'unit_cost',
                    'total_cost', 'job', 'reverses', 'actor']
    list_filter = [
        'kind',
        ('occurred_at', RangeDateTimeFilter),
    ]
    search_fields = ['part__code', 'order_ref', 'invoice_number', 'notes', 'actor']
    list_filter_submit = True
    list_select_related = ['part', 'job']
    date_hierarchy = 'occurred_at'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @display(description=_("Part"), ordering='part__code')
    def part_link(self, obj):
        url = reverse('admin:parts_part_change', args=[obj.part_id])
        return format_html('<a href="{}">{}</a>', url, obj.part.code)

    @display(description=_("Kind"), label=True)
    def kind_badge(self, obj):
        if obj.reverses_id:
            return 'warning', obj.get_kind_display()
        if obj.quantity > 0:
            return 'success', obj.get_kind_display()
        return 'danger', obj.get_kind_display()


@admin.register(JobPart)
class JobPartAdmin(ModelAdmin):
    list_display = ['id', 'job', 'part', 'quantity', 'unit_cost', 'total_cost', 'sell_price',
                    'source_badge', 'created_at']
    list_filter = [
        'source',
        ('created_at', RangeDateFilter),
    ]
    search_fields = ['job__job_number', 'part__code', 'description']
    list_filter_submit = True
    list_select_related = ['job', 'part']
    readonly_fields = ['job', 'part', 'quantity', 'unit_cost', 'total_cost', 'markup_percent',
                       'sell_price', 'source', 'transaction', 'created_by', 'created_at', 'updated_at']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @display(description=_("Source"), label=True)
    def source_badge(self, obj):
        if obj.source == 'STOCK':
            return 'info', obj.get_source_display()
        return 'warning', obj.get_source_display()


@admin.register(PartsSettings)
class PartsSettingsAdmin(ModelAdmin):
    fieldsets = (
        (_('Pricing'), {
            'fields': ('default_markup_percent',)
        }),
        (_('Minimum Stock Advisor'), {
            'fields': ('default_lead_time_days', 'order_cycle_days', 'usage_window_days',
                       'confidence_medium_threshold', 'confidence_high_threshold')
        }),
        (_('FIFO Costing'), {
            'fields': ('allow_extrapolation', 'max_conflict_retries')
        }),
    )

    def has_add_permission(self, request):
        return not PartsSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False

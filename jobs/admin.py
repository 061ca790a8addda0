from django.contrib import admin
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin
from unfold.decorators import display
from unfold.contrib.filters.admin import RangeDateFilter

from .models import Job


@admin.register(Job)
class JobAdmin(ModelAdmin):
    list_display = ['id', 'job_number', 'customer_name', 'callback_badge', 'fcc_badge',
                    'parts_cost', 'parts_total', 'created_at']
    list_filter = [
        'is_callback',
        'first_call_complete',
        ('created_at', RangeDateFilter),
    ]
    search_fields = ['job_number', 'customer_name', 'description']
    list_filter_submit = True
    readonly_fields = ['parts_cost', 'parts_total', 'created_at', 'updated_at']

    @display(description=_("Callback"), label=True)
    def callback_badge(self, obj):
        if obj.is_callback:
            return 'warning', _("Callback")
        return 'info', _("New")

    @display(description=_("First Call"), label=True)
    def fcc_badge(self, obj):
        if obj.first_call_complete:
            return 'success', _("Complete")
        return 'danger', _("No")

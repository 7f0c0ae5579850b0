from django.contrib import admin, messages

from core.exceptions import FreightError
from packages.models import Package
from shipments.models import Shipment
from shipments.services import aggregator


class PackageInline(admin.TabularInline):
    model = Package
    fields = ("tracking_number", "product_name", "computed_fee", "status")
    readonly_fields = fields
    extra = 0
    can_delete = False
    show_change_link = True


@admin.register(Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "owner",
        "status",
        "total_fee",
        "payment_method",
        "invoice_status",
        "invoice_ref",
        "created_at",
    )
    list_filter = ("status", "payment_method", "invoice_status")
    search_fields = ("id", "owner__username", "recipient_name", "invoice_ref", "domestic_tracking_number")
    readonly_fields = (
        "status",
        "base_fee_raw",
        "base_fee",
        "minimum_charge_applied",
        "oversized_fee",
        "overweight_fee",
        "remote_area_rate",
        "remote_area_fee",
        "total_volumetric_units",
        "manual_adjustment",
        "total_fee",
        "rate_table_version",
        "invoice_ref",
        "invoice_status",
        "invoice_error",
        "invoice_attempts",
        "invoice_issued_at",
        "invoice_claimed_at",
        "invoice_voided",
    )
    inlines = [PackageInline]
    actions = ["mark_processing", "mark_shipped", "mark_completed", "cancel_shipments", "retry_invoices"]

    def _bulk(self, request, queryset, new_status):
        result = aggregator.bulk_update_status(
            list(queryset.values_list("pk", flat=True)), new_status, actor=request.user
        )
        if result["updated"]:
            messages.info(request, f"{len(result['updated'])} shipments moved to {new_status}.")
        for pk, reason in result["failed"].items():
            messages.warning(request, f"Shipment {pk}: {reason}")

    @admin.action(description="Mark selected shipments as processing")
    def mark_processing(self, request, queryset):
        self._bulk(request, queryset, Shipment.PROCESSING)

    @admin.action(description="Mark selected shipments as shipped")
    def mark_shipped(self, request, queryset):
        self._bulk(request, queryset, Shipment.SHIPPED)

    @admin.action(description="Mark selected shipments as completed")
    def mark_completed(self, request, queryset):
        self._bulk(request, queryset, Shipment.COMPLETED)

    @admin.action(description="Cancel selected shipments and release their packages")
    def cancel_shipments(self, request, queryset):
        self._bulk(request, queryset, Shipment.CANCELLED)

    @admin.action(description="Retry failed, stuck or voided invoices")
    def retry_invoices(self, request, queryset):
        for shipment in queryset:
            try:
                result = aggregator.retry_invoice(shipment.pk, actor=request.user)
            except FreightError as e:
                messages.warning(request, f"Shipment {shipment.pk}: {e}")
                continue
            if result is None:
                messages.warning(request, f"Shipment {shipment.pk}: invoice failed again, see invoice error")
            else:
                messages.info(request, f"Shipment {shipment.pk}: invoice {result.invoice_number} issued")

from django.contrib import admin

from packages.models import Package, PackageBox


class PackageBoxInline(admin.TabularInline):
    model = PackageBox
    extra = 0
    readonly_fields = ("volumetric_units", "fee", "is_oversized", "is_overweight")


@admin.register(Package)
class PackageAdmin(admin.ModelAdmin):
    list_display = ("id", "tracking_number", "owner", "product_name", "quantity", "computed_fee", "status", "shipment")
    list_filter = ("status",)
    search_fields = ("tracking_number", "product_name", "owner__username", "owner__email")
    readonly_fields = ("computed_fee", "rate_table_version", "measured_at", "status", "shipment", "photos")
    inlines = [PackageBoxInline]

from django.conf import settings
from django.db import models
from django.db.models import Q

from pricing.dataclasses import Box


class Package(models.Model):
    PENDING = "PENDING"
    ARRIVED = "ARRIVED"
    IN_SHIPMENT = "IN_SHIPMENT"
    COMPLETED = "COMPLETED"
    STATUS_CHOICES = [
        (PENDING, "Pending arrival"),
        (ARRIVED, "Arrived at warehouse"),
        (IN_SHIPMENT, "In shipment"),
        (COMPLETED, "Completed"),
    ]

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="packages")
    tracking_number = models.CharField(max_length=64, unique=True)
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField(default=1)
    note = models.TextField(blank=True)
    computed_fee = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING)
    shipment = models.ForeignKey(
        "shipments.Shipment", null=True, blank=True, on_delete=models.PROTECT, related_name="packages"
    )
    rate_table_version = models.PositiveIntegerField(null=True, blank=True)
    measured_at = models.DateTimeField(null=True, blank=True)
    # Storage paths of warehouse photos, oldest first.
    photos = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["owner", "status"], name="package_owner_status_idx")]
        constraints = [
            # A shipment link exists exactly while the package is in a shipment
            # (completed packages keep theirs as history).
            models.CheckConstraint(
                condition=(
                    Q(status="IN_SHIPMENT", shipment__isnull=False)
                    | Q(status__in=["PENDING", "ARRIVED"], shipment__isnull=True)
                    | Q(status="COMPLETED")
                ),
                name="package_shipment_matches_status",
            ),
        ]

    def __str__(self):
        return f"{self.tracking_number} ({self.status})"


class PackageBox(models.Model):
    """One measured box of a package, priced when it was recorded."""
    package = models.ForeignKey(Package, on_delete=models.CASCADE, related_name="boxes")
    position = models.PositiveIntegerField(default=0)
    name = models.CharField(max_length=100, blank=True)
    category_key = models.CharField(max_length=100, blank=True)
    weight_kg = models.DecimalField(max_digits=10, decimal_places=3, null=True, blank=True)
    length_cm = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    width_cm = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    height_cm = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    cbm = models.DecimalField(max_digits=10, decimal_places=4, null=True, blank=True)
    volumetric_units = models.PositiveIntegerField(default=0)
    fee = models.PositiveIntegerField(default=0)
    is_oversized = models.BooleanField(default=False)
    is_overweight = models.BooleanField(default=False)

    class Meta:
        ordering = ["package_id", "position"]

    def to_box(self) -> Box:
        return Box(
            name=self.name,
            category_key=self.category_key,
            weight_kg=self.weight_kg,
            length_cm=self.length_cm,
            width_cm=self.width_cm,
            height_cm=self.height_cm,
            cbm=self.cbm,
        )

    def __str__(self):
        return f"{self.package.tracking_number} #{self.position} {self.name}"

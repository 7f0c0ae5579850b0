from django.conf import settings
from django.db import models
from django.db.models import F, Q

from invoicing.models import Invoiceable


class Shipment(Invoiceable):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    STATUS_CHOICES = [
        (PENDING_PAYMENT, "Pending payment"),
        (PROCESSING, "Processing"),
        (SHIPPED, "Shipped"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]

    PAY_TRANSFER = "TRANSFER"
    PAY_WALLET = "WALLET"
    PAYMENT_METHOD_CHOICES = [
        ("", "Not paid"),
        (PAY_TRANSFER, "Bank transfer"),
        (PAY_WALLET, "Wallet"),
    ]

    owner = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="shipments")
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING_PAYMENT)

    recipient_name = models.CharField(max_length=100)
    phone = models.CharField(max_length=32)
    shipping_address = models.TextField()
    note = models.TextField(blank=True)

    base_fee_raw = models.PositiveIntegerField(default=0)
    base_fee = models.PositiveIntegerField(default=0)
    minimum_charge_applied = models.BooleanField(default=False)
    oversized_fee = models.PositiveIntegerField(default=0)
    overweight_fee = models.PositiveIntegerField(default=0)
    remote_area_rate = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    remote_area_fee = models.PositiveIntegerField(default=0)
    total_volumetric_units = models.PositiveIntegerField(default=0)
    # Operator override of the computed total; total_fee already includes it.
    manual_adjustment = models.IntegerField(default=0)
    total_fee = models.PositiveIntegerField(default=0)
    rate_table_version = models.PositiveIntegerField(default=0)

    payment_method = models.CharField(max_length=16, choices=PAYMENT_METHOD_CHOICES, blank=True, default="")
    payment_proof = models.CharField(max_length=255, blank=True)
    domestic_tracking_number = models.CharField(max_length=64, blank=True)
    cancel_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["owner", "status"], name="shipment_owner_status_idx")]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_fee=F("base_fee") + F("oversized_fee") + F("overweight_fee") + F("remote_area_fee")
                            + F("manual_adjustment")),
                name="shipment_total_is_sum_of_parts",
            ),
        ]

    @property
    def is_open(self) -> bool:
        return self.status not in (self.COMPLETED, self.CANCELLED)

    @property
    def paid_from_wallet(self) -> bool:
        return self.payment_method == self.PAY_WALLET

    def __str__(self):
        return f"Shipment {self.pk} ({self.status}, {self.total_fee})"

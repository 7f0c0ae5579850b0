from django.conf import settings
from django.db import models

from invoicing.models import Invoiceable


class Wallet(models.Model):
    owner = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="wallet")
    # Mutated only together with a transaction reaching COMPLETED.
    balance = models.BigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Wallet of {self.owner} ({self.balance})"


class Transaction(Invoiceable):
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    ADJUST = "ADJUST"
    TYPE_CHOICES = [
        (DEPOSIT, "Deposit"),
        (PAYMENT, "Shipment payment"),
        (REFUND, "Refund"),
        (ADJUST, "Manual adjustment"),
    ]

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    STATUS_CHOICES = [
        (PENDING, "Pending review"),
        (COMPLETED, "Completed"),
        (REJECTED, "Rejected"),
    ]

    wallet = models.ForeignKey(Wallet, on_delete=models.PROTECT, related_name="transactions")
    amount = models.BigIntegerField()
    type = models.CharField(max_length=8, choices=TYPE_CHOICES)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=PENDING)
    description = models.TextField(blank=True)
    proof_ref = models.CharField(max_length=255, blank=True)
    shipment = models.ForeignKey(
        "shipments.Shipment", null=True, blank=True, on_delete=models.PROTECT, related_name="wallet_transactions"
    )
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["wallet", "status"], name="wallet_tx_wallet_status_idx")]

    def __str__(self):
        return f"{self.type} {self.amount} ({self.status})"

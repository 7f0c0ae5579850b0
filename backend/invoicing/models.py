from django.db import models


class InvoiceStatus(models.TextChoices):
    NONE = "", "Not invoiced"
    ISSUING = "ISSUING", "Issuing"
    ISSUED = "ISSUED", "Issued"
    FAILED = "FAILED", "Failed"
    VOID = "VOID", "Voided"


class Invoiceable(models.Model):
    """Invoice bookkeeping carried by every entity that can be invoiced."""
    invoice_ref = models.CharField(max_length=64, null=True, blank=True, unique=True)
    invoice_status = models.CharField(max_length=8, choices=InvoiceStatus.choices, blank=True, default=InvoiceStatus.NONE)
    invoice_error = models.TextField(blank=True)
    invoice_attempts = models.PositiveIntegerField(default=0)
    invoice_issued_at = models.DateTimeField(null=True, blank=True)
    # Set when a caller claims issuance; an ISSUING claim older than the lease may be taken over.
    invoice_claimed_at = models.DateTimeField(null=True, blank=True)
    # [{"number", "reason", "voided_at"}, ...] for every invoice voided on this entity.
    invoice_voided = models.JSONField(default=list, blank=True)

    class Meta:
        abstract = True

    @property
    def has_live_invoice(self) -> bool:
        """True while an invoice exists (or is being created) and has not been voided."""
        return self.invoice_status in (InvoiceStatus.ISSUING, InvoiceStatus.ISSUED)

from __future__ import annotations

import logging

from django.utils import timezone

from . import InvoiceProvider, InvoiceResult, issue_key

logger = logging.getLogger(__name__)


class NullInvoiceProvider(InvoiceProvider):
    """Numbers invoices locally without contacting anyone."""

    name = "null"

    def issue(self, entity) -> InvoiceResult:
        number = f"LOCAL-{issue_key(entity).upper()}"
        logger.info(f"Issued local invoice {number}")
        return InvoiceResult(invoice_number=number, issued_at=timezone.now())

    def void(self, invoice_number: str, reason: str) -> None:
        logger.info(f"Voided local invoice {invoice_number}: {reason}")

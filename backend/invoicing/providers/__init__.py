from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


@dataclass
class InvoiceResult:
    invoice_number: str
    issued_at: datetime
    raw: dict = field(default_factory=dict)


class InvoiceProvider:
    """Contract for invoice back-ends. Failures raise ExternalCollaboratorError."""

    name = "base"

    def issue(self, entity) -> InvoiceResult:
        raise NotImplementedError

    def void(self, invoice_number: str, reason: str) -> None:
        raise NotImplementedError


def entity_key(entity) -> str:
    """Stable per-entity key, e.g. ``shipment-42``."""
    return f"{entity._meta.model_name}-{entity.pk}"


def issue_key(entity) -> str:
    """
    Idempotency key for the current invoice of ``entity``.

    Retries of a failed or interrupted issue reuse the key so the provider
    can hand back the invoice it may already have created. Each void starts
    a new key, so a re-issue after a void is a new invoice.
    """
    voided = len(entity.invoice_voided or [])
    key = entity_key(entity)
    return f"{key}-r{voided}" if voided else key


def invoice_payload(entity) -> dict:
    """What gets invoiced: a shipment's freight total or an approved wallet deposit."""
    if entity._meta.model_name == "shipment":
        owner = entity.owner
        return {
            "key": issue_key(entity),
            "kind": "SHIPMENT",
            "amount": entity.total_fee,
            "description": f"Consolidated freight, shipment {entity.pk}",
            "buyer_name": entity.recipient_name,
            "buyer_email": owner.email,
            "lines": [
                {"code": "BASE", "amount": entity.base_fee},
                {"code": "OVERSIZED", "amount": entity.oversized_fee},
                {"code": "OVERWEIGHT", "amount": entity.overweight_fee},
                {"code": "REMOTE_AREA", "amount": entity.remote_area_fee},
            ],
        }
    owner = entity.wallet.owner
    return {
        "key": issue_key(entity),
        "kind": entity.type,
        "amount": entity.amount,
        "description": f"Wallet top-up, transaction {entity.pk}",
        "buyer_name": owner.get_full_name() or owner.username,
        "buyer_email": owner.email,
        "lines": [{"code": entity.type, "amount": entity.amount}],
    }


def load(name: Optional[str] = None) -> InvoiceProvider:
    """
    Lazy-load an invoice provider by name.
    - 'null', 'local', 'none' -> NullInvoiceProvider (local numbering, development)
    - 'http', 'http_json' -> HttpJsonInvoiceProvider (settings FREIGHT_ENGINE['INVOICE_API_URL'])
    """
    options = getattr(settings, "FREIGHT_ENGINE", {})
    key = (name or options.get("INVOICE_PROVIDER") or "null").strip().lower()
    if key in {"null", "local", "none"}:
        from .null import NullInvoiceProvider  # local import to avoid circulars
        return NullInvoiceProvider()
    if key in {"http", "http_json"}:
        from .http_json import HttpJsonInvoiceProvider
        url = options.get("INVOICE_API_URL")
        if not url:
            raise ImproperlyConfigured("FREIGHT_ENGINE['INVOICE_API_URL'] is required for the http invoice provider")
        return HttpJsonInvoiceProvider(
            url=url,
            api_key=options.get("INVOICE_API_KEY", ""),
            timeout=options.get("INVOICE_API_TIMEOUT", 15),
        )
    raise ImproperlyConfigured(f"Unknown invoice provider '{key}'")

"""
Invoice triggering.

``should_issue`` decides from a state transition whether an invoice is due.
The effect layer runs after the business transaction commits: it claims the
entity with a conditional update (so only one caller ever talks to the
provider for it), calls the provider, and records the outcome on the entity.
A provider failure is stored as ``invoice_status=FAILED`` and never undoes
the transition that triggered it.

The claim re-checks the entity's business state in the same UPDATE, so a
shipment cancelled after the invoice was scheduled is never invoiced. A claim
left in ISSUING by a crashed worker expires after
``FREIGHT_ENGINE["INVOICE_CLAIM_LEASE_SECONDS"]`` and can then be retried.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from core.activity import record_activity
from core.exceptions import ExternalCollaboratorError, InvalidStateError
from shipments.models import Shipment
from wallet.models import Transaction

from ..models import InvoiceStatus
from ..providers import InvoiceProvider, InvoiceResult, entity_key, load

logger = logging.getLogger(__name__)

CLAIMABLE = (InvoiceStatus.NONE, InvoiceStatus.FAILED)
INVOICED_SHIPMENT_STATUSES = (Shipment.PROCESSING, Shipment.SHIPPED, Shipment.COMPLETED)


def _lease_cutoff() -> datetime:
    seconds = getattr(settings, "FREIGHT_ENGINE", {}).get("INVOICE_CLAIM_LEASE_SECONDS", 300)
    return timezone.now() - timedelta(seconds=seconds)


def should_issue(entity, previous_status: str, new_status: str) -> bool:
    if entity.invoice_ref or entity.invoice_status not in CLAIMABLE:
        return False
    if previous_status == new_status:
        return False
    if isinstance(entity, Shipment):
        # Wallet-paid shipments were already invoiced when the deposit was approved.
        return (
            new_status == Shipment.PROCESSING
            and entity.total_fee > 0
            and not entity.paid_from_wallet
        )
    if isinstance(entity, Transaction):
        return (
            entity.type == Transaction.DEPOSIT
            and previous_status == Transaction.PENDING
            and new_status == Transaction.COMPLETED
            and entity.amount > 0
        )
    return False


def _billable(entity) -> bool:
    if isinstance(entity, Shipment):
        return (
            entity.status in INVOICED_SHIPMENT_STATUSES
            and entity.total_fee > 0
            and not entity.paid_from_wallet
        )
    if isinstance(entity, Transaction):
        return entity.type == Transaction.DEPOSIT and entity.status == Transaction.COMPLETED and entity.amount > 0
    return False


def _billable_q(model) -> Q:
    """``_billable`` as a filter, evaluated by the claim UPDATE itself."""
    if model is Shipment:
        return (
            Q(status__in=INVOICED_SHIPMENT_STATUSES, total_fee__gt=0)
            & ~Q(payment_method=Shipment.PAY_WALLET)
        )
    if model is Transaction:
        return Q(type=Transaction.DEPOSIT, status=Transaction.COMPLETED, amount__gt=0)
    return Q(pk__in=[])


def _stale_claim(entity) -> bool:
    return entity.invoice_status == InvoiceStatus.ISSUING and (
        entity.invoice_claimed_at is None or entity.invoice_claimed_at < _lease_cutoff()
    )


def _open_q(allow_void: bool) -> Q:
    statuses = CLAIMABLE + ((InvoiceStatus.VOID,) if allow_void else ())
    expired = Q(invoice_status=InvoiceStatus.ISSUING) & (
        Q(invoice_claimed_at__isnull=True) | Q(invoice_claimed_at__lt=_lease_cutoff())
    )
    return Q(invoice_ref__isnull=True) & (Q(invoice_status__in=statuses) | expired)


def is_invoiceable(entity, allow_void: bool = True) -> bool:
    """
    Whether an operator may (re)issue an invoice for the entity in its current state.

    Failed, never-issued, voided and abandoned (expired ISSUING) invoices qualify.
    """
    if entity.invoice_ref:
        return False
    statuses = CLAIMABLE + ((InvoiceStatus.VOID,) if allow_void else ())
    if entity.invoice_status not in statuses and not _stale_claim(entity):
        return False
    return _billable(entity)


def _claim(entity, allow_void: bool = False) -> Optional[datetime]:
    """Take the issuing claim; returns its timestamp, or None when the entity is not ours to invoice."""
    model = type(entity)
    claimed_at = timezone.now()
    claimed = model.objects.filter(_open_q(allow_void), _billable_q(model), pk=entity.pk).update(
        invoice_status=InvoiceStatus.ISSUING,
        invoice_error="",
        invoice_claimed_at=claimed_at,
        invoice_attempts=F("invoice_attempts") + 1,
    )
    return claimed_at if claimed == 1 else None


def _record_failure(entity, claimed_at: datetime, reason: str) -> None:
    type(entity).objects.filter(
        pk=entity.pk, invoice_status=InvoiceStatus.ISSUING, invoice_claimed_at=claimed_at
    ).update(
        invoice_status=InvoiceStatus.FAILED,
        invoice_error=reason[:2000],
    )
    logger.warning(f"Invoice for {entity_key(entity)} failed: {reason}")
    record_activity(None, "INVOICE_FAILED", entity_key(entity), reason[:500])


def issue_invoice(entity, provider: Optional[InvoiceProvider] = None,
                  allow_void: bool = False) -> Optional[InvoiceResult]:
    """
    Issue the invoice for ``entity`` at most once.

    Returns the provider result, or None when another caller already owns
    the invoice, the entity is no longer billable, or the provider failed
    (see ``invoice_status``). ``allow_void`` lets an operator re-issue after
    a void.
    """
    claimed_at = _claim(entity, allow_void=allow_void)
    if claimed_at is None:
        logger.info(f"Invoice for {entity_key(entity)} already issued, in progress or not billable; skipping")
        return None

    entity.refresh_from_db()
    try:
        provider = provider or load()
        result = provider.issue(entity)
    except ExternalCollaboratorError as e:
        _record_failure(entity, claimed_at, str(e))
        entity.refresh_from_db()
        return None
    except Exception as e:
        logger.exception(f"Invoice provider raised unexpectedly for {entity_key(entity)}")
        _record_failure(entity, claimed_at, f"{type(e).__name__}: {e}")
        entity.refresh_from_db()
        return None

    try:
        with transaction.atomic():
            stored = type(entity).objects.filter(
                pk=entity.pk, invoice_status=InvoiceStatus.ISSUING, invoice_claimed_at=claimed_at
            ).update(
                invoice_ref=result.invoice_number,
                invoice_status=InvoiceStatus.ISSUED,
                invoice_issued_at=result.issued_at,
                invoice_error="",
            )
    except IntegrityError:
        _record_failure(entity, claimed_at, f"Invoice number {result.invoice_number} is already used by another record")
        entity.refresh_from_db()
        return None

    entity.refresh_from_db()
    if not stored:
        # The lease expired and another caller took the claim over; it records the outcome.
        logger.warning(f"Invoice {result.invoice_number} for {entity_key(entity)} returned after the claim was lost")
        return None
    logger.info(f"Invoice {result.invoice_number} issued for {entity_key(entity)}")
    record_activity(None, "INVOICE_ISSUED", entity_key(entity), result.invoice_number)
    return result


def schedule_invoice(entity, provider: Optional[InvoiceProvider] = None) -> None:
    """Issue the invoice once the surrounding transaction commits."""
    model, pk = type(entity), entity.pk

    def _run():
        fresh = model.objects.filter(pk=pk).first()
        if fresh is not None:
            issue_invoice(fresh, provider=provider)

    transaction.on_commit(_run)


def trigger_for_transition(entity, previous_status: str, new_status: str,
                           provider: Optional[InvoiceProvider] = None) -> bool:
    if not should_issue(entity, previous_status, new_status):
        return False
    schedule_invoice(entity, provider=provider)
    return True


def retry_invoice(entity, actor=None, provider: Optional[InvoiceProvider] = None) -> Optional[InvoiceResult]:
    """
    Operator (re)issue for an entity whose invoice failed, was never issued,
    was voided, or was abandoned mid-issue.
    """
    entity.refresh_from_db()
    if not is_invoiceable(entity):
        raise InvalidStateError(
            f"{entity_key(entity)} cannot be invoiced now "
            f"(invoice status '{entity.invoice_status or 'none'}', ref {entity.invoice_ref or 'none'})"
        )
    record_activity(actor, "INVOICE_RETRY", entity_key(entity), f"attempt {entity.invoice_attempts + 1}")
    return issue_invoice(entity, provider=provider, allow_void=True)


def void_invoice(entity, reason: str, actor=None, provider: Optional[InvoiceProvider] = None):
    """
    Void an issued invoice. Provider errors propagate: the operator asked for
    this explicitly and the invoice stays ISSUED.

    The voided number moves to ``invoice_voided`` so the entity can be
    invoiced again.
    """
    entity.refresh_from_db()
    if entity.invoice_status != InvoiceStatus.ISSUED or not entity.invoice_ref:
        raise InvalidStateError(
            f"{entity_key(entity)} has no issued invoice to void (status '{entity.invoice_status or 'none'}')"
        )
    number = entity.invoice_ref
    provider = provider or load()
    provider.void(number, reason)

    history = list(entity.invoice_voided or []) + [
        {"number": number, "reason": reason, "voided_at": timezone.now().isoformat()}
    ]
    updated = type(entity).objects.filter(
        pk=entity.pk, invoice_status=InvoiceStatus.ISSUED, invoice_ref=number
    ).update(
        invoice_status=InvoiceStatus.VOID,
        invoice_ref=None,
        invoice_voided=history,
        invoice_error=f"Voided {number}: {reason}"[:2000],
    )
    if not updated:
        logger.warning(f"Invoice {number} for {entity_key(entity)} changed while voiding")
    entity.refresh_from_db()
    record_activity(actor, "INVOICE_VOID", entity_key(entity), f"{number}: {reason}")
    logger.info(f"Invoice {number} voided for {entity_key(entity)}")
    return entity

"""
Shipment consolidation and lifecycle.

    PENDING_PAYMENT -> PROCESSING -> SHIPPED -> COMPLETED
    PENDING_PAYMENT | PROCESSING -> CANCELLED (member packages released)

Every operation touching the shipment together with its packages or the
owner's wallet runs in one ``transaction.atomic`` block with the shipment row
locked first. Packages are claimed with a single conditional UPDATE, so two
shipments racing for the same package cannot both win.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from django.db import transaction
from django.utils import timezone

from core.activity import record_activity
from core.exceptions import FreightError, InvalidStateError, NotFoundError, PackageUnavailable, ValidationError
from core.models import Notification
from core.notifications import send_notification
from invoicing.models import InvoiceStatus
from invoicing.services import trigger
from packages.models import Package
from packages.services import ledger as package_ledger
from pricing.dataclasses import RateTable, ShipmentQuote
from pricing.services.pricing_service import price_shipment
from pricing.services.rate_table import current_rate_table
from wallet.services import ledger as wallet_ledger

from ..models import Shipment
from ..serializers import RecipientSerializer

logger = logging.getLogger(__name__)

TRANSITIONS = {
    Shipment.PENDING_PAYMENT: {Shipment.PROCESSING, Shipment.CANCELLED},
    Shipment.PROCESSING: {Shipment.SHIPPED, Shipment.CANCELLED},
    Shipment.SHIPPED: {Shipment.COMPLETED},
    Shipment.COMPLETED: set(),
    Shipment.CANCELLED: set(),
}
CANCELLABLE = (Shipment.PENDING_PAYMENT, Shipment.PROCESSING)

STATUS_MESSAGES = {
    Shipment.PROCESSING: "Payment confirmed; your shipment is being processed.",
    Shipment.SHIPPED: "Your shipment has left the warehouse.",
    Shipment.COMPLETED: "Your shipment was delivered.",
}


def _normalize_ids(package_ids: Iterable) -> List[int]:
    try:
        ids = sorted({int(pk) for pk in package_ids})
    except (TypeError, ValueError):
        raise ValidationError(f"Package ids must be integers, got {package_ids!r}")
    if not ids:
        raise ValidationError("Select at least one package")
    return ids


def _select_packages(owner, ids: List[int], lock: bool) -> List[Package]:
    qs = Package.objects.filter(pk__in=ids).prefetch_related("boxes").order_by("pk")
    if lock:
        qs = qs.select_for_update()
    found = {p.pk: p for p in qs}
    offending = [
        pk for pk in ids
        if pk not in found
        or found[pk].owner_id != owner.pk
        or found[pk].status != Package.ARRIVED
        or found[pk].shipment_id is not None
    ]
    if offending:
        raise PackageUnavailable(offending)
    return [found[pk] for pk in ids]


def _quote(packages: List[Package], remote_area_rate, rate_table: RateTable) -> ShipmentQuote:
    """Shared by preview and create so the two can never disagree."""
    boxes = [b.to_box() for p in packages for b in p.boxes.all()]
    return price_shipment(
        boxes,
        rate_table,
        remote_area_rate,
        package_fees=[p.computed_fee for p in packages],
    )


def _get_locked(shipment_id: int, owner=None) -> Shipment:
    qs = Shipment.objects.select_for_update().filter(pk=shipment_id)
    if owner is not None:
        qs = qs.filter(owner=owner)
    shipment = qs.first()
    if shipment is None:
        raise NotFoundError(f"Shipment {shipment_id} not found")
    return shipment


def preview_cost(owner, package_ids: Iterable, remote_area_rate=0,
                 rate_table: Optional[RateTable] = None) -> ShipmentQuote:
    """Price a prospective shipment without creating it."""
    ids = _normalize_ids(package_ids)
    packages = _select_packages(owner, ids, lock=False)
    return _quote(packages, remote_area_rate, rate_table or current_rate_table())


def create_shipment(owner, package_ids: Iterable, remote_area_rate, recipient: dict, actor=None,
                    rate_table: Optional[RateTable] = None) -> Shipment:
    ser = RecipientSerializer(data=recipient or {})
    if not ser.is_valid():
        raise ValidationError(f"Invalid recipient details: {ser.errors}")
    ids = _normalize_ids(package_ids)
    table = rate_table or current_rate_table()

    with transaction.atomic():
        packages = _select_packages(owner, ids, lock=True)
        quote = _quote(packages, remote_area_rate, table)

        shipment = Shipment.objects.create(
            owner=owner,
            status=Shipment.PENDING_PAYMENT,
            base_fee_raw=quote.base_fee_raw,
            base_fee=quote.base_fee,
            minimum_charge_applied=quote.minimum_charge_applied,
            oversized_fee=quote.oversized_fee,
            overweight_fee=quote.overweight_fee,
            remote_area_rate=quote.remote_area_rate,
            remote_area_fee=quote.remote_area_fee,
            total_volumetric_units=quote.total_volumetric_units,
            total_fee=quote.total_fee,
            rate_table_version=quote.rate_table_version,
            **ser.validated_data,
        )

        claimed = Package.objects.filter(
            pk__in=ids, owner=owner, status=Package.ARRIVED, shipment__isnull=True
        ).update(status=Package.IN_SHIPMENT, shipment=shipment, updated_at=timezone.now())
        if claimed != len(ids):
            taken = set(Package.objects.filter(pk__in=ids, shipment=shipment).values_list("pk", flat=True))
            raise PackageUnavailable(set(ids) - taken, reason="claimed by another shipment")

        record_activity(actor or owner, "SHIPMENT_CREATED", shipment.pk,
                        f"packages {ids}, total {shipment.total_fee}")
        send_notification(
            owner.pk,
            "Shipment created",
            f"Shipment {shipment.pk} with {len(ids)} packages was created. Amount due: {shipment.total_fee}.",
            Notification.SHIPMENT,
            link=f"/shipments/{shipment.pk}",
        )

    logger.info(f"Shipment {shipment.pk} created for user {owner.pk}: {len(ids)} packages, total {shipment.total_fee}")
    return shipment


def _cancel(shipment_id: int, actor, reason: str, action: str, owner=None,
            allowed=CANCELLABLE) -> Shipment:
    with transaction.atomic():
        shipment = _get_locked(shipment_id, owner=owner)
        if shipment.status not in allowed:
            raise InvalidStateError(f"Shipment {shipment.pk} is {shipment.status} and cannot be cancelled")
        if shipment.invoice_status == InvoiceStatus.ISSUING:
            raise InvalidStateError(
                f"Shipment {shipment.pk} has an invoice being issued; wait for it or retry the invoice, "
                f"then void it before cancelling"
            )
        if shipment.has_live_invoice:
            raise InvalidStateError(
                f"Shipment {shipment.pk} has invoice {shipment.invoice_ref} "
                f"({shipment.invoice_status}); void it before cancelling"
            )

        members = list(Package.objects.select_for_update().filter(shipment=shipment).order_by("pk"))
        for package in members:
            package_ledger.release(package)

        refund = None
        if shipment.paid_from_wallet:
            refund = wallet_ledger.refund_shipment(shipment, reason)

        shipment.status = Shipment.CANCELLED
        shipment.cancel_reason = reason or ""
        shipment.cancelled_at = timezone.now()
        shipment.save(update_fields=["status", "cancel_reason", "cancelled_at", "updated_at"])

        details = f"released {len(members)} packages"
        if refund is not None:
            details += f", refunded {refund.amount}"
        if reason:
            details += f": {reason}"
        record_activity(actor, action, shipment.pk, details)
        message = f"Shipment {shipment.pk} was cancelled."
        if reason:
            message += f" Reason: {reason}"
        if refund is not None:
            message += f" {refund.amount} was returned to your wallet."
        send_notification(shipment.owner_id, "Shipment cancelled", message, Notification.SHIPMENT,
                          link=f"/shipments/{shipment.pk}")

    logger.info(f"Shipment {shipment.pk} cancelled ({action}); {len(members)} packages released")
    return shipment


def cancel(shipment_id: int, actor=None, reason: str = "") -> Shipment:
    return _cancel(shipment_id, actor, reason, "SHIPMENT_CANCELLED")


def reject(shipment_id: int, actor=None, reason: str = "") -> Shipment:
    """Operator refusal (e.g. an invalid payment proof). Same effect as cancel."""
    return _cancel(shipment_id, actor, reason, "SHIPMENT_REJECTED")


def withdraw(shipment_id: int, owner) -> Shipment:
    """Customer takes back an unpaid shipment."""
    return _cancel(shipment_id, owner, "Withdrawn by customer", "SHIPMENT_WITHDRAWN",
                   owner=owner, allowed=(Shipment.PENDING_PAYMENT,))


def update_status(shipment_id: int, new_status: str, actor=None) -> Shipment:
    if new_status not in TRANSITIONS:
        raise ValidationError(f"Unknown shipment status {new_status!r}")
    if new_status == Shipment.CANCELLED:
        return cancel(shipment_id, actor=actor)

    with transaction.atomic():
        shipment = _get_locked(shipment_id)
        previous = shipment.status
        if previous == new_status:
            return shipment
        if new_status not in TRANSITIONS[previous]:
            raise InvalidStateError(f"Shipment {shipment.pk} cannot move from {previous} to {new_status}")

        shipment.status = new_status
        if new_status == Shipment.PROCESSING and not shipment.payment_method:
            shipment.payment_method = Shipment.PAY_TRANSFER
        shipment.save(update_fields=["status", "payment_method", "updated_at"])

        if new_status == Shipment.COMPLETED:
            package_ledger.complete_for_shipment(shipment)

        record_activity(actor, "SHIPMENT_STATUS", shipment.pk, f"{previous} -> {new_status}")
        send_notification(shipment.owner_id, f"Shipment {new_status.replace('_', ' ').lower()}",
                          STATUS_MESSAGES.get(new_status, f"Shipment {shipment.pk} is now {new_status}."),
                          Notification.SHIPMENT, link=f"/shipments/{shipment.pk}")
        trigger.trigger_for_transition(shipment, previous, new_status)

    logger.info(f"Shipment {shipment.pk}: {previous} -> {new_status}")
    return shipment


def bulk_update_status(shipment_ids: Iterable[int], new_status: str, actor=None) -> Dict[str, object]:
    """Apply ``update_status`` to each shipment independently; one failure does not stop the rest."""
    updated: List[int] = []
    failed: Dict[int, str] = {}
    for shipment_id in shipment_ids:
        try:
            update_status(shipment_id, new_status, actor=actor)
        except FreightError as e:
            failed[shipment_id] = str(e)
        else:
            updated.append(shipment_id)
    if failed:
        logger.warning(f"Bulk status {new_status}: {len(failed)} of {len(updated) + len(failed)} shipments failed")
    return {"updated": updated, "failed": failed}


def attach_payment_proof(shipment_id: int, owner, proof_path: str) -> Shipment:
    """Store the FileStore path of a transfer receipt; an operator then moves the shipment to PROCESSING."""
    proof_path = (proof_path or "").strip()
    if not proof_path:
        raise ValidationError("A payment proof path is required")
    with transaction.atomic():
        shipment = _get_locked(shipment_id, owner=owner)
        if shipment.status != Shipment.PENDING_PAYMENT:
            raise InvalidStateError(f"Shipment {shipment.pk} is {shipment.status}; payment proof is no longer accepted")
        shipment.payment_proof = proof_path
        shipment.payment_method = Shipment.PAY_TRANSFER
        shipment.save(update_fields=["payment_proof", "payment_method", "updated_at"])
        record_activity(owner, "PAYMENT_PROOF_UPLOADED", shipment.pk, proof_path)
    return shipment


def pay_with_wallet(shipment_id: int, owner) -> Shipment:
    """Debit the owner's wallet and move the shipment straight to PROCESSING."""
    with transaction.atomic():
        shipment = _get_locked(shipment_id, owner=owner)
        if shipment.status != Shipment.PENDING_PAYMENT:
            raise InvalidStateError(f"Shipment {shipment.pk} is {shipment.status}; it is not awaiting payment")

        payment = wallet_ledger.charge_for_shipment(shipment) if shipment.total_fee > 0 else None

        previous = shipment.status
        shipment.status = Shipment.PROCESSING
        shipment.payment_method = Shipment.PAY_WALLET
        shipment.save(update_fields=["status", "payment_method", "updated_at"])

        record_activity(owner, "SHIPMENT_PAID_WALLET", shipment.pk, f"debited {shipment.total_fee}")
        send_notification(owner.pk, "Shipment paid", STATUS_MESSAGES[Shipment.PROCESSING],
                          Notification.SHIPMENT, link=f"/shipments/{shipment.pk}")
        trigger.trigger_for_transition(shipment, previous, Shipment.PROCESSING)

    logger.info(
        f"Shipment {shipment.pk} paid from wallet"
        + (f" (transaction {payment.pk})" if payment is not None else "")
    )
    return shipment


def adjust_total(shipment_id: int, new_total, actor=None, reason: str = "") -> Shipment:
    """
    Operator override of the amount due. The computed components stay as
    they were and the difference is kept in ``manual_adjustment``.

    Refused while an invoice is live (void it first) and for wallet-paid
    shipments, whose debit already happened.
    """
    if isinstance(new_total, bool) or not isinstance(new_total, int) or new_total < 0:
        raise ValidationError(f"Shipment total must be a non-negative integer amount, got {new_total!r}")

    with transaction.atomic():
        shipment = _get_locked(shipment_id)
        if not shipment.is_open:
            raise InvalidStateError(f"Shipment {shipment.pk} is {shipment.status}; its amount can no longer change")
        if shipment.has_live_invoice:
            raise InvalidStateError(
                f"Shipment {shipment.pk} has invoice {shipment.invoice_ref or '(issuing)'} "
                f"({shipment.invoice_status}); void it before changing the amount"
            )
        if shipment.paid_from_wallet:
            raise InvalidStateError(f"Shipment {shipment.pk} was paid from the wallet; cancel it instead")

        previous = shipment.total_fee
        if new_total == previous:
            return shipment
        computed = shipment.base_fee + shipment.oversized_fee + shipment.overweight_fee + shipment.remote_area_fee
        shipment.manual_adjustment = new_total - computed
        shipment.total_fee = new_total
        shipment.save(update_fields=["manual_adjustment", "total_fee", "updated_at"])

        details = f"{previous} -> {new_total}"
        if reason:
            details += f": {reason}"
        record_activity(actor, "SHIPMENT_TOTAL_ADJUSTED", shipment.pk, details)
        send_notification(shipment.owner_id, "Shipment amount updated",
                          f"The amount due for shipment {shipment.pk} is now {new_total}.",
                          Notification.SHIPMENT, link=f"/shipments/{shipment.pk}")

    logger.info(f"Shipment {shipment.pk} total adjusted {previous} -> {new_total}")
    return shipment


def set_domestic_tracking(shipment_id: int, tracking_number: str, actor=None) -> Shipment:
    """Record the carrier tracking number for the last leg of delivery."""
    tracking_number = (tracking_number or "").strip()
    if len(tracking_number) > 64:
        raise ValidationError("Domestic tracking number is longer than 64 characters")

    with transaction.atomic():
        shipment = _get_locked(shipment_id)
        if shipment.status == Shipment.CANCELLED:
            raise InvalidStateError(f"Shipment {shipment.pk} is cancelled")
        if shipment.domestic_tracking_number == tracking_number:
            return shipment
        shipment.domestic_tracking_number = tracking_number
        shipment.save(update_fields=["domestic_tracking_number", "updated_at"])

        record_activity(actor, "SHIPMENT_DOMESTIC_TRACKING", shipment.pk, tracking_number or "(cleared)")
        if tracking_number:
            send_notification(shipment.owner_id, "Tracking number available",
                              f"Shipment {shipment.pk} can be tracked with {tracking_number}.",
                              Notification.SHIPMENT, link=f"/shipments/{shipment.pk}")
    return shipment


def retry_invoice(shipment_id: int, actor=None):
    shipment = Shipment.objects.filter(pk=shipment_id).first()
    if shipment is None:
        raise NotFoundError(f"Shipment {shipment_id} not found")
    return trigger.retry_invoice(shipment, actor=actor)


def void_invoice(shipment_id: int, reason: str, actor=None) -> Shipment:
    shipment = Shipment.objects.filter(pk=shipment_id).first()
    if shipment is None:
        raise NotFoundError(f"Shipment {shipment_id} not found")
    return trigger.void_invoice(shipment, reason, actor=actor)


def list_for_owner(owner, status: Optional[str] = None) -> List[Shipment]:
    qs = Shipment.objects.filter(owner=owner).prefetch_related("packages")
    if status:
        qs = qs.filter(status=status)
    return list(qs)

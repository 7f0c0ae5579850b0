"""
Wallet ledger.

The balance only changes in the same database transaction that moves a
ledger entry to COMPLETED, so ``balance == sum(completed amounts)`` holds at
every commit. Status flips are conditional updates: a second approval of the
same deposit matches no rows and is rejected.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from core.activity import record_activity
from core.exceptions import AlreadyReviewed, InsufficientBalance, NotFoundError, ValidationError
from core.models import Notification
from core.notifications import send_notification
from invoicing.services.trigger import trigger_for_transition

from ..models import Transaction, Wallet

logger = logging.getLogger(__name__)

APPROVE = "APPROVE"
REJECT = "REJECT"


def _as_amount(value, allow_negative: bool = False) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Amount must be an integer, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"Amount must be an integer, got {value!r}")
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"Amount must be a whole number of the smallest currency unit, got {value!r}")
    amount = int(number)
    if allow_negative:
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero")
    elif amount <= 0:
        raise ValidationError(f"Amount must be greater than zero, got {amount}")
    return amount


def ensure_wallet(owner) -> Wallet:
    wallet = Wallet.objects.filter(owner=owner).first()
    if wallet is not None:
        return wallet
    try:
        with transaction.atomic():
            wallet = Wallet.objects.create(owner=owner)
    except IntegrityError:
        # A concurrent first deposit created it.
        return Wallet.objects.get(owner=owner)
    logger.info(f"Created wallet {wallet.pk} for user {owner.pk}")
    return wallet


def _credit(wallet_id: int, amount: int) -> None:
    Wallet.objects.filter(pk=wallet_id).update(balance=F("balance") + amount, updated_at=timezone.now())


def request_deposit(owner, amount, proof_ref: str = "", description: str = "") -> Transaction:
    """Record a customer's transfer for review. The balance is untouched until approval."""
    amount = _as_amount(amount)
    wallet = ensure_wallet(owner)
    tx = Transaction.objects.create(
        wallet=wallet,
        amount=amount,
        type=Transaction.DEPOSIT,
        status=Transaction.PENDING,
        description=description or "Wallet top-up",
        proof_ref=proof_ref or "",
    )
    logger.info(f"Deposit {tx.pk} of {amount} requested by user {owner.pk}")
    return tx


def review(transaction_id: int, decision: str, reason: str = "", actor=None) -> Transaction:
    decision = (decision or "").strip().upper()
    if decision not in (APPROVE, REJECT):
        raise ValidationError(f"Decision must be {APPROVE} or {REJECT}, got {decision!r}")

    with transaction.atomic():
        tx = Transaction.objects.select_related("wallet").filter(pk=transaction_id).first()
        if tx is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        new_status = Transaction.COMPLETED if decision == APPROVE else Transaction.REJECTED
        fields = {"status": new_status, "reviewed_by": actor if getattr(actor, "pk", None) else None,
                  "reviewed_at": timezone.now()}
        if decision == REJECT and reason:
            fields["description"] = f"{tx.description} (rejected: {reason})"

        flipped = Transaction.objects.filter(pk=tx.pk, status=Transaction.PENDING).update(**fields)
        if flipped != 1:
            tx.refresh_from_db(fields=["status"])
            raise AlreadyReviewed(tx.pk, tx.status)

        if decision == APPROVE:
            _credit(tx.wallet_id, tx.amount)

        tx.refresh_from_db()
        record_activity(actor, f"DEPOSIT_{decision}", tx.pk, reason or f"amount {tx.amount}")
        trigger_for_transition(tx, Transaction.PENDING, new_status)

        owner_id = tx.wallet.owner_id
        if decision == APPROVE:
            send_notification(owner_id, "Deposit approved", f"{tx.amount} was added to your wallet.",
                              Notification.WALLET, link="/wallet")
        else:
            send_notification(owner_id, "Deposit rejected",
                              f"Your deposit of {tx.amount} was rejected. {reason}".strip(),
                              Notification.WALLET, link="/wallet")

    logger.info(f"Transaction {tx.pk} reviewed: {new_status}")
    return tx


def manual_adjust(owner, signed_amount, note: str, actor=None) -> Transaction:
    """Staff correction applied immediately. May take the balance below zero."""
    amount = _as_amount(signed_amount, allow_negative=True)
    if not (note or "").strip():
        raise ValidationError("A note is required for manual adjustments")

    with transaction.atomic():
        wallet = Wallet.objects.select_for_update().filter(owner=owner).first()
        if wallet is None:
            raise NotFoundError(f"User {owner.pk} has no wallet to adjust")
        tx = Transaction.objects.create(
            wallet=wallet,
            amount=amount,
            type=Transaction.ADJUST,
            status=Transaction.COMPLETED,
            description=note.strip(),
            reviewed_by=actor if getattr(actor, "pk", None) else None,
            reviewed_at=timezone.now(),
        )
        _credit(wallet.pk, amount)
        record_activity(actor, "WALLET_ADJUST", wallet.pk, f"{amount:+d}: {note}")
        send_notification(owner.pk, "Wallet adjusted", f"Your balance was adjusted by {amount:+d}. {note}",
                          Notification.WALLET, link="/wallet")

    logger.info(f"Wallet {wallet.pk} adjusted by {amount:+d}")
    return tx


def charge_for_shipment(shipment) -> Transaction:
    """Debit a shipment's total. Call inside the aggregator's transaction."""
    amount = shipment.total_fee
    wallet = Wallet.objects.select_for_update().filter(owner_id=shipment.owner_id).first()
    if wallet is None or wallet.balance < amount:
        raise InsufficientBalance(wallet.balance if wallet else 0, amount)

    debited = Wallet.objects.filter(pk=wallet.pk, balance__gte=amount).update(
        balance=F("balance") - amount, updated_at=timezone.now()
    )
    if debited != 1:
        wallet.refresh_from_db(fields=["balance"])
        raise InsufficientBalance(wallet.balance, amount)

    return Transaction.objects.create(
        wallet=wallet,
        amount=-amount,
        type=Transaction.PAYMENT,
        status=Transaction.COMPLETED,
        description=f"Payment for shipment {shipment.pk}",
        shipment=shipment,
        reviewed_at=timezone.now(),
    )


def refund_shipment(shipment, reason: str = "") -> Optional[Transaction]:
    """Credit back what the wallet paid for a shipment. Call inside the aggregator's transaction."""
    paid = (
        Transaction.objects.filter(
            shipment=shipment, type__in=[Transaction.PAYMENT, Transaction.REFUND], status=Transaction.COMPLETED
        ).aggregate(total=Sum("amount"))["total"]
        or 0
    )
    if paid >= 0:
        return None
    wallet = Wallet.objects.select_for_update().get(owner_id=shipment.owner_id)
    tx = Transaction.objects.create(
        wallet=wallet,
        amount=-paid,
        type=Transaction.REFUND,
        status=Transaction.COMPLETED,
        description=f"Refund for shipment {shipment.pk}" + (f": {reason}" if reason else ""),
        shipment=shipment,
        reviewed_at=timezone.now(),
    )
    _credit(wallet.pk, -paid)
    return tx


def recalculate_balance(wallet: Wallet) -> int:
    """Balance implied by the ledger; equals ``wallet.balance`` when the books are consistent."""
    return (
        wallet.transactions.filter(status=Transaction.COMPLETED).aggregate(total=Sum("amount"))["total"] or 0
    )


def history(owner, limit: int = 50) -> List[Transaction]:
    wallet = Wallet.objects.filter(owner=owner).first()
    if wallet is None:
        return []
    return list(wallet.transactions.all()[:limit])

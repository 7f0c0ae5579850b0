from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from core.exceptions import (
    ExternalCollaboratorError,
    InsufficientBalance,
    InvalidStateError,
    NotFoundError,
    PackageUnavailable,
    ValidationError,
)
from core.models import ActivityLog, Notification
from invoicing.models import InvoiceStatus
from packages.models import Package
from packages.services import ledger as package_ledger
from wallet.models import Transaction
from wallet.services import ledger as wallet_ledger

from ..models import Shipment
from ..services import aggregator

pytestmark = pytest.mark.django_db

RECIPIENT = {"recipient_name": "Alice Chen", "phone": "0912345678", "shipping_address": "1 Harbour Rd"}


@pytest.fixture
def two_packages(customer, make_arrived_package):
    return [make_arrived_package(customer), make_arrived_package(customer)]


@pytest.fixture
def shipment(customer, two_packages):
    return aggregator.create_shipment(customer, [p.pk for p in two_packages], 0, RECIPIENT)


def _assert_released(packages):
    for package in packages:
        package.refresh_from_db()
        assert package.status == Package.ARRIVED
        assert package.shipment_id is None


class TestCreateShipment:

    def test_claims_packages_and_prices(self, customer, two_packages):
        ids = [p.pk for p in two_packages]
        preview = aggregator.preview_cost(customer, ids, Decimal("1000"))
        shipment = aggregator.create_shipment(customer, ids, Decimal("1000"), RECIPIENT)

        # 625 + 625 floored to the 2000 minimum; 10 units / 35.3 * 1000 = 283.28
        assert shipment.base_fee_raw == 1250
        assert shipment.base_fee == 2000
        assert shipment.minimum_charge_applied
        assert shipment.remote_area_fee == 283
        assert shipment.total_fee == 2283
        assert shipment.total_fee == preview.total_fee
        assert shipment.status == Shipment.PENDING_PAYMENT
        assert shipment.rate_table_version == 1

        for package in two_packages:
            package.refresh_from_db()
            assert package.status == Package.IN_SHIPMENT
            assert package.shipment_id == shipment.pk

    def test_total_matches_stored_package_fees(self, customer, make_arrived_package, box_factory):
        heavy = make_arrived_package(customer, boxes=[box_factory(weight_kg=Decimal("150"))])
        big = make_arrived_package(customer, boxes=[box_factory(length_cm=Decimal("310"))])
        shipment = aggregator.create_shipment(customer, [heavy.pk, big.pk], 0, RECIPIENT)

        assert shipment.base_fee == heavy.computed_fee + big.computed_fee
        assert shipment.overweight_fee == 500
        assert shipment.oversized_fee == 800
        assert shipment.total_fee == shipment.base_fee + 500 + 800

    def test_rejects_unavailable_packages_by_id(self, customer, other_customer, make_arrived_package):
        mine = make_arrived_package(customer)
        theirs = make_arrived_package(other_customer)
        pending = package_ledger.forecast(customer, "NOT-HERE-YET", "Lamp")

        with pytest.raises(PackageUnavailable) as exc:
            aggregator.create_shipment(customer, [mine.pk, theirs.pk, pending.pk, 424242], 0, RECIPIENT)

        assert exc.value.package_ids == sorted([theirs.pk, pending.pk, 424242])
        assert not Shipment.objects.exists()
        mine.refresh_from_db()
        assert mine.status == Package.ARRIVED

    def test_package_cannot_join_two_shipments(self, customer, shipment, two_packages):
        with pytest.raises(PackageUnavailable):
            aggregator.create_shipment(customer, [two_packages[0].pk], 0, RECIPIENT)
        assert Shipment.objects.count() == 1

    def test_lost_claim_race_rolls_back(self, customer, shipment, two_packages, make_arrived_package, monkeypatch):
        fresh = make_arrived_package(customer)
        taken = two_packages[0]
        # Simulate a selection read before the competing shipment committed.
        stale = [Package.objects.get(pk=fresh.pk), Package.objects.get(pk=taken.pk)]
        monkeypatch.setattr(aggregator, "_select_packages", lambda owner, ids, lock: stale)

        with pytest.raises(PackageUnavailable, match="claimed by another shipment") as exc:
            aggregator.create_shipment(customer, [fresh.pk, taken.pk], 0, RECIPIENT)

        assert exc.value.package_ids == [taken.pk]
        assert Shipment.objects.count() == 1
        fresh.refresh_from_db()
        assert fresh.status == Package.ARRIVED and fresh.shipment_id is None

    def test_requires_recipient(self, customer, two_packages):
        with pytest.raises(ValidationError, match="recipient"):
            aggregator.create_shipment(customer, [two_packages[0].pk], 0, {"recipient_name": "A"})

    def test_requires_packages(self, customer):
        with pytest.raises(ValidationError):
            aggregator.create_shipment(customer, [], 0, RECIPIENT)


class TestCancel:

    def test_cancel_releases_every_package(self, shipment, two_packages, staff):
        aggregator.cancel(shipment.pk, actor=staff, reason="customer request")

        shipment.refresh_from_db()
        assert shipment.status == Shipment.CANCELLED
        assert shipment.cancel_reason == "customer request"
        _assert_released(two_packages)
        assert not Package.objects.filter(shipment=shipment).exists()
        assert ActivityLog.objects.filter(action="SHIPMENT_CANCELLED", target_id=str(shipment.pk)).exists()

    def test_reject_releases_every_package(self, shipment, two_packages, staff):
        aggregator.reject(shipment.pk, actor=staff, reason="payment proof unreadable")
        shipment.refresh_from_db()
        assert shipment.status == Shipment.CANCELLED
        _assert_released(two_packages)
        assert ActivityLog.objects.filter(action="SHIPMENT_REJECTED").exists()

    def test_released_packages_can_ship_again(self, customer, shipment, two_packages):
        aggregator.cancel(shipment.pk)
        again = aggregator.create_shipment(customer, [p.pk for p in two_packages], 0, RECIPIENT)
        assert again.packages.count() == 2

    @pytest.mark.parametrize("path", [
        [Shipment.PROCESSING, Shipment.SHIPPED],
        [Shipment.PROCESSING, Shipment.SHIPPED, Shipment.COMPLETED],
    ])
    def test_not_cancellable_after_shipping(self, shipment, invoice_provider, path):
        for status in path:
            aggregator.update_status(shipment.pk, status)
        with pytest.raises(InvalidStateError):
            aggregator.cancel(shipment.pk)

    def test_cancel_twice(self, shipment):
        aggregator.cancel(shipment.pk)
        with pytest.raises(InvalidStateError):
            aggregator.cancel(shipment.pk)

    def test_issued_invoice_must_be_voided_first(self, shipment, two_packages, invoice_provider,
                                                 django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)
        shipment.refresh_from_db()
        assert shipment.invoice_status == InvoiceStatus.ISSUED

        with pytest.raises(InvalidStateError, match="void it before cancelling"):
            aggregator.cancel(shipment.pk)
        for package in two_packages:
            package.refresh_from_db()
            assert package.status == Package.IN_SHIPMENT

        aggregator.void_invoice(shipment.pk, "order cancelled")
        aggregator.cancel(shipment.pk)
        shipment.refresh_from_db()
        assert shipment.status == Shipment.CANCELLED
        assert shipment.invoice_status == InvoiceStatus.VOID
        _assert_released(two_packages)

    def test_withdraw_by_owner_only_while_unpaid(self, customer, other_customer, shipment, two_packages):
        with pytest.raises(NotFoundError):
            aggregator.withdraw(shipment.pk, other_customer)
        aggregator.withdraw(shipment.pk, customer)
        _assert_released(two_packages)

    def test_withdraw_refused_once_processing(self, customer, shipment, invoice_provider):
        aggregator.update_status(shipment.pk, Shipment.PROCESSING)
        with pytest.raises(InvalidStateError):
            aggregator.withdraw(shipment.pk, customer)


class TestUpdateStatus:

    def test_processing_issues_invoice_once(self, shipment, invoice_provider, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)

        shipment.refresh_from_db()
        assert invoice_provider.issued == [f"shipment-{shipment.pk}"]
        assert shipment.invoice_ref == f"INV-shipment-{shipment.pk}"
        assert shipment.payment_method == Shipment.PAY_TRANSFER

    def test_invoice_failure_does_not_undo_transition(self, shipment, failing_invoice_provider,
                                                      django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)

        shipment.refresh_from_db()
        assert shipment.status == Shipment.PROCESSING
        assert shipment.invoice_status == InvoiceStatus.FAILED
        assert "gateway timeout" in shipment.invoice_error
        assert shipment.invoice_ref is None

        failing_invoice_provider.fail_with = None
        result = aggregator.retry_invoice(shipment.pk)
        shipment.refresh_from_db()
        assert result.invoice_number == shipment.invoice_ref
        assert shipment.invoice_status == InvoiceStatus.ISSUED
        assert shipment.invoice_attempts == 2

    def test_cannot_skip_processing(self, shipment):
        with pytest.raises(InvalidStateError, match="PENDING_PAYMENT to SHIPPED"):
            aggregator.update_status(shipment.pk, Shipment.SHIPPED)

    def test_unknown_status(self, shipment):
        with pytest.raises(ValidationError):
            aggregator.update_status(shipment.pk, "LOST")

    def test_completion_completes_packages(self, shipment, two_packages, invoice_provider):
        for status in (Shipment.PROCESSING, Shipment.SHIPPED, Shipment.COMPLETED):
            aggregator.update_status(shipment.pk, status)
        for package in two_packages:
            package.refresh_from_db()
            assert package.status == Package.COMPLETED

    def test_cancelled_routes_through_cancel(self, shipment, two_packages):
        aggregator.update_status(shipment.pk, Shipment.CANCELLED)
        _assert_released(two_packages)

    def test_bulk_update_reports_failures(self, customer, shipment, make_arrived_package, invoice_provider):
        other = aggregator.create_shipment(customer, [make_arrived_package(customer).pk], 0, RECIPIENT)
        aggregator.update_status(other.pk, Shipment.PROCESSING)

        result = aggregator.bulk_update_status([shipment.pk, other.pk, 987654], Shipment.SHIPPED)

        assert result["updated"] == [other.pk]
        assert set(result["failed"]) == {shipment.pk, 987654}


class TestWalletPayment:

    @pytest.fixture
    def funded(self, customer):
        wallet_ledger.ensure_wallet(customer)
        wallet_ledger.manual_adjust(customer, 5000, "opening balance")
        return customer

    def test_pay_with_wallet_debits_and_skips_invoice(self, funded, shipment, invoice_provider,
                                                      django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.pay_with_wallet(shipment.pk, funded)

        shipment.refresh_from_db()
        wallet = funded.wallet
        wallet.refresh_from_db()
        assert shipment.status == Shipment.PROCESSING
        assert shipment.payment_method == Shipment.PAY_WALLET
        assert wallet.balance == 5000 - shipment.total_fee
        assert Transaction.objects.get(type=Transaction.PAYMENT).amount == -shipment.total_fee
        assert invoice_provider.issued == []

    def test_cancel_refunds_wallet_payment(self, funded, shipment, two_packages):
        aggregator.pay_with_wallet(shipment.pk, funded)
        aggregator.cancel(shipment.pk, reason="out of stock")

        wallet = funded.wallet
        wallet.refresh_from_db()
        assert wallet.balance == 5000
        assert wallet_ledger.recalculate_balance(wallet) == wallet.balance
        refund = Transaction.objects.get(type=Transaction.REFUND)
        assert refund.amount == shipment.total_fee
        _assert_released(two_packages)

    def test_insufficient_balance(self, customer, shipment):
        wallet_ledger.ensure_wallet(customer)
        with pytest.raises(InsufficientBalance):
            aggregator.pay_with_wallet(shipment.pk, customer)
        shipment.refresh_from_db()
        assert shipment.status == Shipment.PENDING_PAYMENT
        assert not Transaction.objects.filter(type=Transaction.PAYMENT).exists()

    def test_cannot_pay_twice(self, funded, shipment):
        aggregator.pay_with_wallet(shipment.pk, funded)
        with pytest.raises(InvalidStateError):
            aggregator.pay_with_wallet(shipment.pk, funded)
        funded.wallet.refresh_from_db()
        assert funded.wallet.balance == 5000 - shipment.total_fee


def test_attach_payment_proof(customer, shipment):
    aggregator.attach_payment_proof(shipment.pk, customer, "proofs/2026/receipt-1.jpg")
    shipment.refresh_from_db()
    assert shipment.payment_proof == "proofs/2026/receipt-1.jpg"
    assert shipment.payment_method == Shipment.PAY_TRANSFER


def test_void_provider_error_keeps_invoice(shipment, invoice_provider, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        aggregator.update_status(shipment.pk, Shipment.PROCESSING)
    invoice_provider.fail_with = ExternalCollaboratorError("gateway down")

    with pytest.raises(ExternalCollaboratorError):
        aggregator.void_invoice(shipment.pk, "mistake")
    shipment.refresh_from_db()
    assert shipment.invoice_status == InvoiceStatus.ISSUED


class TestAdjustTotal:

    def test_override_keeps_components_and_records_difference(self, shipment, staff,
                                                              django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            shipment = aggregator.adjust_total(shipment.pk, 1800, actor=staff, reason="loyalty discount")

        shipment.refresh_from_db()
        assert shipment.total_fee == 1800
        assert shipment.base_fee == 2000
        assert shipment.manual_adjustment == -200
        log = ActivityLog.objects.get(action="SHIPMENT_TOTAL_ADJUSTED")
        assert log.details == "2000 -> 1800: loyalty discount"
        assert Notification.objects.filter(user=shipment.owner, title="Shipment amount updated").exists()

    def test_adjusted_amount_is_invoiced(self, shipment, invoice_provider, django_capture_on_commit_callbacks):
        aggregator.adjust_total(shipment.pk, 2500)
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)
        shipment.refresh_from_db()
        assert shipment.invoice_status == InvoiceStatus.ISSUED
        assert shipment.total_fee == 2500

    def test_refused_while_invoice_issued(self, shipment, invoice_provider, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)

        with pytest.raises(InvalidStateError, match="void it before changing the amount"):
            aggregator.adjust_total(shipment.pk, 100)

        aggregator.void_invoice(shipment.pk, "amount changes")
        shipment = aggregator.adjust_total(shipment.pk, 100)
        assert shipment.total_fee == 100
        result = aggregator.retry_invoice(shipment.pk)
        assert result.invoice_number == f"INV-shipment-{shipment.pk}-r1"

    def test_refused_for_wallet_payment(self, customer, shipment):
        wallet_ledger.ensure_wallet(customer)
        wallet_ledger.manual_adjust(customer, 5000, "opening balance")
        aggregator.pay_with_wallet(shipment.pk, customer)
        with pytest.raises(InvalidStateError, match="wallet"):
            aggregator.adjust_total(shipment.pk, 100)

    def test_refused_once_closed(self, shipment):
        aggregator.cancel(shipment.pk)
        with pytest.raises(InvalidStateError):
            aggregator.adjust_total(shipment.pk, 100)

    @pytest.mark.parametrize("value", [-1, 10.5, "1000", True, None])
    def test_rejects_bad_amounts(self, shipment, value):
        with pytest.raises(ValidationError):
            aggregator.adjust_total(shipment.pk, value)

    def test_zero_total_is_not_invoiced(self, shipment, invoice_provider, django_capture_on_commit_callbacks):
        aggregator.adjust_total(shipment.pk, 0)
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.update_status(shipment.pk, Shipment.PROCESSING)
        assert invoice_provider.issued == []


class TestDomesticTracking:

    def test_sets_number_and_notifies(self, shipment, staff, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.set_domestic_tracking(shipment.pk, "  TW-0099 ", actor=staff)
        shipment.refresh_from_db()
        assert shipment.domestic_tracking_number == "TW-0099"
        assert Notification.objects.filter(user=shipment.owner, title="Tracking number available").exists()
        assert ActivityLog.objects.filter(action="SHIPMENT_DOMESTIC_TRACKING", actor=staff).exists()

    def test_clearing_does_not_notify(self, shipment, django_capture_on_commit_callbacks):
        aggregator.set_domestic_tracking(shipment.pk, "TW-1")
        with django_capture_on_commit_callbacks(execute=True):
            aggregator.set_domestic_tracking(shipment.pk, "")
        shipment.refresh_from_db()
        assert shipment.domestic_tracking_number == ""
        assert not Notification.objects.filter(title="Tracking number available").exists()

    def test_refused_for_cancelled_shipment(self, shipment):
        aggregator.cancel(shipment.pk)
        with pytest.raises(InvalidStateError):
            aggregator.set_domestic_tracking(shipment.pk, "TW-2")

    def test_too_long(self, shipment):
        with pytest.raises(ValidationError):
            aggregator.set_domestic_tracking(shipment.pk, "X" * 65)


def test_expired_invoice_claim_is_recovered_before_cancel(shipment, two_packages, invoice_provider):
    Shipment.objects.filter(pk=shipment.pk).update(
        status=Shipment.PROCESSING,
        payment_method=Shipment.PAY_TRANSFER,
        invoice_status=InvoiceStatus.ISSUING,
        invoice_claimed_at=timezone.now() - timedelta(hours=2),
    )
    with pytest.raises(InvalidStateError, match="retry the invoice"):
        aggregator.cancel(shipment.pk)

    aggregator.retry_invoice(shipment.pk)
    aggregator.void_invoice(shipment.pk, "order cancelled")
    aggregator.cancel(shipment.pk)

    shipment.refresh_from_db()
    assert shipment.status == Shipment.CANCELLED
    _assert_released(two_packages)

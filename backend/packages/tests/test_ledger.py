from decimal import Decimal

import pytest

from core.exceptions import DuplicateTrackingNumber, InvalidStateError, NotFoundError, ValidationError
from core.models import ActivityLog, Notification
from pricing.services.pricing_service import quote_package
from pricing.services.rate_table import current_rate_table
from shipments.models import Shipment

from ..models import Package
from ..services import ledger

pytestmark = pytest.mark.django_db


class TestForecast:

    def test_creates_pending_package(self, customer):
        package = ledger.forecast(customer, "  SF123456 ", "Dining table", quantity=2)

        assert package.status == Package.PENDING
        assert package.tracking_number == "SF123456"
        assert package.computed_fee == 0
        assert package.shipment_id is None
        assert not package.boxes.exists()

    def test_duplicate_tracking_number(self, customer, other_customer):
        ledger.forecast(customer, "SF1", "Chair")
        with pytest.raises(DuplicateTrackingNumber, match="SF1"):
            ledger.forecast(other_customer, "SF1", "Lamp")
        assert Package.objects.count() == 1

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, customer, quantity):
        with pytest.raises(ValidationError):
            ledger.forecast(customer, "SF2", "Chair", quantity=quantity)

    def test_staff_forecast_notifies_owner(self, customer, staff, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            package = ledger.forecast(customer, "SF3", "Bed", actor=staff)

        assert Notification.objects.filter(user=customer, category=Notification.PACKAGE).count() == 1
        log = ActivityLog.objects.get(action="PACKAGE_FORECAST_FOR_CUSTOMER")
        assert log.target_id == str(package.pk)
        assert log.actor == staff


class TestRecordMeasurement:

    def test_first_measurement_marks_arrived(self, customer, published_rates, box_factory,
                                             django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF10", "Sofa")
        with django_capture_on_commit_callbacks(execute=True):
            package = ledger.record_measurement(package.pk, [box_factory(), box_factory(name="cushions")])

        assert package.status == Package.ARRIVED
        assert package.computed_fee == 1250
        assert package.rate_table_version == 1
        assert list(package.boxes.values_list("fee", flat=True)) == [625, 625]
        assert Notification.objects.filter(user=customer, title="Package arrived").exists()

    def test_remeasurement_replaces_boxes_and_stays_arrived(self, customer, published_rates, box_factory,
                                                            django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF11", "Sofa")
        with django_capture_on_commit_callbacks(execute=True):
            ledger.record_measurement(package.pk, [box_factory(), box_factory()])
            package = ledger.record_measurement(package.pk, [box_factory(weight_kg=Decimal("40"))])

        assert package.status == Package.ARRIVED
        assert package.boxes.count() == 1
        assert package.computed_fee == 880
        # Only the first measurement announces the arrival.
        assert Notification.objects.filter(user=customer, title="Package arrived").count() == 1

    def test_accepts_raw_payloads(self, customer, published_rates):
        package = ledger.forecast(customer, "SF12", "Shelf")
        package = ledger.record_measurement(package.pk, [
            {"name": "panel", "category": "general", "weight_kg": "10", "length_cm": "50",
             "width_cm": "50", "height_cm": "50"},
        ])
        assert package.computed_fee == 625

    def test_partially_measured_box_is_free(self, customer, published_rates):
        package = ledger.forecast(customer, "SF13", "Shelf")
        package = ledger.record_measurement(package.pk, [{"name": "unknown size", "weight_kg": "12"}])
        assert package.status == Package.ARRIVED
        assert package.computed_fee == 0

    def test_rejects_garbage_measurements(self, customer, published_rates):
        package = ledger.forecast(customer, "SF14", "Shelf")
        with pytest.raises(ValidationError):
            ledger.record_measurement(package.pk, [{"weight_kg": "heavy"}])
        package.refresh_from_db()
        assert package.status == Package.PENDING

    def test_box_values_are_validated_like_payloads(self, customer, published_rates, box_factory):
        package = ledger.forecast(customer, "SF16", "Shelf")
        with pytest.raises(ValidationError, match="weight_kg"):
            ledger.record_measurement(package.pk, [box_factory(weight_kg=Decimal("10.00049"))])
        package.refresh_from_db()
        assert package.status == Package.PENDING
        assert not package.boxes.exists()

    def test_stored_boxes_reproduce_the_fee(self, customer, published_rates, box_factory):
        package = ledger.forecast(customer, "SF17", "Shelf")
        package = ledger.record_measurement(package.pk, [box_factory(weight_kg=Decimal("30.125"))])
        stored = [b.to_box() for b in package.boxes.all()]
        assert quote_package(stored, current_rate_table()).computed_fee == package.computed_fee

    def test_requires_a_box(self, customer, published_rates):
        package = ledger.forecast(customer, "SF15", "Shelf")
        with pytest.raises(ValidationError):
            ledger.record_measurement(package.pk, [])

    def test_refused_while_in_shipment(self, customer, make_arrived_package, box_factory):
        package = make_arrived_package(customer)
        shipment = Shipment.objects.create(owner=customer, recipient_name="A", phone="1", shipping_address="X")
        Package.objects.filter(pk=package.pk).update(status=Package.IN_SHIPMENT, shipment=shipment)

        with pytest.raises(InvalidStateError, match="IN_SHIPMENT"):
            ledger.record_measurement(package.pk, [box_factory()])

    def test_unknown_package(self, published_rates, box_factory):
        with pytest.raises(NotFoundError):
            ledger.record_measurement(999999, [box_factory()])


class TestEditAndDelete:

    def test_owner_edits_pending_package(self, customer):
        package = ledger.forecast(customer, "SF20", "Chair")
        package = ledger.edit(package.pk, customer, product_name="Armchair", quantity=3)
        assert (package.product_name, package.quantity) == ("Armchair", 3)

    def test_edit_to_taken_tracking_number(self, customer):
        ledger.forecast(customer, "SF21", "Chair")
        package = ledger.forecast(customer, "SF22", "Chair")
        with pytest.raises(DuplicateTrackingNumber):
            ledger.edit(package.pk, customer, tracking_number="SF21")

    def test_edit_rejects_unknown_fields(self, customer):
        package = ledger.forecast(customer, "SF23", "Chair")
        with pytest.raises(ValidationError, match="computed_fee"):
            ledger.edit(package.pk, customer, computed_fee=0)

    def test_edit_after_arrival_is_refused(self, customer, make_arrived_package):
        package = make_arrived_package(customer)
        with pytest.raises(InvalidStateError):
            ledger.edit(package.pk, customer, product_name="Something else")

    def test_other_customer_cannot_touch_package(self, customer, other_customer):
        package = ledger.forecast(customer, "SF24", "Chair")
        with pytest.raises(NotFoundError):
            ledger.edit(package.pk, other_customer, note="mine now")
        with pytest.raises(NotFoundError):
            ledger.delete(package.pk, other_customer)

    def test_delete_pending(self, customer):
        package = ledger.forecast(customer, "SF25", "Chair")
        ledger.delete(package.pk, customer)
        assert not Package.objects.filter(pk=package.pk).exists()

    def test_delete_after_arrival_is_refused(self, customer, make_arrived_package):
        package = make_arrived_package(customer)
        with pytest.raises(InvalidStateError):
            ledger.delete(package.pk, customer)


def test_release_requires_package_in_shipment(customer, make_arrived_package):
    package = make_arrived_package(customer)
    with pytest.raises(InvalidStateError, match="cannot release"):
        ledger.release(package)


def test_list_for_owner_filters_by_status(customer, other_customer, make_arrived_package):
    make_arrived_package(customer)
    ledger.forecast(customer, "SF30", "Chair")
    make_arrived_package(other_customer)

    assert len(ledger.list_for_owner(customer)) == 2
    assert [p.status for p in ledger.list_for_owner(customer, status=Package.ARRIVED)] == [Package.ARRIVED]


class FakeStorage:
    def __init__(self, *paths):
        self.files = set(paths)
        self.deleted = []

    def exists(self, path):
        return path in self.files

    def delete(self, path):
        self.files.discard(path)
        self.deleted.append(path)


class TestPhotos:

    @pytest.fixture
    def storage(self, monkeypatch):
        storage = FakeStorage(*[f"photos/{n}.jpg" for n in range(1, 10)])
        monkeypatch.setattr("core.files.default_storage", storage)
        return storage

    def test_keeps_selected_and_appends_new(self, customer, storage, django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF40", "Sofa")
        with django_capture_on_commit_callbacks(execute=True):
            ledger.update_photos(package.pk, [], ["photos/1.jpg", "photos/2.jpg", "photos/3.jpg"])
            package = ledger.update_photos(package.pk, ["photos/1.jpg", "photos/3.jpg"], ["photos/4.jpg"])

        assert package.photos == ["photos/1.jpg", "photos/3.jpg", "photos/4.jpg"]
        assert storage.deleted == ["photos/2.jpg"]

    def test_capped_at_five(self, customer, storage, django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF41", "Sofa")
        new = [f"photos/{n}.jpg" for n in range(1, 8)]
        with django_capture_on_commit_callbacks(execute=True):
            package = ledger.update_photos(package.pk, [], new)

        assert package.photos == new[:ledger.MAX_PHOTOS]
        assert storage.deleted == new[ledger.MAX_PHOTOS:]

    def test_unknown_kept_paths_are_ignored(self, customer, storage, django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF42", "Sofa")
        with django_capture_on_commit_callbacks(execute=True):
            ledger.update_photos(package.pk, [], ["photos/1.jpg"])
            package = ledger.update_photos(package.pk, ["photos/1.jpg", "../../etc/passwd"])
        assert package.photos == ["photos/1.jpg"]
        assert storage.deleted == []

    def test_files_are_removed_only_after_commit(self, customer, storage, django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF43", "Sofa")
        Package.objects.filter(pk=package.pk).update(photos=["photos/1.jpg"])
        with django_capture_on_commit_callbacks() as callbacks:
            ledger.update_photos(package.pk, [], ["photos/2.jpg"])
        assert storage.deleted == []
        assert len(callbacks) == 1

    def test_deleting_package_removes_photos(self, customer, storage, django_capture_on_commit_callbacks):
        package = ledger.forecast(customer, "SF44", "Sofa")
        Package.objects.filter(pk=package.pk).update(photos=["photos/5.jpg", "photos/6.jpg"])
        with django_capture_on_commit_callbacks(execute=True):
            ledger.delete(package.pk, customer)
        assert storage.deleted == ["photos/5.jpg", "photos/6.jpg"]

    def test_unknown_package(self, storage):
        with pytest.raises(NotFoundError):
            ledger.update_photos(999999, [], ["photos/1.jpg"])

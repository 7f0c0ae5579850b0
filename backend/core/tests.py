import logging

import pytest
from django.db import DatabaseError

from .activity import record_activity
from .exceptions import ConflictError, FreightError, PackageUnavailable
from .files import delete_files, discard_after_commit
from .models import ActivityLog, Notification
from .notifications import DatabaseNotificationSink, NotificationSink, load_sink, send_notification

pytestmark = pytest.mark.django_db


class ExplodingSink(NotificationSink):
    def notify(self, user_id, title, message, category, link=None):
        raise ConnectionError("smtp unreachable")


class TestNotifications:

    def test_delivered_only_after_commit(self, customer, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks() as callbacks:
            send_notification(customer.pk, "Package arrived", "TRK-1 is here", Notification.PACKAGE, "/packages/1")
            assert not Notification.objects.exists()

        assert len(callbacks) == 1
        callbacks[0]()
        note = Notification.objects.get()
        assert note.user == customer
        assert note.category == Notification.PACKAGE
        assert note.link == "/packages/1"
        assert not note.is_read

    def test_failing_sink_is_logged_not_raised(self, customer, caplog, django_capture_on_commit_callbacks):
        with caplog.at_level(logging.ERROR, logger="core.notifications"):
            with django_capture_on_commit_callbacks(execute=True):
                send_notification(customer.pk, "Shipment created", "...", sink=ExplodingSink())

        assert "could not be delivered" in caplog.text
        assert not Notification.objects.exists()

    def test_default_sink(self):
        assert isinstance(load_sink(), DatabaseNotificationSink)


class TestRecordActivity:

    def test_records_actor_and_target(self, staff):
        entry = record_activity(staff, "RATES_PUBLISHED", 3, "version 3")
        assert entry.actor == staff
        assert entry.actor_email == "ops@example.com"
        assert entry.target_id == "3"

    def test_system_actor(self):
        entry = record_activity(None, "INVOICE_FAILED", "shipment-7")
        assert entry.actor is None
        assert entry.actor_email == ""

    def test_write_failure_does_not_propagate(self, staff, monkeypatch, caplog):
        def broken(**kwargs):
            raise DatabaseError("disk full")

        monkeypatch.setattr(ActivityLog.objects, "create", broken)
        with caplog.at_level(logging.WARNING, logger="core.activity"):
            assert record_activity(staff, "WALLET_ADJUST", 1) is None
        assert "Activity log write failed" in caplog.text


def test_package_unavailable_lists_sorted_ids():
    err = PackageUnavailable({9, 3, 5})
    assert err.package_ids == [3, 5, 9]
    assert "3, 5, 9" in str(err)
    assert isinstance(err, ConflictError) and isinstance(err, FreightError)


class TestDeleteFiles:

    class Storage:
        def __init__(self, *paths, fail_on=()):
            self.files = set(paths)
            self.fail_on = set(fail_on)

        def exists(self, path):
            return path in self.files

        def delete(self, path):
            if path in self.fail_on:
                raise PermissionError(f"read-only: {path}")
            self.files.discard(path)

    def test_removes_existing_and_skips_missing(self):
        storage = self.Storage("a.jpg", "b.jpg")
        assert delete_files(["a.jpg", "", "missing.jpg"], storage=storage) == ["a.jpg"]
        assert storage.files == {"b.jpg"}

    def test_failure_is_logged_and_others_continue(self, caplog):
        storage = self.Storage("a.jpg", "b.jpg", fail_on={"a.jpg"})
        with caplog.at_level(logging.WARNING, logger="core.files"):
            assert delete_files(["a.jpg", "b.jpg"], storage=storage) == ["b.jpg"]
        assert "Could not delete stored file a.jpg" in caplog.text

    def test_discard_waits_for_commit(self, django_capture_on_commit_callbacks):
        storage = self.Storage("a.jpg")
        with django_capture_on_commit_callbacks() as callbacks:
            discard_after_commit(["a.jpg"], storage=storage)
            discard_after_commit([], storage=storage)
        assert storage.files == {"a.jpg"}
        assert len(callbacks) == 1
        callbacks[0]()
        assert storage.files == set()

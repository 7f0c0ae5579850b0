from decimal import Decimal

import pytest
from django.utils import timezone

from core.exceptions import ExternalCollaboratorError
from invoicing.providers import InvoiceProvider, InvoiceResult, issue_key
from pricing.dataclasses import Box
from pricing.services.rate_table import build_rate_table, publish_rates, rate_table_store

RATES_CONFIG = {
    "categories": {
        "general": {"name": "General Furniture", "weightRate": 22, "volumeRate": 125},
        "Special Furniture A": {"name": "Special Furniture A", "weightRate": 32, "volumeRate": 184},
    },
    "constants": {
        "VOLUME_DIVISOR": 28317,
        "CBM_TO_CAI_FACTOR": "35.3",
        "MINIMUM_CHARGE": 2000,
        "OVERSIZED_LIMIT": 300,
        "OVERSIZED_FEE": 800,
        "OVERWEIGHT_LIMIT": 100,
        "OVERWEIGHT_FEE": 500,
    },
}


@pytest.fixture(autouse=True)
def _fresh_rate_table():
    rate_table_store.clear()
    yield
    rate_table_store.clear()


@pytest.fixture
def rates_config():
    return {
        "categories": {k: dict(v) for k, v in RATES_CONFIG["categories"].items()},
        "constants": dict(RATES_CONFIG["constants"]),
    }


@pytest.fixture
def rate_table(rates_config):
    return build_rate_table(rates_config, version=1)


@pytest.fixture
def published_rates(db, rates_config):
    return publish_rates(rates_config)


@pytest.fixture
def customer(django_user_model):
    return django_user_model.objects.create_user(username="alice", email="alice@example.com", password="pass")


@pytest.fixture
def other_customer(django_user_model):
    return django_user_model.objects.create_user(username="bob", email="bob@example.com", password="pass")


@pytest.fixture
def staff(django_user_model):
    return django_user_model.objects.create_user(
        username="warehouse", email="ops@example.com", password="pass", role="staff", is_staff=True
    )


def standard_box(**overrides):
    """10 kg, 50x50x50 cm, general: 5 volumetric units, fee 625 at the test rates."""
    values = dict(
        name="box",
        category_key="general",
        weight_kg=Decimal("10"),
        length_cm=Decimal("50"),
        width_cm=Decimal("50"),
        height_cm=Decimal("50"),
    )
    values.update(overrides)
    return Box(**values)


@pytest.fixture
def box_factory():
    return standard_box


@pytest.fixture
def make_arrived_package(published_rates):
    from packages.services import ledger

    counter = {"n": 0}

    def _make(owner, boxes=None, tracking=None):
        counter["n"] += 1
        package = ledger.forecast(owner, tracking or f"TRK-{counter['n']:04d}", "Sofa")
        return ledger.record_measurement(package.pk, boxes or [standard_box()])

    return _make


class RecordingInvoiceProvider(InvoiceProvider):
    name = "recording"

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.issued = []
        self.voided = []

    def issue(self, entity):
        self.issued.append(issue_key(entity))
        if self.fail_with is not None:
            raise self.fail_with
        return InvoiceResult(invoice_number=f"INV-{issue_key(entity)}", issued_at=timezone.now())

    def void(self, invoice_number, reason):
        if self.fail_with is not None:
            raise self.fail_with
        self.voided.append((invoice_number, reason))


@pytest.fixture
def invoice_provider(monkeypatch):
    provider = RecordingInvoiceProvider()
    monkeypatch.setattr("invoicing.services.trigger.load", lambda name=None: provider)
    return provider


@pytest.fixture
def failing_invoice_provider(monkeypatch):
    provider = RecordingInvoiceProvider(fail_with=ExternalCollaboratorError("gateway timeout"))
    monkeypatch.setattr("invoicing.services.trigger.load", lambda name=None: provider)
    return provider

"""
Package lifecycle: forecast -> measured (ARRIVED) -> in a shipment -> completed.

Shipment membership is changed only by the shipment aggregator, which calls
``release`` and ``complete_for_shipment`` inside its own transaction.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.activity import record_activity
from core.exceptions import DuplicateTrackingNumber, InvalidStateError, NotFoundError, ValidationError
from core.files import discard_after_commit
from core.models import Notification
from core.notifications import send_notification
from pricing.dataclasses import RateTable
from pricing.serializers import parse_boxes
from pricing.services.pricing_service import quote_package
from pricing.services.rate_table import current_rate_table

from ..models import Package, PackageBox
from ..serializers import PackageForecastSerializer

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("tracking_number", "product_name", "quantity", "note")
MAX_PHOTOS = 5


def _validated(data: dict, partial: bool = False) -> dict:
    ser = PackageForecastSerializer(data=data, partial=partial)
    if not ser.is_valid():
        raise ValidationError(f"Invalid package data: {ser.errors}")
    return ser.validated_data


def _get_locked(package_id: int, owner=None) -> Package:
    qs = Package.objects.select_for_update().filter(pk=package_id)
    if owner is not None:
        qs = qs.filter(owner=owner)
    package = qs.first()
    if package is None:
        raise NotFoundError(f"Package {package_id} not found")
    return package


def forecast(owner, tracking_number: str, product_name: str, quantity: int = 1, note: str = "",
             actor=None) -> Package:
    """Register an expected package. Staff may forecast on a customer's behalf via ``actor``."""
    data = _validated({
        "tracking_number": tracking_number,
        "product_name": product_name,
        "quantity": quantity,
        "note": note,
    })
    tracking_number = data["tracking_number"]
    if Package.objects.filter(tracking_number=tracking_number).exists():
        raise DuplicateTrackingNumber(tracking_number)

    try:
        with transaction.atomic():
            package = Package.objects.create(owner=owner, status=Package.PENDING, **data)
    except IntegrityError:
        # Lost a race with a concurrent forecast of the same number.
        raise DuplicateTrackingNumber(tracking_number)

    logger.info(f"Package {package.pk} forecast with tracking {tracking_number}")
    if actor is not None and actor.pk != owner.pk:
        record_activity(actor, "PACKAGE_FORECAST_FOR_CUSTOMER", package.pk, f"tracking {tracking_number}")
        send_notification(
            owner.pk,
            "Package registered",
            f"Staff registered package {tracking_number} on your account.",
            Notification.PACKAGE,
            link=f"/packages/{package.pk}",
        )
    return package


def record_measurement(package_id: int, boxes: Sequence, actor=None,
                       rate_table: Optional[RateTable] = None) -> Package:
    """
    Replace a package's boxes with fresh measurements and re-price it.

    The first measurement of a PENDING package marks it ARRIVED. Packages in a
    shipment (or completed) cannot be re-measured.
    """
    parsed = parse_boxes(boxes)
    if not parsed:
        raise ValidationError("At least one box is required to record a measurement")
    table = rate_table or current_rate_table()
    quote = quote_package(parsed, table)

    with transaction.atomic():
        package = _get_locked(package_id)
        if package.status in (Package.IN_SHIPMENT, Package.COMPLETED):
            raise InvalidStateError(
                f"Package {package.tracking_number} is {package.status}; remove it from its shipment before re-measuring"
            )

        package.boxes.all().delete()
        PackageBox.objects.bulk_create([
            PackageBox(
                package=package,
                position=i,
                name=q.box.name,
                category_key=q.box.category_key,
                weight_kg=q.box.weight_kg,
                length_cm=q.box.length_cm,
                width_cm=q.box.width_cm,
                height_cm=q.box.height_cm,
                cbm=q.box.cbm,
                volumetric_units=q.volumetric_units,
                fee=q.billed_fee,
                is_oversized=q.is_oversized,
                is_overweight=q.is_overweight,
            )
            for i, q in enumerate(quote.box_quotes)
        ])

        arrived_now = package.status == Package.PENDING
        package.computed_fee = quote.computed_fee
        package.rate_table_version = table.version
        package.measured_at = timezone.now()
        if arrived_now:
            package.status = Package.ARRIVED
        package.save(update_fields=["computed_fee", "rate_table_version", "measured_at", "status", "updated_at"])

        record_activity(
            actor,
            "PACKAGE_MEASURED",
            package.pk,
            f"{len(parsed)} boxes, fee {quote.computed_fee}, rates v{table.version}",
        )
        if arrived_now:
            send_notification(
                package.owner_id,
                "Package arrived",
                f"Package {package.tracking_number} arrived at the warehouse. Freight: {quote.computed_fee}.",
                Notification.PACKAGE,
                link=f"/packages/{package.pk}",
            )

    logger.info(
        f"Package {package.pk} measured: {len(parsed)} boxes, fee {package.computed_fee}"
        + (" (arrived)" if arrived_now else "")
    )
    return package


def edit(package_id: int, owner, **fields) -> Package:
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    data = _validated(fields, partial=True)

    with transaction.atomic():
        package = _get_locked(package_id, owner=owner)
        if package.status != Package.PENDING:
            raise InvalidStateError(
                f"Package {package.tracking_number} is {package.status}; only pending packages can be edited"
            )
        new_tracking = data.get("tracking_number")
        if new_tracking and new_tracking != package.tracking_number:
            if Package.objects.filter(tracking_number=new_tracking).exclude(pk=package.pk).exists():
                raise DuplicateTrackingNumber(new_tracking)
        for name, value in data.items():
            setattr(package, name, value)
        try:
            with transaction.atomic():
                package.save()
        except IntegrityError:
            raise DuplicateTrackingNumber(new_tracking or package.tracking_number)
    return package


def update_photos(package_id: int, keep: Sequence[str], new_paths: Sequence[str] = (), actor=None) -> Package:
    """
    Set a package's warehouse photos to the kept subset of its current ones
    plus ``new_paths``, capped at ``MAX_PHOTOS``.

    Photos dropped from the package (unkept, or new ones beyond the cap) are
    deleted from storage after the transaction commits.
    """
    keep = set(keep or ())
    new_paths = [p for p in (new_paths or ()) if p]
    with transaction.atomic():
        package = _get_locked(package_id)
        current = list(package.photos or [])
        kept = [p for p in current if p in keep]
        final = (kept + [p for p in new_paths if p not in kept])[:MAX_PHOTOS]
        dropped = list(dict.fromkeys(p for p in current + new_paths if p not in final))

        package.photos = final
        package.save(update_fields=["photos", "updated_at"])
        record_activity(actor, "PACKAGE_PHOTOS", package.pk, f"{len(final)} photos, {len(dropped)} removed")
        discard_after_commit(dropped)

    if len(kept) + len(new_paths) > MAX_PHOTOS:
        logger.info(f"Package {package.pk}: photos capped at {MAX_PHOTOS}")
    return package


def delete(package_id: int, owner) -> None:
    with transaction.atomic():
        package = _get_locked(package_id, owner=owner)
        if package.status != Package.PENDING:
            raise InvalidStateError(
                f"Package {package.tracking_number} is {package.status}; only pending packages can be deleted"
            )
        discard_after_commit(package.photos or [])
        package.delete()
    logger.info(f"Package {package_id} deleted by owner {owner.pk}")


def release(package: Package) -> Package:
    """Return a package from a cancelled shipment to the warehouse. Call inside the caller's transaction."""
    if package.status != Package.IN_SHIPMENT or package.shipment_id is None:
        raise InvalidStateError(
            f"Package {package.tracking_number} is {package.status}, not in a shipment; cannot release"
        )
    package.status = Package.ARRIVED
    package.shipment = None
    package.save(update_fields=["status", "shipment", "updated_at"])
    return package


def complete_for_shipment(shipment) -> int:
    return Package.objects.filter(shipment=shipment, status=Package.IN_SHIPMENT).update(
        status=Package.COMPLETED, updated_at=timezone.now()
    )


def list_for_owner(owner, status: Optional[str] = None) -> List[Package]:
    qs = Package.objects.filter(owner=owner).prefetch_related("boxes")
    if status:
        qs = qs.filter(status=status)
    return list(qs)

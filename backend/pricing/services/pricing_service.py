"""
Box and shipment pricing.

Every function here is pure: the same boxes and the same ``RateTable``
snapshot always produce the same quote. Callers resolve the snapshot once
(``rate_table.current_rate_table()``) and pass it in, so a rate publish in
the middle of a calculation can never mix two versions.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Sequence, Tuple

from core.exceptions import ValidationError

from ..dataclasses import Box, BoxQuote, Constants, PackageQuote, RateCategory, RateTable, ShipmentQuote
from .utils import (
    TWOPLACES,
    ZERO,
    d,
    d_or_none,
    is_positive,
    round_up_one_place,
    round_up_to_next_whole,
    to_minor_units,
)

logger = logging.getLogger(__name__)

_EMPTY_CATEGORY = RateCategory(key="", display_name="(unconfigured)", weight_rate=ZERO, volume_rate=ZERO)


def resolve_category(rate_table: RateTable, key: Optional[str]) -> Tuple[RateCategory, bool]:
    """
    Look up a category by its exact key.

    Returns ``(category, fell_back)``. An unknown or case-mismatched key falls
    back to the table's default category and is logged, unless the table is
    strict, in which case it is rejected.
    """
    default_key = rate_table.default_category_key
    if key and key in rate_table.categories:
        return rate_table.categories[key], False

    if key:
        if rate_table.strict_categories:
            known = ", ".join(sorted(rate_table.categories))
            raise ValidationError(f"Unknown rate category '{key}' (known: {known})")
        logger.warning(
            f"Unknown rate category '{key}', falling back to '{default_key}' "
            f"(rate table v{rate_table.version})"
        )

    category = rate_table.categories.get(default_key)
    if category is None:
        logger.warning(f"Default rate category '{default_key}' is not configured; pricing at zero")
        category = _EMPTY_CATEGORY
    return category, bool(key)


def _coerce_box(box: Box) -> Box:
    try:
        box = Box(
            name=box.name or "",
            category_key=(box.category_key or "").strip(),
            weight_kg=d_or_none(box.weight_kg),
            length_cm=d_or_none(box.length_cm),
            width_cm=d_or_none(box.width_cm),
            height_cm=d_or_none(box.height_cm),
            cbm=d_or_none(box.cbm),
        )
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Box '{box.name}' has non-numeric measurements")
    values = (box.weight_kg, box.length_cm, box.width_cm, box.height_cm, box.cbm)
    if any(x is not None and not x.is_finite() for x in values):
        raise ValidationError(f"Box '{box.name}' has a NaN or infinite measurement")
    return box


def volumetric_units(box: Box, constants: Constants) -> int:
    """Billable volume units, always rounded up. Zero when the box has no usable volume."""
    dims = (box.length_cm, box.width_cm, box.height_cm)
    if all(is_positive(x) for x in dims):
        volume = box.length_cm * box.width_cm * box.height_cm
        return int(round_up_to_next_whole(volume / constants.volume_divisor))
    if is_positive(box.cbm):
        return int(round_up_to_next_whole(box.cbm * constants.cbm_to_volumetric_factor))
    return 0


def price_box(box: Box, category: RateCategory, constants: Constants) -> BoxQuote:
    """
    Price one box: the higher of volume cost and weight cost.

    A box missing its weight or a usable volume is treated as not yet
    measured and costs nothing.
    """
    box = _coerce_box(box)

    oversized = any(
        x is not None and x >= constants.oversized_limit_cm
        for x in (box.length_cm, box.width_cm, box.height_cm)
    )
    overweight = box.weight_kg is not None and box.weight_kg >= constants.overweight_limit_kg

    units = volumetric_units(box, constants)
    if not is_positive(box.weight_kg) or units == 0:
        return BoxQuote(
            box=box,
            category_key=category.key,
            volumetric_units=0,
            volume_cost=ZERO,
            weight_billed=ZERO,
            weight_cost=ZERO,
            fee=ZERO,
            billed_fee=0,
            is_oversized=oversized,
            is_overweight=overweight,
            measured=False,
        )

    weight_billed = round_up_one_place(box.weight_kg)
    volume_cost = Decimal(units) * category.volume_rate
    weight_cost = weight_billed * category.weight_rate
    fee = max(volume_cost, weight_cost)
    return BoxQuote(
        box=box,
        category_key=category.key,
        volumetric_units=units,
        volume_cost=volume_cost,
        weight_billed=weight_billed,
        weight_cost=weight_cost,
        fee=fee,
        billed_fee=to_minor_units(fee),
        is_oversized=oversized,
        is_overweight=overweight,
    )


def quote_boxes(boxes: Iterable[Box], rate_table: RateTable) -> Tuple[BoxQuote, ...]:
    quotes = []
    for box in boxes:
        category, fell_back = resolve_category(rate_table, (box.category_key or "").strip())
        quote = price_box(box, category, rate_table.constants)
        if fell_back:
            quote = replace(quote, category_fallback=True)
        quotes.append(quote)
    return tuple(quotes)


def quote_package(boxes: Sequence[Box], rate_table: RateTable) -> PackageQuote:
    """Per-package fee: the sum of each box's billed fee."""
    box_quotes = quote_boxes(boxes, rate_table)
    return PackageQuote(
        computed_fee=sum(q.billed_fee for q in box_quotes),
        box_quotes=box_quotes,
    )


def price_shipment(boxes: Sequence[Box], rate_table: RateTable, remote_area_rate=ZERO,
                   package_fees: Optional[Sequence[int]] = None) -> ShipmentQuote:
    """
    Price a consolidated shipment.

    The base fee is the sum of billed box fees, or of ``package_fees`` when
    the packages were already priced at measurement time. It is floored to
    the minimum charge only when positive. Oversized and overweight
    surcharges are applied once per shipment. The remote-area fee scales
    with total volume.
    """
    try:
        rate = d(remote_area_rate if remote_area_rate is not None else ZERO)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Remote area rate must be a number, got {remote_area_rate!r}")
    if rate < ZERO:
        raise ValidationError(f"Remote area rate cannot be negative, got {rate}")

    constants = rate_table.constants
    box_quotes = quote_boxes(boxes, rate_table)

    if package_fees is None:
        base_raw = sum(q.billed_fee for q in box_quotes)
    else:
        base_raw = sum(int(fee) for fee in package_fees)
    minimum = to_minor_units(constants.minimum_charge)
    minimum_applied = 0 < base_raw < minimum
    base_fee = minimum if minimum_applied else base_raw

    oversized_fee = to_minor_units(constants.oversized_fee) if any(q.is_oversized for q in box_quotes) else 0
    overweight_fee = to_minor_units(constants.overweight_fee) if any(q.is_overweight for q in box_quotes) else 0

    total_units = sum(q.volumetric_units for q in box_quotes)
    total_cbm = (Decimal(total_units) / constants.cbm_to_volumetric_factor).quantize(TWOPLACES)
    remote_area_fee = to_minor_units(Decimal(total_units) / constants.cbm_to_volumetric_factor * rate)

    return ShipmentQuote(
        base_fee_raw=base_raw,
        base_fee=base_fee,
        minimum_charge_applied=minimum_applied,
        oversized_fee=oversized_fee,
        overweight_fee=overweight_fee,
        total_volumetric_units=total_units,
        total_cbm=total_cbm,
        remote_area_rate=rate,
        remote_area_fee=remote_area_fee,
        total_fee=base_fee + oversized_fee + overweight_fee + remote_area_fee,
        rate_table_version=rate_table.version,
        box_quotes=box_quotes,
    )

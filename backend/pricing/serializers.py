from __future__ import annotations

from decimal import Decimal
from typing import List

from rest_framework import serializers

from core.exceptions import ValidationError

from .dataclasses import Box


class RateCategorySerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    weightRate = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0)
    volumeRate = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=0)


class RateConstantsSerializer(serializers.Serializer):
    VOLUME_DIVISOR = serializers.DecimalField(max_digits=12, decimal_places=4, min_value=1, default=Decimal("28317"))
    CBM_TO_CAI_FACTOR = serializers.DecimalField(max_digits=8, decimal_places=4, min_value=Decimal("0.0001"), default=Decimal("35.3"))
    MINIMUM_CHARGE = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    OVERSIZED_LIMIT = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, default=Decimal("300"))
    OVERSIZED_FEE = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=Decimal("0"))
    OVERWEIGHT_LIMIT = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, default=Decimal("100"))
    OVERWEIGHT_FEE = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=Decimal("0"))


class RateConfigSerializer(serializers.Serializer):
    """Shape of the ``rates_config`` system setting."""
    categories = serializers.DictField(child=RateCategorySerializer())
    constants = RateConstantsSerializer()

    def validate_categories(self, value):
        if not value:
            raise serializers.ValidationError("At least one rate category is required.")
        return value


class BoxSerializer(serializers.Serializer):
    # Measurements are optional: a partially measured box is priced at zero.
    name = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    category = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
    weight_kg = serializers.DecimalField(max_digits=10, decimal_places=3, required=False, allow_null=True)
    length_cm = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    width_cm = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    height_cm = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    cbm = serializers.DecimalField(max_digits=10, decimal_places=4, required=False, allow_null=True)


def _as_payload(box) -> dict:
    if not isinstance(box, Box):
        return box
    return {
        "name": box.name,
        "category": box.category_key,
        "weight_kg": box.weight_kg,
        "length_cm": box.length_cm,
        "width_cm": box.width_cm,
        "height_cm": box.height_cm,
        "cbm": box.cbm,
    }


def parse_boxes(data) -> List[Box]:
    """
    Validate box payloads (dicts or ``Box`` values) into ``Box`` values,
    raising the engine's ValidationError.

    ``Box`` values go through the same field rules as raw payloads, so a box
    that is priced always fits the columns it is stored in.
    """
    if isinstance(data, (list, tuple)):
        data = [_as_payload(b) for b in data]
    ser = BoxSerializer(data=data, many=True)
    if not ser.is_valid():
        raise ValidationError(f"Invalid box measurements: {ser.errors}")
    return [
        Box(
            name=row["name"],
            category_key=row["category"].strip(),
            weight_kg=row.get("weight_kg"),
            length_cm=row.get("length_cm"),
            width_cm=row.get("width_cm"),
            height_cm=row.get("height_cm"),
            cbm=row.get("cbm"),
        )
        for row in ser.validated_data
    ]


def validate_rate_config(config) -> dict:
    ser = RateConfigSerializer(data=config)
    if not ser.is_valid():
        raise ValidationError(f"Invalid rate configuration: {ser.errors}")
    return ser.validated_data

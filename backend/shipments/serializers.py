from decimal import Decimal

from rest_framework import serializers


class RecipientSerializer(serializers.Serializer):
    recipient_name = serializers.CharField(max_length=100)
    phone = serializers.CharField(max_length=32)
    shipping_address = serializers.CharField()
    note = serializers.CharField(required=False, allow_blank=True, default="")


class ShipmentRequestSerializer(serializers.Serializer):
    package_ids = serializers.ListField(child=serializers.IntegerField(min_value=1), allow_empty=False)
    remote_area_rate = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default=Decimal("0"))

from rest_framework import serializers


class PackageForecastSerializer(serializers.Serializer):
    tracking_number = serializers.CharField(max_length=64, trim_whitespace=True)
    product_name = serializers.CharField(max_length=200, trim_whitespace=True)
    quantity = serializers.IntegerField(min_value=1, default=1)
    note = serializers.CharField(required=False, allow_blank=True, default="")

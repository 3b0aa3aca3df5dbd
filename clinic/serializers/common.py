from rest_framework import serializers


def money_field(**kwargs):
    """Decimal input without a fixed precision; services round to cents."""
    return serializers.DecimalField(max_digits=None, decimal_places=None, **kwargs)


class PageQuerySerializer(serializers.Serializer):
    page = serializers.IntegerField(min_value=1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)


class WarehouseRefSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)


class RefSerializer(serializers.Serializer):
    """A nested ``{"id": ...}`` reference as sent by the front end."""
    id = serializers.CharField(max_length=64)

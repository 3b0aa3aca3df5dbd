from rest_framework import serializers

from clinic.models import StockTracking
from clinic.serializers.common import PageQuerySerializer, money_field

ACTIONS = [a for a, _ in StockTracking.ACTION_CHOICES]


class ProductCreateSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255)
    barcode = serializers.CharField(max_length=64, required=False, allow_blank=True)
    unit = serializers.CharField(max_length=32, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=0, required=False)
    costPrice = money_field(required=False, min_value=0)
    retailPrice = money_field(required=False, min_value=0)
    wholesalePrice = money_field(required=False, min_value=0)


class RestockSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    productId = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class PriceUpdateSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    productId = serializers.CharField(max_length=64)
    retailPrice = money_field(required=False, allow_null=True, min_value=0)
    wholesalePrice = money_field(required=False, allow_null=True, min_value=0)
    costPrice = money_field(required=False, allow_null=True, min_value=0)


class StockTrackingQuerySerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    productId = serializers.CharField(max_length=64)


class DrugTrackingQuerySerializer(PageQuerySerializer):
    warehouseId = serializers.CharField(max_length=64)
    action = serializers.ChoiceField(choices=ACTIONS, required=False)


class DrugTrackingEntrySerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    productId = serializers.CharField(max_length=64)
    action = serializers.ChoiceField(choices=ACTIONS)
    quantity = serializers.IntegerField()
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    patientId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)

    def validate(self, attrs):
        # only count corrections may carry a sign
        if attrs['action'] == StockTracking.ACTION_ADJUSTED:
            if attrs['quantity'] == 0:
                raise serializers.ValidationError({'quantity': 'Quantity cannot be zero'})
        elif attrs['quantity'] <= 0:
            raise serializers.ValidationError({'quantity': 'Quantity must be positive'})
        return attrs

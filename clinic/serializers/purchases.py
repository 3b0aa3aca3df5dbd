from rest_framework import serializers

from clinic.serializers.common import money_field


class SupplierSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    companyName = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)


class PurchaseItemSerializer(serializers.Serializer):
    productId = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(min_value=1)
    cost = money_field(required=False, allow_null=True, min_value=0)


class PurchaseCreateSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    referenceNo = serializers.CharField(max_length=64, required=False, allow_blank=True)
    supplierId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    supplier = SupplierSerializer(required=False, allow_null=True)
    items = PurchaseItemSerializer(many=True, allow_empty=False)
    taxRate = money_field(required=False, allow_null=True, min_value=0)
    paidAmount = money_field(required=False, allow_null=True, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True)


class PurchaseUpdateSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True)
    paidAmount = money_field(required=False, min_value=0)
    balance = money_field(required=False, min_value=0)


class PurchaseCancelSerializer(serializers.Serializer):
    userId = serializers.CharField(max_length=64)

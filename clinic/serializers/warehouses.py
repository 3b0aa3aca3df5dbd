from rest_framework import serializers


class WarehouseFormSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=50)
    name = serializers.CharField(max_length=255)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)


class WarehouseLookupSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=64)


class ProductLookupSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    productId = serializers.CharField(max_length=64)

from rest_framework import serializers

from clinic.serializers.common import money_field
from clinic.serializers.consultations import MedicineSerializer, PaymentSerializer


class QuotationCreateSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    quotationNo = serializers.CharField(max_length=64, required=False, allow_blank=True)
    items = MedicineSerializer(many=True, allow_empty=False)
    taxRate = money_field(required=False, allow_null=True, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True)
    studentId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    doctorId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)


class QuotationConvertSerializer(serializers.Serializer):
    quotationNo = serializers.CharField(max_length=64)
    invoiceNo = serializers.CharField(max_length=64, required=False, allow_blank=True)
    amountPaid = money_field(required=False, allow_null=True, min_value=0)
    paymentMethods = PaymentSerializer(many=True, required=False)
    useStudentBalance = serializers.BooleanField(required=False, default=True)
    doctorId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)

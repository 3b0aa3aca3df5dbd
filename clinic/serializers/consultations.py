from rest_framework import serializers

from clinic.serializers.common import PageQuerySerializer, RefSerializer, money_field


class MedicineSerializer(serializers.Serializer):
    productId = serializers.CharField(max_length=64, required=False)
    id = serializers.CharField(max_length=64, required=False)
    quantity = serializers.IntegerField(min_value=1)
    price = money_field(required=False, allow_null=True, min_value=0)
    selectedPrice = money_field(required=False, allow_null=True, min_value=0)
    priceType = serializers.ChoiceField(choices=['retail', 'wholesale'], required=False)
    discount = money_field(required=False, allow_null=True, min_value=0)
    total = money_field(required=False, allow_null=True, min_value=0)
    dosage = serializers.CharField(max_length=255, required=False, allow_blank=True)
    frequency = serializers.CharField(max_length=255, required=False, allow_blank=True)
    duration = serializers.CharField(max_length=255, required=False, allow_blank=True)
    instructions = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        product_id = attrs.get('productId') or attrs.get('id')
        if not product_id:
            raise serializers.ValidationError('productId is required')
        attrs['productId'] = product_id
        if attrs.get('price') is None and attrs.get('selectedPrice') is not None:
            attrs['price'] = attrs['selectedPrice']
        return attrs


class PaymentSerializer(serializers.Serializer):
    method = serializers.CharField(max_length=32)
    amount = money_field(min_value=0)


class ConsultationCreateSerializer(serializers.Serializer):
    medicines = MedicineSerializer(many=True, allow_empty=False)
    consultationNo = serializers.CharField(max_length=64, required=False, allow_blank=True)
    subtotal = money_field(required=False, allow_null=True, min_value=0)
    taxRate = money_field(required=False, allow_null=True, min_value=0)
    grandTotal = money_field(required=False, allow_null=True, min_value=0)
    paymentMethods = PaymentSerializer(many=True, required=False)
    balance = money_field(required=False, allow_null=True, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True)
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    symptoms = serializers.CharField(required=False, allow_blank=True)
    treatment = serializers.CharField(required=False, allow_blank=True)
    consultantNotes = serializers.CharField(required=False, allow_blank=True)
    warehouseId = serializers.CharField(max_length=64, required=False)
    student = RefSerializer(required=False, allow_null=True)
    studentId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    doctor = RefSerializer(required=False, allow_null=True)
    doctorId = serializers.CharField(max_length=64, required=False)

    def validate(self, attrs):
        doctor = attrs.pop('doctor', None) or {}
        attrs['doctorId'] = doctor.get('id') or attrs.get('doctorId')
        if not attrs['doctorId']:
            raise serializers.ValidationError({'doctor': 'doctor.id is required'})
        student = attrs.pop('student', None) or {}
        attrs['studentId'] = student.get('id') or attrs.get('studentId')
        return attrs


class SaleCreateSerializer(serializers.Serializer):
    """Legacy point-of-sale payload; mapped onto a consultation."""
    items = MedicineSerializer(many=True, allow_empty=False)
    invoiceNo = serializers.CharField(max_length=64, required=False, allow_blank=True)
    subtotal = money_field(required=False, allow_null=True, min_value=0)
    taxRate = money_field(required=False, allow_null=True, min_value=0)
    grandTotal = money_field(required=False, allow_null=True, min_value=0)
    paymentMethods = PaymentSerializer(many=True, required=False)
    balance = money_field(required=False, allow_null=True, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True)
    warehouseId = serializers.CharField(max_length=64, required=False)
    customer = RefSerializer(required=False, allow_null=True)
    cashier = RefSerializer(required=False, allow_null=True)

    def to_consultation_payload(self, fallback_doctor_id=None) -> dict:
        v = self.validated_data
        return {
            'medicines': v['items'],
            'consultationNo': v.get('invoiceNo'),
            'subtotal': v.get('subtotal'),
            'taxRate': v.get('taxRate'),
            'grandTotal': v.get('grandTotal'),
            'paymentMethods': v.get('paymentMethods'),
            'balance': v.get('balance'),
            'notes': v.get('notes'),
            'warehouseId': v.get('warehouseId'),
            'studentId': (v.get('customer') or {}).get('id'),
            'doctorId': (v.get('cashier') or {}).get('id') or fallback_doctor_id,
        }


class ConsultationQuerySerializer(PageQuerySerializer):
    warehouseId = serializers.CharField(max_length=64, required=False)
    studentId = serializers.CharField(max_length=64, required=False)


class ConsultationCancelSerializer(serializers.Serializer):
    consultationId = serializers.CharField(max_length=64)
    userId = serializers.CharField(max_length=64)


class ConsultationUpdateSerializer(serializers.Serializer):
    diagnosis = serializers.CharField(required=False, allow_blank=True)
    symptoms = serializers.CharField(required=False, allow_blank=True)
    treatment = serializers.CharField(required=False, allow_blank=True)
    consultantNotes = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True)

from rest_framework import serializers

from clinic.services.common import clean_text


class StudentSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    matricNumber = serializers.CharField(max_length=64)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    address = serializers.CharField(required=False, allow_blank=True)
    bloodGroup = serializers.CharField(max_length=8, required=False, allow_blank=True)
    genotype = serializers.CharField(max_length=8, required=False, allow_blank=True)
    allergies = serializers.CharField(required=False, allow_blank=True)
    emergencyContact = serializers.CharField(max_length=255, required=False, allow_blank=True)
    emergencyPhone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    department = serializers.CharField(max_length=255, required=False, allow_blank=True)
    level = serializers.CharField(max_length=32, required=False, allow_blank=True)
    dateOfBirth = serializers.DateField(required=False, allow_null=True)
    medicalHistory = serializers.CharField(required=False, allow_blank=True)
    studentType = serializers.CharField(max_length=32, required=False)
    warehouseId = serializers.CharField(max_length=64, required=False)

    def validate_name(self, v):
        v = clean_text(v)
        if len(v) < 2:
            raise serializers.ValidationError('Name must be at least 2 characters')
        return v

    def validate_matricNumber(self, v):
        v = clean_text(v)
        if not v:
            raise serializers.ValidationError('Matric number is required')
        return v


class BalanceUpdateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=None, decimal_places=None)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    saleId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    warehouseId = serializers.CharField(max_length=64, required=False, allow_blank=True)
    type = serializers.ChoiceField(choices=['DEBIT', 'CREDIT'], required=False)

from rest_framework import serializers

MONTHLY_TYPES = ['all', 'inventory', 'sales']
EXPORT_TYPES = ['inventory', 'sales', 'monthly']
CLINIC_EXPORT_TYPES = ['consultations', 'medicines', 'students', 'drug_tracking', 'security_audit']
EXPORT_FORMATS = ['xlsx', 'csv']


class MonthlyReportSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    month = serializers.IntegerField(min_value=1, max_value=12)
    year = serializers.IntegerField(min_value=2000, max_value=2100)
    reportType = serializers.ChoiceField(choices=MONTHLY_TYPES, required=False)


class ExportSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    reportType = serializers.CharField(max_length=32)
    month = serializers.IntegerField(min_value=1, max_value=12, required=False, allow_null=True)
    year = serializers.IntegerField(min_value=2000, max_value=2100, required=False, allow_null=True)


class ClinicExportSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    type = serializers.ChoiceField(choices=CLINIC_EXPORT_TYPES)
    dateFrom = serializers.DateField(required=False, allow_null=True)
    dateTo = serializers.DateField(required=False, allow_null=True)
    format = serializers.ChoiceField(choices=EXPORT_FORMATS, required=False, default='xlsx')

    def validate(self, attrs):
        if attrs.get('dateFrom') and attrs.get('dateTo') and attrs['dateFrom'] > attrs['dateTo']:
            raise serializers.ValidationError({'dateFrom': 'dateFrom must not be after dateTo'})
        return attrs

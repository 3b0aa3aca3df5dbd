from rest_framework import serializers

from clinic.models import SuspiciousActivity
from clinic.serializers.common import PageQuerySerializer

SEVERITIES = [s for s, _ in SuspiciousActivity.SEVERITY_CHOICES]


class AntiTheftQuerySerializer(PageQuerySerializer):
    warehouseId = serializers.CharField(max_length=64)
    severity = serializers.ChoiceField(choices=SEVERITIES, required=False)


class ActivityCreateSerializer(serializers.Serializer):
    warehouseId = serializers.CharField(max_length=64)
    activityType = serializers.CharField(max_length=64)
    description = serializers.CharField(required=False, allow_blank=True)
    severity = serializers.ChoiceField(choices=SEVERITIES, required=False)
    staffId = serializers.IntegerField(required=False, allow_null=True)
    productId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)


class ActivityResolveSerializer(serializers.Serializer):
    activityId = serializers.CharField(max_length=64)
    resolution = serializers.CharField()
    resolvedBy = serializers.IntegerField(required=False, allow_null=True)

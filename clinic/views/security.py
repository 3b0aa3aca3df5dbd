"""
Anti-theft monitoring: suspicious activity listing, manual flags and
resolution.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.models import SuspiciousActivity
from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.security import (
    ActivityCreateSerializer,
    ActivityResolveSerializer,
    AntiTheftQuerySerializer,
)
from clinic.services.common import resolve_warehouse
from clinic.services.inventory import find_product
from clinic.services.security import anti_theft_report, format_activity, record_activity, resolve_activity
from clinic.services.users import get_user


@api_view(['GET', 'POST', 'PUT'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def anti_theft(request):
    if request.method == 'GET':
        q = AntiTheftQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        v = q.validated_data
        warehouse = resolve_warehouse(v['warehouseId'])
        ensure_warehouse_access(request.user, warehouse)
        report = anti_theft_report(warehouse, severity=v.get('severity'),
                                   page=v.get('page') or 1, limit=v.get('limit') or 20)
        return Response({'ok': True, 'data': report})

    if request.method == 'POST':
        s = ActivityCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        v = s.validated_data
        warehouse = resolve_warehouse(v['warehouseId'])
        ensure_warehouse_access(request.user, warehouse)
        activity = record_activity(
            warehouse=warehouse,
            activity_type=v['activityType'],
            description=v.get('description', ''),
            severity=v.get('severity') or SuspiciousActivity.SEVERITY_MEDIUM,
            staff=get_user(v['staffId']) if v.get('staffId') else None,
            product=find_product(warehouse, v['productId']) if v.get('productId') else None,
        )
        return Response({'ok': True, 'data': format_activity(activity)}, status=status.HTTP_201_CREATED)

    s = ActivityResolveSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    resolver = get_user(v['resolvedBy']) if v.get('resolvedBy') else request.user
    activity = resolve_activity(v['activityId'], resolution=v['resolution'], resolved_by=resolver,
                                user=request.user)
    return Response({'ok': True, 'data': format_activity(activity)})

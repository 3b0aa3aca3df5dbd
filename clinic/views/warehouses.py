"""
Warehouse (clinic) endpoints: CRUD, per-clinic overview and dashboards.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import bad_request
from clinic.permissions import IsClinicStaff, IsSuperAdmin, ensure_warehouse_access
from clinic.serializers.common import WarehouseRefSerializer
from clinic.serializers.warehouses import (
    ProductLookupSerializer,
    WarehouseFormSerializer,
    WarehouseLookupSerializer,
)
from clinic.services import reports
from clinic.services.common import json_body, resolve_warehouse
from clinic.services.inventory import find_product
from clinic.services.warehouses import (
    create_warehouse,
    format_warehouse,
    list_warehouses,
    update_warehouse,
    warehouse_overview,
)


@api_view(['GET', 'POST', 'PUT'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def warehouse_collection(request):
    if request.method == 'GET':
        return Response({'ok': True, 'data': [format_warehouse(w) for w in list_warehouses(request.user)]})
    if not request.user.is_super_admin:
        raise PermissionDenied('Only super administrators can manage warehouses')
    body = json_body(request.data)
    form = body.get('formData', body)
    if request.method == 'POST':
        s = WarehouseFormSerializer(data=form)
        s.is_valid(raise_exception=True)
        w = create_warehouse(s.validated_data)
        return Response({'ok': True, 'data': format_warehouse(w)}, status=status.HTTP_201_CREATED)
    code = body.get('warehouseCode')
    if not code:
        raise bad_request('warehouseCode is required', code='missing_warehouse')
    s = WarehouseFormSerializer(data=form, partial=True)
    s.is_valid(raise_exception=True)
    w = update_warehouse(code, s.validated_data)
    return Response({'ok': True, 'data': format_warehouse(w)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def warehouse_detail(request):
    s = WarehouseLookupSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    w = resolve_warehouse(s.validated_data['id'])
    ensure_warehouse_access(request.user, w)
    return Response({'ok': True, 'data': warehouse_overview(w)})


def _dashboard(request):
    s = WarehouseRefSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    w = resolve_warehouse(s.validated_data['warehouseId'])
    ensure_warehouse_access(request.user, w)
    return Response({'ok': True, 'data': reports.warehouse_dashboard(w)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def warehouse_dashboard(request):
    return _dashboard(request)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def warehouse_dashboard_super(request):
    return _dashboard(request)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def warehouse_product_detail(request):
    s = ProductLookupSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    w = resolve_warehouse(s.validated_data['warehouseId'])
    ensure_warehouse_access(request.user, w)
    product = find_product(w, s.validated_data['productId'])
    return Response({'ok': True, 'data': reports.product_analytics(w, product)})

"""
Supplier purchase endpoints.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.purchases import PurchaseCancelSerializer, PurchaseCreateSerializer, PurchaseUpdateSerializer
from clinic.services import purchases
from clinic.services.common import resolve_warehouse
from clinic.services.users import get_user


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def purchase_collection(request):
    if request.method == 'GET':
        warehouse_id = request.query_params.get('warehouseId')
        warehouse = resolve_warehouse(warehouse_id) if warehouse_id else None
        rows = purchases.list_purchases(request.user, warehouse)
        return Response({'ok': True, 'data': [purchases.format_purchase(p) for p in rows]})
    s = PurchaseCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(s.validated_data['warehouseId'])
    purchase = purchases.create_purchase(request.user, warehouse, s.validated_data,
                                         ip_address=request.client_ip, user_agent=request.client_agent)
    purchase = purchases.get_purchase(purchase.reference_no)
    return Response({'ok': True, 'data': purchases.format_purchase(purchase)}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def purchase_detail(request, reference_no: str):
    purchase = purchases.get_purchase(reference_no)
    ensure_warehouse_access(request.user, purchase.warehouse)
    if request.method == 'GET':
        return Response({'ok': True, 'data': purchases.format_purchase(purchase)})
    if request.method == 'PUT':
        s = PurchaseUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        purchase = purchases.update_purchase(request.user, purchase, s.validated_data)
        return Response({'ok': True, 'data': purchases.format_purchase(purchase)})
    s = PurchaseCancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    purchases.cancel_purchase(request.user, purchase, cancelled_by=get_user(s.validated_data['userId']),
                              ip_address=request.client_ip, user_agent=request.client_agent)
    return Response({'ok': True, 'message': f'Purchase {reference_no} cancelled'})

"""
Medicine inventory and drug-tracking ledger endpoints.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.inventory import (
    DrugTrackingEntrySerializer,
    DrugTrackingQuerySerializer,
    PriceUpdateSerializer,
    ProductCreateSerializer,
    RestockSerializer,
    StockTrackingQuerySerializer,
)
from clinic.services import inventory
from clinic.services.common import resolve_warehouse


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def product_collection(request):
    if request.method == 'GET':
        warehouse_id = request.query_params.get('warehouseId')
        warehouse = resolve_warehouse(warehouse_id) if warehouse_id else None
        rows = inventory.list_products(request.user, warehouse)
        return Response({'ok': True, 'data': [inventory.format_product(p) for p in rows]})
    s = ProductCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(s.validated_data['warehouseId'])
    product = inventory.create_product(request.user, warehouse, s.validated_data,
                                       ip_address=request.client_ip, user_agent=request.client_agent)
    product.refresh_from_db()
    return Response({'ok': True, 'data': inventory.format_product(product)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def product_restock(request):
    s = RestockSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    warehouse = resolve_warehouse(v['warehouseId'])
    movement = inventory.restock(request.user, warehouse, v['productId'], v['quantity'], v.get('reason', ''),
                                 ip_address=request.client_ip, user_agent=request.client_agent)
    return Response({'ok': True, 'data': inventory.format_movement(movement)}, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def product_stock_tracking(request):
    q = StockTrackingQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(q.validated_data['warehouseId'])
    ensure_warehouse_access(request.user, warehouse)
    product = inventory.find_product(warehouse, q.validated_data['productId'])
    return Response({'ok': True, 'data': inventory.stock_history(product)})


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def update_product_prices(request):
    s = PriceUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    warehouse = resolve_warehouse(v['warehouseId'])
    product = inventory.update_prices(
        request.user, warehouse, v['productId'],
        retail_price=v.get('retailPrice'),
        wholesale_price=v.get('wholesalePrice'),
        cost_price=v.get('costPrice'),
    )
    return Response({'ok': True, 'data': inventory.format_product(product)})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def drug_tracking(request):
    if request.method == 'GET':
        q = DrugTrackingQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        v = q.validated_data
        warehouse = resolve_warehouse(v['warehouseId'])
        ensure_warehouse_access(request.user, warehouse)
        report = inventory.drug_tracking_report(
            warehouse, action=v.get('action'), page=v.get('page') or 1, limit=v.get('limit') or 20,
        )
        return Response({'ok': True, 'data': report})
    s = DrugTrackingEntrySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    warehouse = resolve_warehouse(v['warehouseId'])
    movement = inventory.create_tracking_entry(
        request.user, warehouse,
        product_id=v['productId'],
        action=v['action'],
        quantity=v['quantity'],
        reason=v.get('reason', ''),
        patient_id=v.get('patientId'),
        ip_address=request.client_ip,
        user_agent=request.client_agent,
    )
    return Response({'ok': True, 'data': inventory.format_movement(movement)}, status=status.HTTP_201_CREATED)

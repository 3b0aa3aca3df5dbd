"""
Quotation endpoints, including conversion into a consultation.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.quotations import QuotationConvertSerializer, QuotationCreateSerializer
from clinic.services import quotations
from clinic.services.common import as_float, resolve_warehouse
from clinic.services.consultations import format_consultation, get_consultation


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def quotation_collection(request):
    if request.method == 'GET':
        warehouse_id = request.query_params.get('warehouseId')
        warehouse = resolve_warehouse(warehouse_id) if warehouse_id else None
        rows = quotations.list_quotations(request.user, warehouse)
        return Response({'ok': True, 'data': [quotations.format_quotation(q) for q in rows]})
    s = QuotationCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(s.validated_data['warehouseId'])
    quotation = quotations.create_quotation(request.user, warehouse, s.validated_data)
    quotation = quotations.get_quotation(quotation.quotation_no)
    return Response({'ok': True, 'data': quotations.format_quotation(quotation)}, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def quotation_convert(request):
    s = QuotationConvertSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    result = quotations.convert_quotation(request.user, s.validated_data,
                                          ip_address=request.client_ip, user_agent=request.client_agent)
    consultation = get_consultation(result['consultation'].id)
    return Response({
        'ok': True,
        'data': {
            'consultation': format_consultation(consultation, with_items=True),
            'balanceUsed': as_float(result['balanceUsed']),
            'remainingBalance': as_float(result['remainingBalance']),
        },
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def quotation_detail(request, quotation_no: str):
    quotation = quotations.get_quotation(quotation_no)
    ensure_warehouse_access(request.user, quotation.warehouse)
    if request.method == 'GET':
        return Response({'ok': True, 'data': quotations.format_quotation(quotation)})
    quotations.delete_quotation(request.user, quotation)
    return Response({'ok': True, 'message': f'Quotation {quotation_no} deleted'})

"""
Consultation and legacy sale endpoints.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import bad_request
from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.common import WarehouseRefSerializer
from clinic.serializers.consultations import (
    ConsultationCancelSerializer,
    ConsultationCreateSerializer,
    ConsultationQuerySerializer,
    ConsultationUpdateSerializer,
    SaleCreateSerializer,
)
from clinic.services.common import json_body, resolve_warehouse
from clinic.services.consultations import (
    cancel_consultation,
    consultations_for_warehouse,
    create_consultation,
    format_consultation,
    get_consultation,
    list_consultations,
    update_consultation,
)
from clinic.services.users import get_user


def _created(request, payload):
    consultation = create_consultation(
        request.user, payload, ip_address=request.client_ip, user_agent=request.client_agent,
    )
    consultation = get_consultation(consultation.id)
    return Response({'ok': True, 'data': format_consultation(consultation, with_items=True)},
                    status=status.HTTP_201_CREATED)


def _cancel(request, consultation, cancelled_by=None):
    cancel_consultation(request.user, consultation, cancelled_by=cancelled_by,
                        ip_address=request.client_ip, user_agent=request.client_agent)
    return Response({'ok': True, 'message': f'Consultation {consultation.invoice_no} cancelled'})


@api_view(['GET', 'POST', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def consultation_collection(request):
    if request.method == 'POST':
        s = ConsultationCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        return _created(request, s.validated_data)
    if request.method == 'DELETE':
        s = ConsultationCancelSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        consultation = get_consultation(s.validated_data['consultationId'])
        return _cancel(request, consultation, cancelled_by=get_user(s.validated_data['userId']))
    q = ConsultationQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    v = q.validated_data
    warehouse = resolve_warehouse(v['warehouseId']) if v.get('warehouseId') else None
    data, pagination = list_consultations(
        request.user, warehouse=warehouse, student_id=v.get('studentId'),
        page=v.get('page') or 1, limit=v.get('limit') or 20,
    )
    return Response({'ok': True, 'data': data, 'pagination': pagination})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def consultation_list(request):
    s = WarehouseRefSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(s.validated_data['warehouseId'])
    ensure_warehouse_access(request.user, warehouse)
    rows = consultations_for_warehouse(warehouse)
    return Response({'ok': True, 'data': [format_consultation(c, with_items=True) for c in rows]})


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def consultation_detail(request, invoice_no: str):
    consultation = get_consultation(invoice_no)
    ensure_warehouse_access(request.user, consultation.warehouse)
    if request.method == 'GET':
        return Response({'ok': True, 'data': format_consultation(consultation, with_items=True)})
    if request.method == 'PUT':
        s = ConsultationUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        consultation = update_consultation(request.user, consultation, s.validated_data)
        return Response({'ok': True, 'data': format_consultation(consultation)})
    return _cancel(request, consultation)


@api_view(['POST', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def sale_collection(request):
    if request.method == 'DELETE':
        sale_id = json_body(request.data).get('saleId')
        if not sale_id:
            raise bad_request('saleId is required', code='missing_sale')
        return _cancel(request, get_consultation(sale_id))
    s = SaleCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    return _created(request, s.to_consultation_payload(fallback_doctor_id=request.user.pk))

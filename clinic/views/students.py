"""
Student (patient) endpoints.

``/api/customer`` is the point-of-sale era alias of ``/api/student``: it
takes ``customerId`` for ``studentId`` and ``userType`` for ``studentType``.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import bad_request
from clinic.models import BalanceTransaction
from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.common import WarehouseRefSerializer
from clinic.serializers.students import BalanceUpdateSerializer, StudentSerializer
from clinic.services.common import as_float, json_body, resolve_warehouse
from clinic.services.students import (
    adjust_balance,
    create_student,
    delete_student,
    format_balance_transaction,
    format_student,
    get_student,
    list_students,
    student_detail,
    update_student,
)

CUSTOMER_ALIASES = {'customerId': 'studentId', 'userType': 'studentType'}


def _student_id(data) -> str:
    student_id = data.get('studentId') or data.get('id')
    if not student_id:
        raise bad_request('studentId is required', code='missing_student')
    return student_id


def _handle_collection(request, data):
    if request.method == 'GET':
        warehouse_id = request.query_params.get('warehouseId')
        warehouse = resolve_warehouse(warehouse_id) if warehouse_id else None
        rows = list_students(request.user, warehouse)
        return Response({'ok': True, 'data': [format_student(s) for s in rows]})
    if request.method == 'POST':
        s = StudentSerializer(data=data)
        s.is_valid(raise_exception=True)
        student = create_student(request.user, s.validated_data)
        return Response({'ok': True, 'data': format_student(student)}, status=status.HTTP_201_CREATED)
    student = get_student(_student_id(data))
    if request.method == 'PUT':
        s = StudentSerializer(data=data, partial=True)
        s.is_valid(raise_exception=True)
        student = update_student(request.user, student, s.validated_data)
        return Response({'ok': True, 'data': format_student(student)})
    delete_student(request.user, student)
    return Response({'ok': True, 'message': 'Student deleted'})


@api_view(['GET', 'POST', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def student_collection(request):
    return _handle_collection(request, json_body(request.data))


@api_view(['GET', 'POST', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def customer_collection(request):
    data = {CUSTOMER_ALIASES.get(k, k): v for k, v in json_body(request.data).items()}
    return _handle_collection(request, data)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def student_detail_view(request, student_id):
    student = get_student(student_id)
    ensure_warehouse_access(request.user, student.warehouse)
    if request.method == 'GET':
        return Response({'ok': True, 'data': student_detail(student)})
    if request.method == 'PUT':
        s = StudentSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        student = update_student(request.user, student, s.validated_data)
        return Response({'ok': True, 'data': format_student(student)})
    delete_student(request.user, student)
    return Response({'ok': True, 'message': 'Student deleted'})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def student_list(request):
    s = WarehouseRefSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    warehouse = resolve_warehouse(s.validated_data['warehouseId'])
    rows = list_students(request.user, warehouse)
    return Response({'ok': True, 'data': [format_student(st) for st in rows]})


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def student_balance(request, student_id):
    student = get_student(student_id)
    ensure_warehouse_access(request.user, student.warehouse)
    if request.method == 'GET':
        return Response({'ok': True, 'data': {'balance': as_float(student.account_balance)}})
    s = BalanceUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    warehouse = resolve_warehouse(v['warehouseId']) if v.get('warehouseId') else None
    txn = adjust_balance(
        request.user, student,
        amount=v['amount'],
        description=v.get('description', ''),
        consultation_id=v.get('saleId'),
        warehouse=warehouse,
        kind=v.get('type') or BalanceTransaction.TYPE_DEBIT,
    )
    return Response({'ok': True, 'data': {
        'balance': as_float(student.account_balance),
        'transaction': format_balance_transaction(txn),
    }})

"""
Student (patient) records and their prepaid account balance.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import transaction
from django.utils import timezone

from clinic.exceptions import bad_request, not_found
from clinic.models import BalanceTransaction, Consultation, Student, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.common import as_float, clean_text, iso, money, parse_uuid, resolve_warehouse

logger = logging.getLogger(__name__)

# request key -> model field
STUDENT_FIELDS = {
    'name': 'name',
    'matricNumber': 'matric_number',
    'email': 'email',
    'phone': 'phone',
    'address': 'address',
    'bloodGroup': 'blood_group',
    'genotype': 'genotype',
    'allergies': 'allergies',
    'emergencyContact': 'emergency_contact',
    'emergencyPhone': 'emergency_phone',
    'department': 'department',
    'level': 'level',
    'dateOfBirth': 'date_of_birth',
    'medicalHistory': 'medical_history',
    'studentType': 'student_type',
}
FREE_TEXT = {'address', 'allergies', 'medical_history'}


def format_student(s: Student) -> dict:
    return {
        'id': str(s.id),
        'name': s.name,
        'matricNumber': s.matric_number,
        'email': s.email,
        'phone': s.phone,
        'address': s.address,
        'bloodGroup': s.blood_group,
        'genotype': s.genotype,
        'allergies': s.allergies,
        'emergencyContact': s.emergency_contact,
        'emergencyPhone': s.emergency_phone,
        'department': s.department,
        'level': s.level,
        'dateOfBirth': s.date_of_birth.isoformat() if s.date_of_birth else None,
        'medicalHistory': s.medical_history,
        'studentType': s.student_type,
        'accountBalance': as_float(s.account_balance),
        'warehouseId': str(s.warehouse_id),
        'sync': s.sync,
        'syncedAt': iso(s.synced_at),
        'createdAt': iso(s.created_at),
        'updatedAt': iso(s.updated_at),
    }


def format_balance_transaction(t: BalanceTransaction) -> dict:
    return {
        'id': str(t.id),
        'amount': as_float(t.amount),
        'type': t.type,
        'description': t.description,
        'consultationId': str(t.consultation_id) if t.consultation_id else None,
        'balanceAfter': as_float(t.balance_after),
        'createdAt': iso(t.created_at),
    }


def get_student(student_id: Any) -> Student:
    pk = parse_uuid(student_id)
    student = Student.objects.alive().select_related('warehouse').filter(id=pk).first() if pk else None
    if student is None:
        raise not_found('Student')
    return student


def _ensure_unique_matric(warehouse: Warehouse, matric_number: str, exclude_id=None) -> None:
    qs = Student.objects.alive().filter(warehouse=warehouse, matric_number=matric_number)
    if exclude_id is not None:
        qs = qs.exclude(id=exclude_id)
    if qs.exists():
        raise bad_request('A student with this matric number already exists', code='duplicate_matric_number')


def _apply_fields(student: Student, data: Dict[str, Any]) -> list[str]:
    changed = []
    for key, field in STUDENT_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if field in FREE_TEXT:
            value = clean_text(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(student, field, value if value is not None or field == 'date_of_birth' else '')
        changed.append(field)
    return changed


def list_students(user, warehouse: Optional[Warehouse] = None):
    qs = Student.objects.alive().select_related('warehouse')
    if warehouse is not None:
        ensure_warehouse_access(user, warehouse)
        qs = qs.filter(warehouse=warehouse)
    elif getattr(user, 'role', '') != 'super':
        qs = qs.filter(warehouse_id=user.warehouse_id)
    return qs.order_by('-created_at')


@transaction.atomic
def create_student(user, data: Dict[str, Any]) -> Student:
    warehouse = resolve_warehouse(data.get('warehouseId') or getattr(user, 'warehouse_id', None))
    ensure_warehouse_access(user, warehouse)
    matric = (data.get('matricNumber') or '').strip()
    _ensure_unique_matric(warehouse, matric)
    student = Student(warehouse=warehouse)
    _apply_fields(student, data)
    student.mark_unsynced()
    student.save()
    logger.info('student %s created in %s', student.id, warehouse.warehouse_code)
    return student


@transaction.atomic
def update_student(user, student: Student, data: Dict[str, Any]) -> Student:
    ensure_warehouse_access(user, student.warehouse)
    if data.get('warehouseId'):
        target = resolve_warehouse(data['warehouseId'])
        ensure_warehouse_access(user, target)
        student.warehouse = target
    matric = data.get('matricNumber')
    if matric is not None or data.get('warehouseId'):
        _ensure_unique_matric(student.warehouse, (matric or student.matric_number).strip(), exclude_id=student.id)
    _apply_fields(student, data)
    student.mark_unsynced()
    student.save()
    return student


def delete_student(user, student: Student) -> None:
    ensure_warehouse_access(user, student.warehouse)
    student.soft_delete()
    logger.info('student %s soft-deleted by %s', student.id, getattr(user, 'username', None))


def student_detail(student: Student) -> dict:
    from clinic.services.consultations import format_consultation

    consultations = (
        Consultation.objects.alive()
        .filter(student=student)
        .select_related('doctor')
        .prefetch_related('items__product', 'payment_methods')
        .order_by('-created_at')
    )
    data = format_student(student)
    data['consultations'] = [format_consultation(c, with_items=True) for c in consultations]
    data['balanceTransactions'] = [
        format_balance_transaction(t)
        for t in student.balance_transactions.filter(is_deleted=False).order_by('-created_at')
    ]
    return data


@transaction.atomic
def adjust_balance(user, student: Student, *, amount: Decimal, description: str = '',
                   consultation_id: Any = None, warehouse: Optional[Warehouse] = None,
                   kind: str = BalanceTransaction.TYPE_DEBIT) -> BalanceTransaction:
    """Debit (default) or credit a student's account and append the movement."""
    ensure_warehouse_access(user, student.warehouse)
    amount = money(amount)
    if amount <= 0:
        raise bad_request('amount must be positive')
    locked = Student.objects.select_for_update().get(id=student.id)
    if kind == BalanceTransaction.TYPE_CREDIT:
        locked.account_balance = money(locked.account_balance) + amount
    else:
        locked.account_balance = money(locked.account_balance) - amount
    locked.mark_unsynced()
    locked.save(update_fields=['account_balance', 'updated_at', 'sync', 'synced_at'])

    consultation = None
    if consultation_id:
        pk = parse_uuid(consultation_id)
        q = Consultation.objects.alive()
        consultation = (q.filter(id=pk).first() if pk else None) or q.filter(invoice_no=str(consultation_id)).first()
    txn = BalanceTransaction.objects.create(
        student=locked,
        amount=amount,
        type=kind,
        description=clean_text(description) or ('Account credit' if kind == BalanceTransaction.TYPE_CREDIT else 'Consultation payment'),
        consultation=consultation,
        balance_after=locked.account_balance,
        warehouse=warehouse or locked.warehouse,
        updated_at=timezone.now(),
    )
    student.account_balance = locked.account_balance
    return txn

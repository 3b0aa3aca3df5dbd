"""
Consultations (sales): creation with stock dispensing, cancellation with
restock, and read/update helpers.

Creation and cancellation each run in one database transaction with the
affected product rows locked, so stock and the ledger move together or
not at all.
"""
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from clinic.exceptions import bad_request, not_found
from clinic.models import Consultation, ConsultationItem, PaymentMethod, StockTracking, Student, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.audit import log_action
from clinic.services.common import as_float, clean_text, iso, money, paginate, parse_uuid, resolve_warehouse
from clinic.services.inventory import find_product, record_movement

logger = logging.getLogger(__name__)

User = get_user_model()

DEFAULT_DIAGNOSIS = 'General Consultation'


def generate_invoice_no() -> str:
    return f"CONS-{timezone.now():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def invoice_taken(invoice_no: str) -> bool:
    return Consultation.objects.filter(invoice_no=invoice_no).exists()


def format_item(i: ConsultationItem) -> dict:
    return {
        'id': str(i.id),
        'productId': str(i.product_id),
        'productName': i.product_name,
        'barcode': i.product.barcode if i.product_id else '',
        'quantity': i.quantity,
        'cost': as_float(i.cost),
        'selectedPrice': as_float(i.selected_price),
        'priceType': i.price_type,
        'discount': as_float(i.discount),
        'total': as_float(i.total),
        'profit': as_float(i.profit),
        'dosage': i.dosage,
        'frequency': i.frequency,
        'duration': i.duration,
        'instructions': i.instructions,
    }


def format_consultation(c: Consultation, *, with_items: bool = False) -> dict:
    data = {
        'id': str(c.id),
        'invoiceNo': c.invoice_no,
        'subTotal': as_float(c.sub_total),
        'taxRate': as_float(c.tax_rate),
        'grandTotal': as_float(c.grand_total),
        'amountPaid': as_float(c.amount_paid),
        'paidAmount': as_float(c.paid_amount),
        'balance': as_float(c.balance),
        'notes': c.notes,
        'diagnosis': c.diagnosis,
        'symptoms': c.symptoms,
        'treatment': c.treatment,
        'consultantNotes': c.consultant_notes,
        'warehouseId': str(c.warehouse_id),
        'studentId': str(c.student_id) if c.student_id else None,
        'student': {'id': str(c.student_id), 'name': c.student.name, 'matricNumber': c.student.matric_number}
        if c.student_id else None,
        'doctor': {'id': c.doctor_id, 'username': c.doctor.username} if c.doctor_id else None,
        'sync': c.sync,
        'createdAt': iso(c.created_at),
        'updatedAt': iso(c.updated_at),
    }
    if with_items:
        data['items'] = [format_item(i) for i in c.items.all() if not i.is_deleted]
        data['paymentMethods'] = [
            {'id': str(p.id), 'method': p.method, 'amount': as_float(p.amount)}
            for p in c.payment_methods.all() if not p.is_deleted
        ]
    return data


def get_consultation(identifier: Any) -> Consultation:
    """Live consultation by primary key or invoice number."""
    qs = Consultation.objects.alive().select_related('warehouse', 'student', 'doctor')
    pk = parse_uuid(identifier)
    c = qs.filter(id=pk).first() if pk else None
    if c is None and identifier:
        c = qs.filter(invoice_no=str(identifier)).first()
    if c is None:
        raise not_found('Consultation')
    return c


def _resolve_doctor(doctor_id: Any):
    if doctor_id in (None, ''):
        raise bad_request('doctor.id is required', code='missing_doctor')
    try:
        doctor = User.objects.alive().filter(id=int(doctor_id)).first()
    except (TypeError, ValueError):
        doctor = None
    if doctor is None:
        raise not_found('Doctor')
    return doctor


def _resolve_student(warehouse: Warehouse, student_id: Any) -> Optional[Student]:
    if not student_id:
        return None
    pk = parse_uuid(student_id)
    student = Student.objects.alive().filter(id=pk, warehouse=warehouse).first() if pk else None
    if student is None:
        raise not_found('Student')
    return student


def create_consultation(user, payload: Dict[str, Any], *, ip_address: str = '', user_agent: str = '') -> Consultation:
    """Create a consultation and dispense its medicines.

    ``payload`` keys: medicines, consultationNo, subtotal, taxRate, grandTotal,
    paymentMethods, balance, notes, diagnosis, symptoms, treatment,
    consultantNotes, warehouseId, studentId, doctorId.
    """
    from clinic.services.security import check_excessive_dispensing

    warehouse = resolve_warehouse(payload.get('warehouseId') or getattr(user, 'warehouse_id', None))
    ensure_warehouse_access(user, warehouse)
    doctor = _resolve_doctor(payload.get('doctorId'))
    student = _resolve_student(warehouse, payload.get('studentId'))
    medicines = payload.get('medicines') or []
    if not medicines:
        raise bad_request('At least one medicine is required', code='empty_consultation')

    invoice_no = (payload.get('consultationNo') or '').strip() or generate_invoice_no()
    if invoice_taken(invoice_no):
        raise bad_request(f'Consultation {invoice_no} already exists', code='duplicate_invoice')

    dispensed = []
    with transaction.atomic():
        try:
            with transaction.atomic():
                consultation = Consultation.objects.create(
                    invoice_no=invoice_no,
                    tax_rate=money(payload.get('taxRate')),
                    notes=clean_text(payload.get('notes')),
                    diagnosis=clean_text(payload.get('diagnosis')) or DEFAULT_DIAGNOSIS,
                    symptoms=clean_text(payload.get('symptoms')),
                    treatment=clean_text(payload.get('treatment')),
                    consultant_notes=clean_text(payload.get('consultantNotes')),
                    warehouse=warehouse,
                    student=student,
                    doctor=doctor,
                )
        except IntegrityError:
            # lost a race with a concurrent create of the same number
            raise bad_request(f'Consultation {invoice_no} already exists', code='duplicate_invoice')
        sub_total = Decimal('0.00')
        # lock products in a stable order
        for med in sorted(medicines, key=lambda m: str(m['productId'])):
            product = find_product(warehouse, med['productId'], for_update=True)
            quantity = int(med['quantity'])
            price = money(med.get('price') if med.get('price') is not None else product.retail_price)
            discount = money(med.get('discount'))
            total = money(med['total']) if med.get('total') is not None else money(price * quantity - discount)
            record_movement(
                product,
                action=StockTracking.ACTION_DISPENSED,
                quantity=quantity,
                staff=doctor,
                patient=student,
                reason=f'Dispensed for consultation {invoice_no}',
                ip_address=ip_address,
                user_agent=user_agent,
            )
            ConsultationItem.objects.create(
                consultation=consultation,
                product=product,
                product_name=product.name,
                cost=product.cost,
                selected_price=price,
                price_type=med.get('priceType') or 'retail',
                quantity=quantity,
                discount=discount,
                total=total,
                profit=money(total - product.cost * quantity),
                dosage=clean_text(med.get('dosage')) or 'As prescribed',
                frequency=clean_text(med.get('frequency')) or 'As needed',
                duration=clean_text(med.get('duration')) or 'Complete course',
                instructions=clean_text(med.get('instructions')) or 'Take as directed',
                warehouse=warehouse,
            )
            sub_total += total
            dispensed.append(product)

        payments = [
            PaymentMethod(consultation=consultation, method=p['method'], amount=money(p['amount']), warehouse=warehouse)
            for p in payload.get('paymentMethods') or []
        ]
        PaymentMethod.objects.bulk_create(payments)

        consultation.sub_total = money(payload['subtotal']) if payload.get('subtotal') is not None else sub_total
        if payload.get('grandTotal') is not None:
            consultation.grand_total = money(payload['grandTotal'])
        else:
            consultation.grand_total = money(consultation.sub_total * (1 + consultation.tax_rate / 100))
        consultation.balance = money(payload.get('balance'))
        if consultation.balance > consultation.grand_total:
            raise bad_request('balance cannot exceed the grand total', code='invalid_balance')
        consultation.amount_paid = consultation.grand_total - consultation.balance
        consultation.paid_amount = money(sum((p.amount for p in payments), Decimal('0')))
        consultation.save(update_fields=['sub_total', 'grand_total', 'balance', 'amount_paid', 'paid_amount'])

        log_action(user=user, action='consultation_create', object_type='consultation',
                   object_id=consultation.id, detail={'invoiceNo': invoice_no, 'items': len(medicines)})

    logger.info('consultation %s created in %s with %d item(s)', invoice_no, warehouse.warehouse_code, len(medicines))
    seen = set()
    for product in dispensed:
        if product.id in seen:
            continue
        seen.add(product.id)
        check_excessive_dispensing(product, staff=doctor)
    return consultation


def cancel_consultation(user, consultation: Consultation, *, cancelled_by=None,
                        ip_address: str = '', user_agent: str = '') -> Consultation:
    """Restock every item of ``consultation`` and soft-delete it."""
    ensure_warehouse_access(user, consultation.warehouse)
    actor = cancelled_by or user
    with transaction.atomic():
        locked = Consultation.objects.select_for_update().filter(id=consultation.id, is_deleted=False).first()
        if locked is None:
            raise not_found('Consultation')
        items = list(locked.items.filter(is_deleted=False).order_by('product_id'))
        for item in items:
            product = find_product(locked.warehouse, item.product_id, for_update=True)
            record_movement(
                product,
                action=StockTracking.ACTION_RETURNED,
                quantity=item.quantity,
                staff=actor,
                patient=locked.student,
                reason=f'Reversal for cancelled consultation {locked.invoice_no}',
                ip_address=ip_address,
                user_agent=user_agent,
            )
        locked.soft_delete()
        log_action(user=actor, action='consultation_cancel', object_type='consultation',
                   object_id=locked.id, detail={'invoiceNo': locked.invoice_no, 'restocked': len(items)})
    logger.info('consultation %s cancelled by %s', locked.invoice_no, getattr(actor, 'username', None))
    return locked


def update_consultation(user, consultation: Consultation, data: Dict[str, Any]) -> Consultation:
    ensure_warehouse_access(user, consultation.warehouse)
    mapping = {
        'diagnosis': 'diagnosis',
        'symptoms': 'symptoms',
        'treatment': 'treatment',
        'consultantNotes': 'consultant_notes',
        'notes': 'notes',
    }
    fields = ['updated_at', 'sync', 'synced_at']
    for key, field in mapping.items():
        if key in data:
            setattr(consultation, field, clean_text(data[key]))
            fields.append(field)
    consultation.mark_unsynced()
    consultation.save(update_fields=fields)
    return consultation


def list_consultations(user, *, warehouse: Optional[Warehouse] = None, student_id: Any = None,
                       page: int = 1, limit: int = 20):
    qs = Consultation.objects.alive().select_related('student', 'doctor')
    if warehouse is not None:
        ensure_warehouse_access(user, warehouse)
        qs = qs.filter(warehouse=warehouse)
    elif getattr(user, 'role', '') != 'super':
        qs = qs.filter(warehouse_id=user.warehouse_id)
    if student_id:
        pk = parse_uuid(student_id)
        qs = qs.filter(student_id=pk) if pk else qs.none()
    rows, pagination = paginate(
        qs.prefetch_related('items__product', 'payment_methods').order_by('-created_at'), page, limit
    )
    return [format_consultation(c, with_items=True) for c in rows], pagination


def consultations_for_warehouse(warehouse: Warehouse):
    return (
        Consultation.objects.alive()
        .filter(warehouse=warehouse)
        .select_related('student', 'doctor')
        .prefetch_related('items__product', 'payment_methods')
        .order_by('-created_at')
    )

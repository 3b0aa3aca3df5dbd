"""
Quotations: priced medicine lists that leave stock untouched until they
are converted into a consultation.
"""
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from clinic.exceptions import bad_request, not_found
from clinic.models import BalanceTransaction, Quotation, QuotationItem, Student, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.audit import log_action
from clinic.services.common import as_float, clean_text, format_warehouse_brief, iso, money
from clinic.services.consultations import _resolve_doctor, _resolve_student, create_consultation
from clinic.services.inventory import find_product
from clinic.services.students import adjust_balance

logger = logging.getLogger(__name__)


def generate_quotation_no() -> str:
    return f"QUO-{timezone.now():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def format_quotation(q: Quotation) -> dict:
    return {
        'id': str(q.id),
        'quotationNo': q.quotation_no,
        'subTotal': as_float(q.sub_total),
        'taxRate': as_float(q.tax_rate),
        'grandTotal': as_float(q.grand_total),
        'notes': q.notes,
        'status': q.status,
        'warehouse': format_warehouse_brief(q.warehouse),
        'student': {'id': str(q.student.id), 'name': q.student.name} if q.student_id else None,
        'doctor': {'id': q.doctor.id, 'username': q.doctor.username} if q.doctor_id else None,
        'convertedInvoiceNo': q.converted_consultation.invoice_no if q.converted_consultation_id else None,
        'items': [
            {
                'id': str(i.id),
                'productId': str(i.product_id),
                'productName': i.product_name,
                'selectedPrice': as_float(i.selected_price),
                'priceType': i.price_type,
                'quantity': i.quantity,
                'discount': as_float(i.discount),
                'total': as_float(i.total),
            }
            for i in q.items.all() if not i.is_deleted
        ],
        'sync': q.sync,
        'createdAt': iso(q.created_at),
        'updatedAt': iso(q.updated_at),
    }


def _with_relations(qs):
    return (
        qs.select_related('warehouse', 'student', 'doctor', 'converted_consultation')
        .prefetch_related('items')
    )


def get_quotation(quotation_no: str) -> Quotation:
    q = _with_relations(Quotation.objects.alive()).filter(quotation_no=quotation_no).first()
    if q is None:
        raise not_found('Quotation')
    return q


def list_quotations(user, warehouse: Optional[Warehouse] = None):
    qs = Quotation.objects.alive()
    if warehouse is not None:
        ensure_warehouse_access(user, warehouse)
        qs = qs.filter(warehouse=warehouse)
    elif getattr(user, 'role', '') != 'super':
        qs = qs.filter(warehouse_id=user.warehouse_id)
    return _with_relations(qs).order_by('-created_at')


def create_quotation(user, warehouse: Warehouse, data: Dict[str, Any]) -> Quotation:
    """Price the requested medicines; stock is not reserved."""
    ensure_warehouse_access(user, warehouse)
    quotation_no = (data.get('quotationNo') or '').strip() or generate_quotation_no()
    if Quotation.objects.filter(quotation_no=quotation_no).exists():
        raise bad_request(f'Quotation {quotation_no} already exists', code='duplicate_quotation')
    student = _resolve_student(warehouse, data.get('studentId'))
    doctor = _resolve_doctor(data['doctorId']) if data.get('doctorId') else None

    with transaction.atomic():
        try:
            with transaction.atomic():
                quotation = Quotation.objects.create(
                    quotation_no=quotation_no,
                    tax_rate=money(data.get('taxRate')),
                    notes=clean_text(data.get('notes')),
                    warehouse=warehouse,
                    student=student,
                    doctor=doctor,
                )
        except IntegrityError:
            raise bad_request(f'Quotation {quotation_no} already exists', code='duplicate_quotation')
        sub_total = Decimal('0.00')
        for item in data['items']:
            product = find_product(warehouse, item['productId'])
            quantity = int(item['quantity'])
            price = money(item.get('price') if item.get('price') is not None else product.retail_price)
            discount = money(item.get('discount'))
            total = money(item['total']) if item.get('total') is not None else money(price * quantity - discount)
            QuotationItem.objects.create(
                quotation=quotation,
                product=product,
                product_name=product.name,
                cost=product.cost,
                selected_price=price,
                price_type=item.get('priceType') or 'retail',
                quantity=quantity,
                discount=discount,
                total=total,
                warehouse=warehouse,
            )
            sub_total += total
        quotation.sub_total = sub_total
        quotation.grand_total = money(sub_total * (1 + quotation.tax_rate / 100))
        quotation.save(update_fields=['sub_total', 'grand_total'])
        log_action(user=user, action='quotation_create', object_type='quotation', object_id=quotation.id,
                   detail={'quotationNo': quotation_no, 'items': len(data['items'])})
    return quotation


def delete_quotation(user, quotation: Quotation) -> None:
    ensure_warehouse_access(user, quotation.warehouse)
    if quotation.status == Quotation.STATUS_CONVERTED:
        raise bad_request('A converted quotation cannot be deleted', code='already_converted')
    quotation.items.filter(is_deleted=False).update(is_deleted=True, sync=False, synced_at=None,
                                                    updated_at=timezone.now())
    quotation.soft_delete()


def convert_quotation(user, data: Dict[str, Any], *, ip_address: str = '', user_agent: str = '') -> dict:
    """Turn a pending quotation into a consultation.

    The consultation dispenses the quoted items through the normal
    consultation path. With ``useStudentBalance`` any positive account
    balance of the student settles part of what the payment left unpaid.
    Returns the consultation with ``balanceUsed`` and ``remainingBalance``.
    """
    with transaction.atomic():
        quotation = (
            Quotation.objects.select_for_update()
            .filter(quotation_no=data['quotationNo'], is_deleted=False)
            .first()
        )
        if quotation is None:
            raise not_found('Quotation')
        ensure_warehouse_access(user, quotation.warehouse)
        if quotation.status == Quotation.STATUS_CONVERTED:
            raise bad_request(f'Quotation {quotation.quotation_no} is already converted', code='already_converted')

        grand_total = money(quotation.grand_total)
        payments = data.get('paymentMethods') or []
        if data.get('amountPaid') is not None:
            amount_paid = money(data['amountPaid'])
        else:
            amount_paid = money(sum((money(p['amount']) for p in payments), Decimal('0')))
        if amount_paid > grand_total:
            raise bad_request('amountPaid cannot exceed the grand total', code='invalid_payment')

        student = None
        balance_used = Decimal('0.00')
        if quotation.student_id:
            student = Student.objects.select_for_update().get(id=quotation.student_id)
            if data.get('useStudentBalance', True):
                available = max(money(student.account_balance), Decimal('0.00'))
                balance_used = min(available, grand_total - amount_paid)
        remaining = grand_total - amount_paid - balance_used

        doctor_id = data.get('doctorId') or quotation.doctor_id or getattr(user, 'pk', None)
        items = list(quotation.items.filter(is_deleted=False))
        consultation = create_consultation(user, {
            'medicines': [
                {
                    'productId': str(i.product_id),
                    'quantity': i.quantity,
                    'price': i.selected_price,
                    'priceType': i.price_type,
                    'discount': i.discount,
                    'total': i.total,
                }
                for i in items
            ],
            'consultationNo': data.get('invoiceNo') or '',
            'subtotal': quotation.sub_total,
            'taxRate': quotation.tax_rate,
            'grandTotal': grand_total,
            'paymentMethods': payments,
            'balance': remaining,
            'notes': data.get('notes') or quotation.notes,
            'warehouseId': str(quotation.warehouse_id),
            'studentId': str(student.id) if student else None,
            'doctorId': doctor_id,
        }, ip_address=ip_address, user_agent=user_agent)

        if balance_used > 0:
            adjust_balance(
                user, student, amount=balance_used,
                description=f'Quotation conversion - Invoice {consultation.invoice_no}',
                consultation_id=consultation.id,
                warehouse=quotation.warehouse,
                kind=BalanceTransaction.TYPE_DEBIT,
            )

        quotation.status = Quotation.STATUS_CONVERTED
        quotation.converted_consultation = consultation
        quotation.mark_unsynced()
        quotation.save(update_fields=['status', 'converted_consultation', 'updated_at', 'sync', 'synced_at'])
        log_action(user=user, action='quotation_convert', object_type='quotation', object_id=quotation.id,
                   detail={'quotationNo': quotation.quotation_no, 'invoiceNo': consultation.invoice_no,
                           'balanceUsed': str(balance_used)})

    logger.info('quotation %s converted to %s', quotation.quotation_no, consultation.invoice_no)
    return {'consultation': consultation, 'balanceUsed': balance_used, 'remainingBalance': remaining}

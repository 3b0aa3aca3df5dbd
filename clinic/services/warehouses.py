from __future__ import annotations

import logging
from typing import Any, Dict

from django.db import transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.db.models import DecimalField, Value

from clinic.exceptions import bad_request, not_found
from clinic.models import Consultation, Product, Student, User, Warehouse
from clinic.services.common import as_float, clean_text, iso

logger = logging.getLogger(__name__)

# request key -> model field
WAREHOUSE_FIELDS = {
    'name': 'name',
    'phone': 'phone_number',
    'email': 'email',
    'description': 'description',
    'address': 'address',
}


def format_warehouse(w: Warehouse) -> dict:
    return {
        'id': str(w.id),
        'name': w.name,
        'warehouseCode': w.warehouse_code,
        'phoneNumber': w.phone_number,
        'email': w.email,
        'description': w.description,
        'address': w.address,
        'sync': w.sync,
        'syncedAt': iso(w.synced_at),
        'createdAt': iso(w.created_at),
        'updatedAt': iso(w.updated_at),
    }


def list_warehouses(user):
    qs = Warehouse.objects.alive().order_by('name')
    if getattr(user, 'role', '') != 'super':
        qs = qs.filter(id=user.warehouse_id)
    return qs


def _apply(w: Warehouse, data: Dict[str, Any]) -> None:
    for key, field in WAREHOUSE_FIELDS.items():
        if key in data:
            value = data[key] or ''
            setattr(w, field, clean_text(value) if field in ('description', 'address') else value.strip())


@transaction.atomic
def create_warehouse(data: Dict[str, Any]) -> Warehouse:
    code = data['code'].strip()
    if Warehouse.objects.filter(warehouse_code=code).exists():
        raise bad_request('Warehouse code already exists', code='duplicate_code')
    w = Warehouse(warehouse_code=code)
    _apply(w, data)
    w.mark_unsynced()
    w.save()
    logger.info('warehouse %s created', code)
    return w


@transaction.atomic
def update_warehouse(warehouse_code: str, data: Dict[str, Any]) -> Warehouse:
    w = Warehouse.objects.alive().filter(warehouse_code=warehouse_code).first()
    if w is None:
        raise not_found('Warehouse')
    new_code = (data.get('code') or '').strip()
    if new_code and new_code != w.warehouse_code:
        if Warehouse.objects.filter(warehouse_code=new_code).exists():
            raise bad_request('Warehouse code already exists', code='duplicate_code')
        w.warehouse_code = new_code
    _apply(w, data)
    w.mark_unsynced()
    w.save()
    return w


def warehouse_overview(w: Warehouse) -> dict:
    """A warehouse with everything assigned to it and headline stats."""
    from clinic.services.consultations import consultations_for_warehouse, format_consultation
    from clinic.services.inventory import format_product
    from clinic.services.students import format_student
    from clinic.services.users import format_user

    users = list(User.objects.alive().filter(warehouse=w).order_by('username'))
    products = list(Product.objects.alive().filter(warehouse=w).order_by('name'))
    students = list(Student.objects.alive().filter(warehouse=w).order_by('-created_at'))
    consultations = list(consultations_for_warehouse(w))
    total_sales = Consultation.objects.alive().filter(warehouse=w).aggregate(
        total=Coalesce(Sum('grand_total'), Value(0), output_field=DecimalField())
    )['total']
    data = format_warehouse(w)
    data.update({
        'users': [format_user(u) for u in users],
        'products': [format_product(p) for p in products],
        'students': [format_student(s) for s in students],
        'consultations': [format_consultation(c, with_items=True) for c in consultations],
        'stats': {
            'totalProducts': len(products),
            'totalSales': as_float(total_sales),
            'totalOrders': len(consultations),
            'totalStudents': len(students),
            'assignedUsers': len(users),
        },
    })
    return data

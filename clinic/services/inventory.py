"""
Medicine stock and the drug-tracking ledger.

Every change to ``Product.quantity`` goes through :func:`record_movement`
so that each change has a matching :class:`StockTracking` row and the
quantity can never drop below zero.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Count, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from clinic.exceptions import InsufficientStock, bad_request, not_found
from clinic.models import Product, StockTracking, Student, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.common import as_float, clean_text, iso, money, paginate, parse_uuid

logger = logging.getLogger(__name__)

SUMMARY_WINDOW_DAYS = 30
ACTIVE_PRODUCTS_WINDOW_DAYS = 7


def format_product(p: Product) -> dict:
    return {
        'id': str(p.id),
        'name': p.name,
        'barcode': p.barcode,
        'unit': p.unit,
        'quantity': p.quantity,
        'cost': as_float(p.cost),
        'retailPrice': as_float(p.retail_price),
        'wholesalePrice': as_float(p.wholesale_price),
        'lastDispensed': iso(p.last_dispensed),
        'warehouseId': str(p.warehouse_id),
        'sync': p.sync,
        'createdAt': iso(p.created_at),
        'updatedAt': iso(p.updated_at),
    }


def format_movement(m: StockTracking) -> dict:
    return {
        'id': str(m.id),
        'action': m.action,
        'quantity': m.quantity,
        'previousStock': m.previous_stock,
        'newStock': m.new_stock,
        'reason': m.reason,
        'timestamp': iso(m.timestamp),
        'productId': str(m.product_id),
        'productName': m.product.name if m.product_id else None,
        'staffName': m.staff.username if m.staff_id else None,
        'patientName': m.patient.name if m.patient_id else None,
        'ipAddress': m.ip_address,
        'userAgent': m.user_agent,
    }


def find_product(warehouse: Warehouse, identifier: Any, *, for_update: bool = False) -> Product:
    """Look a live product up in ``warehouse`` by primary key or barcode."""
    qs = Product.objects.alive().filter(warehouse=warehouse).select_related('warehouse')
    if for_update:
        qs = qs.select_for_update()
    pk = parse_uuid(identifier)
    product = qs.filter(id=pk).first() if pk else None
    if product is None and identifier:
        product = qs.filter(barcode=str(identifier)).first()
    if product is None:
        raise not_found('Product')
    return product


def record_movement(product: Product, *, action: str, quantity: int, staff=None,
                    patient: Optional[Student] = None, reason: str = '',
                    ip_address: str = '', user_agent: str = '') -> StockTracking:
    """Apply a stock movement to ``product`` and append it to the ledger.

    The caller must hold the product row lock (``find_product(for_update=True)``)
    inside a transaction.
    """
    if action not in dict(StockTracking.ACTION_CHOICES):
        raise bad_request(f'unknown action {action}', code='invalid_action')
    delta = StockTracking.signed_delta(action, quantity)
    previous = product.quantity
    new = previous + delta
    if new < 0:
        raise InsufficientStock(
            f'Insufficient stock for {product.name}: available {previous}, requested {abs(delta)}'
        )
    now = timezone.now()
    product.quantity = new
    update_fields = ['quantity', 'updated_at', 'sync', 'synced_at']
    if action == StockTracking.ACTION_DISPENSED:
        product.last_dispensed = now
        update_fields.append('last_dispensed')
    product.mark_unsynced()
    product.save(update_fields=update_fields)
    return StockTracking.objects.create(
        product=product,
        action=action,
        quantity=quantity if action == StockTracking.ACTION_ADJUSTED else abs(quantity),
        previous_stock=previous,
        new_stock=new,
        staff=staff if getattr(staff, 'pk', None) else None,
        patient=patient,
        reason=clean_text(reason)[:255],
        ip_address=ip_address or '',
        user_agent=(user_agent or '')[:512],
        warehouse=product.warehouse,
        timestamp=now,
    )


def list_products(user, warehouse: Optional[Warehouse] = None):
    qs = Product.objects.alive()
    if warehouse is not None:
        ensure_warehouse_access(user, warehouse)
        qs = qs.filter(warehouse=warehouse)
    elif getattr(user, 'role', '') != 'super':
        qs = qs.filter(warehouse_id=user.warehouse_id)
    return qs.order_by('name')


@transaction.atomic
def create_product(user, warehouse: Warehouse, data: Dict[str, Any], *,
                   ip_address: str = '', user_agent: str = '') -> Product:
    ensure_warehouse_access(user, warehouse)
    barcode = (data.get('barcode') or '').strip()
    if barcode and Product.objects.alive().filter(warehouse=warehouse, barcode=barcode).exists():
        raise bad_request('A product with this barcode already exists', code='duplicate_barcode')
    product = Product(
        warehouse=warehouse,
        name=clean_text(data['name']),
        barcode=barcode,
        unit=data.get('unit') or 'unit',
        cost=money(data.get('costPrice')),
        retail_price=money(data.get('retailPrice')),
        wholesale_price=money(data.get('wholesalePrice')),
        quantity=0,
    )
    product.mark_unsynced()
    product.save()
    initial = int(data.get('quantity') or 0)
    if initial > 0:
        record_movement(product, action=StockTracking.ACTION_RECEIVED, quantity=initial, staff=user,
                        reason='Initial stock', ip_address=ip_address, user_agent=user_agent)
    logger.info('product %s created in %s with %s units', product.id, warehouse.warehouse_code, initial)
    return product


@transaction.atomic
def restock(user, warehouse: Warehouse, product_id: Any, quantity: int, reason: str = '', *,
            ip_address: str = '', user_agent: str = '') -> StockTracking:
    ensure_warehouse_access(user, warehouse)
    product = find_product(warehouse, product_id, for_update=True)
    return record_movement(product, action=StockTracking.ACTION_RECEIVED, quantity=quantity, staff=user,
                           reason=reason or 'Restock', ip_address=ip_address, user_agent=user_agent)


@transaction.atomic
def update_prices(user, warehouse: Warehouse, product_id: Any, *, retail_price: Optional[Decimal] = None,
                  wholesale_price: Optional[Decimal] = None, cost_price: Optional[Decimal] = None) -> Product:
    """Change only the price columns of a product."""
    ensure_warehouse_access(user, warehouse)
    if retail_price is None and wholesale_price is None:
        raise bad_request('At least one of retailPrice or wholesalePrice is required', code='missing_price')
    product = find_product(warehouse, product_id, for_update=True)
    fields = ['updated_at', 'sync', 'synced_at']
    if retail_price is not None:
        product.retail_price = money(retail_price)
        fields.append('retail_price')
    if wholesale_price is not None:
        product.wholesale_price = money(wholesale_price)
        fields.append('wholesale_price')
    if cost_price is not None:
        product.cost = money(cost_price)
        fields.append('cost')
    product.mark_unsynced()
    product.save(update_fields=fields)
    logger.info('prices updated for product %s by %s', product.id, getattr(user, 'username', None))
    return product


def stock_history(product: Product) -> dict:
    """Ledger of ``product`` newest first, with the stock level after each row."""
    movements = (
        StockTracking.objects.alive().filter(product=product)
        .select_related('product', 'staff', 'patient')
        .order_by('-timestamp', '-created_at')
    )
    balance = product.quantity
    rows = []
    totals = {action: 0 for action, _ in StockTracking.ACTION_CHOICES}
    for m in movements:
        row = format_movement(m)
        row['balanceAfter'] = balance
        rows.append(row)
        balance -= StockTracking.signed_delta(m.action, m.quantity)
        totals[m.action] += m.quantity
    return {
        'product': format_product(product),
        'movements': rows,
        'summary': {
            'currentStock': product.quantity,
            'totalReceived': totals[StockTracking.ACTION_RECEIVED],
            'totalDispensed': totals[StockTracking.ACTION_DISPENSED],
            'totalReturned': totals[StockTracking.ACTION_RETURNED],
            'totalAdjusted': totals[StockTracking.ACTION_ADJUSTED],
            'totalExpired': totals[StockTracking.ACTION_EXPIRED],
            'totalDamaged': totals[StockTracking.ACTION_DAMAGED],
            'movementCount': len(rows),
        },
    }


def drug_tracking_report(warehouse: Warehouse, *, action: Optional[str] = None,
                         page: int = 1, limit: int = 20) -> dict:
    base = StockTracking.objects.alive().filter(warehouse=warehouse)
    qs = base.filter(action=action) if action else base
    rows, pagination = paginate(
        qs.select_related('product', 'staff', 'patient').order_by('-timestamp'), page, limit
    )
    now = timezone.now()
    summary = (
        base.filter(timestamp__gte=now - timedelta(days=SUMMARY_WINDOW_DAYS))
        .values('action')
        .annotate(count=Count('id'), totalQuantity=Coalesce(Sum('quantity'), 0))
        .order_by('action')
    )
    active = (
        base.filter(timestamp__gte=now - timedelta(days=ACTIVE_PRODUCTS_WINDOW_DAYS))
        .values('product_id', 'product__name')
        .annotate(movements=Count('id'), totalQuantity=Coalesce(Sum('quantity'), 0))
        .order_by('-movements', '-totalQuantity')[:10]
    )
    return {
        'trackingRecords': [format_movement(m) for m in rows],
        'summaryStats': [
            {'action': s['action'], 'count': s['count'], 'totalQuantity': s['totalQuantity']}
            for s in summary
        ],
        'mostActiveProducts': [
            {
                'productId': str(a['product_id']),
                'productName': a['product__name'],
                'movements': a['movements'],
                'totalQuantity': a['totalQuantity'],
            }
            for a in active
        ],
        'pagination': pagination,
    }


def create_tracking_entry(user, warehouse: Warehouse, *, product_id: Any, action: str, quantity: int,
                          reason: str = '', patient_id: Any = None,
                          ip_address: str = '', user_agent: str = '') -> StockTracking:
    """Manual ledger entry (receipt, write-off, count correction ...)."""
    from clinic.services.security import check_excessive_dispensing

    ensure_warehouse_access(user, warehouse)
    with transaction.atomic():
        product = find_product(warehouse, product_id, for_update=True)
        patient = None
        if patient_id:
            pk = parse_uuid(patient_id)
            patient = Student.objects.alive().filter(id=pk, warehouse=warehouse).first() if pk else None
            if patient is None:
                raise not_found('Student')
        movement = record_movement(product, action=action, quantity=quantity, staff=user, patient=patient,
                                   reason=reason, ip_address=ip_address, user_agent=user_agent)
        if action == StockTracking.ACTION_DISPENSED:
            check_excessive_dispensing(product, staff=user)
    return movement

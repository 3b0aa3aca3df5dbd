"""
Supplier purchases. Receiving a purchase adds its quantities to stock
through the ledger; cancelling it takes them back out with ``adjusted``
rows, so a purchase whose stock was already dispensed cannot be cancelled.
"""
from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from clinic.exceptions import bad_request, not_found
from clinic.models import Purchase, PurchaseItem, StockTracking, Supplier, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.audit import log_action
from clinic.services.common import as_float, clean_text, format_warehouse_brief, iso, money, parse_uuid
from clinic.services.inventory import find_product, record_movement

logger = logging.getLogger(__name__)


def generate_reference_no() -> str:
    return f"PUR-{timezone.now():%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


def format_supplier(s: Supplier) -> dict:
    return {
        'id': str(s.id),
        'name': s.name,
        'companyName': s.company_name,
        'email': s.email,
        'phone': s.phone,
        'address': s.address,
    }


def format_purchase(p: Purchase) -> dict:
    return {
        'id': str(p.id),
        'referenceNo': p.reference_no,
        'subTotal': as_float(p.sub_total),
        'taxRate': as_float(p.tax_rate),
        'grandTotal': as_float(p.grand_total),
        'paidAmount': as_float(p.paid_amount),
        'balance': as_float(p.balance),
        'notes': p.notes,
        'supplier': format_supplier(p.supplier) if p.supplier_id else None,
        'warehouse': format_warehouse_brief(p.warehouse),
        'receivedBy': p.received_by.username if p.received_by_id else None,
        'items': [
            {
                'id': str(i.id),
                'productId': str(i.product_id),
                'productName': i.product_name,
                'barcode': i.product.barcode,
                'unit': i.product.unit,
                'cost': as_float(i.cost),
                'quantity': i.quantity,
                'total': as_float(i.total),
            }
            for i in p.items.all() if not i.is_deleted
        ],
        'sync': p.sync,
        'createdAt': iso(p.created_at),
        'updatedAt': iso(p.updated_at),
    }


def get_purchase(reference_no: str) -> Purchase:
    p = (
        Purchase.objects.alive()
        .select_related('warehouse', 'supplier', 'received_by')
        .prefetch_related('items__product')
        .filter(reference_no=reference_no)
        .first()
    )
    if p is None:
        raise not_found('Purchase')
    return p


def list_purchases(user, warehouse: Optional[Warehouse] = None):
    qs = Purchase.objects.alive().select_related('warehouse', 'supplier', 'received_by')
    if warehouse is not None:
        ensure_warehouse_access(user, warehouse)
        qs = qs.filter(warehouse=warehouse)
    elif getattr(user, 'role', '') != 'super':
        qs = qs.filter(warehouse_id=user.warehouse_id)
    return qs.prefetch_related('items__product').order_by('-created_at')


def _resolve_supplier(warehouse: Warehouse, data: Dict[str, Any]) -> Optional[Supplier]:
    if data.get('supplierId'):
        pk = parse_uuid(data['supplierId'])
        supplier = Supplier.objects.alive().filter(id=pk, warehouse=warehouse).first() if pk else None
        if supplier is None:
            raise not_found('Supplier')
        return supplier
    details = data.get('supplier')
    if not details:
        return None
    name = clean_text(details['name'])
    supplier = Supplier.objects.alive().filter(warehouse=warehouse, name__iexact=name).first()
    if supplier is None:
        supplier = Supplier.objects.create(
            warehouse=warehouse,
            name=name,
            company_name=clean_text(details.get('companyName')),
            email=(details.get('email') or '').strip(),
            phone=(details.get('phone') or '').strip(),
            address=clean_text(details.get('address')),
        )
    return supplier


def create_purchase(user, warehouse: Warehouse, data: Dict[str, Any], *,
                    ip_address: str = '', user_agent: str = '') -> Purchase:
    """Record a supplier delivery and receive every item into stock."""
    ensure_warehouse_access(user, warehouse)
    reference_no = (data.get('referenceNo') or '').strip() or generate_reference_no()
    if Purchase.objects.filter(reference_no=reference_no).exists():
        raise bad_request(f'Purchase {reference_no} already exists', code='duplicate_reference')

    with transaction.atomic():
        supplier = _resolve_supplier(warehouse, data)
        try:
            with transaction.atomic():
                purchase = Purchase.objects.create(
                    reference_no=reference_no,
                    supplier=supplier,
                    tax_rate=money(data.get('taxRate')),
                    notes=clean_text(data.get('notes')),
                    received_by=user if getattr(user, 'pk', None) else None,
                    warehouse=warehouse,
                )
        except IntegrityError:
            raise bad_request(f'Purchase {reference_no} already exists', code='duplicate_reference')

        sub_total = Decimal('0.00')
        for item in sorted(data['items'], key=lambda i: str(i['productId'])):
            product = find_product(warehouse, item['productId'], for_update=True)
            cost = money(item['cost']) if item.get('cost') is not None else product.cost
            quantity = int(item['quantity'])
            record_movement(
                product,
                action=StockTracking.ACTION_RECEIVED,
                quantity=quantity,
                staff=user,
                reason=f'Received on purchase {reference_no}',
                ip_address=ip_address,
                user_agent=user_agent,
            )
            total = money(cost * quantity)
            PurchaseItem.objects.create(
                purchase=purchase,
                product=product,
                product_name=product.name,
                cost=cost,
                quantity=quantity,
                total=total,
                warehouse=warehouse,
            )
            sub_total += total

        purchase.sub_total = sub_total
        purchase.grand_total = money(sub_total * (1 + purchase.tax_rate / 100))
        purchase.paid_amount = money(data.get('paidAmount'))
        if purchase.paid_amount > purchase.grand_total:
            raise bad_request('paidAmount cannot exceed the grand total', code='invalid_payment')
        purchase.balance = purchase.grand_total - purchase.paid_amount
        purchase.save(update_fields=['sub_total', 'grand_total', 'paid_amount', 'balance'])
        log_action(user=user, action='purchase_create', object_type='purchase', object_id=purchase.id,
                   detail={'referenceNo': reference_no, 'items': len(data['items'])})

    logger.info('purchase %s received in %s', reference_no, warehouse.warehouse_code)
    return purchase


def update_purchase(user, purchase: Purchase, data: Dict[str, Any]) -> Purchase:
    """Only notes and the payment position of a purchase can change."""
    ensure_warehouse_access(user, purchase.warehouse)
    fields = ['updated_at', 'sync', 'synced_at']
    if 'notes' in data:
        purchase.notes = clean_text(data['notes'])
        fields.append('notes')
    for key, field in (('paidAmount', 'paid_amount'), ('balance', 'balance')):
        if data.get(key) is not None:
            value = money(data[key])
            if value > purchase.grand_total:
                raise bad_request(f'{key} cannot exceed the grand total', code='invalid_payment')
            setattr(purchase, field, value)
            fields.append(field)
    purchase.mark_unsynced()
    purchase.save(update_fields=fields)
    return purchase


def cancel_purchase(user, purchase: Purchase, *, cancelled_by=None,
                    ip_address: str = '', user_agent: str = '') -> Purchase:
    """Take the purchased quantities back out of stock and soft-delete the purchase."""
    ensure_warehouse_access(user, purchase.warehouse)
    actor = cancelled_by or user
    with transaction.atomic():
        locked = Purchase.objects.select_for_update().filter(id=purchase.id, is_deleted=False).first()
        if locked is None:
            raise not_found('Purchase')
        items = list(locked.items.filter(is_deleted=False).order_by('product_id'))
        for item in items:
            product = find_product(locked.warehouse, item.product_id, for_update=True)
            record_movement(
                product,
                action=StockTracking.ACTION_ADJUSTED,
                quantity=-item.quantity,
                staff=actor,
                reason=f'Purchase reversal for cancelled purchase {locked.reference_no}',
                ip_address=ip_address,
                user_agent=user_agent,
            )
        locked.items.filter(is_deleted=False).update(is_deleted=True, sync=False, synced_at=None,
                                                     updated_at=timezone.now())
        locked.soft_delete()
        log_action(user=actor, action='purchase_cancel', object_type='purchase', object_id=locked.id,
                   detail={'referenceNo': locked.reference_no, 'reversed': len(items)})
    logger.info('purchase %s cancelled by %s', locked.reference_no, getattr(actor, 'username', None))
    return locked

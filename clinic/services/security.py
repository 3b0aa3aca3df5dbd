"""
Anti-theft monitoring.

Suspicious activities are either recorded by staff or raised
automatically when a product's dispensed quantity over the trailing
window exceeds ``DISPENSE_ALERT_THRESHOLD``. Stock discrepancies compare
each product's on-hand quantity against the net of its ledger.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.db.models import Case, Count, F, IntegerField, Q, Sum, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from clinic.exceptions import bad_request, not_found
from clinic.models import Product, StockTracking, SuspiciousActivity, Warehouse
from clinic.permissions import ensure_warehouse_access
from clinic.services.common import clean_text, iso, paginate, parse_uuid

logger = logging.getLogger(__name__)

ALERTS_GROUP = 'alerts'
HIGH_RISK_MIN_ACTIVITIES = 2
HIGH_RISK_WINDOW_DAYS = 30


def broadcast(event_type: str, payload: dict) -> None:
    """Push an event to connected alert websockets once the transaction commits."""
    def _send():
        channel_layer = get_channel_layer()
        if channel_layer is None:
            return
        try:
            async_to_sync(channel_layer.group_send)(ALERTS_GROUP, {'type': event_type, **payload})
        except Exception:
            logger.exception('failed to broadcast %s', event_type)

    transaction.on_commit(_send)


def format_activity(a: SuspiciousActivity) -> dict:
    return {
        'id': str(a.id),
        'activityType': a.activity_type,
        'description': a.description,
        'severity': a.severity,
        'timestamp': iso(a.timestamp),
        'resolved': a.resolved,
        'resolution': a.resolution,
        'resolvedAt': iso(a.resolved_at),
        'resolvedBy': a.resolved_by.username if a.resolved_by_id else None,
        'staff': {'id': a.staff_id, 'username': a.staff.username} if a.staff_id else None,
        'product': {'id': str(a.product_id), 'name': a.product.name} if a.product_id else None,
        'warehouseId': str(a.warehouse_id),
    }


def record_activity(*, warehouse: Warehouse, activity_type: str, description: str = '',
                    severity: str = SuspiciousActivity.SEVERITY_MEDIUM, staff=None,
                    product: Optional[Product] = None) -> SuspiciousActivity:
    activity = SuspiciousActivity.objects.create(
        warehouse=warehouse,
        staff=staff,
        product=product,
        activity_type=activity_type,
        description=clean_text(description),
        severity=severity,
    )
    if severity == SuspiciousActivity.SEVERITY_HIGH:
        logger.warning(
            'SECURITY ALERT %s in %s: %s (staff=%s product=%s)',
            activity_type, warehouse.warehouse_code, activity.description,
            getattr(staff, 'username', None), getattr(product, 'name', None),
        )
        broadcast('security.alert', {
            'activityId': str(activity.id),
            'warehouseId': str(warehouse.id),
            'activityType': activity_type,
            'severity': severity,
            'description': activity.description,
        })
    return activity


def dispensed_in_window(product: Product, since) -> int:
    """Units dispensed since ``since``, net of units returned (cancelled consultations)."""
    agg = StockTracking.objects.alive().filter(product=product, timestamp__gte=since).aggregate(
        dispensed=Coalesce(Sum('quantity', filter=Q(action=StockTracking.ACTION_DISPENSED)), 0),
        returned=Coalesce(Sum('quantity', filter=Q(action=StockTracking.ACTION_RETURNED)), 0),
    )
    return max(0, int(agg['dispensed']) - int(agg['returned']))


def check_excessive_dispensing(product: Product, staff=None) -> Optional[SuspiciousActivity]:
    """Flag ``product`` when its dispensed total in the window passes the threshold.

    At most one unresolved flag per product is kept inside a window.
    """
    since = timezone.now() - timedelta(hours=settings.DISPENSE_ALERT_WINDOW_HOURS)
    total = dispensed_in_window(product, since)
    if total <= settings.DISPENSE_ALERT_THRESHOLD:
        return None
    already_flagged = SuspiciousActivity.objects.alive().filter(
        product=product,
        activity_type=SuspiciousActivity.TYPE_EXCESSIVE_DISPENSING,
        resolved=False,
        timestamp__gte=since,
    ).exists()
    if already_flagged:
        return None
    return record_activity(
        warehouse=product.warehouse,
        staff=staff,
        product=product,
        activity_type=SuspiciousActivity.TYPE_EXCESSIVE_DISPENSING,
        description=(
            f'{total} units of {product.name} dispensed in the last '
            f'{settings.DISPENSE_ALERT_WINDOW_HOURS}h (threshold {settings.DISPENSE_ALERT_THRESHOLD})'
        ),
        severity=SuspiciousActivity.SEVERITY_HIGH,
    )


def resolve_activity(activity_id, *, resolution: str, resolved_by, user=None) -> SuspiciousActivity:
    pk = parse_uuid(activity_id)
    activity = SuspiciousActivity.objects.alive().filter(id=pk).first() if pk else None
    if activity is None:
        raise not_found('Activity')
    if user is not None:
        ensure_warehouse_access(user, activity.warehouse)
    if activity.resolved:
        raise bad_request('Activity already resolved', code='already_resolved')
    activity.resolved = True
    activity.resolution = clean_text(resolution)
    activity.resolved_by = resolved_by
    activity.resolved_at = timezone.now()
    activity.mark_unsynced()
    activity.save()
    return activity


def stock_discrepancies(warehouse: Warehouse, limit: int = 10) -> list[dict]:
    """Products whose quantity differs from the net of their ledger rows."""
    live = Q(stock_movements__is_deleted=False)
    products = Product.objects.alive().filter(warehouse=warehouse).annotate(
        ledger_net=Coalesce(Sum(
            Case(
                When(stock_movements__action__in=[StockTracking.ACTION_RECEIVED, StockTracking.ACTION_RETURNED,
                                                  StockTracking.ACTION_ADJUSTED],
                     then='stock_movements__quantity'),
                When(stock_movements__action__in=list(StockTracking.OUTBOUND),
                     then=-F('stock_movements__quantity')),
                default=0,
                output_field=IntegerField(),
            ),
            filter=live,
        ), 0),
        movement_count=Count('stock_movements', filter=live),
    )
    rows = []
    for p in products:
        difference = p.quantity - p.ledger_net
        if difference == 0:
            continue
        rows.append({
            'productId': str(p.id),
            'productName': p.name,
            'currentStock': p.quantity,
            'expectedStock': p.ledger_net,
            'difference': difference,
            'movements': p.movement_count,
        })
    rows.sort(key=lambda r: abs(r['difference']), reverse=True)
    return rows[:limit]


def high_risk_staff(warehouse: Warehouse) -> list[dict]:
    since = timezone.now() - timedelta(days=HIGH_RISK_WINDOW_DAYS)
    rows = (
        SuspiciousActivity.objects.alive()
        .filter(warehouse=warehouse, timestamp__gte=since, staff__isnull=False)
        .values('staff_id', 'staff__username', 'staff__role')
        .annotate(activityCount=Count('id'))
        .filter(activityCount__gt=HIGH_RISK_MIN_ACTIVITIES)
        .order_by('-activityCount')
    )
    return [
        {
            'staffId': r['staff_id'],
            'username': r['staff__username'],
            'role': r['staff__role'],
            'activityCount': r['activityCount'],
        }
        for r in rows
    ]


def anti_theft_report(warehouse: Warehouse, *, severity: Optional[str] = None,
                      page: int = 1, limit: int = 20) -> dict:
    qs = SuspiciousActivity.objects.alive().filter(warehouse=warehouse)
    if severity:
        qs = qs.filter(severity=severity)
    rows, pagination = paginate(
        qs.select_related('staff', 'product', 'resolved_by').order_by('-timestamp'), page, limit
    )
    discrepancies = stock_discrepancies(warehouse)
    risky = high_risk_staff(warehouse)
    by_severity = dict(
        SuspiciousActivity.objects.alive().filter(warehouse=warehouse)
        .values_list('severity').annotate(c=Count('id'))
    )
    unresolved = SuspiciousActivity.objects.alive().filter(warehouse=warehouse, resolved=False).count()
    return {
        'suspiciousActivities': [format_activity(a) for a in rows],
        'stockDiscrepancies': discrepancies,
        'highRiskStaff': risky,
        'securityMetrics': {
            'totalActivities': sum(by_severity.values()),
            'highSeverity': by_severity.get(SuspiciousActivity.SEVERITY_HIGH, 0),
            'mediumSeverity': by_severity.get(SuspiciousActivity.SEVERITY_MEDIUM, 0),
            'lowSeverity': by_severity.get(SuspiciousActivity.SEVERITY_LOW, 0),
            'unresolved': unresolved,
            'discrepancyCount': len(discrepancies),
            'highRiskStaffCount': len(risky),
        },
        'pagination': pagination,
    }

"""
Read-only aggregates: dashboards, product analytics, monthly reports and
the CSV / Excel exports.
"""
from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta
from decimal import Decimal
from typing import NamedTuple, Optional

from django.conf import settings
from django.db.models import Count, DecimalField, Max, Q, Sum, Value
from django.db.models.functions import Coalesce, TruncMonth
from django.utils import timezone
from openpyxl import Workbook

from clinic.exceptions import bad_request
from clinic.models import (
    Consultation, ConsultationItem, Product, StockTracking, Student, SuspiciousActivity, User, Warehouse,
)
from clinic.services.common import as_float, format_warehouse_brief, iso

ZERO = Value(Decimal('0'), output_field=DecimalField())


class ClinicExport(NamedTuple):
    report_type: str
    headers: list
    rows: list
    stem: str
    start: datetime
    end: datetime


def payment_status(c: Consultation) -> str:
    if c.balance == 0:
        return 'Paid'
    if c.balance == c.grand_total:
        return 'Unpaid'
    return 'Partial'


def stock_status(quantity: int) -> str:
    if quantity == 0:
        return 'Out of Stock'
    if quantity <= settings.LOW_STOCK_THRESHOLD:
        return 'Low Stock'
    return 'In Stock'


def _recent(qs, n: int = 5) -> list[dict]:
    rows = qs.select_related('student').prefetch_related('items', 'payment_methods').order_by('-created_at')[:n]
    out = []
    for c in rows:
        payments = [p for p in c.payment_methods.all() if not p.is_deleted]
        out.append({
            'id': str(c.id),
            'invoiceNo': c.invoice_no,
            'studentName': c.student.name if c.student_id else 'Walk-in Student',
            'studentMatric': c.student.matric_number if c.student_id else 'N/A',
            'diagnosis': c.diagnosis or 'General Consultation',
            'grandTotal': as_float(c.grand_total),
            'createdAt': iso(c.created_at),
            'paymentMethod': payments[0].method if payments else 'cash',
            'itemsCount': len([i for i in c.items.all() if not i.is_deleted]),
        })
    return out


def dashboard_stats() -> dict:
    consultations = Consultation.objects.alive()
    revenue = consultations.aggregate(total=Coalesce(Sum('grand_total'), ZERO))['total']
    return {
        'totalUsers': User.objects.alive().count(),
        'totalWarehouses': Warehouse.objects.alive().count(),
        'totalProducts': Product.objects.alive().count(),
        'totalConsultations': consultations.count(),
        'totalStudents': Student.objects.alive().count(),
        'totalRevenue': as_float(revenue),
        'recentConsultations': _recent(consultations),
    }


def warehouse_dashboard(w: Warehouse) -> dict:
    consultations = Consultation.objects.alive().filter(warehouse=w)
    total_consultations = consultations.count()
    revenue = consultations.aggregate(total=Coalesce(Sum('grand_total'), ZERO))['total']
    low_stock = (
        Product.objects.alive()
        .filter(warehouse=w, quantity__lte=settings.CRITICAL_STOCK_THRESHOLD)
        .order_by('quantity', 'name')[:10]
    )
    top = (
        ConsultationItem.objects.alive()
        .filter(warehouse=w, consultation__is_deleted=False)
        .values('product_id', 'product_name')
        .annotate(prescriptions=Sum('quantity'), revenue=Sum('total'))
        .order_by('-revenue')[:5]
    )
    since = (timezone.localtime() - timedelta(days=183)).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    by_month = (
        consultations.filter(created_at__gte=since)
        .annotate(month=TruncMonth('created_at'))
        .values('month')
        .annotate(consultations=Count('id'), revenue=Sum('grand_total'))
        .order_by('month')
    )
    roles = (
        User.objects.alive().filter(warehouse=w)
        .values('role').annotate(value=Count('id')).order_by('role')
    )
    departments = (
        Student.objects.alive().filter(warehouse=w).exclude(department='')
        .values('department').annotate(value=Count('id')).order_by('-value', 'department')
    )
    return {
        'warehouse': {
            'id': str(w.id),
            'name': w.name,
            'code': w.warehouse_code,
            'address': w.address,
            'email': w.email,
            'phone': w.phone_number,
        },
        'metrics': {
            'totalUsers': User.objects.alive().filter(warehouse=w).count(),
            'totalProducts': Product.objects.alive().filter(warehouse=w).count(),
            'totalConsultations': total_consultations,
            'totalStudents': Student.objects.alive().filter(warehouse=w).count(),
            'totalRevenue': as_float(revenue),
            'avgConsultationValue': round(as_float(revenue) / total_consultations, 2) if total_consultations else 0,
        },
        'recentConsultations': _recent(consultations),
        'lowStockProducts': [
            {'id': str(p.id), 'name': p.name, 'barcode': p.barcode, 'quantity': p.quantity, 'unit': p.unit}
            for p in low_stock
        ],
        'topMedicines': [
            {
                'productId': str(t['product_id']),
                'name': t['product_name'],
                'prescriptions': t['prescriptions'] or 0,
                'revenue': as_float(t['revenue']),
            }
            for t in top
        ],
        'consultationsByMonth': [
            {
                'month': m['month'].strftime('%Y-%m'),
                'consultations': m['consultations'],
                'revenue': as_float(m['revenue']),
            }
            for m in by_month
        ],
        'userRoles': [{'name': r['role'], 'value': r['value']} for r in roles],
        'studentDepartments': [{'name': d['department'], 'value': d['value']} for d in departments],
    }


def _month_keys(n: int = 12) -> list[str]:
    now = timezone.localtime()
    year, month = now.year, now.month
    keys = []
    for _ in range(n):
        keys.append(f'{year}-{month:02d}')
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def product_analytics(w: Warehouse, product: Product) -> dict:
    from clinic.services.inventory import format_product

    items = list(
        ConsultationItem.objects.alive()
        .filter(product=product, consultation__is_deleted=False)
        .select_related('consultation__student')
        .order_by('-consultation__created_at')
    )
    received = StockTracking.objects.alive().filter(
        product=product, action=StockTracking.ACTION_RECEIVED
    ).aggregate(total=Coalesce(Sum('quantity'), 0))['total']
    total_sold = sum(i.quantity for i in items)
    revenue = sum((i.total for i in items), Decimal('0'))
    profit = sum((i.profit for i in items), Decimal('0'))

    monthly = {key: {'quantity': 0, 'revenue': 0.0} for key in _month_keys()}
    for i in items:
        key = timezone.localtime(i.consultation.created_at).strftime('%Y-%m')
        if key in monthly:
            monthly[key]['quantity'] += i.quantity
            monthly[key]['revenue'] += as_float(i.total)

    return {
        'product': format_product(product),
        'statistics': {
            'totalSold': total_sold,
            'totalReceived': received,
            'totalRevenue': as_float(revenue),
            'profit': as_float(profit),
            'currentStock': product.quantity,
            'stockValue': as_float(product.cost * product.quantity),
        },
        'salesHistory': [
            {
                'id': str(i.id),
                'invoiceNo': i.consultation.invoice_no,
                'date': iso(i.consultation.created_at),
                'student': i.consultation.student.name if i.consultation.student_id else 'Walk-in Student',
                'quantity': i.quantity,
                'price': as_float(i.selected_price),
                'total': as_float(i.total),
            }
            for i in items[:50]
        ],
        'monthlyData': [{'month': k, **v} for k, v in monthly.items()],
        'warehouse': format_warehouse_brief(w),
    }


def month_bounds(month: int, year: int):
    if not 1 <= int(month) <= 12:
        raise bad_request('month must be between 1 and 12', code='invalid_month')
    start = timezone.make_aware(datetime(int(year), int(month), 1))
    if int(month) == 12:
        end = timezone.make_aware(datetime(int(year) + 1, 1, 1))
    else:
        end = timezone.make_aware(datetime(int(year), int(month) + 1, 1))
    return start, end


def _month_consultations(w: Warehouse, start, end):
    return list(
        Consultation.objects.alive()
        .filter(warehouse=w, created_at__gte=start, created_at__lt=end)
        .select_related('student')
        .prefetch_related('items')
        .order_by('-created_at')
    )


def monthly_report(w: Warehouse, *, month: int, year: int, report_type: str = 'all') -> dict:
    start, end = month_bounds(month, year)
    report = {
        'warehouse': format_warehouse_brief(w),
        'period': {'month': int(month), 'year': int(year), 'startDate': iso(start), 'endDate': iso(end)},
    }
    if report_type in ('all', 'inventory'):
        products = list(Product.objects.alive().filter(warehouse=w).order_by('name'))
        report['inventory'] = {
            'totalProducts': len(products),
            'totalStockValue': as_float(sum((p.cost * p.quantity for p in products), Decimal('0'))),
            'lowStockItems': sum(1 for p in products if p.quantity <= settings.LOW_STOCK_THRESHOLD),
            'outOfStockItems': sum(1 for p in products if p.quantity == 0),
            'products': [
                {
                    'id': str(p.id),
                    'name': p.name,
                    'barcode': p.barcode,
                    'quantity': p.quantity,
                    'unit': p.unit,
                    'cost': as_float(p.cost),
                    'wholesalePrice': as_float(p.wholesale_price),
                    'retailPrice': as_float(p.retail_price),
                    'stockValue': as_float(p.cost * p.quantity),
                    'status': stock_status(p.quantity),
                }
                for p in products
            ],
        }
    if report_type in ('all', 'sales'):
        sales = _month_consultations(w, start, end)
        revenue = sum((c.grand_total for c in sales), Decimal('0'))
        report['sales'] = {
            'totalSales': len(sales),
            'totalRevenue': as_float(revenue),
            'totalItemsSold': sum(i.quantity for c in sales for i in c.items.all() if not i.is_deleted),
            'averageOrderValue': round(as_float(revenue) / len(sales), 2) if sales else 0,
            'completedPayments': sum(1 for c in sales if c.balance == 0),
            'pendingPayments': sum(1 for c in sales if c.balance > 0),
            'sales': [
                {
                    'id': str(c.id),
                    'invoiceNo': c.invoice_no,
                    'date': iso(c.created_at),
                    'customer': c.student.name if c.student_id else 'Walk-in Customer',
                    'items': len([i for i in c.items.all() if not i.is_deleted]),
                    'total': as_float(c.grand_total),
                    'balance': as_float(c.balance),
                    'status': payment_status(c),
                }
                for c in sales
            ],
        }
        daily: dict[str, dict] = {}
        for c in sorted(sales, key=lambda c: c.created_at):
            day = timezone.localtime(c.created_at).date().isoformat()
            entry = daily.setdefault(day, {'date': day, 'revenue': 0.0, 'orders': 0})
            entry['revenue'] += as_float(c.grand_total)
            entry['orders'] += 1
        report['dailySales'] = list(daily.values())
        top = (
            ConsultationItem.objects.alive()
            .filter(consultation__warehouse=w, consultation__is_deleted=False,
                    consultation__created_at__gte=start, consultation__created_at__lt=end)
            .values('product_id', 'product_name')
            .annotate(quantity=Sum('quantity'), revenue=Sum('total'))
            .order_by('-quantity')[:10]
        )
        report['topProducts'] = [
            {
                'productId': str(t['product_id']),
                'productName': t['product_name'],
                'quantity': t['quantity'] or 0,
                'revenue': as_float(t['revenue']),
            }
            for t in top
        ]
    return report


# -----------------------------------------------------------------------------
# CSV exports
# -----------------------------------------------------------------------------
INVENTORY_HEADER = ['Product Name', 'Barcode', 'Quantity', 'Unit', 'Status', 'Last Updated']
CONSULTATION_HEADER = ['Invoice No', 'Date', 'Student', 'Student Matric', 'Items Count', 'Diagnosis', 'Status']
ITEM_HEADER = ['Invoice No', 'Date', 'Student', 'Medicine Name', 'Quantity Dispensed', 'Dosage', 'Frequency', 'Duration']


def _inventory_rows(w: Warehouse):
    for p in Product.objects.alive().filter(warehouse=w).order_by('name'):
        yield [p.name, p.barcode, p.quantity, p.unit, stock_status(p.quantity),
               timezone.localtime(p.updated_at).date().isoformat()]


def _consultation_row(c: Consultation) -> list:
    return [
        c.invoice_no,
        timezone.localtime(c.created_at).date().isoformat(),
        c.student.name if c.student_id else 'Walk-in Student',
        c.student.matric_number if c.student_id else 'N/A',
        len([i for i in c.items.all() if not i.is_deleted]),
        c.diagnosis or 'General Consultation',
        payment_status(c),
    ]


def write_export(out, w: Warehouse, report_type: str, *, month: Optional[int] = None,
                 year: Optional[int] = None) -> str:
    """Write the ``report_type`` CSV for ``w`` into ``out`` and return its filename."""
    writer = csv.writer(out)
    today = timezone.localdate().isoformat()
    if report_type == 'inventory':
        writer.writerow(INVENTORY_HEADER)
        writer.writerows(_inventory_rows(w))
        return f'{w.warehouse_code}_inventory_{today}.csv'

    if not month or not year:
        raise bad_request('month and year are required for this report', code='missing_period')
    start, end = month_bounds(month, year)
    sales = _month_consultations(w, start, end)
    if report_type == 'sales':
        writer.writerow(CONSULTATION_HEADER)
        writer.writerows(_consultation_row(c) for c in sales)
        return f'{w.warehouse_code}_sales_{int(year)}_{int(month):02d}.csv'

    if report_type == 'monthly':
        products = list(Product.objects.alive().filter(warehouse=w))
        period = start.strftime('%B %Y')
        writer.writerow(['MONTHLY REPORT'])
        writer.writerow([f'Warehouse: {w.name} ({w.warehouse_code})'])
        writer.writerow([f'Period: {period}'])
        writer.writerow([f'Generated: {today}'])
        writer.writerow([])
        writer.writerow(['SUMMARY'])
        writer.writerow(['Report Period', period])
        writer.writerow(['Total Medicines', len(products)])
        writer.writerow(['Total Consultations', len(sales)])
        writer.writerow(['Total Medicines Dispensed',
                         sum(i.quantity for c in sales for i in c.items.all() if not i.is_deleted)])
        writer.writerow(['Total Medicines in Stock', sum(p.quantity for p in products)])
        writer.writerow(['Low Stock Items', sum(1 for p in products if p.quantity <= settings.LOW_STOCK_THRESHOLD)])
        writer.writerow(['Out of Stock Items', sum(1 for p in products if p.quantity == 0)])
        writer.writerow([])
        writer.writerow(['INVENTORY'])
        writer.writerow(INVENTORY_HEADER)
        writer.writerows(_inventory_rows(w))
        writer.writerow([])
        writer.writerow(['CONSULTATIONS'])
        writer.writerow(CONSULTATION_HEADER)
        writer.writerows(_consultation_row(c) for c in sales)
        writer.writerow([])
        writer.writerow(['DETAILED CONSULTATION ITEMS'])
        writer.writerow(ITEM_HEADER)
        for c in sales:
            for i in c.items.all():
                if i.is_deleted:
                    continue
                writer.writerow([
                    c.invoice_no,
                    timezone.localtime(c.created_at).date().isoformat(),
                    c.student.name if c.student_id else 'Walk-in Student',
                    i.product_name, i.quantity, i.dosage or 'N/A', i.frequency or 'N/A', i.duration or 'N/A',
                ])
        return f'{w.warehouse_code}_monthly_report_{int(year)}_{int(month):02d}.csv'

    raise bad_request(f'unknown report type {report_type}', code='invalid_report_type')


def _span(start, end) -> str:
    return f'{timezone.localtime(start).date().isoformat()}_to_{timezone.localtime(end).date().isoformat()}'


def _date(dt) -> str:
    return timezone.localtime(dt).date().isoformat()


def clinic_export_table(w: Warehouse, report_type: str, *, date_from=None, date_to=None) -> ClinicExport:
    """Build one date-ranged clinic export; the range defaults to the last 30 days."""
    end = date_to or timezone.now()
    start = date_from or end - timedelta(days=30)

    if report_type == 'consultations':
        headers = ['Consultation ID', 'Date', 'Student Name', 'Matric Number', 'Diagnosis', 'Symptoms',
                   'Treatment', 'Medicines Prescribed', 'Total Amount', 'Amount Paid', 'Balance',
                   'Payment Method', 'Status']
        rows = []
        qs = (
            Consultation.objects.alive()
            .filter(warehouse=w, created_at__gte=start, created_at__lte=end)
            .select_related('student').prefetch_related('items', 'payment_methods')
            .order_by('-created_at')
        )
        for c in qs:
            payments = [p for p in c.payment_methods.all() if not p.is_deleted]
            rows.append([
                c.invoice_no,
                _date(c.created_at),
                c.student.name if c.student_id else 'Walk-in Patient',
                c.student.matric_number if c.student_id else 'N/A',
                c.diagnosis or 'General Consultation',
                c.symptoms or 'N/A',
                c.treatment or 'N/A',
                len([i for i in c.items.all() if not i.is_deleted]),
                c.grand_total, c.paid_amount, c.balance,
                payments[0].method if payments else 'cash',
                payment_status(c),
            ])
        stem = f'consultations_report_{w.warehouse_code}_{_span(start, end)}'

    elif report_type == 'medicines':
        headers = ['Medicine Name', 'Barcode', 'Current Stock', 'Unit', 'Cost Price', 'Retail Price',
                   'Total Dispensed', 'Revenue Generated', 'Stock Status', 'Last Dispensed']
        live_items = Q(consultation_items__is_deleted=False, consultation_items__consultation__is_deleted=False)
        products = Product.objects.alive().filter(warehouse=w).annotate(
            dispensed=Coalesce(Sum('consultation_items__quantity', filter=live_items), 0),
            revenue=Coalesce(Sum('consultation_items__total', filter=live_items), ZERO),
        ).order_by('name')
        rows = []
        for p in products:
            if p.quantity <= settings.CRITICAL_STOCK_THRESHOLD:
                status = 'Critical'
            elif p.quantity <= settings.LOW_STOCK_THRESHOLD:
                status = 'Low'
            else:
                status = 'Good'
            rows.append([
                p.name, p.barcode, p.quantity, p.unit, p.cost, p.retail_price, p.dispensed, p.revenue, status,
                _date(p.last_dispensed) if p.last_dispensed else 'Never',
            ])
        stem = f'medicines_inventory_{w.warehouse_code}_{timezone.localdate().isoformat()}'

    elif report_type == 'students':
        headers = ['Student Name', 'Matric Number', 'Department', 'Level', 'Phone', 'Email',
                   'Account Balance', 'Total Consultations', 'Total Spent', 'Last Visit', 'Registration Date']
        in_range = Q(consultations__is_deleted=False, consultations__created_at__gte=start,
                     consultations__created_at__lte=end)
        students = Student.objects.alive().filter(warehouse=w).annotate(
            visits=Count('consultations', filter=in_range),
            spent=Coalesce(Sum('consultations__grand_total', filter=in_range), ZERO),
            last_visit=Max('consultations__created_at', filter=in_range),
        ).order_by('name')
        rows = [
            [
                s.name, s.matric_number or 'N/A', s.department or 'N/A', s.level or 'N/A', s.phone, s.email,
                s.account_balance, s.visits, s.spent,
                _date(s.last_visit) if s.last_visit else 'Never',
                _date(s.created_at),
            ]
            for s in students
        ]
        stem = f'students_report_{w.warehouse_code}_{_span(start, end)}'

    elif report_type == 'drug_tracking':
        headers = ['Date & Time', 'Medicine Name', 'Action', 'Quantity', 'Previous Stock', 'New Stock',
                   'Staff Name', 'Staff Role', 'Patient Name', 'Reason', 'IP Address']
        qs = (
            StockTracking.objects.alive()
            .filter(warehouse=w, timestamp__gte=start, timestamp__lte=end)
            .select_related('product', 'staff', 'patient')
            .order_by('-timestamp')
        )
        rows = [
            [
                timezone.localtime(m.timestamp).strftime('%Y-%m-%d %H:%M:%S'),
                m.product.name, m.action, m.quantity, m.previous_stock, m.new_stock,
                m.staff.username if m.staff_id else 'N/A',
                m.staff.role if m.staff_id else 'N/A',
                m.patient.name if m.patient_id else 'N/A',
                m.reason or 'N/A',
                m.ip_address or 'N/A',
            ]
            for m in qs
        ]
        stem = f'drug_tracking_{w.warehouse_code}_{_span(start, end)}'

    elif report_type == 'security_audit':
        headers = ['Date & Time', 'Activity Type', 'Severity', 'Description', 'Staff Name', 'Medicine Name',
                   'Status', 'Resolved By', 'Resolution Date']
        qs = (
            SuspiciousActivity.objects.alive()
            .filter(warehouse=w, timestamp__gte=start, timestamp__lte=end)
            .select_related('staff', 'product', 'resolved_by')
            .order_by('-timestamp')
        )
        rows = [
            [
                timezone.localtime(a.timestamp).strftime('%Y-%m-%d %H:%M:%S'),
                a.activity_type, a.severity.upper(), a.description,
                a.staff.username if a.staff_id else 'Unknown',
                a.product.name if a.product_id else 'N/A',
                'Resolved' if a.resolved else 'Open',
                a.resolved_by.username if a.resolved_by_id else 'N/A',
                _date(a.resolved_at) if a.resolved_at else 'N/A',
            ]
            for a in qs
        ]
        stem = f'security_audit_{w.warehouse_code}_{_span(start, end)}'

    else:
        raise bad_request(f'unknown report type {report_type}', code='invalid_report_type')

    return ClinicExport(report_type, headers, rows, stem, start, end)


def write_clinic_csv(out, export: ClinicExport) -> str:
    writer = csv.writer(out)
    writer.writerow(export.headers)
    writer.writerows(export.rows)
    return f'{export.stem}.csv'


def clinic_workbook(w: Warehouse, export: ClinicExport) -> Workbook:
    """The export sheet followed by a "Clinic Info" sheet describing it."""
    wb = Workbook()
    sheet = wb.active
    sheet.title = export.report_type
    sheet.append(export.headers)
    for row in export.rows:
        sheet.append(row)
    sheet.freeze_panes = 'A2'

    info = wb.create_sheet('Clinic Info')
    details = [
        ('Clinic Name', w.name),
        ('Clinic ID', w.warehouse_code),
        ('Address', w.address),
        ('Phone', w.phone_number),
        ('Email', w.email),
        ('Report Type', export.report_type.replace('_', ' ').upper()),
        ('Report Period', f'{_date(export.start)} - {_date(export.end)}'),
        ('Generated On', timezone.localtime().strftime('%Y-%m-%d %H:%M:%S')),
        ('Total Records', len(export.rows)),
    ]
    info.append([label for label, _ in details])
    info.append([value for _, value in details])
    return wb


def write_clinic_xlsx(out, w: Warehouse, export: ClinicExport) -> str:
    buf = io.BytesIO()
    clinic_workbook(w, export).save(buf)
    out.write(buf.getvalue())
    return f'{export.stem}.xlsx'

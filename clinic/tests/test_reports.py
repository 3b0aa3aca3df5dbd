import csv
import io

import pytest
from django.utils import timezone
from openpyxl import load_workbook

from clinic.models import Student

pytestmark = pytest.mark.django_db

XLSX = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def rows(response):
    return list(csv.reader(io.StringIO(response.content.decode('utf-8'))))


def consult(api, doctor, product, quantity, **extra):
    payload = {
        'medicines': [{'productId': str(product.id), 'quantity': quantity}],
        'warehouseId': 'MAIN',
        'doctor': {'id': doctor.id},
    }
    payload.update(extra)
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 201
    return r.data['data']


def test_inventory_export_is_csv(api, warehouse, make_product):
    make_product(warehouse, name='Paracetamol', barcode='111', quantity=0)
    make_product(warehouse, name='Zinc', barcode='222', quantity=80)
    r = api.post('/api/warehouse/reports/export', {'warehouseId': 'MAIN', 'reportType': 'inventory'}, format='json')
    assert r.status_code == 200
    assert r['Content-Type'].startswith('text/csv')
    assert 'attachment; filename="MAIN_inventory_' in r['Content-Disposition']
    data = rows(r)
    assert data[0] == ['Product Name', 'Barcode', 'Quantity', 'Unit', 'Status', 'Last Updated']
    assert [row[:5] for row in data[1:]] == [
        ['Paracetamol', '111', '0', 'tablet', 'Out of Stock'],
        ['Zinc', '222', '80', 'tablet', 'In Stock'],
    ]


def test_sales_export_needs_period(api, warehouse):
    r = api.post('/api/warehouse/reports/export', {'warehouseId': 'MAIN', 'reportType': 'sales'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'missing_period'


def test_unknown_export_type(api, warehouse):
    now = timezone.localtime()
    r = api.post('/api/warehouse/reports/export', {
        'warehouseId': 'MAIN', 'reportType': 'payroll', 'month': now.month, 'year': now.year,
    }, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_report_type'


def test_sales_export(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    created = consult(api, doctor, product, 2, studentId=str(student.id))
    now = timezone.localtime()
    r = api.post('/api/warehouse/reports/export', {
        'warehouseId': 'MAIN', 'reportType': 'sales', 'month': now.month, 'year': now.year,
    }, format='json')
    assert r.status_code == 200
    assert f'MAIN_sales_{now.year}_{now.month:02d}.csv' in r['Content-Disposition']
    data = rows(r)
    assert data[1][0] == created['invoiceNo']
    assert data[1][2:5] == ['Ada Obi', 'CSC/2021/001', '1']
    assert data[1][6] == 'Paid'


def test_monthly_report(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=20)
    consult(api, doctor, product, 3, grandTotal='75.00', balance='25.00')
    now = timezone.localtime()
    r = api.post('/api/warehouse/reports/monthly', {
        'warehouseId': 'MAIN', 'month': now.month, 'year': now.year,
    }, format='json')
    assert r.status_code == 200
    data = r.data['data']
    assert data['inventory']['totalProducts'] == 1
    assert data['sales']['totalSales'] == 1
    assert data['sales']['totalItemsSold'] == 3
    assert data['sales']['pendingPayments'] == 1
    assert data['topProducts'][0]['quantity'] == 3
    assert len(data['dailySales']) == 1


def test_monthly_report_validates_month(api, warehouse):
    r = api.post('/api/warehouse/reports/monthly', {'warehouseId': 'MAIN', 'month': 13, 'year': 2024},
                 format='json')
    assert r.status_code == 400


def test_clinic_export_medicines(api, warehouse, doctor, make_product):
    product = make_product(warehouse, name='Artemether', quantity=8)
    consult(api, doctor, product, 4)
    r = api.post('/api/warehouse/reports/clinic-export', {'warehouseId': 'MAIN', 'type': 'medicines', 'format': 'csv'},
                 format='json')
    assert r.status_code == 200
    assert r['Content-Type'].startswith('text/csv')
    data = rows(r)
    assert data[0][0] == 'Medicine Name'
    assert data[1][0] == 'Artemether'
    assert data[1][2] == '4'
    assert data[1][6] == '4'
    assert data[1][8] == 'Critical'


def test_clinic_export_defaults_to_workbook(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    consult(api, doctor, product, 1, studentId=str(student.id))
    consult(api, doctor, product, 1, studentId=str(student.id))
    Student.objects.create(name='Bola Ade', matric_number='LAW/2022/007', warehouse=warehouse)

    r = api.post('/api/warehouse/reports/clinic-export', {'warehouseId': 'MAIN', 'type': 'students'},
                 format='json')
    assert r.status_code == 200
    assert r['Content-Type'] == XLSX
    assert r['Content-Disposition'].endswith('.xlsx"')

    wb = load_workbook(io.BytesIO(r.content))
    assert wb.sheetnames == ['students', 'Clinic Info']
    sheet = list(wb['students'].iter_rows(values_only=True))
    assert sheet[0][0] == 'Student Name'
    assert [row[0] for row in sheet[1:]] == ['Ada Obi', 'Bola Ade']
    assert (sheet[1][7], sheet[1][8]) == (2, 50)
    assert (sheet[2][7], sheet[2][9]) == (0, 'Never')

    info = list(wb['Clinic Info'].iter_rows(values_only=True))
    details = dict(zip(info[0], info[1]))
    assert details['Clinic ID'] == 'MAIN'
    assert details['Report Type'] == 'STUDENTS'
    assert details['Total Records'] == 2


def test_students_export_is_one_query(warehouse, student, django_assert_num_queries):
    from clinic.services import reports

    Student.objects.create(name='Bola Ade', matric_number='LAW/2022/007', warehouse=warehouse)
    with django_assert_num_queries(1):
        export = reports.clinic_export_table(warehouse, 'students')
    assert len(export.rows) == 2


def test_security_audit_export(api, warehouse, admin_user):
    from clinic.services.security import record_activity

    record_activity(warehouse=warehouse, activity_type='missing_stock', staff=admin_user, description='Short by 2')
    r = api.post('/api/warehouse/reports/clinic-export', {
        'warehouseId': 'MAIN', 'type': 'security_audit', 'format': 'csv',
    }, format='json')
    assert r.status_code == 200
    data = rows(r)
    assert data[1][1:5] == ['missing_stock', 'MEDIUM', 'Short by 2', 'admin1']
    assert data[1][6] == 'Open'


def test_clinic_export_rejects_inverted_range(api, warehouse):
    r = api.post('/api/warehouse/reports/clinic-export', {
        'warehouseId': 'MAIN', 'type': 'consultations', 'dateFrom': '2024-05-10', 'dateTo': '2024-05-01',
    }, format='json')
    assert r.status_code == 400


def test_dashboard_stats_super_only(api, super_api, warehouse, doctor, make_product):
    product = make_product(warehouse)
    consult(api, doctor, product, 1)
    assert api.get('/api/dashboard/stats').status_code == 403
    r = super_api.get('/api/dashboard/stats')
    assert r.status_code == 200
    data = r.data['data']
    assert data['totalConsultations'] == 1
    assert data['totalWarehouses'] == 1
    assert data['totalRevenue'] == 25.0
    assert len(data['recentConsultations']) == 1

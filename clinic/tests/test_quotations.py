from decimal import Decimal

import pytest

from clinic.models import BalanceTransaction, Consultation, Quotation, StockTracking

pytestmark = pytest.mark.django_db


@pytest.fixture
def quotation(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse, quantity=20)
    r = api.post('/api/quotation', {
        'warehouseId': 'MAIN',
        'quotationNo': 'QUO-001',
        'items': [{'productId': str(product.id), 'quantity': 2, 'price': '25.00'}],
        'studentId': str(student.id),
        'doctorId': str(doctor.id),
    }, format='json')
    assert r.status_code == 201
    return Quotation.objects.get(quotation_no='QUO-001')


def test_quotation_does_not_touch_stock(api, quotation):
    product = quotation.items.get().product
    assert product.quantity == 20
    assert not StockTracking.objects.filter(product=product, action='dispensed').exists()
    r = api.get('/api/quotation/QUO-001')
    assert r.data['data']['grandTotal'] == 50.0
    assert r.data['data']['status'] == 'pending'


def test_convert_uses_student_balance(api, quotation, student, doctor):
    student.account_balance = Decimal('30.00')
    student.save(update_fields=['account_balance'])

    r = api.post('/api/quotation/convert', {
        'quotationNo': 'QUO-001',
        'invoiceNo': 'CONS-Q1',
        'amountPaid': '10.00',
        'paymentMethods': [{'method': 'cash', 'amount': '10.00'}],
    }, format='json')
    assert r.status_code == 201
    data = r.data['data']
    assert data['balanceUsed'] == 30.0
    assert data['remainingBalance'] == 10.0
    assert data['consultation']['invoiceNo'] == 'CONS-Q1'
    assert data['consultation']['balance'] == 10.0
    assert data['consultation']['doctor']['id'] == doctor.id

    product = quotation.items.get().product
    product.refresh_from_db()
    assert product.quantity == 18
    student.refresh_from_db()
    assert student.account_balance == 0
    txn = BalanceTransaction.objects.get(student=student)
    assert (txn.type, txn.amount) == ('DEBIT', Decimal('30.00'))
    assert txn.consultation.invoice_no == 'CONS-Q1'
    assert txn.description == 'Quotation conversion - Invoice CONS-Q1'

    quotation.refresh_from_db()
    assert quotation.status == 'converted'
    assert quotation.converted_consultation.invoice_no == 'CONS-Q1'


def test_convert_without_student_balance(api, quotation, student):
    student.account_balance = Decimal('30.00')
    student.save(update_fields=['account_balance'])
    r = api.post('/api/quotation/convert', {'quotationNo': 'QUO-001', 'useStudentBalance': False}, format='json')
    assert r.status_code == 201
    assert r.data['data']['balanceUsed'] == 0.0
    assert r.data['data']['remainingBalance'] == 50.0
    student.refresh_from_db()
    assert student.account_balance == Decimal('30.00')
    assert not BalanceTransaction.objects.exists()


def test_second_conversion_is_rejected(api, quotation):
    assert api.post('/api/quotation/convert', {'quotationNo': 'QUO-001'}, format='json').status_code == 201
    r = api.post('/api/quotation/convert', {'quotationNo': 'QUO-001'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'already_converted'
    assert Consultation.objects.count() == 1


def test_overpayment_is_rejected(api, quotation):
    r = api.post('/api/quotation/convert', {'quotationNo': 'QUO-001', 'amountPaid': '80.00'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_payment'
    quotation.refresh_from_db()
    assert quotation.status == 'pending'


def test_converted_quotation_cannot_be_deleted(api, quotation):
    api.post('/api/quotation/convert', {'quotationNo': 'QUO-001'}, format='json')
    r = api.delete('/api/quotation/QUO-001')
    assert r.status_code == 400


def test_pending_quotation_delete(api, quotation):
    assert api.delete('/api/quotation/QUO-001').status_code == 200
    assert api.get('/api/quotation/QUO-001').status_code == 404
    assert api.post('/api/quotation/convert', {'quotationNo': 'QUO-001'}, format='json').status_code == 404

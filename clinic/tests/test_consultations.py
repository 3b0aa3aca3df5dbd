import pytest

from clinic.models import Consultation, PaymentMethod, StockTracking

pytestmark = pytest.mark.django_db


def consultation_payload(doctor, student, *medicines, **extra):
    payload = {
        'medicines': [
            {'productId': str(p.id), 'quantity': q, 'price': '25.00', 'dosage': '1 tab', 'frequency': 'bd'}
            for p, q in medicines
        ],
        'paymentMethods': [{'method': 'cash', 'amount': '50.00'}],
        'warehouseId': 'MAIN',
        'doctor': {'id': doctor.id},
        'student': {'id': str(student.id)} if student else None,
        'diagnosis': 'Malaria',
    }
    payload.update(extra)
    return payload


def test_create_dispenses_stock(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse, quantity=100)
    r = api.post('/api/consultation', consultation_payload(doctor, student, (product, 4)), format='json')
    assert r.status_code == 201
    data = r.data['data']
    assert data['invoiceNo'].startswith('CONS-')
    assert data['subTotal'] == 100.0
    assert data['grandTotal'] == 100.0
    assert data['paidAmount'] == 50.0
    assert data['items'][0]['profit'] == 60.0
    assert data['items'][0]['dosage'] == '1 tab'
    assert data['items'][0]['instructions'] == 'Take as directed'

    product.refresh_from_db()
    assert product.quantity == 96
    assert product.last_dispensed is not None
    row = StockTracking.objects.get(product=product, action='dispensed')
    assert (row.previous_stock, row.new_stock, row.quantity) == (100, 96, 4)
    assert row.patient == student
    assert row.reason == f"Dispensed for consultation {data['invoiceNo']}"
    assert PaymentMethod.objects.filter(consultation_id=data['id']).count() == 1


def test_walk_in_consultation(api, warehouse, doctor, make_product):
    product = make_product(warehouse)
    r = api.post('/api/consultation', consultation_payload(doctor, None, (product, 1)), format='json')
    assert r.status_code == 201
    assert r.data['data']['student'] is None


def test_doctor_is_required(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1))
    payload.pop('doctor')
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 400
    assert Consultation.objects.count() == 0


def test_empty_medicines_rejected(api, warehouse, doctor, student):
    r = api.post('/api/consultation', consultation_payload(doctor, student), format='json')
    assert r.status_code == 400


def test_insufficient_stock_rolls_back(api, warehouse, doctor, student, make_product):
    plenty = make_product(warehouse, name='Amoxicillin', quantity=50)
    scarce = make_product(warehouse, name='Ibuprofen', quantity=5)
    r = api.post('/api/consultation',
                 consultation_payload(doctor, student, (plenty, 2), (scarce, 10)), format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'insufficient_stock'
    plenty.refresh_from_db()
    scarce.refresh_from_db()
    assert (plenty.quantity, scarce.quantity) == (50, 5)
    assert Consultation.objects.count() == 0
    assert not StockTracking.objects.filter(action='dispensed').exists()


def test_unknown_product_is_404(api, warehouse, doctor, student):
    payload = consultation_payload(doctor, student)
    payload['medicines'] = [{'productId': '00000000-0000-0000-0000-000000000000', 'quantity': 1}]
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 404


def test_negative_quantity_rejected(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    r = api.post('/api/consultation', consultation_payload(doctor, student, (product, -3)), format='json')
    assert r.status_code == 400
    product.refresh_from_db()
    assert product.quantity == 100


def test_duplicate_invoice_rejected(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1), consultationNo='INV-1')
    assert api.post('/api/consultation', payload, format='json').status_code == 201
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'duplicate_invoice'


def test_balance_above_grand_total_rejected(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1), grandTotal='25.00', balance='100.00')
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'invalid_balance'
    product.refresh_from_db()
    assert product.quantity == 100
    assert Consultation.objects.count() == 0


def test_partial_payment_leaves_balance(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1), grandTotal='25.00', balance='10.00')
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 201
    assert (r.data['data']['amountPaid'], r.data['data']['balance']) == (15.0, 10.0)


def test_free_text_keeps_symbols(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1),
                                   diagnosis='Fever & cough, BP < 120', notes='<b>Review</b> tomorrow')
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 201
    c = Consultation.objects.get(id=r.data['data']['id'])
    assert c.diagnosis == 'Fever & cough, BP < 120'
    assert c.notes == 'Review tomorrow'


def test_concurrent_duplicate_invoice_is_400(api, warehouse, doctor, student, make_product, monkeypatch):
    from clinic.services import consultations

    product = make_product(warehouse)
    payload = consultation_payload(doctor, student, (product, 1), consultationNo='INV-RACE')
    assert api.post('/api/consultation', payload, format='json').status_code == 201
    # the other request passed the existence check before this one committed
    monkeypatch.setattr(consultations, 'invoice_taken', lambda invoice_no: False)
    r = api.post('/api/consultation', payload, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'duplicate_invoice'
    product.refresh_from_db()
    assert product.quantity == 99


def test_cancel_restocks(api, warehouse, doctor, admin_user, student, make_product):
    product = make_product(warehouse, quantity=20)
    created = api.post('/api/consultation', consultation_payload(doctor, student, (product, 6)),
                       format='json').data['data']
    r = api.delete('/api/consultation', {'consultationId': created['id'], 'userId': admin_user.id}, format='json')
    assert r.status_code == 200

    product.refresh_from_db()
    assert product.quantity == 20
    returned = StockTracking.objects.get(product=product, action='returned')
    assert returned.quantity == 6
    assert returned.reason == f"Reversal for cancelled consultation {created['invoiceNo']}"
    assert Consultation.objects.get(id=created['id']).is_deleted
    assert api.get(f"/api/consultation/{created['invoiceNo']}").status_code == 404


def test_delete_by_invoice_also_restocks(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse, quantity=20)
    created = api.post('/api/consultation', consultation_payload(doctor, student, (product, 5)),
                       format='json').data['data']
    r = api.delete(f"/api/consultation/{created['invoiceNo']}")
    assert r.status_code == 200
    product.refresh_from_db()
    assert product.quantity == 20


def test_update_clinical_notes(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    created = api.post('/api/consultation', consultation_payload(doctor, student, (product, 1)),
                       format='json').data['data']
    r = api.put(f"/api/consultation/{created['invoiceNo']}",
                {'diagnosis': 'Typhoid', 'consultantNotes': 'Review in 3 days'}, format='json')
    assert r.status_code == 200
    c = Consultation.objects.get(id=created['id'])
    assert (c.diagnosis, c.consultant_notes) == ('Typhoid', 'Review in 3 days')


def test_list_is_paginated(api, warehouse, doctor, student, make_product):
    product = make_product(warehouse)
    for _ in range(3):
        api.post('/api/consultation', consultation_payload(doctor, student, (product, 1)), format='json')
    r = api.get('/api/consultation', {'warehouseId': 'MAIN', 'page': 2, 'limit': 2})
    assert r.status_code == 200
    assert len(r.data['data']) == 1
    assert r.data['pagination'] == {'page': 2, 'limit': 2, 'totalCount': 3, 'totalPages': 2}

    r = api.post('/api/consultation/list', {'warehouseId': 'MAIN'}, format='json')
    assert len(r.data['data']) == 3


def test_other_clinic_cannot_create(api, other_warehouse, doctor, student, make_product):
    product = make_product(other_warehouse)
    payload = consultation_payload(doctor, None, (product, 1), warehouseId='NORTH')
    assert api.post('/api/consultation', payload, format='json').status_code == 403


def test_legacy_sale(api, warehouse, admin_user, student, make_product):
    product = make_product(warehouse, quantity=10)
    r = api.post('/api/sale', {
        'items': [{'id': str(product.id), 'quantity': 2, 'selectedPrice': '30.00'}],
        'invoiceNo': 'SALE-001',
        'customer': {'id': str(student.id)},
        'cashier': {'id': admin_user.id},
        'warehouseId': 'MAIN',
    }, format='json')
    assert r.status_code == 201
    assert r.data['data']['invoiceNo'] == 'SALE-001'
    assert r.data['data']['subTotal'] == 60.0
    product.refresh_from_db()
    assert product.quantity == 8

    assert api.delete('/api/sale', ['SALE-001'], format='json').status_code == 400
    r = api.delete('/api/sale', {'saleId': 'SALE-001'}, format='json')
    assert r.status_code == 200
    product.refresh_from_db()
    assert product.quantity == 10

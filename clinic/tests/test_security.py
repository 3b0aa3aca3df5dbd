from datetime import timedelta

import pytest
from django.utils import timezone

from clinic.models import Product, StockTracking, SuspiciousActivity, User
from clinic.services.security import check_excessive_dispensing, dispensed_in_window, record_activity

pytestmark = pytest.mark.django_db

URL = '/api/warehouse/anti-theft'


def dispense(api, doctor, product, quantity):
    return api.post('/api/consultation', {
        'medicines': [{'productId': str(product.id), 'quantity': quantity}],
        'warehouseId': 'MAIN',
        'doctor': {'id': doctor.id},
    }, format='json')


def test_excessive_dispensing_is_flagged_once(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=500)
    assert dispense(api, doctor, product, 40).status_code == 201
    assert not SuspiciousActivity.objects.exists()

    assert dispense(api, doctor, product, 20).status_code == 201
    flags = SuspiciousActivity.objects.filter(product=product, activity_type='excessive_dispensing')
    assert flags.count() == 1
    assert flags.get().severity == 'high'
    assert '60 units' in flags.get().description

    assert dispense(api, doctor, product, 5).status_code == 201
    assert flags.count() == 1


def test_threshold_is_strictly_exceeded(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=500)
    assert dispense(api, doctor, product, 50).status_code == 201
    assert not SuspiciousActivity.objects.filter(product=product).exists()

    assert dispense(api, doctor, product, 1).status_code == 201
    flag = SuspiciousActivity.objects.get(product=product)
    assert '51 units' in flag.description


def test_flag_and_ledger_name_the_prescribing_doctor(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=500)
    assert dispense(api, doctor, product, 60).status_code == 201
    assert SuspiciousActivity.objects.get(product=product).staff == doctor
    assert StockTracking.objects.get(product=product, action='dispensed').staff == doctor


def test_cancelled_dispensing_does_not_count(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=500)
    r = dispense(api, doctor, product, 45)
    assert api.delete(f"/api/consultation/{r.data['data']['invoiceNo']}").status_code == 200
    assert dispense(api, doctor, product, 10).status_code == 201

    since = timezone.now() - timedelta(hours=1)
    assert dispensed_in_window(product, since) == 10
    assert not SuspiciousActivity.objects.filter(product=product).exists()


def test_new_flag_after_resolution(warehouse, make_product, admin_user, settings):
    settings.DISPENSE_ALERT_THRESHOLD = 5
    product = make_product(warehouse, quantity=50)
    from clinic.services.inventory import find_product, record_movement

    record_movement(find_product(warehouse, product.id), action='dispensed', quantity=6)
    first = check_excessive_dispensing(product)
    assert first is not None
    first.resolved = True
    first.save()
    assert check_excessive_dispensing(product) is not None


def test_report_lists_discrepancies(api, warehouse, make_product):
    product = make_product(warehouse, quantity=30)
    # stock changed outside the ledger
    Product.objects.filter(id=product.id).update(quantity=25)
    r = api.get(URL, {'warehouseId': 'MAIN'})
    assert r.status_code == 200
    rows = r.data['data']['stockDiscrepancies']
    assert rows == [{
        'productId': str(product.id),
        'productName': product.name,
        'currentStock': 25,
        'expectedStock': 30,
        'difference': -5,
        'movements': 1,
    }]
    assert r.data['data']['securityMetrics']['discrepancyCount'] == 1


def test_consistent_ledger_has_no_discrepancy(api, warehouse, doctor, make_product):
    product = make_product(warehouse, quantity=30)
    dispense(api, doctor, product, 4)
    r = api.get(URL, {'warehouseId': 'MAIN'})
    assert r.data['data']['stockDiscrepancies'] == []


def test_high_risk_staff(api, warehouse):
    nurse = User.objects.create_user(username='nurse9', password='P@ssw0rd1', role='nurse', warehouse=warehouse)
    for _ in range(3):
        record_activity(warehouse=warehouse, activity_type='unusual_hours', staff=nurse)
    r = api.get(URL, {'warehouseId': 'MAIN', 'severity': 'medium'})
    data = r.data['data']
    assert data['highRiskStaff'] == [
        {'staffId': nurse.id, 'username': 'nurse9', 'role': 'nurse', 'activityCount': 3}
    ]
    assert data['pagination']['totalCount'] == 3
    assert data['securityMetrics']['mediumSeverity'] == 3


def test_manual_flag_defaults_to_medium(api, warehouse, admin_user):
    r = api.post(URL, {
        'warehouseId': 'MAIN', 'activityType': 'missing_stock', 'description': 'Box short by 2',
        'staffId': admin_user.id,
    }, format='json')
    assert r.status_code == 201
    assert r.data['data']['severity'] == 'medium'
    assert r.data['data']['staff']['username'] == 'admin1'


def test_resolve(api, warehouse, admin_user):
    activity = record_activity(warehouse=warehouse, activity_type='missing_stock')
    r = api.put(URL, {'activityId': str(activity.id), 'resolution': 'Recounted, all present'}, format='json')
    assert r.status_code == 200
    activity.refresh_from_db()
    assert activity.resolved
    assert activity.resolved_by == admin_user
    assert activity.resolved_at is not None

    r = api.put(URL, {'activityId': str(activity.id), 'resolution': 'again'}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'already_resolved'


def test_other_clinic_report_forbidden(api, other_warehouse):
    assert api.get(URL, {'warehouseId': 'NORTH'}).status_code == 403

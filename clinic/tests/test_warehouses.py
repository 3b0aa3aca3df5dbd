import pytest

from clinic.models import Warehouse

pytestmark = pytest.mark.django_db


def test_super_admin_creates_warehouse(super_api):
    r = super_api.post('/api/warehouse', {'formData': {
        'code': 'EAST', 'name': 'East Campus Clinic', 'phone': '0801', 'address': 'Block C',
    }}, format='json')
    assert r.status_code == 201
    w = Warehouse.objects.get(warehouse_code='EAST')
    assert w.name == 'East Campus Clinic'
    assert w.sync is False


def test_duplicate_code_is_rejected(super_api, warehouse):
    r = super_api.post('/api/warehouse', {'formData': {'code': 'MAIN', 'name': 'Again'}}, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'duplicate_code'


def test_staff_cannot_create_warehouse(api):
    r = api.post('/api/warehouse', {'formData': {'code': 'X', 'name': 'X'}}, format='json')
    assert r.status_code == 403


def test_staff_only_sees_own_warehouse(api, warehouse, other_warehouse):
    r = api.get('/api/warehouse')
    assert r.status_code == 200
    assert [w['warehouseCode'] for w in r.data['data']] == ['MAIN']


def test_update_by_code(super_api, warehouse):
    r = super_api.put('/api/warehouse', {'warehouseCode': 'MAIN', 'formData': {'name': 'Main Clinic'}},
                      format='json')
    assert r.status_code == 200
    warehouse.refresh_from_db()
    assert warehouse.name == 'Main Clinic'
    r = super_api.put('/api/warehouse', {'warehouseCode': 'NOPE', 'formData': {'name': 'x'}}, format='json')
    assert r.status_code == 404


def test_overview_stats(api, warehouse, student, make_product):
    make_product(warehouse)
    r = api.post('/api/warehouse/list', {'id': 'MAIN'}, format='json')
    assert r.status_code == 200
    stats = r.data['data']['stats']
    assert stats['totalProducts'] == 1
    assert stats['totalStudents'] == 1
    assert stats['assignedUsers'] == 1
    assert stats['totalOrders'] == 0


def test_overview_of_other_clinic_is_forbidden(api, other_warehouse):
    r = api.post('/api/warehouse/list', {'id': str(other_warehouse.id)}, format='json')
    assert r.status_code == 403


def test_dashboard(api, warehouse, make_product):
    make_product(warehouse, name='Low item', quantity=3)
    r = api.post('/api/warehouse/dashboard', {'warehouseId': 'MAIN'}, format='json')
    assert r.status_code == 200
    data = r.data['data']
    assert data['metrics']['totalProducts'] == 1
    assert [p['name'] for p in data['lowStockProducts']] == ['Low item']
    assert data['userRoles'] == [{'name': 'admin', 'value': 1}]


def test_super_dashboard_requires_super(api, super_api, warehouse):
    assert api.post('/api/warehouse/dashboard/supaAdmin', {'warehouseId': 'MAIN'}, format='json').status_code == 403
    assert super_api.post('/api/warehouse/dashboard/supaAdmin', {'warehouseId': 'MAIN'},
                          format='json').status_code == 200


def test_product_analytics(api, warehouse, make_product):
    product = make_product(warehouse, quantity=40)
    r = api.post('/api/warehouse/products/id', {'warehouseId': 'MAIN', 'productId': str(product.id)},
                 format='json')
    assert r.status_code == 200
    stats = r.data['data']['statistics']
    assert stats['totalReceived'] == 40
    assert stats['currentStock'] == 40
    assert len(r.data['data']['monthlyData']) == 12

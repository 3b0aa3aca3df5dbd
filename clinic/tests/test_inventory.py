import pytest

from clinic.models import Product, StockTracking

pytestmark = pytest.mark.django_db


def test_create_product_records_initial_stock(api, warehouse):
    r = api.post('/api/product', {
        'warehouseId': 'MAIN', 'name': 'Vitamin C', 'barcode': '6001', 'unit': 'tablet',
        'quantity': 30, 'costPrice': '2.50', 'retailPrice': '5.00', 'wholesalePrice': '4.00',
    }, format='json')
    assert r.status_code == 201
    assert r.data['data']['quantity'] == 30
    row = StockTracking.objects.get(product_id=r.data['data']['id'])
    assert (row.action, row.quantity, row.previous_stock, row.new_stock) == ('received', 30, 0, 30)
    assert row.reason == 'Initial stock'


def test_duplicate_barcode_in_clinic(api, warehouse, make_product):
    make_product(warehouse, barcode='6001')
    r = api.post('/api/product', {'warehouseId': 'MAIN', 'name': 'Other', 'barcode': '6001'}, format='json')
    assert r.status_code == 400


def test_restock(api, warehouse, make_product):
    product = make_product(warehouse, quantity=10)
    r = api.post('/api/product/restock', {
        'warehouseId': 'MAIN', 'productId': str(product.id), 'quantity': 15, 'reason': 'Supplier delivery',
    }, format='json')
    assert r.status_code == 201
    product.refresh_from_db()
    assert product.quantity == 25
    assert r.data['data']['newStock'] == 25


class TestPriceUpdate:
    url = '/api/purchase/update-product-prices'

    def test_only_price_fields_change(self, api, warehouse, make_product):
        product = make_product(warehouse, quantity=12, barcode='8901')
        before = StockTracking.objects.filter(product=product).count()
        r = api.patch(self.url, {
            'warehouseId': 'MAIN', 'productId': '8901', 'retailPrice': '30.00', 'costPrice': '12.00',
        }, format='json')
        assert r.status_code == 200
        product.refresh_from_db()
        assert str(product.retail_price) == '30.00'
        assert str(product.cost) == '12.00'
        assert str(product.wholesale_price) == '20.00'
        assert product.quantity == 12
        assert product.name == 'Paracetamol 500mg'
        assert StockTracking.objects.filter(product=product).count() == before

    def test_requires_retail_or_wholesale(self, api, warehouse, make_product):
        product = make_product(warehouse)
        r = api.patch(self.url, {'warehouseId': 'MAIN', 'productId': str(product.id), 'costPrice': '1'},
                      format='json')
        assert r.status_code == 400
        assert r.data['error']['code'] == 'missing_price'

    def test_unknown_product(self, api, warehouse):
        r = api.patch(self.url, {'warehouseId': 'MAIN', 'productId': 'nope', 'retailPrice': '1'}, format='json')
        assert r.status_code == 404


def test_manual_entry_cannot_underflow(api, warehouse, make_product):
    product = make_product(warehouse, quantity=3)
    r = api.post('/api/warehouse/drug-tracking', {
        'warehouseId': 'MAIN', 'productId': str(product.id), 'action': 'expired', 'quantity': 5,
    }, format='json')
    assert r.status_code == 400
    assert r.data['error']['code'] == 'insufficient_stock'
    product.refresh_from_db()
    assert product.quantity == 3


def test_manual_entries_apply_signed_delta(api, warehouse, make_product):
    product = make_product(warehouse, quantity=10)
    for action, qty in (('damaged', 2), ('adjusted', -3), ('returned', 1)):
        r = api.post('/api/warehouse/drug-tracking', {
            'warehouseId': 'MAIN', 'productId': str(product.id), 'action': action, 'quantity': qty,
            'reason': 'Stock count',
        }, format='json')
        assert r.status_code == 201
    product.refresh_from_db()
    assert product.quantity == 6


def test_manual_entry_rejects_non_positive_quantity(api, warehouse, make_product):
    product = make_product(warehouse)
    r = api.post('/api/warehouse/drug-tracking', {
        'warehouseId': 'MAIN', 'productId': str(product.id), 'action': 'damaged', 'quantity': -1,
    }, format='json')
    assert r.status_code == 400


def test_stock_history_running_balance(api, warehouse, make_product, admin_user):
    from clinic.services.inventory import find_product, record_movement

    product = make_product(warehouse, quantity=10)
    record_movement(find_product(warehouse, product.id), action='dispensed', quantity=4, staff=admin_user)
    r = api.get('/api/product/stock-tracking', {'warehouseId': 'MAIN', 'productId': str(product.id)})
    assert r.status_code == 200
    data = r.data['data']
    assert [(m['action'], m['balanceAfter']) for m in data['movements']] == [('dispensed', 6), ('received', 10)]
    assert data['summary']['totalReceived'] == 10
    assert data['summary']['totalDispensed'] == 4
    assert data['summary']['currentStock'] == 6


def test_drug_tracking_report(api, warehouse, make_product):
    make_product(warehouse, name='A', quantity=5)
    make_product(warehouse, name='B', quantity=7)
    r = api.get('/api/warehouse/drug-tracking', {'warehouseId': 'MAIN', 'action': 'received', 'limit': 1})
    assert r.status_code == 200
    data = r.data['data']
    assert len(data['trackingRecords']) == 1
    assert data['pagination']['totalCount'] == 2
    assert data['summaryStats'] == [{'action': 'received', 'count': 2, 'totalQuantity': 12}]
    assert len(data['mostActiveProducts']) == 2


def test_products_scoped_to_clinic(api, warehouse, other_warehouse, make_product):
    make_product(warehouse, name='Mine')
    make_product(other_warehouse, name='Theirs')
    r = api.get('/api/product')
    assert [p['name'] for p in r.data['data']] == ['Mine']
    assert api.get('/api/product', {'warehouseId': 'NORTH'}).status_code == 403
    assert Product.objects.count() == 2

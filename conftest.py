import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from clinic.models import Student, User, Warehouse


@pytest.fixture(autouse=True)
def _clear_cache():
    # throttling counters and the sync lock live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def warehouse(db):
    return Warehouse.objects.create(name='Main Campus Clinic', warehouse_code='MAIN')


@pytest.fixture
def other_warehouse(db):
    return Warehouse.objects.create(name='North Campus Clinic', warehouse_code='NORTH')


@pytest.fixture
def super_user(db):
    return User.objects.create_user(username='root', password='P@ssw0rd1', role='super')


@pytest.fixture
def admin_user(db, warehouse):
    return User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin', warehouse=warehouse)


@pytest.fixture
def doctor(db, warehouse):
    return User.objects.create_user(username='doc1', password='P@ssw0rd1', role='doctor', warehouse=warehouse)


@pytest.fixture
def api(admin_user):
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client


@pytest.fixture
def super_api(super_user):
    client = APIClient()
    client.force_authenticate(user=super_user)
    return client


@pytest.fixture
def make_product(super_user):
    """Create a product through the inventory service so its stock has a ledger row."""
    from clinic.services.inventory import create_product

    def _make(warehouse, name='Paracetamol 500mg', quantity=100, barcode='', cost='10.00',
              retail='25.00', wholesale='20.00'):
        return create_product(super_user, warehouse, {
            'name': name,
            'barcode': barcode,
            'unit': 'tablet',
            'quantity': quantity,
            'costPrice': cost,
            'retailPrice': retail,
            'wholesalePrice': wholesale,
        })
    return _make


@pytest.fixture
def student(db, warehouse):
    return Student.objects.create(
        name='Ada Obi', matric_number='CSC/2021/001', department='Computer Science',
        level='300', warehouse=warehouse,
    )

"""
Offline -> online push. These tests use both database aliases.
"""
import pytest
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.utils import timezone

from clinic.models import Product, StockTracking, Student, User, Warehouse
from clinic.services import sync

pytestmark = pytest.mark.django_db(databases=['default', 'online'])

URL = '/api/syncNew/upSync'


@pytest.fixture(autouse=True)
def _fast_retries(settings):
    settings.SYNC_RETRY_BACKOFF = 0
    settings.SYNC_CONNECT_RETRIES = 1


def test_push_copies_unsynced_rows(api, warehouse, student, make_product):
    product = make_product(warehouse, quantity=12)
    r = api.post(URL)
    assert r.status_code == 200
    assert r.data['ok'] is True
    assert r.data['message'] == 'Sync completed successfully'
    assert r.data['data']['mode'] == 'full'
    assert r.data['data']['completedEntities'] == len(sync.ENTITIES)

    online_product = Product.objects.using('online').get(id=product.id)
    assert online_product.quantity == 12
    assert online_product.sync is True
    assert Warehouse.objects.using('online').filter(id=warehouse.id).exists()
    assert Student.objects.using('online').filter(id=student.id).exists()
    assert StockTracking.objects.using('online').filter(product_id=product.id).count() == 1
    assert User.objects.using('online').filter(username='admin1').exists()

    product.refresh_from_db()
    student.refresh_from_db()
    assert product.sync and product.synced_at is not None
    assert student.sync
    assert not Product.objects.pending_sync().exists()


def test_push_updates_existing_online_rows(warehouse, student):
    sync.run_upsync()
    student.name = 'Ada Obi-Eze'
    student.mark_unsynced()
    student.save()
    status = sync.run_upsync()
    assert status['success']
    progress = {p['entity']: p for p in status['progress']}
    assert progress['students']['total'] == 1
    assert progress['warehouses']['total'] == 0
    assert Student.objects.using('online').get(id=student.id).name == 'Ada Obi-Eze'


def test_row_changed_during_push_stays_pending(warehouse, student, monkeypatch):
    original = sync.upsert_online

    def upsert_then_edit(model, obj, synced_at):
        original(model, obj, synced_at)
        if model is Student:
            Student.objects.filter(id=obj.id).update(updated_at=timezone.now())

    monkeypatch.setattr(sync, 'upsert_online', upsert_then_edit)
    status = sync.run_upsync()
    student.refresh_from_db()
    assert student.sync is False
    assert any('changed during sync' in w for w in status['warnings'])


def test_concurrent_run_is_rejected(api, warehouse):
    cache.set(sync.LOCK_KEY, 'held', 60)
    r = api.post(URL)
    assert r.status_code == 409
    assert r.data['ok'] is False
    assert r.data['progress']['isSyncing'] is True
    warehouse.refresh_from_db()
    assert warehouse.sync is False


def test_lock_is_released_after_run(api, warehouse):
    assert api.post(URL).status_code == 200
    assert cache.get(sync.LOCK_KEY) is None
    assert api.post(URL).status_code == 200


def test_status_endpoint(api, warehouse):
    r = api.get(URL)
    assert r.data['data'] == {'isSyncing': False, 'overallPercentage': 0, 'syncStatus': None, 'lastSync': None}
    api.post(URL)
    r = api.get(URL)
    assert r.data['data']['overallPercentage'] == 100
    assert r.data['data']['lastSync'] is not None


def test_offline_only_mode_skips_everything(api, warehouse, monkeypatch):
    monkeypatch.setattr(sync, 'probe', lambda alias, retries=None: alias == sync.OFFLINE)
    r = api.post(URL)
    assert r.status_code == 200
    status = r.data['data']
    assert status['mode'] == 'offline-only'
    assert status['skippedEntities'] == len(sync.ENTITIES)
    assert r.data['message'] == 'Sync completed with warnings'
    warehouse.refresh_from_db()
    assert warehouse.sync is False


def test_no_database_reachable(api, warehouse, monkeypatch):
    monkeypatch.setattr(sync, 'probe', lambda alias, retries=None: False)
    r = api.post(URL)
    assert r.status_code == 503
    assert cache.get(sync.LOCK_KEY) is None
    assert any('Critical error' in e for e in sync.get_status()['syncStatus']['errors'])


def test_failed_rows_are_reported(warehouse, monkeypatch):
    def broken(model, obj, synced_at):
        raise sync.DatabaseError('online write failed')

    monkeypatch.setattr(sync, 'upsert_online', broken)
    status = sync.run_upsync()
    assert status['success'] is False
    progress = {p['entity']: p for p in status['progress']}
    assert progress['warehouses']['status'] == 'error'
    warehouse.refresh_from_db()
    assert warehouse.sync is False


def test_sync_up_command(warehouse, capsys):
    call_command('sync_up')
    out = capsys.readouterr().out
    assert 'warehouses: completed 1/1' in out
    assert 'Sync completed successfully' in out


def test_sync_up_command_when_locked(warehouse):
    cache.set(sync.LOCK_KEY, 'held', 60)
    with pytest.raises(CommandError):
        call_command('sync_up')


def test_healthz_reports_both_databases(client):
    r = client.get('/healthz')
    assert r.status_code == 200
    assert r.json() == {'ok': True, 'db': {'default': True, 'online': True}}

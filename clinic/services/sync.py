"""
Offline -> online push.

Rows whose ``sync`` flag is cleared in the local ``default`` database are
upserted by primary key into the ``online`` database, parents before
children. A row is marked synced offline only if it was not modified
again while the push was running.

Only one run may be active at a time; the lock and the progress of the
current/last run live in the Django cache so every worker process sees
them.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connections, transaction
from django.utils import timezone

from clinic.exceptions import Conflict
from clinic.models import (
    BalanceTransaction, Consultation, ConsultationItem, PaymentMethod, Product, Purchase,
    PurchaseItem, Quotation, QuotationItem, StockTracking, Student, Supplier, SuspiciousActivity,
    User, Warehouse,
)

logger = logging.getLogger(__name__)

OFFLINE = 'default'
ONLINE = 'online'

LOCK_KEY = 'sync:upsync:lock'
STATUS_KEY = 'sync:upsync:status'

# parents first so foreign keys resolve online
ENTITIES = [
    ('warehouses', Warehouse),
    ('users', User),
    ('products', Product),
    ('students', Student),
    ('suppliers', Supplier),
    ('consultations', Consultation),
    ('consultationItems', ConsultationItem),
    ('paymentMethods', PaymentMethod),
    ('balanceTransactions', BalanceTransaction),
    ('purchases', Purchase),
    ('purchaseItems', PurchaseItem),
    ('quotations', Quotation),
    ('quotationItems', QuotationItem),
    ('stockTracking', StockTracking),
    ('suspiciousActivities', SuspiciousActivity),
]

STATUS_PENDING = 'pending'
STATUS_SYNCING = 'syncing'
STATUS_COMPLETED = 'completed'
STATUS_ERROR = 'error'
STATUS_SKIPPED = 'skipped'


class SyncUnavailable(DatabaseError):
    """Neither database answered the connectivity probe."""


def probe(alias: str, retries: Optional[int] = None) -> bool:
    """``SELECT 1`` against ``alias`` with exponential backoff between attempts."""
    retries = retries or settings.SYNC_CONNECT_RETRIES
    for attempt in range(retries):
        try:
            with connections[alias].cursor() as c:
                c.execute('SELECT 1')
                c.fetchone()
            return True
        except DatabaseError as e:
            logger.warning('database %s not reachable (attempt %d/%d): %s', alias, attempt + 1, retries, e)
            if attempt < retries - 1:
                time.sleep(settings.SYNC_RETRY_BACKOFF * (2 ** attempt))
    return False


def row_values(obj) -> dict:
    return {
        f.attname: getattr(obj, f.attname)
        for f in obj._meta.concrete_fields
        if not f.primary_key
    }


def upsert_online(model, obj, synced_at) -> None:
    values = row_values(obj)
    values['sync'] = True
    values['synced_at'] = synced_at
    with transaction.atomic(using=ONLINE):
        updated = model._base_manager.using(ONLINE).filter(pk=obj.pk).update(**values)
        if not updated:
            model(pk=obj.pk, **values).save(using=ONLINE, force_insert=True)


def safe_upsert(model, obj, synced_at) -> Optional[str]:
    """Upsert with retries; return an error message or ``None``."""
    attempts = settings.SYNC_MAX_RETRIES
    last = None
    for attempt in range(1, attempts + 1):
        try:
            upsert_online(model, obj, synced_at)
            return None
        except DatabaseError as e:
            last = e
            logger.warning('upsert %s %s failed (attempt %d/%d): %s',
                           model.__name__, obj.pk, attempt, attempts, e)
            if attempt < attempts:
                time.sleep(settings.SYNC_RETRY_BACKOFF * attempt)
    return str(last) if last else 'Max retries exceeded'


def get_status() -> dict:
    status = cache.get(STATUS_KEY)
    running = cache.get(LOCK_KEY) is not None
    if not status:
        return {'isSyncing': running, 'overallPercentage': 0, 'syncStatus': None, 'lastSync': None}
    done = status['completedEntities'] + status['skippedEntities']
    return {
        'isSyncing': running,
        'overallPercentage': round(done / status['totalEntities'] * 100) if status['totalEntities'] else 0,
        'syncStatus': status,
        'lastSync': status.get('endTime'),
    }


class UpSync:
    """One push run. Use :func:`run_upsync` rather than instantiating directly."""

    def __init__(self):
        self.status = {
            'success': False,
            'totalEntities': len(ENTITIES),
            'completedEntities': 0,
            'skippedEntities': 0,
            'progress': [
                {'entity': name, 'completed': 0, 'total': 0, 'status': STATUS_PENDING, 'error': None}
                for name, _ in ENTITIES
            ],
            'errors': [],
            'warnings': [],
            'startTime': timezone.now().isoformat(),
            'endTime': None,
            'duration': None,
            'mode': 'full',
            'connectivityStatus': {'offline': False, 'online': False},
        }
        self._started = time.monotonic()

    def _progress(self, entity: str, *, completed: int, total: int, status: str, error: Optional[str] = None):
        for p in self.status['progress']:
            if p['entity'] == entity:
                p.update(completed=completed, total=total, status=status, error=error)
        self.status['completedEntities'] = sum(1 for p in self.status['progress'] if p['status'] == STATUS_COMPLETED)
        self.status['skippedEntities'] = sum(1 for p in self.status['progress'] if p['status'] == STATUS_SKIPPED)
        cache.set(STATUS_KEY, self.status, None)

    def check_connectivity(self) -> None:
        offline, online = probe(OFFLINE), probe(ONLINE)
        self.status['connectivityStatus'] = {'offline': offline, 'online': online}
        if offline and not online:
            self.status['mode'] = 'offline-only'
        elif online and not offline:
            self.status['mode'] = 'online-only'
        elif not offline and not online:
            raise SyncUnavailable('Neither offline nor online database is available')

    def push_entity(self, name: str, model) -> None:
        pending = list(
            model._base_manager.using(OFFLINE).filter(sync=False).order_by('pk')
        )
        total = len(pending)
        self._progress(name, completed=0, total=total, status=STATUS_SYNCING)
        synced_at = timezone.now()
        done, failures = 0, []
        for obj in pending:
            error = safe_upsert(model, obj, synced_at)
            if error:
                failures.append(f'{obj.pk}: {error}')
                continue
            # a row edited during the push keeps sync=False for the next run
            marked = model._base_manager.using(OFFLINE).filter(
                pk=obj.pk, updated_at=obj.updated_at,
            ).update(sync=True, synced_at=synced_at)
            if not marked:
                self.status['warnings'].append(f'{name} {obj.pk} changed during sync, will retry next run')
            done += 1
        if failures:
            self.status['errors'].extend(f'{name} sync failed for {f}' for f in failures)
            self._progress(name, completed=done, total=total, status=STATUS_ERROR,
                           error=f'{len(failures)} row(s) failed')
            logger.error('sync %s: %d/%d rows pushed, %d failed', name, done, total, len(failures))
        else:
            self._progress(name, completed=done, total=total, status=STATUS_COMPLETED)
            logger.info('sync %s: %d rows pushed', name, done)

    def run(self) -> dict:
        self.check_connectivity()
        mode = self.status['mode']
        logger.info('starting sync in %s mode', mode)
        for name, model in ENTITIES:
            if mode != 'full':
                missing = 'online' if mode == 'offline-only' else 'offline'
                self._progress(name, completed=0, total=0, status=STATUS_SKIPPED,
                               error=f'{missing.capitalize()} database not available')
                self.status['warnings'].append(f'{name} sync skipped - {missing} database not available')
                continue
            try:
                self.push_entity(name, model)
            except DatabaseError as e:
                logger.exception('sync %s aborted', name)
                self.status['errors'].append(f'{name} sync failed: {e}')
                self._progress(name, completed=0, total=0, status=STATUS_ERROR, error=str(e))
        return self.finish()

    def finish(self) -> dict:
        self.status['success'] = not self.status['errors']
        self.status['endTime'] = timezone.now().isoformat()
        self.status['duration'] = int((time.monotonic() - self._started) * 1000)
        cache.set(STATUS_KEY, self.status, None)
        return self.status


def summary_message(status: dict) -> str:
    errors, warnings = bool(status['errors']), bool(status['warnings'])
    if errors and warnings:
        return 'Sync completed with errors and warnings'
    if errors:
        return 'Sync completed with errors'
    if warnings:
        return 'Sync completed with warnings'
    return 'Sync completed successfully'


def run_upsync() -> dict:
    """Run one push; raise :class:`Conflict` if another run holds the lock."""
    if not cache.add(LOCK_KEY, timezone.now().isoformat(), settings.SYNC_LOCK_TIMEOUT):
        raise Conflict('Sync already in progress')
    from clinic.services.security import broadcast

    runner = UpSync()
    try:
        status = runner.run()
        broadcast('sync.finished', {
            'success': status['success'],
            'mode': status['mode'],
            'endTime': status['endTime'],
            'errors': len(status['errors']),
        })
        return status
    except SyncUnavailable as e:
        runner.status['errors'].append(f'Critical error: {e}')
        runner.finish()
        raise
    finally:
        cache.delete(LOCK_KEY)

from django.db import DatabaseError, connections
from django.http import JsonResponse


def _ping(alias):
    try:
        with connections[alias].cursor() as c:
            c.execute('SELECT 1')
            row = c.fetchone()
        return bool(row and row[0] == 1)
    except DatabaseError:
        return False


def healthz(request):
    # the online database may be unreachable while the clinic keeps working offline
    dbs = {alias: _ping(alias) for alias in ('default', 'online')}
    ok = dbs['default']
    return JsonResponse({'ok': ok, 'db': dbs}, status=200 if ok else 503)

"""
Offline -> online push trigger and progress polling.
"""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.exceptions import Conflict
from clinic.permissions import IsClinicStaff
from clinic.services import sync

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def upsync(request):
    if request.method == 'GET':
        return Response({'ok': True, 'data': sync.get_status()})
    logger.info('sync requested by %s', request.user.username)
    try:
        result = sync.run_upsync()
    except Conflict as e:
        return Response({
            'ok': False,
            'error': {'code': 'conflict', 'message': str(e.detail)},
            'progress': sync.get_status(),
        }, status=status.HTTP_409_CONFLICT)
    except sync.SyncUnavailable as e:
        return Response({
            'ok': False,
            'error': {'code': 'sync_unavailable', 'message': str(e)},
            'progress': sync.get_status(),
        }, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response({'ok': result['success'], 'message': sync.summary_message(result), 'data': result})

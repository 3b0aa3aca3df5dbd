"""
Cross-clinic dashboard for super administrators.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsSuperAdmin
from clinic.services.reports import dashboard_stats


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSuperAdmin])
def stats(request):
    """Totals across every clinic plus the five latest consultations."""
    return Response({'ok': True, 'data': dashboard_stats()})

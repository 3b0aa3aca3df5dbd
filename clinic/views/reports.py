"""
Monthly report and CSV / Excel export endpoints.
"""
from __future__ import annotations

from datetime import datetime, time

from django.http import HttpResponse
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from clinic.permissions import IsClinicStaff, ensure_warehouse_access
from clinic.serializers.reports import ClinicExportSerializer, ExportSerializer, MonthlyReportSerializer
from clinic.services import reports
from clinic.services.common import resolve_warehouse

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _warehouse(request, identifier):
    w = resolve_warehouse(identifier)
    ensure_warehouse_access(request.user, w)
    return w


def _csv_response() -> HttpResponse:
    return HttpResponse(content_type='text/csv; charset=utf-8')


def _attach(response: HttpResponse, filename: str) -> HttpResponse:
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def monthly_report(request):
    s = MonthlyReportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    w = _warehouse(request, v['warehouseId'])
    data = reports.monthly_report(w, month=v['month'], year=v['year'], report_type=v.get('reportType') or 'all')
    return Response({'ok': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def export_report(request):
    s = ExportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    w = _warehouse(request, v['warehouseId'])
    response = _csv_response()
    filename = reports.write_export(response, w, v['reportType'], month=v.get('month'), year=v.get('year'))
    return _attach(response, filename)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicStaff])
def clinic_export(request):
    s = ClinicExportSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    v = s.validated_data
    w = _warehouse(request, v['warehouseId'])
    tz = timezone.get_current_timezone()
    date_from = timezone.make_aware(datetime.combine(v['dateFrom'], time.min), tz) if v.get('dateFrom') else None
    date_to = timezone.make_aware(datetime.combine(v['dateTo'], time.max), tz) if v.get('dateTo') else None
    export = reports.clinic_export_table(w, v['type'], date_from=date_from, date_to=date_to)
    if v['format'] == 'csv':
        response = _csv_response()
        filename = reports.write_clinic_csv(response, export)
    else:
        response = HttpResponse(content_type=XLSX_CONTENT_TYPE)
        filename = reports.write_clinic_xlsx(response, w, export)
    return _attach(response, filename)

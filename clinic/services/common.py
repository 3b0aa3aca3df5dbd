"""
Small helpers shared by the service modules: warehouse lookup, money
rounding, pagination and JSON formatting of common values.
"""
from __future__ import annotations

import html
import math
import uuid
from collections.abc import Mapping
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import bleach

from clinic.exceptions import bad_request, not_found
from clinic.models import Warehouse

CENT = Decimal('0.01')
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def resolve_warehouse(identifier: Any) -> Warehouse:
    """Find a live warehouse by primary key or by ``warehouse_code``."""
    if identifier in (None, ''):
        raise bad_request('warehouseId is required', code='missing_warehouse')
    qs = Warehouse.objects.alive()
    pk = parse_uuid(identifier)
    warehouse = None
    if pk is not None:
        warehouse = qs.filter(id=pk).first()
    if warehouse is None:
        warehouse = qs.filter(warehouse_code=str(identifier)).first()
    if warehouse is None:
        raise not_found('Warehouse')
    return warehouse


def money(value: Any) -> Decimal:
    if value in (None, ''):
        return Decimal('0.00')
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value: Optional[Decimal]) -> float:
    return float(value or 0)


def iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def clean_text(value: Optional[str]) -> str:
    """Strip markup from free text; stored values are plain text, not HTML."""
    text = bleach.clean(html.unescape((value or '').strip()), strip=True)
    return html.unescape(text)


def json_body(data) -> Mapping:
    """``request.data`` as a mapping; array or scalar bodies are a client error."""
    if not isinstance(data, Mapping):
        raise bad_request('Request body must be a JSON object', code='invalid_body')
    return data


def paginate(qs, page: Optional[int] = None, limit: Optional[int] = None):
    """Slice ``qs`` and return ``(rows, pagination)``."""
    page = max(1, int(page or 1))
    limit = min(MAX_PAGE_SIZE, max(1, int(limit or DEFAULT_PAGE_SIZE)))
    total = qs.count()
    start = (page - 1) * limit
    rows = list(qs[start:start + limit])
    return rows, {
        'page': page,
        'limit': limit,
        'totalCount': total,
        'totalPages': math.ceil(total / limit) if total else 0,
    }


def format_warehouse_brief(w: Optional[Warehouse]) -> Optional[dict]:
    if w is None:
        return None
    return {'id': str(w.id), 'name': w.name, 'warehouseCode': w.warehouse_code}

import logging

from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

# headers DRF attaches to throttled / unauthenticated responses
_PASSTHROUGH_HEADERS = ('Retry-After', 'WWW-Authenticate')


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Request conflicts with the current state of the resource.'
    default_code = 'conflict'


class InsufficientStock(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Insufficient stock.'
    default_code = 'insufficient_stock'


def not_found(what: str) -> NotFound:
    return NotFound(f'{what} not found')


def bad_request(message: str, code: str = 'invalid') -> ValidationError:
    return ValidationError(message, code=code)


def _error_code(exc) -> str:
    get_codes = getattr(exc, 'get_codes', None)
    if callable(get_codes):
        codes = get_codes()
        if isinstance(codes, list) and len(codes) == 1 and isinstance(codes[0], str):
            codes = codes[0]
        if isinstance(codes, str):
            return codes
    return str(getattr(exc, 'default_code', 'api_error'))


def api_exception_handler(exc, context):
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled error while serving %s', context.get('request').path
                         if context.get('request') is not None else '?', exc_info=exc)
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}},
            status=500,
        )
    # normalize response
    detail = resp.data
    if isinstance(detail, dict) and 'detail' in detail:
        detail = detail['detail']
    if isinstance(detail, list) and len(detail) == 1:
        detail = detail[0]
    headers = {h: resp[h] for h in _PASSTHROUGH_HEADERS if resp.has_header(h)}
    return Response(
        {'ok': False, 'error': {'code': _error_code(exc), 'message': detail}},
        status=resp.status_code,
        headers=headers,
    )

"""
Error taxonomy and the unified API exception handler.

Every failure the API reports carries a machine-readable ``kind`` that
clients branch on (``payment_required`` vs ``wrong_department`` and so
on).  The handler renders all errors in one envelope::

    {"ok": false, "error": {"code": <kind>, "message": <detail>}}
"""
from __future__ import annotations

import logging

from django.conf import settings
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.db import IntegrityError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class HealthVaultError(drf_exceptions.APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'request failed'
    default_kind = 'error'

    def __init__(self, detail=None, kind: str | None = None):
        super().__init__(detail=detail or self.default_detail)
        self.kind = kind or self.default_kind


class AuthenticationError(HealthVaultError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'authentication required'
    default_kind = 'not_authenticated'


class InvalidCredential(AuthenticationError):
    default_detail = 'invalid credential'
    default_kind = 'invalid_credential'


class ExpiredCredential(AuthenticationError):
    default_detail = 'credential expired'
    default_kind = 'expired_credential'


class AuthorizationError(HealthVaultError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'forbidden'
    default_kind = 'forbidden'


class ValidationError(HealthVaultError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'invalid input'
    default_kind = 'validation_error'


class StateConflictError(HealthVaultError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'illegal state transition'
    default_kind = 'state_conflict'


class PaymentRequired(StateConflictError):
    default_detail = 'payment must be completed first'
    default_kind = 'payment_required'


class InvalidState(StateConflictError):
    default_detail = 'operation not allowed in the current state'
    default_kind = 'invalid_state'


class NotFoundError(HealthVaultError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'not found'
    default_kind = 'not_found'


class DuplicateError(HealthVaultError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'already exists'
    default_kind = 'duplicate'


# Built-in DRF exceptions mapped onto our kinds
_DRF_KINDS = {
    drf_exceptions.NotAuthenticated: 'not_authenticated',
    drf_exceptions.AuthenticationFailed: 'invalid_credential',
    drf_exceptions.PermissionDenied: 'forbidden',
    drf_exceptions.ValidationError: 'validation_error',
    drf_exceptions.ParseError: 'validation_error',
    drf_exceptions.NotFound: 'not_found',
    drf_exceptions.MethodNotAllowed: 'method_not_allowed',
    drf_exceptions.Throttled: 'throttled',
    drf_exceptions.UnsupportedMediaType: 'validation_error',
}


def _kind_for(exc) -> str:
    if isinstance(exc, HealthVaultError):
        return exc.kind
    code = getattr(exc, 'get_codes', lambda: None)()
    if code == 'token_not_valid' or (isinstance(code, dict) and code.get('code') == 'token_not_valid'):
        return 'invalid_credential'
    for klass, kind in _DRF_KINDS.items():
        if isinstance(exc, klass):
            return kind
    return 'api_error'


def _message_for(data):
    if isinstance(data, dict):
        if 'detail' in data and len(data) <= 2:
            return data['detail']
        return data
    if isinstance(data, list) and len(data) == 1:
        return data[0]
    return data


def api_exception_handler(exc, context):
    # rest_framework.views loads the authentication classes, which import this module
    from rest_framework.views import exception_handler as drf_exception_handler

    if isinstance(exc, IntegrityError):
        logger.info('integrity error mapped to duplicate: %s', exc)
        exc = DuplicateError('a record with these unique fields already exists')
    elif isinstance(exc, Http404):
        exc = NotFoundError()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = AuthorizationError()

    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception('unhandled API error: %s', exc.__class__.__name__)
        message = str(exc) if settings.DEBUG else 'internal server error'
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': message}},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    body = {'ok': False, 'error': {'code': _kind_for(exc), 'message': _message_for(resp.data)}}
    resp.data = body
    return resp

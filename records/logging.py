"""
Log record enrichment and JSON formatting.

``RequestContextFilter`` stamps each record with the id of the request
being served (set by :class:`records.middleware.RequestContextMiddleware`)
and ``JSONFormatter`` emits one JSON object per line, redacting fields
that may carry credentials or patient identifiers.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from threading import local

_context = local()

SENSITIVE_FIELDS = {
    'password',
    'new_password',
    'token',
    'refresh',
    'access',
    'secret',
    'email',
    'phone',
    'address',
    'date_of_birth',
    'diagnosis',
    'internal_notes',
}

# Attributes present on every LogRecord; everything else came from ``extra=``
_RESERVED = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime', 'request_id', 'user_id'}


def set_request_context(request_id: str | None, user_id=None) -> None:
    _context.request_id = request_id
    _context.user_id = user_id


def get_request_id() -> str | None:
    return getattr(_context, 'request_id', None)


def clear_request_context() -> None:
    for attr in ('request_id', 'user_id'):
        if hasattr(_context, attr):
            delattr(_context, attr)


class RequestContextFilter(logging.Filter):
    def filter(self, record):
        record.request_id = getattr(_context, 'request_id', None) or '-'
        record.user_id = getattr(_context, 'user_id', None) or '-'
        return True


def redact(value):
    if isinstance(value, dict):
        return {k: '[REDACTED]' if str(k).lower() in SENSITIVE_FIELDS else redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


class JSONFormatter(logging.Formatter):
    def format(self, record):
        data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', '-'),
            'user_id': getattr(record, 'user_id', '-'),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith('_'):
                continue
            data[key] = '[REDACTED]' if key.lower() in SENSITIVE_FIELDS else redact(value)
        if record.exc_info:
            data['exception'] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)

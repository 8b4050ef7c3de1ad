"""
Append-only audit sink.

Callers build an :class:`AuditRecord` (usually through :func:`log_action`)
and hand it to :func:`record`; which sink stores it is configured by
``settings.AUDIT_SINK``.  Recording never breaks the request that
triggered it: sink failures are logged and swallowed here only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from records.logging import redact
from records.exceptions import AuthorizationError
from records.models import AuditEvent, Role

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('records.audit')


@dataclass(frozen=True)
class AuditRecord:
    actor_id: Optional[int]
    action: str
    resource_type: str
    resource_id: Optional[str]
    outcome: str
    timestamp: datetime = field(default_factory=timezone.now)
    patient_id: Optional[int] = None
    hospital_id: Optional[int] = None
    ip: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)


class DatabaseAuditSink:
    """Stores events as :class:`AuditEvent` rows and mirrors them to the log."""

    def record(self, event: AuditRecord) -> None:
        with transaction.atomic():
            AuditEvent.objects.create(
                actor_id=event.actor_id,
                action=event.action,
                resource_type=event.resource_type,
                resource_id=event.resource_id or '',
                subject_patient_id=event.patient_id,
                hospital_id_snapshot=event.hospital_id,
                outcome=event.outcome,
                detail=event.detail,
                ip=event.ip,
                created_at=event.timestamp,
            )
        audit_logger.info(
            '%s %s', event.action, event.outcome,
            extra={'audit': redact(asdict(event))},
        )


class LogOnlyAuditSink:
    def record(self, event: AuditRecord) -> None:
        audit_logger.info('%s %s', event.action, event.outcome, extra={'audit': redact(asdict(event))})


@lru_cache(maxsize=None)
def _sink_for(path: str):
    return import_string(path)()


def get_sink():
    return _sink_for(settings.AUDIT_SINK)


def record(event: AuditRecord) -> None:
    try:
        get_sink().record(event)
    except Exception:
        logger.exception('audit sink failed for action=%s', event.action)


def _client_ip(request) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '').split(',')[0].strip()
    return forwarded or request.META.get('REMOTE_ADDR')


def log_action(*, user, action: str, resource_type: str = '', resource_id=None,
               outcome: str = AuditEvent.OUTCOME_SUCCESS, patient_id: Optional[int] = None,
               hospital_id: Optional[int] = None, detail: Optional[Dict[str, Any]] = None,
               request=None) -> AuditRecord:
    event = AuditRecord(
        actor_id=getattr(user, 'id', None),
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        outcome=outcome,
        patient_id=patient_id,
        hospital_id=hospital_id,
        ip=_client_ip(request),
        detail=detail or {},
    )
    record(event)
    return event


def events_visible_to(actor, *, action: Optional[str] = None, resource_type: Optional[str] = None):
    """The audit trail an actor may read: everything, their hospital's, or their own."""
    qs = AuditEvent.objects.select_related('actor')
    if actor.role == Role.SUPER_ADMIN:
        pass
    elif actor.role == Role.HOSPITAL_ADMIN and actor.hospital_id:
        qs = qs.filter(hospital_id_snapshot=actor.hospital_id)
    elif actor.role == Role.PATIENT:
        qs = qs.filter(subject_patient_id=actor.id)
    else:
        raise AuthorizationError('you cannot view audit logs', kind='audit_not_visible')
    if action:
        qs = qs.filter(action=action)
    if resource_type:
        qs = qs.filter(resource_type=resource_type)
    return qs

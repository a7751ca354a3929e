"""
Audit sink for administrative operations.

Events go to the ``audit`` logger and to the AuditLog table. Delivery is
fire-and-forget: a failing sink is reported on this module's logger and
never propagates into the operation that emitted the event.
"""
import logging

from django.db import transaction

from apps.accounts.models import AuditLog

logger = logging.getLogger(__name__)

LEVELS = {
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


class AuditLogger:
    """
    Structured audit event emitter.

    Usage:
        audit = AuditLogger()
        audit.emit('warning', 'Deleting account', {'email': ...},
                   actor=actor, action='account_deleting', target=account)
    """

    def __init__(self, sink_logger=None, persist=True):
        self.sink_logger = sink_logger or logging.getLogger('audit')
        self.persist = persist

    def emit(self, level, message, fields=None, actor=None, action='', target=None):
        fields = dict(fields or {})
        if level not in LEVELS:
            level = 'info'

        try:
            self.sink_logger.log(
                LEVELS[level],
                message,
                extra={
                    'audit_action': action,
                    'actor_id': str(actor.id) if actor else None,
                    'fields': fields,
                }
            )
        except Exception:
            logger.error("Failed to write audit event to log", extra={'audit_action': action}, exc_info=True)

        if not self.persist:
            return None

        try:
            # Savepoint: a failed insert must not poison the caller's transaction
            with transaction.atomic():
                return AuditLog.objects.create(
                    level=level,
                    action=action,
                    message=message,
                    actor=actor if actor is not None and actor.pk else None,
                    target_type=target.__class__.__name__ if target is not None else '',
                    target_id=getattr(target, 'pk', None),
                    fields=fields,
                )
        except Exception:
            logger.error("Failed to persist audit event", extra={'audit_action': action}, exc_info=True)
            return None

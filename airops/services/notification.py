"""
Airfield Operations Platform
Notification Service.

Creates in-app notifications and dispatches approval workflow events.

Approval dispatch is fire-and-forget: ``notify_approval_event`` runs after
the workflow transaction has committed, and a failure here is logged and
rolled back without touching the approval outcome.
"""

import logging

from airops.models import db
from airops.models.notification import APPROVAL_EVENTS, Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def broadcast(*, title, message="", category="system", severity="info",
                  organization_id=None, event_type="", entity_type="",
                  entity_id=None, recipients=None):
        """
        Send a notification to multiple recipients (or 'all' if none given).

        Args:
            recipients: list of recipient ids. If None, sends to 'all'.

        Returns:
            List of created Notification instances.
        """
        targets = recipients or ["all"]
        notifications = []
        for r in targets:
            notif = Notification(
                organization_id=organization_id,
                recipient=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications


# ═════════════════════════════════════════════════════════════════════════════
# Approval workflow dispatcher
# ═════════════════════════════════════════════════════════════════════════════

_DEADLINE_EVENTS = {"deadline_approaching", "approval_timeout"}

_EVENT_TEMPLATES = {
    "chain_initiated": ("Approval requested: {title}", "info"),
    "stage_advanced": ("Approval requested: {title}", "info"),
    "approved": ("Work request approved: {title}", "success"),
    "rejected": ("Work request rejected: {title}", "error"),
    "delegated": ("Approval delegated to you: {title}", "info"),
    "deadline_approaching": ("Approval due soon: {title}", "warning"),
    "approval_timeout": ("Approval overdue: {title}", "warning"),
}


def notify_approval_event(event, work_request, recipients, message=""):
    """
    Dispatch an approval workflow notification.

    Never raises: a failed dispatch is logged and its partial writes rolled
    back.  Returns the number of notifications created (0 on failure).
    """
    if event not in APPROVAL_EVENTS:
        logger.warning("Unknown approval event %r ignored", event)
        return 0

    title_tpl, severity = _EVENT_TEMPLATES[event]
    wr_id = work_request.id
    targets = [r for r in dict.fromkeys(recipients or []) if r] or ["all"]
    try:
        created = NotificationService.broadcast(
            title=title_tpl.format(title=work_request.title)[:300],
            message=message,
            category="deadline" if event in _DEADLINE_EVENTS else "approval",
            severity=severity,
            organization_id=work_request.organization_id,
            event_type=event,
            entity_type="work_request",
            entity_id=wr_id,
            recipients=targets,
        )
    except Exception:
        db.session.rollback()
        logger.exception(
            "Approval notification %s failed for work request %s",
            event, wr_id,
            extra={"work_request_id": wr_id, "event_type": event},
        )
        return 0

    logger.debug(
        "Approval notification %s sent to %d recipient(s)", event, len(created),
        extra={"work_request_id": wr_id, "event_type": event},
    )
    return len(created)

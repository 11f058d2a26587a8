"""
Airfield Operations Platform
Scheduled Jobs.

Jobs:
    - approval_timeout_scan: escalates pending approvals past their
      timeout_date (notify the approver, audit, stamp escalated_at)
    - approval_deadline_reminders: reminds approvers whose pending approval
      falls due within APPROVAL_REMINDER_HOURS (stamp reminded_at)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from airops.models import db
from airops.models.audit import write_audit
from airops.services.approval_queries import find_entries_due_soon, find_expired_entries
from airops.services.notification import notify_approval_event
from airops.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Approval timeout scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_timeout_scan")
def scan_approval_timeouts(app, now: datetime | None = None) -> dict[str, Any]:
    """Escalate pending approvals whose timeout has passed."""
    now = now or datetime.now(timezone.utc)
    results = {"expired": 0, "escalated": 0, "notifications_created": 0, "errors": 0}

    for entry in find_expired_entries(now, limit=app.config.get("APPROVAL_TIMEOUT_SCAN_LIMIT")):
        results["expired"] += 1
        wr = entry.work_request
        try:
            entry.escalated_at = now
            write_audit(
                entity_type="approval_entry",
                entity_id=entry.id,
                action="approval.timeout",
                organization_id=wr.organization_id,
                diff={
                    "work_request_id": wr.id,
                    "approver_id": entry.approver_id,
                    "sequence_order": entry.sequence_order,
                    "timeout_date": entry.timeout_date,
                },
            )
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            results["errors"] += 1
            logger.error(
                "Error escalating approval entry %s: %s", entry.id, exc,
                extra={"work_request_id": wr.id, "approver_id": entry.approver_id},
            )
            continue

        results["escalated"] += 1
        results["notifications_created"] += notify_approval_event(
            "approval_timeout", wr, [entry.approver_id],
            message=f"Approval at stage {entry.sequence_order} passed its deadline",
        )

    if results["expired"]:
        logger.info(
            "Approval timeout scan: %d escalated of %d expired",
            results["escalated"], results["expired"],
            extra={"event_type": "approval_timeout"},
        )
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Deadline reminders
# ═══════════════════════════════════════════════════════════════════════════

@register_job("approval_deadline_reminders")
def send_deadline_reminders(app, now: datetime | None = None) -> dict[str, Any]:
    """Remind approvers whose pending approval is about to time out."""
    now = now or datetime.now(timezone.utc)
    window = timedelta(hours=app.config.get("APPROVAL_REMINDER_HOURS", 4))
    results = {"due_soon": 0, "reminded": 0, "notifications_created": 0, "errors": 0}

    for entry in find_entries_due_soon(now, window, limit=app.config.get("APPROVAL_TIMEOUT_SCAN_LIMIT")):
        results["due_soon"] += 1
        wr = entry.work_request
        try:
            entry.reminded_at = now
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            results["errors"] += 1
            logger.error(
                "Error stamping reminder on approval entry %s: %s", entry.id, exc,
                extra={"work_request_id": wr.id, "approver_id": entry.approver_id},
            )
            continue

        results["reminded"] += 1
        deadline = entry.timeout_date
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        hours_left = (deadline - now).total_seconds() / 3600
        results["notifications_created"] += notify_approval_event(
            "deadline_approaching", wr, [entry.approver_id],
            message=f"Approval at stage {entry.sequence_order} is due in {hours_left:.1f}h",
        )

    if results["due_soon"]:
        logger.info(
            "Deadline reminders: %d sent of %d due soon",
            results["reminded"], results["due_soon"],
            extra={"event_type": "deadline_approaching"},
        )
    return results

"""
Scheduler registry, approval timeout escalation and deadline reminder tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from airops.models import db
from airops.models.approval import find_chain
from airops.models.audit import AuditLog
from airops.models.notification import Notification
from airops.services import approval_workflow_service as svc
from airops.services.scheduled_jobs import scan_approval_timeouts, send_deadline_reminders
from airops.services.scheduler_service import SchedulerService, get_registered_jobs


@pytest.fixture()
def in_review(approvers, make_work_request):
    wr = make_work_request(priority="high", estimated_total_cost=Decimal("15000"))
    _, err = svc.initialize_workflow(wr.id, "org-1", "planner-1")
    assert err is None
    return wr.id


class TestTimeoutScan:
    def test_nothing_expired_yet(self, app, in_review):
        result = scan_approval_timeouts(app)
        assert result == {"expired": 0, "escalated": 0, "notifications_created": 0, "errors": 0}

    def test_escalates_overdue_entries(self, app, in_review):
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        result = scan_approval_timeouts(app, now=later)

        # Managers (24h) are overdue, the finance step (48h) is not
        assert result == {"expired": 2, "escalated": 2, "notifications_created": 2, "errors": 0}

        escalated = {e.approver_id: e.escalated_at for e in find_chain(in_review)}
        assert escalated["manager-1"] is not None
        assert escalated["manager-2"] is not None
        assert escalated["finance-manager"] is None

        notes = Notification.query.filter_by(event_type="approval_timeout").all()
        assert {n.recipient for n in notes} == {"manager-1", "manager-2"}
        assert all(n.category == "deadline" for n in notes)

        audits = AuditLog.query.filter_by(action="approval.timeout").all()
        assert len(audits) == 2
        assert all(a.entity_type == "approval_entry" for a in audits)
        assert {a.diff["approver_id"] for a in audits} == {"manager-1", "manager-2"}

    def test_escalation_happens_once(self, app, in_review):
        later = datetime.now(timezone.utc) + timedelta(hours=25)
        scan_approval_timeouts(app, now=later)
        result = scan_approval_timeouts(app, now=later + timedelta(hours=1))
        assert result["expired"] == 0

    def test_entries_stay_pending(self, app, in_review):
        scan_approval_timeouts(app, now=datetime.now(timezone.utc) + timedelta(hours=49))
        assert {e.status for e in find_chain(in_review)} == {"pending"}

        _, err = svc.process_decision(in_review, "manager-1", {"decision": "approve"})
        assert err is None

    def test_decided_entries_ignored(self, app, in_review):
        svc.process_decision(in_review, "manager-1", {"decision": "reject"})
        result = scan_approval_timeouts(app, now=datetime.now(timezone.utc) + timedelta(hours=72))
        assert result["expired"] == 0

    def test_scan_limit(self, app, in_review, monkeypatch):
        monkeypatch.setitem(app.config, "APPROVAL_TIMEOUT_SCAN_LIMIT", 1)
        later = datetime.now(timezone.utc) + timedelta(hours=49)
        assert scan_approval_timeouts(app, now=later)["expired"] == 1
        assert scan_approval_timeouts(app, now=later)["expired"] == 1
        assert scan_approval_timeouts(app, now=later)["expired"] == 1
        assert scan_approval_timeouts(app, now=later)["expired"] == 0


class TestDeadlineReminders:
    def test_nothing_due_soon(self, app, in_review):
        result = send_deadline_reminders(app, now=datetime.now(timezone.utc) + timedelta(hours=1))
        assert result == {"due_soon": 0, "reminded": 0, "notifications_created": 0, "errors": 0}

    def test_reminds_entries_inside_window(self, app, in_review):
        # Managers fall due at 24h, inside the 4h window; finance (48h) does not
        soon = datetime.now(timezone.utc) + timedelta(hours=21)
        result = send_deadline_reminders(app, now=soon)
        assert result == {"due_soon": 2, "reminded": 2, "notifications_created": 2, "errors": 0}

        reminded = {e.approver_id: e.reminded_at for e in find_chain(in_review)}
        assert reminded["manager-1"] is not None
        assert reminded["manager-2"] is not None
        assert reminded["finance-manager"] is None

        notes = Notification.query.filter_by(event_type="deadline_approaching").all()
        assert {n.recipient for n in notes} == {"manager-1", "manager-2"}
        assert all(n.category == "deadline" for n in notes)
        assert all(n.severity == "warning" for n in notes)
        assert all("due in" in n.message for n in notes)

    def test_reminder_sent_once(self, app, in_review):
        soon = datetime.now(timezone.utc) + timedelta(hours=21)
        send_deadline_reminders(app, now=soon)
        result = send_deadline_reminders(app, now=soon + timedelta(hours=1))
        assert result["due_soon"] == 0

    def test_window_follows_config(self, app, in_review, monkeypatch):
        monkeypatch.setitem(app.config, "APPROVAL_REMINDER_HOURS", 1)
        soon = datetime.now(timezone.utc) + timedelta(hours=21)
        assert send_deadline_reminders(app, now=soon)["due_soon"] == 0

    def test_escalated_and_decided_entries_skipped(self, app, in_review):
        start = datetime.now(timezone.utc)
        scan_approval_timeouts(app, now=start + timedelta(hours=25))
        result = send_deadline_reminders(app, now=start + timedelta(hours=45))
        assert result["reminded"] == 1
        notes = Notification.query.filter_by(event_type="deadline_approaching").all()
        assert [n.recipient for n in notes] == ["finance-manager"]

    def test_rejected_chain_not_reminded(self, app, in_review):
        svc.process_decision(in_review, "manager-1", {"decision": "reject"})
        result = send_deadline_reminders(app, now=datetime.now(timezone.utc) + timedelta(hours=21))
        assert result["due_soon"] == 0


class TestSchedulerService:
    def test_timeout_job_registered(self):
        assert "approval_timeout_scan" in get_registered_jobs()

    def test_reminder_job_registered(self):
        assert "approval_deadline_reminders" in get_registered_jobs()

    def test_run_unknown_job(self):
        outcome = SchedulerService.run_job("no_such_job")
        assert outcome["status"] == "error"
        assert "no_such_job" in outcome["error"]

    def test_run_job_records_last_run(self, approvers):
        db.session.commit()
        outcome = SchedulerService.run_job("approval_timeout_scan")
        assert outcome["status"] == "success"
        assert outcome["job_name"] == "approval_timeout_scan"
        assert outcome["result"]["expired"] == 0

        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert jobs["approval_timeout_scan"]["last_run"]["status"] == "success"
        assert jobs["approval_timeout_scan"]["description"] == (
            "Escalate pending approvals whose timeout has passed."
        )

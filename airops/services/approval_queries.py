"""
Approval queries and statistics.

Read-only views over ``work_request_approvals``:
    get_chain              full chain of one request, in stage order
    get_pending_approvals  an organization's open approvals, most urgent first
    get_statistics         counts by status / level and mean turnaround
    find_expired_entries   overdue pending entries for the escalation job
    find_entries_due_soon  pending entries nearing their deadline (reminders)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import case, func, select

from airops.models import db
from airops.models.approval import ApprovalEntry, find_chain
from airops.models.work_request import PRIORITY_RANK, WorkRequest, get_work_request

logger = logging.getLogger(__name__)


def _priority_rank_expr():
    return case(
        *[(WorkRequest.priority == p, rank) for p, rank in PRIORITY_RANK.items()],
        else_=-1,
    )


def get_chain(work_request_id: int) -> dict:
    """Return the request's workflow state and its entries ordered by stage, id."""
    wr = get_work_request(work_request_id)
    entries = find_chain(wr.id)
    pending_stages = [e.sequence_order for e in entries if e.status == "pending"]
    return {
        "work_request_id": wr.id,
        "status": wr.status,
        "approval_required": wr.approval_required,
        "approval_level": wr.approval_level,
        "current_approver_id": wr.current_approver_id,
        "approval_deadline": wr.approval_deadline.isoformat() if wr.approval_deadline else None,
        "active_stage": min(pending_stages) if pending_stages else None,
        "entries": [e.to_dict() for e in entries],
    }


def get_pending_approvals(organization_id: str, approver_id: str | None = None) -> list[dict]:
    """
    Pending entries joined with a request summary.

    Ordered by request priority (critical first), then by timeout_date
    ascending.  ``actionable`` is True when the entry belongs to the
    request's active stage.
    """
    active = (
        select(
            ApprovalEntry.work_request_id.label("wr_id"),
            func.min(ApprovalEntry.sequence_order).label("stage"),
        )
        .where(ApprovalEntry.status == "pending")
        .group_by(ApprovalEntry.work_request_id)
        .subquery()
    )

    stmt = (
        select(ApprovalEntry, WorkRequest, active.c.stage)
        .join(WorkRequest, ApprovalEntry.work_request_id == WorkRequest.id)
        .join(active, active.c.wr_id == ApprovalEntry.work_request_id)
        .where(
            WorkRequest.organization_id == organization_id,
            ApprovalEntry.status == "pending",
        )
        .order_by(
            _priority_rank_expr().desc(),
            ApprovalEntry.timeout_date.asc(),
            ApprovalEntry.id.asc(),
        )
    )
    if approver_id:
        stmt = stmt.where(ApprovalEntry.approver_id == approver_id)

    items = []
    for entry, wr, active_stage in db.session.execute(stmt).all():
        row = entry.to_dict()
        row["actionable"] = entry.sequence_order == active_stage
        row["work_request"] = {
            "id": wr.id,
            "title": wr.title,
            "priority": wr.priority,
            "work_type": wr.work_type,
            "asset_code": wr.asset_code,
            "requestor_name": wr.requestor_name,
            "submission_date": wr.submission_date.isoformat() if wr.submission_date else None,
            "estimated_total_cost": float(wr.estimated_total_cost)
            if wr.estimated_total_cost is not None else None,
            "status": wr.status,
        }
        items.append(row)
    return items


def get_statistics(
    organization_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Entry counts and mean approval turnaround for an organization.

    ``start``/``end`` bound the entry creation time (inclusive).
    ``average_approval_hours`` is the mean of decision_date - created_at
    over approved entries, or None when nothing has been approved.
    """
    filters = [WorkRequest.organization_id == organization_id]
    if start is not None:
        filters.append(ApprovalEntry.created_at >= start)
    if end is not None:
        filters.append(ApprovalEntry.created_at <= end)

    def _grouped(column):
        rows = db.session.execute(
            select(column, func.count(ApprovalEntry.id))
            .join(WorkRequest, ApprovalEntry.work_request_id == WorkRequest.id)
            .where(*filters)
            .group_by(column)
        ).all()
        return {key: count for key, count in rows}

    by_status = _grouped(ApprovalEntry.status)
    by_level = _grouped(ApprovalEntry.approval_level)

    approved = db.session.execute(
        select(ApprovalEntry.created_at, ApprovalEntry.decision_date)
        .join(WorkRequest, ApprovalEntry.work_request_id == WorkRequest.id)
        .where(
            *filters,
            ApprovalEntry.status == "approved",
            ApprovalEntry.decision_date.isnot(None),
        )
    ).all()
    durations = [
        (decided - created).total_seconds() / 3600
        for created, decided in approved
        if created is not None
    ]
    average = round(sum(durations) / len(durations), 2) if durations else None

    return {
        "organization_id": organization_id,
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_level": by_level,
        "average_approval_hours": average,
    }


def find_expired_entries(now: datetime, limit: int | None = None) -> list[ApprovalEntry]:
    """Pending, not yet escalated entries whose timeout_date is before ``now``."""
    stmt = (
        select(ApprovalEntry)
        .where(
            ApprovalEntry.status == "pending",
            ApprovalEntry.escalated_at.is_(None),
            ApprovalEntry.timeout_date.isnot(None),
            ApprovalEntry.timeout_date < now,
        )
        .order_by(ApprovalEntry.timeout_date, ApprovalEntry.id)
    )
    if limit:
        stmt = stmt.limit(limit)
    return db.session.execute(stmt).scalars().all()


def find_entries_due_soon(now: datetime, within: timedelta, limit: int | None = None) -> list[ApprovalEntry]:
    """Pending entries due within ``within`` of ``now`` and not yet reminded."""
    stmt = (
        select(ApprovalEntry)
        .where(
            ApprovalEntry.status == "pending",
            ApprovalEntry.reminded_at.is_(None),
            ApprovalEntry.escalated_at.is_(None),
            ApprovalEntry.timeout_date >= now,
            ApprovalEntry.timeout_date < now + within,
        )
        .order_by(ApprovalEntry.timeout_date, ApprovalEntry.id)
    )
    if limit:
        stmt = stmt.limit(limit)
    return db.session.execute(stmt).scalars().all()

"""
Airfield Operations Platform
Work request domain model.

Models:
    - WorkRequest: maintenance / repair request raised against an airfield
      asset.  Only the approval-workflow columns are mutated by this package;
      the rest is owned by the work-request CRUD module.

Concurrency:
    ``version`` is an optimistic-concurrency counter.  Workflow code never
    assigns attributes on a loaded WorkRequest and flushes; it goes through
    ``update_versioned`` which issues a compare-and-swap UPDATE.
"""

from datetime import datetime, timezone

from sqlalchemy import update

from airops.core.exceptions import ConflictError, NotFoundError
from airops.models import db

# ── Constants ────────────────────────────────────────────────────────────────

WORK_REQUEST_STATUSES = {
    "draft", "submitted", "under_review", "approved",
    "rejected", "completed", "cancelled",
}

TERMINAL_WORKFLOW_STATUSES = frozenset({"approved", "rejected"})

PRIORITIES = ("low", "medium", "high", "critical")

# Ordinal used for "priority desc" ordering in pending-approval queues
PRIORITY_RANK = {p: i for i, p in enumerate(PRIORITIES)}

WORK_TYPES = {
    "maintenance", "repair", "inspection", "installation",
    "modification", "emergency",
}

# Columns the approval workflow is allowed to write through update_versioned
WORKFLOW_FIELDS = frozenset({
    "status",
    "status_reason",
    "approval_required",
    "approval_level",
    "current_approver_id",
    "approval_deadline",
    "approved_date",
    "updated_by",
})


class WorkRequest(db.Model):
    """
    Work request raised by an organization against an airfield asset.

    Workflow fields start empty (approval_required=False) and are set by the
    chain builder, then mutated only by the decision processor.
    """

    __tablename__ = "work_requests"
    __table_args__ = (
        db.Index("ix_work_requests_org_status", "organization_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), nullable=False, default="medium",
                         comment="low | medium | high | critical")
    work_type = db.Column(db.String(30), nullable=False, default="maintenance",
                          comment="maintenance | repair | inspection | installation | modification | emergency")
    asset_type = db.Column(db.String(30), nullable=True, comment="stand | taxiway | runway | ...")
    asset_code = db.Column(db.String(50), nullable=True)
    estimated_total_cost = db.Column(db.Numeric(12, 2), nullable=True)
    requestor_name = db.Column(db.String(150), nullable=True)
    submission_date = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(20), nullable=False, default="submitted")
    status_reason = db.Column(db.Text, nullable=True)

    # ── Approval workflow ────────────────────────────────────────────
    approval_required = db.Column(db.Boolean, nullable=False, default=False)
    approval_level = db.Column(db.String(20), nullable=True, comment="standard | elevated | executive")
    current_approver_id = db.Column(db.String(64), nullable=True, index=True)
    approval_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_date = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    approvals = db.relationship(
        "ApprovalEntry", back_populates="work_request",
        cascade="all, delete-orphan", lazy="dynamic",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_WORKFLOW_STATUSES

    def attribute_snapshot(self) -> dict:
        """Attributes approval rules may reference, keyed by field name."""
        cost = self.estimated_total_cost
        return {
            "organization_id": self.organization_id,
            "title": self.title,
            "priority": self.priority,
            "work_type": self.work_type,
            "asset_type": self.asset_type,
            "asset_code": self.asset_code,
            "estimated_total_cost": float(cost) if cost is not None else None,
            "requestor_name": self.requestor_name,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "priority": self.priority,
            "work_type": self.work_type,
            "asset_type": self.asset_type,
            "asset_code": self.asset_code,
            "estimated_total_cost": float(self.estimated_total_cost)
            if self.estimated_total_cost is not None else None,
            "requestor_name": self.requestor_name,
            "submission_date": self.submission_date.isoformat() if self.submission_date else None,
            "status": self.status,
            "status_reason": self.status_reason,
            "approval_required": self.approval_required,
            "approval_level": self.approval_level,
            "current_approver_id": self.current_approver_id,
            "approval_deadline": self.approval_deadline.isoformat() if self.approval_deadline else None,
            "approved_date": self.approved_date.isoformat() if self.approved_date else None,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<WorkRequest {self.id}: {self.title[:40]} ({self.status})>"


# ═══════════════════════════════════════════════════════════════════════════
#  STORE HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def get_work_request(work_request_id: int) -> WorkRequest:
    """Load a work request or raise NotFoundError."""
    wr = db.session.get(WorkRequest, work_request_id)
    if wr is None:
        raise NotFoundError(resource="WorkRequest", resource_id=work_request_id)
    return wr


def update_versioned(work_request_id: int, fields: dict, expected_version: int) -> WorkRequest:
    """
    Compare-and-swap update of workflow columns.

    Issues ``UPDATE work_requests SET ..., version = version + 1
    WHERE id = :id AND version = :expected``.  Zero matched rows means a
    concurrent writer got there first and raises ConflictError; the caller
    must roll back and retry from a fresh read.

    Returns the refreshed WorkRequest.
    """
    unknown = set(fields) - WORKFLOW_FIELDS
    if unknown:
        raise ValueError(f"update_versioned cannot write {sorted(unknown)}")

    values = dict(fields)
    values["version"] = expected_version + 1
    values["updated_at"] = datetime.now(timezone.utc)

    result = db.session.execute(
        update(WorkRequest)
        .where(WorkRequest.id == work_request_id, WorkRequest.version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(
            resource="WorkRequest",
            field="version",
            value=str(expected_version),
        )

    return db.session.get(WorkRequest, work_request_id, populate_existing=True)

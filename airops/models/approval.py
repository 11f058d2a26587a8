"""
Airfield Operations Platform
Approval workflow domain models.

Models:
    - ApprovalEntry: one (approver, stage) assignment inside a work request's
      approval chain.  Entries sharing a sequence_order form one stage.
    - ApprovalRuleConfig: organization-scoped approval rule stored as data
      (conditions + steps as JSON) so rules change without a redeploy.

Entry lifecycle (ENTRY_TRANSITIONS):
    pending   → approved | rejected | delegated | skipped
    delegated → pending   (same row, re-assigned to the delegate)
    approved, rejected, skipped are terminal.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from airops.models import db

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = {"pending", "approved", "rejected", "delegated", "skipped"}

APPROVAL_DECISIONS = ("approve", "reject", "delegate")

# Ordinal: standard < elevated < executive
APPROVAL_LEVELS = ("standard", "elevated", "executive")
APPROVAL_LEVEL_RANK = {lvl: i for i, lvl in enumerate(APPROVAL_LEVELS)}

ENTRY_TRANSITIONS = {
    "pending":   ["approved", "rejected", "delegated", "skipped"],
    "delegated": ["pending"],
    "approved":  [],
    "rejected":  [],
    "skipped":   [],
}


def validate_entry_transition(old_status, new_status):
    """Return True if ApprovalEntry status transition is valid."""
    return new_status in ENTRY_TRANSITIONS.get(old_status, [])


def max_approval_level(levels):
    """Return the highest level by ordinal, or None for an empty iterable."""
    ranked = [lvl for lvl in levels if lvl in APPROVAL_LEVEL_RANK]
    if not ranked:
        return None
    return max(ranked, key=APPROVAL_LEVEL_RANK.__getitem__)


class ApprovalEntry(db.Model):
    """
    Persisted approval assignment for one approver at one stage.

    Business rules:
    - Created only during chain construction; never added afterwards.
    - Delegation mutates approver_* in place and keeps sequence_order/level.
    - approver_name/role/email are snapshots taken from the approver
      directory when the approver was assigned.
    """

    __tablename__ = "work_request_approvals"
    __table_args__ = (
        db.UniqueConstraint(
            "work_request_id", "approver_id", "sequence_order",
            name="uq_approval_request_approver_stage",
        ),
        db.Index("ix_approval_request_stage", "work_request_id", "sequence_order"),
        db.Index("ix_approval_approver_status", "approver_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    work_request_id = db.Column(
        db.Integer,
        db.ForeignKey("work_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Approver snapshot
    approver_id = db.Column(db.String(64), nullable=False)
    approver_name = db.Column(db.String(150), nullable=True)
    approver_role = db.Column(db.String(100), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)

    approval_level = db.Column(db.String(20), nullable=False, default="standard",
                               comment="standard | elevated | executive")
    sequence_order = db.Column(db.Integer, nullable=False, comment="Chain-wide stage number, 1-based")
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | approved | rejected | delegated | skipped")
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    can_delegate = db.Column(db.Boolean, nullable=False, default=False)
    rule_id = db.Column(db.String(64), nullable=True, comment="Approval rule that produced this entry")

    # Decision
    decision_date = db.Column(db.DateTime(timezone=True), nullable=True)
    comments = db.Column(db.Text, nullable=True)
    conditions = db.Column(db.Text, nullable=True, comment="Free-text conditions attached to an approval")
    delegated_to = db.Column(db.String(64), nullable=True)
    delegated_from = db.Column(db.String(64), nullable=True)

    # Deadlines
    timeout_date = db.Column(db.DateTime(timezone=True), nullable=True)
    reminded_at = db.Column(db.DateTime(timezone=True), nullable=True,
                            comment="When the deadline_approaching reminder was sent")
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    work_request = db.relationship("WorkRequest", back_populates="approvals")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_request_id": self.work_request_id,
            "approver_id": self.approver_id,
            "approver_name": self.approver_name,
            "approver_role": self.approver_role,
            "approval_level": self.approval_level,
            "sequence_order": self.sequence_order,
            "status": self.status,
            "is_required": self.is_required,
            "can_delegate": self.can_delegate,
            "rule_id": self.rule_id,
            "decision_date": self.decision_date.isoformat() if self.decision_date else None,
            "comments": self.comments,
            "conditions": self.conditions,
            "delegated_to": self.delegated_to,
            "delegated_from": self.delegated_from,
            "timeout_date": self.timeout_date.isoformat() if self.timeout_date else None,
            "reminded_at": self.reminded_at.isoformat() if self.reminded_at else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<ApprovalEntry #{self.id} wr={self.work_request_id} "
            f"stage={self.sequence_order} {self.approver_id} {self.status}>"
        )


class ApprovalRuleConfig(db.Model):
    """
    Stored approval rule for one organization.

    ``conditions`` and ``steps`` hold the JSON form understood by
    ``airops.services.approval_rules.ApprovalRule.from_dict``.
    Row id order is the configuration order used to break priority ties.
    """

    __tablename__ = "approval_rule_configs"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "rule_key", name="uq_approval_rule_org_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)
    rule_key = db.Column(db.String(64), nullable=False, comment="Stable rule identifier, e.g. high-cost-rule")
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, default="")
    conditions = db.Column(db.JSON, nullable=False, default=list)
    steps = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    priority = db.Column(db.Integer, nullable=False, default=100)
    created_by = db.Column(db.String(64), default="system")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "rule_key": self.rule_key,
            "name": self.name,
            "description": self.description,
            "conditions": self.conditions or [],
            "steps": self.steps or [],
            "is_active": self.is_active,
            "priority": self.priority,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ApprovalRuleConfig {self.organization_id}/{self.rule_key}>"


# ═══════════════════════════════════════════════════════════════════════════
#  STORE HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def create_entry(**fields) -> ApprovalEntry:
    """Add a new pending entry to the session and flush it."""
    fields.setdefault("status", "pending")
    entry = ApprovalEntry(**fields)
    db.session.add(entry)
    db.session.flush()
    return entry


def find_pending(work_request_id: int, approver_id: str, *, for_update: bool = False):
    """Return the single pending entry for (request, approver), or None.

    ``for_update`` locks the row (SELECT ... FOR UPDATE) on databases that
    support it.  More than one match breaks the one-pending-entry-per-approver
    invariant; it is logged and treated as no match.
    """
    stmt = (
        select(ApprovalEntry)
        .where(
            ApprovalEntry.work_request_id == work_request_id,
            ApprovalEntry.approver_id == approver_id,
            ApprovalEntry.status == "pending",
        )
        .order_by(ApprovalEntry.sequence_order, ApprovalEntry.id)
    )
    if for_update:
        stmt = stmt.with_for_update()
    rows = db.session.execute(stmt).scalars().all()
    if len(rows) > 1:
        logger.error(
            "Approver %s holds %d pending entries on work request %s",
            approver_id, len(rows), work_request_id,
            extra={"work_request_id": work_request_id, "approver_id": approver_id},
        )
        return None
    return rows[0] if rows else None


def find_by_stage(work_request_id: int, sequence_order: int) -> list[ApprovalEntry]:
    return db.session.execute(
        select(ApprovalEntry)
        .where(
            ApprovalEntry.work_request_id == work_request_id,
            ApprovalEntry.sequence_order == sequence_order,
        )
        .order_by(ApprovalEntry.id)
    ).scalars().all()


def find_next_pending_stage(work_request_id: int, after_stage: int):
    """First pending entry (lowest stage, then lowest id) after ``after_stage``."""
    return db.session.execute(
        select(ApprovalEntry)
        .where(
            ApprovalEntry.work_request_id == work_request_id,
            ApprovalEntry.sequence_order > after_stage,
            ApprovalEntry.status == "pending",
        )
        .order_by(ApprovalEntry.sequence_order, ApprovalEntry.id)
        .limit(1)
    ).scalar_one_or_none()


def find_active_stage(work_request_id: int) -> int | None:
    """Lowest stage that still has pending entries, or None."""
    return db.session.execute(
        select(func.min(ApprovalEntry.sequence_order))
        .where(
            ApprovalEntry.work_request_id == work_request_id,
            ApprovalEntry.status == "pending",
        )
    ).scalar()


def find_chain(work_request_id: int) -> list[ApprovalEntry]:
    return db.session.execute(
        select(ApprovalEntry)
        .where(ApprovalEntry.work_request_id == work_request_id)
        .order_by(ApprovalEntry.sequence_order, ApprovalEntry.id)
    ).scalars().all()


def has_chain(work_request_id: int) -> bool:
    return db.session.execute(
        select(ApprovalEntry.id)
        .where(ApprovalEntry.work_request_id == work_request_id)
        .limit(1)
    ).first() is not None

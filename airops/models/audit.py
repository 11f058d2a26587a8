"""
Airfield Operations Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for approval workflow
      events (chain initialization, decisions, timeouts).
"""

import json
from datetime import datetime, timezone

from airops.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"work_request", "approval_entry", "approval_rule"}

AUDIT_ACTIONS = {
    # Approval workflow
    "approval.initialize",
    "approval.approve",
    "approval.reject",
    "approval.delegate",
    "approval.timeout",
    # Rule configuration
    "approval_rule.create",
    "approval_rule.update",
    "approval_rule.delete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow event.

    One row per action.  ``diff_json`` carries the old→new snapshot of the
    fields the action changed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_org", "organization_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="work_request | approval_entry | approval_rule",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity as string",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="approval.approve | approval.delegate | approval_rule.update | …",
    )
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="Approver / user id or 'system'",
    )

    # Change payload
    diff_json = db.Column(
        db.Text, default="{}",
        comment="JSON: {field: {old, new}}",
    )

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    organization_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log

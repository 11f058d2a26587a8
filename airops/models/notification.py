"""
Airfield Operations Platform
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from airops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"approval", "deadline", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}

# Approval workflow events that produce notifications
APPROVAL_EVENTS = {
    "chain_initiated",
    "stage_advanced",
    "approved",
    "rejected",
    "delegated",
    "deadline_approaching",
    "approval_timeout",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(64), nullable=True, index=True)
    recipient = db.Column(db.String(150), default="all", index=True, comment="Approver id or 'all' for broadcast")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")
    event_type = db.Column(db.String(30), default="", comment="chain_initiated | stage_advanced | ...")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="work_request / approval_entry")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"

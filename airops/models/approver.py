"""
Airfield Operations Platform
Approver directory model.

Models:
    - Approver: person who can be assigned approval entries.  Ids are the
      string identifiers used in approval rule steps (e.g. "finance-manager").
"""

from datetime import datetime, timezone

from airops.models import db


class Approver(db.Model):
    """Directory record backing ``DatabaseApproverDirectory``."""

    __tablename__ = "approvers"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    department = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "email": self.email,
            "department": self.department,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Approver {self.id}: {self.name}>"

"""
Approver Directory.

Resolves an approver id to the identity snapshot stored on approval
entries.  The workflow only depends on the ``resolve`` method, so another
directory (LDAP, HR system) can be passed wherever ``directory=`` is
accepted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Protocol

from airops.core.exceptions import DirectoryLookupError
from airops.models import db
from airops.models.approver import Approver


@dataclass(frozen=True)
class ApproverInfo:
    id: str
    name: str
    role: str | None = None
    email: str | None = None
    department: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class ApproverDirectory(Protocol):
    def resolve(self, approver_id: str) -> ApproverInfo:
        ...


class DatabaseApproverDirectory:
    """Directory backed by the ``approvers`` table."""

    def resolve(self, approver_id: str) -> ApproverInfo:
        if not approver_id:
            raise DirectoryLookupError(str(approver_id), "empty approver id")
        approver = db.session.get(Approver, approver_id)
        if approver is None:
            raise DirectoryLookupError(approver_id, "not found in directory")
        if not approver.is_active:
            raise DirectoryLookupError(approver_id, "approver is inactive")
        return ApproverInfo(
            id=approver.id,
            name=approver.name,
            role=approver.role,
            email=approver.email,
            department=approver.department,
        )


def get_default_directory() -> ApproverDirectory:
    return DatabaseApproverDirectory()

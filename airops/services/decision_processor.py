"""
Approval Decision Processor: the per-decision state machine.

Applies one approve / reject / delegate decision to a work request's
approval chain.  Runs inside the caller's transaction; the caller commits
on success and rolls back on any exception.

Entry transitions:
    pending → approved | rejected | delegated
    delegated → pending       (same row, now owned by the delegate)
    pending → skipped         (request rejected by someone else)

Business rules:
    - Only the active stage (lowest stage with pending entries) accepts
      decisions.  An approver waiting on a later stage gets
      NoPendingApproval, as does anyone acting on a terminal request.
    - A stage completes when every required entry in it is approved.
    - Rejection is final: every other pending entry is skipped.
    - Every decision bumps the work request version through
      ``update_versioned``, so two approvers racing inside one parallel
      stage serialize and the loser gets a retryable ConflictError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from airops.core.exceptions import NoPendingApproval, ValidationError
from airops.models.approval import (
    APPROVAL_DECISIONS,
    ApprovalEntry,
    find_active_stage,
    find_by_stage,
    find_chain,
    find_next_pending_stage,
    find_pending,
    validate_entry_transition,
)
from airops.models.work_request import get_work_request, update_versioned
from airops.services.approval_rules import optional_text
from airops.services.approver_directory import ApproverDirectory

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Rejected during approval review"


@dataclass(frozen=True)
class Decision:
    """One approver decision as submitted by the caller."""

    decision: str
    comments: str | None = None
    conditions: str | None = None
    delegated_to: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Decision":
        if not isinstance(data, dict):
            raise ValidationError("decision must be an object")
        decision = (optional_text(data, "decision") or "").lower()
        if decision not in APPROVAL_DECISIONS:
            raise ValidationError(
                f"decision must be one of {', '.join(APPROVAL_DECISIONS)}",
                details={"decision": data.get("decision")},
            )
        delegated_to = optional_text(data, "delegated_to")
        if decision == "delegate" and not delegated_to:
            raise ValidationError("delegated_to is required for a delegate decision")
        return cls(
            decision=decision,
            comments=optional_text(data, "comments"),
            conditions=optional_text(data, "conditions"),
            delegated_to=delegated_to,
        )


@dataclass
class DecisionOutcome:
    """Result of a processed decision plus the side effects to run after commit."""

    result: dict
    work_request: object
    audit_action: str
    audit_diff: dict
    events: list[tuple[str, list[str], str]] = field(default_factory=list)


def _set_status(entry: ApprovalEntry, new_status: str) -> None:
    if not validate_entry_transition(entry.status, new_status):
        raise ValidationError(
            f"Approval entry {entry.id} cannot move from {entry.status} to {new_status}",
        )
    entry.status = new_status


def _approver_summary(entry: ApprovalEntry) -> dict:
    return {
        "approver_id": entry.approver_id,
        "approver_name": entry.approver_name,
        "approval_level": entry.approval_level,
        "sequence_order": entry.sequence_order,
    }


def _requestor_recipients(work_request) -> list[str]:
    return [work_request.requestor_name] if work_request.requestor_name else ["all"]


# ── Branches ─────────────────────────────────────────────────────────────────


def _reject(wr, entry, decision, approver_id, now):
    _set_status(entry, "rejected")
    entry.decision_date = now
    entry.comments = decision.comments
    entry.conditions = decision.conditions

    skipped = []
    for other in find_chain(wr.id):
        if other.id != entry.id and other.status == "pending":
            _set_status(other, "skipped")
            skipped.append(other.approver_id)

    fields = {
        "status": "rejected",
        "status_reason": decision.comments or DEFAULT_REJECTION_REASON,
        "current_approver_id": None,
        "updated_by": approver_id,
    }
    events = [("rejected", _requestor_recipients(wr), fields["status_reason"])]
    return fields, None, events, {"skipped": skipped}


def _delegate(wr, entry, decision, approver_id, directory):
    if not entry.can_delegate:
        raise ValidationError(
            f"Approval at stage {entry.sequence_order} does not allow delegation",
            details={"approver_id": approver_id},
        )
    target = decision.delegated_to
    if target == approver_id:
        raise ValidationError("Cannot delegate an approval to yourself")

    info = directory.resolve(target)
    if find_pending(wr.id, target) is not None:
        raise ValidationError(
            f"{target} already has a pending approval on this work request",
            details={"delegated_to": target},
        )
    if any(e.approver_id == target for e in find_by_stage(wr.id, entry.sequence_order)):
        raise ValidationError(
            f"{target} already holds an approval at stage {entry.sequence_order}",
            details={"delegated_to": target},
        )

    _set_status(entry, "delegated")
    entry.delegated_to = target
    entry.delegated_from = approver_id
    entry.comments = decision.comments

    # The same row now belongs to the delegate; stage and level are kept.
    _set_status(entry, "pending")
    entry.approver_id = info.id
    entry.approver_name = info.name
    entry.approver_role = info.role
    entry.approver_email = info.email
    entry.decision_date = None

    fields = {"updated_by": approver_id}
    if wr.current_approver_id == approver_id:
        fields["current_approver_id"] = info.id

    message = f"Delegated by {approver_id}"
    if decision.comments:
        message += f": {decision.comments}"
    events = [("delegated", [info.id], message)]
    return fields, _approver_summary(entry), events, {"delegated_from": approver_id, "delegated_to": info.id}


def _approve(wr, entry, decision, approver_id, now):
    _set_status(entry, "approved")
    entry.decision_date = now
    entry.comments = decision.comments
    entry.conditions = decision.conditions

    stage = entry.sequence_order
    stage_entries = find_by_stage(wr.id, stage)
    remaining = [e for e in stage_entries if e.is_required and e.status != "approved"]

    fields = {"updated_by": approver_id}
    events = []
    if remaining:
        waiting = [e for e in remaining if e.status == "pending"]
        if waiting and wr.current_approver_id == approver_id:
            fields["current_approver_id"] = waiting[0].approver_id
        return fields, None, events, {"stage": stage, "stage_complete": False}

    nxt = find_next_pending_stage(wr.id, stage)
    if nxt is not None:
        fields["current_approver_id"] = nxt.approver_id
        next_stage = [e.approver_id for e in find_by_stage(wr.id, nxt.sequence_order)
                      if e.status == "pending"]
        events.append(("stage_advanced", next_stage,
                        f"Stage {stage} approved; your approval is requested"))
        return fields, _approver_summary(nxt), events, {
            "stage": stage, "stage_complete": True, "next_stage": nxt.sequence_order,
        }

    fields.update({
        "status": "approved",
        "approved_date": now,
        "current_approver_id": None,
    })
    events.append(("approved", _requestor_recipients(wr), "All approval stages completed"))
    return fields, None, events, {"stage": stage, "stage_complete": True}


# ── Public API ───────────────────────────────────────────────────────────────


def process_decision(
    work_request_id: int,
    approver_id: str,
    decision: Decision,
    *,
    directory: ApproverDirectory,
    now: datetime | None = None,
) -> DecisionOutcome:
    """Apply ``decision`` by ``approver_id`` to the request's approval chain.

    Raises:
        NotFoundError: unknown work request.
        NoPendingApproval: terminal request, no pending entry for the
            approver, or the entry is not in the active stage.
        ValidationError: delegation not allowed or invalid delegate.
        DirectoryLookupError: delegate cannot be resolved.
        ConflictError: the work request changed concurrently.
    """
    now = now or datetime.now(timezone.utc)
    wr = get_work_request(work_request_id)
    if wr.is_terminal:
        raise NoPendingApproval(wr.id, approver_id, f"work request is already {wr.status}")

    entry = find_pending(wr.id, approver_id, for_update=True)
    if entry is None:
        raise NoPendingApproval(wr.id, approver_id)

    active = find_active_stage(wr.id)
    if entry.sequence_order != active:
        raise NoPendingApproval(
            wr.id, approver_id,
            f"stage {entry.sequence_order} is waiting on stage {active}",
        )

    expected_version = wr.version
    if decision.decision == "reject":
        fields, next_approver, events, diff = _reject(wr, entry, decision, approver_id, now)
    elif decision.decision == "delegate":
        fields, next_approver, events, diff = _delegate(wr, entry, decision, approver_id, directory)
    else:
        fields, next_approver, events, diff = _approve(wr, entry, decision, approver_id, now)

    updated = update_versioned(wr.id, fields, expected_version)

    logger.info(
        "Approval decision %s applied; request now %s",
        decision.decision, updated.status,
        extra={
            "work_request_id": wr.id,
            "approver_id": approver_id,
            "organization_id": wr.organization_id,
            "event_type": f"approval.{decision.decision}",
        },
    )
    diff.update({"decision": decision.decision, "work_request_status": updated.status})
    return DecisionOutcome(
        result={
            "work_request_status": updated.status,
            "next_approver": next_approver,
            "entry": entry.to_dict(),
        },
        work_request=updated,
        audit_action=f"approval.{decision.decision}",
        audit_diff=diff,
        events=events,
    )

"""
Approval Chain Builder.

Turns the rules matched for a work request into persisted ApprovalEntry
rows and sets the request's workflow fields.

Design decisions:
    - Stage numbering is chain-wide and contiguous from 1.  The counter
      advances once per step; a multi-approver step is one parallel stage.
    - An approver is assigned only at the first stage they appear in, so
      an approver never holds two pending entries on the same request.
      A step whose approvers were all assigned earlier adds no stage.
    - Every approver is resolved through the directory before anything is
      written: one unknown approver aborts the whole build.
    - The work request is written through ``update_versioned`` so a build
      racing another writer fails with ConflictError instead of clobbering.

The builder runs inside the caller's transaction and never commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from airops.core.exceptions import DuplicateChainError, ValidationError
from airops.models.approval import create_entry, has_chain, max_approval_level
from airops.models.work_request import WorkRequest, update_versioned
from airops.services.approval_rules import ApprovalRule, ApprovalStep
from airops.services.approver_directory import ApproverDirectory, ApproverInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_HOURS = 24


@dataclass(frozen=True)
class _PlannedEntry:
    stage: int
    rule: ApprovalRule
    step: ApprovalStep
    approver: ApproverInfo


def _step_timeout(step: ApprovalStep, default_hours: float) -> float:
    return step.timeout_hours or default_hours


def plan_chain(
    rules: list[ApprovalRule],
    directory: ApproverDirectory,
) -> list[_PlannedEntry]:
    """Resolve approvers and assign stages without touching the database.

    Raises DirectoryLookupError for the first approver the directory
    cannot resolve.
    """
    planned: list[_PlannedEntry] = []
    assigned: set[str] = set()
    stage = 1
    for rule in rules:
        for step in rule.ordered_steps:
            fresh = [a for a in dict.fromkeys(step.approvers) if a not in assigned]
            if not fresh:
                continue
            for approver_id in fresh:
                planned.append(_PlannedEntry(stage, rule, step, directory.resolve(approver_id)))
                assigned.add(approver_id)
            stage += 1
    return planned


def build_chain(
    work_request: WorkRequest,
    rules: list[ApprovalRule],
    user_id: str,
    *,
    directory: ApproverDirectory,
    default_timeout_hours: float = DEFAULT_TIMEOUT_HOURS,
    now: datetime | None = None,
):
    """Create the approval chain for ``work_request``.

    Returns ``(work_request, entries)``.  With no rules the request is left
    untouched and ``entries`` is empty.
    """
    if work_request.is_terminal:
        raise ValidationError(
            f"Work request {work_request.id} is already {work_request.status}",
            details={"status": work_request.status},
        )
    if has_chain(work_request.id):
        raise DuplicateChainError(work_request.id)
    if not rules:
        return work_request, []

    planned = plan_chain(rules, directory)
    if not planned:
        return work_request, []

    now = now or datetime.now(timezone.utc)
    entries = []
    for p in planned:
        entries.append(create_entry(
            work_request_id=work_request.id,
            approver_id=p.approver.id,
            approver_name=p.approver.name,
            approver_role=p.approver.role,
            approver_email=p.approver.email,
            approval_level=p.step.level,
            sequence_order=p.stage,
            is_required=True,
            can_delegate=p.step.can_delegate,
            rule_id=p.rule.id,
            timeout_date=now + timedelta(hours=_step_timeout(p.step, default_timeout_hours)),
        ))

    max_hours = max(
        _step_timeout(step, default_timeout_hours)
        for rule in rules for step in rule.steps
    )
    first = min(entries, key=lambda e: (e.sequence_order, e.id))

    updated = update_versioned(
        work_request.id,
        {
            "approval_required": True,
            "approval_level": max_approval_level(e.approval_level for e in entries),
            "current_approver_id": first.approver_id,
            "approval_deadline": now + timedelta(hours=max_hours),
            "status": "under_review",
            "updated_by": user_id,
        },
        work_request.version,
    )

    logger.info(
        "Approval chain built: %d entries over %d stage(s)",
        len(entries), entries[-1].sequence_order,
        extra={
            "work_request_id": work_request.id,
            "organization_id": work_request.organization_id,
            "rules": [r.id for r in rules],
        },
    )
    return updated, entries

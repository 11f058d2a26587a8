"""
Approval Workflow Service: public entry points of the approval engine.

Wraps the rule matcher, chain builder, decision processor and queries in
one transaction per call and converts every failure into a result value:

    (data, None)                                   on success
    (None, {"error", "code", "status", "retryable"}) on failure

Side effects that must not change a committed outcome (audit rows and
in-app notifications) run after the commit; their failures are logged.

Usage:
    from airops.services import approval_workflow_service as approvals

    data, err = approvals.initialize_workflow(42, "org-1", "planner-7")
    data, err = approvals.process_decision(42, "manager-1", {"decision": "approve"})
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from airops.core.exceptions import (
    AirOpsError,
    ConflictError,
    DuplicateRuleError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from airops.models import db
from airops.models.approval import ApprovalRuleConfig
from airops.models.audit import write_audit
from airops.models.work_request import get_work_request
from airops.services import approval_queries, chain_builder, decision_processor
from airops.services.approval_rules import DEFAULT_APPROVAL_RULES, ApprovalRule, load_rules
from airops.services.approver_directory import get_default_directory
from airops.services.notification import notify_approval_event
from airops.services.rule_matcher import match_rules

logger = logging.getLogger(__name__)


# ── Private helpers ──────────────────────────────────────────────────────────


def _failure(exc: Exception, operation: str, **context) -> tuple[None, dict]:
    """Roll back and turn an exception into an error result."""
    db.session.rollback()
    if isinstance(exc, IntegrityError):
        exc = ConflictError(
            resource=operation,
            field="unique",
            message="Concurrent write conflict; re-read and retry",
        )
    elif isinstance(exc, SQLAlchemyError):
        logger.exception("%s failed: database error", operation, extra=context)
        exc = PersistenceError(f"{operation} failed: database error")

    logger.info("%s refused: %s", operation, exc, extra={**context, "error_code": exc.code})
    return None, exc.to_result()


def _audit_after_commit(**kwargs) -> None:
    try:
        write_audit(**kwargs)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(
            "Audit write failed for %s", kwargs.get("action"),
            extra={"organization_id": kwargs.get("organization_id")},
        )


# ── Workflow ─────────────────────────────────────────────────────────────────


def initialize_workflow(
    work_request_id: int,
    organization_id: str | None = None,
    user_id: str = "system",
    *,
    directory=None,
    rules: list[ApprovalRule] | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Match rules for the request and build its approval chain.

    Args:
        organization_id: Defaults to the request's own organization; a
            different value is rejected.
        rules: Override the organization's configured rules.

    Returns:
        ({"approval_required", "matched_rules", "work_request", "entries"}, None)
    """
    ctx = {"work_request_id": work_request_id, "organization_id": organization_id}
    try:
        wr = get_work_request(work_request_id)
        if organization_id and organization_id != wr.organization_id:
            raise ValidationError(
                "organization_id does not match the work request",
                details={"organization_id": organization_id},
            )
        org = wr.organization_id
        if rules is None:
            rules = load_rules(org)
        matched = match_rules(wr.attribute_snapshot(), rules, org)

        updated, entries = chain_builder.build_chain(
            wr, matched, user_id,
            directory=directory or get_default_directory(),
            default_timeout_hours=current_app.config.get(
                "APPROVAL_DEFAULT_TIMEOUT_HOURS", chain_builder.DEFAULT_TIMEOUT_HOURS,
            ),
        )
        result = {
            "approval_required": bool(entries),
            "matched_rules": [r.id for r in matched],
            "work_request": updated.to_dict(),
            "entries": [e.to_dict() for e in entries],
        }
        first_stage = [e.approver_id for e in entries if e.sequence_order == 1]
        db.session.commit()
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "initialize_workflow", **ctx)

    if entries:
        _audit_after_commit(
            entity_type="work_request",
            entity_id=work_request_id,
            action="approval.initialize",
            actor=user_id,
            organization_id=org,
            diff={
                "matched_rules": result["matched_rules"],
                "stages": max(e["sequence_order"] for e in result["entries"]),
                "approval_level": result["work_request"]["approval_level"],
            },
        )
        notify_approval_event(
            "chain_initiated", get_work_request(work_request_id), first_stage,
            message=f"Your approval is requested ({result['work_request']['approval_level']})",
        )
    return result, None


def process_decision(
    work_request_id: int,
    approver_id: str,
    decision,
    *,
    directory=None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Apply one decision.  ``decision`` is a Decision or its dict form.

    Returns:
        ({"work_request_status", "next_approver", "entry"}, None)
    """
    ctx = {"work_request_id": work_request_id, "approver_id": approver_id}
    try:
        if not isinstance(approver_id, str) or not approver_id.strip():
            raise ValidationError("approver_id is required")
        if not isinstance(decision, decision_processor.Decision):
            decision = decision_processor.Decision.from_dict(decision or {})
        outcome = decision_processor.process_decision(
            work_request_id, approver_id.strip(), decision,
            directory=directory or get_default_directory(),
        )
        wr = outcome.work_request
        org = wr.organization_id
        db.session.commit()
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "process_decision", **ctx)

    _audit_after_commit(
        entity_type="work_request",
        entity_id=work_request_id,
        action=outcome.audit_action,
        actor=approver_id,
        organization_id=org,
        diff=outcome.audit_diff,
    )
    for event, recipients, message in outcome.events:
        notify_approval_event(event, get_work_request(work_request_id), recipients, message=message)
    return outcome.result, None


# ── Queries ──────────────────────────────────────────────────────────────────


def get_chain(work_request_id: int):
    try:
        return approval_queries.get_chain(work_request_id), None
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "get_chain", work_request_id=work_request_id)


def get_pending_approvals(organization_id: str, approver_id: str | None = None):
    try:
        return approval_queries.get_pending_approvals(organization_id, approver_id), None
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "get_pending_approvals", organization_id=organization_id)


def get_statistics(organization_id: str, start: datetime | None = None, end: datetime | None = None):
    try:
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end")
        return approval_queries.get_statistics(organization_id, start, end), None
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "get_statistics", organization_id=organization_id)


# ── Rule configuration ───────────────────────────────────────────────────────


def _get_rule_config(rule_id: int) -> ApprovalRuleConfig:
    row = db.session.get(ApprovalRuleConfig, rule_id)
    if row is None:
        raise NotFoundError(resource="ApprovalRule", resource_id=rule_id)
    return row


def _apply_rule(row: ApprovalRuleConfig, rule: ApprovalRule) -> None:
    row.name = rule.name
    row.description = rule.description
    row.conditions = [c.to_dict() for c in rule.conditions]
    row.steps = [s.to_dict() for s in rule.steps]
    row.priority = rule.priority
    row.is_active = rule.is_active


def list_rules(organization_id: str):
    rows = db.session.execute(
        select(ApprovalRuleConfig)
        .where(ApprovalRuleConfig.organization_id == organization_id)
        .order_by(ApprovalRuleConfig.priority, ApprovalRuleConfig.id)
    ).scalars().all()
    return [r.to_dict() for r in rows], None


def create_rule(organization_id: str, data: dict, user_id: str = "system"):
    try:
        rule = ApprovalRule.from_dict(data or {}, organization_id=organization_id)
        exists = db.session.execute(
            select(ApprovalRuleConfig.id).where(
                ApprovalRuleConfig.organization_id == organization_id,
                ApprovalRuleConfig.rule_key == rule.id,
            )
        ).first()
        if exists:
            raise DuplicateRuleError(organization_id, rule.id)
        row = ApprovalRuleConfig(organization_id=organization_id, rule_key=rule.id, created_by=user_id)
        _apply_rule(row, rule)
        db.session.add(row)
        write_audit(
            entity_type="approval_rule", entity_id=rule.id, action="approval_rule.create",
            actor=user_id, organization_id=organization_id, diff={"rule": row.to_dict()},
        )
        db.session.commit()
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "create_rule", organization_id=organization_id)
    return row.to_dict(), None


def update_rule(rule_id: int, data: dict, user_id: str = "system"):
    try:
        row = _get_rule_config(rule_id)
        if not isinstance(data, dict):
            raise ValidationError("rule update must be an object")
        before = row.to_dict()
        merged = {**before, **data, "id": row.rule_key}
        rule = ApprovalRule.from_dict(merged, organization_id=row.organization_id)
        _apply_rule(row, rule)
        write_audit(
            entity_type="approval_rule", entity_id=row.rule_key, action="approval_rule.update",
            actor=user_id, organization_id=row.organization_id,
            diff={
                k: {"old": before[k], "new": v}
                for k, v in row.to_dict().items()
                if k in ("name", "description", "conditions", "steps", "priority", "is_active")
                and before[k] != v
            },
        )
        db.session.commit()
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "update_rule", rule_id=rule_id)
    return row.to_dict(), None


def delete_rule(rule_id: int, user_id: str = "system"):
    try:
        row = _get_rule_config(rule_id)
        write_audit(
            entity_type="approval_rule", entity_id=row.rule_key, action="approval_rule.delete",
            actor=user_id, organization_id=row.organization_id, diff={"rule": row.to_dict()},
        )
        db.session.delete(row)
        db.session.commit()
    except (AirOpsError, SQLAlchemyError) as exc:
        return _failure(exc, "delete_rule", rule_id=rule_id)
    return {"deleted": rule_id}, None


def seed_default_rules(organization_id: str, user_id: str = "system") -> int:
    """Store the built-in rule set for an organization; returns rows created."""
    created = 0
    for data in DEFAULT_APPROVAL_RULES:
        _, err = create_rule(organization_id, data, user_id)
        if err is None:
            created += 1
        elif err["code"] != DuplicateRuleError.code:
            logger.warning("Default rule %s not seeded: %s", data["id"], err["error"])
    return created

"""
Approval rule configuration: rules as data.

An approval rule is a list of conditions plus an ordered list of approval
steps.  Conditions are tagged values (``ConditionOperator`` + payload), so
rules can be stored as JSON in ``approval_rule_configs`` and edited without
touching code.

Rule sources, in order:
    1. ApprovalRuleConfig rows for the organization (row id order).
    2. DEFAULT_APPROVAL_RULES when the organization has no stored rules and
       APPROVAL_USE_DEFAULT_RULES is enabled.

Usage:
    from airops.services.approval_rules import load_rules

    rules = load_rules("org-1")
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy import select

from airops.core.exceptions import ValidationError
from airops.models import db
from airops.models.approval import APPROVAL_LEVELS, ApprovalRuleConfig

logger = logging.getLogger(__name__)


def optional_text(data: dict, key: str, label: str | None = None) -> str | None:
    """Stripped string value of ``data[key]``, or None when missing or blank.

    Raises ValidationError when the value is present but not a string.
    """
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label or key} must be a string", details={key: value})
    return value.strip() or None


def integer_value(data: dict, key: str, default: int, label: str | None = None) -> int:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{label or key} must be an integer", details={key: value})
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{label or key} must be an integer", details={key: value}) from None


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    IN = "in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


@dataclass(frozen=True)
class Condition:
    field: str
    operator: ConditionOperator
    value: Any

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        if not isinstance(data, dict):
            raise ValidationError("condition must be an object {field, operator, value}")
        fld = optional_text(data, "field", "condition.field")
        if not fld:
            raise ValidationError("condition.field is required")
        try:
            op = ConditionOperator(data.get("operator"))
        except (ValueError, TypeError):
            raise ValidationError(
                f"condition.operator must be one of {[o.value for o in ConditionOperator]}",
                details={"operator": data.get("operator")},
            ) from None
        if "value" not in data:
            raise ValidationError("condition.value is required")
        value = data["value"]
        if op is ConditionOperator.IN and isinstance(value, list):
            value = tuple(value)
        return cls(field=fld, operator=op, value=value)

    def to_dict(self) -> dict:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "operator": self.operator.value, "value": value}


@dataclass(frozen=True)
class ApprovalStep:
    level: str
    approvers: tuple[str, ...]
    required_approvals: int = 1
    timeout_hours: float | None = None
    can_delegate: bool = False
    is_parallel: bool = False
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "ApprovalStep":
        if not isinstance(data, dict):
            raise ValidationError("step must be an object")
        level = data.get("level", "standard")
        if level not in APPROVAL_LEVELS:
            raise ValidationError(
                f"step.level must be one of {list(APPROVAL_LEVELS)}",
                details={"level": level},
            )
        approvers = data.get("approvers") or []
        if not isinstance(approvers, list) or not approvers \
                or not all(isinstance(a, str) and a.strip() for a in approvers):
            raise ValidationError("step.approvers must be a non-empty list of approver ids")
        timeout = data.get("timeout_hours")
        if timeout is not None and (isinstance(timeout, bool)
                                    or not isinstance(timeout, (int, float)) or timeout <= 0):
            raise ValidationError("step.timeout_hours must be a positive number")
        return cls(
            level=level,
            approvers=tuple(a.strip() for a in approvers),
            required_approvals=integer_value(data, "required_approvals", 1, "step.required_approvals"),
            timeout_hours=timeout,
            can_delegate=bool(data.get("can_delegate", False)),
            is_parallel=bool(data.get("is_parallel", False)),
            order=integer_value(data, "order", 0, "step.order"),
        )

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "approvers": list(self.approvers),
            "required_approvals": self.required_approvals,
            "timeout_hours": self.timeout_hours,
            "can_delegate": self.can_delegate,
            "is_parallel": self.is_parallel,
            "order": self.order,
        }


@dataclass(frozen=True)
class ApprovalRule:
    id: str
    name: str
    conditions: tuple[Condition, ...]
    steps: tuple[ApprovalStep, ...]
    priority: int = 100
    is_active: bool = True
    organization_id: str | None = None
    description: str = ""

    @property
    def ordered_steps(self) -> list[ApprovalStep]:
        """Steps sorted by their ``order`` (stable for equal orders)."""
        return sorted(self.steps, key=lambda s: s.order)

    @classmethod
    def from_dict(cls, data: dict, organization_id: str | None = None) -> "ApprovalRule":
        if not isinstance(data, dict):
            raise ValidationError("rule must be an object")
        rule_id = optional_text(data, "id", "rule id") or optional_text(data, "rule_key", "rule id")
        if not rule_id:
            raise ValidationError("rule id is required")
        steps_raw = data.get("steps") or []
        if not isinstance(steps_raw, list) or not steps_raw:
            raise ValidationError("steps must be a non-empty array")
        conditions_raw = data.get("conditions") or []
        if not isinstance(conditions_raw, list):
            raise ValidationError("conditions must be an array")
        return cls(
            id=rule_id,
            name=optional_text(data, "name") or rule_id,
            description=optional_text(data, "description") or "",
            conditions=tuple(Condition.from_dict(c) for c in conditions_raw),
            steps=tuple(ApprovalStep.from_dict(s) for s in steps_raw),
            priority=integer_value(data, "priority", 100),
            is_active=bool(data.get("is_active", True)),
            organization_id=organization_id or data.get("organization_id"),
        )

    @classmethod
    def from_config(cls, row: ApprovalRuleConfig) -> "ApprovalRule":
        return cls.from_dict(
            {
                "id": row.rule_key,
                "name": row.name,
                "description": row.description,
                "conditions": row.conditions or [],
                "steps": row.steps or [],
                "priority": row.priority,
                "is_active": row.is_active,
            },
            organization_id=row.organization_id,
        )


# ═════════════════════════════════════════════════════════════════════════════
# Built-in rule set
# ═════════════════════════════════════════════════════════════════════════════

DEFAULT_APPROVAL_RULES: tuple[dict, ...] = (
    {
        "id": "high-priority-rule",
        "name": "High Priority Approval",
        "description": "High and critical priority requests require manager approval",
        "conditions": [
            {"field": "priority", "operator": "in", "value": ["high", "critical"]},
        ],
        "steps": [
            {
                "level": "elevated",
                "approvers": ["manager-1", "manager-2"],
                "required_approvals": 1,
                "timeout_hours": 24,
                "can_delegate": True,
                "is_parallel": False,
                "order": 1,
            },
        ],
        "priority": 1,
    },
    {
        "id": "high-cost-rule",
        "name": "High Cost Approval",
        "description": "Requests over 10,000 require financial approval",
        "conditions": [
            {"field": "estimated_total_cost", "operator": "greater_than", "value": 10000},
        ],
        "steps": [
            {
                "level": "executive",
                "approvers": ["finance-manager"],
                "required_approvals": 1,
                "timeout_hours": 48,
                "can_delegate": False,
                "is_parallel": False,
                "order": 2,
            },
        ],
        "priority": 2,
    },
    {
        "id": "emergency-rule",
        "name": "Emergency Work Approval",
        "description": "Emergency work requires immediate supervisor approval",
        "conditions": [
            {"field": "work_type", "operator": "equals", "value": "emergency"},
        ],
        "steps": [
            {
                "level": "standard",
                "approvers": ["supervisor-1", "supervisor-2"],
                "required_approvals": 1,
                "timeout_hours": 2,
                "can_delegate": True,
                "is_parallel": True,
                "order": 1,
            },
        ],
        "priority": 0,
    },
)


def default_rules(organization_id: str | None = None) -> list[ApprovalRule]:
    return [ApprovalRule.from_dict(r, organization_id=organization_id) for r in DEFAULT_APPROVAL_RULES]


def load_rules(organization_id: str) -> list[ApprovalRule]:
    """Return the configured rules for an organization in configuration order.

    Stored rows that no longer parse are logged and skipped so one broken
    rule cannot block the others.
    """
    rows = db.session.execute(
        select(ApprovalRuleConfig)
        .where(ApprovalRuleConfig.organization_id == organization_id)
        .order_by(ApprovalRuleConfig.id)
    ).scalars().all()

    if not rows:
        if current_app.config.get("APPROVAL_USE_DEFAULT_RULES", True):
            return default_rules(organization_id)
        return []

    rules = []
    for row in rows:
        try:
            rules.append(ApprovalRule.from_config(row))
        except ValidationError as exc:
            logger.warning(
                "Skipping malformed approval rule %s/%s: %s",
                row.organization_id, row.rule_key, exc,
                extra={"organization_id": organization_id},
            )
    return rules

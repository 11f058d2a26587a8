"""
Approval Rule Matcher.

Evaluates approval rules against a work request attribute snapshot and
returns the rules whose conditions all hold, sorted ascending by priority.
Pure: no database access, no side effects other than logging.

Operators:
    equals        strict value match
    in            membership in a list / tuple / set payload
    greater_than  numeric comparison; non-numeric operands are an error
    less_than     numeric comparison; non-numeric operands are an error
    contains      substring for strings, membership for collections

A missing attribute (None) makes a condition false.  A rule with no
conditions never matches.  A condition that raises RuleEvaluationError
disqualifies only its own rule; the error is logged.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable

from airops.services.approval_rules import ApprovalRule, Condition, ConditionOperator

logger = logging.getLogger(__name__)

_NUMERIC = (int, float, Decimal)


class RuleEvaluationError(Exception):
    """Raised when a condition cannot be evaluated against the snapshot."""

    def __init__(self, condition: Condition, reason: str):
        super().__init__(
            f"Cannot evaluate {condition.field} {condition.operator.value} "
            f"{condition.value!r}: {reason}"
        )
        self.condition = condition


def _is_number(value: Any) -> bool:
    return isinstance(value, _NUMERIC) and not isinstance(value, bool)


def _compare(condition: Condition, actual: Any) -> bool:
    if not _is_number(actual) or not _is_number(condition.value):
        raise RuleEvaluationError(
            condition,
            f"numeric operands required, got {type(actual).__name__} "
            f"and {type(condition.value).__name__}",
        )
    if condition.operator is ConditionOperator.GREATER_THAN:
        return actual > condition.value
    return actual < condition.value


def evaluate_condition(condition: Condition, snapshot: dict) -> bool:
    """Evaluate one condition; raises RuleEvaluationError on type errors."""
    actual = snapshot.get(condition.field)
    if actual is None:
        return False

    op = condition.operator
    if op is ConditionOperator.EQUALS:
        if _is_number(actual) and _is_number(condition.value):
            return actual == condition.value
        return type(actual) is type(condition.value) and actual == condition.value

    if op is ConditionOperator.IN:
        if not isinstance(condition.value, (list, tuple, set, frozenset)):
            raise RuleEvaluationError(condition, "'in' requires a list of values")
        return actual in condition.value

    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        return _compare(condition, actual)

    if op is ConditionOperator.CONTAINS:
        if isinstance(actual, str):
            if not isinstance(condition.value, str):
                raise RuleEvaluationError(condition, "substring match requires a string value")
            return condition.value in actual
        if isinstance(actual, (list, tuple, set, frozenset)):
            return condition.value in actual
        raise RuleEvaluationError(
            condition, f"'contains' unsupported for {type(actual).__name__}",
        )

    raise RuleEvaluationError(condition, f"unknown operator {op!r}")


def rule_matches(rule: ApprovalRule, snapshot: dict) -> bool:
    """True when the rule is active, has conditions and all of them hold."""
    if not rule.is_active or not rule.conditions:
        return False
    return all(evaluate_condition(c, snapshot) for c in rule.conditions)


def match_rules(
    snapshot: dict,
    rules: Iterable[ApprovalRule],
    organization_id: str | None = None,
) -> list[ApprovalRule]:
    """
    Return matching rules sorted by priority (stable on ties).

    Rules scoped to another organization are ignored; rules with no
    organization apply everywhere.
    """
    matched = []
    for rule in rules:
        if organization_id is not None and rule.organization_id not in (None, organization_id):
            continue
        try:
            if rule_matches(rule, snapshot):
                matched.append(rule)
        except (RuleEvaluationError, TypeError) as exc:
            logger.warning(
                "Approval rule %s skipped: %s", rule.id, exc,
                extra={"organization_id": organization_id, "event_type": "rule_evaluation_error"},
            )
    return sorted(matched, key=lambda r: r.priority)

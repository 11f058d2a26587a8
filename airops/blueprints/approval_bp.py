"""
Approval Workflow Blueprint.

Routes:
  POST   /work-requests/<wid>/approval-workflow        – build the approval chain
  POST   /work-requests/<wid>/approvals/decision       – approve / reject / delegate
  GET    /work-requests/<wid>/approval-chain           – chain in stage order
  GET    /organizations/<org>/approvals/pending        – open approvals, most urgent first
  GET    /organizations/<org>/approvals/statistics     – counts and turnaround
  GET    /organizations/<org>/approval-rules           – list rule configuration
  POST   /organizations/<org>/approval-rules           – create rule
  PUT    /approval-rules/<rid>                         – update rule
  DELETE /approval-rules/<rid>                         – delete rule

Business logic lives in ``approval_workflow_service``; this layer parses
input, retries version conflicts on decisions and renders results.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from airops.services import approval_workflow_service as approvals
from airops.utils.errors import E, api_error, api_error_from_result
from airops.utils.helpers import current_user, parse_datetime

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")


def _json_object():
    """Request JSON as a dict; {} when absent, None when it is not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def _not_an_object():
    return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")


# ═════════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/work-requests/<int:work_request_id>/approval-workflow", methods=["POST"])
def initialize_workflow(work_request_id):
    """Match approval rules and build the chain.

    Body: { organization_id?, user_id? }
    """
    data = _json_object()
    if data is None:
        return _not_an_object()
    user_id = data.get("user_id")
    if user_id is not None and not isinstance(user_id, str):
        return api_error(E.VALIDATION_INVALID, "user_id must be a string")
    user_id = (user_id or "").strip() or current_user()

    result, err = approvals.initialize_workflow(
        work_request_id, data.get("organization_id"), user_id,
    )
    if err:
        return api_error_from_result(err)
    return jsonify(result), 201 if result["approval_required"] else 200


@approval_bp.route("/work-requests/<int:work_request_id>/approvals/decision", methods=["POST"])
def submit_decision(work_request_id):
    """Apply one approver decision.

    Body: { approver_id, decision: approve|reject|delegate, comments?,
            conditions?, delegated_to? }

    Version conflicts are retried from a fresh read up to
    APPROVAL_CONFLICT_RETRIES times before answering 409.
    """
    data = _json_object()
    if data is None:
        return _not_an_object()
    approver_id = data.get("approver_id")
    if approver_id is not None and not isinstance(approver_id, str):
        return api_error(E.VALIDATION_INVALID, "approver_id must be a string")
    approver_id = (approver_id or "").strip()
    if not approver_id:
        return api_error(E.VALIDATION_REQUIRED, "approver_id is required")

    attempts = 1 + max(0, int(current_app.config.get("APPROVAL_CONFLICT_RETRIES", 3)))
    for attempt in range(1, attempts + 1):
        result, err = approvals.process_decision(work_request_id, approver_id, data)
        if not err:
            return jsonify(result), 200
        if err.get("code") != E.CONFLICT_VERSION or attempt == attempts:
            break
        logger.info(
            "Decision conflict, retrying (%d/%d)", attempt, attempts - 1,
            extra={"work_request_id": work_request_id, "approver_id": approver_id},
        )
    return api_error_from_result(err)


@approval_bp.route("/work-requests/<int:work_request_id>/approval-chain", methods=["GET"])
def get_chain(work_request_id):
    result, err = approvals.get_chain(work_request_id)
    if err:
        return api_error_from_result(err)
    return jsonify(result)


@approval_bp.route("/organizations/<organization_id>/approvals/pending", methods=["GET"])
def pending_approvals(organization_id):
    """Pending approvals for an organization, optionally for one approver."""
    approver_id = request.args.get("approver_id") or None
    items, err = approvals.get_pending_approvals(organization_id, approver_id)
    if err:
        return api_error_from_result(err)
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/organizations/<organization_id>/approvals/statistics", methods=["GET"])
def approval_statistics(organization_id):
    """Query: start, end (ISO date or datetime, both optional)."""
    try:
        start = parse_datetime(request.args.get("start"))
        end = parse_datetime(request.args.get("end"), end_of_day=True)
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "start and end must be ISO dates or datetimes")

    result, err = approvals.get_statistics(organization_id, start, end)
    if err:
        return api_error_from_result(err)
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# RULE CONFIGURATION
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/organizations/<organization_id>/approval-rules", methods=["GET"])
def list_rules(organization_id):
    rules, _ = approvals.list_rules(organization_id)
    return jsonify(rules)


@approval_bp.route("/organizations/<organization_id>/approval-rules", methods=["POST"])
def create_rule(organization_id):
    """Create a rule.

    Body: { id, name, priority?, is_active?, conditions: [{field, operator, value}],
            steps: [{level, approvers, timeout_hours?, can_delegate?, is_parallel?, order?}] }
    """
    data = _json_object()
    if data is None:
        return _not_an_object()
    rule, err = approvals.create_rule(organization_id, data, current_user())
    if err:
        return api_error_from_result(err)
    return jsonify(rule), 201


@approval_bp.route("/approval-rules/<int:rule_id>", methods=["PUT"])
def update_rule(rule_id):
    data = _json_object()
    if data is None:
        return _not_an_object()
    rule, err = approvals.update_rule(rule_id, data, current_user())
    if err:
        return api_error_from_result(err)
    return jsonify(rule)


@approval_bp.route("/approval-rules/<int:rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    result, err = approvals.delete_rule(rule_id, current_user())
    if err:
        return api_error_from_result(err)
    return jsonify(result)

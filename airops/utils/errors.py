"""Standardised API error responses.

Usage
-----
    from airops.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Work request not found")
    return api_error(E.VALIDATION_REQUIRED, "approver_id is required")
    return api_error_from_result(err)   # err dict returned by a service
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Workflow – HTTP 409
    NO_PENDING_APPROVAL = "ERR_NO_PENDING_APPROVAL"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Directory – HTTP 422
    DIRECTORY_LOOKUP = "ERR_DIRECTORY_LOOKUP"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.NO_PENDING_APPROVAL: 409,
    E.CONFLICT_VERSION: 409,
    E.CONFLICT_STATE: 409,
    E.DIRECTORY_LOOKUP: 422,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, retry hints, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def api_error_from_result(err: dict):
    """Render an ``(None, err)`` service result as a JSON error response."""
    details = dict(err.get("details") or {})
    if err.get("retryable"):
        details["retryable"] = True
    return api_error(
        err.get("code", E.INTERNAL),
        err.get("error", "Unknown error"),
        status=err.get("status"),
        details=details or None,
    )

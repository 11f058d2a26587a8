"""
Platform-wide exception hierarchy.

Services raise these types internally; the approval workflow facade turns
them into ``(None, error_dict)`` results at its boundary so the HTTP layer
can decide between retrying and answering the client.

Every exception carries:
    code       machine-readable code from ``airops.utils.errors.E``
    status     default HTTP status
    retryable  True when the caller should re-read and try again

Usage:
    from airops.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkRequest", resource_id=42)
    raise ValidationError("decision must be one of approve, reject, delegate")
"""

from airops.utils.errors import E


class AirOpsError(Exception):
    """Base class for errors that map to an explicit result value."""

    code = E.INTERNAL
    status = 500
    retryable = False

    def to_result(self) -> dict:
        body = {
            "error": str(self),
            "code": self.code,
            "status": self.status,
            "retryable": self.retryable,
        }
        details = getattr(self, "details", None)
        if details:
            body["details"] = details
        return body


class NotFoundError(AirOpsError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "WorkRequest").
        resource_id: The key that was looked up.
    """

    code = E.NOT_FOUND
    status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(AirOpsError):
    """Raised when decision or rule input is malformed or violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = E.VALIDATION_INVALID
    status = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NoPendingApproval(AirOpsError):
    """Raised when the actor holds no actionable pending entry on the request."""

    code = E.NO_PENDING_APPROVAL
    status = 409

    def __init__(self, work_request_id: int, approver_id: str, reason: str | None = None) -> None:
        self.work_request_id = work_request_id
        self.approver_id = approver_id
        msg = f"No pending approval for approver {approver_id!r} on work request {work_request_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(AirOpsError):
    """Raised on an optimistic-concurrency or uniqueness conflict.

    A version conflict is retryable: re-read the row and run the
    operation again.

    Args:
        resource: Model name.
        field: The guarded field ("version" for optimistic locking).
        value: The value that no longer matched.
    """

    code = E.CONFLICT_VERSION
    status = 409
    retryable = True

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if message is None:
            message = f"{resource} {field}={value!r} is stale; re-read and retry"
        super().__init__(message)


class DuplicateChainError(ConflictError):
    """Raised when a work request already has an approval chain."""

    code = E.CONFLICT_STATE
    retryable = False

    def __init__(self, work_request_id: int) -> None:
        super().__init__(
            resource="WorkRequest",
            field="approval_chain",
            value=str(work_request_id),
            message=f"Work request {work_request_id} already has an approval chain",
        )


class DirectoryLookupError(AirOpsError):
    """Raised when the approver directory cannot resolve an approver id."""

    code = E.DIRECTORY_LOOKUP
    status = 422

    def __init__(self, approver_id: str, reason: str | None = None) -> None:
        self.approver_id = approver_id
        msg = f"Approver {approver_id!r} could not be resolved"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PersistenceError(AirOpsError):
    """Raised when the database transaction fails; the caller may retry."""

    code = E.DATABASE
    status = 500
    retryable = True


class DuplicateRuleError(ConflictError):
    """Raised when an organization already has a rule with the same key."""

    code = E.CONFLICT_STATE
    retryable = False

    def __init__(self, organization_id: str, rule_key: str) -> None:
        super().__init__(
            resource="ApprovalRuleConfig",
            field="rule_key",
            value=rule_key,
            message=f"Approval rule {rule_key!r} already exists for organization {organization_id}",
        )

"""
Approval engine exception hierarchy.

Every service raises one of these types; blueprints register a single
handler against ``ApprovalEngineError`` and get consistent HTTP status codes
and machine-readable error codes everywhere.

Usage:
    from sdlc_governance.core.exceptions import NotFoundError, InvalidInputError

    raise NotFoundError(resource="ApprovalRound", resource_id=42)
    raise InvalidInputError("approver_ids must not be empty", details={"approver_ids": []})

Taxonomy:
    InvalidInputError   400  malformed configuration or request
    NotFoundError       404  round / decision / request / subject missing
    SubjectLockedError  409  approver edit while approval is under way
    ModeLockedError     409  approval mode change on an existing set
    AlreadyDecidedError 409  re-submission of a terminal decision
    OutOfOrderError     409  sequential decision attempted out of turn
    ConflictError       409  second pending status-change request / envelope
    WebhookSignatureError 401  signer callback failed HMAC verification
    SignerUnavailableError 502  external signer unreachable or refused
"""


class ApprovalEngineError(Exception):
    """Base class for all engine errors.

    Attributes:
        status_code: HTTP status the blueprint layer maps this error to.
        code:        Stable machine-readable error code.
        details:     Optional structured context for API responses.
    """

    status_code = 500
    code = "ERR_ENGINE"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class InvalidInputError(ApprovalEngineError):
    """Malformed request: empty or duplicate approver list, unknown user, bad enum value."""

    status_code = 400
    code = "ERR_INVALID_INPUT"


class NotFoundError(ApprovalEngineError):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "ApprovalRound", "Decision").
        resource_id: The key that was looked up.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, details={"resource": resource, "resource_id": resource_id})


class SubjectLockedError(ApprovalEngineError):
    """Approvers cannot be edited once any decision in the round has been made."""

    status_code = 409
    code = "ERR_SUBJECT_LOCKED"

    def __init__(self, subject_type: str, subject_id: int) -> None:
        self.subject_type = subject_type
        self.subject_id = subject_id
        super().__init__(
            f"Cannot modify approvers for {subject_type} {subject_id}: approval process has already started",
            details={"subject_type": subject_type, "subject_id": subject_id},
        )


class ModeLockedError(ApprovalEngineError):
    """An approver set's mode is fixed once the set exists."""

    status_code = 409
    code = "ERR_MODE_LOCKED"

    def __init__(self, current_mode: str, requested_mode: str) -> None:
        self.current_mode = current_mode
        self.requested_mode = requested_mode
        super().__init__(
            f"Approval mode is locked to {current_mode}; cannot change to {requested_mode}",
            details={"current_mode": current_mode, "requested_mode": requested_mode},
        )


class AlreadyDecidedError(ApprovalEngineError):
    """The approver already recorded a terminal decision in this round."""

    status_code = 409
    code = "ERR_ALREADY_DECIDED"

    def __init__(self, round_id: int, user_id: int, status: str) -> None:
        self.round_id = round_id
        self.user_id = user_id
        self.status = status
        super().__init__(
            f"User {user_id} has already decided ({status}) in round {round_id}",
            details={"round_id": round_id, "user_id": user_id, "status": status},
        )


class OutOfOrderError(ApprovalEngineError):
    """Sequential round: this approver is not next in line."""

    status_code = 409
    code = "ERR_OUT_OF_ORDER"

    def __init__(self, round_id: int, user_id: int, expected_user_id: int | None) -> None:
        self.round_id = round_id
        self.user_id = user_id
        self.expected_user_id = expected_user_id
        super().__init__(
            f"Sequential approval: user {user_id} must wait for user {expected_user_id} in round {round_id}",
            details={"round_id": round_id, "user_id": user_id, "expected_user_id": expected_user_id},
        )


class ConflictError(ApprovalEngineError):
    """Raised when an operation would create a second pending item where only one is allowed.

    Args:
        resource: Model name.
        field: The scoping field (e.g. "project_id").
        value: The conflicting value.
    """

    status_code = 409
    code = "ERR_CONFLICT"

    def __init__(self, resource: str, field: str, value: int | str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"A pending {resource} already exists for {field}={value!r}",
            details={"resource": resource, "field": field, "value": value},
        )


class SignerUnavailableError(ApprovalEngineError):
    """The external signer could not be reached or refused the request."""

    status_code = 502
    code = "ERR_SIGNER_UNAVAILABLE"


class WebhookSignatureError(ApprovalEngineError):
    """Inbound signer callback failed HMAC verification."""

    status_code = 401
    code = "ERR_WEBHOOK_SIGNATURE"

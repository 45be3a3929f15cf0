"""Typed exceptions raised by the approval engine.

Every exception carries a machine-readable ``code`` and the HTTP status the
API layer answers with:

    ApprovalError (base)
    |
    +-- NoActiveMatrix              404
    +-- MatrixNotFound              404
    +-- InstanceNotFound            404
    +-- RequestNotFound             404
    +-- InvalidMatrix               422
    +-- ApproversInvalid            422
    +-- NotAuthorized               403
    +-- SelfApprovalNotAllowed      403
    +-- AlreadyActed                409
    +-- AlreadyDecided              409
    +-- ConcurrentModification      409
    +-- PostApprovalEffectFailed    502
"""

from typing import Any


class ApprovalError(Exception):
    """Base class for approval engine errors."""

    code: str = "APPROVAL_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for API responses."""
        return {"code": self.code, "message": self.message, "details": self.details}


class NoActiveMatrix(ApprovalError):
    """The company has no active approval matrix."""

    code = "NO_ACTIVE_MATRIX"
    status_code = 404

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(
            f"No active approval matrix for company {company_id}",
            company_id=company_id,
        )


class MatrixNotFound(ApprovalError):
    code = "MATRIX_NOT_FOUND"
    status_code = 404

    def __init__(self, matrix_id: str):
        self.matrix_id = matrix_id
        super().__init__(f"Approval matrix {matrix_id} not found", matrix_id=matrix_id)


class InstanceNotFound(ApprovalError):
    code = "INSTANCE_NOT_FOUND"
    status_code = 404

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(
            f"Approval instance {instance_id} not found", instance_id=instance_id
        )


class RequestNotFound(ApprovalError):
    code = "REQUEST_NOT_FOUND"
    status_code = 404

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id} not found", request_id=request_id)


class InvalidMatrix(ApprovalError):
    """Matrix configuration failed validation."""

    code = "INVALID_MATRIX"
    status_code = 422

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid approval matrix: {reason}", reason=reason)


class ApproversInvalid(ApprovalError):
    """Resolved approver set is empty or contains unusable users.

    A configuration error: the transaction that would have parked the
    instance at this level is rolled back.
    """

    code = "APPROVERS_INVALID"
    status_code = 422

    def __init__(
        self,
        level_number: int,
        invalid_ids: list[str] | None = None,
        reason: str | None = None,
    ):
        self.level_number = level_number
        self.invalid_ids = invalid_ids or []
        message = reason or (
            f"Approvers for level {level_number} are invalid: {self.invalid_ids}"
            if self.invalid_ids
            else f"No approvers resolved for level {level_number}"
        )
        super().__init__(
            message, level_number=level_number, invalid_ids=self.invalid_ids
        )


class NotAuthorized(ApprovalError):
    code = "NOT_AUTHORIZED"
    status_code = 403

    def __init__(self, user_id: str, level_number: int):
        self.user_id = user_id
        self.level_number = level_number
        super().__init__(
            f"User {user_id} is not an approver for level {level_number}",
            user_id=user_id,
            level_number=level_number,
        )


class SelfApprovalNotAllowed(ApprovalError):
    """Submitter tried to approve their own request under SKIP_SELF."""

    code = "SELF_APPROVAL_NOT_ALLOWED"
    status_code = 403

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            "Self-approval is not allowed by company policy", user_id=user_id
        )


class AlreadyActed(ApprovalError):
    code = "ALREADY_ACTED"
    status_code = 409

    def __init__(self, user_id: str, level_number: int):
        self.user_id = user_id
        self.level_number = level_number
        super().__init__(
            f"User {user_id} has already acted at level {level_number}",
            user_id=user_id,
            level_number=level_number,
        )


class AlreadyDecided(ApprovalError):
    code = "ALREADY_DECIDED"
    status_code = 409

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Approval instance {instance_id} is already {status}",
            instance_id=instance_id,
            status=status,
        )


class ConcurrentModification(ApprovalError):
    """Optimistic retries were exhausted."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(self, instance_id: str, attempts: int):
        self.instance_id = instance_id
        self.attempts = attempts
        super().__init__(
            f"Approval instance {instance_id} kept changing; gave up after "
            f"{attempts} attempts",
            instance_id=instance_id,
            attempts=attempts,
        )


class PostApprovalEffectFailed(ApprovalError):
    """Approval is committed but a dependent side effect did not complete."""

    code = "POST_APPROVAL_EFFECT_FAILED"
    status_code = 502

    def __init__(self, instance_id: str, request_id: str, cause: Exception):
        self.instance_id = instance_id
        self.request_id = request_id
        self.cause = cause
        super().__init__(
            f"Request {request_id} was approved but post-approval effects "
            f"failed: {cause}",
            instance_id=instance_id,
            request_id=request_id,
        )

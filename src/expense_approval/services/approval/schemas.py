"""Approval routing schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ApprovalType(str, Enum):
    """How a level is completed."""

    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class ParallelRule(str, Enum):
    """Completion rule for PARALLEL levels."""

    ALL = "ALL"
    ANY = "ANY"


class ApprovalAction(str, Enum):
    """Action an approver takes on an instance."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_CHANGES = "REQUEST_CHANGES"


class InstanceStatus(str, Enum):
    """Approval instance status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class HistoryStatus(str, Enum):
    """Status recorded on a history entry."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    SKIPPED = "SKIPPED"


class ReportStatus(str, Enum):
    """Expense report status."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class SelfApprovalPolicy(str, Enum):
    """Company rule for submitters who are also configured approvers."""

    SKIP_SELF = "SKIP_SELF"
    ALLOW_SELF = "ALLOW_SELF"


class Resolution(str, Enum):
    """Marker explaining how an instance reached a terminal state."""

    AUTO_APPROVED = "AUTO_APPROVED"


class ConditionType(str, Enum):
    AMOUNT = "AMOUNT"
    BUDGET = "BUDGET"
    POLICY = "POLICY"


class ConditionOperator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="


class ConditionAction(str, Enum):
    ACTIVATE = "ACTIVATE"
    SKIP = "SKIP"


# Action -> recorded history status
ACTION_STATUS: dict[ApprovalAction, HistoryStatus] = {
    ApprovalAction.APPROVE: HistoryStatus.APPROVED,
    ApprovalAction.REJECT: HistoryStatus.REJECTED,
    ApprovalAction.REQUEST_CHANGES: HistoryStatus.CHANGES_REQUESTED,
}

SELF_SKIP_COMMENT = "System: self-approval skipped"
CONDITION_SKIP_COMMENT = "System: level conditions not met"


# =============================================================================
# Matrix configuration
# =============================================================================


class ConditionConfig(BaseModel):
    """Predicate deciding whether a level applies to a request."""

    type: ConditionType = Field(..., description="What the condition inspects")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Value compared against the request")
    action: ConditionAction = Field(
        default=ConditionAction.ACTIVATE,
        description="ACTIVATE the level when the predicate holds, or SKIP it",
    )


class LevelConfig(BaseModel):
    """Configuration of a single approval level."""

    model_config = ConfigDict(from_attributes=True)

    level_number: int = Field(..., ge=1, description="Position in the chain")
    enabled: bool = Field(default=True, description="Whether the level is used")
    approval_type: ApprovalType = Field(
        default=ApprovalType.SEQUENTIAL, description="Completion mode"
    )
    parallel_rule: ParallelRule | None = Field(
        None, description="ALL or ANY, required for PARALLEL levels"
    )
    approver_user_ids: list[str] = Field(
        default_factory=list, description="Specific approver user IDs"
    )
    approver_role_ids: list[str] = Field(
        default_factory=list, description="Approver role IDs"
    )
    conditions: list[ConditionConfig] = Field(
        default_factory=list, description="Activation/skip predicates"
    )
    skip_allowed: bool = Field(default=False, description="Level may be skipped")


class MatrixCreate(BaseModel):
    """Create approval matrix request."""

    name: str = Field(..., min_length=1, max_length=200, description="Matrix name")
    description: str | None = Field(None, max_length=1000, description="Description")
    levels: list[LevelConfig] = Field(..., min_length=1, description="Levels")
    activate: bool = Field(default=True, description="Activate on creation")


class MatrixLevelsUpdate(BaseModel):
    """Replace the levels of a matrix."""

    levels: list[LevelConfig] = Field(..., min_length=1, description="New levels")


class MatrixDetail(BaseModel):
    """Approval matrix with its levels."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Matrix ID")
    company_id: str = Field(..., description="Company ID")
    name: str = Field(..., description="Matrix name")
    description: str | None = Field(None, description="Description")
    is_active: bool = Field(..., description="Whether this is the active matrix")
    version: int = Field(..., description="Matrix version")
    previous_version_id: str | None = Field(None, description="Superseded matrix")
    levels: list[LevelConfig] = Field(default_factory=list, description="Levels")
    created_at: datetime = Field(..., description="Created timestamp")
    updated_at: datetime = Field(..., description="Updated timestamp")


# =============================================================================
# Request data
# =============================================================================


class AdditionalApprover(BaseModel):
    """Approver inserted after the matrix chain for a single request."""

    level: int = Field(
        default=0, ge=0, description="Level number the approver owns (0 until placed)"
    )
    user_id: str = Field(..., description="Designated approver")
    role: str | None = Field(None, description="Role label shown to users")
    trigger_reason: str = Field(..., description="Why the approver was added")
    is_additional_approval: bool = Field(default=True, description="Always true")
    rule_id: str | None = Field(None, description="Rule that produced the entry")
    decided_at: datetime | None = Field(None, description="When the approver acted")
    action: ApprovalAction | None = Field(None, description="Action taken")
    comment: str | None = Field(None, description="Comment left with the action")

    @property
    def is_decided(self) -> bool:
        return self.decided_at is not None


class RequestSnapshot(BaseModel):
    """Read-only view of a request used for routing decisions."""

    request_id: str = Field(..., description="Request ID")
    company_id: str = Field(..., description="Company ID")
    submitter_id: str = Field(..., description="Submitting user")
    name: str | None = Field(None, description="Request title")
    total_amount: Decimal = Field(default=Decimal("0"), description="Total amount")
    currency: str = Field(default="INR", description="Currency code")
    project_id: str | None = Field(None, description="Project")
    cost_centre_id: str | None = Field(None, description="Cost centre")
    approvers: list[AdditionalApprover] = Field(
        default_factory=list, description="Additional approvers already attached"
    )
    additional_approvers_resolved: bool = Field(
        default=False, description="Whether rules were already evaluated"
    )
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Other fields for condition evaluation"
    )


class LevelState(BaseModel):
    """Outcome of evaluating the chain from a level onwards."""

    level_number: int = Field(..., description="Level the instance should sit at")
    status: InstanceStatus = Field(..., description="PENDING or APPROVED")
    approver_ids: list[str] = Field(
        default_factory=list, description="Resolved approvers when PENDING"
    )
    is_additional: bool = Field(default=False, description="Additional-approver level")
    skipped_levels: list[int] = Field(
        default_factory=list, description="Levels skipped on the way"
    )
    self_skipped: bool = Field(
        default=False, description="At least one level skipped for self-approval"
    )


# =============================================================================
# Instances
# =============================================================================


class HistoryEntry(BaseModel):
    """Approval history entry."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int = Field(..., description="Position in the history")
    level_number: int = Field(..., description="Level the entry belongs to")
    status: HistoryStatus = Field(..., description="Recorded status")
    approver_id: str | None = Field(None, description="Acting user")
    role_id: str | None = Field(None, description="Role the user acted under")
    is_additional: bool = Field(default=False, description="Additional level entry")
    comments: str | None = Field(None, description="Comments")
    timestamp: datetime = Field(..., description="Entry timestamp")


class ApprovalInstanceDetail(BaseModel):
    """Detailed approval instance information."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Instance ID")
    company_id: str = Field(..., description="Company ID")
    matrix_id: str = Field(..., description="Matrix the instance routes through")
    request_id: str = Field(..., description="Request ID")
    request_type: str = Field(..., description="Request type")
    submitter_id: str | None = Field(None, description="Submitting user")
    current_level: int = Field(..., description="Current level number")
    status: InstanceStatus = Field(..., description="Current status")
    resolution: Resolution | None = Field(None, description="Resolution marker")
    resolved_at: datetime | None = Field(None, description="Resolution time")
    history: list[HistoryEntry] = Field(default_factory=list, description="History")
    created_at: datetime = Field(..., description="Created timestamp")
    updated_at: datetime = Field(..., description="Updated timestamp")


class InitiateApprovalRequest(BaseModel):
    """Start approval routing for a request."""

    request_type: str = Field(default="EXPENSE_REPORT", description="Request type")
    request_data: dict[str, Any] | None = Field(
        None, description="Snapshot overriding the stored request record"
    )


class ApprovalActionRequest(BaseModel):
    """Request to act on an approval instance."""

    action: ApprovalAction = Field(..., description="Action to take")
    comments: str | None = Field(None, max_length=1000, description="Comments")


class PaginationMeta(BaseModel):
    """Pagination metadata."""

    page: int = Field(..., ge=1, description="Current page")
    page_size: int = Field(..., ge=1, le=100, description="Page size")
    total_items: int = Field(..., ge=0, description="Total items")
    total_pages: int = Field(..., ge=0, description="Total pages")

    @classmethod
    def build(cls, page: int, page_size: int, total_items: int) -> "PaginationMeta":
        total_pages = (
            (total_items + page_size - 1) // page_size if total_items > 0 else 0
        )
        return cls(
            page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
        )


class PendingApprovalItem(BaseModel):
    """Instance waiting for the caller's decision."""

    instance_id: str = Field(..., description="Instance ID")
    request_id: str = Field(..., description="Request ID")
    request_type: str = Field(..., description="Request type")
    request_name: str | None = Field(None, description="Request title")
    submitter_id: str | None = Field(None, description="Submitting user")
    total_amount: str | None = Field(None, description="Total amount")
    currency: str | None = Field(None, description="Currency code")
    current_level: int = Field(..., description="Level awaiting the caller")
    is_additional_level: bool = Field(..., description="Additional-approver level")
    created_at: datetime = Field(..., description="Instance creation time")


class PendingApprovalListResponse(BaseModel):
    items: list[PendingApprovalItem] = Field(..., description="Pending items")
    meta: PaginationMeta = Field(..., description="Pagination metadata")


class ApprovalHistoryItem(BaseModel):
    """One of the caller's own history entries with request summary."""

    instance_id: str = Field(..., description="Instance ID")
    request_id: str = Field(..., description="Request ID")
    request_name: str | None = Field(None, description="Request title")
    total_amount: str | None = Field(None, description="Total amount")
    currency: str | None = Field(None, description="Currency code")
    level_number: int = Field(..., description="Level acted on")
    status: HistoryStatus = Field(..., description="Recorded status")
    comments: str | None = Field(None, description="Comments")
    timestamp: datetime = Field(..., description="Entry timestamp")
    instance_status: InstanceStatus = Field(..., description="Instance status now")


class ApprovalHistoryListResponse(BaseModel):
    items: list[ApprovalHistoryItem] = Field(..., description="History items")
    meta: PaginationMeta = Field(..., description="Pagination metadata")

"""Expense approval routing service module."""

from expense_approval.services.approval.commit_guard import AtomicCommitGuard
from expense_approval.services.approval.conditions import (
    ConditionEvaluator,
    PermissiveConditionEvaluator,
    ThresholdConditionEvaluator,
    get_condition_evaluator,
)
from expense_approval.services.approval.exceptions import (
    AlreadyActed,
    AlreadyDecided,
    ApprovalError,
    ApproversInvalid,
    ConcurrentModification,
    InstanceNotFound,
    InvalidMatrix,
    MatrixNotFound,
    NoActiveMatrix,
    NotAuthorized,
    PostApprovalEffectFailed,
    RequestNotFound,
    SelfApprovalNotAllowed,
)
from expense_approval.services.approval.gateway import (
    CollaboratorGateway,
    DefaultCollaboratorGateway,
)
from expense_approval.services.approval.matrix import MatrixService, get_matrix_service
from expense_approval.services.approval.resolver import (
    ApproverResolver,
    ResolvedApprovers,
)
from expense_approval.services.approval.routing import (
    ApprovalRoutingEngine,
    get_approval_routing_engine,
    reset_approval_routing_engine,
)
from expense_approval.services.approval.schemas import (
    AdditionalApprover,
    ApprovalAction,
    ApprovalInstanceDetail,
    ApprovalType,
    HistoryStatus,
    InstanceStatus,
    LevelConfig,
    MatrixCreate,
    MatrixDetail,
    ParallelRule,
    RequestSnapshot,
    SelfApprovalPolicy,
)

__all__ = [
    # Enums
    "ApprovalType",
    "ParallelRule",
    "ApprovalAction",
    "InstanceStatus",
    "HistoryStatus",
    "SelfApprovalPolicy",
    # Schemas
    "LevelConfig",
    "MatrixCreate",
    "MatrixDetail",
    "AdditionalApprover",
    "RequestSnapshot",
    "ApprovalInstanceDetail",
    # Errors
    "ApprovalError",
    "NoActiveMatrix",
    "MatrixNotFound",
    "InstanceNotFound",
    "RequestNotFound",
    "InvalidMatrix",
    "ApproversInvalid",
    "NotAuthorized",
    "SelfApprovalNotAllowed",
    "AlreadyActed",
    "AlreadyDecided",
    "ConcurrentModification",
    "PostApprovalEffectFailed",
    # Collaborators
    "ApproverResolver",
    "ResolvedApprovers",
    "AtomicCommitGuard",
    "ConditionEvaluator",
    "PermissiveConditionEvaluator",
    "ThresholdConditionEvaluator",
    "get_condition_evaluator",
    "CollaboratorGateway",
    "DefaultCollaboratorGateway",
    # Services
    "ApprovalRoutingEngine",
    "get_approval_routing_engine",
    "reset_approval_routing_engine",
    "MatrixService",
    "get_matrix_service",
]

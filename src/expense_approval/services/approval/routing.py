"""Approval routing engine.

State machine walking a request through its company's approval matrix:
- Level evaluation with pluggable conditions and self-approval skipping
- SEQUENTIAL / PARALLEL ALL / PARALLEL ANY level completion
- Additional approvers inserted after the matrix chain
- Approver validation before an instance is parked at a level
- Optimistic concurrency with retry on conflicting actions

Every state change and the matching report status update are committed in
one transaction. Notifications and side effects run only after commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from expense_approval.core.config import Settings, get_settings
from expense_approval.infrastructure.database.session import AsyncSessionLocal
from expense_approval.models.base import generate_id, utcnow
from expense_approval.models.instance import ApprovalHistory, ApprovalInstance
from expense_approval.models.matrix import ApprovalLevel, ApprovalMatrix
from expense_approval.models.report import ExpenseReport
from expense_approval.repositories.audit_log import AuditLogRepository
from expense_approval.repositories.instance import (
    ApprovalHistoryRepository,
    ApprovalInstanceRepository,
)
from expense_approval.repositories.matrix import ApprovalMatrixRepository
from expense_approval.repositories.report import ExpenseReportRepository
from expense_approval.services.approval.commit_guard import AtomicCommitGuard
from expense_approval.services.approval.conditions import (
    ConditionEvaluator,
    get_condition_evaluator,
)
from expense_approval.services.approval.exceptions import (
    AlreadyActed,
    AlreadyDecided,
    ApproversInvalid,
    ConcurrentModification,
    InstanceNotFound,
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
from expense_approval.services.approval.resolver import (
    ApproverResolver,
    ResolvedApprovers,
)
from expense_approval.services.approval.schemas import (
    ACTION_STATUS,
    CONDITION_SKIP_COMMENT,
    SELF_SKIP_COMMENT,
    AdditionalApprover,
    ApprovalAction,
    ApprovalHistoryItem,
    ApprovalHistoryListResponse,
    ApprovalInstanceDetail,
    ApprovalType,
    HistoryStatus,
    InstanceStatus,
    LevelConfig,
    LevelState,
    PaginationMeta,
    ParallelRule,
    PendingApprovalItem,
    PendingApprovalListResponse,
    ReportStatus,
    RequestSnapshot,
    Resolution,
    SelfApprovalPolicy,
)

logger = logging.getLogger(__name__)

REPORT_STATUS: dict[InstanceStatus, ReportStatus] = {
    InstanceStatus.PENDING: ReportStatus.PENDING_APPROVAL,
    InstanceStatus.APPROVED: ReportStatus.APPROVED,
    InstanceStatus.REJECTED: ReportStatus.REJECTED,
    InstanceStatus.CHANGES_REQUESTED: ReportStatus.CHANGES_REQUESTED,
}

# request_data keys allowed to override the stored request record
SNAPSHOT_OVERRIDES = ("name", "total_amount", "currency", "project_id", "cost_centre_id")


@dataclass
class _Transition:
    """Committed outcome of an operation, announced after commit."""

    instance: ApprovalInstance
    snapshot: RequestSnapshot
    status: InstanceStatus = InstanceStatus.PENDING
    entered_level: bool = False
    approver_ids: list[str] = field(default_factory=list)
    actor_id: str | None = None
    comments: str | None = None
    created: bool = True
    detail: ApprovalInstanceDetail | None = None


class ApprovalRoutingEngine:
    """Engine routing requests through multi-level approval.

    Uses the Repository pattern for persistence; one session (and one
    transaction) per operation.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] | None = None,
        gateway: CollaboratorGateway | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        commit_guard: AtomicCommitGuard | None = None,
        settings: Settings | None = None,
    ):
        """Initialize routing engine.

        @param session_factory - Factory for database sessions
        @param gateway - Collaborator gateway (defaults to DefaultCollaboratorGateway)
        @param condition_evaluator - Level condition policy (from settings if None)
        @param commit_guard - Approver validation guard
        @param settings - Application settings
        """
        self.settings = settings or get_settings()
        self._session_factory = session_factory or AsyncSessionLocal
        self.gateway = gateway or DefaultCollaboratorGateway(self.settings)
        self.conditions = condition_evaluator or get_condition_evaluator(
            self.settings.approval_condition_mode
        )
        self.commit_guard = commit_guard or AtomicCommitGuard()
        self.max_retries = self.settings.approval_max_retries

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _log_audit(
        self,
        session: AsyncSession,
        instance_id: str,
        action: str,
        actor_id: str | None,
        old_status: str | None = None,
        new_status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log an audit entry in the operation's transaction.

        @param session - Database session
        @param instance_id - Instance ID
        @param action - Action suffix (stored as approval.<action>)
        @param actor_id - Acting user, None for system transitions
        @param old_status - Previous status
        @param new_status - New status
        @param details - Additional details
        """
        await AuditLogRepository(session).create({
            "action": f"approval.{action.lower()}",
            "resource_type": "approval_instance",
            "resource_id": instance_id,
            "actor_id": actor_id,
            "old_value": {"status": old_status} if old_status else None,
            "new_value": {"status": new_status, **(details or {})},
        })

    async def _load_snapshot(
        self,
        session: AsyncSession,
        request_id: str,
        request_data: dict[str, Any] | None = None,
    ) -> RequestSnapshot:
        """Load request data, overlaying allowed fields from request_data.

        @param session - Database session
        @param request_id - Request ID
        @param request_data - Optional caller-supplied fields
        @returns Request snapshot
        @raises RequestNotFound if the request record does not exist
        """
        snapshot = await self.gateway.load_request_data(session, request_id)
        if snapshot is None:
            raise RequestNotFound(request_id)
        if not request_data:
            return snapshot

        overrides = {k: v for k, v in request_data.items() if k in SNAPSHOT_OVERRIDES}
        extra = {k: v for k, v in request_data.items() if k not in SNAPSHOT_OVERRIDES}
        return RequestSnapshot.model_validate({
            **snapshot.model_dump(),
            **overrides,
            "extra": {**snapshot.extra, **extra},
        })

    async def _policy(self, session: AsyncSession, company_id: str) -> SelfApprovalPolicy:
        """Get the company's self-approval policy."""
        return await self.gateway.get_company_self_approval_policy(session, company_id)

    @staticmethod
    def _append_history(
        instance: ApprovalInstance,
        level_number: int,
        status: HistoryStatus,
        *,
        approver_id: str | None = None,
        role_id: str | None = None,
        is_additional: bool = False,
        comments: str | None = None,
    ) -> ApprovalHistory:
        sequence = max((h.sequence for h in instance.history), default=0) + 1
        entry = ApprovalHistory(
            id=generate_id(),
            sequence=sequence,
            level_number=level_number,
            status=status.value,
            approver_id=approver_id,
            role_id=role_id,
            is_additional=is_additional,
            comments=comments,
            timestamp=utcnow(),
        )
        instance.history.append(entry)
        return entry

    @staticmethod
    def _sync_report(
        report: ExpenseReport | None, instance: ApprovalInstance, now: datetime
    ) -> None:
        """Mirror instance state onto the request record (same transaction)."""
        if report is None:
            return
        status = InstanceStatus(instance.status)
        report.status = REPORT_STATUS[status].value
        report.approval_level = instance.current_level
        if status == InstanceStatus.PENDING and report.submitted_at is None:
            report.submitted_at = now
        elif status == InstanceStatus.APPROVED:
            report.approved_at = now
        elif status == InstanceStatus.REJECTED:
            report.rejected_at = now

    @staticmethod
    def _mark_additional_decided(
        report: ExpenseReport | None,
        level_number: int,
        action: ApprovalAction | None,
        comment: str | None,
        now: datetime,
    ) -> None:
        """Record a decision on the report's additional-approver entry.

        @param report - Request record
        @param level_number - Additional level decided
        @param action - Action taken (None for a system skip)
        @param comment - Comment stored with the decision
        @param now - Decision time
        """
        if report is None:
            return
        for index, entry in enumerate(report.approvers):
            if entry.get("level") == level_number:
                report.approvers[index] = {
                    **entry,
                    "decided_at": now.isoformat(),
                    "action": action.value if action else None,
                    "comment": comment,
                }

    @staticmethod
    def _find_additional(
        snapshot: RequestSnapshot, level_number: int
    ) -> AdditionalApprover | None:
        """Get the additional approver owning a level, if any."""
        for entry in snapshot.approvers:
            if entry.level == level_number:
                return entry
        return None

    @staticmethod
    def _acting_role(
        instance: ApprovalInstance,
        level_number: int,
        user_id: str,
        resolved: ResolvedApprovers,
    ) -> str | None:
        """Pick the role recorded on a user's history entry for a role-based level.

        The entry names the first held role nobody has approved under yet.
        Completion credits the approval to every role the user holds.

        @param instance - Instance with history loaded
        @param level_number - Level being acted on
        @param user_id - Acting user
        @param resolved - Approvers resolved for the level
        @returns Role ID, or None on user-based levels
        """
        if not resolved.is_role_based:
            return None
        held = resolved.roles_by_user.get(user_id, [])
        approved_roles = {
            h.role_id
            for h in instance.history
            if h.level_number == level_number and h.status == HistoryStatus.APPROVED.value
        }
        for role_id in held:
            if role_id not in approved_roles:
                return role_id
        return held[0] if held else None

    @staticmethod
    def _to_detail(instance: ApprovalInstance) -> ApprovalInstanceDetail:
        return ApprovalInstanceDetail.model_validate(instance)

    # =========================================================================
    # Level evaluation and completion
    # =========================================================================

    async def evaluate_level(
        self,
        session: AsyncSession,
        instance: ApprovalInstance,
        matrix: ApprovalMatrix,
        level_number: int,
        snapshot: RequestSnapshot,
        policy: SelfApprovalPolicy = SelfApprovalPolicy.ALLOW_SELF,
    ) -> LevelState:
        """Find the first matrix level at or after level_number needing a human.

        Levels whose conditions fail, and under SKIP_SELF levels where the
        submitter is a resolved approver, get a SKIPPED history entry. The
        loop visits each enabled level at most once.

        @param session - Database session
        @param instance - Instance being routed
        @param matrix - Matrix the instance references
        @param level_number - Lowest level to consider
        @param snapshot - Request data
        @param policy - Company self-approval policy
        @returns PENDING state at a level, or APPROVED when the chain is exhausted
        """
        resolver = ApproverResolver(session)
        skipped: list[int] = []
        self_skipped = False

        for level in matrix.enabled_levels:
            if level.level_number < level_number:
                continue

            if not self.conditions.level_applies(level.conditions, snapshot):
                self._append_history(
                    instance,
                    level.level_number,
                    HistoryStatus.SKIPPED,
                    comments=CONDITION_SKIP_COMMENT,
                )
                skipped.append(level.level_number)
                logger.info(
                    f"Instance {instance.id}: level {level.level_number} skipped "
                    "by conditions"
                )
                continue

            resolved = await resolver.resolve(level, instance.company_id)
            if (
                policy == SelfApprovalPolicy.SKIP_SELF
                and snapshot.submitter_id in resolved
            ):
                self._append_history(
                    instance,
                    level.level_number,
                    HistoryStatus.SKIPPED,
                    approver_id=snapshot.submitter_id,
                    comments=SELF_SKIP_COMMENT,
                )
                skipped.append(level.level_number)
                self_skipped = True
                logger.info(
                    f"Instance {instance.id}: level {level.level_number} skipped, "
                    f"submitter {snapshot.submitter_id} is an approver"
                )
                continue

            return LevelState(
                level_number=level.level_number,
                status=InstanceStatus.PENDING,
                approver_ids=resolved.user_ids,
                skipped_levels=skipped,
                self_skipped=self_skipped,
            )

        return LevelState(
            level_number=instance.current_level,
            status=InstanceStatus.APPROVED,
            skipped_levels=skipped,
            self_skipped=self_skipped,
        )

    def check_level_completion(
        self,
        instance: ApprovalInstance,
        level_config: ApprovalLevel | LevelConfig | AdditionalApprover,
        resolved: ResolvedApprovers,
    ) -> bool:
        """Check whether a level is complete given the recorded history.

        Only APPROVED entries from currently resolved approvers count. On a
        role-based PARALLEL ALL level every configured role with an active
        holder must be held by at least one approving user.

        @param instance - Instance with history loaded
        @param level_config - Matrix level or additional approver entry
        @param resolved - Approvers resolved for the level
        @returns True if the level is complete
        """
        approved = HistoryStatus.APPROVED.value

        if isinstance(level_config, AdditionalApprover):
            return any(
                h.level_number == level_config.level
                and h.status == approved
                and h.approver_id == level_config.user_id
                for h in instance.history
            )

        approvals = [
            h
            for h in instance.history
            if h.level_number == level_config.level_number
            and h.status == approved
            and h.approver_id in resolved
        ]
        if not approvals:
            return False

        approval_type = ApprovalType(level_config.approval_type)
        rule = ParallelRule(level_config.parallel_rule) if level_config.parallel_rule else None
        if approval_type == ApprovalType.SEQUENTIAL or rule == ParallelRule.ANY:
            return True

        # PARALLEL ALL
        if resolved.is_role_based:
            # One approval covers every configured role its approver holds
            required = set(resolved.role_ids)
            approved_by = {
                role_id
                for h in approvals
                for role_id in resolved.roles_by_user.get(h.approver_id, [])
            }
        else:
            required = set(resolved.user_ids)
            approved_by = {h.approver_id for h in approvals}
        return required.issubset(approved_by)

    # =========================================================================
    # Additional approvers
    # =========================================================================

    async def _additional_approvers(
        self,
        session: AsyncSession,
        matrix: ApprovalMatrix,
        snapshot: RequestSnapshot,
        report: ExpenseReport | None,
    ) -> list[AdditionalApprover]:
        """Get the request's additional approvers placed after the matrix.

        Rules are evaluated once per request; the result is stored on the
        request record.
        """
        entries = sorted(snapshot.approvers, key=lambda a: a.level)
        computed = not snapshot.additional_approvers_resolved
        if computed:
            known = {a.user_id for a in entries}
            for entry in await self.gateway.resolve_additional_approvers(session, snapshot):
                if entry.user_id not in known:
                    known.add(entry.user_id)
                    entries.append(entry)

        placed: list[AdditionalApprover] = []
        next_level = matrix.max_enabled_level
        changed = computed
        for entry in entries:
            if entry.level > next_level:
                next_level = entry.level
                placed.append(entry)
            else:
                next_level += 1
                placed.append(entry.model_copy(update={"level": next_level}))
                changed = True

        snapshot.approvers = placed
        snapshot.additional_approvers_resolved = True
        if changed and report is not None:
            report.approvers = [a.model_dump(mode="json") for a in placed]
            report.additional_approvers_resolved = True
        return placed

    @staticmethod
    def _start_cycle(report: ExpenseReport | None, snapshot: RequestSnapshot) -> None:
        """Clear additional-approver state left by an earlier approval cycle.

        Rule-derived entries are dropped so the rules run again against the
        resubmitted request. Attached entries stay but lose their decisions.

        @param report - Request record (None when routing from request_data only)
        @param snapshot - Request data for the new instance
        """
        if not (
            snapshot.additional_approvers_resolved
            or any(a.is_decided for a in snapshot.approvers)
        ):
            return

        kept = [
            a.model_copy(update={"decided_at": None, "action": None, "comment": None})
            for a in snapshot.approvers
            if a.rule_id is None
        ]
        snapshot.approvers = kept
        snapshot.additional_approvers_resolved = False
        if report is not None:
            report.approvers = [a.model_dump(mode="json") for a in kept]
            report.additional_approvers_resolved = False
        logger.info(
            f"Request {snapshot.request_id}: new approval cycle, additional "
            "approver rules will be evaluated again"
        )

    async def _enter_additional_chain(
        self,
        session: AsyncSession,
        instance: ApprovalInstance,
        matrix: ApprovalMatrix,
        snapshot: RequestSnapshot,
        report: ExpenseReport | None,
        policy: SelfApprovalPolicy,
        after_level: int,
        now: datetime,
    ) -> LevelState:
        """Find the next undecided additional approver above after_level."""
        resolver = ApproverResolver(session)
        approvers = await self._additional_approvers(session, matrix, snapshot, report)
        decided = {
            h.level_number
            for h in instance.history
            if h.status in (HistoryStatus.APPROVED.value, HistoryStatus.SKIPPED.value)
        }
        skipped: list[int] = []
        self_skipped = False

        for entry in approvers:
            if entry.level <= after_level or entry.level in decided:
                continue

            if (
                policy == SelfApprovalPolicy.SKIP_SELF
                and entry.user_id == snapshot.submitter_id
            ):
                self._append_history(
                    instance,
                    entry.level,
                    HistoryStatus.SKIPPED,
                    approver_id=entry.user_id,
                    is_additional=True,
                    comments=SELF_SKIP_COMMENT,
                )
                self._mark_additional_decided(report, entry.level, None, SELF_SKIP_COMMENT, now)
                skipped.append(entry.level)
                self_skipped = True
                continue

            resolved = await resolver.resolve_additional(entry, instance.company_id)
            logger.info(
                f"Instance {instance.id}: routing to additional approver "
                f"{entry.user_id} at level {entry.level} ({entry.trigger_reason})"
            )
            return LevelState(
                level_number=entry.level,
                status=InstanceStatus.PENDING,
                approver_ids=resolved.user_ids,
                is_additional=True,
                skipped_levels=skipped,
                self_skipped=self_skipped,
            )

        return LevelState(
            level_number=instance.current_level,
            status=InstanceStatus.APPROVED,
            skipped_levels=skipped,
            self_skipped=self_skipped,
        )

    async def _next_state(
        self,
        session: AsyncSession,
        instance: ApprovalInstance,
        matrix: ApprovalMatrix,
        snapshot: RequestSnapshot,
        report: ExpenseReport | None,
        policy: SelfApprovalPolicy,
        from_level: int,
        now: datetime,
        on_additional: bool = False,
    ) -> LevelState:
        """Evaluate the chain after from_level, then any additional approvers."""
        if on_additional:
            return await self._enter_additional_chain(
                session, instance, matrix, snapshot, report, policy, from_level, now
            )

        state = await self.evaluate_level(
            session, instance, matrix, from_level, snapshot, policy
        )
        if state.status == InstanceStatus.PENDING:
            return state

        extra = await self._enter_additional_chain(
            session,
            instance,
            matrix,
            snapshot,
            report,
            policy,
            matrix.max_enabled_level,
            now,
        )
        return extra.model_copy(update={
            "skipped_levels": state.skipped_levels + extra.skipped_levels,
            "self_skipped": state.self_skipped or extra.self_skipped,
        })

    async def _park(
        self,
        session: AsyncSession,
        instance: ApprovalInstance,
        state: LevelState,
        report: ExpenseReport | None,
        now: datetime,
    ) -> list[str]:
        approver_ids = await self.commit_guard.validate(
            session,
            instance,
            state.approver_ids,
            level_number=state.level_number,
        )
        instance.current_level = state.level_number
        self._sync_report(report, instance, now)
        return approver_ids

    def _finalize(
        self,
        instance: ApprovalInstance,
        state: LevelState,
        report: ExpenseReport | None,
        now: datetime,
        auto_approved: bool = False,
    ) -> None:
        instance.current_level = max([instance.current_level, *state.skipped_levels])
        instance.status = InstanceStatus.APPROVED.value
        instance.resolution = Resolution.AUTO_APPROVED.value if auto_approved else None
        instance.resolved_at = now
        self._sync_report(report, instance, now)
        logger.info(
            f"Instance {instance.id} approved"
            + (" automatically (self-approval skip chain)" if auto_approved else "")
        )

    # =========================================================================
    # Initiation
    # =========================================================================

    async def initiate_approval(
        self,
        company_id: str,
        request_id: str,
        request_type: str = "EXPENSE_REPORT",
        request_data: dict[str, Any] | None = None,
    ) -> ApprovalInstanceDetail:
        """Start approval routing for a submitted request.

        Submitting a request that already has a PENDING instance returns that
        instance unchanged.

        @param company_id - Company ID
        @param request_id - Request ID
        @param request_type - Request type
        @param request_data - Optional fields overriding the stored request
        @returns Created (or existing in-flight) instance
        @raises NoActiveMatrix, RequestNotFound, ApproversInvalid
        """
        try:
            transition = await self._create_instance(
                company_id, request_id, request_type, request_data
            )
        except IntegrityError:
            # Lost a race with a concurrent submission of the same request
            existing = await self.get_instance_by_request(request_id)
            if existing is None or existing.status != InstanceStatus.PENDING:
                raise
            logger.warning(
                f"Request {request_id} was submitted concurrently; returning "
                f"instance {existing.id}"
            )
            return existing

        if transition.created:
            await self._announce(transition)
        return transition.detail

    async def _create_instance(
        self,
        company_id: str,
        request_id: str,
        request_type: str,
        request_data: dict[str, Any] | None,
    ) -> _Transition:
        async with self._session_factory() as session:
            matrix = await ApprovalMatrixRepository(session).get_active(company_id)
            if matrix is None:
                logger.warning(f"No active approval matrix for company {company_id}")
                raise NoActiveMatrix(company_id)

            snapshot = await self._load_snapshot(session, request_id, request_data)
            if snapshot.company_id != company_id:
                raise RequestNotFound(request_id)

            existing = await ApprovalInstanceRepository(session).get_in_flight(request_id)
            if existing is not None:
                logger.warning(
                    f"Request {request_id} already has in-flight instance {existing.id}"
                )
                return _Transition(
                    instance=existing,
                    snapshot=snapshot,
                    status=InstanceStatus(existing.status),
                    created=False,
                    detail=self._to_detail(existing),
                )

            report = await ExpenseReportRepository(session).get_by_id(request_id)
            self._start_cycle(report, snapshot)
            policy = await self._policy(session, company_id)
            now = utcnow()

            instance = ApprovalInstance(
                id=generate_id(),
                company_id=company_id,
                matrix_id=matrix.id,
                request_id=request_id,
                request_type=request_type,
                submitter_id=snapshot.submitter_id,
                current_level=1,
                status=InstanceStatus.PENDING.value,
                last_action_at=now,
                history=[],
            )
            session.add(instance)

            state = await self._next_state(
                session, instance, matrix, snapshot, report, policy, 1, now
            )
            transition = _Transition(instance=instance, snapshot=snapshot)
            if state.status == InstanceStatus.PENDING:
                transition.approver_ids = await self._park(
                    session, instance, state, report, now
                )
                transition.entered_level = True
            else:
                self._finalize(instance, state, report, now, auto_approved=state.self_skipped)
            transition.status = InstanceStatus(instance.status)

            await self._log_audit(
                session,
                instance_id=instance.id,
                action="INITIATED",
                actor_id=snapshot.submitter_id,
                new_status=instance.status,
                details={
                    "request_id": request_id,
                    "matrix_id": matrix.id,
                    "current_level": instance.current_level,
                    "skipped_levels": state.skipped_levels,
                    "approver_ids": transition.approver_ids,
                },
            )
            if instance.resolution == Resolution.AUTO_APPROVED.value:
                await self._log_audit(
                    session,
                    instance_id=instance.id,
                    action="AUTO_APPROVED",
                    actor_id=None,
                    old_status=InstanceStatus.PENDING.value,
                    new_status=instance.status,
                )

            await session.commit()
            logger.info(
                f"Initiated approval {instance.id} for request {request_id}: "
                f"status={instance.status} level={instance.current_level}"
            )
            transition.detail = self._to_detail(instance)
            return transition

    # =========================================================================
    # Action processing
    # =========================================================================

    async def process_action(
        self,
        instance_id: str,
        user_id: str,
        action: ApprovalAction | str,
        comments: str | None = None,
    ) -> ApprovalInstanceDetail:
        """Process an approver's action on an instance.

        @param instance_id - Instance ID
        @param user_id - Acting user
        @param action - APPROVE, REJECT or REQUEST_CHANGES
        @param comments - Optional comments
        @returns Instance after the action
        @raises AlreadyDecided, SelfApprovalNotAllowed, NotAuthorized,
            AlreadyActed, ApproversInvalid, ConcurrentModification,
            PostApprovalEffectFailed
        """
        action = ApprovalAction(action)
        transition = await self._run_with_retry(
            instance_id,
            lambda: self._apply_action(instance_id, user_id, action, comments),
        )
        await self._announce(transition)
        return transition.detail

    async def _run_with_retry(
        self,
        instance_id: str,
        operation: Callable[[], Awaitable[_Transition]],
    ) -> _Transition:
        """Run an operation, re-reading and retrying on write conflicts.

        A stale version (another action committed first) or a history
        uniqueness violation both mean the instance changed underneath us.
        The retry re-reads everything, so a duplicate action then fails
        with AlreadyActed and a late action with AlreadyDecided.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return await operation()
            except (StaleDataError, IntegrityError) as e:
                logger.warning(
                    f"Instance {instance_id}: write conflict on attempt "
                    f"{attempt}/{self.max_retries} ({e.__class__.__name__})"
                )
        raise ConcurrentModification(instance_id, self.max_retries)

    async def _apply_action(
        self,
        instance_id: str,
        user_id: str,
        action: ApprovalAction,
        comments: str | None,
    ) -> _Transition:
        async with self._session_factory() as session:
            instance = await ApprovalInstanceRepository(session).get_for_update(instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)
            if instance.status != InstanceStatus.PENDING.value:
                raise AlreadyDecided(instance.id, instance.status)

            matrix = await ApprovalMatrixRepository(session).get_by_id(instance.matrix_id)
            if matrix is None:
                raise MatrixNotFound(instance.matrix_id)

            snapshot = await self._load_snapshot(session, instance.request_id)
            report = await ExpenseReportRepository(session).get_by_id(instance.request_id)
            policy = await self._policy(session, instance.company_id)
            level_number = instance.current_level

            level = matrix.get_enabled_level(level_number)
            additional = None
            if level is None:
                additional = self._find_additional(snapshot, level_number)
                if additional is None:
                    raise ApproversInvalid(
                        level_number,
                        reason=f"Level {level_number} is neither a matrix level nor "
                        "an additional-approver level",
                    )

            if (
                action == ApprovalAction.APPROVE
                and user_id == instance.submitter_id
                and policy == SelfApprovalPolicy.SKIP_SELF
            ):
                raise SelfApprovalNotAllowed(user_id)

            resolver = ApproverResolver(session)
            if level is not None:
                resolved = await resolver.resolve(level, instance.company_id)
            else:
                resolved = await resolver.resolve_additional(additional, instance.company_id)
            if user_id not in resolved:
                raise NotAuthorized(user_id, level_number)

            if any(
                h.level_number == level_number and h.approver_id == user_id
                for h in instance.history
            ):
                raise AlreadyActed(user_id, level_number)

            now = utcnow()
            old_status = instance.status
            self._append_history(
                instance,
                level_number,
                ACTION_STATUS[action],
                approver_id=user_id,
                role_id=self._acting_role(instance, level_number, user_id, resolved),
                is_additional=additional is not None,
                comments=comments,
            )
            # Bumps the version column so concurrent actions conflict
            instance.last_action_at = now
            if additional is not None:
                self._mark_additional_decided(report, level_number, action, comments, now)

            transition = _Transition(
                instance=instance, snapshot=snapshot, actor_id=user_id, comments=comments
            )

            if action == ApprovalAction.REJECT:
                instance.status = InstanceStatus.REJECTED.value
                instance.resolved_at = now
                self._sync_report(report, instance, now)
                logger.info(f"Instance {instance.id} rejected by {user_id}")
            elif action == ApprovalAction.REQUEST_CHANGES:
                instance.status = InstanceStatus.CHANGES_REQUESTED.value
                instance.resolved_at = now
                self._sync_report(report, instance, now)
                logger.info(f"Instance {instance.id}: changes requested by {user_id}")
            elif not self.check_level_completion(instance, level or additional, resolved):
                logger.info(
                    f"Instance {instance.id}: approval by {user_id} recorded, "
                    f"level {level_number} still waiting"
                )
            else:
                state = await self._next_state(
                    session,
                    instance,
                    matrix,
                    snapshot,
                    report,
                    policy,
                    level_number + 1 if additional is None else level_number,
                    now,
                    on_additional=additional is not None,
                )
                if state.status == InstanceStatus.PENDING:
                    transition.approver_ids = await self._park(
                        session, instance, state, report, now
                    )
                    transition.entered_level = True
                    logger.info(
                        f"Instance {instance.id} advanced to level {instance.current_level}"
                    )
                else:
                    self._finalize(instance, state, report, now)
            transition.status = InstanceStatus(instance.status)

            await self._log_audit(
                session,
                instance_id=instance.id,
                action=f"ACTION_{action.value}",
                actor_id=user_id,
                old_status=old_status,
                new_status=instance.status,
                details={"level_number": level_number, "comments": comments},
            )
            if transition.entered_level:
                await self._log_audit(
                    session,
                    instance_id=instance.id,
                    action="ADVANCED",
                    actor_id=None,
                    details={
                        "from_level": level_number,
                        "to_level": instance.current_level,
                        "approver_ids": transition.approver_ids,
                    },
                )
            elif transition.status == InstanceStatus.APPROVED:
                await self._log_audit(
                    session,
                    instance_id=instance.id,
                    action="FINALIZED",
                    actor_id=None,
                    old_status=old_status,
                    new_status=instance.status,
                )

            await session.commit()
            transition.detail = self._to_detail(instance)
            return transition

    # =========================================================================
    # After-commit effects
    # =========================================================================

    async def _safe_notify(
        self, notify: Callable[..., Awaitable[None]], *args: Any
    ) -> None:
        try:
            await notify(*args)
        except Exception as e:
            logger.error(f"Notification {notify.__name__} failed: {e}")

    async def _announce(self, transition: _Transition) -> None:
        """Notify and run side effects for a committed transition."""
        instance = transition.instance
        snapshot = transition.snapshot

        if transition.status == InstanceStatus.PENDING:
            if transition.entered_level:
                await self._safe_notify(
                    self.gateway.notify_approval_required,
                    instance,
                    instance.current_level,
                    transition.approver_ids,
                    snapshot,
                )
            return

        effect_error: Exception | None = None
        if transition.status == InstanceStatus.APPROVED:
            try:
                await self.gateway.apply_post_approval_effects(instance.request_id)
            except Exception as e:
                logger.error(
                    f"Post-approval effects failed for request {instance.request_id}: {e}"
                )
                effect_error = e
        elif transition.status == InstanceStatus.REJECTED:
            try:
                await self.gateway.reverse_holds_on_rejection(
                    instance.request_id, transition.actor_id, transition.comments
                )
            except Exception as e:
                logger.error(
                    f"Hold reversal failed for rejected request {instance.request_id}: {e}"
                )

        await self._safe_notify(
            self.gateway.notify_status_changed,
            instance,
            snapshot,
            transition.status.value,
            transition.comments,
        )

        if effect_error is not None:
            raise PostApprovalEffectFailed(
                instance.id, instance.request_id, effect_error
            ) from effect_error

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_instance(self, instance_id: str) -> ApprovalInstanceDetail | None:
        """Get instance detail with history.

        @param instance_id - Instance ID
        @returns Instance detail or None if not found
        """
        async with self._session_factory() as session:
            instance = await ApprovalInstanceRepository(session).get_by_id(instance_id)
            return self._to_detail(instance) if instance else None

    async def get_instance_by_request(
        self, request_id: str
    ) -> ApprovalInstanceDetail | None:
        """Get the most recent instance of a request.

        @param request_id - Request ID
        @returns Instance detail or None if not found
        """
        async with self._session_factory() as session:
            instance = await ApprovalInstanceRepository(session).get_by_request(request_id)
            return self._to_detail(instance) if instance else None

    async def _current_approvers(
        self,
        session: AsyncSession,
        resolver: ApproverResolver,
        instance: ApprovalInstance,
        matrix: ApprovalMatrix,
    ) -> tuple[ResolvedApprovers, bool]:
        level = matrix.get_enabled_level(instance.current_level)
        if level is not None:
            return await resolver.resolve(level, instance.company_id), False

        snapshot = await self._load_snapshot(session, instance.request_id)
        additional = self._find_additional(snapshot, instance.current_level)
        if additional is None:
            raise ApproversInvalid(
                instance.current_level,
                reason=f"Instance {instance.id} sits at unknown level "
                f"{instance.current_level}",
            )
        resolved = await resolver.resolve_additional(additional, instance.company_id)
        return resolved, True

    async def get_pending_for_user(
        self,
        user_id: str,
        company_id: str,
        page: int = 1,
        page_size: int | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> PendingApprovalListResponse:
        """Get instances waiting for a user's decision.

        A user sees an instance when they are a resolved approver of its
        current level and have not acted there yet. An instance that fails
        to evaluate is logged and skipped.

        @param user_id - Approver user ID
        @param company_id - Company ID
        @param page - Page number
        @param page_size - Items per page (defaults to settings)
        @param start_date - Optional lower bound on instance creation
        @param end_date - Optional upper bound on instance creation
        @returns Paginated pending list
        """
        page_size = page_size or self.settings.pending_page_size

        async with self._session_factory() as session:
            instances = await ApprovalInstanceRepository(session).get_pending_for_company(
                company_id, start_date=start_date, end_date=end_date
            )
            matrices = await ApprovalMatrixRepository(session).get_by_ids(
                i.matrix_id for i in instances
            )
            reports = await ExpenseReportRepository(session).get_by_ids(
                i.request_id for i in instances
            )
            resolver = ApproverResolver(session)

            items: list[PendingApprovalItem] = []
            for instance in instances:
                try:
                    if any(
                        h.level_number == instance.current_level
                        and h.approver_id == user_id
                        for h in instance.history
                    ):
                        continue

                    matrix = matrices.get(instance.matrix_id)
                    if matrix is None:
                        raise MatrixNotFound(instance.matrix_id)
                    resolved, is_additional = await self._current_approvers(
                        session, resolver, instance, matrix
                    )
                    if user_id not in resolved:
                        continue

                    report = reports.get(instance.request_id)
                    items.append(
                        PendingApprovalItem(
                            instance_id=instance.id,
                            request_id=instance.request_id,
                            request_type=instance.request_type,
                            request_name=report.name if report else None,
                            submitter_id=instance.submitter_id,
                            total_amount=str(report.total_amount) if report else None,
                            currency=report.currency if report else None,
                            current_level=instance.current_level,
                            is_additional_level=is_additional,
                            created_at=instance.created_at,
                        )
                    )
                except Exception as e:
                    logger.error(
                        f"Skipping instance {instance.id} in pending list for "
                        f"{user_id}: {e}"
                    )

        total_items = len(items)
        start_idx = (page - 1) * page_size
        return PendingApprovalListResponse(
            items=items[start_idx:start_idx + page_size],
            meta=PaginationMeta.build(page, page_size, total_items),
        )

    async def get_approval_history(
        self,
        user_id: str,
        action_type: HistoryStatus | str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ApprovalHistoryListResponse:
        """Get the history entries a user recorded, newest first.

        @param user_id - Approver user ID
        @param action_type - Optional history status filter
        @param start_date - Optional lower bound on entry time
        @param end_date - Optional upper bound on entry time
        @param page - Page number
        @param page_size - Items per page
        @returns Paginated history with request summaries
        """
        status = HistoryStatus(action_type).value if action_type else None

        async with self._session_factory() as session:
            history_repo = ApprovalHistoryRepository(session)
            total_items = await history_repo.count_by_approver(
                user_id, status=status, start_date=start_date, end_date=end_date
            )
            entries = await history_repo.get_by_approver(
                user_id,
                status=status,
                start_date=start_date,
                end_date=end_date,
                skip=(page - 1) * page_size,
                limit=page_size,
            )
            instances = await ApprovalInstanceRepository(session).get_by_ids(
                e.instance_id for e in entries
            )
            reports = await ExpenseReportRepository(session).get_by_ids(
                i.request_id for i in instances.values()
            )

            items = []
            for entry in entries:
                instance = instances[entry.instance_id]
                report = reports.get(instance.request_id)
                items.append(
                    ApprovalHistoryItem(
                        instance_id=instance.id,
                        request_id=instance.request_id,
                        request_name=report.name if report else None,
                        total_amount=str(report.total_amount) if report else None,
                        currency=report.currency if report else None,
                        level_number=entry.level_number,
                        status=HistoryStatus(entry.status),
                        comments=entry.comments,
                        timestamp=entry.timestamp,
                        instance_status=InstanceStatus(instance.status),
                    )
                )

        return ApprovalHistoryListResponse(
            items=items,
            meta=PaginationMeta.build(page, page_size, total_items),
        )


# Singleton instance
_routing_engine: ApprovalRoutingEngine | None = None


def get_approval_routing_engine() -> ApprovalRoutingEngine:
    """Get or create approval routing engine singleton.

    @returns ApprovalRoutingEngine instance
    """
    global _routing_engine
    if _routing_engine is None:
        _routing_engine = ApprovalRoutingEngine()
    return _routing_engine


def reset_approval_routing_engine() -> None:
    """Reset approval routing engine singleton (for testing)."""
    global _routing_engine
    _routing_engine = None

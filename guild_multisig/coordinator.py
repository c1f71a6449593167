"""
Guild Multisig — Coordinator.

Single public entry point of the coordination core. It owns the in-memory
group map and the proposal store, and wires together:

1. PermissionEngine  — who may propose, approve and spend
2. ProposalStore     — proposal lifecycle and secondary indexes
3. Storage           — durable records and the hash-chained audit journal
4. NotificationFanout — events to console, webhook, chat and email sinks
5. OperationExecutor — on-chain effects once a proposal is fully approved

Every mutation follows the same path: read, validate, build an updated
copy, persist it, append the audit entry, commit it in memory, then emit
notifications. A failure before the durable write leaves no trace.

All calls must come from one asyncio task; the in-memory maps are not
locked.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from guild_multisig.config import MultisigSettings, StorageBackend
from guild_multisig.core.clock import Clock, IdGenerator, SystemClock
from guild_multisig.core.errors import (
    AmountExceedsLimit,
    ExecutionError,
    GroupNotFound,
    GroupSuspended,
    InsufficientApprovals,
    InvalidConfig,
    InvalidParams,
    PermissionDenied,
    ProposalExpired,
    ProposalNotFound,
    ProposalNotPending,
    StorageCorrupt,
    UnknownOperation,
    UnknownWallet,
)
from guild_multisig.core.operations import OperationTag, parse_params, spend_amount
from guild_multisig.core.schema import (
    AuditAction,
    AuditEntry,
    Group,
    GroupSpec,
    GroupStatus,
    Member,
    Proposal,
    ProposalStats,
    ProposalStatus,
    Urgency,
    VoteDecision,
)
from guild_multisig.governance.permissions import PermissionEngine, permission_engine
from guild_multisig.governance.proposals import (
    ProposalStore,
    has_all_required,
    is_expired,
    missing_approvals,
    proposal_summary,
)
from guild_multisig.integrations.executor import OperationExecutor, WalletRegistry
from guild_multisig.ledger.audit import verify_audit_chain
from guild_multisig.ledger.files import FileStorage
from guild_multisig.ledger.sql import SqlStorage
from guild_multisig.ledger.storage import MemoryStorage, Storage, StorageStats, parse_export
from guild_multisig.notifications.events import (
    NotificationEvent,
    approval_event,
    daily_summary_event,
    executed_event,
    new_proposal_event,
    ready_for_execution_event,
    urgent_proposal_event,
)
from guild_multisig.notifications.fanout import DeliveryRecord, NotificationFanout
from guild_multisig.notifications.sinks import NotificationSink, build_sinks

logger = logging.getLogger(__name__)


def configure_logging(settings: MultisigSettings | None = None) -> None:
    """Configure structured logging."""
    settings = settings or MultisigSettings()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_storage(settings: MultisigSettings, clock: Clock) -> Storage:
    """Storage backend selected by the settings."""
    options = {
        "enable_backups": settings.enable_backups,
        "max_backups_per_record": settings.max_backups_per_record,
        "audit_retention_days": settings.audit_retention_days,
    }
    backend = settings.effective_backend
    if backend == StorageBackend.MEMORY:
        return MemoryStorage(clock, **options)
    if backend == StorageBackend.SQL:
        return SqlStorage(settings.database_url, clock, **options)
    return FileStorage(settings.storage_dir, clock, **options)


class MultisigCoordinator:
    """Creates groups, runs proposals through voting and executes them."""

    def __init__(
        self,
        storage: Storage,
        wallets: WalletRegistry,
        executor: OperationExecutor,
        fanout: NotificationFanout | None = None,
        clock: Clock | None = None,
        permissions: PermissionEngine | None = None,
        settings: MultisigSettings | None = None,
        ids: IdGenerator | None = None,
    ) -> None:
        self.settings = settings or MultisigSettings()
        self.clock = clock or SystemClock()
        self.storage = storage
        self.wallets = wallets
        self.executor = executor
        self.fanout = fanout or NotificationFanout(
            max_queue=self.settings.notifications.queue_size
        )
        self.permissions = permissions or permission_engine
        self.ids = ids or IdGenerator(self.clock)
        self.groups: dict[str, Group] = {}
        self.proposals = ProposalStore(self.settings.default_expiry_days_by_urgency)
        self.quarantined: set[str] = set()
        self.log = structlog.get_logger("guild_multisig.coordinator")

    @classmethod
    def from_settings(
        cls,
        settings: MultisigSettings,
        wallets: WalletRegistry,
        executor: OperationExecutor,
        clock: Clock | None = None,
        sinks: list[NotificationSink] | None = None,
    ) -> MultisigCoordinator:
        """Build storage and notification sinks from ``settings``."""
        clock = clock or SystemClock()
        fanout = NotificationFanout(
            build_sinks(settings.notifications) if sinks is None else sinks,
            max_queue=settings.notifications.queue_size,
        )
        return cls(
            storage=build_storage(settings, clock),
            wallets=wallets,
            executor=executor,
            fanout=fanout,
            clock=clock,
            settings=settings,
        )

    def initialize(self) -> None:
        """
        Load every group and proposal from storage.

        Records that cannot be read even from a backup are quarantined:
        they stay on disk untouched and any operation naming them raises
        ``StorageCorrupt``.
        """
        self.storage.initialize()
        groups: dict[str, Group] = {}
        for group_id in self.storage.group_ids():
            try:
                group = self.storage.load_group(group_id)
            except StorageCorrupt as exc:
                self._quarantine(group_id, exc)
                continue
            if group is not None:
                groups[group.id] = group

        proposals: list[Proposal] = []
        for proposal_id in self.storage.proposal_ids():
            try:
                proposal = self.storage.load_proposal(proposal_id)
            except StorageCorrupt as exc:
                self._quarantine(proposal_id, exc)
                continue
            if proposal is not None:
                proposals.append(proposal)

        self.groups = groups
        self.proposals.load(proposals)
        self.log.info(
            "guild_multisig.coordinator.initialized",
            backend=self.storage.backend_name,
            groups=len(groups),
            proposals=len(proposals),
            quarantined=sorted(self.quarantined),
        )

    def _quarantine(self, record_id: str, exc: StorageCorrupt) -> None:
        self.quarantined.add(record_id)
        self.log.error(
            "guild_multisig.coordinator.record_quarantined",
            record_id=record_id,
            error=str(exc),
        )

    async def close(self) -> None:
        await self.fanout.close()

    # ════════════════════════════════════════════════════════════
    # Internals
    # ════════════════════════════════════════════════════════════

    def _require_group(self, group_id: str) -> Group:
        if group_id in self.quarantined:
            raise StorageCorrupt(f"Group {group_id} is quarantined: its record is unreadable")
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    def _require_active_group(self, group_id: str) -> Group:
        group = self._require_group(group_id)
        if group.status == GroupStatus.SUSPENDED:
            raise GroupSuspended(group_id)
        return group

    def _require_proposal(self, proposal_id: str) -> Proposal:
        if proposal_id in self.quarantined:
            raise StorageCorrupt(
                f"Proposal {proposal_id} is quarantined: its record is unreadable"
            )
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        return proposal

    def _audit(
        self,
        action: AuditAction,
        *,
        group_id: str | None = None,
        proposal_id: str | None = None,
        actor: str | None = None,
        **details: Any,
    ) -> AuditEntry:
        return self.storage.append_audit(
            AuditEntry(
                timestamp=self.clock.now(),
                action=action,
                group_id=group_id,
                proposal_id=proposal_id,
                actor=actor,
                details=details,
            )
        )

    def _commit_group(self, group: Group, action: AuditAction, actor: str | None, **details: Any) -> None:
        self.storage.save_group(group)
        self._audit(action, group_id=group.id, actor=actor, **details)
        self.groups[group.id] = group

    def _commit_proposal(
        self, proposal: Proposal, action: AuditAction, actor: str | None, **details: Any
    ) -> None:
        self.storage.save_proposal(proposal)
        self._audit(
            action, group_id=proposal.group_id, proposal_id=proposal.id, actor=actor, **details
        )
        self.proposals.put(proposal)

    def _expire(self, proposal: Proposal) -> Proposal:
        expired = self.proposals.mark_expired(proposal)
        self._commit_proposal(
            expired, AuditAction.PROPOSAL_EXPIRED, None,
            expires_at=proposal.expires_at.isoformat(),
        )
        self.log.info(
            "guild_multisig.coordinator.proposal_expired",
            proposal_id=proposal.id,
            group_id=proposal.group_id,
        )
        return expired

    def _expire_if_due(self, proposal: Proposal) -> Proposal:
        if proposal.status == ProposalStatus.PENDING and is_expired(proposal, self.clock.now()):
            return self._expire(proposal)
        return proposal

    async def _emit(self, group: Group, event: NotificationEvent) -> None:
        if not group.notifications_enabled:
            logger.debug("Notifications off for %s; dropped %s", group.id, event.kind.value)
            return
        await self.fanout.emit(event)

    def _check_wallets(self, members: list[Member]) -> None:
        for member in members:
            if self.wallets.resolve(member.wallet_name) is None:
                raise UnknownWallet(member.wallet_name)

    # ════════════════════════════════════════════════════════════
    # Groups
    # ════════════════════════════════════════════════════════════

    async def create_group(self, spec: GroupSpec | Mapping[str, Any], actor: str | None = None) -> Group:
        """
        Validate and persist a new group.

        Raises:
            InvalidConfig: malformed spec, empty membership or unheld rule roles.
            UnknownWallet: a member is not in the wallet registry.
            DuplicateMember / InvalidThreshold: see ``PermissionEngine.validate``.
        """
        if not isinstance(spec, GroupSpec):
            try:
                spec = GroupSpec.model_validate(spec)
            except ValidationError as exc:
                raise InvalidConfig(f"Invalid group spec: {exc}") from exc
        self._check_wallets(spec.members)

        group = Group(
            id=self.ids.group_id(),
            name=spec.name,
            description=spec.description,
            members=spec.members,
            threshold=spec.threshold,
            rules=spec.rules,
            notifications_enabled=spec.notifications_enabled,
            created_at=self.clock.now(),
        )
        warnings = self.permissions.validate(group)
        self._commit_group(
            group, AuditAction.GROUP_CREATED, actor,
            name=group.name,
            members=group.member_names,
            threshold=group.threshold,
            rules=sorted(group.rules),
            warnings=warnings,
        )
        self.log.info(
            "guild_multisig.coordinator.group_created",
            group_id=group.id,
            name=group.name,
            members=len(group.members),
            threshold=group.threshold,
        )
        return group

    async def update_group(
        self,
        group_id: str,
        actor: str,
        *,
        members: list[Member | Mapping[str, Any]] | None = None,
        threshold: int | None = None,
        rules: Mapping[str, Any] | None = None,
        description: str | None = None,
        notifications_enabled: bool | None = None,
    ) -> Group:
        """
        Change a group's membership or policy. Requires emergency override.

        Proposals that already exist keep their frozen approver lists.
        """
        group = self._require_group(group_id)
        check = self.permissions.can_emergency_override(group, actor, "updateGroup")
        if not check.allowed:
            raise PermissionDenied(check.reason)

        changes: dict[str, Any] = {
            key: value
            for key, value in (
                ("members", members),
                ("threshold", threshold),
                ("rules", rules),
                ("description", description),
                ("notifications_enabled", notifications_enabled),
            )
            if value is not None
        }
        if not changes:
            return group
        try:
            updated = Group.model_validate({**group.model_dump(), **changes})
        except ValidationError as exc:
            raise InvalidConfig(f"Invalid group update: {exc}") from exc
        if members is not None:
            self._check_wallets(updated.members)
        warnings = self.permissions.validate(updated)

        self._commit_group(
            updated, AuditAction.GROUP_UPDATED, actor,
            fields=sorted(changes),
            warnings=warnings,
        )
        self.log.info(
            "guild_multisig.coordinator.group_updated",
            group_id=group_id,
            actor=actor,
            fields=sorted(changes),
        )
        return updated

    async def resume_group(self, group_id: str, actor: str) -> Group:
        """Lift the suspension left by an executed emergency stop."""
        group = self._require_group(group_id)
        check = self.permissions.can_emergency_override(group, actor, "resumeGroup")
        if not check.allowed:
            raise PermissionDenied(check.reason)
        if group.status == GroupStatus.ACTIVE:
            return group
        resumed = group.model_copy(deep=True, update={"status": GroupStatus.ACTIVE})
        self._commit_group(resumed, AuditAction.GROUP_RESUMED, actor)
        self.log.warning("guild_multisig.coordinator.group_resumed", group_id=group_id, actor=actor)
        return resumed

    async def export_group(self, group_id: str) -> bytes:
        self._require_group(group_id)
        return self.storage.export_group(group_id)

    async def import_group(self, blob: bytes | str, actor: str | None = None) -> Group:
        """
        Restore a group exported by ``export_group``.

        The group ID must not already be in use; its members must resolve in
        the wallet registry.
        """
        group, proposals = parse_export(blob)
        if group.id in self.groups:
            raise InvalidConfig(f"Group {group.id} already exists")
        clashing = [p.id for p in proposals if p.id in self.proposals]
        if clashing:
            raise InvalidConfig(f"Proposal IDs already in use: {', '.join(clashing)}")
        self._check_wallets(group.members)
        self.permissions.validate(group)

        self.storage.import_group(blob)
        self._audit(
            AuditAction.GROUP_IMPORTED, group_id=group.id, actor=actor,
            proposals=len(proposals),
        )
        self.groups[group.id] = group
        for proposal in proposals:
            self.proposals.put(proposal)
        self.quarantined.difference_update({group.id, *(p.id for p in proposals)})
        self.log.info(
            "guild_multisig.coordinator.group_imported",
            group_id=group.id,
            proposals=len(proposals),
        )
        return group

    # ════════════════════════════════════════════════════════════
    # Proposals
    # ════════════════════════════════════════════════════════════

    async def propose(
        self,
        group_id: str,
        proposer: str,
        operation: str,
        params: Mapping[str, Any] | None = None,
        description: str = "",
        urgency: Urgency | str = Urgency.NORMAL,
        expires_at: datetime | None = None,
    ) -> Proposal:
        """
        Open a proposal.

        When the proposer is one of the required approvers the proposal
        counts as their approval; if that alone completes the approver
        list the operation executes straight away.

        Raises:
            GroupNotFound, GroupSuspended, UnknownOperation, InvalidParams,
            PermissionDenied, AmountExceedsLimit; ExecutionError when an
            immediate execution fails (the proposal is then stored as failed).
        """
        group = self._require_active_group(group_id)
        try:
            urgency = Urgency(urgency)
        except ValueError as exc:
            raise InvalidParams(f"Unknown urgency: {urgency!r}") from exc
        if not self.executor.has_adapter(operation):
            raise UnknownOperation(operation)
        normalized = parse_params(operation, dict(params or {}))

        now = self.clock.now()
        if expires_at is not None:
            if expires_at.tzinfo is None or expires_at.utcoffset() is None:
                raise InvalidParams(f"expires_at {expires_at.isoformat()} has no timezone")
            if expires_at <= now:
                raise InvalidParams(f"expires_at {expires_at.isoformat()} is not in the future")

        override = False
        if operation == OperationTag.EMERGENCY_STOP.value:
            check = self.permissions.can_emergency_override(group, proposer, operation)
            if not check.allowed:
                raise PermissionDenied(check.reason)
        else:
            check = self.permissions.can_propose(group, proposer, operation)
            if not check.allowed:
                lifted = (
                    urgency == Urgency.EMERGENCY
                    and self.permissions.can_emergency_override(group, proposer, operation).allowed
                )
                if not lifted:
                    raise PermissionDenied(check.reason)
                override = True

        rule = group.rules.get(operation)
        amount = spend_amount(normalized)
        if amount is not None and rule is not None and rule.max_amount is not None:
            limit = self.permissions.check_spending_limit(group, proposer, operation, amount)
            if not limit.allowed:
                if limit.amount is None:
                    raise InvalidParams(limit.reason)
                raise AmountExceedsLimit(limit.reason)

        proposal = self.proposals.create(
            proposal_id=self.ids.proposal_id(),
            group=group,
            proposer=proposer,
            operation=operation,
            params=normalized,
            now=now,
            description=description,
            urgency=urgency,
            expires_at=expires_at,
            emergency_override=override,
            proposer_approves=self.permissions.can_approve(group, proposer, operation).allowed,
        )
        self._commit_proposal(
            proposal, AuditAction.PROPOSAL_CREATED, proposer,
            operation=operation,
            urgency=urgency.value,
            required_approvals=list(proposal.required_approvals),
            proposer_approved=proposer in proposal.approvals,
            emergency_override=override,
        )
        self.log.info(
            "guild_multisig.coordinator.proposal_created",
            proposal_id=proposal.id,
            group_id=group.id,
            operation=operation,
            proposer=proposer,
            urgency=urgency.value,
            emergency_override=override,
        )

        await self._emit(group, new_proposal_event(group, proposal, now))
        if urgency == Urgency.EMERGENCY:
            await self._emit(group, urgent_proposal_event(group, proposal, now))
        if has_all_required(proposal):
            await self._emit(group, ready_for_execution_event(group, proposal, now))
            return await self._run(group, proposal)
        return proposal

    async def vote(
        self,
        proposal_id: str,
        voter: str,
        decision: VoteDecision | str,
        comment: str = "",
    ) -> Proposal:
        """
        Record an approval or a rejection.

        A rejection closes the proposal. The approval that completes the
        required list triggers execution.
        """
        proposal = self._require_proposal(proposal_id)
        group = self._require_active_group(proposal.group_id)
        try:
            decision = VoteDecision(decision)
        except ValueError as exc:
            raise InvalidParams(f"Unknown vote decision: {decision!r}") from exc

        check = self.permissions.can_approve(group, voter, proposal.operation)
        if not check.allowed:
            raise PermissionDenied(check.reason)

        now = self.clock.now()
        try:
            updated = self.proposals.record_vote(proposal, voter, decision, now, comment)
        except ProposalExpired:
            self._expire_if_due(proposal)
            raise

        if decision == VoteDecision.APPROVE:
            record = updated.approvals[voter]
            self._commit_proposal(
                updated, AuditAction.VOTE_RECORDED, voter,
                decision=decision.value, comment=comment,
            )
        else:
            record = updated.rejections[voter]
            self._commit_proposal(
                updated, AuditAction.PROPOSAL_REJECTED, voter,
                decision=decision.value, comment=comment,
            )
        self.log.info(
            "guild_multisig.coordinator.vote_recorded",
            proposal_id=proposal_id,
            voter=voter,
            decision=decision.value,
            status=updated.status.value,
        )

        await self._emit(group, approval_event(group, updated, record, now))
        if decision == VoteDecision.APPROVE and has_all_required(updated):
            await self._emit(group, ready_for_execution_event(group, updated, now))
            return await self._run(group, updated)
        return updated

    async def approve(self, proposal_id: str, voter: str, comment: str = "") -> Proposal:
        return await self.vote(proposal_id, voter, VoteDecision.APPROVE, comment)

    async def reject(self, proposal_id: str, voter: str, comment: str = "") -> Proposal:
        return await self.vote(proposal_id, voter, VoteDecision.REJECT, comment)

    async def execute(self, proposal_id: str) -> Proposal:
        """Execute a fully approved proposal that is still pending."""
        proposal = self._require_proposal(proposal_id)
        group = self._require_active_group(proposal.group_id)
        if is_expired(proposal, self.clock.now()):
            self._expire_if_due(proposal)
            raise ProposalExpired(proposal_id)
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalNotPending(proposal_id, proposal.status.value)
        missing = missing_approvals(proposal)
        if missing:
            raise InsufficientApprovals(proposal_id, missing)
        return await self._run(group, proposal)

    async def _run(self, group: Group, proposal: Proposal) -> Proposal:
        try:
            receipt = await self.executor.run(proposal, self.wallets)
        except ExecutionError as exc:
            exc.proposal_id = proposal.id
            failed = self.proposals.mark_failed(proposal, str(exc), exc.receipt)
            self._commit_proposal(failed, AuditAction.PROPOSAL_FAILED, None, error=str(exc))
            self.log.error(
                "guild_multisig.coordinator.execution_failed",
                proposal_id=proposal.id,
                operation=proposal.operation,
                error=str(exc),
            )
            await self._emit(group, executed_event(group, failed, self.clock.now()))
            raise

        now = self.clock.now()
        executed = self.proposals.mark_executed(proposal, receipt, now)
        self._commit_proposal(
            executed, AuditAction.PROPOSAL_EXECUTED, None,
            receipt_type=receipt.get("type"),
        )
        self.log.info(
            "guild_multisig.coordinator.proposal_executed",
            proposal_id=proposal.id,
            operation=proposal.operation,
            receipt_type=receipt.get("type"),
        )
        if proposal.operation == OperationTag.EMERGENCY_STOP.value:
            group = group.model_copy(deep=True, update={"status": GroupStatus.SUSPENDED})
            self._commit_group(
                group, AuditAction.GROUP_SUSPENDED, proposal.proposer_wallet_name,
                proposal_id=proposal.id,
                reason=proposal.params.get("reason", ""),
            )
            self.log.warning(
                "guild_multisig.coordinator.group_suspended",
                group_id=group.id,
                proposal_id=proposal.id,
            )
        await self._emit(group, executed_event(group, executed, now))
        return executed

    async def send_daily_summary(self) -> int:
        """Emit one summary per active group with pending proposals; returns how many."""
        sent = 0
        now = self.clock.now()
        for group in self.list_groups():
            if group.status != GroupStatus.ACTIVE:
                continue
            pending = self.list_pending(group.id)
            if not pending:
                continue
            await self._emit(group, daily_summary_event(group, pending, now))
            sent += 1
        return sent

    # ════════════════════════════════════════════════════════════
    # Reads
    # ════════════════════════════════════════════════════════════

    def get_group(self, group_id: str) -> Group:
        return self._require_group(group_id)

    def list_groups(self) -> list[Group]:
        return sorted(self.groups.values(), key=lambda g: (g.created_at, g.id))

    def get_proposal(self, proposal_id: str) -> Proposal:
        """The proposal, with a passed expiry recorded first."""
        return self._expire_if_due(self._require_proposal(proposal_id))

    def list_pending(self, group_id: str) -> list[Proposal]:
        self._require_group(group_id)
        for proposal in self.proposals.for_group(group_id):
            self._expire_if_due(proposal)
        return self.proposals.pending_for_group(group_id, self.clock.now())

    def list_requiring_action(self, wallet_name: str) -> list[Proposal]:
        return self.proposals.requiring_action(wallet_name, self.clock.now())

    def list_proposals(
        self, group_id: str, status: ProposalStatus | None = None
    ) -> list[Proposal]:
        self._require_group(group_id)
        proposals = self.proposals.for_group(group_id)
        if status is not None:
            proposals = [p for p in proposals if p.status == status]
        return proposals

    def stats(self, group_id: str) -> ProposalStats:
        self._require_group(group_id)
        return self.proposals.stats(group_id, self.clock.now())

    def proposal_summary(self, proposal_id: str) -> dict[str, Any]:
        return proposal_summary(self.get_proposal(proposal_id), self.clock.now())

    def wallet_permissions(self, group_id: str, wallet_name: str) -> dict[str, Any] | None:
        return self.permissions.wallet_permissions(self._require_group(group_id), wallet_name)

    def notification_history(self, limit: int = 50) -> list[DeliveryRecord]:
        return self.fanout.history(limit)

    def storage_stats(self) -> StorageStats:
        return self.storage.stats()

    # ════════════════════════════════════════════════════════════
    # Maintenance
    # ════════════════════════════════════════════════════════════

    def sweep_expired(self) -> int:
        """Record the expiry of every pending proposal past its deadline."""
        expired = self.proposals.expired_pending(self.clock.now())
        for proposal in expired:
            self._expire(proposal)
        if expired:
            self.log.info("guild_multisig.coordinator.sweep_expired", count=len(expired))
        return len(expired)

    def cleanup_storage(self) -> int:
        removed = self.storage.cleanup(self.clock.now())
        self.log.info("guild_multisig.coordinator.storage_cleanup", removed=removed)
        return removed

    def verify_audit(self) -> tuple[bool, int, str]:
        return verify_audit_chain(self.storage.read_audit())

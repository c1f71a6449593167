"""
Proposal Store — in-memory index and lifecycle of multisig proposals.

Lifecycle of a proposal:

    PENDING ──reject by a required approver──▶ REJECTED
       │ ──now > expires_at (checked on read / vote)──▶ EXPIRED
       │ ──all required approved + executor success──▶ EXECUTED
       └──all required approved + executor failure──▶ FAILED

Terminal statuses are sticky. ``required_approvals`` is selected once, at
creation, and never recomputed.

The store never persists anything itself. Transition methods return an
updated copy; the coordinator writes that copy to storage and only then
calls ``put()``, so a failed write leaves the index untouched.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Iterable

from guild_multisig.core.errors import (
    AlreadyVoted,
    NotAuthorized,
    ProposalExpired,
    ProposalNotPending,
)
from guild_multisig.core.schema import (
    Group,
    Proposal,
    ProposalStats,
    ProposalStatus,
    Urgency,
    VoteDecision,
    VoteRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS: dict[Urgency, int] = {
    Urgency.LOW: 7,
    Urgency.NORMAL: 7,
    Urgency.HIGH: 7,
    Urgency.EMERGENCY: 1,
}


# ════════════════════════════════════════════════════════════════
# Pure helpers
# ════════════════════════════════════════════════════════════════


def select_required_approvals(group: Group, operation: str) -> tuple[str, ...]:
    """
    Pick the wallets whose approval a new proposal needs.

    A rule with required roles takes the first ``rule.threshold`` members
    holding one of those roles; otherwise the first ``group.threshold``
    members. Declaration order decides in both cases.
    """
    rule = group.rules.get(operation)
    if rule is not None and rule.required_roles:
        matching = [m.wallet_name for m in group.members if m.role in rule.required_roles]
        return tuple(matching[: rule.threshold])
    return tuple(m.wallet_name for m in group.members[: group.threshold])


def has_all_required(proposal: Proposal) -> bool:
    return all(name in proposal.approvals for name in proposal.required_approvals)


def missing_approvals(proposal: Proposal) -> list[str]:
    return [name for name in proposal.required_approvals if name not in proposal.approvals]


def is_expired(proposal: Proposal, now: datetime) -> bool:
    """True once the proposal expired, whether or not the flip was recorded yet."""
    if proposal.status == ProposalStatus.EXPIRED:
        return True
    return proposal.status == ProposalStatus.PENDING and now > proposal.expires_at


def approval_status(proposal: Proposal) -> dict[str, Any]:
    approved = [n for n in proposal.required_approvals if n in proposal.approvals]
    rejected = [n for n in proposal.required_approvals if n in proposal.rejections]
    pending = [n for n in proposal.required_approvals if not proposal.has_voted(n)]
    complete = has_all_required(proposal)
    return {
        "approved": approved,
        "pending": pending,
        "rejected": rejected,
        "is_complete": complete,
        "can_execute": complete and proposal.status == ProposalStatus.PENDING,
    }


def time_left(proposal: Proposal, now: datetime) -> str:
    remaining = proposal.expires_at - now
    if remaining <= timedelta(0):
        return "Expired"
    days = remaining.days
    hours, rest = divmod(remaining.seconds, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def operation_details(proposal: Proposal) -> dict[str, Any]:
    """Operation-specific highlights used by summaries and notifications."""
    params = proposal.params
    operation = proposal.operation
    if operation == "createERC20Token":
        return {
            "token_name": params.get("name"),
            "token_symbol": params.get("symbol"),
            "initial_supply": params.get("initialSupply"),
        }
    if operation == "createMoveToken":
        return {
            "token_name": params.get("name"),
            "token_symbol": params.get("symbol"),
            "decimals": params.get("decimals"),
        }
    if operation == "createNFTCollection":
        return {
            "collection_name": params.get("name"),
            "symbol": params.get("symbol"),
            "max_supply": params.get("maxSupply"),
        }
    if operation == "mintNFT":
        return {
            "recipient": params.get("to"),
            "token_id": params.get("tokenId"),
            "contract": params.get("contractAddress"),
        }
    if operation == "transferETH":
        return {"recipient": params.get("to"), "amount": params.get("amount"), "currency": "ETH"}
    if operation == "batchPlayerRewards":
        rewards = params.get("rewards") or []
        return {
            "player_count": len({r.get("recipient") for r in rewards}),
            "total_rewards": len(rewards),
        }
    return dict(params)


def proposal_summary(proposal: Proposal, now: datetime) -> dict[str, Any]:
    return {
        "id": proposal.id,
        "group_id": proposal.group_id,
        "operation": proposal.operation,
        "proposer": proposal.proposer_wallet_name,
        "description": proposal.description,
        "urgency": proposal.urgency.value,
        "status": proposal.status.value,
        "created_at": proposal.created_at,
        "expires_at": proposal.expires_at,
        "approval_status": approval_status(proposal),
        "required_count": len(proposal.required_approvals),
        "approved_count": len(proposal.approvals),
        "rejected_count": len(proposal.rejections),
        "is_expired": is_expired(proposal, now),
        "time_left": time_left(proposal, now),
        "details": operation_details(proposal),
    }


# ════════════════════════════════════════════════════════════════
# Proposal Store
# ════════════════════════════════════════════════════════════════


class ProposalStore:
    """
    Primary map ``id -> Proposal`` plus three secondary indexes.

    Indexes (by group, by proposer, by required approver) hold proposal IDs in
    creation order and are updated in the same call as the primary map.
    """

    def __init__(self, expiry_days: dict[Urgency, int] | None = None) -> None:
        self.expiry_days = dict(DEFAULT_EXPIRY_DAYS)
        if expiry_days:
            self.expiry_days.update({Urgency(k): v for k, v in expiry_days.items()})
        self.proposals: dict[str, Proposal] = {}
        self._by_group: dict[str, list[str]] = defaultdict(list)
        self._by_proposer: dict[str, list[str]] = defaultdict(list)
        self._by_approver: dict[str, list[str]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self.proposals)

    def __contains__(self, proposal_id: object) -> bool:
        return proposal_id in self.proposals

    # ── Index maintenance ──────────────────────────────────────

    def load(self, proposals: Iterable[Proposal]) -> None:
        """Replace the contents and rebuild every index."""
        self.proposals.clear()
        self._by_group.clear()
        self._by_proposer.clear()
        self._by_approver.clear()
        for proposal in sorted(proposals, key=lambda p: (p.created_at, p.id)):
            self.put(proposal)

    def put(self, proposal: Proposal) -> None:
        """Insert or replace ``proposal`` in the primary map and the indexes."""
        is_new = proposal.id not in self.proposals
        self.proposals[proposal.id] = proposal
        if is_new:
            self._by_group[proposal.group_id].append(proposal.id)
            self._by_proposer[proposal.proposer_wallet_name].append(proposal.id)
            for name in proposal.required_approvals:
                self._by_approver[name].append(proposal.id)

    def get(self, proposal_id: str) -> Proposal | None:
        return self.proposals.get(proposal_id)

    # ── Creation ───────────────────────────────────────────────

    def expiry_for(self, urgency: Urgency, now: datetime) -> datetime:
        return now + timedelta(days=self.expiry_days[urgency])

    def create(
        self,
        *,
        proposal_id: str,
        group: Group,
        proposer: str,
        operation: str,
        params: dict[str, Any],
        now: datetime,
        description: str = "",
        urgency: Urgency = Urgency.NORMAL,
        expires_at: datetime | None = None,
        emergency_override: bool = False,
        proposer_approves: bool = False,
    ) -> Proposal:
        """
        Build a new pending proposal (not yet indexed).

        With ``proposer_approves`` the proposer's own approval is recorded
        when they are one of the required approvers.
        """
        required = select_required_approvals(group, operation)
        proposal = Proposal(
            id=proposal_id,
            group_id=group.id,
            proposer_wallet_name=proposer,
            operation=operation,
            params=params,
            description=description,
            urgency=urgency,
            required_approvals=required,
            created_at=now,
            expires_at=expires_at or self.expiry_for(urgency, now),
            emergency_override=emergency_override,
        )
        if proposer_approves and proposer in required:
            proposal.approvals[proposer] = VoteRecord(
                wallet_name=proposer,
                decision=VoteDecision.APPROVE,
                comment="Proposed",
                timestamp=now,
            )
        return proposal

    # ── Transitions ────────────────────────────────────────────

    def record_vote(
        self,
        proposal: Proposal,
        voter: str,
        decision: VoteDecision,
        now: datetime,
        comment: str = "",
    ) -> Proposal:
        """
        Return a copy of ``proposal`` with the vote applied.

        Raises:
            AlreadyVoted: the voter already voted (checked first on closed
                proposals, so a repeat voter is told so).
            ProposalNotPending: the proposal is in a terminal status.
            ProposalExpired: the proposal is past its expiry, recorded or not.
            NotAuthorized: the voter is not a required approver.
        """
        if proposal.status != ProposalStatus.PENDING:
            if proposal.has_voted(voter):
                raise AlreadyVoted(proposal.id, voter)
            if proposal.status == ProposalStatus.EXPIRED:
                raise ProposalExpired(proposal.id)
            raise ProposalNotPending(proposal.id, proposal.status.value)
        if is_expired(proposal, now):
            raise ProposalExpired(proposal.id)
        if voter not in proposal.required_approvals:
            raise NotAuthorized(proposal.id, voter)
        if proposal.has_voted(voter):
            raise AlreadyVoted(proposal.id, voter)

        updated = proposal.model_copy(deep=True)
        record = VoteRecord(
            wallet_name=voter, decision=decision, comment=comment, timestamp=now
        )
        if decision == VoteDecision.APPROVE:
            updated.approvals[voter] = record
        else:
            updated.rejections[voter] = record
            updated.status = ProposalStatus.REJECTED
        return updated

    def mark_expired(self, proposal: Proposal) -> Proposal:
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalNotPending(proposal.id, proposal.status.value)
        return proposal.model_copy(deep=True, update={"status": ProposalStatus.EXPIRED})

    def mark_executed(self, proposal: Proposal, receipt: dict[str, Any], now: datetime) -> Proposal:
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalNotPending(proposal.id, proposal.status.value)
        return proposal.model_copy(
            deep=True,
            update={
                "status": ProposalStatus.EXECUTED,
                "executed_at": now,
                "execution_result": receipt,
            },
        )

    def mark_failed(
        self,
        proposal: Proposal,
        error: str,
        receipt: dict[str, Any] | None = None,
    ) -> Proposal:
        if proposal.status != ProposalStatus.PENDING:
            raise ProposalNotPending(proposal.id, proposal.status.value)
        result: dict[str, Any] = {"error": error}
        if receipt is not None:
            result["receipt"] = receipt
        return proposal.model_copy(
            deep=True,
            update={"status": ProposalStatus.FAILED, "execution_result": result},
        )

    # ── Queries ────────────────────────────────────────────────

    def for_group(self, group_id: str) -> list[Proposal]:
        return [self.proposals[pid] for pid in self._by_group.get(group_id, [])]

    def for_proposer(self, wallet_name: str) -> list[Proposal]:
        return [self.proposals[pid] for pid in self._by_proposer.get(wallet_name, [])]

    def for_approver(self, wallet_name: str) -> list[Proposal]:
        return [self.proposals[pid] for pid in self._by_approver.get(wallet_name, [])]

    def pending_for_group(self, group_id: str, now: datetime) -> list[Proposal]:
        return [
            p for p in self.for_group(group_id)
            if p.status == ProposalStatus.PENDING and not is_expired(p, now)
        ]

    def requiring_action(self, wallet_name: str, now: datetime) -> list[Proposal]:
        """Open proposals still waiting on ``wallet_name``'s vote."""
        return [
            p for p in self.for_approver(wallet_name)
            if p.status == ProposalStatus.PENDING
            and not is_expired(p, now)
            and not p.has_voted(wallet_name)
        ]

    def expired_pending(self, now: datetime) -> list[Proposal]:
        """Pending proposals whose expiry has passed but was not yet recorded."""
        return [
            p for p in self.proposals.values()
            if p.status == ProposalStatus.PENDING and now > p.expires_at
        ]

    def stats(self, group_id: str, now: datetime) -> ProposalStats:
        stats = ProposalStats()
        durations: list[float] = []
        for proposal in self.for_group(group_id):
            stats.total += 1
            if is_expired(proposal, now):
                stats.expired += 1
            elif proposal.status == ProposalStatus.PENDING:
                stats.pending += 1
            elif proposal.status == ProposalStatus.EXECUTED:
                stats.executed += 1
                if proposal.executed_at is not None:
                    elapsed = proposal.executed_at - proposal.created_at
                    durations.append(elapsed.total_seconds() / 3600)
            elif proposal.status == ProposalStatus.REJECTED:
                stats.rejected += 1
            elif proposal.status == ProposalStatus.FAILED:
                stats.failed += 1
            stats.by_operation[proposal.operation] = stats.by_operation.get(proposal.operation, 0) + 1
            stats.by_urgency[proposal.urgency.value] = stats.by_urgency.get(proposal.urgency.value, 0) + 1
        if durations:
            stats.avg_approval_hours = round(sum(durations) / len(durations), 2)
        return stats

"""
Guild Multisig — Core data model.

Pydantic models for every record the coordination core keeps:

- Member / OperationRule / Group     — who may approve what, and how many
- VoteRecord / Proposal              — one off-chain approval workflow
- RoleCapabilities                   — the data-driven role table
- AuditEntry                         — one link of the hash-chained journal
- ProposalStats                      — aggregate counters for a group

Behaviour lives elsewhere: predicates over proposals are plain functions in
``governance.proposals`` and authorization lives in
``governance.permissions``.
"""

from __future__ import annotations

import enum
import hashlib
import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializationInfo,
    field_serializer,
    field_validator,
)


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Urgency(str, enum.Enum):
    """Proposal urgency; drives default expiry and notification severity."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    REJECTED = "rejected"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ProposalStatus.PENDING


class GroupStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class VoteDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, enum.Enum):
    """Every state transition that is journaled."""

    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_SUSPENDED = "group_suspended"
    GROUP_RESUMED = "group_resumed"
    GROUP_IMPORTED = "group_imported"
    PROPOSAL_CREATED = "proposal_created"
    VOTE_RECORDED = "vote_recorded"
    PROPOSAL_REJECTED = "proposal_rejected"
    PROPOSAL_EXPIRED = "proposal_expired"
    PROPOSAL_EXECUTED = "proposal_executed"
    PROPOSAL_FAILED = "proposal_failed"


# ════════════════════════════════════════════════════════════════
# Role table
# ════════════════════════════════════════════════════════════════

WILDCARD = "*"


class RoleCapabilities(BaseModel):
    """
    What a role may do.

    ``propose`` and ``approve`` are sets of operation tags; ``*`` grants
    every operation.
    """

    model_config = ConfigDict(frozen=True)

    propose: frozenset[str] = Field(default_factory=frozenset)
    approve: frozenset[str] = Field(default_factory=frozenset)
    emergency_override: bool = Field(
        default=False, description="May propose restricted operations under emergency"
    )

    def may_propose(self, operation: str) -> bool:
        return WILDCARD in self.propose or operation in self.propose

    def may_approve(self, operation: str) -> bool:
        return WILDCARD in self.approve or operation in self.approve


def _same(*operations: str, emergency: bool = False) -> RoleCapabilities:
    ops = frozenset(operations)
    return RoleCapabilities(propose=ops, approve=ops, emergency_override=emergency)


_DEVELOPER_OPERATIONS = (
    "createERC20Token",
    "createMoveToken",
    "createNFTCollection",
    "mintNFT",
    "playerRewards",
    "batchPlayerRewards",
)

DEFAULT_ROLE_CAPABILITIES: dict[str, RoleCapabilities] = {
    # Leadership: wildcard on both sides, may invoke emergency powers.
    # lead_dev sits with the leadership roles rather than extending developer.
    "ceo": _same(WILDCARD, emergency=True),
    "founder": _same(WILDCARD, emergency=True),
    "admin": _same(WILDCARD, emergency=True),
    "lead_dev": _same(WILDCARD, emergency=True),
    "leader": _same(WILDCARD, emergency=True),
    "officer": _same("memberReward", "guildUpgrade", "treasurySpend", "newMember"),
    "developer": RoleCapabilities(
        propose=frozenset(_DEVELOPER_OPERATIONS),
        approve=frozenset(_DEVELOPER_OPERATIONS + ("transferETH",)),
    ),
    "artist": _same("createNFTCollection", "mintNFT", "nftMinting"),
    "member": _same("memberReward"),
    "community": _same("playerRewards", "communityEvents"),
    "marketing": _same("playerRewards", "communityEvents", "marketingSpend"),
}

FALLBACK_ROLE = "member"


# ════════════════════════════════════════════════════════════════
# Groups
# ════════════════════════════════════════════════════════════════


class Member(BaseModel):
    """A named wallet in a group. The signer itself stays in the registry."""

    wallet_name: str = Field(min_length=1)
    role: str = Field(min_length=1)
    weight: int = Field(default=1, description="Informational voting weight (>= 1)")


class OperationRule(BaseModel):
    """Per-operation override of who approves and how many."""

    required_roles: list[str] = Field(
        default_factory=list, description="Roles allowed to approve; empty means any"
    )
    threshold: int = Field(default=1, description="Approvals needed from matching members")
    max_amount: str | None = Field(
        default=None, description="Spending cap in the native asset, as a decimal string"
    )
    allow_emergency_override: bool = True
    description: str = ""

    @field_validator("required_roles")
    @classmethod
    def _dedupe_roles(cls, roles: list[str]) -> list[str]:
        return list(dict.fromkeys(roles))

    @field_validator("max_amount")
    @classmethod
    def _check_max_amount(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"max_amount is not a decimal: {value!r}") from None
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"max_amount must be a non-negative number: {value!r}")
        return str(value)


class GroupSpec(BaseModel):
    """Input to ``MultisigCoordinator.create_group``."""

    name: str = Field(min_length=1)
    description: str = ""
    members: list[Member]
    threshold: int = 2
    rules: dict[str, OperationRule] = Field(default_factory=dict)
    notifications_enabled: bool = True


class Group(BaseModel):
    """A multisig group: members, a default threshold and per-operation rules."""

    id: str
    name: str
    description: str = ""
    members: list[Member]
    threshold: int
    rules: dict[str, OperationRule] = Field(default_factory=dict)
    notifications_enabled: bool = True
    created_at: datetime
    status: GroupStatus = GroupStatus.ACTIVE

    def member(self, wallet_name: str) -> Member | None:
        for member in self.members:
            if member.wallet_name == wallet_name:
                return member
        return None

    @property
    def member_names(self) -> list[str]:
        return [m.wallet_name for m in self.members]


# ════════════════════════════════════════════════════════════════
# Proposals
# ════════════════════════════════════════════════════════════════


class VoteRecord(BaseModel):
    wallet_name: str
    decision: VoteDecision
    comment: str = ""
    timestamp: datetime


class Proposal(BaseModel):
    """
    One request to perform an on-chain operation.

    ``required_approvals`` is fixed when the proposal is created. Votes are
    kept in insertion order and stored as ``[wallet_name, vote]`` pairs.
    """

    id: str
    group_id: str
    proposer_wallet_name: str
    operation: str
    params: dict[str, Any] = Field(default_factory=dict)
    description: str = ""
    urgency: Urgency = Urgency.NORMAL
    required_approvals: tuple[str, ...]
    approvals: dict[str, VoteRecord] = Field(default_factory=dict)
    rejections: dict[str, VoteRecord] = Field(default_factory=dict)
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime
    expires_at: datetime
    executed_at: datetime | None = None
    execution_result: dict[str, Any] | None = None
    emergency_override: bool = Field(
        default=False, description="Proposed under an emergency override"
    )

    @field_validator("approvals", "rejections", mode="before")
    @classmethod
    def _votes_from_pairs(cls, value: Any) -> Any:
        if isinstance(value, list):
            return {name: record for name, record in value}
        return value

    @field_serializer("approvals", "rejections")
    def _votes_to_pairs(
        self, votes: dict[str, VoteRecord], info: SerializationInfo
    ) -> list[list[Any]]:
        mode = "json" if info.mode_is_json() else "python"
        return [[name, record.model_dump(mode=mode)] for name, record in votes.items()]

    def has_voted(self, wallet_name: str) -> bool:
        return wallet_name in self.approvals or wallet_name in self.rejections


class ProposalStats(BaseModel):
    total: int = 0
    pending: int = 0
    executed: int = 0
    rejected: int = 0
    expired: int = 0
    failed: int = 0
    by_operation: dict[str, int] = Field(default_factory=dict)
    by_urgency: dict[str, int] = Field(default_factory=dict)
    avg_approval_hours: float = 0.0


# ════════════════════════════════════════════════════════════════
# Audit journal
# ════════════════════════════════════════════════════════════════

GENESIS_HASH = "0" * 64


class AuditEntry(BaseModel):
    """
    One journal line. Storage backends fill in ``sequence``,
    ``previous_hash`` and ``entry_hash`` when the entry is appended.
    """

    sequence: int = 0
    timestamp: datetime
    action: AuditAction
    group_id: str | None = None
    proposal_id: str | None = None
    actor: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = GENESIS_HASH
    entry_hash: str = ""

    def compute_hash(self) -> str:
        """SHA-256(previous_hash || canonical_json(entry fields))."""
        hashable = {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "group_id": self.group_id,
            "proposal_id": self.proposal_id,
            "actor": self.actor,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (self.previous_hash + canonical).encode("utf-8")
        ).hexdigest()

    def sealed(self, sequence: int, previous_hash: str) -> AuditEntry:
        """Return a copy linked after ``previous_hash`` with its own hash set."""
        entry = self.model_copy(update={"sequence": sequence, "previous_hash": previous_hash})
        entry.entry_hash = entry.compute_hash()
        return entry

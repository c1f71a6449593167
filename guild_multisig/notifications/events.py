"""
Notification events emitted by the coordinator.

Each builder turns a state change into a ``NotificationEvent`` carrying a
short title, a human-readable multi-line body and structured ``data`` for
machine consumers. Sinks decide how to render it.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from guild_multisig.core.schema import Group, Proposal, ProposalStatus, Urgency, VoteDecision, VoteRecord
from guild_multisig.governance.proposals import (
    approval_status,
    operation_details,
    time_left,
)


class EventKind(str, enum.Enum):
    NEW_PROPOSAL = "new_proposal"
    APPROVAL = "approval"
    READY_FOR_EXECUTION = "ready_for_execution"
    EXECUTED = "executed"
    URGENT_PROPOSAL = "urgent_proposal"
    DAILY_SUMMARY = "daily_summary"


class NotificationEvent(BaseModel):
    kind: EventKind
    timestamp: datetime
    group_id: str
    group_name: str
    proposal_id: str | None = None
    urgency: Urgency | None = None
    operation: str | None = None
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)


OPERATION_EMOJI = {
    "createERC20Token": "🪙",
    "createMoveToken": "🪙",
    "createNFTCollection": "🎨",
    "mintNFT": "🖼️",
    "transferETH": "💸",
    "batchPlayerRewards": "🎁",
    "emergencyStop": "🛑",
}

URGENCY_EMOJI = {Urgency.EMERGENCY: "🚨", Urgency.HIGH: "⚡"}


def _when(instant: datetime) -> str:
    return instant.strftime("%Y-%m-%d %H:%M UTC")


def _details(proposal: Proposal) -> str:
    return "\n".join(
        f"{key.replace('_', ' ').title()}: {value}"
        for key, value in operation_details(proposal).items()
    )


def _status_lines(proposal: Proposal) -> str:
    status = approval_status(proposal)
    return (
        f"✅ Approved: {', '.join(status['approved']) or 'None'}\n"
        f"⏳ Pending: {', '.join(status['pending']) or 'None'}\n"
        f"❌ Rejected: {', '.join(status['rejected']) or 'None'}"
    )


def _event(kind: EventKind, group: Group, proposal: Proposal | None, now: datetime,
           title: str, body: str, **data: Any) -> NotificationEvent:
    return NotificationEvent(
        kind=kind,
        timestamp=now,
        group_id=group.id,
        group_name=group.name,
        proposal_id=proposal.id if proposal else None,
        urgency=proposal.urgency if proposal else None,
        operation=proposal.operation if proposal else None,
        title=title,
        body=body.strip("\n"),
        data=data,
    )


def new_proposal_event(group: Group, proposal: Proposal, now: datetime) -> NotificationEvent:
    emoji = OPERATION_EMOJI.get(proposal.operation, "⚙️")
    urgency_emoji = URGENCY_EMOJI.get(proposal.urgency, "📝")
    body = f"""
{urgency_emoji} {emoji} NEW PROPOSAL

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}
Proposer: {proposal.proposer_wallet_name}
Urgency: {proposal.urgency.value.upper()}

Description: {proposal.description or 'No description provided'}

Required Approvals: {', '.join(proposal.required_approvals)}
Expires: {_when(proposal.expires_at)}

{_details(proposal)}

⏰ Please review and approve/reject this proposal."""
    return _event(
        EventKind.NEW_PROPOSAL, group, proposal, now,
        f"New proposal: {proposal.operation}", body,
        required_approvals=list(proposal.required_approvals),
        expires_at=proposal.expires_at.isoformat(),
    )


def urgent_proposal_event(group: Group, proposal: Proposal, now: datetime) -> NotificationEvent:
    body = f"""
🚨🚨🚨 URGENT PROPOSAL REQUIRES IMMEDIATE ATTENTION 🚨🚨🚨

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}
Proposer: {proposal.proposer_wallet_name}

⚠️ This proposal has EMERGENCY urgency level!

Description: {proposal.description or 'No description provided'}

Required Approvals: {', '.join(proposal.required_approvals)}
Expires: {_when(proposal.expires_at)}

🔥 PLEASE REVIEW IMMEDIATELY 🔥"""
    return _event(
        EventKind.URGENT_PROPOSAL, group, proposal, now,
        f"URGENT: {proposal.operation}", body,
        required_approvals=list(proposal.required_approvals),
    )


def approval_event(group: Group, proposal: Proposal, vote: VoteRecord, now: datetime) -> NotificationEvent:
    approved = vote.decision == VoteDecision.APPROVE
    status = approval_status(proposal)
    verdict = "APPROVED" if approved else "REJECTED"
    if status["can_execute"]:
        outlook = "🚀 Ready for execution!"
    elif proposal.status == ProposalStatus.REJECTED:
        outlook = "🛑 Proposal rejected."
    else:
        outlook = f"Still waiting for: {', '.join(status['pending'])}"
    comment = f"\nComment: {vote.comment}" if vote.comment else ""
    body = f"""
{'✅' if approved else '❌'} PROPOSAL {verdict}

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}

{'Approved' if approved else 'Rejected'} by: {vote.wallet_name}{comment}

Current Status:
{_status_lines(proposal)}

{outlook}"""
    return _event(
        EventKind.APPROVAL, group, proposal, now,
        f"{proposal.operation} {verdict.lower()} by {vote.wallet_name}", body,
        decision=vote.decision.value,
        voter=vote.wallet_name,
        status=proposal.status.value,
        approval_status=status,
    )


def ready_for_execution_event(group: Group, proposal: Proposal, now: datetime) -> NotificationEvent:
    body = f"""
🚀 PROPOSAL READY FOR EXECUTION

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}

✅ All required approvals received!
The proposal will be executed automatically.

{_details(proposal)}"""
    return _event(
        EventKind.READY_FOR_EXECUTION, group, proposal, now,
        f"Ready for execution: {proposal.operation}", body,
    )


def _receipt_lines(receipt: dict[str, Any]) -> str:
    keys = ("type", "contractAddress", "transactionHash", "tokenName", "tokenSymbol",
            "tokenId", "recipient", "amount", "totalRequested", "successful", "failed")
    return "\n".join(f"{key}: {receipt[key]}" for key in keys if receipt.get(key) is not None)


def executed_event(group: Group, proposal: Proposal, now: datetime) -> NotificationEvent:
    result = proposal.execution_result or {}
    if proposal.status == ProposalStatus.EXECUTED:
        body = f"""
⚡ PROPOSAL EXECUTED SUCCESSFULLY

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}
Executed at: {_when(proposal.executed_at or now)}

{_receipt_lines(result)}

✅ Operation completed successfully!"""
        title = f"Executed: {proposal.operation}"
    else:
        body = f"""
💥 PROPOSAL EXECUTION FAILED

Multisig: {group.name}
Proposal ID: {proposal.id}
Operation: {proposal.operation}

Error: {result.get('error', 'unknown error')}

The proposal is marked failed and will not be retried."""
        title = f"Execution failed: {proposal.operation}"
    return _event(
        EventKind.EXECUTED, group, proposal, now, title, body,
        success=proposal.status == ProposalStatus.EXECUTED,
        result=result,
    )


def daily_summary_event(group: Group, pending: list[Proposal], now: datetime) -> NotificationEvent:
    lines = []
    for proposal in pending:
        status = approval_status(proposal)
        urgent = "\n  🚨 URGENT" if proposal.urgency == Urgency.EMERGENCY else ""
        lines.append(
            f"• {proposal.operation} ({proposal.id})\n"
            f"  Proposer: {proposal.proposer_wallet_name}\n"
            f"  Approved: {len(status['approved'])}/{len(proposal.required_approvals)}\n"
            f"  Time left: {time_left(proposal, now)}{urgent}"
        )
    listing = "\n\n".join(lines)
    body = f"""
📊 DAILY MULTISIG SUMMARY

Multisig: {group.name}
Date: {now.date().isoformat()}

📝 Pending Proposals: {len(pending)}

{listing}

⏰ Please review pending proposals to keep operations moving smoothly."""
    return _event(
        EventKind.DAILY_SUMMARY, group, None, now,
        f"Daily summary: {len(pending)} pending", body,
        pending_count=len(pending),
        proposal_ids=[p.id for p in pending],
    )


def webhook_payload(event: NotificationEvent) -> dict[str, Any]:
    """Wire shape for webhook sinks."""
    payload: dict[str, Any] = {
        "event": event.kind.value,
        "timestamp": event.timestamp.isoformat(),
        "groupId": event.group_id,
    }
    if event.proposal_id is not None:
        payload["proposalId"] = event.proposal_id
    if event.urgency is not None:
        payload["urgency"] = event.urgency.value
    payload["body"] = event.body
    return payload

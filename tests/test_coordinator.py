"""
Tests for the Multisig Coordinator.

Validates:
- End-to-end approval flows (happy path, rejection, limits, expiry, failure)
- Crash-safe reload from file storage
- Lifecycle invariants (frozen approvers, sticky terminal states, single vote)
- Emergency stop, suspension and override proposals
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from guild_multisig.coordinator import MultisigCoordinator
from guild_multisig.core.errors import (
    AlreadyVoted,
    AmountExceedsLimit,
    ExecutionError,
    GroupNotFound,
    GroupSuspended,
    InsufficientApprovals,
    InvalidConfig,
    InvalidParams,
    NotAuthorized,
    PermissionDenied,
    ProposalExpired,
    ProposalNotFound,
    ProposalNotPending,
    StorageCorrupt,
    UnknownOperation,
    UnknownWallet,
)
from guild_multisig.core.schema import (
    AuditAction,
    GroupSpec,
    GroupStatus,
    Member,
    OperationRule,
    ProposalStatus,
    RoleCapabilities,
    Urgency,
)
from guild_multisig.governance.permissions import PermissionEngine
from guild_multisig.integrations.executor import default_executor
from guild_multisig.ledger.files import FileStorage
from guild_multisig.ledger.storage import MemoryStorage, RecordKind
from guild_multisig.notifications.fanout import NotificationFanout

from tests.helpers import RecordingSink

NFT_PARAMS = {"name": "Heroes", "symbol": "HERO", "maxSupply": 1000}


def studio_spec(**rules: OperationRule) -> GroupSpec:
    return GroupSpec(
        name="Studio",
        members=[
            Member(wallet_name="dev", role="developer"),
            Member(wallet_name="artist", role="artist"),
            Member(wallet_name="ceo", role="ceo", weight=2),
        ],
        threshold=2,
        rules=rules or {
            "createNFTCollection": OperationRule(
                required_roles=["artist", "developer"], threshold=2
            ),
        },
    )


def leadership_spec() -> GroupSpec:
    return GroupSpec(
        name="Leadership",
        members=[
            Member(wallet_name="lead", role="lead_dev"),
            Member(wallet_name="artist", role="artist"),
            Member(wallet_name="ceo", role="ceo"),
        ],
        threshold=2,
        rules={
            "transferETH": OperationRule(required_roles=["lead_dev", "ceo"], threshold=2),
        },
    )


def trio_spec(threshold: int = 2) -> GroupSpec:
    return GroupSpec(
        name="Trio",
        members=[Member(wallet_name=n, role="admin") for n in ("a", "b", "c")],
        threshold=threshold,
    )


# ════════════════════════════════════════════════════════════════
# End-to-end scenarios
# ════════════════════════════════════════════════════════════════


class TestApprovalFlow:
    """Proposals move from pending to a terminal state."""

    @pytest.mark.asyncio
    async def test_two_of_three_happy_path(self, coordinator, chain, recorder):
        """Proposer's own approval plus one more executes the operation once."""
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(
            group.id, "dev", "createNFTCollection", NFT_PARAMS, description="Season 1"
        )
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.required_approvals == ("dev", "artist")
        assert "dev" in proposal.approvals

        result = await coordinator.approve(proposal.id, "artist", "looks good")

        assert result.status == ProposalStatus.EXECUTED
        assert len(chain.calls) == 1
        assert result.execution_result["type"] == "nftCollection"
        assert result.execution_result["collectionName"] == "Heroes"
        assert recorder.kinds() == [
            "new_proposal", "approval", "ready_for_execution", "executed",
        ]

    @pytest.mark.asyncio
    async def test_reject_cascade(self, coordinator, chain):
        """A single rejection from a required approver closes the proposal."""
        group = await coordinator.create_group(leadership_spec())
        proposal = await coordinator.propose(
            group.id, "lead", "transferETH", {"to": "0xA", "amount": "1.0"}
        )
        assert proposal.required_approvals == ("lead", "ceo")

        rejected = await coordinator.reject(proposal.id, "ceo", "hold")

        assert rejected.status == ProposalStatus.REJECTED
        assert rejected.rejections["ceo"].comment == "hold"
        assert chain.calls == []
        with pytest.raises(AlreadyVoted):
            await coordinator.reject(proposal.id, "ceo", "again")
        with pytest.raises(AlreadyVoted):
            await coordinator.approve(proposal.id, "ceo")

    @pytest.mark.asyncio
    async def test_spending_limit(self, coordinator, storage):
        """An amount over the rule's cap is refused and nothing is stored."""
        group = await coordinator.create_group(
            studio_spec(
                transferETH=OperationRule(required_roles=["ceo"], threshold=1, max_amount="10")
            )
        )
        with pytest.raises(AmountExceedsLimit):
            await coordinator.propose(
                group.id, "ceo", "transferETH", {"to": "0xB", "amount": "10.00000001"}
            )
        assert storage.proposal_ids() == []
        assert coordinator.list_proposals(group.id) == []

    @pytest.mark.asyncio
    async def test_amount_at_limit_executes_immediately(self, coordinator, chain):
        """A sole required approver proposing completes the approval list at once."""
        group = await coordinator.create_group(
            studio_spec(
                transferETH=OperationRule(required_roles=["ceo"], threshold=1, max_amount="10")
            )
        )
        proposal = await coordinator.propose(
            group.id, "ceo", "transferETH", {"to": "0xB", "amount": "10"}
        )
        assert proposal.status == ProposalStatus.EXECUTED
        assert proposal.execution_result["type"] == "ethTransfer"
        assert proposal.execution_result["amount"] == "10"
        assert chain.calls[0][0] == "send_native"

    @pytest.mark.asyncio
    async def test_emergency_proposal_expires(self, coordinator, clock, recorder):
        """Emergency proposals live one day; expiry is recorded on read."""
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(
            group.id, "dev", "createNFTCollection", NFT_PARAMS, urgency=Urgency.EMERGENCY
        )
        assert "urgent_proposal" in recorder.kinds()

        clock.advance(hours=25)

        assert coordinator.list_pending(group.id) == []
        assert coordinator.get_proposal(proposal.id).status == ProposalStatus.EXPIRED
        with pytest.raises(ProposalExpired):
            await coordinator.approve(proposal.id, "artist")

    @pytest.mark.asyncio
    async def test_vote_after_deadline_records_expiry(self, coordinator, clock, storage):
        """A vote past the deadline raises and persists the expired status."""
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        clock.advance(days=8)

        with pytest.raises(ProposalExpired):
            await coordinator.approve(proposal.id, "artist")

        assert storage.load_proposal(proposal.id).status == ProposalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_executor_failure(self, coordinator, chain, recorder):
        """A failing adapter leaves the proposal failed and closed to votes."""
        chain.fail_methods.add("create_erc20_token")
        group = await coordinator.create_group(trio_spec())
        proposal = await coordinator.propose(
            group.id, "a", "createERC20Token",
            {"name": "Gold", "symbol": "GLD", "initialSupply": "1000000"},
        )

        with pytest.raises(ExecutionError) as exc_info:
            await coordinator.approve(proposal.id, "b")

        assert exc_info.value.proposal_id == proposal.id
        failed = coordinator.get_proposal(proposal.id)
        assert failed.status == ProposalStatus.FAILED
        assert "reverted" in failed.execution_result["error"]

        executed = [e for e in recorder.events if e.kind.value == "executed"]
        assert len(executed) == 1
        assert "EXECUTION FAILED" in executed[0].body
        assert executed[0].data["success"] is False

        with pytest.raises(ProposalNotPending):
            await coordinator.approve(proposal.id, "c")
        with pytest.raises(AlreadyVoted):
            await coordinator.approve(proposal.id, "a")

    @pytest.mark.asyncio
    async def test_immediate_execution_failure_is_reported(self, coordinator, chain):
        """Execution triggered by propose re-raises with the proposal ID attached."""
        chain.fail_methods.add("send_native")
        group = await coordinator.create_group(
            studio_spec(transferETH=OperationRule(required_roles=["ceo"], threshold=1))
        )
        with pytest.raises(ExecutionError) as exc_info:
            await coordinator.propose(group.id, "ceo", "transferETH", {"to": "0xC", "amount": "1"})

        proposal = coordinator.get_proposal(exc_info.value.proposal_id)
        assert proposal.status == ProposalStatus.FAILED


class TestCrashSafety:
    """State survives a restart on file storage."""

    @pytest.mark.asyncio
    async def test_reload_from_disk(self, make_coordinator, clock, tmp_path):
        first = make_coordinator(FileStorage(tmp_path, clock))
        group = await first.create_group(studio_spec())
        nft = await first.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        mint = await first.propose(
            group.id, "artist", "mintNFT",
            {"contractAddress": "0xC0", "to": "0xP1", "tokenId": 7},
        )
        token = await first.propose(
            group.id, "dev", "createERC20Token",
            {"name": "Gold", "symbol": "GLD", "initialSupply": 500},
        )
        await first.approve(nft.id, "artist")

        second = make_coordinator(FileStorage(tmp_path, clock))

        assert [g.model_dump() for g in second.list_groups()] == [
            g.model_dump() for g in first.list_groups()
        ]
        for proposal_id in (nft.id, mint.id, token.id):
            assert (
                second.get_proposal(proposal_id).model_dump()
                == first.get_proposal(proposal_id).model_dump()
            )
        for wallet in ("dev", "artist", "ceo"):
            assert [p.id for p in second.list_requiring_action(wallet)] == [
                p.id for p in first.list_requiring_action(wallet)
            ]
        assert second.get_proposal(nft.id).status == ProposalStatus.EXECUTED
        assert second.verify_audit()[0] is True

    @pytest.mark.asyncio
    async def test_audit_chain_continues_after_reload(self, make_coordinator, clock, tmp_path):
        first = make_coordinator(FileStorage(tmp_path, clock))
        group = await first.create_group(studio_spec())
        second = make_coordinator(FileStorage(tmp_path, clock))
        await second.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        ok, verified, _ = second.verify_audit()
        assert ok is True
        assert verified == 2

    @pytest.mark.asyncio
    async def test_corrupt_record_is_quarantined(self, make_coordinator, coordinator, storage):
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        storage.corrupt(RecordKind.PROPOSAL, proposal.id, b"{not json")

        reloaded = make_coordinator(storage)

        assert proposal.id in reloaded.quarantined
        with pytest.raises(StorageCorrupt):
            reloaded.get_proposal(proposal.id)
        assert reloaded.get_group(group.id).name == "Studio"


# ════════════════════════════════════════════════════════════════
# Invariants
# ════════════════════════════════════════════════════════════════


class TestLifecycleInvariants:
    """Properties that hold for every proposal."""

    @pytest.mark.asyncio
    async def test_required_approvals_frozen_across_group_update(self, coordinator):
        group = await coordinator.create_group(trio_spec())
        proposal = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        assert proposal.required_approvals == ("a", "b")

        await coordinator.update_group(
            group.id, "a",
            members=[
                Member(wallet_name="c", role="admin"),
                Member(wallet_name="b", role="admin"),
                Member(wallet_name="a", role="admin"),
            ],
            threshold=3,
        )

        assert coordinator.get_proposal(proposal.id).required_approvals == ("a", "b")
        newer = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        assert newer.required_approvals == ("c", "b", "a")

    @pytest.mark.asyncio
    async def test_terminal_status_is_sticky(self, coordinator, clock):
        group = await coordinator.create_group(leadership_spec())
        proposal = await coordinator.propose(group.id, "lead", "transferETH", {"to": "0xA", "amount": "1"})
        rejected = await coordinator.reject(proposal.id, "ceo")
        snapshot = rejected.model_dump()

        with pytest.raises(ProposalNotPending):
            await coordinator.execute(proposal.id)
        clock.advance(days=30)
        assert coordinator.sweep_expired() == 0

        assert coordinator.get_proposal(proposal.id).model_dump() == snapshot

    @pytest.mark.asyncio
    async def test_single_vote_per_wallet(self, coordinator):
        group = await coordinator.create_group(trio_spec(threshold=3))
        proposal = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        await coordinator.approve(proposal.id, "b")

        with pytest.raises(AlreadyVoted):
            await coordinator.approve(proposal.id, "b")
        with pytest.raises(AlreadyVoted):
            await coordinator.reject(proposal.id, "b")

        current = coordinator.get_proposal(proposal.id)
        assert set(current.approvals) & set(current.rejections) == set()
        assert current.status == ProposalStatus.PENDING

    @pytest.mark.asyncio
    async def test_execute_requires_all_approvals(self, coordinator, chain):
        group = await coordinator.create_group(trio_spec(threshold=3))
        proposal = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})

        with pytest.raises(InsufficientApprovals) as exc_info:
            await coordinator.execute(proposal.id)

        assert "b" in str(exc_info.value)
        assert chain.calls == []

    @pytest.mark.asyncio
    async def test_execute_refuses_expired(self, coordinator, chain, clock):
        group = await coordinator.create_group(trio_spec(threshold=3))
        proposal = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        clock.advance(days=8)

        with pytest.raises(ProposalExpired):
            await coordinator.execute(proposal.id)
        assert chain.calls == []

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, coordinator, clock):
        group = await coordinator.create_group(trio_spec())
        for _ in range(3):
            await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        clock.advance(days=8)

        assert coordinator.sweep_expired() == 3
        assert coordinator.sweep_expired() == 0

    @pytest.mark.asyncio
    async def test_non_required_member_cannot_vote(self, coordinator):
        group = await coordinator.create_group(trio_spec())
        proposal = await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})

        with pytest.raises(NotAuthorized):
            await coordinator.approve(proposal.id, "c")


class TestNotificationIsolation:
    """Sink failures never fail the operation."""

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self, clock, wallets, chain, storage):
        class ExplodingSink(RecordingSink):
            name = "exploding"

            async def deliver(self, event):
                raise ConnectionError("sink down")

        healthy = RecordingSink()
        coordinator = MultisigCoordinator(
            storage=storage,
            wallets=wallets,
            executor=default_executor(chain, wallets),
            fanout=NotificationFanout([ExplodingSink(), healthy]),
            clock=clock,
        )
        coordinator.initialize()
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        assert proposal.status == ProposalStatus.PENDING
        assert healthy.kinds() == ["new_proposal"]
        history = coordinator.notification_history()
        assert history[-1].results == {"exploding": False, "recorder": True}

    @pytest.mark.asyncio
    async def test_notifications_disabled_for_group(self, coordinator, recorder):
        spec = studio_spec().model_copy(update={"notifications_enabled": False})
        group = await coordinator.create_group(spec)
        await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        assert recorder.events == []


# ════════════════════════════════════════════════════════════════
# Validation and authorization
# ════════════════════════════════════════════════════════════════


class TestValidation:
    """Bad input is refused before any state changes."""

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, coordinator, storage):
        spec = GroupSpec(
            name="Ghosts",
            members=[Member(wallet_name="a", role="admin"), Member(wallet_name="ghost", role="admin")],
        )
        with pytest.raises(UnknownWallet):
            await coordinator.create_group(spec)
        assert storage.group_ids() == []

    @pytest.mark.asyncio
    async def test_malformed_spec_mapping(self, coordinator):
        with pytest.raises(InvalidConfig):
            await coordinator.create_group({"name": "No members"})

    @pytest.mark.asyncio
    async def test_unknown_group_and_proposal(self, coordinator):
        with pytest.raises(GroupNotFound):
            await coordinator.propose("group_missing", "a", "transferETH", {})
        with pytest.raises(ProposalNotFound):
            await coordinator.approve("prop_missing", "a")

    @pytest.mark.asyncio
    async def test_unknown_operation(self, coordinator):
        group = await coordinator.create_group(trio_spec())
        with pytest.raises(UnknownOperation):
            await coordinator.propose(group.id, "a", "launchRocket", {})

    @pytest.mark.asyncio
    async def test_invalid_params(self, coordinator):
        group = await coordinator.create_group(trio_spec())
        with pytest.raises(InvalidParams):
            await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "-1"})
        with pytest.raises(InvalidParams):
            await coordinator.propose(group.id, "a", "createNFTCollection", {"name": "X"})

    @pytest.mark.asyncio
    async def test_custom_amount_without_cap_is_opaque(self, coordinator):
        async def member_reward(proposal, wallets):
            return {"type": "memberReward"}

        coordinator.executor.register("memberReward", member_reward)
        group = await coordinator.create_group(trio_spec(threshold=3))
        proposal = await coordinator.propose(
            group.id, "a", "memberReward", {"member": "bob", "amount": "50 gold"}
        )
        assert proposal.status == ProposalStatus.PENDING
        assert proposal.params == {"member": "bob", "amount": "50 gold"}

    @pytest.mark.asyncio
    async def test_custom_amount_checked_against_cap(self, coordinator):
        async def member_reward(proposal, wallets):
            return {"type": "memberReward"}

        coordinator.executor.register("memberReward", member_reward)
        spec = trio_spec(threshold=3).model_copy(
            update={"rules": {"memberReward": OperationRule(max_amount="1")}}
        )
        group = await coordinator.create_group(spec)
        with pytest.raises(InvalidParams):
            await coordinator.propose(group.id, "a", "memberReward", {"amount": "50 gold"})
        with pytest.raises(AmountExceedsLimit):
            await coordinator.propose(group.id, "a", "memberReward", {"amount": "2"})
        assert coordinator.list_pending(group.id) == []

    @pytest.mark.asyncio
    async def test_naive_expiry_rejected(self, coordinator, clock):
        group = await coordinator.create_group(trio_spec())
        naive = clock.now().replace(tzinfo=None) + timedelta(days=1)
        with pytest.raises(InvalidParams, match="timezone"):
            await coordinator.propose(
                group.id, "a", "transferETH", {"to": "0x1", "amount": "1"}, expires_at=naive
            )
        assert coordinator.list_pending(group.id) == []

    @pytest.mark.asyncio
    async def test_params_normalized_to_camel_case(self, coordinator):
        group = await coordinator.create_group(trio_spec(threshold=3))
        proposal = await coordinator.propose(
            group.id, "a", "createNFTCollection",
            {"name": "Heroes", "symbol": "HERO", "max_supply": 10, "base_uri": "ipfs://x/"},
        )
        assert proposal.params == {
            "name": "Heroes", "symbol": "HERO", "maxSupply": 10, "baseURI": "ipfs://x/",
        }

    @pytest.mark.asyncio
    async def test_role_cannot_propose(self, coordinator, storage):
        group = await coordinator.create_group(studio_spec())
        with pytest.raises(PermissionDenied):
            await coordinator.propose(group.id, "artist", "transferETH", {"to": "0x1", "amount": "1"})
        assert storage.proposal_ids() == []

    @pytest.mark.asyncio
    async def test_voter_role_must_approve_operation(self, coordinator):
        group = await coordinator.create_group(
            studio_spec(
                createERC20Token=OperationRule(required_roles=["developer", "ceo"], threshold=2)
            )
        )
        proposal = await coordinator.propose(
            group.id, "dev", "createERC20Token",
            {"name": "Gold", "symbol": "GLD", "initialSupply": "1"},
        )
        with pytest.raises(PermissionDenied):
            await coordinator.approve(proposal.id, "artist")


class TestEmergencyPowers:
    """Emergency stop, suspension and override proposals."""

    @pytest.mark.asyncio
    async def test_emergency_stop_suspends_group(self, coordinator, storage):
        group = await coordinator.create_group(
            studio_spec(emergencyStop=OperationRule(required_roles=["ceo"], threshold=1))
        )
        stop = await coordinator.propose(
            group.id, "ceo", "emergencyStop", {"reason": "exploit"}, urgency="emergency"
        )

        assert stop.status == ProposalStatus.EXECUTED
        assert stop.execution_result == {
            "type": "emergencyStop", "groupId": group.id, "reason": "exploit",
        }
        assert coordinator.get_group(group.id).status == GroupStatus.SUSPENDED
        with pytest.raises(GroupSuspended):
            await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        actions = [e.action for e in storage.read_audit()]
        assert AuditAction.GROUP_SUSPENDED in actions

    @pytest.mark.asyncio
    async def test_emergency_stop_requires_override_role(self, coordinator):
        group = await coordinator.create_group(studio_spec())
        with pytest.raises(PermissionDenied):
            await coordinator.propose(group.id, "dev", "emergencyStop", {})

    @pytest.mark.asyncio
    async def test_resume_group(self, coordinator):
        group = await coordinator.create_group(
            studio_spec(emergencyStop=OperationRule(required_roles=["ceo"], threshold=1))
        )
        await coordinator.propose(group.id, "ceo", "emergencyStop", {})

        with pytest.raises(PermissionDenied):
            await coordinator.resume_group(group.id, "artist")
        resumed = await coordinator.resume_group(group.id, "ceo")

        assert resumed.status == GroupStatus.ACTIVE
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        assert proposal.status == ProposalStatus.PENDING

    @pytest.mark.asyncio
    async def test_emergency_urgency_lifts_propose_denial(self, clock, wallets, chain, storage):
        engine = PermissionEngine(
            roles={
                "guardian": RoleCapabilities(emergency_override=True),
                "admin": RoleCapabilities(propose=frozenset({"*"}), approve=frozenset({"*"})),
            }
        )
        coordinator = MultisigCoordinator(
            storage=storage,
            wallets=wallets,
            executor=default_executor(chain, wallets),
            clock=clock,
            permissions=engine,
        )
        coordinator.initialize()
        group = await coordinator.create_group(
            GroupSpec(
                name="Guarded",
                members=[
                    Member(wallet_name="a", role="guardian"),
                    Member(wallet_name="b", role="admin"),
                    Member(wallet_name="c", role="admin"),
                ],
                threshold=2,
                rules={"transferETH": OperationRule(required_roles=["admin"], threshold=2)},
            )
        )

        with pytest.raises(PermissionDenied):
            await coordinator.propose(group.id, "a", "transferETH", {"to": "0x1", "amount": "1"})
        proposal = await coordinator.propose(
            group.id, "a", "transferETH", {"to": "0x1", "amount": "1"}, urgency=Urgency.EMERGENCY
        )

        assert proposal.emergency_override is True
        assert proposal.approvals == {}
        assert proposal.required_approvals == ("b", "c")

    @pytest.mark.asyncio
    async def test_update_group_requires_override(self, coordinator):
        group = await coordinator.create_group(studio_spec())
        with pytest.raises(PermissionDenied):
            await coordinator.update_group(group.id, "dev", threshold=1)
        updated = await coordinator.update_group(group.id, "ceo", description="Renamed")
        assert updated.description == "Renamed"


class TestReadsAndPortability:
    """Query helpers, export and import."""

    @pytest.mark.asyncio
    async def test_stats_and_summary(self, coordinator):
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        await coordinator.approve(proposal.id, "artist")
        await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        stats = coordinator.stats(group.id)
        assert stats.total == 2
        assert stats.executed == 1
        assert stats.pending == 1
        assert stats.by_operation == {"createNFTCollection": 2}

        summary = coordinator.proposal_summary(proposal.id)
        assert summary["status"] == "executed"

    @pytest.mark.asyncio
    async def test_requiring_action(self, coordinator):
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        assert [p.id for p in coordinator.list_requiring_action("artist")] == [proposal.id]
        assert coordinator.list_requiring_action("dev") == []
        assert coordinator.list_requiring_action("ceo") == []

    @pytest.mark.asyncio
    async def test_wallet_permissions(self, coordinator):
        group = await coordinator.create_group(studio_spec())
        perms = coordinator.wallet_permissions(group.id, "artist")
        assert perms["role"] == "artist"
        assert "createNFTCollection" in perms["can_approve"]
        assert coordinator.wallet_permissions(group.id, "stranger") is None

    @pytest.mark.asyncio
    async def test_daily_summary(self, coordinator, recorder):
        group = await coordinator.create_group(studio_spec())
        await coordinator.create_group(trio_spec())
        await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)

        assert await coordinator.send_daily_summary() == 1
        summary = recorder.events[-1]
        assert summary.kind.value == "daily_summary"
        assert summary.data["pending_count"] == 1

    @pytest.mark.asyncio
    async def test_export_import_round_trip(self, coordinator, make_coordinator, clock):
        group = await coordinator.create_group(studio_spec())
        proposal = await coordinator.propose(group.id, "dev", "createNFTCollection", NFT_PARAMS)
        blob = await coordinator.export_group(group.id)

        other = make_coordinator(MemoryStorage(clock))
        imported = await other.import_group(blob)

        assert imported.model_dump() == group.model_dump()
        assert other.get_proposal(proposal.id).model_dump() == proposal.model_dump()
        with pytest.raises(InvalidConfig):
            await other.import_group(blob)
        assert other.storage.read_audit()[-1].action == AuditAction.GROUP_IMPORTED

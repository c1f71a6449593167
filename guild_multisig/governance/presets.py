"""
Ready-made group layouts for common setups.

Both builders return a ``GroupSpec`` to pass to
``MultisigCoordinator.create_group``. Rules only name roles somebody in the
group actually holds, and their thresholds are capped to the number of
matching members, so a preset always passes validation.
"""

from __future__ import annotations

from typing import Iterable

from guild_multisig.core.schema import GroupSpec, Member, OperationRule

GAMING_STUDIO_RULES: dict[str, OperationRule] = {
    "createERC20Token": OperationRule(
        required_roles=["developer", "ceo"], threshold=2,
        description="Create new game tokens",
    ),
    "createNFTCollection": OperationRule(
        required_roles=["artist", "developer"], threshold=2,
        description="Create NFT collections",
    ),
    "mintNFT": OperationRule(
        required_roles=["artist"], threshold=1,
        description="Mint individual NFTs",
    ),
    "transferETH": OperationRule(
        required_roles=["developer", "ceo"], threshold=2, max_amount="10",
        description="Transfer up to 10 ETH",
    ),
    "batchPlayerRewards": OperationRule(
        required_roles=["developer"], threshold=1,
        description="Distribute player rewards",
    ),
    "emergencyStop": OperationRule(
        required_roles=["ceo"], threshold=1,
        description="Emergency operations",
    ),
}

GUILD_RULES: dict[str, OperationRule] = {
    "guildUpgrade": OperationRule(
        required_roles=["leader", "officer"], threshold=2,
        description="Upgrade guild facilities",
    ),
    "memberReward": OperationRule(
        required_roles=["officer"], threshold=1, max_amount="1",
        description="Reward guild members",
    ),
    "treasurySpend": OperationRule(
        required_roles=["leader"], threshold=1, max_amount="5",
        description="Spend from treasury",
    ),
    "newMember": OperationRule(
        required_roles=["leader", "officer"], threshold=1,
        description="Add new guild member",
    ),
}


def detect_gaming_role(wallet_name: str) -> str:
    name = wallet_name.lower()
    if "ceo" in name or "founder" in name:
        return "ceo"
    if "lead" in name:
        return "lead_dev"
    if "dev" in name or "engineer" in name:
        return "developer"
    if "artist" in name or "design" in name:
        return "artist"
    if "community" in name:
        return "community"
    if "marketing" in name:
        return "marketing"
    return "member"


def fit_rules(
    rules: dict[str, OperationRule], members: list[Member]
) -> dict[str, OperationRule]:
    """Restrict ``rules`` to the roles present among ``members``."""
    fitted: dict[str, OperationRule] = {}
    for operation, rule in rules.items():
        if not rule.required_roles:
            fitted[operation] = rule
            continue
        present = [r for r in rule.required_roles if any(m.role == r for m in members)]
        if not present:
            continue
        holders = sum(1 for m in members if m.role in present)
        fitted[operation] = rule.model_copy(
            update={"required_roles": present, "threshold": min(rule.threshold, holders)}
        )
    return fitted


def gaming_studio_spec(
    name: str,
    wallets: Iterable[str],
    threshold: int = 2,
    rules: dict[str, OperationRule] | None = None,
) -> GroupSpec:
    """Studio group with roles guessed from wallet names; ``rules`` override the defaults."""
    members = []
    for wallet_name in wallets:
        role = detect_gaming_role(wallet_name)
        members.append(
            Member(wallet_name=wallet_name, role=role, weight=2 if role == "ceo" else 1)
        )
    return GroupSpec(
        name=f"{name} Studio",
        description=f"Gaming studio multisig for {name}",
        members=members,
        threshold=min(threshold, len(members)),
        rules=fit_rules({**GAMING_STUDIO_RULES, **(rules or {})}, members),
    )


def guild_spec(
    name: str,
    leader: str,
    officers: Iterable[str],
    members: Iterable[str] = (),
    threshold: int = 2,
    rules: dict[str, OperationRule] | None = None,
) -> GroupSpec:
    """Guild treasury: one leader, officers, and plain members."""
    roster = [Member(wallet_name=leader, role="leader", weight=3)]
    roster += [Member(wallet_name=o, role="officer", weight=2) for o in officers]
    roster += [Member(wallet_name=m, role="member", weight=1) for m in members]
    return GroupSpec(
        name=f"{name} Guild",
        description=f"Guild treasury for {name}",
        members=roster,
        threshold=min(threshold, len(roster)),
        rules=fit_rules({**GUILD_RULES, **(rules or {})}, roster),
    )

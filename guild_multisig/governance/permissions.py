"""
Permission Engine — role and rule based authorization for multisig groups.

Every propose and vote passes through this engine before any state changes.
Decisions come from two layers:

- ROLE TABLE: each role maps to the operations it may propose and approve,
  plus whether it holds emergency override. ``*`` grants everything.
- GROUP RULES: an operation's rule may narrow the roles allowed to act on it
  and cap the amount it may spend.

The engine is pure. It never mutates a group and never performs I/O, so the
coordinator can call it during validation without side effects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from guild_multisig.core.errors import DuplicateMember, InvalidConfig, InvalidThreshold
from guild_multisig.core.operations import parse_decimal_amount
from guild_multisig.core.schema import (
    DEFAULT_ROLE_CAPABILITIES,
    FALLBACK_ROLE,
    Group,
    RoleCapabilities,
)

logger = logging.getLogger(__name__)


class PermissionAction(str, Enum):
    PROPOSE = "propose"
    APPROVE = "approve"
    SPEND = "spend"
    EMERGENCY_OVERRIDE = "emergency_override"


@dataclass
class PermissionCheckResult:
    """Result of checking one wallet action against a group."""

    allowed: bool
    action: PermissionAction
    wallet_name: str
    operation: str
    reason: str
    role: str | None = None
    amount: Decimal | None = None
    limit: Decimal | None = None

    @property
    def is_allowed(self) -> bool:
        return self.allowed


class PermissionEngine:
    """
    Central authorization engine.

    The role table is injected at construction (defaults to
    ``DEFAULT_ROLE_CAPABILITIES``) and is read-only afterwards.
    """

    def __init__(self, roles: Mapping[str, RoleCapabilities] | None = None) -> None:
        self.roles: Mapping[str, RoleCapabilities] = MappingProxyType(
            dict(roles or DEFAULT_ROLE_CAPABILITIES)
        )

    def capabilities(self, role: str) -> RoleCapabilities:
        """Capabilities of ``role``; unknown roles get the fallback row."""
        caps = self.roles.get(role)
        if caps is None:
            caps = self.roles.get(FALLBACK_ROLE, RoleCapabilities())
        return caps

    def is_known_role(self, role: str) -> bool:
        return role in self.roles

    # ── Propose / approve ──────────────────────────────────────

    def can_propose(self, group: Group, wallet_name: str, operation: str) -> PermissionCheckResult:
        """Whether ``wallet_name`` may open a proposal for ``operation``."""
        return self._check_role_and_rule(group, wallet_name, operation, PermissionAction.PROPOSE)

    def can_approve(self, group: Group, wallet_name: str, operation: str) -> PermissionCheckResult:
        """Whether ``wallet_name`` may vote (approve or reject) on ``operation``."""
        return self._check_role_and_rule(group, wallet_name, operation, PermissionAction.APPROVE)

    def _check_role_and_rule(
        self,
        group: Group,
        wallet_name: str,
        operation: str,
        action: PermissionAction,
    ) -> PermissionCheckResult:
        member = group.member(wallet_name)
        if member is None:
            return PermissionCheckResult(
                allowed=False,
                action=action,
                wallet_name=wallet_name,
                operation=operation,
                reason=f"Wallet '{wallet_name}' is not a member of group '{group.name}'",
            )

        caps = self.capabilities(member.role)
        permitted = (
            caps.may_propose(operation)
            if action == PermissionAction.PROPOSE
            else caps.may_approve(operation)
        )
        if not permitted:
            return PermissionCheckResult(
                allowed=False,
                action=action,
                wallet_name=wallet_name,
                operation=operation,
                role=member.role,
                reason=f"Role '{member.role}' cannot {action.value} {operation}",
            )

        rule = group.rules.get(operation)
        if rule is not None and rule.required_roles and member.role not in rule.required_roles:
            return PermissionCheckResult(
                allowed=False,
                action=action,
                wallet_name=wallet_name,
                operation=operation,
                role=member.role,
                reason=(
                    f"Operation {operation} requires one of roles "
                    f"{', '.join(rule.required_roles)}; '{wallet_name}' is {member.role}"
                ),
            )

        return PermissionCheckResult(
            allowed=True,
            action=action,
            wallet_name=wallet_name,
            operation=operation,
            role=member.role,
            reason=(
                f"Role '{member.role}' may {action.value} {operation}"
                + (" (group rule satisfied)" if rule is not None else "")
            ),
        )

    # ── Spending limits ────────────────────────────────────────

    def check_spending_limit(
        self,
        group: Group,
        wallet_name: str,
        operation: str,
        amount: Any,
    ) -> PermissionCheckResult:
        """
        Compare ``amount`` against the rule's ``max_amount``.

        Comparison is exact decimal arithmetic at the native asset's
        precision (18 fractional digits).
        Without a capped rule the amount is not parsed at all.
        """
        rule = group.rules.get(operation)
        if rule is None or rule.max_amount is None:
            return PermissionCheckResult(
                allowed=True,
                action=PermissionAction.SPEND,
                wallet_name=wallet_name,
                operation=operation,
                reason=f"No spending limit for {operation}",
            )

        try:
            value = parse_decimal_amount(amount)
        except ValueError as exc:
            return PermissionCheckResult(
                allowed=False,
                action=PermissionAction.SPEND,
                wallet_name=wallet_name,
                operation=operation,
                reason=f"Invalid amount: {exc}",
            )

        limit = Decimal(rule.max_amount)
        if value > limit:
            return PermissionCheckResult(
                allowed=False,
                action=PermissionAction.SPEND,
                wallet_name=wallet_name,
                operation=operation,
                amount=value,
                limit=limit,
                reason=f"Amount {amount} exceeds limit of {rule.max_amount} for {operation}",
            )
        return PermissionCheckResult(
            allowed=True,
            action=PermissionAction.SPEND,
            wallet_name=wallet_name,
            operation=operation,
            amount=value,
            limit=limit,
            reason=f"Amount {amount} within limit of {rule.max_amount}",
        )

    # ── Emergency override ─────────────────────────────────────

    def can_emergency_override(
        self, group: Group, wallet_name: str, operation: str
    ) -> PermissionCheckResult:
        member = group.member(wallet_name)
        if member is None:
            return PermissionCheckResult(
                allowed=False,
                action=PermissionAction.EMERGENCY_OVERRIDE,
                wallet_name=wallet_name,
                operation=operation,
                reason=f"Wallet '{wallet_name}' is not a member of group '{group.name}'",
            )
        if not self.capabilities(member.role).emergency_override:
            return PermissionCheckResult(
                allowed=False,
                action=PermissionAction.EMERGENCY_OVERRIDE,
                wallet_name=wallet_name,
                operation=operation,
                role=member.role,
                reason=f"Role '{member.role}' has no emergency override",
            )
        rule = group.rules.get(operation)
        if rule is not None and not rule.allow_emergency_override:
            return PermissionCheckResult(
                allowed=False,
                action=PermissionAction.EMERGENCY_OVERRIDE,
                wallet_name=wallet_name,
                operation=operation,
                role=member.role,
                reason=f"Emergency override is disabled for {operation}",
            )
        return PermissionCheckResult(
            allowed=True,
            action=PermissionAction.EMERGENCY_OVERRIDE,
            wallet_name=wallet_name,
            operation=operation,
            role=member.role,
            reason=f"Role '{member.role}' holds emergency override",
        )

    # ── Queries ────────────────────────────────────────────────

    def get_eligible_approvers(self, group: Group, operation: str) -> list[str]:
        """Members allowed to approve ``operation``, in declaration order."""
        return [
            m.wallet_name
            for m in group.members
            if self.can_approve(group, m.wallet_name, operation).allowed
        ]

    def wallet_permissions(self, group: Group, wallet_name: str) -> dict[str, Any] | None:
        """Summary of what a member may do in ``group``; None for non-members."""
        member = group.member(wallet_name)
        if member is None:
            return None
        caps = self.capabilities(member.role)
        return {
            "wallet_name": member.wallet_name,
            "role": member.role,
            "known_role": self.is_known_role(member.role),
            "weight": member.weight,
            "can_propose": sorted(caps.propose),
            "can_approve": sorted(caps.approve),
            "emergency_override": caps.emergency_override,
            "rules": {
                op: rule.required_roles
                for op, rule in group.rules.items()
                if not rule.required_roles or member.role in rule.required_roles
            },
        }

    # ── Validation ─────────────────────────────────────────────

    def validate(self, group: Group) -> list[str]:
        """
        Check a group definition before it is persisted.

        Raises:
            InvalidConfig: empty membership, bad weights or unheld required roles.
            DuplicateMember: a wallet name appears twice.
            InvalidThreshold: a threshold that cannot be met.

        Returns:
            Warnings (unknown roles); these never fail validation.
        """
        if not group.members:
            raise InvalidConfig(f"Group '{group.name}' has no members")

        seen: set[str] = set()
        for member in group.members:
            if member.wallet_name in seen:
                raise DuplicateMember(member.wallet_name)
            seen.add(member.wallet_name)
            if member.weight < 1:
                raise InvalidConfig(
                    f"Member '{member.wallet_name}' has weight {member.weight}; must be >= 1"
                )

        if group.threshold < 1 or group.threshold > len(group.members):
            raise InvalidThreshold(
                f"Threshold {group.threshold} must be between 1 and {len(group.members)}"
            )

        roles_present = {m.role for m in group.members}
        for operation, rule in group.rules.items():
            if rule.threshold < 1:
                raise InvalidThreshold(f"Rule {operation}: threshold must be >= 1")
            if not rule.required_roles:
                continue
            missing = [r for r in rule.required_roles if r not in roles_present]
            if missing:
                raise InvalidConfig(
                    f"Rule {operation}: no member holds required role(s) {', '.join(missing)}"
                )
            matching = sum(1 for m in group.members if m.role in rule.required_roles)
            if rule.threshold > matching:
                raise InvalidThreshold(
                    f"Rule {operation}: threshold {rule.threshold} exceeds the "
                    f"{matching} member(s) holding {', '.join(rule.required_roles)}"
                )

        warnings = []
        for member in group.members:
            if not self.is_known_role(member.role):
                logger.warning(
                    "Unknown role %s for %s in group %s; using %s permissions",
                    member.role, member.wallet_name, group.name, FALLBACK_ROLE,
                )
                warnings.append(
                    f"Unknown role '{member.role}' for '{member.wallet_name}'; "
                    f"using '{FALLBACK_ROLE}' permissions"
                )
        return warnings


# Global permission engine instance
permission_engine = PermissionEngine()
